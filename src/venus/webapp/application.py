"""FastAPI frontend for the Venus lockable savings service.

The JSON API mirrors what the original React dashboard talks to: cookie
based auth, goal CRUD and the emergency-withdraw action. The goal store,
auth manager and backend are built per app by :func:`create_app` and kept on
``app.state`` so tests and deployments can swap the storage backend without
touching a route.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple, Type

from fastapi import APIRouter, Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from ..exceptions import (
    AccountLockedError,
    AlreadyWithdrawnError,
    AuthenticationError,
    DuplicateAccountError,
    EmergencyNotAllowedError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
    VenusError,
    WithdrawLimitReachedError,
)
from ..models import Goal, utcnow
from ..money import format_currency
from ..ops import HealthMonitor, StructuredLogger
from ..rules import GlobalCapPolicy, PenaltyPolicy, WithdrawalPolicy
from ..security import AuthManager
from ..service import GoalStore
from ..store import Backend, FileBackend, MemoryBackend
from .config import SESSION_COOKIE_NAME, Settings
from .persistence import SqlBackend, build_engine

_SESSION_OWNER_KEY = "owner_id"

ERROR_STATUS: Tuple[Tuple[Type[VenusError], int], ...] = (
    (AccountLockedError, 429),
    (AuthenticationError, 401),
    (ValidationError, 400),
    (NotFoundError, 404),
    (AlreadyWithdrawnError, 400),
    (EmergencyNotAllowedError, 403),
    (WithdrawLimitReachedError, 403),
    (DuplicateAccountError, 409),
    (StoreUnavailableError, 503),
)

EDIT_FIELD_NAMES: Dict[str, str] = {
    "label": "label",
    "amount": "target_amount",
    "targetAmount": "target_amount",
    "lockUntil": "lock_until",
    "emergencyAllowed": "emergency_allowed",
}

# Body keys each PATCH action accepts next to ``action`` itself.
ACTION_FIELDS: Dict[str, frozenset] = {
    "emergency-withdraw": frozenset(),
    "withdraw": frozenset(),
    "contribute": frozenset({"amount", "deposit"}),
    "relock": frozenset({"lockUntil"}),
}


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------
def build_backend(settings: Settings) -> Backend:
    if settings.store_backend == "memory":
        return MemoryBackend()
    if settings.store_backend == "file":
        return FileBackend(settings.data_file)
    return SqlBackend(build_engine(settings.sqlite_file))


def build_policy(settings: Settings) -> WithdrawalPolicy:
    if settings.withdraw_policy == "cap":
        return GlobalCapPolicy(limit=settings.emergency_cap)
    return PenaltyPolicy(rate=settings.penalty_rate, free_breaks=settings.free_breaks)


def create_app(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[Backend] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    settings = settings or Settings()
    backend = backend or build_backend(settings)
    logger = StructuredLogger(path=settings.log_path)
    policy = build_policy(settings)

    app = FastAPI(title="Venus")
    app.state.settings = settings
    app.state.logger = logger
    app.state.store = GoalStore(backend, policy=policy, logger=logger, clock=clock)
    app.state.auth = AuthManager(
        backend,
        logger=logger,
        max_attempts=settings.max_login_attempts,
        lockout_minutes=settings.lockout_minutes,
        iterations=settings.password_iterations,
    )
    app.state.health = HealthMonitor(backend, policy=policy.describe())

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE_NAME,
        max_age=settings.session_max_age,
        same_site="lax",
        https_only=settings.cookie_secure,
    )
    if settings.client_url:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[settings.client_url],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(VenusError, venus_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


def status_for(exc: VenusError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def venus_error_handler(request: Request, exc: VenusError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        request.app.state.logger.log("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=status_code, content={"message": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "invalid request.") if errors else "invalid request."
    return JSONResponse(status_code=400, content={"message": f"request body is invalid: {detail}"})


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
def goal_store(request: Request) -> GoalStore:
    return request.app.state.store


def auth_manager(request: Request) -> AuthManager:
    return request.app.state.auth


def current_owner(request: Request) -> str:
    """Return the owner id of the logged in caller or raise a 401."""

    account = auth_manager(request).resolve(request.session.get(_SESSION_OWNER_KEY))
    return account.id


def start_session(request: Request, owner_id: str) -> None:
    request.session.clear()
    request.session[_SESSION_OWNER_KEY] = owner_id


def first_present(payload: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


def goal_response(message: str, goal: Goal) -> Dict[str, Any]:
    return {"message": message, "goal": goal.to_dict()}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
router = APIRouter()


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    return request.app.state.health.status()


@router.post("/auth/register", status_code=201)
def register(request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)) -> Dict[str, Any]:
    payload = payload or {}
    account = auth_manager(request).register(payload.get("email", ""), payload.get("password", ""))
    start_session(request, account.id)
    return {"message": "account created.", "user": account.to_dict()}


@router.post("/auth/login")
def login(request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)) -> Dict[str, Any]:
    payload = payload or {}
    account = auth_manager(request).authenticate(payload.get("email", ""), payload.get("password", ""))
    start_session(request, account.id)
    return {"message": "logged in.", "user": account.to_dict()}


@router.post("/auth/logout")
def logout(request: Request) -> Dict[str, Any]:
    owner_id = request.session.get(_SESSION_OWNER_KEY)
    request.session.clear()
    if owner_id:
        request.app.state.logger.log("logout", owner_id=owner_id)
    return {"message": "logged out."}


@router.get("/auth/me")
def me(request: Request) -> Dict[str, Any]:
    account = auth_manager(request).resolve(request.session.get(_SESSION_OWNER_KEY))
    return {"user": account.to_dict()}


@router.get("/goals")
def list_goals(request: Request) -> Dict[str, Any]:
    owner_id = current_owner(request)
    return {"goals": [goal.to_dict() for goal in goal_store(request).list(owner_id)]}


@router.post("/goals", status_code=201)
def create_goal(request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)) -> Dict[str, Any]:
    owner_id = current_owner(request)
    payload = payload or {}
    goal = goal_store(request).create(
        owner_id,
        label=payload.get("label"),
        target_amount=first_present(payload, "targetAmount", "amount"),
        lock_until=payload.get("lockUntil"),
        emergency_allowed=payload.get("emergencyAllowed", True),
        initial_deposit=first_present(payload, "initialDeposit", "currentAmount", default=0),
    )
    return goal_response("new savings goal locked.", goal)


@router.get("/goals/summary")
def goals_summary(request: Request) -> Dict[str, Any]:
    owner_id = current_owner(request)
    return {"summary": goal_store(request).summary(owner_id).to_dict()}


@router.post("/goals/reset")
def reset_goals(request: Request) -> Dict[str, Any]:
    owner_id = current_owner(request)
    removed = goal_store(request).reset(owner_id)
    return {"message": "all goals cleared.", "removed": removed}


@router.get("/goals/{goal_id}")
def get_goal(goal_id: str, request: Request) -> Dict[str, Any]:
    owner_id = current_owner(request)
    return {"goal": goal_store(request).get(owner_id, goal_id).to_dict()}


@router.patch("/goals/{goal_id}")
def patch_goal(goal_id: str, request: Request, payload: Optional[Dict[str, Any]] = Body(default=None)) -> Dict[str, Any]:
    owner_id = current_owner(request)
    payload = dict(payload or {})
    store = goal_store(request)
    action = payload.pop("action", None)
    if action is not None:
        if action not in ACTION_FIELDS:
            raise ValidationError(f"unknown action {action!r}.")
        extra = set(payload) - ACTION_FIELDS[action]
        if extra:
            raise ValidationError(f"action {action!r} cannot be combined with: {', '.join(sorted(extra))}.")

    if action in ("emergency-withdraw", "withdraw"):
        decision = store.withdraw_with_decision(owner_id, goal_id)
        message = "goal withdrawn from lock (demo only, no real money is moving)."
        if decision.penalty > 0:
            message = (
                f"goal withdrawn early with a {format_currency(decision.penalty)} penalty "
                "(demo only, no real money is moving)."
            )
        return goal_response(message, decision.goal)
    if action == "contribute":
        goal = store.contribute(owner_id, goal_id, first_present(payload, "amount", "deposit"))
        return goal_response("deposit added to goal.", goal)
    if action == "relock":
        goal = store.relock(owner_id, goal_id, payload.get("lockUntil"))
        return goal_response("goal locked again.", goal)

    fields = {EDIT_FIELD_NAMES.get(key, key): value for key, value in payload.items()}
    goal = store.update(owner_id, goal_id, **fields)
    return goal_response("goal updated.", goal)


@router.delete("/goals/{goal_id}")
def delete_goal(goal_id: str, request: Request) -> Dict[str, Any]:
    owner_id = current_owner(request)
    goal_store(request).delete(owner_id, goal_id)
    return {"message": "goal deleted."}


_APP: Optional[FastAPI] = None


def get_app() -> FastAPI:
    """Return the process wide app built from environment settings."""

    global _APP
    if _APP is None:
        _APP = create_app()
    return _APP


__all__ = [
    "build_backend",
    "build_policy",
    "create_app",
    "current_owner",
    "get_app",
    "router",
    "status_for",
]
