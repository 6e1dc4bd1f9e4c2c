"""Goal store coordinating validation, persistence and the withdrawal rules."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from .exceptions import (
    AlreadyWithdrawnError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
    WithdrawalRejectedError,
)
from .models import Goal, GoalStatus, GoalSummary, WithdrawalDecision, utcnow
from .money import MAX_AMOUNT, AmountLike, format_currency, require_positive, to_decimal
from .ops import StructuredLogger
from .rules import PenaltyPolicy, WithdrawalPolicy, evaluate_withdrawal
from .store import Backend, MemoryBackend

MAX_LABEL_LENGTH = 120
EDITABLE_FIELDS = frozenset({"label", "target_amount", "lock_until", "emergency_allowed"})


def parse_amount(value: Any, field_name: str, *, allow_zero: bool = False) -> Decimal:
    if value is None or value == "":
        raise ValidationError(f"{field_name} is required.")
    try:
        amount = to_decimal(value)
        require_positive(amount, allow_zero=allow_zero)
    except ValueError as exc:
        qualifier = "zero or a positive number" if allow_zero else "a positive number"
        raise ValidationError(f"{field_name} must be {qualifier}.") from exc
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field_name} cannot be more than {format_currency(MAX_AMOUNT)}.")
    return amount


def parse_lock_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        try:
            return date.fromisoformat(raw)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(raw).date()
        except ValueError as exc:
            raise ValidationError(f"lock date {raw!r} is not a valid YYYY-MM-DD date.") from exc
    raise ValidationError("lock date is required.")


def clean_label(value: Any) -> str:
    label = value.strip() if isinstance(value, str) else ""
    if not label:
        raise ValidationError("goal name cannot be empty.")
    if len(label) > MAX_LABEL_LENGTH:
        raise ValidationError(f"goal name must be at most {MAX_LABEL_LENGTH} characters.")
    return label


def clean_flag(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field_name} must be true or false.")


class GoalStore:
    """Owner scoped bookkeeping of savings goals.

    The store never keeps goals itself; it validates input, asks the rule
    engine for withdrawal decisions and commits every change through the
    backend's compare-and-swap ``replace_goal`` so racing requests cannot
    both move a goal out of ``locked``.
    """

    __slots__ = ("_backend", "_policy", "_logger", "_clock", "_max_retries")

    def __init__(
        self,
        backend: Backend | None = None,
        *,
        policy: WithdrawalPolicy | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_retries: int = 5,
    ) -> None:
        self._backend = backend or MemoryBackend()
        self._policy = policy or PenaltyPolicy()
        self._logger = logger or StructuredLogger()
        self._clock = clock
        self._max_retries = max_retries

    @property
    def backend(self) -> Backend:
        return self._backend

    @property
    def policy(self) -> WithdrawalPolicy:
        return self._policy

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list(self, owner_id: str) -> List[Goal]:
        """Return all of the owner's goals, newest first."""

        return self._backend.list_goals(owner_id)

    def get(self, owner_id: str, goal_id: str) -> Goal:
        goal = self._backend.get_goal(owner_id, goal_id)
        if goal is None:
            raise NotFoundError("goal not found.")
        return goal

    def summary(self, owner_id: str) -> GoalSummary:
        summary = GoalSummary()
        for goal in self.list(owner_id):
            summary.total_goals += 1
            summary.total_penalties += goal.penalty_amount
            summary.emergency_uses += goal.withdraw_count
            if goal.is_locked:
                summary.locked_count += 1
                summary.total_locked += goal.current_amount
            else:
                summary.withdrawn_count += 1
                summary.total_withdrawn += goal.current_amount
        return summary

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(
        self,
        owner_id: str,
        label: Any,
        target_amount: Any,
        lock_until: Any,
        emergency_allowed: Any = True,
        initial_deposit: AmountLike = 0,
    ) -> Goal:
        target = parse_amount(target_amount, "amount")
        deposit = parse_amount(initial_deposit, "initial deposit", allow_zero=True)
        if deposit > target:
            raise ValidationError("initial deposit cannot be more than the goal amount.")
        now = self._clock()
        goal = Goal(
            owner_id=owner_id,
            label=clean_label(label),
            target_amount=target,
            current_amount=deposit,
            lock_until=parse_lock_date(lock_until),
            emergency_allowed=clean_flag(emergency_allowed, "emergencyAllowed"),
            created_at=now,
            updated_at=now,
        )
        self._backend.add_goal(goal)
        self._logger.log(
            "goal_created",
            owner_id=owner_id,
            goal_id=goal.id,
            target=float(goal.target_amount),
            lock_until=goal.lock_until.isoformat(),
        )
        return goal

    def update(self, owner_id: str, goal_id: str, **fields: Any) -> Goal:
        """Apply a partial edit of the editable fields and re-validate the goal."""

        if not fields:
            raise ValidationError("nothing to update.")
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"cannot edit field(s): {', '.join(sorted(unknown))}.")
        changes: Dict[str, Any] = {}
        if "label" in fields:
            changes["label"] = clean_label(fields["label"])
        if "target_amount" in fields:
            changes["target_amount"] = parse_amount(fields["target_amount"], "amount")
        if "lock_until" in fields:
            changes["lock_until"] = parse_lock_date(fields["lock_until"])
        if "emergency_allowed" in fields:
            changes["emergency_allowed"] = clean_flag(fields["emergency_allowed"], "emergencyAllowed")

        def apply(goal: Goal) -> Goal:
            updated = goal.copy(**changes)
            if updated.current_amount > updated.target_amount:
                raise ValidationError("goal amount cannot be lower than what is already saved.")
            return updated

        goal = self._commit(owner_id, goal_id, apply)
        self._logger.log("goal_updated", owner_id=owner_id, goal_id=goal_id, fields=sorted(changes))
        return goal

    def delete(self, owner_id: str, goal_id: str) -> None:
        if not self._backend.remove_goal(owner_id, goal_id):
            raise NotFoundError("goal not found.")
        self._logger.log("goal_deleted", owner_id=owner_id, goal_id=goal_id)

    def reset(self, owner_id: str) -> int:
        """Remove every goal of the owner and return how many were removed."""

        removed = self._backend.remove_goals(owner_id)
        self._logger.log("goals_reset", owner_id=owner_id, removed=removed)
        return removed

    def withdraw(self, owner_id: str, goal_id: str, *, now: Optional[datetime] = None) -> Goal:
        """Withdraw a goal if the rules allow it and commit the result atomically."""

        return self.withdraw_with_decision(owner_id, goal_id, now=now).goal

    def withdraw_with_decision(
        self, owner_id: str, goal_id: str, *, now: Optional[datetime] = None
    ) -> WithdrawalDecision:
        """Like :meth:`withdraw` but also report how the withdrawal was granted."""

        moment = now or self._clock()
        decisions = []

        def decide(goal: Goal) -> Goal:
            prior_uses = 0
            if self._policy.counts_owner_history:
                prior_uses = sum(other.withdraw_count for other in self._backend.list_goals(owner_id))
            decision = evaluate_withdrawal(goal, moment, self._policy, prior_emergency_uses=prior_uses)
            decisions.append(decision)
            return decision.goal

        try:
            goal = self._commit(owner_id, goal_id, decide)
        except WithdrawalRejectedError as exc:
            self._logger.log(
                "withdrawal_rejected",
                owner_id=owner_id,
                goal_id=goal_id,
                reason=exc.__class__.__name__,
            )
            raise
        decision = decisions[-1]
        self._logger.log(
            "goal_withdrawn",
            owner_id=owner_id,
            goal_id=goal_id,
            kind=decision.kind.value,
            withdraw_count=goal.withdraw_count,
            penalty=float(decision.penalty),
        )
        return WithdrawalDecision(kind=decision.kind, goal=goal, penalty=decision.penalty)

    def contribute(self, owner_id: str, goal_id: str, amount: AmountLike) -> Goal:
        """Add ``amount`` to the goal's progress without passing its target."""

        increment = parse_amount(amount, "deposit")

        def apply(goal: Goal) -> Goal:
            if not goal.is_locked:
                raise AlreadyWithdrawnError("cannot add money to a withdrawn goal.")
            total = goal.current_amount + increment
            if total > goal.target_amount:
                raise ValidationError(
                    f"deposit would pass the goal amount; at most {goal.remaining} can be added."
                )
            return goal.copy(current_amount=total)

        goal = self._commit(owner_id, goal_id, apply)
        self._logger.log("goal_contribution", owner_id=owner_id, goal_id=goal_id, amount=float(increment))
        return goal

    def relock(self, owner_id: str, goal_id: str, lock_until: Any) -> Goal:
        """Lock a withdrawn goal again, keeping its withdrawal history."""

        new_date = parse_lock_date(lock_until)
        if new_date <= self._clock().date():
            raise ValidationError("new lock date must be in the future.")

        def apply(goal: Goal) -> Goal:
            if goal.is_locked:
                raise ValidationError("goal is already locked.")
            return goal.copy(status=GoalStatus.LOCKED, lock_until=new_date)

        goal = self._commit(owner_id, goal_id, apply)
        self._logger.log("goal_relocked", owner_id=owner_id, goal_id=goal_id, lock_until=new_date.isoformat())
        return goal

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _commit(self, owner_id: str, goal_id: str, mutate: Callable[[Goal], Goal]) -> Goal:
        for _ in range(self._max_retries):
            current = self.get(owner_id, goal_id)
            updated = mutate(current).copy(
                version=current.version + 1,
                updated_at=self._clock(),
            )
            if self._backend.replace_goal(updated, current.version):
                return updated
            self._logger.log("goal_write_conflict", owner_id=owner_id, goal_id=goal_id)
        raise StoreUnavailableError("goal is being changed by another request, please retry.")


__all__ = ["GoalStore", "clean_label", "parse_amount", "parse_lock_date"]
