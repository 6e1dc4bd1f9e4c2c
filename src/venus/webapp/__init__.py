"""Venus web service package; needs the FastAPI/SQLModel dependencies."""
from __future__ import annotations

from importlib import import_module
from types import ModuleType
from typing import Any, List

_OPTIONAL_MODULES = {"fastapi", "starlette", "sqlmodel", "sqlalchemy", "dotenv"}
_IMPL_MODULE: ModuleType | None = None

__all__: List[str] = ["app", "create_app", "get_app"]


def _load_impl() -> ModuleType:
    global _IMPL_MODULE
    if _IMPL_MODULE is not None:
        return _IMPL_MODULE
    try:
        module = import_module(".application", __name__)
    except ModuleNotFoundError as exc:
        if exc.name in _OPTIONAL_MODULES:
            raise RuntimeError(
                "venus.webapp requires the FastAPI/SQLModel dependencies. "
                "Reinstall the package with `pip install -e .`."
            ) from exc
        raise
    _IMPL_MODULE = module
    return module


def __getattr__(name: str) -> Any:
    module = _load_impl()
    if name == "app":
        # ``uvicorn venus.webapp:app`` builds the app from the environment on first access.
        return module.get_app()
    return getattr(module, name)


def __dir__() -> List[str]:
    return sorted(set(globals()) | set(__all__))
