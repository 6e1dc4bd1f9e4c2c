"""Venus package: lockable savings goals with emergency withdrawal rules."""

from .exceptions import (
    AccountLockedError,
    AlreadyWithdrawnError,
    AuthenticationError,
    DuplicateAccountError,
    EmergencyNotAllowedError,
    GoalNotFoundError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
    VenusError,
    WithdrawalRejectedError,
    WithdrawLimitReachedError,
)
from .models import Account, Goal, GoalStatus, GoalSummary, WithdrawalDecision, WithdrawalKind
from .ops import HealthMonitor, StructuredLogger
from .rules import GlobalCapPolicy, PenaltyPolicy, WithdrawalPolicy, evaluate_withdrawal
from .security import AuthManager
from .service import GoalStore
from .store import Backend, FileBackend, MemoryBackend

__all__ = [
    "Account",
    "AccountLockedError",
    "AlreadyWithdrawnError",
    "AuthManager",
    "AuthenticationError",
    "Backend",
    "DuplicateAccountError",
    "EmergencyNotAllowedError",
    "FileBackend",
    "GlobalCapPolicy",
    "Goal",
    "GoalNotFoundError",
    "GoalStatus",
    "GoalStore",
    "GoalSummary",
    "HealthMonitor",
    "MemoryBackend",
    "NotFoundError",
    "PenaltyPolicy",
    "StoreUnavailableError",
    "StructuredLogger",
    "ValidationError",
    "VenusError",
    "WithdrawLimitReachedError",
    "WithdrawalDecision",
    "WithdrawalKind",
    "WithdrawalPolicy",
    "WithdrawalRejectedError",
    "evaluate_withdrawal",
]
