"""Domain models used by the Venus package."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict
from uuid import uuid4

from .money import ZERO, to_decimal


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC timestamp; naive values are taken as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GoalStatus(str, Enum):
    """Lifecycle of a savings goal."""

    LOCKED = "locked"
    WITHDRAWN = "withdrawn"


class WithdrawalKind(str, Enum):
    """How a withdrawal was granted by the rule engine."""

    UNLOCKED = "unlocked"
    EMERGENCY = "emergency"


@dataclass(slots=True)
class Goal:
    """A savings goal locked until ``lock_until`` and owned by one account."""

    owner_id: str
    label: str
    target_amount: Decimal
    lock_until: date
    current_amount: Decimal = ZERO
    emergency_allowed: bool = True
    status: GoalStatus = GoalStatus.LOCKED
    withdraw_count: int = 0
    penalty_amount: Decimal = ZERO
    id: str = field(default_factory=new_id)
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        object.__setattr__(self, "target_amount", to_decimal(self.target_amount))
        object.__setattr__(self, "current_amount", to_decimal(self.current_amount))
        object.__setattr__(self, "penalty_amount", to_decimal(self.penalty_amount))
        object.__setattr__(self, "status", GoalStatus(self.status))
        object.__setattr__(self, "created_at", as_utc(self.created_at))
        object.__setattr__(self, "updated_at", as_utc(self.updated_at))

    @property
    def is_locked(self) -> bool:
        return self.status is GoalStatus.LOCKED

    @property
    def emergency_used(self) -> bool:
        """True once at least one emergency withdrawal was granted."""

        return self.withdraw_count > 0

    @property
    def remaining(self) -> Decimal:
        """Return the amount still required to reach the target."""

        remainder = self.target_amount - self.current_amount
        return remainder if remainder > Decimal("0") else ZERO

    def copy(self, **changes: Any) -> "Goal":
        """Return a detached copy of the goal with ``changes`` applied."""

        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the goal using the camelCase keys of the JSON API."""

        return {
            "id": self.id,
            "label": self.label,
            "amount": float(self.target_amount),
            "targetAmount": float(self.target_amount),
            "currentAmount": float(self.current_amount),
            "lockUntil": self.lock_until.isoformat(),
            "status": self.status.value,
            "emergencyAllowed": self.emergency_allowed,
            "emergencyUsed": self.emergency_used,
            "withdrawCount": self.withdraw_count,
            "penaltyAmount": float(self.penalty_amount),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class WithdrawalDecision:
    """Accepted outcome of the rule engine for one withdrawal request."""

    kind: WithdrawalKind
    goal: Goal
    penalty: Decimal = ZERO


@dataclass(slots=True)
class GoalSummary:
    """Aggregate figures shown on the dashboard and profile pages."""

    total_goals: int = 0
    locked_count: int = 0
    withdrawn_count: int = 0
    total_locked: Decimal = ZERO
    total_withdrawn: Decimal = ZERO
    total_penalties: Decimal = ZERO
    emergency_uses: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalGoals": self.total_goals,
            "lockedCount": self.locked_count,
            "withdrawnCount": self.withdrawn_count,
            "totalLocked": float(self.total_locked),
            "totalWithdrawn": float(self.total_withdrawn),
            "totalPenalties": float(self.total_penalties),
            "emergencyUses": self.emergency_uses,
        }


@dataclass(slots=True)
class Account:
    """A registered user; ``id`` is the opaque owner id used by the goal store."""

    email: str
    password_hash: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.created_at = as_utc(self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email}

