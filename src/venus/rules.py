"""Lock and withdrawal rules for savings goals.

Everything in this module is a pure function of the goal, the current time
and the configured policy. Nothing here touches storage: the goal store
commits whatever :func:`evaluate_withdrawal` returns.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from .exceptions import AlreadyWithdrawnError, EmergencyNotAllowedError, WithdrawLimitReachedError
from .models import Goal, GoalStatus, WithdrawalDecision, WithdrawalKind
from .money import ZERO, round2


class WithdrawalPolicy:
    """Decides the cost of an emergency withdrawal.

    Subclasses implement :meth:`emergency_penalty`, which either returns the
    penalty for the new emergency use or raises a rejection.
    """

    name = "base"
    counts_owner_history = False

    def emergency_penalty(self, goal: Goal, new_count: int, prior_uses: int) -> Decimal:
        raise NotImplementedError

    def describe(self) -> dict:
        return {"policy": self.name}


@dataclass(frozen=True)
class PenaltyPolicy(WithdrawalPolicy):
    """First ``free_breaks`` emergencies are free, later ones cost ``rate`` of the saved amount."""

    rate: Decimal = Decimal("0.10")
    free_breaks: int = 1

    name = "penalty"

    def emergency_penalty(self, goal: Goal, new_count: int, prior_uses: int) -> Decimal:
        if new_count <= self.free_breaks:
            return ZERO
        return round2(goal.current_amount * Decimal(str(self.rate)))

    def describe(self) -> dict:
        return {"policy": self.name, "rate": float(self.rate), "freeBreaks": self.free_breaks}


@dataclass(frozen=True)
class GlobalCapPolicy(WithdrawalPolicy):
    """Allow at most ``limit`` emergency withdrawals per owner across all goals."""

    limit: int = 3

    name = "cap"
    counts_owner_history = True

    def emergency_penalty(self, goal: Goal, new_count: int, prior_uses: int) -> Decimal:
        if prior_uses >= self.limit:
            raise WithdrawLimitReachedError(
                f"emergency withdrawal limit of {self.limit} reached."
            )
        return ZERO

    def describe(self) -> dict:
        return {"policy": self.name, "limit": self.limit}


def is_unlocked(goal: Goal, now: datetime | date) -> bool:
    """Return ``True`` once the lock date has been reached."""

    today = now.date() if isinstance(now, datetime) else now
    return today >= goal.lock_until


def evaluate_withdrawal(
    goal: Goal,
    now: datetime | date,
    policy: WithdrawalPolicy,
    *,
    prior_emergency_uses: int = 0,
) -> WithdrawalDecision:
    """Decide whether ``goal`` may be withdrawn at ``now``.

    ``prior_emergency_uses`` is the owner's emergency count across every goal
    and only matters for :class:`GlobalCapPolicy`. The input goal is left
    untouched; the accepted state is returned on the decision.
    """

    if goal.status is GoalStatus.WITHDRAWN:
        raise AlreadyWithdrawnError(f"goal '{goal.label}' was already withdrawn.")

    if is_unlocked(goal, now):
        return WithdrawalDecision(
            kind=WithdrawalKind.UNLOCKED,
            goal=goal.copy(status=GoalStatus.WITHDRAWN),
        )

    if not goal.emergency_allowed:
        raise EmergencyNotAllowedError(
            f"goal '{goal.label}' is locked until {goal.lock_until.isoformat()} "
            "and does not allow emergency withdrawals."
        )

    new_count = goal.withdraw_count + 1
    penalty = policy.emergency_penalty(goal, new_count, prior_emergency_uses)
    return WithdrawalDecision(
        kind=WithdrawalKind.EMERGENCY,
        penalty=penalty,
        goal=goal.copy(
            status=GoalStatus.WITHDRAWN,
            withdraw_count=new_count,
            penalty_amount=goal.penalty_amount + penalty,
        ),
    )


__all__ = [
    "GlobalCapPolicy",
    "PenaltyPolicy",
    "WithdrawalPolicy",
    "evaluate_withdrawal",
    "is_unlocked",
]
