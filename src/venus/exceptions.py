"""Custom exception hierarchy for the Venus package."""

from __future__ import annotations


class VenusError(Exception):
    """Base class for all Venus specific errors."""

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.__class__.__doc__ or ""


class ValidationError(VenusError, ValueError):
    """Raised when caller supplied input breaks a goal or account invariant."""


class NotFoundError(VenusError):
    """Raised when a goal does not exist or belongs to another owner."""


GoalNotFoundError = NotFoundError


class WithdrawalRejectedError(VenusError):
    """Base class for rule engine rejections of a withdrawal request."""


class AlreadyWithdrawnError(WithdrawalRejectedError):
    """Raised when the goal has already been withdrawn."""


class EmergencyNotAllowedError(WithdrawalRejectedError):
    """Raised for an early withdrawal on a goal that does not allow emergencies."""


class WithdrawLimitReachedError(WithdrawalRejectedError):
    """Raised when the owner has used up every emergency withdrawal."""


class AuthenticationError(VenusError):
    """Raised when credentials are missing, wrong or expired."""


class AccountLockedError(AuthenticationError):
    """Raised when too many failed logins locked the account temporarily."""


class DuplicateAccountError(VenusError):
    """Raised when registering an email that already has an account."""


class StoreUnavailableError(VenusError):
    """Raised when the backing persistence cannot be reached."""
