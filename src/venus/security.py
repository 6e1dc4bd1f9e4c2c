"""Account registration, password checks and login throttling."""

from __future__ import annotations

import hashlib
import hmac
import re
from collections import deque
from datetime import datetime, timedelta
from secrets import token_hex
from typing import Callable, Deque, Dict, Optional

from .exceptions import AccountLockedError, AuthenticationError, DuplicateAccountError, ValidationError
from .models import Account, utcnow
from .ops import StructuredLogger
from .store import Backend

PASSWORD_SCHEME = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 260_000
MIN_PASSWORD_LENGTH = 6
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def hash_password(password: str, *, salt: str | None = None, iterations: int = PASSWORD_ITERATIONS) -> str:
    salt = salt or token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"{PASSWORD_SCHEME}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations, salt, expected = encoded.split("$")
    except ValueError:
        return False
    if scheme != PASSWORD_SCHEME:
        return False
    candidate = hash_password(password, salt=salt, iterations=int(iterations))
    return hmac.compare_digest(candidate.rsplit("$", 1)[1], expected)


def normalize_email(email: str) -> str:
    return email.strip().lower() if isinstance(email, str) else ""


class AuthManager:
    """Register accounts and authenticate them, with lockout after repeated failures."""

    def __init__(
        self,
        backend: Backend,
        *,
        logger: StructuredLogger | None = None,
        max_attempts: int = 5,
        lockout_minutes: int = 15,
        iterations: int = PASSWORD_ITERATIONS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend
        self._logger = logger or StructuredLogger()
        self._max_attempts = max_attempts
        self._lockout_window = timedelta(minutes=lockout_minutes)
        self._iterations = iterations
        self._clock = clock
        self._login_attempts: Dict[str, Deque[datetime]] = {}

    # ------------------------------------------------------------------
    # Account lifecycle
    # ------------------------------------------------------------------
    def register(self, email: str, password: str) -> Account:
        address = normalize_email(email)
        if not address or not isinstance(password, str) or not password:
            raise ValidationError("please enter an email and password.")
        if not _EMAIL_RE.match(address):
            raise ValidationError("please enter a valid email address.")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters.")
        if self._backend.find_account(address) is not None:
            raise DuplicateAccountError("this email already has an account.")
        account = Account(email=address, password_hash=hash_password(password, iterations=self._iterations))
        self._backend.add_account(account)
        self._logger.log("account_registered", owner_id=account.id)
        return account

    def authenticate(self, email: str, password: str) -> Account:
        """Return the account for valid credentials or raise :class:`AuthenticationError`."""

        address = normalize_email(email)
        if not address or not isinstance(password, str) or not password:
            raise ValidationError("please enter an email and password.")
        if self.is_locked(address):
            self._logger.log("login_blocked", email=address)
            raise AccountLockedError("too many failed logins, try again later.")
        account = self._backend.find_account(address)
        if account is None or not verify_password(password, account.password_hash):
            self._record_attempt(address, success=False)
            self._logger.log("login_failed", email=address)
            raise AuthenticationError("email or password is wrong.")
        self._record_attempt(address, success=True)
        self._logger.log("login_succeeded", owner_id=account.id)
        return account

    def resolve(self, owner_id: Optional[str]) -> Account:
        """Map a session's owner id back to a live account."""

        if not owner_id:
            raise AuthenticationError("please log in first.")
        account = self._backend.get_account(owner_id)
        if account is None:
            raise AuthenticationError("your session is no longer valid, please log in again.")
        return account

    # ------------------------------------------------------------------
    # Rate limiting helpers
    # ------------------------------------------------------------------
    def is_locked(self, email: str) -> bool:
        """Return ``True`` when ``email`` is currently locked out."""

        now = self._clock()
        bucket = self._login_attempts.get(normalize_email(email))
        if not bucket:
            return False
        self._prune(bucket, now)
        return len(bucket) >= self._max_attempts

    def _record_attempt(self, email: str, *, success: bool) -> None:
        now = self._clock()
        bucket = self._login_attempts.setdefault(email, deque())
        self._prune(bucket, now)
        if success:
            bucket.clear()
            return
        bucket.append(now)

    def _prune(self, bucket: Deque[datetime], now: datetime) -> None:
        while bucket and now - bucket[0] > self._lockout_window:
            bucket.popleft()


__all__ = ["AuthManager", "hash_password", "normalize_email", "verify_password"]
