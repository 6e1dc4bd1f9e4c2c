"""Storage backends for goals and accounts.

A backend is a dumb keyed store: it knows nothing about validation or
withdrawal rules, but every goal query it offers is scoped by owner and
``replace`` is an atomic compare-and-swap on the goal's ``version``.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .exceptions import DuplicateAccountError, StoreUnavailableError
from .models import Account, Goal


class Backend:
    """Interface shared by the memory, file and SQL backends."""

    name = "abstract"

    # goals -----------------------------------------------------------------
    def add_goal(self, goal: Goal) -> None:
        raise NotImplementedError

    def get_goal(self, owner_id: str, goal_id: str) -> Optional[Goal]:
        raise NotImplementedError

    def list_goals(self, owner_id: str) -> List[Goal]:
        """Return the owner's goals, most recently created first."""

        raise NotImplementedError

    def replace_goal(self, goal: Goal, expected_version: int) -> bool:
        """Store ``goal`` only if the stored copy is still at ``expected_version``."""

        raise NotImplementedError

    def remove_goal(self, owner_id: str, goal_id: str) -> bool:
        raise NotImplementedError

    def remove_goals(self, owner_id: str) -> int:
        raise NotImplementedError

    # accounts --------------------------------------------------------------
    def add_account(self, account: Account) -> None:
        raise NotImplementedError

    def get_account(self, account_id: str) -> Optional[Account]:
        raise NotImplementedError

    def find_account(self, email: str) -> Optional[Account]:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


class MemoryBackend(Backend):
    """Process memory storage; everything is lost on restart."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._goals: Dict[str, Goal] = {}
        self._accounts: Dict[str, Account] = {}

    def add_goal(self, goal: Goal) -> None:
        with self._lock:
            self._goals[goal.id] = goal.copy()
            self._changed()

    def get_goal(self, owner_id: str, goal_id: str) -> Optional[Goal]:
        with self._lock:
            goal = self._goals.get(goal_id)
            if goal is None or goal.owner_id != owner_id:
                return None
            return goal.copy()

    def list_goals(self, owner_id: str) -> List[Goal]:
        with self._lock:
            owned = [goal.copy() for goal in reversed(self._goals.values()) if goal.owner_id == owner_id]
        owned.sort(key=lambda goal: goal.created_at, reverse=True)
        return owned

    def replace_goal(self, goal: Goal, expected_version: int) -> bool:
        with self._lock:
            stored = self._goals.get(goal.id)
            if stored is None or stored.owner_id != goal.owner_id:
                return False
            if stored.version != expected_version:
                return False
            self._goals[goal.id] = goal.copy()
            self._changed()
            return True

    def remove_goal(self, owner_id: str, goal_id: str) -> bool:
        with self._lock:
            stored = self._goals.get(goal_id)
            if stored is None or stored.owner_id != owner_id:
                return False
            del self._goals[goal_id]
            self._changed()
            return True

    def remove_goals(self, owner_id: str) -> int:
        with self._lock:
            doomed = [goal_id for goal_id, goal in self._goals.items() if goal.owner_id == owner_id]
            for goal_id in doomed:
                del self._goals[goal_id]
            if doomed:
                self._changed()
            return len(doomed)

    def add_account(self, account: Account) -> None:
        with self._lock:
            if any(existing.email == account.email for existing in self._accounts.values()):
                raise DuplicateAccountError("this email already has an account.")
            self._accounts[account.id] = account
            self._changed()

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(account_id)

    def find_account(self, email: str) -> Optional[Account]:
        with self._lock:
            for account in self._accounts.values():
                if account.email == email:
                    return account
        return None

    def _changed(self) -> None:
        """Hook called with the lock held after every mutation."""


class FileBackend(MemoryBackend):
    """Single-device JSON file storage, rewritten after every change."""

    name = "file"

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailableError(f"cannot create {self.path.parent}: {exc}") from exc
        self._load()

    def ping(self) -> bool:
        directory = self.path.parent
        return directory.exists() and os.access(directory, os.W_OK)

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            raise StoreUnavailableError(f"cannot read {self.path}: {exc}") from exc
        for raw in payload.get("goals", []):
            goal = goal_from_record(raw)
            self._goals[goal.id] = goal
        for raw in payload.get("accounts", []):
            account = account_from_record(raw)
            self._accounts[account.id] = account

    def _changed(self) -> None:
        payload = {
            "goals": [goal_to_record(goal) for goal in self._goals.values()],
            "accounts": [account_to_record(account) for account in self._accounts.values()],
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(payload, sort_keys=True), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as exc:
            self._goals.clear()
            self._accounts.clear()
            self._load()
            raise StoreUnavailableError(f"cannot write {self.path}: {exc}") from exc


def goal_to_record(goal: Goal) -> Dict[str, Any]:
    return {
        "id": goal.id,
        "owner_id": goal.owner_id,
        "label": goal.label,
        "target_amount": str(goal.target_amount),
        "current_amount": str(goal.current_amount),
        "lock_until": goal.lock_until.isoformat(),
        "status": goal.status.value,
        "emergency_allowed": goal.emergency_allowed,
        "withdraw_count": goal.withdraw_count,
        "penalty_amount": str(goal.penalty_amount),
        "version": goal.version,
        "created_at": goal.created_at.isoformat(),
        "updated_at": goal.updated_at.isoformat(),
    }


def goal_from_record(raw: Dict[str, Any]) -> Goal:
    return Goal(
        id=raw["id"],
        owner_id=raw["owner_id"],
        label=raw["label"],
        target_amount=raw["target_amount"],
        current_amount=raw["current_amount"],
        lock_until=date.fromisoformat(raw["lock_until"]),
        status=raw["status"],
        emergency_allowed=bool(raw["emergency_allowed"]),
        withdraw_count=int(raw["withdraw_count"]),
        penalty_amount=raw["penalty_amount"],
        version=int(raw["version"]),
        created_at=datetime.fromisoformat(raw["created_at"]),
        updated_at=datetime.fromisoformat(raw["updated_at"]),
    )


def account_to_record(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "email": account.email,
        "password_hash": account.password_hash,
        "created_at": account.created_at.isoformat(),
    }


def account_from_record(raw: Dict[str, Any]) -> Account:
    return Account(
        id=raw["id"],
        email=raw["email"],
        password_hash=raw["password_hash"],
        created_at=datetime.fromisoformat(raw["created_at"]),
    )


__all__ = [
    "Backend",
    "FileBackend",
    "MemoryBackend",
    "account_from_record",
    "account_to_record",
    "goal_from_record",
    "goal_to_record",
]
