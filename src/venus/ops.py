"""Operational utilities for Venus."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from .exceptions import StoreUnavailableError
from .models import utcnow
from .store import Backend


class StructuredLogger:
    """Write JSON lines log entries for store and auth events."""

    def __init__(self, *, path: Path | None = None, keep: int = 500) -> None:
        self.path = path
        self._keep = keep
        self._entries: list[dict] = []
        self._lock = threading.Lock()

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": utcnow().isoformat(), "event": event_type, **fields}
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._keep:
                del self._entries[: len(self._entries) - self._keep]
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])

    def events(self, event_type: str) -> tuple[dict, ...]:
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


class HealthMonitor:
    """Aggregate runtime health information for the health endpoint."""

    def __init__(self, backend: Backend, *, policy: Optional[dict] = None) -> None:
        self.backend = backend
        self.policy = policy or {}
        self.started_at = utcnow()

    def status(self) -> Dict[str, object]:
        try:
            online = self.backend.ping()
        except StoreUnavailableError:
            online = False
        return {
            "status": "ok" if online else "degraded",
            "message": "savings backend is running." if online else "savings store is unreachable.",
            "store": {"backend": self.backend.name, "online": online},
            "withdrawPolicy": dict(self.policy),
            "uptimeSeconds": self.uptime_seconds(),
        }

    def uptime_seconds(self) -> int:
        return int((utcnow() - self.started_at).total_seconds())


__all__ = ["HealthMonitor", "StructuredLogger"]
