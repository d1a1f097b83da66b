"""Per-user accounting of files in flight."""

from __future__ import annotations

import threading
from typing import Protocol

from study_grounding.core.errors import ConcurrencyLimitExceeded


class ConcurrencyCounter(Protocol):
    def acquire(self, user_id: str, count: int) -> None:  # pragma: no cover - interface
        ...

    def release(self, user_id: str, count: int) -> None:  # pragma: no cover - interface
        ...

    def current(self, user_id: str) -> int:  # pragma: no cover - interface
        ...


class InMemoryConcurrencyCounter:
    """Process-wide counts keyed by user id. Not durable across restarts."""

    def __init__(self, limit: int = 3) -> None:
        self.limit = limit
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def acquire(self, user_id: str, count: int) -> None:
        """Reserve ``count`` slots or raise :class:`ConcurrencyLimitExceeded`."""
        with self._lock:
            current = self._counts.get(user_id, 0)
            if current + count > self.limit:
                raise ConcurrencyLimitExceeded(self.limit, current + count)
            self._counts[user_id] = current + count

    def release(self, user_id: str, count: int) -> None:
        with self._lock:
            remaining = self._counts.get(user_id, 0) - count
            if remaining > 0:
                self._counts[user_id] = remaining
            else:
                self._counts.pop(user_id, None)

    def current(self, user_id: str) -> int:
        with self._lock:
            return self._counts.get(user_id, 0)


__all__ = ["ConcurrencyCounter", "InMemoryConcurrencyCounter"]
