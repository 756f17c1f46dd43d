"""Bounded per-user behaviour log."""

from __future__ import annotations

import logging
import threading
from collections import deque

from recommendations.models import UserBehavior

logger = logging.getLogger(__name__)


class BehaviorStore:
    """Append-only, per-user log of :class:`~recommendations.models.UserBehavior`.

    Each user's log holds at most *max_events_per_user* events; appending
    beyond that drops the oldest event first.

    Writers for the same user are serialised through :meth:`user_lock`,
    which callers hold across "append, then update derived state" so the
    two steps are atomic per user.  Different users have different locks
    and never contend.

    Args:
        max_events_per_user: Log bound per user. Defaults to 1000.

    Raises:
        ValueError: If *max_events_per_user* is less than 1.
    """

    def __init__(self, max_events_per_user: int = 1000) -> None:
        if max_events_per_user < 1:
            raise ValueError(
                f"max_events_per_user must be at least 1, got {max_events_per_user!r}"
            )
        self._max_events = max_events_per_user
        self._lock = threading.Lock()
        self._logs: dict[str, deque[UserBehavior]] = {}
        self._user_locks: dict[str, threading.RLock] = {}

    @property
    def max_events_per_user(self) -> int:
        return self._max_events

    def user_lock(self, user_id: str) -> threading.RLock:
        """Return the re-entrant lock that serialises writes for *user_id*."""
        with self._lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.RLock()
            return lock

    def record(self, behavior: UserBehavior) -> None:
        """Append *behavior* to its user's log, dropping the oldest if full."""
        with self.user_lock(behavior.user_id):
            with self._lock:
                log = self._logs.get(behavior.user_id)
                if log is None:
                    log = self._logs[behavior.user_id] = deque(maxlen=self._max_events)
            log.append(behavior)
        logger.debug(
            "Recorded %s for user=%r track=%r",
            behavior.action.value,
            behavior.user_id,
            behavior.track_id,
        )

    def get_behaviors(self, user_id: str) -> list[UserBehavior]:
        """Return a snapshot of *user_id*'s log, oldest first."""
        with self.user_lock(user_id):
            log = self._logs.get(user_id)
            return list(log) if log else []

    def count(self, user_id: str) -> int:
        log = self._logs.get(user_id)
        return len(log) if log else 0

    def user_ids(self) -> list[str]:
        with self._lock:
            return list(self._logs)

    def clear(self, user_id: str) -> None:
        """Forget every event recorded for *user_id*."""
        with self.user_lock(user_id):
            with self._lock:
                self._logs.pop(user_id, None)
