"""Per-user mutual exclusion for plan generation."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Generator


class PlanBusyError(RuntimeError):
    """Another generation run for the same user is still in progress."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"A plan run for user {user_id} is already in progress.")
        self.user_id = user_id


class UserLockRegistry:
    """One lock per user id, created on first use.

    Locks are never evicted; the registry holds one small object per user
    that has ever generated a plan in this process.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str, timeout: float = 5.0) -> Generator[None, None, None]:
        lock = self._lock_for(user_id)
        if not lock.acquire(timeout=max(timeout, 0.0)):
            raise PlanBusyError(user_id)
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, user_id: str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(user_id)
        return lock is not None and lock.locked()


plan_locks = UserLockRegistry()


__all__ = ["PlanBusyError", "UserLockRegistry", "plan_locks"]
