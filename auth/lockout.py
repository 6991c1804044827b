"""
auth/lockout.py -- Failed-login attempt bookkeeping for the local authenticator.

An AttemptStore maps a normalized email to its LoginAttempt. The policy
(thresholds, windows) lives in auth/local.py; this module only stores state.

InMemoryAttemptStore is process-local: counters reset on restart and are not
shared between instances. A deployment with several instances supplies its
own AttemptStore backed by shared storage.

Layer rule: no imports from api/, rfq/, or notify/.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class LoginAttempt:
    count: int = 0
    last_attempt: float = 0.0  # epoch seconds
    locked_until: float | None = None  # epoch seconds


def _copy(attempt: LoginAttempt) -> LoginAttempt:
    # Callers never hold a reference to shared state.
    return LoginAttempt(attempt.count, attempt.last_attempt, attempt.locked_until)


class AttemptStore(ABC):
    @abstractmethod
    def get(self, email: str) -> LoginAttempt | None: ...

    @abstractmethod
    def record_failure(self, email: str, now: float, max_attempts: int, lockout_seconds: float) -> LoginAttempt:
        """Count one failure atomically and lock once max_attempts is reached.

        Returns a copy of the updated record. An existing lock is never extended.
        """

    @abstractmethod
    def clear(self, email: str) -> None: ...

    @abstractmethod
    def reset(self) -> None:
        """Drop every record (test isolation, operator reset)."""


class InMemoryAttemptStore(AttemptStore):
    """Dict-backed store guarded by a lock.

    FastAPI runs sync route handlers on a thread pool, so several logins can
    touch the dict at once. Every read-modify-write happens under the lock, so
    simultaneous failures for the same email are each counted.
    """

    def __init__(self) -> None:
        self._attempts: dict[str, LoginAttempt] = {}
        self._lock = threading.Lock()

    def get(self, email: str) -> LoginAttempt | None:
        with self._lock:
            attempt = self._attempts.get(email)
            return _copy(attempt) if attempt else None

    def record_failure(self, email: str, now: float, max_attempts: int, lockout_seconds: float) -> LoginAttempt:
        with self._lock:
            attempt = self._attempts.setdefault(email, LoginAttempt())
            attempt.count += 1
            attempt.last_attempt = now
            if attempt.count >= max_attempts and attempt.locked_until is None:
                attempt.locked_until = now + lockout_seconds
            return _copy(attempt)

    def clear(self, email: str) -> None:
        with self._lock:
            self._attempts.pop(email, None)

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()
