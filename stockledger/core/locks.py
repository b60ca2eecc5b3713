from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Iterator

from stockledger.core.errors import LedgerBusyError


@dataclass
class _KeyState:
    lock: Lock = field(default_factory=Lock)
    holders: int = 0


class KeyedLockRegistry:
    """
    One mutex per key, created on demand and dropped once nobody holds or waits on it.
    Distinct keys never contend with each other.
    """

    def __init__(self, *, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        self._states: dict[str, _KeyState] = {}
        self._lock = Lock()

    @contextmanager
    def hold(self, key: str, *, timeout_seconds: float | None = None) -> Iterator[None]:
        timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        with self._lock:
            state = self._states.setdefault(key, _KeyState())
            state.holders += 1

        acquired = state.lock.acquire(timeout=timeout)
        try:
            if not acquired:
                raise LedgerBusyError(
                    f"Timed out after {timeout}s waiting for ledger lock on {key}",
                    key=key,
                )
            yield
        finally:
            if acquired:
                state.lock.release()
            self._release(key, state)

    def active_keys(self) -> int:
        with self._lock:
            return len(self._states)

    def _release(self, key: str, state: _KeyState) -> None:
        with self._lock:
            state.holders -= 1
            if state.holders <= 0 and self._states.get(key) is state:
                del self._states[key]
