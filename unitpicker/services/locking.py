"""Keyed mutual exclusion for the allocation engine."""

from __future__ import annotations

from contextlib import contextmanager
from threading import Condition
from typing import Iterator, Optional


class LockTimeoutError(Exception):
    """Raised when keys could not be acquired within the timeout."""


class KeyedLockRegistry:
    """Serializes work per key while letting unrelated keys run in parallel.

    ``hold`` acquires a set of keys atomically (all or none), so callers that
    need several keys never deadlock on acquisition order. ``hold_all`` waits
    for every keyed holder to leave and blocks new ones until it is released;
    pending exclusive requests take priority over new keyed holders.
    """

    def __init__(self, timeout_seconds: Optional[float] = None) -> None:
        self._condition = Condition()
        self._held: set[str] = set()
        self._active_holders = 0
        self._exclusive = False
        self._exclusive_waiting = 0
        self._timeout = timeout_seconds

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        wanted = frozenset(keys)
        with self._condition:
            acquired = self._condition.wait_for(
                lambda: not self._exclusive
                and not self._exclusive_waiting
                and self._held.isdisjoint(wanted),
                timeout=self._timeout,
            )
            if not acquired:
                raise LockTimeoutError(f"Timed out waiting for {sorted(wanted)}")
            self._held.update(wanted)
            self._active_holders += 1
        try:
            yield
        finally:
            with self._condition:
                self._held.difference_update(wanted)
                self._active_holders -= 1
                self._condition.notify_all()

    @contextmanager
    def hold_all(self) -> Iterator[None]:
        with self._condition:
            self._exclusive_waiting += 1
            try:
                acquired = self._condition.wait_for(
                    lambda: not self._exclusive and self._active_holders == 0,
                    timeout=self._timeout,
                )
            finally:
                self._exclusive_waiting -= 1
            if not acquired:
                self._condition.notify_all()
                raise LockTimeoutError("Timed out waiting for exclusive access")
            self._exclusive = True
        try:
            yield
        finally:
            with self._condition:
                self._exclusive = False
                self._condition.notify_all()

    def is_idle(self) -> bool:
        with self._condition:
            return not self._held and not self._exclusive
