"""Non-reentrancy lock for pool entry points."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from indexpool.errors import ReentrantCall


class ReentrancyGuard:
    """Boolean mutex held for the duration of a mutating call.

    Views check the same flag so that callbacks cannot observe a pool in the
    middle of an update.
    """

    def __init__(self) -> None:
        self._locked = False

    @property
    def locked(self) -> bool:
        return self._locked

    @contextmanager
    def lock(self, operation: str) -> Iterator[None]:
        if self._locked:
            raise ReentrantCall(f"Reentrant call to {operation}")
        self._locked = True
        try:
            yield
        finally:
            self._locked = False

    def check_view(self, operation: str) -> None:
        if self._locked:
            raise ReentrantCall(f"View {operation} called during a pool update")
