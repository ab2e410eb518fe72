"""Process-wide mutual exclusion for mutations that touch shared capacity."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

T = TypeVar("T")


class ExclusiveAccess:
    """Token proving the holder is inside the serializer's critical section."""

    def __init__(self, owner: MutationSerializer):
        self.owner = owner
        self.released = False


class MutationSerializer:
    """Allows at most one provider mutation at a time.

    Usage:
        with serializer.exclusive():
            gateway.attach_ip(ip_id, server_id)

    Reads never go through the serializer. Callers hold it for one
    mutating step only, so concurrent reconciliations interleave call by
    call.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @contextmanager
    def exclusive(self) -> Iterator[ExclusiveAccess]:
        self._lock.acquire()
        token = ExclusiveAccess(self)
        try:
            yield token
        finally:
            token.released = True
            self._lock.release()

    def run(self, block: Callable[[], T]) -> T:
        """Execute ``block`` while holding exclusive access."""
        with self.exclusive():
            return block()

    def locked(self) -> bool:
        return self._lock.locked()
