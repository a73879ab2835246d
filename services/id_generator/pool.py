"""Round-robin selection over a fixed set of counter backends.

Backends cannot be added or removed once the pool exists; build a new pool
instead. Failover is handled by the generator re-selecting on every attempt,
so a dead node only costs the attempt that landed on it.
"""

import threading
from collections.abc import Iterable
from typing import Generic, TypeVar

from services.id_generator.backend import AtomicSequenceBackend
from services.id_generator.exceptions import EmptyPoolError

__all__ = ["RoundRobinBackendPool"]

B = TypeVar("B", bound=AtomicSequenceBackend)


class RoundRobinBackendPool(Generic[B]):
    """Thread-safe round-robin pool of backends."""

    def __init__(self, backends: Iterable[B]):
        self._backends: tuple[B, ...] = tuple(backends)
        if not self._backends:
            raise EmptyPoolError("A backend pool needs at least one backend")

        self._cursor = 0
        self._lock = threading.Lock()

    def next(self) -> B:
        """Return the next backend, wrapping to the first after the last."""
        with self._lock:
            backend = self._backends[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._backends)
        return backend

    @property
    def backends(self) -> tuple[B, ...]:
        return self._backends

    def __len__(self) -> int:
        return len(self._backends)
