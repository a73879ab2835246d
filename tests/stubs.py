"""In-process counter backends used in place of Redis in unit tests."""

import hashlib
import threading
import time
from collections import deque
from collections.abc import Iterable

from services.id_generator.models import NOT_INSTALLED, AllocationResponse, AllocationResult

WORKED_EXAMPLE_EPOCH_MILLIS = 1455788600316


def make_response(
    start: int = 0,
    end: int = 0,
    shard: int = 3,
    seconds: int = 1455788601,
    micros: int = 500000,
) -> AllocationResponse:
    return AllocationResponse(
        start_sequence=start,
        end_sequence=end,
        logical_shard_id=shard,
        time_seconds=seconds,
        time_microseconds=micros,
    )


class StubBackend:
    """Backend that replays scripted results.

    Each scripted item is returned once, in order; exceptions are raised. When the
    script runs out, ``default`` is used, and a ``default`` of None means "down".
    """

    def __init__(
        self,
        name: str = "stub",
        responses: Iterable[AllocationResult | Exception] = (),
        default: AllocationResult | None = None,
        installed: bool = True,
        healthy: bool = True,
    ):
        self.name = name
        self.installed = installed
        self.healthy = healthy
        self.allocate_calls: list[tuple] = []
        self.installed_sources: list[str] = []
        self.closed = False
        self._responses = deque(responses)
        self._default = default

    def install_script(self, source: str) -> str:
        self.installed_sources.append(source)
        self.installed = True
        return hashlib.sha1(source.encode("utf-8")).hexdigest()

    def allocate(self, script_sha, max_sequence, min_shard_id, max_shard_id, batch_size) -> AllocationResult:
        self.allocate_calls.append((script_sha, max_sequence, min_shard_id, max_shard_id, batch_size))
        if not self.installed:
            return NOT_INSTALLED

        result = self._responses.popleft() if self._responses else self._default
        if result is None:
            raise ConnectionError(f"{self.name} is down")
        if isinstance(result, Exception):
            raise result
        return result

    def ping(self) -> bool:
        return self.healthy

    def close(self) -> None:
        self.closed = True

    def __repr__(self) -> str:
        return f"StubBackend({self.name})"


class InMemorySequenceBackend(StubBackend):
    """Backend that allocates like the Lua script does, against a local counter."""

    def __init__(self, name: str = "memory", shard: int = 1):
        super().__init__(name=name)
        self.shard = shard
        self._sequence = -1
        self._lock = threading.Lock()

    def allocate(self, script_sha, max_sequence, min_shard_id, max_shard_id, batch_size) -> AllocationResult:
        with self._lock:
            self.allocate_calls.append((script_sha, max_sequence, min_shard_id, max_shard_id, batch_size))
            end = self._sequence + batch_size
            start = end - batch_size + 1
            if end >= max_sequence:
                self._sequence = -1
                end = max_sequence
            else:
                self._sequence = end
            now = time.time()

        return make_response(
            start=start,
            end=end,
            shard=self.shard,
            seconds=int(now),
            micros=int((now % 1) * 1_000_000),
        )
