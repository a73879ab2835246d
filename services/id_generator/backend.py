"""Protocol for the atomic sequence backends the generator talks to.

One backend is one counter-service node. It must run the allocation script as
a single atomic operation, so two concurrent callers never receive overlapping
``(sequence, time bucket, shard id)`` triples. The script:

1. Reads the node's own logical shard id (0 when unset).
2. Reads the node's own clock as seconds and microseconds.
3. Advances the node's sequence counter by the batch size, wrapping at
   ``max_sequence``, and returns the inclusive range actually granted.

Usage:
    backend = RedisSequenceBackend.from_host_and_port("localhost:6379")
    sha = backend.install_script(source)
    result = backend.allocate(sha, 4095, 1, 1023, 10)
"""

from typing import Protocol, runtime_checkable

from services.id_generator.models import AllocationResult

__all__ = ["AtomicSequenceBackend"]


@runtime_checkable
class AtomicSequenceBackend(Protocol):
    """Abstract counter backend. Implementations handle the actual network calls."""

    def install_script(self, source: str) -> str:
        """Register the allocation script and return its SHA-1 hex digest.

        Calling this when the script is already installed is not an error.
        """
        ...

    def allocate(
        self,
        script_sha: str,
        max_sequence: int,
        min_shard_id: int,
        max_shard_id: int,
        batch_size: int,
    ) -> AllocationResult:
        """Run the allocation script addressed by ``script_sha``.

        Returns ``NOT_INSTALLED`` if the node does not have the script resident.
        Any exception raised is treated by the generator as a transient failure.
        """
        ...
