"""Exceptions raised by the ID generator and its counter backends.

Configuration faults are raised at construction time and mean the generator
must not be used. Validation faults are raised per call and are never retried.
Transient faults are raised by backends and are folded into the retry loop.
"""

__all__ = [
    "IdGenerationError",
    "ScriptLoadError",
    "EmptyPoolError",
    "InvalidConfigurationError",
    "InvalidServerFormatError",
    "InvalidBatchSizeError",
    "InvalidLogicalShardIdError",
    "MalformedResponseError",
]


class IdGenerationError(Exception):
    """Base class for all ID generation errors."""


# Configuration faults


class ScriptLoadError(IdGenerationError):
    """The allocation script could not be read. Generation cannot work without it."""


class EmptyPoolError(IdGenerationError):
    """A backend pool was created without any backends."""


class InvalidConfigurationError(IdGenerationError):
    """The ID layout or retry policy is not usable."""


class InvalidServerFormatError(IdGenerationError):
    """A backend server was not given in the expected "host:port" format."""

    def __init__(self, server: str):
        super().__init__(f"The given redis server is not in the expected format 'host:port': {server}")
        self.server = server


# Validation faults


class InvalidBatchSizeError(IdGenerationError):
    """The requested batch size is outside [1, max_sequence + 1]."""


class InvalidLogicalShardIdError(IdGenerationError):
    """A backend reported a logical shard id that is unset or out of bounds."""

    def __init__(self, shard_id: int, min_shard_id: int, max_shard_id: int):
        super().__init__(
            f"The logical shard ID {shard_id} set on the backend is less than {min_shard_id} "
            f"or is greater than the supported maximum of {max_shard_id}"
        )
        self.shard_id = shard_id


# Transient faults


class MalformedResponseError(IdGenerationError):
    """An allocation response did not have the expected wire shape."""
