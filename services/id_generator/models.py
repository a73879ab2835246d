"""Value objects for ID generation.

All types here are immutable once built and safe to share across threads.

Model Hierarchy
================
::
    GeneratorConfig (Input)
    ├─ custom_epoch_millis: int
    ├─ max_attempts: int
    ├─ timestamp_bits / shard_bits / sequence_bits: int (sum to 63)
    └─ backoff_unit_seconds: float

    AllocationResponse (Backend output, parsed by position)
    ├─ start_sequence: int
    ├─ end_sequence: int
    ├─ logical_shard_id: int
    ├─ time_seconds: int
    └─ time_microseconds: int

    Id (Output)
    ├─ value: int (63 significant bits)
    └─ timestamp_millis: int

Classes:
    GeneratorConfig:  Immutable ID layout and retry policy.
    IdBounds:  Sequence and shard limits derived from a config.
    Id:  One generated ID.
    DecodedId:  The fields packed into an ID.
    AllocationResponse:  Result of one atomic allocation on a backend.
    NotInstalled:  Marker returned when the allocation script is not resident.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from services.id_generator.exceptions import InvalidConfigurationError, MalformedResponseError

if TYPE_CHECKING:
    from services.config.config_service import Settings

__all__ = [
    "GeneratorConfig",
    "IdBounds",
    "Id",
    "DecodedId",
    "AllocationResponse",
    "NotInstalled",
    "NOT_INSTALLED",
    "AllocationResult",
    "ID_TOTAL_BITS",
]

DEFAULT_CUSTOM_EPOCH_MILLIS = 1455788600316
DEFAULT_MAX_ATTEMPTS = 5
ONE_MILLI_IN_MICROS = 1000
ONE_SECOND_IN_MILLIS = 1000

# Total significant bits in a generated ID. The sign bit of a 64-bit word is left unset.
ID_TOTAL_BITS = 63

# Position of each field in the list returned by the allocation script.
START_SEQUENCE_INDEX = 0
END_SEQUENCE_INDEX = 1
LOGICAL_SHARD_ID_INDEX = 2
TIME_SECONDS_INDEX = 3
TIME_MICROSECONDS_INDEX = 4
WIRE_FIELD_COUNT = 5


@dataclass(frozen=True)
class GeneratorConfig:
    """Immutable ID layout and retry policy.

    The epoch and bit widths form a contract between deployments. Once IDs have
    been issued they must not change without a migration, or new IDs may collide
    with old ones.
    """

    custom_epoch_millis: int = DEFAULT_CUSTOM_EPOCH_MILLIS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    timestamp_bits: int = 41
    shard_bits: int = 10
    sequence_bits: int = 12
    backoff_unit_seconds: float = 0.001

    def __post_init__(self) -> None:
        widths = (self.timestamp_bits, self.shard_bits, self.sequence_bits)
        if any(width <= 0 for width in widths):
            raise InvalidConfigurationError(f"Bit widths must be positive, got {widths}")
        if sum(widths) != ID_TOTAL_BITS:
            raise InvalidConfigurationError(f"Bit widths must sum to {ID_TOTAL_BITS}, got {sum(widths)}")
        if self.max_attempts < 1:
            raise InvalidConfigurationError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.backoff_unit_seconds < 0:
            raise InvalidConfigurationError("backoff_unit_seconds must not be negative")

    @classmethod
    def from_settings(cls, settings: "Settings") -> "GeneratorConfig":
        return cls(
            custom_epoch_millis=settings.IDGEN_CUSTOM_EPOCH_MILLIS,
            max_attempts=settings.IDGEN_MAX_ATTEMPTS,
            timestamp_bits=settings.IDGEN_TIMESTAMP_BITS,
            shard_bits=settings.IDGEN_SHARD_BITS,
            sequence_bits=settings.IDGEN_SEQUENCE_BITS,
            backoff_unit_seconds=settings.IDGEN_BACKOFF_UNIT_SECONDS,
        )


@dataclass(frozen=True)
class IdBounds:
    """Limits derived from a GeneratorConfig. Shard id 0 means "unset" and is never valid."""

    max_sequence: int
    min_shard_id: int
    max_shard_id: int

    @property
    def max_batch_size(self) -> int:
        return self.max_sequence + 1


@dataclass(frozen=True)
class Id:
    """A generated ID and the backend timestamp (in milliseconds) it encodes."""

    value: int
    timestamp_millis: int

    def __int__(self) -> int:
        return self.value


@dataclass(frozen=True)
class DecodedId:
    timestamp_millis: int
    shard_id: int
    sequence: int


@dataclass(frozen=True)
class AllocationResponse:
    """The result of one atomic allocation on a backend.

    The granted range ``[start_sequence, end_sequence]`` is inclusive and may be
    smaller than the batch size that was asked for.
    """

    start_sequence: int
    end_sequence: int
    logical_shard_id: int
    time_seconds: int
    time_microseconds: int

    @classmethod
    def from_wire(cls, values: Sequence[object] | None) -> "AllocationResponse":
        """Parse the five positional integers returned by the allocation script.

        Raises:
            MalformedResponseError: If the shape or values are not as expected
        """
        if not isinstance(values, (list, tuple)) or len(values) != WIRE_FIELD_COUNT:
            raise MalformedResponseError(f"Expected {WIRE_FIELD_COUNT} integers, got {values!r}")

        try:
            fields = [int(value) for value in values]
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"Non-integer field in allocation response {values!r}") from e

        # The shard id is range checked by the generator so a misprovisioned node is reported as such.
        if any(field < 0 for index, field in enumerate(fields) if index != LOGICAL_SHARD_ID_INDEX):
            raise MalformedResponseError(f"Negative field in allocation response {fields!r}")

        response = cls(
            start_sequence=fields[START_SEQUENCE_INDEX],
            end_sequence=fields[END_SEQUENCE_INDEX],
            logical_shard_id=fields[LOGICAL_SHARD_ID_INDEX],
            time_seconds=fields[TIME_SECONDS_INDEX],
            time_microseconds=fields[TIME_MICROSECONDS_INDEX],
        )
        if response.start_sequence > response.end_sequence:
            raise MalformedResponseError(
                f"Start sequence {response.start_sequence} is after end sequence {response.end_sequence}"
            )
        return response

    @property
    def size(self) -> int:
        """Number of sequence values granted."""
        return self.end_sequence - self.start_sequence + 1

    @property
    def timestamp_millis(self) -> int:
        """Backend clock reading truncated to milliseconds."""
        return self.time_seconds * ONE_SECOND_IN_MILLIS + self.time_microseconds // ONE_MILLI_IN_MICROS


class NotInstalled(Enum):
    """Returned by a backend when the allocation script is not resident. Recoverable."""

    NOT_INSTALLED = "not_installed"


NOT_INSTALLED = NotInstalled.NOT_INSTALLED

AllocationResult = AllocationResponse | NotInstalled
