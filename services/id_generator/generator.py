"""ID generator backed by a pool of atomic sequence backends.

IDs are k-ordered: each one carries the issuing backend's clock in
milliseconds, that backend's logical shard id and a per-shard sequence, so
IDs minted by many processes stay unique and sort by time within clock skew.
The backends act as the time oracle, so their clocks must be kept in sync.

Flow Diagram — generate_batch()
===============================
::
    ┌─────────────┐
    │ Validate    │──── out of range ───▶ InvalidBatchSizeError
    │ batch size  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ pool.next() │◀──────────────────────────────┐
    └──────┬──────┘                               │
           ▼                                      │
    ┌─────────────┐  NOT_INSTALLED  ┌──────────┐  │
    │ allocate()  │────────────────▶│ install  │  │
    └──────┬──────┘                 │ + retry  │  │
           │◀───────────────────────┴──────────┘  │
           ▼                                      │
    ┌─────────────┐                               │
    │ Validate    │──── bad shard ───▶ InvalidLogicalShardIdError
    │ response    │                               │
    └──────┬──────┘                               │
    OK?    │                                      │
    ┌──────┴──────┐                               │
    │ YES          │ NO (transient)               │
    ▼              ▼                              │
┌─────────┐  ┌─────────────────┐                  │
│ Encode  │  │ sleep attempt²  │──── attempts ────┘
│ IDs     │  │ time units      │     left
└─────────┘  └────────┬────────┘
                      ▼ attempts exhausted
                 return None

How to Use
===========
**Step 1 — Build a pool and a generator**::
    pool = build_pool_from_servers(["redis-a:6379", "redis-b:6379"])
    generator = IdGenerator(pool, GeneratorConfig(custom_epoch_millis=1455788600316))

**Step 2 — Generate IDs**::
    one = generator.generate_one()
    batch = generator.generate_batch(100)
    if batch is None:
        # No backend could allocate right now; escalate or try later.
        ...

Key Behaviours
===============
- The allocation script is read once at construction and addressed by its SHA-1.
- A missing script is installed and the allocation retried once within the
  same attempt.
- Network errors, timeouts and malformed responses are retried on the next
  backend after sleeping ``attempt ** 2`` time units (0, 1, 4, 9, ...).
- Invalid batch sizes and out-of-bounds shard ids raise immediately and are
  never retried.
- Exhaustion returns ``None`` rather than raising.
- A backend may grant fewer IDs than requested; the batch is never padded.

Classes:
    IdGenerator:  Public entry point for generating IDs.
    TransientFailure:  A failed attempt that is worth retrying.
"""

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from prometheus_client import Counter, Histogram

from common.enums import AttemptOutcome
from common.logger import setup_logger
from services.id_generator import codec
from services.id_generator.backend import AtomicSequenceBackend
from services.id_generator.exceptions import (
    InvalidBatchSizeError,
    InvalidLogicalShardIdError,
    MalformedResponseError,
    ScriptLoadError,
)
from services.id_generator.models import (
    NOT_INSTALLED,
    AllocationResponse,
    GeneratorConfig,
    Id,
    IdBounds,
    NotInstalled,
)
from services.id_generator.pool import RoundRobinBackendPool

__all__ = ["IdGenerator", "TransientFailure", "DEFAULT_SCRIPT_PATH", "load_script"]


# ============================================================================
# CONSTANTS
# ============================================================================

DEFAULT_SCRIPT_PATH = Path(__file__).parent / "scripts" / "id_generation.lua"


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

ALLOCATION_ATTEMPTS_TOTAL = Counter(
    "idgen_allocation_attempts_total",
    "Allocation attempts against counter backends",
    ["outcome"],
)
IDS_GENERATED_TOTAL = Counter(
    "idgen_ids_generated_total",
    "Total IDs generated",
)
SCRIPT_INSTALLS_TOTAL = Counter(
    "idgen_script_installs_total",
    "Times the allocation script was installed on a backend",
)
GENERATION_EXHAUSTED_TOTAL = Counter(
    "idgen_generation_exhausted_total",
    "generate_batch calls that ran out of attempts",
)
GENERATION_DURATION = Histogram(
    "idgen_generation_duration_seconds",
    "Time taken to generate a batch of IDs, retries included",
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class TransientFailure:
    """A failed attempt that is worth retrying on the next backend."""

    reason: str
    error: Exception | None = None


AttemptResult = AllocationResponse | NotInstalled | TransientFailure


def load_script(path: Path = DEFAULT_SCRIPT_PATH) -> str:
    """Read the allocation script.

    Raises:
        ScriptLoadError: If the file cannot be read
    """
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise ScriptLoadError(f"Could not load the ID allocation script from {path}") from e


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class IdGenerator:
    """Generates k-ordered 63-bit IDs using a round-robin pool of backends.

    Safe to share between threads. The only shared mutable state is the pool
    cursor; backoff sleeps block the calling thread only.

    Example:
        >>> generator = IdGenerator(pool, GeneratorConfig())
        >>> generated = generator.generate_one()
        >>> generated.value if generated else None
    """

    def __init__(
        self,
        pool: RoundRobinBackendPool,
        config: GeneratorConfig | None = None,
        *,
        script_source: str | None = None,
        script_path: Path = DEFAULT_SCRIPT_PATH,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ):
        """Initialize the generator.

        Args:
            pool: Backends to allocate from, used in round-robin order
            config: ID layout and retry policy, defaults to ``GeneratorConfig()``
            script_source: Allocation script text, read from ``script_path`` when omitted
            script_path: Where to read the allocation script from
            sleep: Function used for backoff, ``time.sleep`` by default
            logger: Logger to use, a shared "id-generator" logger by default

        Raises:
            ScriptLoadError: If the allocation script cannot be read
        """
        self._pool = pool
        self._config = config or GeneratorConfig()
        self._bounds = codec.bounds(self._config)
        self._sleep = sleep
        self._logger = logger or setup_logger("id-generator")

        self._script = script_source if script_source is not None else load_script(script_path)
        self._script_sha = hashlib.sha1(self._script.encode("utf-8")).hexdigest()

    @property
    def config(self) -> GeneratorConfig:
        return self._config

    @property
    def bounds(self) -> IdBounds:
        return self._bounds

    @property
    def script_sha(self) -> str:
        return self._script_sha

    @property
    def pool(self) -> RoundRobinBackendPool:
        return self._pool

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    def generate_one(self) -> Id | None:
        """Generate a single ID, or return None if every attempt failed."""
        ids = self.generate_batch(1)
        if not ids:
            return None
        return ids[0]

    def generate_batch(self, batch_size: int | None = None) -> list[Id] | None:
        """Generate up to ``batch_size`` IDs from a single backend allocation.

        Args:
            batch_size: IDs wanted, between 1 and ``max_sequence + 1``. Defaults to
                the maximum. The backend may grant fewer.

        Returns:
            list[Id] | None: IDs in sequence order, or None if every attempt failed

        Raises:
            InvalidBatchSizeError: If ``batch_size`` is out of range
            InvalidLogicalShardIdError: If a backend reports an unusable shard id
        """
        if batch_size is None:
            batch_size = self._bounds.max_batch_size
        self._validate_batch_size(batch_size)

        start_time = time.perf_counter()
        max_attempts = self._config.max_attempts

        for attempt in range(max_attempts):
            backend = self._pool.next()
            result = self._allocate_with_install(backend, batch_size)

            if isinstance(result, AllocationResponse):
                try:
                    ids = self._encode_response(result, batch_size)
                except MalformedResponseError as e:
                    result = TransientFailure(reason=str(e), error=e)
                else:
                    ALLOCATION_ATTEMPTS_TOTAL.labels(outcome=AttemptOutcome.SUCCESS).inc()
                    IDS_GENERATED_TOTAL.inc(len(ids))
                    GENERATION_DURATION.observe(time.perf_counter() - start_time)
                    return ids

            ALLOCATION_ATTEMPTS_TOTAL.labels(outcome=self._outcome_of(result)).inc()
            self._logger.warning(
                f"Failed to generate IDs on attempt {attempt + 1}/{max_attempts} using {backend!r}: "
                f"{self._describe(result)}"
            )

            # Back off quadratically: 0, 1, 4, 9, 16, ... time units.
            if attempt < max_attempts - 1:
                self._sleep(attempt * attempt * self._config.backoff_unit_seconds)

        GENERATION_EXHAUSTED_TOTAL.inc()
        self._logger.error(f"No ID generated. ID generation failed after {max_attempts} attempts.")
        return None

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def _validate_batch_size(self, batch_size: int) -> None:
        max_batch_size = self._bounds.max_batch_size
        if isinstance(batch_size, bool) or not isinstance(batch_size, int):
            raise InvalidBatchSizeError(f"Batch size must be an integer, got {batch_size!r}")
        if batch_size < 1 or batch_size > max_batch_size:
            raise InvalidBatchSizeError(
                f"Batch size {batch_size} is not between 1 and the maximum of {max_batch_size}"
            )

    def _allocate(self, backend: AtomicSequenceBackend, batch_size: int) -> AllocationResponse | NotInstalled:
        return backend.allocate(
            self._script_sha,
            self._bounds.max_sequence,
            self._bounds.min_shard_id,
            self._bounds.max_shard_id,
            batch_size,
        )

    def _allocate_with_install(self, backend: AtomicSequenceBackend, batch_size: int) -> AttemptResult:
        """Allocate on ``backend``, installing the script and retrying once if it is missing.

        Backend exceptions never escape; they come back as ``TransientFailure``.
        """
        try:
            result = self._allocate(backend, batch_size)
            if result is NOT_INSTALLED:
                self._install_script(backend)
                result = self._allocate(backend, batch_size)
        except Exception as e:
            return TransientFailure(reason=f"{type(e).__name__}: {e}", error=e)

        return result

    def _install_script(self, backend: AtomicSequenceBackend) -> None:
        self._logger.info(f"Allocation script {self._script_sha} not resident on {backend!r}, installing it")
        installed_sha = backend.install_script(self._script)
        SCRIPT_INSTALLS_TOTAL.inc()
        if installed_sha and installed_sha != self._script_sha:
            self._logger.warning(
                f"Backend {backend!r} reported script SHA {installed_sha}, expected {self._script_sha}"
            )

    def _encode_response(self, response: AllocationResponse, batch_size: int) -> list[Id]:
        self._validate_logical_shard_id(response.logical_shard_id)

        max_sequence = self._bounds.max_sequence
        if response.end_sequence > max_sequence:
            raise MalformedResponseError(
                f"End sequence {response.end_sequence} is greater than the maximum of {max_sequence}"
            )
        if response.size > batch_size:
            raise MalformedResponseError(
                f"Backend granted {response.size} sequences but only {batch_size} were asked for"
            )

        timestamp_millis = response.timestamp_millis
        elapsed_millis = timestamp_millis - self._config.custom_epoch_millis
        max_elapsed_millis = (1 << self._config.timestamp_bits) - 1
        if elapsed_millis < 0 or elapsed_millis > max_elapsed_millis:
            raise MalformedResponseError(
                f"Backend time {timestamp_millis} ms is outside the encodable range "
                f"[{self._config.custom_epoch_millis}, {self._config.custom_epoch_millis + max_elapsed_millis}]"
            )

        return [
            Id(
                value=codec.encode(timestamp_millis, response.logical_shard_id, sequence, self._config),
                timestamp_millis=timestamp_millis,
            )
            for sequence in range(response.start_sequence, response.end_sequence + 1)
        ]

    def _validate_logical_shard_id(self, logical_shard_id: int) -> None:
        """Reject shard ids outside the configured bounds.

        Encoding such an id would shift bits into the timestamp field and could
        collide with IDs from another shard, so this aborts the whole call.
        """
        if logical_shard_id < self._bounds.min_shard_id or logical_shard_id > self._bounds.max_shard_id:
            ALLOCATION_ATTEMPTS_TOTAL.labels(outcome=AttemptOutcome.INVALID_SHARD).inc()
            error = InvalidLogicalShardIdError(
                logical_shard_id, self._bounds.min_shard_id, self._bounds.max_shard_id
            )
            self._logger.error(f"Backend misconfiguration: {error}")
            raise error

    @staticmethod
    def _outcome_of(result: AttemptResult) -> AttemptOutcome:
        if result is NOT_INSTALLED:
            return AttemptOutcome.NOT_INSTALLED
        return AttemptOutcome.TRANSIENT_ERROR

    @staticmethod
    def _describe(result: AttemptResult) -> str:
        if isinstance(result, TransientFailure):
            return result.reason
        return "allocation script still not installed after installing it"
