"""Bit packing of (timestamp, logical shard id, sequence) into a 63-bit ID.

With the default layout an ID looks like::

    ABBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBCCCCCCCCCCDDDDDDDDDDDD

    A  unset sign bit of a 64-bit word, kept for signed-integer interop
    B  milliseconds since the custom epoch, 41 bits (~69 years)
    C  logical shard id, 10 bits
    D  sequence, 12 bits

``encode`` does no range checking. Callers validate the shard id and sequence
against ``bounds(config)`` first, otherwise bits from one field bleed into
another and IDs can collide.
"""

from services.id_generator.models import DecodedId, GeneratorConfig, IdBounds

__all__ = ["MIN_LOGICAL_SHARD_ID", "bounds", "encode", "decode"]

MIN_LOGICAL_SHARD_ID = 1


def _mask(bits: int) -> int:
    return ~(-1 << bits)


def bounds(config: GeneratorConfig) -> IdBounds:
    """Return the largest sequence and the valid shard id range for ``config``."""
    return IdBounds(
        max_sequence=_mask(config.sequence_bits),
        min_shard_id=MIN_LOGICAL_SHARD_ID,
        max_shard_id=_mask(config.shard_bits),
    )


def encode(timestamp_millis: int, shard_id: int, sequence: int, config: GeneratorConfig) -> int:
    timestamp_shift = config.shard_bits + config.sequence_bits
    return (
        ((timestamp_millis - config.custom_epoch_millis) << timestamp_shift)
        | (shard_id << config.sequence_bits)
        | sequence
    )


def decode(value: int, config: GeneratorConfig) -> DecodedId:
    """Unpack an ID produced by ``encode`` with the same config."""
    timestamp_shift = config.shard_bits + config.sequence_bits
    return DecodedId(
        timestamp_millis=(value >> timestamp_shift) + config.custom_epoch_millis,
        shard_id=(value >> config.sequence_bits) & _mask(config.shard_bits),
        sequence=value & _mask(config.sequence_bits),
    )
