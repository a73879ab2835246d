"""Unit tests for ID bit packing."""

from services.id_generator import codec
from services.id_generator.models import GeneratorConfig

EPOCH = 1455788600316


def test_default_bounds() -> None:
    bounds = codec.bounds(GeneratorConfig())
    assert bounds.max_sequence == 4095
    assert bounds.min_shard_id == 1
    assert bounds.max_shard_id == 1023
    assert bounds.max_batch_size == 4096


def test_bounds_follow_custom_layout() -> None:
    bounds = codec.bounds(GeneratorConfig(timestamp_bits=43, shard_bits=12, sequence_bits=8))
    assert bounds.max_sequence == 255
    assert bounds.max_shard_id == 4095
    assert bounds.min_shard_id == 1


def test_encode_worked_example() -> None:
    config = GeneratorConfig(custom_epoch_millis=EPOCH)
    value = codec.encode(1455788601500, 3, 0, config)
    assert value == (1184 << 22) | (3 << 12)
    assert value == 4966068224


def test_decode_recovers_fields() -> None:
    config = GeneratorConfig(custom_epoch_millis=EPOCH)
    decoded = codec.decode(codec.encode(1455788601500, 1023, 4095, config), config)
    assert decoded.timestamp_millis == 1455788601500
    assert decoded.shard_id == 1023
    assert decoded.sequence == 4095


def test_largest_id_fits_in_63_bits() -> None:
    config = GeneratorConfig(custom_epoch_millis=EPOCH)
    bounds = codec.bounds(config)
    latest_timestamp = EPOCH + (1 << config.timestamp_bits) - 1

    value = codec.encode(latest_timestamp, bounds.max_shard_id, bounds.max_sequence, config)

    assert value == (1 << 63) - 1
    assert value.bit_length() == 63


def test_fields_do_not_overlap() -> None:
    config = GeneratorConfig(custom_epoch_millis=EPOCH)
    shard_only = codec.encode(EPOCH, 1, 0, config)
    sequence_only = codec.encode(EPOCH, 0, 1, config)
    timestamp_only = codec.encode(EPOCH + 1, 0, 0, config)
    assert shard_only & sequence_only == 0
    assert shard_only & timestamp_only == 0
    assert timestamp_only & sequence_only == 0
