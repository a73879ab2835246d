"""Unit tests for the Redis counter backend with a mocked redis client."""

from unittest.mock import MagicMock, patch

import pytest
import redis
from redis.exceptions import NoScriptError

from services.id_generator.exceptions import EmptyPoolError, InvalidServerFormatError, MalformedResponseError
from services.id_generator.models import NOT_INSTALLED, AllocationResponse
from services.redis.redis_sequence_backend import (
    LOGICAL_SHARD_ID_KEY,
    RedisSequenceBackend,
    build_pool_from_servers,
)

SHA = "a" * 40


@pytest.fixture
def mock_redis() -> MagicMock:
    """Mock Redis client."""
    return MagicMock(spec=redis.Redis)


@pytest.fixture
def backend(mock_redis: MagicMock) -> RedisSequenceBackend:
    return RedisSequenceBackend(mock_redis, name="redis-a:6379")


@pytest.mark.parametrize("server", ["localhost", "localhost:", ":6379", "localhost:port", "a:1:2", ""])
def test_invalid_server_format(server: str) -> None:
    with pytest.raises(InvalidServerFormatError) as exc_info:
        RedisSequenceBackend.from_host_and_port(server)
    assert exc_info.value.server == server


def test_from_host_and_port_builds_client() -> None:
    with patch("services.redis.redis_sequence_backend.redis.Redis") as redis_cls:
        backend = RedisSequenceBackend.from_host_and_port("redis-a:6380", socket_timeout=2.5)

    redis_cls.assert_called_once_with(host="redis-a", port=6380, socket_timeout=2.5, socket_connect_timeout=2.5)
    assert backend.client is redis_cls.return_value
    assert repr(backend) == "RedisSequenceBackend(redis-a:6380)"


def test_allocate_runs_script_by_sha(backend: RedisSequenceBackend, mock_redis: MagicMock) -> None:
    mock_redis.evalsha.return_value = [5, 8, 3, 1455788601, 500000]

    result = backend.allocate(SHA, 4095, 1, 1023, 4)

    mock_redis.evalsha.assert_called_once_with(SHA, 0, 4095, 1, 1023, 4)
    assert result == AllocationResponse(
        start_sequence=5,
        end_sequence=8,
        logical_shard_id=3,
        time_seconds=1455788601,
        time_microseconds=500000,
    )


def test_allocate_reports_missing_script(backend: RedisSequenceBackend, mock_redis: MagicMock) -> None:
    mock_redis.evalsha.side_effect = NoScriptError("NOSCRIPT No matching script.")
    assert backend.allocate(SHA, 4095, 1, 1023, 1) is NOT_INSTALLED


@pytest.mark.parametrize(
    "error",
    [
        redis.ConnectionError("refused"),
        redis.TimeoutError("timed out"),
        redis.ResponseError("idgen: cannot allocate, waiting for sequence wrap lock to expire"),
    ],
)
def test_allocate_propagates_other_errors(backend: RedisSequenceBackend, mock_redis: MagicMock, error) -> None:
    mock_redis.evalsha.side_effect = error
    with pytest.raises(type(error)):
        backend.allocate(SHA, 4095, 1, 1023, 1)


def test_allocate_rejects_malformed_reply(backend: RedisSequenceBackend, mock_redis: MagicMock) -> None:
    mock_redis.evalsha.return_value = [1, 2, 3]
    with pytest.raises(MalformedResponseError):
        backend.allocate(SHA, 4095, 1, 1023, 1)


def test_install_script_returns_sha(backend: RedisSequenceBackend, mock_redis: MagicMock) -> None:
    mock_redis.script_load.return_value = SHA.encode("utf-8")

    assert backend.install_script("return 1") == SHA
    mock_redis.script_load.assert_called_once_with("return 1")


def test_logical_shard_id_round_trip(backend: RedisSequenceBackend, mock_redis: MagicMock) -> None:
    backend.set_logical_shard_id(7)
    mock_redis.set.assert_called_once_with(LOGICAL_SHARD_ID_KEY, 7)

    mock_redis.get.return_value = b"7"
    assert backend.get_logical_shard_id() == 7

    mock_redis.get.return_value = None
    assert backend.get_logical_shard_id() is None


def test_ping(backend: RedisSequenceBackend, mock_redis: MagicMock) -> None:
    mock_redis.ping.return_value = True
    assert backend.ping() is True

    mock_redis.ping.side_effect = redis.ConnectionError("down")
    assert backend.ping() is False


def test_close(backend: RedisSequenceBackend, mock_redis: MagicMock) -> None:
    backend.close()
    mock_redis.close.assert_called_once_with()


def test_build_pool_from_servers() -> None:
    with patch("services.redis.redis_sequence_backend.redis.Redis"):
        pool = build_pool_from_servers(["redis-a:6379", "redis-b:6379"])

    assert [repr(backend) for backend in pool.backends] == [
        "RedisSequenceBackend(redis-a:6379)",
        "RedisSequenceBackend(redis-b:6379)",
    ]


def test_build_pool_requires_servers() -> None:
    with pytest.raises(EmptyPoolError):
        build_pool_from_servers([])
