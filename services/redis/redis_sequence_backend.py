"""Redis implementation of the atomic sequence backend.

Each Redis node is one counter backend. The allocation script runs with
``EVALSHA`` so it executes atomically on the node and is only sent over the
wire once per node, via ``SCRIPT LOAD``, when the node reports it missing.

Flow Diagram — allocate()
=========================
::
    ┌─────────────┐
    │  EVALSHA    │
    │  sha, args  │
    └──────┬──────┘
    RESULT?│
    ┌──────┼──────────────┐
    │ list │ NoScriptError│ other error
    ▼      ▼              ▼
┌────────┐ ┌────────────┐ ┌────────────┐
│ parse  │ │ return     │ │ raise      │
│ by     │ │ NOT_       │ │ (transient)│
│position│ │ INSTALLED  │ │            │
└────────┘ └────────────┘ └────────────┘

How to Use
===========
**Step 1 — Connect to each node**::
    backend = RedisSequenceBackend.from_host_and_port("redis-a:6379")

**Step 2 — Provision the node's logical shard id once**::
    backend.set_logical_shard_id(1)

**Step 3 — Hand the backends to a pool**::
    pool = build_pool_from_servers(["redis-a:6379", "redis-b:6379"])

Key Behaviours
===============
- Servers must be given as "host:port"; anything else raises InvalidServerFormatError.
- A missing script is a normal result, not an exception.
- Connection errors, timeouts and script errors (e.g. the sequence wrap lock)
  propagate to the generator, which retries them on the next node.

Classes:
    RedisSequenceBackend:  Counter backend over a redis-py client.

Functions:
    build_pool_from_servers():  Pool of Redis backends from "host:port" strings.
"""

import re
from collections.abc import Iterable

import redis
from redis.exceptions import NoScriptError

from common.logger import setup_logger
from services.id_generator.exceptions import InvalidServerFormatError
from services.id_generator.models import NOT_INSTALLED, AllocationResponse, AllocationResult
from services.id_generator.pool import RoundRobinBackendPool

__all__ = ["RedisSequenceBackend", "build_pool_from_servers", "LOGICAL_SHARD_ID_KEY", "SEQUENCE_KEY"]

SERVER_FORMAT = re.compile(r"^([^:]+):([0-9]+)$")

# Keys used by the allocation script.
LOGICAL_SHARD_ID_KEY = "idgen-logical-shard-id"
SEQUENCE_KEY = "idgen-sequence"

DEFAULT_SOCKET_TIMEOUT_SECONDS = 1.0

logger = setup_logger("redis-sequence-backend")


class RedisSequenceBackend:
    """Atomic sequence backend over a single Redis node."""

    def __init__(self, client: redis.Redis, name: str | None = None):
        self._client = client
        self._name = name or self._describe_client(client)

    @classmethod
    def from_host_and_port(
        cls,
        host_and_port: str,
        socket_timeout: float = DEFAULT_SOCKET_TIMEOUT_SECONDS,
    ) -> "RedisSequenceBackend":
        """Create a backend from a "host:port" string.

        Raises:
            InvalidServerFormatError: If the string is not of the form "host:port"
        """
        match = SERVER_FORMAT.match(host_and_port)
        if not match:
            raise InvalidServerFormatError(host_and_port)

        client = redis.Redis(
            host=match.group(1),
            port=int(match.group(2)),
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, name=host_and_port)

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = DEFAULT_SOCKET_TIMEOUT_SECONDS) -> "RedisSequenceBackend":
        client = redis.from_url(url, socket_timeout=socket_timeout, socket_connect_timeout=socket_timeout)
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    def install_script(self, source: str) -> str:
        sha = self._client.script_load(source)
        if isinstance(sha, bytes):
            sha = sha.decode("utf-8")
        logger.debug(f"Loaded allocation script {sha} on {self._name}")
        return sha

    def allocate(
        self,
        script_sha: str,
        max_sequence: int,
        min_shard_id: int,
        max_shard_id: int,
        batch_size: int,
    ) -> AllocationResult:
        try:
            results = self._client.evalsha(script_sha, 0, max_sequence, min_shard_id, max_shard_id, batch_size)
        except NoScriptError:
            return NOT_INSTALLED
        return AllocationResponse.from_wire(results)

    def set_logical_shard_id(self, logical_shard_id: int) -> None:
        """Provision this node's logical shard id. Every node in a fleet needs a distinct one."""
        self._client.set(LOGICAL_SHARD_ID_KEY, logical_shard_id)

    def get_logical_shard_id(self) -> int | None:
        value = self._client.get(LOGICAL_SHARD_ID_KEY)
        if value is None:
            return None
        return int(value)

    def ping(self) -> bool:
        """Return True if the node answers, never raises."""
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning(f"Ping to {self._name} failed: {e}")
            return False

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"RedisSequenceBackend({self._name})"

    @staticmethod
    def _describe_client(client: redis.Redis) -> str:
        kwargs = client.connection_pool.connection_kwargs
        return f"{kwargs.get('host', 'unknown')}:{kwargs.get('port', 'unknown')}"


def build_pool_from_servers(
    servers: Iterable[str],
    socket_timeout: float = DEFAULT_SOCKET_TIMEOUT_SECONDS,
) -> RoundRobinBackendPool[RedisSequenceBackend]:
    """Build a round-robin pool with one backend per "host:port" string.

    Raises:
        InvalidServerFormatError: If any server is malformed
        EmptyPoolError: If no servers are given
    """
    backends = [RedisSequenceBackend.from_host_and_port(server, socket_timeout) for server in servers]
    return RoundRobinBackendPool(backends)
