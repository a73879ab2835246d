"""Shared pytest fixtures: generator config and generator factories."""

from collections.abc import Callable

import pytest

from services.id_generator.generator import IdGenerator
from services.id_generator.models import GeneratorConfig
from services.id_generator.pool import RoundRobinBackendPool
from tests.stubs import WORKED_EXAMPLE_EPOCH_MILLIS, StubBackend


@pytest.fixture
def config() -> GeneratorConfig:
    return GeneratorConfig(custom_epoch_millis=WORKED_EXAMPLE_EPOCH_MILLIS, max_attempts=5)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_generator(config: GeneratorConfig, sleeps: list[float]) -> Callable[..., IdGenerator]:
    """Build a generator over the given backends that records its backoff sleeps."""

    def factory(*backends: StubBackend, generator_config: GeneratorConfig | None = None) -> IdGenerator:
        return IdGenerator(
            RoundRobinBackendPool(backends),
            generator_config or config,
            sleep=sleeps.append,
        )

    return factory
