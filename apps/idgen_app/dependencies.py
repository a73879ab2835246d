"""Dependency injection for the ID generation API.

A single IdGenerator and its Redis pool are built once at startup and shared
by every request. Both are thread-safe, so the sync route handlers that
FastAPI runs in its threadpool can use them concurrently.
"""

import logging
from typing import Optional

from common.logger import setup_logger
from services.config.config_service import Settings, get_config_service
from services.id_generator.exceptions import InvalidConfigurationError
from services.id_generator.generator import IdGenerator
from services.id_generator.models import GeneratorConfig
from services.redis.redis_sequence_backend import build_pool_from_servers

__all__ = ["ServiceManager", "get_service_manager", "get_id_generator", "create_id_generator"]


def create_id_generator(settings: Settings, logger: logging.Logger | None = None) -> IdGenerator:
    """Build a generator over the Redis servers named in ``settings``.

    Raises:
        InvalidConfigurationError: If the settings fail validation
        InvalidServerFormatError: If a server is not "host:port"
        ScriptLoadError: If the allocation script cannot be read
    """
    if not get_config_service().validate_settings(settings):
        raise InvalidConfigurationError(
            "ID generator settings are invalid: bit widths must sum to 63 and IDGEN_REDIS_SERVERS must not be empty"
        )

    pool = build_pool_from_servers(settings.redis_servers, settings.IDGEN_REDIS_SOCKET_TIMEOUT_SECONDS)
    return IdGenerator(pool, GeneratorConfig.from_settings(settings), logger=logger)


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared across requests."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def initialize(self) -> None:
        """Build the generator once at startup."""
        if not self._initialized:
            self.settings = get_config_service().get_settings()
            self.logger = setup_logger("id-generator", self.settings.LOG_LEVEL)
            self.generator = create_id_generator(self.settings, self.logger)
            self._initialized = True
            self.logger.info(
                f"ID generator ready with {len(self.generator.pool)} backend(s), script {self.generator.script_sha}"
            )

    def cleanup(self) -> None:
        """Close backend connections at shutdown."""
        if self._initialized:
            for backend in self.generator.pool.backends:
                backend.close()
        self._initialized = False


_service_manager = ServiceManager()


def get_service_manager() -> ServiceManager:
    return _service_manager


def get_id_generator() -> IdGenerator:
    """FastAPI dependency returning the shared generator."""
    if not _service_manager._initialized:
        _service_manager.initialize()
    return _service_manager.generator
