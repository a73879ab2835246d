"""Configuration service for centralized settings management.

This service provides a singleton pattern for configuration management
with environment variable support and caching for performance.
"""

from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from services.id_generator.models import ID_TOTAL_BITS


class Settings(BaseSettings):
    """Centralized configuration settings for the ID generation service.

    This class defines all configuration values with environment variable support.
    Environment variables automatically override defaults.

    The epoch and bit widths are part of the ID format itself. Changing any of them
    after IDs have been issued can produce collisions with earlier IDs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields in env
    )

    # Application settings
    APP_NAME: str = "id-generator"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Server settings
    HOST: str = "0.0.0.0"
    PORT: int = 8010

    # Counter backends, "host:port" pairs separated by commas
    IDGEN_REDIS_SERVERS: str = "localhost:6379"
    IDGEN_REDIS_SOCKET_TIMEOUT_SECONDS: float = 1.0

    # ID layout
    IDGEN_CUSTOM_EPOCH_MILLIS: int = 1455788600316
    IDGEN_TIMESTAMP_BITS: int = 41
    IDGEN_SHARD_BITS: int = 10
    IDGEN_SEQUENCE_BITS: int = 12

    # Retry policy
    IDGEN_MAX_ATTEMPTS: int = 5
    IDGEN_BACKOFF_UNIT_SECONDS: float = 0.001

    @property
    def redis_servers(self) -> list[str]:
        """The configured backend servers with blanks removed."""
        return [server.strip() for server in self.IDGEN_REDIS_SERVERS.split(",") if server.strip()]


class ConfigurationService:
    """Singleton service for configuration management."""

    _instance: Optional["ConfigurationService"] = None
    _settings: Settings | None = None

    def __new__(cls) -> "ConfigurationService":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Initialize the configuration service."""
        if not hasattr(self, "_initialized"):
            self._settings = None
            self._initialized = True

    def get_settings(self) -> Settings:
        """Get cached settings instance.

        Returns:
            Settings: Configuration settings instance
        """
        if self._settings is None:
            self._settings = Settings()
        return self._settings

    def reload_settings(self) -> Settings:
        """Reload settings from environment.

        Returns:
            Settings: Fresh configuration settings instance
        """
        self._settings = None
        return self.get_settings()

    def validate_settings(self, settings: Settings | None = None) -> bool:
        """Validate that the settings describe a usable generator.

        Args:
            settings: Settings to check, the cached instance by default

        Returns:
            bool: True if the environment parses, the bit widths fill exactly
            63 bits and at least one backend server is configured
        """
        if settings is None:
            try:
                settings = self.get_settings()
            except ValidationError:
                return False

        total_bits = settings.IDGEN_TIMESTAMP_BITS + settings.IDGEN_SHARD_BITS + settings.IDGEN_SEQUENCE_BITS
        if total_bits != ID_TOTAL_BITS:
            return False

        return bool(settings.redis_servers)


# Global service instance
_config_service = ConfigurationService()


def get_config_service() -> ConfigurationService:
    """Get the singleton configuration service instance.

    Returns:
        ConfigurationService: The configuration service instance
    """
    return _config_service
