"""
dbmemcache - Configuration Loader

Loads and validates configuration from environment variables and .env files.
Provides a singleton configuration instance for the process.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import DbMemcacheConfig

logger = logging.getLogger(__name__)

_config_instance: DbMemcacheConfig | None = None


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def load_config(
    env_file: str | None = None,
    reload: bool = False,
) -> DbMemcacheConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Path to .env file (default: .env in the working directory)
        reload: Force reload even if config already loaded

    Returns:
        Validated DbMemcacheConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    env_path = Path(env_file) if env_file else Path.cwd() / ".env"

    if env_path.exists():
        logger.info("Loading environment from %s", env_path)
        try:
            load_dotenv(env_path, override=True)
        except Exception as e:
            logger.error(
                "Failed to load .env file from %s: %s",
                env_path,
                e,
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    config_dict = {
        "environment": os.getenv("ENVIRONMENT", "development"),
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "log_format": os.getenv("LOG_FORMAT", "text").lower(),
        "memcache": {
            "backend": os.getenv("MEMCACHE_BACKEND", "pymemcache").lower(),
            "servers": os.getenv("MEMCACHE_SERVERS", ""),
            "behaviors": os.getenv("MEMCACHE_BEHAVIORS", ""),
            "flush_on_commit": _env_flag("MEMCACHE_FLUSH_ON_COMMIT"),
            "default_port": os.getenv("MEMCACHE_DEFAULT_PORT", "11211"),
            "memory_max_items": os.getenv("MEMCACHE_MEMORY_MAX_ITEMS", "10000"),
        },
    }

    try:
        _config_instance = DbMemcacheConfig(**config_dict)  # type: ignore[arg-type]
        logger.info(
            "Configuration loaded successfully (environment: %s)",
            _config_instance.environment.value,
            extra={"cache_backend": _config_instance.memcache.backend.value},
        )
        return _config_instance
    except ValidationError as e:
        logger.error(
            "Configuration validation failed: %s",
            e,
            extra={"validation_errors": e.errors(include_url=False)},
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors(include_url=False)},
        ) from e


def get_config() -> DbMemcacheConfig:
    """Get the current configuration instance, loading it on first access."""
    if _config_instance is None:
        return load_config()
    return _config_instance


def reload_config(env_file: str | None = None) -> DbMemcacheConfig:
    """Force reload configuration."""
    return load_config(env_file=env_file, reload=True)
