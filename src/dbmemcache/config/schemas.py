"""
dbmemcache - Configuration Schemas

Typed configuration models using Pydantic for validation and type safety.
The two host-facing string settings (server list and behavior list) are
kept as text and parsed when they are applied.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ConfigurationError
from ..types import DEFAULT_PORT, parse_server_list


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class MemcacheBackend(str, Enum):
    """Supported wire-protocol client libraries."""

    MEMORY = "memory"
    PYMEMCACHE = "pymemcache"
    PYLIBMC = "pylibmc"  # Requires the pylibmc extra


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    TEXT = "text"
    JSON = "json"


class MemcacheConfig(BaseModel):
    """Cache client configuration."""

    backend: MemcacheBackend = Field(default=MemcacheBackend.PYMEMCACHE, description="Client library to use")
    servers: str = Field(default="", description="Server list, host[:port],...")
    behaviors: str = Field(default="", description="Behavior list, FLAG[:VALUE],...")
    flush_on_commit: bool = Field(default=False, description="Drain buffered writes at transaction pre-commit")
    default_port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="Port for entries without one")
    memory_max_items: int = Field(default=10000, ge=1, description="Max items per simulated server (memory backend)")

    @field_validator("servers")
    @classmethod
    def validate_servers(cls, v: str) -> str:
        """Reject server lists that cannot be parsed."""
        try:
            parse_server_list(v)
        except ConfigurationError as e:
            raise ValueError(e.message) from e
        return v


class DbMemcacheConfig(BaseModel):
    """Root configuration for dbmemcache."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: LogFormat = Field(default=LogFormat.TEXT, description="Log output format")

    memcache: MemcacheConfig = Field(default_factory=MemcacheConfig)

    model_config = ConfigDict(validate_assignment=True)
