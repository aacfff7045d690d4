"""Core engine components."""

from .config import ConfigLoader, EngineConfig
from .log import configure_logging
from .errors import (
    FrameworkError,
    ConfigError,
    ValidationError,
    MissingArgumentsError,
    InvalidArgumentsError,
    CapabilityDisabledError,
    DependencyMissingError,
    BrowserError,
    WaitTimeoutError,
    TargetClosedError,
    TabNotFoundError,
    SessionCreateError,
    AdapterError,
)

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "configure_logging",
    "FrameworkError",
    "ConfigError",
    "ValidationError",
    "MissingArgumentsError",
    "InvalidArgumentsError",
    "CapabilityDisabledError",
    "DependencyMissingError",
    "BrowserError",
    "WaitTimeoutError",
    "TargetClosedError",
    "TabNotFoundError",
    "SessionCreateError",
    "AdapterError",
]
