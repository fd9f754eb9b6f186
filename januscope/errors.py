from __future__ import annotations


class JanuscopeError(Exception):
    """Base class for errors raised by januscope itself."""


class ConfigError(JanuscopeError):
    """Configuration file missing, unreadable or invalid."""


class EngineError(JanuscopeError):
    """A component could not be initialized, started or stopped."""
