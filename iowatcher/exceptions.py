"""
Exceptions raised by IOWatcher.
"""


class ConfigurationError(ValueError):
    """Raised when a watch cannot be registered with the given settings."""

    pass
