"""Type definitions for configuration system."""

from ..utils.types import SitewatchError


class ConfigError(SitewatchError):
    """Base exception for configuration-related errors."""

    pass
