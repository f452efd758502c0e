"""Type definitions for utility modules."""


class SitewatchError(Exception):
    """Root of every error raised by sitewatch components."""

    pass


class UtilityError(SitewatchError):
    """Base exception for utility-related errors."""

    pass


class AsyncTimeoutError(UtilityError):
    """Exception raised when async operations timeout."""

    pass

