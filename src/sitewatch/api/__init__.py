"""FastAPI web interface components."""

from .app import create_app, main
from .auth import get_current_user, verify_cron_token
from .types import APIError, ErrorResponse

__all__ = [
    "APIError",
    "ErrorResponse",
    "create_app",
    "main",
    "get_current_user",
    "verify_cron_token",
]
