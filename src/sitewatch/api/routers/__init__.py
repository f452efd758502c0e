"""API routers for different endpoint groups."""

from .cron import router as cron_router
from .sites import router as sites_router

__all__ = ["cron_router", "sites_router"]
