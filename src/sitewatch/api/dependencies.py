"""FastAPI dependency providers for API components."""

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request, status

if TYPE_CHECKING:
    from ..config import AppSettings
    from ..scheduler.orchestrator import SchedulingOrchestrator
    from ..storage.interface import SiteRegistry


async def get_orchestrator(request: Request) -> "SchedulingOrchestrator":
    """Dependency to get scheduling orchestrator from app state."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Orchestrator not initialized",
        )
    return orchestrator


async def get_registry(request: Request) -> "SiteRegistry":
    """Dependency to get the site registry from app state."""
    orchestrator = await get_orchestrator(request)
    return orchestrator.registry


async def get_settings(request: Request) -> "AppSettings":
    """Dependency to get settings from app state."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Settings not initialized",
        )
    return settings
