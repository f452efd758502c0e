"""Trigger endpoints called by an external scheduler."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from ...utils.logging import get_structured_logger
from ..auth import verify_cron_token
from ..dependencies import get_orchestrator
from ..types import CleanupResponse

logger = get_structured_logger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_token)])


@router.post("/scan")
async def run_due_scans(
    max_sites: Optional[int] = Query(default=None, alias="max", ge=0),
    orchestrator=Depends(get_orchestrator),
) -> dict[str, Any]:
    """Enqueue every site whose scan interval has elapsed."""
    summary = await orchestrator.run_due_scan_pass(max_sites=max_sites)
    return {"ok": True, **summary.to_dict()}


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_stuck_scans(
    timeout: int = Query(default=60, gt=0),
    orchestrator=Depends(get_orchestrator),
) -> CleanupResponse:
    """Fail running scans that exceeded the timeout."""
    summary = await orchestrator.reap_stuck_scans(timeout_minutes=timeout)
    return CleanupResponse(
        cleaned=summary.reaped,
        timeout_minutes=summary.timeout_minutes,
        message=(
            f"Cleaned up {summary.reaped} stuck scans "
            f"(timeout: {summary.timeout_minutes} minutes)"
        ),
    )


@router.post("/process-queue")
async def process_queue(
    max_concurrent: int = Query(default=3, alias="max", ge=0),
    orchestrator=Depends(get_orchestrator),
) -> dict[str, Any]:
    """Start queued scans up to the concurrency cap and return immediately."""
    summary = await orchestrator.advance_queue(max_concurrent=max_concurrent)
    return {"ok": True, **summary.to_dict()}
