"""Site endpoints: registration, manual scans, history and notifications."""

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...scheduler.types import ScanFilters
from ...utils.logging import get_structured_logger
from ..auth import get_current_user
from ..dependencies import get_orchestrator, get_registry
from ..types import (
    ChangeItem,
    ChannelListResponse,
    ChannelRequest,
    ChannelResponse,
    CreateSiteRequest,
    DeliveryResponse,
    DiscoveryResponse,
    EnqueueResponse,
    NewUrlItem,
    NewUrlsResponse,
    ScanAllRequest,
    ScanDiffResponse,
    SiteListResponse,
    SiteResponse,
    TestNotificationResponse,
    UpdateSiteRequest,
    WebhookRequest,
    WebhookResponse,
)

logger = get_structured_logger(__name__)

router = APIRouter()


@router.get("/sites", response_model=SiteListResponse)
async def list_sites(
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> SiteListResponse:
    sites = await registry.list_sites(owner_id=current_user["id"])
    return SiteListResponse(
        sites=[SiteResponse.from_site(site) for site in sites], total=len(sites)
    )


@router.post(
    "/sites", response_model=DiscoveryResponse, status_code=status.HTTP_201_CREATED
)
async def create_site(
    request: CreateSiteRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    orchestrator=Depends(get_orchestrator),
) -> DiscoveryResponse:
    """Register a site and record its baseline snapshot."""
    result = await orchestrator.discovery.discover(
        str(request.root_url), current_user["id"], tags=request.tags
    )
    return DiscoveryResponse(
        site=SiteResponse.from_site(result.site),
        baseline_scan_id=result.scan.id,
        url_count=result.url_count,
        error=result.error,
    )


@router.post("/sites/scan-all")
async def scan_all_sites(
    request: ScanAllRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    orchestrator=Depends(get_orchestrator),
) -> dict[str, Any]:
    """Enqueue scans for every matching site without an active scan."""
    filters = None
    if request.filters is not None:
        filters = ScanFilters(
            tags=request.filters.tags or [], group_id=request.filters.group_id
        )

    summary = await orchestrator.dispatcher.scan_all(
        owner_id=current_user["id"], scope=request.scope, filters=filters
    )
    return {"success": True, **summary.to_dict()}


@router.get("/sites/{site_id}", response_model=SiteResponse)
async def get_site(
    site_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> SiteResponse:
    site = await registry.get_site_for_owner(site_id, current_user["id"])
    return SiteResponse.from_site(site)


@router.patch("/sites/{site_id}", response_model=SiteResponse)
async def update_site(
    site_id: str,
    request: UpdateSiteRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    orchestrator=Depends(get_orchestrator),
) -> SiteResponse:
    """Update site settings; a new root URL re-resolves the sitemap location."""
    patch = request.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="no updates provided",
        )

    registry = orchestrator.registry
    await registry.get_site_for_owner(site_id, current_user["id"])

    root_url = patch.pop("root_url", None)
    tags = patch.pop("tags", None) if root_url is not None else None
    if patch:
        await registry.update_site(site_id, patch)
    if root_url is not None:
        await orchestrator.discovery.rediscover(
            site_id, current_user["id"], str(root_url), tags=tags
        )

    site = await registry.get_site(site_id)
    return SiteResponse.from_site(site)


@router.post("/sites/{site_id}/scan", response_model=EnqueueResponse)
async def enqueue_site_scan(
    site_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    orchestrator=Depends(get_orchestrator),
) -> EnqueueResponse:
    """Queue a manual scan; an already active scan is returned instead."""
    await orchestrator.registry.get_site_for_owner(site_id, current_user["id"])
    result = await orchestrator.lifecycle.enqueue(site_id)
    return EnqueueResponse(status=result.status.value, scan_id=result.scan_id)


@router.get("/sites/{site_id}/scan-diff", response_model=ScanDiffResponse)
async def get_scan_diff(
    site_id: str,
    scan_id: str = Query(alias="scanId"),
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> ScanDiffResponse:
    """Changes recorded by one scan."""
    diff = await registry.get_scan_diff(site_id, scan_id, owner_id=current_user["id"])
    return ScanDiffResponse(
        scan_id=diff.scan_id,
        summary={"added": diff.added, "removed": diff.removed, "updated": diff.updated},
        items=[ChangeItem(**item) for item in diff.items],
        started_at=diff.started_at,
        finished_at=diff.finished_at,
    )


@router.post(
    "/sites/{site_id}/notifications",
    response_model=ChannelResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_notification_channel(
    site_id: str,
    request: ChannelRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> ChannelResponse:
    await registry.get_site_for_owner(site_id, current_user["id"])
    channel = await registry.add_channel(
        site_id, request.type, request.target, secret=request.secret
    )
    return ChannelResponse.model_validate(channel)


@router.get("/sites/{site_id}/notifications", response_model=ChannelListResponse)
async def list_notification_channels(
    site_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> ChannelListResponse:
    await registry.get_site_for_owner(site_id, current_user["id"])
    channels = await registry.list_channels(site_id)
    return ChannelListResponse(
        channels=[ChannelResponse.model_validate(channel) for channel in channels],
        total=len(channels),
    )


@router.delete("/sites/{site_id}/notifications/{channel_id}")
async def remove_notification_channel(
    site_id: str,
    channel_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> dict[str, Any]:
    await registry.get_site_for_owner(site_id, current_user["id"])
    await registry.remove_channel(site_id, channel_id)
    return {"ok": True}


@router.post(
    "/sites/{site_id}/webhooks",
    response_model=WebhookResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_webhook(
    site_id: str,
    request: WebhookRequest,
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> WebhookResponse:
    """Register a legacy webhook; it receives the same payloads as webhook channels."""
    await registry.get_site_for_owner(site_id, current_user["id"])
    webhook = await registry.add_webhook(
        site_id, str(request.target_url), secret=request.secret
    )
    return WebhookResponse.model_validate(webhook)


@router.post(
    "/sites/{site_id}/test-notification", response_model=TestNotificationResponse
)
async def send_test_notification(
    site_id: str,
    current_user: dict[str, Any] = Depends(get_current_user),
    orchestrator=Depends(get_orchestrator),
) -> TestNotificationResponse:
    """Send a synthetic notification to every channel of the site."""
    await orchestrator.registry.get_site_for_owner(site_id, current_user["id"])
    results = await orchestrator.notifier.send_test(site_id)
    return TestNotificationResponse(
        ok=all(r.success for r in results),
        deliveries=[
            DeliveryResponse(
                channel_type=r.channel_type,
                target=r.target,
                success=r.success,
                attempts=r.attempts,
                error_message=r.error_message,
            )
            for r in results
        ],
    )


@router.get("/new-urls", response_model=NewUrlsResponse)
async def get_new_urls(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    site_id: Optional[str] = Query(default=None, alias="siteId"),
    current_user: dict[str, Any] = Depends(get_current_user),
    registry=Depends(get_registry),
) -> NewUrlsResponse:
    """URLs first seen in a date range; the end date is inclusive."""
    if site_id == "all":
        site_id = None

    report = await registry.get_new_urls(
        current_user["id"], start=start_date, end=end_date, site_id=site_id
    )
    return NewUrlsResponse(
        urls=[NewUrlItem(**vars(record)) for record in report.urls],
        total_count=report.total_count,
        site_stats=report.site_stats,
    )
