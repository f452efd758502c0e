"""Type definitions for the API module."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from ..storage.sqlite.models import utcnow
from ..storage.types import (
    MAX_SCAN_INTERVAL_MINUTES,
    MAX_SCAN_PRIORITY,
    MIN_SCAN_INTERVAL_MINUTES,
    MIN_SCAN_PRIORITY,
)
from ..utils.types import SitewatchError


class APIError(SitewatchError):
    """Base exception for API-related errors."""

    pass


class ErrorResponse(BaseModel):
    """Response model for API errors."""

    error: str
    message: str
    details: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utcnow)


class SiteResponse(BaseModel):
    """Response model for site information."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    root_url: str
    robots_url: Optional[str]
    enabled: bool
    scan_priority: int
    scan_interval_minutes: int
    last_scan_at: Optional[datetime]
    group_id: Optional[str]
    tags: list[str] = []
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_site(cls, site) -> "SiteResponse":
        data = {name: getattr(site, name) for name in cls.model_fields if name != "tags"}
        return cls(tags=site.tag_list, **data)


class SiteListResponse(BaseModel):
    sites: list[SiteResponse]
    total: int


class CreateSiteRequest(BaseModel):
    """Request model for registering a new site."""

    root_url: HttpUrl
    tags: Optional[list[str]] = None


class UpdateSiteRequest(BaseModel):
    """Request model for updating a site; at least one field is required."""

    root_url: Optional[HttpUrl] = None
    enabled: Optional[bool] = None
    tags: Optional[list[str]] = None
    scan_priority: Optional[int] = Field(
        default=None, ge=MIN_SCAN_PRIORITY, le=MAX_SCAN_PRIORITY
    )
    scan_interval_minutes: Optional[int] = Field(
        default=None, ge=MIN_SCAN_INTERVAL_MINUTES, le=MAX_SCAN_INTERVAL_MINUTES
    )
    group_id: Optional[str] = None


class DiscoveryResponse(BaseModel):
    site: SiteResponse
    baseline_scan_id: str
    url_count: int
    error: Optional[str] = None


class EnqueueResponse(BaseModel):
    ok: bool = True
    status: str
    scan_id: str


class ScanAllFilters(BaseModel):
    tags: Optional[list[str]] = None
    group_id: Optional[str] = None


class ScanAllRequest(BaseModel):
    scope: Literal["all", "filtered", "current"] = "all"
    filters: Optional[ScanAllFilters] = None


class ChangeItem(BaseModel):
    type: str
    detail: Optional[str]
    occurred_at: datetime


class ScanDiffResponse(BaseModel):
    scan_id: str
    summary: dict[str, int]
    items: list[ChangeItem]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]


class ChannelRequest(BaseModel):
    type: Literal["webhook", "email", "slack"]
    target: str = Field(min_length=1)
    secret: Optional[str] = None


class ChannelResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    target: str
    created_at: datetime


class ChannelListResponse(BaseModel):
    channels: list[ChannelResponse]
    total: int


class WebhookRequest(BaseModel):
    """Legacy webhook registration."""

    target_url: HttpUrl
    secret: Optional[str] = None


class WebhookResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    target_url: str
    created_at: datetime


class DeliveryResponse(BaseModel):
    channel_type: str
    target: str
    success: bool
    attempts: int
    error_message: Optional[str] = None


class TestNotificationResponse(BaseModel):
    ok: bool
    deliveries: list[DeliveryResponse]


class NewUrlItem(BaseModel):
    id: str
    url: str
    site_id: str
    site_root_url: str
    discovered_at: Optional[datetime]
    changefreq: Optional[str] = None
    priority: Optional[str] = None


class NewUrlsResponse(BaseModel):
    urls: list[NewUrlItem]
    total_count: int
    site_stats: list[dict[str, Any]]


class CleanupResponse(BaseModel):
    ok: bool = True
    cleaned: int
    timeout_minutes: int
    message: str
