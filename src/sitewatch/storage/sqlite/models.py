"""SQLAlchemy ORM models for sitemap monitoring data."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship, validates

from ..types import (
    MAX_SCAN_INTERVAL_MINUTES,
    MAX_SCAN_PRIORITY,
    MIN_SCAN_INTERVAL_MINUTES,
    MIN_SCAN_PRIORITY,
    ScanStatus,
    UrlStatus,
)

Base = declarative_base()

ACTIVE_SCAN_CLAUSE = "status IN ('queued', 'running')"


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every column in this schema stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


def parse_tags(value: Optional[str]) -> list[str]:
    """Decode the JSON tag column, ignoring malformed content."""
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, list):
        return []
    return [item.strip() for item in parsed if isinstance(item, str) and item.strip()]


def serialize_tags(tags: Optional[list[str]]) -> Optional[str]:
    """Normalize and encode tags; an empty list is stored as NULL."""
    if not tags:
        return None
    normalized = list(dict.fromkeys(tag.strip() for tag in tags if tag and tag.strip()))
    return json.dumps(normalized) if normalized else None


class SiteGroup(Base):
    """Owner-defined grouping of sites."""

    __tablename__ = "site_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<SiteGroup(id={self.id}, name={self.name})>"


class Site(Base):
    """A website whose sitemap is monitored."""

    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    root_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    robots_url: Mapped[Optional[str]] = mapped_column(String(2048))
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Scheduling configuration
    scan_priority: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    scan_interval_minutes: Mapped[int] = mapped_column(
        Integer, default=1440, nullable=False
    )
    last_scan_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    group_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("site_groups.id", ondelete="SET NULL")
    )
    tags: Mapped[Optional[str]] = mapped_column(Text)  # JSON list

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    # Relationships
    group: Mapped[Optional[SiteGroup]] = relationship("SiteGroup")
    scans: Mapped[list[Scan]] = relationship(
        "Scan", back_populates="site", cascade="all, delete-orphan"
    )
    urls: Mapped[list[UrlRecord]] = relationship(
        "UrlRecord", back_populates="site", cascade="all, delete-orphan"
    )
    changes: Mapped[list[Change]] = relationship(
        "Change", back_populates="site", cascade="all, delete-orphan"
    )
    channels: Mapped[list[NotificationChannel]] = relationship(
        "NotificationChannel", back_populates="site", cascade="all, delete-orphan"
    )
    webhooks: Mapped[list[Webhook]] = relationship(
        "Webhook", back_populates="site", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_sites_owner_id", "owner_id"),
        Index("ix_sites_enabled", "enabled"),
        Index("ix_sites_last_scan", "last_scan_at"),
        Index("ix_sites_group_id", "group_id"),
    )

    @validates("scan_priority")
    def validate_scan_priority(self, key, value):
        if value is None or not MIN_SCAN_PRIORITY <= int(value) <= MAX_SCAN_PRIORITY:
            raise ValueError(
                f"scan_priority must be between {MIN_SCAN_PRIORITY} and {MAX_SCAN_PRIORITY}"
            )
        return int(value)

    @validates("scan_interval_minutes")
    def validate_scan_interval(self, key, value):
        if (
            value is None
            or not MIN_SCAN_INTERVAL_MINUTES <= int(value) <= MAX_SCAN_INTERVAL_MINUTES
        ):
            raise ValueError(
                "scan_interval_minutes must be between "
                f"{MIN_SCAN_INTERVAL_MINUTES} and {MAX_SCAN_INTERVAL_MINUTES}"
            )
        return int(value)

    @property
    def tag_list(self) -> list[str]:
        return parse_tags(self.tags)

    def __repr__(self) -> str:
        return f"<Site(id={self.id}, root_url={self.root_url})>"

    def __rich_repr__(self):
        """Rich-compatible representation that avoids circular references."""
        yield "id", self.id
        yield "root_url", self.root_url
        yield "robots_url", self.robots_url
        yield "enabled", self.enabled
        yield "scan_priority", self.scan_priority
        yield "scan_interval_minutes", self.scan_interval_minutes
        yield "last_scan_at", self.last_scan_at


class Scan(Base):
    """One attempt to refresh a site's URL set.

    The table doubles as the scan queue: rows in ``queued`` are waiting for
    dispatch. The partial unique index guarantees a site never has two rows
    in ``queued``/``running`` at once.
    """

    __tablename__ = "scans"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ScanStatus.QUEUED.value
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error: Mapped[Optional[str]] = mapped_column(Text)

    # Summary filled on success
    added_count: Mapped[int] = mapped_column(Integer, default=0)
    removed_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_count: Mapped[int] = mapped_column(Integer, default=0)
    url_count: Mapped[int] = mapped_column(Integer, default=0)
    is_baseline: Mapped[bool] = mapped_column(Boolean, default=False)

    site: Mapped[Site] = relationship("Site", back_populates="scans")
    changes: Mapped[list[Change]] = relationship("Change", back_populates="scan")

    __table_args__ = (
        Index("ix_scans_site_id", "site_id"),
        Index("ix_scans_status", "status"),
        Index("ix_scans_status_created", "status", "created_at"),
        Index(
            "uq_scans_site_active",
            "site_id",
            unique=True,
            sqlite_where=text(ACTIVE_SCAN_CLAUSE),
            postgresql_where=text(ACTIVE_SCAN_CLAUSE),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status in {s.value for s in ScanStatus.active()}

    def __repr__(self) -> str:
        return f"<Scan(id={self.id}, site_id={self.site_id}, status={self.status})>"

    def __rich_repr__(self):
        """Rich-compatible representation that avoids circular references."""
        yield "id", self.id
        yield "site_id", self.site_id
        yield "status", self.status
        yield "created_at", self.created_at
        yield "started_at", self.started_at
        yield "finished_at", self.finished_at
        yield "error", self.error


class UrlRecord(Base):
    """One entry of a site's current or historical sitemap snapshot."""

    __tablename__ = "urls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    loc: Mapped[str] = mapped_column(String(4096), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UrlStatus.ACTIVE.value
    )

    first_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    removed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Sitemap hints, kept as written
    changefreq: Mapped[Optional[str]] = mapped_column(String(32))
    priority: Mapped[Optional[str]] = mapped_column(String(16))
    lastmod: Mapped[Optional[str]] = mapped_column(String(64))

    site: Mapped[Site] = relationship("Site", back_populates="urls")

    __table_args__ = (
        UniqueConstraint("site_id", "loc", name="uq_urls_site_loc"),
        Index("ix_urls_site_status", "site_id", "status"),
        Index("ix_urls_first_seen", "first_seen_at"),
    )

    def __repr__(self) -> str:
        return f"<UrlRecord(site_id={self.site_id}, loc={self.loc}, status={self.status})>"


class Change(Base):
    """Immutable audit record of one URL transition in one scan."""

    __tablename__ = "changes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    scan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("scans.id", ondelete="CASCADE"), nullable=False
    )
    url_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("urls.id", ondelete="SET NULL")
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    detail: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    site: Mapped[Site] = relationship("Site", back_populates="changes")
    scan: Mapped[Scan] = relationship("Scan", back_populates="changes")

    __table_args__ = (
        Index("ix_changes_site_id", "site_id"),
        Index("ix_changes_scan_id", "scan_id"),
        Index("ix_changes_type", "type"),
        Index("ix_changes_occurred_at", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<Change(scan_id={self.scan_id}, type={self.type}, detail={self.detail})>"


class NotificationChannel(Base):
    """A destination notified when a scan detects changes."""

    __tablename__ = "notification_channels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    target: Mapped[str] = mapped_column(String(2048), nullable=False)
    secret: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    site: Mapped[Site] = relationship("Site", back_populates="channels")

    __table_args__ = (Index("ix_notification_channels_site_id", "site_id"),)

    def __repr__(self) -> str:
        return f"<NotificationChannel(id={self.id}, type={self.type}, target={self.target})>"


class Webhook(Base):
    """Legacy per-site webhook row, delivered alongside notification channels."""

    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    site_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False
    )
    target_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    secret: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    site: Mapped[Site] = relationship("Site", back_populates="webhooks")

    __table_args__ = (Index("ix_webhooks_site_id", "site_id"),)

    def __repr__(self) -> str:
        return f"<Webhook(id={self.id}, target_url={self.target_url})>"
