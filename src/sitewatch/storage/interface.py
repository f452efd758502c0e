"""Site registry and read queries over the snapshot store."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional, Union

from sqlalchemy import delete, desc, func, select

from ..utils.logging import get_structured_logger
from .sqlite import (
    Change,
    DatabaseManager,
    NotificationChannel,
    Scan,
    Site,
    SiteGroup,
    UrlRecord,
    Webhook,
    utcnow,
)
from .sqlite.models import serialize_tags
from .types import ChannelType, NewUrlRecord, NewUrlsReport, NotFoundError, ScanDiffSummary

logger = get_structured_logger(__name__)

# Fields a caller may change through update_site
UPDATABLE_SITE_FIELDS = frozenset(
    {
        "root_url",
        "robots_url",
        "enabled",
        "scan_priority",
        "scan_interval_minutes",
        "group_id",
        "tags",
    }
)


def end_of_day(value: Union[date, datetime]) -> datetime:
    """Stretch a date or datetime to the last microsecond of its day."""
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max)


class SiteRegistry:
    """Reads and minimal writes of monitored sites and their history."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    # Sites

    async def create_site(
        self,
        owner_id: str,
        root_url: str,
        robots_url: Optional[str] = None,
        tags: Optional[list[str]] = None,
        **fields: Any,
    ) -> Site:
        """Create a new site for monitoring."""
        unknown = set(fields) - UPDATABLE_SITE_FIELDS
        if unknown:
            raise ValueError(f"Unknown site fields: {', '.join(sorted(unknown))}")

        async with self.db.get_session() as session:
            site = Site(
                owner_id=owner_id,
                root_url=root_url,
                robots_url=robots_url,
                tags=serialize_tags(tags),
                **fields,
            )
            session.add(site)
            await session.flush()
            await session.refresh(site)
            logger.info("Site created", site_id=site.id, root_url=root_url)
            return site

    async def get_site(self, site_id: str) -> Optional[Site]:
        """Get a site by ID."""
        async with self.db.get_session() as session:
            return await session.get(Site, site_id)

    async def get_site_for_owner(self, site_id: str, owner_id: str) -> Site:
        """Get a site owned by ``owner_id`` or raise NotFoundError."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Site).where(Site.id == site_id, Site.owner_id == owner_id)
            )
            site = result.scalar_one_or_none()
            if site is None:
                raise NotFoundError(f"Site not found: {site_id}")
            return site

    async def list_sites(
        self,
        owner_id: Optional[str] = None,
        enabled_only: bool = False,
        group_id: Optional[str] = None,
    ) -> list[Site]:
        """List sites, optionally filtered by owner, enabled flag and group."""
        async with self.db.get_session() as session:
            query = select(Site)

            if owner_id is not None:
                query = query.where(Site.owner_id == owner_id)
            if enabled_only:
                query = query.where(Site.enabled.is_(True))
            if group_id is not None:
                query = query.where(Site.group_id == group_id)

            query = query.order_by(Site.created_at)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_site(self, site_id: str, patch: dict[str, Any]) -> Site:
        """Apply a validated patch to a site.

        Priority and interval bounds are enforced by the model; unknown
        fields are rejected rather than ignored. A ``group_id`` must name a
        group of the site's owner; an empty value clears the group.
        """
        unknown = set(patch) - UPDATABLE_SITE_FIELDS
        if unknown:
            raise ValueError(f"Unknown site fields: {', '.join(sorted(unknown))}")

        async with self.db.get_session() as session:
            site = await session.get(Site, site_id)
            if site is None:
                raise NotFoundError(f"Site not found: {site_id}")

            patch = dict(patch)
            if "group_id" in patch:
                patch["group_id"] = await self._owned_group_id(
                    session, site.owner_id, patch["group_id"]
                )

            for key, value in patch.items():
                if key == "tags":
                    value = serialize_tags(value)
                setattr(site, key, value)

            site.updated_at = utcnow()
            await session.flush()
            await session.refresh(site)
            logger.info("Site updated", site_id=site_id, fields=sorted(patch))
            return site

    async def _owned_group_id(
        self, session, owner_id: str, group_id: Optional[str]
    ) -> Optional[str]:
        if not group_id:
            return None
        group = await session.get(SiteGroup, group_id)
        if group is None or group.owner_id != owner_id:
            raise NotFoundError("group not found")
        return group.id

    # Groups

    async def create_group(self, owner_id: str, name: str) -> SiteGroup:
        async with self.db.get_session() as session:
            group = SiteGroup(owner_id=owner_id, name=name)
            session.add(group)
            await session.flush()
            await session.refresh(group)
            logger.info("Group created", group_id=group.id, owner_id=owner_id)
            return group

    # Channels

    async def list_channels(self, site_id: str) -> list[NotificationChannel]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(NotificationChannel)
                .where(NotificationChannel.site_id == site_id)
                .order_by(NotificationChannel.created_at)
            )
            return list(result.scalars().all())

    async def list_webhooks(self, site_id: str) -> list[Webhook]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Webhook)
                .where(Webhook.site_id == site_id)
                .order_by(Webhook.created_at)
            )
            return list(result.scalars().all())

    async def add_channel(
        self,
        site_id: str,
        channel_type: str,
        target: str,
        secret: Optional[str] = None,
    ) -> NotificationChannel:
        """Attach a notification channel to a site.

        Only webhook deliveries are signed. Slack incoming webhooks and email
        have nowhere to carry a signature, so a secret for them is rejected.
        """
        if secret and channel_type != ChannelType.WEBHOOK.value:
            raise ValueError(f"{channel_type} channels do not accept a secret")

        async with self.db.get_session() as session:
            if await session.get(Site, site_id) is None:
                raise NotFoundError(f"Site not found: {site_id}")
            channel = NotificationChannel(
                site_id=site_id, type=channel_type, target=target, secret=secret
            )
            session.add(channel)
            await session.flush()
            await session.refresh(channel)
            logger.info("Channel added", site_id=site_id, channel_type=channel_type)
            return channel

    async def remove_channel(self, site_id: str, channel_id: str) -> None:
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(NotificationChannel).where(
                    NotificationChannel.site_id == site_id,
                    NotificationChannel.id == channel_id,
                )
            )
            if not result.rowcount:
                raise NotFoundError(f"Channel not found: {channel_id}")
        logger.info("Channel removed", site_id=site_id, channel_id=channel_id)

    async def add_webhook(
        self, site_id: str, target_url: str, secret: Optional[str] = None
    ) -> Webhook:
        """Register a legacy webhook; delivered like a webhook channel."""
        async with self.db.get_session() as session:
            if await session.get(Site, site_id) is None:
                raise NotFoundError(f"Site not found: {site_id}")
            webhook = Webhook(site_id=site_id, target_url=target_url, secret=secret or None)
            session.add(webhook)
            await session.flush()
            await session.refresh(webhook)
            logger.info("Webhook added", site_id=site_id)
            return webhook

    # History

    async def get_scan_diff(
        self, site_id: str, scan_id: str, owner_id: Optional[str] = None
    ) -> ScanDiffSummary:
        """Changes recorded by one scan of one site, newest first."""
        async with self.db.get_session() as session:
            scan = await session.get(Scan, scan_id)
            if scan is None or scan.site_id != site_id:
                raise NotFoundError(f"Scan not found: {scan_id}")

            site = await session.get(Site, site_id)
            if site is None or (owner_id is not None and site.owner_id != owner_id):
                raise NotFoundError(f"Site not found: {site_id}")

            result = await session.execute(
                select(Change)
                .where(Change.site_id == site_id, Change.scan_id == scan_id)
                .order_by(desc(Change.occurred_at))
            )

            summary = ScanDiffSummary(
                scan_id=scan_id,
                site_id=site_id,
                started_at=scan.started_at,
                finished_at=scan.finished_at,
            )
            for change in result.scalars():
                summary.items.append(
                    {
                        "type": change.type,
                        "detail": change.detail,
                        "occurred_at": change.occurred_at,
                    }
                )
                if change.type == "added":
                    summary.added += 1
                elif change.type == "removed":
                    summary.removed += 1
                elif change.type == "updated":
                    summary.updated += 1
            return summary

    async def get_new_urls(
        self,
        owner_id: str,
        start: Optional[Union[date, datetime]] = None,
        end: Optional[Union[date, datetime]] = None,
        site_id: Optional[str] = None,
    ) -> NewUrlsReport:
        """URLs first seen in ``[start, end]``; ``end`` covers its whole day."""
        conditions = [Site.owner_id == owner_id]
        if start is not None:
            if not isinstance(start, datetime):
                start = datetime.combine(start, time.min)
            conditions.append(UrlRecord.first_seen_at >= start)
        if end is not None:
            conditions.append(UrlRecord.first_seen_at <= end_of_day(end))
        if site_id is not None:
            conditions.append(Site.id == site_id)

        async with self.db.get_session() as session:
            rows = await session.execute(
                select(UrlRecord, Site.root_url)
                .join(Site, UrlRecord.site_id == Site.id)
                .where(*conditions)
                .order_by(desc(UrlRecord.first_seen_at))
            )
            urls = [
                NewUrlRecord(
                    id=record.id,
                    url=record.loc,
                    site_id=record.site_id,
                    site_root_url=root_url,
                    discovered_at=record.first_seen_at,
                    changefreq=record.changefreq,
                    priority=record.priority,
                )
                for record, root_url in rows.all()
            ]

            url_count = func.count(UrlRecord.id).label("count")
            stats = await session.execute(
                select(Site.id, Site.root_url, url_count)
                .join(UrlRecord, UrlRecord.site_id == Site.id)
                .where(*conditions)
                .group_by(Site.id, Site.root_url)
                .order_by(desc(url_count))
            )
            site_stats = [
                {"site_id": sid, "site_root_url": root_url, "count": count}
                for sid, root_url, count in stats.all()
            ]

        return NewUrlsReport(urls=urls, total_count=len(urls), site_stats=site_stats)
