"""Apply a fetched URL set to a site's stored snapshot."""

from collections.abc import Iterable
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..sitemap.types import FetchResult, SitemapRecord
from ..storage.sqlite import Change, UrlRecord, utcnow
from ..storage.types import ChangeType, UrlStatus
from ..utils.logging import get_structured_logger
from .types import DiffResult

logger = get_structured_logger(__name__)


def _show(value: Optional[str]) -> str:
    return value if value is not None else "none"


class DiffEngine:
    """Classifies URLs as added, removed or updated and records Changes.

    The engine never commits: callers pass the session of the transaction
    that also moves the scan to its terminal state, so a crash leaves
    neither the snapshot nor the scan half-written.
    """

    # Record attributes whose change marks a URL as updated
    compare_fields: tuple[str, ...] = ("changefreq", "priority")

    def changed_fields(
        self, stored: UrlRecord, fetched: SitemapRecord
    ) -> list[tuple[str, Optional[str], Optional[str]]]:
        """Return (field, old, new) for every compared field that differs."""
        changes = []
        for name in self.compare_fields:
            old = getattr(stored, name)
            new = getattr(fetched, name)
            if old != new:
                changes.append((name, old, new))
        return changes

    def describe_update(
        self, loc: str, changes: list[tuple[str, Optional[str], Optional[str]]]
    ) -> str:
        parts = [f"{name}: {_show(old)} -> {_show(new)}" for name, old, new in changes]
        return f"{loc} {'; '.join(parts)}"

    async def diff(
        self,
        session: AsyncSession,
        site_id: str,
        scan_id: str,
        fetched: Union[FetchResult, Iterable[SitemapRecord]],
        baseline: bool = False,
    ) -> DiffResult:
        """Bring the snapshot in line with ``fetched`` and return the delta.

        With ``baseline`` the records are stored but nothing is classified:
        no Change rows are written and the returned delta is empty.
        """
        records = fetched.records if isinstance(fetched, FetchResult) else fetched

        # Collapse duplicate locations, first occurrence wins
        incoming: dict[str, SitemapRecord] = {}
        for record in records:
            incoming.setdefault(record.loc, record)

        result = await session.execute(select(UrlRecord).where(UrlRecord.site_id == site_id))
        stored = {row.loc: row for row in result.scalars()}

        now = utcnow()
        delta = DiffResult(url_count=len(incoming))
        # (record, change type, detail) written once new rows have ids
        pending: list[tuple[UrlRecord, ChangeType, str]] = []

        for loc, record in incoming.items():
            existing = stored.get(loc)

            if existing is None:
                existing = UrlRecord(
                    site_id=site_id,
                    loc=loc,
                    status=UrlStatus.ACTIVE.value,
                    first_seen_at=now,
                    last_seen_at=now,
                    changefreq=record.changefreq,
                    priority=record.priority,
                    lastmod=record.lastmod,
                )
                session.add(existing)
                pending.append((existing, ChangeType.ADDED, loc))
                delta.added.append(loc)
                continue

            if existing.status != UrlStatus.ACTIVE.value:
                # Reappearance counts as new
                existing.status = UrlStatus.ACTIVE.value
                existing.first_seen_at = now
                existing.removed_at = None
                existing.changefreq = record.changefreq
                existing.priority = record.priority
                existing.lastmod = record.lastmod
                existing.last_seen_at = now
                pending.append((existing, ChangeType.ADDED, loc))
                delta.added.append(loc)
                continue

            field_changes = self.changed_fields(existing, record)
            if field_changes:
                for name, _, new in field_changes:
                    setattr(existing, name, new)
                pending.append(
                    (existing, ChangeType.UPDATED, self.describe_update(loc, field_changes))
                )
                delta.updated.append(loc)
            existing.lastmod = record.lastmod
            existing.last_seen_at = now

        for loc, existing in stored.items():
            if existing.status == UrlStatus.ACTIVE.value and loc not in incoming:
                existing.status = UrlStatus.REMOVED.value
                existing.removed_at = now
                pending.append((existing, ChangeType.REMOVED, loc))
                delta.removed.append(loc)

        await session.flush()

        if baseline:
            logger.info(
                "Baseline snapshot stored", site_id=site_id, scan_id=scan_id, urls=delta.url_count
            )
            return DiffResult(url_count=delta.url_count)

        for url_record, change_type, detail in pending:
            session.add(
                Change(
                    site_id=site_id,
                    scan_id=scan_id,
                    url_id=url_record.id,
                    type=change_type.value,
                    detail=detail,
                    occurred_at=now,
                )
            )
        await session.flush()

        logger.info(
            "Snapshot diffed",
            site_id=site_id,
            scan_id=scan_id,
            urls=delta.url_count,
            **delta.counts(),
        )
        return delta
