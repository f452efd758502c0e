"""Site bootstrap: resolve a sitemap location and record the baseline snapshot."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select

from ..storage.sqlite import DatabaseManager, Scan, Site, UrlRecord, utcnow
from ..storage.sqlite.models import serialize_tags
from ..storage.types import NotFoundError, ScanStatus
from ..utils.logging import get_structured_logger
from .fetcher import SitemapFetcher
from .types import SitemapFetchError

logger = get_structured_logger(__name__)


@dataclass
class DiscoveryResult:
    """Outcome of registering a new site."""

    site: Site
    scan: Scan
    url_count: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class SiteDiscovery:
    """Creates sites with an initial URL snapshot and re-resolves moved ones."""

    def __init__(self, db: DatabaseManager, fetcher: SitemapFetcher):
        self.db = db
        self.fetcher = fetcher

    async def discover(
        self, root_url: str, owner_id: str, tags: Optional[list[str]] = None
    ) -> DiscoveryResult:
        """Register a site and store its first snapshot as a baseline.

        The baseline produces no Change rows. When the first fetch fails
        the site is still created and the baseline scan is recorded as
        failed; the executor then runs the site's first successful scan as
        the baseline.
        """
        location = await self.fetcher.discover_location(root_url)

        async with self.db.get_transaction() as session:
            site = Site(
                owner_id=owner_id,
                root_url=root_url,
                robots_url=location,
                tags=serialize_tags(tags),
            )
            session.add(site)
            await session.flush()

        logger.info("Site registered", site_id=site.id, location=location)

        started_at = utcnow()
        try:
            fetched = await self.fetcher.fetch(site)
        except SitemapFetchError as e:
            logger.warning("Baseline fetch failed", site_id=site.id, error=str(e))
            async with self.db.get_transaction() as session:
                scan = Scan(
                    site_id=site.id,
                    status=ScanStatus.FAILED.value,
                    started_at=started_at,
                    finished_at=utcnow(),
                    error=str(e),
                    is_baseline=True,
                )
                session.add(scan)
            return DiscoveryResult(site=site, scan=scan, error=str(e))

        now = utcnow()
        async with self.db.get_transaction() as session:
            for record in fetched.records:
                session.add(
                    UrlRecord(
                        site_id=site.id,
                        loc=record.loc,
                        changefreq=record.changefreq,
                        priority=record.priority,
                        lastmod=record.lastmod,
                        first_seen_at=now,
                        last_seen_at=now,
                    )
                )
            scan = Scan(
                site_id=site.id,
                status=ScanStatus.SUCCESS.value,
                started_at=started_at,
                finished_at=now,
                url_count=fetched.url_count,
                is_baseline=True,
            )
            session.add(scan)

            stored_site = await session.get(Site, site.id)
            stored_site.last_scan_at = now
            await session.flush()

        site.last_scan_at = now
        logger.info("Baseline snapshot stored", site_id=site.id, urls=fetched.url_count)
        return DiscoveryResult(site=site, scan=scan, url_count=fetched.url_count)

    async def rediscover(
        self,
        site_id: str,
        owner_id: str,
        new_root_url: str,
        tags: Optional[list[str]] = None,
    ) -> Site:
        """Point an existing site at a new root URL and re-resolve its location."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Site).where(Site.id == site_id, Site.owner_id == owner_id)
            )
            if result.scalar_one_or_none() is None:
                raise NotFoundError(f"Site not found: {site_id}")

        location = await self.fetcher.discover_location(new_root_url)

        async with self.db.get_transaction() as session:
            site = await session.get(Site, site_id)
            if site is None:
                raise NotFoundError(f"Site not found: {site_id}")
            site.root_url = new_root_url
            site.robots_url = location
            if tags is not None:
                site.tags = serialize_tags(tags)
            site.updated_at = utcnow()
            await session.flush()

        logger.info("Site rediscovered", site_id=site_id, location=location)
        return site
