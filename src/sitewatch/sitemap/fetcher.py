"""Fetch a site's sitemaps over HTTP and flatten them into URL records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional
from urllib.parse import urljoin, urlparse

import httpx

from ..config.settings import FetcherSettings
from ..utils.logging import get_structured_logger
from .parser import parse_robots_sitemaps, parse_sitemap
from .types import FetchResult, SitemapFetchError, SitemapRecord

if TYPE_CHECKING:
    from ..storage.sqlite.models import Site

logger = get_structured_logger(__name__)


def is_robots_location(url: str) -> bool:
    return urlparse(url).path.rstrip("/").lower().endswith("robots.txt")


def robots_url_for(root_url: str) -> str:
    return urljoin(root_url, "/robots.txt")


def default_sitemap_url(root_url: str) -> str:
    return urljoin(root_url, "/sitemap.xml")


class SitemapFetcher:
    """Retrieves and flattens sitemaps.

    A sitemap index is expanded recursively up to ``max_depth`` nesting
    levels and ``max_sitemaps`` documents in total. The flattened set may
    hold at most ``max_urls`` distinct locations. Exceeding a limit fails
    the fetch instead of returning a partial set, so a partial fetch can
    never be mistaken for removals.
    """

    def __init__(
        self,
        settings: Optional[FetcherSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or FetcherSettings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            self.settings.timeout_seconds, connect=self.settings.connect_timeout_seconds
        )
        headers = {
            "User-Agent": self.settings.user_agent,
            "Accept": "application/xml,text/xml;q=0.9,text/plain;q=0.8,*/*;q=0.5",
        }
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers=headers,
            transport=self._transport,
        )

    async def fetch(self, site: Site) -> FetchResult:
        """Fetch the full URL set of a site."""
        location = site.robots_url or site.root_url
        async with self._client() as client:
            sitemap_urls = await self._resolve_sitemaps(client, location, site.root_url)
            return await self._collect(client, sitemap_urls)

    async def fetch_sitemaps(self, sitemap_urls: list[str]) -> FetchResult:
        """Fetch and flatten an explicit list of sitemap documents."""
        async with self._client() as client:
            return await self._collect(client, sitemap_urls)

    async def discover_location(self, root_url: str) -> str:
        """Pick the location to store for a new site.

        Returns the robots.txt URL when it lists at least one sitemap,
        otherwise ``<root>/sitemap.xml``.
        """
        robots_url = robots_url_for(root_url)
        async with self._client() as client:
            sitemaps = await self._read_robots(client, robots_url)
        if sitemaps:
            logger.debug("Sitemaps listed in robots.txt", url=robots_url, count=len(sitemaps))
            return robots_url
        return default_sitemap_url(root_url)

    async def _resolve_sitemaps(
        self, client: httpx.AsyncClient, location: str, root_url: str
    ) -> list[str]:
        if not is_robots_location(location):
            return [location]

        sitemaps = await self._read_robots(client, location)
        if sitemaps:
            return sitemaps

        fallback = default_sitemap_url(root_url or location)
        logger.info("No Sitemap directive in robots.txt, using default", url=fallback)
        return [fallback]

    async def _read_robots(self, client: httpx.AsyncClient, robots_url: str) -> list[str]:
        try:
            response = await client.get(robots_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Could not read robots.txt", url=robots_url, error=str(e))
            return []
        return parse_robots_sitemaps(response.text)

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SitemapFetchError(url, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise SitemapFetchError(url, f"request failed: {e}") from e

        if not response.content:
            raise SitemapFetchError(url, "empty response body")
        return response.content

    async def _collect(
        self, client: httpx.AsyncClient, sitemap_urls: list[str]
    ) -> FetchResult:
        records: dict[str, SitemapRecord] = {}
        visited: set[str] = set()
        fetched = 0

        # Depth-first walk; (url, depth) where the listed sitemaps are depth 0
        pending = [(url, 0) for url in reversed(sitemap_urls)]
        while pending:
            url, depth = pending.pop()
            if url in visited:
                continue
            visited.add(url)

            if fetched >= self.settings.max_sitemaps:
                raise SitemapFetchError(
                    url, f"more than {self.settings.max_sitemaps} sitemap documents"
                )
            content = await self._download(client, url)
            fetched += 1
            parsed = parse_sitemap(content, url)

            if parsed.is_index:
                if depth >= self.settings.max_depth:
                    raise SitemapFetchError(
                        url,
                        f"sitemap index nesting exceeds max depth {self.settings.max_depth}",
                    )
                logger.debug(
                    "Expanding sitemap index", url=url, depth=depth, children=len(parsed.children)
                )
                pending.extend((child, depth + 1) for child in reversed(parsed.children))
                continue

            for record in parsed.records:
                if record.loc in records:
                    continue
                records[record.loc] = record
                if len(records) > self.settings.max_urls:
                    raise SitemapFetchError(
                        url, f"sitemap exceeds {self.settings.max_urls} URLs"
                    )

        logger.info("Sitemap fetch complete", sitemaps=fetched, urls=len(records))
        return FetchResult(records=list(records.values()), sitemaps_fetched=fetched)
