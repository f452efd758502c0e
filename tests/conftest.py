"""Test configuration and fixtures for the sitewatch test suite."""

import sys
from typing import Optional, Union

import httpx
import pytest
import pytest_asyncio

from sitewatch.config import (
    AppSettings,
    DatabaseSettings,
    FetcherSettings,
    NotificationSettings,
)
from sitewatch.diff import DiffEngine
from sitewatch.scheduler import ScanExecutor, ScanLifecycleManager
from sitewatch.sitemap import SiteDiscovery, SitemapFetcher
from sitewatch.storage import DatabaseManager, SiteRegistry
from sitewatch.utils.logging import setup_logging

SITE_ROOT = "https://example.com/"
SITEMAP_URL = "https://example.com/sitemap.xml"
ROBOTS_URL = "https://example.com/robots.txt"


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: mark test as integration test")


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Quiet structured logging for the whole session."""
    setup_logging("WARNING", stream=sys.__stderr__)


def url_entry(
    loc: str,
    changefreq: Optional[str] = None,
    priority: Optional[str] = None,
    lastmod: Optional[str] = None,
) -> str:
    parts = [f"<loc>{loc}</loc>"]
    if lastmod is not None:
        parts.append(f"<lastmod>{lastmod}</lastmod>")
    if changefreq is not None:
        parts.append(f"<changefreq>{changefreq}</changefreq>")
    if priority is not None:
        parts.append(f"<priority>{priority}</priority>")
    return f"<url>{''.join(parts)}</url>"


def urlset_xml(*entries: Union[str, dict]) -> bytes:
    """Build a <urlset>; plain strings become bare <loc> entries."""
    body = "".join(
        url_entry(**entry) if isinstance(entry, dict) else url_entry(entry)
        for entry in entries
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"{body}</urlset>"
    ).encode("utf-8")


def index_xml(*children: str) -> bytes:
    body = "".join(f"<sitemap><loc>{child}</loc></sitemap>" for child in children)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
        f"{body}</sitemapindex>"
    ).encode("utf-8")


class FakeSitemapServer:
    """In-memory HTTP responder for sitemap and robots.txt requests."""

    def __init__(self):
        self.routes: dict[str, tuple[int, bytes]] = {}
        self.requests: list[str] = []

    def add(self, url: str, body: Union[str, bytes], status: int = 200) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[url] = (status, body)

    def add_urlset(self, url: str, *entries: Union[str, dict]) -> None:
        self.add(url, urlset_xml(*entries))

    def add_index(self, url: str, *children: str) -> None:
        self.add(url, index_xml(*children))

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        status, body = self.routes.get(url, (404, b""))
        return httpx.Response(status, content=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def fetcher(self, **settings) -> SitemapFetcher:
        return SitemapFetcher(FetcherSettings(**settings), transport=self.transport)


class RecordingNotifier:
    """Stands in for NotificationDispatcher and keeps every payload."""

    def __init__(self):
        self.calls = []

    async def notify_change(self, site_id, payload):
        self.calls.append((site_id, payload))
        return []


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    return AppSettings(
        _env_file=None,
        debug=True,
        api_tokens=["test-token"],
        cron_token=None,
        database=DatabaseSettings(url=f"sqlite:///{tmp_path}/data/sitewatch.db"),
        notification=NotificationSettings(max_retries=2, retry_delay=0.0),
    )


@pytest_asyncio.fixture
async def db(settings):
    manager = DatabaseManager(settings.database)
    await manager.setup()
    yield manager
    await manager.cleanup()


@pytest.fixture
def registry(db) -> SiteRegistry:
    return SiteRegistry(db)


@pytest.fixture
def lifecycle(db) -> ScanLifecycleManager:
    return ScanLifecycleManager(db)


@pytest.fixture
def make_site(registry):
    """Create a site pointing straight at its sitemap."""

    async def _make(root_url: str = SITE_ROOT, owner_id: str = "owner-1", **fields):
        fields.setdefault("robots_url", root_url.rstrip("/") + "/sitemap.xml")
        return await registry.create_site(owner_id, root_url, **fields)

    return _make


@pytest.fixture
def sitemap_server() -> FakeSitemapServer:
    return FakeSitemapServer()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def executor(db, lifecycle, sitemap_server, notifier) -> ScanExecutor:
    return ScanExecutor(
        db,
        lifecycle,
        sitemap_server.fetcher(),
        DiffEngine(),
        notifier,
        scan_timeout_seconds=5,
    )


@pytest.fixture
def discovery(db, sitemap_server) -> SiteDiscovery:
    return SiteDiscovery(db, sitemap_server.fetcher())
