"""Tests for snapshot diffing."""

import pytest
from sqlalchemy import select

from sitewatch.diff import DiffEngine
from sitewatch.sitemap import FetchResult, SitemapRecord
from sitewatch.storage import Change, Scan, UrlRecord

A = "https://example.com/a"
B = "https://example.com/b"
C = "https://example.com/c"


@pytest.fixture
def engine() -> DiffEngine:
    return DiffEngine()


@pytest.fixture
def new_scan(db):
    async def _new(site_id: str) -> str:
        async with db.get_transaction() as session:
            scan = Scan(site_id=site_id, status="success")
            session.add(scan)
            await session.flush()
            return scan.id

    return _new


@pytest.fixture
def run_diff(db, engine, new_scan):
    """Diff ``records`` in a fresh scan; returns (scan_id, delta)."""

    async def _run(site_id: str, *records: SitemapRecord):
        scan_id = await new_scan(site_id)
        async with db.get_transaction() as session:
            delta = await engine.diff(session, site_id, scan_id, list(records))
        return scan_id, delta

    return _run


async def load_urls(db, site_id: str) -> dict[str, UrlRecord]:
    async with db.get_session() as session:
        result = await session.execute(select(UrlRecord).where(UrlRecord.site_id == site_id))
        return {row.loc: row for row in result.scalars()}


async def load_changes(db, scan_id: str) -> list[Change]:
    async with db.get_session() as session:
        result = await session.execute(select(Change).where(Change.scan_id == scan_id))
        return list(result.scalars())


class TestDiffEngine:
    """Added, removed and updated classification against the stored snapshot."""

    async def test_first_diff_adds_everything(self, db, make_site, run_diff):
        site = await make_site()

        scan_id, delta = await run_diff(site.id, SitemapRecord(A), SitemapRecord(B))

        assert sorted(delta.added) == [A, B]
        assert delta.removed == [] and delta.updated == []
        assert delta.url_count == 2
        assert len(await load_changes(db, scan_id)) == 2

    async def test_baseline_stores_records_without_changes(self, db, engine, make_site, new_scan):
        site = await make_site()
        scan_id = await new_scan(site.id)

        async with db.get_transaction() as session:
            delta = await engine.diff(
                session, site.id, scan_id, [SitemapRecord(A), SitemapRecord(B)], baseline=True
            )

        assert not delta.has_changes
        assert delta.url_count == 2
        assert sorted(await load_urls(db, site.id)) == [A, B]
        assert await load_changes(db, scan_id) == []

    async def test_added_and_removed(self, db, make_site, run_diff):
        site = await make_site()
        await run_diff(site.id, SitemapRecord(A), SitemapRecord(B))

        scan_id, delta = await run_diff(site.id, SitemapRecord(B), SitemapRecord(C))

        assert delta.added == [C]
        assert delta.removed == [A]
        assert delta.updated == []
        assert delta.counts() == {"added": 1, "removed": 1, "updated": 0}

        urls = await load_urls(db, site.id)
        assert urls[A].status == "removed"
        assert urls[A].removed_at is not None
        assert urls[B].status == "active"
        assert urls[C].status == "active"

        changes = await load_changes(db, scan_id)
        assert sorted((c.type, c.detail) for c in changes) == [("added", C), ("removed", A)]
        assert all(c.url_id is not None for c in changes)

    async def test_repeat_fetch_changes_nothing(self, db, make_site, run_diff):
        site = await make_site()
        await run_diff(site.id, SitemapRecord(A), SitemapRecord(B))

        scan_id, delta = await run_diff(site.id, SitemapRecord(A), SitemapRecord(B))

        assert not delta.has_changes
        assert await load_changes(db, scan_id) == []

    async def test_updated_metadata_records_detail(self, db, make_site, run_diff):
        site = await make_site()
        await run_diff(site.id, SitemapRecord(A, changefreq="daily", priority="0.5"))

        scan_id, delta = await run_diff(
            site.id, SitemapRecord(A, changefreq="weekly", priority="0.5")
        )

        assert delta.updated == [A]
        assert delta.added == [] and delta.removed == []
        changes = await load_changes(db, scan_id)
        assert len(changes) == 1
        assert changes[0].type == "updated"
        assert changes[0].detail == f"{A} changefreq: daily -> weekly"
        urls = await load_urls(db, site.id)
        assert urls[A].changefreq == "weekly"

    async def test_updated_detail_shows_missing_values(self, db, make_site, run_diff):
        site = await make_site()
        await run_diff(site.id, SitemapRecord(A, priority="0.8"))

        scan_id, _ = await run_diff(site.id, SitemapRecord(A, changefreq="daily"))

        (change,) = await load_changes(db, scan_id)
        assert change.detail == f"{A} changefreq: none -> daily; priority: 0.8 -> none"

    async def test_lastmod_alone_is_not_an_update(self, db, make_site, run_diff):
        site = await make_site()
        await run_diff(site.id, SitemapRecord(A, lastmod="2024-01-01"))

        _, delta = await run_diff(site.id, SitemapRecord(A, lastmod="2024-02-01"))

        assert not delta.has_changes
        urls = await load_urls(db, site.id)
        assert urls[A].lastmod == "2024-02-01"

    async def test_reappearing_url_is_added_again(self, db, make_site, run_diff):
        site = await make_site()
        await run_diff(site.id, SitemapRecord(A), SitemapRecord(B))
        await run_diff(site.id, SitemapRecord(B))
        removed = (await load_urls(db, site.id))[A]

        scan_id, delta = await run_diff(site.id, SitemapRecord(A), SitemapRecord(B))

        assert delta.added == [A]
        urls = await load_urls(db, site.id)
        assert urls[A].status == "active"
        assert urls[A].removed_at is None
        assert urls[A].id == removed.id
        assert urls[A].first_seen_at >= removed.first_seen_at
        assert [c.type for c in await load_changes(db, scan_id)] == ["added"]

    async def test_removed_url_stays_removed(self, db, make_site, run_diff):
        site = await make_site()
        await run_diff(site.id, SitemapRecord(A), SitemapRecord(B))
        await run_diff(site.id, SitemapRecord(B))

        scan_id, delta = await run_diff(site.id, SitemapRecord(B))

        assert not delta.has_changes
        assert await load_changes(db, scan_id) == []

    async def test_duplicate_locations_collapse(self, make_site, run_diff):
        site = await make_site()

        _, delta = await run_diff(
            site.id,
            SitemapRecord(A, changefreq="daily"),
            SitemapRecord(A, changefreq="weekly"),
        )

        assert delta.added == [A]
        assert delta.url_count == 1

    async def test_accepts_fetch_result(self, db, engine, make_site, new_scan):
        site = await make_site()
        scan_id = await new_scan(site.id)
        fetched = FetchResult(records=[SitemapRecord(A)], sitemaps_fetched=1)

        async with db.get_transaction() as session:
            delta = await engine.diff(session, site.id, scan_id, fetched)

        assert delta.added == [A]

    async def test_sites_are_isolated(self, db, make_site, run_diff):
        first = await make_site("https://one.example.com/")
        second = await make_site("https://two.example.com/")
        await run_diff(first.id, SitemapRecord(A))

        _, delta = await run_diff(second.id, SitemapRecord(B))

        assert delta.added == [B]
        assert delta.removed == []
        assert list(await load_urls(db, first.id)) == [A]


class TestChangedFields:
    def test_reports_only_differing_fields(self):
        stored = UrlRecord(loc=A, changefreq="daily", priority="0.5")
        fetched = SitemapRecord(A, changefreq="daily", priority="0.9")

        assert DiffEngine().changed_fields(stored, fetched) == [("priority", "0.5", "0.9")]

    def test_compare_fields_can_be_extended(self):
        class LastmodDiffEngine(DiffEngine):
            compare_fields = ("changefreq", "priority", "lastmod")

        stored = UrlRecord(loc=A, lastmod="2024-01-01")
        fetched = SitemapRecord(A, lastmod="2024-03-01")

        assert LastmodDiffEngine().changed_fields(stored, fetched) == [
            ("lastmod", "2024-01-01", "2024-03-01")
        ]
