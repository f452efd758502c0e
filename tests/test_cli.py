"""Tests for the command line interface."""

import asyncio
import json

import pytest
from click.testing import CliRunner

from sitewatch.cli import cli
from sitewatch.config import DatabaseSettings
from sitewatch.storage import DatabaseManager, SiteRegistry


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path}/cli.db"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def invoke(runner, database_url):
    def _invoke(*args: str, json_output: bool = False):
        options = ["--database-url", database_url]
        if json_output:
            options.append("--json")
        return runner.invoke(cli, [*options, *args])

    return _invoke


@pytest.fixture
def seed_site(database_url):
    """Create a site directly in the CLI's database."""

    def _seed(root_url: str = "https://example.com/", owner_id: str = "owner-1", tags=None) -> str:
        async def _create() -> str:
            db = DatabaseManager(DatabaseSettings(url=database_url))
            await db.setup()
            try:
                site = await SiteRegistry(db).create_site(
                    owner_id, root_url, robots_url=root_url + "sitemap.xml", tags=tags
                )
                return site.id
            finally:
                await db.cleanup()

        return asyncio.run(_create())

    return _seed


class TestSiteCommands:
    def test_list_empty(self, invoke):
        result = invoke("site", "list")

        assert result.exit_code == 0, result.output
        assert "Found 0 sites" in result.output

    def test_list_json(self, invoke, seed_site):
        site_id = seed_site(tags=["news"])

        result = invoke("site", "list", json_output=True)

        assert result.exit_code == 0, result.output
        body = json.loads(result.output)
        assert body["success"] is True
        assert body["message"] == "Found 1 sites"
        assert body["sites"][0]["id"] == site_id
        assert body["sites"][0]["tags"] == ["news"]
        assert body["sites"][0]["last_scan_at"] is None

    def test_list_filters_by_owner(self, invoke, seed_site):
        seed_site()
        seed_site("https://other.example.com/", owner_id="owner-2")

        result = invoke("site", "list", "--owner", "owner-2", json_output=True)

        body = json.loads(result.output)
        assert [s["root_url"] for s in body["sites"]] == ["https://other.example.com/"]


class TestScanCommands:
    def test_enqueue_is_deduplicated(self, invoke, seed_site):
        site_id = seed_site()

        first = invoke("scan", "enqueue", site_id, json_output=True)
        second = invoke("scan", "enqueue", site_id, json_output=True)

        assert first.exit_code == 0, first.output
        assert json.loads(first.output)["status"] == "queued"
        assert json.loads(second.output)["status"] == "already_queued"
        assert json.loads(second.output)["scan_id"] == json.loads(first.output)["scan_id"]

    def test_enqueue_unknown_site(self, invoke):
        result = invoke("scan", "enqueue", "missing")

        assert result.exit_code == 1
        assert "Site not found" in result.output

    def test_scan_all(self, invoke, seed_site):
        seed_site(tags=["news"])
        seed_site("https://blog.example.com/", tags=["blog"])

        result = invoke("scan", "all", "--scope", "filtered", "--tag", "blog", json_output=True)

        assert result.exit_code == 0, result.output
        body = json.loads(result.output)
        assert body["scope"] == "filtered"
        assert body["total"] == 1
        assert body["queued"] == 1
        assert body["message"] == "Queued 1 of 1 sites (0 skipped, 0 errors)"

    def test_scan_all_rejects_unknown_scope(self, invoke):
        result = invoke("scan", "all", "--scope", "everything")

        assert result.exit_code == 2


class TestCronCommands:
    def test_cleanup(self, invoke):
        result = invoke("cron", "cleanup", "--timeout", "45")

        assert result.exit_code == 0, result.output
        assert "Cleaned up 0 stuck scans (timeout: 45 minutes)" in result.output

    def test_cleanup_rejects_zero_timeout(self, invoke):
        result = invoke("cron", "cleanup", "--timeout", "0")

        assert result.exit_code == 2

    def test_scan_pass_queues_never_scanned_site(self, invoke, seed_site):
        site_id = seed_site()

        result = invoke("cron", "scan", json_output=True)

        assert result.exit_code == 0, result.output
        body = json.loads(result.output)
        assert body["checked"] == 1
        assert body["queued"] == 1
        assert body["results"][0]["site_id"] == site_id


class TestNotifyCommands:
    def test_add_channel(self, invoke, seed_site):
        site_id = seed_site()

        result = invoke("notify", "add", site_id, "webhook", "https://hooks.example.com/x")

        assert result.exit_code == 0, result.output
        assert "Added webhook channel" in result.output

    def test_add_channel_rejects_unknown_type(self, invoke, seed_site):
        site_id = seed_site()

        result = invoke("notify", "add", site_id, "pager", "555-0100")

        assert result.exit_code == 2

    def test_test_without_channels(self, invoke, seed_site):
        site_id = seed_site()

        result = invoke("notify", "test", site_id)

        assert result.exit_code == 0, result.output
        assert "Delivered to 0 of 0 channels" in result.output

    def test_list_and_remove_channel(self, invoke, seed_site):
        site_id = seed_site()
        added = json.loads(
            invoke("notify", "add", site_id, "email", "ops@example.com", json_output=True).output
        )
        invoke("notify", "webhook", site_id, "https://hooks.example.com/legacy", "--secret", "s")

        listed = invoke("notify", "list", site_id, json_output=True)

        assert listed.exit_code == 0, listed.output
        channels = json.loads(listed.output)["channels"]
        assert [c["type"] for c in channels] == ["email", "webhook (legacy)"]
        assert channels[1]["target"] == "https://hooks.example.com/legacy"

        removed = invoke("notify", "remove", site_id, added["channel_id"])

        assert removed.exit_code == 0, removed.output
        assert f"Removed channel {added['channel_id']}" in removed.output
        remaining = json.loads(invoke("notify", "list", site_id, json_output=True).output)
        assert [c["type"] for c in remaining["channels"]] == ["webhook (legacy)"]

    def test_remove_unknown_channel_fails(self, invoke, seed_site):
        site_id = seed_site()

        result = invoke("notify", "remove", site_id, "missing")

        assert result.exit_code == 1
        assert "Channel not found" in result.output

    def test_list_unknown_site_fails(self, invoke):
        result = invoke("notify", "list", "missing")

        assert result.exit_code == 1
        assert "Site not found" in result.output

    def test_secret_rejected_for_slack(self, invoke, seed_site):
        site_id = seed_site()

        result = invoke(
            "notify", "add", site_id, "slack", "https://hooks.slack.com/services/T/B/X", "--secret", "s"
        )

        assert result.exit_code == 1
        assert "slack channels do not accept a secret" in result.output
