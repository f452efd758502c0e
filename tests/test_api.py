"""Tests for the HTTP API."""

from datetime import datetime, timedelta, timezone

import pytest
from conftest import SITE_ROOT, SITEMAP_URL
from fastapi.testclient import TestClient
from pydantic import SecretStr

from sitewatch.api import create_app

A = "https://example.com/a"
B = "https://example.com/b"
C = "https://example.com/c"

AUTH = {"Authorization": "Bearer test-token"}


@pytest.fixture
def app(settings, sitemap_server):
    app = create_app(settings)
    app.state.fetcher = sitemap_server.fetcher()
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def cron_client(settings, sitemap_server):
    secured = settings.model_copy(update={"cron_token": SecretStr("cron-secret")})
    app = create_app(secured)
    app.state.fetcher = sitemap_server.fetcher()
    with TestClient(app) as client:
        yield client


@pytest.fixture
def create_site(client, sitemap_server):
    def _create(root_url: str = SITE_ROOT, *urls: str, tags=None, headers=None) -> dict:
        sitemap_server.add_urlset(root_url.rstrip("/") + "/sitemap.xml", *(urls or (A, B)))
        response = client.post(
            "/api/sites",
            json={"root_url": root_url, "tags": tags},
            headers={**AUTH, **(headers or {})},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


class TestHealthAndAuth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_token_is_rejected(self, client):
        response = client.get("/api/sites")

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid authentication credentials"}

    def test_wrong_token_is_rejected(self, client):
        response = client.get("/api/sites", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401


class TestSites:
    def test_create_site_records_baseline(self, create_site):
        body = create_site(tags=["news"])

        assert body["url_count"] == 2
        assert body["error"] is None
        assert body["site"]["root_url"] == SITE_ROOT
        assert body["site"]["robots_url"] == SITEMAP_URL
        assert body["site"]["tags"] == ["news"]
        assert body["site"]["last_scan_at"] is not None
        assert body["baseline_scan_id"]

    def test_create_site_rejects_bad_url(self, client):
        response = client.post("/api/sites", json={"root_url": "not a url"}, headers=AUTH)

        assert response.status_code == 422

    def test_list_is_scoped_to_owner(self, client, create_site):
        create_site()
        create_site("https://other.example.com/", headers={"X-Owner-Id": "someone-else"})

        mine = client.get("/api/sites", headers=AUTH).json()
        theirs = client.get(
            "/api/sites", headers={**AUTH, "X-Owner-Id": "someone-else"}
        ).json()

        assert mine["total"] == 1
        assert mine["sites"][0]["root_url"] == SITE_ROOT
        assert theirs["total"] == 1
        assert theirs["sites"][0]["root_url"] == "https://other.example.com/"

    def test_other_owner_gets_404(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.get(
            f"/api/sites/{site_id}", headers={**AUTH, "X-Owner-Id": "someone-else"}
        )

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_patch_requires_a_field(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.patch(f"/api/sites/{site_id}", json={}, headers=AUTH)

        assert response.status_code == 422
        assert response.json() == {"error": "no updates provided"}

    def test_patch_validates_priority(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.patch(f"/api/sites/{site_id}", json={"scan_priority": 9}, headers=AUTH)

        assert response.status_code == 422

    def test_patch_updates_settings(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.patch(
            f"/api/sites/{site_id}",
            json={"scan_priority": 1, "scan_interval_minutes": 60, "enabled": False},
            headers=AUTH,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["scan_priority"] == 1
        assert body["scan_interval_minutes"] == 60
        assert body["enabled"] is False

    def test_patch_assigns_own_group(self, app, client, create_site):
        site_id = create_site()["site"]["id"]
        registry = app.state.orchestrator.registry
        group = client.portal.call(registry.create_group, "api-user", "Customers")

        response = client.patch(f"/api/sites/{site_id}", json={"group_id": group.id}, headers=AUTH)
        cleared = client.patch(f"/api/sites/{site_id}", json={"group_id": None}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["group_id"] == group.id
        assert cleared.json()["group_id"] is None

    def test_patch_rejects_unknown_group(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.patch(f"/api/sites/{site_id}", json={"group_id": "nope"}, headers=AUTH)

        assert response.status_code == 404
        assert response.json()["message"] == "group not found"

    def test_patch_rejects_group_of_another_owner(self, app, client, create_site):
        site_id = create_site()["site"]["id"]
        registry = app.state.orchestrator.registry
        group = client.portal.call(registry.create_group, "someone-else", "Theirs")

        response = client.patch(
            f"/api/sites/{site_id}",
            json={"group_id": group.id, "root_url": "https://moved.example.com/"},
            headers=AUTH,
        )

        assert response.status_code == 404
        site = client.get(f"/api/sites/{site_id}", headers=AUTH).json()
        assert site["group_id"] is None
        assert site["root_url"] == SITE_ROOT


class TestScans:
    def test_manual_scan_is_deduplicated(self, client, create_site):
        site_id = create_site()["site"]["id"]

        first = client.post(f"/api/sites/{site_id}/scan", headers=AUTH).json()
        second = client.post(f"/api/sites/{site_id}/scan", headers=AUTH).json()

        assert first["status"] == "queued"
        assert second["status"] == "already_queued"
        assert second["scan_id"] == first["scan_id"]

    def test_manual_scan_unknown_site(self, client):
        response = client.post("/api/sites/missing/scan", headers=AUTH)

        assert response.status_code == 404

    def test_processed_scan_exposes_diff(self, app, sitemap_server):
        sitemap_server.add_urlset(SITEMAP_URL, A, B)
        with TestClient(app) as client:
            site_id = client.post(
                "/api/sites", json={"root_url": SITE_ROOT}, headers=AUTH
            ).json()["site"]["id"]
            sitemap_server.add_urlset(SITEMAP_URL, B, C)
            scan_id = client.post(f"/api/sites/{site_id}/scan", headers=AUTH).json()["scan_id"]

            processed = client.post("/api/cron/process-queue?max=3").json()

        # Shutdown drained the in-flight scan
        assert processed["ok"] is True
        assert processed["started"] == [{"scan_id": scan_id, "site_id": site_id}]

        with TestClient(app) as fresh:
            response = fresh.get(
                f"/api/sites/{site_id}/scan-diff", params={"scanId": scan_id}, headers=AUTH
            )

        assert response.status_code == 200
        body = response.json()
        assert body["summary"] == {"added": 1, "removed": 1, "updated": 0}
        assert sorted((item["type"], item["detail"]) for item in body["items"]) == [
            ("added", C),
            ("removed", A),
        ]

    def test_scan_diff_unknown_scan(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.get(
            f"/api/sites/{site_id}/scan-diff", params={"scanId": "nope"}, headers=AUTH
        )

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_scan_all_filtered_by_tag(self, client, create_site):
        create_site(tags=["news"])
        create_site("https://blog.example.com/", "https://blog.example.com/a", tags=["blog"])

        response = client.post(
            "/api/sites/scan-all",
            json={"scope": "filtered", "filters": {"tags": ["blog"]}},
            headers=AUTH,
        )

        body = response.json()
        assert body["success"] is True
        assert body["total"] == 1
        assert body["queued"] == 1
        assert body["details"][0]["root_url"] == "https://blog.example.com/"
        assert body["message"] == "Queued 1 of 1 sites (0 skipped, 0 errors)"


class TestNewUrls:
    def test_reports_urls_first_seen_in_range(self, client, create_site):
        create_site()

        response = client.get(
            "/api/new-urls",
            params={"startDate": today(), "endDate": today(), "siteId": "all"},
            headers=AUTH,
        )

        body = response.json()
        assert body["total_count"] == 2
        assert sorted(item["url"] for item in body["urls"]) == [A, B]
        assert body["site_stats"][0]["count"] == 2

    def test_excludes_urls_outside_range(self, client, create_site):
        create_site()
        tomorrow = (datetime.now(timezone.utc).date() + timedelta(days=1)).isoformat()

        body = client.get("/api/new-urls", params={"startDate": tomorrow}, headers=AUTH).json()

        assert body["total_count"] == 0
        assert body["site_stats"] == []


class TestNotifications:
    def test_add_channel(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.post(
            f"/api/sites/{site_id}/notifications",
            json={"type": "webhook", "target": "https://hooks.example.com/x", "secret": "s"},
            headers=AUTH,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["type"] == "webhook"
        assert body["target"] == "https://hooks.example.com/x"
        assert "secret" not in body

    def test_add_channel_rejects_unknown_type(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.post(
            f"/api/sites/{site_id}/notifications",
            json={"type": "pager", "target": "555-0100"},
            headers=AUTH,
        )

        assert response.status_code == 422

    def test_list_and_remove_channels(self, client, create_site):
        site_id = create_site()["site"]["id"]
        created = client.post(
            f"/api/sites/{site_id}/notifications",
            json={"type": "email", "target": "ops@example.com"},
            headers=AUTH,
        ).json()

        listed = client.get(f"/api/sites/{site_id}/notifications", headers=AUTH)

        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert listed.json()["channels"][0]["id"] == created["id"]

        channel_url = f"/api/sites/{site_id}/notifications/{created['id']}"
        removed = client.delete(channel_url, headers=AUTH)
        again = client.delete(channel_url, headers=AUTH)

        assert removed.json() == {"ok": True}
        assert again.status_code == 404
        assert client.get(f"/api/sites/{site_id}/notifications", headers=AUTH).json()["total"] == 0

    def test_channels_of_another_owner_are_hidden(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.get(
            f"/api/sites/{site_id}/notifications",
            headers={**AUTH, "X-Owner-Id": "someone-else"},
        )

        assert response.status_code == 404

    def test_secret_only_for_webhook_channels(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.post(
            f"/api/sites/{site_id}/notifications",
            json={"type": "slack", "target": "https://hooks.slack.com/services/T/B/X", "secret": "s"},
            headers=AUTH,
        )

        assert response.status_code == 422
        assert response.json()["message"] == "slack channels do not accept a secret"

    def test_register_legacy_webhook(self, app, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.post(
            f"/api/sites/{site_id}/webhooks",
            json={"target_url": "https://hooks.example.com/legacy", "secret": "s"},
            headers=AUTH,
        )

        assert response.status_code == 201
        assert response.json()["target_url"] == "https://hooks.example.com/legacy"
        assert "secret" not in response.json()
        registry = app.state.orchestrator.registry
        webhooks = client.portal.call(registry.list_webhooks, site_id)
        assert [hook.secret for hook in webhooks] == ["s"]

    def test_webhook_requires_valid_url(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.post(
            f"/api/sites/{site_id}/webhooks", json={"target_url": "not a url"}, headers=AUTH
        )

        assert response.status_code == 422

    def test_test_notification_without_channels(self, client, create_site):
        site_id = create_site()["site"]["id"]

        response = client.post(f"/api/sites/{site_id}/test-notification", headers=AUTH)

        assert response.json() == {"ok": True, "deliveries": []}


class TestCronTriggers:
    def test_open_without_configured_token(self, client):
        response = client.post("/api/cron/scan")

        assert response.status_code == 200
        assert response.json()["ok"] is True

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"headers": {"Authorization": "Bearer cron-secret"}},
            {"headers": {"X-Cron-Token": "cron-secret"}},
            {"params": {"token": "cron-secret"}},
        ],
    )
    def test_accepts_token_in_any_position(self, cron_client, kwargs):
        response = cron_client.post("/api/cron/scan", **kwargs)

        assert response.status_code == 200

    def test_rejects_missing_or_wrong_token(self, cron_client):
        missing = cron_client.post("/api/cron/scan")
        wrong = cron_client.post("/api/cron/scan", headers={"X-Cron-Token": "nope"})

        assert missing.status_code == 401
        assert missing.json() == {"error": "unauthorized"}
        assert wrong.status_code == 401

    def test_due_scan_pass_skips_fresh_site(self, client, create_site):
        create_site()

        body = client.post("/api/cron/scan").json()

        # The baseline just ran, so nothing is due yet
        assert body["checked"] == 0
        assert body["queued"] == 0

    def test_cleanup_message(self, client):
        response = client.post("/api/cron/cleanup?timeout=30")

        assert response.status_code == 200
        body = response.json()
        assert body["cleaned"] == 0
        assert body["timeout_minutes"] == 30
        assert body["message"] == "Cleaned up 0 stuck scans (timeout: 30 minutes)"

    def test_cleanup_rejects_zero_timeout(self, client):
        response = client.post("/api/cron/cleanup?timeout=0")

        assert response.status_code == 422

    def test_process_queue_with_nothing_queued(self, client):
        body = client.post("/api/cron/process-queue").json()

        assert body["started"] == []
        assert body["capacity"] == 3
