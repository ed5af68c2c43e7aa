"""Tests for the REST API."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import make_item, make_parsed_feed
from rssfeed_server.api import create_app
from rssfeed_server.extractor import ExtractedArticle
from rssfeed_server.feed_parser import FetchError
from rssfeed_server.refresh import SweepResult


@pytest.fixture
def client(db, settings):
    app = create_app(settings, db=db)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth(client):
    response = client.post(
        "/api/auth/register", json={"username": "admin", "password": "password123"}
    )
    token = response.json()["data"]["token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def subscribed(client, auth):
    """Subscribe to a two-item feed; returns the feed payload."""
    parsed = make_parsed_feed([make_item(1), make_item(2)], title="API Feed")
    with patch("rssfeed_server.subscriptions.fetch_feed", return_value=parsed), patch(
        "rssfeed_server.subscriptions.discover_favicon", return_value=None
    ):
        response = client.post(
            "/api/feeds", json={"feed_url": "https://example.com/rss"}, headers=auth
        )
    assert response.status_code == 201
    return response.json()["data"]


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestAuth:
    def test_register_first_user_only(self, client):
        first = client.post(
            "/api/auth/register", json={"username": "admin", "password": "password123"}
        )
        assert first.status_code == 201
        body = first.json()
        assert body["success"] is True
        assert body["data"]["user"]["is_admin"] is True
        assert body["data"]["token"]

        second = client.post(
            "/api/auth/register", json={"username": "other", "password": "password123"}
        )
        assert second.status_code == 403
        assert second.json() == {"success": False, "error": "Registration is disabled"}

    def test_login_me_logout(self, client, auth):
        login = client.post(
            "/api/auth/login", json={"username": "admin", "password": "password123"}
        )
        assert login.status_code == 200
        headers = {"Authorization": f"Bearer {login.json()['data']['token']}"}

        me = client.get("/api/auth/me", headers=headers)
        assert me.json()["data"]["username"] == "admin"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_bad_login(self, client, auth):
        response = client.post(
            "/api/auth/login", json={"username": "admin", "password": "wrong-password"}
        )
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_missing_token(self, client):
        response = client.get("/api/feeds")
        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Authentication required"}

    def test_body_validation(self, client):
        response = client.post("/api/auth/login", json={"username": "admin"})
        assert response.status_code == 400
        assert "password" in response.json()["error"]


class TestCategories:
    def test_crud(self, client, auth):
        created = client.post("/api/categories", json={"title": "News"}, headers=auth)
        assert created.status_code == 201
        category_id = created.json()["data"]["id"]

        duplicate = client.post("/api/categories", json={"title": "news"}, headers=auth)
        assert duplicate.status_code == 409

        renamed = client.put(
            f"/api/categories/{category_id}", json={"title": "World"}, headers=auth
        )
        assert renamed.json()["data"]["title"] == "World"

        titles = [c["title"] for c in client.get("/api/categories", headers=auth).json()["data"]]
        assert sorted(titles) == ["Default", "World"]

        assert client.delete(f"/api/categories/{category_id}", headers=auth).status_code == 200
        assert client.get(f"/api/categories/{category_id}", headers=auth).status_code == 404

    def test_last_category_cannot_be_deleted(self, client, auth):
        default = client.get("/api/categories", headers=auth).json()["data"][0]
        response = client.delete(f"/api/categories/{default['id']}", headers=auth)
        assert response.status_code == 400


class TestFeeds:
    def test_subscribe_and_list(self, client, auth, subscribed):
        assert subscribed["title"] == "API Feed"

        feeds = client.get("/api/feeds", headers=auth).json()["data"]
        assert len(feeds) == 1
        assert feeds[0]["unread_count"] == 2
        assert feeds[0]["category_title"] == "Default"

    def test_subscribe_fetch_failure(self, client, auth):
        with patch(
            "rssfeed_server.subscriptions.fetch_feed",
            side_effect=FetchError("Could not reach URL: HTTP 404"),
        ), patch("rssfeed_server.subscriptions.discover_favicon", return_value=None):
            response = client.post(
                "/api/feeds", json={"feed_url": "https://example.com/missing"}, headers=auth
            )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Failed to fetch feed")
        assert client.get("/api/feeds", headers=auth).json()["data"] == []

    def test_duplicate_subscription(self, client, auth, subscribed):
        response = client.post(
            "/api/feeds", json={"feed_url": "https://example.com/rss"}, headers=auth
        )
        assert response.status_code == 409

    def test_update_get_delete(self, client, auth, subscribed):
        feed_id = subscribed["id"]

        updated = client.put(
            f"/api/feeds/{feed_id}", json={"title": "Renamed", "disabled": True}, headers=auth
        )
        assert updated.json()["data"]["title"] == "Renamed"
        assert client.get(f"/api/feeds/{feed_id}", headers=auth).json()["data"]["disabled"] is True

        assert client.delete(f"/api/feeds/{feed_id}", headers=auth).status_code == 200
        assert client.get(f"/api/feeds/{feed_id}", headers=auth).status_code == 404

    def test_manual_refresh(self, client, auth, subscribed):
        parsed = make_parsed_feed([make_item(1), make_item(2), make_item(3)])
        with patch("rssfeed_server.refresh.fetch_feed", return_value=parsed), patch(
            "rssfeed_server.refresh.discover_favicon", return_value=None
        ):
            response = client.post(f"/api/feeds/{subscribed['id']}/refresh", headers=auth)

        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Refreshed: 1 new entries"

    def test_refresh_all(self, client, auth):
        with patch(
            "rssfeed_server.scheduler.refresh_due_feeds",
            return_value=SweepResult(refreshed=3, errors=1),
        ):
            response = client.post("/api/feeds/refresh-all", headers=auth)

        assert response.json()["data"] == {"refreshed": 3, "errors": 1, "skipped": False}


class TestEntries:
    def test_list_and_filters(self, client, auth, subscribed):
        data = client.get("/api/entries", headers=auth).json()["data"]
        assert data["pagination"]["total"] == 2
        assert data["entries"][0]["feed_title"] == "API Feed"

        bad = client.get("/api/entries?limit=500", headers=auth)
        assert bad.status_code == 400

    def test_star_status_counts(self, client, auth, subscribed):
        entries = client.get("/api/entries", headers=auth).json()["data"]["entries"]
        first, second = entries[0]["id"], entries[1]["id"]

        toggled = client.post(f"/api/entries/{first}/star", headers=auth)
        assert toggled.json()["data"]["starred"] is True
        client.put(f"/api/entries/{second}/star", json={"starred": True}, headers=auth)
        client.put(f"/api/entries/{first}/status", json={"status": "read"}, headers=auth)

        starred = client.get("/api/entries/starred", headers=auth).json()["data"]
        assert starred["pagination"]["total"] == 2

        counts = client.get("/api/entries/counts", headers=auth).json()["data"]
        assert counts == {"unread": 1, "starred": 2, "total": 2}

        marked = client.post("/api/entries/mark-all-read", json={}, headers=auth)
        assert marked.json()["data"] == {"updated": 1}

    def test_get_entry_with_enclosures(self, client, auth, subscribed):
        entry_id = client.get("/api/entries", headers=auth).json()["data"]["entries"][0]["id"]

        data = client.get(f"/api/entries/{entry_id}", headers=auth).json()["data"]

        assert data["entry"]["id"] == entry_id
        assert data["enclosures"] == []

    def test_unknown_entry(self, client, auth):
        response = client.get("/api/entries/999", headers=auth)
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Entry not found"}

    def test_fetch_content(self, client, auth, subscribed):
        entry_id = client.get("/api/entries", headers=auth).json()["data"]["entries"][0]["id"]
        article = ExtractedArticle(title="Full", content="<p>Body</p>", excerpt="Body")

        with patch("rssfeed_server.services.extract_article", return_value=article):
            response = client.post(f"/api/entries/{entry_id}/fetch-content", headers=auth)

        assert response.status_code == 200
        assert response.json()["data"]["content"] == "<p>Body</p>"
