"""Tests for account, category, feed and entry services."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from conftest import make_item
from rssfeed_server import services
from rssfeed_server.config import Settings
from rssfeed_server.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from rssfeed_server.extractor import ExtractedArticle
from rssfeed_server.models import User, utcnow
from rssfeed_server.refresh import ingest_items


class TestAccounts:
    def test_password_hashing(self):
        stored = services.hash_password("correct horse")
        assert stored.startswith("scrypt$")
        assert services.verify_password("correct horse", stored)
        assert not services.verify_password("wrong horse", stored)
        assert not services.verify_password("anything", "garbage")

    def test_first_registration_is_admin_then_closed(self, db):
        admin = services.register_user(db, "admin", "password123")
        assert admin.is_admin
        assert db.get_default_category(admin.id) is not None

        with pytest.raises(ForbiddenError):
            services.register_user(db, "second", "password123")

    @pytest.mark.parametrize(
        "username, password",
        [("ab", "password123"), ("bad name", "password123"), ("okname", "short")],
    )
    def test_credential_rules(self, db, username, password):
        with pytest.raises(ValidationError):
            services.create_user(db, username, password)

    def test_duplicate_username(self, db):
        services.create_user(db, "carol", "password123")
        with pytest.raises(ConflictError):
            services.create_user(db, "Carol", "password123")

    def test_login_and_authenticate(self, db, settings):
        services.create_user(db, "dave", "password123")

        session, user = services.login(db, "dave", "password123", settings, user_agent="pytest")

        assert user.last_login_at is not None
        assert session.expires_at > utcnow() + timedelta(hours=23)
        assert services.authenticate_token(db, session.token).id == user.id

        services.logout(db, session.token)
        with pytest.raises(UnauthorizedError):
            services.authenticate_token(db, session.token)

    def test_login_bad_password(self, db, settings):
        services.create_user(db, "erin", "password123")
        with pytest.raises(UnauthorizedError, match="Invalid username or password"):
            services.login(db, "erin", "nope-nope", settings)
        with pytest.raises(UnauthorizedError):
            services.login(db, "nobody", "password123", settings)

    def test_expired_token(self, db, settings):
        services.create_user(db, "frank", "password123")
        session, _ = services.login(db, "frank", "password123", settings)

        with pytest.raises(UnauthorizedError):
            services.authenticate_token(db, session.token, now=utcnow() + timedelta(days=2))

    def test_bootstrap_admin(self, db, tmp_db_path):
        settings = Settings(
            db_path=tmp_db_path, admin_username="root", admin_password="password123"
        )
        first = services.bootstrap_admin(db, settings)
        again = services.bootstrap_admin(db, settings)

        assert first.is_admin
        assert again.id == first.id
        assert db.count_users() == 1

    def test_bootstrap_admin_unconfigured(self, db, settings):
        assert services.bootstrap_admin(db, settings) is None


class TestCategories:
    def test_create_rename_delete(self, db, user):
        news = services.create_category(db, user.id, "  News ")
        assert news["title"] == "News"

        with pytest.raises(ConflictError):
            services.create_category(db, user.id, "news")

        renamed = services.rename_category(db, user.id, news["id"], "World")
        assert renamed["title"] == "World"

        services.delete_category(db, user.id, news["id"])
        assert [c["title"] for c in services.list_categories(db, user.id)] == ["Default"]

    def test_blank_title(self, db, user):
        with pytest.raises(ValidationError):
            services.create_category(db, user.id, "   ")

    def test_last_category_kept(self, db, user, category):
        with pytest.raises(ValidationError, match="last category"):
            services.delete_category(db, user.id, category.id)

    def test_other_users_category(self, db, user):
        bob = db.add_user(User(username="bob", password_hash="x"))
        bobs = db.get_default_category(bob.id)
        with pytest.raises(NotFoundError):
            services.get_category(db, user.id, bobs.id)


class TestFeeds:
    def test_update_and_delete(self, db, user, feed):
        news = services.create_category(db, user.id, "News")

        updated = services.update_feed(
            db, user.id, feed.id, title="Renamed", category_id=news["id"], disabled=True
        )

        assert updated["title"] == "Renamed"
        assert updated["category_id"] == news["id"]
        assert updated["disabled"] is True

        services.delete_feed(db, user.id, feed.id)
        with pytest.raises(NotFoundError):
            services.get_feed(db, user.id, feed.id)

    def test_feeds_private_to_owner(self, db, feed, settings):
        bob = db.add_user(User(username="bob", password_hash="x"))
        with pytest.raises(NotFoundError):
            services.update_feed(db, bob.id, feed.id, title="mine now")
        with pytest.raises(NotFoundError):
            services.refresh_user_feed(db, bob.id, feed.id, settings)


class TestEntries:
    def test_list_entries_pagination(self, db, user, feed):
        ingest_items(db, feed, [make_item(n) for n in range(5)])

        result = services.list_entries(db, user.id, page=2, limit=2)

        assert len(result["entries"]) == 2
        assert result["pagination"] == {"page": 2, "limit": 2, "total": 5, "total_pages": 3}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"page": 0},
            {"limit": 0},
            {"limit": 101},
            {"status": "archived"},
            {"order_by": "title"},
            {"order_dir": "sideways"},
        ],
    )
    def test_list_entries_rejects_bad_options(self, db, user, kwargs):
        with pytest.raises(ValidationError):
            services.list_entries(db, user.id, **kwargs)

    def test_list_entries_unknown_feed(self, db, user):
        with pytest.raises(NotFoundError):
            services.list_entries(db, user.id, feed_id=12345)

    def test_star_status_and_counts(self, db, user, feed):
        ingest_items(db, feed, [make_item(1), make_item(2)])
        first, second = db.get_entries_for_feed(feed.id)

        assert services.toggle_starred(db, user.id, first.id)["starred"] is True
        assert services.set_starred(db, user.id, second.id, True)["starred"] is True
        assert services.set_status(db, user.id, first.id, "read")["status"] == "read"

        assert services.entry_counts(db, user.id) == {"unread": 1, "starred": 2, "total": 2}

        assert services.mark_all_read(db, user.id) == 1
        assert services.entry_counts(db, user.id)["unread"] == 0

    def test_set_status_invalid(self, db, user, feed):
        ingest_items(db, feed, [make_item(1)])
        entry = db.get_entries_for_feed(feed.id)[0]
        with pytest.raises(ValidationError):
            services.set_status(db, user.id, entry.id, "deleted")

    def test_unknown_entry(self, db, user):
        with pytest.raises(NotFoundError, match="Entry not found"):
            services.get_entry(db, user.id, 42)

    def test_fetch_full_content(self, db, user, feed, settings):
        ingest_items(db, feed, [make_item(1)])
        entry = db.get_entries_for_feed(feed.id)[0]
        article = ExtractedArticle(title="Full", content="<p>Body</p>", excerpt="Body")

        with patch("rssfeed_server.services.extract_article", return_value=article) as extract:
            result = services.fetch_full_content(db, user.id, entry.id, settings)

        extract.assert_called_once_with(entry.url, timeout=settings.fetch_timeout)
        assert result["content"] == "<p>Body</p>"
        assert result["entry"]["id"] == entry.id

    def test_fetch_full_content_failure(self, db, user, feed, settings):
        ingest_items(db, feed, [make_item(1)])
        entry = db.get_entries_for_feed(feed.id)[0]

        with patch("rssfeed_server.services.extract_article", return_value=None):
            with pytest.raises(ValidationError, match="Could not extract"):
                services.fetch_full_content(db, user.id, entry.id, settings)
