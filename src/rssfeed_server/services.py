"""Account, category, feed and entry operations behind the REST API.

Every function takes the Database first and the acting user's id, checks
ownership, and raises the errors in rssfeed_server.errors.
"""

import hashlib
import hmac
import logging
import math
import re
import secrets
import uuid
from datetime import datetime, timedelta

from rssfeed_server.config import Settings
from rssfeed_server.database import (
    ENTRY_ORDER_COLUMNS,
    Database,
    category_to_dict,
    feed_to_dict,
)
from rssfeed_server.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from rssfeed_server.extractor import extract_article
from rssfeed_server.models import ENTRY_STATUSES, Category, Feed, Session, User, utcnow
from rssfeed_server.refresh import RefreshResult, refresh_feed

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,50}$")
MIN_PASSWORD_LENGTH = 8
MAX_TITLE_LENGTH = 255
MAX_PAGE_SIZE = 100

# scrypt cost parameters
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


# --- Accounts ---


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.scrypt(
        password.encode("utf-8"), salt=salt, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P
    )
    return f"scrypt${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, salt_hex, digest_hex = stored.split("$")
    except ValueError:
        return False
    if scheme != "scrypt":
        return False
    digest = hashlib.scrypt(
        password.encode("utf-8"),
        salt=bytes.fromhex(salt_hex),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
    )
    return hmac.compare_digest(digest.hex(), digest_hex)


def _validate_credentials(username: str, password: str) -> None:
    if not username or not USERNAME_PATTERN.match(username):
        raise ValidationError(
            "Username must be 3-50 characters of letters, digits, '_' or '-'"
        )
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


def create_user(db: Database, username: str, password: str, is_admin: bool = False) -> User:
    """Create an account along with its Default category."""
    _validate_credentials(username, password)
    if db.get_user_by_username(username):
        raise ConflictError("Username already exists")
    user = db.add_user(
        User(username=username, password_hash=hash_password(password), is_admin=is_admin)
    )
    logger.info("Created user '%s' (admin=%s)", user.username, user.is_admin)
    return user


def register_user(db: Database, username: str, password: str) -> User:
    """Open registration for the first account only, which becomes admin."""
    if db.count_users() > 0:
        raise ForbiddenError("Registration is disabled")
    return create_user(db, username, password, is_admin=True)


def bootstrap_admin(db: Database, settings: Settings) -> User | None:
    """Create the configured admin account if it does not exist yet."""
    if not settings.admin_username or not settings.admin_password:
        return None
    existing = db.get_user_by_username(settings.admin_username)
    if existing:
        return existing
    return create_user(
        db, settings.admin_username, settings.admin_password, is_admin=True
    )


def login(
    db: Database,
    username: str,
    password: str,
    settings: Settings,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[Session, User]:
    user = db.get_user_by_username(username or "")
    if user is None or not verify_password(password or "", user.password_hash):
        raise UnauthorizedError("Invalid username or password")

    now = utcnow()
    session = db.add_session(
        Session(
            user_id=user.id,
            token=str(uuid.uuid4()),
            expires_at=now + timedelta(hours=settings.session_max_age_hours),
            user_agent=user_agent,
            ip_address=ip_address,
            created_at=now,
        )
    )
    db.update_user_last_login(user.id, now)
    user.last_login_at = now
    return session, user


def logout(db: Database, token: str) -> None:
    db.delete_session_by_token(token)


def authenticate_token(db: Database, token: str | None, now: datetime | None = None) -> User:
    """Resolve a session token to its user.

    Raises:
        UnauthorizedError: Missing, unknown or expired token.
    """
    if not token:
        raise UnauthorizedError()
    session = db.get_session_by_token(token, now or utcnow())
    if session is None:
        raise UnauthorizedError("Invalid or expired session")
    user = db.get_user_by_id(session.user_id)
    if user is None:
        raise UnauthorizedError("Invalid or expired session")
    return user


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "is_admin": user.is_admin,
        "created_at": user.created_at.isoformat(),
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


# --- Categories ---


def _clean_title(title: str | None, what: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError(f"{what} title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"{what} title is too long")
    return title


def list_categories(db: Database, user_id: int) -> list[dict]:
    return db.get_categories_with_counts(user_id)


def get_category(db: Database, user_id: int, category_id: int) -> Category:
    category = db.get_category_by_id(category_id)
    if category is None or category.user_id != user_id:
        raise NotFoundError("Category")
    return category


def create_category(db: Database, user_id: int, title: str) -> dict:
    title = _clean_title(title, "Category")
    if db.category_title_exists(user_id, title):
        raise ConflictError("Category already exists")
    return category_to_dict(db.add_category(Category(user_id=user_id, title=title)))


def rename_category(db: Database, user_id: int, category_id: int, title: str) -> dict:
    get_category(db, user_id, category_id)
    title = _clean_title(title, "Category")
    if db.category_title_exists(user_id, title, exclude_id=category_id):
        raise ConflictError("Category already exists")
    db.update_category_title(category_id, title)
    return category_to_dict(db.get_category_by_id(category_id))


def delete_category(db: Database, user_id: int, category_id: int) -> None:
    """Delete a category; its feeds move to the first remaining category."""
    get_category(db, user_id, category_id)
    try:
        db.delete_category(category_id, user_id)
    except ValueError as e:
        raise ValidationError(str(e))


# --- Feeds ---


def list_feeds(db: Database, user_id: int) -> list[dict]:
    return db.get_feeds_with_counts(user_id)


def get_feed(db: Database, user_id: int, feed_id: int) -> Feed:
    feed = db.get_feed_for_user(feed_id, user_id)
    if feed is None:
        raise NotFoundError("Feed")
    return feed


def update_feed(
    db: Database,
    user_id: int,
    feed_id: int,
    title: str | None = None,
    category_id: int | None = None,
    disabled: bool | None = None,
) -> dict:
    get_feed(db, user_id, feed_id)
    fields: dict = {}
    if title is not None:
        fields["title"] = _clean_title(title, "Feed")
    if category_id is not None:
        get_category(db, user_id, category_id)
        fields["category_id"] = category_id
    if disabled is not None:
        fields["disabled"] = disabled
    db.update_feed(feed_id, **fields)
    return feed_to_dict(db.get_feed_by_id(feed_id))


def delete_feed(db: Database, user_id: int, feed_id: int) -> None:
    get_feed(db, user_id, feed_id)
    db.delete_feed(feed_id)


def refresh_user_feed(db: Database, user_id: int, feed_id: int, settings: Settings) -> RefreshResult:
    """Refresh one of the user's feeds right now."""
    get_feed(db, user_id, feed_id)
    return refresh_feed(db, feed_id, settings)


# --- Entries ---


def list_entries(
    db: Database,
    user_id: int,
    *,
    status: str | None = None,
    starred: bool | None = None,
    feed_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 50,
    order_by: str = "published_at",
    order_dir: str = "desc",
) -> dict:
    """Filtered, paginated listing of the user's entries."""
    if page < 1:
        raise ValidationError("Invalid page number")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError("Invalid limit")
    if status is not None and status not in ENTRY_STATUSES:
        raise ValidationError("Invalid status")
    if order_by not in ENTRY_ORDER_COLUMNS:
        raise ValidationError("Invalid order_by")
    if order_dir not in ("asc", "desc"):
        raise ValidationError("Invalid order_dir")
    if feed_id is not None:
        get_feed(db, user_id, feed_id)
    if category_id is not None:
        get_category(db, user_id, category_id)

    entries, total = db.query_entries(
        user_id,
        status=status,
        starred=starred,
        feed_id=feed_id,
        category_id=category_id,
        search=search or None,
        limit=limit,
        offset=(page - 1) * limit,
        order_by=order_by,
        order_dir=order_dir,
    )
    return {
        "entries": entries,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit),
        },
    }


def get_entry(db: Database, user_id: int, entry_id: int) -> dict:
    entry = db.get_entry_for_user(entry_id, user_id)
    if entry is None:
        raise NotFoundError("Entry")
    return entry


def get_entry_with_enclosures(db: Database, user_id: int, entry_id: int) -> dict:
    entry = get_entry(db, user_id, entry_id)
    enclosures = [
        {"id": e.id, "url": e.url, "mime_type": e.mime_type, "size": e.size}
        for e in db.get_enclosures(entry_id)
    ]
    return {"entry": entry, "enclosures": enclosures}


def toggle_starred(db: Database, user_id: int, entry_id: int) -> dict:
    get_entry(db, user_id, entry_id)
    db.toggle_entry_starred(entry_id, user_id)
    return get_entry(db, user_id, entry_id)


def set_starred(db: Database, user_id: int, entry_id: int, starred: bool) -> dict:
    get_entry(db, user_id, entry_id)
    db.set_entry_starred(entry_id, user_id, starred)
    return get_entry(db, user_id, entry_id)


def set_status(db: Database, user_id: int, entry_id: int, status: str) -> dict:
    if status not in ENTRY_STATUSES:
        raise ValidationError("Invalid status")
    get_entry(db, user_id, entry_id)
    db.set_entry_status([entry_id], user_id, status)
    return get_entry(db, user_id, entry_id)


def mark_all_read(
    db: Database,
    user_id: int,
    feed_id: int | None = None,
    category_id: int | None = None,
) -> int:
    if feed_id is not None:
        get_feed(db, user_id, feed_id)
    if category_id is not None:
        get_category(db, user_id, category_id)
    return db.mark_all_read(user_id, feed_id=feed_id, category_id=category_id)


def entry_counts(db: Database, user_id: int) -> dict:
    return {
        "unread": db.count_entries(user_id, status="unread"),
        "starred": db.count_entries(user_id, starred=True),
        "total": db.count_entries(user_id),
    }


def fetch_full_content(db: Database, user_id: int, entry_id: int, settings: Settings) -> dict:
    """Extract the article behind an entry. The content is returned, not stored."""
    entry = get_entry(db, user_id, entry_id)
    article = extract_article(entry["url"], timeout=settings.fetch_timeout)
    if article is None:
        raise ValidationError("Could not extract article content")
    return {
        "entry": entry,
        "title": article.title,
        "content": article.content,
        "excerpt": article.excerpt,
    }
