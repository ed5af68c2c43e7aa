"""SQLite database operations for RSS Feed Server."""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from rssfeed_server.backoff import backoff_minutes, next_fetch_time
from rssfeed_server.errors import ConflictError, PersistenceError
from rssfeed_server.models import (
    Category,
    Enclosure,
    Entry,
    Feed,
    Session,
    User,
    utcnow,
)

DEFAULT_CATEGORY_TITLE = "Default"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    is_admin INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login_at TEXT
);

CREATE TABLE IF NOT EXISTS user_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    token TEXT NOT NULL UNIQUE,
    user_agent TEXT,
    ip_address TEXT,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_user_sessions_expires_at ON user_sessions(expires_at);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title TEXT NOT NULL COLLATE NOCASE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(user_id, title)
);

CREATE INDEX IF NOT EXISTS idx_categories_user_id ON categories(user_id);

CREATE TABLE IF NOT EXISTS feeds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
    feed_url TEXT NOT NULL,
    title TEXT NOT NULL,
    site_url TEXT NOT NULL DEFAULT '',
    description TEXT,
    favicon_url TEXT,
    etag TEXT,
    last_modified TEXT,
    last_fetched_at TEXT,
    next_fetch_at TEXT,
    error_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    disabled INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(user_id, feed_url)
);

CREATE INDEX IF NOT EXISTS idx_feeds_user_id ON feeds(user_id);
CREATE INDEX IF NOT EXISTS idx_feeds_category_id ON feeds(category_id);
CREATE INDEX IF NOT EXISTS idx_feeds_next_fetch_at ON feeds(next_fetch_at);

CREATE TABLE IF NOT EXISTS entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
    fingerprint TEXT NOT NULL,
    title TEXT NOT NULL,
    url TEXT NOT NULL,
    author TEXT,
    summary TEXT,
    published_at TEXT NOT NULL,
    reading_time INTEGER NOT NULL DEFAULT 1,
    starred INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'unread',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(feed_id, fingerprint)
);

CREATE INDEX IF NOT EXISTS idx_entries_user_id ON entries(user_id);
CREATE INDEX IF NOT EXISTS idx_entries_feed_id ON entries(feed_id);
CREATE INDEX IF NOT EXISTS idx_entries_status ON entries(status);
CREATE INDEX IF NOT EXISTS idx_entries_starred ON entries(starred);
CREATE INDEX IF NOT EXISTS idx_entries_published_at ON entries(published_at);

CREATE TABLE IF NOT EXISTS enclosures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    mime_type TEXT,
    size INTEGER
);

CREATE INDEX IF NOT EXISTS idx_enclosures_entry_id ON enclosures(entry_id);
"""

ENTRY_ORDER_COLUMNS = ("published_at", "created_at")

_ENTRY_SELECT = """
    SELECT entries.*,
           feeds.title AS feed_title,
           feeds.favicon_url AS feed_favicon_url,
           categories.id AS category_id,
           categories.title AS category_title
    FROM entries
    JOIN feeds ON feeds.id = entries.feed_id
    JOIN categories ON categories.id = feeds.category_id
"""


class Database:
    """SQLite database manager for users, categories, feeds and entries.

    One connection is shared by the API worker threads and the scheduler;
    every statement runs under an internal lock and each write commits as a
    single transaction.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    @contextmanager
    def _transaction(self):
        """Run writes atomically, mapping sqlite errors to application errors."""
        with self._lock:
            conn = self.conn
            try:
                yield conn
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "UNIQUE" in str(e):
                    raise ConflictError("Record already exists") from e
                raise PersistenceError(f"Database write failed: {e}") from e
            except sqlite3.Error as e:
                conn.rollback()
                raise PersistenceError(f"Database write failed: {e}") from e

    def _fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # --- User operations ---

    def add_user(self, user: User) -> User:
        """Insert a user together with their first category."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO users (username, password_hash, is_admin,
                   created_at, updated_at, last_login_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    user.username.lower(),
                    user.password_hash,
                    int(user.is_admin),
                    _dt_to_str(user.created_at),
                    _dt_to_str(user.updated_at),
                    _dt_to_str(user.last_login_at),
                ),
            )
            user.id = cursor.lastrowid
            user.username = user.username.lower()
            now = _dt_to_str(utcnow())
            conn.execute(
                """INSERT INTO categories (user_id, title, created_at, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (user.id, DEFAULT_CATEGORY_TITLE, now, now),
            )
        return user

    def get_user_by_id(self, user_id: int) -> User | None:
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return _row_to_user(row) if row else None

    def get_user_by_username(self, username: str) -> User | None:
        row = self._fetchone(
            "SELECT * FROM users WHERE username = ? COLLATE NOCASE",
            (username.lower(),),
        )
        return _row_to_user(row) if row else None

    def count_users(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS cnt FROM users")
        return row["cnt"] if row else 0

    def update_user_last_login(self, user_id: int, timestamp: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE users SET last_login_at = ?, updated_at = ? WHERE id = ?",
                (_dt_to_str(timestamp), _dt_to_str(timestamp), user_id),
            )

    # --- Session operations ---

    def add_session(self, session: Session) -> Session:
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO user_sessions (user_id, token, user_agent,
                   ip_address, created_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    session.user_id,
                    session.token,
                    session.user_agent,
                    session.ip_address,
                    _dt_to_str(session.created_at),
                    _dt_to_str(session.expires_at),
                ),
            )
        session.id = cursor.lastrowid
        return session

    def get_session_by_token(self, token: str, now: datetime) -> Session | None:
        """Look up a session that has not expired yet."""
        row = self._fetchone(
            "SELECT * FROM user_sessions WHERE token = ? AND expires_at > ?",
            (token, _dt_to_str(now)),
        )
        return _row_to_session(row) if row else None

    def delete_session_by_token(self, token: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM user_sessions WHERE token = ?", (token,)
            )
        return cursor.rowcount > 0

    def delete_expired_sessions(self, now: datetime) -> int:
        """Purge sessions whose expiry has passed. Returns count deleted."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM user_sessions WHERE expires_at <= ?",
                (_dt_to_str(now),),
            )
        return cursor.rowcount

    # --- Category operations ---

    def add_category(self, category: Category) -> Category:
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO categories (user_id, title, created_at, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (
                    category.user_id,
                    category.title,
                    _dt_to_str(category.created_at),
                    _dt_to_str(category.updated_at),
                ),
            )
        category.id = cursor.lastrowid
        return category

    def get_category_by_id(self, category_id: int) -> Category | None:
        row = self._fetchone(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        )
        return _row_to_category(row) if row else None

    def get_default_category(self, user_id: int) -> Category | None:
        """Return the user's oldest category."""
        row = self._fetchone(
            "SELECT * FROM categories WHERE user_id = ? ORDER BY id LIMIT 1",
            (user_id,),
        )
        return _row_to_category(row) if row else None

    def get_categories_with_counts(self, user_id: int) -> list[dict]:
        """List a user's categories with feed and unread entry counts."""
        rows = self._fetchall(
            """SELECT categories.*,
                      (SELECT COUNT(*) FROM feeds
                       WHERE feeds.category_id = categories.id) AS feed_count,
                      (SELECT COUNT(*) FROM entries
                       JOIN feeds ON feeds.id = entries.feed_id
                       WHERE feeds.category_id = categories.id
                         AND entries.status = 'unread') AS unread_count
               FROM categories
               WHERE categories.user_id = ?
               ORDER BY categories.title""",
            (user_id,),
        )
        return [
            {
                **category_to_dict(_row_to_category(r)),
                "feed_count": r["feed_count"],
                "unread_count": r["unread_count"],
            }
            for r in rows
        ]

    def category_title_exists(
        self, user_id: int, title: str, exclude_id: int | None = None
    ) -> bool:
        query = "SELECT 1 FROM categories WHERE user_id = ? AND title = ? COLLATE NOCASE"
        params: list = [user_id, title]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        return self._fetchone(query, params) is not None

    def update_category_title(self, category_id: int, title: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE categories SET title = ?, updated_at = ? WHERE id = ?",
                (title, _dt_to_str(utcnow()), category_id),
            )

    def count_categories(self, user_id: int) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM categories WHERE user_id = ?", (user_id,)
        )
        return row["cnt"] if row else 0

    def delete_category(self, category_id: int, user_id: int) -> bool:
        """Delete a category, moving its feeds to the first remaining one.

        Raises:
            ValueError: If this is the user's last category.
        """
        with self._transaction() as conn:
            target = conn.execute(
                """SELECT id FROM categories WHERE user_id = ? AND id != ?
                   ORDER BY title LIMIT 1""",
                (user_id, category_id),
            ).fetchone()
            if target is None:
                raise ValueError("Cannot delete the last category")
            conn.execute(
                """UPDATE feeds SET category_id = ?, updated_at = ?
                   WHERE category_id = ? AND user_id = ?""",
                (target["id"], _dt_to_str(utcnow()), category_id, user_id),
            )
            cursor = conn.execute(
                "DELETE FROM categories WHERE id = ? AND user_id = ?",
                (category_id, user_id),
            )
        return cursor.rowcount > 0

    # --- Feed operations ---

    def add_feed(self, feed: Feed) -> Feed:
        """Insert a new feed and return it with its assigned id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO feeds (user_id, category_id, feed_url, title,
                   site_url, description, favicon_url, etag, last_modified,
                   last_fetched_at, next_fetch_at, error_count, error_message,
                   disabled, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    feed.user_id,
                    feed.category_id,
                    feed.feed_url,
                    feed.title,
                    feed.site_url or "",
                    feed.description,
                    feed.favicon_url,
                    feed.etag,
                    feed.last_modified,
                    _dt_to_str(feed.last_fetched_at),
                    _dt_to_str(feed.next_fetch_at),
                    feed.error_count,
                    feed.error_message,
                    int(feed.disabled),
                    _dt_to_str(feed.created_at),
                    _dt_to_str(feed.updated_at),
                ),
            )
        feed.id = cursor.lastrowid
        return feed

    def get_feed_by_id(self, feed_id: int) -> Feed | None:
        """Look up a feed by its id."""
        row = self._fetchone("SELECT * FROM feeds WHERE id = ?", (feed_id,))
        return _row_to_feed(row) if row else None

    def get_feed_for_user(self, feed_id: int, user_id: int) -> Feed | None:
        row = self._fetchone(
            "SELECT * FROM feeds WHERE id = ? AND user_id = ?", (feed_id, user_id)
        )
        return _row_to_feed(row) if row else None

    def get_feeds_with_counts(self, user_id: int) -> list[dict]:
        """Return a user's feeds with category title and entry counts."""
        rows = self._fetchall(
            """SELECT feeds.*,
                      categories.title AS category_title,
                      (SELECT COUNT(*) FROM entries
                       WHERE entries.feed_id = feeds.id) AS total_count,
                      (SELECT COUNT(*) FROM entries
                       WHERE entries.feed_id = feeds.id
                         AND entries.status = 'unread') AS unread_count
               FROM feeds
               JOIN categories ON categories.id = feeds.category_id
               WHERE feeds.user_id = ?
               ORDER BY feeds.title COLLATE NOCASE""",
            (user_id,),
        )
        return [
            {
                **feed_to_dict(_row_to_feed(r)),
                "category_title": r["category_title"],
                "total_count": r["total_count"],
                "unread_count": r["unread_count"],
            }
            for r in rows
        ]

    def feed_url_exists(self, user_id: int, feed_url: str) -> bool:
        """Check whether the user already subscribes to this exact URL."""
        row = self._fetchone(
            "SELECT 1 FROM feeds WHERE user_id = ? AND feed_url = ?",
            (user_id, feed_url),
        )
        return row is not None

    def update_feed(self, feed_id: int, **fields) -> None:
        """Update user-editable feed columns (title, category_id, disabled, favicon_url)."""
        allowed = ("title", "category_id", "disabled", "favicon_url")
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return
        if "disabled" in updates:
            updates["disabled"] = int(bool(updates["disabled"]))
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        with self._transaction() as conn:
            conn.execute(
                f"UPDATE feeds SET {set_clause}, updated_at = ? WHERE id = ?",
                [*updates.values(), _dt_to_str(utcnow()), feed_id],
            )

    def delete_feed(self, feed_id: int) -> bool:
        """Delete a feed and its entries (cascade). Returns True if deleted."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
        return cursor.rowcount > 0

    def find_due_feeds(self, limit: int, now: datetime) -> list[Feed]:
        """Return enabled feeds whose next fetch time is unset or has passed.

        Most overdue first; feeds that were never scheduled sort ahead of all others.
        """
        rows = self._fetchall(
            """SELECT * FROM feeds
               WHERE disabled = 0
                 AND (next_fetch_at IS NULL OR next_fetch_at <= ?)
               ORDER BY next_fetch_at ASC, id ASC
               LIMIT ?""",
            (_dt_to_str(now), limit),
        )
        return [_row_to_feed(r) for r in rows]

    def record_fetch_success(
        self,
        feed_id: int,
        now: datetime,
        next_fetch_minutes: int,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> None:
        """Store new validators, clear error state and schedule the next fetch."""
        with self._transaction() as conn:
            conn.execute(
                """UPDATE feeds
                   SET last_fetched_at = ?, next_fetch_at = ?,
                       etag = ?, last_modified = ?,
                       error_count = 0, error_message = NULL, updated_at = ?
                   WHERE id = ?""",
                (
                    _dt_to_str(now),
                    _dt_to_str(next_fetch_time(now, next_fetch_minutes)),
                    etag,
                    last_modified,
                    _dt_to_str(now),
                    feed_id,
                ),
            )

    def record_fetch_failure(
        self,
        feed_id: int,
        now: datetime,
        base_interval_minutes: int,
        error_message: str,
    ) -> int:
        """Increment the error count and push next fetch out by the backoff delay.

        Returns the new consecutive error count.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT error_count FROM feeds WHERE id = ?", (feed_id,)
            ).fetchone()
            error_count = (row["error_count"] if row else 0) + 1
            delay = backoff_minutes(base_interval_minutes, error_count)
            conn.execute(
                """UPDATE feeds
                   SET last_fetched_at = ?, next_fetch_at = ?,
                       error_count = ?, error_message = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    _dt_to_str(now),
                    _dt_to_str(next_fetch_time(now, delay)),
                    error_count,
                    error_message,
                    _dt_to_str(now),
                    feed_id,
                ),
            )
        return error_count

    # --- Entry operations ---

    def entry_exists(self, feed_id: int, fingerprint: str) -> bool:
        """Check if an entry with the given fingerprint exists for a feed."""
        row = self._fetchone(
            "SELECT 1 FROM entries WHERE feed_id = ? AND fingerprint = ?",
            (feed_id, fingerprint),
        )
        return row is not None

    def create_entry_if_absent(self, entry: Entry) -> Entry | None:
        """Insert an entry unless (feed_id, fingerprint) is already stored.

        Returns the saved entry, or None if it already existed.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO entries (user_id, feed_id, fingerprint, title, url,
                   author, summary, published_at, reading_time, starred, status,
                   created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(feed_id, fingerprint) DO NOTHING""",
                (
                    entry.user_id,
                    entry.feed_id,
                    entry.fingerprint,
                    entry.title,
                    entry.url,
                    entry.author,
                    entry.summary,
                    _dt_to_str(entry.published_at),
                    entry.reading_time,
                    int(entry.starred),
                    entry.status,
                    _dt_to_str(entry.created_at),
                    _dt_to_str(entry.updated_at),
                ),
            )
        if cursor.rowcount == 0:
            return None
        entry.id = cursor.lastrowid
        return entry

    def add_enclosure(self, entry_id: int, enclosure: Enclosure) -> Enclosure:
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO enclosures (entry_id, url, mime_type, size) VALUES (?, ?, ?, ?)",
                (entry_id, enclosure.url, enclosure.mime_type, enclosure.size),
            )
        enclosure.id = cursor.lastrowid
        enclosure.entry_id = entry_id
        return enclosure

    def get_enclosures(self, entry_id: int) -> list[Enclosure]:
        rows = self._fetchall(
            "SELECT * FROM enclosures WHERE entry_id = ? ORDER BY id", (entry_id,)
        )
        return [
            Enclosure(
                id=r["id"],
                entry_id=r["entry_id"],
                url=r["url"],
                mime_type=r["mime_type"],
                size=r["size"],
            )
            for r in rows
        ]

    def get_item_count_for_feed(self, feed_id: int) -> int:
        """Get the number of entries stored for a feed."""
        row = self._fetchone(
            "SELECT COUNT(*) AS cnt FROM entries WHERE feed_id = ?", (feed_id,)
        )
        return row["cnt"] if row else 0

    def get_entries_for_feed(self, feed_id: int) -> list[Entry]:
        """Entries of a feed in insertion order."""
        rows = self._fetchall(
            "SELECT * FROM entries WHERE feed_id = ? ORDER BY id", (feed_id,)
        )
        return [_row_to_entry(r) for r in rows]

    def get_entry_for_user(self, entry_id: int, user_id: int) -> dict | None:
        """Get one entry joined with its feed and category titles."""
        row = self._fetchone(
            _ENTRY_SELECT + " WHERE entries.id = ? AND entries.user_id = ?",
            (entry_id, user_id),
        )
        return _entry_row_to_dict(row) if row else None

    def query_entries(
        self,
        user_id: int,
        status: str | list[str] | None = None,
        starred: bool | None = None,
        feed_id: int | None = None,
        category_id: int | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "published_at",
        order_dir: str = "desc",
    ) -> tuple[list[dict], int]:
        """Filter a user's entries. Returns (page of entry dicts, total matches)."""
        if order_by not in ENTRY_ORDER_COLUMNS:
            raise ValueError(f"Unsupported order column: {order_by}")
        direction = "ASC" if order_dir.lower() == "asc" else "DESC"

        where = ["entries.user_id = ?"]
        params: list = [user_id]
        if status:
            statuses = [status] if isinstance(status, str) else list(status)
            where.append(f"entries.status IN ({','.join('?' for _ in statuses)})")
            params.extend(statuses)
        if starred is not None:
            where.append("entries.starred = ?")
            params.append(int(starred))
        if feed_id is not None:
            where.append("entries.feed_id = ?")
            params.append(feed_id)
        if category_id is not None:
            where.append("feeds.category_id = ?")
            params.append(category_id)
        if search:
            where.append("(entries.title LIKE ? OR entries.summary LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        where_clause = " AND ".join(where)

        count_row = self._fetchone(
            f"""SELECT COUNT(*) AS cnt FROM entries
                JOIN feeds ON feeds.id = entries.feed_id
                WHERE {where_clause}""",
            params,
        )
        rows = self._fetchall(
            f"""{_ENTRY_SELECT}
                WHERE {where_clause}
                ORDER BY entries.{order_by} {direction}, entries.id {direction}
                LIMIT ? OFFSET ?""",
            [*params, limit, offset],
        )
        return [_entry_row_to_dict(r) for r in rows], (count_row["cnt"] if count_row else 0)

    def set_entry_starred(self, entry_id: int, user_id: int, starred: bool) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE entries SET starred = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (int(starred), _dt_to_str(utcnow()), entry_id, user_id),
            )
        return cursor.rowcount > 0

    def toggle_entry_starred(self, entry_id: int, user_id: int) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE entries SET starred = NOT starred, updated_at = ?
                   WHERE id = ? AND user_id = ?""",
                (_dt_to_str(utcnow()), entry_id, user_id),
            )
        return cursor.rowcount > 0

    def set_entry_status(self, entry_ids: list[int], user_id: int, status: str) -> int:
        """Set the status of the user's entries. Returns count of affected rows."""
        if not entry_ids:
            return 0
        placeholders = ",".join("?" for _ in entry_ids)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""UPDATE entries SET status = ?, updated_at = ?
                    WHERE id IN ({placeholders}) AND user_id = ?""",
                [status, _dt_to_str(utcnow()), *entry_ids, user_id],
            )
        return cursor.rowcount

    def mark_all_read(
        self,
        user_id: int,
        feed_id: int | None = None,
        category_id: int | None = None,
    ) -> int:
        """Mark unread entries as read, optionally scoped to a feed or category."""
        query = """UPDATE entries SET status = 'read', updated_at = ?
                   WHERE user_id = ? AND status = 'unread'"""
        params: list = [_dt_to_str(utcnow()), user_id]
        if feed_id is not None:
            query += " AND feed_id = ?"
            params.append(feed_id)
        if category_id is not None:
            query += " AND feed_id IN (SELECT id FROM feeds WHERE category_id = ?)"
            params.append(category_id)
        with self._transaction() as conn:
            cursor = conn.execute(query, params)
        return cursor.rowcount

    def count_entries(self, user_id: int, status: str | None = None, starred: bool | None = None) -> int:
        query = "SELECT COUNT(*) AS cnt FROM entries WHERE user_id = ?"
        params: list = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        if starred is not None:
            query += " AND starred = ?"
            params.append(int(starred))
        row = self._fetchone(query, params)
        return row["cnt"] if row else 0


# --- Helper functions ---


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to a fixed-width UTC ISO string for storage."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def feed_to_dict(feed: Feed) -> dict:
    """Public representation of a feed."""
    return {
        "id": feed.id,
        "user_id": feed.user_id,
        "category_id": feed.category_id,
        "title": feed.title,
        "feed_url": feed.feed_url,
        "site_url": feed.site_url,
        "description": feed.description,
        "favicon_url": feed.favicon_url,
        "last_fetched_at": _iso(feed.last_fetched_at),
        "next_fetch_at": _iso(feed.next_fetch_at),
        "error_count": feed.error_count,
        "error_message": feed.error_message,
        "disabled": feed.disabled,
        "created_at": _iso(feed.created_at),
        "updated_at": _iso(feed.updated_at),
    }


def category_to_dict(category: Category) -> dict:
    return {
        "id": category.id,
        "user_id": category.user_id,
        "title": category.title,
        "created_at": _iso(category.created_at),
        "updated_at": _iso(category.updated_at),
    }


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        password_hash=row["password_hash"],
        is_admin=bool(row["is_admin"]),
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
        updated_at=_str_to_dt(row["updated_at"]) or utcnow(),
        last_login_at=_str_to_dt(row["last_login_at"]),
    )


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        id=row["id"],
        user_id=row["user_id"],
        token=row["token"],
        user_agent=row["user_agent"],
        ip_address=row["ip_address"],
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
        expires_at=_str_to_dt(row["expires_at"]),
    )


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
        updated_at=_str_to_dt(row["updated_at"]) or utcnow(),
    )


def _row_to_feed(row: sqlite3.Row) -> Feed:
    """Convert a database row to a Feed dataclass."""
    return Feed(
        id=row["id"],
        user_id=row["user_id"],
        category_id=row["category_id"],
        feed_url=row["feed_url"],
        title=row["title"],
        site_url=row["site_url"],
        description=row["description"],
        favicon_url=row["favicon_url"],
        etag=row["etag"],
        last_modified=row["last_modified"],
        last_fetched_at=_str_to_dt(row["last_fetched_at"]),
        next_fetch_at=_str_to_dt(row["next_fetch_at"]),
        error_count=row["error_count"],
        error_message=row["error_message"],
        disabled=bool(row["disabled"]),
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
        updated_at=_str_to_dt(row["updated_at"]) or utcnow(),
    )


def _row_to_entry(row: sqlite3.Row) -> Entry:
    """Convert a database row to an Entry dataclass."""
    return Entry(
        id=row["id"],
        feed_id=row["feed_id"],
        user_id=row["user_id"],
        fingerprint=row["fingerprint"],
        title=row["title"],
        url=row["url"],
        author=row["author"],
        summary=row["summary"],
        published_at=_str_to_dt(row["published_at"]) or utcnow(),
        reading_time=row["reading_time"],
        starred=bool(row["starred"]),
        status=row["status"],
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
        updated_at=_str_to_dt(row["updated_at"]) or utcnow(),
    )


def _entry_row_to_dict(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "feed_id": row["feed_id"],
        "user_id": row["user_id"],
        "title": row["title"],
        "url": row["url"],
        "author": row["author"],
        "summary": row["summary"],
        "published_at": row["published_at"],
        "reading_time": row["reading_time"],
        "starred": bool(row["starred"]),
        "status": row["status"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "feed_title": row["feed_title"],
        "feed_favicon_url": row["feed_favicon_url"],
        "category_id": row["category_id"],
        "category_title": row["category_title"],
    }
