"""SQLite-backed content store: posts, post meta and image attachments.

This is the target resource the fix strategies read from and write to.
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import get_settings
from ..models import Post


class ResourceError(Exception):
    """Raised when a target resource cannot be read or written."""
    pass


class SQLiteContentStore:
    """Posts, per-post metadata and attachments stored in SQLite."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or get_settings().database_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        conn = self._get_conn()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL DEFAULT 'General',
                    author TEXT,
                    published_at TEXT,
                    modified_at TEXT
                );

                CREATE TABLE IF NOT EXISTS post_meta (
                    post_id INTEGER NOT NULL,
                    meta_key TEXT NOT NULL,
                    meta_value TEXT,
                    PRIMARY KEY (post_id, meta_key),
                    FOREIGN KEY (post_id) REFERENCES posts(id)
                );

                CREATE TABLE IF NOT EXISTS attachments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL UNIQUE,
                    post_id INTEGER,
                    alt_text TEXT NOT NULL DEFAULT '',
                    FOREIGN KEY (post_id) REFERENCES posts(id)
                );

                CREATE INDEX IF NOT EXISTS idx_posts_category ON posts(category);
            """)
            conn.commit()
        finally:
            conn.close()

    # -- posts ----------------------------------------------------------------

    def save_post(self, post: Post) -> Post:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """INSERT OR REPLACE INTO posts
                   (id, title, content, category, author, published_at, modified_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    post.id or None,
                    post.title,
                    post.content,
                    post.category,
                    post.author,
                    post.published_at.isoformat() if post.published_at else None,
                    post.modified_at.isoformat() if post.modified_at else None,
                ),
            )
            conn.commit()
            return post.model_copy(update={"id": cursor.lastrowid})
        finally:
            conn.close()

    def get_post(self, post_id: int) -> Optional[Post]:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM posts WHERE id = ?", (post_id,)).fetchone()
            if not row:
                return None
            return Post(
                id=row["id"],
                title=row["title"],
                content=row["content"] or "",
                category=row["category"],
                author=row["author"],
                published_at=datetime.fromisoformat(row["published_at"]) if row["published_at"] else None,
                modified_at=datetime.fromisoformat(row["modified_at"]) if row["modified_at"] else None,
            )
        finally:
            conn.close()

    def update_post_content(self, post_id: int, content: str):
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "UPDATE posts SET content = ?, modified_at = ? WHERE id = ?",
                (content, datetime.utcnow().isoformat(), post_id),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise ResourceError(f"Post {post_id} not found")
        finally:
            conn.close()

    def related_titles(self, post_id: int, category: str, limit: int = 5) -> list[str]:
        """Titles of other posts in the same category."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT title FROM posts WHERE category = ? AND id != ? ORDER BY id DESC LIMIT ?",
                (category, post_id, limit),
            ).fetchall()
            return [row["title"] for row in rows]
        finally:
            conn.close()

    # -- post meta ------------------------------------------------------------

    def get_post_meta(self, post_id: int, key: str) -> str:
        """Meta value, or an empty string when unset."""
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT meta_value FROM post_meta WHERE post_id = ? AND meta_key = ?",
                (post_id, key),
            ).fetchone()
            return (row["meta_value"] or "") if row else ""
        finally:
            conn.close()

    def set_post_meta(self, post_id: int, key: str, value: str):
        conn = self._get_conn()
        try:
            exists = conn.execute("SELECT 1 FROM posts WHERE id = ?", (post_id,)).fetchone()
            if not exists:
                raise ResourceError(f"Post {post_id} not found")
            conn.execute(
                """INSERT INTO post_meta (post_id, meta_key, meta_value) VALUES (?, ?, ?)
                   ON CONFLICT(post_id, meta_key) DO UPDATE SET meta_value = excluded.meta_value""",
                (post_id, key, value),
            )
            conn.commit()
        finally:
            conn.close()

    # -- attachments ----------------------------------------------------------

    def add_attachment(self, url: str, post_id: Optional[int] = None, alt_text: str = "") -> int:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "INSERT INTO attachments (url, post_id, alt_text) VALUES (?, ?, ?)",
                (url, post_id, alt_text),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def get_attachment_alt(self, url: str) -> str:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT alt_text FROM attachments WHERE url = ?", (url,)).fetchone()
            if not row:
                raise ResourceError(f"No attachment for {url}")
            return row["alt_text"] or ""
        finally:
            conn.close()

    def set_attachment_alt(self, url: str, alt_text: str):
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                "UPDATE attachments SET alt_text = ? WHERE url = ?",
                (alt_text, url),
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise ResourceError(f"No attachment for {url}")
        finally:
            conn.close()
