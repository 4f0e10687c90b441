"""SQLite storage for issues and the fix audit log.

Provides persistent storage for:
- Detected issues and their lifecycle status
- Fix records (append-only; rows are never updated or deleted)
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import get_settings
from ..models import FixRecord, Issue, IssueStatus, IssueType, Severity


class SQLiteStore:
    """SQLite-based issue store and fix record log."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize storage.

        Args:
            db_path: Path to SQLite database file. Defaults to config value.
        """
        self.db_path = Path(db_path or get_settings().database_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self):
        """Initialize database schema."""
        conn = self._get_conn()
        try:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS issues (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    issue_type TEXT NOT NULL,
                    severity TEXT NOT NULL DEFAULT 'warning',
                    post_id INTEGER,
                    url TEXT,
                    element TEXT,
                    description TEXT NOT NULL DEFAULT '',
                    auto_fixable INTEGER DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'pending',
                    priority_score INTEGER DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_issues_status ON issues(status);
                CREATE INDEX IF NOT EXISTS idx_issues_type ON issues(issue_type);

                CREATE TABLE IF NOT EXISTS fix_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    issue_id INTEGER NOT NULL,
                    fix_type TEXT NOT NULL,
                    applied_at TEXT NOT NULL,
                    applied_by TEXT NOT NULL,
                    before_value TEXT,
                    after_value TEXT,
                    success INTEGER NOT NULL,
                    error_message TEXT,
                    rollback_available INTEGER DEFAULT 0,
                    reverts_fix_id INTEGER,
                    FOREIGN KEY (issue_id) REFERENCES issues(id),
                    FOREIGN KEY (reverts_fix_id) REFERENCES fix_records(id)
                );

                CREATE INDEX IF NOT EXISTS idx_fix_records_issue_id ON fix_records(issue_id);
                CREATE INDEX IF NOT EXISTS idx_fix_records_reverts ON fix_records(reverts_fix_id);
            """)
            conn.commit()
        finally:
            conn.close()

    # -- issues ---------------------------------------------------------------

    def save_issue(self, issue: Issue) -> Issue:
        """Insert an issue as reported by the detector. Returns it with its ID."""
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """INSERT INTO issues
                   (id, issue_type, severity, post_id, url, element, description,
                    auto_fixable, status, priority_score, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    issue.id or None,
                    issue.issue_type.value,
                    issue.severity.value,
                    issue.post_id,
                    issue.url,
                    issue.element,
                    issue.description,
                    1 if issue.auto_fixable else 0,
                    issue.status.value,
                    issue.priority_score,
                    issue.created_at.isoformat(),
                    issue.updated_at.isoformat() if issue.updated_at else None,
                ),
            )
            conn.commit()
            return issue.model_copy(update={"id": cursor.lastrowid})
        finally:
            conn.close()

    def get_issue(self, issue_id: int) -> Optional[Issue]:
        """Get an issue by ID."""
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
            return self._row_to_issue(row) if row else None
        finally:
            conn.close()

    def update_issue_status(self, issue_id: int, status: IssueStatus):
        """Set an issue's lifecycle status."""
        conn = self._get_conn()
        try:
            conn.execute(
                "UPDATE issues SET status = ?, updated_at = ? WHERE id = ?",
                (IssueStatus(status).value, datetime.utcnow().isoformat(), issue_id),
            )
            conn.commit()
        finally:
            conn.close()

    def get_open_issue_ids(self, limit: int, auto_fixable_only: bool = True) -> list[int]:
        """IDs of pending/failed issues, highest priority first."""
        conn = self._get_conn()
        try:
            query = "SELECT id FROM issues WHERE status IN ('pending', 'failed')"
            if auto_fixable_only:
                query += " AND auto_fixable = 1"
            query += " ORDER BY priority_score DESC, id LIMIT ?"
            rows = conn.execute(query, (limit,)).fetchall()
            return [row["id"] for row in rows]
        finally:
            conn.close()

    def _row_to_issue(self, row: sqlite3.Row) -> Issue:
        """Convert a database row to an Issue object."""
        return Issue(
            id=row["id"],
            issue_type=IssueType(row["issue_type"]),
            severity=Severity(row["severity"]),
            post_id=row["post_id"],
            url=row["url"],
            element=row["element"],
            description=row["description"] or "",
            auto_fixable=bool(row["auto_fixable"]),
            status=IssueStatus(row["status"]),
            priority_score=row["priority_score"] or 0,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )

    # -- fix records ----------------------------------------------------------

    def append_fix_record(self, record: FixRecord) -> int:
        """Append a fix record to the audit log and return its ID."""
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """INSERT INTO fix_records
                   (issue_id, fix_type, applied_at, applied_by, before_value, after_value,
                    success, error_message, rollback_available, reverts_fix_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.issue_id,
                    record.fix_type.value,
                    record.applied_at.isoformat(),
                    record.applied_by,
                    record.before_value,
                    record.after_value,
                    1 if record.success else 0,
                    record.error_message,
                    1 if record.rollback_available else 0,
                    record.reverts_fix_id,
                ),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def get_fix_record(self, fix_id: int) -> Optional[FixRecord]:
        """Get a fix record by ID."""
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM fix_records WHERE id = ?", (fix_id,)).fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def get_fix_records_for_issue(self, issue_id: int) -> list[FixRecord]:
        """Full audit history for an issue, oldest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM fix_records WHERE issue_id = ? ORDER BY id",
                (issue_id,),
            ).fetchall()
            return [self._row_to_record(row) for row in rows]
        finally:
            conn.close()

    def get_reversal(self, fix_id: int) -> Optional[FixRecord]:
        """The successful record that rolled back ``fix_id``, if any."""
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM fix_records WHERE reverts_fix_id = ? AND success = 1 ORDER BY id LIMIT 1",
                (fix_id,),
            ).fetchone()
            return self._row_to_record(row) if row else None
        finally:
            conn.close()

    def fix_stats(self) -> dict:
        """Aggregate counts over forward (non-rollback) fix records."""
        conn = self._get_conn()
        try:
            row = conn.execute(
                """SELECT COUNT(*) AS total_fixes,
                          COALESCE(SUM(success = 1), 0) AS successful_fixes,
                          COALESCE(SUM(success = 0), 0) AS failed_fixes,
                          COALESCE(SUM(rollback_available = 1), 0) AS rollback_available
                   FROM fix_records WHERE reverts_fix_id IS NULL"""
            ).fetchone()
            rolled_back = conn.execute(
                "SELECT COUNT(DISTINCT reverts_fix_id) FROM fix_records WHERE reverts_fix_id IS NOT NULL AND success = 1"
            ).fetchone()[0]
        finally:
            conn.close()

        stats = dict(row)
        stats["rolled_back"] = rolled_back
        stats["success_rate"] = (
            round(stats["successful_fixes"] / stats["total_fixes"] * 100, 2)
            if stats["total_fixes"] > 0
            else 0
        )
        return stats

    def _row_to_record(self, row: sqlite3.Row) -> FixRecord:
        """Convert a database row to a FixRecord object."""
        return FixRecord(
            id=row["id"],
            issue_id=row["issue_id"],
            fix_type=IssueType(row["fix_type"]),
            applied_at=datetime.fromisoformat(row["applied_at"]),
            applied_by=row["applied_by"],
            before_value=row["before_value"],
            after_value=row["after_value"],
            success=bool(row["success"]),
            error_message=row["error_message"],
            rollback_available=bool(row["rollback_available"]),
            reverts_fix_id=row["reverts_fix_id"],
        )
