"""
SQLite database for persistent file and job records.

Each record is upserted individually, so a mutation never rewrites the whole
registry and concurrent writers only contend on the rows they touch.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StorageIOError

DEFAULT_DB_PATH = Path("data/registry.db")

TERMINAL_STATUSES = ("done", "failed")


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to a fixed-width ISO string so text comparison orders correctly."""
    return dt.isoformat(timespec="microseconds") if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    return datetime.fromisoformat(s)


class RegistryDatabase:
    """
    SQLite store backing the file and job registries.

    Thread-safe: every call opens its own connection and SQLite serializes
    writers in WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as exc:
            raise StorageIOError(f"Cannot open registry database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageIOError(f"Registry database error: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS files (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    mime TEXT NOT NULL,
                    storage_location TEXT NOT NULL,
                    uploaded_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    status TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_files_expires_at
                ON files(expires_at)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    input_files TEXT NOT NULL,
                    params TEXT NOT NULL,
                    status TEXT NOT NULL,
                    output_file_id TEXT,
                    error TEXT,
                    tool TEXT,
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_created_at
                ON jobs(created_at DESC)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_output_file_id
                ON jobs(output_file_id)
            """)

    # -- files ---------------------------------------------------------------

    def save_file(self, file_data: Dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO files (
                    id, name, size, mime, storage_location,
                    uploaded_at, expires_at, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                file_data["id"],
                file_data["name"],
                file_data["size"],
                file_data["mime"],
                file_data["storage_location"],
                _serialize_datetime(file_data["uploaded_at"]),
                _serialize_datetime(file_data["expires_at"]),
                file_data["status"],
            ))

    def get_file(self, file_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM files WHERE id = ?", (file_id,)
            ).fetchone()
            return self._file_row_to_dict(row) if row else None

    def list_expired_files(self, now: datetime) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM files WHERE expires_at < ?",
                (_serialize_datetime(now),)
            ).fetchall()
            return [self._file_row_to_dict(row) for row in rows]

    def delete_file(self, file_id: str, expired_before: Optional[datetime] = None) -> bool:
        """
        Delete a file row and null out job references to it.

        Args:
            file_id: The file ID
            expired_before: If given, only delete when the row expired before this time

        Returns:
            True if a row was deleted
        """
        with self._get_connection() as conn:
            if expired_before is None:
                cursor = conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
            else:
                cursor = conn.execute(
                    "DELETE FROM files WHERE id = ? AND expires_at < ?",
                    (file_id, _serialize_datetime(expired_before))
                )
            deleted = cursor.rowcount > 0
            if deleted:
                conn.execute(
                    "UPDATE jobs SET output_file_id = NULL WHERE output_file_id = ?",
                    (file_id,)
                )
            return deleted

    # -- jobs ----------------------------------------------------------------

    def save_job(self, job_data: Dict[str, Any]) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO jobs (
                    id, type, input_files, params, status,
                    output_file_id, error, tool, created_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                job_data["id"],
                job_data["type"],
                json.dumps(job_data.get("input_files", [])),
                json.dumps(job_data.get("params", {})),
                job_data["status"],
                job_data.get("output_file_id"),
                job_data.get("error"),
                job_data.get("tool"),
                _serialize_datetime(job_data["created_at"]),
                _serialize_datetime(job_data.get("completed_at")),
            ))

    def update_job_status(
        self,
        job_id: str,
        status: str,
        output_file_id: Optional[str] = None,
        error: Optional[str] = None,
        tool: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        """
        Move a job to a new status unless it is already terminal.

        Returns:
            True if the row was updated, False if missing or already terminal
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = ?, output_file_id = ?, error = ?, tool = ?, completed_at = ?
                WHERE id = ? AND status NOT IN (?, ?)
                """,
                (
                    status,
                    output_file_id,
                    error,
                    tool,
                    _serialize_datetime(completed_at),
                    job_id,
                    *TERMINAL_STATUSES,
                ),
            )
            return cursor.rowcount > 0

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
            return self._job_row_to_dict(row) if row else None

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all jobs ordered by creation time (newest first)."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC"
            ).fetchall()
            return [self._job_row_to_dict(row) for row in rows]

    def delete_jobs_created_before(self, cutoff: datetime) -> int:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM jobs WHERE created_at < ?",
                (_serialize_datetime(cutoff),)
            )
            return cursor.rowcount

    # -- row mapping ---------------------------------------------------------

    def _file_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "name": row["name"],
            "size": row["size"],
            "mime": row["mime"],
            "storage_location": row["storage_location"],
            "uploaded_at": _deserialize_datetime(row["uploaded_at"]),
            "expires_at": _deserialize_datetime(row["expires_at"]),
            "status": row["status"],
        }

    def _job_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "type": row["type"],
            "input_files": json.loads(row["input_files"] or "[]"),
            "params": json.loads(row["params"] or "{}"),
            "status": row["status"],
            "output_file_id": row["output_file_id"],
            "error": row["error"],
            "tool": row["tool"],
            "created_at": _deserialize_datetime(row["created_at"]),
            "completed_at": _deserialize_datetime(row["completed_at"]),
        }
