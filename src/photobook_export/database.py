"""
SQLite persistence for export tasks and the read-only album lookup.

Export task rows are the durable record polled by clients; they must survive
restarts and be readable while a worker thread is updating them, hence WAL
mode and a short-lived connection per operation.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .models import Album, BackgroundStyle, ExportStatus, Page

DEFAULT_DB_PATH = Path("data/photobook.db")

_TERMINAL = (ExportStatus.COMPLETED.value, ExportStatus.FAILED.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _deserialize_datetime(s: Optional[str]) -> Optional[datetime]:
    """Deserialize ISO format string to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


class _SQLiteStore:
    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        raise NotImplementedError


class TaskDatabase(_SQLiteStore):
    """
    Durable export task records.

    Status transitions are guarded in SQL: once a row is completed or failed,
    no further update touches it, and progress can only move forward.
    """

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS export_tasks (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    album_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    progress INTEGER NOT NULL DEFAULT 0,
                    artifact_path TEXT,
                    artifact_size INTEGER,
                    failure_reason TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_export_tasks_owner
                ON export_tasks(owner_id, created_at DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_export_tasks_album
                ON export_tasks(album_id)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_export_tasks_status
                ON export_tasks(status)
            """)

    def create_task(self, task_id: str, owner_id: str, album_id: str) -> Dict[str, Any]:
        now = utcnow()
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO export_tasks (id, owner_id, album_id, status, progress, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (task_id, owner_id, album_id, ExportStatus.PENDING.value, _serialize_datetime(now), _serialize_datetime(now)),
            )
        return self.get_task(task_id)  # type: ignore[return-value]

    def get_task(self, task_id: str, owner_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Retrieve a task by ID, optionally scoped to its owner.

        Returns:
            Task data dictionary or None if not found (or owned by someone else)
        """
        query = "SELECT * FROM export_tasks WHERE id = ?"
        params: List[Any] = [task_id]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        with self._get_connection() as conn:
            row = conn.execute(query, params).fetchone()
            return self._row_to_dict(row) if row else None

    def list_tasks(self, owner_id: str) -> List[Dict[str, Any]]:
        """List an owner's tasks, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM export_tasks WHERE owner_id = ? ORDER BY created_at DESC, rowid DESC",
                (owner_id,),
            ).fetchall()
            return [self._row_to_dict(row) for row in rows]

    def find_active_task(self, owner_id: str, album_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                f"""
                SELECT * FROM export_tasks
                WHERE owner_id = ? AND album_id = ? AND status NOT IN ({", ".join("?" * len(_TERMINAL))})
                ORDER BY created_at DESC LIMIT 1
                """,
                (owner_id, album_id, *_TERMINAL),
            ).fetchone()
            return self._row_to_dict(row) if row else None

    def _update_active(self, task_id: str, assignments: Dict[str, Any], progress_floor: bool = False) -> bool:
        updates = [f"{column} = ?" for column in assignments]
        values: List[Any] = list(assignments.values())
        if progress_floor:
            updates = ["progress = MAX(progress, ?)" if u.startswith("progress ") else u for u in updates]
        updates.append("updated_at = ?")
        values.append(_serialize_datetime(utcnow()))
        values.extend([task_id, *_TERMINAL])

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE export_tasks SET {', '.join(updates)} "
                f"WHERE id = ? AND status NOT IN ({', '.join('?' * len(_TERMINAL))})",
                values,
            )
            return cursor.rowcount > 0

    def mark_processing(self, task_id: str, progress: int) -> bool:
        return self._update_active(
            task_id,
            {"status": ExportStatus.PROCESSING.value, "progress": progress},
            progress_floor=True,
        )

    def update_progress(self, task_id: str, progress: int) -> bool:
        return self._update_active(task_id, {"progress": progress}, progress_floor=True)

    def mark_completed(self, task_id: str, artifact_path: str, artifact_size: int) -> bool:
        """Move to completed with the artifact location in a single statement."""
        return self._update_active(
            task_id,
            {
                "status": ExportStatus.COMPLETED.value,
                "progress": 100,
                "artifact_path": artifact_path,
                "artifact_size": artifact_size,
            },
        )

    def mark_failed(self, task_id: str, reason: str) -> bool:
        """Move to failed; progress is left at its last checkpoint."""
        return self._update_active(
            task_id,
            {"status": ExportStatus.FAILED.value, "failure_reason": reason},
        )

    def fail_unfinished(self, reason: str) -> int:
        """
        Fail every pending or processing task, returning how many were touched.

        Used at start-up: no worker from a previous process is still running them.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE export_tasks SET status = ?, failure_reason = ?, updated_at = ? "
                f"WHERE status NOT IN ({', '.join('?' * len(_TERMINAL))})",
                (ExportStatus.FAILED.value, reason, _serialize_datetime(utcnow()), *_TERMINAL),
            )
            return cursor.rowcount

    def _row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Convert a database row to a task data dictionary."""
        return {
            "id": row["id"],
            "owner_id": row["owner_id"],
            "album_id": row["album_id"],
            "status": ExportStatus(row["status"]),
            "progress": row["progress"],
            "artifact_path": row["artifact_path"],
            "artifact_size": row["artifact_size"],
            "failure_reason": row["failure_reason"],
            "created_at": _deserialize_datetime(row["created_at"]),
            "updated_at": _deserialize_datetime(row["updated_at"]),
        }


class AlbumDatabase(_SQLiteStore):
    """
    Album and page lookup.

    The export pipeline only reads from here; ``save_album`` exists for the
    editing side of the application and for seeding.
    """

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS albums (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    background TEXT,
                    use_page_backgrounds INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pages (
                    id TEXT PRIMARY KEY,
                    album_id TEXT NOT NULL REFERENCES albums(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL DEFAULT 0,
                    content TEXT,
                    background TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_pages_album
                ON pages(album_id, position)
            """)

    def save_album(self, album: Album) -> None:
        """Insert or replace an album together with its pages."""
        now = _serialize_datetime(utcnow())
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO albums (id, owner_id, title, background, use_page_backgrounds, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    album.id,
                    album.owner_id,
                    album.title,
                    album.background.model_dump_json(by_alias=True) if album.background else None,
                    int(album.use_page_backgrounds),
                    now,
                ),
            )
            conn.execute("DELETE FROM pages WHERE album_id = ?", (album.id,))
            conn.executemany(
                """
                INSERT INTO pages (id, album_id, position, content, background, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        page.id,
                        album.id,
                        page.position if page.position is not None else index,
                        page.content,
                        page.background.model_dump_json(by_alias=True) if page.background else None,
                        now,
                    )
                    for index, page in enumerate(album.pages)
                ],
            )

    def get_album(self, album_id: str, owner_id: str) -> Optional[Album]:
        """Fetch an album owned by ``owner_id`` with its pages in display order."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM albums WHERE id = ? AND owner_id = ?",
                (album_id, owner_id),
            ).fetchone()
            if not row:
                return None
            page_rows = conn.execute(
                "SELECT * FROM pages WHERE album_id = ? ORDER BY position ASC, created_at ASC, rowid ASC",
                (album_id,),
            ).fetchall()

        return Album(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            background=_load_background(row["background"]),
            use_page_backgrounds=bool(row["use_page_backgrounds"]),
            pages=[
                Page(
                    id=page["id"],
                    content=page["content"],
                    background=_load_background(page["background"]),
                    position=page["position"],
                )
                for page in page_rows
            ],
        )

    def get_titles(self, album_ids: Iterable[str]) -> Dict[str, str]:
        ids = list(set(album_ids))
        if not ids:
            return {}
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT id, title FROM albums WHERE id IN ({', '.join('?' * len(ids))})",
                ids,
            ).fetchall()
            return {row["id"]: row["title"] for row in rows}


def _load_background(raw: Optional[str]) -> Optional[BackgroundStyle]:
    if not raw:
        return None
    return BackgroundStyle.model_validate(json.loads(raw))
