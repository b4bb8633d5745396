from typing import List, Optional
from datetime import datetime
import sqlite3
import structlog

from turnstream.domain.context.memory.memory_store import MemoryBackend, MemoryFile

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS memories (
    user_id TEXT NOT NULL,
    path TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    size_bytes INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL,
    accessed_at TEXT NOT NULL,
    UNIQUE (user_id, path)
)
"""


class SqliteMemoryBackend(MemoryBackend):
    """Memory files in a SQLite table unique on (user_id, path)"""

    def __init__(self, database: str = ":memory:", conn: Optional[sqlite3.Connection] = None):
        self._conn = conn or sqlite3.connect(database, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(SCHEMA)
        self._conn.commit()
        logger.debug("Memory table ready", database=database)

    def close(self):
        self._conn.close()

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> MemoryFile:
        return MemoryFile(
            user_id=row["user_id"],
            path=row["path"],
            content=row["content"],
            size_bytes=row["size_bytes"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            accessed_at=datetime.fromisoformat(row["accessed_at"]),
        )

    async def get(self, user_id: str, path: str) -> Optional[MemoryFile]:
        row = self._conn.execute(
            "SELECT * FROM memories WHERE user_id = ? AND path = ?",
            (user_id, path),
        ).fetchone()
        return self._row_to_file(row) if row else None

    async def list(self, user_id: str, under: Optional[str] = None) -> List[MemoryFile]:
        if under is None:
            rows = self._conn.execute(
                "SELECT * FROM memories WHERE user_id = ? ORDER BY path",
                (user_id,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT * FROM memories WHERE user_id = ? AND (path = ? OR substr(path, 1, ?) = ?) "
                "ORDER BY path",
                (user_id, under, len(under) + 1, under + "/"),
            ).fetchall()
        return [self._row_to_file(row) for row in rows]

    async def put(self, file: MemoryFile) -> None:
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO memories (user_id, path, content, size_bytes, updated_at, accessed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id, path) DO UPDATE SET
                    content = excluded.content,
                    size_bytes = excluded.size_bytes,
                    updated_at = excluded.updated_at,
                    accessed_at = excluded.accessed_at
                """,
                (
                    file.user_id, file.path, file.content, file.size_bytes,
                    file.updated_at.isoformat(), file.accessed_at.isoformat(),
                ),
            )

    async def delete(self, user_id: str, paths: List[str]) -> int:
        with self._conn:
            cursor = self._conn.executemany(
                "DELETE FROM memories WHERE user_id = ? AND path = ?",
                [(user_id, path) for path in paths],
            )
        return cursor.rowcount

    async def move(self, user_id: str, old_path: str, new_path: str, now: datetime) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE memories SET path = ?, updated_at = ?, accessed_at = ? WHERE user_id = ? AND path = ?",
                (new_path, now.isoformat(), now.isoformat(), user_id, old_path),
            )

    async def touch(self, user_id: str, paths: List[str], now: datetime) -> None:
        with self._conn:
            self._conn.executemany(
                "UPDATE memories SET accessed_at = ? WHERE user_id = ? AND path = ?",
                [(now.isoformat(), user_id, path) for path in paths],
            )

    async def total_size(self, user_id: str, exclude_path: Optional[str] = None) -> int:
        row = self._conn.execute(
            "SELECT COALESCE(SUM(size_bytes), 0) AS total FROM memories WHERE user_id = ? AND path != ?",
            (user_id, exclude_path or ""),
        ).fetchone()
        return int(row["total"])
