"""Durable per-session storage of draft records on SQLite."""
import asyncio
import sqlite3
import time
from pathlib import Path
from typing import List, Optional

import aiosqlite
from pydantic import ValidationError

from ..models.records import DraftRecord
from ..utils.logging import get_logger
from .errors import ConflictError, StorageError

logger = get_logger(__name__)

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS drafts ("
    "session_id TEXT NOT NULL, "
    "draft_number INTEGER NOT NULL, "
    "json_data TEXT NOT NULL, "
    "version INTEGER NOT NULL DEFAULT 1, "
    "created_at REAL NOT NULL, "
    "PRIMARY KEY (session_id, draft_number))"
)


class SessionStore:
    """Keyed store of draft records, one row per (session, draft number)."""

    def __init__(self, path: str):
        self.path = path
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.path)
            await self._db.execute(_SCHEMA)
            await self._db.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to initialize session store at {self.path}: {e}") from e
        logger.info("store_initialized", path=self.path)

    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Session store is not initialized")
        return self._db

    async def upsert(
        self,
        session_id: str,
        record: DraftRecord,
        expected_version: Optional[int] = None,
    ) -> int:
        """Write a record, replacing any row with the same key.

        With ``expected_version`` the write only succeeds if the stored row
        is still at that version (0 means "must not exist yet").
        Returns the new row version.
        """
        db = self._connection()
        payload = record.model_dump_json()
        async with self._write_lock:
            try:
                cursor = await db.execute(
                    "SELECT version FROM drafts WHERE session_id = ? AND draft_number = ?",
                    (session_id, record.sequence_number),
                )
                row = await cursor.fetchone()
                current = row[0] if row else 0
                if expected_version is not None and expected_version != current:
                    raise ConflictError(
                        f"Draft {record.sequence_number} of session {session_id} is at "
                        f"version {current}, expected {expected_version}"
                    )
                version = current + 1
                await db.execute(
                    "INSERT OR REPLACE INTO drafts "
                    "(session_id, draft_number, json_data, version, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (session_id, record.sequence_number, payload, version, time.time()),
                )
                await db.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to save draft {record.sequence_number}: {e}") from e

        logger.debug(
            "draft_saved",
            session_id=session_id,
            draft=record.sequence_number,
            version=version,
        )
        return version

    async def get_one(self, session_id: str, draft_number: int) -> Optional[DraftRecord]:
        db = self._connection()
        try:
            cursor = await db.execute(
                "SELECT json_data FROM drafts WHERE session_id = ? AND draft_number = ?",
                (session_id, draft_number),
            )
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load draft {draft_number}: {e}") from e
        if row is None:
            return None
        return self._decode(row[0])

    async def get_recent(
        self,
        session_id: str,
        limit: int = 5,
        before: Optional[int] = None,
    ) -> List[DraftRecord]:
        """Most recent drafts of a session, highest draft number first.

        With ``before`` only drafts numbered below it are considered.
        """
        query = "SELECT json_data FROM drafts WHERE session_id = ?"
        params: list = [session_id]
        if before is not None:
            query += " AND draft_number < ?"
            params.append(before)
        query += " ORDER BY draft_number DESC LIMIT ?"
        params.append(limit)

        db = self._connection()
        try:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load drafts of session {session_id}: {e}") from e
        return [self._decode(row[0]) for row in rows]

    async def get_version(self, session_id: str, draft_number: int) -> int:
        """Current row version, 0 when the row does not exist."""
        db = self._connection()
        try:
            cursor = await db.execute(
                "SELECT version FROM drafts WHERE session_id = ? AND draft_number = ?",
                (session_id, draft_number),
            )
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read version of draft {draft_number}: {e}") from e
        return row[0] if row else 0

    async def count(self, session_id: str) -> int:
        db = self._connection()
        try:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM drafts WHERE session_id = ?", (session_id,)
            )
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to count drafts of session {session_id}: {e}") from e
        return row[0]

    async def delete_session(self, session_id: str) -> int:
        """Remove every draft of a session. Returns the number of rows deleted."""
        db = self._connection()
        async with self._write_lock:
            try:
                cursor = await db.execute(
                    "DELETE FROM drafts WHERE session_id = ?", (session_id,)
                )
                await db.commit()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to delete session {session_id}: {e}") from e
        logger.info("session_purged", session_id=session_id, rows=cursor.rowcount)
        return cursor.rowcount

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("store_closed", path=self.path)

    @staticmethod
    def _decode(data: str) -> DraftRecord:
        try:
            return DraftRecord.model_validate_json(data)
        except ValidationError as e:
            raise StorageError(f"Stored draft is corrupt: {e}") from e
