"""Learned association persistence: protocol + SQLite backend.

AssociationStore is the protocol. Code against it.
Primary: SqliteAssociationStore (ACID, async via aiosqlite)
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Protocol, runtime_checkable

import aiosqlite
import numpy as np

from riglm.learning.types import LearnedAssociation, PruneThresholds
from riglm.observe.tracing import traced

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400

_COLUMNS = "id, vector, tool_name, query, confidence, created_at, last_used_at"


def _encode_vector(vector: list[float]) -> bytes:
    return np.asarray(vector, dtype=np.float64).tobytes()


def _decode_vector(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=np.float64).tolist()


def _row_to_association(row) -> LearnedAssociation:
    return LearnedAssociation(
        id=row[0],
        vector=_decode_vector(row[1]),
        tool_name=row[2],
        query=row[3],
        confidence=row[4],
        created_at=row[5],
        last_used_at=row[6],
    )


@runtime_checkable
class AssociationStore(Protocol):
    """Protocol for learned association persistence."""

    async def load_all(self) -> list[LearnedAssociation]: ...
    async def get(self, association_id: str) -> LearnedAssociation | None: ...
    async def upsert(self, association: LearnedAssociation) -> None: ...
    async def remove(self, association_id: str) -> bool: ...
    async def size(self) -> int: ...
    async def prune(self, thresholds: PruneThresholds) -> int: ...
    async def close(self) -> None: ...


class SqliteAssociationStore:
    """ACID-safe association persistence with aiosqlite.

    One table keyed by association id. Vectors are stored as raw
    float64 bytes. The parent directory is created on first connect.

    aiosqlite runs every statement on one background thread; the lock
    additionally keeps a multi-statement prune from interleaving with
    an upsert issued from another task.
    """

    def __init__(self, db_path: str | Path, clock: Callable[[], float] = time.time) -> None:
        self._db_path = Path(db_path).expanduser()
        self._clock = clock
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _now(self) -> int:
        return int(self._clock())

    async def connect(self) -> None:
        """Open the database eagerly. Other methods connect lazily."""
        await self._ensure_connection()

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._conn is not None:
            return self._conn
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self._db_path))
        await self._conn.execute("PRAGMA journal_mode = WAL")
        await self._conn.execute("PRAGMA busy_timeout = 3000")
        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS learned_associations (
                id TEXT PRIMARY KEY,
                vector BLOB NOT NULL,
                tool_name TEXT NOT NULL,
                query TEXT NOT NULL,
                confidence REAL NOT NULL DEFAULT 1.0,
                created_at INTEGER NOT NULL,
                last_used_at INTEGER NOT NULL
            )
        """)
        await self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_assoc_confidence ON learned_associations(confidence)"
        )
        await self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_assoc_last_used ON learned_associations(last_used_at)"
        )
        await self._conn.commit()
        return self._conn

    async def load_all(self) -> list[LearnedAssociation]:
        conn = await self._ensure_connection()
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM learned_associations ORDER BY created_at, rowid"
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_association(row) for row in rows]

    async def get(self, association_id: str) -> LearnedAssociation | None:
        conn = await self._ensure_connection()
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM learned_associations WHERE id = ?",
            (association_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_association(row) if row is not None else None

    async def top(self, limit: int) -> list[LearnedAssociation]:
        """Highest-confidence associations first."""
        conn = await self._ensure_connection()
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM learned_associations "
            "ORDER BY confidence DESC, last_used_at DESC LIMIT ?",
            (limit,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_association(row) for row in rows]

    async def upsert(self, association: LearnedAssociation) -> None:
        """Insert, or on id conflict overwrite vector, query and confidence.

        created_at of an existing row is kept. The vector is overwritten so a
        row written under another embedding model is replaced, not orphaned.
        """
        conn = await self._ensure_connection()
        now = self._now()
        async with self._write_lock:
            await conn.execute(
                f"INSERT INTO learned_associations ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET "
                "vector = excluded.vector, "
                "query = excluded.query, "
                "confidence = excluded.confidence, "
                "last_used_at = excluded.last_used_at",
                (
                    association.id,
                    _encode_vector(association.vector),
                    association.tool_name,
                    association.query,
                    association.confidence,
                    association.created_at or now,
                    now,
                ),
            )
            await conn.commit()

    async def remove(self, association_id: str) -> bool:
        """Delete one association. Returns False if it did not exist."""
        conn = await self._ensure_connection()
        async with self._write_lock:
            cursor = await conn.execute(
                "DELETE FROM learned_associations WHERE id = ?", (association_id,)
            )
            await conn.commit()
        return cursor.rowcount > 0

    async def size(self) -> int:
        conn = await self._ensure_connection()
        async with conn.execute("SELECT COUNT(*) FROM learned_associations") as cursor:
            row = await cursor.fetchone()
        return row[0]

    @traced("store.prune")
    async def prune(self, thresholds: PruneThresholds) -> int:
        """Apply the prune policy in one transaction. Returns rows removed.

        Any failure rolls the whole prune back and re-raises.
        """
        conn = await self._ensure_connection()
        cutoff = self._now() - thresholds.unused_days * _SECONDS_PER_DAY

        # sqlite3 opens the transaction implicitly at the first DELETE
        async with self._write_lock:
            try:
                cursor = await conn.execute(
                    "DELETE FROM learned_associations WHERE confidence < ?",
                    (thresholds.min_confidence,),
                )
                low_confidence = cursor.rowcount

                cursor = await conn.execute(
                    "DELETE FROM learned_associations WHERE last_used_at < ?", (cutoff,)
                )
                stale = cursor.rowcount

                over_cap = 0
                async with conn.execute("SELECT COUNT(*) FROM learned_associations") as count:
                    remaining = (await count.fetchone())[0]
                if remaining > thresholds.size_threshold:
                    cursor = await conn.execute(
                        "DELETE FROM learned_associations WHERE id NOT IN ("
                        "SELECT id FROM learned_associations "
                        "ORDER BY confidence DESC, last_used_at DESC LIMIT ?)",
                        (thresholds.retain_count,),
                    )
                    over_cap = cursor.rowcount
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

        removed = low_confidence + stale + over_cap
        if removed:
            logger.info(
                "Pruned %d associations (low confidence %d, stale %d, over cap %d)",
                removed,
                low_confidence,
                stale,
                over_cap,
            )
        return removed

    async def close(self) -> None:
        """Close the underlying aiosqlite connection.

        Call this during teardown to avoid RuntimeError('Event loop is closed')
        from aiosqlite's background thread.
        """
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await conn.close()
