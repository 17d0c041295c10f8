"""
Memory store - canonical SQLite persistence for vendor correction memories.

Two write paths exist on purpose:
- save_memory() merges into an existing (vendor, pattern) row: confidence
  takes the max, approvals/rejections are added.
- update_confidence_and_counters() overwrites confidence and both counters;
  only the learn stage uses it, because it already computed absolute values.
"""

import sqlite3
from datetime import datetime
from typing import Callable, List, Optional

from .db import get_db, init_db, health_check as db_health_check
from .config import DB_PATH
from .decay import decay_confidence, isoformat, utc_now
from .errors import PersistenceError
from .schema import Memory
from ..util.logging import logger

MEMORY_COLUMNS = "id, type, vendor, pattern, confidence, approvals, rejections, last_updated"


class MemoryStore:
    """SQLite-backed store of vendor memories, at most one per (vendor, pattern)."""

    def __init__(self, db_path: str = None, clock: Callable[[], datetime] = None):
        self.db_path = db_path or DB_PATH
        self.clock = clock or utc_now
        try:
            init_db(self.db_path)
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize memory store at '{self.db_path}': {e}")
            raise PersistenceError(f"Cannot initialize memory store: {e}") from e

    # Read paths (decayed)

    def memories_for_vendor(self, vendor: str) -> List[Memory]:
        """All memories of a vendor, each passed through decay first."""
        rows = self._fetch_all(
            f"SELECT {MEMORY_COLUMNS} FROM memory WHERE vendor = ? ORDER BY rowid",
            (vendor,)
        )
        memories = [self._apply_decay(Memory.from_row(row)) for row in rows]

        logger.log_memory_operation("recall", vendor, details={"count": len(memories)})
        return memories

    def memory_by_pattern(self, vendor: str, pattern: str) -> Optional[Memory]:
        """The live memory for a vendor pattern, decayed before return."""
        memory = self.memory_by_vendor_and_pattern(vendor, pattern)
        return self._apply_decay(memory) if memory else None

    # Raw reads (no decay)

    def memory_by_vendor_and_pattern(self, vendor: str, pattern: str) -> Optional[Memory]:
        """Raw state of a vendor pattern; used by the merge path."""
        row = self._fetch_one(
            f"SELECT {MEMORY_COLUMNS} FROM memory WHERE vendor = ? AND pattern = ? LIMIT 1",
            (vendor, pattern)
        )
        return Memory.from_row(row) if row else None

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        row = self._fetch_one(f"SELECT {MEMORY_COLUMNS} FROM memory WHERE id = ?", (memory_id,))
        return Memory.from_row(row) if row else None

    def list_memories(self) -> List[Memory]:
        rows = self._fetch_all(f"SELECT {MEMORY_COLUMNS} FROM memory ORDER BY vendor, pattern")
        return [Memory.from_row(row) for row in rows]

    def memory_count(self) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS count FROM memory")
        return row["count"] if row else 0

    def health_check(self) -> bool:
        return db_health_check(self.db_path)

    # Write paths

    def save_memory(self, memory: Memory) -> Memory:
        """Insert a memory, or merge it into the existing (vendor, pattern) record.

        Merging keeps the higher confidence and adds the incoming counters.
        Saving the same learning event twice double-counts it.
        """
        now = isoformat(self.clock())
        existing = self.memory_by_vendor_and_pattern(memory.vendor, memory.pattern)

        if existing:
            merged_confidence = max(existing.confidence, memory.confidence)
            self._execute(
                """
                UPDATE memory
                SET confidence = ?,
                    approvals = approvals + ?,
                    rejections = rejections + ?,
                    last_updated = ?
                WHERE id = ?
                """,
                (merged_confidence, memory.approvals, memory.rejections, now, existing.id)
            )
            logger.log_memory_operation("merge", memory.vendor, memory.pattern, {
                "memory_id": existing.id,
                "confidence": merged_confidence,
                "approvals_added": memory.approvals,
                "rejections_added": memory.rejections
            })
            return self.get_memory(existing.id)

        self._execute(
            f"INSERT INTO memory ({MEMORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                memory.id,
                memory.type,
                memory.vendor,
                memory.pattern,
                memory.confidence,
                memory.approvals,
                memory.rejections,
                memory.last_updated or now
            )
        )
        logger.log_memory_operation("insert", memory.vendor, memory.pattern, {
            "memory_id": memory.id,
            "confidence": memory.confidence
        })
        return self.get_memory(memory.id)

    def update_confidence_and_counters(self, memory_id: str, confidence: float,
                                       approvals: int, rejections: int) -> None:
        """Unconditionally overwrite confidence, counters and lastUpdated."""
        self._execute(
            """
            UPDATE memory
            SET confidence = ?, approvals = ?, rejections = ?, last_updated = ?
            WHERE id = ?
            """,
            (confidence, approvals, rejections, isoformat(self.clock()), memory_id)
        )

    # Internals

    def _apply_decay(self, memory: Memory) -> Memory:
        decayed = decay_confidence(memory, self.clock())
        if decayed is not memory:
            self._execute(
                "UPDATE memory SET confidence = ?, last_updated = ? WHERE id = ?",
                (decayed.confidence, decayed.last_updated, decayed.id)
            )
            logger.log_memory_operation("decay", memory.vendor, memory.pattern, {
                "memory_id": memory.id,
                "from": memory.confidence,
                "to": decayed.confidence
            })
        return decayed

    def _fetch_one(self, query: str, params: tuple = ()):
        try:
            with get_db(self.db_path) as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Memory store read failed: {e}")
            raise PersistenceError(f"Memory store read failed: {e}") from e

    def _fetch_all(self, query: str, params: tuple = ()):
        try:
            with get_db(self.db_path) as conn:
                return conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Memory store read failed: {e}")
            raise PersistenceError(f"Memory store read failed: {e}") from e

    def _execute(self, query: str, params: tuple = ()) -> None:
        try:
            with get_db(self.db_path) as conn:
                conn.execute(query, params)
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Memory store write failed: {e}")
            raise PersistenceError(f"Memory store write failed: {e}") from e
