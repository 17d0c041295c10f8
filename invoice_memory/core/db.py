"""
SQLite foundation for the memory store.
One row per (vendor, pattern); the UNIQUE constraint backs the merge-on-save policy.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import DB_PATH, ensure_db_directory


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS memory (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                vendor TEXT NOT NULL,
                pattern TEXT NOT NULL,
                confidence REAL NOT NULL,
                approvals INTEGER NOT NULL DEFAULT 0,
                rejections INTEGER NOT NULL DEFAULT 0,
                last_updated TEXT NOT NULL,
                UNIQUE(vendor, pattern)
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memory_vendor ON memory(vendor)')

        conn.commit()


def health_check(db_path: str = None) -> bool:
    """Check if the database is accessible and has the memory table."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='memory'")
            return cursor.fetchone() is not None
    except sqlite3.Error:
        return False
