"""SQLite connection and schema management.

All collections share one `documents` table keyed by (collection, id).
Bodies are stored as JSON; `schema_version` records the shape a document
was last written with, `seq` orders local writes for push checkpoints.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)


def init_db(db_path: Path) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db(db_path) as conn:
        _create_schema(conn)

    logger.debug("database.initialized", path=str(db_path))


@contextmanager
def get_db(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Commits on success, rolls back if the block raises.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db(path) as conn:
            rows = conn.execute("SELECT body FROM documents").fetchall()
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def next_seq(conn: sqlite3.Connection) -> int:
    """Allocate the next local write sequence number."""
    conn.execute(
        """
        INSERT INTO store_meta (key, value) VALUES ('seq', '1')
        ON CONFLICT(key) DO UPDATE SET value = CAST(value AS INTEGER) + 1
        """
    )
    row = conn.execute("SELECT value FROM store_meta WHERE key = 'seq'").fetchone()
    return int(row["value"])


def delete_db(db_path: Path) -> bool:
    """Delete the database file and its journal files.

    Returns:
        True if the main database file existed
    """
    existed = db_path.exists()
    for suffix in ("", "-journal", "-wal", "-shm"):
        Path(f"{db_path}{suffix}").unlink(missing_ok=True)
    if existed:
        logger.warning("database.deleted", path=str(db_path))
    return existed


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        -- One row per document; body is the JSON document
        CREATE TABLE IF NOT EXISTS documents (
            collection TEXT NOT NULL,
            id TEXT NOT NULL,
            schema_version INTEGER NOT NULL DEFAULT 0,
            body TEXT NOT NULL,
            seq INTEGER NOT NULL DEFAULT 0,
            origin TEXT NOT NULL DEFAULT 'local' CHECK(origin IN ('local', 'remote')),
            written_at TEXT NOT NULL DEFAULT (datetime('now')),
            PRIMARY KEY (collection, id)
        );

        -- Store-wide counters
        CREATE TABLE IF NOT EXISTS store_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_documents_seq ON documents(collection, seq);
        CREATE INDEX IF NOT EXISTS idx_documents_version ON documents(collection, schema_version);
        """
    )
