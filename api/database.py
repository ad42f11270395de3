"""
Database module for OpenOrbit.
Implements SQLite persistence with async support.

Tables:
- batch_runs: one row per batch job run, at most one 'running' row per kind
- valuation_cache: append-only valuation lookups keyed by address
"""

import uuid
import aiosqlite
from datetime import datetime
from typing import Optional, List, Dict, Any, Union
from pathlib import Path
from contextlib import asynccontextmanager

from .config import get_config

PathLike = Union[str, Path]

RUN_STATUS_RUNNING = "running"
RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"


def default_db_path() -> Path:
    """Database file named by config.DATABASE_PATH."""
    return Path(get_config().DATABASE_PATH)


def _now() -> str:
    return datetime.now().isoformat()


async def init_database(db_path: Optional[PathLike] = None):
    """Initialize the database schema."""
    path = Path(db_path or default_db_path())
    path.parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(path) as db:
        # Batch job runs
        await db.execute("""
            CREATE TABLE IF NOT EXISTS batch_runs (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                target_id TEXT,
                total INTEGER NOT NULL DEFAULT 0,
                processed_ok INTEGER NOT NULL DEFAULT 0,
                skipped INTEGER NOT NULL DEFAULT 0,
                errors INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                finished_at TEXT
            )
        """)

        # Valuation lookups, newest wins
        await db.execute("""
            CREATE TABLE IF NOT EXISTS valuation_cache (
                id TEXT PRIMARY KEY,
                address_line TEXT NOT NULL,
                city TEXT NOT NULL,
                region TEXT NOT NULL,
                postal_code TEXT NOT NULL,
                estimated_value INTEGER,
                source_url TEXT,
                error TEXT,
                captured_at TEXT NOT NULL
            )
        """)

        # Create indexes
        await db.execute("CREATE INDEX IF NOT EXISTS idx_batch_runs_kind_status ON batch_runs(kind, status)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_batch_runs_started_at ON batch_runs(started_at)")
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_valuation_cache_address "
            "ON valuation_cache(address_line, city, region, postal_code)"
        )

        await db.commit()

        # Lightweight migrations for additive columns.
        await _migrate_batch_runs(db)
        await db.commit()


async def _migrate_batch_runs(db: aiosqlite.Connection):
    """Add new optional columns to batch_runs if missing."""
    cursor = await db.execute("PRAGMA table_info(batch_runs)")
    rows = await cursor.fetchall()
    existing = {row[1] for row in rows}  # (cid, name, type, notnull, dflt, pk)

    migrations = [
        ("target_name", "TEXT"),
        ("last_error", "TEXT"),
    ]

    for col, col_type in migrations:
        if col in existing:
            continue
        await db.execute(f"ALTER TABLE batch_runs ADD COLUMN {col} {col_type}")


@asynccontextmanager
async def get_db(db_path: Optional[PathLike] = None):
    """Get a database connection."""
    db = await aiosqlite.connect(Path(db_path or default_db_path()))
    db.row_factory = aiosqlite.Row
    try:
        yield db
    finally:
        await db.close()


class BatchRunsRepo:
    """Run history for batch jobs."""

    def __init__(self, db_path: Optional[PathLike] = None):
        self.db_path = Path(db_path or default_db_path())

    async def create(self, run_id: str, kind: str, target_id: Optional[str], total: int,
                     target_name: Optional[str] = None) -> Dict[str, Any]:
        """Insert a new run in 'running' state."""
        async with get_db(self.db_path) as db:
            await db.execute("""
                INSERT INTO batch_runs
                (id, kind, target_id, target_name, total, status, started_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (run_id, kind, target_id, target_name, total, RUN_STATUS_RUNNING, _now()))
            await db.commit()
        return await self.get(run_id)

    async def update_progress(self, run_id: str, processed_ok: int, skipped: int, errors: int):
        """Persist counters of a running run."""
        async with get_db(self.db_path) as db:
            await db.execute("""
                UPDATE batch_runs SET processed_ok = ?, skipped = ?, errors = ?
                WHERE id = ? AND status = ?
            """, (processed_ok, skipped, errors, run_id, RUN_STATUS_RUNNING))
            await db.commit()

    async def finish(self, run_id: str, status: str, last_error: Optional[str] = None) -> bool:
        """
        Move a running run to a terminal status.

        Returns False when the run was not running (already finalized or missing).
        """
        if status not in (RUN_STATUS_COMPLETED, RUN_STATUS_FAILED):
            raise ValueError(f"Not a terminal status: {status}")

        async with get_db(self.db_path) as db:
            cursor = await db.execute("""
                UPDATE batch_runs SET status = ?, finished_at = ?, last_error = ?
                WHERE id = ? AND status = ?
            """, (status, _now(), last_error, run_id, RUN_STATUS_RUNNING))
            await db.commit()
            return cursor.rowcount > 0

    async def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Get a specific run."""
        async with get_db(self.db_path) as db:
            cursor = await db.execute("SELECT * FROM batch_runs WHERE id = ?", (run_id,))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def get_running(self, kind: str) -> Optional[Dict[str, Any]]:
        """Get the running run of a kind, if any."""
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM batch_runs WHERE kind = ? AND status = ? "
                "ORDER BY started_at DESC, rowid DESC LIMIT 1",
                (kind, RUN_STATUS_RUNNING)
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def list_recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Get the most recently started runs."""
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM batch_runs ORDER BY started_at DESC, rowid DESC LIMIT ?",
                (limit,)
            )
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def list_running(self) -> List[Dict[str, Any]]:
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM batch_runs WHERE status = ? ORDER BY started_at",
                (RUN_STATUS_RUNNING,)
            )
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]


class ValuationCacheRepo:
    """Append-only cache of valuation lookups."""

    def __init__(self, db_path: Optional[PathLike] = None):
        self.db_path = Path(db_path or default_db_path())

    async def insert(self, address_line: str, city: str, region: str, postal_code: str,
                     estimated_value: Optional[int], source_url: Optional[str],
                     error: Optional[str] = None) -> Dict[str, Any]:
        """Record a lookup result (value or error)."""
        entry_id = uuid.uuid4().hex
        async with get_db(self.db_path) as db:
            await db.execute("""
                INSERT INTO valuation_cache
                (id, address_line, city, region, postal_code, estimated_value, source_url, error, captured_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (entry_id, address_line, city, region, postal_code,
                  estimated_value, source_url, error, _now()))
            await db.commit()
        return await self.get(entry_id)

    async def get(self, entry_id: str) -> Optional[Dict[str, Any]]:
        async with get_db(self.db_path) as db:
            cursor = await db.execute("SELECT * FROM valuation_cache WHERE id = ?", (entry_id,))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def find_by_address(self, address_line: str, city: str, region: str,
                              postal_code: str) -> Optional[Dict[str, Any]]:
        """Most recent entry for an exact address."""
        async with get_db(self.db_path) as db:
            cursor = await db.execute("""
                SELECT * FROM valuation_cache
                WHERE address_line = ? AND city = ? AND region = ? AND postal_code = ?
                ORDER BY captured_at DESC, rowid DESC LIMIT 1
            """, (address_line, city, region, postal_code))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def list(self, limit: int = 100) -> List[Dict[str, Any]]:
        async with get_db(self.db_path) as db:
            cursor = await db.execute(
                "SELECT * FROM valuation_cache ORDER BY captured_at DESC, rowid DESC LIMIT ?",
                (limit,)
            )
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def delete(self, entry_id: str):
        async with get_db(self.db_path) as db:
            await db.execute("DELETE FROM valuation_cache WHERE id = ?", (entry_id,))
            await db.commit()

    async def purge(self) -> int:
        """Delete every entry. Returns the number removed."""
        async with get_db(self.db_path) as db:
            cursor = await db.execute("DELETE FROM valuation_cache")
            await db.commit()
            return cursor.rowcount
