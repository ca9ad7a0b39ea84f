import aiosqlite
import logging
import json
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from betoracle.utils.errors import CacheBackendUnavailableError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _casefold(value: Optional[str]) -> str:
    return (value or "").casefold()


class DatabaseManager:
    """
    SQLite backing store for the shared analysis cache.

    Supports:
    - WAL mode so several processes on one host can share the file
    - Simple versioned schema migrations
    - Upsert-by-key writes (last write wins)
    - Team-name lookups for prompt memory

    Expiry is not enforced here; callers compare ``expires_at`` themselves.
    """

    def __init__(self, db_path: str = "betoracle_cache.sqlite"):
        self.db_path = db_path
        self.initialized = False

    async def initialize(self):
        """Initialize database, enable WAL, and run migrations."""
        if self.initialized:
            return

        try:
            db_path = Path(self.db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)

            async with aiosqlite.connect(self.db_path) as db:
                # Enable WAL mode for better concurrency
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute("PRAGMA synchronous=NORMAL;")

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY,
                        applied_at TEXT NOT NULL
                    )
                """)

                await self._run_migrations(db)
        except (aiosqlite.Error, OSError) as e:
            raise CacheBackendUnavailableError(
                f"Could not open cache database at {self.db_path}: {e}",
                details={"db_path": self.db_path},
            ) from e

        self.initialized = True
        logger.info(f"✅ Cache database initialized at {self.db_path}")

    def connect(self):
        """Get an aiosqlite connection context manager."""
        return aiosqlite.connect(self.db_path, timeout=30.0)

    async def _run_migrations(self, db: aiosqlite.Connection):
        """Run pending schema migrations."""
        async with db.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] is not None else 0

        # Version 1: global analysis cache
        # Version 2: lookup indexes for team history and recent activity
        migrations = [
            # Version 1
            """
            CREATE TABLE IF NOT EXISTS global_cache (
                key TEXT PRIMARY KEY,
                payload_json TEXT NOT NULL,
                home_team TEXT,
                away_team TEXT,
                match_id TEXT,
                expires_at TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            """,
            # Version 2
            """
            CREATE INDEX IF NOT EXISTS idx_global_cache_home_team ON global_cache(home_team);
            CREATE INDEX IF NOT EXISTS idx_global_cache_away_team ON global_cache(away_team);
            CREATE INDEX IF NOT EXISTS idx_global_cache_match_id ON global_cache(match_id);
            CREATE INDEX IF NOT EXISTS idx_global_cache_created_at ON global_cache(created_at DESC);
            """,
        ]

        for i, sql in enumerate(migrations):
            version = i + 1
            if version > current_version:
                logger.info(f"Applying migration version {version}...")
                try:
                    await db.executescript(sql)
                    await db.execute(
                        "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (version, utc_now_iso())
                    )
                    await db.commit()
                    logger.info(f"✅ Applied migration version {version}")
                except Exception as e:
                    logger.error(f"❌ Failed to apply migration version {version}: {e}")
                    raise

    async def get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Fetch one cache row by key, expired or not."""
        async with self.connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT key, payload_json, home_team, away_team, match_id, expires_at, created_at
                FROM global_cache WHERE key = ?
                """,
                (key,),
            ) as cursor:
                row = await cursor.fetchone()
                return dict(row) if row else None

    async def upsert_entry(
        self,
        key: str,
        payload: Dict[str, Any],
        home_team: str,
        away_team: str,
        match_id: str,
        expires_at: str,
        created_at: str,
    ) -> None:
        async with self.connect() as db:
            await db.execute(
                """
                INSERT INTO global_cache (
                    key, payload_json, home_team, away_team, match_id, expires_at, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    payload_json=excluded.payload_json,
                    home_team=excluded.home_team,
                    away_team=excluded.away_team,
                    match_id=excluded.match_id,
                    expires_at=excluded.expires_at,
                    created_at=excluded.created_at
                """,
                (key, json.dumps(payload), home_team, away_team, match_id, expires_at, created_at),
            )
            await db.commit()

    async def delete_entry(self, key: str) -> bool:
        async with self.connect() as db:
            cursor = await db.execute("DELETE FROM global_cache WHERE key = ?", (key,))
            await db.commit()
            return cursor.rowcount > 0

    async def search_by_team(self, team_name: str, limit: int = 5) -> List[Dict[str, Any]]:
        """
        Rows whose home or away team contains ``team_name`` (Unicode case-insensitive),
        or is contained in it, newest first.
        """
        name = _casefold(team_name).strip()
        if not name:
            return []
        safe_limit = max(1, int(limit or 1))
        pattern = _like_pattern(name)

        async with self.connect() as db:
            # SQLite lower() only folds ASCII
            await db.create_function("py_casefold", 1, _casefold)
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT key, payload_json, home_team, away_team, match_id, expires_at, created_at
                FROM global_cache
                WHERE py_casefold(home_team) LIKE ? ESCAPE '\\'
                   OR py_casefold(away_team) LIKE ? ESCAPE '\\'
                   OR (home_team <> '' AND instr(?, py_casefold(home_team)) > 0)
                   OR (away_team <> '' AND instr(?, py_casefold(away_team)) > 0)
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (pattern, pattern, name, name, safe_limit),
            ) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def update_match_result(self, match_id: str, result: Dict[str, Any], status: str) -> int:
        """
        Write a final score into the match snapshot of every entry for ``match_id``.

        Returns:
            Number of entries updated.
        """
        updated = 0
        async with self.connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT key, payload_json FROM global_cache WHERE match_id = ?",
                (match_id,),
            ) as cursor:
                rows = await cursor.fetchall()

            for row in rows:
                try:
                    payload = json.loads(row["payload_json"])
                    snapshot = payload.setdefault("match", {})
                    snapshot["result"] = result
                    snapshot["status"] = status
                except (ValueError, AttributeError) as e:
                    logger.warning("Skipping unreadable cache payload %s: %s", row["key"], e)
                    continue
                await db.execute(
                    "UPDATE global_cache SET payload_json = ? WHERE key = ?",
                    (json.dumps(payload), row["key"]),
                )
                updated += 1
            await db.commit()
        return updated

    async def stats(self, recent_limit: int = 5) -> Dict[str, Any]:
        """Total entry count plus the most recent entries."""
        async with self.connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT COUNT(*) AS count FROM global_cache") as cursor:
                row = await cursor.fetchone()
                count = row["count"] if row else 0
            async with db.execute(
                """
                SELECT key, payload_json, home_team, away_team, match_id, expires_at, created_at
                FROM global_cache ORDER BY created_at DESC LIMIT ?
                """,
                (max(1, int(recent_limit or 1)),),
            ) as cursor:
                recent = [dict(r) for r in await cursor.fetchall()]
        return {"count": count, "recent": recent}
