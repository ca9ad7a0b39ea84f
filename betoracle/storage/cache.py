"""TTL analysis cache over a shared backend; degrades to a no-op when the backend is unavailable."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from betoracle.models import (
    MATCH_STATUS_FINISHED,
    Analysis,
    HistoricalRecord,
    MatchDescriptor,
    MatchResult,
    is_placeholder_team,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 4 * 60 * 60
RECENT_STATS_LIMIT = 5

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode_payload(row: Dict[str, Any]) -> Dict[str, Any]:
    payload = row.get("payload_json")
    if isinstance(payload, dict):
        return payload
    return json.loads(payload or "{}")


class AnalysisCache:
    """
    Read-through cache for analyses keyed by request fingerprint.

    ``backend`` is anything with the DatabaseManager interface
    (``get_entry``/``upsert_entry``/``delete_entry``/``search_by_team``/
    ``update_match_result``/``stats``). With no backend, or after the backend
    fails to open, every read is a miss and every write is skipped. Backend
    errors on individual calls are logged and treated the same way.
    """

    def __init__(
        self,
        backend=None,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = _utc_now,
    ):
        self.backend = backend
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.backend is not None

    async def open(self) -> None:
        """Initialize the backend; on failure the cache runs disabled."""
        if self.backend is None:
            logger.info("💾 Analysis cache disabled (no backend configured)")
            return
        initialize = getattr(self.backend, "initialize", None)
        if initialize is None:
            return
        try:
            await initialize()
        except Exception as e:
            logger.warning(f"⚠️  Analysis cache unavailable, continuing without it: {e}")
            self.backend = None

    async def get(self, key: str) -> Optional[Analysis]:
        if self.backend is None:
            return None
        try:
            row = await self.backend.get_entry(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if not row:
            return None

        expires_at = _parse_timestamp(row.get("expires_at"))
        if expires_at is None or expires_at < self._clock():
            logger.debug("Cache entry %s expired at %s", key, row.get("expires_at"))
            try:
                await self.backend.delete_entry(key)
            except Exception as e:
                logger.warning(f"Failed to delete expired cache entry {key}: {e}")
            return None

        try:
            return Analysis.from_dict(_decode_payload(row).get("analysis") or {})
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Unreadable cache entry {key}: {e}")
            return None

    async def set(
        self,
        key: str,
        analysis: Analysis,
        match: MatchDescriptor,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        """Upsert an analysis and its match snapshot. Returns False when nothing was written."""
        if self.backend is None:
            return False
        created_at = self._clock()
        expires_at = created_at + timedelta(seconds=ttl_seconds or self.default_ttl_seconds)
        try:
            await self.backend.upsert_entry(
                key=key,
                payload={"analysis": analysis.to_dict(), "match": match.to_dict()},
                home_team=match.home_team,
                away_team=match.away_team,
                match_id=match.match_id,
                expires_at=expires_at.isoformat(),
                created_at=created_at.isoformat(),
            )
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False
        return True

    async def search_by_team(self, team_name: str, limit: int = 1) -> List[HistoricalRecord]:
        """Most recent analyses involving ``team_name``; expiry is ignored for history."""
        if self.backend is None or is_placeholder_team(team_name):
            return []
        try:
            rows = await self.backend.search_by_team(team_name, limit)
        except Exception as e:
            logger.warning(f"Cache history lookup failed for {team_name}: {e}")
            return []

        records: List[HistoricalRecord] = []
        for row in rows[:limit]:
            try:
                payload = _decode_payload(row)
                records.append(
                    HistoricalRecord(
                        analysis=Analysis.from_dict(payload.get("analysis") or {}),
                        match=MatchDescriptor.from_dict(payload.get("match") or {}),
                        created_at=str(row.get("created_at") or ""),
                    )
                )
            except (ValueError, TypeError, AttributeError) as e:
                logger.debug("Skipping unreadable history row %s: %s", row.get("key"), e)
        return records

    async def record_result(self, match_id: str, result: MatchResult) -> int:
        """Store a final score on every cached snapshot of ``match_id``."""
        if self.backend is None:
            return 0
        try:
            updated = await self.backend.update_match_result(
                match_id, result.to_dict(), MATCH_STATUS_FINISHED
            )
        except Exception as e:
            logger.warning(f"Failed to record result for {match_id}: {e}")
            return 0
        if updated:
            logger.info(f"🏁 Recorded result {result} for {match_id} ({updated} cached analyses)")
        return updated

    async def settle(self, matches: Iterable[MatchDescriptor]) -> int:
        """Record final scores for the finished matches in ``matches``."""
        updated = 0
        for match in matches:
            if match.is_finished and match.result is not None:
                updated += await self.record_result(match.match_id, match.result)
        return updated

    async def stats(self) -> Dict[str, Any]:
        """Entry count and the five most recent analyses."""
        empty = {"enabled": self.enabled, "count": 0, "recent": []}
        if self.backend is None:
            return empty
        try:
            raw = await self.backend.stats(RECENT_STATS_LIMIT)
        except Exception as e:
            logger.warning(f"Cache stats unavailable: {e}")
            return empty

        recent = []
        for row in raw.get("recent") or []:
            try:
                analysis = (_decode_payload(row).get("analysis") or {})
            except ValueError:
                analysis = {}
            recent.append({
                "match_id": row.get("match_id"),
                "home_team": row.get("home_team"),
                "away_team": row.get("away_team"),
                "prediction": analysis.get("prediction", ""),
                "created_at": row.get("created_at"),
            })
        return {"enabled": True, "count": int(raw.get("count") or 0), "recent": recent}
