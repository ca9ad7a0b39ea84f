"""PrizePicks projections feed used as supplemental player-prop market context."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from betoracle.models import Projection

from .base_client import BaseAPIClient

logger = logging.getLogger(__name__)

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json",
}


@dataclass
class PrizePicksConfig:
    """Configuration for the projections feed."""

    url: str = "https://api.prizepicks.com/projections"
    cache_ttl_seconds: int = 900


class PrizePicksClient(BaseAPIClient):
    """
    Fetches and flattens the JSON:API projections document.

    Results are cached in-process for ``cache_ttl_seconds``. When a refresh
    fails the last good copy is served even if it is stale.
    """

    def __init__(self, config: PrizePicksConfig, clock: Callable[[], float] = time.monotonic):
        super().__init__(platform_name="prizepicks", base_url=config.url, timeout=20, max_retries=1)
        self.config = config
        self._clock = clock
        self._cached: Optional[List[Projection]] = None
        self._fetched_at: float = 0.0

    def _cache_is_fresh(self) -> bool:
        if self._cached is None:
            return False
        return (self._clock() - self._fetched_at) < self.config.cache_ttl_seconds

    async def fetch_projections(self) -> List[Projection]:
        if self._cache_is_fresh():
            logger.debug("Returning cached PrizePicks projections (%d)", len(self._cached or []))
            return list(self._cached or [])

        try:
            payload = await self._get_json(
                self.config.url,
                operation_name="PrizePicks projections",
                headers=dict(_BROWSER_HEADERS),
            )
        except Exception as e:
            logger.warning("PrizePicks fetch failed, serving %s copy: %s",
                           "stale" if self._cached is not None else "empty", e)
            return list(self._cached or [])

        projections = self.parse_projections(payload)
        if projections or self._cached is None:
            self._cached = projections
            self._fetched_at = self._clock()
        logger.info("📈 Loaded %d PrizePicks projections", len(projections))
        return list(self._cached or [])

    @staticmethod
    def parse_projections(payload: Any) -> List[Projection]:
        """Join projections with their included player and league records."""
        if not isinstance(payload, dict):
            return []
        data = payload.get("data")
        included = payload.get("included")
        if not isinstance(data, list) or not isinstance(included, list):
            return []

        players: Dict[str, Dict[str, Any]] = {}
        leagues: Dict[str, Dict[str, Any]] = {}
        for item in included:
            if not isinstance(item, dict):
                continue
            attrs = item.get("attributes") or {}
            if item.get("type") == "new_player":
                players[str(item.get("id"))] = attrs
            elif item.get("type") == "league":
                leagues[str(item.get("id"))] = attrs

        projections: List[Projection] = []
        for proj in data:
            if not isinstance(proj, dict):
                continue
            rel = proj.get("relationships") or {}
            player_id = str(((rel.get("new_player") or {}).get("data") or {}).get("id"))
            league_id = str(((rel.get("league") or {}).get("data") or {}).get("id"))
            player = players.get(player_id) or {}
            league = leagues.get(league_id) or {}
            attrs = proj.get("attributes") or {}
            line = attrs.get("line_score")
            projections.append(
                Projection(
                    player=str(player.get("display_name") or player.get("name") or "Unknown"),
                    line=str(line) if line is not None else "0",
                    stat=str(attrs.get("stat_type") or "Unknown"),
                    team=str(player.get("team") or "Unknown"),
                    league=str(league.get("name") or league.get("abbreviation") or "Unknown"),
                )
            )
        return projections
