"""ESPN public scoreboard client: fixtures, live state and final scores."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from betoracle.models import (
    MATCH_STATUS_FINISHED,
    MATCH_STATUS_LIVE,
    MATCH_STATUS_UPCOMING,
    MatchDescriptor,
    MatchResult,
)

from .base_client import BaseAPIClient

logger = logging.getLogger(__name__)

# (endpoint, competition display name)
DEFAULT_TEAM_FEEDS: Tuple[Tuple[str, str], ...] = (
    ("soccer/eng.1", "Premier League"),
    ("soccer/uefa.champions", "Champions League"),
    ("soccer/por.1", "Liga Portugal"),
    ("soccer/esp.1", "La Liga"),
    ("basketball/nba", "NBA"),
)
TENNIS_FEED: Tuple[str, str] = ("tennis/atp", "ATP Tour")


@dataclass
class ScoreboardConfig:
    base_url: str = "https://site.api.espn.com/apis/site/v2/sports"
    team_feeds: Tuple[Tuple[str, str], ...] = field(default=DEFAULT_TEAM_FEEDS)
    include_tennis: bool = True


def _status_from_state(state: str) -> str:
    if state == "post":
        return MATCH_STATUS_FINISHED
    if state == "in":
        return MATCH_STATUS_LIVE
    return MATCH_STATUS_UPCOMING


def _score(raw: Any) -> int:
    try:
        return int(str(raw))
    except (TypeError, ValueError):
        return 0


def _display_date(status: str, short_detail: Optional[str], raw_date: Optional[str]) -> str:
    if status == MATCH_STATUS_FINISHED:
        return "Full Time"
    if status == MATCH_STATUS_LIVE:
        return "Live Now"
    return short_detail or raw_date or "Upcoming"


class ScoreboardClient(BaseAPIClient):
    """Reads ESPN scoreboard endpoints and maps events to MatchDescriptor."""

    def __init__(self, config: ScoreboardConfig):
        super().__init__(platform_name="espn", base_url=config.base_url.rstrip("/"), timeout=20, max_retries=1)
        self.config = config

    async def fetch_matches(self) -> List[MatchDescriptor]:
        """Fetch every configured feed concurrently; failed feeds contribute nothing."""
        feeds = list(self.config.team_feeds)
        if self.config.include_tennis:
            feeds.append(TENNIS_FEED)

        results = await asyncio.gather(
            *(self._fetch_feed(endpoint, competition) for endpoint, competition in feeds),
            return_exceptions=True,
        )

        matches: List[MatchDescriptor] = []
        for (endpoint, competition), result in zip(feeds, results):
            if isinstance(result, BaseException):
                logger.warning("Scoreboard feed %s (%s) failed: %s", endpoint, competition, result)
                continue
            matches.extend(result)

        logger.info("🏟️  Loaded %d matches from %d scoreboard feeds", len(matches), len(feeds))
        return matches

    async def _fetch_feed(self, endpoint: str, competition: str) -> List[MatchDescriptor]:
        payload = await self._get_json(
            f"{self.base_url}/{endpoint}/scoreboard",
            operation_name=f"ESPN scoreboard ({competition})",
            headers={"Accept": "application/json"},
        )
        if endpoint.startswith("tennis/"):
            return self.parse_tennis_events(payload, competition)
        return self.parse_team_events(payload, competition, id_prefix=endpoint.split("/")[-1])

    @staticmethod
    def parse_team_events(payload: Any, competition: str, id_prefix: str = "") -> List[MatchDescriptor]:
        events = payload.get("events") if isinstance(payload, dict) else None
        matches: List[MatchDescriptor] = []
        for event in events or []:
            if not isinstance(event, dict):
                continue
            comps = event.get("competitions") or []
            comp = comps[0] if comps else None
            if not isinstance(comp, dict):
                continue
            competitors = comp.get("competitors") or []
            home = next((c for c in competitors if c.get("homeAway") == "home"), None)
            away = next((c for c in competitors if c.get("homeAway") == "away"), None)
            if not home or not away:
                continue

            status_type = (event.get("status") or {}).get("type") or {}
            state = str(status_type.get("state") or "pre")
            status = _status_from_state(state)
            try:
                matches.append(
                    MatchDescriptor(
                        match_id=f"m_espn_{id_prefix + '_' if id_prefix else ''}{event.get('id')}",
                        competition=competition,
                        home_team=str((home.get("team") or {}).get("displayName") or "TBD"),
                        away_team=str((away.get("team") or {}).get("displayName") or "TBD"),
                        date=_display_date(status, status_type.get("shortDetail"), event.get("date")),
                        status=status,
                        result=(
                            MatchResult(_score(home.get("score")), _score(away.get("score")))
                            if state != "pre" else None
                        ),
                    )
                )
            except ValueError as e:
                logger.debug("Skipping malformed %s event %s: %s", competition, event.get("id"), e)
        return matches

    @staticmethod
    def parse_tennis_events(payload: Any, competition: str) -> List[MatchDescriptor]:
        events = payload.get("events") if isinstance(payload, dict) else None
        matches: List[MatchDescriptor] = []
        for event in events or []:
            for grouping in (event or {}).get("groupings") or []:
                for comp in (grouping or {}).get("competitions") or []:
                    competitors = (comp or {}).get("competitors") or []
                    if len(competitors) < 2:
                        continue
                    p1, p2 = competitors[0], competitors[1]
                    status_type = (comp.get("status") or {}).get("type") or {}
                    state = str(status_type.get("state") or "pre")
                    status = _status_from_state(state)
                    try:
                        matches.append(
                            MatchDescriptor(
                                match_id=f"m_espn_atp_{comp.get('id') or event.get('id')}_{p1.get('id')}",
                                competition=competition,
                                home_team=str((p1.get("athlete") or {}).get("displayName") or "TBD"),
                                away_team=str((p2.get("athlete") or {}).get("displayName") or "TBD"),
                                date=_display_date(status, status_type.get("shortDetail"), None),
                                status=status,
                                result=(
                                    MatchResult(_score(p1.get("score")), _score(p2.get("score")))
                                    if state != "pre" else None
                                ),
                            )
                        )
                    except ValueError as e:
                        logger.debug("Skipping malformed tennis competition %s: %s", comp.get("id"), e)
        return matches
