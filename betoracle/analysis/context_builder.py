"""
Context assembly for match analysis prompts.

Pulls the supplemental material (market prop lines and prior analyses of the
same teams) concurrently, then renders the prompt sent to the model.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import List, Optional, Sequence

from betoracle.models import (
    AnalysisRequest,
    HistoricalRecord,
    Projection,
    SupplementalContext,
    is_placeholder_team,
)
from betoracle.utils.errors import SupplementalFetchError

from .dispatcher import SEARCH_DIRECTIVE

logger = logging.getLogger(__name__)

FORMAT_INSTRUCTIONS = """Format EXACTLY as tags:
[PREDICTION] summary verdict [/PREDICTION]
[SCORELINE] 2-1 [/SCORELINE]
[SCORERS] name1, name2 [/SCORERS]
[PLAY] specific suggested betting market [/PLAY]
[PROP_INSIGHTS] analysis of the user's picks [/PROP_INSIGHTS]
[REASONING] clear core logic with source citations [/REASONING]
[QUICKPICKS]
market | selection | confidence 0-100 | one-line rationale
(up to 3 rows)
[/QUICKPICKS]
[SIGNALS]
source | headline | positive/negative/neutral | who it affects
[/SIGNALS]"""


def names_match(candidate: Optional[str], team_name: Optional[str]) -> bool:
    """Case-insensitive containment in either direction; blanks and placeholders like "Unknown" never match."""
    if is_placeholder_team(candidate) or is_placeholder_team(team_name):
        return False
    a = candidate.strip().casefold()
    b = team_name.strip().casefold()
    return a in b or b in a


def filter_projections(
    projections: Sequence[Projection],
    team_names: Sequence[str],
    limit: int,
) -> List[Projection]:
    relevant = [
        p for p in projections
        if any(names_match(p.player, team) or names_match(p.team, team) for team in team_names)
    ]
    return relevant[:limit]


class ContextAssembler:
    """
    Builds SupplementalContext for one request and renders the final prompt.

    Both collaborators are optional: ``market_feed`` needs
    ``fetch_projections()``, ``cache`` needs ``search_by_team(team, limit)``.
    A failing or missing source contributes nothing.
    """

    def __init__(
        self,
        market_feed=None,
        cache=None,
        max_market_lines: int = 12,
        history_per_team: int = 1,
    ):
        self.market_feed = market_feed
        self.cache = cache
        self.max_market_lines = max_market_lines
        self.history_per_team = history_per_team

    async def build_context(self, request: AnalysisRequest) -> SupplementalContext:
        market, home_history, away_history = await asyncio.gather(
            self._absorb("market feed", self._market_lines(request)),
            self._absorb(f"history:{request.home_team_name}", self._history(request.home_team_name, request.match_id)),
            self._absorb(f"history:{request.away_team_name}", self._history(request.away_team_name, request.match_id)),
        )

        history: List[HistoricalRecord] = []
        seen = set()
        for record in list(home_history) + list(away_history):
            marker = (record.match.match_id, record.created_at)
            if marker in seen:
                continue
            seen.add(marker)
            history.append(record)

        context = SupplementalContext(market_projections=list(market), team_history=history)
        logger.debug(
            "Context for %s: %d market lines, %d history records",
            request.match_id,
            len(context.market_projections),
            len(context.team_history),
        )
        return context

    async def _absorb(self, source: str, fetch) -> list:
        try:
            return await fetch
        except Exception as e:
            error = SupplementalFetchError(source, e)
            logger.warning(f"⚠️  {error}; continuing without it")
            return []

    async def _market_lines(self, request: AnalysisRequest) -> List[Projection]:
        if self.market_feed is None or self.max_market_lines <= 0:
            return []
        projections = await self.market_feed.fetch_projections()
        return filter_projections(
            projections,
            [request.home_team_name, request.away_team_name],
            self.max_market_lines,
        )

    async def _history(self, team_name: str, match_id: str) -> List[HistoricalRecord]:
        if self.cache is None or self.history_per_team <= 0:
            return []
        # over-fetch: several entries can belong to the match being analysed
        records = await self.cache.search_by_team(team_name, limit=self.history_per_team + 5)
        return [r for r in records if r.match.match_id != match_id][:self.history_per_team]

    def render_prompt(
        self,
        request: AnalysisRequest,
        context: SupplementalContext,
        today: Optional[date] = None,
    ) -> str:
        today = today or date.today()

        if request.player_props:
            props_text = "\n".join(f"- {prop}" for prop in request.player_props)
        else:
            props_text = "No specific player props provided."

        sections = [
            f"TODAY'S DATE: {today.isoformat()}",
            "ANALYZE THIS MATCH FOR EXPERT BETTING INSIGHTS:\n"
            f"Competition: {request.competition_name}\n"
            f"Home Team: {request.home_team_name}\n"
            f"Away Team: {request.away_team_name}\n"
            f"Match Date: {request.match_date}",
            f"User context/hunch: {request.user_hunch}\n"
            f"User specific bets:\n{props_text}",
        ]

        if context.market_projections:
            lines = "\n".join(f"- {p}" for p in context.market_projections)
            sections.append(f"MARKET CONTEXT (current player prop lines):\n{lines}")

        if context.team_history:
            sections.append(self._render_memory(context.team_history))

        sections.append(SEARCH_DIRECTIVE)
        sections.append(
            "TASKS:\n"
            "1. Check the latest team news (injuries, lineup leaks, manager quotes).\n"
            "2. Check the last 3 matches of form for both sides.\n"
            "3. Give an expert verdict on the likely winner or draw.\n"
            "4. Predict the exact scoreline.\n"
            "5. Say whether the user's bets and props make sense on current numbers.\n"
            "6. List up to 3 quick picks with a confidence from 0 to 100.\n"
            "7. List the narrative signals (news, sentiment) that move this match."
        )
        sections.append(FORMAT_INSTRUCTIONS)
        return "\n\n".join(sections)

    @staticmethod
    def _render_memory(history: Sequence[HistoricalRecord]) -> str:
        lines = ["MEMORY (your earlier analyses involving these teams):"]
        for record in history:
            analysis = record.analysis
            line = (
                f"- {record.match.home_team} vs {record.match.away_team} "
                f"({record.match.competition}, {record.match.date}): "
                f"you predicted \"{analysis.prediction}\" with scoreline {analysis.scoreline or 'n/a'}"
            )
            if record.match.result is not None:
                line += f"; actual result {record.match.result}"
            lines.append(line)
        lines.append(
            "Where an earlier prediction did not match the actual result, say what you "
            "misjudged and correct for it in this analysis."
        )
        return "\n".join(lines)
