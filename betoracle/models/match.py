"""Match and request models consumed by the analysis orchestrator"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


MATCH_STATUS_UPCOMING = "Upcoming"
MATCH_STATUS_LIVE = "Live"
MATCH_STATUS_FINISHED = "Finished"

MATCH_STATUSES = {MATCH_STATUS_UPCOMING, MATCH_STATUS_LIVE, MATCH_STATUS_FINISHED}

# feed fillers for a side that is not known yet
PLACEHOLDER_TEAM_NAMES = frozenset({"unknown", "tbd", "tba"})


def is_placeholder_team(name: Optional[str]) -> bool:
    normalized = (name or "").strip().casefold()
    return not normalized or normalized in PLACEHOLDER_TEAM_NAMES


@dataclass(frozen=True)
class MatchResult:
    """Final (or current) score of a match"""

    home_score: int
    away_score: int

    def to_dict(self) -> Dict[str, int]:
        return {"home_score": self.home_score, "away_score": self.away_score}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["MatchResult"]:
        if not isinstance(data, dict):
            return None
        try:
            return cls(
                home_score=int(data.get("home_score", 0)),
                away_score=int(data.get("away_score", 0)),
            )
        except (TypeError, ValueError):
            return None

    def __str__(self) -> str:
        return f"{self.home_score}-{self.away_score}"


@dataclass
class MatchDescriptor:
    """
    A fixture as supplied by the caller (or the scoreboard feed)

    Only match_id, competition, team names and date are required by the
    orchestrator; the rest is carried into the cached match snapshot.
    """

    match_id: str
    competition: str
    home_team: str
    away_team: str
    date: str
    status: str = MATCH_STATUS_UPCOMING
    odds: Dict[str, float] = field(default_factory=dict)
    result: Optional[MatchResult] = None

    def __post_init__(self):
        if not self.match_id:
            raise ValueError("match_id cannot be empty")
        if not self.home_team or not self.away_team:
            raise ValueError(
                f"home_team and away_team are required (match {self.match_id})"
            )
        if self.status not in MATCH_STATUSES:
            raise ValueError(
                f"status must be one of {sorted(MATCH_STATUSES)}, got {self.status!r}"
            )

    def __str__(self) -> str:
        return f"{self.home_team} vs {self.away_team} [{self.competition}]"

    @property
    def is_finished(self) -> bool:
        return self.status == MATCH_STATUS_FINISHED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "competition": self.competition,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "date": self.date,
            "status": self.status,
            "odds": dict(self.odds),
            "result": self.result.to_dict() if self.result else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchDescriptor":
        odds_raw = data.get("odds") or {}
        odds: Dict[str, float] = {}
        if isinstance(odds_raw, dict):
            for side, price in odds_raw.items():
                try:
                    odds[str(side)] = float(price)
                except (TypeError, ValueError):
                    continue
        return cls(
            match_id=str(data.get("match_id") or data.get("id") or ""),
            competition=str(data.get("competition") or ""),
            home_team=str(data.get("home_team") or ""),
            away_team=str(data.get("away_team") or ""),
            date=str(data.get("date") or ""),
            status=str(data.get("status") or MATCH_STATUS_UPCOMING),
            odds=odds,
            result=MatchResult.from_dict(data.get("result")),
        )


@dataclass(frozen=True)
class PropSelection:
    """A player-prop pick supplied by the caller, passed through verbatim"""

    player: str
    stat_type: str
    line: str
    direction: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "player": self.player,
            "stat_type": self.stat_type,
            "line": self.line,
            "direction": self.direction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PropSelection":
        return cls(
            player=str(data.get("player") or ""),
            stat_type=str(data.get("stat_type") or data.get("type") or ""),
            line=str(data.get("line") or data.get("value") or ""),
            direction=str(data.get("direction") or data.get("choice") or ""),
        )

    def __str__(self) -> str:
        parts = [self.player, self.direction, self.line, self.stat_type]
        return " ".join(p for p in parts if p)


@dataclass(frozen=True)
class AnalysisRequest:
    """Immutable request tuple handed to the context assembler"""

    match_id: str
    competition_name: str
    home_team_name: str
    away_team_name: str
    match_date: str
    user_hunch: str
    player_props: Tuple[PropSelection, ...] = ()

    @classmethod
    def from_match(
        cls,
        match: MatchDescriptor,
        hunch: str,
        props: Optional[List[PropSelection]] = None,
    ) -> "AnalysisRequest":
        return cls(
            match_id=match.match_id,
            competition_name=match.competition,
            home_team_name=match.home_team,
            away_team_name=match.away_team,
            match_date=match.date,
            user_hunch=hunch or "",
            player_props=tuple(props or ()),
        )
