"""Analysis result model produced by the response parser"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from .match import MatchDescriptor


PROVENANCE_GROUNDED = "grounded"  # search-grounded model call
PROVENANCE_DEGRADED = "degraded"  # internal-knowledge call, no search
PROVENANCE_CACHED = "cached"  # served from the shared cache
PROVENANCE_ERROR = "error"  # synthetic sentinel, no model output

ANALYSIS_ERROR_PREDICTION = "Oracle Hub Connection Issue"
ANALYSIS_ERROR_SCORELINE = "ERR"


@dataclass(frozen=True)
class QuickPick:
    """A short, high-confidence pick extracted from the QUICKPICKS block"""

    market: str
    selection: str
    confidence: int  # 0-100
    rationale: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "market": self.market,
            "selection": self.selection,
            "confidence": self.confidence,
            "rationale": self.rationale,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuickPick":
        return cls(
            market=str(data.get("market") or ""),
            selection=str(data.get("selection") or ""),
            confidence=int(data.get("confidence") or 0),
            rationale=str(data.get("rationale") or ""),
        )


@dataclass(frozen=True)
class NarrativeSignal:
    """A news/sentiment signal extracted from the SIGNALS block"""

    source: str
    headline: str
    sentiment: str
    impact: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "source": self.source,
            "headline": self.headline,
            "sentiment": self.sentiment,
            "impact": self.impact,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NarrativeSignal":
        return cls(
            source=str(data.get("source") or ""),
            headline=str(data.get("headline") or ""),
            sentiment=str(data.get("sentiment") or ""),
            impact=str(data.get("impact") or ""),
        )


@dataclass(frozen=True)
class Source:
    """Web source cited by search grounding"""

    title: str
    uri: str

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "uri": self.uri}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Source":
        return cls(title=str(data.get("title") or ""), uri=str(data.get("uri") or ""))


@dataclass(frozen=True)
class Analysis:
    """
    Structured betting analysis for one match

    Every text field is an empty string when the model did not supply it;
    callers should branch on emptiness, never on absence.
    """

    prediction: str = ""
    scoreline: str = ""
    likely_scorers: Tuple[str, ...] = ()
    suggested_play: str = ""
    reasoning: str = ""
    player_prop_insights: str = ""
    quick_picks: Tuple[QuickPick, ...] = ()
    narrative_signals: Tuple[NarrativeSignal, ...] = ()
    sources: Tuple[Source, ...] = ()
    # how the value was obtained; not part of its content
    provenance: str = field(default=PROVENANCE_GROUNDED, compare=False)

    @property
    def is_error(self) -> bool:
        return self.provenance == PROVENANCE_ERROR

    def with_provenance(self, provenance: str) -> "Analysis":
        return replace(self, provenance=provenance)

    @classmethod
    def error(cls, message: str) -> "Analysis":
        """Sentinel analysis returned when no model output could be obtained"""
        return cls(
            prediction=ANALYSIS_ERROR_PREDICTION,
            scoreline=ANALYSIS_ERROR_SCORELINE,
            reasoning=message or "Analysis unavailable.",
            provenance=PROVENANCE_ERROR,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prediction": self.prediction,
            "scoreline": self.scoreline,
            "likely_scorers": list(self.likely_scorers),
            "suggested_play": self.suggested_play,
            "reasoning": self.reasoning,
            "player_prop_insights": self.player_prop_insights,
            "quick_picks": [p.to_dict() for p in self.quick_picks],
            "narrative_signals": [s.to_dict() for s in self.narrative_signals],
            "sources": [s.to_dict() for s in self.sources],
            "provenance": self.provenance,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Analysis":
        def _rows(key: str) -> List[Dict[str, Any]]:
            rows = data.get(key) or []
            return [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []

        scorers = data.get("likely_scorers") or []
        return cls(
            prediction=str(data.get("prediction") or ""),
            scoreline=str(data.get("scoreline") or ""),
            likely_scorers=tuple(str(s) for s in scorers if s) if isinstance(scorers, list) else (),
            suggested_play=str(data.get("suggested_play") or ""),
            reasoning=str(data.get("reasoning") or ""),
            player_prop_insights=str(data.get("player_prop_insights") or ""),
            quick_picks=tuple(QuickPick.from_dict(r) for r in _rows("quick_picks")),
            narrative_signals=tuple(NarrativeSignal.from_dict(r) for r in _rows("narrative_signals")),
            sources=tuple(Source.from_dict(r) for r in _rows("sources")),
            provenance=str(data.get("provenance") or PROVENANCE_GROUNDED),
        )


@dataclass(frozen=True)
class HistoricalRecord:
    """A previously cached analysis plus the match it was made for"""

    analysis: Analysis
    match: MatchDescriptor
    created_at: str = ""

    @property
    def has_result(self) -> bool:
        return self.match.result is not None


@dataclass
class Projection:
    """One player-prop line from the market projections feed"""

    player: str
    line: str
    stat: str
    team: str = "Unknown"
    league: str = "Unknown"

    def __str__(self) -> str:
        return f"{self.player} ({self.team}, {self.league}) {self.stat} {self.line}"


@dataclass
class SupplementalContext:
    """Per-request enrichment; discarded once the prompt is rendered"""

    market_projections: List[Projection] = field(default_factory=list)
    team_history: List[HistoricalRecord] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.market_projections and not self.team_history


@dataclass
class RawModelResponse:
    """Text and grounding metadata returned by a single model call"""

    text: str
    sources: List[Source] = field(default_factory=list)
    grounded: bool = True
    credential_label: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: Optional[str] = None
