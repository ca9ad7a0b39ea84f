"""Response parsing utilities for converting model text into Analysis objects"""

import logging
import re
from typing import Iterable, List, Optional

from betoracle.models import (
    Analysis,
    NarrativeSignal,
    PROVENANCE_GROUNDED,
    QuickPick,
    Source,
)

logger = logging.getLogger(__name__)

MAX_QUICK_PICKS = 3
MIN_ROW_FIELDS = 4

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


# ============================================================================
# ANALYSIS RESPONSE PARSING
# ============================================================================

class AnalysisResponseParser:
    """
    Tolerant parser for the tag micro-format the prompt asks the model to use:

        [PREDICTION] verdict [/PREDICTION]
        [SCORELINE] 2-1 [/SCORELINE]
        [SCORERS] name1, name2 [/SCORERS]
        [PLAY] market [/PLAY]
        [PROP_INSIGHTS] text [/PROP_INSIGHTS]
        [REASONING] text [/REASONING]
        [QUICKPICKS]
        market | selection | confidence | rationale
        [/QUICKPICKS]
        [SIGNALS]
        source | headline | sentiment | impact
        [/SIGNALS]

    Tags are case-insensitive. A tag without its closing tag runs to the end
    of the text. Rows with fewer than four pipe-separated fields are dropped.
    Parsing never raises: anything missing comes back as "" or an empty list.
    """

    @staticmethod
    def extract_tag(text: str, tag: str) -> str:
        if not text:
            return ""
        pattern = re.compile(
            rf"\[{re.escape(tag)}\](.*?)(?:\[/{re.escape(tag)}\]|\Z)",
            re.IGNORECASE | re.DOTALL,
        )
        match = pattern.search(text)
        if not match:
            return ""
        return match.group(1).strip()

    @staticmethod
    def split_rows(block: str, min_fields: int = MIN_ROW_FIELDS) -> List[List[str]]:
        """Split a block into pipe-delimited rows, keeping rows with enough fields."""
        rows: List[List[str]] = []
        for raw_line in (block or "").splitlines():
            line = _BULLET_RE.sub("", raw_line).strip().strip("|").strip()
            if not line:
                continue
            fields = [f.strip() for f in line.split("|")]
            if len(fields) < min_fields:
                logger.debug("Dropping malformed row (%d fields): %r", len(fields), raw_line)
                continue
            # extra pipes belong to the free-text last column
            head, tail = fields[:min_fields - 1], fields[min_fields - 1:]
            rows.append(head + [" | ".join(tail)])
        return rows

    @staticmethod
    def parse_confidence(raw: str) -> Optional[int]:
        match = _NUMBER_RE.search(raw or "")
        if not match:
            return None
        value = float(match.group(0))
        return int(round(min(100.0, max(0.0, value))))

    @classmethod
    def parse_quick_picks(cls, block: str) -> List[QuickPick]:
        picks: List[QuickPick] = []
        for market, selection, confidence_raw, rationale in cls.split_rows(block):
            confidence = cls.parse_confidence(confidence_raw)
            if confidence is None:
                logger.debug("Dropping quick pick with non-numeric confidence: %r", confidence_raw)
                continue
            picks.append(
                QuickPick(
                    market=market,
                    selection=selection,
                    confidence=confidence,
                    rationale=rationale,
                )
            )
        # sorted() is stable, so equal confidences keep model order
        return sorted(picks, key=lambda p: p.confidence, reverse=True)[:MAX_QUICK_PICKS]

    @classmethod
    def parse_signals(cls, block: str) -> List[NarrativeSignal]:
        return [
            NarrativeSignal(source=source, headline=headline, sentiment=sentiment, impact=impact)
            for source, headline, sentiment, impact in cls.split_rows(block)
        ]

    @staticmethod
    def parse_scorers(block: str) -> List[str]:
        return [s.strip() for s in re.split(r"[,\n]", block or "") if s.strip()]

    @staticmethod
    def dedupe_sources(sources: Optional[Iterable[Source]]) -> List[Source]:
        seen = set()
        unique: List[Source] = []
        for source in sources or []:
            if not source.uri or source.uri in seen:
                continue
            seen.add(source.uri)
            unique.append(source)
        return unique

    @classmethod
    def parse(
        cls,
        raw_text: Optional[str],
        sources: Optional[Iterable[Source]] = None,
        provenance: str = PROVENANCE_GROUNDED,
    ) -> Analysis:
        """
        Parse raw model text into a fully populated Analysis

        Args:
            raw_text: Model output, possibly partial or malformed
            sources: Grounding sources reported alongside the text
            provenance: How the text was obtained (grounded / degraded)

        Returns:
            Analysis with empty defaults for every missing section
        """
        try:
            text = raw_text or ""
            analysis = Analysis(
                prediction=cls.extract_tag(text, "PREDICTION"),
                scoreline=cls.extract_tag(text, "SCORELINE"),
                likely_scorers=tuple(cls.parse_scorers(cls.extract_tag(text, "SCORERS"))),
                suggested_play=cls.extract_tag(text, "PLAY"),
                reasoning=cls.extract_tag(text, "REASONING"),
                player_prop_insights=cls.extract_tag(text, "PROP_INSIGHTS"),
                quick_picks=tuple(cls.parse_quick_picks(cls.extract_tag(text, "QUICKPICKS"))),
                narrative_signals=tuple(cls.parse_signals(cls.extract_tag(text, "SIGNALS"))),
                sources=tuple(cls.dedupe_sources(sources)),
                provenance=provenance,
            )
        except Exception as e:
            logger.error(f"Unexpected error parsing analysis response: {e}\nText: {str(raw_text)[:200]}")
            return Analysis(provenance=provenance)

        if not analysis.prediction:
            logger.warning("Model response had no [PREDICTION] block: %r", (raw_text or "")[:120])
        return analysis
