from __future__ import annotations

from betoracle.models import PROVENANCE_DEGRADED, Source
from betoracle.utils.response_parser import AnalysisResponseParser

FULL_RESPONSE = """
[PREDICTION] Arsenal edge a tight one [/PREDICTION]
[SCORELINE] 2-1 [/SCORELINE]
[SCORERS] Saka, Havertz
Palmer [/SCORERS]
[PLAY] Arsenal draw no bet [/PLAY]
[PROP_INSIGHTS] Saka over 1.5 shots looks fair. [/PROP_INSIGHTS]
[REASONING] Home form is strong and Chelsea travel without their first-choice keeper. [/REASONING]
[QUICKPICKS]
Match Result | Arsenal | 90 | Strong home form
BTTS | Yes | 40% | Both leak goals
- Corners | Over 9.5 | 95 | Wide play on both sides
Cards | Over 3.5 | ~60 | Derby intensity
Scorer | Palmer | 10 | Long shot
[/QUICKPICKS]
[SIGNALS]
BBC Sport | Rice fit to start | positive | Arsenal midfield
Rumour mill | unconfirmed
[/SIGNALS]
"""


def test_parses_every_section() -> None:
    analysis = AnalysisResponseParser.parse(FULL_RESPONSE)

    assert analysis.prediction == "Arsenal edge a tight one"
    assert analysis.scoreline == "2-1"
    assert analysis.likely_scorers == ("Saka", "Havertz", "Palmer")
    assert analysis.suggested_play == "Arsenal draw no bet"
    assert analysis.player_prop_insights.startswith("Saka over 1.5")
    assert "first-choice keeper" in analysis.reasoning
    assert analysis.provenance == "grounded"


def test_quick_picks_keep_top_three_by_confidence() -> None:
    analysis = AnalysisResponseParser.parse(FULL_RESPONSE)

    assert [p.confidence for p in analysis.quick_picks] == [95, 90, 60]
    assert analysis.quick_picks[0].market == "Corners"
    assert analysis.quick_picks[0].rationale == "Wide play on both sides"


def test_signal_rows_with_too_few_fields_are_dropped() -> None:
    analysis = AnalysisResponseParser.parse(FULL_RESPONSE)

    assert len(analysis.narrative_signals) == 1
    signal = analysis.narrative_signals[0]
    assert signal.source == "BBC Sport"
    assert signal.sentiment == "positive"
    assert signal.impact == "Arsenal midfield"


def test_short_quick_pick_row_is_dropped_and_rest_sorted() -> None:
    raw = "[QUICKPICKS]\nA | x | 90 | r\nB | y | 40\nC | z | 95 | r\n[/QUICKPICKS]"

    analysis = AnalysisResponseParser.parse(raw)

    assert [p.confidence for p in analysis.quick_picks] == [95, 90]
    assert [p.market for p in analysis.quick_picks] == ["C", "A"]


def test_missing_closing_tag_runs_to_end_of_text() -> None:
    analysis = AnalysisResponseParser.parse("[prediction] Draw [/prediction]\n[REASONING] Cagey game, few chances")

    assert analysis.prediction == "Draw"
    assert analysis.reasoning == "Cagey game, few chances"
    assert analysis.scoreline == ""
    assert analysis.quick_picks == ()


def test_garbage_and_empty_input_never_raise() -> None:
    for raw in (None, "", "no tags at all", "[QUICKPICKS]\n| | |\nnot | a | number | here\n"):
        analysis = AnalysisResponseParser.parse(raw)
        assert analysis.prediction == ""
        assert analysis.quick_picks == ()
        assert analysis.narrative_signals == ()


def test_confidence_parsing() -> None:
    assert AnalysisResponseParser.parse_confidence("90") == 90
    assert AnalysisResponseParser.parse_confidence("87.6%") == 88
    assert AnalysisResponseParser.parse_confidence("150") == 100
    assert AnalysisResponseParser.parse_confidence("0.9") == 1
    assert AnalysisResponseParser.parse_confidence("high") is None


def test_extra_pipes_are_kept_in_last_field() -> None:
    rows = AnalysisResponseParser.split_rows("| Totals | Over 2.5 | 70 | pace | and | space |")
    assert rows == [["Totals", "Over 2.5", "70", "pace | and | space"]]


def test_sources_are_deduplicated_by_uri() -> None:
    sources = [
        Source(title="BBC", uri="https://bbc.co.uk/a"),
        Source(title="BBC again", uri="https://bbc.co.uk/a"),
        Source(title="Sky", uri="https://skysports.com/b"),
        Source(title="No link", uri=""),
    ]
    analysis = AnalysisResponseParser.parse("[PREDICTION] x [/PREDICTION]", sources, provenance=PROVENANCE_DEGRADED)

    assert [s.uri for s in analysis.sources] == ["https://bbc.co.uk/a", "https://skysports.com/b"]
    assert analysis.provenance == PROVENANCE_DEGRADED
