from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from betoracle.analysis.context_builder import ContextAssembler
from betoracle.analysis.dispatcher import RequestDispatcher
from betoracle.analysis.key_pool import KeyPoolManager
from betoracle.analysis.orchestrator import DAILY_TIP_HUNCH, AnalysisOrchestrator
from betoracle.api_clients.gemini_client import GeminiClient
from betoracle.config import GeminiConfig
from betoracle.models import (
    Analysis,
    MatchDescriptor,
    MatchResult,
    PropSelection,
    RawModelResponse,
    Source,
)
from betoracle.storage.cache import AnalysisCache
from betoracle.storage.db import DatabaseManager
from betoracle.utils.errors import QuotaExhaustedError

MODEL_TEXT = """
[PREDICTION] Arsenal win [/PREDICTION]
[SCORELINE] 2-0 [/SCORELINE]
[QUICKPICKS]
1X2 | Arsenal | 75 | home form
[/QUICKPICKS]
"""


def _match(match_id: str = "m1", competition: str = "Premier League", status: str = "Upcoming", result=None):
    return MatchDescriptor(
        match_id=match_id,
        competition=competition,
        home_team=f"Home {match_id}",
        away_team=f"Away {match_id}",
        date="Sat 15:00",
        status=status,
        result=result,
    )


def _dispatcher(text: str = MODEL_TEXT, grounded: bool = True) -> AsyncMock:
    dispatcher = AsyncMock()
    dispatcher.dispatch.return_value = RawModelResponse(
        text=text,
        sources=[Source(title="BBC", uri="https://bbc.co.uk/a")],
        grounded=grounded,
    )
    return dispatcher


def _orchestrator(dispatcher, cache=None, **kwargs) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        dispatcher,
        ContextAssembler(),
        cache=cache,
        today=lambda: date(2026, 10, 19),
        **kwargs,
    )


def test_cache_key_shape_and_prop_order() -> None:
    a = PropSelection(player="Saka", stat_type="Shots", line="1.5")
    b = PropSelection(player="Palmer", stat_type="Goals", line="0.5")

    key = AnalysisOrchestrator.cache_key("m1", "home win", [a, b])
    prefix, match_id, digest = key.split(":")
    assert (prefix, match_id) == ("analysis", "m1")
    assert len(digest) == 16
    assert key == AnalysisOrchestrator.cache_key("m1", "home win", [b, a])
    assert key != AnalysisOrchestrator.cache_key("m1", "away win", [a, b])
    assert key != AnalysisOrchestrator.cache_key("m1", "home win", [a])


@pytest.mark.asyncio
async def test_second_identical_request_is_served_from_cache(tmp_path) -> None:
    cache = AnalysisCache(DatabaseManager(str(tmp_path / "cache.sqlite")))
    await cache.open()
    dispatcher = _dispatcher()
    orchestrator = _orchestrator(dispatcher, cache=cache)

    first = await orchestrator.get_analysis(_match(), "home win", [])
    second = await orchestrator.get_analysis(_match(), "home win", [])

    assert dispatcher.dispatch.await_count == 1
    assert first.provenance == "grounded"
    assert second.provenance == "cached"
    assert second == first
    assert [p.confidence for p in second.quick_picks] == [75]


@pytest.mark.asyncio
async def test_different_hunch_is_a_new_request() -> None:
    cache = AsyncMock()
    cache.get.return_value = None
    dispatcher = _dispatcher()
    orchestrator = _orchestrator(dispatcher, cache=cache)

    await orchestrator.get_analysis(_match(), "home win")
    await orchestrator.get_analysis(_match(), "draw")

    assert dispatcher.dispatch.await_count == 2
    keys = [call.args[0] for call in cache.get.await_args_list]
    assert keys[0] != keys[1]


@pytest.mark.asyncio
async def test_prompt_is_built_from_the_request() -> None:
    dispatcher = _dispatcher()
    orchestrator = _orchestrator(dispatcher)

    await orchestrator.get_analysis(_match(), "trust the home side")

    prompt = dispatcher.dispatch.await_args.args[0]
    assert "TODAY'S DATE: 2026-10-19" in prompt
    assert "Home Team: Home m1" in prompt
    assert "trust the home side" in prompt


@pytest.mark.asyncio
async def test_degraded_response_is_labelled() -> None:
    orchestrator = _orchestrator(_dispatcher(grounded=False))
    analysis = await orchestrator.get_analysis(_match(), "")
    assert analysis.provenance == "degraded"
    assert analysis.prediction == "Arsenal win"


@pytest.mark.asyncio
async def test_exhausted_credentials_return_error_sentinel_and_skip_cache() -> None:
    cache = AsyncMock()
    cache.get.return_value = None
    dispatcher = AsyncMock()
    dispatcher.dispatch.side_effect = QuotaExhaustedError(attempts=4)
    orchestrator = _orchestrator(dispatcher, cache=cache)

    analysis = await orchestrator.get_analysis(_match(), "home win")

    assert analysis.is_error
    assert analysis.prediction == "Oracle Hub Connection Issue"
    assert analysis.scoreline == "ERR"
    assert analysis.reasoning
    cache.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_unexpected_failure_returns_error_sentinel() -> None:
    assembler = MagicMock()
    assembler.build_context = AsyncMock(side_effect=RuntimeError("boom"))
    orchestrator = AnalysisOrchestrator(_dispatcher(), assembler)

    analysis = await orchestrator.get_analysis(_match(), "home win")

    assert analysis.is_error
    assert "boom" in analysis.reasoning


@pytest.mark.asyncio
async def test_response_without_prediction_is_not_cached() -> None:
    cache = AsyncMock()
    cache.get.return_value = None
    orchestrator = _orchestrator(_dispatcher(text="I could not find anything useful."), cache=cache)

    analysis = await orchestrator.get_analysis(_match(), "home win")

    assert analysis.prediction == ""
    assert not analysis.is_error
    cache.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_batch_runs_sequentially_with_delay_and_skips_known_results() -> None:
    sleep = AsyncMock()
    dispatcher = _dispatcher()
    orchestrator = _orchestrator(
        dispatcher,
        batch_delay_seconds=8.0,
        batch_jitter_seconds=2.0,
        sleep=sleep,
        uniform=lambda low, high: 1.5,
    )
    existing = {
        "m2": Analysis(prediction="already done"),
        "m3": Analysis.error("earlier failure"),
    }

    results = await orchestrator.analyze_batch(
        [_match("m1"), _match("m2"), _match("m3"), _match("m1")], "home win", existing=existing
    )

    assert dispatcher.dispatch.await_count == 2
    sleep.assert_awaited_once_with(9.5)
    assert results["m2"].prediction == "already done"
    assert results["m1"].prediction == "Arsenal win"
    assert results["m3"].prediction == "Arsenal win"


@pytest.mark.asyncio
async def test_batch_of_one_never_sleeps() -> None:
    sleep = AsyncMock()
    orchestrator = _orchestrator(_dispatcher(), sleep=sleep)
    await orchestrator.analyze_batch([_match("m1")], "")
    sleep.assert_not_awaited()


def test_daily_match_selection_prefers_featured_competitions() -> None:
    matches = [
        _match("laliga", competition="La Liga"),
        _match("nba", competition="NBA"),
        _match("epl_done", competition="Premier League", status="Finished", result=MatchResult(1, 0)),
        _match("ucl", competition="Champions League"),
        _match("atp", competition="ATP Tour"),
    ]

    chosen = AnalysisOrchestrator.select_daily_matches(matches, limit=3)

    assert [m.match_id for m in chosen] == ["nba", "ucl", "laliga"]


def test_daily_match_selection_falls_back_to_any_open_match() -> None:
    matches = [_match("atp", competition="ATP Tour"), _match("liga", competition="Liga Portugal")]
    assert [m.match_id for m in AnalysisOrchestrator.select_daily_matches(matches)] == ["atp", "liga"]


@pytest.mark.asyncio
async def test_daily_picks_use_the_daily_tip_hunch() -> None:
    dispatcher = _dispatcher()
    orchestrator = _orchestrator(dispatcher, sleep=AsyncMock(), uniform=lambda low, high: 0.0)

    results = await orchestrator.daily_picks([_match("nba", competition="NBA")])

    assert list(results) == ["nba"]
    assert DAILY_TIP_HUNCH in dispatcher.dispatch.await_args.args[0]


@pytest.mark.asyncio
async def test_settle_results_forwards_final_scores(tmp_path) -> None:
    cache = AnalysisCache(DatabaseManager(str(tmp_path / "cache.sqlite")))
    await cache.open()
    orchestrator = _orchestrator(_dispatcher(), cache=cache)
    await orchestrator.get_analysis(_match("done"), "home win")
    await orchestrator.get_analysis(_match("done"), "draw")
    await orchestrator.get_analysis(_match("live"), "home win")

    updated = await orchestrator.settle_results(
        [
            _match("done", status="Finished", result=MatchResult(2, 1)),
            _match("live", status="Live", result=MatchResult(0, 0)),
            _match("later"),
        ]
    )

    assert updated == 2
    history = await cache.search_by_team("Home done", limit=5)
    assert {str(r.match.result) for r in history} == {"2-1"}


@pytest.mark.asyncio
async def test_settle_results_without_cache_is_a_no_op() -> None:
    orchestrator = _orchestrator(_dispatcher())
    assert await orchestrator.settle_results([_match("done", status="Finished", result=MatchResult(1, 1))]) == 0


def test_usage_stats_come_from_the_model_client() -> None:
    client = GeminiClient(GeminiConfig(api_keys=["k"]))
    client.record_usage("grounded analysis", input_tokens=120, output_tokens=80)
    dispatcher = RequestDispatcher(KeyPoolManager(["k"]), client)
    orchestrator = _orchestrator(dispatcher)

    assert orchestrator.usage_stats() == {
        "total_requests": 1,
        "total_input_tokens": 120,
        "total_output_tokens": 80,
    }
