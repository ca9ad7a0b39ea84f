from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from betoracle.api_clients.base_client import APIError, ServerError
from betoracle.api_clients.gemini_client import GeminiClient
from betoracle.api_clients.prizepicks_client import PrizePicksClient, PrizePicksConfig
from betoracle.api_clients.scoreboard_client import ScoreboardClient
from betoracle.config import GeminiConfig

PRIZEPICKS_PAYLOAD = {
    "data": [
        {
            "id": "1",
            "type": "projection",
            "attributes": {"line_score": 24.5, "stat_type": "Points"},
            "relationships": {
                "new_player": {"data": {"id": "p1", "type": "new_player"}},
                "league": {"data": {"id": "7", "type": "league"}},
            },
        },
        {
            "id": "2",
            "type": "projection",
            "attributes": {"stat_type": "Shots"},
            "relationships": {"new_player": {"data": {"id": "missing"}}},
        },
    ],
    "included": [
        {"id": "p1", "type": "new_player", "attributes": {"display_name": "Jayson Tatum", "team": "BOS"}},
        {"id": "7", "type": "league", "attributes": {"name": "NBA"}},
    ],
}


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_prizepicks_joins_players_and_leagues() -> None:
    projections = PrizePicksClient.parse_projections(PRIZEPICKS_PAYLOAD)

    assert len(projections) == 2
    first, second = projections
    assert (first.player, first.team, first.league, first.stat, first.line) == (
        "Jayson Tatum", "BOS", "NBA", "Points", "24.5",
    )
    assert (second.player, second.team, second.league, second.line) == ("Unknown", "Unknown", "Unknown", "0")


def test_prizepicks_rejects_documents_without_data() -> None:
    assert PrizePicksClient.parse_projections({"data": []}) == []
    assert PrizePicksClient.parse_projections([]) == []


@pytest.mark.asyncio
async def test_prizepicks_caches_and_serves_stale_copy_on_failure() -> None:
    clock = FakeClock()
    client = PrizePicksClient(PrizePicksConfig(cache_ttl_seconds=900), clock=clock)
    client._get_json = AsyncMock(return_value=PRIZEPICKS_PAYLOAD)

    assert len(await client.fetch_projections()) == 2
    assert len(await client.fetch_projections()) == 2
    assert client._get_json.await_count == 1

    clock.now = 901
    client._get_json = AsyncMock(side_effect=ServerError("prizepicks", 503))
    stale = await client.fetch_projections()
    assert [p.player for p in stale] == ["Jayson Tatum", "Unknown"]


@pytest.mark.asyncio
async def test_prizepicks_failure_without_cache_returns_empty() -> None:
    client = PrizePicksClient(PrizePicksConfig())
    client._get_json = AsyncMock(side_effect=ServerError("prizepicks", 502))
    assert await client.fetch_projections() == []


def test_gemini_payload_includes_search_tool_only_when_grounded() -> None:
    client = GeminiClient(GeminiConfig(temperature=0.7))

    grounded = client.build_payload("hello", grounded=True)
    plain = client.build_payload("hello", grounded=False)

    assert grounded["tools"] == [{"google_search": {}}]
    assert "tools" not in plain
    assert plain["contents"][0]["parts"][0]["text"] == "hello"
    assert plain["generationConfig"]["temperature"] == 0.7


def test_gemini_parse_response_reads_text_and_grounding_sources() -> None:
    data = {
        "candidates": [
            {
                "content": {"parts": [{"text": "[PREDICTION] Home"}, {"text": " win [/PREDICTION]"}]},
                "finishReason": "STOP",
                "groundingMetadata": {
                    "groundingChunks": [
                        {"web": {"uri": "https://bbc.co.uk/x", "title": "BBC"}},
                        {"web": {"uri": "https://espn.com/y"}},
                        {"retrievedContext": {}},
                    ]
                },
            }
        ],
        "usageMetadata": {"promptTokenCount": 120, "candidatesTokenCount": 80},
    }

    response = GeminiClient.parse_response(data, grounded=True)

    assert response.text == "[PREDICTION] Home win [/PREDICTION]"
    assert [s.uri for s in response.sources] == ["https://bbc.co.uk/x", "https://espn.com/y"]
    assert response.sources[1].title == "Live Source"
    assert (response.input_tokens, response.output_tokens) == (120, 80)
    assert response.finish_reason == "STOP"


def test_gemini_parse_response_rejects_empty_output() -> None:
    with pytest.raises(APIError):
        GeminiClient.parse_response({"candidates": []})
    with pytest.raises(APIError):
        GeminiClient.parse_response({"candidates": [{"content": {"parts": [{"text": "  "}]}}]})


@pytest.mark.parametrize(
    "body",
    [
        {"candidates": ["oops"]},
        {"candidates": {"text": "x"}},
        {"candidates": [{"content": "text"}]},
        {"candidates": [{"content": {"parts": "text"}}]},
    ],
)
def test_gemini_parse_response_rejects_unexpected_shapes(body) -> None:
    with pytest.raises(APIError):
        GeminiClient.parse_response(body)


def _team_event(event_id: str, state: str, home_score: str = "0", away_score: str = "0") -> dict:
    return {
        "id": event_id,
        "date": "2026-10-19T19:00Z",
        "status": {"type": {"state": state, "shortDetail": "Sat, October 19 at 3:00 PM"}},
        "competitions": [
            {
                "competitors": [
                    {"homeAway": "home", "score": home_score, "team": {"displayName": "Arsenal"}},
                    {"homeAway": "away", "score": away_score, "team": {"displayName": "Chelsea"}},
                ]
            }
        ],
    }


def test_scoreboard_maps_team_events() -> None:
    payload = {
        "events": [
            _team_event("100", "pre"),
            _team_event("101", "in", "1", "0"),
            _team_event("102", "post", "2", "2"),
            {"id": "bad", "competitions": []},
        ]
    }

    matches = ScoreboardClient.parse_team_events(payload, "Premier League", id_prefix="eng.1")

    assert [m.match_id for m in matches] == ["m_espn_eng.1_100", "m_espn_eng.1_101", "m_espn_eng.1_102"]
    upcoming, live, finished = matches
    assert upcoming.status == "Upcoming" and upcoming.result is None
    assert upcoming.date == "Sat, October 19 at 3:00 PM"
    assert live.status == "Live" and live.date == "Live Now" and str(live.result) == "1-0"
    assert finished.is_finished and finished.date == "Full Time" and str(finished.result) == "2-2"


def test_scoreboard_maps_tennis_groupings() -> None:
    payload = {
        "events": [
            {
                "id": "t1",
                "groupings": [
                    {
                        "competitions": [
                            {
                                "id": "c9",
                                "status": {"type": {"state": "post"}},
                                "competitors": [
                                    {"id": "a", "score": "2", "athlete": {"displayName": "Sinner"}},
                                    {"id": "b", "score": "1", "athlete": {"displayName": "Alcaraz"}},
                                ],
                            }
                        ]
                    }
                ],
            }
        ]
    }

    matches = ScoreboardClient.parse_tennis_events(payload, "ATP Tour")

    assert len(matches) == 1
    match = matches[0]
    assert match.match_id == "m_espn_atp_c9_a"
    assert (match.home_team, match.away_team) == ("Sinner", "Alcaraz")
    assert str(match.result) == "2-1"
