from __future__ import annotations

import argparse
import json

import pytest

from betoracle.__main__ import _load_matches, _parse_prop, build_parser, main
from betoracle.config import API_KEY_ENV_VARS, CACHE_DB_ENV_VAR


def test_parse_prop() -> None:
    prop = _parse_prop("Saka | Shots | 1.5 | Over")
    assert (prop.player, prop.stat_type, prop.line, prop.direction) == ("Saka", "Shots", "1.5", "Over")
    assert _parse_prop("Tatum|Points|27.5").direction == ""
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_prop("just a name")


def test_parser_subcommands() -> None:
    args = build_parser().parse_args(
        ["analyze", "--home", "Arsenal", "--away", "Chelsea", "--prop", "Saka|Shots|1.5", "--prop", "Palmer|Goals|0.5"]
    )
    assert args.command == "analyze"
    assert [p.player for p in args.prop] == ["Saka", "Palmer"]

    assert build_parser().parse_args(["daily"]).limit == 3
    assert build_parser().parse_args(["matches", "--settle"]).settle is True


def test_load_matches_accepts_list_or_wrapper(tmp_path) -> None:
    match = {"id": "m1", "competition": "NBA", "home_team": "Celtics", "away_team": "Lakers", "date": "Tonight"}
    listed = tmp_path / "list.json"
    listed.write_text(json.dumps([match]))
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"matches": [match, dict(match, id="m2")]}))

    assert [m.match_id for m in _load_matches(str(listed))] == ["m1"]
    assert [m.match_id for m in _load_matches(str(wrapped))] == ["m1", "m2"]


@pytest.mark.asyncio
async def test_show_config_prints_masked_view(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    for var in API_KEY_ENV_VARS + (CACHE_DB_ENV_VAR,):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "super-secret-gemini-key")

    code = await main(["--config", str(tmp_path / "missing.json"), "--show-config"])

    out = capsys.readouterr().out
    assert code == 0
    assert "super-secret-gemini-key" not in out
    assert json.loads(out)["quota"]["max_attempts_cap"] == 6


@pytest.mark.asyncio
async def test_stats_with_cache_disabled(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    for var in API_KEY_ENV_VARS + (CACHE_DB_ENV_VAR,):
        monkeypatch.delenv(var, raising=False)

    code = await main(["--config", str(tmp_path / "missing.json"), "stats"])

    assert code == 1


@pytest.mark.asyncio
async def test_stats_reports_cache_contents(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    for var in API_KEY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv(CACHE_DB_ENV_VAR, str(tmp_path / "cache.sqlite"))

    code = await main(["--config", str(tmp_path / "missing.json"), "stats"])

    payload = json.loads(capsys.readouterr().out)
    assert code == 0
    assert payload["cache"] == {"enabled": True, "count": 0, "recent": []}
