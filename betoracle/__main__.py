import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from betoracle.analysis import AnalysisOrchestrator
from betoracle.api_clients import ScoreboardClient, ScoreboardConfig
from betoracle.config import ConfigManager
from betoracle.models import MatchDescriptor, PropSelection
from betoracle.storage import AnalysisCache, DatabaseManager


def setup_logging(log_level):
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )


def _parse_prop(raw: str) -> PropSelection:
    """``player|stat|line[|direction]``"""
    parts = [p.strip() for p in raw.split("|")]
    if len(parts) < 3 or not parts[0]:
        raise argparse.ArgumentTypeError(
            f"Expected PLAYER|STAT|LINE[|DIRECTION] for --prop, got: {raw!r}"
        )
    return PropSelection(
        player=parts[0],
        stat_type=parts[1],
        line=parts[2],
        direction=parts[3] if len(parts) > 3 else "",
    )


def _load_matches(path: str) -> List[MatchDescriptor]:
    with Path(path).open("r") as f:
        raw = json.load(f)
    if isinstance(raw, dict):
        raw = raw.get("matches", [raw])
    return [MatchDescriptor.from_dict(item) for item in raw]


def _match_from_args(args) -> MatchDescriptor:
    if args.match_file:
        matches = _load_matches(args.match_file)
        if not matches:
            raise ValueError(f"No match found in {args.match_file}")
        return matches[0]
    if not args.home or not args.away:
        raise ValueError("analyze needs --match-file or both --home and --away")
    match_id = args.match_id or f"m_cli_{args.home}_{args.away}".lower().replace(" ", "_")
    return MatchDescriptor(
        match_id=match_id,
        competition=args.competition,
        home_team=args.home,
        away_team=args.away,
        date=args.date,
    )


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _analyses_view(results: dict) -> dict:
    return {match_id: analysis.to_dict() for match_id, analysis in results.items()}


async def _fetch_scoreboard(config: ConfigManager) -> List[MatchDescriptor]:
    async with ScoreboardClient(ScoreboardConfig(base_url=config.feeds.scoreboard_base_url)) as scoreboard:
        return await scoreboard.fetch_matches()


async def _run_analyze(args, config: ConfigManager) -> int:
    match = _match_from_args(args)
    async with AnalysisOrchestrator.from_config(config) as orchestrator:
        analysis = await orchestrator.get_analysis(match, args.hunch, args.prop)
    _print_json(analysis.to_dict())
    return 1 if analysis.is_error else 0


async def _run_batch(args, config: ConfigManager) -> int:
    matches = _load_matches(args.matches_file) if args.matches_file else await _fetch_scoreboard(config)
    if args.limit:
        matches = matches[:args.limit]
    async with AnalysisOrchestrator.from_config(config) as orchestrator:
        results = await orchestrator.analyze_batch(matches, args.hunch)
    _print_json(_analyses_view(results))
    return 0


async def _run_daily(args, config: ConfigManager) -> int:
    matches = await _fetch_scoreboard(config)
    async with AnalysisOrchestrator.from_config(config) as orchestrator:
        await orchestrator.settle_results(matches)
        results = await orchestrator.daily_picks(matches, limit=args.limit)
    _print_json(_analyses_view(results))
    return 0


async def _run_matches(args, config: ConfigManager, logger) -> int:
    matches = await _fetch_scoreboard(config)
    if args.competition:
        wanted = args.competition.lower()
        matches = [m for m in matches if wanted in m.competition.lower()]

    if args.settle:
        if not config.cache_enabled:
            logger.warning("--settle ignored: cache is disabled")
        else:
            cache = AnalysisCache(DatabaseManager(config.cache.db_path))
            await cache.open()
            settled = await cache.settle(matches)
            logger.info(f"🏁 Settled {settled} cached analyses")

    _print_json([m.to_dict() for m in matches])
    return 0


async def _run_stats(args, config: ConfigManager) -> int:
    cache = AnalysisCache(DatabaseManager(config.cache.db_path) if config.cache_enabled else None)
    await cache.open()
    _print_json({"cache": await cache.stats(), "config": config.to_dict()})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Match analysis CLI")
    parser.add_argument('--config', type=str, default='config.json', help='Path to config file')
    parser.add_argument('--log-level', type=str, default='INFO', help='Logging level')
    parser.add_argument('--show-config', action='store_true', help='Print effective non-secret config and exit')

    sub = parser.add_subparsers(dest='command')

    analyze = sub.add_parser('analyze', help='Analyze a single match')
    analyze.add_argument('--match-file', type=str, help='JSON file holding the match (first entry is used)')
    analyze.add_argument('--match-id', type=str, help='Match id (derived from team names if omitted)')
    analyze.add_argument('--home', type=str, help='Home team / first player')
    analyze.add_argument('--away', type=str, help='Away team / second player')
    analyze.add_argument('--competition', type=str, default='Unknown', help='Competition name')
    analyze.add_argument('--date', type=str, default='Upcoming', help='Match date as displayed')
    analyze.add_argument('--hunch', type=str, default='', help='Free-text user hunch')
    analyze.add_argument('--prop', type=_parse_prop, action='append', default=[], metavar='PLAYER|STAT|LINE[|DIR]',
                         help='Player prop selection. Can be repeated.')

    batch = sub.add_parser('batch', help='Analyze several matches one at a time')
    batch.add_argument('--matches-file', type=str, help='JSON list of matches (default: live scoreboard)')
    batch.add_argument('--hunch', type=str, default='', help='Hunch applied to every match')
    batch.add_argument('--limit', type=int, default=0, help='Analyze at most this many matches')

    daily = sub.add_parser('daily', help="Today's featured picks from the scoreboard")
    daily.add_argument('--limit', type=int, default=3, help='Number of picks')

    matches = sub.add_parser('matches', help='List scoreboard matches')
    matches.add_argument('--competition', type=str, help='Filter by competition name')
    matches.add_argument('--settle', action='store_true', help='Record final scores in the cache')

    sub.add_parser('stats', help='Show cache statistics')
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    logger = logging.getLogger("betoracle")

    try:
        config = ConfigManager(args.config)
    except Exception as e:
        logger.error(f"Failed to load config: {e}", exc_info=True)
        return 1

    if args.show_config:
        _print_json(config.to_dict())
        return 0

    if not args.command:
        parser.print_help()
        return 2

    try:
        config.validate_for_command(args.command)
        config.log_config_summary()

        if args.command == 'analyze':
            return await _run_analyze(args, config)
        if args.command == 'batch':
            return await _run_batch(args, config)
        if args.command == 'daily':
            return await _run_daily(args, config)
        if args.command == 'matches':
            return await _run_matches(args, config, logger)
        if args.command == 'stats':
            return await _run_stats(args, config)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
