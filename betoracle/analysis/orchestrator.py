import asyncio
import hashlib
import logging
import random
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

from betoracle.api_clients import GeminiClient, PrizePicksClient, PrizePicksConfig
from betoracle.config import ConfigManager
from betoracle.models import (
    PROVENANCE_CACHED,
    PROVENANCE_DEGRADED,
    PROVENANCE_GROUNDED,
    Analysis,
    AnalysisRequest,
    MatchDescriptor,
    PropSelection,
)
from betoracle.storage import AnalysisCache, DatabaseManager
from betoracle.utils import AnalysisResponseParser, QuotaExhaustedError

from .context_builder import ContextAssembler
from .dispatcher import RequestDispatcher
from .key_pool import KeyPoolManager

logger = logging.getLogger(__name__)

FEATURED_COMPETITIONS = ("Premier League", "NBA", "Champions League")
DAILY_TIP_HUNCH = "Daily tip: give the single strongest, data-backed angle for this match."
DAILY_PICKS_LIMIT = 3


class AnalysisOrchestrator:
    """
    Entry point for match analysis requests

    Flow per request:
    - Fingerprint the request and serve a live cache entry if one exists
    - Otherwise assemble context, render the prompt and dispatch it
    - Parse the response and cache it (error results are never cached)

    ``get_analysis`` never raises; failures come back as the error sentinel
    built by ``Analysis.error``.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        assembler: ContextAssembler,
        cache: Optional[AnalysisCache] = None,
        batch_delay_seconds: float = 8.0,
        batch_jitter_seconds: float = 2.0,
        cache_ttl_seconds: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        uniform: Callable[[float, float], float] = random.uniform,
        today: Callable[[], date] = date.today,
    ):
        self.dispatcher = dispatcher
        self.assembler = assembler
        self.cache = cache
        self.batch_delay_seconds = batch_delay_seconds
        self.batch_jitter_seconds = batch_jitter_seconds
        self.cache_ttl_seconds = cache_ttl_seconds
        self._sleep = sleep
        self._uniform = uniform
        self._today = today

    @classmethod
    @asynccontextmanager
    async def from_config(cls, config: ConfigManager) -> AsyncIterator["AnalysisOrchestrator"]:
        """
        Wire every component from configuration and own their HTTP sessions.

        Usage:
            async with AnalysisOrchestrator.from_config(config) as orchestrator:
                analysis = await orchestrator.get_analysis(match, hunch, props)
        """
        pool = KeyPoolManager(
            config.api_keys,
            search_quota_per_window=config.quota.search_quota_per_window,
            window_seconds=config.quota.window_seconds,
            hard_cooldown_seconds=config.quota.hard_cooldown_seconds,
        )

        backend = DatabaseManager(config.cache.db_path) if config.cache_enabled else None
        cache = AnalysisCache(backend, default_ttl_seconds=config.cache.ttl_seconds)
        await cache.open()

        async with AsyncExitStack() as stack:
            gemini = await stack.enter_async_context(
                GeminiClient(config.gemini, timeout=int(config.quota.request_timeout_seconds) + 30)
            )
            market_feed = None
            if config.feeds.enable_market_feed:
                market_feed = await stack.enter_async_context(
                    PrizePicksClient(
                        PrizePicksConfig(
                            url=config.feeds.prizepicks_url,
                            cache_ttl_seconds=config.feeds.market_feed_ttl_seconds,
                        )
                    )
                )

            dispatcher = RequestDispatcher(
                pool,
                gemini,
                request_timeout=config.quota.request_timeout_seconds,
                max_attempts_cap=config.quota.max_attempts_cap,
                retry_backoff_seconds=config.quota.retry_backoff_seconds,
            )
            assembler = ContextAssembler(
                market_feed=market_feed,
                cache=cache if cache.enabled else None,
                max_market_lines=config.feeds.max_market_lines,
                history_per_team=config.cache.history_per_team,
            )
            logger.info(f"🔮 Orchestrator ready with {len(pool)} credentials "
                        f"(cache {'on' if cache.enabled else 'off'})")
            orchestrator = cls(
                dispatcher,
                assembler,
                cache=cache,
                batch_delay_seconds=config.batch.delay_seconds,
                batch_jitter_seconds=config.batch.jitter_seconds,
                cache_ttl_seconds=config.cache.ttl_seconds,
            )
            try:
                yield orchestrator
            finally:
                usage = orchestrator.usage_stats()
                logger.info(f"📊 Gemini usage: {usage['total_requests']} requests, "
                            f"{usage['total_input_tokens']} input / {usage['total_output_tokens']} output tokens")

    @staticmethod
    def cache_key(match_id: str, hunch: str, props: Optional[Iterable[PropSelection]] = None) -> str:
        """``analysis:{match_id}:{first 16 hex of sha256(hunch + props)}``; prop order does not matter."""
        prop_text = "\n".join(sorted(str(p) for p in props or ()))
        digest = hashlib.sha256(f"{(hunch or '').strip()}\n{prop_text}".encode("utf-8")).hexdigest()
        return f"analysis:{match_id}:{digest[:16]}"

    async def get_analysis(
        self,
        match: MatchDescriptor,
        hunch: str,
        props: Optional[List[PropSelection]] = None,
    ) -> Analysis:
        key = self.cache_key(match.match_id, hunch, props)
        try:
            if self.cache is not None:
                cached = await self.cache.get(key)
                if cached is not None and not cached.is_error:
                    logger.info(f"💾 Cache hit for {match}")
                    return cached.with_provenance(PROVENANCE_CACHED)

            request = AnalysisRequest.from_match(match, hunch, props)
            context = await self.assembler.build_context(request)
            prompt = self.assembler.render_prompt(request, context, today=self._today())

            logger.info(f"🔮 Analyzing {match}")
            raw = await self.dispatcher.dispatch(prompt)
            analysis = AnalysisResponseParser.parse(
                raw.text,
                raw.sources,
                provenance=PROVENANCE_GROUNDED if raw.grounded else PROVENANCE_DEGRADED,
            )
        except QuotaExhaustedError as e:
            logger.error(f"❌ No credential could analyze {match.match_id} after {e.attempts} attempts: {e.last_error}")
            return Analysis.error(
                "All analysis credentials are busy or rate limited right now. "
                "Please try again in a few minutes."
            )
        except Exception as e:
            logger.exception(f"❌ Analysis failed for {match.match_id}")
            return Analysis.error(f"Analysis failed: {e}")

        # a response with no verdict is returned but not worth keeping for hours
        if self.cache is not None and analysis.prediction:
            await self.cache.set(key, analysis, match, ttl_seconds=self.cache_ttl_seconds)
        return analysis

    async def analyze_batch(
        self,
        matches: Iterable[MatchDescriptor],
        hunch: str,
        existing: Optional[Dict[str, Analysis]] = None,
    ) -> Dict[str, Analysis]:
        """
        Analyze matches one at a time, pausing between consecutive requests.

        Matches that already hold a non-error analysis in ``existing`` are
        skipped; error results are retried.
        """
        results: Dict[str, Analysis] = dict(existing or {})
        pending: List[MatchDescriptor] = []
        for match in matches:
            previous = results.get(match.match_id)
            if previous is not None and not previous.is_error:
                continue
            if any(p.match_id == match.match_id for p in pending):
                continue
            pending.append(match)

        logger.info(f"📋 Batch: {len(pending)} to analyze, {len(results)} already known")
        for i, match in enumerate(pending):
            if i > 0:
                delay = self.batch_delay_seconds + self._uniform(0, self.batch_jitter_seconds)
                logger.debug("Waiting %.1fs before next batch item", delay)
                await self._sleep(delay)
            results[match.match_id] = await self.get_analysis(match, hunch)
        return results

    @staticmethod
    def select_daily_matches(
        matches: Iterable[MatchDescriptor],
        limit: int = DAILY_PICKS_LIMIT,
    ) -> List[MatchDescriptor]:
        """Featured-competition fixtures first, topped up with any other unfinished ones."""
        open_matches = [m for m in matches if not m.is_finished]
        featured = [m for m in open_matches if m.competition in FEATURED_COMPETITIONS]
        others = [m for m in open_matches if m.competition not in FEATURED_COMPETITIONS]
        return (featured + others)[:limit]

    async def daily_picks(
        self,
        matches: Iterable[MatchDescriptor],
        limit: int = DAILY_PICKS_LIMIT,
    ) -> Dict[str, Analysis]:
        chosen = self.select_daily_matches(matches, limit)
        if not chosen:
            logger.info("No open matches for daily picks")
            return {}
        logger.info(f"⭐ Daily picks: {', '.join(str(m) for m in chosen)}")
        return await self.analyze_batch(chosen, DAILY_TIP_HUNCH)

    async def settle_results(self, matches: Iterable[MatchDescriptor]) -> int:
        """Push final scores into cached snapshots so later prompts can compare."""
        if self.cache is None:
            return 0
        return await self.cache.settle(matches)

    def usage_stats(self) -> Dict[str, Any]:
        """Requests and tokens recorded by the model client."""
        return self.dispatcher.client.get_usage_stats()
