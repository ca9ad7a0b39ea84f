"""Configuration management for the analysis orchestrator with validation and typed access"""

import json
import logging
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Environment variables scanned for Gemini keys, in pool order
API_KEY_ENV_VARS = (
    'GEMINI_API_KEY',
    'GEMINI_API_KEY_1',
    'GEMINI_API_KEY_2',
    'GEMINI_API_KEY_3',
    'GEMINI_API_KEY_4',
    'GEMINI_API_KEY_5',
    'API_KEY',
)

CACHE_DB_ENV_VAR = 'BETORACLE_CACHE_DB'


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return '(unset)'
    if len(value) <= 8:
        return '***'
    return f"{value[:4]}…{value[-4:]}"


# ============================================================================
# CONFIGURATION DATACLASSES
# ============================================================================

@dataclass
class GeminiConfig:
    """Configuration for the Gemini model and its credential pool"""

    api_keys: List[str] = field(default_factory=list)
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    temperature: float = 0.7
    max_output_tokens: int = 2048

    def validate(self) -> None:
        if not self.model:
            raise ValueError("model name cannot be empty")
        if not self.base_url:
            raise ValueError("base_url cannot be empty")
        if not (0 <= self.temperature <= 2):
            raise ValueError(f"temperature must be between 0 and 2, got {self.temperature}")
        if self.max_output_tokens < 1:
            raise ValueError(f"max_output_tokens must be >= 1, got {self.max_output_tokens}")


@dataclass
class QuotaConfig:
    """Per-credential search quota, cooldown and dispatch retry settings"""

    search_quota_per_window: int = 2
    window_seconds: float = 60.0
    hard_cooldown_seconds: float = 150.0
    request_timeout_seconds: float = 90.0
    max_attempts_cap: int = 6
    retry_backoff_seconds: float = 1.5

    def validate(self) -> None:
        if self.search_quota_per_window < 1:
            raise ValueError(f"search_quota_per_window must be >= 1, got {self.search_quota_per_window}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {self.window_seconds}")
        if self.hard_cooldown_seconds < 0:
            raise ValueError("hard_cooldown_seconds cannot be negative")
        if self.request_timeout_seconds <= 0:
            raise ValueError(f"request_timeout_seconds must be > 0, got {self.request_timeout_seconds}")
        if self.max_attempts_cap < 1:
            raise ValueError(f"max_attempts_cap must be >= 1, got {self.max_attempts_cap}")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds cannot be negative")


@dataclass
class CacheConfig:
    """Shared analysis cache. No db_path means caching is disabled."""

    db_path: Optional[str] = None
    ttl_seconds: int = 4 * 60 * 60
    history_per_team: int = 1

    def validate(self) -> None:
        if self.ttl_seconds < 1:
            raise ValueError(f"ttl_seconds must be >= 1, got {self.ttl_seconds}")
        if self.history_per_team < 0:
            raise ValueError("history_per_team cannot be negative")


@dataclass
class FeedsConfig:
    """Market-line and scoreboard feeds used for enrichment and match lists"""

    prizepicks_url: str = "https://api.prizepicks.com/projections"
    market_feed_ttl_seconds: int = 900
    max_market_lines: int = 12
    enable_market_feed: bool = True
    scoreboard_base_url: str = "https://site.api.espn.com/apis/site/v2/sports"

    def validate(self) -> None:
        if self.enable_market_feed and not self.prizepicks_url:
            raise ValueError("prizepicks_url cannot be empty when the market feed is enabled")
        if self.market_feed_ttl_seconds < 0:
            raise ValueError("market_feed_ttl_seconds cannot be negative")
        if self.max_market_lines < 0:
            raise ValueError("max_market_lines cannot be negative")
        if not self.scoreboard_base_url:
            raise ValueError("scoreboard_base_url cannot be empty")


@dataclass
class BatchConfig:
    """Spacing between sequential batch analyses"""

    delay_seconds: float = 8.0
    jitter_seconds: float = 2.0

    def validate(self) -> None:
        if self.delay_seconds < 0:
            raise ValueError(f"delay_seconds cannot be negative, got {self.delay_seconds}")
        if self.jitter_seconds < 0:
            raise ValueError(f"jitter_seconds cannot be negative, got {self.jitter_seconds}")


# ============================================================================
# CONFIGURATION MANAGER
# ============================================================================

class ConfigManager:
    """
    Central configuration management with validation and typed access

    Values come from an optional JSON file; secrets and the cache path are
    read from the environment first (a ``.env`` file is honoured).
    """

    def __init__(self, config_file: str = "config.json"):
        """
        Load and validate configuration from JSON file

        Args:
            config_file: Path to config JSON file (missing file means defaults)

        Raises:
            json.JSONDecodeError: If config file is invalid JSON
            ValueError: If configuration validation fails
        """
        load_dotenv()

        self.config_path = Path(config_file)

        if not self.config_path.exists():
            logger.warning(f"Config file not found: {config_file}. Using defaults and environment variables.")
            raw_config = {}
        else:
            with open(self.config_path) as f:
                raw_config = json.load(f)

        self._parse_config(raw_config)

    def _get_secret(self, env_var: str, json_value: Optional[str] = None) -> Optional[str]:
        """
        Get secret from environment variable, falling back to JSON value.
        Filters out placeholder values starting with 'YOUR_'.
        """
        val = os.getenv(env_var)
        if not val:
            val = json_value

        if val and isinstance(val, str) and (val.startswith('YOUR_') or 'YOUR_' in val):
            return None
        return val

    def _collect_api_keys(self, json_keys: Optional[List[str]]) -> List[str]:
        """Environment keys first (in API_KEY_ENV_VARS order), then JSON keys; deduplicated."""
        candidates: List[Optional[str]] = [self._get_secret(env_var) for env_var in API_KEY_ENV_VARS]
        for value in json_keys or []:
            if isinstance(value, str) and 'YOUR_' not in value:
                candidates.append(value)

        keys: List[str] = []
        for key in candidates:
            if key and key.strip() and key.strip() not in keys:
                keys.append(key.strip())
        return keys

    def _parse_config(self, raw_config: Dict[str, Any]) -> None:
        """Parse raw JSON config into typed dataclasses"""

        # Gemini model + credential pool
        gemini_raw = raw_config.get('gemini', {})
        self.gemini = GeminiConfig(
            api_keys=self._collect_api_keys(gemini_raw.get('api_keys')),
            model=gemini_raw.get('model', 'gemini-2.5-flash'),
            base_url=gemini_raw.get('base_url', 'https://generativelanguage.googleapis.com/v1beta'),
            temperature=gemini_raw.get('temperature', 0.7),
            max_output_tokens=gemini_raw.get('max_output_tokens', 2048),
        )
        try:
            self.gemini.validate()
        except ValueError as e:
            raise ValueError(f"Invalid Gemini config: {e}")

        # Quota / dispatch
        quota_raw = raw_config.get('quota', {})
        self.quota = QuotaConfig(
            search_quota_per_window=quota_raw.get('search_quota_per_window', 2),
            window_seconds=quota_raw.get('window_seconds', 60.0),
            hard_cooldown_seconds=quota_raw.get('hard_cooldown_seconds', 150.0),
            request_timeout_seconds=quota_raw.get('request_timeout_seconds', 90.0),
            max_attempts_cap=quota_raw.get('max_attempts_cap', 6),
            retry_backoff_seconds=quota_raw.get('retry_backoff_seconds', 1.5),
        )
        try:
            self.quota.validate()
        except ValueError as e:
            raise ValueError(f"Invalid quota config: {e}")

        # Cache
        cache_raw = raw_config.get('cache', {})
        self.cache = CacheConfig(
            db_path=os.getenv(CACHE_DB_ENV_VAR) or cache_raw.get('db_path'),
            ttl_seconds=cache_raw.get('ttl_seconds', 4 * 60 * 60),
            history_per_team=cache_raw.get('history_per_team', 1),
        )
        try:
            self.cache.validate()
        except ValueError as e:
            raise ValueError(f"Invalid cache config: {e}")

        # Feeds
        feeds_raw = raw_config.get('feeds', {})
        self.feeds = FeedsConfig(
            prizepicks_url=feeds_raw.get('prizepicks_url', 'https://api.prizepicks.com/projections'),
            market_feed_ttl_seconds=feeds_raw.get('market_feed_ttl_seconds', 900),
            max_market_lines=feeds_raw.get('max_market_lines', 12),
            enable_market_feed=feeds_raw.get('enable_market_feed', True),
            scoreboard_base_url=feeds_raw.get(
                'scoreboard_base_url', 'https://site.api.espn.com/apis/site/v2/sports'
            ),
        )
        try:
            self.feeds.validate()
        except ValueError as e:
            raise ValueError(f"Invalid feeds config: {e}")

        # Batch spacing
        batch_raw = raw_config.get('batch', {})
        self.batch = BatchConfig(
            delay_seconds=batch_raw.get('delay_seconds', 8.0),
            jitter_seconds=batch_raw.get('jitter_seconds', 2.0),
        )
        try:
            self.batch.validate()
        except ValueError as e:
            raise ValueError(f"Invalid batch config: {e}")

        logger.info(f"✅ Configuration loaded and validated from {self.config_path}")

    # ========================================================================
    # CONVENIENCE PROPERTIES
    # ========================================================================

    @property
    def api_keys(self) -> List[str]:
        """Get the Gemini credential pool"""
        if not self.gemini.api_keys:
            raise ValueError(
                "No Gemini API key configured (set GEMINI_API_KEY, GEMINI_API_KEY_1..5 or API_KEY)"
            )
        return list(self.gemini.api_keys)

    @property
    def cache_enabled(self) -> bool:
        """Check if the shared analysis cache is enabled"""
        return bool(self.cache.db_path)

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    def validate_for_command(self, command: str) -> None:
        """
        Strict validation of what a CLI command needs.

        Raises:
            ValueError: If required configuration for the command is missing
        """
        logger.info(f"🔍 Validating configuration for command: {command}")

        if command in ('analyze', 'batch', 'daily') and not self.gemini.api_keys:
            raise ValueError(
                "A Gemini API key is required for this command "
                "(GEMINI_API_KEY, GEMINI_API_KEY_1..5 or API_KEY)"
            )
        if command == 'stats' and not self.cache_enabled:
            raise ValueError(f"{CACHE_DB_ENV_VAR} (or cache.db_path) is required for the stats command")

    def log_config_summary(self) -> None:
        """Log a summary of the loaded configuration"""
        logger.info("\n" + "=" * 80)
        logger.info("📋 CONFIGURATION SUMMARY")
        logger.info("=" * 80)

        logger.info(f"\n🤖 Gemini:")
        logger.info(f"   Model: {self.gemini.model}")
        logger.info(f"   Temperature: {self.gemini.temperature}")
        logger.info(f"   Credentials: {len(self.gemini.api_keys)} "
                    f"[{', '.join(mask_secret(k) for k in self.gemini.api_keys)}]")

        logger.info(f"\n🚦 Quota:")
        logger.info(f"   Search quota: {self.quota.search_quota_per_window} per {self.quota.window_seconds:.0f}s")
        logger.info(f"   Hard cooldown: {self.quota.hard_cooldown_seconds:.0f}s")
        logger.info(f"   Request timeout: {self.quota.request_timeout_seconds:.0f}s "
                    f"(max {self.quota.max_attempts_cap} attempts)")

        logger.info(f"\n💾 Cache:")
        if self.cache_enabled:
            logger.info(f"   Path: {self.cache.db_path}")
            logger.info(f"   TTL: {self.cache.ttl_seconds / 3600:.1f}h")
        else:
            logger.info("   ❌ Disabled")

        logger.info(f"\n📡 Feeds:")
        logger.info(f"   Market lines: {'✅ Enabled' if self.feeds.enable_market_feed else '❌ Disabled'} "
                    f"(max {self.feeds.max_market_lines}, ttl {self.feeds.market_feed_ttl_seconds}s)")

        logger.info(f"\n⏱️  Batch:")
        logger.info(f"   Delay: {self.batch.delay_seconds:.1f}s + up to {self.batch.jitter_seconds:.1f}s jitter")

        logger.info("=" * 80 + "\n")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for debugging/serialization"""
        return {
            'gemini': {
                'api_keys': [mask_secret(k) for k in self.gemini.api_keys],  # redact
                'model': self.gemini.model,
                'base_url': self.gemini.base_url,
                'temperature': self.gemini.temperature,
                'max_output_tokens': self.gemini.max_output_tokens,
            },
            'quota': {
                'search_quota_per_window': self.quota.search_quota_per_window,
                'window_seconds': self.quota.window_seconds,
                'hard_cooldown_seconds': self.quota.hard_cooldown_seconds,
                'request_timeout_seconds': self.quota.request_timeout_seconds,
                'max_attempts_cap': self.quota.max_attempts_cap,
                'retry_backoff_seconds': self.quota.retry_backoff_seconds,
            },
            'cache': {
                'db_path': self.cache.db_path,
                'ttl_seconds': self.cache.ttl_seconds,
                'history_per_team': self.cache.history_per_team,
            },
            'feeds': {
                'prizepicks_url': self.feeds.prizepicks_url,
                'market_feed_ttl_seconds': self.feeds.market_feed_ttl_seconds,
                'max_market_lines': self.feeds.max_market_lines,
                'enable_market_feed': self.feeds.enable_market_feed,
                'scoreboard_base_url': self.feeds.scoreboard_base_url,
            },
            'batch': {
                'delay_seconds': self.batch.delay_seconds,
                'jitter_seconds': self.batch.jitter_seconds,
            },
        }
