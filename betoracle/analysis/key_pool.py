"""Credential rotation with per-key search quota windows and hard cooldowns."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

STATE_AVAILABLE = "AVAILABLE"
STATE_SOFT_EXHAUSTED = "SOFT_EXHAUSTED"
STATE_HARD_COOLDOWN = "HARD_COOLDOWN"


def mask_key(key: str) -> str:
    if len(key) <= 8:
        return "***"
    return f"{key[:4]}…{key[-4:]}"


class FixedWindowCounter:
    """
    Allows ``limit`` acquisitions per ``window_seconds``.

    The window starts on the first acquisition after the previous window
    ended, which matches how the provider's per-minute search quota behaves
    closely enough for routing decisions.
    """

    def __init__(self, limit: int, window_seconds: float, clock: Clock = time.monotonic):
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be > 0, got {window_seconds}")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self.count = 0
        self.window_reset_at = 0.0

    def _roll(self) -> None:
        now = self._clock()
        if now >= self.window_reset_at:
            self.count = 0
            self.window_reset_at = now + self.window_seconds

    def remaining(self) -> int:
        self._roll()
        return max(0, self.limit - self.count)

    def has_capacity(self) -> bool:
        return self.remaining() > 0

    def try_acquire(self) -> bool:
        self._roll()
        if self.count >= self.limit:
            return False
        self.count += 1
        return True

    def exhaust(self) -> None:
        """Mark the current window as used up."""
        self._roll()
        self.count = self.limit


@dataclass
class Credential:
    """One API key plus its runtime quota state (never persisted)."""

    key: str
    index: int
    search_usage: FixedWindowCounter
    cooldown_until: float = 0.0
    failures: int = field(default=0)

    @property
    def label(self) -> str:
        return f"#{self.index + 1}({mask_key(self.key)})"

    def in_cooldown(self, now: float) -> bool:
        return now < self.cooldown_until


class KeyPoolManager:
    """
    Owns the credential list and the rotation pointer.

    Selection never returns a credential in hard cooldown. The pointer moves
    once per top-level request (``advance_past``), not per retry, so that
    independent requests start on different keys.
    """

    def __init__(
        self,
        api_keys: Sequence[str],
        search_quota_per_window: int = 2,
        window_seconds: float = 60.0,
        hard_cooldown_seconds: float = 150.0,
        clock: Clock = time.monotonic,
    ):
        keys = [k for k in api_keys if k]
        if not keys:
            raise ValueError("KeyPoolManager requires at least one API key")
        self._clock = clock
        self.hard_cooldown_seconds = hard_cooldown_seconds
        self.credentials: List[Credential] = [
            Credential(
                key=key,
                index=i,
                search_usage=FixedWindowCounter(search_quota_per_window, window_seconds, clock),
            )
            for i, key in enumerate(keys)
        ]
        self.pointer = 0

    def __len__(self) -> int:
        return len(self.credentials)

    def now(self) -> float:
        return self._clock()

    def _rotation(self) -> List[Credential]:
        n = len(self.credentials)
        return [self.credentials[(self.pointer + offset) % n] for offset in range(n)]

    def select_credential(self, prefer_search_capable: bool = True) -> Optional[Credential]:
        """
        Pick the next usable credential starting at the rotation pointer.

        With ``prefer_search_capable`` the first key that still has search
        quota wins; if none has any, fall back to the first key that is merely
        out of cooldown. Returns None only when every key is cooling down.
        """
        now = self._clock()
        usable = [c for c in self._rotation() if not c.in_cooldown(now)]
        if not usable:
            return None
        if prefer_search_capable:
            for credential in usable:
                if credential.search_usage.has_capacity():
                    return credential
            logger.debug("No credential has search quota left; falling back to round-robin")
        return usable[0]

    def advance_past(self, credential: Credential) -> None:
        self.pointer = (credential.index + 1) % len(self.credentials)

    def has_search_quota(self, credential: Credential) -> bool:
        return credential.search_usage.has_capacity()

    def consume_search_quota(self, credential: Credential) -> bool:
        return credential.search_usage.try_acquire()

    def mark_soft_exhausted(self, credential: Credential) -> None:
        credential.search_usage.exhaust()
        logger.warning(
            "🔎 Search quota exhausted for %s until window reset (%.0fs)",
            credential.label,
            max(0.0, credential.search_usage.window_reset_at - self._clock()),
        )

    def mark_hard_cooldown(self, credential: Credential, reason: str = "") -> None:
        credential.cooldown_until = self._clock() + self.hard_cooldown_seconds
        credential.failures += 1
        logger.warning(
            "🧊 Credential %s cooling down for %.0fs%s",
            credential.label,
            self.hard_cooldown_seconds,
            f" ({reason})" if reason else "",
        )

    def state_of(self, credential: Credential) -> str:
        if credential.in_cooldown(self._clock()):
            return STATE_HARD_COOLDOWN
        if not credential.search_usage.has_capacity():
            return STATE_SOFT_EXHAUSTED
        return STATE_AVAILABLE

    def available_count(self) -> int:
        now = self._clock()
        return sum(1 for c in self.credentials if not c.in_cooldown(now))

    def snapshot(self) -> List[Dict[str, object]]:
        """Per-credential state for diagnostics (keys masked)."""
        now = self._clock()
        return [
            {
                "credential": c.label,
                "state": self.state_of(c),
                "search_remaining": c.search_usage.remaining(),
                "cooldown_remaining": round(max(0.0, c.cooldown_until - now), 1),
                "failures": c.failures,
            }
            for c in self.credentials
        ]
