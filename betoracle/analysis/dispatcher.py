"""Quota-aware model dispatch: grounded first, degraded on search quota, rotate on failure."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Awaitable, Callable, Optional

import aiohttp

from betoracle.api_clients.base_client import APIError
from betoracle.models import RawModelResponse
from betoracle.utils.errors import (
    ProviderErrorKind,
    QuotaExhaustedError,
    SoftQuotaExceededError,
    TransientProviderError,
    classify_provider_error,
)

from .key_pool import Credential, KeyPoolManager

logger = logging.getLogger(__name__)

SEARCH_DIRECTIVE = (
    "LIVE RESEARCH: Use Google Search before answering. Check confirmed line-ups, "
    "injuries and suspensions, the latest odds movement and any news from the last "
    "48 hours. Prefer facts you can cite over assumptions."
)

INTERNAL_KNOWLEDGE_DIRECTIVE = (
    "LIVE RESEARCH UNAVAILABLE: Live search is not available for this request. "
    "Answer from your internal knowledge of both sides, their recent form and the "
    "context supplied above. Say so in the reasoning when a fact may be out of date."
)

# Failures a provider call can surface; anything else is a bug and propagates.
PROVIDER_EXCEPTIONS = (APIError, aiohttp.ClientError, asyncio.TimeoutError, ValueError)

SleepFn = Callable[[float], Awaitable[None]]


def degrade_prompt(prompt: str) -> str:
    """Swap the search directive for the internal-knowledge directive."""
    if SEARCH_DIRECTIVE in prompt:
        return prompt.replace(SEARCH_DIRECTIVE, INTERNAL_KNOWLEDGE_DIRECTIVE)
    return f"{INTERNAL_KNOWLEDGE_DIRECTIVE}\n\n{prompt}"


class RequestDispatcher:
    """
    Sends one prompt to the model, trying credentials from the key pool.

    Per attempt: a grounded call (consumes one unit of the credential's search
    quota). A rate-limit failure flags the credential's search quota and the
    same credential is retried without search tools. Any other failure, or a
    failed degraded call, puts the credential in hard cooldown and the next
    attempt picks another one after a short backoff.
    """

    def __init__(
        self,
        pool: KeyPoolManager,
        client,
        request_timeout: float = 90.0,
        max_attempts_cap: int = 6,
        retry_backoff_seconds: float = 1.5,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.pool = pool
        self.client = client
        self.request_timeout = request_timeout
        self.max_attempts_cap = max_attempts_cap
        self.retry_backoff_seconds = retry_backoff_seconds
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return min(2 * len(self.pool), self.max_attempts_cap)

    async def dispatch(self, prompt: str) -> RawModelResponse:
        """
        Run the prompt until one credential returns a response.

        Raises:
            QuotaExhaustedError: every attempt failed, or every credential is
                in hard cooldown
        """
        max_attempts = self.max_attempts
        last_error: Optional[BaseException] = None
        attempts = 0

        for attempt in range(1, max_attempts + 1):
            # pool state may have changed during the previous await
            credential = self.pool.select_credential(prefer_search_capable=True)
            if credential is None:
                logger.error("🚫 All %d credentials are cooling down", len(self.pool))
                break
            if attempt == 1:
                self.pool.advance_past(credential)

            attempts = attempt
            try:
                response = await self._attempt(prompt, credential)
            except TransientProviderError as e:
                last_error = e.cause or e
                self.pool.mark_hard_cooldown(credential, reason=type(last_error).__name__)
                logger.warning(
                    f"⚠️  Attempt {attempt}/{max_attempts} failed on {credential.label}: {last_error}"
                )
                if attempt < max_attempts:
                    await self._sleep(self.retry_backoff_seconds)
                continue

            logger.info(
                f"✅ Model response via {credential.label} "
                f"({'grounded' if response.grounded else 'degraded'}, attempt {attempt}/{max_attempts})"
            )
            return response

        raise QuotaExhaustedError("all credentials exhausted", attempts=attempts, last_error=last_error)

    async def _attempt(self, prompt: str, credential: Credential) -> RawModelResponse:
        try:
            return await self._grounded(prompt, credential)
        except SoftQuotaExceededError as e:
            logger.info(f"🔁 {e}; falling back to internal knowledge")
        return await self._degraded(prompt, credential)

    async def _grounded(self, prompt: str, credential: Credential) -> RawModelResponse:
        if not self.pool.consume_search_quota(credential):
            raise SoftQuotaExceededError(credential.label)
        try:
            return await self._call(prompt, credential, grounded=True)
        except PROVIDER_EXCEPTIONS as e:
            if classify_provider_error(e) is ProviderErrorKind.RATE_LIMIT:
                self.pool.mark_soft_exhausted(credential)
                raise SoftQuotaExceededError(credential.label, e) from e
            raise TransientProviderError(credential.label, e) from e

    async def _degraded(self, prompt: str, credential: Credential) -> RawModelResponse:
        try:
            return await self._call(degrade_prompt(prompt), credential, grounded=False)
        except PROVIDER_EXCEPTIONS as e:
            raise TransientProviderError(credential.label, e) from e

    async def _call(self, prompt: str, credential: Credential, grounded: bool) -> RawModelResponse:
        response = await asyncio.wait_for(
            self.client.generate(prompt, credential.key, grounded=grounded),
            timeout=self.request_timeout,
        )
        return dataclasses.replace(response, grounded=grounded, credential_label=credential.label)
