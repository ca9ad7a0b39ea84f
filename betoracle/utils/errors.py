"""Custom exception classes and provider-error classification for analysis requests"""

import asyncio
import enum
from typing import Optional, Dict

import aiohttp

from betoracle.api_clients.base_client import APIError, RateLimitError


# ============================================================================
# PROVIDER / DISPATCH ERRORS
# ============================================================================

class AnalysisError(Exception):
    """Base error for the analysis pipeline"""
    pass


class SoftQuotaExceededError(AnalysisError):
    """Search-grounding quota hit for one credential; the plain path may still work"""

    def __init__(self, credential_label: str, cause: Optional[BaseException] = None):
        self.credential_label = credential_label
        self.cause = cause
        super().__init__(f"Search quota exceeded for credential {credential_label}")


class TransientProviderError(AnalysisError):
    """Network, timeout or non-quota provider failure for one credential"""

    def __init__(self, credential_label: str, cause: Optional[BaseException] = None):
        self.credential_label = credential_label
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Provider call failed for credential {credential_label}{detail}")


class QuotaExhaustedError(AnalysisError):
    """No credential could complete the call within the attempt budget"""

    def __init__(self, message: str = "all credentials exhausted", attempts: int = 0,
                 last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message)


class SupplementalFetchError(AnalysisError):
    """A best-effort enrichment source (market feed, history) failed"""

    def __init__(self, source: str, cause: Optional[BaseException] = None):
        self.source = source
        self.cause = cause
        super().__init__(f"Supplemental fetch failed ({source}): {cause}")


class CacheBackendUnavailableError(AnalysisError):
    """The cache backing store could not be opened or queried"""

    def __init__(self, message: str, details: Optional[Dict] = None):
        self.details = details or {}
        super().__init__(message)


# ============================================================================
# PROVIDER ERROR CLASSIFICATION
# ============================================================================

class ProviderErrorKind(enum.Enum):
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"


# Substrings the Gemini API uses in quota / rate-limit error bodies.
_QUOTA_MARKERS = ("resource_exhausted", "quota", "rate limit", "rate-limit", "too many requests")


def classify_provider_error(error: BaseException) -> ProviderErrorKind:
    """
    Decide how the dispatcher recovers from a failed model call.

    RATE_LIMIT:
        HTTP 429 (``RateLimitError``), or any ``APIError`` whose body mentions
        ``RESOURCE_EXHAUSTED`` / quota / rate limit (Gemini sometimes reports
        search-tool quota as a 400 or 403 with that status text).
        Recovery: flag the credential's search quota and retry on the
        non-grounded path.

    TRANSIENT:
        Everything else: timeouts, connection errors, 5xx, other 4xx, empty
        or unparseable bodies. Recovery: hard cooldown and next credential.
    """
    if isinstance(error, RateLimitError):
        return ProviderErrorKind.RATE_LIMIT
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ClientError)):
        return ProviderErrorKind.TRANSIENT
    if isinstance(error, APIError):
        text = f"{error.message} {error}".lower()
        if any(marker in text for marker in _QUOTA_MARKERS):
            return ProviderErrorKind.RATE_LIMIT
    return ProviderErrorKind.TRANSIENT
