"""Base API client with shared HTTP logic, retry handling, and usage tracking"""

import asyncio
import logging
from typing import Dict, List, Optional, Any, Callable
from dataclasses import dataclass
from datetime import datetime

import aiohttp

logger = logging.getLogger(__name__)


# ============================================================================
# CUSTOM EXCEPTION CLASSES
# ============================================================================

class APIError(Exception):
    """Base exception for API-related errors"""

    def __init__(
        self,
        platform: str,
        operation: str,
        status_code: Optional[int] = None,
        message: str = "",
        details: Optional[Dict] = None
    ):
        self.platform = platform
        self.operation = operation
        self.status_code = status_code
        self.message = message
        self.details = details or {}

        full_message = f"[{platform}] {operation}"
        if status_code:
            full_message += f" (HTTP {status_code})"
        if message:
            full_message += f": {message}"

        super().__init__(full_message)


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (HTTP 429)"""

    def __init__(self, platform: str, retry_after: Optional[int] = None, message: str = ""):
        super().__init__(
            platform=platform,
            operation="Rate limit exceeded",
            status_code=429,
            message=message,
            details={'retry_after': retry_after}
        )
        self.retry_after = retry_after or 60


class AuthenticationError(APIError):
    """Raised when authentication fails (HTTP 401/403)"""

    def __init__(self, platform: str, message: str = "Invalid API key", status_code: int = 401):
        super().__init__(
            platform=platform,
            operation="Authentication failed",
            status_code=status_code,
            message=message
        )


class ServerError(APIError):
    """Raised when server returns 5xx error"""

    def __init__(self, platform: str, status_code: int, response_text: str = ""):
        super().__init__(
            platform=platform,
            operation="Server error",
            status_code=status_code,
            message=response_text[:200]
        )


class ClientError(APIError):
    """Raised when request is invalid (HTTP 4xx except 401/403/429)"""

    def __init__(self, platform: str, status_code: int, message: str = ""):
        super().__init__(
            platform=platform,
            operation="Client error",
            status_code=status_code,
            message=message
        )


# ============================================================================
# USAGE TRACKING
# ============================================================================

@dataclass
class APIUsage:
    """One recorded API call"""

    timestamp: datetime
    operation: str
    input_tokens: int = 0
    output_tokens: int = 0
    status_code: int = 200
    platform: str = "unknown"


class UsageTracker:
    """Track token usage across requests"""

    def __init__(self):
        self.usage_history: List[APIUsage] = []

    def record_usage(self, usage: APIUsage) -> None:
        self.usage_history.append(usage)

    def total_requests(self) -> int:
        return len(self.usage_history)

    def total_input_tokens(self) -> int:
        return sum(usage.input_tokens for usage in self.usage_history)

    def total_output_tokens(self) -> int:
        return sum(usage.output_tokens for usage in self.usage_history)

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics"""
        return {
            'total_requests': self.total_requests(),
            'total_input_tokens': self.total_input_tokens(),
            'total_output_tokens': self.total_output_tokens(),
        }


# ============================================================================
# BASE API CLIENT
# ============================================================================

class BaseAPIClient:
    """
    Base client for the external feeds and the model provider:
    - Consistent error handling with custom exceptions
    - Automatic retry with exponential backoff
    - Token usage tracking
    - Request timeout handling
    """

    def __init__(
        self,
        platform_name: str,
        api_key: Optional[str] = None,
        base_url: str = "",
        timeout: int = 30,
        max_retries: int = 2,
        backoff_base: float = 2.0,
    ):
        """
        Initialize base API client

        Args:
            platform_name: Name of the platform (e.g., 'gemini', 'prizepicks')
            api_key: Optional API key for authentication
            base_url: Base URL for API endpoints
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts
            backoff_base: Base for exponential backoff (2 = 1s, 2s, 4s...)
        """
        self.platform_name = platform_name
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base

        # HTTP session (created in __aenter__)
        self.session: Optional[aiohttp.ClientSession] = None

        self.usage_tracker = UsageTracker()

    async def __aenter__(self):
        """Async context manager entry"""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        self.session = aiohttp.ClientSession(timeout=timeout)
        logger.debug(f"✅ Created session for {self.platform_name}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        if self.session:
            await self.session.close()
            self.session = None
            logger.debug(f"✅ Closed session for {self.platform_name}")

    def _require_session(self) -> aiohttp.ClientSession:
        if not self.session:
            raise RuntimeError("Session not initialized. Use 'async with' context manager.")
        return self.session

    # ========================================================================
    # HEADER BUILDING
    # ========================================================================

    def _build_headers(
        self,
        api_key: Optional[str] = None,
        auth_type: str = "Bearer",
        auth_header_name: str = "Authorization",
        additional_headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        """
        Build HTTP headers with optional authentication

        Args:
            api_key: API key to use (defaults to self.api_key)
            auth_type: Authorization value prefix ("Bearer", or "" for raw keys)
            auth_header_name: Header carrying the key
            additional_headers: Additional headers to include

        Returns:
            Dictionary of headers
        """
        headers = {
            "Content-Type": "application/json",
        }

        key_to_use = api_key or self.api_key
        if key_to_use:
            headers[auth_header_name] = f"{auth_type} {key_to_use}".strip()

        if additional_headers:
            headers.update(additional_headers)

        return headers

    # ========================================================================
    # RETRY LOGIC WITH EXPONENTIAL BACKOFF
    # ========================================================================

    async def _call_with_retry(
        self,
        coro_fn: Callable[[], Any],
        operation_name: str = "API call",
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        Execute an async operation with exponential backoff retry logic

        Args:
            coro_fn: Async function to execute (as callable, not coroutine)
            operation_name: Human-readable operation description for logging
            max_retries: Override default max_retries for this call

        Returns:
            Result from the async function

        Raises:
            Original exception after max retries exhausted
        """
        retries = self.max_retries if max_retries is None else max_retries
        max_attempts = retries + 1  # +1 for initial attempt
        last_exception = None

        for attempt in range(max_attempts):
            try:
                logger.debug(f"[{self.platform_name}] {operation_name} (attempt {attempt + 1})")
                return await coro_fn()

            except RateLimitError as e:
                last_exception = e
                if attempt < max_attempts - 1:
                    wait_time = min(e.retry_after, 30)
                    logger.warning(
                        f"[{self.platform_name}] Rate limited. "
                        f"Waiting {wait_time}s before retry..."
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"[{self.platform_name}] Rate limit exceeded after {max_attempts} attempts")

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_exception = e
                if attempt < max_attempts - 1:
                    wait_time = self.backoff_base ** attempt
                    logger.warning(
                        f"[{self.platform_name}] {operation_name} failed: {e}. "
                        f"Retrying in {wait_time:.1f}s... (attempt {attempt + 1}/{max_attempts - 1})"
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(
                        f"[{self.platform_name}] {operation_name} failed after {max_attempts} attempts"
                    )

            except ServerError as e:
                last_exception = e
                if attempt < max_attempts - 1:
                    wait_time = self.backoff_base ** attempt
                    logger.warning(
                        f"[{self.platform_name}] Server error. "
                        f"Retrying in {wait_time:.1f}s..."
                    )
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"[{self.platform_name}] {operation_name} failed: {e}")

            except (AuthenticationError, ClientError) as e:
                # Auth and client errors shouldn't be retried
                logger.error(f"[{self.platform_name}] {operation_name} failed: {e}")
                raise

        if last_exception:
            raise last_exception

    async def _get_json(
        self,
        url: str,
        operation_name: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """GET a JSON document with the shared retry policy"""
        session = self._require_session()

        async def make_request():
            async with session.get(url, params=params, headers=headers or self._build_headers()) as response:
                await self._handle_response_status(response)
                return await response.json(content_type=None)

        return await self._call_with_retry(make_request, operation_name=operation_name)

    # ========================================================================
    # RESPONSE HANDLING
    # ========================================================================

    async def _handle_response_status(self, response: aiohttp.ClientResponse) -> None:
        """
        Check HTTP response status and raise appropriate exceptions

        Raises:
            RateLimitError: If status is 429
            AuthenticationError: If status is 401 or 403
            ServerError: If status is 5xx
            ClientError: If status is 4xx (except 401, 403, 429)
        """
        if response.status == 429:
            text = await response.text()
            raise RateLimitError(
                self.platform_name,
                retry_after=_parse_retry_after(response.headers.get('Retry-After')),
                message=text[:200],
            )

        elif response.status in (401, 403):
            text = await response.text()
            raise AuthenticationError(self.platform_name, message=text[:200], status_code=response.status)

        elif response.status >= 500:
            text = await response.text()
            raise ServerError(self.platform_name, response.status, text)

        elif response.status >= 400:
            text = await response.text()
            raise ClientError(self.platform_name, response.status, text[:200])

    # ========================================================================
    # USAGE TRACKING
    # ========================================================================

    def record_usage(
        self,
        operation: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        status_code: int = 200
    ) -> None:
        """Record API usage"""
        usage = APIUsage(
            timestamp=datetime.now(),
            operation=operation,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            status_code=status_code,
            platform=self.platform_name,
        )
        self.usage_tracker.record_usage(usage)

    def get_usage_stats(self) -> Dict[str, Any]:
        return self.usage_tracker.get_stats()


def _parse_retry_after(raw: Optional[str]) -> Optional[int]:
    if not raw:
        return None
    try:
        return max(0, int(float(raw)))
    except (TypeError, ValueError):
        return None
