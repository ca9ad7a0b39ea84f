"""Gemini generateContent client used by the request dispatcher."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from betoracle.config import GeminiConfig
from betoracle.models import RawModelResponse, Source

from .base_client import APIError, BaseAPIClient

logger = logging.getLogger(__name__)


class GeminiClient(BaseAPIClient):
    """
    Thin wrapper over ``models/{model}:generateContent``.

    The key is supplied per call because the dispatcher rotates credentials;
    retries are also left to the dispatcher, so a failed call raises straight
    through as an ``APIError`` subclass or an aiohttp/timeout error.
    """

    def __init__(self, config: GeminiConfig, timeout: int = 120):
        super().__init__(
            platform_name="gemini",
            base_url=config.base_url.rstrip("/"),
            timeout=timeout,
            max_retries=0,
        )
        self.config = config

    def build_payload(self, prompt: str, grounded: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }
        if grounded:
            payload["tools"] = [{"google_search": {}}]
        return payload

    async def generate(self, prompt: str, api_key: str, grounded: bool = True) -> RawModelResponse:
        """Run one generation call with the given credential."""
        session = self._require_session()
        url = f"{self.base_url}/models/{self.config.model}:generateContent"
        headers = self._build_headers(
            api_key=api_key,
            auth_type="",
            auth_header_name="x-goog-api-key",
        )

        async with session.post(url, json=self.build_payload(prompt, grounded), headers=headers) as response:
            await self._handle_response_status(response)
            data = await response.json(content_type=None)

        result = self.parse_response(data, grounded=grounded)
        self.record_usage(
            operation="grounded analysis" if grounded else "degraded analysis",
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
        )
        return result

    @staticmethod
    def parse_response(data: Any, grounded: bool = True) -> RawModelResponse:
        """Convert a generateContent JSON body into a RawModelResponse."""
        if not isinstance(data, dict):
            raise APIError(platform="gemini", operation="Parse response", message="Body is not a JSON object")

        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            raise APIError(
                platform="gemini",
                operation="Parse response",
                message=f"No candidates returned (blockReason={block_reason})",
            )
        if not isinstance(candidates, list):
            raise APIError(platform="gemini", operation="Parse response", message="candidates is not a list")

        candidate = candidates[0] or {}
        if not isinstance(candidate, dict):
            raise APIError(platform="gemini", operation="Parse response", message="Candidate is not an object")
        content = candidate.get("content") or {}
        if not isinstance(content, dict):
            raise APIError(platform="gemini", operation="Parse response", message="Candidate content is not an object")
        parts = content.get("parts") or []
        if not isinstance(parts, list):
            raise APIError(platform="gemini", operation="Parse response", message="Content parts is not a list")
        text = "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict))
        if not text.strip():
            raise APIError(platform="gemini", operation="Parse response", message="Empty candidate text")

        usage = data.get("usageMetadata")
        if not isinstance(usage, dict):
            usage = {}
        return RawModelResponse(
            text=text,
            sources=_grounding_sources(candidate),
            grounded=grounded,
            input_tokens=int(usage.get("promptTokenCount") or 0),
            output_tokens=int(usage.get("candidatesTokenCount") or 0),
            finish_reason=candidate.get("finishReason"),
        )


def _grounding_sources(candidate: Dict[str, Any]) -> List[Source]:
    metadata = candidate.get("groundingMetadata")
    chunks = metadata.get("groundingChunks") if isinstance(metadata, dict) else None
    if not isinstance(chunks, list):
        return []
    sources: List[Source] = []
    for chunk in chunks:
        web = chunk.get("web") if isinstance(chunk, dict) else None
        if not isinstance(web, dict) or not web.get("uri"):
            continue
        sources.append(Source(title=str(web.get("title") or "Live Source"), uri=str(web["uri"])))
    return sources
