"""
xAI API client.

Thin async wrapper over the xAI REST API (https://api.x.ai/v1). HTTP
failures are mapped onto the typed errors in ``grok_mcp.errors``; the
client never retries, that is left to the governance layer.

API keys are never logged.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import httpx

from .config import ClientSettings
from .errors import UpstreamAuthError, UpstreamRateLimited, UpstreamTimeout, XAIError
from .models import (
    DEFAULT_IMAGE_PRICE,
    IMAGE_PRICING,
    AutoModelSelection,
    get_model_timeout,
    get_pricing,
    resolve_model,
    select_auto_model,
)
from .results import CostEstimate
from .services.cost_tracker import CostTracker

logger = logging.getLogger(__name__)

MODELS_CACHE_TTL_SECONDS = 60 * 60


def _parse_retry_after(value: Optional[str]) -> float:
    if not value:
        return 0
    try:
        return max(0.0, float(value))
    except ValueError:
        # HTTP-date form is not used by xAI
        return 0


def error_from_response(response: httpx.Response) -> XAIError:
    """Map a non-2xx response onto the error taxonomy."""
    status = response.status_code
    reason = response.reason_phrase or ""
    body = response.text
    message = f"xAI API request failed: {reason or status}"

    if status in (401, 403):
        return UpstreamAuthError(message, status, body)
    if status == 429:
        return UpstreamRateLimited(
            message,
            retry_after_seconds=_parse_retry_after(response.headers.get("Retry-After")),
            response_body=body,
        )
    if status == 408:
        return UpstreamTimeout(message)
    return XAIError(message, status, reason, body)


class XAIClient:
    """Client for xAI's Grok API."""

    def __init__(
        self,
        settings: ClientSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = settings.api_key.get_secret_value()
        if not api_key:
            raise ValueError(
                "XAI_API_KEY environment variable is not set. "
                "Please set it with your xAI API key from https://console.x.ai/"
            )
        if not api_key.startswith("xai-"):
            raise ValueError("Invalid XAI_API_KEY format: xAI API keys start with 'xai-'")

        self._api_key = api_key
        self.base_url = settings.base_url.rstrip("/")
        self.timeout_ms = settings.timeout_ms
        self._transport = transport

        self._models_cache: Optional[dict] = None
        self._models_cache_expiry = 0.0

    # ------------------------------------------------------------------
    # Model helpers
    # ------------------------------------------------------------------

    def resolve_model(self, model_input: str, query: Optional[str] = None, context: Optional[str] = None) -> str:
        return resolve_model(model_input, query, context)

    def select_auto_model(self, query: str, context: Optional[str] = None) -> AutoModelSelection:
        return select_auto_model(query, context)

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> CostEstimate:
        return CostTracker.estimate_cost(model, input_tokens, output_tokens)

    def calculate_image_cost(self, model: str, image_count: int) -> CostEstimate:
        pricing = get_pricing(model)
        return CostEstimate(
            estimated_usd=IMAGE_PRICING.get(model, DEFAULT_IMAGE_PRICE) * image_count,
            input_tokens=0,
            output_tokens=0,
            model=model,
            input_per_1m=pricing["input"],
            output_per_1m=pricing["output"],
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _http(self, timeout_ms: int) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout_ms / 1000, transport=self._transport)

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict] = None,
        timeout_ms: Optional[int] = None,
    ) -> dict:
        """
        Send one request and return the decoded JSON body.

        Raises:
            UpstreamAuthError, UpstreamRateLimited, UpstreamTimeout, XAIError
        """
        timeout_ms = timeout_ms or self.timeout_ms
        url = f"{self.base_url}{endpoint}"
        start = time.monotonic()

        try:
            async with self._http(timeout_ms) as client:
                response = await client.request(method, url, headers=self._headers(), json=payload)
        except httpx.TimeoutException:
            raise UpstreamTimeout(f"Request timeout after {timeout_ms}ms", timeout_ms) from None
        except httpx.HTTPError as exc:
            raise XAIError(str(exc) or type(exc).__name__, 500, "Internal Error") from exc

        if response.is_error:
            raise error_from_response(response)

        logger.info(
            "%s %s completed in %dms", method, endpoint, (time.monotonic() - start) * 1000
        )
        try:
            return response.json()
        except ValueError as exc:
            raise XAIError("Invalid JSON in xAI API response", response.status_code,
                           response.reason_phrase, response.text) from exc

    async def chat_completion(
        self,
        model: str,
        messages: list[dict],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        timeout_ms: Optional[int] = None,
        **extra: Any,
    ) -> dict:
        """POST /chat/completions"""
        resolved = self.resolve_model(model)
        payload = _chat_payload(resolved, messages, max_tokens, temperature, top_p, extra)
        timeout = get_model_timeout(resolved, timeout_ms, self.timeout_ms)
        return await self._request("POST", "/chat/completions", payload, timeout)

    async def chat_completion_stream(
        self,
        model: str,
        messages: list[dict],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        timeout_ms: Optional[int] = None,
        **extra: Any,
    ) -> AsyncIterator[dict]:
        """
        POST /chat/completions with ``stream: true``.

        Yields one parsed chunk per SSE ``data:`` line until ``[DONE]``.
        """
        resolved = self.resolve_model(model)
        payload = _chat_payload(resolved, messages, max_tokens, temperature, top_p, extra)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}
        timeout = get_model_timeout(resolved, timeout_ms, self.timeout_ms)
        url = f"{self.base_url}/chat/completions"
        headers = {**self._headers(), "Accept": "text/event-stream"}

        try:
            async with self._http(timeout) as client:
                async with client.stream("POST", url, headers=headers, json=payload) as response:
                    if response.is_error:
                        await response.aread()
                        raise error_from_response(response)

                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            return
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed SSE data line")
                            continue
                        yield chunk
        except httpx.TimeoutException:
            raise UpstreamTimeout(f"Stream timeout after {timeout}ms", timeout) from None
        except httpx.HTTPError as exc:
            raise XAIError(str(exc) or type(exc).__name__, 500, "Internal Error") from exc

    async def responses_create(self, payload: dict, timeout_ms: Optional[int] = None) -> dict:
        """POST /responses (agentic search tools)"""
        payload = {**payload, "model": self.resolve_model(payload["model"])}
        timeout = get_model_timeout(payload["model"], timeout_ms, self.timeout_ms)
        return await self._request("POST", "/responses", payload, timeout)

    async def generate_image(
        self,
        prompt: str,
        model: str,
        n: int = 1,
        response_format: str = "url",
    ) -> dict:
        """POST /images/generations"""
        payload = {
            "model": self.resolve_model(model),
            "prompt": prompt,
            "n": n,
            "response_format": response_format,
        }
        return await self._request("POST", "/images/generations", payload)

    async def list_models(self, force_refresh: bool = False) -> dict:
        """GET /models, cached for an hour."""
        now = time.time()
        if not force_refresh and self._models_cache is not None and now < self._models_cache_expiry:
            logger.debug("Returning cached models list")
            return self._models_cache

        response = await self._request("GET", "/models")
        self._models_cache = response
        self._models_cache_expiry = now + MODELS_CACHE_TTL_SECONDS
        return response

    def is_models_cached(self) -> bool:
        return self._models_cache is not None and time.time() < self._models_cache_expiry

    def get_models_cache_expiry(self) -> Optional[datetime]:
        if not self._models_cache_expiry:
            return None
        return datetime.fromtimestamp(self._models_cache_expiry, tz=timezone.utc)

    async def validate_api_key(self) -> bool:
        try:
            await self.list_models(force_refresh=True)
        except UpstreamAuthError:
            return False
        return True


def _chat_payload(
    model: str,
    messages: list[dict],
    max_tokens: Optional[int],
    temperature: Optional[float],
    top_p: Optional[float],
    extra: dict,
) -> dict:
    payload: dict[str, Any] = {"model": model, "messages": messages}
    if max_tokens is not None:
        payload["max_tokens"] = max_tokens
    if temperature is not None:
        payload["temperature"] = temperature
    if top_p is not None:
        payload["top_p"] = top_p
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


def create_client(transport: Optional[httpx.AsyncBaseTransport] = None, **overrides) -> XAIClient:
    """Create a client from XAI_API_KEY / XAI_BASE_URL / XAI_TIMEOUT_MS."""
    return XAIClient(ClientSettings(**overrides), transport=transport)
