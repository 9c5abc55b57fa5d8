"""Model-service client -- direct httpx calls to the Anthropic Messages API.

The loop depends only on the ModelService protocol. AnthropicClient is the
production implementation; tests substitute scripted fakes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from helm.agent.errors import ModelServiceUnavailable
from helm.agent.messages import ContentBlock, block_from_api
from helm.config import Settings

logger = logging.getLogger(__name__)

# Anthropic API version header
_API_VERSION = "2023-06-01"

_RETRY_STATUS = frozenset({429, 500, 529})
_MAX_RETRY_AFTER = 30.0


@dataclass
class ModelRequest:
    """One Messages API call: system prompt, transcript, tool schemas."""

    system_prompt: str
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ModelResponse:
    """Parsed response from the Messages API."""

    content: list[ContentBlock]
    stop_reason: str  # end_turn, max_tokens, tool_use, stop_sequence
    usage: dict[str, int] | None = None


class ModelService(Protocol):
    """Anything that can answer a ModelRequest."""

    async def create_message(self, request: ModelRequest) -> ModelResponse: ...


def build_auth_headers(api_key: str, auth_token: str) -> dict[str, str]:
    """Select auth headers.

    OAT tokens (sk-ant-oat*) require Bearer auth plus beta headers.
    Regular API keys use x-api-key.
    """
    headers: dict[str, str] = {}
    token = auth_token or (api_key if "sk-ant-oat" in api_key else "")
    if token:
        headers["authorization"] = f"Bearer {token}"
        if "sk-ant-oat" in token:
            headers["anthropic-beta"] = "oauth-2025-04-20"
            headers["anthropic-dangerous-direct-browser-access"] = "true"
    elif api_key:
        headers["x-api-key"] = api_key
    return headers


class AnthropicClient:
    """ModelService backed by an httpx.AsyncClient.

    Call start() before the first request and close() on shutdown.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._http: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the httpx client with auth and timeout settings."""
        settings = self._settings
        headers = {
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
            **build_auth_headers(settings.anthropic_api_key, settings.anthropic_auth_token),
        }
        if "x-api-key" not in headers and "authorization" not in headers:
            logger.warning(
                "Neither ANTHROPIC_API_KEY nor ANTHROPIC_AUTH_TOKEN is set -- "
                "API calls will fail"
            )

        timeout = httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
        limits = httpx.Limits(max_connections=10, max_keepalive_connections=5)

        self._http = httpx.AsyncClient(
            base_url=settings.api_base_url,
            headers=headers,
            timeout=timeout,
            limits=limits,
        )
        logger.info("Model client initialized (model: %s)", settings.model)

    async def close(self) -> None:
        """Clean up httpx client."""
        if self._http:
            await self._http.aclose()
            self._http = None

    def build_payload(self, request: ModelRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "system": [
                {
                    "type": "text",
                    "text": request.system_prompt,
                    "cache_control": {"type": "ephemeral"},
                }
            ],
            "messages": request.messages,
        }
        if request.tools:
            payload["tools"] = request.tools
        return payload

    async def create_message(self, request: ModelRequest) -> ModelResponse:
        """Call the Messages API with one retry for 429/500/529 and timeouts.

        Raises ModelServiceUnavailable on persistent errors.
        """
        if not self._http:
            raise RuntimeError("httpx client not initialized -- call start() first")

        payload = self.build_payload(request)

        last_error: ModelServiceUnavailable | None = None
        for attempt in range(2):  # initial + 1 retry
            try:
                response = await self._http.post("/v1/messages", json=payload)
            except httpx.TimeoutException as e:
                last_error = ModelServiceUnavailable(f"request timed out: {e}", retriable=True)
                if attempt == 0:
                    logger.warning("API timeout, retrying: %s", e)
                    await asyncio.sleep(1)
                    continue
                break
            except httpx.HTTPError as e:
                # Connection errors are not retried here
                last_error = ModelServiceUnavailable(f"HTTP error: {e}", retriable=True)
                break

            if response.status_code == 200:
                try:
                    data = response.json()
                    return ModelResponse(
                        content=[block_from_api(b) for b in data.get("content", [])],
                        stop_reason=data.get("stop_reason") or "",
                        usage=data.get("usage"),
                    )
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.error("Malformed API response: %s", response.text[:500])
                    raise ModelServiceUnavailable(
                        f"malformed response: {type(e).__name__}: {e}",
                        status_code=response.status_code,
                    ) from e

            try:
                error_data = response.json()
                error_type = error_data.get("error", {}).get("type", "unknown")
                error_msg = error_data.get("error", {}).get("message", "unknown error")
            except ValueError:
                error_type = "http_error"
                error_msg = f"HTTP {response.status_code}: {response.text[:500]}"

            retriable = response.status_code in _RETRY_STATUS
            if retriable and attempt == 0:
                try:
                    retry_after = float(response.headers.get("retry-after", "1"))
                except ValueError:
                    retry_after = 1.0
                retry_after = min(retry_after, _MAX_RETRY_AFTER)
                logger.warning(
                    "API error %d (%s), retrying in %.1fs: %s",
                    response.status_code,
                    error_type,
                    retry_after,
                    error_msg,
                )
                await asyncio.sleep(retry_after)
                continue

            last_error = ModelServiceUnavailable(
                f"API error ({response.status_code}): {error_type} - {error_msg}",
                status_code=response.status_code,
                retriable=retriable,
            )
            break

        raise last_error or ModelServiceUnavailable("API call failed with unknown error")
