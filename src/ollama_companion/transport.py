"""HTTP access to the Ollama server and error mapping into the domain taxonomy.

Non-streaming calls go through the ``ollama`` SDK. The streaming chat call
reads the NDJSON body line by line with ``httpx`` so that the engine can
decode (and, when corrupt, skip) every line itself.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import logging
import time
from typing import Any

import httpx
from ollama import AsyncClient, RequestError, ResponseError

from .exceptions import (
    InvalidConfigurationError,
    OllamaCompanionError,
    OllamaConnectionError,
    OllamaServerError,
)

LOGGER = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"
TAGS_PATH = "/api/tags"


def map_exception(exc: BaseException, host: str) -> OllamaCompanionError:
    """Translate SDK and transport exceptions into domain errors."""
    if isinstance(exc, OllamaCompanionError):
        return exc

    if isinstance(exc, ResponseError):
        return OllamaServerError(
            f"Server returned status code {exc.status_code}: {exc.error}",
            status_code=exc.status_code,
        )
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return OllamaServerError(f"Server returned status code {code}", status_code=code)
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return InvalidConfigurationError(f"Invalid Ollama URL {host!r}: {exc}")
    if isinstance(exc, RequestError):
        return InvalidConfigurationError(str(exc.error))
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return OllamaConnectionError(f"Timed out waiting for Ollama at {host}.")
    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return OllamaConnectionError(
            f"Cannot connect to Ollama at {host}. Make sure Ollama is running."
        )

    return OllamaServerError(f"Unexpected failure talking to Ollama at {host}: {exc}")


def read_field(payload: Any, name: str) -> Any:
    """Read ``name`` from an SDK response object or a plain dict."""
    if isinstance(payload, dict):
        return payload.get(name)
    value = getattr(payload, name, None)
    if value is not None:
        return value
    if hasattr(payload, "model_dump"):
        try:
            dumped = payload.model_dump()
        except Exception:  # noqa: BLE001 - best-effort view of foreign objects.
            return None
        if isinstance(dumped, dict):
            return dumped.get(name)
    return None


class OllamaTransport:
    """Owns the HTTP clients used for chat, vision and model listing calls."""

    def __init__(
        self,
        host: str,
        *,
        request_timeout: float = 60.0,
        resource_timeout: float = 300.0,
        client: Any | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.request_timeout = request_timeout
        self.resource_timeout = resource_timeout
        self._owns_client = client is None
        self._owns_http = http_client is None
        self._client = (
            client
            if client is not None
            else AsyncClient(host=self.host, timeout=request_timeout)
        )
        self._http = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(
                base_url=self.host, timeout=httpx.Timeout(request_timeout)
            )
        )

    async def list_models(self) -> Any:
        return await self._client.list()

    async def chat(
        self,
        model: str,
        messages: list[dict[str, str]],
        options: dict[str, Any] | None = None,
    ) -> Any:
        """Single-shot chat completion (``stream=False``)."""
        LOGGER.info(
            "transport.chat",
            extra={"event": "transport.chat", "model": model, "messages": len(messages)},
        )
        return await asyncio.wait_for(
            self._client.chat(
                model=model, messages=messages, stream=False, options=options or None
            ),
            timeout=self.resource_timeout,
        )

    async def generate(
        self,
        model: str,
        prompt: str,
        images: list[str],
        options: dict[str, Any] | None = None,
    ) -> Any:
        """Single-shot vision generation with base64-encoded images."""
        LOGGER.info(
            "transport.generate",
            extra={"event": "transport.generate", "model": model, "images": len(images)},
        )
        return await asyncio.wait_for(
            self._client.generate(
                model=model,
                prompt=prompt,
                images=images,
                stream=False,
                options=options or None,
            ),
            timeout=self.resource_timeout,
        )

    async def stream_chat(self, payload: dict[str, Any]) -> AsyncIterator[str]:
        """Yield raw NDJSON lines from a streaming chat request.

        Raises OllamaServerError for non-2xx responses and
        OllamaConnectionError once the whole call exceeds the resource timeout.
        Closing the generator (or cancelling its consumer) aborts the request.
        """
        deadline = time.monotonic() + self.resource_timeout
        async with self._http.stream("POST", CHAT_PATH, json=payload) as response:
            if not response.is_success:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise OllamaServerError(
                    f"Server returned status code {response.status_code}: {body.strip()}",
                    status_code=response.status_code,
                )
            async for line in response.aiter_lines():
                if time.monotonic() > deadline:
                    raise OllamaConnectionError(
                        f"Streaming response from {self.host} exceeded "
                        f"{self.resource_timeout:.0f}s."
                    )
                yield line

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
        if self._owns_client:
            # The SDK client wraps an httpx.AsyncClient without a public close.
            inner = getattr(self._client, "_client", None)
            if isinstance(inner, httpx.AsyncClient):
                await inner.aclose()
