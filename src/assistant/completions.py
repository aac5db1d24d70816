"""Client for the upstream OpenAI-compatible completion and image APIs."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Mapping, Optional, Sequence

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Wrap transport or API failures when communicating with the upstream API."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


class CompletionClient:
    """Client responsible for chat completions and image generation."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.openai_api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @property
    def _stream_headers(self) -> dict[str, str]:
        headers = dict(self._headers)
        headers["Accept"] = "text/event-stream"
        return headers

    @property
    def _base_url(self) -> str:
        """Return the API base URL without a trailing slash."""

        return str(self._settings.openai_base_url).rstrip("/")

    async def create_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Request a single, non-streaming chat completion."""

        body = dict(payload)
        body["stream"] = False
        return await self._post_json("/chat/completions", body)

    async def generate_image(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Request an image from the images endpoint."""

        return await self._post_json("/images/generations", payload)

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_http_client()
        try:
            response = await client.post(
                f"{self._base_url}{path}",
                headers=self._headers,
                json=payload,
            )
        except httpx.HTTPError as exc:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise CompletionError(response.status_code, detail)

        try:
            body = response.json()
        except ValueError as exc:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
        if not isinstance(body, dict):
            raise CompletionError(
                status.HTTP_502_BAD_GATEWAY, "Upstream returned a non-object body"
            )
        return body

    async def stream_completion(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[str, None]:
        """Yield assistant content deltas from a streamed completion."""

        body = dict(payload)
        body["stream"] = True
        url = f"{self._base_url}/chat/completions"

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._stream_headers,
                json=body,
            ) as response:
                if response.status_code >= 400:
                    raw = await response.aread()
                    raise CompletionError(
                        response.status_code, self._extract_error_detail(raw)
                    )

                async for event in self._iter_events(response):
                    if not event.data:
                        continue
                    if event.data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(event.data)
                    except json.JSONDecodeError:
                        logger.debug("Skipping non-JSON SSE payload: %s", event.data)
                        continue
                    delta = self.extract_delta_text(chunk)
                    if delta:
                        yield delta
        except httpx.HTTPError as exc:
            raise CompletionError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            return
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        return ServerSentEvent(
            data="\n".join(data_lines),
            event=event_name or "message",
            event_id=event_id,
        )

    @staticmethod
    def extract_delta_text(chunk: Mapping[str, Any]) -> str:
        choices = chunk.get("choices")
        if not isinstance(choices, Sequence) or not choices:
            return ""
        choice = choices[0]
        if not isinstance(choice, Mapping):
            return ""
        delta = choice.get("delta")
        if not isinstance(delta, Mapping):
            return ""
        content = delta.get("content")
        return content if isinstance(content, str) else ""

    @staticmethod
    def extract_message(payload: Mapping[str, Any]) -> dict[str, Any]:
        """Return the first choice's message, or an empty dict."""

        choices = payload.get("choices")
        if not isinstance(choices, Sequence) or not choices:
            return {}
        container = choices[0]
        if not isinstance(container, Mapping):
            return {}
        message = container.get("message")
        return dict(message) if isinstance(message, Mapping) else {}

    @classmethod
    def extract_message_text(cls, payload: Mapping[str, Any]) -> str:
        content = cls.extract_message(payload).get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, Sequence):
            fragments: list[str] = []
            for item in content:
                if not isinstance(item, Mapping):
                    continue
                if item.get("type") == "text" and isinstance(item.get("text"), str):
                    fragments.append(item["text"])
            return "".join(fragments).strip()
        return ""

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "Upstream API returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["CompletionClient", "CompletionError", "ServerSentEvent"]
