"""Client-side request orchestration for chat turns.

One ``RequestOrchestrator`` serves many conversations but never lets two
requests for the same conversation overlap. Every turn carries a ``turn_id``
so that, after a timeout or a dropped connection, the client can ask the
server whether the reply was persisted anyway instead of guessing.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

import httpx

from ..chat.framing import (
    ContentEvent,
    DoneEvent,
    StreamEvent,
    append_content,
    flush_buffer,
    parse_chunk,
)
from ..chat.intent import IntentClassifier
from .transport import FeatureFlags, TransportDecision, select_transport

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

PROCESSING_PLACEHOLDER = "Still processing your request…"
GENERIC_RETRY_PROMPT = (
    "Sorry, I encountered an error processing your message. Please try again."
)
NETWORK_RETRY_PROMPT = "Network error. Please check your connection and try again."

TextCallback = Callable[[str], "Awaitable[None] | None"]


def timeout_retry_prompt(seconds: float) -> str:
    minutes = seconds / 60
    if minutes >= 1 and minutes == int(minutes):
        span = f"{int(minutes)} minute{'s' if minutes != 1 else ''}"
    else:
        span = f"{seconds:g} seconds"
    return f"Request timed out after {span}. Please try again."


class ChatRequestError(Exception):
    """Raised when the chat service answers with a non-success status."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@dataclass
class SendResult:
    conversation_id: str
    turn_id: str
    transport: TransportDecision
    text: str
    title: str | None = None
    image_urls: list[str] = field(default_factory=list)
    tools_used: list[str] = field(default_factory=list)
    reconciled: bool = False
    failed: bool = False


async def _notify(callback: TextCallback | None, value: str) -> None:
    if callback is None:
        return
    outcome = callback(value)
    if inspect.isawaitable(outcome):
        await outcome


def _error_detail(response: httpx.Response) -> Any:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict) and "detail" in data:
        return data["detail"]
    return data


class RequestOrchestrator:
    """Issue chat turns over the chosen transport and reconcile on failure."""

    def __init__(
        self,
        base_url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        classifier: IntentClassifier | None = None,
        stream_timeout: float = 240.0,
        buffered_timeout: float = 240.0,
        reconciliation_delay: float = 3.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._owns_client = http_client is None
        self._classifier = classifier
        self._stream_timeout = stream_timeout
        self._buffered_timeout = buffered_timeout
        self._reconciliation_delay = reconciliation_delay
        self._sleep = sleep
        self._in_flight: set[str] = set()
        self._active: dict[str, asyncio.Task[SendResult]] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings: "Settings", base_url: str, **kwargs: Any
    ) -> "RequestOrchestrator":
        kwargs.setdefault("stream_timeout", settings.stream_timeout)
        kwargs.setdefault("buffered_timeout", settings.buffered_timeout)
        kwargs.setdefault("reconciliation_delay", settings.reconciliation_delay_seconds)
        return cls(base_url, **kwargs)

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                http2=True,
                timeout=httpx.Timeout(None, connect=10.0),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def is_in_flight(self, conversation_id: str) -> bool:
        return conversation_id in self._in_flight

    def cancel(self, conversation_id: str) -> bool:
        """Abort the active exchange; ``send`` then falls back to reconciliation."""

        task = self._active.get(conversation_id)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def send(
        self,
        conversation_id: str,
        message: str,
        *,
        flags: FeatureFlags | None = None,
        user_id: str | None = None,
        attachments: Iterable[dict[str, Any]] = (),
        generate_title: bool = False,
        on_delta: TextCallback | None = None,
        on_status: TextCallback | None = None,
    ) -> SendResult | None:
        """Send one user message; returns None when a send is already in flight."""

        async with self._lock:
            if conversation_id in self._in_flight:
                logger.warning(
                    "Dropping message for conversation %s: a request is already in flight",
                    conversation_id,
                )
                return None
            self._in_flight.add(conversation_id)

        try:
            flags = flags or FeatureFlags()
            transport = select_transport(message, flags, self._classifier)
            turn_id = uuid.uuid4().hex
            body: dict[str, Any] = {
                "message": message,
                "conversation_id": conversation_id,
                "user_id": user_id,
                "deep_research": flags.deep_research,
                "allow_web_search": flags.web_search,
                "attachments": list(attachments),
                "generate_title": generate_title,
                "turn_id": turn_id,
            }
            base = SendResult(
                conversation_id=conversation_id,
                turn_id=turn_id,
                transport=transport,
                text="",
            )
            logger.info(
                "Sending turn %s for conversation %s via %s",
                turn_id,
                conversation_id,
                transport.value,
            )

            if transport is TransportDecision.STREAM:
                exchange = self._stream(body, base, on_delta)
                timeout = self._stream_timeout
            else:
                exchange = self._buffered(body, base)
                timeout = self._buffered_timeout

            task = asyncio.create_task(exchange)
            self._active[conversation_id] = task
            try:
                done, _ = await asyncio.wait({task}, timeout=timeout)
            finally:
                self._active.pop(conversation_id, None)
                if not task.done():
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task

            if not done:
                logger.warning("Turn %s exceeded %.0fs deadline", turn_id, timeout)
                return await self._reconcile(
                    base, timeout_retry_prompt(timeout), on_status
                )
            if task.cancelled():
                logger.info("Turn %s was cancelled", turn_id)
                return await self._reconcile(base, GENERIC_RETRY_PROMPT, on_status)

            error = task.exception()
            if error is None:
                return task.result()
            if isinstance(error, ChatRequestError):
                logger.error(
                    "Turn %s rejected with HTTP %s: %s",
                    turn_id,
                    error.status_code,
                    error.detail,
                )
                base.text = GENERIC_RETRY_PROMPT
                base.failed = True
                return base
            if isinstance(error, httpx.TransportError):
                logger.warning("Turn %s lost its connection: %s", turn_id, error)
                return await self._reconcile(base, NETWORK_RETRY_PROMPT, on_status)
            logger.error("Turn %s failed: %s", turn_id, error)
            base.text = GENERIC_RETRY_PROMPT
            base.failed = True
            return base
        finally:
            self._in_flight.discard(conversation_id)

    async def _stream(
        self,
        body: dict[str, Any],
        result: SendResult,
        on_delta: TextCallback | None,
    ) -> SendResult:
        client = self._get_http_client()
        buffer = ""
        finished = False

        async def consume(events: list[StreamEvent]) -> bool:
            for event in events:
                if isinstance(event, DoneEvent):
                    if event.title:
                        result.title = event.title
                    return True
                if isinstance(event, ContentEvent):
                    result.text = append_content(result.text, event.content)
                    await _notify(on_delta, event.content)
            return False

        async with client.stream(
            "POST",
            f"{self._base_url}/api/chat/stream",
            json=body,
            headers={"Accept": "text/event-stream"},
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise ChatRequestError(response.status_code, _error_detail(response))

            async for chunk in response.aiter_text():
                parsed = parse_chunk(chunk, buffer)
                buffer = parsed.remaining_buffer
                if await consume(parsed.events):
                    finished = True
                    break

        if not finished:
            await consume(flush_buffer(buffer).events)
        if not result.text.strip():
            # The server ends failed turns without any content frame.
            logger.warning("Turn %s streamed no content", result.turn_id)
            result.text = GENERIC_RETRY_PROMPT
            result.failed = True
        return result

    async def _buffered(self, body: dict[str, Any], result: SendResult) -> SendResult:
        client = self._get_http_client()
        response = await client.post(f"{self._base_url}/api/chat", json=body)
        if response.status_code >= 400:
            raise ChatRequestError(response.status_code, _error_detail(response))

        data = response.json()
        message = data.get("message") or {}
        result.text = message.get("content") or ""
        result.image_urls = list(message.get("image_urls") or [])
        result.title = data.get("title")
        thinking = data.get("thinking") or {}
        result.tools_used = list(thinking.get("tools_used") or [])
        return result

    async def _reconcile(
        self,
        result: SendResult,
        failure_prompt: str,
        on_status: TextCallback | None,
    ) -> SendResult:
        """Show a placeholder, wait briefly, then look the turn up by id."""

        await _notify(on_status, PROCESSING_PLACEHOLDER)
        await self._sleep(self._reconciliation_delay)

        client = self._get_http_client()
        try:
            response = await client.get(
                f"{self._base_url}/api/turns/{result.turn_id}", timeout=30.0
            )
        except httpx.HTTPError as exc:
            logger.warning("Reconciliation lookup for %s failed: %s", result.turn_id, exc)
            response = None

        if response is not None and response.status_code == 200:
            message = response.json()
            logger.info("Recovered persisted reply for turn %s", result.turn_id)
            result.text = message.get("content") or ""
            result.image_urls = list(message.get("image_urls") or [])
            result.reconciled = True
            return result

        logger.warning("No persisted reply for turn %s", result.turn_id)
        result.text = failure_prompt
        result.failed = True
        return result


__all__ = [
    "ChatRequestError",
    "GENERIC_RETRY_PROMPT",
    "NETWORK_RETRY_PROMPT",
    "PROCESSING_PLACEHOLDER",
    "RequestOrchestrator",
    "SendResult",
    "timeout_retry_prompt",
]
