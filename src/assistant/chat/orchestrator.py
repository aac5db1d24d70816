"""Chat orchestrator coordinating repository, completion client, and tools."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncGenerator, Sequence

from ..completions import CompletionClient, CompletionError
from ..config import PROJECT_ROOT, Settings
from ..repository import ChatRepository, MessageRecord
from ..schemas.chat import ChatAttachment, ChatRequest
from ..services.image_generation import ImageGenerationService
from ..services.title_service import generate_title
from ..services.web_search import WebSearchService
from .framing import ContentEvent, DoneEvent, StreamEvent, append_content
from .intent import IntentClassifier, KeywordIntentClassifier, ModelIntentClassifier
from .sanitize import strip_streamed_image_urls
from .tool_orchestrator import ToolCallOrchestrator, TurnOutcome
from .tools import ToolExecutor, build_tool_schema

logger = logging.getLogger(__name__)

DOCUMENT_CHAR_LIMIT = 10_000

DEEP_RESEARCH_SUFFIX = (
    "\n\nDeep research mode: reason carefully, cover the topic thoroughly, and "
    "cite sources for factual claims."
)
REGULAR_SUFFIX = "\n\nRegular mode: be concise, clear, and friendly."


class ConversationNotFoundError(LookupError):
    """Raised when a turn references a conversation that does not exist."""


@dataclass
class BufferedTurnResult:
    message: MessageRecord
    title: str | None
    outcome: TurnOutcome | None


def _resolve_path(path: Path) -> Path:
    if str(path) == ":memory:" or path.is_absolute():
        return path
    return PROJECT_ROOT / path


def buffered_params(deep_research: bool) -> dict[str, Any]:
    if deep_research:
        return {
            "max_completion_tokens": 8000,
            "reasoning_effort": "high",
            "verbosity": "high",
        }
    return {
        "max_completion_tokens": 4000,
        "reasoning_effort": "low",
        "verbosity": "low",
    }


def streaming_params(deep_research: bool) -> dict[str, Any]:
    params = buffered_params(deep_research)
    if deep_research:
        params.update(verbosity="medium", temperature=0.3)
    else:
        params.update(verbosity="low", temperature=0.7)
    return params


def _attachment_parts(attachment: ChatAttachment, deep_research: bool) -> list[dict[str, Any]]:
    if attachment.type == "image" and attachment.data:
        mime_type = attachment.mime_type or "image/png"
        return [
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:{mime_type};base64,{attachment.data}",
                    "detail": "high" if deep_research else "auto",
                },
            }
        ]
    if attachment.type == "document" and attachment.content:
        text = attachment.content
        if len(text) > DOCUMENT_CHAR_LIMIT:
            text = text[:DOCUMENT_CHAR_LIMIT] + "\n\n[Document truncated]"
        name = attachment.name or "document"
        return [{"type": "text", "text": f"[Document: {name}]\n{text}"}]
    return []


def build_user_content(request: ChatRequest) -> str | list[dict[str, Any]]:
    """Plain text, or multimodal parts when attachments are present."""

    parts: list[dict[str, Any]] = []
    for attachment in request.attachments:
        parts.extend(_attachment_parts(attachment, request.deep_research))
    if not parts:
        return request.message
    text = request.message.strip() or "Please review the attached content."
    return [{"type": "text", "text": text}, *parts]


def build_messages(
    system_prompt: str | None,
    history: Sequence[MessageRecord],
    request: ChatRequest,
) -> list[dict[str, Any]]:
    suffix = DEEP_RESEARCH_SUFFIX if request.deep_research else REGULAR_SUFFIX
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": f"{(system_prompt or '').strip()}{suffix}".strip()}
    ]
    for item in history:
        content = item.get("content")
        if not content:
            continue
        messages.append(
            {"role": "assistant" if item.get("is_ai") else "user", "content": content}
        )
    messages.append({"role": "user", "content": build_user_content(request)})
    return messages


class ChatOrchestrator:
    """High-level coordination for chat turns."""

    def __init__(
        self,
        settings: Settings,
        *,
        repository: ChatRepository | None = None,
        client: CompletionClient | None = None,
        search: WebSearchService | None = None,
        images: ImageGenerationService | None = None,
        classifier: IntentClassifier | None = None,
    ):
        self._settings = settings
        self._repo = repository or ChatRepository(
            _resolve_path(settings.chat_database_path)
        )
        self._client = client or CompletionClient(settings)
        self._search = search or WebSearchService(settings)
        self._images = images or ImageGenerationService(settings, self._client)
        if classifier is None:
            if settings.enable_ai_web_search_detection:
                classifier = ModelIntentClassifier(self._client, settings.intent_model)
            else:
                classifier = KeywordIntentClassifier()
        self._classifier = classifier
        self._tools = ToolCallOrchestrator(
            self._client, ToolExecutor(self._search, self._images)
        )
        self._init_lock = asyncio.Lock()
        self._ready = asyncio.Event()
        self._background: set[asyncio.Task[None]] = set()

    async def initialize(self) -> None:
        """Initialize the database once."""

        async with self._init_lock:
            if self._ready.is_set():
                return
            await self._repo.initialize()
            self._ready.set()
            logger.info("Chat orchestrator ready (model=%s)", self._settings.chat_model)

    async def shutdown(self) -> None:
        """Clean up held resources."""

        if self._background:
            # Let in-flight streamed turns persist before the repository closes.
            await asyncio.wait(set(self._background), timeout=5.0)

        try:
            await asyncio.wait_for(self._client.aclose(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing completion client: %s", exc)

        try:
            await asyncio.wait_for(self._repo.close(), timeout=2.0)
        except (asyncio.TimeoutError, Exception) as exc:
            logger.warning("Error closing repository: %s", exc)

        self._ready.clear()

    @property
    def repository(self) -> ChatRepository:
        return self._repo

    @property
    def classifier(self) -> IntentClassifier:
        return self._classifier

    @property
    def search_service(self) -> WebSearchService:
        return self._search

    @property
    def image_service(self) -> ImageGenerationService:
        return self._images

    async def _prepare(
        self, request: ChatRequest
    ) -> tuple[list[MessageRecord], asyncio.Task[str | None] | None]:
        """Load history, persist the user message, and start title generation."""

        conversation = await self._repo.get_conversation(request.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(request.conversation_id)

        history = await self._repo.get_recent_messages(
            request.conversation_id, self._settings.history_limit
        )
        await self._repo.add_message(
            request.conversation_id, request.message, is_ai=False
        )

        title_task: asyncio.Task[str | None] | None = None
        if request.generate_title or not history:
            title_task = asyncio.create_task(
                generate_title(self._settings, self._client, request.message)
            )
        return history, title_task

    async def _finish(
        self,
        request: ChatRequest,
        content: str,
        *,
        image_urls: list[str] | None,
        title_task: asyncio.Task[str | None] | None,
    ) -> tuple[MessageRecord, str | None]:
        title: str | None = None
        if title_task is not None:
            try:
                title = await title_task
            except Exception as exc:
                logger.warning("Title generation raised: %s", exc)
        message = await self._repo.add_message(
            request.conversation_id,
            content,
            is_ai=True,
            image_urls=image_urls,
            turn_id=request.turn_id,
        )
        await self._repo.touch_conversation(request.conversation_id, title=title)
        return message, title

    async def _replayed_turn(self, request: ChatRequest) -> MessageRecord | None:
        if not request.turn_id:
            return None
        existing = await self._repo.get_message_by_turn(request.turn_id)
        if existing is not None:
            logger.info("Turn %s already persisted; replaying", request.turn_id)
        return existing

    async def run_buffered(self, request: ChatRequest) -> BufferedTurnResult:
        """Run a tool-capable turn and persist its single assistant message."""

        await self._ready.wait()
        existing = await self._replayed_turn(request)
        if existing is not None:
            return BufferedTurnResult(message=existing, title=None, outcome=None)

        history, title_task = await self._prepare(request)
        try:
            web_search = request.allow_web_search
            if not web_search and request.enable_ai_web_search_detection:
                web_search = await self._classifier.needs_web_search(
                    request.message, history
                )
            logger.info(
                "Buffered turn conversation=%s deep=%s web_search=%s",
                request.conversation_id,
                request.deep_research,
                web_search,
            )

            payload: dict[str, Any] = {
                "model": self._settings.chat_model,
                "messages": build_messages(
                    self._settings.system_prompt, history, request
                ),
                "tools": build_tool_schema(web_search=web_search),
                "tool_choice": "auto",
            }
            payload.update(buffered_params(request.deep_research))
            outcome = await self._tools.run(payload)
        except BaseException:
            if title_task is not None:
                title_task.cancel()
            raise

        message, title = await self._finish(
            request,
            outcome.text,
            image_urls=outcome.image_urls or None,
            title_task=title_task,
        )
        return BufferedTurnResult(message=message, title=title, outcome=outcome)

    async def stream_turn(
        self, request: ChatRequest
    ) -> AsyncGenerator[StreamEvent, None]:
        """Yield content events as they arrive, then a single done event.

        Upstream consumption runs in a background task, so the reply is still
        persisted when the caller stops listening part-way through.
        """

        await self._ready.wait()
        existing = await self._replayed_turn(request)
        if existing is not None:
            yield ContentEvent(existing["content"])
            yield DoneEvent(None)
            return

        history, title_task = await self._prepare(request)
        payload: dict[str, Any] = {
            "model": self._settings.chat_model,
            "messages": build_messages(self._settings.system_prompt, history, request),
        }
        payload.update(streaming_params(request.deep_research))

        queue: asyncio.Queue[StreamEvent | Exception] = asyncio.Queue()
        producer = asyncio.create_task(
            self._produce_stream(request, payload, title_task, queue)
        )
        self._background.add(producer)
        producer.add_done_callback(self._background.discard)

        while True:
            item = await queue.get()
            if isinstance(item, Exception):
                raise item
            yield item
            if isinstance(item, DoneEvent):
                return

    async def _produce_stream(
        self,
        request: ChatRequest,
        payload: dict[str, Any],
        title_task: asyncio.Task[str | None] | None,
        queue: asyncio.Queue[StreamEvent | Exception],
    ) -> None:
        text = ""
        try:
            try:
                async for delta in self._client.stream_completion(payload):
                    text = append_content(text, delta)
                    queue.put_nowait(ContentEvent(delta))
            except CompletionError as exc:
                if not text:
                    raise
                logger.warning(
                    "Stream for conversation %s ended early: %s",
                    request.conversation_id,
                    exc.detail,
                )

            title: str | None = None
            cleaned = strip_streamed_image_urls(text).strip()
            if cleaned:
                _, title = await self._finish(
                    request, cleaned, image_urls=None, title_task=title_task
                )
                title_task = None
            else:
                logger.warning(
                    "Stream for conversation %s produced no content",
                    request.conversation_id,
                )
            queue.put_nowait(DoneEvent(title))
        except Exception as exc:
            logger.error(
                "Streaming turn failed for conversation %s: %s",
                request.conversation_id,
                exc,
            )
            queue.put_nowait(exc)
        finally:
            if title_task is not None and not title_task.done():
                title_task.cancel()


__all__ = [
    "BufferedTurnResult",
    "ChatOrchestrator",
    "ConversationNotFoundError",
    "build_messages",
    "build_user_content",
    "buffered_params",
    "streaming_params",
]
