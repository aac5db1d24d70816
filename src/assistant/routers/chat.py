"""Chat turn API routes for the buffered and streaming transports."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from ..chat import ChatOrchestrator, ConversationNotFoundError
from ..chat.framing import (
    DONE_SENTINEL,
    ContentEvent,
    DoneEvent,
    content_data,
    done_data,
)
from ..completions import CompletionError
from ..schemas.chat import ChatRequest, ChatResponse, StoredMessage, ThinkingSummary

router = APIRouter(prefix="/api", tags=["chat"])

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.chat_orchestrator


STREAM_ERROR_MESSAGE = (
    "Sorry, I encountered an error processing your message. Please try again."
)


def _error_data(message: str) -> str:
    # No "content" key: readers that only know content/done frames skip it.
    return json.dumps({"type": "error", "message": message})


@router.post("/chat", response_model=ChatResponse)
async def buffered_chat(
    payload: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Run a tool-capable turn and return the persisted assistant message."""

    try:
        result = await orchestrator.run_buffered(payload)
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Conversation not found") from exc
    except CompletionError as exc:
        logger.error("Buffered chat failed upstream: %s", exc.detail)
        raise HTTPException(status_code=502, detail=exc.detail) from exc

    thinking = None
    if result.outcome is not None:
        thinking = ThinkingSummary(
            tools_used=result.outcome.tools_used,
            status="degraded" if result.outcome.followup_failed else "completed",
        )
    return ChatResponse(
        message=StoredMessage(**result.message),
        title=result.title,
        usage=result.outcome.usage if result.outcome is not None else None,
        thinking=thinking,
    )


@router.post("/chat/stream", response_model=None, status_code=200)
async def stream_chat(
    payload: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> EventSourceResponse:
    """Stream assistant content through Server-Sent Events."""

    conversation = await orchestrator.repository.get_conversation(
        payload.conversation_id
    )
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")

    async def event_publisher():
        try:
            async for event in orchestrator.stream_turn(payload):
                if isinstance(event, ContentEvent):
                    data = content_data(event.content)
                elif isinstance(event, DoneEvent):
                    data = done_data(event.title)
                else:  # pragma: no cover
                    continue
                yield {"event": "message", "data": data}
        except CompletionError as exc:
            logger.error(
                "Streaming chat failed upstream (status=%s): %s",
                exc.status_code,
                exc.detail,
            )
            yield {"event": "message", "data": _error_data(STREAM_ERROR_MESSAGE)}
        except Exception:  # pragma: no cover
            logger.exception("Streaming chat failed")
            yield {"event": "message", "data": _error_data(STREAM_ERROR_MESSAGE)}
        yield {"event": "message", "data": DONE_SENTINEL}

    # Frames end with a blank line ("\n\n") so clients can split on it.
    return EventSourceResponse(event_publisher(), sep="\n")


@router.get("/turns/{turn_id}", response_model=StoredMessage)
async def get_turn(
    turn_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> StoredMessage:
    """Return the assistant message persisted for a turn, once it exists."""

    message = await orchestrator.repository.get_message_by_turn(turn_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Turn not found")
    return StoredMessage(**message)


__all__ = ["STREAM_ERROR_MESSAGE", "get_orchestrator", "router"]
