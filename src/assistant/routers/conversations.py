"""Minimal conversation routes used by chat clients."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..chat import ChatOrchestrator
from ..schemas.chat import Conversation, ConversationCreate, StoredMessage
from .chat import get_orchestrator

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.post("", response_model=Conversation, status_code=201)
async def create_conversation(
    payload: ConversationCreate,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> Conversation:
    record = await orchestrator.repository.create_conversation(
        user_id=payload.user_id, title=payload.title
    )
    return Conversation(**record)


@router.get("/{conversation_id}/messages", response_model=list[StoredMessage])
async def list_messages(
    conversation_id: str,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> list[StoredMessage]:
    repository = orchestrator.repository
    if await repository.get_conversation(conversation_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await repository.get_messages(conversation_id)
    return [StoredMessage(**message) for message in messages]


__all__ = ["router"]
