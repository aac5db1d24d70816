"""Pydantic models for chat requests and responses."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChatAttachment(BaseModel):
    """An image or document the user attached to a message."""

    type: Literal["image", "document"]
    name: Optional[str] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    # Base64 payload for images, extracted text for documents.
    data: Optional[str] = None
    content: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChatRequest(BaseModel):
    """Incoming chat turn for either transport."""

    message: str = ""
    conversation_id: str = Field(alias="conversationId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    deep_research: bool = Field(default=False, alias="deepResearch")
    attachments: List[ChatAttachment] = Field(default_factory=list)
    generate_title: bool = Field(default=False, alias="generateTitle")
    allow_web_search: bool = Field(default=False, alias="allowWebSearch")
    enable_ai_web_search_detection: bool = Field(
        default=True, alias="enableAiWebSearchDetection"
    )
    turn_id: Optional[str] = Field(default=None, alias="turnId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="after")
    def _require_content(self) -> "ChatRequest":
        if not self.message.strip() and not self.attachments:
            raise ValueError("A message or at least one attachment is required")
        return self


class StoredMessage(BaseModel):
    id: int
    conversation_id: str
    content: str
    is_ai: bool
    image_urls: Optional[List[str]] = None
    turn_id: Optional[str] = None
    created_at: Optional[str] = None


class ThinkingSummary(BaseModel):
    tools_used: List[str] = Field(default_factory=list)
    status: Literal["completed", "degraded"] = "completed"


class ChatResponse(BaseModel):
    message: StoredMessage
    title: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    thinking: Optional[ThinkingSummary] = None


class ConversationCreate(BaseModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    title: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class Conversation(BaseModel):
    id: str
    user_id: Optional[str] = None
    title: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


FeedbackType = Literal[
    "helpful",
    "not_helpful",
    "too_detailed",
    "too_brief",
    "off_topic",
    "perfect",
]


class FeedbackRequest(BaseModel):
    message_id: int = Field(alias="messageId")
    user_id: str = Field(min_length=1, alias="userId")
    feedback_type: FeedbackType = Field(alias="feedbackType")
    feedback_text: Optional[str] = Field(
        default=None, max_length=500, alias="feedbackText"
    )

    model_config = ConfigDict(populate_by_name=True)


class FeedbackResponse(BaseModel):
    success: bool = True
    feedback_id: int


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)


class ImageGenerationRequest(BaseModel):
    prompt: str = Field(min_length=1)
    size: str = "1024x1024"
    quality: str = "standard"


__all__ = [
    "ChatAttachment",
    "ChatRequest",
    "ChatResponse",
    "Conversation",
    "ConversationCreate",
    "FeedbackRequest",
    "FeedbackResponse",
    "FeedbackType",
    "ImageGenerationRequest",
    "SearchRequest",
    "StoredMessage",
    "ThinkingSummary",
]
