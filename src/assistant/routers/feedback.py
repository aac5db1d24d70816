"""Message feedback route."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..chat import ChatOrchestrator
from ..schemas.chat import FeedbackRequest, FeedbackResponse
from ..services.rate_limiter import RateLimiter
from .chat import get_orchestrator

router = APIRouter(prefix="/api", tags=["feedback"])

logger = logging.getLogger(__name__)


def get_feedback_limiter(request: Request) -> RateLimiter:
    return request.app.state.feedback_rate_limiter


@router.post("/feedback", response_model=FeedbackResponse, status_code=201)
async def submit_feedback(
    payload: FeedbackRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
    limiter: RateLimiter = Depends(get_feedback_limiter),
) -> FeedbackResponse:
    if not await limiter.hit(payload.user_id):
        logger.info("Feedback rate limit hit for user %s", payload.user_id)
        raise HTTPException(
            status_code=429,
            detail="Too many feedback requests. Please try again later.",
        )

    repository = orchestrator.repository
    if await repository.get_message(payload.message_id) is None:
        raise HTTPException(status_code=404, detail="Message not found")

    feedback_text = payload.feedback_text.strip() if payload.feedback_text else None
    feedback_id = await repository.add_feedback(
        payload.message_id,
        payload.user_id,
        payload.feedback_type,
        feedback_text or None,
    )
    return FeedbackResponse(feedback_id=feedback_id)


__all__ = ["get_feedback_limiter", "router"]
