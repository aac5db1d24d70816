"""Direct access to the web search and image generation collaborators."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from ..chat import ChatOrchestrator
from ..schemas.chat import ImageGenerationRequest, SearchRequest
from ..services.image_generation import VALID_QUALITIES, VALID_SIZES
from .chat import get_orchestrator

router = APIRouter(prefix="/api", tags=["tools"])

logger = logging.getLogger(__name__)


@router.post("/search")
async def web_search(
    payload: SearchRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return await orchestrator.search_service.search(payload.query)


@router.post("/image-generation")
async def image_generation(
    payload: ImageGenerationRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    if payload.size not in VALID_SIZES:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid size. Must be one of: {', '.join(VALID_SIZES)}",
        )
    if payload.quality not in VALID_QUALITIES:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid quality. Must be one of: {', '.join(VALID_QUALITIES)}",
        )

    result = await orchestrator.image_service.generate(
        payload.prompt, size=payload.size, quality=payload.quality
    )
    if "error" in result:
        logger.warning("Image generation failed: %s", result["error"])
        raise HTTPException(status_code=502, detail=result["error"])
    return result


__all__ = ["router"]
