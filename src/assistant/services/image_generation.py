"""Image generation collaborator backed by the upstream images API."""

from __future__ import annotations

import logging
from typing import Any

from ..completions import CompletionClient, CompletionError
from ..config import Settings

logger = logging.getLogger(__name__)

VALID_SIZES = ("1024x1024", "1792x1024", "1024x1792")
DEFAULT_SIZE = "1024x1024"
DEFAULT_QUALITY = "standard"
VALID_QUALITIES = ("standard", "hd")


def validate_size(size: Any) -> str:
    return size if size in VALID_SIZES else DEFAULT_SIZE


def validate_quality(quality: Any) -> str:
    return quality if quality in VALID_QUALITIES else DEFAULT_QUALITY


def _describe_failure(exc: CompletionError) -> str:
    detail = exc.detail
    if isinstance(detail, dict):
        text = " ".join(str(value) for value in detail.values())
    else:
        text = str(detail)
    if "content_policy_violation" in text:
        return (
            "Image generation failed: Content policy violation. "
            "Please try a different prompt."
        )
    if "safety_system" in text:
        return (
            "Image generation failed: Safety system rejection. "
            "Please try a different prompt."
        )
    return "Failed to generate image"


class ImageGenerationService:
    """Generate a single image and report either its URL or an error."""

    def __init__(self, settings: Settings, client: CompletionClient) -> None:
        self._settings = settings
        self._client = client

    async def generate(
        self,
        prompt: str,
        size: str = DEFAULT_SIZE,
        quality: str = DEFAULT_QUALITY,
    ) -> dict[str, Any]:
        validated_size = validate_size(size)
        validated_quality = validate_quality(quality)
        logger.info(
            "[Image Generation] prompt=%r size=%s quality=%s",
            prompt[:100],
            validated_size,
            validated_quality,
        )

        try:
            response = await self._client.generate_image(
                {
                    "model": self._settings.image_model,
                    "prompt": prompt,
                    "n": 1,
                    "size": validated_size,
                    "quality": validated_quality,
                    "response_format": "url",
                    "style": "natural",
                }
            )
        except CompletionError as exc:
            logger.error("[Image Generation] Error: %s", exc.detail)
            return {"error": _describe_failure(exc)}

        data = response.get("data")
        first = data[0] if isinstance(data, list) and data else {}
        image_url = first.get("url") if isinstance(first, dict) else None
        if not isinstance(image_url, str) or not image_url:
            logger.error("[Image Generation] No image URL returned")
            return {"error": "Failed to generate image - no URL returned"}

        return {
            "imageUrl": image_url,
            "prompt": prompt,
            "size": validated_size,
            "quality": validated_quality,
            "revised_prompt": first.get("revised_prompt"),
        }


__all__ = [
    "DEFAULT_QUALITY",
    "DEFAULT_SIZE",
    "ImageGenerationService",
    "VALID_QUALITIES",
    "VALID_SIZES",
    "validate_quality",
    "validate_size",
]
