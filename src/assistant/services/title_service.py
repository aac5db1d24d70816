"""Lightweight LLM title generation for new conversations."""

from __future__ import annotations

import logging

from ..completions import CompletionClient, CompletionError
from ..config import Settings

logger = logging.getLogger(__name__)

TITLE_SYSTEM_PROMPT = (
    "Generate a brief 3-5 word title for this conversation based on the user's "
    "message. Respond with ONLY the title text, no quotes, no extra formatting."
)
MAX_TITLE_LENGTH = 50


async def generate_title(
    settings: Settings, client: CompletionClient, message: str
) -> str | None:
    """Ask the title model for a short conversation title.

    Returns the title string, or None on failure.
    """
    if not message or not message.strip():
        return None

    payload = {
        "model": settings.title_model,
        "messages": [
            {"role": "system", "content": TITLE_SYSTEM_PROMPT},
            {"role": "user", "content": message},
        ],
        "max_completion_tokens": 20,
    }
    try:
        body = await client.create_completion(payload)
    except CompletionError as exc:
        logger.warning("Failed to generate conversation title: %s", exc.detail)
        return None

    title = client.extract_message_text(body)
    # Reject empty or absurdly long titles
    if not title or len(title) >= MAX_TITLE_LENGTH:
        logger.info("Discarding generated title %r", title)
        return None
    return title


__all__ = ["MAX_TITLE_LENGTH", "TITLE_SYSTEM_PROMPT", "generate_title"]
