"""Decide whether a user message needs tools or live web data."""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol, Sequence

from ..completions import CompletionClient, CompletionError

logger = logging.getLogger(__name__)

TOOL_TRIGGER_PATTERN = re.compile(
    r"\b(weather|stock|price|news|exchange rate|latest|today|current|draw|image|"
    r"picture|artwork|generate)\b",
    re.IGNORECASE,
)

_WEATHER_KEYWORDS = (
    "weather",
    "temperature",
    "temp",
    "forecast",
    "rain",
    "sunny",
    "cloudy",
    "storm",
)
_STOCK_KEYWORDS = (
    "stock",
    "price",
    "tesla",
    "tsla",
    "share",
    "market",
    "close",
    "closing",
    "nasdaq",
    "nyse",
)
_TIME_KEYWORDS = (
    "today",
    "current",
    "now",
    "latest",
    "recent",
    "this week",
    "this month",
    "last week",
    "yesterday",
)
_LOCATION_KEYWORDS = ("houston", "dallas", "austin", "in ", "city", "town")

INTENT_DETECTION_PROMPT = """You are an intent analyzer. Analyze the user's message to determine if web search is needed for current, real-time information.

DETECT "YES" for these SPECIFIC cases:
- Weather queries for ANY location (e.g., "weather in Houston", "how's the weather", "temperature today")
- Stock prices, market data, financial information with "today", "current", "latest"
- Currency/forex exchange rates
- Current news, events, developments
- Sports scores, schedules, recent results
- Restaurant reviews, business ratings, hours
- Real-time data that changes daily
- Any query with words: "today", "current", "latest", "now", "recent", "this week/month/year"

DETECT "NO" for:
- General knowledge, historical facts
- Programming help, code explanations
- Math calculations, concept explanations
- Creative writing, personal advice
- Greetings without specific information requests

Answer ONLY "YES" or "NO" - nothing else."""

INTENT_QUESTION = (
    "Based on the conversation context and my latest message, do I need web "
    "search to get current, accurate information?"
)


class IntentClassifier(Protocol):
    def needs_tools(self, message: str) -> bool:
        ...

    async def needs_web_search(
        self, message: str, history: Sequence[dict[str, Any]]
    ) -> bool:
        ...


def keyword_needs_web_search(message: str) -> bool:
    """Weather with a time/location hint, or stocks with a time hint."""

    lowered = message.lower()
    words = lowered.split()
    has_weather = any(k in word for k in _WEATHER_KEYWORDS for word in words)
    has_stock = any(k in word for k in _STOCK_KEYWORDS for word in words)
    has_time = any(k in lowered for k in _TIME_KEYWORDS)
    has_location = any(k in lowered for k in _LOCATION_KEYWORDS)
    return (has_weather and (has_time or has_location)) or (has_stock and has_time)


class KeywordIntentClassifier:
    """Pure keyword heuristics; no network access."""

    def needs_tools(self, message: str) -> bool:
        return bool(TOOL_TRIGGER_PATTERN.search(message or ""))

    async def needs_web_search(
        self, message: str, history: Sequence[dict[str, Any]]
    ) -> bool:
        return keyword_needs_web_search(message or "")


class ModelIntentClassifier(KeywordIntentClassifier):
    """Ask a small model for a YES/NO verdict, OR-ed with the keyword heuristic."""

    def __init__(
        self,
        client: CompletionClient,
        model: str,
        *,
        context_messages: int = 5,
    ) -> None:
        self._client = client
        self._model = model
        self._context_messages = context_messages

    async def needs_web_search(
        self, message: str, history: Sequence[dict[str, Any]]
    ) -> bool:
        message = message or ""
        context = [
            {
                "role": "assistant" if item.get("is_ai") else "user",
                "content": item.get("content") or "",
            }
            for item in list(history)[-self._context_messages :]
        ]
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": INTENT_DETECTION_PROMPT},
                *context,
                {"role": "user", "content": message},
                {"role": "user", "content": INTENT_QUESTION},
            ],
            "max_completion_tokens": 10,
        }
        try:
            body = await self._client.create_completion(payload)
        except CompletionError as exc:
            logger.warning("Web search intent detection failed: %s", exc.detail)
            return False

        verdict = self._client.extract_message_text(body).lower()
        needs_search = "yes" in verdict or keyword_needs_web_search(message)
        logger.debug(
            "Intent detection verdict=%r needs_web_search=%s", verdict, needs_search
        )
        return needs_search


__all__ = [
    "IntentClassifier",
    "KeywordIntentClassifier",
    "ModelIntentClassifier",
    "TOOL_TRIGGER_PATTERN",
    "keyword_needs_web_search",
]
