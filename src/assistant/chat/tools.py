"""Tool schemas and execution for the buffered chat path."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence

from ..services.image_generation import DEFAULT_QUALITY, DEFAULT_SIZE

logger = logging.getLogger(__name__)

# Rough token estimate for serialized tool output: ~4 characters per token.
CHARS_PER_TOKEN = 4
SEARCH_TOKENS_LOWER_THRESHOLD = 6000
SEARCH_TOKENS_HIGH_THRESHOLD = 8000


class ToolName(str, Enum):
    WEB_SEARCH = "web_search"
    IMAGE_GENERATION = "image_generation"


class SearchProvider(Protocol):
    async def search(self, query: str) -> Mapping[str, Any]:
        ...


class ImageProvider(Protocol):
    async def generate(
        self, prompt: str, size: str = ..., quality: str = ...
    ) -> Mapping[str, Any]:
        ...


@dataclass(frozen=True)
class ToolInvocationRequest:
    call_id: str
    name: str
    arguments: str

    @classmethod
    def from_tool_call(cls, call: Mapping[str, Any], index: int) -> "ToolInvocationRequest":
        function = call.get("function")
        if not isinstance(function, Mapping):
            function = {}
        name = function.get("name")
        arguments = function.get("arguments")
        return cls(
            call_id=str(call.get("id") or f"call_{index}"),
            name=name if isinstance(name, str) else "",
            arguments=arguments if isinstance(arguments, str) else "",
        )


@dataclass
class ToolInvocationResult:
    call_id: str
    name: str
    payload: dict[str, Any]
    is_error: bool = False
    image_urls: list[str] = field(default_factory=list)

    def to_message(self) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.call_id,
            "content": json.dumps(self.payload),
        }


def image_generation_tool() -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": ToolName.IMAGE_GENERATION.value,
            "description": (
                "Generate an image ONLY when the user explicitly requests visual "
                'content like "draw", "create an image", "show me a picture", '
                '"generate artwork", etc. Do NOT use for data, news, or '
                "informational queries. Images are optimized for fast generation "
                "with standard quality."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "prompt": {
                        "type": "string",
                        "description": (
                            "The detailed image prompt describing what to generate."
                        ),
                    }
                },
                "required": ["prompt"],
            },
        },
    }


def web_search_tool(today: date | None = None) -> dict[str, Any]:
    current = (today or date.today()).isoformat()
    return {
        "type": "function",
        "function": {
            "name": ToolName.WEB_SEARCH.value,
            "description": (
                "Search the internet for current information including stock market "
                "data, currency exchange rates, news, restaurant reviews, business "
                "information, current events, prices, weather, or any real-time data "
                f"that may have changed recently. Today is {current}: for "
                "time-sensitive questions you MUST use this tool instead of training "
                "data."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "The search query to find relevant information",
                    }
                },
                "required": ["query"],
            },
        },
    }


def build_tool_schema(*, web_search: bool, today: date | None = None) -> list[dict[str, Any]]:
    """Image generation is always offered; web search only when enabled."""

    tools = [image_generation_tool()]
    if web_search:
        tools.append(web_search_tool(today))
    return tools


def estimate_tokens(value: Any) -> float:
    return len(json.dumps(value)) / CHARS_PER_TOKEN


def cap_search_results(results: Sequence[Any]) -> list[Any]:
    """Trim the result list so large payloads do not flood the context window."""

    capped = list(results)
    estimated = estimate_tokens(capped)
    if estimated > SEARCH_TOKENS_HIGH_THRESHOLD:
        capped = capped[:2]
    elif estimated > SEARCH_TOKENS_LOWER_THRESHOLD:
        capped = capped[:3]
    if len(capped) != len(results):
        logger.info(
            "Reduced search results from %d to %d (estimated %.0f tokens)",
            len(results),
            len(capped),
            estimated,
        )
    return capped


def _parse_arguments(raw: str, required: str) -> str:
    """Return the required string argument or raise ValueError."""

    if not raw or not raw.strip():
        raise ValueError("no arguments were provided")
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON arguments: {exc.msg}") from exc
    if not isinstance(arguments, dict):
        raise ValueError(
            f"expected a JSON object for arguments but received {type(arguments).__name__}"
        )
    value = arguments.get(required)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"missing required argument '{required}'")
    return value.strip()


class ToolExecutor:
    """Run one tool invocation against its collaborator."""

    def __init__(self, search: SearchProvider, images: ImageProvider) -> None:
        self._search = search
        self._images = images

    async def execute(self, request: ToolInvocationRequest) -> ToolInvocationResult:
        if request.name == ToolName.WEB_SEARCH.value:
            return await self._web_search(request)
        if request.name == ToolName.IMAGE_GENERATION.value:
            return await self._image_generation(request)
        logger.warning("Model requested unsupported tool %r", request.name)
        return self._error(request, f"Unsupported tool: {request.name or 'unknown'}")

    async def _web_search(self, request: ToolInvocationRequest) -> ToolInvocationResult:
        try:
            query = _parse_arguments(request.arguments, "query")
        except ValueError as exc:
            logger.warning("web_search argument failure for %s: %s", request.call_id, exc)
            return self._error(request, "Failed to perform web search", reason=str(exc))

        try:
            response = await self._search.search(query)
        except Exception as exc:
            logger.exception("web_search collaborator raised for %r", query)
            return self._error(request, "Failed to perform web search", reason=str(exc))

        results = response.get("results") if isinstance(response, Mapping) else None
        if not isinstance(results, list):
            results = []
        logger.info("Web search %r returned %d results", query, len(results))
        return ToolInvocationResult(
            call_id=request.call_id,
            name=request.name,
            payload={"search_results": cap_search_results(results)},
        )

    async def _image_generation(
        self, request: ToolInvocationRequest
    ) -> ToolInvocationResult:
        try:
            prompt = _parse_arguments(request.arguments, "prompt")
        except ValueError as exc:
            logger.warning(
                "image_generation argument failure for %s: %s", request.call_id, exc
            )
            return self._error(request, "Failed to generate image", reason=str(exc))

        # Fixed size and quality regardless of what the model asked for; latency wins.
        try:
            response = await self._images.generate(
                prompt, size=DEFAULT_SIZE, quality=DEFAULT_QUALITY
            )
        except Exception as exc:
            logger.exception("image_generation collaborator raised")
            return self._error(request, "Failed to generate image", reason=str(exc))

        image_url = response.get("imageUrl") if isinstance(response, Mapping) else None
        if not isinstance(image_url, str) or not image_url:
            error = response.get("error") if isinstance(response, Mapping) else None
            return self._error(request, str(error or "Failed to generate image"))

        return ToolInvocationResult(
            call_id=request.call_id,
            name=request.name,
            payload={
                "imageUrl": image_url,
                "prompt": response.get("prompt", prompt),
                "size": response.get("size", DEFAULT_SIZE),
                "quality": response.get("quality", DEFAULT_QUALITY),
                "revised_prompt": response.get("revised_prompt"),
            },
            image_urls=[image_url],
        )

    @staticmethod
    def _error(
        request: ToolInvocationRequest, message: str, *, reason: str | None = None
    ) -> ToolInvocationResult:
        payload: dict[str, Any] = {"error": message}
        if reason:
            payload["reason"] = reason
        return ToolInvocationResult(
            call_id=request.call_id,
            name=request.name,
            payload=payload,
            is_error=True,
        )


__all__ = [
    "SEARCH_TOKENS_HIGH_THRESHOLD",
    "SEARCH_TOKENS_LOWER_THRESHOLD",
    "ToolExecutor",
    "ToolInvocationRequest",
    "ToolInvocationResult",
    "ToolName",
    "build_tool_schema",
    "cap_search_results",
    "estimate_tokens",
    "image_generation_tool",
    "web_search_tool",
]
