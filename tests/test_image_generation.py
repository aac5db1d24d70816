from __future__ import annotations

from typing import Any

import pytest

from assistant.completions import CompletionError
from assistant.services.image_generation import (
    ImageGenerationService,
    validate_quality,
    validate_size,
)


class DummyClient:
    def __init__(self, response: Any) -> None:
        self.response = response
        self.payloads: list[dict[str, Any]] = []

    async def generate_image(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.payloads.append(payload)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def test_invalid_size_and_quality_fall_back() -> None:
    assert validate_size("1792x1024") == "1792x1024"
    assert validate_size("640x480") == "1024x1024"
    assert validate_quality("hd") == "hd"
    assert validate_quality("ultra") == "standard"


@pytest.mark.anyio
async def test_generate_returns_url_and_settings(settings) -> None:
    client = DummyClient(
        {"data": [{"url": "https://img.example.com/a.png", "revised_prompt": "a tabby cat"}]}
    )
    service = ImageGenerationService(settings, client)  # type: ignore[arg-type]

    result = await service.generate("a cat", size="999x999", quality="hd")

    assert result == {
        "imageUrl": "https://img.example.com/a.png",
        "prompt": "a cat",
        "size": "1024x1024",
        "quality": "hd",
        "revised_prompt": "a tabby cat",
    }
    payload = client.payloads[0]
    assert payload["model"] == settings.image_model
    assert payload["n"] == 1
    assert payload["response_format"] == "url"


@pytest.mark.anyio
async def test_missing_url_is_an_error(settings) -> None:
    service = ImageGenerationService(settings, DummyClient({"data": []}))  # type: ignore[arg-type]

    result = await service.generate("a cat")

    assert result == {"error": "Failed to generate image - no URL returned"}


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("detail", "message"),
    [
        (
            {"code": "content_policy_violation"},
            "Image generation failed: Content policy violation. Please try a different prompt.",
        ),
        (
            "rejected by safety_system",
            "Image generation failed: Safety system rejection. Please try a different prompt.",
        ),
        ("rate limited", "Failed to generate image"),
    ],
)
async def test_upstream_failures_are_described(settings, detail: Any, message: str) -> None:
    service = ImageGenerationService(
        settings, DummyClient(CompletionError(400, detail))  # type: ignore[arg-type]
    )

    assert await service.generate("x") == {"error": message}
