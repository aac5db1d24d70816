from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator, Iterator

import httpx
import pytest
from fastapi.testclient import TestClient
from sse_starlette import sse

from assistant.app import create_app
from assistant.chat import ChatOrchestrator
from assistant.chat.framing import ContentEvent, DoneEvent, parse_chunk
from assistant.client import GENERIC_RETRY_PROMPT, RequestOrchestrator
from assistant.completions import CompletionClient, CompletionError
from assistant.routers.chat import STREAM_ERROR_MESSAGE
from assistant.services.rate_limiter import RateLimiter

IMAGE_URL = "https://oaidalleapiprodscus.blob.core.windows.net/private/cat.png?sig=2"


class DummyUpstream:
    def __init__(self, title_model: str) -> None:
        self.title_model = title_model
        self.deltas = ["Hello", " world"]
        self.completions: list[Any] = []

    async def stream_completion(self, payload: dict[str, Any]) -> AsyncGenerator[str, None]:
        for delta in self.deltas:
            yield delta

    async def create_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        if payload["model"] == self.title_model:
            return {"choices": [{"message": {"content": "Small Talk"}}]}
        item = self.completions.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    @staticmethod
    def extract_message(payload: dict[str, Any]) -> dict[str, Any]:
        return CompletionClient.extract_message(payload)

    @staticmethod
    def extract_message_text(payload: dict[str, Any]) -> str:
        return CompletionClient.extract_message_text(payload)

    async def aclose(self) -> None:
        return None


class DummySearch:
    configured = True

    async def search(self, query: str) -> dict[str, Any]:
        return {"results": [{"title": query, "link": "https://example.com", "snippet": "ok"}]}


class DummyImages:
    def __init__(self) -> None:
        self.error: str | None = None

    async def generate(self, prompt: str, size: str = "", quality: str = "") -> dict[str, Any]:
        if self.error:
            return {"error": self.error}
        return {"imageUrl": IMAGE_URL, "prompt": prompt, "size": size, "quality": quality}


@pytest.fixture(autouse=True)
def reset_sse_app_status() -> Iterator[None]:
    # Each TestClient runs its own event loop; drop the exit event bound to the last one.
    status = getattr(sse, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        status.should_exit_event = None
    yield


@pytest.fixture
def upstream(settings) -> DummyUpstream:
    return DummyUpstream(settings.title_model)


@pytest.fixture
def images() -> DummyImages:
    return DummyImages()


@pytest.fixture
def client(settings, upstream, images) -> Iterator[TestClient]:
    orchestrator = ChatOrchestrator(
        settings,
        client=upstream,  # type: ignore[arg-type]
        search=DummySearch(),  # type: ignore[arg-type]
        images=images,  # type: ignore[arg-type]
    )
    app = create_app(settings, orchestrator=orchestrator, configure_logging=False)
    with TestClient(app) as test_client:
        yield test_client


def _new_conversation(client: TestClient) -> str:
    response = client.post("/api/conversations", json={"userId": "user-1"})
    assert response.status_code == 201
    return response.json()["id"]


def test_stream_endpoint_emits_content_then_done(client: TestClient) -> None:
    conversation_id = _new_conversation(client)

    response = client.post(
        "/api/chat/stream",
        json={"message": "hello", "conversationId": conversation_id, "turnId": "t-1"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    parsed = parse_chunk(response.text.replace("\r\n", "\n"))
    assert parsed.events == [
        ContentEvent("Hello"),
        ContentEvent(" world"),
        DoneEvent("Small Talk"),
        DoneEvent(),
    ]

    turn = client.get("/api/turns/t-1")
    assert turn.status_code == 200
    assert turn.json()["content"] == "Hello world"
    assert turn.json()["is_ai"] is True

    messages = client.get(f"/api/conversations/{conversation_id}/messages").json()
    assert [(m["is_ai"], m["content"]) for m in messages] == [
        (False, "hello"),
        (True, "Hello world"),
    ]


def test_stream_endpoint_hides_upstream_failure_detail(
    client: TestClient, upstream: DummyUpstream
) -> None:
    conversation_id = _new_conversation(client)

    async def failing(payload: dict[str, Any]) -> AsyncGenerator[str, None]:
        raise CompletionError(503, "service unavailable")
        yield ""  # pragma: no cover

    upstream.stream_completion = failing  # type: ignore[method-assign]

    response = client.post(
        "/api/chat/stream", json={"message": "hi", "conversationId": conversation_id}
    )

    assert "service unavailable" not in response.text
    assert '"type": "error"' in response.text
    assert STREAM_ERROR_MESSAGE in response.text
    parsed = parse_chunk(response.text.replace("\r\n", "\n"))
    assert parsed.events == [DoneEvent()]


def test_stream_failure_reaches_client_as_failed_turn(
    client: TestClient, upstream: DummyUpstream
) -> None:
    conversation_id = _new_conversation(client)

    async def rate_limited(payload: dict[str, Any]) -> AsyncGenerator[str, None]:
        raise CompletionError(
            429, {"message": "Rate limit reached for org-abc", "code": "rate_limit_exceeded"}
        )
        yield ""  # pragma: no cover

    upstream.stream_completion = rate_limited  # type: ignore[method-assign]

    def forward(request: httpx.Request) -> httpx.Response:
        served = client.post(
            request.url.path,
            content=request.content,
            headers={"Content-Type": "application/json"},
        )
        return httpx.Response(
            served.status_code,
            content=served.content,
            headers={"Content-Type": served.headers["content-type"]},
        )

    async def no_sleep(seconds: float) -> None:
        return None

    async def send() -> Any:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(forward))
        requests = RequestOrchestrator(
            "http://testserver", http_client=http_client, sleep=no_sleep
        )
        try:
            return await requests.send(conversation_id, "hello there")
        finally:
            await http_client.aclose()

    result = asyncio.run(send())

    assert result.failed is True
    assert result.text == GENERIC_RETRY_PROMPT
    assert "Rate limit" not in result.text


def test_stream_endpoint_unknown_conversation(client: TestClient) -> None:
    response = client.post(
        "/api/chat/stream", json={"message": "hi", "conversationId": "nope"}
    )

    assert response.status_code == 404


def test_turn_lookup_is_404_until_persisted(client: TestClient) -> None:
    assert client.get("/api/turns/unknown").status_code == 404


def test_buffered_chat_returns_persisted_message(
    client: TestClient, upstream: DummyUpstream
) -> None:
    conversation_id = _new_conversation(client)
    upstream.completions.append(
        {
            "choices": [{"message": {"role": "assistant", "content": "Paris."}}],
            "usage": {"total_tokens": 7},
        }
    )

    response = client.post(
        "/api/chat",
        json={
            "message": "capital of france?",
            "conversationId": conversation_id,
            "turnId": "t-2",
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["message"]["content"] == "Paris."
    assert body["message"]["turn_id"] == "t-2"
    assert body["title"] == "Small Talk"
    assert body["usage"] == {"total_tokens": 7}
    assert body["thinking"] == {"tools_used": [], "status": "completed"}


def test_buffered_chat_upstream_failure_is_502(
    client: TestClient, upstream: DummyUpstream
) -> None:
    conversation_id = _new_conversation(client)
    upstream.completions.append(CompletionError(500, "boom"))

    response = client.post(
        "/api/chat", json={"message": "hi", "conversationId": conversation_id}
    )

    assert response.status_code == 502


def test_buffered_chat_rejects_empty_message(client: TestClient) -> None:
    conversation_id = _new_conversation(client)

    response = client.post(
        "/api/chat", json={"message": "   ", "conversationId": conversation_id}
    )

    assert response.status_code == 422


def test_buffered_chat_unknown_conversation(client: TestClient) -> None:
    response = client.post("/api/chat", json={"message": "hi", "conversationId": "nope"})

    assert response.status_code == 404


def test_feedback_flow_and_rate_limit(client: TestClient, upstream: DummyUpstream) -> None:
    conversation_id = _new_conversation(client)
    upstream.completions.append({"choices": [{"message": {"content": "Sure."}}]})
    message_id = client.post(
        "/api/chat", json={"message": "hi", "conversationId": conversation_id}
    ).json()["message"]["id"]
    client.app.state.feedback_rate_limiter = RateLimiter(1, 60)  # type: ignore[attr-defined]

    payload = {
        "messageId": message_id,
        "userId": "user-1",
        "feedbackType": "helpful",
        "feedbackText": "  nice  ",
    }
    created = client.post("/api/feedback", json=payload)
    assert created.status_code == 201
    assert created.json()["success"] is True
    assert isinstance(created.json()["feedback_id"], int)

    limited = client.post("/api/feedback", json=payload)
    assert limited.status_code == 429


def test_feedback_validation(client: TestClient) -> None:
    bad_type = client.post(
        "/api/feedback",
        json={"messageId": 1, "userId": "u", "feedbackType": "meh"},
    )
    assert bad_type.status_code == 422

    too_long = client.post(
        "/api/feedback",
        json={"messageId": 1, "userId": "u", "feedbackType": "helpful", "feedbackText": "x" * 501},
    )
    assert too_long.status_code == 422

    missing = client.post(
        "/api/feedback",
        json={"messageId": 999, "userId": "u", "feedbackType": "helpful"},
    )
    assert missing.status_code == 404


def test_search_endpoint(client: TestClient) -> None:
    response = client.post("/api/search", json={"query": "python"})

    assert response.status_code == 200
    assert response.json()["results"][0]["title"] == "python"


def test_image_generation_endpoint(client: TestClient, images: DummyImages) -> None:
    ok = client.post("/api/image-generation", json={"prompt": "a cat"})
    assert ok.status_code == 200
    assert ok.json()["imageUrl"] == IMAGE_URL

    bad_size = client.post("/api/image-generation", json={"prompt": "a cat", "size": "10x10"})
    assert bad_size.status_code == 422

    images.error = "Failed to generate image"
    failed = client.post("/api/image-generation", json={"prompt": "a cat"})
    assert failed.status_code == 502


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "chat_model": "gpt-5",
        "web_search_configured": True,
    }
