from __future__ import annotations

from datetime import datetime

import aiosqlite
import pytest

from assistant.repository import ChatRepository


@pytest.fixture
async def repository(tmp_path):
    repo = ChatRepository(tmp_path / "chat.db")
    await repo.initialize()
    await repo.create_conversation(user_id="user-1", conversation_id="conv-1")
    try:
        yield repo
    finally:
        await repo.close()


@pytest.mark.anyio
async def test_create_and_fetch_conversation(repository):
    created = await repository.create_conversation(user_id="user-2", title="Trip")

    fetched = await repository.get_conversation(created["id"])

    assert fetched is not None
    assert fetched["user_id"] == "user-2"
    assert fetched["title"] == "Trip"
    assert datetime.fromisoformat(fetched["created_at"]).tzinfo is not None
    assert await repository.get_conversation("missing") is None


@pytest.mark.anyio
async def test_messages_keep_insertion_order(repository):
    await repository.add_message("conv-1", "question", is_ai=False)
    await repository.add_message("conv-1", "answer", is_ai=True)

    messages = await repository.get_messages("conv-1")

    assert [(m["content"], m["is_ai"]) for m in messages] == [
        ("question", False),
        ("answer", True),
    ]


@pytest.mark.anyio
async def test_image_urls_roundtrip(repository):
    stored = await repository.add_message(
        "conv-1", "Here you go.", is_ai=True, image_urls=["https://img.example.com/a.png"]
    )

    fetched = await repository.get_message(stored["id"])

    assert fetched is not None
    assert fetched["image_urls"] == ["https://img.example.com/a.png"]
    assert fetched == {**stored, "created_at": fetched["created_at"]}


@pytest.mark.anyio
async def test_recent_messages_are_chronological(repository):
    for index in range(5):
        await repository.add_message("conv-1", f"m{index}", is_ai=bool(index % 2))

    recent = await repository.get_recent_messages("conv-1", 3)

    assert [m["content"] for m in recent] == ["m2", "m3", "m4"]


@pytest.mark.anyio
async def test_lookup_by_turn_id(repository):
    await repository.add_message("conv-1", "reply", is_ai=True, turn_id="turn-7")

    found = await repository.get_message_by_turn("turn-7")

    assert found is not None
    assert found["content"] == "reply"
    assert await repository.get_message_by_turn("turn-8") is None


@pytest.mark.anyio
async def test_turn_id_is_unique(repository):
    await repository.add_message("conv-1", "first", is_ai=True, turn_id="dup")

    with pytest.raises(aiosqlite.IntegrityError):
        await repository.add_message("conv-1", "second", is_ai=True, turn_id="dup")


@pytest.mark.anyio
async def test_touch_conversation_sets_title(repository):
    before = await repository.get_conversation("conv-1")

    await repository.touch_conversation("conv-1", title="Weather Talk")
    await repository.touch_conversation("conv-1")

    after = await repository.get_conversation("conv-1")
    assert after is not None and before is not None
    assert after["title"] == "Weather Talk"
    assert after["updated_at"] >= before["updated_at"]


@pytest.mark.anyio
async def test_feedback_is_recorded(repository):
    message = await repository.add_message("conv-1", "answer", is_ai=True)

    first = await repository.add_feedback(message["id"], "user-1", "helpful", "great")
    second = await repository.add_feedback(message["id"], "user-1", "too_brief")

    assert second > first
