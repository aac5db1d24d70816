from __future__ import annotations

from typing import Any, Sequence

from assistant.client.transport import FeatureFlags, TransportDecision, select_transport


class AlwaysTools:
    def needs_tools(self, message: str) -> bool:
        return True

    async def needs_web_search(self, message: str, history: Sequence[dict[str, Any]]) -> bool:
        return False


def test_plain_message_streams() -> None:
    assert select_transport("Tell me a joke") is TransportDecision.STREAM


def test_tool_keywords_force_buffered() -> None:
    assert select_transport("What's the weather today?") is TransportDecision.BUFFERED
    assert select_transport("Please DRAW a dragon") is TransportDecision.BUFFERED


def test_web_search_flag_forces_buffered() -> None:
    flags = FeatureFlags(web_search=True)

    assert select_transport("Tell me a joke", flags) is TransportDecision.BUFFERED


def test_deep_research_alone_does_not_change_transport() -> None:
    flags = FeatureFlags(deep_research=True)

    assert select_transport("Explain entropy", flags) is TransportDecision.STREAM


def test_custom_classifier_is_consulted() -> None:
    assert select_transport("hello", classifier=AlwaysTools()) is TransportDecision.BUFFERED
