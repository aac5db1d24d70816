"""Drive one buffered model turn through optional tool execution.

States::

    AWAITING_MODEL_RESPONSE -> (no tool calls) ----------------------> DONE
                            -> EXECUTING_TOOLS -> AWAITING_FOLLOWUP -> DONE

Only the initial completion may raise; tool failures become error payloads
and a failed follow-up falls back to the text the model produced before it
asked for tools.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence

from .sanitize import sanitize_response
from .tools import ToolExecutor, ToolInvocationRequest, ToolInvocationResult

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_FALLBACK = "Sorry, I couldn't generate a response. Please try again."

FOLLOWUP_PARAMS: dict[str, Any] = {
    "max_completion_tokens": 6000,
    "reasoning_effort": "low",
    "verbosity": "low",
}


class TurnState(str, Enum):
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    EXECUTING_TOOLS = "executing_tools"
    AWAITING_FOLLOWUP = "awaiting_followup"
    DONE = "done"


class CompletionBackend(Protocol):
    async def create_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        ...

    @classmethod
    def extract_message(cls, payload: Mapping[str, Any]) -> dict[str, Any]:
        ...

    @classmethod
    def extract_message_text(cls, payload: Mapping[str, Any]) -> str:
        ...


@dataclass
class TurnOutcome:
    text: str
    image_urls: list[str] = field(default_factory=list)
    tool_results: list[ToolInvocationResult] = field(default_factory=list)
    usage: dict[str, Any] | None = None
    states: list[TurnState] = field(default_factory=list)
    followup_failed: bool = False

    @property
    def tools_used(self) -> list[str]:
        return [result.name for result in self.tool_results if result.name]


def extract_tool_calls(message: Mapping[str, Any]) -> list[dict[str, Any]]:
    raw_calls = message.get("tool_calls")
    if not isinstance(raw_calls, Sequence) or isinstance(raw_calls, str):
        return []
    calls: list[dict[str, Any]] = []
    for call in raw_calls:
        if not isinstance(call, Mapping):
            continue
        if call.get("type", "function") != "function":
            continue
        calls.append(dict(call))
    return calls


class ToolCallOrchestrator:
    """Run the initial completion, its tool calls, and the single follow-up."""

    def __init__(
        self,
        client: CompletionBackend,
        executor: ToolExecutor,
        *,
        followup_params: Mapping[str, Any] | None = None,
    ) -> None:
        self._client = client
        self._executor = executor
        self._followup_params = dict(followup_params or FOLLOWUP_PARAMS)

    async def run(self, payload: dict[str, Any]) -> TurnOutcome:
        outcome = TurnOutcome(text="")
        self._enter(outcome, TurnState.AWAITING_MODEL_RESPONSE)

        body = await self._client.create_completion(payload)
        usage = body.get("usage")
        outcome.usage = usage if isinstance(usage, dict) else None

        message = self._client.extract_message(body)
        initial_text = self._client.extract_message_text(body)
        tool_calls = extract_tool_calls(message)

        if not tool_calls:
            return self._finish(outcome, initial_text)

        self._enter(outcome, TurnState.EXECUTING_TOOLS)
        logger.info("Model requested %d tool call(s)", len(tool_calls))
        for index, call in enumerate(tool_calls):
            request = ToolInvocationRequest.from_tool_call(call, index)
            result = await self._executor.execute(request)
            outcome.tool_results.append(result)
            outcome.image_urls.extend(result.image_urls)
            logger.info(
                "Tool %s (%s) finished error=%s",
                request.name,
                request.call_id,
                result.is_error,
            )

        self._enter(outcome, TurnState.AWAITING_FOLLOWUP)
        followup_payload = self._build_followup(payload, message, tool_calls, outcome)
        final_text = initial_text
        try:
            followup_body = await self._client.create_completion(followup_payload)
        except Exception as exc:
            logger.error("Follow-up completion failed; using pre-tool text: %s", exc)
            outcome.followup_failed = True
        else:
            followup_text = self._client.extract_message_text(followup_body)
            if followup_text:
                final_text = followup_text
            else:
                logger.warning("Follow-up completion returned no text")

        return self._finish(outcome, final_text)

    def _build_followup(
        self,
        payload: Mapping[str, Any],
        message: Mapping[str, Any],
        tool_calls: list[dict[str, Any]],
        outcome: TurnOutcome,
    ) -> dict[str, Any]:
        messages = list(payload.get("messages") or [])
        content = message.get("content")
        messages.append(
            {
                "role": "assistant",
                "content": content if isinstance(content, str) else "",
                "tool_calls": tool_calls,
            }
        )
        messages.extend(result.to_message() for result in outcome.tool_results)

        followup: dict[str, Any] = {"model": payload.get("model"), "messages": messages}
        followup.update(self._followup_params)
        return followup

    def _finish(self, outcome: TurnOutcome, text: str) -> TurnOutcome:
        self._enter(outcome, TurnState.DONE)
        cleaned = sanitize_response(text or "", outcome.image_urls)
        outcome.text = cleaned or EMPTY_RESPONSE_FALLBACK
        return outcome

    @staticmethod
    def _enter(outcome: TurnOutcome, state: TurnState) -> None:
        logger.debug("Tool turn state -> %s", state.value)
        outcome.states.append(state)


__all__ = [
    "EMPTY_RESPONSE_FALLBACK",
    "FOLLOWUP_PARAMS",
    "ToolCallOrchestrator",
    "TurnOutcome",
    "TurnState",
    "extract_tool_calls",
]
