"""Choose between the streaming and buffered chat transports."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ..chat.intent import IntentClassifier, KeywordIntentClassifier

logger = logging.getLogger(__name__)


class TransportDecision(str, Enum):
    STREAM = "stream"
    BUFFERED = "buffered"


@dataclass(frozen=True)
class FeatureFlags:
    deep_research: bool = False
    web_search: bool = False


_DEFAULT_CLASSIFIER = KeywordIntentClassifier()


def select_transport(
    message: str,
    flags: FeatureFlags | None = None,
    classifier: IntentClassifier | None = None,
) -> TransportDecision:
    """Stream only when web search is off and nothing suggests tool use."""

    flags = flags or FeatureFlags()
    classifier = classifier or _DEFAULT_CLASSIFIER
    if flags.web_search:
        decision = TransportDecision.BUFFERED
    elif classifier.needs_tools(message):
        decision = TransportDecision.BUFFERED
    else:
        decision = TransportDecision.STREAM
    logger.debug("Transport for %r -> %s", message[:60], decision.value)
    return decision


__all__ = ["FeatureFlags", "TransportDecision", "select_transport"]
