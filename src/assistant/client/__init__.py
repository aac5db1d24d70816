"""Client for the chat service: transport selection and request orchestration."""

from .session import (
    GENERIC_RETRY_PROMPT,
    PROCESSING_PLACEHOLDER,
    ChatRequestError,
    RequestOrchestrator,
    SendResult,
)
from .transport import FeatureFlags, TransportDecision, select_transport

__all__ = [
    "ChatRequestError",
    "FeatureFlags",
    "GENERIC_RETRY_PROMPT",
    "PROCESSING_PLACEHOLDER",
    "RequestOrchestrator",
    "SendResult",
    "TransportDecision",
    "select_transport",
]
