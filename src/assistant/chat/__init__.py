"""Chat turn orchestration, streaming frames, and tool calling."""

from .orchestrator import ChatOrchestrator, ConversationNotFoundError

__all__ = ["ChatOrchestrator", "ConversationNotFoundError"]
