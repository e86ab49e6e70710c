"""Conversation state: takeover tracking and human handoff."""

from . import schemas
from .handoff import HumanHandoff, InMemoryHandoffQueue
from .models import (
    Conversation,
    ConversationMode,
    HandoffItem,
    TakeoverOutcome,
    TakeoverStatus,
)
from .takeover import (
    ConversationStateStore,
    InMemoryConversationStateStore,
    TakeoverTracker,
)

__all__ = [
    "Conversation",
    "ConversationMode",
    "ConversationStateStore",
    "HandoffItem",
    "HumanHandoff",
    "InMemoryConversationStateStore",
    "InMemoryHandoffQueue",
    "TakeoverOutcome",
    "TakeoverStatus",
    "TakeoverTracker",
    "schemas",
]
