"""Conversation history stores."""

from llmverse.history.file import FileConversationStore
from llmverse.history.store import ConversationStore, InMemoryConversationStore

__all__ = ["ConversationStore", "FileConversationStore", "InMemoryConversationStore"]
