"""Memory records and emotional state."""

from traitcore.memory.emotions import EmotionalStateBook
from traitcore.memory.store import MemoryStore

__all__ = ["EmotionalStateBook", "MemoryStore"]
