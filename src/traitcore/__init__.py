"""traitcore: evolving behavioural state for a conversational agent."""

__version__ = "0.1.0"

from traitcore.cluster import ClusterEngine
from traitcore.config import Config
from traitcore.exceptions import (
    NotFoundError,
    NotReadyError,
    PersistenceError,
    TraitCoreError,
    ValidationError,
)
from traitcore.memory import EmotionalStateBook, MemoryStore
from traitcore.resonance import ResonanceEngine
from traitcore.session import Session, SessionManager
from traitcore.storage import RecordStore, SQLiteRecordStore
from traitcore.traits import TraitLedger, TrendAnalyzer

__all__ = [
    "__version__",
    "ClusterEngine",
    "Config",
    "EmotionalStateBook",
    "MemoryStore",
    "NotFoundError",
    "NotReadyError",
    "PersistenceError",
    "RecordStore",
    "ResonanceEngine",
    "SQLiteRecordStore",
    "Session",
    "SessionManager",
    "TraitCoreError",
    "TraitLedger",
    "TrendAnalyzer",
    "ValidationError",
]
