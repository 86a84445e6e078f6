"""Persistence collaborator."""

from traitcore.storage.record_store import (
    ENTITY_KINDS,
    KIND_EMOTIONAL_STATE,
    KIND_MEMORY,
    KIND_TRAIT_BASELINE,
    RecordStore,
    SQLiteRecordStore,
)

__all__ = [
    "ENTITY_KINDS",
    "KIND_EMOTIONAL_STATE",
    "KIND_MEMORY",
    "KIND_TRAIT_BASELINE",
    "RecordStore",
    "SQLiteRecordStore",
]
