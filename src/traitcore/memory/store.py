"""MemoryStore: canonical memory records, a bounded LRU hot set and a keyword/tag index."""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Any, Callable

from traitcore.config import MemoryConfig
from traitcore.exceptions import NotFoundError, PersistenceError, ValidationError
from traitcore.storage.record_store import KIND_MEMORY, RecordStore
from traitcore.types import MemoryEvent
from traitcore.utils import clamp, iso_str, json_dumps, json_loads, parse_iso, utcnow

logger = logging.getLogger(__name__)


class MemoryStore:
    """Owns every admitted memory for one session.

    Writes go to the record store first; the in-memory state is only touched
    once persistence has confirmed.
    """

    def __init__(
        self,
        store: RecordStore,
        config: MemoryConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        lock: threading.RLock | None = None,
    ) -> None:
        self.store = store
        self.config = config or MemoryConfig()
        self.clock = clock
        self._lock = lock or threading.RLock()
        self._memories: dict[str, MemoryEvent] = {}
        self._index: dict[str, set[str]] = {}
        self._cache: dict[str, datetime] = {}  # id -> last access
        self._seq: dict[str, int] = {}  # id -> admission sequence, persisted
        self._next_seq = 0

    # --- Core operations ---

    def admit(self, memory: MemoryEvent) -> MemoryEvent:
        """Persist and admit a new memory. Returns the stored copy."""
        self._validate(memory)
        with self._lock:
            if memory.id in self._memories:
                raise ValidationError(f"Memory {memory.id} already admitted; use update()")
            seq = self._next_seq
            self._next_seq += 1
        now = self.clock()
        record = memory.copy()
        record.importance = clamp(record.importance)
        record.emotional_weight = clamp(record.emotional_weight, -1.0, 1.0)
        record.created_at = now
        record.updated_at = now

        self._write_through(record, seq)

        with self._lock:
            self._memories[record.id] = record
            self._seq[record.id] = seq
            self._index_memory(record)
            self._cache[record.id] = now
        return record.copy()

    def get(self, memory_id: str) -> MemoryEvent | None:
        with self._lock:
            mem = self._memories.get(memory_id)
            if mem is not None:
                self._cache[memory_id] = self.clock()
                return mem.copy()

        fields = self.store.load(KIND_MEMORY, memory_id)
        if fields is None:
            return None
        mem = self._fields_to_memory(fields)
        with self._lock:
            # Another writer may have admitted it while we were loading.
            existing = self._memories.setdefault(mem.id, mem)
            if existing is mem:
                self._index_memory(mem)
                self._assign_seq(mem.id, fields.get("seq"))
            self._cache[mem.id] = self.clock()
            return existing.copy()

    def update(self, memory: MemoryEvent) -> MemoryEvent:
        """Apply new importance / emotional weight for an admitted memory.

        Every other field is immutable once admitted.
        """
        self._validate(memory)
        with self._lock:
            current = self._memories.get(memory.id)
            if current is None:
                raise NotFoundError(f"Memory {memory.id} not found")
            if (memory.content != current.content
                    or memory.context != current.context
                    or memory.trait_influences != current.trait_influences
                    or set(memory.tags) != current.tags):
                raise ValidationError(
                    f"Memory {memory.id}: only importance and emotional_weight may change"
                )
            record = current.copy()
        record.importance = clamp(memory.importance)
        record.emotional_weight = clamp(memory.emotional_weight, -1.0, 1.0)
        record.updated_at = self.clock()

        with self._lock:
            seq = self._seq.get(record.id)
        self._write_through(record, seq)

        with self._lock:
            if memory.id not in self._memories:
                raise NotFoundError(f"Memory {memory.id} removed during update")
            self._memories[record.id] = record
            self._cache[record.id] = record.updated_at
        return record.copy()

    def adjust(self, memory_id: str, importance: float | None = None,
               emotional_weight: float | None = None) -> MemoryEvent:
        """Shortcut for other components: change the two mutable fields."""
        with self._lock:
            current = self._memories.get(memory_id)
            if current is None:
                raise NotFoundError(f"Memory {memory_id} not found")
            record = current.copy()
        if importance is not None:
            record.importance = importance
        if emotional_weight is not None:
            record.emotional_weight = emotional_weight
        return self.update(record)

    def remove(self, memory_id: str) -> None:
        """Delete from storage, hot set and index as one step."""
        with self._lock:
            if memory_id not in self._memories:
                raise NotFoundError(f"Memory {memory_id} not found")
        try:
            self.store.delete(KIND_MEMORY, memory_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to delete memory {memory_id}: {e}") from e
        with self._lock:
            mem = self._memories.pop(memory_id, None)
            self._cache.pop(memory_id, None)
            self._seq.pop(memory_id, None)
            if mem is not None:
                self._unindex_memory(mem)

    def reindex(self) -> None:
        """Rebuild the keyword/tag index from scratch."""
        with self._lock:
            self._index = {}
            for mem in self._memories.values():
                self._index_memory(mem)

    def evict_if_over_capacity(self) -> list[str]:
        """Drop least-recently-accessed entries from the hot set until within capacity.

        Ties on access time go to the smaller id. Returns the evicted ids.
        """
        evicted: list[str] = []
        with self._lock:
            while len(self._cache) > self.config.max_cache_size:
                victim = min(self._cache.items(), key=lambda kv: (kv[1], kv[0]))[0]
                del self._cache[victim]
                evicted.append(victim)
        if evicted:
            logger.debug("evicted %d memories from hot set", len(evicted))
        return evicted

    # --- Queries ---

    def peek(self, memory_id: str) -> MemoryEvent | None:
        """Like get(), but leaves the access time alone and never hits storage."""
        with self._lock:
            mem = self._memories.get(memory_id)
            return mem.copy() if mem is not None else None

    def search(self, term: str) -> list[MemoryEvent]:
        """Memories whose content word or tag equals ``term``."""
        with self._lock:
            ids = sorted(self._index.get(term, ()))
            return [self._memories[i].copy() for i in ids if i in self._memories]

    def all(self) -> list[MemoryEvent]:
        """Every admitted memory, ordered by id."""
        with self._lock:
            return [self._memories[i].copy() for i in sorted(self._memories)]

    def recent(self, hours: float | None = None, now: datetime | None = None) -> list[MemoryEvent]:
        """Short-term set: memories created within ``hours`` of ``now``, oldest first."""
        hours = self.config.short_term_window_hours if hours is None else hours
        now = now or self.clock()
        cutoff = now - timedelta(hours=hours)
        with self._lock:
            rows = [m.copy() for m in self._memories.values() if m.created_at >= cutoff]
        rows.sort(key=lambda m: (m.created_at, m.id))
        return rows

    def with_trait(self, trait: str) -> list[MemoryEvent]:
        with self._lock:
            return [self._memories[i].copy() for i in sorted(self._memories)
                    if trait in self._memories[i].trait_influences]

    def cached_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._cache)

    def index_terms(self) -> dict[str, set[str]]:
        with self._lock:
            return {k: set(v) for k, v in self._index.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._memories)

    def __contains__(self, memory_id: object) -> bool:
        with self._lock:
            return memory_id in self._memories

    # --- Bulk load / persistence helpers ---

    def load_all(self) -> int:
        """Populate from the record store without writing back. Returns count."""
        loaded: list[tuple[MemoryEvent, Any]] = []
        for memory_id in self.store.keys(KIND_MEMORY):
            fields = self.store.load(KIND_MEMORY, memory_id)
            if fields is None:
                continue
            try:
                loaded.append((self._fields_to_memory(fields), fields.get("seq")))
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping unreadable memory record %s", memory_id, exc_info=True)
        # Records without a sequence go after those with one, by creation time.
        loaded.sort(key=lambda row: (not isinstance(row[1], int), row[1] if isinstance(row[1], int) else 0,
                                     row[0].created_at, row[0].id))
        with self._lock:
            for mem, seq in loaded:
                self._memories[mem.id] = mem
                self._assign_seq(mem.id, seq)
        self.reindex()
        return len(loaded)

    def save_all(self, store: RecordStore) -> int:
        """Write every memory to ``store`` (caller owns the transaction)."""
        with self._lock:
            rows = [(m.copy(), self._seq.get(m.id)) for m in self._memories.values()]
        for mem, seq in rows:
            store.save(KIND_MEMORY, mem.id, self._memory_to_fields(mem, seq))
        return len(rows)

    def admission_order(self) -> list[MemoryEvent]:
        """Every memory in the order it was admitted, across reloads."""
        with self._lock:
            ids = sorted(self._memories, key=lambda i: (self._seq.get(i, self._next_seq), i))
            return [self._memories[i].copy() for i in ids]

    # --- Internals ---

    def _assign_seq(self, memory_id: str, seq: Any) -> None:
        if isinstance(seq, int) and seq >= 0:
            self._seq[memory_id] = seq
            self._next_seq = max(self._next_seq, seq + 1)
        else:
            self._seq[memory_id] = self._next_seq
            self._next_seq += 1

    def _write_through(self, record: MemoryEvent, seq: int | None = None) -> None:
        try:
            self.store.save(KIND_MEMORY, record.id, self._memory_to_fields(record, seq))
        except PersistenceError:
            raise
        except Exception as e:
            logger.error("write-through for memory %s failed: %s", record.id, e)
            raise PersistenceError(f"Failed to save memory {record.id}: {e}") from e

    def _terms(self, mem: MemoryEvent) -> set[str]:
        min_len = self.config.index_min_word_length
        terms = {w for w in mem.content.split() if len(w) > min_len}
        terms.update(mem.tags)
        return terms

    def _index_memory(self, mem: MemoryEvent) -> None:
        for term in self._terms(mem):
            self._index.setdefault(term, set()).add(mem.id)

    def _unindex_memory(self, mem: MemoryEvent) -> None:
        for term in self._terms(mem):
            ids = self._index.get(term)
            if ids is None:
                continue
            ids.discard(mem.id)
            if not ids:
                del self._index[term]

    @staticmethod
    def _validate(memory: MemoryEvent) -> None:
        if not memory.id or not isinstance(memory.id, str):
            raise ValidationError("Memory id must be a non-empty string")
        if not isinstance(memory.content, str):
            raise ValidationError("Memory content must be a string")
        for name in ("importance", "emotional_weight"):
            value = getattr(memory, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"Memory {name} must be a finite number")
        for trait, influence in memory.trait_influences.items():
            if not trait:
                raise ValidationError("Trait names must be non-empty")
            if not isinstance(influence, (int, float)) or not math.isfinite(influence):
                raise ValidationError(f"Influence for trait {trait!r} must be finite")

    # --- Record converters ---

    @staticmethod
    def _memory_to_fields(mem: MemoryEvent, seq: int | None = None) -> dict[str, Any]:
        return {
            "seq": seq,
            "id": mem.id,
            "content": mem.content,
            "context": mem.context,
            "importance": mem.importance,
            "emotional_weight": mem.emotional_weight,
            "trait_influences": json_dumps(mem.trait_influences),
            "tags": json_dumps(sorted(mem.tags)),
            "created_at": iso_str(mem.created_at),
            "updated_at": iso_str(mem.updated_at),
        }

    @staticmethod
    def _fields_to_memory(fields: dict[str, Any]) -> MemoryEvent:
        return MemoryEvent(
            id=fields["id"],
            content=fields["content"],
            context=fields.get("context", ""),
            importance=float(fields["importance"]),
            emotional_weight=float(fields["emotional_weight"]),
            trait_influences={k: float(v) for k, v in json_loads(fields["trait_influences"]).items()},
            tags=set(json_loads(fields["tags"])),
            created_at=parse_iso(fields["created_at"]),
            updated_at=parse_iso(fields["updated_at"]),
        )
