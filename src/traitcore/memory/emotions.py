"""Emotional state records persisted under the ``emotional_state`` entity kind."""

from __future__ import annotations

import math
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable

from traitcore.exceptions import NotFoundError, PersistenceError, ValidationError
from traitcore.storage.record_store import KIND_EMOTIONAL_STATE, RecordStore
from traitcore.types import EMOTION_CHANNELS, EmotionalState
from traitcore.utils import clamp, hours_between, iso_str, parse_iso, utcnow

NEUTRAL = 0.5


class EmotionalStateBook:
    """CRUD over emotional states, write-through like MemoryStore."""

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime] = utcnow,
        lock: threading.RLock | None = None,
        relax_rate: float = 0.01,
    ) -> None:
        self.store = store
        self.clock = clock
        self.relax_rate = relax_rate
        self._lock = lock or threading.RLock()
        self._states: dict[str, EmotionalState] = {}

    def save(self, state: EmotionalState) -> EmotionalState:
        record = self._normalized(state)
        self._write_through(record)
        with self._lock:
            self._states[record.id] = record
        return replace(record)

    def update(self, state: EmotionalState) -> EmotionalState:
        with self._lock:
            if state.id not in self._states:
                raise NotFoundError(f"Emotional state {state.id} not found")
        return self.save(state)

    def load(self, state_id: str) -> EmotionalState | None:
        with self._lock:
            cached = self._states.get(state_id)
        try:
            fields = self.store.load(KIND_EMOTIONAL_STATE, state_id)
        except PersistenceError:
            if cached is not None:
                return replace(cached)
            raise
        if fields is None:
            return replace(cached) if cached is not None else None
        state = self._fields_to_state(fields)
        with self._lock:
            self._states[state.id] = state
        return replace(state)

    def delete(self, state_id: str) -> bool:
        try:
            deleted = self.store.delete(KIND_EMOTIONAL_STATE, state_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to delete emotional state {state_id}: {e}") from e
        with self._lock:
            deleted = self._states.pop(state_id, None) is not None or deleted
        return deleted

    def relax(self, state_id: str, now: datetime | None = None) -> EmotionalState:
        """Pull every channel back toward neutral by ``exp(-rate * hours)``."""
        with self._lock:
            current = self._states.get(state_id)
        if current is None:
            raise NotFoundError(f"Emotional state {state_id} not found")
        now = now or self.clock()
        factor = math.exp(-self.relax_rate * hours_between(current.timestamp, now))
        relaxed = replace(current, timestamp=now)
        for channel in EMOTION_CHANNELS:
            value = getattr(current, channel)
            setattr(relaxed, channel, NEUTRAL + (value - NEUTRAL) * factor)
        return self.save(relaxed)

    def all(self) -> list[EmotionalState]:
        with self._lock:
            return [replace(self._states[k]) for k in sorted(self._states)]

    def load_all(self) -> int:
        count = 0
        for state_id in self.store.keys(KIND_EMOTIONAL_STATE):
            fields = self.store.load(KIND_EMOTIONAL_STATE, state_id)
            if fields is None:
                continue
            state = self._fields_to_state(fields)
            with self._lock:
                self._states[state.id] = state
            count += 1
        return count

    def save_all(self, store: RecordStore) -> int:
        rows = self.all()
        for state in rows:
            store.save(KIND_EMOTIONAL_STATE, state.id, self._state_to_fields(state))
        return len(rows)

    def _write_through(self, state: EmotionalState) -> None:
        try:
            self.store.save(KIND_EMOTIONAL_STATE, state.id, self._state_to_fields(state))
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save emotional state {state.id}: {e}") from e

    @staticmethod
    def _normalized(state: EmotionalState) -> EmotionalState:
        if not state.id:
            raise ValidationError("Emotional state id must be non-empty")
        record = replace(state)
        for channel in EMOTION_CHANNELS:
            value = getattr(record, channel)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"Channel {channel} must be a finite number")
            setattr(record, channel, clamp(float(value)))
        return record

    @staticmethod
    def _state_to_fields(state: EmotionalState) -> dict[str, Any]:
        fields: dict[str, Any] = {"id": state.id, "timestamp": iso_str(state.timestamp)}
        for channel in EMOTION_CHANNELS:
            fields[channel] = getattr(state, channel)
        return fields

    @staticmethod
    def _fields_to_state(fields: dict[str, Any]) -> EmotionalState:
        return EmotionalState(
            id=fields["id"],
            timestamp=parse_iso(fields["timestamp"]),
            **{c: float(fields[c]) for c in EMOTION_CHANNELS},
        )
