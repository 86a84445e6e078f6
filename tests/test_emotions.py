from __future__ import annotations

import math

import pytest

from traitcore.exceptions import NotFoundError, PersistenceError, ValidationError
from traitcore.memory import EmotionalStateBook
from traitcore.storage import KIND_EMOTIONAL_STATE
from traitcore.types import EmotionalState


class _BrokenReads:
    def __init__(self, inner) -> None:
        self.inner = inner
        self.broken = False

    def save(self, kind, record_id, fields):
        self.inner.save(kind, record_id, fields)

    def load(self, kind, record_id):
        if self.broken:
            raise PersistenceError("connection lost")
        return self.inner.load(kind, record_id)

    def delete(self, kind, record_id):
        return self.inner.delete(kind, record_id)

    def keys(self, kind):
        return self.inner.keys(kind)

    def begin(self):
        self.inner.begin()

    def commit(self):
        self.inner.commit()

    def rollback(self):
        self.inner.rollback()


def test_save_clamps_and_persists(store, clock):
    book = EmotionalStateBook(store, clock=clock)
    state = book.save(EmotionalState(happiness=1.4, fear=-0.2, timestamp=clock.now))
    assert state.happiness == 1.0
    assert state.fear == 0.0
    assert store.load(KIND_EMOTIONAL_STATE, state.id)["happiness"] == 1.0

    with pytest.raises(ValidationError):
        book.save(EmotionalState(anger=float("nan")))
    with pytest.raises(NotFoundError):
        book.update(EmotionalState())


def test_relax_pulls_toward_neutral(store, clock):
    book = EmotionalStateBook(store, clock=clock)
    state = book.save(EmotionalState(happiness=0.9, sadness=0.1, timestamp=clock.now))
    relaxed = book.relax(state.id, clock.advance(hours=50))
    factor = math.exp(-0.01 * 50)
    assert relaxed.happiness == pytest.approx(0.5 + 0.4 * factor)
    assert relaxed.sadness == pytest.approx(0.5 - 0.4 * factor)
    assert relaxed.trust == pytest.approx(0.5)
    assert relaxed.timestamp == clock.now


def test_load_falls_back_to_cache(store, clock):
    flaky = _BrokenReads(store)
    book = EmotionalStateBook(flaky, clock=clock)
    state = book.save(EmotionalState(trust=0.8))
    flaky.broken = True
    assert book.load(state.id).trust == 0.8
    with pytest.raises(PersistenceError):
        book.load("never-saved")


def test_reload_and_delete(store, clock):
    book = EmotionalStateBook(store, clock=clock)
    state = book.save(EmotionalState(surprise=0.7))

    other = EmotionalStateBook(store, clock=clock)
    assert other.load_all() == 1
    assert other.all()[0].surprise == 0.7

    assert other.delete(state.id) is True
    assert store.load(KIND_EMOTIONAL_STATE, state.id) is None
    assert other.load(state.id) is None
