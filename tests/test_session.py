from __future__ import annotations

import math

import pytest

from traitcore.config import Config
from traitcore.exceptions import NotReadyError, PersistenceError
from traitcore.session import Session, SessionManager
from traitcore.storage import KIND_MEMORY
from traitcore.types import EmotionalState, MemoryEvent


class _BatchFailingStore:
    """Writes fine outside a batch, fails inside one."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.depth = 0
        self.rolled_back = False

    def save(self, kind, record_id, fields):
        if self.depth:
            raise PersistenceError("batch write refused")
        self.inner.save(kind, record_id, fields)

    def load(self, kind, record_id):
        return self.inner.load(kind, record_id)

    def delete(self, kind, record_id):
        return self.inner.delete(kind, record_id)

    def keys(self, kind):
        return self.inner.keys(kind)

    def begin(self):
        self.depth += 1
        self.inner.begin()

    def commit(self):
        self.depth -= 1
        self.inner.commit()

    def rollback(self):
        self.depth = 0
        self.rolled_back = True
        self.inner.rollback()


class _UnreadableStore(_BatchFailingStore):
    def keys(self, kind):
        raise PersistenceError("database is locked")


def _session(store, clock) -> Session:
    session = Session(store, clock=clock, session_id="s1")
    assert session.initialize().ok
    return session


def test_calls_before_initialize_raise(store, clock):
    session = Session(store, clock=clock)
    assert not session.ready
    with pytest.raises(NotReadyError):
        session.admit(MemoryEvent(content="too early"))
    with pytest.raises(NotReadyError):
        session.tick()
    with pytest.raises(NotReadyError):
        session.snapshot("trust")


def test_initialize_reports_failure(store, clock):
    session = Session(_UnreadableStore(store), clock=clock)
    result = session.initialize()
    assert not result.ok
    assert "locked" in result.error
    assert not session.ready


def test_admit_bands_and_reinforces_traits(store, clock):
    session = _session(store, clock)
    a = session.admit(MemoryEvent(content="A", emotional_weight=0.6,
                                  trait_influences={"trust": 0.5}, tags={"x"}))
    b = session.admit(MemoryEvent(content="B", emotional_weight=0.65,
                                  trait_influences={"trust": 0.4}, tags={"x"}))

    assert session.clusters.cluster_of(a.id).id == session.clusters.cluster_of(b.id).id
    trust = session.snapshot("trust")
    assert trust.current_value == pytest.approx(0.5 * 0.2 + 0.4 * 0.2)
    assert trust.supporting_memories == [a.id, b.id]

    connections = session.update_associations()
    assert connections[0].strength >= 0.7 - 1e-9
    assert session.resonance.core_patterns == []

    assert [m.id for m in session.search("x")] == sorted([a.id, b.id])


def test_remove_drops_cluster_membership(store, clock):
    session = _session(store, clock)
    m = session.admit(MemoryEvent(content="short lived"))
    session.remove(m.id)
    assert session.get(m.id) is None
    assert session.clusters.clusters == []


def test_flush_and_reload(store, clock):
    session = _session(store, clock)
    m = session.admit(MemoryEvent(content="a sunny walk", emotional_weight=0.3,
                                  trait_influences={"calm": 0.5}))
    session.influence("calm", 0.2, evidence="manual")
    session.ledger.configure("calm", target_value=0.8)
    state = session.save_emotional_state(EmotionalState(happiness=0.9))

    counts = session.flush()
    assert counts == {"memories": 1, "traits": 1, "emotional_states": 1}

    reloaded = Session(store, clock=clock)
    result = reloaded.initialize()
    assert result.ok
    assert (result.memories_loaded, result.traits_loaded, result.emotional_states_loaded) == (1, 1, 1)
    assert reloaded.get(m.id).content == "a sunny walk"
    assert reloaded.snapshot("calm").current_value == pytest.approx(session.snapshot("calm").current_value)
    assert reloaded.snapshot("calm").target_value == pytest.approx(0.8)
    assert reloaded.load_emotional_state(state.id).happiness == 0.9
    assert reloaded.clusters.cluster_of(m.id) is not None


def test_flush_rolls_back_on_failure(store, clock):
    failing = _BatchFailingStore(store)
    session = _session(failing, clock)
    session.admit(MemoryEvent(content="written through"))
    with pytest.raises(PersistenceError):
        session.flush()
    assert failing.rolled_back
    assert len(store.keys(KIND_MEMORY)) == 1


def test_tick_runs_every_sweep(store, clock):
    session = _session(store, clock)
    session.influence("calm", 0.6)
    session.trigger_resonance("storm", 0.9)
    patterns = session.tick(clock.advance(hours=30))
    assert [p.pattern_type for p in patterns] == ["storm"]
    assert session.resonance.active == []
    assert session.snapshot("calm").current_value == pytest.approx(0.6 * math.exp(-0.02 * 30 / 24))
    # second run at the same instant changes nothing
    assert session.tick(clock.now) == []
    assert session.snapshot("calm").current_value == pytest.approx(0.6 * math.exp(-0.02 * 30 / 24))


def test_tick_evicts_hot_set(store, clock):
    config = Config()
    config.memory.max_cache_size = 1
    session = Session(store, config, clock=clock)
    session.initialize()
    first = session.admit(MemoryEvent(content="first"))
    clock.advance(seconds=1)
    second = session.admit(MemoryEvent(content="second"))
    session.tick()
    assert session.memories.cached_ids() == [second.id]
    assert session.get(first.id) is not None


def test_importance_boost_from_emotion(store, clock):
    session = _session(store, clock)
    happy = session.admit(MemoryEvent(content="happy", importance=0.4, emotional_weight=0.6))
    sad = session.admit(MemoryEvent(content="sad", importance=0.4, emotional_weight=-0.6))
    assert session.update_memory_weights_with_emotion() == 2
    assert session.get(happy.id).importance == pytest.approx(0.7)
    assert session.get(sad.id).importance == pytest.approx(0.1)
    assert store.load(KIND_MEMORY, happy.id)["importance"] == pytest.approx(0.7)


def test_growth_insights(store, clock):
    session = _session(store, clock)
    session.admit(MemoryEvent(content="one", emotional_weight=0.2, trait_influences={"trust": 1.0}))
    session.admit(MemoryEvent(content="two", emotional_weight=0.4))
    insights = session.growth_insights()
    assert [i.type for i in insights] == ["long_term_reflection", "self_reflection"]
    assert insights[0].confidence == 0.9
    assert "trust: 0.200" in insights[0].content
    assert insights[1].content == "Recent emotional state: 0.300"

    clock.advance(hours=48)
    assert [i.type for i in session.growth_insights()] == ["long_term_reflection"]


def test_session_manager_keeps_sessions_independent(tmp_path, clock):
    config = Config(data_dir=tmp_path)
    manager = SessionManager(config, clock=clock)
    alice = manager.open("alice")
    bob = manager.open("bob")
    alice.admit(MemoryEvent(content="alice only"))

    assert len(alice.memories) == 1
    assert len(bob.memories) == 0
    assert manager.open("alice") is alice
    assert manager.ids() == ["alice", "bob"]

    assert manager.close("alice") is True
    assert manager.close("alice") is False
    assert manager.get("alice") is None


def test_reload_bands_in_admission_order(store, clock):
    session = _session(store, clock)
    # ids sort differently from arrival; "a" first would push "m" out of the band
    for memory_id, weight in [("z", 0.6), ("a", 0.69), ("m", 0.52)]:
        session.admit(MemoryEvent(content=f"memory {memory_id}", emotional_weight=weight, id=memory_id))
    before = sorted(sorted(c.memory_ids) for c in session.clusters.clusters)
    assert before == [["a", "m", "z"]]

    reloaded = Session(store, clock=clock)
    assert reloaded.initialize().ok
    after = sorted(sorted(c.memory_ids) for c in reloaded.clusters.clusters)
    assert after == before
    assert reloaded.clusters.cluster_of("z").anchor_weight == 0.6
