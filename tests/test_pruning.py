from __future__ import annotations

import math

import pytest

from traitcore.cluster import ClusterEngine, PruningAdvisor
from traitcore.memory import MemoryStore
from traitcore.storage import KIND_MEMORY
from traitcore.traits import TraitLedger
from traitcore.types import MemoryEvent


def test_score_components(store, clock):
    memories = MemoryStore(store, clock=clock)
    ledger = TraitLedger(clock=clock)
    ledger.influence("trust", 0.2)
    m = memories.admit(MemoryEvent(content="kept promise", emotional_weight=0.4,
                                   trait_influences={"trust": 0.5}))

    metrics = PruningAdvisor(memories, ledger, clock=clock).evaluate(m)
    assert metrics.affected_traits == ["trust"]
    assert metrics.relevance_score == pytest.approx(0.5)
    assert metrics.emotional_impact == pytest.approx(0.4)
    assert metrics.trait_contribution == pytest.approx(0.0)
    assert metrics.temporal_decay == pytest.approx(1.0)
    assert metrics.overall_score == pytest.approx(0.5 * 0.3 + 0.4 * 0.2 + 0.2)


def test_scores_decay_with_age(store, clock):
    memories = MemoryStore(store, clock=clock)
    advisor = PruningAdvisor(memories, TraitLedger(clock=clock), clock=clock)
    m = memories.admit(MemoryEvent(content="aging", emotional_weight=1.0))
    later = clock.advance(hours=10)
    metrics = advisor.evaluate(m, later)
    assert metrics.emotional_impact == pytest.approx(math.exp(-0.5))
    assert metrics.temporal_decay == pytest.approx(math.exp(-1.0))


def test_prune_removes_only_weak_memories(store, clock):
    memories = MemoryStore(store, clock=clock)
    ledger = TraitLedger(clock=clock)
    engine = ClusterEngine(memories, ledger, clock=clock)

    old = memories.admit(MemoryEvent(content="stale", emotional_weight=0.0))
    engine.update_memory_cluster(old)
    clock.advance(hours=100)
    fresh = memories.admit(MemoryEvent(content="fresh", emotional_weight=0.5))
    engine.update_memory_cluster(fresh)

    assert engine.overall_score(memories.peek(old.id)) < 0.2
    assert engine.overall_score(memories.peek(fresh.id)) >= 0.2

    assert engine.prune(dry_run=True) == [old.id]
    assert old.id in memories

    assert engine.prune() == [old.id]
    assert old.id not in memories
    assert store.load(KIND_MEMORY, old.id) is None
    assert engine.cluster_of(old.id) is None
    assert fresh.id in memories
