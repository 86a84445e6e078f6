"""Session: one agent's memories, traits, resonances and clusters behind a single lock."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from traitcore.cluster.engine import ClusterEngine
from traitcore.config import Config
from traitcore.exceptions import NotReadyError, PersistenceError
from traitcore.memory.emotions import EmotionalStateBook
from traitcore.memory.store import MemoryStore
from traitcore.resonance.engine import ResonanceEngine
from traitcore.storage.record_store import RecordStore, SQLiteRecordStore
from traitcore.traits.interactions import TraitInteractionAnalyzer
from traitcore.traits.ledger import TraitLedger
from traitcore.traits.trends import TrendAnalyzer
from traitcore.types import (
    EmotionalPattern,
    EmotionalResonance,
    EmotionalState,
    InitResult,
    MemoryConnection,
    MemoryEvent,
    SelfReflection,
    TraitBaseline,
)
from traitcore.utils import mean, new_id, utcnow

logger = logging.getLogger(__name__)


class Session:
    """Aggregate owning every component for one conversational agent.

    All components share one ``RLock``. Nothing may be called before
    ``initialize()`` has succeeded.
    """

    def __init__(
        self,
        store: RecordStore,
        config: Config | None = None,
        clock: Callable[[], datetime] = utcnow,
        session_id: str | None = None,
    ) -> None:
        self.id = session_id or new_id()
        self.config = config or Config()
        self.store = store
        self.clock = clock
        self.lock = threading.RLock()
        self._ready = False

        self.memories = MemoryStore(store, self.config.memory, clock=clock, lock=self.lock)
        self.emotions = EmotionalStateBook(store, clock=clock, lock=self.lock)
        self.ledger = TraitLedger(
            self.config.traits,
            analyzer=TrendAnalyzer(self.config.trends, clock=clock),
            clock=clock,
            lock=self.lock,
        )
        self.interactions = TraitInteractionAnalyzer(self.ledger, self.memories, clock=clock, lock=self.lock)
        self.resonance = ResonanceEngine(
            self.memories, self.ledger, self.config.resonance, clock=clock, lock=self.lock
        )
        self.clusters = ClusterEngine(
            self.memories,
            self.ledger,
            self.config.cluster,
            self.config.pruning,
            clock=clock,
            lock=self.lock,
        )

    # --- Lifecycle ---

    def initialize(self) -> InitResult:
        """Reload memories, trait baselines and emotional states from the record store."""
        try:
            memories = self.memories.load_all()
            traits = self.ledger.load_all(self.store)
            states = self.emotions.load_all()
        except Exception as e:
            logger.error("session %s failed to initialize: %s", self.id, e, exc_info=True)
            return InitResult(ok=False, error=str(e))
        for memory in self.memories.admission_order():
            self.clusters.update_memory_cluster(memory)
        self._ready = True
        logger.info("session %s ready: %d memories, %d traits, %d emotional states",
                    self.id, memories, traits, states)
        return InitResult(
            ok=True,
            memories_loaded=memories,
            traits_loaded=traits,
            emotional_states_loaded=states,
        )

    @property
    def ready(self) -> bool:
        return self._ready

    def flush(self) -> dict[str, int]:
        """Save everything in one record-store transaction; roll back on any failure."""
        self._require_ready()
        self.store.begin()
        try:
            counts = {
                "memories": self.memories.save_all(self.store),
                "traits": self.ledger.save_all(self.store),
                "emotional_states": self.emotions.save_all(self.store),
            }
            self.store.commit()
        except Exception as e:
            self.store.rollback()
            logger.error("session %s flush rolled back: %s", self.id, e)
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(f"Flush failed for session {self.id}: {e}") from e
        return counts

    def _require_ready(self) -> None:
        if not self._ready:
            raise NotReadyError(f"Session {self.id} used before initialize()")

    # --- Memories ---

    def admit(self, memory: MemoryEvent) -> MemoryEvent:
        """Store, band, then reinforce every influenced trait with the memory id as evidence."""
        self._require_ready()
        stored = self.memories.admit(memory)
        self.clusters.update_memory_cluster(stored)
        for trait, influence in sorted(stored.trait_influences.items()):
            self.ledger.reinforce(trait, influence, evidence=stored.id)
        for trait in sorted(stored.trait_influences):
            self.interactions.process(trait)
        return stored

    def get(self, memory_id: str) -> MemoryEvent | None:
        self._require_ready()
        return self.memories.get(memory_id)

    def update(self, memory: MemoryEvent) -> MemoryEvent:
        self._require_ready()
        return self.memories.update(memory)

    def remove(self, memory_id: str) -> None:
        self._require_ready()
        self.memories.remove(memory_id)
        self.clusters.discard(memory_id)

    def search(self, term: str) -> list[MemoryEvent]:
        self._require_ready()
        return self.memories.search(term)

    def update_memory_weights_with_emotion(self, factor: float = 0.5) -> int:
        """Raise each memory's importance by ``emotional_weight * factor``. Returns memories updated."""
        self._require_ready()
        updated = 0
        for memory in self.memories.all():
            try:
                self.memories.adjust(memory.id, importance=memory.importance + memory.emotional_weight * factor)
            except Exception:
                logger.warning("importance boost failed for memory %s", memory.id, exc_info=True)
                continue
            updated += 1
        return updated

    # --- Traits ---

    def influence(self, trait: str, amount: float, evidence: str = "") -> TraitBaseline:
        self._require_ready()
        return self.ledger.influence(trait, amount, evidence)

    def decay(self, trait: str, elapsed_hours: float) -> TraitBaseline:
        self._require_ready()
        return self.ledger.decay(trait, elapsed_hours)

    def snapshot(self, trait: str) -> TraitBaseline | None:
        self._require_ready()
        return self.ledger.snapshot(trait)

    # --- Emotional states ---

    def save_emotional_state(self, state: EmotionalState) -> EmotionalState:
        self._require_ready()
        return self.emotions.save(state)

    def load_emotional_state(self, state_id: str) -> EmotionalState | None:
        self._require_ready()
        return self.emotions.load(state_id)

    # --- Resonance / clusters ---

    def trigger_resonance(self, trigger: str, intensity: float) -> EmotionalResonance:
        self._require_ready()
        return self.resonance.trigger(trigger, intensity)

    def update_associations(self) -> list[MemoryConnection]:
        """Rebuild connections and record the strong ones as core patterns."""
        self._require_ready()
        connections = self.clusters.update_memory_associations()
        self.resonance.recognize_patterns(connections, self.config.cluster.strong_connection_threshold)
        return connections

    def update_emotional_connections(self) -> int:
        self._require_ready()
        return self.clusters.update_emotional_connections()

    def prune(self, now: datetime | None = None, dry_run: bool = False) -> list[str]:
        self._require_ready()
        return self.clusters.prune(now, dry_run=dry_run)

    def tick(self, now: datetime | None = None) -> list[EmotionalPattern]:
        """Scheduled maintenance: resonance decay, trait decay, hot-set eviction.

        Each step is isolated from the others' failures. Safe to run back to
        back or to skip.
        """
        self._require_ready()
        now = now or self.clock()
        patterns: list[EmotionalPattern] = []
        try:
            patterns = self.resonance.tick(now)
        except Exception:
            logger.warning("resonance tick failed", exc_info=True)
        try:
            self.ledger.decay_all(now)
        except Exception:
            logger.warning("trait decay sweep failed", exc_info=True)
        try:
            self.memories.evict_if_over_capacity()
        except Exception:
            logger.warning("cache eviction failed", exc_info=True)
        return patterns

    # --- Reflection ---

    def growth_insights(self, now: datetime | None = None) -> list[SelfReflection]:
        """Recent-mood and trait-evolution reflections, most confident first."""
        self._require_ready()
        now = now or self.clock()
        insights: list[SelfReflection] = []

        recent = self.memories.recent(now=now)
        if recent:
            avg = mean([m.emotional_weight for m in recent])
            insights.append(SelfReflection(
                type="self_reflection",
                content=f"Recent emotional state: {avg:.3f}",
                confidence=0.8,
                timestamp=now,
            ))

        lines = ["Trait evolution analysis:"]
        for name in self.ledger.names():
            baseline = self.ledger.snapshot(name)
            if baseline is not None:
                lines.append(f"{name}: {baseline.current_value:.3f} (target: {baseline.target_value:.3f})")
        insights.append(SelfReflection(
            type="long_term_reflection",
            content="\n".join(lines),
            confidence=0.9,
            timestamp=now,
        ))

        insights.sort(key=lambda r: r.confidence, reverse=True)
        return insights


class SessionManager:
    """Hands out independent sessions; each gets its own record store."""

    def __init__(
        self,
        config: Config | None = None,
        store_factory: Callable[[str], RecordStore] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or Config()
        self.clock = clock
        self._store_factory = store_factory or self._sqlite_store
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def _sqlite_store(self, session_id: str) -> RecordStore:
        self.config.ensure_dirs()
        return SQLiteRecordStore(self.config.db_path.parent / f"{session_id}.db")

    def open(self, session_id: str) -> Session:
        """Return the live session for ``session_id``, creating and initializing it if needed."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session
            session = Session(self._store_factory(session_id), self.config,
                              clock=self.clock, session_id=session_id)
            result = session.initialize()
            if not result.ok:
                raise PersistenceError(f"Session {session_id} failed to initialize: {result.error}")
            self._sessions[session_id] = session
            return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def close(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        close = getattr(session.store, "close", None)
        if close is not None:
            close()
        return True

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)
