"""ClusterEngine: emotional-weight banding and pairwise memory connections."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from traitcore.cluster.pruning import PruningAdvisor
from traitcore.config import ClusterConfig, PruningConfig
from traitcore.exceptions import NotReadyError
from traitcore.memory.store import MemoryStore
from traitcore.traits.ledger import TraitLedger
from traitcore.types import MemoryCluster, MemoryConnection, MemoryEvent
from traitcore.utils import clamp, utcnow

logger = logging.getLogger(__name__)


class ClusterEngine:
    """Groups memories into emotional bands and links similar pairs.

    Cluster membership only grows, except when a memory is removed from the
    store. Connections are rebuilt wholesale by ``update_memory_associations``.
    """

    def __init__(
        self,
        memories: MemoryStore,
        ledger: TraitLedger | None = None,
        config: ClusterConfig | None = None,
        pruning_config: PruningConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        lock: threading.RLock | None = None,
    ) -> None:
        self.memories = memories
        self.config = config or ClusterConfig()
        self.clock = clock
        self._lock = lock or threading.RLock()
        self._clusters: list[MemoryCluster] = []
        self._membership: dict[str, str] = {}  # memory id -> cluster id
        self._connections: list[MemoryConnection] = []
        self.pruning = (
            PruningAdvisor(memories, ledger, pruning_config, clock=clock)
            if ledger is not None else None
        )

    # --- Banding ---

    def update_memory_cluster(self, memory: MemoryEvent) -> MemoryCluster:
        """Join the first cluster whose anchor weight is within the band, else start one."""
        with self._lock:
            existing = self._membership.get(memory.id)
            if existing is not None:
                return self._copy(self._by_id(existing))

            target = None
            for cluster in self._clusters:
                if abs(cluster.anchor_weight - memory.emotional_weight) < self.config.band_width:
                    target = cluster
                    break
            if target is None:
                target = MemoryCluster(anchor_weight=memory.emotional_weight)
                self._clusters.append(target)

            self._absorb(target, memory)
            self._membership[memory.id] = target.id
            return self._copy(target)

    def discard(self, memory_id: str) -> None:
        """Forget a removed memory; empty clusters disappear."""
        with self._lock:
            cluster_id = self._membership.pop(memory_id, None)
            self._connections = [
                c for c in self._connections
                if memory_id not in (c.source_id, c.target_id)
            ]
            if cluster_id is None:
                return
            cluster = self._by_id(cluster_id)
            cluster.memory_ids = [m for m in cluster.memory_ids if m != memory_id]
            if not cluster.memory_ids:
                self._clusters = [c for c in self._clusters if c.id != cluster_id]
                return
            before = list(cluster.memory_ids)
            members = [self.memories.peek(m) for m in before]
            self._rebuild(cluster, [m for m in members if m is not None])
            for gone in set(before) - set(cluster.memory_ids):
                self._membership.pop(gone, None)
            if not cluster.memory_ids:
                self._clusters = [c for c in self._clusters if c.id != cluster_id]

    def cluster_of(self, memory_id: str) -> MemoryCluster | None:
        with self._lock:
            cluster_id = self._membership.get(memory_id)
            return self._copy(self._by_id(cluster_id)) if cluster_id else None

    @property
    def clusters(self) -> list[MemoryCluster]:
        with self._lock:
            return [self._copy(c) for c in self._clusters]

    # --- Connections ---

    def score_pair(self, a: MemoryEvent, b: MemoryEvent) -> tuple[float, list[str], bool]:
        """(strength, shared traits, emotionally close) for one pair."""
        cfg = self.config
        shared_traits = sorted(set(a.trait_influences) & set(b.trait_influences))
        shared_tags = set(a.tags) & set(b.tags)
        close = abs(a.emotional_weight - b.emotional_weight) < cfg.emotional_proximity
        strength = (
            cfg.shared_trait_weight * len(shared_traits)
            + cfg.shared_tag_weight * len(shared_tags)
            + (cfg.emotional_similarity_weight if close else 0.0)
        )
        return strength, shared_traits, close

    def update_memory_associations(self) -> list[MemoryConnection]:
        """Rebuild every connection from scratch. O(n^2) in the memory count."""
        memories = self.memories.all()
        connections: list[MemoryConnection] = []
        for i, a in enumerate(memories):
            for b in memories[i + 1:]:
                strength, shared_traits, close = self.score_pair(a, b)
                if strength <= self.config.connection_threshold:
                    continue
                connections.append(MemoryConnection(
                    source_memory=a.content,
                    target_memory=b.content,
                    strength=clamp(strength),
                    connection_type="emotional" if close else "associative",
                    shared_traits=shared_traits,
                    source_id=a.id,
                    target_id=b.id,
                ))
        with self._lock:
            self._connections = connections
        logger.debug("rebuilt %d connections over %d memories", len(connections), len(memories))
        return list(connections)

    @property
    def connections(self) -> list[MemoryConnection]:
        with self._lock:
            return list(self._connections)

    def update_emotional_connections(self) -> int:
        """Let connected memories pull on each other's emotional weight.

        Each side moves by the other side's weight times ``strength * factor``;
        writes go through MemoryStore. Returns the number of pairs applied.
        """
        factor = self.config.emotional_influence_factor
        applied = 0
        for connection in self.connections:
            try:
                a = self.memories.peek(connection.source_id)
                b = self.memories.peek(connection.target_id)
                if a is None or b is None:
                    continue
                influence = connection.strength * factor
                new_a = clamp(a.emotional_weight + b.emotional_weight * influence, -1.0, 1.0)
                new_b = clamp(b.emotional_weight + new_a * influence, -1.0, 1.0)
                self.memories.adjust(a.id, emotional_weight=new_a)
                self.memories.adjust(b.id, emotional_weight=new_b)
                applied += 1
            except Exception:
                logger.warning("emotional update failed for %s <-> %s",
                               connection.source_id, connection.target_id, exc_info=True)
        return applied

    # --- Pruning ---

    def overall_score(self, memory: MemoryEvent, now: datetime | None = None) -> float:
        if self.pruning is None:
            raise NotReadyError("ClusterEngine was built without a TraitLedger")
        return self.pruning.overall_score(memory, now)

    def prune(self, now: datetime | None = None, dry_run: bool = False) -> list[str]:
        if self.pruning is None:
            raise NotReadyError("ClusterEngine was built without a TraitLedger")
        return self.pruning.prune(now, dry_run=dry_run, on_removed=self.discard)

    # --- Internals ---

    def _by_id(self, cluster_id: str) -> MemoryCluster:
        for cluster in self._clusters:
            if cluster.id == cluster_id:
                return cluster
        raise KeyError(cluster_id)

    @staticmethod
    def _absorb(cluster: MemoryCluster, memory: MemoryEvent) -> None:
        n = len(cluster.memory_ids)
        freqs = cluster.trait_frequencies
        for trait in set(freqs) | set(memory.trait_influences):
            hit = 1.0 if trait in memory.trait_influences else 0.0
            freqs[trait] = (freqs.get(trait, 0.0) * n + hit) / (n + 1)
        cluster.common_tags = set(memory.tags) if n == 0 else cluster.common_tags & memory.tags
        cluster.emotional_theme = (cluster.emotional_theme * n + memory.emotional_weight) / (n + 1)
        cluster.memory_ids.append(memory.id)

    @classmethod
    def _rebuild(cls, cluster: MemoryCluster, members: list[MemoryEvent]) -> None:
        ids = list(cluster.memory_ids)
        cluster.memory_ids = []
        cluster.trait_frequencies = {}
        cluster.common_tags = set()
        cluster.emotional_theme = 0.0
        by_id = {m.id: m for m in members}
        for memory_id in ids:
            if memory_id in by_id:
                cls._absorb(cluster, by_id[memory_id])
        # The band follows whichever member is now first.
        if cluster.memory_ids:
            cluster.anchor_weight = by_id[cluster.memory_ids[0]].emotional_weight

    @staticmethod
    def _copy(cluster: MemoryCluster) -> MemoryCluster:
        return MemoryCluster(
            memory_ids=list(cluster.memory_ids),
            trait_frequencies=dict(cluster.trait_frequencies),
            common_tags=set(cluster.common_tags),
            emotional_theme=cluster.emotional_theme,
            anchor_weight=cluster.anchor_weight,
            id=cluster.id,
        )
