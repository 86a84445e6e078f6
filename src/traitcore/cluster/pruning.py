"""Pruning advice: score each memory and remove the weak ones on request."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable

from traitcore.config import PruningConfig
from traitcore.memory.store import MemoryStore
from traitcore.traits.ledger import TraitLedger
from traitcore.types import MemoryEvent, PruningMetrics
from traitcore.utils import hours_between, utcnow

logger = logging.getLogger(__name__)


class PruningAdvisor:
    """Scores memories by trait relevance, emotion, trend contribution and age.

    Nothing here runs implicitly; callers decide when to ``prune()``.
    """

    def __init__(
        self,
        memories: MemoryStore,
        ledger: TraitLedger,
        config: PruningConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.memories = memories
        self.ledger = ledger
        self.config = config or PruningConfig()
        self.clock = clock

    def evaluate(self, memory: MemoryEvent, now: datetime | None = None) -> PruningMetrics:
        cfg = self.config
        now = now or self.clock()
        metrics = PruningMetrics(memory_id=memory.id)

        total_relevance = 0.0
        for trait in sorted(memory.trait_influences):
            evolution = self.ledger.metrics(trait)
            if evolution is None:
                continue
            hours = hours_between(evolution.last_update, now)
            total_relevance += abs(memory.trait_influences[trait]) * math.exp(-cfg.relevance_decay * hours)
            metrics.affected_traits.append(trait)
        if metrics.affected_traits:
            metrics.relevance_score = total_relevance / len(metrics.affected_traits)

        age_hours = hours_between(memory.created_at, now)
        metrics.emotional_impact = memory.emotional_weight * math.exp(-cfg.emotional_decay * age_hours)

        total_contribution = 0.0
        for trait in metrics.affected_traits:
            trend = self.ledger.trend(trait)
            if trend is not None:
                total_contribution += abs(trend.short_term_slope) * (1.0 - trend.volatility)
        if metrics.affected_traits:
            metrics.trait_contribution = total_contribution / len(metrics.affected_traits)

        metrics.temporal_decay = math.exp(-cfg.temporal_decay * age_hours)

        metrics.overall_score = (
            metrics.relevance_score * cfg.relevance_weight
            + metrics.emotional_impact * cfg.emotional_weight
            + metrics.trait_contribution * cfg.trait_weight
            + metrics.temporal_decay * cfg.temporal_weight
        )
        return metrics

    def overall_score(self, memory: MemoryEvent, now: datetime | None = None) -> float:
        return self.evaluate(memory, now).overall_score

    def candidates(self, now: datetime | None = None) -> list[PruningMetrics]:
        """Memories scoring under the threshold, ordered by id."""
        now = now or self.clock()
        out: list[PruningMetrics] = []
        for memory in self.memories.all():
            try:
                metrics = self.evaluate(memory, now)
            except Exception:
                logger.warning("scoring failed for memory %s", memory.id, exc_info=True)
                continue
            if metrics.overall_score < self.config.threshold:
                out.append(metrics)
        return out

    def prune(self, now: datetime | None = None, dry_run: bool = False,
              on_removed: Callable[[str], None] | None = None) -> list[str]:
        """Remove every candidate through MemoryStore.remove. Returns removed ids."""
        removed: list[str] = []
        for metrics in self.candidates(now):
            if dry_run:
                removed.append(metrics.memory_id)
                continue
            try:
                self.memories.remove(metrics.memory_id)
            except Exception:
                logger.warning("prune failed for memory %s", metrics.memory_id, exc_info=True)
                continue
            removed.append(metrics.memory_id)
            if on_removed is not None:
                on_removed(metrics.memory_id)
        if removed and not dry_run:
            logger.info("pruned %d memories", len(removed))
        return removed
