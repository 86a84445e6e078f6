"""Trait-to-trait interactions and the blended (enhanced) confidence score."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Sequence

import numpy as np

from traitcore.memory.store import MemoryStore
from traitcore.traits.ledger import TraitLedger
from traitcore.types import EnhancedConfidence, TraitInteraction
from traitcore.utils import clamp, utcnow


def pearson(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation of two equal-length series; 0.0 when undefined."""
    if len(xs) != len(ys) or len(xs) < 2:
        return 0.0
    x = np.asarray(xs, dtype=np.float64)
    y = np.asarray(ys, dtype=np.float64)
    n = float(len(x))
    numerator = n * float(np.dot(x, y)) - float(x.sum()) * float(y.sum())
    denominator = (n * float(np.dot(x, x)) - float(x.sum()) ** 2) * (
        n * float(np.dot(y, y)) - float(y.sum()) ** 2
    )
    if denominator <= 0:
        return 0.0
    return numerator / float(np.sqrt(denominator))


class TraitInteractionAnalyzer:
    """Tracks how traits co-occur across memories and how their histories move together."""

    def __init__(
        self,
        ledger: TraitLedger,
        memories: MemoryStore,
        clock: Callable[[], datetime] = utcnow,
        lock: threading.RLock | None = None,
    ) -> None:
        self.ledger = ledger
        self.memories = memories
        self.clock = clock
        self._lock = lock or threading.RLock()
        self._interactions: dict[str, dict[str, TraitInteraction]] = {}

    def process(self, trait: str) -> dict[str, TraitInteraction]:
        """Recompute interactions from ``trait`` to every trait it shares a memory with."""
        memories = self.memories.with_trait(trait)
        related = sorted({t for m in memories for t in m.trait_influences if t != trait})

        positive = [m.emotional_weight for m in memories if m.emotional_weight > 0.0]
        emotional = sum(positive) / len(positive) if positive else 0.0
        source_metrics = self.ledger.metrics(trait)
        now = self.clock()

        out: dict[str, TraitInteraction] = {}
        for other in related:
            shared = [m for m in memories if other in m.trait_influences]
            strength = sum(m.trait_influences[other] for m in shared) / len(shared)
            target_metrics = self.ledger.metrics(other)
            temporal = 0.0
            if source_metrics is not None and target_metrics is not None:
                temporal = pearson(source_metrics.historical_values, target_metrics.historical_values)
            out[other] = TraitInteraction(
                source_trait=trait,
                target_trait=other,
                influence_strength=strength,
                temporal_correlation=temporal,
                emotional_correlation=emotional,
                shared_memories=[m.id for m in shared],
                last_interaction=now,
            )
        with self._lock:
            self._interactions[trait] = out
        return dict(out)

    def interactions(self, trait: str) -> dict[str, TraitInteraction]:
        with self._lock:
            return dict(self._interactions.get(trait, {}))

    def _targeting(self, trait: str) -> list[TraitInteraction]:
        with self._lock:
            return [
                interaction
                for source in sorted(self._interactions)
                for target, interaction in sorted(self._interactions[source].items())
                if target == trait
            ]

    def enhanced_confidence(self, trait: str) -> EnhancedConfidence:
        """Blend base confidence, trend consistency and cross-trait agreement."""
        result = EnhancedConfidence()
        result.base_confidence = self.ledger.calculate_confidence(trait)

        trend = self.ledger.trend(trait)
        if trend is not None:
            result.pattern_consistency = clamp(
                1.0 - (trend.volatility * 0.5
                       + abs(trend.short_term_slope - trend.long_term_slope) * 0.5)
            )

        incoming = self._targeting(trait)
        if incoming:
            result.cross_validation = clamp(
                sum(i.temporal_correlation for i in incoming) / len(incoming)
            )
            result.emotional_alignment = clamp(
                sum(i.emotional_correlation for i in incoming) / len(incoming)
            )

        metrics = self.ledger.metrics(trait)
        if metrics is not None:
            result.temporal_stability = clamp(1.0 - metrics.volatility)

        result.trait_correlation = clamp(
            result.cross_validation * 0.5 + result.emotional_alignment * 0.5
        )
        result.overall_confidence = clamp(
            result.base_confidence * 0.2
            + result.pattern_consistency * 0.2
            + result.cross_validation * 0.2
            + result.temporal_stability * 0.2
            + result.emotional_alignment * 0.1
            + result.trait_correlation * 0.1
        )
        return result
