"""TraitLedger: per-trait baselines, decay/reinforcement and evolution metrics."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable

from traitcore.config import TraitConfig
from traitcore.exceptions import ValidationError
from traitcore.storage.record_store import KIND_TRAIT_BASELINE, RecordStore
from traitcore.traits.trends import TrendAnalyzer, population_volatility
from traitcore.types import TraitBaseline, TraitEvolutionMetrics, TraitTrendAnalysis
from traitcore.utils import clamp, hours_between, iso_str, json_dumps, json_loads, mean, parse_iso, utcnow

logger = logging.getLogger(__name__)

CORRELATED_EVIDENCE = "correlated_trait"


def _require_finite(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")


class TraitLedger:
    """Owns every trait baseline in a session.

    Values live in [0, 1]. Influence first decays the stored value for the
    time since the last adjustment, then adds the new amount.
    """

    def __init__(
        self,
        config: TraitConfig | None = None,
        analyzer: TrendAnalyzer | None = None,
        clock: Callable[[], datetime] = utcnow,
        lock: threading.RLock | None = None,
    ) -> None:
        self.config = config or TraitConfig()
        self.analyzer = analyzer or TrendAnalyzer(clock=clock)
        self.clock = clock
        self._lock = lock or threading.RLock()
        self._baselines: dict[str, TraitBaseline] = {}
        self._metrics: dict[str, TraitEvolutionMetrics] = {}
        self._trends: dict[str, TraitTrendAnalysis] = {}
        self._correlations: dict[str, float] = {}
        for key, coef in self.config.correlations.items():
            self._set_correlation(key, coef)

    # --- Influence / decay ---

    def influence(self, trait: str, amount: float, evidence: str = "",
                  propagate: bool = True) -> TraitBaseline:
        """Decay, add ``amount``, clamp; then push ``amount * coef`` one hop to correlated traits."""
        self._check_name(trait)
        _require_finite("amount", amount)
        now = self.clock()
        with self._lock:
            baseline = self._ensure(trait, now)
            days = hours_between(baseline.last_adjustment, now) / 24.0
            factor = math.exp(-baseline.decay_rate * days)
            baseline.current_value = clamp(baseline.current_value * factor + amount)
            if evidence:
                if amount >= 0:
                    baseline.supporting_memories.append(evidence)
                else:
                    baseline.conflicting_memories.append(evidence)
            baseline.last_adjustment = now
            self._record_value(trait, baseline.current_value, now)

            if propagate:
                for other, coef in self.correlated_traits(trait):
                    self.influence(other, amount * coef, CORRELATED_EVIDENCE, propagate=False)
            return baseline.copy()

    def reinforce(self, trait: str, influence: float, evidence: str = "") -> TraitBaseline:
        """Influence scaled by the trait's own reinforcement rate."""
        self._check_name(trait)
        _require_finite("influence", influence)
        with self._lock:
            baseline = self._ensure(trait, self.clock())
            return self.influence(trait, influence * baseline.reinforcement_rate, evidence)

    def decay(self, trait: str, elapsed_hours: float) -> TraitBaseline:
        """Apply ``elapsed_hours`` of exponential decay toward zero."""
        self._check_name(trait)
        _require_finite("elapsed_hours", elapsed_hours)
        if elapsed_hours < 0:
            raise ValidationError("elapsed_hours must not be negative")
        with self._lock:
            baseline = self._ensure(trait, self.clock())
            factor = math.exp(-baseline.decay_rate * elapsed_hours / 24.0)
            baseline.current_value = clamp(baseline.current_value * factor)
            baseline.last_adjustment = baseline.last_adjustment + timedelta(hours=elapsed_hours)
            return baseline.copy()

    def decay_all(self, now: datetime | None = None) -> dict[str, float]:
        """Decay every trait by the time since its last adjustment.

        One trait failing does not stop the sweep.
        """
        now = now or self.clock()
        out: dict[str, float] = {}
        for trait in self.names():
            try:
                with self._lock:
                    baseline = self._baselines[trait]
                    elapsed = hours_between(baseline.last_adjustment, now)
                    factor = math.exp(-baseline.decay_rate * elapsed / 24.0)
                    baseline.current_value = clamp(baseline.current_value * factor)
                    if now > baseline.last_adjustment:
                        baseline.last_adjustment = now
                    out[trait] = baseline.current_value
            except Exception:
                logger.warning("decay failed for trait %s", trait, exc_info=True)
        return out

    def configure(self, trait: str, decay_rate: float | None = None,
                  reinforcement_rate: float | None = None,
                  target_value: float | None = None) -> TraitBaseline:
        self._check_name(trait)
        for name, value in (("decay_rate", decay_rate), ("reinforcement_rate", reinforcement_rate)):
            if value is not None:
                _require_finite(name, value)
                if value < 0:
                    raise ValidationError(f"{name} must not be negative")
        if target_value is not None:
            _require_finite("target_value", target_value)
        with self._lock:
            baseline = self._ensure(trait, self.clock())
            if decay_rate is not None:
                baseline.decay_rate = float(decay_rate)
            if reinforcement_rate is not None:
                baseline.reinforcement_rate = float(reinforcement_rate)
            if target_value is not None:
                baseline.target_value = clamp(float(target_value))
            return baseline.copy()

    # --- Evidence / confidence ---

    def record_evidence(self, trait: str, evidence: str, supporting: bool = True) -> float:
        """Attach evidence without changing the value. Returns the new confidence."""
        self._check_name(trait)
        with self._lock:
            baseline = self._ensure(trait, self.clock())
            bucket = baseline.supporting_memories if supporting else baseline.conflicting_memories
            if evidence not in bucket:
                bucket.append(evidence)
            metrics = self._metrics.setdefault(trait, TraitEvolutionMetrics(last_update=self.clock()))
            metrics.confidence = self.calculate_confidence(trait)
            baseline.stability = clamp(math.exp(-metrics.volatility) * metrics.confidence)
            return metrics.confidence

    def calculate_confidence(self, trait: str) -> float:
        """0.4 consistency + 0.3 evidence support + 0.3 trend steadiness."""
        with self._lock:
            baseline = self._baselines.get(trait)
            if baseline is None:
                return 0.0
            metrics = self._metrics.get(trait) or TraitEvolutionMetrics()
            supporting = len(baseline.supporting_memories)
            conflicting = len(baseline.conflicting_memories)
        consistency = clamp(1.0 - metrics.volatility)
        support = clamp(supporting / (supporting + conflicting + 1))
        trend = clamp(math.exp(-abs(metrics.long_term_trend)))
        return clamp(0.4 * consistency + 0.3 * support + 0.3 * trend)

    # --- Correlations ---

    def add_correlation(self, trait_a: str, trait_b: str, coefficient: float) -> None:
        self._check_name(trait_a)
        self._check_name(trait_b)
        with self._lock:
            self._set_correlation(f"{trait_a}_{trait_b}", coefficient)

    def correlated_traits(self, trait: str) -> list[tuple[str, float]]:
        """Traits sharing a ``"a_b"`` correlation key with ``trait``, in key order.

        Keys hold exactly one ``_``, so a name with an underscore never matches.
        """
        found: dict[str, float] = {}
        with self._lock:
            for key in sorted(self._correlations):
                first, second = key.split("_")
                if trait == first:
                    other = second
                elif trait == second:
                    other = first
                else:
                    continue
                found.setdefault(other, self._correlations[key])
        return list(found.items())

    @property
    def correlations(self) -> dict[str, float]:
        with self._lock:
            return dict(self._correlations)

    # --- Reads ---

    def snapshot(self, trait: str) -> TraitBaseline | None:
        with self._lock:
            baseline = self._baselines.get(trait)
            return baseline.copy() if baseline is not None else None

    def metrics(self, trait: str) -> TraitEvolutionMetrics | None:
        with self._lock:
            metrics = self._metrics.get(trait)
            if metrics is None:
                return None
            return replace(metrics, historical_values=list(metrics.historical_values))

    def trend(self, trait: str) -> TraitTrendAnalysis | None:
        with self._lock:
            analysis = self._trends.get(trait)
            return replace(analysis) if analysis is not None else None

    def value(self, trait: str) -> float:
        with self._lock:
            baseline = self._baselines.get(trait)
            return baseline.current_value if baseline is not None else 0.0

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._baselines)

    def __contains__(self, trait: object) -> bool:
        with self._lock:
            return trait in self._baselines

    def __len__(self) -> int:
        with self._lock:
            return len(self._baselines)

    # --- Persistence ---

    def save_all(self, store: RecordStore) -> int:
        with self._lock:
            rows = [(b.copy(), list(self._metrics.get(b.name, TraitEvolutionMetrics()).historical_values))
                    for b in self._baselines.values()]
        for baseline, history in rows:
            store.save(KIND_TRAIT_BASELINE, baseline.name, self._baseline_to_fields(baseline, history))
        return len(rows)

    def load_all(self, store: RecordStore) -> int:
        count = 0
        for name in store.keys(KIND_TRAIT_BASELINE):
            fields = store.load(KIND_TRAIT_BASELINE, name)
            if fields is None:
                continue
            try:
                baseline, history = self._fields_to_baseline(fields)
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping unreadable trait record %s", name, exc_info=True)
                continue
            with self._lock:
                self._baselines[baseline.name] = baseline
                metrics = TraitEvolutionMetrics(historical_values=history[-self.config.history_size:],
                                                last_update=baseline.last_adjustment)
                self._metrics[baseline.name] = metrics
                self._refresh_metrics(baseline.name)
            count += 1
        return count

    # --- Internals ---

    def _ensure(self, trait: str, now: datetime) -> TraitBaseline:
        baseline = self._baselines.get(trait)
        if baseline is None:
            baseline = TraitBaseline(
                name=trait,
                current_value=0.0,
                decay_rate=self.config.default_decay_rate,
                reinforcement_rate=self.config.default_reinforcement_rate,
                last_adjustment=now,
            )
            self._baselines[trait] = baseline
        return baseline

    def _record_value(self, trait: str, value: float, now: datetime) -> None:
        metrics = self._metrics.setdefault(trait, TraitEvolutionMetrics(last_update=now))
        history = metrics.historical_values
        history.append(value)
        overflow = len(history) - self.config.history_size
        if overflow > 0:
            del history[:overflow]
        if len(history) >= 2:
            metrics.short_term_change = history[-1] - history[-2]
        metrics.last_update = now
        self._refresh_metrics(trait)

    def _refresh_metrics(self, trait: str) -> None:
        metrics = self._metrics[trait]
        history = metrics.historical_values
        window = self.analyzer.config.long_trend_window
        if len(history) >= window:
            metrics.long_term_trend = mean(history[-window:]) - mean(history[:window])
        if len(history) >= 2:
            metrics.volatility = population_volatility(history)
        metrics.confidence = self.calculate_confidence(trait)
        baseline = self._baselines[trait]
        baseline.stability = clamp(math.exp(-metrics.volatility) * metrics.confidence)
        self._trends[trait] = self.analyzer.analyze(history, self._trends.get(trait))

    def _set_correlation(self, key: str, coefficient: float) -> None:
        _require_finite("correlation", coefficient)
        if not -1.0 <= coefficient <= 1.0:
            raise ValidationError(f"Correlation {key!r} must lie in [-1, 1]")
        # Exactly one separator: correlated traits may not contain "_" themselves.
        parts = key.split("_")
        if len(parts) != 2 or not all(parts) or parts[0] == parts[1]:
            raise ValidationError(
                f"Correlation key {key!r} must look like 'traitA_traitB' with no '_' inside either name"
            )
        self._correlations[key] = float(coefficient)

    @staticmethod
    def _check_name(trait: str) -> None:
        if not trait or not isinstance(trait, str):
            raise ValidationError("Trait name must be a non-empty string")

    @staticmethod
    def _baseline_to_fields(baseline: TraitBaseline, history: list[float]) -> dict[str, Any]:
        return {
            "name": baseline.name,
            "current_value": baseline.current_value,
            "target_value": baseline.target_value,
            "decay_rate": baseline.decay_rate,
            "reinforcement_rate": baseline.reinforcement_rate,
            "stability": baseline.stability,
            "last_adjustment": iso_str(baseline.last_adjustment),
            "supporting_memories": json_dumps(baseline.supporting_memories),
            "conflicting_memories": json_dumps(baseline.conflicting_memories),
            "historical_values": json_dumps(history),
        }

    @staticmethod
    def _fields_to_baseline(fields: dict[str, Any]) -> tuple[TraitBaseline, list[float]]:
        baseline = TraitBaseline(
            name=fields["name"],
            current_value=clamp(float(fields["current_value"])),
            target_value=float(fields.get("target_value", 0.0)),
            decay_rate=float(fields["decay_rate"]),
            reinforcement_rate=float(fields["reinforcement_rate"]),
            stability=clamp(float(fields.get("stability", 0.0))),
            last_adjustment=parse_iso(fields["last_adjustment"]),
            supporting_memories=list(json_loads(fields.get("supporting_memories", "[]"))),
            conflicting_memories=list(json_loads(fields.get("conflicting_memories", "[]"))),
        )
        history = [float(v) for v in json_loads(fields.get("historical_values", "[]"))]
        return baseline, history
