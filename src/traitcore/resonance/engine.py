"""ResonanceEngine: transient emotional activations and the patterns they leave behind."""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timedelta
from typing import Callable

from traitcore.config import ResonanceConfig
from traitcore.exceptions import ValidationError
from traitcore.memory.store import MemoryStore
from traitcore.traits.ledger import TraitLedger
from traitcore.types import EmotionalPattern, EmotionalResonance, MemoryConnection, MemoryEvent
from traitcore.utils import clamp, hours_between, utcnow

logger = logging.getLogger(__name__)

STRONG_CONNECTION = "strong_connection"


class ResonanceEngine:
    """Decays active resonances and promotes significant ones into patterns.

    Intensity is a pure function of the time since the trigger:
    ``initial * exp(-decay_constant * hours)``. Ticking twice at the same
    instant, or skipping ticks, lands on the same value.

    A resonance is removed on the first tick where its intensity falls under
    ``removal_threshold``. In ``pre_decay`` mode it becomes a pattern when the
    intensity measured on the previous tick was above ``significance_threshold``;
    ``legacy`` compares the already-decayed value and so never promotes.
    """

    def __init__(
        self,
        memories: MemoryStore,
        ledger: TraitLedger | None = None,
        config: ResonanceConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
        lock: threading.RLock | None = None,
    ) -> None:
        self.memories = memories
        self.ledger = ledger
        self.config = config or ResonanceConfig()
        self.clock = clock
        self._lock = lock or threading.RLock()
        self._active: list[EmotionalResonance] = []
        self._patterns: list[EmotionalPattern] = []
        self._core_patterns: list[EmotionalPattern] = []

    def trigger(self, trigger: str, intensity: float) -> EmotionalResonance:
        if not trigger or not isinstance(trigger, str):
            raise ValidationError("Resonance trigger must be a non-empty string")
        if not isinstance(intensity, (int, float)) or not math.isfinite(intensity):
            raise ValidationError("Resonance intensity must be a finite number")
        now = self.clock()
        intensity = clamp(float(intensity))
        associated = [
            m.content for m in self.memories.recent(now=now)
            if m.emotional_weight > self.config.association_threshold
        ]
        resonance = EmotionalResonance(
            trigger=trigger,
            intensity=intensity,
            initial_intensity=intensity,
            start_time=now,
            peak_time=now + timedelta(hours=self.config.peak_offset_hours),
            associated_memories=associated,
        )
        with self._lock:
            self._active.append(resonance)
        logger.debug("resonance %s triggered by %r at %.3f", resonance.id, trigger, intensity)
        return _copy_resonance(resonance)

    def tick(self, now: datetime | None = None) -> list[EmotionalPattern]:
        """Decay every active resonance, emit patterns, drop the expired. Returns new patterns."""
        cfg = self.config
        now = now or self.clock()
        emitted: list[EmotionalPattern] = []
        with self._lock:
            survivors: list[EmotionalResonance] = []
            expired: list[tuple[EmotionalResonance, float]] = []
            for resonance in self._active:
                previous = resonance.intensity
                hours = hours_between(resonance.start_time, now)
                resonance.intensity = clamp(
                    resonance.initial_intensity * math.exp(-cfg.decay_constant * hours)
                )
                if resonance.intensity < cfg.removal_threshold:
                    expired.append((resonance, previous))
                else:
                    survivors.append(resonance)
            self._active = survivors

        if not expired:
            return emitted
        short_term = self.memories.recent(now=now)
        for resonance, previous in expired:
            measured = previous if cfg.promotion_mode == "pre_decay" else resonance.intensity
            if measured <= cfg.significance_threshold:
                continue
            pattern = EmotionalPattern(
                pattern_type=resonance.trigger,
                base_intensity=measured,
                current_intensity=resonance.intensity,
                last_triggered=now,
                pattern_memories=_match_by_content(resonance.associated_memories, short_term),
                triggers=[resonance.trigger],
            )
            emitted.append(pattern)
        with self._lock:
            self._patterns.extend(emitted)
        for pattern in emitted:
            self._feed_confidence(pattern)
        if emitted:
            logger.info("promoted %d resonances to patterns", len(emitted))
        return emitted

    def recognize_patterns(self, connections: list[MemoryConnection], threshold: float = 0.7,
                           now: datetime | None = None) -> list[EmotionalPattern]:
        """Turn every connection stronger than ``threshold`` into a core pattern."""
        now = now or self.clock()
        found = [
            EmotionalPattern(
                pattern_type=STRONG_CONNECTION,
                base_intensity=c.strength,
                current_intensity=c.strength,
                last_triggered=now,
                triggers=[c.source_memory, c.target_memory],
            )
            for c in connections if c.strength > threshold
        ]
        with self._lock:
            self._core_patterns.extend(found)
        return found

    @property
    def active(self) -> list[EmotionalResonance]:
        with self._lock:
            return [_copy_resonance(r) for r in self._active]

    @property
    def patterns(self) -> list[EmotionalPattern]:
        with self._lock:
            return list(self._patterns)

    @property
    def core_patterns(self) -> list[EmotionalPattern]:
        with self._lock:
            return list(self._core_patterns)

    def _feed_confidence(self, pattern: EmotionalPattern) -> None:
        if self.ledger is None:
            return
        for memory in pattern.pattern_memories:
            for trait, influence in sorted(memory.trait_influences.items()):
                try:
                    self.ledger.record_evidence(trait, memory.id, supporting=influence >= 0)
                except Exception:
                    logger.warning("pattern evidence failed for trait %s", trait, exc_info=True)


def _match_by_content(contents: list[str], short_term: list[MemoryEvent]) -> list[MemoryEvent]:
    members: list[MemoryEvent] = []
    for content in contents:
        for memory in short_term:
            if memory.content == content:
                members.append(memory)
                break
    return members


def _copy_resonance(r: EmotionalResonance) -> EmotionalResonance:
    return EmotionalResonance(
        trigger=r.trigger,
        intensity=r.intensity,
        start_time=r.start_time,
        peak_time=r.peak_time,
        initial_intensity=r.initial_intensity,
        associated_memories=list(r.associated_memories),
        id=r.id,
    )
