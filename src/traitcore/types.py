"""Core record types shared by every component."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime

from traitcore.utils import new_id, utcnow


@dataclass
class MemoryEvent:
    content: str
    context: str = ""
    importance: float = 0.5           # [0, 1]
    emotional_weight: float = 0.0     # [-1, 1]
    trait_influences: dict[str, float] = field(default_factory=dict)
    tags: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)

    def copy(self) -> MemoryEvent:
        """Detached copy; the containers are not shared."""
        return replace(
            self,
            trait_influences=dict(self.trait_influences),
            tags=set(self.tags),
        )


@dataclass
class TraitBaseline:
    name: str
    current_value: float = 0.0
    target_value: float = 0.0
    decay_rate: float = 0.02          # per day
    reinforcement_rate: float = 0.2
    stability: float = 0.0
    last_adjustment: datetime = field(default_factory=utcnow)
    supporting_memories: list[str] = field(default_factory=list)
    conflicting_memories: list[str] = field(default_factory=list)

    def copy(self) -> TraitBaseline:
        return replace(
            self,
            supporting_memories=list(self.supporting_memories),
            conflicting_memories=list(self.conflicting_memories),
        )


@dataclass
class TraitEvolutionMetrics:
    historical_values: list[float] = field(default_factory=list)
    short_term_change: float = 0.0
    long_term_trend: float = 0.0
    volatility: float = 0.0
    confidence: float = 0.0
    last_update: datetime = field(default_factory=utcnow)


@dataclass
class TraitTrendAnalysis:
    short_term_slope: float = 0.0
    long_term_slope: float = 0.0
    acceleration: float = 0.0
    volatility: float = 0.0
    seasonality: float = 0.0
    cyclicality: float = 0.0
    moving_averages: list[float] = field(default_factory=list)
    seasonal_components: list[float] = field(default_factory=list)
    last_analysis: datetime | None = None


@dataclass
class TraitInteraction:
    source_trait: str
    target_trait: str
    influence_strength: float = 0.0
    temporal_correlation: float = 0.0
    emotional_correlation: float = 0.0
    shared_memories: list[str] = field(default_factory=list)
    last_interaction: datetime = field(default_factory=utcnow)


@dataclass
class EnhancedConfidence:
    base_confidence: float = 0.0
    pattern_consistency: float = 0.0
    cross_validation: float = 0.0
    temporal_stability: float = 0.0
    emotional_alignment: float = 0.0
    trait_correlation: float = 0.0
    overall_confidence: float = 0.0


@dataclass
class MemoryCluster:
    memory_ids: list[str] = field(default_factory=list)
    trait_frequencies: dict[str, float] = field(default_factory=dict)
    common_tags: set[str] = field(default_factory=set)
    emotional_theme: float = 0.0
    anchor_weight: float = 0.0        # emotional weight of the first member
    id: str = field(default_factory=new_id)


@dataclass
class MemoryConnection:
    source_memory: str                # content, not id
    target_memory: str
    strength: float
    connection_type: str = "associative"
    shared_traits: list[str] = field(default_factory=list)
    source_id: str = ""
    target_id: str = ""


@dataclass
class EmotionalResonance:
    trigger: str
    intensity: float
    start_time: datetime
    peak_time: datetime
    initial_intensity: float = 0.0
    associated_memories: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)


@dataclass
class EmotionalPattern:
    pattern_type: str
    base_intensity: float
    current_intensity: float
    last_triggered: datetime
    pattern_memories: list[MemoryEvent] = field(default_factory=list)
    triggers: list[str] = field(default_factory=list)


@dataclass
class EmotionalState:
    happiness: float = 0.5
    sadness: float = 0.5
    anger: float = 0.5
    fear: float = 0.5
    surprise: float = 0.5
    disgust: float = 0.5
    trust: float = 0.5
    anticipation: float = 0.5
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=new_id)


EMOTION_CHANNELS = (
    "happiness", "sadness", "anger", "fear",
    "surprise", "disgust", "trust", "anticipation",
)


@dataclass
class SelfReflection:
    type: str
    content: str
    confidence: float
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class PruningMetrics:
    memory_id: str
    relevance_score: float = 0.0
    emotional_impact: float = 0.0
    trait_contribution: float = 0.0
    temporal_decay: float = 0.0
    overall_score: float = 0.0
    affected_traits: list[str] = field(default_factory=list)


@dataclass
class InitResult:
    ok: bool
    memories_loaded: int = 0
    traits_loaded: int = 0
    emotional_states_loaded: int = 0
    error: str = ""
