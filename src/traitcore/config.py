"""traitcore configuration."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator


def _default_data_dir() -> Path:
    return Path(os.environ.get("TRAITCORE_DATA_DIR", Path.cwd() / "data"))


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    return int(raw) if raw.strip() else default


class MemoryConfig(BaseModel):
    max_cache_size: int = Field(
        default_factory=lambda: _env_int("TRAITCORE_MAX_CACHE_SIZE", 1000), ge=0
    )
    index_min_word_length: int = Field(default=3, ge=0)  # index words strictly longer
    short_term_window_hours: float = Field(default=24.0, gt=0)


class TraitConfig(BaseModel):
    default_decay_rate: float = Field(default=0.02, ge=0)  # per day
    default_reinforcement_rate: float = Field(default=0.2, ge=0)
    history_size: int = Field(default=100, ge=1)
    # "traitA_traitB" -> coefficient
    correlations: dict[str, float] = Field(default_factory=dict)


class TrendConfig(BaseModel):
    short_window: int = Field(default=5, ge=1)
    long_window: int = Field(default=20, ge=1)
    seasonal_window: int = Field(default=24, ge=1)
    long_trend_window: int = Field(default=10, ge=1)

    @model_validator(mode="after")
    def _check_windows(self) -> "TrendConfig":
        if self.short_window > self.long_window:
            raise ValueError("short_window must not exceed long_window")
        return self


class ResonanceConfig(BaseModel):
    decay_constant: float = Field(default=0.1, ge=0)  # per hour
    removal_threshold: float = Field(default=0.1, ge=0, le=1)
    significance_threshold: float = Field(default=0.5, ge=0, le=1)
    peak_offset_hours: float = Field(default=1.0, ge=0)
    association_threshold: float = Field(default=0.5, ge=-1, le=1)
    # pre_decay: compare the intensity measured before this tick
    # legacy: compare the already-decayed value (never promotes)
    promotion_mode: Literal["pre_decay", "legacy"] = "pre_decay"


class ClusterConfig(BaseModel):
    band_width: float = Field(default=0.1, gt=0)
    shared_trait_weight: float = 0.3
    shared_tag_weight: float = 0.2
    emotional_similarity_weight: float = 0.2
    emotional_proximity: float = Field(default=0.2, gt=0)
    connection_threshold: float = Field(default=0.3, ge=0, le=1)
    strong_connection_threshold: float = Field(default=0.7, ge=0, le=1)
    emotional_influence_factor: float = Field(default=0.5, ge=0)


class PruningConfig(BaseModel):
    relevance_weight: float = 0.3
    emotional_weight: float = 0.2
    trait_weight: float = 0.3
    temporal_weight: float = 0.2
    relevance_decay: float = Field(default=0.1, ge=0)  # per hour
    emotional_decay: float = Field(default=0.05, ge=0)
    temporal_decay: float = Field(default=0.1, ge=0)
    threshold: float = 0.2


class Config(BaseModel):
    data_dir: Path = Field(default_factory=_default_data_dir)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    traits: TraitConfig = Field(default_factory=TraitConfig)
    trends: TrendConfig = Field(default_factory=TrendConfig)
    resonance: ResonanceConfig = Field(default_factory=ResonanceConfig)
    cluster: ClusterConfig = Field(default_factory=ClusterConfig)
    pruning: PruningConfig = Field(default_factory=PruningConfig)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "db" / "traitcore.db"

    def ensure_dirs(self) -> None:
        for d in [self.data_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)
