from __future__ import annotations

import pytest
from pydantic import ValidationError

from traitcore.config import Config, MemoryConfig, ResonanceConfig


def test_defaults(tmp_path):
    cfg = Config(data_dir=tmp_path)
    assert cfg.memory.max_cache_size == 1000
    assert cfg.traits.default_decay_rate == 0.02
    assert cfg.resonance.promotion_mode == "pre_decay"
    assert cfg.cluster.band_width == 0.1
    assert cfg.db_path == tmp_path / "db" / "traitcore.db"
    cfg.ensure_dirs()
    assert cfg.db_path.parent.is_dir()


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("TRAITCORE_MAX_CACHE_SIZE", "7")
    monkeypatch.setenv("TRAITCORE_DATA_DIR", str(tmp_path / "elsewhere"))
    cfg = Config()
    assert cfg.memory.max_cache_size == 7
    assert cfg.data_dir == tmp_path / "elsewhere"


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        MemoryConfig(max_cache_size=-1)
    with pytest.raises(ValidationError):
        ResonanceConfig(promotion_mode="sometimes")
