from __future__ import annotations

import numpy as np
import pytest

from traitcore.config import TrendConfig
from traitcore.traits import TrendAnalyzer
from traitcore.traits.trends import moving_average, population_volatility
from traitcore.types import TraitTrendAnalysis


def test_moving_average_matches_numpy():
    values = np.array([1.0, 2.0, 3.0, 4.0])
    assert moving_average(values, 2).tolist() == pytest.approx([1.5, 2.5, 3.5])
    assert moving_average(values, 5).size == 0


def test_linear_history(clock):
    history = [float(i) for i in range(1, 31)]
    out = TrendAnalyzer(clock=clock).analyze(history)

    assert out.short_term_slope == pytest.approx(1.0 / 5)
    assert out.long_term_slope == pytest.approx(1.0 / 20)
    assert out.acceleration == pytest.approx(0.0, abs=1e-12)
    assert out.volatility == pytest.approx(float(np.std(history)))
    assert out.seasonality == pytest.approx(1.0)
    assert out.cyclicality == pytest.approx(0.0, abs=1e-12)
    assert len(out.moving_averages) == 26
    assert len(out.seasonal_components) == 7
    assert out.last_analysis == clock.now


def test_short_history_keeps_previous_values(clock):
    previous = TraitTrendAnalysis(short_term_slope=0.7, long_term_slope=0.3, cyclicality=0.2)
    out = TrendAnalyzer(clock=clock).analyze([0.1, 0.2, 0.4], previous)
    assert out.short_term_slope == 0.7
    assert out.long_term_slope == 0.3
    assert out.cyclicality == 0.2
    assert out.volatility == pytest.approx(population_volatility([0.1, 0.2, 0.4]))
    # previous is not mutated
    assert previous.last_analysis is None


def test_empty_history_never_errors(clock):
    out = TrendAnalyzer(clock=clock).analyze([])
    assert out.short_term_slope == 0.0
    assert out.volatility == 0.0
    assert out.moving_averages == []


def test_acceleration_and_cyclicality_on_alternating_series(clock):
    analyzer = TrendAnalyzer(TrendConfig(short_window=2, long_window=4, seasonal_window=4), clock=clock)
    history = [0.0, 1.0, 0.0, 1.0, 0.0, 1.0]
    out = analyzer.analyze(history)
    assert out.short_term_slope == pytest.approx(0.0)
    assert out.cyclicality == pytest.approx(2.0)


def test_inverted_windows_rejected():
    with pytest.raises(ValueError):
        TrendConfig(short_window=30, long_window=20)
