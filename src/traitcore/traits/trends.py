"""Trend analysis over a trait's bounded value history."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable, Sequence

import numpy as np

from traitcore.config import TrendConfig
from traitcore.types import TraitTrendAnalysis
from traitcore.utils import utcnow

_MIN_CYCLE_SAMPLES = 4


def moving_average(values: np.ndarray, window: int) -> np.ndarray:
    """Trailing simple moving average; empty when there are fewer than ``window`` samples."""
    if window <= 0 or len(values) < window:
        return np.empty(0, dtype=np.float64)
    kernel = np.full(window, 1.0 / window)
    return np.convolve(values, kernel, mode="valid")


def population_volatility(values: Sequence[float]) -> float:
    """Population standard deviation; 0.0 for an empty series."""
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


class TrendAnalyzer:
    """Derives slopes, volatility, seasonality and cyclicality from a history.

    Metrics whose window is not yet filled keep the value from ``previous``
    (or zero), so a short history never errors.
    """

    def __init__(self, config: TrendConfig | None = None,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.config = config or TrendConfig()
        self.clock = clock

    def analyze(self, history: Sequence[float],
                previous: TraitTrendAnalysis | None = None) -> TraitTrendAnalysis:
        cfg = self.config
        out = replace(previous) if previous is not None else TraitTrendAnalysis()
        values = np.asarray(history, dtype=np.float64)

        short_ma = moving_average(values, cfg.short_window)
        long_ma = moving_average(values, cfg.long_window)
        seasonal_ma = moving_average(values, cfg.seasonal_window)

        if len(short_ma) >= 2:
            out.short_term_slope = float((short_ma[-1] - short_ma[-2]) / cfg.short_window)
        if len(long_ma) >= 2:
            out.long_term_slope = float((long_ma[-1] - long_ma[-2]) / cfg.long_window)
        if len(short_ma) >= 3:
            second = short_ma[-1] - 2.0 * short_ma[-2] + short_ma[-3]
            out.acceleration = float(second / (cfg.short_window * cfg.short_window))

        if len(values):
            out.volatility = population_volatility(values)

        if len(seasonal_ma) >= 2:
            out.seasonality = float(np.mean(np.abs(np.diff(seasonal_ma))))

        if len(values) >= _MIN_CYCLE_SAMPLES:
            out.cyclicality = float(np.mean(np.abs(np.diff(values, n=2))))

        if len(short_ma):
            out.moving_averages = [float(v) for v in short_ma]
        if len(seasonal_ma):
            out.seasonal_components = [float(v) for v in seasonal_ma]
        out.last_analysis = self.clock()
        return out
