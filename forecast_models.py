"""
Forecast Model Ensemble

A fixed, ordered set of deterministic forecasting strategies. Every strategy
receives the same normalized daily series (as a numpy array) and a horizon in
days and returns one unbounded point forecast per future day. Confidence bands
are attached later by confidence_bands.py.

Strategies:
- Naive persistence (last observed value)
- Linear trend (least-squares line over the whole series)
- Seasonal moving average (7-day level with day-of-week indices)
- Simple exponential smoothing (recency-weighted level)

New strategies subclass ForecastModel and are appended to ENSEMBLE_MODELS, or
passed directly to compute_forecast(models=...).
"""

from datetime import timedelta

import numpy as np
import pandas as pd
from scipy.stats import linregress

from business_rules import FORECAST_RULES

MODEL_RULES = FORECAST_RULES["models"]


def future_dates(last_date, horizon: int) -> list:
    """Calendar days following last_date, one per forecast step."""
    return [last_date + timedelta(days=step) for step in range(1, horizon + 1)]


def calculate_exponential_smoothing(values, alpha=0.3):
    """
    Calculate simple exponential smoothing forecast

    Args:
        values: Array of historical values
        alpha: Smoothing factor (0-1), higher = more weight on recent data

    Returns:
        float: Smoothed forecast value
    """
    if len(values) == 0:
        return 0.0

    smoothed = float(values[0])
    for value in values[1:]:
        smoothed = alpha * value + (1 - alpha) * smoothed

    return smoothed


def calculate_weekday_indices(values: np.ndarray, season_length: int = 7) -> np.ndarray:
    """
    Seasonal index per position in the week, from values detrended by a centered moving average.

    Index > 1.0 = that weekday runs above the local level, < 1.0 = below.
    Returns all ones when the local level is zero everywhere.
    """
    series = pd.Series(values, dtype=float)
    level = series.rolling(window=season_length, center=True, min_periods=season_length).mean()

    valid = level > 0
    if not valid.any():
        return np.ones(season_length)

    ratios = series[valid] / level[valid]
    phases = ratios.index.to_numpy() % season_length

    indices = np.ones(season_length)
    for phase in range(season_length):
        phase_ratios = ratios.to_numpy()[phases == phase]
        if len(phase_ratios) > 0:
            indices[phase] = phase_ratios.mean()

    if indices.mean() <= 0:
        return np.ones(season_length)

    # Normalize so the indices average to exactly one week of level
    return indices / indices.mean()


class ForecastModel:
    """Capability shared by every ensemble strategy: produce a forecast from series + horizon."""

    name = 'base'
    description = ''
    min_history = 1

    def forecast(self, values: np.ndarray, horizon: int) -> np.ndarray:
        raise NotImplementedError

    def check_history(self, values):
        if len(values) < self.min_history:
            raise ValueError(f"{self.name} needs at least {self.min_history} points, got {len(values)}")

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


class NaivePersistenceModel(ForecastModel):
    name = 'naive_persistence'
    description = 'Repeats the last observed value'
    min_history = 1

    def forecast(self, values, horizon):
        self.check_history(values)
        return np.full(horizon, float(values[-1]))


class LinearTrendModel(ForecastModel):
    name = 'linear_trend'
    description = 'Least-squares trend line over the full series'
    min_history = 2

    def forecast(self, values, horizon):
        self.check_history(values)
        n = len(values)
        result = linregress(np.arange(n, dtype=float), np.asarray(values, dtype=float))
        future_x = np.arange(n, n + horizon, dtype=float)
        return result.intercept + result.slope * future_x


class SeasonalMovingAverageModel(ForecastModel):
    name = 'seasonal_moving_average'
    description = '7-day moving average re-applied with day-of-week seasonality'
    min_history = 1

    def __init__(self, window=None, min_weeks=None, strength_pct=None):
        self.window = window or MODEL_RULES["seasonal_window_days"]
        self.min_weeks = min_weeks or MODEL_RULES["min_weeks_for_seasonality"]
        self.strength_pct = MODEL_RULES["seasonality_strength_pct"] if strength_pct is None else strength_pct

    def seasonal_indices(self, values):
        """Weekday indices, or all ones when history is short or seasonality is weak."""
        if len(values) < self.window * self.min_weeks:
            return np.ones(self.window)
        indices = calculate_weekday_indices(values, self.window)
        if np.max(np.abs(indices - 1.0)) * 100 < self.strength_pct:
            return np.ones(self.window)
        return indices

    def forecast(self, values, horizon):
        self.check_history(values)
        values = np.asarray(values, dtype=float)
        n = len(values)
        indices = self.seasonal_indices(values)

        recent = values[-self.window:]
        recent_phases = np.arange(n - len(recent), n) % self.window
        # Level of the trailing window with its own seasonal effect removed
        level = float(np.mean(recent) / np.mean(indices[recent_phases]))

        future_phases = np.arange(n, n + horizon) % self.window
        return level * indices[future_phases]


class ExponentialSmoothingModel(ForecastModel):
    name = 'exponential_smoothing'
    description = 'Simple exponential smoothing with recency-weighted decay'
    min_history = 1

    def __init__(self, alpha=None):
        self.alpha = MODEL_RULES["smoothing_alpha"] if alpha is None else alpha

    def forecast(self, values, horizon):
        self.check_history(values)
        return np.full(horizon, calculate_exponential_smoothing(values, self.alpha))


ENSEMBLE_MODELS = (
    NaivePersistenceModel(),
    LinearTrendModel(),
    SeasonalMovingAverageModel(),
    ExponentialSmoothingModel()
)


def get_model_names(models=None):
    return [model.name for model in (models or ENSEMBLE_MODELS)]
