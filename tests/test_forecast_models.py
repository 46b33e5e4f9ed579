"""
Tests for the forecast model ensemble
"""

import pytest
import numpy as np
from datetime import date

from forecast_models import (
    ENSEMBLE_MODELS,
    ExponentialSmoothingModel,
    LinearTrendModel,
    NaivePersistenceModel,
    SeasonalMovingAverageModel,
    calculate_exponential_smoothing,
    calculate_weekday_indices,
    future_dates,
    get_model_names,
)


class TestHelpers:
    """Test shared forecasting helpers"""

    def test_future_dates(self):
        dates = future_dates(date(2024, 1, 31), 3)
        assert dates == [date(2024, 2, 1), date(2024, 2, 2), date(2024, 2, 3)]

    def test_exponential_smoothing(self):
        assert calculate_exponential_smoothing([10, 20], alpha=0.5) == 15.0
        assert calculate_exponential_smoothing([], alpha=0.5) == 0.0

    def test_weekday_indices_average_to_one(self):
        values = np.array([100, 100, 100, 100, 100, 200, 200] * 4, dtype=float)
        indices = calculate_weekday_indices(values)

        assert len(indices) == 7
        assert indices.mean() == pytest.approx(1.0)
        assert indices[5] > indices[0]

    def test_weekday_indices_all_zero_series(self):
        indices = calculate_weekday_indices(np.zeros(21))
        assert np.all(indices == 1.0)


class TestEnsemble:
    """Test the fixed ensemble definition"""

    def test_ensemble_order(self):
        assert get_model_names() == [
            'naive_persistence',
            'linear_trend',
            'seasonal_moving_average',
            'exponential_smoothing'
        ]

    def test_every_model_returns_one_value_per_step(self):
        values = np.linspace(100, 200, 30)
        for model in ENSEMBLE_MODELS:
            forecast = model.forecast(values, 14)
            assert forecast.shape == (14,), model.name
            assert np.all(np.isfinite(forecast)), model.name

    def test_models_are_deterministic(self):
        values = np.array([5, 9, 4, 12, 7, 8, 15, 6, 10, 11, 3, 9, 14, 8], dtype=float)
        for model in ENSEMBLE_MODELS:
            np.testing.assert_array_equal(model.forecast(values, 10), model.forecast(values, 10))


class TestNaivePersistence:

    def test_repeats_last_value(self):
        forecast = NaivePersistenceModel().forecast(np.array([1.0, 2.0, 7.0]), 4)
        np.testing.assert_array_equal(forecast, [7.0, 7.0, 7.0, 7.0])

    def test_empty_history_raises(self):
        with pytest.raises(ValueError):
            NaivePersistenceModel().forecast(np.array([]), 3)


class TestLinearTrend:

    def test_extends_a_perfect_line(self):
        values = 10 + 2 * np.arange(10, dtype=float)
        forecast = LinearTrendModel().forecast(values, 3)
        np.testing.assert_allclose(forecast, [30.0, 32.0, 34.0])

    def test_needs_two_points(self):
        with pytest.raises(ValueError):
            LinearTrendModel().forecast(np.array([5.0]), 3)


class TestSeasonalMovingAverage:

    def test_reproduces_weekly_pattern(self):
        values = np.array([100, 100, 100, 100, 100, 200, 200] * 4, dtype=float)
        forecast = SeasonalMovingAverageModel().forecast(values, 7)
        np.testing.assert_allclose(forecast, [100, 100, 100, 100, 100, 200, 200], rtol=1e-6)

    def test_short_history_uses_flat_level(self):
        values = np.array([10, 20, 30, 40, 50, 60, 70, 80], dtype=float)
        forecast = SeasonalMovingAverageModel().forecast(values, 5)
        # Level = mean of the last 7 days
        np.testing.assert_allclose(forecast, [50.0] * 5)

    def test_weak_seasonality_is_ignored(self):
        values = np.array([100, 101, 99, 100, 102, 100, 98] * 3, dtype=float)
        model = SeasonalMovingAverageModel()
        assert np.all(model.seasonal_indices(values) == 1.0)


class TestExponentialSmoothing:

    def test_flat_forecast_at_smoothed_level(self):
        values = np.array([10.0, 20.0])
        forecast = ExponentialSmoothingModel(alpha=0.5).forecast(values, 3)
        np.testing.assert_allclose(forecast, [15.0, 15.0, 15.0])

    def test_default_alpha_from_rules(self):
        assert ExponentialSmoothingModel().alpha == 0.3
