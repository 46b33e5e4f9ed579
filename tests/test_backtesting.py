"""
Tests for the backtest scorer
Holdout split, accuracy metrics and failure isolation
"""

import pytest
import numpy as np

from backtesting import (
    backtest_ensemble,
    backtest_model,
    calculate_mae,
    calculate_mape,
    calculate_r_squared,
    calculate_rmse,
    split_holdout,
)
from forecast_models import ENSEMBLE_MODELS, ForecastModel


class ExplodingModel(ForecastModel):
    name = 'exploding'

    def forecast(self, values, horizon):
        raise RuntimeError("boom")


class WrongLengthModel(ForecastModel):
    name = 'wrong_length'

    def forecast(self, values, horizon):
        return np.zeros(horizon + 1)


class NaNModel(ForecastModel):
    name = 'nan_model'

    def forecast(self, values, horizon):
        return np.full(horizon, np.nan)


class TestSplitHoldout:
    """Test the trailing holdout split"""

    def test_quarter_of_series_held_out(self):
        train, holdout = split_holdout(np.arange(30))
        assert len(holdout) == 8
        assert len(train) == 22
        assert holdout[0] == 22

    def test_minimum_three_holdout_points(self):
        train, holdout = split_holdout(np.arange(7))
        assert len(holdout) == 3
        assert len(train) == 4

    def test_training_portion_keeps_two_points(self):
        train, holdout = split_holdout(np.arange(4))
        assert len(train) == 2
        assert len(holdout) == 2

    def test_too_short_series_raises(self):
        with pytest.raises(ValueError):
            split_holdout(np.arange(2))


class TestAccuracyMetrics:
    """Test MAPE, MAE, RMSE and R²"""

    def test_mape(self):
        assert calculate_mape([100, 200], [110, 180]) == pytest.approx(10.0)

    def test_mape_ignores_zero_actuals(self):
        assert calculate_mape([0, 100], [10, 110]) == pytest.approx(5.0)

    def test_mape_all_zero_actuals(self):
        assert calculate_mape([0, 0, 0], [1, 2, 3]) == 0.0

    def test_mae_and_rmse(self):
        actual = [1.0, 2.0, 3.0]
        predicted = [2.0, 2.0, 1.0]
        assert calculate_mae(actual, predicted) == pytest.approx(1.0)
        assert calculate_rmse(actual, predicted) == pytest.approx(np.sqrt(5 / 3))

    def test_r_squared_perfect(self):
        assert calculate_r_squared([1, 2, 3], [1, 2, 3]) == 1.0

    def test_r_squared_constant_actuals(self):
        assert calculate_r_squared([5, 5, 5], [5, 5, 5]) == 1.0
        assert calculate_r_squared([5, 5, 5], [4, 6, 5]) == 0.0

    def test_r_squared_all_zero_actuals(self):
        assert calculate_r_squared([0, 0, 0], [0, 0, 0]) == 0.0
        assert calculate_r_squared([0, 0, 0], [0, 0, 0], benchmark=0.0) == 0.0

    def test_r_squared_worse_than_mean_is_negative(self):
        assert calculate_r_squared([1, 2, 3], [3, 2, 1]) < 0

    def test_r_squared_against_benchmark(self):
        # Forecast tracks growth far better than the training mean would
        actual = [10.0, 11.0, 12.0]
        predicted = [10.5, 11.0, 11.5]
        assert calculate_r_squared(actual, predicted, benchmark=5.0) > 0.99

    def test_empty_inputs(self):
        assert calculate_mape([], []) == 0.0
        assert calculate_mae([], []) == 0.0
        assert calculate_rmse([], []) == 0.0
        assert calculate_r_squared([], []) == 0.0


class TestBacktestModel:
    """Test single-candidate backtests"""

    def test_successful_backtest(self):
        values = np.full(20, 50.0)
        result = backtest_model(ENSEMBLE_MODELS[0], values)

        assert result['status'] == 'ok'
        assert result['error'] == ''
        assert result['mape'] == 0.0
        assert result['r_squared'] == 1.0
        assert result['residual_std'] == 0.0
        assert len(result['predictions']) == len(result['actuals']) == 5

    def test_exception_marks_candidate_failed(self):
        result = backtest_model(ExplodingModel(), np.arange(20, dtype=float))

        assert result['status'] == 'failed'
        assert 'RuntimeError' in result['error']
        assert 'boom' in result['error']

    def test_wrong_length_marks_candidate_failed(self):
        result = backtest_model(WrongLengthModel(), np.arange(20, dtype=float))
        assert result['status'] == 'failed'

    def test_non_finite_predictions_mark_candidate_failed(self):
        result = backtest_model(NaNModel(), np.arange(20, dtype=float))
        assert result['status'] == 'failed'
        assert 'non-finite' in result['error']


class TestBacktestEnsemble:
    """Test backtesting of the whole ensemble"""

    def test_one_result_per_candidate_in_order(self):
        values = np.linspace(100, 200, 30)
        results = backtest_ensemble(ENSEMBLE_MODELS, values)
        assert [r['name'] for r in results] == [m.name for m in ENSEMBLE_MODELS]

    def test_failure_does_not_affect_other_candidates(self):
        values = np.linspace(100, 200, 30)
        results = backtest_ensemble((ExplodingModel(),) + ENSEMBLE_MODELS, values)

        assert results[0]['status'] == 'failed'
        assert all(r['status'] == 'ok' for r in results[1:])

    def test_parallel_matches_sequential(self):
        rng = np.random.default_rng(7)
        values = 1000 + rng.normal(0, 50, 45)

        sequential = backtest_ensemble(ENSEMBLE_MODELS, values)
        parallel = backtest_ensemble(ENSEMBLE_MODELS, values, use_parallel=True)

        assert [r['name'] for r in parallel] == [r['name'] for r in sequential]
        for seq, par in zip(sequential, parallel):
            assert par['mape'] == seq['mape']
            assert par['rmse'] == seq['rmse']
