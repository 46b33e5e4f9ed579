"""
Backtest Scorer

Evaluates every ensemble candidate against held-out recent history:
the trailing 25% of the series (minimum 3 points) is reserved as actuals,
the candidate is re-run on the leading portion only, and point-wise errors
are turned into MAPE, MAE, RMSE and R².

Numeric guards (division by zero, NaN, infinity) are handled locally and
coerced to safe sentinels so a degenerate series lowers scores instead of
failing the pipeline.
"""

import numpy as np
from joblib import Parallel, delayed

from business_rules import FORECAST_RULES

BACKTEST_RULES = FORECAST_RULES["backtest"]
EPSILON = 1e-9

# Only parallelize when there are enough candidates to be worth the thread pool
PARALLEL_MIN_MODELS = 4


def _finite_or(value, fallback=0.0):
    value = float(value)
    return value if np.isfinite(value) else fallback


def split_holdout(values, holdout_fraction=None, min_holdout=None, min_training=None):
    """
    Split a series into (training, holdout) arrays.

    Holdout = ceil(holdout_fraction * n), at least min_holdout points,
    and never so large that fewer than min_training points remain.

    Raises:
        ValueError: series too short to leave both portions non-empty
    """
    if holdout_fraction is None:
        holdout_fraction = BACKTEST_RULES["holdout_fraction"]
    if min_holdout is None:
        min_holdout = BACKTEST_RULES["min_holdout_points"]
    if min_training is None:
        min_training = BACKTEST_RULES["min_training_points"]

    values = np.asarray(values, dtype=float)
    n = len(values)

    holdout = max(min_holdout, int(np.ceil(n * holdout_fraction)))
    holdout = min(holdout, n - min_training)
    if holdout < 1:
        raise ValueError(f"Series of {n} points is too short to backtest")

    return values[:-holdout], values[-holdout:]


def calculate_mape(actual, predicted):
    """
    Mean Absolute Percentage Error (%).

    Zero actuals contribute nothing (the divisor stays the full length),
    so days without sales do not explode the metric.
    """
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    if len(actual) == 0:
        return 0.0

    nonzero = actual > EPSILON
    contributions = np.zeros(len(actual))
    contributions[nonzero] = np.abs(actual[nonzero] - predicted[nonzero]) / actual[nonzero]
    return _finite_or(contributions.mean() * 100)


def calculate_mae(actual, predicted):
    """Mean Absolute Error"""
    actual = np.asarray(actual, dtype=float)
    if len(actual) == 0:
        return 0.0
    return _finite_or(np.mean(np.abs(actual - np.asarray(predicted, dtype=float))))


def calculate_rmse(actual, predicted):
    """Root Mean Square Error"""
    actual = np.asarray(actual, dtype=float)
    if len(actual) == 0:
        return 0.0
    return _finite_or(np.sqrt(np.mean((actual - np.asarray(predicted, dtype=float)) ** 2)))


def calculate_r_squared(actual, predicted, benchmark=None):
    """
    Coefficient of determination of a forecast against held-out actuals.

    The total sum of squares is measured around `benchmark` (the training
    mean during backtests, the holdout mean when omitted). When that total is
    zero the result is 1.0 for a perfect forecast and 0.0 otherwise; an
    all-zero holdout explains nothing and also scores 0.0.
    Capped at 1.0; may be negative for forecasts worse than the benchmark.
    """
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    if len(actual) == 0:
        return 0.0
    if benchmark is None:
        benchmark = actual.mean()

    ss_res = float(np.sum((actual - predicted) ** 2))
    ss_tot = float(np.sum((actual - benchmark) ** 2))
    tolerance = EPSILON * max(1.0, float(np.sum(actual ** 2)))

    if ss_tot <= tolerance:
        if not np.any(np.abs(actual) > EPSILON):
            return 0.0
        return 1.0 if ss_res <= tolerance else 0.0

    return min(1.0, _finite_or(1.0 - ss_res / ss_tot))


def backtest_model(model, values):
    """
    Backtest one candidate on the trailing holdout of a series.

    Returns:
        dict: {
            'name', 'description', 'status' ('ok' or 'failed'), 'error',
            'mape', 'mae', 'rmse', 'r_squared', 'residual_std',
            'mean_actual', 'training_scale', 'predictions', 'actuals'
        }
    """
    result = {
        'name': model.name,
        'description': getattr(model, 'description', ''),
        'status': 'failed',
        'error': '',
        'mape': np.nan,
        'mae': np.nan,
        'rmse': np.nan,
        'r_squared': np.nan,
        'residual_std': np.nan,
        'mean_actual': np.nan,
        'training_scale': np.nan,
        'predictions': np.array([]),
        'actuals': np.array([])
    }

    try:
        train, actual = split_holdout(values)
        with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
            predicted = np.asarray(model.forecast(train, len(actual)), dtype=float)
    except Exception as e:
        result['error'] = f"{type(e).__name__}: {e}"
        return result

    if predicted.shape != actual.shape:
        result['error'] = f"Expected {len(actual)} predictions, got {predicted.size}"
        return result
    if not np.all(np.isfinite(predicted)):
        result['error'] = "Produced non-finite predictions"
        return result

    residuals = actual - predicted
    result.update({
        'status': 'ok',
        'mape': calculate_mape(actual, predicted),
        'mae': calculate_mae(actual, predicted),
        'rmse': calculate_rmse(actual, predicted),
        'r_squared': calculate_r_squared(actual, predicted, benchmark=float(np.mean(train))),
        'residual_std': _finite_or(np.std(residuals)),
        'mean_actual': float(np.mean(actual)),
        'training_scale': _finite_or(np.mean(np.abs(train))),
        'predictions': predicted,
        'actuals': actual
    })
    return result


def backtest_ensemble(models, values, use_parallel=False):
    """
    Backtest every candidate against the same series.

    Args:
        models: Sequence of ForecastModel instances
        values: Historical values (numpy array, chronological)
        use_parallel: Run candidates on a joblib thread pool

    Returns:
        list: One backtest_model() dict per candidate, in ensemble order
    """
    values = np.asarray(values, dtype=float)
    models = list(models)

    if use_parallel and len(models) >= PARALLEL_MIN_MODELS:
        n_jobs = min(4, len(models))
        return Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(backtest_model)(model, values) for model in models
        )

    return [backtest_model(model, values) for model in models]
