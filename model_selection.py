"""
Model Selector

Picks the winning ensemble candidate from its backtest and derives the
overall quality score and confidence of the forecast.
"""

import numpy as np

from analytics_models import AccuracyMetrics, ModelCandidate, NoViableModelError
from business_rules import FORECAST_RULES

QUALITY_RULES = FORECAST_RULES["quality_score"]
CONFIDENCE_RULES = FORECAST_RULES["confidence"]
PATTERN_RULES = FORECAST_RULES["pattern_classification"]

# MAPE values closer than this are treated as ties
MAPE_TIE_DECIMALS = 9
EPSILON = 1e-9


def holdout_error_pct(backtest):
    """
    Percentage error a candidate is ranked by.

    MAPE when the holdout has sales; an all-zero holdout makes MAPE
    meaningless, so MAE as a percentage of the training scale is used instead.
    """
    if abs(backtest['mean_actual']) > EPSILON:
        return backtest['mape']
    scale = backtest.get('training_scale', 0.0)
    return 100.0 * backtest['mae'] / max(scale, EPSILON)


def rank_models(backtests):
    """
    Order viable candidates best first: lowest percentage error, then
    higher R², then lower RMSE, then ensemble order. Failed candidates are dropped.

    Returns:
        list: (position, backtest) pairs; position indexes the ensemble

    Raises:
        NoViableModelError: every candidate failed
    """
    viable = [(position, bt) for position, bt in enumerate(backtests) if bt['status'] == 'ok']
    if not viable:
        raise NoViableModelError({bt['name']: bt['error'] for bt in backtests})

    return sorted(
        viable,
        key=lambda item: (
            round(holdout_error_pct(item[1]), MAPE_TIE_DECIMALS),
            -item[1]['r_squared'],
            item[1]['rmse'],
            item[0]
        )
    )


def select_best_model(backtests):
    """
    Select the candidate with the lowest percentage error (ties: higher R², lower RMSE, ensemble order).

    Raises:
        NoViableModelError: every candidate failed
    """
    return rank_models(backtests)[0][1]


def calculate_quality_score(mape, rmse, r_squared, mean_actual, mae=None, training_scale=None):
    """
    Weighted 0-100 composite of the accuracy metrics.

    - MAPE component: 100 - MAPE
    - RMSE component: 100 / (1 + RMSE / mean actual)
    - R² component: R² clipped to [0, 1], scaled to 100

    When the holdout mean is zero the MAPE component becomes 100 - MAE as a
    percentage of training_scale and RMSE is measured against that scale.
    Without any usable scale both error components score 0.
    Any non-finite metric scores 0.
    """
    if not np.all(np.isfinite([mape, rmse, r_squared, mean_actual])):
        return 0.0

    if abs(mean_actual) > EPSILON:
        mape_score = max(0.0, 100.0 - mape)
        rmse_score = 100.0 / (1.0 + rmse / abs(mean_actual))
    elif mae is not None and training_scale is not None and np.isfinite(training_scale) \
            and training_scale > EPSILON and np.isfinite(mae):
        mape_score = max(0.0, 100.0 - 100.0 * mae / training_scale)
        rmse_score = 100.0 / (1.0 + rmse / training_scale)
    else:
        mape_score = 0.0
        rmse_score = 0.0

    r2_score = float(np.clip(r_squared, 0.0, 1.0)) * 100

    score = (
        QUALITY_RULES["mape_weight"] * mape_score +
        QUALITY_RULES["rmse_weight"] * rmse_score +
        QUALITY_RULES["r_squared_weight"] * r2_score
    )
    if not np.isfinite(score):
        return 0.0
    return round(float(np.clip(score, 0.0, 100.0)), 2)


def calculate_confidence(quality_score, n_points):
    """
    Forecast confidence: quality score discounted by a data-volume ceiling.

    The ceiling rises linearly from base_ceiling (no history) to 100 at
    full_volume_days of history, so short series never reach full confidence
    however well they fit.
    """
    base = CONFIDENCE_RULES["base_ceiling"]
    volume = min(1.0, max(0, n_points) / CONFIDENCE_RULES["full_volume_days"])
    ceiling = base + (100 - base) * volume
    confidence = quality_score * ceiling / 100
    return round(float(np.clip(confidence, 0.0, 100.0)), 2)


def build_accuracy_metrics(best, n_points):
    """AccuracyMetrics for the selected candidate."""
    quality = calculate_quality_score(
        best['mape'], best['rmse'], best['r_squared'], best['mean_actual'],
        mae=best.get('mae'), training_scale=best.get('training_scale')
    )
    return AccuracyMetrics(
        mape=round(best['mape'], 4),
        mae=round(best['mae'], 4),
        rmse=round(best['rmse'], 4),
        r_squared=round(best['r_squared'], 4),
        confidence=calculate_confidence(quality, n_points),
        quality_score=quality
    )


def summarize_candidates(backtests, n_points):
    """Model comparison entries, in ensemble order."""
    candidates = []
    for bt in backtests:
        if bt['status'] == 'ok':
            metrics = build_accuracy_metrics(bt, n_points)
            residual_std = bt['residual_std']
        else:
            metrics = None
            residual_std = 0.0
        candidates.append(ModelCandidate(
            name=bt['name'],
            description=bt['description'],
            metrics=metrics,
            residual_std=residual_std,
            status=bt['status'],
            error=bt['error']
        ))
    return tuple(candidates)


def classify_series_pattern(cv, trend_slope_pct):
    """
    Classify a series based on volatility and trend

    Args:
        cv: Coefficient of variation (std/mean * 100)
        trend_slope_pct: Linear trend slope per day as % of the mean

    Returns:
        str: Pattern classification, e.g. "Stable & Growing"
    """
    if cv < PATTERN_RULES["stable_cv"]:
        volatility = 'Stable'
    elif cv < PATTERN_RULES["moderate_cv"]:
        volatility = 'Moderate'
    else:
        volatility = 'Volatile'

    if trend_slope_pct > PATTERN_RULES["trend_slope_pct"]:
        trend = 'Growing'
    elif trend_slope_pct < -PATTERN_RULES["trend_slope_pct"]:
        trend = 'Declining'
    else:
        trend = 'Flat'

    return f"{volatility} & {trend}"
