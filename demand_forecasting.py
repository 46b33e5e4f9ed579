"""
Demand Forecasting Module

Entry points of the forecasting engine used by the stock-forecasting screen.
Turns a normalized daily series (revenue, units sold or order count) into a
multi-period forecast with uncertainty bounds and accuracy metrics.

Pipeline:
1. Normalize the series (sorted, gap-filled, at least 7 days)
2. Backtest every ensemble candidate on the trailing holdout
3. Select the best candidate and score its quality / confidence
4. Re-run the winner on the full series over the requested horizon
5. Attach widening confidence bands

Every call is a pure function of its inputs: no state is kept between calls,
and identical inputs give identical results.
"""

from collections import defaultdict
from collections.abc import Mapping
from datetime import timedelta

import numpy as np
from joblib import Parallel, delayed
from scipy.stats import linregress

from analytics_models import ForecastResult, InsufficientDataError, NoViableModelError
from backtesting import backtest_ensemble
from business_rules import FORECAST_RULES, NON_NEGATIVE_METRICS, resolve_metric
from confidence_bands import generate_confidence_bands
from data_loader import PRODUCT_FIELDS, clean_label, get_field, load_metric_series, normalize_historical_points
from forecast_models import ENSEMBLE_MODELS, future_dates
from model_selection import build_accuracy_metrics, classify_series_pattern, rank_models, summarize_candidates

# Per-product forecasting switches to a thread pool above this many products
PARALLEL_MIN_PRODUCTS = 50


def _series_pattern(values):
    """Volatility / trend label of the historical series."""
    mean = float(np.mean(values))
    if mean <= 0:
        return classify_series_pattern(0.0, 0.0)
    cv = float(np.std(values)) / mean * 100
    slope = linregress(np.arange(len(values), dtype=float), values).slope
    return classify_series_pattern(cv, slope / mean * 100)


def compute_forecast(historical_series, horizon_days, metric='revenue', confidence_level=None,
                     models=None, non_negative=None, use_parallel=False):
    """
    Forecast a daily series over the requested horizon.

    Args:
        historical_series: HistoricalPoints (or {'date', 'value'} mappings) for one metric
        horizon_days: Number of future days to forecast (e.g. 30/90/180)
        metric: 'revenue', 'quantity' or 'orders' (recorded in parameters)
        confidence_level: Interval level for the bands (default 95)
        models: Ensemble strategies to evaluate (default ENSEMBLE_MODELS)
        non_negative: Clamp forecasts and bounds at zero (default: True for all known metrics)
        use_parallel: Backtest candidates on a joblib thread pool

    Returns:
        ForecastResult

    Raises:
        InsufficientDataError: fewer than 7 distinct days of history
        NoViableModelError: every candidate failed to produce a forecast
        ValueError: invalid horizon or metric
    """
    logs = []
    logs.append("--- Forecasting Engine ---")

    if isinstance(horizon_days, bool) or not isinstance(horizon_days, (int, np.integer)) or horizon_days < 1:
        raise ValueError(f"horizon_days must be a positive integer, got {horizon_days!r}")
    horizon_days = int(horizon_days)

    metric = resolve_metric(metric)
    if non_negative is None:
        non_negative = metric in NON_NEGATIVE_METRICS
    if confidence_level is None:
        confidence_level = FORECAST_RULES["confidence_bands"]["default_level"]

    models = tuple(ENSEMBLE_MODELS if models is None else models)
    if not models:
        raise ValueError("At least one forecasting model is required")

    # ===== STEP 1: Normalize History =====
    points, skipped = normalize_historical_points(historical_series)
    values = np.array([point.value for point in points], dtype=float)
    logs.append(f"INFO: Using {len(points)} days of history ({points[0].date} to {points[-1].date})")
    if skipped > 0:
        logs.append(f"WARNING: Skipped {skipped} malformed historical points")

    # ===== STEP 2: Backtest Candidates =====
    logs.append(f"INFO: Backtesting {len(models)} candidate models...")
    backtests = backtest_ensemble(models, values, use_parallel=use_parallel)

    for bt in backtests:
        if bt['status'] == 'ok':
            logs.append(f"INFO: {bt['name']}: MAPE {bt['mape']:.2f}%, RMSE {bt['rmse']:.2f}, R² {bt['r_squared']:.3f}")
        else:
            logs.append(f"WARNING: {bt['name']} dropped: {bt['error']}")

    # ===== STEP 3: Select and Re-run the Winner =====
    ranking = rank_models(backtests)

    best = None
    predicted = None
    failures = {bt['name']: bt['error'] for bt in backtests if bt['status'] != 'ok'}
    for position, bt in ranking:
        try:
            with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
                candidate_forecast = np.asarray(models[position].forecast(values, horizon_days), dtype=float)
        except Exception as e:
            failures[bt['name']] = f"{type(e).__name__}: {e}"
            logs.append(f"WARNING: {bt['name']} failed on the full series: {e}")
            continue

        if candidate_forecast.shape != (horizon_days,) or not np.all(np.isfinite(candidate_forecast)):
            failures[bt['name']] = "Produced an invalid forecast on the full series"
            logs.append(f"WARNING: {bt['name']} produced an invalid forecast on the full series")
            continue

        best = bt
        predicted = candidate_forecast
        break

    if best is None:
        raise NoViableModelError(failures)

    metrics = build_accuracy_metrics(best, len(points))
    logs.append(f"INFO: Selected {best['name']} (quality {metrics.quality_score:.1f}, confidence {metrics.confidence:.1f})")

    # ===== STEP 4: Confidence Bands =====
    dates = future_dates(points[-1].date, horizon_days)
    forecasts = generate_confidence_bands(
        dates, predicted, best['residual_std'],
        confidence_level=confidence_level, non_negative=non_negative
    )

    total_predicted = sum(point.predicted for point in forecasts)
    logs.append(f"INFO: Forecast {horizon_days} days ahead, total predicted {metric}: {total_predicted:,.2f}")

    parameters = {
        'forecast_horizon': horizon_days,
        'forecast_metric': metric,
        'granularity': 'daily',
        'confidence_level': float(confidence_level),
        'historical_days': len(points),
        'skipped_points': skipped,
        'first_date': points[0].date.isoformat(),
        'last_date': points[-1].date.isoformat(),
        'series_pattern': _series_pattern(values)
    }

    return ForecastResult(
        historical=points,
        forecasts=forecasts,
        metrics=metrics,
        best_model=best['name'],
        model_comparison=summarize_candidates(backtests, len(points)),
        parameters=parameters,
        logs=tuple(logs)
    )


def generate_forecast(records, horizon_days=None, metric='revenue', **kwargs):
    """
    Full pipeline from raw business records to a forecast.

    Args:
        records: Raw sales records (date + numeric fields)
        horizon_days: Forecast horizon in days (default 90)
        metric: 'revenue', 'quantity' or 'orders'
        **kwargs: Passed through to compute_forecast()

    Returns:
        tuple: (logs, ForecastResult)

    Raises:
        InsufficientDataError, NoViableModelError
    """
    if horizon_days is None:
        horizon_days = FORECAST_RULES["default_horizon_days"]

    logs, points, skipped = load_metric_series(records, metric)
    result = compute_forecast(points, horizon_days, metric=metric, **kwargs)
    logs.extend(result.logs)
    return logs, result


def _forecast_product(product, records, horizon_days, metric):
    try:
        _, result = generate_forecast(records, horizon_days, metric)
    except (InsufficientDataError, NoViableModelError) as e:
        return product, None, str(e)
    return product, result, ''


def compute_product_forecasts(records, horizon_days=30, metric='quantity', use_parallel=True):
    """
    Forecast each product separately.

    Products without enough history (or where every model fails) are skipped
    and reported in the logs.

    Returns:
        tuple: (logs, {product_name: ForecastResult}) ordered by product name
    """
    logs = []
    logs.append("--- Product Forecasting Engine ---")

    grouped = defaultdict(list)
    unlabeled = 0
    for record in records or ():
        product = get_field(record, PRODUCT_FIELDS) if isinstance(record, Mapping) else None
        if product is None:
            unlabeled += 1
            continue
        grouped[clean_label(product)].append(record)

    if unlabeled > 0:
        logs.append(f"WARNING: {unlabeled} records have no product name and were ignored")
    logs.append(f"INFO: Forecasting {len(grouped)} products over {horizon_days} days")

    products = sorted(grouped)
    if use_parallel and len(products) > PARALLEL_MIN_PRODUCTS:
        n_jobs = min(4, len(products) // PARALLEL_MIN_PRODUCTS)
        outcomes = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_forecast_product)(product, grouped[product], horizon_days, metric) for product in products
        )
    else:
        outcomes = [_forecast_product(product, grouped[product], horizon_days, metric) for product in products]

    results = {}
    for product, result, error in outcomes:
        if result is None:
            logs.append(f"WARNING: Skipped '{product}': {error}")
            continue
        results[product] = result

    logs.append(f"INFO: Generated forecasts for {len(results)} of {len(products)} products")
    return logs, results


def calculate_dynamic_horizons(last_date, horizons=(30, 60, 90)):
    """
    Forecast horizon end dates anchored on the last data date rather than today.

    Returns:
        dict: {'horizon30': 'YYYY-MM-DD', 'horizon60': ..., 'horizon90': ...}
    """
    return {f"horizon{days}": (last_date + timedelta(days=days)).isoformat() for days in horizons}
