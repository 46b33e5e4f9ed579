"""
Confidence Band Generator

Attaches widening lower/upper bounds to the selected point forecast:

    bound = predicted ∓ z · σ · growth(h),   growth(h) = sqrt(1 + rate · (h - 1))

σ is the winning candidate's backtest residual standard deviation and z the
multiplier of the requested interval (95% by default).
"""

import numpy as np

from analytics_models import ForecastPoint
from business_rules import FORECAST_RULES, get_z_score

BAND_RULES = FORECAST_RULES["confidence_bands"]


def band_growth(step, rate=None):
    """Uncertainty multiplier for forecast step h (1-based); increases monotonically with h."""
    if rate is None:
        rate = BAND_RULES["growth_rate_per_step"]
    return float(np.sqrt(1.0 + rate * (step - 1)))


def generate_confidence_bands(dates, predicted, residual_std, confidence_level=None, non_negative=True):
    """
    Build ForecastPoints with bounds around each predicted value.

    For non-negative metrics the point forecast is floored at zero, and a band
    whose lower edge would cross zero is shifted up to start at zero. The band
    width is always 2·z·σ·growth(h), so uncertainty never narrows with distance.

    Args:
        dates: Future calendar days, one per step
        predicted: Point forecasts aligned with dates
        residual_std: Backtest residual standard deviation of the selected model
        confidence_level: Interval level in percent (80, 90, 95, 99)
        non_negative: Whether the metric can never be negative

    Returns:
        tuple: ForecastPoint per future day
    """
    z = get_z_score(confidence_level)
    sigma = float(residual_std) if np.isfinite(residual_std) and residual_std > 0 else 0.0

    points = []
    for step, (day, value) in enumerate(zip(dates, predicted), start=1):
        value = float(value)
        half_width = z * sigma * band_growth(step)

        if non_negative:
            value = max(0.0, value)

        lower = value - half_width
        upper = value + half_width
        if non_negative and lower < 0:
            lower = 0.0
            upper = 2 * half_width

        points.append(ForecastPoint(
            date=day,
            predicted=value,
            lower_bound=lower,
            upper_bound=upper,
            step=step
        ))

    return tuple(points)
