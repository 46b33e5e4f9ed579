"""
Tests for confidence band generation
"""

import pytest
import numpy as np
from datetime import date, timedelta

from confidence_bands import band_growth, generate_confidence_bands


def make_dates(n):
    return [date(2024, 2, 1) + timedelta(days=i) for i in range(n)]


class TestBandGrowth:

    def test_first_step_has_no_growth(self):
        assert band_growth(1) == 1.0

    def test_growth_is_increasing(self):
        growth = [band_growth(step) for step in range(1, 31)]
        assert all(b > a for a, b in zip(growth, growth[1:]))

    def test_custom_rate(self):
        assert band_growth(5, rate=0.25) == pytest.approx(np.sqrt(2.0))


class TestGenerateConfidenceBands:
    """Test bound ordering, width growth and non-negativity"""

    def test_bounds_contain_prediction(self):
        predicted = np.linspace(500, 800, 20)
        points = generate_confidence_bands(make_dates(20), predicted, residual_std=40.0)

        assert len(points) == 20
        for point in points:
            assert point.lower_bound <= point.predicted <= point.upper_bound

    def test_width_never_narrows(self):
        points = generate_confidence_bands(make_dates(30), np.full(30, 100.0), residual_std=30.0)
        widths = [p.upper_bound - p.lower_bound for p in points]
        assert all(b >= a for a, b in zip(widths, widths[1:]))

    def test_default_95_percent_interval(self):
        points = generate_confidence_bands(make_dates(1), [1000.0], residual_std=10.0)
        assert points[0].upper_bound == pytest.approx(1019.6)
        assert points[0].lower_bound == pytest.approx(980.4)

    def test_confidence_level_changes_width(self):
        narrow = generate_confidence_bands(make_dates(1), [1000.0], 10.0, confidence_level=80)[0]
        wide = generate_confidence_bands(make_dates(1), [1000.0], 10.0, confidence_level=99)[0]
        assert (wide.upper_bound - wide.lower_bound) > (narrow.upper_bound - narrow.lower_bound)

    def test_lower_bound_shifted_at_zero(self):
        point = generate_confidence_bands(make_dates(1), [1.0], residual_std=10.0)[0]

        assert point.lower_bound == 0.0
        assert point.upper_bound == pytest.approx(39.2)
        assert point.predicted == 1.0

    def test_negative_prediction_floored(self):
        point = generate_confidence_bands(make_dates(1), [-50.0], residual_std=0.0)[0]
        assert point.predicted == 0.0
        assert point.lower_bound == 0.0

    def test_signed_metric_allows_negative_bounds(self):
        point = generate_confidence_bands(make_dates(1), [1.0], residual_std=10.0, non_negative=False)[0]
        assert point.lower_bound < 0

    def test_invalid_residual_std_gives_zero_width(self):
        point = generate_confidence_bands(make_dates(1), [100.0], residual_std=float('nan'))[0]
        assert point.lower_bound == point.predicted == point.upper_bound == 100.0

    def test_steps_and_dates(self):
        dates = make_dates(3)
        points = generate_confidence_bands(dates, [1.0, 2.0, 3.0], residual_std=1.0)
        assert [p.step for p in points] == [1, 2, 3]
        assert [p.date for p in points] == dates
