"""
Pytest configuration and shared fixtures for all tests
Centralized mock series and business records
"""

import pytest
import numpy as np
import os
import sys
from datetime import date, timedelta

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from analytics_models import AnalyticsConfig, BusinessDataBundle, HistoricalPoint

START_DATE = date(2024, 1, 1)  # A Monday


def build_series(values, start=START_DATE):
    return tuple(
        HistoricalPoint(date=start + timedelta(days=i), value=float(value))
        for i, value in enumerate(values)
    )


# ===== SHARED SERIES FIXTURES =====

@pytest.fixture
def start_date():
    return START_DATE


@pytest.fixture
def flat_series():
    """30 days of constant revenue at 1,000,000"""
    return build_series([1_000_000.0] * 30)


@pytest.fixture
def growth_series():
    """30 days growing 5% per day from 100"""
    return build_series([100.0 * 1.05 ** i for i in range(30)])


@pytest.fixture
def spike_series():
    """
    30 days flat at 100 except day 20 (2024-01-20) at 400
    """
    values = [100.0] * 30
    values[19] = 400.0
    return build_series(values)


@pytest.fixture
def noisy_series():
    """
    60 days of revenue with a weekend lift and seeded noise
    - Level around 1,000
    - Saturdays and Sundays ~30% higher
    """
    rng = np.random.default_rng(42)
    values = []
    for i in range(60):
        day = START_DATE + timedelta(days=i)
        base = 1300.0 if day.weekday() >= 5 else 1000.0
        values.append(max(0.0, base + rng.normal(0, 60)))
    return build_series(values)


@pytest.fixture
def series_builder():
    """Factory building a HistoricalPoint series from a list of values"""
    return build_series


# ===== BUSINESS RECORD FIXTURES =====

@pytest.fixture
def sales_records_builder():
    """
    Factory producing raw sales records.

    Each entry of `day_rows` is a list of extra fields for records on that day;
    day i is START_DATE + i.
    """
    def _build(day_rows, start=START_DATE):
        records = []
        for i, rows in enumerate(day_rows):
            day = (start + timedelta(days=i)).isoformat()
            for row in rows:
                record = {'date': day}
                record.update(row)
                records.append(record)
        return records
    return _build


@pytest.fixture
def concentrated_sales(sales_records_builder):
    """
    30 days of sales where Shopee carries 85% of revenue
    """
    return sales_records_builder([
        [
            {'revenue': 850_000, 'marketplace': 'Shopee', 'quantity': 5},
            {'revenue': 150_000, 'marketplace': 'Tokopedia', 'quantity': 1}
        ]
        for _ in range(30)
    ])


@pytest.fixture
def concentrated_bundle(concentrated_sales):
    return BusinessDataBundle.from_collections(sales=concentrated_sales)


@pytest.fixture
def default_config():
    return AnalyticsConfig()
