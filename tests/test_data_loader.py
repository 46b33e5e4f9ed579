"""
Tests for the series normalizer and sales dimension loader
"""

import pytest
import pandas as pd
import numpy as np
from datetime import date, datetime

from analytics_models import HistoricalPoint, InsufficientDataError, MalformedRecordWarning
from data_loader import (
    aggregate_series,
    clean_label,
    coerce_date,
    coerce_number,
    load_metric_series,
    load_sales_frame,
    normalize_historical_points,
)


def daily_records(n_days, revenue=1000, start='2024-01-01'):
    dates = pd.date_range(start=start, periods=n_days, freq='D')
    return [{'date': d.strftime('%Y-%m-%d'), 'revenue': revenue, 'quantity': 2} for d in dates]


class TestCoercion:
    """Test loose value parsing"""

    def test_number_with_thousands_separator(self):
        assert coerce_number("1,250,000") == 1250000.0

    def test_number_rejects_invalid_values(self):
        assert coerce_number(True) is None
        assert coerce_number(float('nan')) is None
        assert coerce_number(float('inf')) is None
        assert coerce_number("abc") is None
        assert coerce_number("   ") is None
        assert coerce_number(None) is None

    def test_number_accepts_numpy_types(self):
        assert coerce_number(np.int64(5)) == 5.0
        assert coerce_number(np.float32(2.5)) == 2.5

    def test_date_formats(self):
        assert coerce_date('2024-01-05') == date(2024, 1, 5)
        assert coerce_date(datetime(2024, 1, 5, 13, 45)) == date(2024, 1, 5)
        assert coerce_date(pd.Timestamp('2024-01-05')) == date(2024, 1, 5)
        assert coerce_date(date(2024, 1, 5)) == date(2024, 1, 5)

    def test_date_rejects_invalid_values(self):
        assert coerce_date('not a date') is None
        assert coerce_date(12345) is None
        assert coerce_date(None) is None

    def test_clean_label(self):
        assert clean_label('  Shopee   Mall ') == 'Shopee Mall'
        assert clean_label(None) == 'Unknown'
        assert clean_label('   ') == 'Unknown'


class TestLoadMetricSeries:
    """Test conversion of raw records into a daily series"""

    def test_returns_logs_points_and_skip_count(self):
        logs, points, skipped = load_metric_series(daily_records(10))

        assert isinstance(logs, list)
        assert logs[0] == "--- Series Normalizer ---"
        assert len(points) == 10
        assert all(isinstance(p, HistoricalPoint) for p in points)
        assert skipped == 0

    def test_sums_records_on_the_same_day(self):
        records = daily_records(7) + [{'date': '2024-01-01', 'revenue': 500}]
        _, points, _ = load_metric_series(records)

        assert points[0].value == 1500.0
        assert points[1].value == 1000.0

    def test_zero_fills_missing_days(self):
        records = daily_records(7) + [{'date': '2024-01-10', 'revenue': 300}]
        logs, points, _ = load_metric_series(records)

        assert len(points) == 10
        assert [p.value for p in points[7:]] == [0.0, 0.0, 300.0]
        assert any("Zero-filled 2 days" in log for log in logs)

    def test_series_is_sorted_and_contiguous(self):
        records = list(reversed(daily_records(8)))
        _, points, _ = load_metric_series(records)

        dates = [p.date for p in points]
        assert dates == sorted(dates)
        assert all((b - a).days == 1 for a, b in zip(dates, dates[1:]))

    def test_skips_malformed_records(self):
        records = daily_records(7) + [
            {'date': 'garbage', 'revenue': 100},
            {'date': '2024-01-02', 'revenue': 'n/a'},
            {'date': '2024-01-02', 'revenue': -50},
            {'revenue': 100},
            'not a record',
        ]
        with pytest.warns(MalformedRecordWarning, match="Skipped 5 malformed revenue records"):
            logs, points, skipped = load_metric_series(records)

        assert skipped == 5
        assert points[1].value == 1000.0
        assert any(log.startswith("WARNING:") for log in logs)

    def test_alternative_field_names(self):
        records = [
            {'order_date': f'2024-01-0{i}', 'total_revenue': '1,000'} for i in range(1, 8)
        ]
        _, points, _ = load_metric_series(records)
        assert all(p.value == 1000.0 for p in points)

    def test_quantity_metric(self):
        records = daily_records(7)
        records.append({'date': '2024-01-01', 'revenue': 10})  # no quantity: counts as one unit
        _, points, _ = load_metric_series(records, metric='units')

        assert points[0].value == 3.0
        assert points[1].value == 2.0

    def test_orders_metric_counts_records(self):
        records = daily_records(7) + daily_records(7)
        _, points, _ = load_metric_series(records, metric='orders')
        assert all(p.value == 2.0 for p in points)

    def test_unknown_metric_raises(self):
        with pytest.raises(ValueError):
            load_metric_series(daily_records(7), metric='profit')

    def test_six_days_is_insufficient(self):
        with pytest.raises(InsufficientDataError) as exc_info:
            load_metric_series(daily_records(6))

        assert exc_info.value.distinct_days == 6
        assert exc_info.value.minimum_days == 7

    def test_gap_filled_days_do_not_count_toward_minimum(self):
        records = daily_records(3) + daily_records(3, start='2024-01-20')
        with pytest.raises(InsufficientDataError):
            load_metric_series(records)

    def test_seven_days_is_enough(self):
        _, points, _ = load_metric_series(daily_records(7))
        assert len(points) == 7

    def test_empty_input_raises(self):
        with pytest.raises(InsufficientDataError):
            load_metric_series([])


class TestNormalizeHistoricalPoints:
    """Test re-normalization of caller-supplied series"""

    def test_accepts_mixed_point_shapes(self):
        points = [
            HistoricalPoint(date=date(2024, 1, 3), value=30.0),
            {'date': '2024-01-01', 'value': 10},
            ('2024-01-02', 20),
            {'date': '2024-01-04', 'value': 40},
            {'date': '2024-01-05', 'value': 50},
            {'date': '2024-01-06', 'value': 60},
            {'date': '2024-01-07', 'value': 70},
        ]
        normalized, skipped = normalize_historical_points(points)

        assert skipped == 0
        assert [p.value for p in normalized] == [10.0, 20.0, 30.0, 40.0, 50.0, 60.0, 70.0]

    def test_skips_invalid_points(self, series_builder):
        points = list(series_builder([1.0] * 7)) + [{'date': None, 'value': 5}, 42, ('2024-01-02', -1)]
        with pytest.warns(MalformedRecordWarning):
            normalized, skipped = normalize_historical_points(points)

        assert skipped == 3
        assert len(normalized) == 7


class TestAggregateSeries:
    """Test daily / weekly / monthly roll-ups"""

    def test_weekly_buckets_start_on_sunday(self, series_builder):
        points = series_builder([1.0] * 14, start=date(2024, 1, 7))
        buckets = aggregate_series(points, 'weekly')

        assert [b['date'] for b in buckets] == ['2024-01-07', '2024-01-14']
        assert [b['value'] for b in buckets] == [7.0, 7.0]

    def test_monthly_buckets(self, series_builder):
        points = series_builder([2.0] * 12, start=date(2024, 1, 25))
        buckets = aggregate_series(points, 'monthly')

        assert [b['date'] for b in buckets] == ['2024-01-01', '2024-02-01']
        assert [b['days'] for b in buckets] == [7, 5]
        assert buckets[0]['value'] == 14.0

    def test_daily_passthrough(self, series_builder):
        points = series_builder([1.0, 2.0, 3.0])
        buckets = aggregate_series(points, 'daily')
        assert [b['value'] for b in buckets] == [1.0, 2.0, 3.0]

    def test_unknown_granularity_raises(self, series_builder):
        with pytest.raises(ValueError):
            aggregate_series(series_builder([1.0] * 7), 'hourly')


class TestLoadSalesFrame:
    """Test flattening of sales records for dimension analysis"""

    def test_columns_and_labels(self):
        records = [
            {'date': '2024-01-01', 'revenue': 100, 'marketplace': ' Shopee ', 'product_name': 'Kemeja', 'hpp': 60},
            {'date': '2024-01-02', 'revenue': 200, 'channel': 'Tokopedia'},
        ]
        logs, sales_df, skipped = load_sales_frame(records)

        assert list(sales_df.columns) == ['date', 'revenue', 'quantity', 'cost', 'marketplace', 'product', 'customer']
        assert sales_df['marketplace'].tolist() == ['Shopee', 'Tokopedia']
        assert sales_df.loc[0, 'cost'] == 60
        assert sales_df.loc[1, 'product'] is None
        assert sales_df['quantity'].tolist() == [1.0, 1.0]
        assert skipped == 0

    def test_skips_records_without_revenue(self):
        records = [{'date': '2024-01-01'}, {'date': '2024-01-01', 'revenue': 100}]
        _, sales_df, skipped = load_sales_frame(records)

        assert len(sales_df) == 1
        assert skipped == 1
        with pytest.warns(MalformedRecordWarning, match="sales records"):
            load_sales_frame(records)

    def test_empty_input(self):
        _, sales_df, skipped = load_sales_frame([])
        assert sales_df.empty
        assert skipped == 0
