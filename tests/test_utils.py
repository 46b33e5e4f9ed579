"""
Tests for utils module
Tests Excel export of raw frames, forecasts and insights
"""

import pytest
import pandas as pd

from analytics_models import BusinessDataBundle
from demand_forecasting import compute_forecast
from insight_engine import compute_insights
from utils import (
    forecast_to_frames,
    get_filtered_data_as_excel,
    get_forecast_as_excel,
    get_insights_as_excel,
    insights_to_frame,
)

XLSX_MAGIC = b'PK'  # xlsx files are zip archives


class TestExcelExport:
    """Test Excel export functionality"""

    def test_get_filtered_data_as_excel_returns_bytes(self):
        df = pd.DataFrame({
            'col1': [1, 2, 3],
            'col2': ['a', 'b', 'c']
        })

        result = get_filtered_data_as_excel({"Test Sheet": (df, False)})
        assert isinstance(result, bytes)
        assert result.startswith(XLSX_MAGIC)

    def test_get_filtered_data_as_excel_empty_dataframe(self):
        result = get_filtered_data_as_excel({"Empty Sheet": (pd.DataFrame(), False)})
        assert isinstance(result, bytes)

    def test_datetime_columns_are_not_modified_in_place(self):
        df = pd.DataFrame({
            'date': pd.date_range('2024-01-01', periods=3, tz='Asia/Jakarta'),
            'value': [1, 2, 3]
        })
        result = get_filtered_data_as_excel({"Dates": (df, True)})

        assert len(result) > 0
        assert pd.api.types.is_datetime64_any_dtype(df['date'])


class TestForecastExport:

    def test_forecast_frames(self, noisy_series):
        result = compute_forecast(noisy_series, 30)
        frames = forecast_to_frames(result)

        assert len(frames['forecast']) == 30
        assert len(frames['historical']) == 60
        assert frames['models']['selected'].sum() == 1
        assert 'best_model' in frames['parameters']['parameter'].tolist()

    def test_forecast_workbook(self, noisy_series):
        workbook = get_forecast_as_excel(compute_forecast(noisy_series, 30))
        assert workbook.startswith(XLSX_MAGIC)


class TestInsightExport:

    def test_insights_frame(self, concentrated_bundle):
        insights = compute_insights(concentrated_bundle)
        frame = insights_to_frame(insights)

        assert len(frame) == len(insights)
        assert frame.loc[0, 'action_items'].startswith("- ")
        assert workbook_ok(get_insights_as_excel(insights))

    def test_empty_insights(self):
        frame = insights_to_frame(compute_insights(BusinessDataBundle()))
        assert frame.empty
        assert 'title' in frame.columns


def workbook_ok(workbook):
    return isinstance(workbook, bytes) and workbook.startswith(XLSX_MAGIC)
