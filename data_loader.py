import time
import warnings
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal

import numpy as np
import pandas as pd

from analytics_models import HistoricalPoint, InsufficientDataError, MalformedRecordWarning
from business_rules import FORECAST_RULES, resolve_metric

# === Field Candidates ===
# Business records arrive loosely typed from several screens and import templates.
# The first present field wins.

DATE_FIELDS = ['date', 'order_date', 'created_time', 'created_at']
REVENUE_FIELDS = ['revenue', 'total_revenue', 'settlement_amount']
QUANTITY_FIELDS = ['quantity', 'qty']
COST_FIELDS = ['hpp', 'cost', 'total_cost']
MARKETPLACE_FIELDS = ['marketplace', 'channel']
PRODUCT_FIELDS = ['product_name', 'nama_produk', 'product', 'sku']
CUSTOMER_FIELDS = ['customer', 'customer_name', 'customer_id']

LOAD_TIMEOUT_SECONDS = 5


# === Helper Functions ===

def warn_skipped(skipped, what):
    """Emit one MalformedRecordWarning summarizing records left out of a load."""
    if skipped > 0:
        warnings.warn(f"Skipped {skipped} malformed {what}", MalformedRecordWarning, stacklevel=3)


def get_field(record, candidates, default=None):
    """Return the first non-empty value among candidate keys of a record."""
    for key in candidates:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return default


def coerce_number(value):
    """
    Convert a loosely-typed value to a finite float.

    Strings may carry thousands separators ("1,250,000"). Booleans, NaN,
    infinities and anything unparseable return None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(',', '')
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if not np.isfinite(number):
        return None
    return number


def coerce_date(value):
    """
    Convert a date-like value (date, datetime, Timestamp, ISO string) to a calendar day.

    Returns None for missing or unparseable values. Bare numbers are rejected
    rather than read as epoch offsets.
    """
    if value is None or isinstance(value, (bool, int, float, np.number)):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        parsed = pd.to_datetime(value, errors='coerce')
    except (TypeError, ValueError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def clean_label(value, default='Unknown'):
    """Normalize a free-text label (marketplace, product, customer) for grouping."""
    if value is None:
        return default
    label = ' '.join(str(value).split())
    return label if label else default


def _build_daily_series(rows, minimum_days):
    """
    Sum (date, value) rows per day and zero-fill the gaps between the first and last day.

    Raises:
        InsufficientDataError: fewer than minimum_days distinct days carry data
    """
    distinct_days = len({row[0] for row in rows})
    if distinct_days < minimum_days:
        raise InsufficientDataError(distinct_days, minimum_days)

    df = pd.DataFrame(rows, columns=['date', 'value'])
    df['date'] = pd.to_datetime(df['date'])
    daily = df.groupby('date')['value'].sum().sort_index()

    full_range = pd.date_range(start=daily.index.min(), end=daily.index.max(), freq='D')
    daily = daily.reindex(full_range, fill_value=0.0)

    return tuple(HistoricalPoint(date=ts.date(), value=float(value)) for ts, value in daily.items())


# === Series Normalizer ===

def load_metric_series(records, metric='revenue', minimum_days=None):
    """
    Turn raw business records into a contiguous daily series for one metric.

    Args:
        records: Iterable of mappings carrying a date field and numeric fields
        metric: 'revenue', 'quantity' or 'orders' (aliases accepted)
        minimum_days: Distinct days required (default: FORECAST_RULES minimum_history_days)

    Returns:
        tuple: (logs, points, skipped_count)
        - logs: List of processing messages
        - points: Tuple of HistoricalPoint spanning earliest to latest day, gaps zero-filled
        - skipped_count: Number of malformed records skipped

    Raises:
        InsufficientDataError: fewer than minimum_days distinct days of data
    """
    logs = []
    start_time = time.time()
    logs.append("--- Series Normalizer ---")

    metric = resolve_metric(metric)
    if minimum_days is None:
        minimum_days = FORECAST_RULES["minimum_history_days"]

    rows = []
    skipped = 0
    for record in records or ():
        if not isinstance(record, Mapping):
            skipped += 1
            continue

        record_date = coerce_date(get_field(record, DATE_FIELDS))
        if record_date is None:
            skipped += 1
            continue

        if metric == 'orders':
            value = 1.0
        elif metric == 'quantity':
            raw = get_field(record, QUANTITY_FIELDS)
            # A sale without an explicit quantity counts as one unit
            value = 1.0 if raw is None else coerce_number(raw)
        else:
            value = coerce_number(get_field(record, REVENUE_FIELDS))

        if value is None or value < 0:
            skipped += 1
            continue

        rows.append((record_date, value))

    logs.append(f"INFO: Parsed {len(rows)} records for metric '{metric}'")
    if skipped > 0:
        logs.append(f"WARNING: Skipped {skipped} malformed records (invalid date or non-numeric {metric})")
        warn_skipped(skipped, f"{metric} records")

    points = _build_daily_series(rows, minimum_days)

    filled_days = len(points) - len({row[0] for row in rows})
    logs.append(f"INFO: Built daily series of {len(points)} days ({points[0].date} to {points[-1].date})")
    if filled_days > 0:
        logs.append(f"INFO: Zero-filled {filled_days} days without records")

    total_time = time.time() - start_time
    if total_time > LOAD_TIMEOUT_SECONDS:
        logs.append(f"WARNING: Series normalization took longer than {LOAD_TIMEOUT_SECONDS} seconds!")

    return logs, points, skipped


def normalize_historical_points(points, minimum_days=None):
    """
    Re-normalize a caller-supplied series: sort, sum duplicate days, zero-fill gaps.

    Accepts HistoricalPoint objects, {'date', 'value'} mappings or (date, value) pairs.
    Points with an invalid date or a negative / non-numeric value are skipped.

    Returns:
        tuple: (points, skipped_count)

    Raises:
        InsufficientDataError: fewer than minimum_days distinct days
    """
    if minimum_days is None:
        minimum_days = FORECAST_RULES["minimum_history_days"]

    rows = []
    skipped = 0
    for point in points or ():
        if isinstance(point, HistoricalPoint):
            raw_date, raw_value = point.date, point.value
        elif isinstance(point, Mapping):
            raw_date, raw_value = point.get('date'), point.get('value')
        elif isinstance(point, (tuple, list)) and len(point) == 2:
            raw_date, raw_value = point
        else:
            skipped += 1
            continue

        point_date = coerce_date(raw_date)
        value = coerce_number(raw_value)
        if point_date is None or value is None or value < 0:
            skipped += 1
            continue
        rows.append((point_date, value))

    warn_skipped(skipped, "historical points")
    return _build_daily_series(rows, minimum_days), skipped


def series_to_frame(points):
    """Convert HistoricalPoints to a DataFrame indexed by day with a 'value' column."""
    df = pd.DataFrame({
        'date': pd.to_datetime([point.date for point in points]),
        'value': [point.value for point in points]
    })
    return df.set_index('date')


def aggregate_series(points, granularity='daily'):
    """
    Roll a normalized daily series up to daily, weekly or monthly buckets.

    Weeks start on Sunday; months on the first day.

    Returns:
        list: [{'date': ISO period start, 'value': total, 'days': days in bucket}]
    """
    granularity = str(granularity).lower()
    if not points:
        return []

    df = series_to_frame(points)

    if granularity == 'daily':
        return [
            {'date': ts.date().isoformat(), 'value': float(value), 'days': 1}
            for ts, value in df['value'].items()
        ]

    if granularity == 'weekly':
        periods = df.index.to_period('W-SAT')
    elif granularity == 'monthly':
        periods = df.index.to_period('M')
    else:
        raise ValueError(f"Unknown granularity '{granularity}'. Expected daily, weekly or monthly")

    grouped = df.groupby(periods)['value'].agg(['sum', 'count'])
    return [
        {'date': period.start_time.date().isoformat(), 'value': float(row['sum']), 'days': int(row['count'])}
        for period, row in grouped.iterrows()
    ]


def load_sales_frame(records):
    """
    Flatten raw sales records into a typed DataFrame for dimension analysis.

    Columns: date, revenue, quantity, cost, marketplace, product, customer.
    Records without a valid date and revenue are skipped.

    Returns:
        tuple: (logs, sales_df, skipped_count)
    """
    logs = []
    logs.append("--- Sales Dimension Loader ---")

    rows = []
    skipped = 0
    for record in records or ():
        if not isinstance(record, Mapping):
            skipped += 1
            continue

        record_date = coerce_date(get_field(record, DATE_FIELDS))
        revenue = coerce_number(get_field(record, REVENUE_FIELDS))
        if record_date is None or revenue is None or revenue < 0:
            skipped += 1
            continue

        quantity = coerce_number(get_field(record, QUANTITY_FIELDS))
        rows.append({
            'date': pd.Timestamp(record_date),
            'revenue': revenue,
            'quantity': 1.0 if quantity is None else quantity,
            'cost': coerce_number(get_field(record, COST_FIELDS)),
            'marketplace': get_field(record, MARKETPLACE_FIELDS),
            'product': get_field(record, PRODUCT_FIELDS),
            'customer': get_field(record, CUSTOMER_FIELDS)
        })

    columns = ['date', 'revenue', 'quantity', 'cost', 'marketplace', 'product', 'customer']
    sales_df = pd.DataFrame(rows, columns=columns)

    # Keep missing labels as None so detectors can ignore unlabeled records
    for col in ['marketplace', 'product', 'customer']:
        sales_df[col] = sales_df[col].map(lambda v: clean_label(v) if v is not None else None)

    logs.append(f"INFO: Loaded {len(sales_df)} sales records for dimension analysis")
    if skipped > 0:
        logs.append(f"WARNING: Skipped {skipped} malformed sales records")
        warn_skipped(skipped, "sales records")

    return logs, sales_df, skipped
