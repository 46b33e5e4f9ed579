"""
Anomaly & Signal Detection Module

Scans the normalized revenue series and the auxiliary business dimensions
(marketplaces, products, customers, advertising, inventory) for statistically
notable deviations. Each finding is returned as a Detection carrying:
- a confidence derived from how far the deviation exceeds its cutoff
- an impact estimate derived from the affected volume's share of the business
- evidence strings citing the statistics that triggered it

Series detectors:
- Rolling Z-score anomalies (sensitivity-dependent cutoff)
- Revenue momentum (last week vs previous week, anomalies smoothed out)
- Weekday pattern (best weekday median over the other weekdays)

Dimension detectors (threshold rules from AnalyticsConfig.thresholds):
- Marketplace concentration and decline
- Product concentration and low margins
- Customer concentration and segment value / acquisition-cost ratio
- Advertising ROAS (low return, under-funded winners)
- Inventory days of cover (stockout risk, overstock)
"""

import math
from collections.abc import Mapping

import numpy as np
import pandas as pd

from analytics_models import Detection, InsufficientDataError
from business_rules import format_currency, get_sensitivity_config
from data_loader import (
    MARKETPLACE_FIELDS,
    PRODUCT_FIELDS,
    clean_label,
    coerce_number,
    get_field,
    load_metric_series,
    load_sales_frame,
    normalize_historical_points,
    series_to_frame,
)

WEEKDAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']

CAMPAIGN_FIELDS = ['campaign_name', 'campaign', 'name']
SPEND_FIELDS = ['spend', 'ad_spend', 'cost']
AD_REVENUE_FIELDS = ['revenue', 'gmv', 'sales', 'attributed_revenue']
SEGMENT_FIELDS = ['segment', 'customer_segment', 'name']
CUSTOMER_VALUE_FIELDS = ['lifetime_value', 'ltv', 'customer_value', 'avg_value', 'value']
ACQUISITION_COST_FIELDS = ['acquisition_cost', 'cac', 'customer_acquisition_cost']
SEGMENT_COUNT_FIELDS = ['customer_count', 'customers', 'count']
STOCK_FIELDS = ['stock', 'stock_quantity', 'quantity_on_hand', 'inventory']
PRICE_FIELDS = ['price', 'selling_price']
CATALOG_COST_FIELDS = ['cost', 'hpp', 'unit_cost']

TOP_CUSTOMER_FRACTION = 0.2


# ===== SCORING HELPERS =====

def magnitude_confidence(observed, cutoff):
    """
    Confidence (0-99) that a deviation is real, from how far it exceeds its cutoff.

    observed == cutoff gives 50; twice the cutoff 75; the score approaches 99
    for extreme deviations.
    """
    if cutoff <= 0 or observed <= 0 or not np.isfinite(observed):
        return 50.0 if observed and np.isfinite(observed) else 0.0
    ratio = observed / cutoff
    if ratio < 1:
        return round(50.0 * ratio, 1)
    return round(min(99.0, 100.0 * (1.0 - 0.5 / ratio)), 1)


def floor_confidence(value, floor):
    """Confidence for a value falling below a floor (the further below, the higher)."""
    return magnitude_confidence(floor, max(value, floor * 0.01))


def impact_from_share(share_pct, confidence):
    """Impact (0-100): half the affected volume share, half the detection confidence."""
    share_pct = min(100.0, max(0.0, share_pct))
    return round(float(np.clip(0.5 * share_pct + 0.5 * confidence, 0.0, 100.0)), 1)


def format_amount(value, metric='revenue'):
    if metric == 'revenue':
        return format_currency(value)
    unit = 'orders' if metric == 'orders' else 'units'
    return f"{value:,.0f} {unit}"


# ===== SERIES ANOMALIES =====

def smooth_anomalies(values: np.ndarray, is_anomaly: np.ndarray, method: str = 'median') -> np.ndarray:
    """
    Replace anomalous values with smoothed values.

    Args:
        values: Original array of values
        is_anomaly: Boolean array indicating which values are anomalies
        method: 'median' (replace with median of non-anomalies) or
                'neighbor' (average of nearest non-anomaly neighbors)

    Returns:
        np.ndarray: Array with anomalies replaced by smoothed values
    """
    values = np.asarray(values, dtype=float)
    is_anomaly = np.asarray(is_anomaly, dtype=bool)
    smoothed = values.copy()

    if not is_anomaly.any():
        return smoothed

    if method == 'median':
        non_anomaly_values = values[~is_anomaly]
        if len(non_anomaly_values) > 0:
            smoothed[is_anomaly] = np.median(non_anomaly_values)
    elif method == 'neighbor':
        for idx in np.where(is_anomaly)[0]:
            left_val = None
            right_val = None
            for i in range(idx - 1, -1, -1):
                if not is_anomaly[i]:
                    left_val = values[i]
                    break
            for i in range(idx + 1, len(values)):
                if not is_anomaly[i]:
                    right_val = values[i]
                    break

            if left_val is not None and right_val is not None:
                smoothed[idx] = (left_val + right_val) / 2
            elif left_val is not None:
                smoothed[idx] = left_val
            elif right_val is not None:
                smoothed[idx] = right_val
    else:
        raise ValueError(f"Unknown smoothing method '{method}'")

    return smoothed


def flag_series_anomalies(points, config):
    """
    Rolling Z-score scan of a daily series.

    Each day is compared with the mean and standard deviation of the trailing
    window before it (the day itself excluded). The standard deviation is
    floored at a fraction of the window mean so perfectly flat history still
    yields finite scores.

    Returns:
        pd.DataFrame indexed by day: value, rolling_mean, rolling_std, z_score, is_anomaly
    """
    window = int(config.threshold('anomaly_window_days'))
    min_window = int(config.threshold('anomaly_min_window_days'))
    relative_floor = float(config.threshold('anomaly_min_relative_std'))
    cutoff = get_sensitivity_config(config.sensitivity)['z_score_threshold']

    df = series_to_frame(points)
    prior = df['value'].shift(1)
    df['rolling_mean'] = prior.rolling(window=window, min_periods=min_window).mean()
    df['rolling_std'] = prior.rolling(window=window, min_periods=min_window).std(ddof=0)

    std_floor = np.maximum(df['rolling_mean'].abs() * relative_floor, 1e-9)
    effective_std = np.maximum(df['rolling_std'].fillna(0.0), std_floor)

    df['z_score'] = (df['value'] - df['rolling_mean']) / effective_std
    df['is_anomaly'] = df['z_score'].abs() > cutoff
    df['is_anomaly'] = df['is_anomaly'].fillna(False).astype(bool)
    return df


def detect_series_anomalies(points, config, metric='revenue'):
    """Detections for every day whose rolling Z-score exceeds the sensitivity cutoff."""
    if not points:
        return []

    cutoff = get_sensitivity_config(config.sensitivity)['z_score_threshold']
    df = flag_series_anomalies(points, config)
    flagged = df[df['is_anomaly']]

    metric_label = metric.capitalize()
    detections = []
    for ts, row in flagged.iterrows():
        day = ts.date()
        value = float(row['value'])
        mean = float(row['rolling_mean'])
        z_score = float(row['z_score'])
        deviation = value - mean
        deviation_pct = (deviation / mean * 100) if mean > 0 else 100.0
        direction = 'Spike' if deviation > 0 else 'Dip'

        # Deviation as a share of a typical week's volume
        weekly_volume = mean * 7
        share_pct = abs(deviation) / weekly_volume * 100 if weekly_volume > 0 else 100.0
        confidence = magnitude_confidence(abs(z_score), cutoff)

        context = {
            'metric_label': metric_label,
            'date': day.isoformat(),
            'weekday': WEEKDAY_NAMES[day.weekday()],
            'value': value,
            'value_fmt': format_amount(value, metric),
            'mean': mean,
            'mean_fmt': format_amount(mean, metric),
            'deviation_pct': deviation_pct,
            'z_score': z_score,
            'cutoff': cutoff,
            'sensitivity': config.sensitivity,
            'direction': direction,
            'direction_lower': direction.lower()
        }
        detections.append(Detection(
            detection_type='series_anomaly',
            category='anomaly',
            focus_area='revenue',
            subject=f"{metric}:{day.isoformat()}",
            confidence=confidence,
            impact_score=impact_from_share(share_pct, confidence),
            magnitude=abs(z_score),
            evidence=(
                f"{day.isoformat()} ({context['weekday']}): {context['value_fmt']} vs trailing mean {context['mean_fmt']}",
                f"Deviation {deviation_pct:+.1f}% (z-score {z_score:.1f}, cutoff {cutoff:.1f})",
                f"Rolling std {format_amount(float(row['rolling_std']), metric)} over the prior window"
            ),
            context=context,
            date=day
        ))

    return detections


def _smoothed_tail(points, config, days):
    """
    Last `days` values with outliers replaced by the median.

    Each day is scored against the other days of the same slice, so both
    weeks are smoothed alike.
    """
    cutoff = get_sensitivity_config(config.sensitivity)['z_score_threshold']
    relative_floor = float(config.threshold('anomaly_min_relative_std'))

    values = series_to_frame(points)['value'].to_numpy(dtype=float)[-days:]
    others = len(values) - 1
    others_mean = (values.sum() - values) / others
    others_var = ((values ** 2).sum() - values ** 2) / others - others_mean ** 2
    others_std = np.sqrt(np.maximum(others_var, 0.0))

    std_floor = np.maximum(np.abs(others_mean) * relative_floor, 1e-9)
    z_scores = (values - others_mean) / np.maximum(others_std, std_floor)
    return smooth_anomalies(values, np.abs(z_scores) > cutoff, method='median')


def detect_revenue_momentum(points, config):
    """Compare the last week with the previous week after smoothing out anomalies."""
    window = int(config.threshold('momentum_window_days'))
    threshold = float(config.threshold('growth_rate_threshold'))
    if len(points) < 2 * window:
        return []

    values = _smoothed_tail(points, config, 2 * window)
    recent = float(values[-window:].mean())
    previous = float(values[-2 * window:-window].mean())
    if previous <= 0:
        return []

    change_pct = (recent - previous) / previous * 100
    if abs(change_pct) <= threshold:
        return []

    growing = change_pct > 0
    confidence = magnitude_confidence(abs(change_pct), threshold)
    context = {
        'window': window,
        'recent': recent,
        'previous': previous,
        'recent_fmt': format_currency(recent),
        'previous_fmt': format_currency(previous),
        'change_pct': change_pct
    }
    return [Detection(
        detection_type='revenue_momentum_up' if growing else 'revenue_momentum_down',
        category='growth' if growing else 'risk',
        focus_area='revenue',
        subject='revenue',
        confidence=confidence,
        impact_score=impact_from_share(abs(change_pct), confidence),
        magnitude=abs(change_pct),
        evidence=(
            f"Last {window} days average {context['recent_fmt']} per day",
            f"Previous {window} days average {context['previous_fmt']} per day",
            f"Change {change_pct:+.1f}% (threshold ±{threshold:.1f}%)"
        ),
        context=context,
        date=points[-1].date
    )]


def detect_weekday_pattern(points, config):
    """
    Flag a weekday whose typical revenue runs well above the other weekdays.

    Weekdays are compared on their median so a single spike cannot pose as a
    recurring pattern. The reference is the median of the other weekdays'
    medians, so a run of equally busy days (a shop closed at weekends) is
    not reported as a peak on the first of them.
    """
    min_days = int(config.threshold('min_days_for_weekly_pattern'))
    threshold = float(config.threshold('weekday_lift_pct'))
    if len(points) < min_days:
        return []

    df = series_to_frame(points)
    if float(df['value'].sum()) <= 0:
        return []

    weekday_medians = df.groupby(df.index.dayofweek)['value'].median()
    best_day = int(weekday_medians.idxmax())
    best_median = float(weekday_medians[best_day])
    if len(weekday_medians) < 2:
        return []
    typical = float(weekday_medians.drop(best_day).median())
    if typical <= 0:
        return []

    lift_pct = (best_median / typical - 1) * 100
    if lift_pct < threshold:
        return []

    weekday_total = float(df.loc[df.index.dayofweek == best_day, 'value'].sum())
    share_pct = weekday_total / float(df['value'].sum()) * 100
    confidence = magnitude_confidence(lift_pct, threshold)
    weekday = WEEKDAY_NAMES[best_day]
    context = {
        'weekday': weekday,
        'weekday_fmt': format_currency(best_median),
        'typical_fmt': format_currency(typical),
        'lift_pct': lift_pct
    }
    return [Detection(
        detection_type='weekday_pattern',
        category='opportunity',
        focus_area='seasonality',
        subject=weekday,
        confidence=confidence,
        impact_score=impact_from_share(share_pct, confidence),
        magnitude=lift_pct,
        evidence=(
            f"{weekday} median {context['weekday_fmt']} per day",
            f"Median of the other weekdays {context['typical_fmt']}",
            f"Lift {lift_pct:.1f}% (threshold {threshold:.0f}%)",
            f"{weekday} carries {share_pct:.1f}% of revenue"
        ),
        context=context
    )]


# ===== MARKETPLACE CHANNELS =====

def _revenue_by(sales_df, column):
    """Revenue per label, highest first; equal revenues keep alphabetical order."""
    labeled = sales_df[sales_df[column].notna()]
    if labeled.empty:
        return pd.Series(dtype=float)
    totals = labeled.groupby(column)['revenue'].sum()
    return totals.sort_values(ascending=False, kind='mergesort')


def detect_channel_concentration(sales_df, config):
    """One marketplace contributing more than the configured share of revenue."""
    threshold = float(config.threshold('channel_concentration_pct'))
    by_channel = _revenue_by(sales_df, 'marketplace')
    if len(by_channel) < 2:
        return []

    total = float(by_channel.sum())
    if total <= 0:
        return []

    channel = by_channel.index[0]
    revenue = float(by_channel.iloc[0])
    share_pct = revenue / total * 100
    if share_pct < threshold:
        return []

    confidence = magnitude_confidence(share_pct, threshold)
    context = {
        'channel': channel,
        'share_pct': share_pct,
        'revenue_fmt': format_currency(revenue),
        'total_fmt': format_currency(total),
        'channel_count': len(by_channel)
    }
    return [Detection(
        detection_type='channel_concentration',
        category='risk',
        focus_area='marketplace',
        subject=channel,
        confidence=confidence,
        impact_score=impact_from_share(share_pct, confidence),
        magnitude=share_pct,
        evidence=(
            f"{channel} revenue {context['revenue_fmt']} of {context['total_fmt']} total",
            f"Revenue share {share_pct:.1f}% (threshold {threshold:.0f}%)",
            f"{len(by_channel)} active marketplaces"
        ),
        context=context
    )]


def detect_channel_decline(sales_df, config):
    """
    Significant marketplaces whose daily revenue fell between the first and
    second half of the period. Halves are compared on revenue per calendar day.
    """
    threshold = float(config.threshold('growth_rate_threshold'))
    min_share = float(config.threshold('channel_min_share_pct'))

    labeled = sales_df[sales_df['marketplace'].notna()]
    if labeled.empty or labeled['date'].nunique() < 2:
        return []

    start, end = labeled['date'].min(), labeled['date'].max()
    midpoint = start + (end - start) / 2
    calendar = pd.date_range(start=start, end=end, freq='D')
    first_days = int((calendar <= midpoint).sum())
    second_days = len(calendar) - first_days
    total = float(labeled['revenue'].sum())
    if total <= 0:
        return []

    detections = []
    for channel, revenue in _revenue_by(labeled, 'marketplace').items():
        share_pct = float(revenue) / total * 100
        if share_pct < min_share:
            continue

        channel_sales = labeled[labeled['marketplace'] == channel]
        first_half = float(channel_sales.loc[channel_sales['date'] <= midpoint, 'revenue'].sum()) / first_days
        second_half = float(channel_sales.loc[channel_sales['date'] > midpoint, 'revenue'].sum()) / second_days
        if first_half <= 0:
            continue

        growth_pct = (second_half - first_half) / first_half * 100
        if growth_pct >= -threshold:
            continue

        confidence = magnitude_confidence(abs(growth_pct), threshold)
        context = {
            'channel': channel,
            'share_pct': share_pct,
            'decline_pct': abs(growth_pct),
            'first_fmt': format_currency(first_half),
            'second_fmt': format_currency(second_half)
        }
        detections.append(Detection(
            detection_type='channel_decline',
            category='risk',
            focus_area='marketplace',
            subject=channel,
            confidence=confidence,
            impact_score=impact_from_share(share_pct, confidence),
            magnitude=abs(growth_pct),
            evidence=(
                f"First half {context['first_fmt']} per day, second half {context['second_fmt']} per day",
                f"Decline {growth_pct:.1f}% (threshold -{threshold:.0f}%)",
                f"Revenue contribution {share_pct:.1f}%"
            ),
            context=context
        ))

    return detections


# ===== PRODUCTS =====

def detect_product_concentration(sales_df, config):
    """A single product carrying more than the configured share of revenue."""
    threshold = float(config.threshold('product_concentration_pct'))
    by_product = _revenue_by(sales_df, 'product')
    if len(by_product) < 2:
        return []

    total = float(by_product.sum())
    if total <= 0:
        return []

    product = by_product.index[0]
    revenue = float(by_product.iloc[0])
    share_pct = revenue / total * 100
    if share_pct < threshold:
        return []

    confidence = magnitude_confidence(share_pct, threshold)
    context = {
        'product': product,
        'share_pct': share_pct,
        'revenue_fmt': format_currency(revenue)
    }
    return [Detection(
        detection_type='product_concentration',
        category='risk',
        focus_area='inventory',
        subject=product,
        confidence=confidence,
        impact_score=impact_from_share(share_pct, confidence),
        magnitude=share_pct,
        evidence=(
            f"{product} revenue {context['revenue_fmt']}",
            f"Revenue share {share_pct:.1f}% (threshold {threshold:.0f}%)",
            f"{len(by_product)} products sold"
        ),
        context=context
    )]


def _catalog_margins(products):
    rows = []
    for record in products:
        if not isinstance(record, Mapping):
            continue
        name = get_field(record, PRODUCT_FIELDS)
        price = coerce_number(get_field(record, PRICE_FIELDS))
        cost = coerce_number(get_field(record, CATALOG_COST_FIELDS))
        if name is None or price is None or cost is None or price <= 0:
            continue
        rows.append({'product': clean_label(name), 'revenue': price, 'margin': (price - cost) / price * 100})
    return pd.DataFrame(rows, columns=['product', 'revenue', 'margin'])


def detect_low_margin_products(sales_df, products, config):
    """
    Products whose margin falls below the configured floor.

    Margins come from sales revenue and cost (hpp) when sales carry costs,
    otherwise from catalog price and cost.
    """
    threshold = float(config.threshold('profit_margin_threshold'))

    costed = sales_df[sales_df['product'].notna() & sales_df['cost'].notna()]
    if not costed.empty:
        margins = costed.groupby('product').agg(revenue=('revenue', 'sum'), cost=('cost', 'sum')).reset_index()
        margins = margins[margins['revenue'] > 0]
        margins['margin'] = (margins['revenue'] - margins['cost']) / margins['revenue'] * 100
        source = 'sales'
    else:
        margins = _catalog_margins(products)
        source = 'catalog'

    if margins.empty:
        return []

    low = margins[margins['margin'] < threshold]
    if low.empty:
        return []

    total_revenue = float(margins['revenue'].sum())
    low_revenue = float(low['revenue'].sum())
    share_pct = low_revenue / total_revenue * 100 if total_revenue > 0 else 0.0
    avg_margin = float(low['margin'].mean())
    confidence = floor_confidence(avg_margin, threshold)
    worst = low.sort_values(['margin', 'product'], kind='mergesort').iloc[0]

    context = {
        'count': len(low),
        'threshold': threshold,
        'avg_margin': avg_margin,
        'revenue_fmt': format_currency(low_revenue) if source == 'sales' else f"{len(low)} of {len(margins)} catalog items",
        'share_pct': share_pct
    }
    return [Detection(
        detection_type='low_margin_products',
        category='optimization',
        focus_area='profitability',
        subject='portfolio',
        confidence=confidence,
        impact_score=impact_from_share(share_pct, confidence),
        magnitude=threshold - avg_margin,
        evidence=(
            f"{len(low)} of {len(margins)} products below {threshold:.0f}% margin",
            f"Average margin of affected products {avg_margin:.1f}%",
            f"Lowest margin: {worst['product']} at {float(worst['margin']):.1f}%",
            f"Margins computed from {source} data"
        ),
        context=context
    )]


def detect_inventory_cover(sales_df, products, config):
    """Days of stock cover per product against recent unit sales."""
    stockout_days = float(config.threshold('stockout_days'))
    overstock_days = float(config.threshold('overstock_days'))

    sold = sales_df[sales_df['product'].notna()]
    if sold.empty:
        return []

    period_days = (sold['date'].max() - sold['date'].min()).days + 1
    daily_units = sold.groupby('product')['quantity'].sum() / period_days
    total_units = float(sold['quantity'].sum())

    stock_levels = {}
    for record in products:
        if not isinstance(record, Mapping):
            continue
        name = get_field(record, PRODUCT_FIELDS)
        stock = coerce_number(get_field(record, STOCK_FIELDS))
        if name is None or stock is None or stock < 0:
            continue
        label = clean_label(name)
        stock_levels[label] = stock_levels.get(label, 0.0) + stock
    total_stock = sum(stock_levels.values())

    detections = []
    for product in sorted(stock_levels):
        rate = float(daily_units.get(product, 0.0))
        if rate <= 0:
            continue

        stock = stock_levels[product]
        days_cover = stock / rate
        context = {'product': product, 'stock': stock, 'daily_units': rate, 'days_cover': days_cover}

        if days_cover < stockout_days:
            share_pct = rate * period_days / total_units * 100 if total_units > 0 else 0.0
            confidence = floor_confidence(days_cover, stockout_days)
            detection_type, category = 'stockout_risk', 'risk'
            threshold_text = f"Stockout horizon {stockout_days:.0f} days"
        elif days_cover > overstock_days:
            share_pct = stock / total_stock * 100 if total_stock > 0 else 0.0
            confidence = magnitude_confidence(days_cover, overstock_days)
            detection_type, category = 'overstock', 'optimization'
            threshold_text = f"Overstock horizon {overstock_days:.0f} days"
        else:
            continue

        detections.append(Detection(
            detection_type=detection_type,
            category=category,
            focus_area='inventory',
            subject=product,
            confidence=confidence,
            impact_score=impact_from_share(share_pct, confidence),
            magnitude=days_cover,
            evidence=(
                f"{product}: {stock:.0f} units in stock",
                f"Selling {rate:.2f} units per day over the last {period_days} days",
                f"{days_cover:.1f} days of cover ({threshold_text})"
            ),
            context=context
        ))

    return detections


# ===== CUSTOMERS =====

def detect_customer_concentration(sales_df, config):
    """Top 20% of customers generating more than the configured share of revenue."""
    threshold = float(config.threshold('customer_concentration_pct'))
    min_customers = int(config.threshold('min_customers_for_concentration'))

    by_customer = _revenue_by(sales_df, 'customer')
    if len(by_customer) < min_customers:
        return []

    total = float(by_customer.sum())
    if total <= 0:
        return []

    top_count = math.ceil(len(by_customer) * TOP_CUSTOMER_FRACTION)
    share_pct = float(by_customer.iloc[:top_count].sum()) / total * 100
    if share_pct <= threshold:
        return []

    customer_orders = sales_df[sales_df['customer'].notna()]
    orders_per_customer = len(customer_orders) / len(by_customer)
    # Fewer repeat orders per customer means higher churn exposure
    churn_risk = max(0.0, min(100.0, (5 - orders_per_customer) * 20))

    confidence = magnitude_confidence(share_pct, threshold)
    context = {
        'top_count': top_count,
        'top_pct': TOP_CUSTOMER_FRACTION * 100,
        'share_pct': share_pct,
        'avg_value_fmt': format_currency(total / len(by_customer)),
        'churn_risk': churn_risk
    }
    return [Detection(
        detection_type='customer_concentration',
        category='risk',
        focus_area='customer',
        subject='customers',
        confidence=confidence,
        impact_score=impact_from_share(share_pct, confidence),
        magnitude=share_pct,
        evidence=(
            f"Top {top_count} of {len(by_customer)} customers contribute {share_pct:.1f}% of revenue",
            f"Average customer value {context['avg_value_fmt']}",
            f"Churn risk score {churn_risk:.1f}/100 ({orders_per_customer:.1f} orders per customer)"
        ),
        context=context
    )]


def detect_customer_segments(customers, config):
    """Customer segments whose value / acquisition-cost ratio falls below the floor."""
    floor = float(config.threshold('ltv_cac_floor'))

    segments = []
    for record in customers:
        if not isinstance(record, Mapping):
            continue
        segment = get_field(record, SEGMENT_FIELDS)
        value = coerce_number(get_field(record, CUSTOMER_VALUE_FIELDS))
        cost = coerce_number(get_field(record, ACQUISITION_COST_FIELDS))
        count = coerce_number(get_field(record, SEGMENT_COUNT_FIELDS))
        if segment is None or value is None or cost is None or value < 0 or cost <= 0:
            continue
        count = count if count is not None and count > 0 else 1.0
        segments.append((clean_label(segment), value, cost, count))

    total_value = sum(value * count for _, value, _, count in segments)

    detections = []
    for segment, value, cost, count in segments:
        ratio = value / cost
        if ratio >= floor:
            continue

        share_pct = value * count / total_value * 100 if total_value > 0 else 0.0
        confidence = floor_confidence(ratio, floor)
        context = {
            'segment': segment,
            'value_fmt': format_currency(value),
            'cost_fmt': format_currency(cost),
            'ratio': ratio,
            'floor': floor
        }
        detections.append(Detection(
            detection_type='customer_segment_value',
            category='risk',
            focus_area='customer',
            subject=segment,
            confidence=confidence,
            impact_score=impact_from_share(share_pct, confidence),
            magnitude=floor - ratio,
            evidence=(
                f"{segment}: value {context['value_fmt']} vs acquisition cost {context['cost_fmt']}",
                f"Value/cost ratio {ratio:.2f} (floor {floor:.1f})",
                f"Segment carries {share_pct:.1f}% of customer value"
            ),
            context=context
        ))

    return detections


# ===== ADVERTISING =====

def detect_advertising_efficiency(advertising, config):
    """Campaigns with ROAS below the floor, or strong ROAS on a small share of spend."""
    min_roas = float(config.threshold('min_roas'))
    growth_roas = float(config.threshold('roas_growth_threshold'))
    low_share = float(config.threshold('low_spend_share_pct'))

    campaigns = {}
    for record in advertising:
        if not isinstance(record, Mapping):
            continue
        spend = coerce_number(get_field(record, SPEND_FIELDS))
        revenue = coerce_number(get_field(record, AD_REVENUE_FIELDS))
        if spend is None or revenue is None or spend < 0 or revenue < 0:
            continue
        name = get_field(record, CAMPAIGN_FIELDS) or get_field(record, MARKETPLACE_FIELDS)
        label = clean_label(name)
        totals = campaigns.setdefault(label, [0.0, 0.0])
        totals[0] += spend
        totals[1] += revenue

    total_spend = sum(spend for spend, _ in campaigns.values())
    if total_spend <= 0:
        return []

    detections = []
    for campaign in sorted(campaigns):
        spend, revenue = campaigns[campaign]
        if spend <= 0:
            continue

        roas = revenue / spend
        spend_share_pct = spend / total_spend * 100
        context = {
            'campaign': campaign,
            'roas': roas,
            'spend_fmt': format_currency(spend),
            'revenue_fmt': format_currency(revenue),
            'spend_share_pct': spend_share_pct
        }

        if roas < min_roas:
            confidence = floor_confidence(roas, min_roas)
            context['floor'] = min_roas
            detections.append(Detection(
                detection_type='advertising_low_roas',
                category='optimization',
                focus_area='advertising',
                subject=campaign,
                confidence=confidence,
                impact_score=impact_from_share(spend_share_pct, confidence),
                magnitude=min_roas - roas,
                evidence=(
                    f"{campaign}: spend {context['spend_fmt']}, attributed revenue {context['revenue_fmt']}",
                    f"ROAS {roas:.2f}x (floor {min_roas:.1f}x)",
                    f"{spend_share_pct:.1f}% of advertising spend"
                ),
                context=context
            ))
        elif len(campaigns) > 1 and roas >= growth_roas and spend_share_pct < low_share:
            confidence = magnitude_confidence(roas, growth_roas)
            revenue_share_pct = revenue / sum(r for _, r in campaigns.values()) * 100
            detections.append(Detection(
                detection_type='advertising_scale_up',
                category='growth',
                focus_area='advertising',
                subject=campaign,
                confidence=confidence,
                impact_score=impact_from_share(revenue_share_pct, confidence),
                magnitude=roas,
                evidence=(
                    f"{campaign}: ROAS {roas:.2f}x (growth threshold {growth_roas:.1f}x)",
                    f"Only {spend_share_pct:.1f}% of advertising spend (below {low_share:.0f}%)",
                    f"Attributed revenue {context['revenue_fmt']}"
                ),
                context=context
            ))

    return detections


# ===== ORCHESTRATION =====

def detect_signals(business_data, config, series=None):
    """
    Run every detector over a business snapshot in a fixed order.

    Args:
        business_data: BusinessDataBundle
        config: AnalyticsConfig
        series: Optional pre-normalized revenue series; derived from sales when omitted

    Returns:
        tuple: (logs, detections)
    """
    logs = []
    logs.append("--- Signal Detector ---")

    sales_logs, sales_df, _ = load_sales_frame(business_data.sales)
    logs.extend(sales_logs)

    points = None
    try:
        if series is not None:
            points, _ = normalize_historical_points(series)
        elif business_data.sales:
            _, points, _ = load_metric_series(business_data.sales, 'revenue')
    except InsufficientDataError as e:
        logs.append(f"WARNING: Series detectors skipped: {e}")

    detections = []
    if points:
        detections.extend(detect_series_anomalies(points, config))
        detections.extend(detect_revenue_momentum(points, config))
        detections.extend(detect_weekday_pattern(points, config))
        logs.append(f"INFO: Scanned {len(points)} days with '{config.sensitivity}' sensitivity")

    detections.extend(detect_channel_concentration(sales_df, config))
    detections.extend(detect_channel_decline(sales_df, config))
    detections.extend(detect_product_concentration(sales_df, config))
    detections.extend(detect_low_margin_products(sales_df, business_data.products, config))
    detections.extend(detect_inventory_cover(sales_df, business_data.products, config))
    detections.extend(detect_customer_concentration(sales_df, config))
    detections.extend(detect_customer_segments(business_data.customers, config))
    detections.extend(detect_advertising_efficiency(business_data.advertising, config))

    logs.append(f"INFO: Detected {len(detections)} signals")
    return logs, detections
