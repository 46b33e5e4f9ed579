"""
Business Rules Configuration
Centralized definitions for forecasting parameters, anomaly sensitivity,
insight thresholds and the insight playbook.
This file allows rules to be changed in one place without modifying engine code.
"""

from datetime import datetime

# ===== CURRENCY FORMATTING =====

CURRENCY_RULES = {
    "base_currency": "IDR",
    "symbol": "Rp",
    "thousands_separator": ".",
    "decimal_places": 0
}


# ===== FORECASTING RULES =====

FORECAST_RULES = {
    "minimum_history_days": 7,          # Below this, forecasting is unsupported
    "default_horizon_days": 90,
    "supported_horizons": [30, 90, 180],

    "backtest": {
        "holdout_fraction": 0.25,       # Trailing 25% of history held out
        "min_holdout_points": 3,
        "min_training_points": 2
    },

    "models": {
        "seasonal_window_days": 7,      # Moving-average window / season length
        "min_weeks_for_seasonality": 2,
        "seasonality_strength_pct": 10, # Weekday indices must deviate this much from 1.0
        "smoothing_alpha": 0.3
    },

    "quality_score": {
        # Weighted composite of accuracy components (weights sum to 1.0)
        "mape_weight": 0.50,
        "rmse_weight": 0.25,
        "r_squared_weight": 0.25
    },

    "confidence": {
        # Data volume ceiling: fewer points -> lower ceiling regardless of fit
        "base_ceiling": 50,
        "full_volume_days": 90
    },

    "confidence_bands": {
        "default_level": 95,
        "z_scores": {
            80: 1.28,
            90: 1.645,
            95: 1.96,   # Default - standard 95% interval
            99: 2.576
        },
        "growth_rate_per_step": 0.1     # growth(h) = sqrt(1 + rate * (h - 1))
    },

    "pattern_classification": {
        "stable_cv": 30,
        "moderate_cv": 70,
        "trend_slope_pct": 0.5          # Daily slope as % of mean
    }
}

METRIC_ALIASES = {
    "revenue": "revenue",
    "sales": "revenue",
    "quantity": "quantity",
    "units": "quantity",
    "orders": "orders",
    "order_count": "orders",
    "orders_count": "orders"
}

NON_NEGATIVE_METRICS = ["revenue", "quantity", "orders"]


# ===== ANOMALY SENSITIVITY PRESETS =====
# Low sensitivity flags only extreme deviations; high sensitivity is most permissive

SENSITIVITY_PRESETS = {
    'low': {
        'z_score_threshold': 3.0,
        'description': 'Flags only extreme deviations (~0.3% of normal data).'
    },
    'medium': {
        'z_score_threshold': 2.0,
        'description': 'Balanced detection for typical business volatility. Recommended default.'
    },
    'high': {
        'z_score_threshold': 1.5,
        'description': 'Permissive detection for early warning on stable series.'
    }
}

# Legacy preset names used by the strategic analytics screen
SENSITIVITY_ALIASES = {
    'conservative': 'low',
    'balanced': 'medium',
    'aggressive': 'high'
}

DEFAULT_SENSITIVITY = 'medium'


# ===== INSIGHT THRESHOLDS =====
# Named defaults for every cutoff used by the signal detectors.
# Callers override any of these through AnalyticsConfig.thresholds.

FOCUS_AREAS = [
    'revenue',
    'seasonality',
    'marketplace',
    'advertising',
    'customer',
    'profitability',
    'inventory'
]

DEFAULT_THRESHOLDS = {
    # Series anomaly detection
    "anomaly_window_days": 14,
    "anomaly_min_window_days": 7,
    "anomaly_min_relative_std": 0.05,   # Std floor as a fraction of the window mean

    # Revenue momentum (last week vs previous week)
    "momentum_window_days": 7,
    "growth_rate_threshold": 10.0,      # % change that counts as growth / decline

    # Weekday pattern
    "min_days_for_weekly_pattern": 14,
    "weekday_lift_pct": 25.0,

    # Marketplace channels
    "channel_concentration_pct": 60.0,
    "channel_min_share_pct": 20.0,

    # Products
    "product_concentration_pct": 50.0,
    "profit_margin_threshold": 25.0,
    "stockout_days": 7.0,
    "overstock_days": 120.0,

    # Customers
    "customer_concentration_pct": 70.0,
    "min_customers_for_concentration": 5,
    "ltv_cac_floor": 3.0,

    # Advertising
    "min_roas": 2.0,
    "roas_growth_threshold": 4.0,
    "low_spend_share_pct": 15.0,

    # Ranking
    "priority_high": 80.0,
    "priority_medium": 50.0,
    "max_insights": 10
}


# ===== INSIGHT PLAYBOOK =====
# Rule table keyed by detection type. Text fields are str.format templates
# filled from the detection context.

INSIGHT_PLAYBOOK = {
    "series_anomaly": {
        "title": "{direction} Anomaly on {date}",
        "description": (
            "{metric_label} on {date} was {value_fmt}, {deviation_pct:+.1f}% versus the "
            "trailing average of {mean_fmt} (z-score {z_score:.1f}). The deviation exceeds the "
            "{sensitivity} sensitivity cutoff of {cutoff:.1f} standard deviations."
        ),
        "action_items": [
            "Investigate the root cause of the {direction_lower} on {date}",
            "Check campaigns, flash sales and marketplace events running on that day",
            "Document the driver so future forecasts can account for it"
        ],
        "kpi_predictions": {"forecast_accuracy": 5.0},
        "implementation_effort": "low",
        "timeline": "immediate"
    },
    "revenue_momentum_up": {
        "title": "Revenue Momentum Building",
        "description": (
            "Average daily revenue over the last {window} days reached {recent_fmt}, "
            "{change_pct:+.1f}% versus the previous {window} days ({previous_fmt})."
        ),
        "action_items": [
            "Secure stock for best sellers to sustain the upward trend",
            "Scale advertising on the channels driving the increase",
            "Review the forecast horizon for replenishment orders"
        ],
        "kpi_predictions": {"revenue": 8.0, "orders": 5.0},
        "implementation_effort": "medium",
        "timeline": "short_term"
    },
    "revenue_momentum_down": {
        "title": "Revenue Momentum Slowing",
        "description": (
            "Average daily revenue over the last {window} days fell to {recent_fmt}, "
            "{change_pct:+.1f}% versus the previous {window} days ({previous_fmt})."
        ),
        "action_items": [
            "Review pricing and promotions against competitors",
            "Audit stock availability of top products",
            "Launch retention campaigns for recent buyers"
        ],
        "kpi_predictions": {"revenue": 5.0},
        "implementation_effort": "medium",
        "timeline": "immediate"
    },
    "weekday_pattern": {
        "title": "Weekly Pattern Detected: {weekday} Peak",
        "description": (
            "{weekday} typically brings {weekday_fmt} per day, {lift_pct:.1f}% above the "
            "typical weekday at {typical_fmt}."
        ),
        "action_items": [
            "Schedule campaigns and flash sales ahead of {weekday}",
            "Prepare inventory and fulfilment capacity for {weekday}",
            "Shift low-priority promotions to the weakest weekdays"
        ],
        "kpi_predictions": {"revenue": 4.0, "conversion_rate": 3.0},
        "implementation_effort": "low",
        "timeline": "short_term"
    },
    "channel_concentration": {
        "title": "{channel} Revenue Concentration Risk",
        "description": (
            "{channel} contributes {share_pct:.1f}% of total revenue ({revenue_fmt}). "
            "Dependency on a single marketplace exposes the business to fee changes, "
            "policy changes and traffic shocks on that platform."
        ),
        "action_items": [
            "Diversify sales across additional marketplaces",
            "Shift part of the advertising budget to secondary channels",
            "Build a direct-to-customer channel to reduce platform dependency"
        ],
        "kpi_predictions": {"channel_concentration": -15.0, "revenue_risk": -20.0},
        "implementation_effort": "high",
        "timeline": "medium_term"
    },
    "channel_decline": {
        "title": "{channel} Performance Decline Alert",
        "description": (
            "{channel} revenue dropped {decline_pct:.1f}% between the first and second half "
            "of the period while still contributing {share_pct:.1f}% of revenue."
        ),
        "action_items": [
            "Audit competitor strategy on {channel}",
            "Review and optimize product pricing on {channel}",
            "Improve customer service response time",
            "Run retention campaigns for {channel} buyers"
        ],
        "kpi_predictions": {"revenue": 10.0, "market_share": 5.0},
        "implementation_effort": "high",
        "timeline": "short_term"
    },
    "product_concentration": {
        "title": "High Product Concentration: {product}",
        "description": (
            "{product} accounts for {share_pct:.1f}% of total revenue ({revenue_fmt}). "
            "A stockout or demand shift on this product would hit overall revenue hard."
        ),
        "action_items": [
            "Diversify the product portfolio to reduce dependency",
            "Protect safety stock for {product}",
            "Cross-sell complementary products with {product}"
        ],
        "kpi_predictions": {"product_concentration": -10.0},
        "implementation_effort": "medium",
        "timeline": "medium_term"
    },
    "low_margin_products": {
        "title": "Low Margin Products Optimization Opportunity",
        "description": (
            "{count} products have a margin below {threshold:.0f}% (average {avg_margin:.1f}%). "
            "They account for {revenue_fmt} ({share_pct:.1f}% of the assessed portfolio)."
        ),
        "action_items": [
            "Review supplier pricing for cost reduction",
            "Apply dynamic pricing to low margin products",
            "Bundle low margin products with high margin items",
            "Consider rationalizing the weakest product lines"
        ],
        "kpi_predictions": {"profit_margin": 5.0},
        "implementation_effort": "medium",
        "timeline": "short_term"
    },
    "customer_concentration": {
        "title": "Customer Concentration Risk Identified",
        "description": (
            "The top {top_count} customers ({top_pct:.0f}% of buyers) generate {share_pct:.1f}% "
            "of revenue. Losing key accounts would materially reduce revenue."
        ),
        "action_items": [
            "Develop an acquisition strategy for new segments",
            "Introduce loyalty incentives for mid-tier customers",
            "Set up retention programs for key accounts"
        ],
        "kpi_predictions": {"customer_concentration": -10.0, "customer_count": 8.0},
        "implementation_effort": "medium",
        "timeline": "medium_term"
    },
    "customer_segment_value": {
        "title": "Unprofitable Acquisition in {segment} Segment",
        "description": (
            "Customers in {segment} are worth {value_fmt} against an acquisition cost of "
            "{cost_fmt}, a value/cost ratio of {ratio:.2f} below the floor of {floor:.1f}."
        ),
        "action_items": [
            "Cut acquisition spend targeting {segment}",
            "Raise repeat purchase value with bundles and loyalty offers",
            "Reallocate budget to segments with a healthier value/cost ratio"
        ],
        "kpi_predictions": {"customer_acquisition_cost": -15.0, "customer_lifetime_value": 10.0},
        "implementation_effort": "medium",
        "timeline": "short_term"
    },
    "advertising_low_roas": {
        "title": "Low Advertising Return on {campaign}",
        "description": (
            "{campaign} returned {roas:.2f}x on {spend_fmt} of spend, below the minimum ROAS "
            "of {floor:.1f}x. It absorbs {spend_share_pct:.1f}% of the advertising budget."
        ),
        "action_items": [
            "Pause or restructure {campaign}",
            "Refine targeting and creatives before re-launching",
            "Move budget to campaigns above the ROAS floor"
        ],
        "kpi_predictions": {"roas": 20.0, "advertising_spend": -10.0},
        "implementation_effort": "low",
        "timeline": "immediate"
    },
    "advertising_scale_up": {
        "title": "{campaign} Scale-Up Opportunity",
        "description": (
            "{campaign} returns {roas:.2f}x on spend but receives only {spend_share_pct:.1f}% "
            "of the advertising budget."
        ),
        "action_items": [
            "Increase the budget of {campaign} in controlled steps",
            "Replicate its targeting on similar audiences",
            "Monitor ROAS weekly while scaling"
        ],
        "kpi_predictions": {"revenue": 6.0, "roas": -5.0},
        "implementation_effort": "low",
        "timeline": "short_term"
    },
    "stockout_risk": {
        "title": "Stockout Risk: {product}",
        "description": (
            "{product} has {stock:.0f} units in stock against {daily_units:.1f} units sold per "
            "day, about {days_cover:.1f} days of cover."
        ),
        "action_items": [
            "Raise a replenishment order for {product}",
            "Contact the supplier or tailor to confirm lead time",
            "Throttle promotions on {product} until stock recovers"
        ],
        "kpi_predictions": {"lost_sales": -30.0, "service_level": 10.0},
        "implementation_effort": "medium",
        "timeline": "immediate"
    },
    "overstock": {
        "title": "Overstock: {product}",
        "description": (
            "{product} has {stock:.0f} units in stock, about {days_cover:.0f} days of cover at the "
            "current rate of {daily_units:.1f} units per day."
        ),
        "action_items": [
            "Run a clearance promotion for {product}",
            "Pause purchase orders for {product}",
            "Bundle {product} with fast movers"
        ],
        "kpi_predictions": {"inventory_value": -15.0, "cash_flow": 5.0},
        "implementation_effort": "low",
        "timeline": "short_term"
    }
}

VALID_CATEGORIES = ['opportunity', 'risk', 'optimization', 'growth', 'anomaly']
VALID_TIMELINES = ['immediate', 'short_term', 'medium_term', 'long_term']


# ===== HELPER FUNCTIONS =====

def format_currency(amount, currency=None):
    """
    Format an amount the way the dashboard shows money (e.g. Rp 1.250.000).

    Args:
        amount: Numeric amount
        currency: Currency code (only the base currency carries a symbol)

    Returns:
        str: Formatted amount
    """
    currency = currency or CURRENCY_RULES["base_currency"]
    decimals = CURRENCY_RULES["decimal_places"]
    formatted = f"{abs(amount):,.{decimals}f}".replace(",", CURRENCY_RULES["thousands_separator"])
    sign = "-" if amount < 0 else ""
    if currency == CURRENCY_RULES["base_currency"]:
        return f"{sign}{CURRENCY_RULES['symbol']} {formatted}"
    return f"{sign}{formatted} {currency}"


def resolve_metric(metric):
    """
    Map a metric selector (or alias) to one of revenue, quantity, orders.

    Raises:
        ValueError: if the metric is unknown
    """
    key = str(metric).strip().lower()
    if key not in METRIC_ALIASES:
        raise ValueError(f"Unknown metric '{metric}'. Expected one of: {', '.join(sorted(METRIC_ALIASES))}")
    return METRIC_ALIASES[key]


def resolve_sensitivity(sensitivity=None):
    """Map a sensitivity name (or legacy preset name) to low/medium/high, defaulting to medium."""
    if sensitivity is None:
        return DEFAULT_SENSITIVITY
    key = str(sensitivity).strip().lower()
    key = SENSITIVITY_ALIASES.get(key, key)
    if key not in SENSITIVITY_PRESETS:
        return DEFAULT_SENSITIVITY
    return key


def get_sensitivity_config(sensitivity=None):
    """
    Get anomaly detection configuration for a sensitivity level.

    Args:
        sensitivity: 'low', 'medium', 'high' or a legacy alias.
                     Defaults to 'medium' if not specified or invalid.

    Returns:
        dict: Copy of the preset with z_score_threshold and description
    """
    return SENSITIVITY_PRESETS[resolve_sensitivity(sensitivity)].copy()


def get_z_score(confidence_level=None):
    """Z multiplier for a confidence interval; unknown levels fall back to the default level."""
    bands = FORECAST_RULES["confidence_bands"]
    if confidence_level is None:
        confidence_level = bands["default_level"]
    try:
        level = int(round(float(confidence_level)))
    except (TypeError, ValueError):
        level = bands["default_level"]
    return bands["z_scores"].get(level, bands["z_scores"][bands["default_level"]])


def get_priority_level(impact_score, thresholds=None):
    """
    Classify an impact score into a priority level.

    Args:
        impact_score: 0-100 impact score
        thresholds: Optional mapping overriding priority_high / priority_medium

    Returns:
        str: 'high', 'medium' or 'low'
    """
    thresholds = thresholds or {}
    high = thresholds.get("priority_high", DEFAULT_THRESHOLDS["priority_high"])
    medium = thresholds.get("priority_medium", DEFAULT_THRESHOLDS["priority_medium"])

    if impact_score >= high:
        return 'high'
    elif impact_score >= medium:
        return 'medium'
    return 'low'


def export_business_rules_documentation(output_path="BUSINESS_RULES_DOCUMENTATION.md"):
    """
    Export all business rules to a markdown documentation file.

    Args:
        output_path: Path to output markdown file

    Returns:
        str: Path to the written file
    """
    lines = [
        "# Forecasting & Insight Business Rules",
        "",
        f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "## Forecasting",
        "",
        f"- Minimum history: {FORECAST_RULES['minimum_history_days']} days",
        f"- Backtest holdout: {FORECAST_RULES['backtest']['holdout_fraction'] * 100:.0f}% "
        f"(minimum {FORECAST_RULES['backtest']['min_holdout_points']} points)",
        f"- Default confidence level: {FORECAST_RULES['confidence_bands']['default_level']}%",
        "",
        "## Anomaly Sensitivity",
        "",
        "| Sensitivity | Z-Score Threshold | Description |",
        "|-------------|-------------------|-------------|",
    ]
    for name, preset in SENSITIVITY_PRESETS.items():
        lines.append(f"| {name} | {preset['z_score_threshold']} | {preset['description']} |")

    lines += ["", "## Insight Thresholds", "", "| Threshold | Default |", "|-----------|---------|"]
    for name, value in DEFAULT_THRESHOLDS.items():
        lines.append(f"| {name} | {value} |")

    lines += ["", "## Insight Playbook", ""]
    for detection_type, rule in INSIGHT_PLAYBOOK.items():
        lines.append(f"### {detection_type}")
        lines.append("")
        lines.append(f"- Effort: {rule['implementation_effort']}")
        lines.append(f"- Timeline: {rule['timeline']}")
        for action in rule["action_items"]:
            lines.append(f"- Action: {action}")
        lines.append("")

    with open(output_path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))

    return output_path
