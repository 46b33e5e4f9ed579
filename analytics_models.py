"""
Analytics Data Model

Dataclasses shared by the forecasting and insight engines, plus the error
taxonomy surfaced to callers. Every object is created fresh per invocation
from a caller-supplied snapshot and never mutated afterwards.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from business_rules import DEFAULT_SENSITIVITY, DEFAULT_THRESHOLDS, FOCUS_AREAS, resolve_sensitivity


# ===== ERRORS =====

class InsufficientDataError(ValueError):
    """Fewer distinct days of history than forecasting supports."""

    def __init__(self, distinct_days, minimum_days=7):
        self.distinct_days = distinct_days
        self.minimum_days = minimum_days
        super().__init__(
            f"Insufficient data for forecasting: {distinct_days} distinct days, need at least {minimum_days}."
        )


class NoViableModelError(RuntimeError):
    """Every ensemble candidate failed to produce a forecast."""

    def __init__(self, failures=None):
        self.failures = dict(failures or {})
        detail = "; ".join(f"{name}: {error}" for name, error in self.failures.items())
        message = "No forecasting model produced a usable forecast"
        super().__init__(f"{message} ({detail})" if detail else message)


class MalformedRecordWarning(UserWarning):
    """A single input record could not be parsed; it is skipped and counted."""


# ===== FORECAST TYPES =====

@dataclass(frozen=True)
class HistoricalPoint:
    date: date
    value: float

    def to_dict(self):
        return {'date': self.date.isoformat(), 'value': self.value}


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    predicted: float
    lower_bound: float
    upper_bound: float
    step: int = 1

    def to_dict(self):
        return {
            'date': self.date.isoformat(),
            'predicted': self.predicted,
            'lower_bound': self.lower_bound,
            'upper_bound': self.upper_bound,
            'step': self.step
        }


@dataclass(frozen=True)
class AccuracyMetrics:
    mape: float
    mae: float
    rmse: float
    r_squared: float
    confidence: float = 0.0
    quality_score: float = 0.0

    def to_dict(self):
        return {
            'mape': self.mape,
            'mae': self.mae,
            'rmse': self.rmse,
            'r_squared': self.r_squared,
            'confidence': self.confidence,
            'quality_score': self.quality_score
        }


@dataclass(frozen=True)
class ModelCandidate:
    """Backtest summary of one ensemble strategy."""
    name: str
    description: str
    metrics: Optional[AccuracyMetrics]
    residual_std: float = 0.0
    status: str = 'ok'
    error: str = ''

    def to_dict(self):
        return {
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'error': self.error,
            'residual_std': self.residual_std,
            'backtest_error': self.metrics.to_dict() if self.metrics else None
        }


@dataclass(frozen=True)
class ForecastResult:
    historical: Tuple[HistoricalPoint, ...]
    forecasts: Tuple[ForecastPoint, ...]
    metrics: AccuracyMetrics
    best_model: str
    model_comparison: Tuple[ModelCandidate, ...]
    parameters: Dict[str, Any] = field(default_factory=dict)
    logs: Tuple[str, ...] = ()

    def to_record(self):
        """Plain record for transport to the presentation layer."""
        return {
            'historical_data': [point.to_dict() for point in self.historical],
            'forecast_data': [point.to_dict() for point in self.forecasts],
            'model_accuracy': self.metrics.to_dict(),
            'best_model': self.best_model,
            'model_comparison': [candidate.to_dict() for candidate in self.model_comparison],
            'parameters': dict(self.parameters)
        }


# ===== INSIGHT TYPES =====

@dataclass(frozen=True)
class BusinessDataBundle:
    """Read-only snapshot of the business collections used for insight generation."""
    sales: Tuple[Mapping[str, Any], ...] = ()
    advertising: Tuple[Mapping[str, Any], ...] = ()
    products: Tuple[Mapping[str, Any], ...] = ()
    customers: Tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def from_collections(cls, sales=None, advertising=None, products=None, customers=None):
        return cls(
            sales=tuple(sales or ()),
            advertising=tuple(advertising or ()),
            products=tuple(products or ()),
            customers=tuple(customers or ())
        )


@dataclass(frozen=True)
class AnalyticsConfig:
    sensitivity: str = DEFAULT_SENSITIVITY
    focus_areas: FrozenSet[str] = frozenset(FOCUS_AREAS)
    thresholds: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        # Accept a single tag, any iterable of tags and legacy sensitivity names
        focus_areas = self.focus_areas
        if isinstance(focus_areas, str):
            focus_areas = [focus_areas]
        object.__setattr__(self, 'focus_areas', frozenset(focus_areas))
        object.__setattr__(self, 'sensitivity', resolve_sensitivity(self.sensitivity))

    def threshold(self, name):
        """Caller override if present, otherwise the named default."""
        if name in self.thresholds:
            return self.thresholds[name]
        return DEFAULT_THRESHOLDS[name]

    def resolved_thresholds(self):
        merged = dict(DEFAULT_THRESHOLDS)
        merged.update(self.thresholds)
        return merged


@dataclass(frozen=True)
class Detection:
    """A statistically notable deviation found by the signal detector."""
    detection_type: str
    category: str
    focus_area: str
    subject: str
    confidence: float
    impact_score: float
    magnitude: float
    evidence: Tuple[str, ...] = ()
    context: Mapping[str, Any] = field(default_factory=dict)
    date: Optional[date] = None

    @property
    def signature(self):
        return (self.detection_type, self.subject, self.date)


@dataclass(frozen=True)
class Insight:
    id: str
    category: str
    priority: str
    title: str
    description: str
    confidence: float
    impact_score: float
    evidence: Tuple[str, ...]
    action_items: Tuple[str, ...]
    kpi_predictions: Mapping[str, float]
    implementation_effort: str
    timeline: str
    focus_area: str = ''
    detection_type: str = ''

    def to_dict(self):
        return {
            'id': self.id,
            'category': self.category,
            'priority': self.priority,
            'title': self.title,
            'description': self.description,
            'confidence': self.confidence,
            'impact_score': self.impact_score,
            'evidence': list(self.evidence),
            'action_items': list(self.action_items),
            'kpi_predictions': dict(self.kpi_predictions),
            'implementation_effort': self.implementation_effort,
            'timeline': self.timeline,
            'focus_area': self.focus_area
        }


def insights_to_records(insights: List[Insight]) -> List[Dict[str, Any]]:
    return [insight.to_dict() for insight in insights]
