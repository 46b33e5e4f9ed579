"""
Insight Engine

Turns signal detections into ranked, explainable business insights for the
strategic analytics screen.

Pipeline:
1. Detect signals across the revenue series and business dimensions
2. Build one insight per detection from the playbook in business_rules.py
3. Filter to the configured focus areas and drop duplicate detections
4. Rank by impact (stable, so detection order breaks ties) and cap the list
"""

import hashlib
from collections import Counter

from analytics_models import AnalyticsConfig, Insight
from anomaly_detection import detect_signals
from business_rules import INSIGHT_PLAYBOOK, get_priority_level


def _insight_id(detection):
    """Stable id derived from the detection signature."""
    detection_type, subject, day = detection.signature
    raw = f"{detection_type}|{subject}|{day.isoformat() if day else ''}"
    digest = hashlib.sha1(raw.encode('utf-8')).hexdigest()[:10]
    return f"{detection_type}_{digest}"


def build_insight(detection, config):
    """
    Build an Insight from a Detection using its playbook entry.

    Args:
        detection: Detection from the signal detector
        config: AnalyticsConfig (priority cutoffs may be overridden in thresholds)

    Returns:
        Insight

    Raises:
        KeyError: no playbook entry exists for the detection type
    """
    rule = INSIGHT_PLAYBOOK[detection.detection_type]
    context = dict(detection.context)

    return Insight(
        id=_insight_id(detection),
        category=detection.category,
        priority=get_priority_level(detection.impact_score, config.resolved_thresholds()),
        title=rule['title'].format(**context),
        description=rule['description'].format(**context),
        confidence=round(float(detection.confidence), 1),
        impact_score=round(float(detection.impact_score), 1),
        evidence=tuple(detection.evidence),
        action_items=tuple(item.format(**context) for item in rule['action_items']),
        kpi_predictions=dict(rule['kpi_predictions']),
        implementation_effort=rule['implementation_effort'],
        timeline=rule['timeline'],
        focus_area=detection.focus_area,
        detection_type=detection.detection_type
    )


def rank_insights(insights, config):
    """
    Filter, deduplicate, order and cap insights.

    - Insights outside config.focus_areas are dropped
    - Insights sharing an id (same detection signature) keep the first occurrence
    - Sorted by impact score descending; equal impacts keep their input order
    - At most max_insights are returned
    """
    max_insights = int(config.threshold('max_insights'))

    seen = set()
    kept = []
    for insight in insights:
        if insight.focus_area not in config.focus_areas:
            continue
        if insight.id in seen:
            continue
        seen.add(insight.id)
        kept.append(insight)

    ranked = sorted(kept, key=lambda insight: -insight.impact_score)
    return ranked[:max(0, max_insights)]


def generate_insights(business_data, config=None, series=None):
    """
    Full insight pipeline with logs.

    Args:
        business_data: BusinessDataBundle snapshot
        config: AnalyticsConfig (defaults: medium sensitivity, every focus area)
        series: Optional pre-normalized revenue series

    Returns:
        tuple: (logs, list of Insight ordered by impact)
    """
    if config is None:
        config = AnalyticsConfig()

    logs = []
    logs.append("--- Insight Engine ---")
    logs.append(f"INFO: Sensitivity '{config.sensitivity}', focus areas: {', '.join(sorted(config.focus_areas))}")

    detect_logs, detections = detect_signals(business_data, config, series=series)
    logs.extend(detect_logs)

    if not detections:
        logs.append("INFO: No signals detected, no insights generated")
        return logs, []

    insights = [build_insight(detection, config) for detection in detections]
    ranked = rank_insights(insights, config)

    dropped = len(insights) - len(ranked)
    if dropped > 0:
        logs.append(f"INFO: {dropped} insights filtered out (focus areas, duplicates or list cap)")

    summary = summarize_insights(ranked)
    priorities = summary['by_priority']
    logs.append(
        f"INFO: Generated {len(ranked)} insights "
        f"({priorities.get('high', 0)} high, {priorities.get('medium', 0)} medium, {priorities.get('low', 0)} low priority)"
    )
    return logs, ranked


def compute_insights(business_data, config=None, series=None):
    """Ranked insights for a business snapshot; an empty list when nothing notable is found."""
    _, insights = generate_insights(business_data, config, series=series)
    return insights


def summarize_insights(insights):
    """
    Summary statistics for an insight list.

    Returns:
        dict: total, by_category, by_priority, average_confidence, average_impact, top_insights
    """
    if not insights:
        return {
            'total': 0,
            'by_category': {},
            'by_priority': {},
            'average_confidence': 0.0,
            'average_impact': 0.0,
            'top_insights': []
        }

    return {
        'total': len(insights),
        'by_category': dict(Counter(insight.category for insight in insights)),
        'by_priority': dict(Counter(insight.priority for insight in insights)),
        'average_confidence': round(sum(i.confidence for i in insights) / len(insights), 1),
        'average_impact': round(sum(i.impact_score for i in insights) / len(insights), 1),
        'top_insights': [insight.id for insight in insights[:3]]
    }
