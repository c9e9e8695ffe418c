"""Threshold alert evaluation and the alert event feed."""

from clm_analytics.alerts.evaluator import ALERT_RULES, AlertEvaluator, AlertFeed, is_breach

__all__ = [
    "ALERT_RULES",
    "AlertEvaluator",
    "AlertFeed",
    "is_breach",
]
