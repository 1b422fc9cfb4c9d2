"""Daily metrics derived from the raw mirror."""

from __future__ import annotations

from .aggregation import HISTORY_START, AggregationResult, MetricsAggregator
from .responses import (
    FirstResponseIndex,
    ResponseActivity,
    ResponseParent,
    first_response_hours,
)
from .storage import DailyMetric, init_metrics_storage

__all__ = [
    "HISTORY_START",
    "AggregationResult",
    "DailyMetric",
    "FirstResponseIndex",
    "MetricsAggregator",
    "ResponseActivity",
    "ResponseParent",
    "first_response_hours",
    "init_metrics_storage",
]
