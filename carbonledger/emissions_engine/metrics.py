# -*- coding: utf-8 -*-
"""
Prometheus Metrics - CarbonLedger Emissions Engine

Metrics:
    1. cl_engine_recalculations_total (Counter, labels: operation, outcome)
    2. cl_engine_activities_excluded_total (Counter, labels: error_type)
    3. cl_engine_recalculation_duration_seconds (Histogram, labels: operation)
    4. cl_engine_inflight_reuse_total (Counter)
    5. cl_engine_total_emissions_tco2e (Histogram)
"""

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

# 1. Recalculations by operation and outcome
engine_recalculations_total = Counter(
    "cl_engine_recalculations_total",
    "Total emission calculations run",
    labelnames=["operation", "outcome"],
)

# 2. Activities excluded from totals by error type
engine_activities_excluded_total = Counter(
    "cl_engine_activities_excluded_total",
    "Total activities excluded with a warning",
    labelnames=["error_type"],
)

# 3. Calculation duration by operation
engine_recalculation_duration_seconds = Histogram(
    "cl_engine_recalculation_duration_seconds",
    "Emission calculation duration in seconds",
    labelnames=["operation"],
    buckets=(
        0.005, 0.01, 0.025, 0.05, 0.1, 0.25,
        0.5, 1.0, 2.5, 5.0, 10.0, 30.0,
    ),
)

# 4. Callers served by an already running recalculation
engine_inflight_reuse_total = Counter(
    "cl_engine_inflight_reuse_total",
    "Total recalculate_all calls that reused an in-flight result",
)

# 5. Project totals
engine_total_emissions_tco2e = Histogram(
    "cl_engine_total_emissions_tco2e",
    "Distribution of project total emissions in tonnes CO2e",
    buckets=(
        1.0, 10.0, 100.0, 1_000.0, 10_000.0,
        100_000.0, 1_000_000.0, 10_000_000.0,
    ),
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def record_recalculation(operation: str, outcome: str, duration_seconds: float) -> None:
    """Record a finished calculation.

    Args:
        operation: recalculate_all, recalculate_activity, product_footprint
            or organization_footprint.
        outcome: success, unchanged or failure.
        duration_seconds: Wall-clock duration.
    """
    engine_recalculations_total.labels(
        operation=operation, outcome=outcome,
    ).inc()
    engine_recalculation_duration_seconds.labels(
        operation=operation,
    ).observe(duration_seconds)


def record_rejected(operation: str) -> None:
    """Record a call rejected because a recalculation was running."""
    engine_recalculations_total.labels(
        operation=operation, outcome="rejected",
    ).inc()


def record_excluded_activity(error_type: str) -> None:
    """Record an activity excluded from totals.

    Args:
        error_type: Exception class name (InvalidActivityError, etc.).
    """
    engine_activities_excluded_total.labels(error_type=error_type).inc()


def record_inflight_reuse() -> None:
    """Record a caller served by an in-flight recalculation."""
    engine_inflight_reuse_total.inc()


def observe_total_emissions(total_tco2e: float) -> None:
    """Record the total emissions of a computed result."""
    engine_total_emissions_tco2e.observe(total_tco2e)


__all__ = [
    "engine_recalculations_total",
    "engine_activities_excluded_total",
    "engine_recalculation_duration_seconds",
    "engine_inflight_reuse_total",
    "engine_total_emissions_tco2e",
    "record_recalculation",
    "record_rejected",
    "record_excluded_activity",
    "record_inflight_reuse",
    "observe_total_emissions",
]
