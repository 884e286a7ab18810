"""
Status thresholds and cap tolerance used by the GFA engine.

Legal limits that vary per project (combined FAR ceiling, population
norms) live on ProjectSettings; see app.models.schemas.
"""

from __future__ import annotations


STATUS_UNASSIGNED = "unassigned"
STATUS_LOW = "low"
STATUS_GOOD = "good"
STATUS_OPTIMAL = "optimal"
STATUS_OVER = "over"

GOOD_UTILIZATION = 0.80  # utilization ≥ this → "good"

# Relative slack allowed before a cap counts as exceeded
CAP_TOLERANCE = 1e-6


def classify_utilization(utilization: float, k_target_min: float) -> str:
    """Status for a lot that violates no hard constraint."""
    if utilization >= k_target_min:
        return STATUS_OPTIMAL
    if utilization >= GOOD_UTILIZATION:
        return STATUS_GOOD
    return STATUS_LOW


def exceeds(value: float, cap: float, tolerance: float = CAP_TOLERANCE) -> bool:
    """True if ``value`` is above ``cap`` by more than the relative tolerance."""
    return value > cap * (1 + tolerance) + tolerance
