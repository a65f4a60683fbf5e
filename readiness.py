"""
SOP Readiness Classification and Aggregation

Pure functions shared by every readiness view (facility summary, facility
detail, snapshot capture) so that all of them judge SOPs the same way:

- classify_sop_status: (requirement, latest review, now) -> SOP status
- aggregate_readiness: per-facility counts and readiness percentage
- readiness_band: severity band for a readiness percentage
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional


# ============================================================================
# Statuses and Bands
# ============================================================================

STATUS_CURRENT = "current"
STATUS_NEEDS_UPDATE = "needs_update"
STATUS_MISSING = "missing"

SOP_STATUSES = [STATUS_CURRENT, STATUS_NEEDS_UPDATE, STATUS_MISSING]

# Status filters accepted by the facility detail view
STATUS_FILTERS = ["all"] + SOP_STATUSES

BAND_CRITICAL = "critical"
BAND_WARNING = "warning"
BAND_HEALTHY = "healthy"

# Lower bounds (inclusive) for each band, checked highest first
BAND_THRESHOLDS = [
    (80, BAND_HEALTHY),
    (50, BAND_WARNING),
]


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class FacilityReadiness:
    """Readiness counts for one facility at one evaluation instant."""
    facility_id: int
    facility_name: str = ""
    facility_code: str = ""
    total_required: int = 0
    current_count: int = 0
    needs_update_count: int = 0
    missing_count: int = 0
    readiness_pct: int = 0

    @property
    def band(self) -> str:
        return readiness_band(self.readiness_pct)

    def is_consistent(self) -> bool:
        """Counts sum to the total and the percentage is in range."""
        counts = (self.current_count, self.needs_update_count, self.missing_count)
        return (
            all(c >= 0 for c in counts)
            and sum(counts) == self.total_required
            and 0 <= self.readiness_pct <= 100
        )


# ============================================================================
# Status Classifier
# ============================================================================

def review_cadence(requirement) -> timedelta:
    """Maximum allowed interval between reviews of a requirement."""
    return timedelta(days=requirement.review_cycle_days)


def classify_sop_status(requirement, review, now: datetime) -> str:
    """
    Classify one SOP requirement at one facility.

    Args:
        requirement: SOP requirement (anything with review_cycle_days)
        review: Latest review record for the pair, or None
        now: Evaluation instant

    Returns:
        "missing" when no review exists, "current" when the review is no older
        than the cadence (boundary inclusive), otherwise "needs_update".
    """
    if review is None:
        return STATUS_MISSING

    age = now - review.review_date
    if age <= review_cadence(requirement):
        return STATUS_CURRENT
    return STATUS_NEEDS_UPDATE


def next_review_due(requirement, review) -> Optional[datetime]:
    """Date by which the next review is due, or None if never reviewed."""
    if review is None:
        return None
    return review.review_date + review_cadence(requirement)


def days_overdue(requirement, review, now: datetime) -> int:
    """
    Days past the due date, counting a started day as a full one.

    0 exactly when the SOP is current or was never reviewed, so any
    needs_update SOP is at least 1 day overdue.
    """
    due = next_review_due(requirement, review)
    if due is None or now <= due:
        return 0
    return math.ceil((now - due) / timedelta(days=1))


# ============================================================================
# Readiness Aggregator
# ============================================================================

def readiness_percentage(current_count: int, total_required: int) -> int:
    """
    Percentage of current SOPs, rounded half up to the nearest integer.

    2/3 -> 67, 1/3 -> 33, 1/8 -> 13. A total of zero yields 0.
    """
    if total_required <= 0:
        return 0
    ratio = Decimal(current_count) * 100 / Decimal(total_required)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def aggregate_readiness(facility, statuses: list) -> FacilityReadiness:
    """
    Aggregate classified statuses into facility readiness.

    Args:
        facility: Facility (id, name, code)
        statuses: One classify_sop_status result per applicable requirement

    Returns:
        FacilityReadiness; an empty status list yields zero counts and 0%.
    """
    current = sum(1 for s in statuses if s == STATUS_CURRENT)
    needs_update = sum(1 for s in statuses if s == STATUS_NEEDS_UPDATE)
    missing = sum(1 for s in statuses if s == STATUS_MISSING)
    total = len(statuses)

    return FacilityReadiness(
        facility_id=facility.id,
        facility_name=facility.name,
        facility_code=facility.code,
        total_required=total,
        current_count=current,
        needs_update_count=needs_update,
        missing_count=missing,
        readiness_pct=readiness_percentage(current, total),
    )


def readiness_band(readiness_pct: int) -> str:
    """
    Severity band for a readiness percentage.

    < 50 critical, 50-79 warning, >= 80 healthy.
    """
    for lower_bound, band in BAND_THRESHOLDS:
        if readiness_pct >= lower_bound:
            return band
    return BAND_CRITICAL
