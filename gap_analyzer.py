"""
SOP Gap Analyzer for the Compliance Readiness Engine

Answers the two readiness queries and performs the snapshot action:
- summary: readiness of every facility in scope
- detail: per-SOP statuses, live readiness and snapshot history for one facility
- take_snapshot: freeze a facility's live readiness into its trend series

Every call reads the clock once, so all SOPs within one response are judged
against the same instant.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from clock import SystemClock, as_utc
from errors import GapAnalysisError, UpstreamError, ValidationError
from models import Facility, GapSnapshot
from readiness import (
    STATUS_FILTERS,
    FacilityReadiness,
    aggregate_readiness,
    classify_sop_status,
    days_overdue,
    next_review_due,
    readiness_band,
)
from registry import SqlFacilitySource, SqlRequirementSource
from review_ledger import SqlReviewLedger
from snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


# Orderings accepted by the facility summary
SUMMARY_ORDERINGS = {
    "name": lambda r: (r.facility_name.lower(), r.facility_id),
    "code": lambda r: (r.facility_code, r.facility_id),
    "readiness_pct": lambda r: (r.readiness_pct, r.facility_name.lower(), r.facility_id),
}


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class SOPStatusEntry:
    """Resolved status of one SOP requirement at one facility."""
    requirement_id: int
    code: str
    title: str
    category: str
    priority: str
    review_cycle_days: int
    status: str
    owner: Optional[str] = None
    last_review_date: Optional[datetime] = None
    reviewer_id: Optional[str] = None
    next_review_due: Optional[datetime] = None
    days_overdue: int = 0


@dataclass
class FacilityDetail:
    """Facility detail view. Readiness always reflects the unfiltered SOP set."""
    facility: Facility
    readiness: FacilityReadiness
    evaluated_at: datetime
    status_filter: str = "all"
    sops: List[SOPStatusEntry] = field(default_factory=list)
    snapshots: List[GapSnapshot] = field(default_factory=list)

    @property
    def band(self) -> str:
        return readiness_band(self.readiness.readiness_pct)


def filter_by_status(entries: List[SOPStatusEntry], status_filter: str) -> List[SOPStatusEntry]:
    """
    Keep only entries with the given status ("all" keeps everything).

    Raises:
        ValidationError: If the filter is not one of all, current, needs_update, missing
    """
    if status_filter not in STATUS_FILTERS:
        raise ValidationError(f"Invalid status filter: {status_filter}. Must be one of {STATUS_FILTERS}")
    if status_filter == "all":
        return list(entries)
    return [e for e in entries if e.status == status_filter]


@contextmanager
def upstream(collaborator: str):
    """Surface collaborator failures as UpstreamError; taxonomy errors pass through."""
    try:
        yield
    except GapAnalysisError:
        raise
    except Exception as e:
        logger.error("%s failed: %s", collaborator, e)
        raise UpstreamError(f"{collaborator} unavailable") from e


# ============================================================================
# Gap Analysis Service
# ============================================================================

class GapAnalysisService:
    """
    Orchestrates registry, review ledger, classifier, aggregator and
    snapshot store.

    Collaborators:
        facilities: list_facilities(include_inactive), get_facility(id)
        requirements: list_applicable_requirements(facility), get_requirement(id)
        reviews: get_latest_review(facility_id, requirement_id), record_review(...)
        snapshots: capture(facility_id, readiness, assessed_by), history(facility_id, limit)
        clock: now()
    """

    def __init__(self, facilities, requirements, reviews, snapshots, clock=None):
        self.facilities = facilities
        self.requirements = requirements
        self.reviews = reviews
        self.snapshots = snapshots
        self.clock = clock or SystemClock()

    @classmethod
    def from_session(cls, session, clock=None) -> "GapAnalysisService":
        """Build a service backed by the SQLModel collaborators."""
        clock = clock or SystemClock()
        return cls(
            facilities=SqlFacilitySource(session),
            requirements=SqlRequirementSource(session),
            reviews=SqlReviewLedger(session),
            snapshots=SnapshotStore(session, clock),
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def summary(
        self,
        order_by: str = "name",
        descending: bool = False,
        include_inactive: bool = False,
    ) -> List[FacilityReadiness]:
        """
        Readiness of every facility in scope.

        Args:
            order_by: name, code or readiness_pct
            descending: Reverse the ordering
            include_inactive: Also list inactive facilities

        Returns:
            One FacilityReadiness per facility (facilities with no applicable
            SOPs are listed with 0%)

        Raises:
            ValidationError: Unknown ordering
            UpstreamError: Any collaborator failed; no partial list is returned
        """
        if order_by not in SUMMARY_ORDERINGS:
            raise ValidationError(f"Invalid ordering: {order_by}. Must be one of {list(SUMMARY_ORDERINGS)}")

        now = self.clock.now()
        with upstream("Facility source"):
            facilities = self.facilities.list_facilities(include_inactive=include_inactive)

        results = [self._evaluate(facility, now)[0] for facility in facilities]
        return sorted(results, key=SUMMARY_ORDERINGS[order_by], reverse=descending)

    def detail(
        self,
        facility_id: int,
        status_filter: str = "all",
        history_limit: Optional[int] = None,
    ) -> FacilityDetail:
        """
        Per-SOP statuses, live readiness and snapshot history for one facility.

        The status filter only narrows the SOP list; readiness counts always
        cover every applicable SOP.

        Raises:
            NotFoundError: Unknown facility
            ValidationError: Invalid status filter or history limit
            UpstreamError: Any collaborator failed
        """
        if status_filter not in STATUS_FILTERS:
            raise ValidationError(f"Invalid status filter: {status_filter}. Must be one of {STATUS_FILTERS}")

        now = self.clock.now()
        facility = self._get_facility(facility_id)
        readiness, entries = self._evaluate(facility, now)

        with upstream("Snapshot store"):
            history = self.snapshots.history(facility.id, limit=history_limit)

        return FacilityDetail(
            facility=facility,
            readiness=readiness,
            evaluated_at=now,
            status_filter=status_filter,
            sops=filter_by_status(entries, status_filter),
            snapshots=history,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def take_snapshot(self, facility_id: int, assessed_by: Optional[str] = None):
        """
        Recompute live readiness for a facility and append it to its series.

        Raises:
            NotFoundError: Unknown facility
            UpstreamError: Any collaborator failed (nothing is persisted)
        """
        now = self.clock.now()
        facility = self._get_facility(facility_id)
        readiness, _ = self._evaluate(facility, now)

        with upstream("Snapshot store"):
            snapshot = self.snapshots.capture(facility.id, readiness, assessed_by=assessed_by)

        logger.info(
            "Captured snapshot %s for %s: %s%% (%s/%s current)",
            snapshot.id, facility.code, snapshot.readiness_pct,
            snapshot.current_count, snapshot.total_required,
        )
        return snapshot

    def record_review(
        self,
        facility_id: int,
        requirement_id: int,
        reviewer_id: str,
        review_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ):
        """
        Record a completed review of an SOP at a facility.

        Raises:
            NotFoundError: Unknown facility or requirement
            ValidationError: SOP does not apply to the facility, or the review
                date is in the future
            UpstreamError: Any collaborator failed
        """
        now = self.clock.now()
        facility = self._get_facility(facility_id)
        with upstream("Requirement source"):
            requirement = self.requirements.get_requirement(requirement_id)

        if not requirement.applies_to_facility(facility):
            raise ValidationError(f"SOP {requirement.code} does not apply to facility {facility.code}")
        if review_date is not None:
            review_date = as_utc(review_date)
        if review_date is not None and review_date > now:
            raise ValidationError(f"Review date {review_date.isoformat()} is in the future")

        with upstream("Review ledger"):
            return self.reviews.record_review(
                facility.id,
                requirement.id,
                reviewer_id,
                review_date=review_date or now,
                notes=notes,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_facility(self, facility_id: int) -> Facility:
        with upstream("Facility source"):
            return self.facilities.get_facility(facility_id)

    def _evaluate(self, facility: Facility, now: datetime) -> Tuple[FacilityReadiness, List[SOPStatusEntry]]:
        """Classify every applicable SOP at the facility and aggregate."""
        with upstream("Requirement source"):
            requirements = self.requirements.list_applicable_requirements(facility)

        entries = []
        for requirement in requirements:
            with upstream("Review ledger"):
                review = self.reviews.get_latest_review(facility.id, requirement.id)

            entries.append(SOPStatusEntry(
                requirement_id=requirement.id,
                code=requirement.code,
                title=requirement.title,
                category=requirement.category,
                priority=requirement.priority,
                review_cycle_days=requirement.review_cycle_days,
                status=classify_sop_status(requirement, review, now),
                owner=requirement.owner,
                last_review_date=review.review_date if review else None,
                reviewer_id=review.reviewer_id if review else None,
                next_review_due=next_review_due(requirement, review),
                days_overdue=days_overdue(requirement, review, now),
            ))

        readiness = aggregate_readiness(facility, [e.status for e in entries])
        return readiness, entries
