"""
SQLModel Models for the Compliance Readiness Engine (SOP Gap Analysis)

Facility, SOP requirement, review ledger and readiness snapshot models with:
- Proper field definitions and constraints
- Append-only review ledger and snapshot series
- SHA-256 hashing of snapshots for tamper detection
- Database-level CHECK constraints
"""

import hashlib
import json
import os
from datetime import datetime
from typing import Optional, List

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, String, Text, Boolean, CheckConstraint, DateTime, TypeDecorator, event

from clock import as_utc, utcnow


# Valid SOP priorities
VALID_PRIORITIES = ["low", "medium", "high"]

# Review cadence applied when a requirement does not specify one
DEFAULT_REVIEW_CYCLE_DAYS = int(os.getenv("DEFAULT_REVIEW_CYCLE_DAYS", "365"))


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamp.

    Uses TIMESTAMP WITH TIME ZONE on PostgreSQL. SQLite has no zone support, so
    values are stored as naive UTC there and given back their UTC zone on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        value = as_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return as_utc(value)


class Facility(SQLModel, table=True):
    """
    Facility owned by the surrounding tenant system.
    Read-only from the readiness engine's perspective.
    """
    __tablename__ = "facility"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    code: str = Field(sa_column=Column(String(20), unique=True, nullable=False, index=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))


class SOPRequirement(SQLModel, table=True):
    """
    Catalog entry for a document every applicable facility must maintain.
    The review cadence is the maximum allowed interval between reviews.
    """
    __tablename__ = "sop_requirement"
    __table_args__ = (
        CheckConstraint(
            "priority IN ('low', 'medium', 'high')",
            name="valid_priority"
        ),
        CheckConstraint(
            "review_cycle_days > 0",
            name="positive_review_cycle"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(50), unique=True, nullable=False, index=True))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    category: str = Field(default="General", sa_column=Column(String(100), nullable=False))
    priority: str = Field(default="medium", sa_column=Column(String(10), nullable=False))
    review_cycle_days: int = Field(default=DEFAULT_REVIEW_CYCLE_DAYS)

    # Facility codes this SOP applies to (JSON list); NULL means every facility
    applies_to: Optional[str] = Field(default=None, sa_column=Column(Text))

    owner: Optional[str] = Field(default=None, sa_column=Column(String(100)))
    description: Optional[str] = Field(default=None, sa_column=Column(Text))

    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))

    def validate_priority(self) -> bool:
        """Validate priority is in approved list."""
        return self.priority in VALID_PRIORITIES

    def validate_review_cycle(self) -> bool:
        """Cadence must be a positive number of days."""
        return isinstance(self.review_cycle_days, int) and self.review_cycle_days > 0

    def set_applies_to(self, facility_codes: Optional[List[str]]):
        """Set applicability from a list of facility codes (None = all facilities)."""
        if facility_codes is None:
            self.applies_to = None
        else:
            self.applies_to = json.dumps(sorted(set(facility_codes)))

    def get_applies_to(self) -> Optional[List[str]]:
        """Get applicability as a list of facility codes, or None for all."""
        if self.applies_to is None:
            return None
        return json.loads(self.applies_to)

    def applies_to_facility(self, facility: "Facility") -> bool:
        """Check whether this requirement applies to the given facility."""
        codes = self.get_applies_to()
        return codes is None or facility.code in codes


class ReviewRecord(SQLModel, table=True):
    """
    Review ledger entry: a reviewer completed a review of an SOP at a facility.

    Rows are append-only. The current record for a (facility, requirement)
    pair is the one with the latest review_date; older rows are audit history.
    """
    __tablename__ = "sop_review"

    id: Optional[int] = Field(default=None, primary_key=True)
    facility_id: int = Field(foreign_key="facility.id", nullable=False, index=True)
    requirement_id: int = Field(foreign_key="sop_requirement.id", nullable=False, index=True)
    review_date: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))
    reviewer_id: str = Field(sa_column=Column(String(100), nullable=False))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))


class GapSnapshot(SQLModel, table=True):
    """
    Immutable point-in-time copy of a facility's readiness counts.
    Ordering by snapshot_date defines the facility's trend series.
    """
    __tablename__ = "gap_snapshot"
    __table_args__ = (
        CheckConstraint(
            "current_count + needs_update_count + missing_count = total_required",
            name="counts_sum_to_total"
        ),
        CheckConstraint(
            "readiness_pct >= 0 AND readiness_pct <= 100",
            name="valid_readiness_pct"
        ),
        CheckConstraint(
            "current_count >= 0 AND needs_update_count >= 0 AND missing_count >= 0",
            name="non_negative_counts"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    facility_id: int = Field(foreign_key="facility.id", nullable=False, index=True)
    snapshot_date: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False, index=True))

    # Frozen readiness at capture time
    total_required: int = Field(nullable=False)
    current_count: int = Field(nullable=False)
    needs_update_count: int = Field(nullable=False)
    missing_count: int = Field(nullable=False)
    readiness_pct: int = Field(nullable=False)

    assessed_by: Optional[str] = Field(default=None, sa_column=Column(String(100)))

    # Tamper detection
    snapshot_hash: Optional[str] = Field(default=None, sa_column=Column(String(64)))

    def compute_snapshot_hash(self) -> str:
        """Compute SHA-256 hash of the frozen snapshot fields.

        Includes facility_id, snapshot_date, the four counts, readiness_pct
        and assessed_by so any later edit to the row is detectable.
        """
        data = f"{self.facility_id}|{as_utc(self.snapshot_date).isoformat()}|{self.total_required}|{self.current_count}|{self.needs_update_count}|{self.missing_count}|{self.readiness_pct}|{self.assessed_by or ''}"
        return hashlib.sha256(data.encode()).hexdigest()

    def verify_integrity(self) -> bool:
        """Check the stored hash still matches the row contents."""
        return self.snapshot_hash == self.compute_snapshot_hash()


# Event listeners for validation and append-only enforcement
def _validate_requirement(target: SOPRequirement):
    if not target.validate_priority():
        raise ValueError(f"Invalid priority: {target.priority}. Must be one of {VALID_PRIORITIES}")
    if not target.validate_review_cycle():
        raise ValueError(f"Invalid review cycle: {target.review_cycle_days}. Must be a positive number of days")


@event.listens_for(SOPRequirement, "before_insert")
def requirement_before_insert(mapper, connection, target):
    """Validate priority and cadence before insert."""
    _validate_requirement(target)


@event.listens_for(SOPRequirement, "before_update")
def requirement_before_update(mapper, connection, target):
    """Validate priority and cadence and bump updated_at before update."""
    _validate_requirement(target)
    target.updated_at = utcnow()


@event.listens_for(ReviewRecord, "before_insert")
def review_before_insert(mapper, connection, target):
    """Reviewer identifier is required."""
    if not (target.reviewer_id and target.reviewer_id.strip()):
        raise ValueError("Reviewer identifier is required and cannot be empty")


@event.listens_for(ReviewRecord, "before_update")
@event.listens_for(ReviewRecord, "before_delete")
def review_is_append_only(mapper, connection, target):
    """Review records are never edited or deleted."""
    raise ValueError(f"Review record {target.id} is append-only")


@event.listens_for(GapSnapshot, "before_insert")
def snapshot_before_insert(mapper, connection, target):
    """Seal the snapshot with its content hash."""
    target.snapshot_hash = target.compute_snapshot_hash()


@event.listens_for(GapSnapshot, "before_update")
@event.listens_for(GapSnapshot, "before_delete")
def snapshot_is_immutable(mapper, connection, target):
    """Snapshots are never edited or deleted after capture."""
    raise ValueError(f"Snapshot {target.id} is immutable")
