"""
API request and response models for the readiness endpoints.
"""

from datetime import datetime
from typing import Optional, List

from sqlmodel import SQLModel

from readiness import FacilityReadiness, readiness_band


class FacilityRead(SQLModel):
    id: int
    name: str
    code: str
    is_active: bool

    @classmethod
    def from_facility(cls, facility) -> "FacilityRead":
        return cls(id=facility.id, name=facility.name, code=facility.code, is_active=facility.is_active)


class FacilityReadinessRead(SQLModel):
    facility_id: int
    facility_name: str
    facility_code: str
    total_required: int
    current_count: int
    needs_update_count: int
    missing_count: int
    readiness_pct: int
    band: str

    @classmethod
    def from_readiness(cls, readiness: FacilityReadiness) -> "FacilityReadinessRead":
        return cls(
            facility_id=readiness.facility_id,
            facility_name=readiness.facility_name,
            facility_code=readiness.facility_code,
            total_required=readiness.total_required,
            current_count=readiness.current_count,
            needs_update_count=readiness.needs_update_count,
            missing_count=readiness.missing_count,
            readiness_pct=readiness.readiness_pct,
            band=readiness.band,
        )


class SummaryRead(SQLModel):
    facilities: List[FacilityReadinessRead]


class SOPStatusRead(SQLModel):
    requirement_id: int
    code: str
    title: str
    category: str
    priority: str
    owner: Optional[str] = None
    review_cycle_days: int
    status: str
    last_review_date: Optional[datetime] = None
    reviewer_id: Optional[str] = None
    next_review_due: Optional[datetime] = None
    days_overdue: int = 0

    @classmethod
    def from_entry(cls, entry) -> "SOPStatusRead":
        return cls(
            requirement_id=entry.requirement_id,
            code=entry.code,
            title=entry.title,
            category=entry.category,
            priority=entry.priority,
            owner=entry.owner,
            review_cycle_days=entry.review_cycle_days,
            status=entry.status,
            last_review_date=entry.last_review_date,
            reviewer_id=entry.reviewer_id,
            next_review_due=entry.next_review_due,
            days_overdue=entry.days_overdue,
        )


class SnapshotRead(SQLModel):
    id: int
    facility_id: int
    snapshot_date: datetime
    total_required: int
    current_count: int
    needs_update_count: int
    missing_count: int
    readiness_pct: int
    band: str
    assessed_by: Optional[str] = None
    snapshot_hash: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snapshot) -> "SnapshotRead":
        return cls(
            id=snapshot.id,
            facility_id=snapshot.facility_id,
            snapshot_date=snapshot.snapshot_date,
            total_required=snapshot.total_required,
            current_count=snapshot.current_count,
            needs_update_count=snapshot.needs_update_count,
            missing_count=snapshot.missing_count,
            readiness_pct=snapshot.readiness_pct,
            band=readiness_band(snapshot.readiness_pct),
            assessed_by=snapshot.assessed_by,
            snapshot_hash=snapshot.snapshot_hash,
        )


class FacilityDetailRead(SQLModel):
    facility: FacilityRead
    readiness: FacilityReadinessRead
    evaluated_at: datetime
    status_filter: str
    sops: List[SOPStatusRead]
    snapshots: List[SnapshotRead]

    @classmethod
    def from_detail(cls, detail) -> "FacilityDetailRead":
        return cls(
            facility=FacilityRead.from_facility(detail.facility),
            readiness=FacilityReadinessRead.from_readiness(detail.readiness),
            evaluated_at=detail.evaluated_at,
            status_filter=detail.status_filter,
            sops=[SOPStatusRead.from_entry(e) for e in detail.sops],
            snapshots=[SnapshotRead.from_snapshot(s) for s in detail.snapshots],
        )


class SnapshotCreate(SQLModel):
    assessed_by: Optional[str] = None


class ReviewCreate(SQLModel):
    requirement_id: int
    reviewer_id: str
    review_date: Optional[datetime] = None
    notes: Optional[str] = None


class ReviewRead(SQLModel):
    id: int
    facility_id: int
    requirement_id: int
    review_date: datetime
    reviewer_id: str
    notes: Optional[str] = None
