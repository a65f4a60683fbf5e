"""
Review Ledger

Append-only record of completed SOP reviews per facility. Only the latest
review for a (facility, requirement) pair affects classification; earlier
entries are retained as audit history.
"""

import logging
from datetime import datetime
from typing import Optional, List

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from audit import log_audit
from clock import utcnow
from errors import UpstreamError, ValidationError
from models import ReviewRecord

logger = logging.getLogger(__name__)


class SqlReviewLedger:
    """Review records stored in the sop_review table."""

    def __init__(self, session: Session):
        self.session = session

    def get_latest_review(self, facility_id: int, requirement_id: int) -> Optional[ReviewRecord]:
        """Most recent review for the pair (latest review_date, then highest id)."""
        query = (
            select(ReviewRecord)
            .where(ReviewRecord.facility_id == facility_id)
            .where(ReviewRecord.requirement_id == requirement_id)
            .order_by(ReviewRecord.review_date.desc(), ReviewRecord.id.desc())
            .limit(1)
        )
        return self.session.exec(query).first()

    def list_reviews(self, facility_id: int, requirement_id: int) -> List[ReviewRecord]:
        """Full review history for the pair, oldest first."""
        query = (
            select(ReviewRecord)
            .where(ReviewRecord.facility_id == facility_id)
            .where(ReviewRecord.requirement_id == requirement_id)
            .order_by(ReviewRecord.review_date, ReviewRecord.id)
        )
        return list(self.session.exec(query).all())

    def record_review(
        self,
        facility_id: int,
        requirement_id: int,
        reviewer_id: str,
        review_date: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> ReviewRecord:
        """
        Append a completed review to the ledger.

        Args:
            facility_id: Facility the review was done for
            requirement_id: SOP requirement reviewed
            reviewer_id: Identifier of the reviewer
            review_date: When the review happened (defaults to now)
            notes: Optional reviewer notes

        Returns:
            The persisted ReviewRecord

        Raises:
            ValidationError: If the reviewer is missing
            UpstreamError: If the ledger could not be written
        """
        if not reviewer_id or not reviewer_id.strip():
            raise ValidationError("Reviewer identifier is required")

        record = ReviewRecord(
            facility_id=facility_id,
            requirement_id=requirement_id,
            reviewer_id=reviewer_id.strip(),
            review_date=review_date or utcnow(),
            notes=notes,
        )
        self.session.add(record)
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Failed to record review for facility %s, SOP %s: %s", facility_id, requirement_id, e)
            raise UpstreamError("Review ledger unavailable") from e

        self.session.refresh(record)
        log_audit(
            "Review Recorded", facility_id, record.reviewer_id,
            f"SOP: {requirement_id} | Review date: {record.review_date.isoformat()}",
        )
        return record
