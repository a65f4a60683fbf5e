"""
Snapshot Store for facility readiness

Append-only, timestamped copies of a facility's readiness counts that form
its trend series. Captures are serialized per facility so two concurrent
requests can never interleave their reads of the series tail with each
other's writes.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from audit import log_audit
from clock import SystemClock
from errors import UpstreamError, ValidationError
from models import Facility, GapSnapshot
from readiness import FacilityReadiness

logger = logging.getLogger(__name__)


# ============================================================================
# Per-facility write locks
# ============================================================================

_facility_locks: Dict[int, threading.Lock] = {}
_facility_locks_guard = threading.Lock()


def facility_lock(facility_id: int) -> threading.Lock:
    """Return the process-wide write lock for a facility's snapshot series."""
    with _facility_locks_guard:
        lock = _facility_locks.get(facility_id)
        if lock is None:
            lock = threading.Lock()
            _facility_locks[facility_id] = lock
        return lock


# ============================================================================
# Snapshot Store
# ============================================================================

class SnapshotStore:
    """
    Readiness snapshots stored in the gap_snapshot table.

    Usage:
        store = SnapshotStore(session)
        snapshot = store.capture(facility.id, readiness, assessed_by="qa.lead")
        series = store.history(facility.id)
    """

    def __init__(self, session: Session, clock=None):
        self.session = session
        self.clock = clock or SystemClock()

    def capture(
        self,
        facility_id: int,
        readiness: FacilityReadiness,
        assessed_by: Optional[str] = None,
    ) -> GapSnapshot:
        """
        Persist a new immutable snapshot of the given readiness.

        The snapshot_date is the clock time, moved just past the facility's
        latest snapshot when needed so the series stays strictly increasing.

        Args:
            facility_id: Facility the snapshot belongs to
            readiness: Live readiness to freeze
            assessed_by: Who triggered the capture

        Returns:
            The persisted GapSnapshot

        Raises:
            ValidationError: Unknown facility or inconsistent readiness
            UpstreamError: The snapshot could not be written (nothing persisted),
                or was written but could not be read back
        """
        if self.session.get(Facility, facility_id) is None:
            raise ValidationError(f"Cannot snapshot unknown facility {facility_id}")
        if readiness.facility_id != facility_id:
            raise ValidationError(
                f"Readiness for facility {readiness.facility_id} cannot be stored under facility {facility_id}"
            )
        if not readiness.is_consistent():
            raise ValidationError(f"Inconsistent readiness counts for facility {facility_id}: {readiness}")

        with facility_lock(facility_id):
            try:
                snapshot_date = self.clock.now()
                latest = self._latest_snapshot_date(facility_id)
                if latest is not None and snapshot_date <= latest:
                    snapshot_date = latest + timedelta(microseconds=1)

                snapshot = GapSnapshot(
                    facility_id=facility_id,
                    snapshot_date=snapshot_date,
                    total_required=readiness.total_required,
                    current_count=readiness.current_count,
                    needs_update_count=readiness.needs_update_count,
                    missing_count=readiness.missing_count,
                    readiness_pct=readiness.readiness_pct,
                    assessed_by=assessed_by,
                )
                self.session.add(snapshot)
                self.session.flush()
                snapshot_id = snapshot.id
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                logger.error("Snapshot capture failed for facility %s: %s", facility_id, e)
                raise UpstreamError(f"Snapshot store unavailable for facility {facility_id}") from e

        # Committed: a failed reload must not be reported as nothing persisted
        try:
            self.session.refresh(snapshot)
        except SQLAlchemyError as e:
            logger.error("Snapshot %s stored but reload failed: %s", snapshot_id, e)
            raise UpstreamError(
                f"Snapshot {snapshot_id} for facility {facility_id} was stored but could not be reloaded"
            ) from e

        log_audit(
            "Snapshot Captured", facility_id, assessed_by,
            f"Snapshot: {snapshot.id} | Readiness: {snapshot.readiness_pct}% | Hash: {snapshot.snapshot_hash}",
        )
        return snapshot

    def history(self, facility_id: int, limit: Optional[int] = None) -> List[GapSnapshot]:
        """
        Snapshots for a facility, oldest first.

        Args:
            facility_id: Facility database ID
            limit: Keep only the most recent N snapshots (still oldest first);
                None or 0 returns the full series

        Returns:
            A new list on every call
        """
        if limit is not None and limit < 0:
            raise ValidationError(f"History limit must be non-negative, got {limit}")

        query = select(GapSnapshot).where(GapSnapshot.facility_id == facility_id)
        if not limit:
            query = query.order_by(GapSnapshot.snapshot_date, GapSnapshot.id)
            return list(self.session.exec(query).all())

        query = query.order_by(GapSnapshot.snapshot_date.desc(), GapSnapshot.id.desc()).limit(limit)
        return list(reversed(self.session.exec(query).all()))

    def _latest_snapshot_date(self, facility_id: int) -> Optional[datetime]:
        query = (
            select(GapSnapshot.snapshot_date)
            .where(GapSnapshot.facility_id == facility_id)
            .order_by(GapSnapshot.snapshot_date.desc())
            .limit(1)
        )
        return self.session.exec(query).first()
