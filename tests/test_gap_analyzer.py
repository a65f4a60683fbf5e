"""
Tests for the Gap Analysis Service: facility summary, facility detail,
snapshot action and review recording.
"""

import pytest
from datetime import timedelta, timezone, datetime

from conftest import NOW, add_facility, add_requirement, add_review
from errors import NotFoundError, UpstreamError, ValidationError
from gap_analyzer import GapAnalysisService, filter_by_status
from registry import SqlFacilitySource, SqlRequirementSource
from review_ledger import SqlReviewLedger
from snapshot_store import SnapshotStore


class FailingRequirementSource:
    """Requirement registry that is down."""

    def list_applicable_requirements(self, facility):
        raise RuntimeError("registry connection refused")

    def get_requirement(self, requirement_id):
        raise RuntimeError("registry connection refused")


def service_with(test_db, frozen_clock, **overrides):
    collaborators = {
        "facilities": SqlFacilitySource(test_db),
        "requirements": SqlRequirementSource(test_db),
        "reviews": SqlReviewLedger(test_db),
        "snapshots": SnapshotStore(test_db, frozen_clock),
        "clock": frozen_clock,
    }
    collaborators.update(overrides)
    return GapAnalysisService(**collaborators)


# ============================================================================
# Summary
# ============================================================================

class TestSummary:

    def test_lists_active_facilities_by_name(self, service, multiple_facilities):
        summary = service.summary()

        assert [r.facility_code for r in summary] == ["AW", "MS", "ZP"]

    def test_readiness_per_facility(self, service, multiple_facilities):
        by_code = {r.facility_code: r for r in service.summary()}

        alpha = by_code["AW"]
        assert (alpha.total_required, alpha.current_count, alpha.needs_update_count, alpha.missing_count) == (3, 1, 1, 1)
        assert alpha.readiness_pct == 33
        assert alpha.band == "critical"

        zeta = by_code["ZP"]
        assert (zeta.total_required, zeta.current_count) == (2, 2)
        assert zeta.readiness_pct == 100
        assert zeta.band == "healthy"

    def test_facility_without_requirements_is_listed_at_zero(self, service, multiple_facilities):
        mid = next(r for r in service.summary() if r.facility_code == "MS")

        assert mid.total_required == 0
        assert mid.readiness_pct == 0

    def test_invariants_hold_for_every_facility(self, service, multiple_facilities):
        for readiness in service.summary(include_inactive=True):
            assert readiness.current_count + readiness.needs_update_count + readiness.missing_count == readiness.total_required
            assert 0 <= readiness.readiness_pct <= 100
            if readiness.total_required == 0:
                assert readiness.readiness_pct == 0

    def test_include_inactive(self, service, multiple_facilities):
        codes = [r.facility_code for r in service.summary(include_inactive=True)]
        assert codes == ["AW", "MS", "OD", "ZP"]

    def test_order_by_readiness(self, service, multiple_facilities):
        assert [r.facility_code for r in service.summary(order_by="readiness_pct")] == ["MS", "AW", "ZP"]
        assert [r.facility_code for r in service.summary(order_by="readiness_pct", descending=True)] == ["ZP", "AW", "MS"]

    def test_order_by_code(self, service, multiple_facilities):
        assert [r.facility_code for r in service.summary(order_by="code")] == ["AW", "MS", "ZP"]

    def test_invalid_ordering(self, service):
        with pytest.raises(ValidationError):
            service.summary(order_by="priority")

    def test_no_facilities(self, service):
        assert service.summary() == []

    def test_registry_failure_surfaces_without_partial_results(self, test_db, frozen_clock, multiple_facilities):
        service = service_with(test_db, frozen_clock, requirements=FailingRequirementSource())

        with pytest.raises(UpstreamError) as exc_info:
            service.summary()
        assert isinstance(exc_info.value.__cause__, RuntimeError)


# ============================================================================
# Detail
# ============================================================================

class TestDetail:

    def test_scenario_statuses(self, service, scenario):
        detail = service.detail(scenario["facility"].id)

        statuses = {e.code: e.status for e in detail.sops}
        assert statuses == {"SOP-A": "current", "SOP-B": "needs_update", "SOP-C": "missing"}
        assert (detail.readiness.current_count, detail.readiness.needs_update_count,
                detail.readiness.missing_count) == (1, 1, 1)
        assert detail.readiness.readiness_pct == 33
        assert detail.band == "critical"
        assert detail.evaluated_at == NOW

    def test_entries_carry_review_details(self, service, scenario):
        entries = {e.code: e for e in service.detail(scenario["facility"].id).sops}

        a = entries["SOP-A"]
        assert a.priority == "high"
        assert a.last_review_date == NOW - timedelta(days=10)
        assert a.reviewer_id == "qa.lead"
        assert a.next_review_due == NOW + timedelta(days=355)
        assert a.days_overdue == 0

        b = entries["SOP-B"]
        assert b.category == "Sanitation"
        assert b.days_overdue == 30

        c = entries["SOP-C"]
        assert c.last_review_date is None
        assert c.reviewer_id is None
        assert c.next_review_due is None

    def test_entries_ordered_by_code(self, service, scenario):
        assert [e.code for e in service.detail(scenario["facility"].id).sops] == ["SOP-A", "SOP-B", "SOP-C"]

    @pytest.mark.parametrize("status_filter, expected", [
        ("all", ["SOP-A", "SOP-B", "SOP-C"]),
        ("current", ["SOP-A"]),
        ("needs_update", ["SOP-B"]),
        ("missing", ["SOP-C"]),
    ])
    def test_status_filter_does_not_change_readiness(self, service, scenario, status_filter, expected):
        detail = service.detail(scenario["facility"].id, status_filter=status_filter)

        assert [e.code for e in detail.sops] == expected
        assert detail.readiness.total_required == 3
        assert detail.readiness.readiness_pct == 33

    def test_invalid_status_filter(self, service, scenario):
        with pytest.raises(ValidationError):
            service.detail(scenario["facility"].id, status_filter="overdue")

    def test_unknown_facility(self, service):
        with pytest.raises(NotFoundError):
            service.detail(424242)

    def test_inactive_facility_detail_is_available(self, service, multiple_facilities):
        detail = service.detail(multiple_facilities["old"].id)
        assert detail.readiness.total_required == 1
        assert detail.readiness.missing_count == 1

    def test_requirement_not_applicable_is_excluded(self, test_db, service):
        north = add_facility(test_db, "North Mill", "NM")
        add_requirement(test_db, "SOP-ALL", 365)
        add_requirement(test_db, "SOP-NM", 365, applies_to=["NM"])
        add_requirement(test_db, "SOP-SM", 365, applies_to=["SM"])

        detail = service.detail(north.id)
        assert [e.code for e in detail.sops] == ["SOP-ALL", "SOP-NM"]
        assert detail.readiness.total_required == 2

    def test_only_latest_review_counts(self, test_db, service):
        north = add_facility(test_db, "North Mill", "NM")
        sop = add_requirement(test_db, "SOP-A", 30, applies_to=["NM"])
        add_review(test_db, north, sop, days_ago=5, reviewer_id="latest")
        add_review(test_db, north, sop, days_ago=400, reviewer_id="older")

        entry = service.detail(north.id).sops[0]
        assert entry.status == "current"
        assert entry.reviewer_id == "latest"

    def test_includes_snapshot_history_oldest_first(self, service, scenario, frozen_clock):
        facility_id = scenario["facility"].id
        first = service.take_snapshot(facility_id)
        frozen_clock.advance(days=1)
        second = service.take_snapshot(facility_id)

        detail = service.detail(facility_id)
        assert [s.id for s in detail.snapshots] == [first.id, second.id]
        assert [s.id for s in service.detail(facility_id, history_limit=1).snapshots] == [second.id]
        assert [s.id for s in service.detail(facility_id, history_limit=0).snapshots] == [first.id, second.id]

    def test_same_instant_for_every_requirement(self, test_db, scenario):
        class CountingClock:
            calls = 0

            def now(self):
                CountingClock.calls += 1
                return NOW + timedelta(days=CountingClock.calls)

        clock = CountingClock()
        service = service_with(test_db, clock, clock=clock)
        detail = service.detail(scenario["facility"].id)

        assert CountingClock.calls == 1
        assert detail.evaluated_at == NOW + timedelta(days=1)

    def test_registry_failure(self, test_db, frozen_clock, scenario):
        service = service_with(test_db, frozen_clock, requirements=FailingRequirementSource())
        with pytest.raises(UpstreamError):
            service.detail(scenario["facility"].id)


def test_filter_by_status_rejects_unknown_filter():
    with pytest.raises(ValidationError):
        filter_by_status([], "stale")


# ============================================================================
# Snapshot action
# ============================================================================

class TestTakeSnapshot:

    def test_snapshot_matches_live_readiness(self, service, scenario):
        snapshot = service.take_snapshot(scenario["facility"].id, assessed_by="auditor")

        assert (snapshot.total_required, snapshot.current_count,
                snapshot.needs_update_count, snapshot.missing_count) == (3, 1, 1, 1)
        assert snapshot.readiness_pct == 33
        assert snapshot.assessed_by == "auditor"
        assert snapshot.snapshot_date == NOW

    def test_twice_in_succession(self, service, scenario):
        facility_id = scenario["facility"].id
        first = service.take_snapshot(facility_id)
        second = service.take_snapshot(facility_id)

        assert first.id != second.id
        assert (first.current_count, first.readiness_pct) == (second.current_count, second.readiness_pct)
        assert second.snapshot_date > first.snapshot_date

    def test_snapshot_for_empty_facility(self, test_db, service):
        empty = add_facility(test_db, "Empty Shed", "ES")
        snapshot = service.take_snapshot(empty.id)

        assert snapshot.total_required == 0
        assert snapshot.readiness_pct == 0

    def test_snapshots_are_not_recomputed_later(self, test_db, service, scenario, frozen_clock):
        facility = scenario["facility"]
        before = service.take_snapshot(facility.id)

        add_requirement(test_db, "SOP-D", 30, applies_to=["NM"])
        frozen_clock.advance(days=400)
        service.take_snapshot(facility.id)

        history = service.detail(facility.id).snapshots
        assert (history[0].id, history[0].total_required, history[0].readiness_pct) == (before.id, 3, 33)
        assert (history[1].total_required, history[1].current_count, history[1].readiness_pct) == (4, 0, 0)

    def test_unknown_facility(self, service):
        with pytest.raises(NotFoundError):
            service.take_snapshot(424242)

    def test_registry_failure_persists_nothing(self, test_db, frozen_clock, scenario):
        facility_id = scenario["facility"].id
        service = service_with(test_db, frozen_clock, requirements=FailingRequirementSource())

        with pytest.raises(UpstreamError):
            service.take_snapshot(facility_id)
        assert SnapshotStore(test_db, frozen_clock).history(facility_id) == []


# ============================================================================
# Reviews and the status lifecycle
# ============================================================================

class TestRecordReview:

    def test_missing_to_current(self, service, scenario):
        facility, c = scenario["facility"], scenario["c"]

        service.record_review(facility.id, c.id, "qa.lead")

        statuses = {e.code: e.status for e in service.detail(facility.id).sops}
        assert statuses["SOP-C"] == "current"

    def test_needs_update_to_current(self, service, scenario):
        facility, b = scenario["facility"], scenario["b"]

        record = service.record_review(facility.id, b.id, "sanitation.lead", notes="Annual rewrite")
        assert record.review_date == NOW
        assert record.notes == "Annual rewrite"

        detail = service.detail(facility.id)
        assert {e.code: e.status for e in detail.sops}["SOP-B"] == "current"
        assert detail.readiness.readiness_pct == 67

    def test_current_to_needs_update_by_time_alone(self, service, scenario, frozen_clock):
        facility = scenario["facility"]
        frozen_clock.advance(days=356)

        statuses = {e.code: e.status for e in service.detail(facility.id).sops}
        assert statuses["SOP-A"] == "needs_update"

    def test_stale_review_moves_missing_to_needs_update(self, service, scenario):
        facility, c = scenario["facility"], scenario["c"]

        service.record_review(facility.id, c.id, "qa.lead", review_date=NOW - timedelta(days=31))

        statuses = {e.code: e.status for e in service.detail(facility.id).sops}
        assert statuses["SOP-C"] == "needs_update"

    def test_timezone_aware_review_date_is_normalized(self, service, scenario):
        facility, c = scenario["facility"], scenario["c"]
        local = datetime(2025, 5, 30, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        record = service.record_review(facility.id, c.id, "qa.lead", review_date=local)
        assert record.review_date == datetime(2025, 5, 30, 12, 0, tzinfo=timezone.utc)
        assert record.review_date.tzinfo == timezone.utc

    def test_naive_review_date_is_taken_as_utc(self, service, scenario):
        facility, c = scenario["facility"], scenario["c"]

        record = service.record_review(facility.id, c.id, "qa.lead", review_date=datetime(2025, 5, 30, 12, 0))
        assert record.review_date == datetime(2025, 5, 30, 12, 0, tzinfo=timezone.utc)

    def test_future_review_date_is_rejected(self, service, scenario):
        facility, c = scenario["facility"], scenario["c"]
        with pytest.raises(ValidationError):
            service.record_review(facility.id, c.id, "qa.lead", review_date=NOW + timedelta(days=1))

    def test_not_applicable_requirement_is_rejected(self, test_db, service, scenario):
        south = add_facility(test_db, "South Mill", "SM")
        with pytest.raises(ValidationError):
            service.record_review(south.id, scenario["a"].id, "qa.lead")

    def test_blank_reviewer_is_rejected(self, service, scenario):
        with pytest.raises(ValidationError):
            service.record_review(scenario["facility"].id, scenario["c"].id, "  ")

    def test_unknown_requirement(self, service, scenario):
        with pytest.raises(NotFoundError):
            service.record_review(scenario["facility"].id, 999, "qa.lead")

    def test_unknown_facility(self, service, scenario):
        with pytest.raises(NotFoundError):
            service.record_review(999, scenario["a"].id, "qa.lead")

    def test_older_reviews_are_retained(self, test_db, service, scenario):
        facility, b = scenario["facility"], scenario["b"]
        service.record_review(facility.id, b.id, "qa.lead")

        history = SqlReviewLedger(test_db).list_reviews(facility.id, b.id)
        assert [r.reviewer_id for r in history] == ["sanitation.lead", "qa.lead"]
