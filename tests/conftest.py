"""
Pytest Configuration and Fixtures for the Compliance Readiness Engine

Features:
- Test database isolation from production (fresh in-memory SQLite per test)
- Frozen clock for deterministic classification
- Reusable fixtures for facilities, SOP requirements and reviews
- FastAPI TestClient setup
"""

import os
import pytest
from datetime import datetime, timedelta, timezone
from typing import Generator

# Keep the application engine away from any real database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from dotenv import load_dotenv
load_dotenv()

from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

# Import application components
from main import app, get_db, get_clock
from clock import FrozenClock
from gap_analyzer import GapAnalysisService
from models import Facility, SOPRequirement, ReviewRecord


# Fixed evaluation instant for every test
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_engine():
    """In-memory SQLite engine with all tables, dropped after each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(test_engine) -> Generator[Session, None, None]:
    """Provide a database session for each test."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def frozen_clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def service(test_db: Session, frozen_clock: FrozenClock) -> GapAnalysisService:
    return GapAnalysisService.from_session(test_db, frozen_clock)


# ============================================================================
# FastAPI TestClient Fixture
# ============================================================================

@pytest.fixture(scope="function")
def test_client(test_db: Session, frozen_clock: FrozenClock) -> Generator[TestClient, None, None]:
    """
    Provide FastAPI TestClient with test database and frozen clock.
    Overrides the get_db and get_clock dependencies.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: frozen_clock

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Sample Data Fixtures
# ============================================================================

def add_facility(session: Session, name: str, code: str, is_active: bool = True) -> Facility:
    facility = Facility(name=name, code=code, is_active=is_active)
    session.add(facility)
    session.commit()
    session.refresh(facility)
    return facility


def add_requirement(
    session: Session,
    code: str,
    review_cycle_days: int,
    applies_to=None,
    priority: str = "medium",
    category: str = "Food Safety",
) -> SOPRequirement:
    requirement = SOPRequirement(
        code=code,
        title=f"{code} procedure",
        category=category,
        priority=priority,
        review_cycle_days=review_cycle_days,
    )
    requirement.set_applies_to(applies_to)
    session.add(requirement)
    session.commit()
    session.refresh(requirement)
    return requirement


def add_review(session: Session, facility: Facility, requirement: SOPRequirement,
               days_ago: float, reviewer_id: str = "qa.lead") -> ReviewRecord:
    review = ReviewRecord(
        facility_id=facility.id,
        requirement_id=requirement.id,
        review_date=NOW - timedelta(days=days_ago),
        reviewer_id=reviewer_id,
    )
    session.add(review)
    session.commit()
    session.refresh(review)
    return review


@pytest.fixture
def scenario(test_db: Session) -> dict:
    """
    North Mill with three SOPs:
    A (365d cadence, reviewed 10 days ago), B (90d, reviewed 120 days ago),
    C (30d, never reviewed).
    """
    facility = add_facility(test_db, "North Mill", "NM")
    a = add_requirement(test_db, "SOP-A", 365, applies_to=["NM"], priority="high")
    b = add_requirement(test_db, "SOP-B", 90, applies_to=["NM"], category="Sanitation")
    c = add_requirement(test_db, "SOP-C", 30, applies_to=["NM"], priority="low")
    add_review(test_db, facility, a, days_ago=10)
    add_review(test_db, facility, b, days_ago=120, reviewer_id="sanitation.lead")
    return {"facility": facility, "a": a, "b": b, "c": c}


@pytest.fixture
def multiple_facilities(test_db: Session) -> dict:
    """
    Three active facilities and one inactive:
    - Zeta Packhouse (ZP): 2/2 current -> 100%
    - Alpha Warehouse (AW): 1/3 current -> 33%
    - Mid Silo (MS): no applicable SOPs -> 0%
    - Old Dryer (OD): inactive
    """
    zeta = add_facility(test_db, "Zeta Packhouse", "ZP")
    alpha = add_facility(test_db, "Alpha Warehouse", "AW")
    mid = add_facility(test_db, "Mid Silo", "MS")
    old = add_facility(test_db, "Old Dryer", "OD", is_active=False)

    zp1 = add_requirement(test_db, "ZP-001", 365, applies_to=["ZP"])
    zp2 = add_requirement(test_db, "ZP-002", 180, applies_to=["ZP"])
    aw1 = add_requirement(test_db, "AW-001", 365, applies_to=["AW", "OD"])
    aw2 = add_requirement(test_db, "AW-002", 30, applies_to=["AW"])
    add_requirement(test_db, "AW-003", 90, applies_to=["AW"])

    add_review(test_db, zeta, zp1, days_ago=5)
    add_review(test_db, zeta, zp2, days_ago=180)
    add_review(test_db, alpha, aw1, days_ago=200)
    add_review(test_db, alpha, aw2, days_ago=45)

    return {"zeta": zeta, "alpha": alpha, "mid": mid, "old": old}
