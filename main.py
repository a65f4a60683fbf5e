"""
FastAPI Application for the Compliance Readiness Engine

Endpoints:
- GET  /gaps/summary                  - Readiness of every facility
- GET  /gaps/{facility_id}            - SOP statuses, readiness and snapshot history
- POST /gaps/{facility_id}/snapshot   - Capture a readiness snapshot
- POST /gaps/{facility_id}/reviews    - Record a completed SOP review
- GET  /health                        - Database connectivity
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from clock import SystemClock
from database import create_tables, get_db, health_check
from errors import GapAnalysisError, NotFoundError, UpstreamError, ValidationError
from gap_analyzer import GapAnalysisService
from schemas import (
    FacilityDetailRead,
    FacilityReadinessRead,
    ReviewCreate,
    ReviewRead,
    SnapshotCreate,
    SnapshotRead,
    SummaryRead,
)

load_dotenv()


# ============================================================================
# Configuration
# ============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Snapshots returned by the detail view when the caller does not ask (0 = all)
SNAPSHOT_HISTORY_LIMIT = int(os.getenv("SNAPSHOT_HISTORY_LIMIT", "10"))

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 400,
    UpstreamError: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    create_tables()
    yield


app = FastAPI(
    title="FSMS Compliance Readiness",
    description="SOP gap analysis: per-facility readiness, SOP review status and snapshot history",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(GapAnalysisError)
async def gap_analysis_error_handler(request: Request, exc: GapAnalysisError):
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": exc.message})


# ============================================================================
# Dependencies
# ============================================================================

def get_clock():
    """Clock used for readiness evaluation (overridden in tests)."""
    return SystemClock()


def get_service(db: Session = Depends(get_db), clock=Depends(get_clock)) -> GapAnalysisService:
    return GapAnalysisService.from_session(db, clock)


# ============================================================================
# Routes
# ============================================================================

@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Database connectivity check."""
    status = health_check(db.get_bind())
    if not status["connected"]:
        return JSONResponse(status_code=503, content=status)
    return status


@app.get("/gaps/summary", response_model=SummaryRead)
def gap_summary(
    order_by: str = Query("name"),
    descending: bool = Query(False),
    include_inactive: bool = Query(False),
    service: GapAnalysisService = Depends(get_service),
):
    """Readiness of every facility in scope."""
    results = service.summary(order_by=order_by, descending=descending, include_inactive=include_inactive)
    return SummaryRead(facilities=[FacilityReadinessRead.from_readiness(r) for r in results])


@app.get("/gaps/{facility_id}", response_model=FacilityDetailRead)
def gap_detail(
    facility_id: int,
    status: str = Query("all"),
    history_limit: Optional[int] = Query(None, ge=0),
    service: GapAnalysisService = Depends(get_service),
):
    """SOP statuses, readiness and snapshot history for one facility."""
    limit = SNAPSHOT_HISTORY_LIMIT if history_limit is None else history_limit
    detail = service.detail(facility_id, status_filter=status, history_limit=limit)
    return FacilityDetailRead.from_detail(detail)


@app.post("/gaps/{facility_id}/snapshot", response_model=SnapshotRead, status_code=201)
def take_snapshot(
    facility_id: int,
    payload: Optional[SnapshotCreate] = None,
    service: GapAnalysisService = Depends(get_service),
):
    """Capture the facility's live readiness as a new snapshot."""
    assessed_by = payload.assessed_by if payload else None
    snapshot = service.take_snapshot(facility_id, assessed_by=assessed_by)
    return SnapshotRead.from_snapshot(snapshot)


@app.post("/gaps/{facility_id}/reviews", response_model=ReviewRead, status_code=201)
def record_review(
    facility_id: int,
    payload: ReviewCreate,
    service: GapAnalysisService = Depends(get_service),
):
    """Record that a reviewer completed a review of an SOP at the facility."""
    record = service.record_review(
        facility_id,
        payload.requirement_id,
        payload.reviewer_id,
        review_date=payload.review_date,
        notes=payload.notes,
    )
    return ReviewRead(
        id=record.id,
        facility_id=record.facility_id,
        requirement_id=record.requirement_id,
        review_date=record.review_date,
        reviewer_id=record.reviewer_id,
        notes=record.notes,
    )
