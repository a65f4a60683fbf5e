"""
SOP Requirement Registry and Facility Source

SQLModel-backed collaborators that feed the readiness engine:
- SqlFacilitySource: facilities in scope (owned by the tenant system)
- SqlRequirementSource: SOP catalog filtered by facility applicability
- register_requirement: catalog administration entry point
"""

import logging
from typing import Optional, List

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from errors import NotFoundError, ValidationError
from models import Facility, SOPRequirement, DEFAULT_REVIEW_CYCLE_DAYS, VALID_PRIORITIES

logger = logging.getLogger(__name__)


class SqlFacilitySource:
    """Read-only access to facilities."""

    def __init__(self, session: Session):
        self.session = session

    def list_facilities(self, include_inactive: bool = False) -> List[Facility]:
        """List facilities ordered by name (active only unless asked)."""
        query = select(Facility)
        if not include_inactive:
            query = query.where(Facility.is_active == True)  # noqa: E712
        query = query.order_by(Facility.name, Facility.id)
        return list(self.session.exec(query).all())

    def get_facility(self, facility_id: int) -> Facility:
        """
        Get one facility.

        Raises:
            NotFoundError: If no facility has this id
        """
        facility = self.session.get(Facility, facility_id)
        if facility is None:
            raise NotFoundError(f"Facility {facility_id} not found")
        return facility


class SqlRequirementSource:
    """SOP catalog lookups."""

    def __init__(self, session: Session):
        self.session = session

    def list_applicable_requirements(self, facility: Facility) -> List[SOPRequirement]:
        """
        List requirements that apply to a facility, ordered by code.

        Requirements with no applicability list apply to every facility.
        """
        query = select(SOPRequirement).order_by(SOPRequirement.code)
        requirements = self.session.exec(query).all()
        return [r for r in requirements if r.applies_to_facility(facility)]

    def get_requirement(self, requirement_id: int) -> SOPRequirement:
        """
        Get one requirement.

        Raises:
            NotFoundError: If no requirement has this id
        """
        requirement = self.session.get(SOPRequirement, requirement_id)
        if requirement is None:
            raise NotFoundError(f"SOP requirement {requirement_id} not found")
        return requirement


def register_requirement(
    session: Session,
    code: str,
    title: str,
    category: str = "General",
    priority: str = "medium",
    review_cycle_days: int = DEFAULT_REVIEW_CYCLE_DAYS,
    applies_to: Optional[List[str]] = None,
    owner: Optional[str] = None,
    description: Optional[str] = None,
) -> SOPRequirement:
    """
    Add an SOP to the requirement catalog.

    Args:
        session: Database session
        code: Unique SOP code (e.g., "SOP-FS-001")
        title: SOP title
        category: Grouping shown in the detail view
        priority: One of low, medium, high (case-insensitive)
        review_cycle_days: Review cadence in days
        applies_to: Facility codes this SOP applies to (None = all facilities)
        owner: Responsible role or person
        description: Free text

    Returns:
        The persisted SOPRequirement

    Raises:
        ValidationError: If any field is invalid or the code already exists
    """
    if not code or not code.strip():
        raise ValidationError("SOP code is required")
    if not title or not title.strip():
        raise ValidationError("SOP title is required")

    priority = (priority or "").lower()
    if priority not in VALID_PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}. Must be one of {VALID_PRIORITIES}")

    requirement = SOPRequirement(
        code=code.strip(),
        title=title.strip(),
        category=category,
        priority=priority,
        review_cycle_days=review_cycle_days,
        owner=owner,
        description=description,
    )
    requirement.set_applies_to(applies_to)

    session.add(requirement)
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise ValidationError(f"Could not register SOP {code}: code already exists or constraint violated") from e
    except ValueError as e:
        session.rollback()
        raise ValidationError(str(e)) from e

    session.refresh(requirement)
    logger.info("Registered SOP requirement %s (%s)", requirement.code, requirement.title)
    return requirement
