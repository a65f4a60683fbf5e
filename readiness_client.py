"""
Readiness API client for the surrounding portal application.

Thin async wrappers over the /gaps endpoints that turn HTTP failures back
into the engine's error taxonomy so callers can tell "0% readiness" from
"readiness could not be computed".
"""

import os
from typing import Optional

import httpx

from errors import NotFoundError, UpstreamError, ValidationError


# ============================================================================
# Configuration
# ============================================================================

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", "10"))


def _client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=API_BASE_URL, timeout=API_TIMEOUT_SECONDS, transport=transport)


def _raise_for_error(response: httpx.Response):
    """Map error responses onto NotFoundError, ValidationError and UpstreamError."""
    if response.is_success:
        return

    try:
        detail = response.json().get("detail", response.text)
    except ValueError:
        detail = response.text

    if response.status_code == 404:
        raise NotFoundError(str(detail))
    if response.status_code in (400, 422):
        raise ValidationError(str(detail))
    raise UpstreamError(f"Readiness API returned {response.status_code}: {detail}")


async def _request(method: str, path: str, transport=None, **kwargs) -> dict:
    try:
        async with _client(transport) as client:
            response = await client.request(method, path, **kwargs)
    except httpx.HTTPError as e:
        raise UpstreamError(f"Readiness API unreachable: {e}") from e

    _raise_for_error(response)
    return response.json()


# ============================================================================
# API Operations
# ============================================================================

async def get_summary(order_by: str = "name", descending: bool = False, transport=None) -> list:
    """
    Fetch readiness for every facility.

    Returns:
        List of facility readiness dictionaries
    """
    data = await _request(
        "GET", "/gaps/summary",
        transport=transport,
        params={"order_by": order_by, "descending": str(descending).lower()},
    )
    return data["facilities"]


async def get_facility_detail(
    facility_id: int,
    status: str = "all",
    history_limit: Optional[int] = None,
    transport=None,
) -> dict:
    """
    Fetch SOP statuses, readiness and snapshot history for one facility.

    Args:
        facility_id: Facility database ID
        status: all, current, needs_update or missing
        history_limit: Most recent N snapshots (0 = full series)

    Returns:
        Facility detail dictionary
    """
    params = {"status": status}
    if history_limit is not None:
        params["history_limit"] = history_limit
    return await _request("GET", f"/gaps/{facility_id}", transport=transport, params=params)


async def take_snapshot(facility_id: int, assessed_by: Optional[str] = None, transport=None) -> dict:
    """
    Capture a readiness snapshot for a facility.

    Returns:
        The new snapshot dictionary
    """
    return await _request(
        "POST", f"/gaps/{facility_id}/snapshot",
        transport=transport,
        json={"assessed_by": assessed_by},
    )


async def record_review(
    facility_id: int,
    requirement_id: int,
    reviewer_id: str,
    review_date: Optional[str] = None,
    notes: Optional[str] = None,
    transport=None,
) -> dict:
    """
    Record a completed SOP review.

    Args:
        facility_id: Facility database ID
        requirement_id: SOP requirement database ID
        reviewer_id: Reviewer identifier
        review_date: ISO timestamp of the review (defaults to now server-side)
        notes: Optional notes

    Returns:
        The new review record dictionary
    """
    payload = {"requirement_id": requirement_id, "reviewer_id": reviewer_id, "notes": notes}
    if review_date is not None:
        payload["review_date"] = review_date
    return await _request("POST", f"/gaps/{facility_id}/reviews", transport=transport, json=payload)
