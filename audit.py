"""
Audit Trail for readiness evidence

Review and snapshot events are written to the "fsms.audit" logger so the
deployment decides where the trail is kept (file handler, log shipper).
"""

import logging

audit_logger = logging.getLogger("fsms.audit")


def log_audit(action: str, facility_id: int, user: str, details: str = ""):
    """
    Log action to the audit trail.

    Args:
        action: Action type (Review Recorded, Snapshot Captured)
        facility_id: Facility database ID
        user: User who performed action
        details: Additional details
    """
    audit_logger.info("%s | Facility: %s | User: %s | %s", action, facility_id, user or "system", details)
