"""
Error taxonomy for the Compliance Readiness Engine.

- NotFoundError: unknown facility or requirement (client error, 404)
- ValidationError: malformed request or inconsistent snapshot data (400)
- UpstreamError: registry, ledger or storage unavailable (retryable by caller, 5xx)
"""


class GapAnalysisError(Exception):
    """Base class for all readiness engine errors."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(GapAnalysisError):
    kind = "not_found"


class ValidationError(GapAnalysisError):
    kind = "validation_error"


class UpstreamError(GapAnalysisError):
    kind = "upstream_error"
