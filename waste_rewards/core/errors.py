"""
Error taxonomy for the waste rewards service.

Every failure a user can trigger is a WasteRewardsError. The HTTP layer turns
each one into exactly one user-facing notification.
"""

from typing import Optional


class WasteRewardsError(Exception):
    code = "INTERNAL_ERROR"
    http_status = 500
    title = "Request Failed"

    def __init__(self, message: str, *, code: Optional[str] = None, title: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if title:
            self.title = title


class AuthenticationError(WasteRewardsError):
    code = "AUTH_INVALID"
    http_status = 401
    title = "Not Signed In"


class ProfileRequired(WasteRewardsError):
    code = "PROFILE_REQUIRED"
    http_status = 409
    title = "Profile Not Ready"


class ProfileAlreadyExists(WasteRewardsError):
    code = "PROFILE_EXISTS"
    http_status = 409
    title = "Setup Failed"


class PermissionDenied(WasteRewardsError):
    code = "PERMISSION_DENIED"
    http_status = 403
    title = "Access Denied"


class TransitionDenied(WasteRewardsError):
    """Role/state combination outside the report transition table."""

    code = "TRANSITION_DENIED"
    http_status = 409
    title = "Action Not Allowed"


class DocumentNotFound(WasteRewardsError):
    code = "NOT_FOUND"
    http_status = 404
    title = "Not Found"


class ReportNotFound(DocumentNotFound):
    code = "REPORT_NOT_FOUND"


class PreconditionFailed(WasteRewardsError):
    """A compare-and-swap update lost against a concurrent write."""

    code = "PRECONDITION_FAILED"
    http_status = 409
    title = "Report Changed"


class TransactionAborted(WasteRewardsError):
    code = "TRANSACTION_ABORTED"
    http_status = 409
    title = "Transaction Failed"


class InvalidImage(WasteRewardsError):
    code = "INVALID_IMAGE"
    http_status = 422
    title = "Invalid Image"


class ValidationFailed(WasteRewardsError):
    code = "VALIDATION_FAILED"
    http_status = 422
    title = "Missing"


class StoreUnavailable(WasteRewardsError):
    code = "STORE_UNAVAILABLE"
    http_status = 503
    title = "Service Unavailable"
