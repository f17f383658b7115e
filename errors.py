"""
Service error taxonomy.

Services raise these exceptions; main.py turns them into the JSON envelope
{"error": ..., "message": ..., "details": ...}.
"""

from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    status_code = 500
    error = "internal_error"
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, details: Optional[List[Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.error, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


# ----------------------
# 400-range
# ----------------------
class ValidationFailed(ServiceError):
    status_code = 422
    error = "validation_failed"
    default_message = "Invalid data"


class NotFound(ServiceError):
    status_code = 404
    error = "not_found"
    default_message = "Resource not found"


class BeneficiaryNotFound(NotFound):
    error = "beneficiary_not_found"
    default_message = "The selected beneficiary does not exist or is not active"


class Conflict(ServiceError):
    status_code = 409
    error = "conflict"
    default_message = "Resource already exists"


class DuplicateName(Conflict):
    error = "duplicate_name"
    default_message = "You already have a category with this name"


class DuplicateFiscalCode(Conflict):
    error = "duplicate_fiscal_code"
    default_message = "An active beneficiary with this fiscal code already exists"


class DuplicateUser(Conflict):
    error = "duplicate_user"
    default_message = "Email or fiscal code already registered"


class PeriodOverlap(Conflict):
    error = "period_overlap"
    default_message = "A report for this beneficiary already covers the given period"


class Unauthorized(ServiceError):
    status_code = 401
    error = "unauthorized"
    default_message = "Authentication required"


class MissingCredential(Unauthorized):
    error = "missing_credential"
    default_message = "Access denied. Authentication token required."


class InvalidCredential(Unauthorized):
    error = "invalid_credential"
    default_message = "Malformed or invalid token."


class ExpiredCredential(Unauthorized):
    error = "expired_credential"
    default_message = "The token has expired. Please log in again."


class UnknownOrInactiveSubject(Unauthorized):
    error = "unknown_or_inactive_subject"
    default_message = "Invalid token or deactivated user."


class InvalidLogin(Unauthorized):
    error = "invalid_login"
    default_message = "Wrong email or password"


class Forbidden(ServiceError):
    status_code = 403
    error = "forbidden"
    default_message = "Access denied"


class RoleNotPermitted(Forbidden):
    error = "role_not_permitted"


class NotOwner(Forbidden):
    error = "not_owner"
    default_message = "You cannot access other users' resources."


class ReportLocked(ServiceError):
    status_code = 409
    error = "report_locked"
    default_message = "A submitted report can no longer be changed"


class IncompleteReport(ServiceError):
    status_code = 422
    error = "incomplete_report"
    default_message = "The report must be complete before it can be marked as such"


# ----------------------
# 500-range
# ----------------------
class Internal(ServiceError):
    status_code = 500
    error = "internal_error"
    default_message = "Something went wrong"
