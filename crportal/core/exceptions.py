"""
Custom Exceptions for CR Portal
===============================

Every failure a portal operation can report is one of these. The API layer
maps them to HTTP statuses; nothing here is fatal to the process.

Usage:
    from crportal.core.exceptions import DuplicateCRCodeError, ValidationError

    if await store.get_or_none(key) is not None:
        raise DuplicateCRCodeError(cr_code)

    try:
        await identity.login(email, password)
    except InvalidCredentialsError as e:
        logger.warning(f"Login failed: {e}")
        raise
"""

from typing import Optional, Any, Dict


class CRPortalError(Exception):
    """Base exception for all CR Portal errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Validation Errors (field-level)
# ============================================

class ValidationError(CRPortalError):
    """Input validation failed for one or more fields"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[Dict[str, str]] = None
    ):
        errors = dict(errors or {})
        if field and field not in errors:
            errors[field] = message
        details: Dict[str, Any] = {"errors": errors} if errors else {}
        if field:
            details["field"] = field
        super().__init__(message, code="VALIDATION_ERROR", details=details)
        self.field = field
        self.errors = errors

    @classmethod
    def from_errors(cls, errors: Dict[str, str]) -> "ValidationError":
        """Build one error carrying every field message; the first becomes the headline"""
        field, message = next(iter(errors.items()))
        return cls(message, field=field, errors=errors)


# ============================================
# Conflict Errors (unique key already taken)
# ============================================

class ConflictError(CRPortalError):
    """A unique value is already in use; reported against one field"""

    def __init__(self, message: str, field: str, code: str = "CONFLICT"):
        super().__init__(message, code=code, details={"field": field, "errors": {field: message}})
        self.field = field


class DuplicateUserError(ConflictError):
    """Email already registered"""

    def __init__(self, email: str):
        super().__init__("This email is already registered", field="email", code="DUPLICATE_USER")
        self.details["email"] = email


class DuplicateCRCodeError(ConflictError):
    """CR code already owned by another change request"""

    def __init__(self, cr_code: str):
        super().__init__("This CR Code already exists", field="crCode", code="DUPLICATE_CR_CODE")
        self.details["cr_code"] = cr_code


# ============================================
# Authentication & Authorization Errors
# ============================================

class InvalidCredentialsError(CRPortalError):
    """Email/password pair rejected. Never says which half was wrong."""

    def __init__(self):
        super().__init__("Invalid email or password", code="INVALID_CREDENTIALS")


class PermissionDeniedError(CRPortalError):
    """Role not allowed to perform this action"""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, code="PERMISSION_DENIED")


# ============================================
# Resource Errors (404-type)
# ============================================

class NotFoundError(CRPortalError):
    """Base class for not found errors"""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            code=f"{resource_type.upper().replace(' ', '_')}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class SessionNotFoundError(NotFoundError):
    """No active session - the user must log in again"""

    def __init__(self):
        super().__init__("Session", "current")
        self.message = "User session not found. Please login again."


class UserNotFoundError(NotFoundError):
    """User account not found"""

    def __init__(self, email: str):
        super().__init__("User", email)


class ChangeRequestNotFoundError(NotFoundError):
    """Change request not found"""

    def __init__(self, cr_id: str):
        super().__init__("Change Request", cr_id)


class DocumentNotFoundError(NotFoundError):
    """Attached document missing from storage"""

    def __init__(self, cr_id: str):
        super().__init__("Document", cr_id)


# ============================================
# Storage Errors
# ============================================

class StorageError(CRPortalError):
    """Key-value backend failed (connection, timeout, protocol)"""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message, code="STORAGE_ERROR")
        if key:
            self.details["key"] = key


class RecordDecodeError(StorageError):
    """Stored value is not a valid record of the expected shape"""

    def __init__(self, record_type: str, message: str, key: Optional[str] = None):
        super().__init__(f"Could not decode {record_type}: {message}", key=key)
        self.code = "RECORD_DECODE_ERROR"
        self.details["record_type"] = record_type


# ============================================
# Helper function for API responses
# ============================================

def error_response(error: CRPortalError) -> Dict[str, Any]:
    """Convert exception to API error response format"""
    return {
        "success": False,
        "error": error.to_dict()
    }
