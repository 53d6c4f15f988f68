from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """
    Machine-readable codes. Stable strings: UIs switch on them.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_HIERARCHY_MOVE = "INVALID_HIERARCHY_MOVE"
    CIRCULAR_REFERENCE = "CIRCULAR_REFERENCE"
    MAX_DEPTH_EXCEEDED = "MAX_DEPTH_EXCEEDED"
    NO_CHANGE_NEEDED = "NO_CHANGE_NEEDED"
    USER_INACTIVE = "USER_INACTIVE"
    PARENT_INACTIVE = "PARENT_INACTIVE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_ASSIGNMENT = "INVALID_ASSIGNMENT"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    CODE_NOT_FOUND = "CODE_NOT_FOUND"
    NOT_FOUND = "NOT_FOUND"
    CODE_SPACE_EXHAUSTED = "CODE_SPACE_EXHAUSTED"
    DATABASE_ERROR = "DATABASE_ERROR"


class MarketplaceError(Exception):
    """
    Base for errors the API layer turns into a JSON error envelope.
    """

    status_code: int = 500
    default_code: ErrorCode = ErrorCode.DATABASE_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": False, "error": self.message, "code": self.code.value}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(MarketplaceError):
    status_code = 400
    default_code = ErrorCode.VALIDATION_ERROR


class HierarchyViolation(MarketplaceError):
    status_code = 400
    default_code = ErrorCode.INVALID_HIERARCHY_MOVE


class PermissionDenied(MarketplaceError):
    status_code = 403
    default_code = ErrorCode.PERMISSION_DENIED


class NotFound(MarketplaceError):
    status_code = 404
    default_code = ErrorCode.NOT_FOUND


class NoChange(MarketplaceError):
    status_code = 409
    default_code = ErrorCode.NO_CHANGE_NEEDED


class DatabaseError(MarketplaceError):
    status_code = 500
    default_code = ErrorCode.DATABASE_ERROR


class CodeSpaceExhausted(MarketplaceError):
    status_code = 503
    default_code = ErrorCode.CODE_SPACE_EXHAUSTED


_CODE_ERRORS = {
    ErrorCode.NO_CHANGE_NEEDED: NoChange,
    ErrorCode.PERMISSION_DENIED: PermissionDenied,
    ErrorCode.USER_NOT_FOUND: NotFound,
    ErrorCode.PROJECT_NOT_FOUND: NotFound,
    ErrorCode.CODE_NOT_FOUND: NotFound,
    ErrorCode.NOT_FOUND: NotFound,
    ErrorCode.INVALID_HIERARCHY_MOVE: HierarchyViolation,
    ErrorCode.CIRCULAR_REFERENCE: HierarchyViolation,
    ErrorCode.MAX_DEPTH_EXCEEDED: HierarchyViolation,
    ErrorCode.USER_INACTIVE: HierarchyViolation,
    ErrorCode.PARENT_INACTIVE: HierarchyViolation,
}


def error_for_code(
    code: Optional[ErrorCode],
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> MarketplaceError:
    """
    Turn a rejected business-rule result into the matching exception so the
    API answers with the right status.
    """
    cls = _CODE_ERRORS.get(code, ValidationError) if code else ValidationError
    return cls(message, code, details=details)
