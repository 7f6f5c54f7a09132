"""Domain exceptions.

Services raise these instead of ``HTTPException``; a single handler registered
in :func:`exam_eval.main.create_app` turns them into ``{"message", "code"}``
JSON responses with the matching status code.

Usage::

    if student is None:
        raise StudentNotFound(roll_no)
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base exception for all service errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


# ============================================
# 400
# ============================================

class ValidationError(AppError):
    """Missing or malformed input."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidOtp(AppError):
    status_code = 400

    def __init__(self, message: str = "Invalid OTP"):
        super().__init__(message, code="INVALID_OTP")


class InvalidUser(AppError):
    status_code = 400

    def __init__(self, message: str = "Invalid user"):
        super().__init__(message, code="INVALID_USER")


class ConflictError(AppError):
    """Duplicate email / roll number / existing profile."""

    status_code = 400

    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code=code)


class DuplicateUser(ConflictError):
    def __init__(self, message: str = "User already exists"):
        super().__init__(message, code="DUPLICATE_USER")


class AlreadyExists(ConflictError):
    def __init__(self, message: str):
        super().__init__(message, code="ALREADY_EXISTS")


# ============================================
# 401 / 403
# ============================================

class AuthenticationError(AppError):
    status_code = 401

    def __init__(self, message: str = "Authentication failed", code: str = "AUTH_FAILED"):
        super().__init__(message, code=code)


class InvalidCredentials(AuthenticationError):
    def __init__(self):
        super().__init__("Invalid credentials", code="INVALID_CREDENTIALS")


class InvalidToken(AuthenticationError):
    def __init__(self, message: str = "Invalid token"):
        super().__init__(message, code="INVALID_TOKEN")


class OtpRequired(AuthenticationError):
    def __init__(self):
        super().__init__("OTP verification required", code="OTP_REQUIRED")


class AuthorizationError(AppError):
    status_code = 403

    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="FORBIDDEN", details=details)


Forbidden = AuthorizationError


# ============================================
# 404
# ============================================

class NotFoundError(AppError):
    status_code = 404

    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(message, code=code)


class StudentNotFound(NotFoundError):
    def __init__(self, roll_no: str):
        super().__init__("Student not found", code="STUDENT_NOT_FOUND")
        self.details = {"roll_no": roll_no}


# ============================================
# 500
# ============================================

class DependencyError(AppError):
    """An external collaborator (mail, OCR, grading) failed."""

    status_code = 500

    def __init__(self, message: str, service: str):
        super().__init__(message, code="DEPENDENCY_ERROR", details={"service": service})
