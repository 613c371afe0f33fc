"""
Domain exceptions.

Services raise these; the API layer maps them to HTTP responses.
"""

from typing import Optional

from medqr.models import Decision, DenyReason


class MedQRError(Exception):
    """Base error carrying a human-readable message and a machine-readable code."""
    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


# ── Authorization denials ────────────────────────────────────────────

class AccessDenied(MedQRError):
    """An authorization denial; keeps the Decision that produced it."""
    code = "forbidden"

    def __init__(self, message: str, decision: Optional[Decision] = None):
        super().__init__(message)
        self.decision = decision

    @property
    def detail(self) -> Optional[str]:
        return self.decision.detail if self.decision else None


class Unauthenticated(AccessDenied):
    code = "unauthenticated"


class Forbidden(AccessDenied):
    code = "forbidden"


class AdminAlreadyExists(Forbidden):
    code = "admin_exists"

    def __init__(self, message: str = "Admin already exists"):
        super().__init__(message)


class StaffNotApproved(AccessDenied):
    code = "staff_not_approved"


class InvalidTarget(AccessDenied):
    code = "invalid_target"


_DENIALS = {
    DenyReason.UNAUTHENTICATED: (Unauthenticated, "Authentication required"),
    DenyReason.FORBIDDEN: (Forbidden, "You do not have permission to perform this action"),
    DenyReason.STAFF_NOT_APPROVED: (
        StaffNotApproved,
        "Access denied. Only approved medical staff can access patient records.",
    ),
    DenyReason.INVALID_TARGET: (InvalidTarget, "User not found or is not medical staff"),
}


def denial_for(decision: Decision) -> AccessDenied:
    """Build the exception for a denied Decision, keeping the reason as-is."""
    cls, message = _DENIALS[decision.reason]
    return cls(message, decision)


# ── Everything else ──────────────────────────────────────────────────

class ValidationError(MedQRError):
    code = "validation_error"


class NotFound(MedQRError):
    code = "not_found"


class Conflict(MedQRError):
    code = "conflict"


class StoreUnavailable(MedQRError):
    """Persistence failed; distinct from any authorization denial."""
    code = "store_unavailable"
