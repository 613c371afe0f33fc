"""
Domain dataclasses and enums used across the application.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from medqr.config import EMERGENCY_CONTACT_FIELDS, INSURANCE_FIELDS

EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_micros(dt: datetime) -> int:
    return (dt - EPOCH) // timedelta(microseconds=1)


def from_micros(us: int) -> datetime:
    return EPOCH + timedelta(microseconds=us)


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.isoformat(timespec="microseconds") + "Z"


# ── Enums ────────────────────────────────────────────────────────────

class Role(str, Enum):
    PATIENT = "patient"
    MEDICAL_STAFF = "medical_staff"
    ADMIN = "admin"


class GrantState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Action(str, Enum):
    READ_OWN = "read_own"
    READ_OTHER = "read_other"
    WRITE_OWN = "write_own"
    DELETE_OWN = "delete_own"
    VERIFY_STAFF = "verify_staff"
    REVOKE_STAFF = "revoke_staff"
    APPROVE_GRANT = "approve_grant"
    REJECT_GRANT = "reject_grant"
    REQUEST_GRANT = "request_grant"
    LIST_STAFF = "list_staff"


class DenyReason(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    STAFF_NOT_APPROVED = "staff_not_approved"
    INVALID_TARGET = "invalid_target"


# ── Identity / grants ────────────────────────────────────────────────

@dataclass
class Identity:
    """An account with a role and the admin verification flag."""
    id: str
    name: str
    email: str
    role: Role
    is_verified: bool = False
    hospital: Optional[Dict[str, str]] = None   # medical_staff only
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "isVerified": self.is_verified,
            "createdAt": isoformat(self.created_at),
        }
        if self.role == Role.MEDICAL_STAFF:
            out["hospital"] = self.hospital
        return out


@dataclass
class AccessGrant:
    """Per-staff approval record gating cross-patient reads."""
    staff_id: str
    state: GrantState = GrantState.PENDING
    role: str = "doctor"                 # informational role detail
    approved_by: Optional[str] = None
    approval_date: Optional[datetime] = None
    specialization: Optional[str] = None
    department: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.state == GrantState.APPROVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staff": self.staff_id,
            "isApproved": self.is_approved,
            "status": self.state.value,
            "role": self.role,
            "approvedBy": self.approved_by,
            "approvalDate": isoformat(self.approval_date),
            "specialization": self.specialization,
            "department": self.department,
            "notes": self.notes,
            "createdAt": isoformat(self.created_at),
        }


# ── Medical records ──────────────────────────────────────────────────

@dataclass
class Medication:
    name: str
    dosage: str = ""
    frequency: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "dosage": self.dosage, "frequency": self.frequency}


def blank_emergency_contact() -> Dict[str, str]:
    return {key: "" for key in EMERGENCY_CONTACT_FIELDS}


def blank_insurance_info() -> Dict[str, str]:
    return {key: "" for key in INSURANCE_FIELDS}


@dataclass
class MedicalRecord:
    """One patient's stored medical data. The access log lives in its own table."""
    patient_id: str
    name: str
    blood_type: str
    allergies: List[str] = field(default_factory=list)
    medications: List[Medication] = field(default_factory=list)
    conditions: List[str] = field(default_factory=list)
    emergency_contact: Dict[str, str] = field(default_factory=blank_emergency_contact)
    insurance_info: Dict[str, str] = field(default_factory=blank_insurance_info)
    last_updated: Optional[datetime] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "patient": self.patient_id,
            "name": self.name,
            "bloodType": self.blood_type,
            "allergies": list(self.allergies),
            "medications": [m.to_dict() for m in self.medications],
            "conditions": list(self.conditions),
            "emergencyContact": dict(self.emergency_contact),
            "insuranceInfo": dict(self.insurance_info),
            "lastUpdated": isoformat(self.last_updated),
        }


@dataclass(frozen=True)
class AccessLogEntry:
    """Immutable audit entry for one staff read of a record."""
    accessor_id: str
    action: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accessorId": self.accessor_id,
            "action": self.action,
            "timestamp": isoformat(self.timestamp),
        }


# ── Authorization decisions ──────────────────────────────────────────

@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""
    allowed: bool
    reason: Optional[DenyReason] = None
    detail: Optional[str] = None
    audit_required: bool = False   # caller must append an access-log entry

    @classmethod
    def allow(cls, audit_required: bool = False) -> "Decision":
        return cls(allowed=True, audit_required=audit_required)

    @classmethod
    def deny(cls, reason: DenyReason, detail: Optional[str] = None) -> "Decision":
        return cls(allowed=False, reason=reason, detail=detail)
