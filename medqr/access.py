"""
Record access service: authorization decisions applied to the stores.

Every function takes the engine and the acting Identity. Denials raise an
AccessDenied subclass carrying the Decision unchanged; persistence failures
raise StoreUnavailable.
"""

import sys
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from medqr import store
from medqr.config import (
    AUDIT_ACTION_SCAN,
    AUTO_GRANT_DEPARTMENT,
    AUTO_GRANT_ROLE,
    AUTO_GRANT_SPECIALIZATION,
    BLOOD_TYPES,
    EMERGENCY_CONTACT_FIELDS,
    INSURANCE_FIELDS,
    QR_PAYLOAD_VERSION,
    STAFF_ACCESS_ROLES,
)
from medqr.errors import Conflict, NotFound, StoreUnavailable, ValidationError, denial_for
from medqr.models import (
    AccessGrant,
    AccessLogEntry,
    Action,
    GrantState,
    Identity,
    MedicalRecord,
    Medication,
    Role,
    blank_emergency_contact,
    blank_insurance_info,
    isoformat,
    utcnow,
)
from medqr.qr import build_qr_payload
from medqr.rbac import decide


@contextmanager
def store_guard(operation: str):
    """Translate persistence failures into StoreUnavailable."""
    try:
        yield
    except IntegrityError as e:
        print(f"[ERROR] {operation}: constraint violation: {e.orig}", file=sys.stderr)
        raise Conflict(f"Conflicting write during {operation}; retry the request") from e
    except SQLAlchemyError as e:
        print(f"[ERROR] {operation}: store unavailable: {e}", file=sys.stderr)
        raise StoreUnavailable("The data store is unavailable, please try again") from e


def _enforce(actor, grant, action, target_id=None, target=None):
    decision = decide(actor, grant, action, target_id=target_id, target=target)
    if not decision.allowed:
        print(f"[auth] Denied {action.value} for {actor.id if actor else 'anonymous'}: "
              f"{decision.reason.value} ({decision.detail})")
        raise denial_for(decision)
    return decision


# ── Patient: own record ──────────────────────────────────────────────

def empty_template(actor: Identity) -> Dict[str, Any]:
    """Blank form data for a patient who has not saved a record yet."""
    return {
        "name": actor.name,
        "bloodType": "",
        "allergies": [],
        "medications": [],
        "conditions": [],
        "emergencyContact": blank_emergency_contact(),
        "insuranceInfo": blank_insurance_info(),
        "lastUpdated": isoformat(utcnow()),
        "patient": actor.id,
        "patientName": actor.name,
        "patientEmail": actor.email,
    }


def get_own_record(engine, actor: Identity) -> Dict[str, Any]:
    """The caller's record plus its QR payload, or the empty template."""
    with store_guard("get own record"):
        record = store.get_record(engine, actor.id)
    if record is None:
        return empty_template(actor)

    data = record.to_dict()
    data.update({
        "qrCode": build_qr_payload(actor.id),
        "patientName": actor.name,
        "patientEmail": actor.email,
    })
    return data


def _clean_strings(values, field: str) -> List[str]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError(f"{field} must be a list")
    cleaned = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    return list(dict.fromkeys(cleaned))


def _clean_medications(values) -> List[Medication]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError("medications must be a list")
    meds = []
    for med in values:
        if not isinstance(med, dict):
            continue
        name = med.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        meds.append(Medication(
            name=name.strip(),
            dosage=str(med.get("dosage") or "").strip(),
            frequency=str(med.get("frequency") or "").strip(),
        ))
    return meds


def _clean_mapping(value, fields) -> Dict[str, str]:
    value = value if isinstance(value, dict) else {}
    return {key: str(value.get(key) or "").strip() for key in fields}


def build_record(patient_id: str, payload: Dict[str, Any]) -> MedicalRecord:
    """Validate a save payload and build the replacement record (not yet stamped)."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    blood_type = payload.get("bloodType")
    if not isinstance(blood_type, str) or not blood_type.strip():
        raise ValidationError("Blood type is required")
    blood_type = blood_type.strip().upper()
    if blood_type not in BLOOD_TYPES:
        raise ValidationError(f"Blood type must be one of {', '.join(BLOOD_TYPES)}")

    name = payload.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Name is required")

    return MedicalRecord(
        patient_id=patient_id,
        name=name.strip(),
        blood_type=blood_type,
        allergies=_clean_strings(payload.get("allergies"), "allergies"),
        medications=_clean_medications(payload.get("medications")),
        conditions=_clean_strings(payload.get("conditions"), "conditions"),
        emergency_contact=_clean_mapping(payload.get("emergencyContact"), EMERGENCY_CONTACT_FIELDS),
        insurance_info=_clean_mapping(payload.get("insuranceInfo"), INSURANCE_FIELDS),
    )


def upsert_record(engine, actor: Identity, payload: Dict[str, Any]) -> MedicalRecord:
    """Validate and fully replace the caller's record."""
    _enforce(actor, None, Action.WRITE_OWN, target_id=actor.id if actor else None)
    record = build_record(actor.id, payload)
    record.last_updated = utcnow()
    with store_guard("save medical record"):
        saved = store.replace_record(engine, record)
    print(f"[records] Saved medical record for patient {actor.id}")
    return saved


def delete_own_record(engine, actor: Identity) -> None:
    _enforce(actor, None, Action.DELETE_OWN, target_id=actor.id if actor else None)
    with store_guard("delete medical record"):
        deleted = store.delete_record(engine, actor.id)
    if not deleted:
        raise NotFound("Medical information not found")
    print(f"[records] Deleted medical record for patient {actor.id}")


def get_own_access_log(engine, actor: Identity) -> List[AccessLogEntry]:
    """Who has read the caller's record, oldest first."""
    _enforce(actor, None, Action.READ_OWN, target_id=actor.id if actor else None)
    with store_guard("read access log"):
        return store.get_access_log(engine, actor.id)


# ── Staff: reading another patient's record ──────────────────────────

def project_record(record: MedicalRecord, patient: Optional[Identity]) -> Dict[str, Any]:
    """Read-only staff view of a record. Never includes the access log."""
    return {
        "_id": record.id,
        "patient": {
            "id": record.patient_id,
            "name": patient.name if patient else None,
            "email": patient.email if patient else None,
        },
        "name": record.name,
        "bloodType": record.blood_type or "",
        "allergies": list(record.allergies),
        "medications": [m.to_dict() for m in record.medications],
        "conditions": list(record.conditions),
        "emergencyContact": dict(record.emergency_contact),
        "insuranceInfo": dict(record.insurance_info),
        "lastUpdated": isoformat(record.last_updated),
        "__v": QR_PAYLOAD_VERSION,
    }


def scan_by_staff(engine, actor: Identity, patient_id: Optional[str],
                  action: str = AUDIT_ACTION_SCAN) -> Dict[str, Any]:
    """Read another patient's record as approved staff, appending an audit entry."""
    grant = None
    if actor is not None:
        with store_guard("load staff grant"):
            grant = store.get_grant(engine, actor.id)
    decision = _enforce(actor, grant, Action.READ_OTHER, target_id=patient_id)
    if not patient_id:
        raise ValidationError("Patient ID is required")

    with store_guard("load medical record"):
        record = store.get_record(engine, patient_id)
        if record is None:
            raise NotFound("Medical information not found")
        patient = store.get_identity(engine, patient_id)
        if decision.audit_required:
            store.append_access(engine, patient_id, actor.id, action, utcnow())

    print(f"[scan] {actor.id} read record of patient {patient_id} ({action})")
    return project_record(record, patient)


# ── Staff verification and grants ────────────────────────────────────

def set_staff_verification(engine, actor: Identity, target_id: str,
                           verified: bool) -> Identity:
    """Admin verify/revoke of a staff identity. Leaves any grant untouched."""
    with store_guard("load staff identity"):
        target = store.get_identity(engine, target_id)
    action = Action.VERIFY_STAFF if verified else Action.REVOKE_STAFF
    _enforce(actor, None, action, target=target)

    with store_guard("update staff verification"):
        store.set_identity_verified(engine, target_id, verified)
    target.is_verified = verified
    print(f"[admin] {actor.id} set isVerified={verified} for staff {target_id}")
    return target


def decide_grant(engine, actor: Identity, staff_id: str, approve: bool) -> AccessGrant:
    """Admin approve/reject of a staff grant; re-applying refreshes approvalDate."""
    action = Action.APPROVE_GRANT if approve else Action.REJECT_GRANT
    _enforce(actor, None, action)

    state = GrantState.APPROVED if approve else GrantState.REJECTED
    with store_guard("update staff grant"):
        grant = store.set_grant_state(engine, staff_id, state, actor.id, utcnow())
    if grant is None:
        raise NotFound("Access request not found")
    print(f"[admin] {actor.id} set grant for staff {staff_id} to {state.value}")
    return grant


def request_staff_access(engine, actor: Identity, role: str,
                         specialization: Optional[str] = None,
                         department: Optional[str] = None) -> AccessGrant:
    """A staff member asks for access; creates a pending grant."""
    _enforce(actor, None, Action.REQUEST_GRANT)
    if role not in STAFF_ACCESS_ROLES:
        raise ValidationError(f"role must be one of {', '.join(STAFF_ACCESS_ROLES)}")

    grant = AccessGrant(
        staff_id=actor.id,
        state=GrantState.PENDING,
        role=role,
        specialization=specialization,
        department=department,
        created_at=utcnow(),
    )
    with store_guard("create access request"):
        inserted = store.insert_grant_if_absent(engine, grant)
    if not inserted:
        raise ValidationError("Access request already exists")
    return grant


def ensure_grant_for_verified_staff(engine, actor: Identity) -> Optional[AccessGrant]:
    """Return the staff member's grant, creating an approved one for verified staff."""
    with store_guard("load staff grant"):
        grant = store.get_grant(engine, actor.id)
        if grant is not None:
            return grant
        if actor.role != Role.MEDICAL_STAFF or not actor.is_verified:
            return None

        now = utcnow()
        created = store.insert_grant_if_absent(engine, AccessGrant(
            staff_id=actor.id,
            state=GrantState.APPROVED,
            role=AUTO_GRANT_ROLE,
            approval_date=now,
            department=AUTO_GRANT_DEPARTMENT,
            specialization=AUTO_GRANT_SPECIALIZATION,
            created_at=now,
        ))
        if created:
            print(f"[auth] Auto-approved access grant for verified staff {actor.id}")
        return store.get_grant(engine, actor.id)


def staff_status(engine, actor: Identity) -> Dict[str, Any]:
    grant = ensure_grant_for_verified_staff(engine, actor)
    if grant is None:
        return {"approved": False, "status": None, "role": None}
    return {"approved": grant.is_approved, "status": grant.state.value, "role": grant.role}


def get_own_grant(engine, actor: Identity) -> AccessGrant:
    with store_guard("load staff grant"):
        grant = store.get_grant(engine, actor.id)
    if grant is None:
        raise NotFound("No access request found")
    return grant


def list_grants(engine, actor: Identity) -> List[AccessGrant]:
    _enforce(actor, None, Action.LIST_STAFF)
    with store_guard("list access requests"):
        return store.list_grants(engine)


def list_staff(engine, actor: Identity, verified: Optional[bool] = None) -> List[Identity]:
    _enforce(actor, None, Action.LIST_STAFF)
    with store_guard("list staff"):
        return store.list_staff(engine, verified=verified)
