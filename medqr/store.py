"""
Persistence primitives for identities, access grants, medical records and
the access log. Plain functions over a SQLAlchemy engine; errors propagate.
"""

import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, text, update

from medqr.database import access_log, dialect_insert, medical_records, staff_access, users
from medqr.models import (
    AccessGrant,
    AccessLogEntry,
    GrantState,
    Identity,
    MedicalRecord,
    Medication,
    Role,
    from_micros,
    to_micros,
)


# ── Identity store ───────────────────────────────────────────────────

def _identity_from_row(row) -> Identity:
    return Identity(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        role=Role(row["role"]),
        is_verified=bool(row["is_verified"]),
        hospital=row["hospital"],
        created_at=row["created_at"],
    )


def create_identity(engine, *, name: str, email: str, password_hash: str, role: Role,
                    is_verified: bool, hospital=None, now: datetime) -> Identity:
    """Insert a new identity. Unique violations (email, second admin) raise IntegrityError."""
    identity = Identity(
        id=str(uuid.uuid4()),
        name=name,
        email=email,
        role=role,
        is_verified=is_verified,
        hospital=hospital,
        created_at=now,
    )
    with engine.begin() as conn:
        conn.execute(users.insert().values(
            id=identity.id,
            name=name,
            email=email,
            password_hash=password_hash,
            role=role.value,
            is_verified=is_verified,
            hospital=hospital,
            created_at=now,
        ))
    return identity


def get_identity(engine, identity_id: str) -> Optional[Identity]:
    with engine.connect() as conn:
        row = conn.execute(
            select(users).where(users.c.id == identity_id)
        ).mappings().first()
    return _identity_from_row(row) if row else None


def get_credentials(engine, email: str) -> Optional[Tuple[Identity, str]]:
    """Return (identity, password_hash) for an email address, or None."""
    with engine.connect() as conn:
        row = conn.execute(
            select(users).where(users.c.email == email)
        ).mappings().first()
    if not row:
        return None
    return _identity_from_row(row), row["password_hash"]


def email_exists(engine, email: str) -> bool:
    with engine.connect() as conn:
        return conn.execute(
            select(users.c.id).where(users.c.email == email)
        ).first() is not None


def admin_exists(engine) -> bool:
    with engine.connect() as conn:
        return conn.execute(
            select(users.c.id).where(users.c.role == Role.ADMIN.value)
        ).first() is not None


def set_identity_verified(engine, identity_id: str, verified: bool) -> bool:
    with engine.begin() as conn:
        result = conn.execute(
            update(users).where(users.c.id == identity_id).values(is_verified=verified)
        )
    return result.rowcount == 1


def list_staff(engine, verified: Optional[bool] = None) -> List[Identity]:
    """Medical staff identities, newest first."""
    stmt = select(users).where(users.c.role == Role.MEDICAL_STAFF.value)
    if verified is not None:
        stmt = stmt.where(users.c.is_verified == verified)
    stmt = stmt.order_by(users.c.created_at.desc())
    with engine.connect() as conn:
        rows = conn.execute(stmt).mappings().all()
    return [_identity_from_row(r) for r in rows]


# ── Access grant store ───────────────────────────────────────────────

def _grant_from_row(row) -> AccessGrant:
    return AccessGrant(
        staff_id=row["staff_id"],
        state=GrantState(row["status"]),
        role=row["role"],
        approved_by=row["approved_by"],
        approval_date=row["approval_date"],
        specialization=row["specialization"],
        department=row["department"],
        notes=row["notes"],
        created_at=row["created_at"],
    )


def get_grant(engine, staff_id: str) -> Optional[AccessGrant]:
    with engine.connect() as conn:
        row = conn.execute(
            select(staff_access).where(staff_access.c.staff_id == staff_id)
        ).mappings().first()
    return _grant_from_row(row) if row else None


def insert_grant_if_absent(engine, grant: AccessGrant) -> bool:
    """Insert *grant* unless the staff member already has one. True when inserted."""
    stmt = dialect_insert(engine, staff_access).values(
        staff_id=grant.staff_id,
        status=grant.state.value,
        role=grant.role,
        approved_by=grant.approved_by,
        approval_date=grant.approval_date,
        specialization=grant.specialization,
        department=grant.department,
        notes=grant.notes,
        created_at=grant.created_at,
    ).on_conflict_do_nothing(index_elements=[staff_access.c.staff_id])
    with engine.begin() as conn:
        result = conn.execute(stmt)
    return result.rowcount == 1


def set_grant_state(engine, staff_id: str, state: GrantState,
                    approved_by: str, when: datetime) -> Optional[AccessGrant]:
    """Move a grant to *state*, stamping approver and date. None when no grant exists."""
    with engine.begin() as conn:
        result = conn.execute(
            update(staff_access)
            .where(staff_access.c.staff_id == staff_id)
            .values(status=state.value, approved_by=approved_by, approval_date=when)
        )
        if result.rowcount != 1:
            return None
        row = conn.execute(
            select(staff_access).where(staff_access.c.staff_id == staff_id)
        ).mappings().first()
    return _grant_from_row(row)


def list_grants(engine) -> List[AccessGrant]:
    with engine.connect() as conn:
        rows = conn.execute(
            select(staff_access).order_by(staff_access.c.created_at.desc())
        ).mappings().all()
    return [_grant_from_row(r) for r in rows]


# ── Medical record store ─────────────────────────────────────────────

def _record_from_row(row) -> MedicalRecord:
    return MedicalRecord(
        id=row["id"],
        patient_id=row["patient_id"],
        name=row["name"],
        blood_type=row["blood_type"],
        allergies=list(row["allergies"] or []),
        medications=[Medication(**m) for m in (row["medications"] or [])],
        conditions=list(row["conditions"] or []),
        emergency_contact=dict(row["emergency_contact"] or {}),
        insurance_info=dict(row["insurance_info"] or {}),
        last_updated=row["last_updated"],
    )


def get_record(engine, patient_id: str) -> Optional[MedicalRecord]:
    with engine.connect() as conn:
        row = conn.execute(
            select(medical_records).where(medical_records.c.patient_id == patient_id)
        ).mappings().first()
    return _record_from_row(row) if row else None


def replace_record(engine, record: MedicalRecord) -> MedicalRecord:
    """Create or fully replace the patient's record in one statement."""
    values = {
        "name": record.name,
        "blood_type": record.blood_type,
        "allergies": list(record.allergies),
        "medications": [m.to_dict() for m in record.medications],
        "conditions": list(record.conditions),
        "emergency_contact": dict(record.emergency_contact),
        "insurance_info": dict(record.insurance_info),
        "last_updated": record.last_updated,
    }
    stmt = dialect_insert(engine, medical_records).values(
        id=record.id or str(uuid.uuid4()),
        patient_id=record.patient_id,
        **values,
    ).on_conflict_do_update(index_elements=[medical_records.c.patient_id], set_=values)
    with engine.begin() as conn:
        conn.execute(stmt)
        row = conn.execute(
            select(medical_records).where(medical_records.c.patient_id == record.patient_id)
        ).mappings().first()
    return _record_from_row(row)


def delete_record(engine, patient_id: str) -> bool:
    """Remove a record and its access log together. False when there was none."""
    with engine.begin() as conn:
        conn.execute(delete(access_log).where(access_log.c.patient_id == patient_id))
        result = conn.execute(
            delete(medical_records).where(medical_records.c.patient_id == patient_id)
        )
    return result.rowcount == 1


# ── Access log ───────────────────────────────────────────────────────

# A single INSERT ... SELECT, so concurrent appends never overwrite each
# other and each entry is stamped after the previous one for the record.
# append_access locks the record row first; under READ COMMITTED the
# INSERT then sees every entry committed before the lock was granted.
_APPEND_ACCESS_SQL = text("""
    INSERT INTO access_log (patient_id, accessor_id, action, accessed_at_us)
    SELECT :patient_id, :accessor_id, :action,
           CASE WHEN MAX(accessed_at_us) >= :now_us
                THEN MAX(accessed_at_us) + 1
                ELSE :now_us END
    FROM access_log
    WHERE patient_id = :patient_id
""")


def lock_record_stmt(patient_id: str):
    # FOR UPDATE is dropped on SQLite, which serialises writers anyway.
    return (
        select(medical_records.c.id)
        .where(medical_records.c.patient_id == patient_id)
        .with_for_update()
    )


def append_access(engine, patient_id: str, accessor_id: str, action: str,
                  now: datetime) -> None:
    with engine.begin() as conn:
        conn.execute(lock_record_stmt(patient_id))
        conn.execute(_APPEND_ACCESS_SQL, {
            "patient_id": patient_id,
            "accessor_id": accessor_id,
            "action": action,
            "now_us": to_micros(now),
        })


def get_access_log(engine, patient_id: str) -> List[AccessLogEntry]:
    """Entries for one record, oldest first."""
    with engine.connect() as conn:
        rows = conn.execute(
            select(access_log)
            .where(access_log.c.patient_id == patient_id)
            .order_by(access_log.c.accessed_at_us, access_log.c.id)
        ).mappings().all()
    return [
        AccessLogEntry(
            accessor_id=r["accessor_id"],
            action=r["action"],
            timestamp=from_micros(r["accessed_at_us"]),
        )
        for r in rows
    ]


def count_access(engine, patient_id: str) -> int:
    with engine.connect() as conn:
        return conn.execute(
            select(func.count()).select_from(access_log)
            .where(access_log.c.patient_id == patient_id)
        ).scalar_one()
