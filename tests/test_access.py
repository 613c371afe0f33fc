"""
Record access service tests: authorization applied to the stores.
"""

import threading
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from medqr import access, store
from medqr.errors import (
    Forbidden,
    InvalidTarget,
    NotFound,
    StaffNotApproved,
    StoreUnavailable,
    Unauthenticated,
    ValidationError,
)
from medqr.models import GrantState, utcnow


# ── Helpers ──────────────────────────────────────────────────────────

class TickingClock:
    """Deterministic utcnow replacement advancing one second per call."""
    def __init__(self, start=datetime(2026, 3, 1, 8, 0, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def approved_staff(engine, make_user):
    staff = make_user("medical_staff", verified=True)
    access.ensure_grant_for_verified_staff(engine, staff)
    return staff


@pytest.fixture
def saved_record(engine, patient, sample_record):
    return access.upsert_record(engine, patient, sample_record)


# ── Tests: own record ────────────────────────────────────────────────

def test_get_own_record_template_when_missing(engine, patient):
    data = access.get_own_record(engine, patient)
    assert data["bloodType"] == ""
    assert data["allergies"] == [] and data["medications"] == []
    assert data["emergencyContact"] == {"name": "", "relationship": "", "phone": ""}
    assert data["patient"] == patient.id
    assert "_id" not in data


def test_get_own_record_never_needs_a_grant(engine, make_user):
    staff = make_user("medical_staff")
    data = access.get_own_record(engine, staff)
    assert data["patient"] == staff.id


def test_get_own_record_includes_qr_payload(engine, patient, saved_record):
    data = access.get_own_record(engine, patient)
    assert data["_id"] == saved_record.id
    assert patient.id in data["qrCode"]
    assert "accessLog" not in data


def test_upsert_cleans_lists(engine, patient, saved_record):
    assert saved_record.allergies == ["Penicillin", "Peanuts"]
    assert [m.name for m in saved_record.medications] == ["Metformin"]
    assert saved_record.conditions == ["Type 2 diabetes"]
    assert saved_record.emergency_contact["name"] == "Sam Example"
    assert saved_record.last_updated is not None


def test_upsert_is_full_replace(engine, patient, saved_record):
    updated = access.upsert_record(engine, patient, {"name": "Pat Example", "bloodType": "ab-"})
    assert updated.id == saved_record.id
    assert updated.blood_type == "AB-"
    assert updated.allergies == []
    assert updated.medications == []
    assert updated.insurance_info == {"provider": "", "policyNumber": "", "groupNumber": ""}


@pytest.mark.parametrize("change", [
    {"bloodType": ""},
    {"bloodType": "Z+"},
    {"name": None},
    {"name": "   "},
    {"allergies": "Penicillin"},
])
def test_invalid_upsert_writes_nothing(engine, patient, saved_record, sample_record, change):
    before = store.get_record(engine, patient.id).to_dict()
    payload = dict(sample_record, **change)
    if change.get("name", "") is None:
        payload.pop("name")
    with pytest.raises(ValidationError):
        access.upsert_record(engine, patient, payload)
    assert store.get_record(engine, patient.id).to_dict() == before


def test_invalid_first_save_creates_nothing(engine, patient):
    with pytest.raises(ValidationError, match="Blood type"):
        access.upsert_record(engine, patient, {"name": "Pat", "bloodType": ""})
    assert store.get_record(engine, patient.id) is None


def test_staff_cannot_upsert(engine, approved_staff, sample_record):
    with pytest.raises(Forbidden):
        access.upsert_record(engine, approved_staff, sample_record)


def test_anonymous_upsert_unauthenticated(engine, sample_record):
    with pytest.raises(Unauthenticated):
        access.upsert_record(engine, None, sample_record)


def test_delete_own_record(engine, patient, saved_record):
    access.delete_own_record(engine, patient)
    assert store.get_record(engine, patient.id) is None
    with pytest.raises(NotFound):
        access.delete_own_record(engine, patient)


# ── Tests: scans ─────────────────────────────────────────────────────

def test_unverified_staff_without_grant_denied(engine, make_user, patient, saved_record):
    staff = make_user("medical_staff")
    with pytest.raises(StaffNotApproved) as e:
        access.scan_by_staff(engine, staff, patient.id)
    assert e.value.detail == "no_grant"
    assert store.count_access(engine, patient.id) == 0


def test_pending_grant_denied(engine, make_user, patient, saved_record):
    staff = make_user("medical_staff")
    access.request_staff_access(engine, staff, "nurse", department="ER")
    with pytest.raises(StaffNotApproved) as e:
        access.scan_by_staff(engine, staff, patient.id)
    assert e.value.detail == "grant_pending"


def test_scan_returns_projection_and_audits(engine, approved_staff, patient, saved_record):
    data = access.scan_by_staff(engine, approved_staff, patient.id)
    assert "accessLog" not in data
    assert data["bloodType"] == "O+"
    assert data["patient"]["name"] == "Pat Example"
    assert data["medications"][0]["name"] == "Metformin"

    log = store.get_access_log(engine, patient.id)
    assert len(log) == 1
    assert log[0].accessor_id == approved_staff.id
    assert log[0].action == "scan"


def test_scan_checks_access_before_patient_id(engine, make_user, approved_staff):
    staff = make_user("medical_staff")
    with pytest.raises(StaffNotApproved):
        access.scan_by_staff(engine, staff, None)
    with pytest.raises(ValidationError):
        access.scan_by_staff(engine, approved_staff, "")


def test_scan_missing_record_not_found(engine, approved_staff, patient):
    with pytest.raises(NotFound):
        access.scan_by_staff(engine, approved_staff, patient.id)
    assert store.count_access(engine, patient.id) == 0


def test_repeated_scans_each_logged(engine, approved_staff, make_user, patient, saved_record,
                                    monkeypatch):
    other = make_user("medical_staff", verified=True)
    access.ensure_grant_for_verified_staff(engine, other)
    monkeypatch.setattr(access, "utcnow", lambda: datetime(2026, 3, 1, 8, 0, 0))

    for staff in [approved_staff, other, approved_staff, other]:
        access.scan_by_staff(engine, staff, patient.id)

    log = store.get_access_log(engine, patient.id)
    assert [e.accessor_id for e in log] == [approved_staff.id, other.id] * 2
    assert len({e.timestamp for e in log}) == 4


def test_concurrent_scans_lose_no_entries(tmp_path):
    from medqr.database import init_engine
    from medqr.models import Role

    eng = init_engine(f"sqlite:///{tmp_path / 'concurrent.db'}")
    patient = store.create_identity(eng, name="P", email="p@example.org", password_hash="x",
                                    role=Role.PATIENT, is_verified=False, now=utcnow())
    staff = store.create_identity(eng, name="S", email="s@example.org", password_hash="x",
                                  role=Role.MEDICAL_STAFF, is_verified=True, now=utcnow())
    access.ensure_grant_for_verified_staff(eng, staff)
    access.upsert_record(eng, patient, {"name": "P", "bloodType": "A+"})

    errors = []

    def worker():
        try:
            access.scan_by_staff(eng, staff, patient.id)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    log = store.get_access_log(eng, patient.id)
    assert len(log) == 8
    assert len({e.timestamp for e in log}) == 8
    eng.dispose()


# ── Tests: verification and grants ───────────────────────────────────

def test_admin_verifies_and_revokes_staff(engine, admin, make_user):
    staff = make_user("medical_staff")
    assert access.set_staff_verification(engine, admin, staff.id, True).is_verified
    assert store.get_identity(engine, staff.id).is_verified is True
    access.set_staff_verification(engine, admin, staff.id, False)
    assert store.get_identity(engine, staff.id).is_verified is False


def test_verification_leaves_grant_alone(engine, admin, approved_staff):
    access.set_staff_verification(engine, admin, approved_staff.id, False)
    assert store.get_grant(engine, approved_staff.id).state == GrantState.APPROVED


def test_verify_requires_admin(engine, make_user):
    staff = make_user("medical_staff", verified=True)
    with pytest.raises(Forbidden):
        access.set_staff_verification(engine, staff, staff.id, True)


@pytest.mark.parametrize("target", ["missing", "patient"])
def test_verify_invalid_target(engine, admin, patient, target):
    target_id = patient.id if target == "patient" else "no-such-user"
    with pytest.raises(InvalidTarget):
        access.set_staff_verification(engine, admin, target_id, True)


def test_auto_provisioning_creates_one_approved_grant(engine, make_user):
    staff = make_user("medical_staff", verified=True)
    first = access.ensure_grant_for_verified_staff(engine, staff)
    second = access.ensure_grant_for_verified_staff(engine, staff)
    assert first.state == GrantState.APPROVED
    assert first.department == "General"
    assert second.created_at == first.created_at
    assert len(store.list_grants(engine)) == 1


def test_no_auto_provisioning_for_unverified_staff(engine, make_user):
    staff = make_user("medical_staff")
    assert access.ensure_grant_for_verified_staff(engine, staff) is None
    assert access.staff_status(engine, staff) == {"approved": False, "status": None, "role": None}


def test_decide_grant_is_idempotent(engine, admin, make_user, monkeypatch):
    monkeypatch.setattr(access, "utcnow", TickingClock())
    staff = make_user("medical_staff")
    access.request_staff_access(engine, staff, "doctor")

    first = access.decide_grant(engine, admin, staff.id, approve=True)
    second = access.decide_grant(engine, admin, staff.id, approve=True)
    assert first.state == second.state == GrantState.APPROVED
    assert second.approved_by == admin.id
    assert second.approval_date > first.approval_date


def test_reject_after_approve(engine, admin, approved_staff, patient, saved_record):
    access.decide_grant(engine, admin, approved_staff.id, approve=False)
    with pytest.raises(StaffNotApproved):
        access.scan_by_staff(engine, approved_staff, patient.id)


def test_decide_grant_missing_request(engine, admin):
    with pytest.raises(NotFound):
        access.decide_grant(engine, admin, "no-such-staff", approve=True)


def test_decide_grant_requires_admin(engine, approved_staff):
    with pytest.raises(Forbidden):
        access.decide_grant(engine, approved_staff, approved_staff.id, approve=True)


def test_duplicate_access_request(engine, make_user):
    staff = make_user("medical_staff")
    access.request_staff_access(engine, staff, "doctor")
    with pytest.raises(ValidationError, match="already exists"):
        access.request_staff_access(engine, staff, "nurse")


def test_access_request_validates_role(engine, make_user):
    with pytest.raises(ValidationError):
        access.request_staff_access(engine, make_user("medical_staff"), "janitor")


# ── Tests: store failures ────────────────────────────────────────────

def test_store_failure_is_not_a_denial(engine, patient, monkeypatch):
    def boom(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "get_record", boom)
    with pytest.raises(StoreUnavailable):
        access.get_own_record(engine, patient)
