"""
Account registration and login.
"""

import re
import sys
from typing import Any, Dict

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from medqr import store
from medqr.access import store_guard
from medqr.config import HOSPITAL_FIELDS, MIN_PASSWORD_LENGTH, ROLES
from medqr.errors import AdminAlreadyExists, StoreUnavailable, ValidationError
from medqr.models import Identity, Role, utcnow

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _validate_registration(data: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    name = str(data.get("name") or "").strip()
    email = str(data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    role = data.get("role") or Role.PATIENT.value

    if not name or not email or not password:
        raise ValidationError("Please provide all required fields")
    if not EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email address")
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if role not in ROLES:
        raise ValidationError("Invalid role")

    hospital = None
    if role == Role.MEDICAL_STAFF.value:
        raw = data.get("hospital")
        if not isinstance(raw, dict) or not all(
            str(raw.get(k) or "").strip() for k in HOSPITAL_FIELDS
        ):
            raise ValidationError("Please provide all hospital information")
        hospital = {k: str(raw[k]).strip() for k in HOSPITAL_FIELDS}

    return {
        "name": name,
        "email": email,
        "password": password,
        "role": Role(role),
        "hospital": hospital,
    }


def register(engine, data: Dict[str, Any]) -> Identity:
    """Create an identity. Admins are verified on creation; only one may exist."""
    fields = _validate_registration(data)
    role = fields["role"]

    with store_guard("register user"):
        if role == Role.ADMIN and store.admin_exists(engine):
            raise AdminAlreadyExists()
        if store.email_exists(engine, fields["email"]):
            raise ValidationError("User already exists")

    try:
        identity = store.create_identity(
            engine,
            name=fields["name"],
            email=fields["email"],
            password_hash=generate_password_hash(fields["password"]),
            role=role,
            is_verified=(role == Role.ADMIN),
            hospital=fields["hospital"],
            now=utcnow(),
        )
    except IntegrityError:
        # Lost a race on the email or single-admin unique index.
        if role == Role.ADMIN:
            raise AdminAlreadyExists()
        raise ValidationError("User already exists")
    except SQLAlchemyError as e:
        print(f"[ERROR] register user: store unavailable: {e}", file=sys.stderr)
        raise StoreUnavailable("The data store is unavailable, please try again") from e

    print(f"[auth] Registered {role.value} {identity.id}")
    return identity


def authenticate(engine, email: str, password: str) -> Identity:
    """Return the identity for valid credentials, else raise ValidationError."""
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationError("Please provide email and password")

    with store_guard("login"):
        found = store.get_credentials(engine, email)
    if not found:
        raise ValidationError("Invalid credentials")
    identity, password_hash = found
    if not check_password_hash(password_hash, password):
        raise ValidationError("Invalid credentials")
    return identity
