"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Auth / tokens ────────────────────────────────────────────────────
TOKEN_EXPIRY_HOURS = 24
QR_TOKEN_EXPIRY_HOURS = 24
JWT_ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32
MIN_PASSWORD_LENGTH = 6

# ── Roles ────────────────────────────────────────────────────────────
ROLES = ("patient", "medical_staff", "admin")
STAFF_ACCESS_ROLES = ("doctor", "nurse", "admin")
HOSPITAL_FIELDS = ("name", "address", "department", "position", "staffId", "contact")

# Role detail stamped on grants created for already-verified staff.
AUTO_GRANT_ROLE = "doctor"
AUTO_GRANT_DEPARTMENT = "General"
AUTO_GRANT_SPECIALIZATION = "General Medicine"

# ── Medical records ──────────────────────────────────────────────────
BLOOD_TYPES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")
EMERGENCY_CONTACT_FIELDS = ("name", "relationship", "phone")
INSURANCE_FIELDS = ("provider", "policyNumber", "groupNumber")
QR_PAYLOAD_VERSION = 4

# ── Audit actions ────────────────────────────────────────────────────
AUDIT_ACTION_SCAN = "scan"
AUDIT_ACTION_VIEW = "view"

# ── Database ─────────────────────────────────────────────────────────
SUPPORTED_DIALECTS = {"sqlite", "postgresql"}


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value


def get_secret_key() -> str:
    """Return JWT_SECRET_KEY, exiting when it is missing or too short."""
    secret = get_env("JWT_SECRET_KEY")
    if len(secret) < MIN_SECRET_LENGTH:
        print(
            f"ERROR: JWT_SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters "
            "(run scripts/generate_secret_key.py)",
            file=sys.stderr,
        )
        sys.exit(1)
    return secret
