"""
QR payloads and signed QR access tokens.

The QR image itself is rendered client-side; this module only produces and
reads the text a QR code carries.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from medqr.config import JWT_ALGORITHM, QR_PAYLOAD_VERSION, QR_TOKEN_EXPIRY_HOURS
from medqr.errors import ValidationError

ACCESS_TOKEN_TYPE = "medical_access"


def build_qr_payload(patient_id: str) -> str:
    """Text encoded into a patient's QR code."""
    return json.dumps({"__v": QR_PAYLOAD_VERSION, "patientId": patient_id})


def parse_scan_payload(data) -> Optional[str]:
    """Derive a patient id from decoded QR text.

    Accepts a bare id, the JSON payload from build_qr_payload, or the older
    payload that carried the id under "id".
    """
    if isinstance(data, dict):
        obj = data
    elif isinstance(data, str):
        data = data.strip()
        if not data:
            return None
        try:
            obj = json.loads(data)
        except ValueError:
            return data
        if not isinstance(obj, dict):
            return data
    else:
        return None

    patient_id = obj.get("patientId") or obj.get("id")
    if isinstance(patient_id, str) and patient_id.strip():
        return patient_id.strip()
    return None


def generate_access_token(patient_id: str, secret_key: str) -> str:
    """Signed, expiring token a QR code may carry instead of the raw id."""
    now = datetime.now(timezone.utc)
    payload = {
        "type": ACCESS_TOKEN_TYPE,
        "patientId": patient_id,
        "iat": now,
        "exp": now + timedelta(hours=QR_TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, secret_key, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> str:
    """Return the patient id from a QR access token."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ValidationError("Token has expired")
    except jwt.InvalidTokenError:
        raise ValidationError("Invalid token")

    if payload.get("type") != ACCESS_TOKEN_TYPE or not payload.get("patientId"):
        raise ValidationError("Invalid access token")
    return payload["patientId"]
