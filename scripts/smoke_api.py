#!/usr/bin/env python3
"""
Smoke checks against a running MedQR API.
Run the API server first: python -m medqr.api.app
Then run this: python scripts/smoke_api.py

Walks the emergency flow: a patient saves a record, the admin verifies a
staff member, the staff member scans the patient's QR payload.
"""

import json
import uuid

import requests

BASE_URL = "http://localhost:8000"


def show(title, response):
    print("\n" + "=" * 50)
    print(f"CHECK: {title}")
    print("=" * 50)
    print(f"Status Code: {response.status_code}")
    print(f"Response: {json.dumps(response.json(), indent=2)}")


def register(name, role, **extra):
    email = f"{role}-{uuid.uuid4().hex[:8]}@example.org"
    response = requests.post(f"{BASE_URL}/api/auth/register", json={
        "name": name, "email": email, "password": "secret123", "role": role, **extra,
    })
    show(f"Register {role}", response)
    if response.status_code != 201:
        return None, None
    data = response.json()
    return data["token"], data["user"]["id"]


def login(email, password):
    response = requests.post(f"{BASE_URL}/api/auth/login",
                             json={"email": email, "password": password})
    show("Admin login", response)
    return response.json().get("token") if response.status_code == 200 else None


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def main():
    print("=" * 50)
    print("MedQR API Smoke Checks")
    print("=" * 50)
    print(f"Base URL: {BASE_URL}")
    print("Make sure the API server is running and an admin exists!")
    print()

    admin_email = input("Admin email: ").strip()
    admin_password = input("Admin password: ").strip()
    if not admin_email or not admin_password:
        print("ERROR: admin credentials are required")
        return

    results = {}
    try:
        r = requests.get(f"{BASE_URL}/health")
        show("Health", r)
        results["Health Check"] = r.status_code == 200

        admin_token = login(admin_email, admin_password)
        results["Admin Login"] = admin_token is not None

        patient_token, patient_id = register("Pat Smoke", "patient")
        staff_token, staff_id = register("Dr Smoke", "medical_staff", hospital={
            "name": "General", "address": "1 Main St", "department": "ER",
            "position": "Physician", "staffId": "S-1", "contact": "555-0100",
        })
        results["Register"] = bool(patient_token and staff_token)
        if not (admin_token and patient_token and staff_token):
            print("\nERROR: setup failed. Remaining checks skipped.")
            return

        r = requests.post(f"{BASE_URL}/api/medical", headers=auth(patient_token), json={
            "name": "Pat Smoke", "bloodType": "O+", "allergies": ["Penicillin"],
        })
        show("Save record", r)
        results["Save Record"] = r.status_code == 200

        r = requests.post(f"{BASE_URL}/api/medical/scan", headers=auth(staff_token),
                          json={"patientId": patient_id})
        show("Scan before verification", r)
        results["Unverified Scan Denied"] = r.status_code == 403

        r = requests.post(f"{BASE_URL}/api/auth/verify-staff/{staff_id}",
                          headers=auth(admin_token))
        show("Verify staff", r)
        results["Verify Staff"] = r.status_code == 200

        r = requests.get(f"{BASE_URL}/api/medical/staff-status", headers=auth(staff_token))
        show("Staff status", r)
        results["Auto Grant"] = r.json().get("data", {}).get("approved") is True

        qr = requests.get(f"{BASE_URL}/api/medical/patient/me",
                          headers=auth(patient_token)).json()["qrCode"]
        r = requests.post(f"{BASE_URL}/api/medical/scan", headers=auth(staff_token),
                          json={"data": qr})
        show("Scan after verification", r)
        results["Scan"] = r.status_code == 200 and "accessLog" not in r.json()["data"]

    except Exception as e:
        print(f"\n\nERROR: {e}")
        import traceback
        traceback.print_exc()

    print("\n" + "=" * 50)
    print("SUMMARY")
    print("=" * 50)
    passed = sum(1 for v in results.values() if v)
    for check, result in results.items():
        status = "✓ PASS" if result else "✗ FAIL"
        print(f"{status}: {check}")
    print(f"\nTotal: {passed}/{len(results)} checks passed")
    print("=" * 50)


if __name__ == "__main__":
    main()
