#!/usr/bin/env python3
"""
Create the single admin account from the command line.

Usage: python scripts/create_admin.py "Admin Name" admin@example.org
The password is read interactively. Uses DB_URI from the environment/.env.
"""

import getpass
import sys

from medqr.accounts import register
from medqr.database import init_engine
from medqr.errors import MedQRError


def main(argv):
    if len(argv) != 3:
        print(__doc__.strip(), file=sys.stderr)
        return 2

    name, email = argv[1], argv[2]
    password = getpass.getpass("Admin password: ")
    if password != getpass.getpass("Repeat password: "):
        print("ERROR: passwords do not match", file=sys.stderr)
        return 1

    engine = init_engine()
    try:
        identity = register(engine, {
            "name": name, "email": email, "password": password, "role": "admin",
        })
    except MedQRError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 1

    print("=" * 60)
    print(f"Admin created: {identity.name} <{identity.email}> id={identity.id}")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
