#!/usr/bin/env python3
"""
Print a starter .env for MedQR: a fresh JWT signing key plus the database
and CORS settings the API refuses to start without.

    python scripts/generate_secret_key.py > .env
    python scripts/generate_secret_key.py --db-uri postgresql://medqr@localhost/medqr
"""

import argparse
import secrets
import sys

from medqr.config import MIN_SECRET_LENGTH


def build_env(db_uri, cors_origin, nbytes):
    key = secrets.token_urlsafe(nbytes)
    if len(key) < MIN_SECRET_LENGTH:
        raise ValueError(f"generated key is shorter than {MIN_SECRET_LENGTH} characters")
    return [
        f"JWT_SECRET_KEY={key}",
        f"DB_URI={db_uri}",
        f"CORS_ORIGIN={cors_origin}",
    ]


def main():
    parser = argparse.ArgumentParser(description="Generate MedQR environment settings")
    parser.add_argument("--db-uri", default="sqlite:///medqr.db")
    parser.add_argument("--cors-origin", default="http://localhost:3000")
    parser.add_argument("--bytes", type=int, default=48,
                        help="random bytes in the signing key")
    args = parser.parse_args()

    try:
        lines = build_env(args.db_uri, args.cors_origin, args.bytes)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    print("\n".join(lines))
    print("[keys] Keep JWT_SECRET_KEY out of version control", file=sys.stderr)


if __name__ == "__main__":
    main()
