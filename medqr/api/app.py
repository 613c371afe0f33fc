"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from medqr.config import TOKEN_EXPIRY_HOURS, get_secret_key
from medqr.database import init_engine
from medqr.api.routes import register_routes


def create_app(engine=None, secret_key=None):
    """Build and return a fully configured Flask application.

    Without arguments the engine and signing key come from DB_URI and
    JWT_SECRET_KEY; a missing value stops the process.
    """
    app = Flask(__name__)

    cors_origin = os.getenv("CORS_ORIGIN")
    if cors_origin:
        CORS(app, origins=[cors_origin], supports_credentials=True)
    else:
        CORS(app)

    # ── Initialise shared resources ──────────────────────────────────
    if secret_key is None:
        secret_key = get_secret_key()
    try:
        if engine is None:
            print("[init] Initializing database connection...")
            engine = init_engine()
        print("[init] ✓ API server ready")
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    app.config["JWT_SECRET_KEY"] = secret_key
    app.config["DB_ENGINE"] = engine

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("MedQR – Emergency Medical Information API")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] CORS origin: {os.getenv('CORS_ORIGIN') or '*'}")
    print(f"[server] Token expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/register")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - GET  http://{host}:{port}/api/medical/patient/me")
    print(f"  - POST http://{host}:{port}/api/medical")
    print(f"  - POST http://{host}:{port}/api/medical/scan")
    print(f"  - GET  http://{host}:{port}/api/medical/staff-status")
    print(f"  - POST http://{host}:{port}/api/auth/verify-staff/<id>")
    print(f"  - POST http://{host}:{port}/api/staffAccess/approve/<id>")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
