"""
Tests for the helper scripts under scripts/.
"""

import pytest

from medqr.config import MIN_SECRET_LENGTH
from scripts.generate_secret_key import build_env


def test_build_env_emits_required_settings():
    lines = build_env("sqlite:///test.db", "http://localhost:3000", 48)
    settings = dict(line.split("=", 1) for line in lines)
    assert set(settings) == {"JWT_SECRET_KEY", "DB_URI", "CORS_ORIGIN"}
    assert settings["DB_URI"] == "sqlite:///test.db"
    assert len(settings["JWT_SECRET_KEY"]) >= MIN_SECRET_LENGTH


def test_build_env_keys_are_fresh():
    first = build_env("sqlite://", "*", 48)[0]
    second = build_env("sqlite://", "*", 48)[0]
    assert first != second


def test_build_env_rejects_short_keys():
    with pytest.raises(ValueError):
        build_env("sqlite://", "*", 8)
