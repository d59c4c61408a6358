# backend/tests/unit/test_settings.py

import pytest
from pydantic import ValidationError

from engagehub.config.settings import Settings, settings


def test_cors_origins_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "http://a.com, http://b.com,")
    assert Settings().cors_allowed_origins == ["http://a.com", "http://b.com"]


def test_loaded_test_settings_split_cors_origins():
    assert settings.cors_allowed_origins == ["http://localhost:3000", "http://testserver"]


def test_short_jwt_secret_is_rejected(monkeypatch):
    monkeypatch.setenv("JWT_SECRET_KEY", "short")
    with pytest.raises(ValidationError):
        Settings()
