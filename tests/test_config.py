from datetime import timedelta

import pytest
from pydantic import ValidationError

from exam_eval.config import Settings, parse_duration


@pytest.mark.parametrize(
    "value,expected",
    [
        ("30s", timedelta(seconds=30)),
        ("15m", timedelta(minutes=15)),
        ("1h", timedelta(hours=1)),
        ("7d", timedelta(days=7)),
        ("3600", timedelta(seconds=3600)),
    ],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "1w", "h1", "1.5h", "-5m"])
def test_parse_duration_rejects_other_formats(value):
    with pytest.raises(ValueError):
        parse_duration(value)


def test_invalid_jwt_expiration_fails_at_startup():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, jwt_expiration="forever")


def test_derived_settings():
    settings = Settings(
        _env_file=None,
        jwt_expiration="2h",
        client_url="http://a.test, http://b.test ,",
        otp_required_roles="Admin, spoc",
    )
    assert settings.token_lifetime == timedelta(hours=2)
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.otp_roles == ["admin", "spoc"]


def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.otp_ttl_seconds is None
    assert settings.otp_roles == ["admin", "teacher", "spoc"]
    assert settings.grading_workers == 4
    assert settings.max_upload_bytes == 50 * 1024 * 1024
    assert settings.ocr_backend == "placeholder"


def test_unknown_ocr_backend_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ocr_backend="tesseract")
