"""Application configuration.

Pydantic Settings reads every option from the environment (or ``.env``), so the
same code runs locally and in production with different variables.
"""

import re
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}

DEFAULT_CLIENT_URLS = "http://localhost:3000,http://localhost:8080,http://localhost:5173"


def parse_duration(value: str) -> timedelta:
    """Parse ``30s`` / ``15m`` / ``1h`` / ``7d`` or a bare number of seconds."""

    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _DURATION_UNITS[unit])


class Settings(BaseSettings):
    """Core settings.

    - ``jwt_*``: signing secret, lifetime and issuer of session tokens.
    - ``gmail_*`` / ``smtp_*``: mail transport used to deliver OTP codes.
    - ``otp_ttl_seconds``: ``None`` keeps codes valid until consumed or replaced.
    - ``grading_workers``: ``0`` runs the grading pipeline inline.
    """

    database_url: str = Field(
        default="sqlite:///./storage/exam_eval.db", description="SQLAlchemy database URL"
    )
    upload_dir: Path = Field(
        default=Path("./storage/uploads/papers"), description="Where uploaded papers are stored"
    )
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, gt=0)

    jwt_secret: str = "default_secret"
    jwt_expiration: str = "1h"
    jwt_issuer: str = "default_issuer"
    jwt_algorithm: str = "HS256"

    gmail_user: Optional[str] = None
    gmail_pass: Optional[str] = None
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465

    port: int = 5000
    client_url: str = Field(
        default=DEFAULT_CLIENT_URLS, description="Comma-separated CORS origins"
    )

    otp_ttl_seconds: Optional[int] = Field(default=None, gt=0)
    otp_required_roles: str = "admin,teacher,spoc"
    redis_url: Optional[str] = None

    grading_workers: int = Field(default=4, ge=0)
    grading_max_pending: int = Field(default=100, gt=0)
    grading_max_retries: int = Field(default=1, ge=0)
    ocr_backend: Literal["placeholder", "pdf"] = "placeholder"

    log_level: str = "INFO"
    log_json: bool = False

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("jwt_expiration")
    @classmethod
    def _check_expiration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @property
    def token_lifetime(self) -> timedelta:
        return parse_duration(self.jwt_expiration)

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.client_url.split(",") if origin.strip()]

    @property
    def otp_roles(self) -> List[str]:
        return [role.strip().lower() for role in self.otp_required_roles.split(",") if role.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached global settings instance."""

    return Settings()
