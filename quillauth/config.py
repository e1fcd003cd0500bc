from pydantic import AnyUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal


def parse_retired_keys(raw: str) -> dict[str, str]:
    """
    Parse a comma-separated list of ``kid:secret`` pairs.

    Raises:
        ValueError: If an entry has no key id or no secret
    """
    keys: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        kid, sep, secret = entry.partition(":")
        if not sep or not kid.strip() or not secret.strip():
            raise ValueError(f"Retired key entry must look like 'kid:secret', got '{entry[:8]}...'")
        keys[kid.strip()] = secret.strip()
    return keys


class Settings(BaseSettings):
    ENV: str = "local"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"
    MAX_REQUEST_SIZE: int = 16384

    # Token signing. Access and refresh tokens use separate keys.
    JWT_ACCESS_SECRET: str = "local-access-secret-change-me-0000000000"
    JWT_REFRESH_SECRET: str = "local-refresh-secret-change-me-000000000"
    JWT_ACCESS_KEY_ID: str = "v1"
    JWT_REFRESH_KEY_ID: str = "v1"
    # Verification-only keys kept after a rotation: "kid:secret,kid:secret"
    JWT_RETIRED_ACCESS_KEYS: str = ""
    JWT_RETIRED_REFRESH_KEYS: str = ""
    JWT_ACCESS_TTL_MINUTES: int = 15
    JWT_REFRESH_TTL_HOURS: int = 168
    PASSWORD_RESET_TTL_MINUTES: int = 30

    # Credential store backend: "memory" or "redis"
    STORE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None

    # Outbound email: "stub" logs messages, "smtp" delivers them
    EMAIL_PROVIDER: Literal["stub", "smtp"] = "stub"
    EMAIL_FROM: str = "no-reply@localhost"
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    FRONTEND_BASE_URL: str = "http://localhost:5173"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET", "JWT_ACCESS_KEY_ID", "JWT_REFRESH_KEY_ID")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("JWT_ACCESS_TTL_MINUTES", "JWT_REFRESH_TTL_HOURS", "PASSWORD_RESET_TTL_MINUTES")
    @classmethod
    def validate_positive_ttl(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("TTL must be > 0")
        return v

    @field_validator("JWT_RETIRED_ACCESS_KEYS", "JWT_RETIRED_REFRESH_KEYS")
    @classmethod
    def validate_retired_keys(cls, v: str) -> str:
        parse_retired_keys(v)
        return v

    @field_validator("FRONTEND_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_key_separation(self) -> "Settings":
        if self.JWT_ACCESS_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
        return self

    @property
    def retired_access_keys(self) -> dict[str, str]:
        return parse_retired_keys(self.JWT_RETIRED_ACCESS_KEYS)

    @property
    def retired_refresh_keys(self) -> dict[str, str]:
        return parse_retired_keys(self.JWT_RETIRED_REFRESH_KEYS)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
