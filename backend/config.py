"""
Application settings, resolved once at startup from the environment and
backend/.env.
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).parent

logger = logging.getLogger(__name__)

DEV_SIGNING_SECRET = "dev-contract-signing-secret-change-me"
NON_PRODUCTION_ENVS = {"dev", "development", "test", "local"}


class Settings(BaseSettings):
    environment: str = Field("development", validation_alias="ENV")

    # Shared HMAC / token secret. Rotating it invalidates outstanding tokens
    # and historical signature verification.
    signing_secret: str = Field("", validation_alias="CONTRACT_SIGNING_SECRET")
    contract_domain: str = "http://localhost:3000"
    cors_origins: str = "*"

    storage_backend: Literal["memory", "kv", "mongo"] = "memory"
    cache_backend: Literal["memory", "mongo"] = "memory"
    mongo_url: Optional[str] = None
    db_name: str = "econtract"

    signature_expiry_hours: int = 48
    viewer_link_expiry_hours: int = 24
    viewer_session_expiry_hours: int = 24

    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60
    sign_request_rate_limit: int = 20
    sign_submit_rate_limit: int = 10
    pdf_rate_limit: int = 30

    postmark_server_token: Optional[str] = None
    email_sender: str = "contracts@example.com"

    certificate_issuer_name: str = "E-Contract Signing Service"
    certificate_issuer_company: str = "E-Contract"

    side_effect_max_attempts: int = 3
    scheduler_enabled: bool = True
    expiry_sweep_interval_minutes: int = 15
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=ROOT_DIR / ".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("environment", "storage_backend", "cache_backend", mode="before")
    @classmethod
    def _lower(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("contract_domain")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()

    @field_validator("mongo_url", "postmark_server_token")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @model_validator(mode="after")
    def _resolve_signing_secret(self) -> "Settings":
        self.signing_secret = self.signing_secret.strip()
        if not self.signing_secret:
            if self.environment not in NON_PRODUCTION_ENVS:
                raise ValueError("CONTRACT_SIGNING_SECRET must be set outside development")
            logger.warning("CONTRACT_SIGNING_SECRET not set - using development secret")
            self.signing_secret = DEV_SIGNING_SECRET
        return self

    @property
    def uses_mongo(self) -> bool:
        return self.storage_backend == "mongo" or self.cache_backend == "mongo"

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
