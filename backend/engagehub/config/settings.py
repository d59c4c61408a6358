# /engagehub/config/settings.py

import sys
from typing import Annotated, List, Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    # MongoDB
    mongo_atlas_uri: str
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = True

    # Redis (an empty URL disables Redis-backed features)
    redis_url: str = "redis://localhost:6379"

    # Security
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_hours: int = 24
    user_token_expire_days: int = 30
    otp_expire_minutes: int = 5
    otp_resend_cooldown_seconds: int = 60
    api_key: str | None = None

    # WhatsApp (Meta Graph API)
    whatsapp_access_token: str = ""
    whatsapp_phone_id: str = ""
    whatsapp_business_account_id: str | None = None
    whatsapp_verify_token: str = ""
    whatsapp_app_secret: str = ""
    whatsapp_api_version: str = "v18.0"

    # Exotel
    exotel_api_key: str = ""
    exotel_api_token: str = ""
    exotel_sid: str = ""
    exotel_subdomain: str = "api"
    exotel_caller_id: str | None = None
    exotel_status_callback_url: str | None = None

    # Surepass
    surepass_api_key: str = ""
    surepass_base_url: str = "https://kyc-api.surepass.io/api/v1"

    # Google Tag Manager / GA4
    gtm_client_email: str | None = None
    gtm_private_key: str | None = None
    gtm_default_account_id: str | None = None
    gtm_default_container_id: str | None = None
    gtm_default_workspace_id: str | None = None
    ga4_measurement_id: str | None = None

    # Deployment
    environment: str = Field(default="production")
    workers: int = 4

    # NoDecode: the env value is a comma-separated string, not JSON
    cors_allowed_origins: Annotated[List[str], NoDecode] = Field(default=["http://localhost:3000"])
    allowed_hosts: str = "localhost,127.0.0.1"

    # App Metadata & Limits
    api_version: str = "v1"
    rate_limit_per_minute: int = 100
    auth_rate_limit_per_minute: int = 5
    request_timeout_seconds: float = 30.0

    # ---------------- Validators ---------------- #

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def parse_cors_allowed_origins(cls, v):
        """Accept either a comma-separated string or a list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("jwt_secret_key")
    @classmethod
    def key_length_must_be_sufficient(cls, v):
        if len(v) < 32:
            raise ValueError("JWT secret key must be at least 32 characters long")
        return v

    @field_validator("gtm_private_key")
    @classmethod
    def unescape_private_key(cls, v: Optional[str]) -> Optional[str]:
        # Keys pasted into env files carry literal "\n" sequences
        if v:
            return v.replace("\\n", "\n")
        return v

    @model_validator(mode="after")
    def default_workspace_requires_container(self):
        if self.gtm_default_workspace_id and not self.gtm_default_container_id:
            raise ValueError("GTM_DEFAULT_WORKSPACE_ID requires GTM_DEFAULT_CONTAINER_ID")
        return self

    @property
    def gtm_credentials_configured(self) -> bool:
        return bool(self.gtm_client_email and self.gtm_private_key)

    @property
    def gtm_tracking_enabled(self) -> bool:
        return bool(
            self.gtm_credentials_configured
            and self.gtm_default_account_id
            and self.gtm_default_container_id
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production":
            for var in ["whatsapp_access_token", "whatsapp_app_secret", "whatsapp_verify_token"]:
                if not getattr(settings_obj, var):
                    raise ValueError(f"{var.upper()} is required in production")

        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
validate_environment(settings)
