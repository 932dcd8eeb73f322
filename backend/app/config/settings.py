# /app/config/settings.py

import sys
import re
from typing import Dict, List
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChannelConfig(BaseModel):
    """
    Configuration for one outbound messaging channel.
    Stores the provider account identifiers the Channel Sender needs.
    """
    platform: str
    phone_number_id: str
    access_token: str

    model_config = ConfigDict(frozen=True)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # MongoDB
    mongo_atlas_uri: str = "mongodb://localhost:27017/flowdesk"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_ssl: bool = False

    # WhatsApp Cloud API
    whatsapp_access_token: str | None = None
    whatsapp_phone_id: str | None = None
    whatsapp_verify_token: str = "change-me"
    whatsapp_app_secret: str = "change-me"
    whatsapp_api_version: str = "v18.0"

    # Channel registry, keyed by platform
    CHANNEL_REGISTRY: Dict[str, ChannelConfig] = {}

    # Bot runner
    bot_max_steps: int = 20
    session_lock_timeout: int = 30
    channel_send_timeout: float = 15.0

    # Security
    api_key: str | None = None

    # Deployment
    environment: str = Field(default="production")
    workers: int = 4

    # Redis
    redis_url: str | None = "redis://localhost:6379"

    # Comma-separated list of origins
    cors_allowed_origins: str = ""

    # App Metadata & Limits
    api_version: str = "v1"
    rate_limit_per_minute: int = 100

    # ---------------- Validators ---------------- #

    @field_validator("whatsapp_phone_id")
    @classmethod
    def phone_id_must_be_digits(cls, v):
        if v is not None and not re.match(r"^\d+$", v):
            raise ValueError("WHATSAPP_PHONE_ID must contain only digits")
        return v

    @field_validator("bot_max_steps")
    @classmethod
    def max_steps_must_be_positive(cls, v):
        if v < 1:
            raise ValueError("BOT_MAX_STEPS must be at least 1")
        return v

    @property
    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allowed_origins.split(",") if origin.strip()]

    @model_validator(mode="after")
    def initialize_channel_registry(self):
        if "whatsapp" not in self.CHANNEL_REGISTRY and self.whatsapp_phone_id and self.whatsapp_access_token:
            self.CHANNEL_REGISTRY["whatsapp"] = ChannelConfig(
                platform="whatsapp",
                phone_number_id=self.whatsapp_phone_id,
                access_token=self.whatsapp_access_token,
            )
        return self


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production":
            for var in ["whatsapp_access_token", "whatsapp_phone_id", "api_key"]:
                if not getattr(settings_obj, var):
                    raise ValueError(f"{var.upper()} is required in production")
        return settings_obj
    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}", file=sys.stderr)
        sys.exit(1)


settings = Settings()
