from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "RenewAlert Billing"
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Backend subscription-of-record
    api_base_url: str = Field(default="https://renewalert.com/api")
    api_timeout_seconds: float = Field(default=10.0)
    backend_attempts: int = Field(default=2, ge=1)

    # Device store
    device_platform: Literal["ios", "android"] = Field(default="ios")
    offerings_timeout_seconds: float = Field(default=10.0)

    # Local cache
    redis_url: str = Field(default="redis://localhost:6379/0")
    cache_prefix: str = Field(default="renewalert")
    plans_cache_ttl_seconds: int = Field(default=60 * 60 * 24 * 7)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
