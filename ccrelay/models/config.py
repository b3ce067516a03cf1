"""Configuration models"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AppConfig(BaseModel):
    """Application configuration, built once at startup and never mutated"""
    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    debug: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/app.log"
    verify_ssl: bool = True
    request_timeout_secs: int = Field(default=600, ge=1)

    # When True, a credential without a "!BASE_URL" part is rejected instead of
    # being routed to default_base_url
    require_explicit_base_url: bool = False
    default_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"

    emit_done_event: bool = True
    cors_enabled: bool = True
    enable_metrics: bool = False

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("log_file")
    @classmethod
    def _empty_log_file_disables_sink(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("default_base_url")
    @classmethod
    def _strip_default_base_url(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level
