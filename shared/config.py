"""
Settings for hosts embedding the RBAC decision engine.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RELOAD_INTERVAL_SECONDS = 30.0


class RBACSettings(BaseSettings):
    """Environment-driven settings (prefix ``RBAC_``)."""

    model_config = SettingsConfigDict(
        env_prefix="RBAC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    service_name: str = Field(default="rbac")
    log_level: str = Field(default="info")

    # Configuration sources; a URL wins over a file for hot reload
    config_file: Optional[str] = Field(default=None)
    config_url: Optional[str] = Field(default=None)
    config_format: Optional[str] = Field(default=None)

    hot_reload: bool = Field(default=False)
    # Non-positive values fall back to the supervisor default
    reload_interval_seconds: float = Field(default=DEFAULT_RELOAD_INTERVAL_SECONDS)

    # 0 disables role caching
    role_cache_ttl_seconds: float = Field(default=0.0)

    http_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        import logging

        if not isinstance(getattr(logging, v.upper(), None), int):
            raise ValueError(f"RBAC_LOG_LEVEL must be a valid Python log level, got '{v}'")
        return v.lower()

    @field_validator("config_format")
    @classmethod
    def validate_config_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.lower()
        if v not in ("json", "yaml"):
            raise ValueError(f"RBAC_CONFIG_FORMAT must be 'json' or 'yaml', got '{v}'")
        return v


def get_settings(**overrides) -> RBACSettings:
    """Build settings from the environment, with explicit overrides."""
    return RBACSettings(**overrides)
