"""
Shared configuration management for the Access Policy core.
"""

from pathlib import Path
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_KNOWN_SERVICES = ["eventlog", "filesearch"]
LOOPBACK_HOSTS = ["127.0.0.1", "::1", "::ffff:127.0.0.1"]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"


class PolicySettings(BaseConfig):
    """Settings for the policy service.

    Storage paths may be relative; they are resolved against
    ``policy_storage_root`` and validated before any file is touched.
    """

    service_name: str = "policy"
    host: str = "127.0.0.1"
    port: int = 8013

    # Storage
    policy_storage_root: Path = Path("var")
    policy_config_path: Path = Path("config") / "policy-config.json"
    policy_audit_log_path: Path = Path("logs") / "audit.jsonl"

    # Audit rotation
    policy_audit_max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)
    policy_audit_max_files: int = Field(default=5, ge=1)

    # Policy
    policy_known_services: List[str] = Field(default_factory=lambda: list(DEFAULT_KNOWN_SERVICES))
    policy_admin_allowed_hosts: List[str] = Field(default_factory=lambda: list(LOOPBACK_HOSTS))

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        if value.lower() not in ("debug", "info", "warning", "error"):
            raise ValueError(f"Invalid log level {value!r}")
        return value.lower()

    @field_validator("policy_known_services")
    @classmethod
    def _check_known_services(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("At least one known service is required")
        if len(set(value)) != len(value):
            raise ValueError("Known services must be unique")
        return value


def get_config(**overrides) -> PolicySettings:
    """Get configuration for the policy service."""
    return PolicySettings(**overrides)
