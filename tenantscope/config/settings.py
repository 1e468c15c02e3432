"""tenantscope configuration via environment / .env file."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_COLUMN_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

# PostgreSQL identifier limit
MAX_COLUMN_NAME_LENGTH = 63


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Database ---
    DATABASE_URL: str = "sqlite:///./tenantscope.db"

    # --- Deployment ---
    TENANT_ENVIRONMENT: Literal["development", "test", "staging", "production"] = "development"

    # --- Scoping ---
    TENANT_COLUMN: str = "organization_id"
    TENANT_EXCLUDED_MODELS: list[str] = []

    # --- Bypass policy ---
    TENANT_BYPASSES_DISABLED: bool = False
    TENANT_BYPASS_ENABLED_ENVIRONMENTS: list[str] = ["development", "test", "production"]
    TENANT_PRODUCTION_ENVIRONMENTS: list[str] = ["production", "staging"]

    # --- Logging ---
    TENANT_BYPASS_AUDIT_LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    TENANT_LOG_LEVEL: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.TENANT_ENVIRONMENT in self.TENANT_PRODUCTION_ENVIRONMENTS

    @property
    def bypass_enabled(self) -> bool:
        """True when bypass operations may run in the current environment."""
        if self.TENANT_BYPASSES_DISABLED:
            return False
        return self.TENANT_ENVIRONMENT in self.TENANT_BYPASS_ENABLED_ENVIRONMENTS

    @field_validator("TENANT_COLUMN")
    @classmethod
    def _check_column_name(cls, v: str) -> str:
        if not _COLUMN_NAME_RE.match(v) or len(v) > MAX_COLUMN_NAME_LENGTH:
            raise ValueError(
                f"TENANT_COLUMN {v!r} is not a valid database column name"
            )
        return v

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def _fix_pg_scheme(cls, v: str) -> str:
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v


settings = Settings()
