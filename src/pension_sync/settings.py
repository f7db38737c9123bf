from __future__ import annotations

import re
from typing import Literal

from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pension_sync.circuit_breaker import (
    BANKING_API_CIRCUIT,
    WAREHOUSE_CIRCUIT,
    CircuitBreakerConfig,
)
from pension_sync.errors import ClientConstraintError
from pension_sync.logging import LogFormat

WarehouseTokenType = Literal["KEYPAIR_JWT", "OAUTH", "PROGRAMMATIC_ACCESS_TOKEN"]

_UNCONFIGURED_ACCOUNTS = frozenset({"", "placeholder"})
# Unquoted Snowflake identifier, optionally database-qualified.
SQL_IDENTIFIER_RE = re.compile(
    r"[A-Za-z_][A-Za-z0-9_\$]*(\.[A-Za-z_][A-Za-z0-9_\$]*)?"
)


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class SyncSettings(BaseSettings):
    """Process-wide settings for the warehouse client sync worker.

    Read once at construction from ``PENSION_SYNC_*`` environment variables;
    a running sync never reloads them.
    """

    model_config = prefixed_settings_config("PENSION_SYNC_")

    warehouse_account: str | None = None
    warehouse_base_url: str | None = None
    warehouse_token: str | None = None
    warehouse_token_type: WarehouseTokenType = "KEYPAIR_JWT"
    warehouse_database: str | None = None
    warehouse_schema: str = "CLIENT_UPDATER"
    warehouse_name: str | None = None
    warehouse_role: str | None = None
    warehouse_statement_timeout_seconds: int = 120
    warehouse_poll_interval_seconds: float = 1.0
    warehouse_http_timeout_seconds: float = 150.0

    warehouse_circuit_failure_threshold: int = 5
    warehouse_circuit_cooldown_ms: int = 60_000
    warehouse_circuit_success_threshold: int = 3
    banking_api_circuit_failure_threshold: int = 5
    banking_api_circuit_cooldown_ms: int = 60_000
    banking_api_circuit_success_threshold: int = 3

    sync_batch_size: int = 500
    preview_default_limit: int = 100
    preview_max_limit: int = 1000

    job_write_retry_attempts: int = 3
    job_write_retry_min_seconds: float = 0.5
    job_write_retry_max_seconds: float = 5.0

    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.AUTO

    @field_validator("warehouse_token_type", mode="before")
    @classmethod
    def _normalize_token_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("log_format", mode="before")
    @classmethod
    def _normalize_log_format(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator(
        "warehouse_account",
        "warehouse_base_url",
        "warehouse_token",
        "warehouse_database",
        "warehouse_name",
        "warehouse_role",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip()
            return normalized or None
        return value

    @field_validator("warehouse_schema", "log_level", mode="before")
    @classmethod
    def _validate_required_string(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be non-empty")
        if info.field_name == "warehouse_schema" and not SQL_IDENTIFIER_RE.fullmatch(
            normalized
        ):
            raise ValueError("warehouse_schema must be a plain SQL identifier")
        return normalized

    @model_validator(mode="after")
    def _validate_sync_settings(self) -> SyncSettings:
        for prefix in ("warehouse_circuit", "banking_api_circuit"):
            if getattr(self, f"{prefix}_failure_threshold") < 1:
                raise ValueError(f"{prefix}_failure_threshold must be >= 1")
            if getattr(self, f"{prefix}_success_threshold") < 1:
                raise ValueError(f"{prefix}_success_threshold must be >= 1")
            if getattr(self, f"{prefix}_cooldown_ms") < 0:
                raise ValueError(f"{prefix}_cooldown_ms must be >= 0")

        if self.warehouse_statement_timeout_seconds <= 0:
            raise ValueError("warehouse_statement_timeout_seconds must be > 0")
        if self.warehouse_http_timeout_seconds <= 0:
            raise ValueError("warehouse_http_timeout_seconds must be > 0")
        if self.warehouse_poll_interval_seconds <= 0:
            raise ValueError("warehouse_poll_interval_seconds must be > 0")
        if self.sync_batch_size < 1:
            raise ValueError("sync_batch_size must be >= 1")
        if self.preview_max_limit < 1:
            raise ValueError("preview_max_limit must be >= 1")
        if not 1 <= self.preview_default_limit <= self.preview_max_limit:
            raise ValueError(
                "preview_default_limit must be between 1 and preview_max_limit"
            )
        if self.job_write_retry_attempts < 1:
            raise ValueError("job_write_retry_attempts must be >= 1")
        if self.job_write_retry_max_seconds < self.job_write_retry_min_seconds:
            raise ValueError(
                "job_write_retry_max_seconds must be >= job_write_retry_min_seconds"
            )

        if self.is_warehouse_configured() and not self.warehouse_token:
            raise ValueError(
                "warehouse_token is required when warehouse_account is configured"
            )
        return self

    def is_warehouse_configured(self) -> bool:
        """Return whether a real warehouse account has been configured."""
        account = self.warehouse_account
        return account is not None and account.lower() not in _UNCONFIGURED_ACCOUNTS

    def warehouse_url(self) -> str:
        """Return the warehouse SQL API base URL.

        Raises:
            ValueError: When neither a base URL nor an account is configured.
        """
        if self.warehouse_base_url:
            return self.warehouse_base_url.rstrip("/")
        if not self.is_warehouse_configured():
            raise ValueError("warehouse_account is not configured")
        return f"https://{self.warehouse_account}.snowflakecomputing.com"

    def circuit_breaker_configs(self) -> dict[str, CircuitBreakerConfig]:
        """Build one breaker config per protected upstream."""
        return {
            WAREHOUSE_CIRCUIT: CircuitBreakerConfig(
                failure_threshold=self.warehouse_circuit_failure_threshold,
                cooldown_ms=self.warehouse_circuit_cooldown_ms,
                success_threshold=self.warehouse_circuit_success_threshold,
                excluded_exceptions=(ClientConstraintError,),
            ),
            BANKING_API_CIRCUIT: CircuitBreakerConfig(
                failure_threshold=self.banking_api_circuit_failure_threshold,
                cooldown_ms=self.banking_api_circuit_cooldown_ms,
                success_threshold=self.banking_api_circuit_success_threshold,
            ),
        }
