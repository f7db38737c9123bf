from __future__ import annotations

from typing import Any, cast

import pytest
from pydantic import ValidationError

from pension_sync.circuit_breaker import BANKING_API_CIRCUIT, WAREHOUSE_CIRCUIT
from pension_sync.errors import ClientConstraintError
from pension_sync.logging import LogFormat
from pension_sync.settings import SyncSettings


def _build_settings(**overrides: object) -> SyncSettings:
    values: dict[str, object] = {
        "warehouse_account": "acme-prod",
        "warehouse_token": "secret-token",
        "warehouse_database": "PENSIONS",
    }
    values.update(overrides)
    return SyncSettings(**cast(Any, values))


def test_defaults_match_sync_behavior() -> None:
    settings = _build_settings()

    assert settings.sync_batch_size == 500
    assert settings.preview_default_limit == 100
    assert settings.preview_max_limit == 1000
    assert settings.warehouse_schema == "CLIENT_UPDATER"
    assert settings.warehouse_circuit_failure_threshold == 5
    assert settings.warehouse_circuit_cooldown_ms == 60_000
    assert settings.warehouse_circuit_success_threshold == 3
    assert settings.log_format == LogFormat.AUTO


def test_settings_are_read_from_prefixed_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PENSION_SYNC_WAREHOUSE_ACCOUNT", "acme-env")
    monkeypatch.setenv("PENSION_SYNC_WAREHOUSE_TOKEN", "env-token")
    monkeypatch.setenv("PENSION_SYNC_SYNC_BATCH_SIZE", "250")
    monkeypatch.setenv("PENSION_SYNC_WAREHOUSE_TOKEN_TYPE", " oauth ")
    monkeypatch.setenv("PENSION_SYNC_LOG_FORMAT", "JSON")

    settings = SyncSettings()

    assert settings.warehouse_account == "acme-env"
    assert settings.sync_batch_size == 250
    assert settings.warehouse_token_type == "OAUTH"
    assert settings.log_format == LogFormat.JSON


def test_warehouse_url_derives_from_account_or_override() -> None:
    assert (
        _build_settings().warehouse_url() == "https://acme-prod.snowflakecomputing.com"
    )
    assert (
        _build_settings(warehouse_base_url="http://localhost:8080/").warehouse_url()
        == "http://localhost:8080"
    )


@pytest.mark.parametrize("account", [None, "", "  ", "placeholder", "PLACEHOLDER"])
def test_placeholder_account_is_unconfigured(account: str | None) -> None:
    settings = _build_settings(warehouse_account=account, warehouse_token=None)

    assert settings.is_warehouse_configured() is False
    with pytest.raises(ValueError, match="not configured"):
        settings.warehouse_url()


def test_configured_account_requires_token() -> None:
    with pytest.raises(ValidationError, match="warehouse_token is required"):
        _build_settings(warehouse_token="   ")


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"warehouse_circuit_failure_threshold": 0}, "failure_threshold must be >= 1"),
        ({"banking_api_circuit_cooldown_ms": -1}, "cooldown_ms must be >= 0"),
        ({"sync_batch_size": 0}, "sync_batch_size must be >= 1"),
        ({"preview_default_limit": 2000}, "preview_default_limit must be between"),
        ({"job_write_retry_attempts": 0}, "job_write_retry_attempts must be >= 1"),
        ({"warehouse_schema": " "}, "warehouse_schema must be non-empty"),
        (
            {"warehouse_schema": "CLIENTS; DROP TABLE X"},
            "warehouse_schema must be a plain SQL identifier",
        ),
        ({"warehouse_poll_interval_seconds": 0}, "poll_interval_seconds must be > 0"),
        ({"warehouse_token_type": "PASSWORD"}, "warehouse_token_type"),
    ],
)
def test_invalid_values_are_rejected(overrides: dict[str, object], message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        _build_settings(**overrides)


def test_circuit_breaker_configs_cover_both_upstreams() -> None:
    settings = _build_settings(
        warehouse_circuit_failure_threshold=2,
        warehouse_circuit_cooldown_ms=5_000,
    )

    configs = settings.circuit_breaker_configs()

    assert set(configs) == {WAREHOUSE_CIRCUIT, BANKING_API_CIRCUIT}
    warehouse = configs[WAREHOUSE_CIRCUIT]
    assert warehouse.failure_threshold == 2
    assert warehouse.cooldown_ms == 5_000
    assert warehouse.success_threshold == 3
    assert warehouse.excluded_exceptions == (ClientConstraintError,)
    assert configs[BANKING_API_CIRCUIT].excluded_exceptions == ()


def test_qualified_schema_identifier_is_accepted() -> None:
    settings = _build_settings(warehouse_schema=" PENSIONS.CLIENT_UPDATER ")

    assert settings.warehouse_schema == "PENSIONS.CLIENT_UPDATER"
