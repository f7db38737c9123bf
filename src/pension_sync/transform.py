"""Normalize warehouse client rows into the internal client schema."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum

from pension_sync.lookup import LookupCache, LookupDomain

WarehouseRecord = Mapping[str, object]

SYNC_SOURCE = "snowflake"

WAREHOUSE_COLUMNS: tuple[str, ...] = (
    "CLIENT_CODE",
    "FULL_NAME",
    "PENSION_NUMBER",
    "BIRTH_DATE",
    "CONTACT_NUMBER",
    "CONTACT_NUMBER_ALT",
    "PENSION_TYPE_CODE",
    "PENSIONER_TYPE_CODE",
    "PRODUCT_CODE",
    "BRANCH_CODE",
    "PAR_STATUS_CODE",
    "ACCOUNT_TYPE_CODE",
    "PAST_DUE_AMOUNT",
    "LOAN_STATUS",
)

# Warehouse code column -> (lookup domain, resolved client field).
CODE_COLUMNS: dict[str, tuple[LookupDomain, str]] = {
    "PENSION_TYPE_CODE": (LookupDomain.PENSION_TYPES, "pension_type_id"),
    "PENSIONER_TYPE_CODE": (LookupDomain.PENSIONER_TYPES, "pensioner_type_id"),
    "PRODUCT_CODE": (LookupDomain.PRODUCTS, "product_id"),
    "BRANCH_CODE": (LookupDomain.BRANCHES, "branch_id"),
    "PAR_STATUS_CODE": (LookupDomain.PAR_STATUSES, "par_status_id"),
    "ACCOUNT_TYPE_CODE": (LookupDomain.ACCOUNT_TYPES, "account_type_id"),
}


class WarningKind(StrEnum):
    """Kinds of per-row transform warnings."""

    UNRESOLVED_LOOKUP = "unresolved_lookup"
    UNPARSABLE_DATE = "unparsable_date"
    UNPARSABLE_AMOUNT = "unparsable_amount"
    MISSING_CLIENT_CODE = "missing_client_code"


SKIP_WARNING_KINDS = frozenset(
    {WarningKind.UNRESOLVED_LOOKUP, WarningKind.MISSING_CLIENT_CODE}
)


@dataclass(frozen=True)
class TransformWarning:
    """One problem found while transforming a warehouse row.

    Attributes:
        kind: Warning category.
        field: Warehouse column the warning refers to.
        value: Offending raw value rendered as text.
        domain: Lookup domain for ``unresolved_lookup`` warnings.
    """

    kind: WarningKind
    field: str
    value: str | None
    domain: LookupDomain | None = None


@dataclass(frozen=True)
class ClientRecord:
    """Internal client record keyed by ``client_code``."""

    client_code: str
    full_name: str | None = None
    pension_number: str | None = None
    birth_date: date | None = None
    contact_number: str | None = None
    contact_number_alt: str | None = None
    pension_type_id: str | None = None
    pensioner_type_id: str | None = None
    product_id: str | None = None
    branch_id: str | None = None
    par_status_id: str | None = None
    account_type_id: str | None = None
    past_due_amount: Decimal | None = None
    loan_status: str | None = None
    is_active: bool = True
    sync_source: str = SYNC_SOURCE


@dataclass(frozen=True)
class TransformResult:
    """Transformed record plus the warnings accumulated for its row."""

    record: ClientRecord
    warnings: tuple[TransformWarning, ...] = ()

    @property
    def should_skip(self) -> bool:
        """Return whether the row must not be written to the operational store."""
        return any(warning.kind in SKIP_WARNING_KINDS for warning in self.warnings)

    def unresolved(self) -> tuple[TransformWarning, ...]:
        return tuple(
            warning
            for warning in self.warnings
            if warning.kind == WarningKind.UNRESOLVED_LOOKUP
        )


def _text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip()
    else:
        normalized = str(value).strip()
    return normalized or None


def _parse_date(value: object) -> tuple[date | None, bool]:
    """Return ``(date, parsed_ok)``; blank input is ``(None, True)``."""
    if value is None:
        return None, True
    if isinstance(value, datetime):
        return value.date(), True
    if isinstance(value, date):
        return value, True
    text = _text(value)
    if text is None:
        return None, True
    try:
        return date.fromisoformat(text), True
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date(), True
    except ValueError:
        return None, False


def _parse_amount(value: object) -> tuple[Decimal | None, bool]:
    if value is None or isinstance(value, bool):
        return None, value is None
    if isinstance(value, Decimal):
        return (value, True) if value.is_finite() else (None, False)
    text = _text(value)
    if text is None:
        return None, True
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None, False
    if not amount.is_finite():
        return None, False
    return amount, True


def transform_record(raw: WarehouseRecord, cache: LookupCache) -> TransformResult:
    """Map one warehouse row to a client record.

    The transform is pure and total: missing or malformed values degrade to
    ``None`` and are reported as warnings instead of raising. A non-blank code
    that the cache cannot resolve produces an ``unresolved_lookup`` warning,
    since it signals drift between the warehouse and internal reference data.

    Args:
        raw: Warehouse row keyed by upstream column names.
        cache: Lookup cache built for the current run.

    Returns:
        The normalized record and its warnings.
    """
    warnings: list[TransformWarning] = []

    client_code = _text(raw.get("CLIENT_CODE"))
    if client_code is None:
        warnings.append(
            TransformWarning(
                kind=WarningKind.MISSING_CLIENT_CODE,
                field="CLIENT_CODE",
                value=None,
            )
        )

    birth_date, date_ok = _parse_date(raw.get("BIRTH_DATE"))
    if not date_ok:
        warnings.append(
            TransformWarning(
                kind=WarningKind.UNPARSABLE_DATE,
                field="BIRTH_DATE",
                value=_text(raw.get("BIRTH_DATE")),
            )
        )

    past_due_amount, amount_ok = _parse_amount(raw.get("PAST_DUE_AMOUNT"))
    if not amount_ok:
        warnings.append(
            TransformWarning(
                kind=WarningKind.UNPARSABLE_AMOUNT,
                field="PAST_DUE_AMOUNT",
                value=_text(raw.get("PAST_DUE_AMOUNT")),
            )
        )

    resolved: dict[str, str | None] = {}
    for column, (domain, target) in CODE_COLUMNS.items():
        code = _text(raw.get(column))
        if code is None:
            resolved[target] = None
            continue
        resolved_id = cache.resolve(domain, code)
        if resolved_id is None:
            warnings.append(
                TransformWarning(
                    kind=WarningKind.UNRESOLVED_LOOKUP,
                    field=column,
                    value=code,
                    domain=domain,
                )
            )
        resolved[target] = resolved_id

    record = ClientRecord(
        client_code=client_code or "",
        full_name=_text(raw.get("FULL_NAME")),
        pension_number=_text(raw.get("PENSION_NUMBER")),
        birth_date=birth_date,
        contact_number=_text(raw.get("CONTACT_NUMBER")),
        contact_number_alt=_text(raw.get("CONTACT_NUMBER_ALT")),
        past_due_amount=past_due_amount,
        loan_status=_text(raw.get("LOAN_STATUS")),
        **resolved,
    )
    return TransformResult(record=record, warnings=tuple(warnings))
