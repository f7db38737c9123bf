"""Statement builders for the warehouse clients view.

Branch filters are always passed as statement bindings; codes are never
interpolated into SQL text.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from pension_sync.settings import SQL_IDENTIFIER_RE
from pension_sync.transform import WAREHOUSE_COLUMNS
from pension_sync.warehouse.constants import CLIENTS_VIEW

# Dates are rendered server-side so rows carry ISO strings, not epoch days.
_SELECT_EXPRESSIONS = {
    "BIRTH_DATE": "TO_VARCHAR(BIRTH_DATE, 'YYYY-MM-DD') AS BIRTH_DATE",
}


@dataclass(frozen=True)
class Statement:
    """SQL text plus positional ``?`` bindings in SQL API form."""

    sql: str
    bindings: dict[str, dict[str, str]] = field(default_factory=dict)


def _select_list() -> str:
    return ",\n  ".join(
        _SELECT_EXPRESSIONS.get(column, column) for column in WAREHOUSE_COLUMNS
    )


def build_clients_statement(
    schema: str,
    branch_codes: Sequence[str] = (),
    *,
    limit: int | None = None,
) -> Statement:
    """Build the clients-view query, optionally filtered and bounded.

    Args:
        schema: Schema holding the clients view.
        branch_codes: Branch codes to keep; empty means every branch.
        limit: Optional row bound used for previews.

    Returns:
        The statement with one binding per branch code.

    Raises:
        ValueError: When ``schema`` is not a plain identifier.
    """
    if not SQL_IDENTIFIER_RE.fullmatch(schema):
        raise ValueError(f"invalid warehouse schema identifier: {schema!r}")
    sql = f"SELECT\n  {_select_list()}\nFROM {schema}.{CLIENTS_VIEW}"
    bindings: dict[str, dict[str, str]] = {}
    if branch_codes:
        placeholders = ", ".join("?" for _ in branch_codes)
        sql += f"\nWHERE BRANCH_CODE IN ({placeholders})"
        bindings = {
            str(index): {"type": "TEXT", "value": code}
            for index, code in enumerate(branch_codes, start=1)
        }
    sql += "\nORDER BY CLIENT_CODE"
    if limit is not None:
        sql += f"\nLIMIT {int(limit)}"
    return Statement(sql=sql, bindings=bindings)
