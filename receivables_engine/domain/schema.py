"""
Schema-by-convention column resolution.

The accounting system returns columns with free-text names and aliases and no
stable identifiers, so each semantic role is located by keyword containment
against the normalized name/alias of every column.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Dict, Mapping, Sequence, Tuple

if TYPE_CHECKING:
    from receivables_engine.domain.models import ColumnDescriptor

NOT_FOUND = -1

# Position of DueDate in the projection requested by build_receivables_request:
# LedgerName, SalesPerson, BillName, BillDate, DueDate, OpeningBalance, ClosingBalance
DUE_DATE_POSITION = 4


class ColumnRole(str, Enum):
    LEDGER = "Ledger"
    SALESPERSON = "Salesperson"
    BILL_NAME = "BillName"
    BILL_DATE = "BillDate"
    DUE_DATE = "DueDate"
    OPENING_BALANCE = "OpeningBalance"
    CLOSING_BALANCE = "ClosingBalance"
    DIRECTION = "DrCr"


DEFAULT_ROLE_KEYWORDS: Dict[ColumnRole, Tuple[str, ...]] = {
    ColumnRole.LEDGER: ("ledgername", "parent"),
    ColumnRole.SALESPERSON: ("salesperson",),
    ColumnRole.BILL_NAME: ("billname",),
    ColumnRole.BILL_DATE: ("billdate",),
    ColumnRole.DUE_DATE: ("duedate",),
    ColumnRole.OPENING_BALANCE: ("openingbalance",),
    ColumnRole.CLOSING_BALANCE: ("closingbalance",),
    ColumnRole.DIRECTION: ("drcr", "dr/cr"),
}

CURRENCY_ROLES = frozenset({ColumnRole.OPENING_BALANCE, ColumnRole.CLOSING_BALANCE})
DROPDOWN_ROLES = frozenset({ColumnRole.LEDGER, ColumnRole.SALESPERSON, ColumnRole.DIRECTION})


def _normalize(text: str | None) -> str:
    return "".join((text or "").split()).lower()


def column_matches(column: "ColumnDescriptor", keywords: Sequence[str]) -> bool:
    """True when the column's name or alias contains any keyword (case/space-insensitive)"""
    name = _normalize(column.name)
    alias = _normalize(column.alias)
    for keyword in keywords:
        needle = _normalize(keyword)
        if not needle:
            continue
        if (name and needle in name) or (alias and needle in alias):
            return True
    return False


def resolve_column(columns: Sequence["ColumnDescriptor"], role_keywords: Sequence[str]) -> int:
    """Index of the first column matching any keyword, or -1. Never raises."""
    for index, column in enumerate(columns):
        if column_matches(column, role_keywords):
            return index
    return NOT_FOUND


def resolve_due_date_column(
    columns: Sequence["ColumnDescriptor"],
    keywords: Sequence[str] = DEFAULT_ROLE_KEYWORDS[ColumnRole.DUE_DATE],
) -> int:
    """Due-date lookup with a single positional fallback to the projection slot"""
    index = resolve_column(columns, keywords)
    if index != NOT_FOUND:
        return index
    if len(columns) > DUE_DATE_POSITION and column_matches(columns[DUE_DATE_POSITION], ("date",)):
        return DUE_DATE_POSITION
    return NOT_FOUND


@dataclass(frozen=True)
class SchemaMap:
    """Role -> column index for one dataset; absent roles map to -1"""

    indexes: Mapping[ColumnRole, int]
    date_columns: frozenset

    def index(self, role: ColumnRole) -> int:
        return self.indexes.get(role, NOT_FOUND)

    def has(self, role: ColumnRole) -> bool:
        return self.index(role) != NOT_FOUND

    def is_currency(self, column_index: int) -> bool:
        return any(self.index(role) == column_index for role in CURRENCY_ROLES)

    def is_dropdown(self, column_index: int) -> bool:
        return any(self.index(role) == column_index for role in DROPDOWN_ROLES)

    def is_date(self, column_index: int) -> bool:
        return column_index in self.date_columns


def resolve_schema(
    columns: Sequence["ColumnDescriptor"],
    role_keywords: Mapping[ColumnRole, Sequence[str]] = DEFAULT_ROLE_KEYWORDS,
) -> SchemaMap:
    """Resolve every role once for a column list"""
    indexes: Dict[ColumnRole, int] = {}
    for role, keywords in role_keywords.items():
        if role is ColumnRole.DUE_DATE:
            indexes[role] = resolve_due_date_column(columns, keywords)
        else:
            indexes[role] = resolve_column(columns, keywords)

    date_columns = frozenset(
        index for index, column in enumerate(columns) if column_matches(column, ("date",))
    )
    return SchemaMap(indexes=indexes, date_columns=date_columns)
