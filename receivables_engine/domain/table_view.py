"""
Filter/sort/page engine for table views.

One TableEngine serves the flat table and every per-group detail table; the
only difference between them is which rows are passed in and which ViewState
(see TableScopes) is used.
"""

import math
import re
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from functools import cmp_to_key
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from receivables_engine.domain.aging import days_overdue
from receivables_engine.domain.models import Dataset, Row
from receivables_engine.domain.schema import ColumnRole
from receivables_engine.utils.date_utils import parse_tally_date
from receivables_engine.utils.number_utils import parse_currency, parse_number

DAYS_OVERDUE = "daysOverdue"
EQUALITY_EPSILON = 0.01

ColumnRef = Union[int, str]

_COMPARISON_PREFIXES = (">=", "<=", ">", "<", "=")
_EXPRESSION_TOKENS = re.compile(r"[<>]=?|=|\d+(?:\.\d+)?")


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class SortSpec:
    column: ColumnRef
    direction: SortDirection = SortDirection.ASC


@dataclass(frozen=True)
class ViewState:
    """Filter, sort and paging state of one table scope. Transitions return new states."""

    filters: Dict[ColumnRef, str] = field(default_factory=dict)
    sort: Optional[SortSpec] = None
    page: int = 1
    page_size: int = 50

    def with_filter(self, column: ColumnRef, value: Optional[str]) -> "ViewState":
        filters = dict(self.filters)
        if value is None or value == "":
            filters.pop(column, None)
        else:
            filters[column] = value
        return replace(self, filters=filters, page=1)

    def without_filters(self) -> "ViewState":
        return replace(self, filters={}, sort=None, page=1)

    def with_sort(self, column: ColumnRef, direction: SortDirection) -> "ViewState":
        return replace(self, sort=SortSpec(column, SortDirection(direction)), page=1)

    def toggled_sort(self, column: ColumnRef) -> "ViewState":
        """Ascending on a new column, flip direction on the current one"""
        if self.sort is not None and self.sort.column == column:
            flipped = SortDirection.DESC if self.sort.direction is SortDirection.ASC else SortDirection.ASC
            return self.with_sort(column, flipped)
        return self.with_sort(column, SortDirection.ASC)

    def with_page(self, page: int) -> "ViewState":
        return replace(self, page=page)

    def with_page_size(self, page_size: int) -> "ViewState":
        if page_size < 1:
            raise ValueError("page_size must be positive")
        return replace(self, page_size=page_size, page=1)


@dataclass
class Page:
    rows: List[Row]
    page: int
    page_size: int
    total_rows: int
    total_pages: int


def paginate(rows: Sequence, page: int, page_size: int) -> Page:
    """1-based slice; the page is clamped into [1, total_pages]"""
    total_pages = max(1, math.ceil(len(rows) / page_size))
    current = min(max(page, 1), total_pages)
    start = (current - 1) * page_size
    return Page(
        rows=list(rows[start : start + page_size]),
        page=current,
        page_size=page_size,
        total_rows=len(rows),
        total_pages=total_pages,
    )


def split_comparison(text: str) -> Tuple[str, str]:
    """'>=1000' -> ('>=', '1000'); no operator defaults to '='"""
    for prefix in _COMPARISON_PREFIXES:
        if text.startswith(prefix):
            return prefix, text[len(prefix) :].strip()
    return "=", text


def compare(value: float, operator: str, expected: float) -> bool:
    if operator == ">":
        return value > expected
    if operator == ">=":
        return value >= expected
    if operator == "<":
        return value < expected
    if operator == "<=":
        return value <= expected
    return abs(value - expected) < EQUALITY_EPSILON


def matches_expression(value: int, expression: str) -> bool:
    """
    Evaluate one or more 'op number' clauses ANDed together, e.g. '>30<=90'.

    Text with no operators or numbers falls back to substring on the value.
    """
    tokens = _EXPRESSION_TOKENS.findall("".join(expression.split()))
    if not tokens:
        return expression.lower() in str(value).lower()

    operator = "="
    result = True
    for token in tokens:
        if token[0] in "<>=":
            operator = token
            continue
        result = result and compare(value, operator, float(token))
    return result


class TableEngine:
    """Applies per-column filters, a stable sort and pagination to rows of one dataset"""

    def __init__(self, dataset: Dataset, today: date | None = None):
        self.dataset = dataset
        self.schema = dataset.schema
        self.today = today or date.today()

    def days_overdue_of(self, row: Row) -> Optional[int]:
        index = self.schema.index(ColumnRole.DUE_DATE)
        if index == -1:
            return None
        return days_overdue(row[index], self.today)

    # Filter values

    def normalize_filter_value(self, column: ColumnRef, value: Optional[str]) -> Optional[str]:
        """Blank or 'all' clears; currency filters are trimmed, everything else lowercased"""
        if value is None:
            return None
        text = value.strip()
        if not text or text.lower() == "all":
            return None
        if isinstance(column, int) and self.schema.is_currency(column):
            return text
        return text.lower()

    def validate_column(self, column: ColumnRef) -> ColumnRef:
        if column == DAYS_OVERDUE:
            return column
        if isinstance(column, int) and 0 <= column < len(self.dataset.columns):
            return column
        raise ValueError(f"Unknown column {column!r}")

    def apply_filter(self, state: ViewState, column: ColumnRef, value: Optional[str]) -> ViewState:
        column = self.validate_column(column)
        return state.with_filter(column, self.normalize_filter_value(column, value))

    # Predicates

    def predicate_for(self, column: ColumnRef, value: str) -> Callable[[Row], bool]:
        if column == DAYS_OVERDUE:
            return lambda row: self._matches_days_overdue(row, value)
        if self.schema.is_currency(column):
            return lambda row: _matches_currency(row[column], value)
        if self.schema.is_dropdown(column):
            return lambda row: (row[column] or "").strip().lower() == value
        return lambda row: value in (row[column] or "").strip().lower()

    def _matches_days_overdue(self, row: Row, expression: str) -> bool:
        overdue = self.days_overdue_of(row)
        if overdue is None:
            return False
        return matches_expression(overdue, expression)

    def filter_rows(self, rows: Sequence[Row], filters: Dict[ColumnRef, str]) -> List[Row]:
        predicates = [self.predicate_for(column, value) for column, value in filters.items()]
        if not predicates:
            return list(rows)
        return [row for row in rows if all(predicate(row) for predicate in predicates)]

    # Sorting

    def sort_rows(self, rows: Sequence[Row], sort: Optional[SortSpec]) -> List[Row]:
        """
        Stable sort. Missing days overdue and unparseable dates always sort
        last, whichever the direction.
        """
        if sort is None:
            return list(rows)

        descending = sort.direction is SortDirection.DESC
        if sort.column == DAYS_OVERDUE:
            return _sort_with_missing_last(rows, self.days_overdue_of, descending)

        column = sort.column
        if self.schema.is_date(column):
            return _sort_with_missing_last(rows, lambda row: parse_tally_date(row[column]), descending)

        def compare_cells(a: Row, b: Row) -> int:
            a_text, b_text = a[column] or "", b[column] or ""
            a_num, b_num = parse_number(a_text), parse_number(b_text)
            if a_num is not None and b_num is not None:
                result = _cmp(a_num, b_num)
            else:
                result = _cmp(a_text.lower(), b_text.lower())
            return -result if descending else result

        return sorted(rows, key=cmp_to_key(compare_cells))

    def view(self, rows: Sequence[Row], state: ViewState) -> Page:
        """Filter, sort, then slice the requested page"""
        filtered = self.filter_rows(rows, state.filters)
        ordered = self.sort_rows(filtered, state.sort)
        return paginate(ordered, state.page, state.page_size)

    def filtered_and_sorted(self, rows: Sequence[Row], state: ViewState) -> List[Row]:
        return self.sort_rows(self.filter_rows(rows, state.filters), state.sort)

    def column_options(self, rows: Sequence[Row], column: int, search: str = "") -> List[str]:
        """Distinct non-blank values of a column for dropdown filters, sorted"""
        self.validate_column(column)
        values = {(row[column] or "").strip() for row in rows}
        values.discard("")
        needle = search.lower()
        return sorted(value for value in values if needle in value.lower())


def _matches_currency(cell: str, filter_text: str) -> bool:
    amount = parse_currency(cell or "")
    if amount is None:
        return False
    text = filter_text.strip()
    if not text:
        return True

    operator, operand = split_comparison(text)
    expected = parse_number(operand)
    if expected is None:
        return filter_text.lower() in (cell or "").lower()
    return compare(amount, operator, expected)


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _sort_with_missing_last(rows: Sequence[Row], key: Callable[[Row], object], descending: bool) -> List[Row]:
    keyed = [(key(row), row) for row in rows]
    present = [pair for pair in keyed if pair[0] is not None]
    missing = [row for value, row in keyed if value is None]
    present.sort(key=lambda pair: pair[0], reverse=descending)
    return [row for _, row in present] + missing


FLAT_SCOPE = None


class TableScopes:
    """Independent ViewState per scope: the flat table (None) or a named group"""

    def __init__(self, page_size: int = 50):
        self.page_size = page_size
        self._states: Dict[Optional[str], ViewState] = {}

    def get(self, scope: Optional[str] = FLAT_SCOPE) -> ViewState:
        return self._states.get(scope) or ViewState(page_size=self.page_size)

    def set(self, scope: Optional[str], state: ViewState) -> ViewState:
        self._states[scope] = state
        return state

    def reset_pages(self) -> None:
        for scope, state in list(self._states.items()):
            self._states[scope] = state.with_page(1)

    def drop_groups(self) -> None:
        self._states = {FLAT_SCOPE: self.get(FLAT_SCOPE)}
