"""Unit tests for table filtering, sorting and paging"""

import pytest
from datetime import date
from receivables_engine.domain.models import Dataset
from receivables_engine.domain.normalizer import normalize
from receivables_engine.domain.table_view import (
    DAYS_OVERDUE,
    FLAT_SCOPE,
    SortDirection,
    SortSpec,
    TableEngine,
    TableScopes,
    ViewState,
    matches_expression,
    paginate,
    split_comparison,
)

TODAY = date(2024, 5, 15)

LEDGER, SALESPERSON, BILL, BILL_DATE, DUE_DATE, OPENING, CLOSING, DRCR = range(8)


@pytest.fixture
def dataset(raw_dataset: Dataset) -> Dataset:
    return normalize(raw_dataset)


@pytest.fixture
def engine(dataset: Dataset) -> TableEngine:
    return TableEngine(dataset, TODAY)


def bills(rows):
    return [row[BILL] for row in rows]


def test_split_comparison():
    assert split_comparison(">=1000") == (">=", "1000")
    assert split_comparison("<5") == ("<", "5")
    assert split_comparison("1000") == ("=", "1000")


def test_matches_expression_ands_clauses():
    assert matches_expression(45, ">30<=90")
    assert not matches_expression(95, ">30<=90")
    assert matches_expression(30, "30")
    # No operators or numbers: substring on the day count
    assert not matches_expression(30, "abc")


def test_currency_filter_greater_or_equal(engine: TableEngine, dataset: Dataset):
    """'>=10000' keeps only bills of at least 10000"""
    rows = engine.filter_rows(dataset.rows, {CLOSING: ">=10000"})
    assert bills(rows) == ["INV-7", "BT/2024/03", "CE-19"]


def test_currency_filter_default_equality(engine: TableEngine, dataset: Dataset):
    assert bills(engine.filter_rows(dataset.rows, {CLOSING: "5000"})) == ["INV-1"]
    assert bills(engine.filter_rows(dataset.rows, {CLOSING: "=5000.004"})) == ["INV-1"]


def test_currency_filter_on_signed_column(engine: TableEngine, dataset: Dataset):
    assert bills(engine.filter_rows(dataset.rows, {OPENING: ">=1000"})) == ["ADV-2"]


def test_currency_filter_reads_rupee_formatting(engine: TableEngine):
    row = ("Acme", "Ravi", "X", "", "", "", "₹1,250.00", "Dr")
    assert engine.filter_rows([row], {CLOSING: ">1000"}) == [row]


def test_dropdown_filter_is_exact(engine: TableEngine, dataset: Dataset):
    assert bills(engine.filter_rows(dataset.rows, {LEDGER: "acme"})) == ["INV-1", "INV-7"]
    assert engine.filter_rows(dataset.rows, {LEDGER: "acm"}) == []


def test_text_filter_is_substring(engine: TableEngine, dataset: Dataset):
    assert bills(engine.filter_rows(dataset.rows, {BILL: "inv"})) == ["INV-1", "INV-7"]


def test_days_overdue_filter(engine: TableEngine, dataset: Dataset):
    """Rows with no days overdue never match"""
    rows = engine.filter_rows(dataset.rows, {DAYS_OVERDUE: ">30<=100"})
    assert bills(rows) == ["INV-7", "BT/2024/03"]


def test_filters_combine(engine: TableEngine, dataset: Dataset):
    rows = engine.filter_rows(dataset.rows, {SALESPERSON: "ravi", CLOSING: "<10000"})
    assert bills(rows) == ["INV-1", "DS-4"]


@pytest.mark.parametrize(
    "column, value, expected",
    [
        (LEDGER, "all", None),
        (LEDGER, "ALL", None),
        (LEDGER, "   ", None),
        (LEDGER, None, None),
        (LEDGER, "Acme", "acme"),
        (LEDGER, " Acme  ", "acme"),
        (CLOSING, "  >=1000 ", ">=1000"),
    ],
)
def test_normalize_filter_value(engine: TableEngine, column, value, expected):
    assert engine.normalize_filter_value(column, value) == expected


def test_padded_filter_value_still_matches(engine: TableEngine, dataset: Dataset):
    state = engine.apply_filter(ViewState(), LEDGER, " acme ")
    assert state.filters == {LEDGER: "acme"}
    assert bills(engine.filter_rows(dataset.rows, state.filters)) == ["INV-1", "INV-7"]


def test_apply_filter_rejects_unknown_column(engine: TableEngine):
    with pytest.raises(ValueError):
        engine.apply_filter(ViewState(), 42, "x")


def test_sort_by_days_overdue_puts_missing_last_both_ways(engine: TableEngine, dataset: Dataset):
    ascending = engine.sort_rows(dataset.rows, SortSpec(DAYS_OVERDUE, SortDirection.ASC))
    descending = engine.sort_rows(dataset.rows, SortSpec(DAYS_OVERDUE, SortDirection.DESC))

    assert bills(ascending) == ["INV-1", "BT/2024/03", "INV-7", "CE-19", "ADV-2", "DS-4"]
    assert bills(descending) == ["CE-19", "INV-7", "BT/2024/03", "INV-1", "ADV-2", "DS-4"]


def test_sort_by_date_column(engine: TableEngine, dataset: Dataset):
    rows = engine.sort_rows(dataset.rows, SortSpec(DUE_DATE, SortDirection.ASC))
    assert bills(rows) == ["CE-19", "INV-7", "BT/2024/03", "INV-1", "ADV-2", "DS-4"]


def test_sort_unparseable_dates_last(engine: TableEngine, dataset: Dataset):
    bad = ("Zed", "", "BAD", "", "soon", "0", "1", "Cr")
    rows = engine.sort_rows(list(dataset.rows) + [bad], SortSpec(DUE_DATE, SortDirection.DESC))
    assert bills(rows)[0] == "DS-4"
    assert bills(rows)[-1] == "BAD"


def test_sort_numeric_cells_numerically(engine: TableEngine, dataset: Dataset):
    rows = engine.sort_rows(dataset.rows, SortSpec(CLOSING, SortDirection.DESC))
    assert [row[CLOSING] for row in rows] == ["150000", "80000", "12500", "7500", "5000", "2500"]


def test_sort_text_case_insensitive_and_stable(engine: TableEngine, dataset: Dataset):
    rows = engine.sort_rows(dataset.rows, SortSpec(LEDGER, SortDirection.ASC))
    assert bills(rows) == ["INV-1", "INV-7", "BT/2024/03", "ADV-2", "CE-19", "DS-4"]


def test_paginate_clamps_page():
    rows = list(range(23))
    page = paginate(rows, 5, 10)
    assert (page.page, page.total_pages, page.total_rows) == (3, 3, 23)
    assert page.rows == [20, 21, 22]
    assert paginate(rows, 0, 10).page == 1


def test_paginate_empty_has_one_page():
    page = paginate([], 1, 50)
    assert (page.page, page.total_pages, page.rows) == (1, 1, [])


def test_view_state_transitions_reset_page():
    state = ViewState(page=4)
    assert state.with_filter(0, "acme").page == 1
    assert state.with_sort(0, SortDirection.DESC).page == 1
    assert state.with_page_size(10).page == 1
    assert state.with_page(2).page == 2
    # Original is untouched
    assert state.page == 4


def test_toggled_sort_flips_same_column():
    state = ViewState().toggled_sort(CLOSING)
    assert state.sort == SortSpec(CLOSING, SortDirection.ASC)
    state = state.toggled_sort(CLOSING)
    assert state.sort == SortSpec(CLOSING, SortDirection.DESC)
    state = state.toggled_sort(LEDGER)
    assert state.sort == SortSpec(LEDGER, SortDirection.ASC)


def test_with_filter_clears_on_empty():
    state = ViewState().with_filter(0, "acme").with_filter(0, None)
    assert state.filters == {}


def test_view_filters_sorts_and_pages(engine: TableEngine, dataset: Dataset):
    state = ViewState(page_size=2).with_sort(CLOSING, SortDirection.ASC).with_page(2)
    page = engine.view(dataset.rows, state)
    assert [row[CLOSING] for row in page.rows] == ["7500", "12500"]
    assert page.total_pages == 3


def test_column_options(engine: TableEngine, dataset: Dataset):
    assert engine.column_options(dataset.rows, SALESPERSON) == ["Meena", "Ravi"]
    assert engine.column_options(dataset.rows, LEDGER, "trad") == ["Bharat Traders"]


def test_table_scopes_are_independent():
    scopes = TableScopes(page_size=25)
    scopes.set(FLAT_SCOPE, ViewState(page=3, page_size=25))
    scopes.set("Acme", ViewState(filters={0: "x"}, page=2, page_size=25))

    assert scopes.get("Bharat Traders") == ViewState(page_size=25)
    scopes.reset_pages()
    assert scopes.get(FLAT_SCOPE).page == 1
    assert scopes.get("Acme").filters == {0: "x"}

    scopes.drop_groups()
    assert scopes.get("Acme") == ViewState(page_size=25)
    assert scopes.get(FLAT_SCOPE) == ViewState(page_size=25)
