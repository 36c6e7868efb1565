"""Aggregation engine - grouped totals, aging buckets and summary cards"""

from datetime import date
from typing import Dict, List, Optional, Sequence

from receivables_engine.domain.aging import DEFAULT_AGING_BUCKETS, bucket_for, days_overdue
from receivables_engine.domain.models import (
    UNASSIGNED_SALESPERSON,
    UNKNOWN_LEDGER,
    AgingBucket,
    AggregationFilters,
    BucketTotal,
    Dataset,
    GroupAggregate,
    InclusionMode,
    Row,
    Summary,
    TableTotals,
)
from receivables_engine.domain.normalizer import CREDIT, DEBIT
from receivables_engine.domain.schema import ColumnRole
from receivables_engine.utils.number_utils import parse_amount

GROUP_DEFAULTS = {
    ColumnRole.LEDGER: UNKNOWN_LEDGER,
    ColumnRole.SALESPERSON: UNASSIGNED_SALESPERSON,
}


class AggregationEngine:
    """
    Read-only aggregate queries over one normalized dataset.

    Every query first narrows the rows with AggregationFilters, applied as
    AND in this order:
    1. enabled salespersons (ONLY -> membership, NONE -> no rows at all)
    2. selected salesperson (drill-in)
    3. selected aging bucket
    Salesperson steps are skipped when the dataset has no salesperson column.
    """

    def __init__(
        self,
        dataset: Dataset,
        bucket_config: Sequence[AgingBucket] = DEFAULT_AGING_BUCKETS,
        today: date | None = None,
    ):
        self.dataset = dataset
        self.schema = dataset.schema
        self.bucket_config = list(bucket_config)
        self.today = today or date.today()

    # Row readers

    def salesperson_of(self, row: Row) -> str:
        index = self.schema.index(ColumnRole.SALESPERSON)
        if index == -1:
            return UNASSIGNED_SALESPERSON
        return row[index] or UNASSIGNED_SALESPERSON

    def days_overdue_of(self, row: Row) -> Optional[int]:
        index = self.schema.index(ColumnRole.DUE_DATE)
        if index == -1:
            return None
        return days_overdue(row[index], self.today)

    def bucket_of(self, row: Row) -> str:
        return bucket_for(self.days_overdue_of(row), self.bucket_config)

    def balance_of(self, row: Row) -> float:
        index = self.schema.index(ColumnRole.CLOSING_BALANCE)
        if index == -1:
            return 0.0
        return parse_amount(row[index])

    def direction_of(self, row: Row) -> str:
        index = self.schema.index(ColumnRole.DIRECTION)
        if index == -1:
            return ""
        return row[index]

    # Filtering

    def filtered_rows(self, filters: AggregationFilters = AggregationFilters()) -> List[Row]:
        rows: List[Row] = list(self.dataset.rows)

        if self.schema.has(ColumnRole.SALESPERSON):
            inclusion = filters.enabled_salespersons
            if inclusion.mode is InclusionMode.NONE:
                return []
            if inclusion.mode is InclusionMode.ONLY:
                rows = [row for row in rows if inclusion.admits(self.salesperson_of(row))]

            if filters.salesperson:
                rows = [row for row in rows if self.salesperson_of(row) == filters.salesperson]

        if filters.aging_bucket:
            rows = [row for row in rows if self.bucket_of(row) == filters.aging_bucket]

        return rows

    # Queries

    def group_by(
        self, role: ColumnRole, filters: AggregationFilters = AggregationFilters()
    ) -> List[GroupAggregate]:
        """Groups by ledger or salesperson, largest absolute balance first"""
        if role not in GROUP_DEFAULTS:
            raise ValueError(f"Cannot group by {role.value}")

        key_index = self.schema.index(role)
        if key_index == -1 or not self.schema.has(ColumnRole.CLOSING_BALANCE):
            return []

        default_key = GROUP_DEFAULTS[role]
        groups: Dict[str, GroupAggregate] = {}
        for row in self.filtered_rows(filters):
            key = row[key_index] or default_key
            group = groups.get(key)
            if group is None:
                group = groups[key] = GroupAggregate(key=key, total_balance=0.0, rows=[])
            group.total_balance += abs(self.balance_of(row))
            group.rows.append(row)

        return sorted(groups.values(), key=lambda g: g.total_balance, reverse=True)

    def aging_buckets(self, filters: AggregationFilters = AggregationFilters()) -> List[BucketTotal]:
        """One total per configured bucket, in configured order"""
        if not self.schema.has(ColumnRole.CLOSING_BALANCE) or not self.schema.has(ColumnRole.DIRECTION):
            return []

        totals: Dict[str, float] = {bucket.label: 0.0 for bucket in self.bucket_config}
        for row in self.filtered_rows(filters):
            magnitude = abs(self.balance_of(row))
            if magnitude <= 0:
                continue
            label = self.bucket_of(row)
            if label in totals:
                totals[label] += magnitude

        return [BucketTotal(label=label, value=value) for label, value in totals.items()]

    def summary(self, filters: AggregationFilters = AggregationFilters()) -> Summary:
        """
        Net balance and its within-due / overdue split.

        Debits subtract and credits add. Rows with no days overdue (due in the
        future, unparseable or no due-date column) count as within due.
        overdue percent = overdue debit / total debit * 100.
        """
        if not self.schema.has(ColumnRole.CLOSING_BALANCE) or not self.schema.has(ColumnRole.DIRECTION):
            return Summary()

        summary = Summary()
        overdue_debit = 0.0
        for row in self.filtered_rows(filters):
            amount = self.balance_of(row)
            direction = self.direction_of(row)
            signed = -amount if direction == DEBIT else amount
            summary.balance += signed

            if direction == DEBIT:
                summary.total_debit += amount
            elif direction == CREDIT:
                summary.total_credit += amount

            if self.days_overdue_of(row) is None:
                summary.within_due += signed
            else:
                summary.over_due += signed
                if direction == DEBIT:
                    overdue_debit += amount

        if summary.total_debit > 0:
            summary.over_due_percent = overdue_debit / summary.total_debit * 100
        return summary

    def table_totals(self, rows: Sequence[Row]) -> TableTotals:
        """Distinct customers/salespersons, bill count and balance totals for a row set"""
        ledger_index = self.schema.index(ColumnRole.LEDGER)
        salesperson_index = self.schema.index(ColumnRole.SALESPERSON)
        has_balance = self.schema.has(ColumnRole.CLOSING_BALANCE)

        customers = set()
        salespersons = set()
        totals = TableTotals(bill_count=len(rows))
        for row in rows:
            if ledger_index != -1 and row[ledger_index]:
                customers.add(row[ledger_index])
            if salesperson_index != -1 and row[salesperson_index]:
                salespersons.add(row[salesperson_index])
            if has_balance:
                amount = self.balance_of(row)
                magnitude = abs(amount)
                totals.total_closing_balance += magnitude
                direction = self.direction_of(row) or (CREDIT if amount >= 0 else DEBIT)
                totals.net_closing_balance += -magnitude if direction == DEBIT else magnitude

        totals.customer_count = len(customers)
        totals.salesperson_count = len(salespersons)
        return totals

    def salesperson_names(self) -> List[str]:
        """Distinct salespersons in the dataset, blanks read as Unassigned"""
        if not self.schema.has(ColumnRole.SALESPERSON):
            return []
        return sorted({self.salesperson_of(row) for row in self.dataset.rows})
