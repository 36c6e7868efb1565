"""Financial normalization: signed closing balance -> magnitude plus Dr/Cr direction"""

from receivables_engine.domain.models import ColumnDescriptor, Dataset
from receivables_engine.domain.schema import ColumnRole
from receivables_engine.utils.number_utils import parse_amount

DEBIT = "Dr"
CREDIT = "Cr"

DIRECTION_COLUMN = ColumnDescriptor(name="DrCr", alias="Dr/Cr", type="VarChar")


def direction_for(value: float) -> str:
    """Negative closing balances are debits (amount receivable)"""
    return DEBIT if value < 0 else CREDIT


def normalize(dataset: Dataset) -> Dataset:
    """
    Replace the closing balance with its absolute value and splice a Dr/Cr
    column in right after it.

    Returns the dataset unchanged when there is no closing-balance column or
    when the direction column is already present, so normalizing twice is a
    no-op.
    """
    schema = dataset.schema
    balance_index = schema.index(ColumnRole.CLOSING_BALANCE)
    if balance_index == -1 or schema.has(ColumnRole.DIRECTION):
        return dataset

    insert_at = balance_index + 1
    columns = dataset.columns[:insert_at] + (DIRECTION_COLUMN,) + dataset.columns[insert_at:]

    rows = []
    for row in dataset.rows:
        value = parse_amount(row[balance_index])
        magnitude = _format_magnitude(abs(value))
        rows.append(row[:balance_index] + (magnitude, direction_for(value)) + row[insert_at:])

    return Dataset(columns=columns, rows=tuple(rows))


def _format_magnitude(value: float) -> str:
    # 5000.0 -> "5000", 12.5 -> "12.5"
    return str(int(value)) if value.is_integer() else repr(value)
