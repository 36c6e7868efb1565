"""Domain models - pure Python dataclasses representing receivables entities"""

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import FrozenSet, Iterable, List, Optional, Tuple

from receivables_engine.domain.schema import SchemaMap, resolve_schema

Row = Tuple[str, ...]

UNASSIGNED_SALESPERSON = "Unassigned"
UNKNOWN_LEDGER = "Unknown"


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column header from the accounting system; meaning is inferred from name/alias"""

    name: str
    alias: str = ""
    type: str = ""


@dataclass(frozen=True)
class Dataset:
    """One flat result set. Immutable; every row is aligned to the columns."""

    columns: Tuple[ColumnDescriptor, ...] = ()
    rows: Tuple[Row, ...] = ()

    def __post_init__(self) -> None:
        width = len(self.columns)
        for position, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(f"Row {position} has {len(row)} cells, expected {width}")

    @classmethod
    def build(cls, columns: Iterable[ColumnDescriptor], rows: Iterable[Iterable[str]]) -> "Dataset":
        return cls(
            columns=tuple(columns),
            rows=tuple(tuple("" if cell is None else str(cell) for cell in row) for row in rows),
        )

    @cached_property
    def schema(self) -> SchemaMap:
        """Column roles, resolved once per dataset"""
        return resolve_schema(self.columns)

    def is_empty(self) -> bool:
        return not self.rows


@dataclass(frozen=True)
class CompanyIdentity:
    """Connection identity of one company on one accounting-system location"""

    company: str
    location_id: Optional[str] = None
    guid: Optional[str] = None


@dataclass(frozen=True)
class CacheEntry:
    """Cached dataset plus its write time (epoch seconds)"""

    dataset: Dataset
    timestamp: float

    @property
    def columns(self) -> Tuple[ColumnDescriptor, ...]:
        return self.dataset.columns

    @property
    def rows(self) -> Tuple[Row, ...]:
        return self.dataset.rows


@dataclass(frozen=True)
class AgingBucket:
    """Day-count range; max_days=None is the trailing unbounded bucket"""

    label: str
    max_days: Optional[int]
    color: str = ""


class InclusionMode(str, Enum):
    ALL = "all"
    NONE = "none"
    ONLY = "only"


@dataclass(frozen=True)
class Inclusion:
    """
    Salesperson inclusion set.

    An explicit empty selection means nothing is selected and excludes every
    row; it is never read as "no filter". Use Inclusion.all() for that.
    """

    mode: InclusionMode = InclusionMode.ALL
    members: FrozenSet[str] = frozenset()

    @classmethod
    def all(cls) -> "Inclusion":
        return cls(InclusionMode.ALL)

    @classmethod
    def none(cls) -> "Inclusion":
        return cls(InclusionMode.NONE)

    @classmethod
    def only(cls, members: Iterable[str]) -> "Inclusion":
        selected = frozenset(members)
        if not selected:
            return cls.none()
        return cls(InclusionMode.ONLY, selected)

    @classmethod
    def from_selection(cls, members: Optional[Iterable[str]]) -> "Inclusion":
        """None -> ALL, empty -> NONE, otherwise ONLY(members)"""
        if members is None:
            return cls.all()
        return cls.only(members)

    def admits(self, salesperson: str) -> bool:
        if self.mode is InclusionMode.ALL:
            return True
        if self.mode is InclusionMode.NONE:
            return False
        return salesperson in self.members


@dataclass(frozen=True)
class AggregationFilters:
    """Active dashboard selections applied before any aggregation"""

    aging_bucket: Optional[str] = None
    salesperson: Optional[str] = None
    enabled_salespersons: Inclusion = field(default_factory=Inclusion.all)


@dataclass
class GroupAggregate:
    """Rows sharing one ledger or salesperson, with their absolute balance total"""

    key: str
    total_balance: float
    rows: List[Row]

    @property
    def bill_count(self) -> int:
        return len(self.rows)


@dataclass
class BucketTotal:
    label: str
    value: float


@dataclass
class Summary:
    """Dashboard summary cards"""

    balance: float = 0.0
    total_debit: float = 0.0
    total_credit: float = 0.0
    within_due: float = 0.0
    over_due: float = 0.0
    over_due_percent: float = 0.0


@dataclass
class TableTotals:
    """Footer totals for a table view"""

    customer_count: int = 0
    salesperson_count: int = 0
    bill_count: int = 0
    total_closing_balance: float = 0.0
    net_closing_balance: float = 0.0
