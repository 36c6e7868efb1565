"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from typing import List, Optional, Union

from receivables_engine.domain.schema import ColumnRole
from receivables_engine.domain.table_view import SortDirection


class RefreshRequest(BaseModel):
    """Request body for POST /v1/receivables/refresh"""

    company: str = Field(..., min_length=1, description="Company name as known to the accounting system")
    location_id: Optional[str] = Field(None, description="Accounting system location id")
    guid: Optional[str] = Field(None, description="Company GUID")
    formula: Optional[str] = Field(None, description="Salesperson formula override")
    force_refresh: bool = False


class ColumnSchema(BaseModel):
    name: str
    alias: str = ""
    type: str = ""


class ErrorSchema(BaseModel):
    """The session's last fetch error"""

    kind: str
    message: str
    retryable: bool


class RefreshResponse(BaseModel):
    """Response for POST /v1/receivables/refresh"""

    applied: bool
    row_count: int
    columns: List[ColumnSchema]
    last_error: Optional[ErrorSchema] = None


class SummaryResponse(BaseModel):
    """Response for GET /v1/receivables/summary; *_display fields are formatted for cards"""

    balance: float
    total_debit: float
    total_credit: float
    within_due: float
    over_due: float
    over_due_percent: float
    balance_display: str
    within_due_display: str
    over_due_display: str
    total_debit_display: str
    total_credit_display: str


class GroupSchema(BaseModel):
    key: str
    total_balance: float
    total_balance_display: str
    bill_count: int


class GroupPageResponse(BaseModel):
    """Response for GET /v1/receivables/groups"""

    role: ColumnRole
    groups: List[GroupSchema]
    page: int
    total_pages: int
    total_groups: int


class BucketSchema(BaseModel):
    label: str
    value: float
    color: str = ""


class AgingResponse(BaseModel):
    """Response for GET /v1/receivables/aging"""

    buckets: List[BucketSchema]


class TotalsResponse(BaseModel):
    """Response for GET /v1/receivables/totals"""

    customer_count: int
    salesperson_count: int
    bill_count: int
    total_closing_balance: float
    net_closing_balance: float
    total_closing_balance_display: str


class SelectionRequest(BaseModel):
    """
    Request body for PUT /v1/receivables/selection.

    enabled_salespersons: null means every salesperson, [] means none.
    """

    aging_bucket: Optional[str] = None
    salesperson: Optional[str] = None
    enabled_salespersons: Optional[List[str]] = None
    group_role: Optional[ColumnRole] = None


class SelectionResponse(BaseModel):
    aging_bucket: Optional[str]
    salesperson: Optional[str]
    enabled_mode: str
    enabled_salespersons: List[str]
    group_role: ColumnRole


class BucketConfigItem(BaseModel):
    label: str = Field(..., min_length=1)
    max_days: Optional[int] = Field(None, description="Upper bound in days; null for the trailing bucket")
    color: str = ""


class BucketConfigRequest(BaseModel):
    """Request body for PUT /v1/receivables/aging-buckets"""

    buckets: List[BucketConfigItem]


class FilterRequest(BaseModel):
    """Request body for POST /v1/receivables/table/filter; value null/''/'all' clears"""

    column: Union[int, str]
    value: Optional[str] = None
    scope: Optional[str] = Field(None, description="Group key; null for the flat table")


class SortRequest(BaseModel):
    """Request body for POST /v1/receivables/table/sort; direction null toggles"""

    column: Union[int, str]
    direction: Optional[SortDirection] = None
    scope: Optional[str] = None


class ViewStateResponse(BaseModel):
    filters: dict
    sort_column: Optional[Union[int, str]] = None
    sort_direction: Optional[SortDirection] = None
    page: int
    page_size: int


class TablePageResponse(BaseModel):
    """Response for GET /v1/receivables/table/page"""

    columns: List[ColumnSchema]
    rows: List[List[str]]
    page: int
    page_size: int
    total_rows: int
    total_pages: int


class DrilldownResponse(BaseModel):
    """Response for GET /v1/receivables/drilldown"""

    ledger: str
    bill: str
    columns: List[ColumnSchema]
    rows: List[List[str]]
