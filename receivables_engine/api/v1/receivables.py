"""/v1/receivables - dashboard endpoints over one user session"""

import time
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import sessionmaker

from receivables_engine.api.v1.schemas import (
    AgingResponse,
    BucketConfigRequest,
    BucketSchema,
    ColumnSchema,
    DrilldownResponse,
    ErrorSchema,
    FilterRequest,
    GroupPageResponse,
    GroupSchema,
    RefreshRequest,
    RefreshResponse,
    SelectionRequest,
    SelectionResponse,
    SortRequest,
    SummaryResponse,
    TablePageResponse,
    TotalsResponse,
    ViewStateResponse,
)
from receivables_engine.api.dependencies import (
    SessionRegistry,
    get_receivables_session,
    get_request_id,
    get_session_id,
    get_session_registry,
    get_token,
)
from receivables_engine.domain.exceptions import (
    AuthenticationError,
    CacheStoreError,
    FetchCancelledError,
    InvalidBucketConfigError,
    ParseError,
    TransportError,
)
from receivables_engine.domain.models import AgingBucket, CompanyIdentity, Inclusion
from receivables_engine.domain.schema import ColumnRole
from receivables_engine.domain.table_view import ViewState
from receivables_engine.infrastructure.database.session import get_session_factory
from receivables_engine.services.receivables import LastError, ReceivablesSession, error_from_exception
from receivables_engine.utils.number_utils import format_compact_currency, format_currency

router = APIRouter(prefix="/receivables")

ERROR_STATUS = {
    "auth": 401,
    "timeout": 504,
    "transport": 503,
    "invalid_response": 502,
}


def _error_schema(error: Optional[LastError]) -> Optional[ErrorSchema]:
    if error is None:
        return None
    return ErrorSchema(kind=error.kind, message=error.message, retryable=error.retryable)


def _columns(session: ReceivablesSession) -> List[ColumnSchema]:
    return [ColumnSchema(name=c.name, alias=c.alias, type=c.type) for c in session.dataset.columns]


def _view_state(state: ViewState) -> ViewStateResponse:
    return ViewStateResponse(
        filters={str(column): value for column, value in state.filters.items()},
        sort_column=state.sort.column if state.sort else None,
        sort_direction=state.sort.direction if state.sort else None,
        page=state.page,
        page_size=state.page_size,
    )


def _selection(session: ReceivablesSession) -> SelectionResponse:
    inclusion = session.filters.enabled_salespersons
    return SelectionResponse(
        aging_bucket=session.filters.aging_bucket,
        salesperson=session.filters.salesperson,
        enabled_mode=inclusion.mode.value,
        enabled_salespersons=sorted(inclusion.members),
        group_role=session.group_role,
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_receivables(
    request_body: RefreshRequest,
    request: Request,
    session: ReceivablesSession = Depends(get_receivables_session),
    token: Optional[str] = Depends(get_token),
):
    """
    Load receivables into the session.

    Served from cache when fresh unless force_refresh is set. A failed fetch
    keeps the previously loaded data and maps to an HTTP error; a fetch
    superseded by a newer one returns applied=false.
    """
    start_time = time.time()
    request_id = get_request_id(request)
    company = CompanyIdentity(
        company=request_body.company,
        location_id=request_body.location_id,
        guid=request_body.guid,
    )

    previous_error = session.last_error
    applied = await session.refresh(
        company, request_body.formula, token=token, force_refresh=request_body.force_refresh
    )

    error = session.last_error
    if not applied and error is not None and error is not previous_error:
        logging.error(f"Receivables refresh failed: {error.message}", extra={"request_id": request_id})
        raise HTTPException(status_code=ERROR_STATUS.get(error.kind, 500), detail=error.message)

    logging.info(
        "Receivables refresh handled",
        extra={
            "request_id": request_id,
            "applied": applied,
            "row_count": len(session.dataset.rows),
            "duration_ms": (time.time() - start_time) * 1000,
        },
    )
    return RefreshResponse(
        applied=applied,
        row_count=len(session.dataset.rows),
        columns=_columns(session),
        last_error=_error_schema(session.last_error),
    )


@router.get("/summary", response_model=SummaryResponse)
def get_summary(session: ReceivablesSession = Depends(get_receivables_session)):
    summary = session.summary()
    return SummaryResponse(
        balance=summary.balance,
        total_debit=summary.total_debit,
        total_credit=summary.total_credit,
        within_due=summary.within_due,
        over_due=summary.over_due,
        over_due_percent=summary.over_due_percent,
        balance_display=format_compact_currency(summary.balance),
        within_due_display=format_compact_currency(summary.within_due),
        over_due_display=format_compact_currency(summary.over_due),
        total_debit_display=format_currency(summary.total_debit),
        total_credit_display=format_currency(summary.total_credit),
    )


@router.get("/groups", response_model=GroupPageResponse)
def get_groups(
    role: Optional[ColumnRole] = Query(None, description="Ledger or Salesperson; defaults to the session's grouping"),
    page: int = Query(1, ge=1),
    session: ReceivablesSession = Depends(get_receivables_session),
):
    if role is not None:
        if role not in (ColumnRole.LEDGER, ColumnRole.SALESPERSON):
            raise HTTPException(status_code=422, detail=f"Cannot group by {role.value}")
        session.set_group_role(role)

    group_page = session.group_page(page)
    return GroupPageResponse(
        role=session.group_role,
        groups=[
            GroupSchema(
                key=group.key,
                total_balance=group.total_balance,
                total_balance_display=format_currency(group.total_balance),
                bill_count=group.bill_count,
            )
            for group in group_page.rows
        ],
        page=group_page.page,
        total_pages=group_page.total_pages,
        total_groups=group_page.total_rows,
    )


@router.get("/aging", response_model=AgingResponse)
def get_aging(session: ReceivablesSession = Depends(get_receivables_session)):
    colors = {bucket.label: bucket.color for bucket in session.bucket_config}
    return AgingResponse(
        buckets=[
            BucketSchema(label=total.label, value=total.value, color=colors.get(total.label, ""))
            for total in session.aging_buckets()
        ]
    )


@router.get("/totals", response_model=TotalsResponse)
def get_totals(
    scope: Optional[str] = Query(None, description="Group key; omit for the flat table"),
    session: ReceivablesSession = Depends(get_receivables_session),
):
    totals = session.table_totals(scope)
    return TotalsResponse(
        customer_count=totals.customer_count,
        salesperson_count=totals.salesperson_count,
        bill_count=totals.bill_count,
        total_closing_balance=totals.total_closing_balance,
        net_closing_balance=totals.net_closing_balance,
        total_closing_balance_display=format_currency(totals.total_closing_balance),
    )


@router.put("/selection", response_model=SelectionResponse)
def put_selection(
    request_body: SelectionRequest,
    session: ReceivablesSession = Depends(get_receivables_session),
):
    """Replace the dashboard selections; every table scope returns to page 1"""
    if request_body.group_role is not None:
        if request_body.group_role not in (ColumnRole.LEDGER, ColumnRole.SALESPERSON):
            raise HTTPException(status_code=422, detail=f"Cannot group by {request_body.group_role.value}")
        session.set_group_role(request_body.group_role)

    session.set_enabled_salespersons(Inclusion.from_selection(request_body.enabled_salespersons))
    session.select_salesperson(request_body.salesperson)
    session.select_aging_bucket(request_body.aging_bucket)
    return _selection(session)


@router.put("/aging-buckets", response_model=AgingResponse)
def put_aging_buckets(
    request_body: BucketConfigRequest,
    session: ReceivablesSession = Depends(get_receivables_session),
):
    try:
        session.set_aging_buckets(
            [AgingBucket(label=item.label, max_days=item.max_days, color=item.color) for item in request_body.buckets]
        )
    except InvalidBucketConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return get_aging(session)


@router.post("/table/filter", response_model=ViewStateResponse)
def post_table_filter(
    request_body: FilterRequest,
    session: ReceivablesSession = Depends(get_receivables_session),
):
    try:
        state = session.apply_filter(request_body.column, request_body.value, request_body.scope)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _view_state(state)


@router.post("/table/sort", response_model=ViewStateResponse)
def post_table_sort(
    request_body: SortRequest,
    session: ReceivablesSession = Depends(get_receivables_session),
):
    try:
        if request_body.direction is None:
            state = session.toggle_sort(request_body.column, request_body.scope)
        else:
            state = session.apply_sort(request_body.column, request_body.direction, request_body.scope)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return _view_state(state)


@router.get("/table/page", response_model=TablePageResponse)
def get_table_page(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=500),
    scope: Optional[str] = Query(None, description="Group key; omit for the flat table"),
    session: ReceivablesSession = Depends(get_receivables_session),
):
    table_page = session.page(page, page_size, scope)
    return TablePageResponse(
        columns=_columns(session),
        rows=[list(row) for row in table_page.rows],
        page=table_page.page,
        page_size=table_page.page_size,
        total_rows=table_page.total_rows,
        total_pages=table_page.total_pages,
    )


@router.get("/table/options", response_model=List[str])
def get_column_options(
    column: int = Query(..., ge=0),
    search: str = Query(""),
    scope: Optional[str] = Query(None),
    session: ReceivablesSession = Depends(get_receivables_session),
):
    """Distinct values for a dropdown filter"""
    try:
        return session.column_options(column, search, scope)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/drilldown", response_model=DrilldownResponse)
async def get_bill_drilldown(
    request: Request,
    ledger: str = Query(..., min_length=1),
    bill: str = Query(..., min_length=1),
    session: ReceivablesSession = Depends(get_receivables_session),
    token: Optional[str] = Depends(get_token),
):
    """
    Opening balance and voucher lines behind one bill of the loaded company.

    Drilldown failures do not touch the session's last error.
    """
    try:
        lines = await session.bill_drilldown(ledger, bill, token=token)
    except LookupError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except FetchCancelledError:
        raise HTTPException(status_code=409, detail="Drilldown superseded by a newer request")
    except (TransportError, AuthenticationError, ParseError) as e:
        error = error_from_exception(e)
        logging.error(f"Bill drilldown failed: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=ERROR_STATUS.get(error.kind, 500), detail=error.message)

    return DrilldownResponse(
        ledger=ledger,
        bill=bill,
        columns=[ColumnSchema(name=c.name, alias=c.alias, type=c.type) for c in lines.columns],
        rows=[list(row) for row in lines.rows],
    )


@router.delete("/session")
def delete_session(
    session_id: str = Depends(get_session_id),
    sessions: SessionRegistry = Depends(get_session_registry),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    """End the session and drop its durable cache entries"""
    try:
        removed = sessions.drop(session_id, session_factory)
    except CacheStoreError as e:
        logging.error(f"Failed to clear session cache: {e}", extra={"session_id": session_id})
        raise HTTPException(status_code=503, detail="Cache store unavailable")
    return {"session_id": session_id, "entries_removed": removed}
