"""
Fetch orchestration and per-session dashboard state.

ReceivablesService owns the fetch path (cache -> accounting system -> parse ->
normalize -> cache) and guarantees at most one outstanding fetch per logical
query: every fetch, a cache hit included, cancels the previous one for the
same key, and the superseded fetch's result or error is dropped. Bill
drilldowns go through the same registry, one per company.

ReceivablesSession holds what one user session sees: the last successfully
loaded dataset, the single last-error slot, dashboard selections and the
table view state of every scope.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from receivables_engine.config import settings
from receivables_engine.domain.aggregation import AggregationEngine
from receivables_engine.domain.aging import DEFAULT_AGING_BUCKETS, validate_bucket_config
from receivables_engine.domain.exceptions import (
    AuthenticationError,
    FetchCancelledError,
    FetchTimeoutError,
    ParseError,
    TransportError,
)
from receivables_engine.domain.models import (
    AgingBucket,
    AggregationFilters,
    BucketTotal,
    CompanyIdentity,
    Dataset,
    GroupAggregate,
    Inclusion,
    Row,
    Summary,
    TableTotals,
)
from receivables_engine.domain.normalizer import normalize
from receivables_engine.domain.schema import ColumnRole
from receivables_engine.domain.table_view import (
    FLAT_SCOPE,
    ColumnRef,
    Page,
    SortDirection,
    TableEngine,
    TableScopes,
    ViewState,
    paginate,
)
from receivables_engine.infrastructure.cache.result_cache import CacheKey, ResultCache
from receivables_engine.infrastructure.clients.tally import TallyClient
from receivables_engine.infrastructure.observability.logging import log_fetch
from receivables_engine.infrastructure.observability.metrics import fetch_latency_histogram, record_fetch

# (kind, location id, guid or company name, query detail)
InflightKey = Tuple[str, Optional[str], Optional[str], str]


class ReceivablesService:
    """Fetches, normalizes and caches receivables for any company"""

    def __init__(self, client: TallyClient, cache: ResultCache):
        self.client = client
        self.cache = cache
        self._inflight: Dict[InflightKey, asyncio.Task] = {}
        self._generations: Dict[InflightKey, int] = {}
        self._counter = itertools.count(1)

    @staticmethod
    def _inflight_key(company: CompanyIdentity, formula: Optional[str]) -> InflightKey:
        return ("receivables", company.location_id, company.guid or company.company, (formula or "").strip())

    @staticmethod
    def _drilldown_key(company: CompanyIdentity) -> InflightKey:
        # One drilldown per company at a time, whichever bill it is for
        return ("drilldown", company.location_id, company.guid or company.company, "")

    def _supersede(self, key: InflightKey) -> int:
        """Cancel the outstanding fetch for key, if any, and open a new generation"""
        previous = self._inflight.pop(key, None)
        if previous is not None and not previous.done():
            previous.cancel()
        generation = next(self._counter)
        self._generations[key] = generation
        return generation

    def _is_current(self, key: InflightKey, generation: int) -> bool:
        return self._generations.get(key) == generation

    def _retire(self, key: InflightKey, generation: int) -> None:
        if self._is_current(key, generation):
            del self._generations[key]

    def cancel(self, company: CompanyIdentity, formula: Optional[str] = None) -> None:
        """Abandon the outstanding fetch for a query; its outcome is dropped"""
        key = self._inflight_key(company, formula)
        self._retire(key, self._supersede(key))

    async def fetch_receivables(
        self,
        company: CompanyIdentity,
        formula: Optional[str] = None,
        *,
        token: Optional[str] = None,
        force_refresh: bool = False,
    ) -> Dataset:
        """
        Normalized receivables for a company and formula.

        Every call supersedes the outstanding fetch for the same query, a
        cache hit included. force_refresh skips the cache read but still
        writes the cache.

        Raises:
            FetchCancelledError: A newer fetch for the same query superseded this one
            AuthenticationError, TransportError, FetchTimeoutError, ParseError
        """
        key = self._inflight_key(company, formula)
        generation = self._supersede(key)

        cache_key = CacheKey.for_company(company, formula)
        if cache_key is not None and not force_refresh:
            entry = self.cache.get(cache_key)
            if entry is not None:
                self._retire(key, generation)
                return entry.dataset

        dataset = await self._run(key, generation, self._load(company, formula, token))
        if cache_key is not None:
            self.cache.put(cache_key, dataset)
        return dataset

    async def fetch_bill_drilldown(
        self,
        company: CompanyIdentity,
        ledger_name: str,
        bill_name: str,
        *,
        token: Optional[str] = None,
    ) -> Dataset:
        """
        Voucher lines behind one bill. Never cached.

        A new drilldown for the company supersedes the outstanding one.
        Raises like fetch_receivables.
        """
        key = self._drilldown_key(company)
        generation = self._supersede(key)
        return await self._run(key, generation, self._load_drilldown(company, ledger_name, bill_name, token))

    async def _run(self, key: InflightKey, generation: int, coro: Awaitable[Dataset]) -> Dataset:
        task = asyncio.ensure_future(coro)
        self._inflight[key] = task
        try:
            dataset = await task
        except asyncio.CancelledError:
            if self._is_current(key, generation):
                # Cancellation came from our own caller, not a newer fetch
                raise
            raise self._superseded()
        except Exception:
            if not self._is_current(key, generation):
                raise self._superseded()
            raise
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

        if not self._is_current(key, generation):
            raise self._superseded()
        self._retire(key, generation)
        return dataset

    @staticmethod
    def _superseded() -> FetchCancelledError:
        record_fetch("cancelled")
        return FetchCancelledError("Fetch superseded by a newer request")

    async def _load(self, company: CompanyIdentity, formula: Optional[str], token: Optional[str]) -> Dataset:
        start_time = time.time()
        cache_key = CacheKey.for_company(company, formula)
        label = cache_key.storage_key() if cache_key else "uncached"
        raw = await self._timed(self.client.get_receivables(company, formula, token))

        dataset = normalize(raw)
        record_fetch("success")
        log_fetch(label, "success", len(dataset.rows), (time.time() - start_time) * 1000)
        return dataset

    async def _load_drilldown(
        self, company: CompanyIdentity, ledger_name: str, bill_name: str, token: Optional[str]
    ) -> Dataset:
        start_time = time.time()
        dataset = await self._timed(self.client.get_bill_drilldown(company, ledger_name, bill_name, token))
        record_fetch("success")
        if dataset.is_empty():
            logging.info("Bill drilldown returned no lines", extra={"ledger": ledger_name, "bill": bill_name})
        duration_ms = (time.time() - start_time) * 1000
        log_fetch(f"drilldown_{ledger_name}_{bill_name}", "success", len(dataset.rows), duration_ms)
        return dataset

    @staticmethod
    async def _timed(call: Awaitable[Dataset]) -> Dataset:
        try:
            with fetch_latency_histogram.time():
                return await call
        except FetchTimeoutError:
            record_fetch("timeout")
            raise
        except TransportError:
            record_fetch("transport")
            raise
        except AuthenticationError:
            record_fetch("auth")
            raise
        except ParseError:
            record_fetch("invalid_response")
            raise

    def has_inflight(self, company: CompanyIdentity, formula: Optional[str] = None) -> bool:
        task = self._inflight.get(self._inflight_key(company, formula))
        return task is not None and not task.done()


@dataclass
class LastError:
    """The single error slot shown to the user"""

    kind: str  # transport | timeout | auth | invalid_response
    message: str
    retryable: bool


def error_from_exception(exc: Exception) -> LastError:
    if isinstance(exc, FetchTimeoutError):
        return LastError("timeout", "Request timed out, please try again", True)
    if isinstance(exc, TransportError):
        return LastError("transport", str(exc), True)
    if isinstance(exc, AuthenticationError):
        return LastError("auth", "Your session has expired. Please sign in again.", False)
    if isinstance(exc, ParseError):
        return LastError("invalid_response", "Invalid response from the accounting system", False)
    raise exc


class ReceivablesSession:
    """One user's dashboard: loaded dataset, selections and table views"""

    def __init__(
        self,
        service: ReceivablesService,
        bucket_config: Sequence[AgingBucket] = DEFAULT_AGING_BUCKETS,
        today_provider: Callable[[], date] = date.today,
        page_size: int | None = None,
        group_page_size: int | None = None,
    ):
        self.service = service
        self.bucket_config: List[AgingBucket] = list(bucket_config)
        self.today_provider = today_provider
        self.group_page_size = group_page_size or settings.group_page_size
        self.dataset = Dataset()
        self.last_error: Optional[LastError] = None
        self.filters = AggregationFilters()
        self.group_role = ColumnRole.LEDGER
        self.views = TableScopes(page_size=page_size or settings.table_page_size)
        self.company: Optional[CompanyIdentity] = None
        self._refresh_generation = 0
        self._active_query: Optional[Tuple[CompanyIdentity, str]] = None

    # Loading

    async def refresh(
        self,
        company: CompanyIdentity,
        formula: Optional[str] = None,
        *,
        token: Optional[str] = None,
        force_refresh: bool = False,
    ) -> bool:
        """
        Load receivables into the session.

        Failures land in last_error and the previous dataset stays in place.
        A newer refresh supersedes this one, whatever company it is for: the
        older fetch is cancelled and its outcome changes nothing. Returns True
        when a dataset was applied.
        """
        self._refresh_generation += 1
        generation = self._refresh_generation
        query = (company, (formula or "").strip())
        if self._active_query is not None and self._active_query != query:
            self.service.cancel(*self._active_query)
        self._active_query = query

        try:
            dataset = await self.service.fetch_receivables(
                company, formula, token=token, force_refresh=force_refresh
            )
        except FetchCancelledError:
            self._settle(generation)
            return False
        except (TransportError, AuthenticationError, ParseError) as e:
            if not self._settle(generation):
                return False
            self.last_error = error_from_exception(e)
            logging.warning(f"Receivables fetch failed: {e}", extra={"error_kind": self.last_error.kind})
            return False

        if not self._settle(generation):
            return False
        self.company = company
        self.dataset = dataset
        self.last_error = None
        self.views.drop_groups()
        self.views.reset_pages()
        if dataset.is_empty():
            logging.info("Receivables refresh returned no bills", extra={"company": company.company})
        return True

    def _settle(self, generation: int) -> bool:
        """True when generation is still the latest refresh; that refresh is then no longer active"""
        if generation != self._refresh_generation:
            return False
        self._active_query = None
        return True

    async def bill_drilldown(self, ledger_name: str, bill_name: str, *, token: Optional[str] = None) -> Dataset:
        """
        Voucher lines behind one bill of the loaded company.

        Raises:
            LookupError: Nothing has been loaded yet
            FetchCancelledError: A newer drilldown superseded this one
            AuthenticationError, TransportError, FetchTimeoutError, ParseError
        """
        if self.company is None:
            raise LookupError("No company loaded")
        return await self.service.fetch_bill_drilldown(self.company, ledger_name, bill_name, token=token)

    # Engines over the current dataset

    def aggregation(self) -> AggregationEngine:
        return AggregationEngine(self.dataset, self.bucket_config, self.today_provider())

    def table(self) -> TableEngine:
        return TableEngine(self.dataset, self.today_provider())

    # Selections

    def select_aging_bucket(self, label: Optional[str]) -> None:
        self._set_filters(AggregationFilters(label or None, self.filters.salesperson, self.filters.enabled_salespersons))

    def select_salesperson(self, name: Optional[str]) -> None:
        self._set_filters(AggregationFilters(self.filters.aging_bucket, name or None, self.filters.enabled_salespersons))

    def set_enabled_salespersons(self, inclusion: Inclusion) -> None:
        self._set_filters(AggregationFilters(self.filters.aging_bucket, self.filters.salesperson, inclusion))

    def _set_filters(self, filters: AggregationFilters) -> None:
        self.filters = filters
        self.views.reset_pages()

    def set_group_role(self, role: ColumnRole) -> None:
        if role is not self.group_role:
            self.group_role = role
            self.views.drop_groups()
            self.views.reset_pages()

    def set_aging_buckets(self, bucket_config: Sequence[AgingBucket]) -> None:
        """Replace the bucket config; raises InvalidBucketConfigError"""
        self.bucket_config = validate_bucket_config(bucket_config)
        if self.filters.aging_bucket not in {bucket.label for bucket in self.bucket_config}:
            self.select_aging_bucket(None)
        else:
            self.views.reset_pages()

    # Aggregates

    def summary(self) -> Summary:
        return self.aggregation().summary(self.filters)

    def group_by(self, role: ColumnRole | None = None) -> List[GroupAggregate]:
        return self.aggregation().group_by(role or self.group_role, self.filters)

    def aging_buckets(self) -> List[BucketTotal]:
        return self.aggregation().aging_buckets(self.filters)

    def salesperson_names(self) -> List[str]:
        return self.aggregation().salesperson_names()

    def group_page(self, page: int = 1) -> Page:
        """Groups of the current grouping role, a page at a time"""
        return paginate(self.group_by(), page, self.group_page_size)

    # Table views

    def scope_rows(self, scope: Optional[str] = FLAT_SCOPE) -> List[Row]:
        """Rows a scope starts from: all filtered rows, or one group's rows"""
        if scope is FLAT_SCOPE:
            return self.aggregation().filtered_rows(self.filters)
        for group in self.group_by():
            if group.key == scope:
                return group.rows
        return []

    def apply_filter(self, column: ColumnRef, value: Optional[str], scope: Optional[str] = FLAT_SCOPE) -> ViewState:
        state = self.table().apply_filter(self.views.get(scope), column, value)
        return self.views.set(scope, state)

    def clear_filters(self, scope: Optional[str] = FLAT_SCOPE) -> ViewState:
        return self.views.set(scope, self.views.get(scope).without_filters())

    def apply_sort(
        self, column: ColumnRef, direction: SortDirection | str, scope: Optional[str] = FLAT_SCOPE
    ) -> ViewState:
        column = self.table().validate_column(column)
        return self.views.set(scope, self.views.get(scope).with_sort(column, SortDirection(direction)))

    def toggle_sort(self, column: ColumnRef, scope: Optional[str] = FLAT_SCOPE) -> ViewState:
        column = self.table().validate_column(column)
        return self.views.set(scope, self.views.get(scope).toggled_sort(column))

    def page(self, page: int = 1, page_size: int | None = None, scope: Optional[str] = FLAT_SCOPE) -> Page:
        state = self.views.get(scope)
        if page_size is not None and page_size != state.page_size:
            state = state.with_page_size(page_size)
        else:
            state = state.with_page(page)
        self.views.set(scope, state)
        return self.table().view(self.scope_rows(scope), state)

    def view_rows(self, scope: Optional[str] = FLAT_SCOPE) -> List[Row]:
        """Every filtered and sorted row of a scope, unpaged"""
        return self.table().filtered_and_sorted(self.scope_rows(scope), self.views.get(scope))

    def table_totals(self, scope: Optional[str] = FLAT_SCOPE) -> TableTotals:
        return self.aggregation().table_totals(self.view_rows(scope))

    def column_options(self, column: int, search: str = "", scope: Optional[str] = FLAT_SCOPE) -> List[str]:
        """Dropdown options; the flat salesperson column lists the enabled salespersons"""
        schema = self.dataset.schema
        if scope is FLAT_SCOPE and column == schema.index(ColumnRole.SALESPERSON):
            enabled = self.filters.enabled_salespersons.members
            if enabled:
                needle = search.lower()
                return sorted(name for name in enabled if needle in name.lower())
        return self.table().column_options(self.scope_rows(scope), column, search)
