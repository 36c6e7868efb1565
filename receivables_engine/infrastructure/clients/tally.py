"""Tally HTTP client for fetching receivable bills and bill drilldowns"""

import asyncio
import time
import httpx
from receivables_engine.domain.models import CompanyIdentity, Dataset
from receivables_engine.domain.exceptions import AuthenticationError, FetchTimeoutError, TransportError
from receivables_engine.infrastructure.clients.tally_xml import (
    build_bill_drilldown_request,
    build_receivables_request,
    clean_and_escape_for_xml,
    parse_tabular_response,
)
from receivables_engine.config import settings

AUTH_FAILURE_STATUSES = (401, 403)


class TallyClient:
    """Client for the accounting system's tabular data endpoint"""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.tally_api_base
        self.timeout = timeout or settings.fetch_timeout_seconds
        self.transport = transport

    async def get_receivables(self, company: CompanyIdentity, formula: str | None, token: str | None) -> Dataset:
        """
        Fetch the raw (not yet normalized) receivables dataset for a company.

        Raises:
            AuthenticationError: No token, or the server answered 401/403
            FetchTimeoutError: No complete response within the timeout
            TransportError: Network failure or any other HTTP error
            ParseError: Response body is not a valid tabular document
        """
        return await self._post_tabular(company, build_receivables_request(company.company, formula), token)

    async def get_bill_drilldown(
        self, company: CompanyIdentity, ledger_name: str, bill_name: str, token: str | None
    ) -> Dataset:
        """Opening balance and voucher lines of one bill; raises like get_receivables"""
        return await self._post_tabular(
            company, build_bill_drilldown_request(company.company, ledger_name, bill_name), token
        )

    async def _post_tabular(self, company: CompanyIdentity, body: str, token: str | None) -> Dataset:
        if not token:
            raise AuthenticationError("No authentication token found")

        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/xml",
            "x-tallyloc-id": str(company.location_id or ""),
            "x-company": clean_and_escape_for_xml(company.company),
            "x-guid": company.guid or "",
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                # httpx times each phase separately; the deadline covers the whole exchange
                response = await asyncio.wait_for(
                    client.post(
                        f"{self.base_url}{settings.tally_data_path}",
                        params={"ts": int(time.time() * 1000)},
                        headers=headers,
                        content=body,
                    ),
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except (httpx.TimeoutException, asyncio.TimeoutError) as e:
                raise FetchTimeoutError(f"Request timed out after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status in AUTH_FAILURE_STATUSES:
                    raise AuthenticationError("Session expired, please sign in again") from e
                raise TransportError(f"HTTP error! status: {status} - {e.response.text}") from e
            except httpx.RequestError as e:
                raise TransportError(f"Accounting system unreachable: {e}") from e

        return parse_tabular_response(response.text)
