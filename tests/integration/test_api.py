"""Integration tests for API endpoints"""

import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient
from receivables_engine.api.dependencies import SessionRegistry
from receivables_engine.domain.exceptions import FetchTimeoutError, ParseError, TransportError

HEADERS = {"X-Session-ID": "session-1", "Authorization": "Bearer token-1"}
REFRESH_BODY = {"company": "Acme Group", "location_id": "7", "guid": "guid-1"}


@pytest.fixture
def loaded(client: TestClient) -> TestClient:
    """Client whose session already holds the stub receivables"""
    response = client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS)
    assert response.status_code == 200
    return client


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(loaded: TestClient):
    """Test Prometheus metrics endpoint"""
    response = loaded.get("/metrics")
    assert response.status_code == 200
    assert "receivables_fetch_total" in response.text
    assert "receivables_cache_lookups_total" in response.text


def test_request_id_header(client: TestClient):
    response = client.get("/health")
    assert response.headers["X-Request-ID"]


def test_refresh_loads_and_caches(client: TestClient, tally_requests):
    """Second refresh is served from cache without calling the accounting system"""
    response = client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["applied"] is True
    assert data["row_count"] == 6
    assert data["columns"][7]["name"] == "DrCr"
    assert data["last_error"] is None

    client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS)
    assert len(tally_requests) == 1

    client.post("/v1/receivables/refresh", json={**REFRESH_BODY, "force_refresh": True}, headers=HEADERS)
    assert len(tally_requests) == 2


def test_durable_tier_survives_session_restart(
    client: TestClient, registry: SessionRegistry, tally_requests
):
    """A restarted process finds the session's cached data in the database"""
    client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS)
    registry.memory.clear()
    registry._sessions.clear()

    response = client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS)
    assert response.json()["row_count"] == 6
    assert len(tally_requests) == 1


def test_session_header_required(client: TestClient):
    response = client.get("/v1/receivables/summary")
    assert response.status_code == 422


def test_expired_token_maps_to_401(client: TestClient):
    headers = {**HEADERS, "Authorization": "Bearer expired"}
    response = client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=headers)
    assert response.status_code == 401


def test_missing_token_maps_to_401(client: TestClient):
    response = client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers={"X-Session-ID": "s"})
    assert response.status_code == 401


@pytest.mark.parametrize(
    "error, status",
    [
        (TransportError("down"), 503),
        (FetchTimeoutError("slow"), 504),
        (ParseError("bad"), 502),
    ],
)
def test_fetch_errors_map_to_statuses(client: TestClient, error, status):
    with patch(
        "receivables_engine.infrastructure.clients.tally.TallyClient.get_receivables",
        new=AsyncMock(side_effect=error),
    ):
        response = client.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS)
    assert response.status_code == status


def test_failed_refresh_keeps_loaded_data(loaded: TestClient):
    with patch(
        "receivables_engine.infrastructure.clients.tally.TallyClient.get_receivables",
        new=AsyncMock(side_effect=TransportError("down")),
    ):
        response = loaded.post(
            "/v1/receivables/refresh", json={**REFRESH_BODY, "force_refresh": True}, headers=HEADERS
        )
    assert response.status_code == 503

    summary = loaded.get("/v1/receivables/summary", headers=HEADERS).json()
    assert summary["balance"] == pytest.approx(-252500)


def test_summary(loaded: TestClient):
    data = loaded.get("/v1/receivables/summary", headers=HEADERS).json()

    assert data["total_debit"] == pytest.approx(255000)
    assert data["total_credit"] == pytest.approx(2500)
    assert data["within_due"] == pytest.approx(-5000)
    assert data["balance_display"].endswith(" L Dr")
    assert data["total_debit_display"] == "₹2,55,000.00"


def test_summary_before_refresh_is_zero(client: TestClient):
    data = client.get("/v1/receivables/summary", headers=HEADERS).json()
    assert data["balance"] == 0
    assert data["balance_display"] == "₹0.00"


def test_groups_paged_by_role(loaded: TestClient):
    data = loaded.get("/v1/receivables/groups", params={"role": "Salesperson"}, headers=HEADERS).json()

    assert data["role"] == "Salesperson"
    assert [g["key"] for g in data["groups"]] == ["Unassigned", "Meena", "Ravi"]
    assert data["groups"][1]["bill_count"] == 2
    assert data["total_groups"] == 3


def test_groups_rejects_non_grouping_role(loaded: TestClient):
    response = loaded.get("/v1/receivables/groups", params={"role": "BillName"}, headers=HEADERS)
    assert response.status_code == 422


def test_aging(loaded: TestClient):
    data = loaded.get("/v1/receivables/aging", headers=HEADERS).json()
    assert [(b["label"], b["value"]) for b in data["buckets"]] == [
        ("0-30", 15000),
        ("30-90", 80000),
        ("90-180", 12500),
        ("180-360", 150000),
        (">360", 0),
    ]
    assert data["buckets"][0]["color"]


def test_selection_empty_set_excludes_everything(loaded: TestClient):
    response = loaded.put(
        "/v1/receivables/selection", json={"enabled_salespersons": []}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json()["enabled_mode"] == "none"

    totals = loaded.get("/v1/receivables/totals", headers=HEADERS).json()
    assert totals["bill_count"] == 0

    loaded.put("/v1/receivables/selection", json={"enabled_salespersons": None}, headers=HEADERS)
    totals = loaded.get("/v1/receivables/totals", headers=HEADERS).json()
    assert totals["bill_count"] == 6


def test_selection_bucket_and_salesperson(loaded: TestClient):
    loaded.put(
        "/v1/receivables/selection",
        json={"aging_bucket": "0-30", "salesperson": "Ravi"},
        headers=HEADERS,
    )
    totals = loaded.get("/v1/receivables/totals", headers=HEADERS).json()
    assert totals["bill_count"] == 2
    assert totals["total_closing_balance"] == pytest.approx(12500)


def test_aging_bucket_config(loaded: TestClient):
    body = {"buckets": [{"label": "Due", "max_days": 60}, {"label": "Late", "max_days": None}]}
    response = loaded.put("/v1/receivables/aging-buckets", json=body, headers=HEADERS)
    assert response.status_code == 200
    assert [(b["label"], b["value"]) for b in response.json()["buckets"]] == [("Due", 95000), ("Late", 162500)]

    bad = {"buckets": [{"label": "Due", "max_days": 60}]}
    response = loaded.put("/v1/receivables/aging-buckets", json=bad, headers=HEADERS)
    assert response.status_code == 422


def test_table_filter_sort_and_page(loaded: TestClient):
    response = loaded.post(
        "/v1/receivables/table/filter", json={"column": 6, "value": ">=1000"}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json()["filters"] == {"6": ">=1000"}

    response = loaded.post(
        "/v1/receivables/table/sort", json={"column": "daysOverdue", "direction": "desc"}, headers=HEADERS
    )
    assert response.json()["sort_direction"] == "desc"

    page = loaded.get("/v1/receivables/table/page", params={"page_size": 4}, headers=HEADERS).json()
    assert page["total_rows"] == 6
    assert page["total_pages"] == 2
    assert [row[2] for row in page["rows"]] == ["CE-19", "INV-7", "BT/2024/03", "INV-1"]

    page = loaded.get("/v1/receivables/table/page", params={"page": 9}, headers=HEADERS).json()
    assert page["page"] == 2
    assert [row[2] for row in page["rows"]] == ["ADV-2", "DS-4"]


def test_table_sort_toggles_without_direction(loaded: TestClient):
    first = loaded.post("/v1/receivables/table/sort", json={"column": 0}, headers=HEADERS).json()
    second = loaded.post("/v1/receivables/table/sort", json={"column": 0}, headers=HEADERS).json()
    assert (first["sort_direction"], second["sort_direction"]) == ("asc", "desc")


def test_table_unknown_column_is_422(loaded: TestClient):
    response = loaded.post("/v1/receivables/table/filter", json={"column": 99, "value": "x"}, headers=HEADERS)
    assert response.status_code == 422


def test_group_scope_table(loaded: TestClient):
    page = loaded.get("/v1/receivables/table/page", params={"scope": "Acme"}, headers=HEADERS).json()
    assert [row[2] for row in page["rows"]] == ["INV-1", "INV-7"]

    totals = loaded.get("/v1/receivables/totals", params={"scope": "Acme"}, headers=HEADERS).json()
    assert totals["customer_count"] == 1
    assert totals["net_closing_balance"] == pytest.approx(-17500)


def test_column_options(loaded: TestClient):
    response = loaded.get("/v1/receivables/table/options", params={"column": 0, "search": "co"}, headers=HEADERS)
    assert response.json() == ["Coastal Exports"]


def test_delete_session_clears_durable_tier(loaded: TestClient, registry: SessionRegistry, tally_requests):
    response = loaded.delete("/v1/receivables/session", headers=HEADERS)
    assert response.status_code == 200
    assert response.json()["entries_removed"] == 1
    assert "session-1" not in registry

    registry.memory.clear()
    loaded.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS)
    assert len(tally_requests) == 2


def test_bill_drilldown(loaded: TestClient, tally_requests):
    response = loaded.get("/v1/receivables/drilldown", params={"ledger": "Acme", "bill": "INV-1"}, headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["bill"] == "INV-1"
    assert [c["name"] for c in data["columns"]][-1] == "Customer Balance"
    assert [row[3] for row in data["rows"]] == ["Sales", "Receipt"]
    assert tally_requests[-1].headers["x-guid"] == "guid-1"
    assert b'$Name=&quot;INV-1&quot;' in tally_requests[-1].content


def test_bill_drilldown_before_refresh_is_409(client: TestClient):
    response = client.get("/v1/receivables/drilldown", params={"ledger": "Acme", "bill": "INV-1"}, headers=HEADERS)
    assert response.status_code == 409


def test_bill_drilldown_failure_leaves_session_error_alone(loaded: TestClient):
    with patch(
        "receivables_engine.infrastructure.clients.tally.TallyClient.get_bill_drilldown",
        new=AsyncMock(side_effect=FetchTimeoutError("slow")),
    ):
        response = loaded.get(
            "/v1/receivables/drilldown", params={"ledger": "Acme", "bill": "INV-1"}, headers=HEADERS
        )
    assert response.status_code == 504

    refresh = loaded.post("/v1/receivables/refresh", json=REFRESH_BODY, headers=HEADERS).json()
    assert refresh["last_error"] is None
