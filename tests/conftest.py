"""Pytest fixtures for testing"""

import pytest
from datetime import date
from pathlib import Path
from typing import Generator, List, Sequence

import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from receivables_engine.api.dependencies import (
    SessionRegistry,
    get_session_registry,
    get_tally_client,
)
from receivables_engine.api.main import create_app
from receivables_engine.domain.models import ColumnDescriptor, Dataset
from receivables_engine.infrastructure.clients.tally import TallyClient
from receivables_engine.infrastructure.database.models import Base
from receivables_engine.infrastructure.database.session import get_session_factory

STUB_FILE = Path(__file__).resolve().parents[1] / "mock" / "tally_stub" / "receivables_default.xml"
DRILLDOWN_STUB_FILE = STUB_FILE.with_name("receivables_drilldown.xml")

TODAY = date(2024, 5, 15)

RECEIVABLE_COLUMNS = [
    ColumnDescriptor("LedgerName", "LedgerName", "VarChar"),
    ColumnDescriptor("SalesPerson", "SalesPerson", "VarChar"),
    ColumnDescriptor("BillName", "BillName", "VarChar"),
    ColumnDescriptor("BillDate", "BillDate", "Date"),
    ColumnDescriptor("DueDate", "DueDate", "Date"),
    ColumnDescriptor("OpeningBalance", "OpeningBalance", "Amount"),
    ColumnDescriptor("ClosingBalance", "ClosingBalance", "Amount"),
]


def tally_xml(columns: Sequence[ColumnDescriptor], rows: Sequence[Sequence[str]]) -> str:
    """Render a tabular response the way the accounting system does"""
    header = "".join(
        f"<COL><NAME>{c.name}</NAME><ALIAS>{c.alias}</ALIAS><TYPE>{c.type}</TYPE></COL>" for c in columns
    )
    body = "".join("<ROW>" + "".join(f"<COL>{cell}</COL>" for cell in row) + "</ROW>" for row in rows)
    return f"<ENVELOPE><ROWDESC>{header}</ROWDESC><RESULTDATA>{body}</RESULTDATA></ENVELOPE>"


@pytest.fixture
def stub_xml() -> str:
    """Six-bill receivables response served by the mock server"""
    return STUB_FILE.read_text(encoding="utf-8")


@pytest.fixture
def raw_dataset() -> Dataset:
    """Un-normalized receivables, as parsed from the wire"""
    rows: List[List[str]] = [
        ["Acme", "Ravi", "INV-1", "1-Apr-24", "1-May-24", "-5000.00", "-5000.00"],
        ["Acme", "Ravi", "INV-7", "10-Jan-24", "9-Feb-24", "-12500.00", "-12500.00"],
        ["Bharat Traders", "Meena", "BT/2024/03", "5-Mar-24", "4-Apr-24", "-80000.00", "-80000.00"],
        ["Bharat Traders", "Meena", "ADV-2", "20-Apr-24", "20-May-24", "2500.00", "2500.00"],
        ["Coastal Exports", "", "CE-19", "1-Jun-23", "1-Jul-23", "-150000.00", "-150000.00"],
        ["Deccan Stores", "Ravi", "DS-4", "12-May-24", "11-Jun-24", "-7500.00", "-7500.00"],
    ]
    return Dataset.build(RECEIVABLE_COLUMNS, rows)


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """In-memory SQLite shared across threads, fresh per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def tally_requests() -> List[httpx.Request]:
    """Requests seen by the fake accounting system"""
    return []


@pytest.fixture
def tally_client(stub_xml: str, tally_requests: List[httpx.Request]) -> TallyClient:
    """TallyClient wired to an in-process fake that serves the stub responses"""

    def handler(request: httpx.Request) -> httpx.Response:
        tally_requests.append(request)
        if request.headers.get("Authorization") == "Bearer expired":
            return httpx.Response(401, text="token expired")
        if b"TCLRLedEntries" in request.content:
            return httpx.Response(200, text=DRILLDOWN_STUB_FILE.read_text(encoding="utf-8"))
        return httpx.Response(200, text=stub_xml, headers={"Content-Type": "application/xml"})

    return TallyClient(base_url="http://tally.test", transport=httpx.MockTransport(handler))


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(today_provider=lambda: TODAY)


@pytest.fixture
def client(session_factory: sessionmaker, registry: SessionRegistry, tally_client: TallyClient) -> TestClient:
    """Create FastAPI test client with test database and fake accounting system"""
    app = create_app(create_tables=False)

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_tally_client] = lambda: tally_client
    return TestClient(app)
