"""
Tally XML protocol adapter.

Inbound: the generic tabular response, a ROWDESC header section of
COL/NAME, COL/ALIAS, COL/TYPE descriptors and a RESULTDATA body of ROW/COL
cells. Outbound: ODBC-style export envelopes, one requesting the receivable bills
of the Sundry Debtors group and one requesting the opening balance and
voucher lines behind a single bill.
"""

import re
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape
from typing import List

from receivables_engine.domain.exceptions import ParseError
from receivables_engine.domain.models import ColumnDescriptor, Dataset

_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

# Projection order; schema.DUE_DATE_POSITION relies on DueDate being fifth
RECEIVABLES_PROJECTION = (
    ("$Parent", "LedgerName"),
    ("$TCSalesPerson", "SalesPerson"),
    ("$Name", "BillName"),
    ("$$String:$BillDate:UniversalDate", "BillDate"),
    ("$$String:@@CreditPeriod:UniversalDate", "DueDate"),
    ("$Openingbalance", "OpeningBalance"),
    ("$Closingbalance", "ClosingBalance"),
)

DRILLDOWN_PROJECTION = (
    ("$MASTERID", "MasterID"),
    ("$Name", "BillName"),
    ("$$String:$Date:UniversalDate", "Date"),
    ("$VoucherTypeName", "VchType"),
    ("$Narration", "Narration"),
    ("$LedBillAmount", "Amount"),
    ("$ClosingBalance:Ledger:$Parent", "'Customer Balance'"),
)

# Company names of split books carry their start date, e.g. "Acme - from 1-Apr-23"
_BOOKS_FROM_PATTERN = re.compile(r"from\s+(\d{1,2}-[A-Za-z]{3}-\d{2,4})", re.IGNORECASE)
DEFAULT_BOOKS_FROM = "1-Apr-00"


def escape_for_xml(value: str | None) -> str:
    if not value:
        return ""
    return escape(str(value), _XML_ENTITIES)


def clean_and_escape_for_xml(value: str | None) -> str:
    """Trim, collapse internal whitespace, then escape"""
    if not value:
        return ""
    return escape_for_xml(" ".join(str(value).split()))


def _text_of(element: ET.Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext())


def parse_tabular_response(xml_text: str) -> Dataset:
    """
    Parse a tabular response into a Dataset of untyped text cells.

    Raises:
        ParseError: malformed XML, a missing ROWDESC/RESULTDATA section, or a
            row wider than the header
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ParseError(f"Failed to parse XML response: {e}") from e

    row_desc = next(root.iter("ROWDESC"), None)
    if row_desc is None:
        raise ParseError("Invalid response: missing ROWDESC section")
    result_data = next(root.iter("RESULTDATA"), None)
    if result_data is None:
        raise ParseError("Invalid response: missing RESULTDATA section")

    columns = [
        ColumnDescriptor(
            name=_text_of(col.find("NAME")),
            alias=_text_of(col.find("ALIAS")),
            type=_text_of(col.find("TYPE")),
        )
        for col in row_desc.iter("COL")
    ]

    width = len(columns)
    rows: List[List[str]] = []
    for position, row in enumerate(result_data.iter("ROW")):
        cells = [_text_of(col) for col in row.iter("COL")]
        if len(cells) > width:
            raise ParseError(f"Invalid response: row {position} has {len(cells)} cells for {width} columns")
        rows.append(cells + [""] * (width - len(cells)))

    return Dataset.build(columns, rows)


def build_receivables_request(company_name: str, formula: str | None = None) -> str:
    """
    Export request for receivable bills.

    The same company and formula always produce the same payload. A non-blank
    formula is installed as the TCSalesPerson local formula on Bill objects.
    """
    company = clean_and_escape_for_xml(company_name)
    escaped_formula = escape_for_xml((formula or "").strip())
    local_formula = f"<LOCALFORMULA>TCSalesPerson : {escaped_formula}</LOCALFORMULA>" if escaped_formula else ""
    projection = ",\n".join(f"\t\t\t\t\t{expr} as {alias}" for expr, alias in RECEIVABLES_PROJECTION)

    return f"""<ENVELOPE>
\t<HEADER>
\t\t<VERSION>1</VERSION>
\t\t<TALLYREQUEST>Export</TALLYREQUEST>
\t\t<TYPE>Data</TYPE>
\t\t<ID>ODBC Report</ID>
\t</HEADER>
\t<BODY>
\t\t<DESC>
\t\t\t<STATICVARIABLES>
\t\t\t\t<SVEXPORTFORMAT>$$SysName:XML</SVEXPORTFORMAT>
\t\t\t\t<GROUPNAME>$$GroupSundryDebtors</GROUPNAME>
\t\t\t\t<SVCURRENTCOMPANY>{company}</SVCURRENTCOMPANY>
\t\t\t</STATICVARIABLES>
\t\t\t<TDL>
\t\t\t\t<TDLMESSAGE>
\t\t\t\t\t<REPORT NAME="ODBC Report" ISMODIFY="Yes" ISFIXED="No" ISINITIALIZE="No" ISOPTION="No" ISINTERNAL="No">
\t\t\t\t\t\t<Add>Variable : GroupName</Add>
\t\t\t\t\t\t<Set>GroupName : $$GroupSundryDebtors</Set>
\t\t\t\t\t</REPORT>
\t\t\t\t\t<OBJECT NAME="Bill" ISMODIFY="Yes" ISFIXED="No" ISINITIALIZE="No" ISOPTION="No" ISINTERNAL="No">
\t\t\t\t\t\t{local_formula}
\t\t\t\t\t</OBJECT>
\t\t\t\t</TDLMESSAGE>
\t\t\t</TDL>
\t\t\t<SQLREQUEST TYPE="Prepare" METHOD="SQLPrepare">
\t\t\t\tselect
{projection}
\t\t\t\tfrom GroupBills
\t\t\t</SQLREQUEST>
\t\t</DESC>
\t</BODY>
</ENVELOPE>"""


def books_from_date(company_name: str | None) -> str:
    """Start of the company's books, taken from its name when it carries one"""
    match = _BOOKS_FROM_PATTERN.search(company_name or "")
    return match.group(1) if match else DEFAULT_BOOKS_FROM


def build_bill_drilldown_request(company_name: str, ledger_name: str, bill_name: str) -> str:
    """
    Export request for the lines behind one bill of one ledger.

    Returns the bill's opening-balance line (bills dated before the books
    start) and every voucher line that allocated an amount to it.
    """
    company = clean_and_escape_for_xml(company_name)
    ledger = escape_for_xml(ledger_name)
    bill = escape_for_xml(bill_name)
    books_from = escape_for_xml(books_from_date(company_name))
    projection = ",\n".join(f"\t\t\t\t\t{expr} as {alias}" for expr, alias in DRILLDOWN_PROJECTION)

    return f"""<ENVELOPE>
\t<HEADER>
\t\t<VERSION>1</VERSION>
\t\t<TALLYREQUEST>Export</TALLYREQUEST>
\t\t<TYPE>Data</TYPE>
\t\t<ID>ODBC Report</ID>
\t</HEADER>
\t<BODY>
\t\t<DESC>
\t\t\t<STATICVARIABLES>
\t\t\t\t<SVEXPORTFORMAT>$$SysName:XML</SVEXPORTFORMAT>
\t\t\t\t<SVCURRENTCOMPANY>{company}</SVCURRENTCOMPANY>
\t\t\t</STATICVARIABLES>
\t\t\t<TDL>
\t\t\t\t<TDLMESSAGE>
\t\t\t\t\t<COLLECTION NAME="TC Ledger Receivables" ISMODIFY="No" ISFIXED="No" ISINITIALIZE="No" ISOPTION="No" ISINTERNAL="No">
\t\t\t\t\t\t<TYPE>Bills</TYPE>
\t\t\t\t\t\t<CHILDOF>&quot;{ledger}&quot;</CHILDOF>
\t\t\t\t\t\t<NATIVEMETHOD>Name</NATIVEMETHOD>
\t\t\t\t\t\t<FILTERS>TCBillNameFilt</FILTERS>
\t\t\t\t\t</COLLECTION>
\t\t\t\t\t<COLLECTION NAME="TCLR LedEntries" ISMODIFY="No" ISFIXED="No" ISINITIALIZE="No" ISOPTION="No" ISINTERNAL="No">
\t\t\t\t\t\t<COLLECTIONS>TCLR LedEntriesOB, TCLR LedEntriesVch</COLLECTIONS>
\t\t\t\t\t</COLLECTION>
\t\t\t\t\t<COLLECTION NAME="TCLR LedEntriesOB" ISMODIFY="No" ISFIXED="No" ISINITIALIZE="No" ISOPTION="No" ISINTERNAL="No">
\t\t\t\t\t\t<TYPE>Bills</TYPE>
\t\t\t\t\t\t<CHILDOF>&quot;{ledger}&quot;</CHILDOF>
\t\t\t\t\t\t<NATIVEMETHOD>Parent, BillDate, Name</NATIVEMETHOD>
\t\t\t\t\t\t<FILTERS>TCOBLines, TCBillNameFilt</FILTERS>
\t\t\t\t\t\t<METHOD>VoucherTypeName : &quot;Opening Balance&quot;</METHOD>
\t\t\t\t\t\t<METHOD>LedBillAmount : $ClosingBalance</METHOD>
\t\t\t\t\t\t<METHOD>Date : $BillDate</METHOD>
\t\t\t\t\t\t<METHOD>Object : &quot;Ledger&quot;</METHOD>
\t\t\t\t\t\t<METHOD>MasterID : $MasterID:Ledger:$Parent</METHOD>
\t\t\t\t\t</COLLECTION>
\t\t\t\t\t<COLLECTION NAME="TCLR LedEntriesVch" ISMODIFY="No" ISFIXED="No" ISINITIALIZE="No" ISOPTION="No" ISINTERNAL="No">
\t\t\t\t\t\t<SOURCECOLLECTION>TC Ledger Receivables</SOURCECOLLECTION>
\t\t\t\t\t\t<WALK>LedgerEntries</WALK>
\t\t\t\t\t\t<NATIVEMETHOD>MasterID, Date, VoucherTypeName, Narration</NATIVEMETHOD>
\t\t\t\t\t\t<METHOD>Name : $$Owner:$Name</METHOD>
\t\t\t\t\t\t<METHOD>Parent : $$Owner:$Parent</METHOD>
\t\t\t\t\t\t<METHOD>Object : &quot;Voucher&quot;</METHOD>
\t\t\t\t\t\t<METHOD>LedBillAmount : $$GetVchBillAmt:($$Owner:$Name):($$Owner:$Parent):No</METHOD>
\t\t\t\t\t</COLLECTION>
\t\t\t\t\t<SYSTEM TYPE="Formulae" NAME="TCBillNameFilt" ISMODIFY="No" ISFIXED="No" ISINTERNAL="No">$Name=&quot;{bill}&quot;</SYSTEM>
\t\t\t\t\t<SYSTEM TYPE="Formulae" NAME="TCOBLines" ISMODIFY="No" ISFIXED="No" ISINTERNAL="No">$BillDate &lt; $$Date:&quot;{books_from}&quot;</SYSTEM>
\t\t\t\t</TDLMESSAGE>
\t\t\t</TDL>
\t\t\t<SQLREQUEST TYPE="Prepare" METHOD="SQLPrepare">
\t\t\t\tselect
{projection}
\t\t\t\tfrom TCLRLedEntries
\t\t\t</SQLREQUEST>
\t\t</DESC>
\t</BODY>
</ENVELOPE>"""
