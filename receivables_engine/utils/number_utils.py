"""Number reading and currency formatting for untyped text cells"""

import re
from typing import Optional

_LEADING_NUMBER = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_number(text: Optional[str]) -> Optional[float]:
    """
    Read the leading number of a cell ("-5000.00", "12abc" -> 12.0).

    Returns None when the text does not start with a number.
    """
    if text is None:
        return None
    match = _LEADING_NUMBER.match(str(text).strip())
    if not match:
        return None
    return float(match.group(0))


def parse_amount(text: Optional[str]) -> float:
    """Numeric cell value, 0.0 when unreadable"""
    value = parse_number(text)
    return value if value is not None else 0.0


def parse_currency(text: Optional[str]) -> Optional[float]:
    """Like parse_number, retrying with rupee symbols and thousands separators removed"""
    value = parse_number(text)
    if value is None and text is not None:
        value = parse_number(str(text).replace("₹", "").replace(",", ""))
    return value


def format_currency(value: float) -> str:
    """Absolute amount with Indian digit grouping, e.g. 1234567.5 -> ₹12,34,567.50"""
    whole, fraction = f"{abs(value):.2f}".split(".")
    if len(whole) > 3:
        head, tail = whole[:-3], whole[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        whole = ",".join(groups + [tail])
    return f"₹{whole}.{fraction}"


def format_compact_currency(value: float) -> str:
    """Crore/lakh/thousand abbreviation with the Dr/Cr suffix, e.g. -250000 -> ₹2.50 L Dr"""
    if not value:
        return "₹0.00"
    magnitude = abs(value)
    if magnitude >= 10_000_000:
        text = f"₹{magnitude / 10_000_000:.2f} Cr"
    elif magnitude >= 100_000:
        text = f"₹{magnitude / 100_000:.2f} L"
    elif magnitude >= 1_000:
        text = f"₹{magnitude / 1_000:.2f} K"
    else:
        text = f"₹{magnitude:.2f}"
    suffix = " Dr" if value < 0 else " Cr"
    return text + suffix
