"""Date parsing for the accounting system's textual date conventions"""

import re
from datetime import date
from typing import Optional

MONTHS = {
    "Jan": 1,
    "Feb": 2,
    "Mar": 3,
    "Apr": 4,
    "May": 5,
    "Jun": 6,
    "Jul": 7,
    "Aug": 8,
    "Sep": 9,
    "Oct": 10,
    "Nov": 11,
    "Dec": 12,
}

_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})-([A-Za-z]{3})-(\d{2}|\d{4})$")
_COMPACT = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


def parse_tally_date(text: Optional[str]) -> Optional[date]:
    """
    Parse D-Mon-YY, D-Mon-YYYY or YYYYMMDD.

    Two-digit years are read as 20YY. Any other shape, or an impossible
    calendar date, returns None.
    """
    if not text:
        return None
    value = text.strip()

    match = _DAY_MONTH_YEAR.match(value)
    if match:
        day, month_name, year_text = match.groups()
        month = MONTHS.get(month_name)
        if month is None:
            return None
        year = int(year_text)
        if len(year_text) == 2:
            year += 2000
        return _safe_date(year, month, int(day))

    match = _COMPACT.match(value)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _safe_date(year, month, day)

    return None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None

