"""Aging classification - days overdue and bucket assignment"""

from datetime import date
from typing import List, Optional, Sequence

from receivables_engine.domain.exceptions import InvalidBucketConfigError
from receivables_engine.domain.models import AgingBucket
from receivables_engine.utils.date_utils import parse_tally_date

DEFAULT_AGING_BUCKETS: List[AgingBucket] = [
    AgingBucket(label="0-30", max_days=30, color="#68d391"),
    AgingBucket(label="30-90", max_days=90, color="#f6ad55"),
    AgingBucket(label="90-180", max_days=180, color="#ed8936"),
    AgingBucket(label="180-360", max_days=360, color="#dd6b20"),
    AgingBucket(label=">360", max_days=None, color="#f56565"),
]

FALLBACK_BUCKET_LABEL = "0-30"


def days_overdue(due_date_cell: Optional[str], today: date | None = None) -> Optional[int]:
    """
    Whole days between the due date and today.

    Returns None when the date is unparseable or the bill is due today or
    later, so "not overdue" and "unknown" are the same value downstream.
    """
    due = parse_tally_date(due_date_cell)
    if due is None:
        return None
    today = today or date.today()
    days = (today - due).days
    return days if days > 0 else None


def bucket_for(overdue_days: Optional[int], bucket_config: Sequence[AgingBucket]) -> str:
    """
    First bucket whose max_days is unbounded or >= overdue_days.

    None days and configs with no matching bucket both fall back to the
    first bucket.
    """
    if not bucket_config:
        return FALLBACK_BUCKET_LABEL
    if overdue_days is None:
        return bucket_config[0].label

    for bucket in bucket_config:
        if bucket.max_days is None or overdue_days <= bucket.max_days:
            return bucket.label

    return bucket_config[0].label


def validate_bucket_config(bucket_config: Sequence[AgingBucket]) -> List[AgingBucket]:
    """
    Reject configs that would silently misclassify rows.

    Requires at least one bucket, unique labels, strictly increasing
    boundaries and exactly one unbounded bucket in last position.
    """
    buckets = list(bucket_config)
    if not buckets:
        raise InvalidBucketConfigError("At least one aging bucket is required")

    labels = [bucket.label for bucket in buckets]
    if len(set(labels)) != len(labels):
        raise InvalidBucketConfigError("Aging bucket labels must be unique")

    if buckets[-1].max_days is not None:
        raise InvalidBucketConfigError("Last aging bucket must be unbounded (max_days=None)")

    previous = 0
    for bucket in buckets[:-1]:
        if bucket.max_days is None:
            raise InvalidBucketConfigError(f"Only the last bucket may be unbounded, got {bucket.label!r}")
        if bucket.max_days <= previous:
            raise InvalidBucketConfigError(
                f"Aging bucket boundaries must increase, {bucket.label!r} has max_days={bucket.max_days}"
            )
        previous = bucket.max_days

    return buckets
