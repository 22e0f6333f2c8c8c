"""Receipt numbering.

Receipt numbers look like ``R-240101-0007``: a prefix, the business-local
calendar day, and a per-day sequence starting at 1. The sequence for a new
number is ``existing_sales_today + 1``.

Counting sales and writing the new sale in separate steps lets two
simultaneous sales pick the same number, so the ledger engine allocates numbers
through :func:`plan_receipt_allocation`, which returns a write against a per-day
counter document. That write travels in the same atomic batch as the sale and
carries the counter's version, so the second of two racing sales fails with a
conflict instead of duplicating the number.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Iterable, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import data_manager, log
from .constants import Collection, RECEIPT_PREFIX, RECEIPT_SEQUENCE_WIDTH
from .record_store import CreateOperation, Operation, RecordNotFoundError, UpdateOperation, WorkbookRecordStore


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Turn a configured timezone name into a ``tzinfo``.

    Raises:
        ValueError: If the name is not a known IANA zone.
    """

    if not name or name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def parse_timestamp(value: object) -> datetime:
    """Read a stored ``CreatedAt`` value as an aware datetime; naive values are UTC."""

    moment = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def business_day(moment: datetime, tz: tzinfo) -> date:
    return moment.astimezone(tz).date()


def day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Return the half-open ``[start, end)`` interval of ``day`` in ``tz``."""

    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)


def count_sales_on(sale_records: Iterable[Mapping[str, object]], day: date, tz: tzinfo) -> int:
    """Count sale records whose ``CreatedAt`` falls on ``day`` in the business timezone."""

    start, end = day_bounds(day, tz)
    count = 0
    for record in sale_records:
        created_at = record.get("CreatedAt")
        if not created_at:
            continue
        if start <= parse_timestamp(created_at) < end:
            count += 1
    return count


def next_receipt_number(existing_sales_today: int, *, day: date) -> str:
    """Format the receipt number that follows ``existing_sales_today`` sales on ``day``.

    Raises:
        ValueError: If the count is negative.
    """

    if existing_sales_today < 0:
        raise ValueError("Sale count cannot be negative")
    sequence = existing_sales_today + 1
    return f"{RECEIPT_PREFIX}-{day.strftime('%y%m%d')}-{sequence:0{RECEIPT_SEQUENCE_WIDTH}d}"


def receipt_counter_id(day: date) -> str:
    return f"receipt-{day.strftime('%y%m%d')}"


def plan_receipt_allocation(store: WorkbookRecordStore, *, day: date, tz: tzinfo) -> Tuple[str, Operation]:
    """Reserve the next receipt number for ``day``.

    Returns the number together with the counter write that must be committed
    alongside the sale. The first sale of a day creates the counter, seeded
    with the number of sales already stored for that day so workbooks that
    predate the counter keep counting from the right place.
    """

    counter_id = receipt_counter_id(day)
    try:
        counter = data_manager.deserialize_counter(store.get(Collection.COUNTERS, counter_id))
    except RecordNotFoundError:
        existing = count_sales_on(store.query(Collection.SALES), day, tz)
        log.debug("Seeding receipt counter '%s' from %d stored sale(s)", counter_id, existing)
        operation: Operation = CreateOperation(Collection.COUNTERS, {"Value": existing + 1}, record_id=counter_id)
        return next_receipt_number(existing, day=day), operation

    operation = UpdateOperation(
        Collection.COUNTERS,
        counter_id,
        {"Value": counter.value + 1},
        expected_version=counter.version,
    )
    return next_receipt_number(counter.value, day=day), operation
