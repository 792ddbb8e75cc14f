# Overview: Service-layer operations for sequential numbering; year-scoped counters and derived numbers.

"""
LabTrace Sequential Numbering

================================================================================
FORMATS (bit-exact contracts other subsystems depend on)
================================================================================

    Order       YYNNN           26001      counter row next_order_number_<YYYY>
    Worksheet   DN-YYNNN        DN-26001   derived from the order number
    Invoice     RAC-YYYY-NNN    RAC-2026-001  derived by max-scan of finalized invoices
    Annex XIII  MDR-DN-YYNNN    MDR-DN-26001  derived from the worksheet number

NNN is a MINIMUM width: the 1000th order of 2026 is 261000, not an error.

CONCURRENCY:
- Order counter: atomic UPDATE value = value + 1, then read back inside the
  same transaction. Never read-then-write.
- Invoice numbers: the max-scan is a read-then-write, so every caller must
  hold the per-year invoice lock (acquire_invoice_year_lock) for the rest of
  its transaction. invoices.invoice_number is UNIQUE as a last guard.
- Worksheet/Annex numbers are pure functions; they cannot race.
================================================================================
"""

from __future__ import annotations

import re
from datetime import date

from sqlalchemy import Integer, String, cast, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, SystemConfig
from .concurrency import lock_for_update
from labtrace.time_utils import utcnow


ORDER_COUNTER_KEY = "next_order_number_{year}"
INVOICE_LOCK_KEY = "invoice_number_lock_{year}"

WORKSHEET_PREFIX = "DN-"
ANNEX_PREFIX = "MDR-"
INVOICE_PREFIX = "RAC"

_ORDER_NUMBER_RE = re.compile(r"^(\d{2})(\d{3,})$")
_INVOICE_NUMBER_RE = re.compile(r"^RAC-(\d{4})-(\d{3,})$")


class NumberingError(ValueError):
    """Raised when a number string does not match its format."""
    pass


# =============================================================================
# ATOMIC COUNTERS
# =============================================================================

def _ensure_counter_row(key: str, initial: str, description: str | None = None) -> None:
    """
    Insert the counter row if missing. Runs in a SAVEPOINT so a concurrent
    first insert (IntegrityError on the unique key) only discards the
    savepoint, never the caller's transaction.
    """
    exists = db.session.query(SystemConfig.id).filter_by(key=key).scalar()
    if exists is not None:
        return
    try:
        with db.session.begin_nested():
            db.session.add(SystemConfig(key=key, value=initial, description=description))
    except IntegrityError:
        # Another transaction created it first; the row now exists.
        pass


def atomic_increment(key: str, *, start: int = 1) -> int:
    """
    Transactional key-value increment primitive.

    Returns the value to ISSUE and advances the stored value by one. The
    stored value is always "next number to hand out"; a missing row means
    `start`.

    Does NOT commit: the increment becomes durable together with whatever
    the caller writes using the issued number.
    """
    _ensure_counter_row(key, str(start), description="Sequential counter")

    stmt = (
        update(SystemConfig)
        .where(SystemConfig.key == key)
        .values(value=cast(cast(SystemConfig.value, Integer) + 1, String))
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        raise NumberingError(f"Counter {key} could not be incremented")

    current = db.session.query(SystemConfig.value).filter_by(key=key).scalar()
    return int(current) - 1


def peek_counter(key: str, *, start: int = 1) -> int:
    value = db.session.query(SystemConfig.value).filter_by(key=key).scalar()
    return int(value) if value is not None else start


# =============================================================================
# ORDER NUMBERS (YYNNN)
# =============================================================================

def format_order_number(year: int, sequence: int) -> str:
    return f"{year % 100:02d}{sequence:03d}"


def next_order_number(year: int | None = None) -> str:
    """
    Allocate the next order number for `year` (defaults to the current UTC year).

    Must run inside the caller's transaction; the number is only taken for
    good when that transaction commits.
    """
    if year is None:
        year = utcnow().year
    sequence = atomic_increment(ORDER_COUNTER_KEY.format(year=year))
    return format_order_number(year, sequence)


def parse_order_number(order_number: str) -> tuple[int, int]:
    """Return (two-digit year, sequence) for an order number."""
    match = _ORDER_NUMBER_RE.match(order_number or "")
    if not match:
        raise NumberingError(f"Invalid order number: {order_number!r}")
    return int(match.group(1)), int(match.group(2))


# =============================================================================
# DERIVED NUMBERS (worksheet, Annex XIII)
# =============================================================================

def worksheet_number_for(order_number: str) -> str:
    parse_order_number(order_number)
    return f"{WORKSHEET_PREFIX}{order_number}"


def order_number_from_worksheet(worksheet_number: str) -> str:
    if not worksheet_number or not worksheet_number.startswith(WORKSHEET_PREFIX):
        raise NumberingError(f"Invalid worksheet number: {worksheet_number!r}")
    order_number = worksheet_number[len(WORKSHEET_PREFIX):]
    parse_order_number(order_number)
    return order_number


def annex_document_number(worksheet_number: str) -> str:
    order_number_from_worksheet(worksheet_number)
    return f"{ANNEX_PREFIX}{worksheet_number}"


def worksheet_number_from_annex(document_number: str) -> str:
    if not document_number or not document_number.startswith(ANNEX_PREFIX):
        raise NumberingError(f"Invalid Annex XIII number: {document_number!r}")
    worksheet_number = document_number[len(ANNEX_PREFIX):]
    order_number_from_worksheet(worksheet_number)
    return worksheet_number


# =============================================================================
# INVOICE NUMBERS (RAC-YYYY-NNN)
# =============================================================================

def invoice_number_prefix(year: int) -> str:
    return f"{INVOICE_PREFIX}-{year}-"


def format_invoice_number(year: int, sequence: int) -> str:
    return f"{invoice_number_prefix(year)}{sequence:03d}"


def parse_invoice_number(invoice_number: str) -> tuple[int, int]:
    match = _INVOICE_NUMBER_RE.match(invoice_number or "")
    if not match:
        raise NumberingError(f"Invalid invoice number: {invoice_number!r}")
    return int(match.group(1)), int(match.group(2))


def acquire_invoice_year_lock(year: int) -> None:
    """
    Serialize invoice numbering for one year.

    Takes a row lock (SELECT ... FOR UPDATE) on invoice_number_lock_<year>
    and touches it, so concurrent finalizations for the same year queue
    behind each other until the holder commits. Finalizations for other
    years are unaffected.

    On SQLite the enclosing BEGIN IMMEDIATE already serializes writers.
    """
    key = INVOICE_LOCK_KEY.format(year=year)
    _ensure_counter_row(key, "0", description="Invoice numbering lock")
    lock_row = lock_for_update(db.session.query(SystemConfig).filter_by(key=key)).one()
    lock_row.value = str(int(lock_row.value) + 1)
    db.session.flush()


def _max_issued_sequence(year: int) -> int:
    prefix = invoice_number_prefix(year)
    numbers = (
        db.session.query(Invoice.invoice_number)
        .filter(
            Invoice.is_draft.is_(False),
            Invoice.invoice_number.isnot(None),
            Invoice.invoice_number.like(f"{prefix}%"),
        )
        .all()
    )
    highest = 0
    for (number,) in numbers:
        try:
            _, sequence = parse_invoice_number(number)
        except NumberingError:
            continue
        highest = max(highest, sequence)
    return highest


def next_invoice_number(invoice_date: date | None = None) -> str:
    """
    Derive the next invoice number for the year of `invoice_date`.

    CRITICAL: read-then-write. Acquires the per-year lock first; the caller
    must write the number in the same transaction before committing.
    """
    year = (invoice_date or utcnow().date()).year
    acquire_invoice_year_lock(year)
    return format_invoice_number(year, _max_issued_sequence(year) + 1)


def preview_next_invoice_number(year: int | None = None) -> str:
    """Read-only preview; the real number may differ if another finalization wins."""
    if year is None:
        year = utcnow().year
    return format_invoice_number(year, _max_issued_sequence(year) + 1)
