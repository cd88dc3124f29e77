"""
Invoice numbers: ``MM-YYYY-CATEGORY-NNN``.

The sequence part comes from a counter keyed by bucket
(``MM-YYYY-CATEGORY``). A counter store only has to offer one atomic
operation, ``increment_and_get(bucket)``; read-then-write is never used.
Numbers are not reused, even after the invoice is deleted.
"""

import threading

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from .errors import ValidationError
from .logging_config import get_logger
from .models import Counter

logger = get_logger("numbering")


def bucket_key(on_date, category):
    if not category or not str(category).strip():
        raise ValidationError(
            "Project category is required",
            details=["category: required to number the invoice"],
        )
    return f"{on_date.month:02d}-{on_date.year:04d}-{str(category).strip().upper()}"


def format_invoice_number(bucket, sequence):
    return f"{bucket}-{sequence:03d}"


def generate_invoice_number(on_date, category, counters):
    # bucket_key validates before the counter is touched
    bucket = bucket_key(on_date, category)
    sequence = counters.increment_and_get(bucket)
    number = format_invoice_number(bucket, sequence)
    logger.debug("invoice_number_allocated", extra={"bucket": bucket, "sequence": sequence})
    return number


class MemoryCounterStore:
    """Mutex-guarded counters for single-process use."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counters = {}

    def increment_and_get(self, bucket):
        with self._lock:
            value = self._counters.get(bucket, 0) + 1
            self._counters[bucket] = value
            return value


class SqlCounterStore:
    """
    Counters in the ``counters`` table.

    The increment is an ``UPDATE ... RETURNING`` in the caller's transaction,
    so it commits or rolls back together with the invoice that uses it. The
    first use of a bucket inserts the row inside a savepoint; if another
    transaction won that insert, the update is simply retried.
    """

    def __init__(self, session):
        self._session = session

    def increment_and_get(self, bucket):
        table = Counter.__table__
        stmt = (
            update(table)
            .where(table.c.bucket == bucket)
            .values(seq=table.c.seq + 1)
            .returning(table.c.seq)
        )
        value = self._session.execute(stmt).scalar_one_or_none()
        if value is not None:
            return value

        savepoint = self._session.begin_nested()
        try:
            self._session.add(Counter(bucket=bucket, seq=1))
            self._session.flush()
            savepoint.commit()
            logger.info("counter_created", extra={"bucket": bucket})
            return 1
        except IntegrityError:
            savepoint.rollback()
            logger.debug("counter_create_race_retry", extra={"bucket": bucket})
            return self._session.execute(stmt).scalar_one()
