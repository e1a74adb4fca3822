"""
Human-readable, monotonic identifiers: ``<PREFIX>-<PERIOD>-<SEQ>``.

Each (prefix, period) pair owns a counter row in ``sequence_counters``. The
counter is bumped with a single ``UPDATE ... SET current_value =
current_value + 1`` inside the caller's transaction, so concurrent callers
serialize on the row and a rollback gives the number back.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from circulation.core import config
from circulation.models.models import SequenceCounter

logger = logging.getLogger("circulation.sequence")

ASSIGNMENT_PREFIX = "AS"
TRANSACTION_PREFIX = "TR"
RETURN_PREFIX = "RT"


def next_value(db, scope, _retry=True):
    """Allocate the next value for ``scope``; the first call returns 1."""
    bumped = db.execute(
        update(SequenceCounter)
        .where(SequenceCounter.scope == scope)
        .values(current_value=SequenceCounter.current_value + 1)
        .execution_options(synchronize_session=False)
    ).rowcount
    if bumped:
        value = db.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.scope == scope)
        ).scalar_one()
        logger.debug(f"sequence {scope} -> {value}")
        return value

    # first use of this scope; another writer may create the row first
    savepoint = db.begin_nested()
    try:
        db.add(SequenceCounter(scope=scope, current_value=1))
        db.flush()
        savepoint.commit()
    except IntegrityError:
        savepoint.rollback()
        if not _retry:
            raise
        logger.debug(f"sequence {scope} created concurrently, retrying")
        return next_value(db, scope, _retry=False)
    logger.debug(f"sequence {scope} -> 1")
    return 1


def format_identifier(prefix, period, value, width):
    return f"{prefix}-{period}-{str(value).zfill(width)}"


def _scoped(db, prefix, period, width):
    value = next_value(db, f"{prefix}:{period}")
    return format_identifier(prefix, period, value, width)


def next_assignment_number(db, academic_year):
    return _scoped(db, ASSIGNMENT_PREFIX, academic_year, config.ASSIGNMENT_SEQ_WIDTH)


def next_transaction_number(db, year):
    return _scoped(db, TRANSACTION_PREFIX, year, config.TRANSACTION_SEQ_WIDTH)


def next_return_number(db, year):
    return _scoped(db, RETURN_PREFIX, year, config.TRANSACTION_SEQ_WIDTH)
