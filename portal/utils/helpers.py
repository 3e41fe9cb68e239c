"""Shared utility functions.

db_commit_or_error:  commit helper for blueprints (tuple-return on failure)
best_effort:         savepoint-isolated block whose failures are logged, not raised
parse_decimal:       lenient money parsing for request bodies
parse_optional_int:  strict integer id parsing for request bodies
"""
import logging
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation

from sqlalchemy.exc import IntegrityError, OperationalError

from portal.models import db
from portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit; on failure roll back and return an ``api_error`` tuple, else None.

    IntegrityError maps to 409 ERR_CONFLICT_DUPLICATE, anything else to 500
    ERR_DATABASE.
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error(E.DATABASE, "Database error")
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")


# ── Best-effort side effects ─────────────────────────────────────────────────

@contextmanager
def best_effort(operation: str, **context):
    """Run a non-critical block inside a SAVEPOINT; log and discard failures.

    Bookkeeping writes (assignment logs, officer counters, audit alerts) go
    through here so that a failure rolls back only the savepoint and the
    surrounding status transition still commits.

    Usage::

        with best_effort("assignment_log", request_id=req.id):
            db.session.add(RequestAssignmentLog(...))
    """
    try:
        with db.session.begin_nested():
            yield
    except Exception:
        logger.warning(
            "Best-effort operation '%s' failed %s", operation, context or "",
            exc_info=True,
            extra={"event_type": f"best_effort.{operation}"},
        )


def parse_decimal(value):
    """Parse a money amount to Decimal. Returns None for empty/invalid input."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def parse_optional_int(value):
    """Parse an optional integer id from a request body.

    Returns None for missing/empty input. Raises ValueError for anything that
    is not an integer (including booleans and fractional numbers).
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool) or isinstance(value, float) and not value.is_integer():
        raise ValueError(f"not an integer: {value!r}")
    try:
        return int(value)
    except TypeError:
        raise ValueError(f"not an integer: {value!r}") from None
