"""
Request Status Normalizer

Heals ``requests.status`` values written under retired status names so the
ORM never trips over an unknown enum value.

Passes (always all eight, never short-circuited):
  1. NULL / empty            → DRAFT
  2-7. legacy remaps         → canonical target (LEGACY_STATUS_REMAPS)
  8. anything else unknown   → DRAFT

Usage:
    from portal.services.status_normalizer import repair_statuses, with_status_repair

    touched = repair_statuses()          # int, or None if the repair failed
    req = with_status_repair(lambda: db.session.get(Request, 7), context="request 7")
"""

import logging

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError, StatementError

from portal.core.exceptions import StatusCorruptionError
from portal.models import db
from portal.models.audit import write_audit
from portal.models.request import LEGACY_STATUS_REMAPS, REQUEST_STATUSES, Request

logger = logging.getLogger(__name__)

_requests = Request.__table__


def _repair_statements() -> list[tuple[str, object]]:
    """Build the eight UPDATE statements in execution order."""
    statements = [(
        "NULL/empty -> DRAFT",
        update(_requests)
        .where(or_(_requests.c.status.is_(None), _requests.c.status == ""))
        .values(status="DRAFT"),
    )]
    for target, legacy in LEGACY_STATUS_REMAPS:
        statements.append((
            f"{'/'.join(legacy)} -> {target}",
            update(_requests)
            .where(_requests.c.status.in_(legacy))
            .values(status=target),
        ))
    statements.append((
        "unrecognised -> DRAFT",
        update(_requests)
        .where(_requests.c.status.isnot(None), _requests.c.status.notin_(REQUEST_STATUSES))
        .values(status="DRAFT"),
    ))
    return statements


def repair_statuses() -> int | None:
    """Normalise every non-canonical request status in storage.

    Runs inside a SAVEPOINT: on failure the partial repair is rolled back,
    the error is logged and ``None`` is returned, leaving the caller's
    transaction usable.

    Returns:
        Total rows touched across all passes, or None on failure.
    """
    total = 0
    try:
        with db.session.begin_nested():
            for label, stmt in _repair_statements():
                result = db.session.execute(stmt)
                affected = result.rowcount or 0
                if affected:
                    logger.info("Status repair %s: %d row(s)", label, affected)
                total += affected
            if total:
                write_audit(
                    entity_type="request_table",
                    entity_id="requests",
                    action="request.statuses_repaired",
                    diff={"rows": total},
                )
    except SQLAlchemyError as exc:
        logger.warning("Status repair failed, statuses left untouched: %s", exc)
        return None

    if total:
        logger.warning("Status repair normalised %d request row(s)", total,
                       extra={"event_type": "status_repair"})
        # Identity-mapped Requests may hold stale statuses now.
        db.session.expire_all()
    return total


def is_unknown_status_error(exc: BaseException) -> bool:
    """True if *exc* is the ORM failing to map a stored status to the enum."""
    if isinstance(exc, LookupError):
        return True
    if isinstance(exc, StatementError) and isinstance(exc.orig, LookupError):
        return True
    return False


def with_status_repair(loader, *, context: str = "request read"):
    """Run *loader*; on an unknown-status failure repair once and retry once.

    Args:
        loader: Zero-argument callable performing the read.
        context: Short description used in logs and the raised error.

    Raises:
        StatusCorruptionError: the retry failed on an unknown status again.
    """
    try:
        return loader()
    except (LookupError, StatementError) as exc:
        if not is_unknown_status_error(exc):
            raise
        logger.warning("Unknown request status during %s, running repair: %s", context, exc)

    touched = repair_statuses()
    logger.info("Status repair for %s touched %s row(s); retrying once", context, touched)

    try:
        return loader()
    except (LookupError, StatementError) as exc:
        if not is_unknown_status_error(exc):
            raise
        logger.error("Unknown request status persists after repair during %s", context)
        raise StatusCorruptionError(context, exc) from exc
