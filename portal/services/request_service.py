"""
Request Service — creation and reads for procurement requests.

References are sequential per calendar year: PR-{YEAR}-{SEQ:04d}
(e.g. PR-2026-0001). New requests always start in DRAFT.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.auth import Department, User
from portal.models.request import Request, RequestStatusHistory
from portal.utils.helpers import parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)


def generate_request_reference(year: int | None = None) -> str:
    """Generate next request reference: PR-2026-0001, PR-2026-0002, ..."""
    year = year or datetime.now(timezone.utc).year
    prefix = f"PR-{year}-"
    count = (
        db.session.query(func.count(Request.id))
        .filter(Request.reference.like(f"{prefix}%"))
        .scalar()
    ) or 0
    return f"{prefix}{count + 1:04d}"


def create_request(data: dict) -> Request:
    """
    Create a DRAFT request.

    Args:
        data: title (required), requester_id (required), total_estimated
              (required, >= 0), department_id, currency.

    Raises:
        ValidationError: missing/invalid fields.
        NotFoundError: requester or department does not exist.
    """
    errors = {}
    title = str(data.get("title") or "").strip()
    if not title:
        errors["title"] = "title is required"

    total = parse_decimal(data.get("total_estimated"))
    if total is None:
        errors["total_estimated"] = "total_estimated must be a number"
    elif total < 0:
        errors["total_estimated"] = "total_estimated must not be negative"

    try:
        requester_id = parse_optional_int(data.get("requester_id"))
        if requester_id is None:
            errors["requester_id"] = "requester_id is required"
    except ValueError:
        errors["requester_id"] = "requester_id must be an integer"

    try:
        department_id = parse_optional_int(data.get("department_id"))
    except ValueError:
        errors["department_id"] = "department_id must be an integer"

    if errors:
        raise ValidationError("Invalid request payload", details=errors)

    requester = db.session.get(User, requester_id)
    if requester is None:
        raise NotFoundError(resource="User", resource_id=requester_id)

    department_id = department_id or requester.department_id
    if department_id and db.session.get(Department, department_id) is None:
        raise NotFoundError(resource="Department", resource_id=department_id)

    req = Request(
        reference=generate_request_reference(),
        title=title,
        requester_id=requester.id,
        department_id=department_id or None,
        total_estimated=total,
        currency=(data.get("currency") or "JMD").upper()[:3],
        status="DRAFT",
    )
    db.session.add(req)
    db.session.flush()

    db.session.add(RequestStatusHistory(
        request_id=req.id,
        status="DRAFT",
        changed_by_id=requester.id,
        comment="Request created",
    ))
    db.session.flush()

    logger.info("Request %s created by user %s (%s %s)",
                req.reference, requester.id, req.total_estimated, req.currency)
    return req
