"""
Splintering Detector

Flags a candidate request whose value, combined with the requester's or the
department's other recent requests, reaches the approval threshold that a
single combined purchase would have triggered.

The detector is a pure query: it never blocks or mutates a request. The
lifecycle service decides what a flag means (see SPLINTERING_POLICY).

Rules:
  - Window: ``created_at >= now - window_days`` (calendar days).
  - Only ACTIVE_SPEND_STATUSES count (drafts, returns, CLOSED and REJECTED
    are ignored).
  - A prior request matches on requester OR department.
  - ``flagged = sum_prior + total >= threshold``.

``get_splintering_stats`` summarises the same window by department and by
requester and reports the high-frequency groups.

Usage:
    from portal.services.splintering import check_splintering

    result = check_splintering(requester_id=4, department_id=2, total=Decimal("50000"))
    if result.flagged:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy import func, or_

from portal.models import db
from portal.models.auth import Department, User
from portal.models.request import ACTIVE_SPEND_STATUSES, Request

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
DEFAULT_THRESHOLD = Decimal("250000")


@dataclass
class SplinteringMatch:
    """A prior request contributing to ``sum_prior``."""
    request_id: int
    reference: str
    amount: Decimal
    created_at: datetime | None
    requester_id: int | None
    department_id: int | None
    status: str

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "reference": self.reference,
            "amount": str(self.amount),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "requester_id": self.requester_id,
            "department_id": self.department_id,
            "status": self.status,
        }


@dataclass
class SplinteringCheckResult:
    """Outcome of one detector run. Not persisted."""
    flagged: bool
    threshold: Decimal
    window_days: int
    sum_prior: Decimal
    combined: Decimal
    matches: list[SplinteringMatch] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "flagged": self.flagged,
            "threshold": str(self.threshold),
            "window_days": self.window_days,
            "sum_prior": str(self.sum_prior),
            "combined": str(self.combined),
            "matches": [m.to_dict() for m in self.matches],
        }


def _configured_defaults() -> tuple[int, Decimal]:
    if has_app_context():
        cfg = current_app.config
        return (
            int(cfg.get("SPLINTER_WINDOW_DAYS", DEFAULT_WINDOW_DAYS)),
            Decimal(str(cfg.get("SPLINTER_THRESHOLD_JMD", DEFAULT_THRESHOLD))),
        )
    return DEFAULT_WINDOW_DAYS, DEFAULT_THRESHOLD


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _window_filters(window_days: int) -> tuple:
    """Active-spend requests created inside the look-back window."""
    window_start = datetime.now(timezone.utc) - timedelta(days=window_days)
    return (
        Request.created_at >= window_start,
        Request.status.in_(sorted(ACTIVE_SPEND_STATUSES)),
    )


def check_splintering(
    requester_id: int | None = None,
    department_id: int | None = None,
    total=0,
    window_days: int | None = None,
    threshold=None,
    *,
    exclude_request_id: int | None = None,
) -> SplinteringCheckResult:
    """
    Sum recent active spend for the requester/department and compare the
    combined amount against the threshold.

    Args:
        requester_id: Candidate's requester (matches on OR).
        department_id: Candidate's department (matches on OR).
        total: Candidate amount.
        window_days: Look-back window; defaults to SPLINTER_WINDOW_DAYS.
        threshold: Currency threshold; defaults to SPLINTER_THRESHOLD_JMD.
        exclude_request_id: Keep this request out of its own prior sum.

    Returns:
        SplinteringCheckResult
    """
    default_window, default_threshold = _configured_defaults()
    window_days = default_window if window_days is None else int(window_days)
    threshold = default_threshold if threshold is None else _as_decimal(threshold)
    total = _as_decimal(total)

    q = Request.query.filter(*_window_filters(window_days))

    # Either dimension can match; this widens recall on purpose.
    owner_filters = []
    if requester_id:
        owner_filters.append(Request.requester_id == int(requester_id))
    if department_id:
        owner_filters.append(Request.department_id == int(department_id))
    if owner_filters:
        q = q.filter(or_(*owner_filters))

    if exclude_request_id is not None:
        q = q.filter(Request.id != exclude_request_id)

    matches = [
        SplinteringMatch(
            request_id=r.id,
            reference=r.reference,
            amount=_as_decimal(r.total_estimated),
            created_at=r.created_at,
            requester_id=r.requester_id,
            department_id=r.department_id,
            status=r.status,
        )
        for r in q.order_by(Request.created_at, Request.id).all()
    ]

    sum_prior = sum((m.amount for m in matches), Decimal("0"))
    combined = sum_prior + total
    flagged = combined >= threshold

    if flagged:
        logger.info(
            "Splintering flag: requester=%s department=%s combined=%s threshold=%s (%d prior)",
            requester_id, department_id, combined, threshold, len(matches),
        )

    return SplinteringCheckResult(
        flagged=flagged,
        threshold=threshold,
        window_days=window_days,
        sum_prior=sum_prior,
        combined=combined,
        matches=matches,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Window statistics (dashboard feed)
# ═════════════════════════════════════════════════════════════════════════════

DEPARTMENT_FREQUENCY_THRESHOLD = 5
USER_FREQUENCY_THRESHOLD = 4


@dataclass
class FrequencyGroup:
    """Requests in the window sharing one department or one requester."""
    group_id: int | None
    name: str
    request_count: int
    total_value: Decimal

    def to_dict(self) -> dict:
        return {
            "id": self.group_id,
            "name": self.name,
            "request_count": self.request_count,
            "total_value": str(self.total_value),
        }


def _frequency_groups(window_days: int, key_col, name_cols, join_model, join_on, min_count: int):
    rows = (
        db.session.query(
            key_col,
            *name_cols,
            func.count(Request.id),
            func.sum(Request.total_estimated),
        )
        .outerjoin(join_model, join_on)
        .filter(*_window_filters(window_days))
        .group_by(key_col, *name_cols)
        .having(func.count(Request.id) >= min_count)
        .order_by(func.count(Request.id).desc(), key_col)
        .all()
    )
    groups = []
    for key, *names, count, total in rows:
        label = next((n for n in names if n), None) or "unknown"
        groups.append(FrequencyGroup(
            group_id=key, name=label, request_count=count, total_value=_as_decimal(total),
        ))
    return groups


def get_splintering_stats(
    window_days: int | None = None,
    *,
    min_department_requests: int = DEPARTMENT_FREQUENCY_THRESHOLD,
    min_user_requests: int = USER_FREQUENCY_THRESHOLD,
) -> dict:
    """
    Summarise active spend in the window for the splintering dashboard.

    Departments with at least ``min_department_requests`` and requesters
    with at least ``min_user_requests`` requests in the window are reported
    as high-frequency groups with their combined value. Requests without a
    department or requester fall into an "unknown" group.
    """
    default_window, _ = _configured_defaults()
    window_days = default_window if window_days is None else int(window_days)

    total_requests, total_value = (
        db.session.query(func.count(Request.id), func.sum(Request.total_estimated))
        .filter(*_window_filters(window_days))
        .one()
    )

    departments = _frequency_groups(
        window_days, Request.department_id, (Department.name,),
        Department, Department.id == Request.department_id, min_department_requests,
    )
    users = _frequency_groups(
        window_days, Request.requester_id, (User.full_name, User.email),
        User, User.id == Request.requester_id, min_user_requests,
    )

    return {
        "window_days": window_days,
        "total_requests": total_requests or 0,
        "total_value": str(_as_decimal(total_value)),
        "high_frequency_departments": [g.to_dict() for g in departments],
        "high_frequency_users": [g.to_dict() for g in users],
        "thresholds": {
            "department_requests": min_department_requests,
            "user_requests": min_user_requests,
        },
    }
