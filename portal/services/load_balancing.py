"""
Load Balancing Service — procurement officer auto-assignment.

Selects an officer for a request entering PROCUREMENT_REVIEW using one of
three interchangeable strategies and persists the assignment together with
its bookkeeping.

Strategies (closed set, see LoadBalancingStrategy):
  - LEAST_LOADED: fewest requests currently in PROCUREMENT_REVIEW. Ties keep
    the order the officer list arrived in; there is no id tie-break.
  - ROUND_ROBIN: officers sorted by id, ``counter mod len(officers)``; the
    persisted counter is advanced atomically by exactly 1 per pick.
  - RANDOM: uniform pick, no state.

Settings are passed explicitly as a LoadBalancingConfig snapshot; nothing
in here reads them from ambient state except ``get_settings`` itself.

Usage:
    from portal.services.load_balancing import (
        auto_assign_request, get_settings, should_auto_assign,
    )

    settings = get_settings()
    if should_auto_assign(new_status, settings):
        officer_id = auto_assign_request(request_id, settings)
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from flask import current_app, has_app_context
from sqlalchemy import func, update

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.audit import write_audit
from portal.models.auth import Role, User, UserRole
from portal.models.load_balancing import (
    LoadBalancingSettings,
    OfficerPerformanceMetrics,
    RequestAssignmentLog,
)
from portal.models.request import Request, RequestStatusHistory
from portal.services.status_normalizer import with_status_repair
from portal.utils.helpers import best_effort

logger = logging.getLogger(__name__)

REVIEW_STATUS = "PROCUREMENT_REVIEW"
DEFAULT_OFFICER_ROLE = "PROCUREMENT"


# ═════════════════════════════════════════════════════════════════════════════
# Settings
# ═════════════════════════════════════════════════════════════════════════════

class LoadBalancingStrategy(str, Enum):
    LEAST_LOADED = "LEAST_LOADED"
    ROUND_ROBIN = "ROUND_ROBIN"
    RANDOM = "RANDOM"


@dataclass(frozen=True)
class LoadBalancingConfig:
    """Snapshot of the authoritative LoadBalancingSettings row."""
    enabled: bool
    strategy: LoadBalancingStrategy
    auto_assign_on_approval: bool
    splintering_enabled: bool = True
    round_robin_counter: int = 0
    settings_id: int | None = None

    @classmethod
    def from_row(cls, row: LoadBalancingSettings) -> LoadBalancingConfig:
        return cls(
            enabled=bool(row.enabled),
            strategy=LoadBalancingStrategy(row.strategy),
            auto_assign_on_approval=bool(row.auto_assign_on_approval),
            splintering_enabled=bool(row.splintering_enabled),
            round_robin_counter=row.round_robin_counter or 0,
            settings_id=row.id,
        )

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "strategy": self.strategy.value,
            "auto_assign_on_approval": self.auto_assign_on_approval,
            "splintering_enabled": self.splintering_enabled,
            "round_robin_counter": self.round_robin_counter,
        }


_SETTINGS_FIELDS = ("enabled", "strategy", "auto_assign_on_approval", "splintering_enabled")
_BOOLEAN_FIELDS = ("enabled", "auto_assign_on_approval", "splintering_enabled")


def _check_actor(updated_by) -> None:
    """The acting admin must be an existing user id (or None for system)."""
    if updated_by is None:
        return
    if isinstance(updated_by, bool) or not isinstance(updated_by, int):
        raise ValidationError("updated_by must be a user id",
                              details={"updated_by": "must be an integer"})
    if db.session.get(User, updated_by) is None:
        raise ValidationError(f"User {updated_by} does not exist",
                              details={"updated_by": "unknown user"})


def get_settings() -> LoadBalancingConfig | None:
    """Return the authoritative settings, or None if never configured."""
    row = LoadBalancingSettings.authoritative()
    return LoadBalancingConfig.from_row(row) if row else None


def update_settings(changes: dict, updated_by: int | None = None) -> LoadBalancingConfig:
    """
    Apply a partial settings update, creating the row on first write.

    Args:
        changes: Any of enabled, strategy, auto_assign_on_approval,
                 splintering_enabled. Unknown keys are rejected.
        updated_by: Acting admin user id.

    Raises:
        ValidationError: unknown key, non-boolean switch, bad strategy
                         or unknown updated_by.
    """
    unknown = sorted(set(changes) - set(_SETTINGS_FIELDS))
    if unknown:
        raise ValidationError(
            f"Unknown load balancing setting(s): {', '.join(unknown)}",
            details={k: "unknown setting" for k in unknown},
        )

    errors = {
        key: "must be a boolean"
        for key in _BOOLEAN_FIELDS
        if key in changes and not isinstance(changes[key], bool)
    }
    if errors:
        raise ValidationError(
            f"Invalid load balancing setting(s): {', '.join(sorted(errors))}",
            details=errors,
        )

    if "strategy" in changes:
        try:
            changes = {**changes, "strategy": LoadBalancingStrategy(changes["strategy"]).value}
        except ValueError:
            raise ValidationError(
                f"strategy must be one of {[s.value for s in LoadBalancingStrategy]}",
                details={"strategy": changes["strategy"]},
            ) from None

    _check_actor(updated_by)

    row = LoadBalancingSettings.authoritative()
    if row is None:
        row = LoadBalancingSettings(round_robin_counter=0)
        db.session.add(row)
        before = {}
    else:
        before = {f: getattr(row, f) for f in _SETTINGS_FIELDS}

    for key, value in changes.items():
        setattr(row, key, value)
    row.updated_by = updated_by
    row.updated_at = datetime.now(timezone.utc)
    db.session.flush()

    diff = {
        f: {"old": before.get(f), "new": getattr(row, f)}
        for f in _SETTINGS_FIELDS
        if before.get(f) != getattr(row, f)
    }
    write_audit(
        entity_type="load_balancing_settings",
        entity_id=row.id,
        action="load_balancing.settings_updated",
        actor_user_id=updated_by,
        diff=diff,
    )
    logger.info("Load balancing settings updated by %s: %s", updated_by, diff)
    return LoadBalancingConfig.from_row(row)


def reset_round_robin_counter(updated_by: int | None = None) -> LoadBalancingConfig:
    """Explicit admin reset of the round-robin rotation."""
    row = LoadBalancingSettings.authoritative()
    if row is None:
        raise NotFoundError(resource="LoadBalancingSettings")
    _check_actor(updated_by)

    previous = row.round_robin_counter
    row.round_robin_counter = 0
    row.updated_by = updated_by
    row.updated_at = datetime.now(timezone.utc)
    db.session.flush()

    write_audit(
        entity_type="load_balancing_settings",
        entity_id=row.id,
        action="load_balancing.counter_reset",
        actor_user_id=updated_by,
        diff={"round_robin_counter": {"old": previous, "new": 0}},
    )
    logger.info("Round-robin counter reset from %s by %s", previous, updated_by)
    return LoadBalancingConfig.from_row(row)


def should_auto_assign(new_status: str, settings: LoadBalancingConfig | None) -> bool:
    """Only a move into PROCUREMENT_REVIEW with both switches on triggers assignment."""
    if settings is None:
        return False
    return bool(
        settings.enabled
        and settings.auto_assign_on_approval
        and new_status == REVIEW_STATUS
    )


# ═════════════════════════════════════════════════════════════════════════════
# Officer pool
# ═════════════════════════════════════════════════════════════════════════════

def get_procurement_officers() -> list[User]:
    """Active users holding the officer role, in role-grant order."""
    role_name = DEFAULT_OFFICER_ROLE
    if has_app_context():
        role_name = current_app.config.get("PROCUREMENT_OFFICER_ROLE", DEFAULT_OFFICER_ROLE)

    return (
        User.query
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .filter(Role.name == role_name, User.status == "active")
        .order_by(UserRole.id)
        .all()
    )


def _review_loads(officer_ids: list[int]) -> dict[int, int]:
    """Count of PROCUREMENT_REVIEW requests currently held by each officer."""
    if not officer_ids:
        return {}
    rows = (
        db.session.query(Request.current_assignee_id, func.count(Request.id))
        .filter(
            Request.current_assignee_id.in_(officer_ids),
            Request.status == REVIEW_STATUS,
        )
        .group_by(Request.current_assignee_id)
        .all()
    )
    loads = {oid: 0 for oid in officer_ids}
    loads.update({oid: count for oid, count in rows})
    return loads


def get_officer_workloads() -> list[dict]:
    officers = get_procurement_officers()
    loads = _review_loads([o.id for o in officers])
    return [
        {
            "officer_id": o.id,
            "name": o.display_name,
            "active_requests": loads.get(o.id, 0),
        }
        for o in officers
    ]


# ═════════════════════════════════════════════════════════════════════════════
# Strategies
# ═════════════════════════════════════════════════════════════════════════════

class LeastLoadedStrategy:
    name = LoadBalancingStrategy.LEAST_LOADED

    def select(self, officers: list[User], settings: LoadBalancingConfig) -> User | None:
        if not officers:
            return None
        loads = _review_loads([o.id for o in officers])
        # sorted() is stable: equal loads keep arrival order.
        ranked = sorted(officers, key=lambda o: loads.get(o.id, 0))
        return ranked[0]


class RoundRobinStrategy:
    name = LoadBalancingStrategy.ROUND_ROBIN

    def select(self, officers: list[User], settings: LoadBalancingConfig) -> User | None:
        if not officers:
            return None
        ordered = sorted(officers, key=lambda o: o.id)
        counter = _advance_round_robin_counter(settings)
        return ordered[counter % len(ordered)]


class RandomStrategy:
    name = LoadBalancingStrategy.RANDOM

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def select(self, officers: list[User], settings: LoadBalancingConfig) -> User | None:
        if not officers:
            return None
        return self._rng.choice(officers)


_STRATEGIES = {
    LoadBalancingStrategy.LEAST_LOADED: LeastLoadedStrategy(),
    LoadBalancingStrategy.ROUND_ROBIN: RoundRobinStrategy(),
    LoadBalancingStrategy.RANDOM: RandomStrategy(),
}


def strategy_for(strategy: LoadBalancingStrategy | str):
    try:
        return _STRATEGIES[LoadBalancingStrategy(strategy)]
    except ValueError:
        raise ValidationError(f"Unknown load balancing strategy: {strategy}") from None


def _advance_round_robin_counter(settings: LoadBalancingConfig) -> int:
    """
    Atomically bump the persisted counter and return its pre-increment value.

    The UPDATE takes the row lock first, so two concurrent assignments can
    never read the same value.
    """
    settings_id = settings.settings_id
    if settings_id is None:
        row = LoadBalancingSettings.authoritative()
        settings_id = row.id if row else None
    if settings_id is None:
        logger.debug("No settings row; round robin uses in-memory counter %s",
                     settings.round_robin_counter)
        return settings.round_robin_counter

    db.session.execute(
        update(LoadBalancingSettings)
        .where(LoadBalancingSettings.id == settings_id)
        .values(round_robin_counter=LoadBalancingSettings.round_robin_counter + 1)
        .execution_options(synchronize_session="fetch")
    )
    current = db.session.execute(
        db.select(LoadBalancingSettings.round_robin_counter)
        .where(LoadBalancingSettings.id == settings_id)
    ).scalar_one()
    return current - 1


def select_officer(settings: LoadBalancingConfig) -> User | None:
    """Dispatch to the configured strategy over the current officer pool."""
    officers = get_procurement_officers()
    if not officers:
        return None
    return strategy_for(settings.strategy).select(officers, settings)


# ═════════════════════════════════════════════════════════════════════════════
# Assignment
# ═════════════════════════════════════════════════════════════════════════════

def _record_assignment(request_id: int, officer_id: int, strategy: LoadBalancingStrategy) -> None:
    now = datetime.now(timezone.utc)

    with best_effort("assignment_log", request_id=request_id, officer_id=officer_id):
        db.session.add(RequestAssignmentLog(
            request_id=request_id,
            officer_id=officer_id,
            strategy=strategy.value,
            assigned_at=now,
        ))

    with best_effort("officer_metrics", officer_id=officer_id):
        metrics = OfficerPerformanceMetrics.query.filter_by(officer_id=officer_id).first()
        if metrics is None:
            metrics = OfficerPerformanceMetrics(
                officer_id=officer_id,
                total_assignments=0,
                active_assignments=0,
                completed_assignments=0,
            )
            db.session.add(metrics)
        metrics.total_assignments = (metrics.total_assignments or 0) + 1
        metrics.active_assignments = (metrics.active_assignments or 0) + 1
        metrics.last_assigned_at = now


def auto_assign_request(request_id: int, settings: LoadBalancingConfig | None) -> int | None:
    """
    Assign a request to an officer using the configured strategy.

    Never raises: any failure is logged, the assignment is rolled back to its
    savepoint and None is returned, so the transition that triggered the
    assignment still goes through.

    Returns:
        The selected officer id, or None (disabled, no officers, or failure).
    """
    if settings is None or not settings.enabled:
        logger.info("Auto-assignment disabled; request %s left unassigned", request_id)
        return None

    try:
        with db.session.begin_nested():
            officer = select_officer(settings)
            if officer is None:
                logger.warning("No procurement officers available for request %s", request_id)
                return None

            req = with_status_repair(
                lambda: db.session.get(Request, request_id, populate_existing=True),
                context=f"auto-assign request {request_id}",
            )
            if req is None:
                raise NotFoundError(resource="Request", resource_id=request_id)

            req.current_assignee_id = officer.id
            db.session.flush()

            _record_assignment(req.id, officer.id, settings.strategy)

            db.session.add(RequestStatusHistory(
                request_id=req.id,
                status=REVIEW_STATUS,
                changed_by_id=None,
                comment=(
                    f"Auto-assigned to {officer.display_name} "
                    f"using {settings.strategy.value} strategy"
                ),
            ))
            db.session.flush()
    except Exception:
        logger.exception("Auto-assignment failed for request %s", request_id)
        return None

    logger.info(
        "Request %s auto-assigned to officer %s using %s",
        request_id, officer.id, settings.strategy.value,
        extra={"event_type": "auto_assign", "officer_id": officer.id,
               "strategy": settings.strategy.value},
    )
    return officer.id


def auto_assign_pending_requests(settings: LoadBalancingConfig | None) -> int:
    """Assign every unassigned request waiting in PROCUREMENT_REVIEW."""
    if settings is None or not settings.enabled:
        return 0

    pending_ids = [
        rid for (rid,) in (
            db.session.query(Request.id)
            .filter(Request.status == REVIEW_STATUS, Request.current_assignee_id.is_(None))
            .order_by(Request.id)
            .all()
        )
    ]

    assigned = sum(1 for rid in pending_ids if auto_assign_request(rid, settings) is not None)
    logger.info("Auto-assigned %d of %d pending request(s)", assigned, len(pending_ids))
    return assigned


def release_assignment(request_id: int, officer_id: int) -> None:
    """Close the officer's open assignment when a request leaves procurement review."""
    now = datetime.now(timezone.utc)

    with best_effort("assignment_release", request_id=request_id, officer_id=officer_id):
        log = (
            RequestAssignmentLog.query
            .filter_by(request_id=request_id, officer_id=officer_id, completed_at=None)
            .order_by(RequestAssignmentLog.assigned_at.desc(), RequestAssignmentLog.id.desc())
            .first()
        )
        if log is not None:
            log.completed_at = now

        metrics = OfficerPerformanceMetrics.query.filter_by(officer_id=officer_id).first()
        if metrics is not None:
            metrics.active_assignments = max((metrics.active_assignments or 0) - 1, 0)
            metrics.completed_assignments = (metrics.completed_assignments or 0) + 1
            metrics.last_completed_at = now
