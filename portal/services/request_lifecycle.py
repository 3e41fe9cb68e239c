"""
Request Lifecycle Service

Sole writer of ``Request.status``. Every transition goes through here with:
  - Status repair on read (legacy/unknown values healed, one retry)
  - Transition validation (REQUEST_TRANSITIONS)
  - Splintering check when a request first enters active spend
  - History ledger entry per transition
  - Assignment release / auto-assignment around PROCUREMENT_REVIEW

Splintering policy (config SPLINTERING_POLICY):
  flag      audit alert + warning, transition proceeds (default)
  override  SplinteringOverrideRequired unless override_splintering=True
  block     SplinteringBlockedError

Usage:
    from portal.services.request_lifecycle import transition_request

    result = transition_request(
        request_id=12,
        action="send_to_procurement",
        user_id=3,
        settings=get_settings(),
    )

The service only flushes; the caller owns the commit.
"""

import logging

from flask import current_app, has_app_context

from portal.core.exceptions import (
    NotFoundError,
    SplinteringBlockedError,
    SplinteringOverrideRequired,
    TransitionError,
    ValidationError,
)
from portal.models import db
from portal.models.audit import write_audit
from portal.models.request import (
    ACTIVE_SPEND_STATUSES,
    REQUEST_TRANSITIONS,
    Request,
    RequestStatusHistory,
)
from portal.services.load_balancing import (
    REVIEW_STATUS,
    LoadBalancingConfig,
    auto_assign_request,
    release_assignment,
    should_auto_assign,
)
from portal.services.splintering import SplinteringCheckResult, check_splintering
from portal.services.status_normalizer import repair_statuses, with_status_repair
from portal.utils.helpers import best_effort

logger = logging.getLogger(__name__)

SPLINTERING_POLICIES = ("flag", "override", "block")


def load_request(request_id: int) -> Request:
    """Load a request, healing unknown statuses on the way. Raises NotFoundError."""
    req = with_status_repair(
        lambda: db.session.get(Request, request_id, populate_existing=True),
        context=f"request {request_id}",
    )
    if req is None:
        raise NotFoundError(resource="Request", resource_id=request_id)

    if req.status is None:
        # NULL never trips the enum, so heal it explicitly.
        repair_statuses()
        db.session.refresh(req)
    return req


def validate_transition(req: Request, action: str) -> dict:
    """
    Validate whether an action is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = REQUEST_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": req.status, "to": None,
                "reason": f"Unknown action: {action}"}

    if req.status not in rule["from"]:
        return {"valid": False, "from": req.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{req.status}'"}

    return {"valid": True, "from": req.status, "to": rule["to"], "reason": None}


def get_available_transitions(req: Request) -> list[str]:
    """Get list of valid actions for a request's current status."""
    return [
        action for action, rule in REQUEST_TRANSITIONS.items()
        if req.status in rule["from"]
    ]


def enters_active_spend(previous_status: str | None, new_status: str) -> bool:
    return previous_status not in ACTIVE_SPEND_STATUSES and new_status in ACTIVE_SPEND_STATUSES


def _splintering_policy() -> str:
    policy = "flag"
    if has_app_context():
        policy = str(current_app.config.get("SPLINTERING_POLICY", "flag")).lower()
    if policy not in SPLINTERING_POLICIES:
        logger.warning("Unknown SPLINTERING_POLICY %r, falling back to 'flag'", policy)
        policy = "flag"
    return policy


def _apply_splintering_policy(
    req: Request,
    user_id: int | None,
    *,
    override_splintering: bool,
) -> SplinteringCheckResult:
    result = check_splintering(
        requester_id=req.requester_id,
        department_id=req.department_id,
        total=req.total_estimated,
        exclude_request_id=req.id,
    )
    if not result.flagged:
        return result

    policy = _splintering_policy()
    if policy == "block":
        logger.warning("Request %s blocked by splintering policy", req.reference)
        raise SplinteringBlockedError(req.reference, result)

    if policy == "override":
        if not override_splintering:
            raise SplinteringOverrideRequired(req.reference, result)
        action = "request.splintering_override"
    else:
        action = "request.splintering_flagged"

    logger.warning(
        "Potential splintering on %s: combined %s >= %s (%d prior request(s))",
        req.reference, result.combined, result.threshold, len(result.matches),
        extra={"event_type": "splintering", "reference": req.reference},
    )
    with best_effort("splintering_audit", request_id=req.id):
        write_audit(
            entity_type="request",
            entity_id=req.id,
            action=action,
            actor_user_id=user_id,
            diff={"splintering": result.to_dict()},
        )
    return result


def transition_request(
    request_id: int,
    action: str,
    user_id: int | None,
    *,
    comment: str | None = None,
    settings: LoadBalancingConfig | None = None,
    override_splintering: bool = False,
) -> dict:
    """
    Execute a request lifecycle transition.

    Args:
        request_id: PK of the request
        action: One of REQUEST_TRANSITIONS
        user_id: Who is performing the action
        comment: Free text stored on the history row
        settings: Load-balancing snapshot; None disables auto-assignment
                  and leaves the splintering check on
        override_splintering: Supervisor override under the 'override' policy

    Returns:
        {"request_id", "reference", "previous_status", "new_status", "action",
         "assigned_officer_id", "splintering"}

    Raises:
        NotFoundError, TransitionError, SplinteringBlockedError,
        SplinteringOverrideRequired, StatusCorruptionError
    """
    req = load_request(request_id)

    # 1. Validate transition
    validation = validate_transition(req, action)
    if not validation["valid"]:
        raise TransitionError(req.reference, action, req.status, validation["reason"])

    previous_status = req.status
    new_status = validation["to"]

    # 2. Splintering check before anything is written
    splintering = None
    splintering_enabled = settings.splintering_enabled if settings is not None else True
    if splintering_enabled and enters_active_spend(previous_status, new_status):
        splintering = _apply_splintering_policy(
            req, user_id, override_splintering=override_splintering,
        )

    # 3. Execute transition
    req.status = new_status
    db.session.add(RequestStatusHistory(
        request_id=req.id,
        status=new_status,
        changed_by_id=user_id,
        comment=comment,
    ))
    db.session.flush()

    # 4. Side effects
    if previous_status == REVIEW_STATUS and req.current_assignee_id:
        release_assignment(req.id, req.current_assignee_id)

    assigned_officer_id = None
    if should_auto_assign(new_status, settings):
        assigned_officer_id = auto_assign_request(req.id, settings)

    logger.info(
        "Request %s: %s → %s (%s) by %s",
        req.reference, previous_status, new_status, action, user_id,
    )

    return {
        "request_id": req.id,
        "reference": req.reference,
        "previous_status": previous_status,
        "new_status": new_status,
        "action": action,
        "assigned_officer_id": assigned_officer_id,
        "splintering": splintering.to_dict() if splintering else None,
    }


def batch_transition(
    request_ids: list[int],
    action: str,
    user_id: int | None,
    *,
    settings: LoadBalancingConfig | None = None,
    **kwargs,
) -> dict:
    """
    Batch transition for multiple requests. Partial success allowed.

    Each request runs in its own savepoint so a failed one leaves no
    partial writes behind.

    Returns:
        {"success": [...], "errors": [...]}
    """
    results = {"success": [], "errors": []}

    for request_id in request_ids:
        try:
            with db.session.begin_nested():
                result = transition_request(
                    request_id, action, user_id, settings=settings, **kwargs,
                )
            results["success"].append(result)
        except (TransitionError, NotFoundError, ValidationError) as e:
            results["errors"].append({
                "request_id": request_id,
                "error": str(e),
                "error_type": type(e).__name__,
            })

    return results


def get_status_history(request_id: int) -> list[RequestStatusHistory]:
    """History ledger for a request, oldest first."""
    exists = db.session.query(Request.id).filter(Request.id == request_id).first()
    if exists is None:
        raise NotFoundError(resource="Request", resource_id=request_id)
    return (
        RequestStatusHistory.query
        .filter_by(request_id=request_id)
        .order_by(RequestStatusHistory.created_at, RequestStatusHistory.id)
        .all()
    )
