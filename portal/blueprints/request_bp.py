"""
Procurement Portal
Request Blueprint — create, read and transition procurement requests.

Endpoints:
    POST /api/v1/requests                          create a DRAFT request
    GET  /api/v1/requests/<id>                     detail + available transitions
    POST /api/v1/requests/<id>/transition          lifecycle transition
    POST /api/v1/requests/batch-transition         same action on many requests
    GET  /api/v1/requests/<id>/history             status history ledger
    POST /api/v1/splintering/check                 ad-hoc splintering check
    GET  /api/v1/splintering/stats                 high-frequency groups in the window

The route layer owns the commit; services only flush.
"""

import logging

from flask import Blueprint, jsonify, request

from portal.core.exceptions import (
    NotFoundError,
    SplinteringBlockedError,
    SplinteringOverrideRequired,
    StatusCorruptionError,
    TransitionError,
    ValidationError,
)
from portal.models import db
from portal.services import request_lifecycle as lifecycle
from portal.services.load_balancing import get_settings
from portal.services.request_service import create_request
from portal.services.splintering import check_splintering, get_splintering_stats
from portal.utils.errors import E, api_error
from portal.utils.helpers import db_commit_or_error, parse_decimal, parse_optional_int

logger = logging.getLogger(__name__)

request_bp = Blueprint("request", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════
# REQUESTS
# ═════════════════════════════════════════════════════════════════════════

@request_bp.route("/requests", methods=["POST"])
def create_request_endpoint():
    """Create a procurement request in DRAFT.

    Body: {title, requester_id, total_estimated, department_id?, currency?}
    """
    data = request.get_json(silent=True) or {}
    try:
        req = create_request(data)
    except ValidationError as e:
        return api_error(E.VALIDATION_RULE, str(e), details=e.details)
    except NotFoundError as e:
        return api_error(E.NOT_FOUND, str(e))

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(req.to_dict()), 201


@request_bp.route("/requests/<int:request_id>", methods=["GET"])
def get_request(request_id):
    try:
        req = lifecycle.load_request(request_id)
    except NotFoundError as e:
        return api_error(E.NOT_FOUND, str(e))
    except StatusCorruptionError as e:
        return api_error(E.DATA_CORRUPTION, str(e))

    # Reads may have healed statuses; keep the repair.
    err = db_commit_or_error()
    if err:
        return err

    d = req.to_dict()
    d["available_transitions"] = lifecycle.get_available_transitions(req)
    return jsonify(d), 200


@request_bp.route("/requests/<int:request_id>/transition", methods=["POST"])
def transition_endpoint(request_id):
    """Run a lifecycle action.

    Body: {action, user_id, comment?, override_splintering?}
    """
    data = request.get_json(silent=True) or {}
    action = str(data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    try:
        user_id = parse_optional_int(data.get("user_id"))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "user_id must be an integer")

    try:
        result = lifecycle.transition_request(
            request_id,
            action,
            user_id,
            comment=data.get("comment"),
            settings=get_settings(),
            override_splintering=bool(data.get("override_splintering", False)),
        )
    except NotFoundError as e:
        return api_error(E.NOT_FOUND, str(e))
    except TransitionError as e:
        return api_error(E.CONFLICT_STATE, str(e))
    except SplinteringBlockedError as e:
        db.session.rollback()
        return api_error(E.SPLINTERING_BLOCK, str(e), details=e.details)
    except SplinteringOverrideRequired as e:
        db.session.rollback()
        return api_error(E.SPLINTERING_OVERRIDE_REQUIRED, str(e), details=e.details)
    except StatusCorruptionError as e:
        db.session.rollback()
        return api_error(E.DATA_CORRUPTION, str(e))

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 200


@request_bp.route("/requests/batch-transition", methods=["POST"])
def batch_transition_endpoint():
    """Same action on many requests. Partial success.

    Body: {request_ids: [...], action, user_id, comment?}
    """
    data = request.get_json(silent=True) or {}
    request_ids = data.get("request_ids") or []
    action = str(data.get("action") or "").strip()
    if not request_ids or not action:
        return api_error(E.VALIDATION_REQUIRED, "request_ids and action are required")
    if not isinstance(request_ids, list):
        return api_error(E.VALIDATION_INVALID, "request_ids must be a list")

    try:
        request_ids = [parse_optional_int(rid) for rid in request_ids]
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "request_ids must be integers")
    if None in request_ids:
        return api_error(E.VALIDATION_INVALID, "request_ids must be integers")

    try:
        user_id = parse_optional_int(data.get("user_id"))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "user_id must be an integer")

    results = lifecycle.batch_transition(
        request_ids,
        action,
        user_id,
        settings=get_settings(),
        comment=data.get("comment"),
    )

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(results), 200


@request_bp.route("/requests/<int:request_id>/history", methods=["GET"])
def request_history(request_id):
    try:
        history = lifecycle.get_status_history(request_id)
    except NotFoundError as e:
        return api_error(E.NOT_FOUND, str(e))
    return jsonify([h.to_dict() for h in history]), 200


# ═════════════════════════════════════════════════════════════════════════
# SPLINTERING
# ═════════════════════════════════════════════════════════════════════════

@request_bp.route("/splintering/check", methods=["POST"])
def splintering_check():
    """Run the detector without touching any request.

    Body: {requester_id?, department_id?, total, window_days?, threshold?}
    """
    data = request.get_json(silent=True) or {}

    total = parse_decimal(data.get("total", 0))
    if total is None:
        return api_error(E.VALIDATION_INVALID, "total must be a number")

    threshold = None
    if data.get("threshold") not in (None, ""):
        threshold = parse_decimal(data["threshold"])
        if threshold is None:
            return api_error(E.VALIDATION_INVALID, "threshold must be a number")

    try:
        requester_id = parse_optional_int(data.get("requester_id"))
        department_id = parse_optional_int(data.get("department_id"))
        window_days = parse_optional_int(data.get("window_days"))
    except ValueError:
        return api_error(
            E.VALIDATION_INVALID,
            "requester_id, department_id and window_days must be integers",
        )

    if window_days is not None and window_days < 0:
        return api_error(E.VALIDATION_INVALID, "window_days must not be negative")

    result = check_splintering(
        requester_id=requester_id,
        department_id=department_id,
        total=total,
        window_days=window_days,
        threshold=threshold,
    )
    return jsonify(result.to_dict()), 200


@request_bp.route("/splintering/stats", methods=["GET"])
def splintering_stats():
    """High-frequency departments and requesters in the window.

    Query: ?window_days=30
    """
    try:
        window_days = parse_optional_int(request.args.get("window_days"))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "window_days must be an integer")
    if window_days is not None and window_days < 0:
        return api_error(E.VALIDATION_INVALID, "window_days must not be negative")

    return jsonify(get_splintering_stats(window_days)), 200
