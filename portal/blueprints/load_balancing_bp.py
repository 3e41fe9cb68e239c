"""
Procurement Portal
Load Balancing Admin Blueprint.

Endpoints (prefix /api/v1/admin/load-balancing):
    GET  /settings                  current settings (defaults if never configured)
    PUT  /settings                  partial update
    POST /settings/reset-counter    reset the round-robin rotation
    GET  /workloads                 PROCUREMENT_REVIEW load per officer
    POST /auto-assign-pending       assign every unassigned request in review
    POST /repair-statuses           run the status normalizer
"""

import logging

from flask import Blueprint, jsonify, request

from portal.core.exceptions import NotFoundError, ValidationError
from portal.services import load_balancing as lb
from portal.services.status_normalizer import repair_statuses
from portal.utils.errors import E, api_error
from portal.utils.helpers import db_commit_or_error, parse_optional_int

logger = logging.getLogger(__name__)

load_balancing_bp = Blueprint(
    "load_balancing", __name__, url_prefix="/api/v1/admin/load-balancing",
)

_DEFAULTS = {
    "enabled": False,
    "strategy": lb.LoadBalancingStrategy.LEAST_LOADED.value,
    "auto_assign_on_approval": True,
    "splintering_enabled": True,
    "round_robin_counter": 0,
}


@load_balancing_bp.route("/settings", methods=["GET"])
def get_settings():
    settings = lb.get_settings()
    if settings is None:
        return jsonify({**_DEFAULTS, "configured": False}), 200
    return jsonify({**settings.to_dict(), "configured": True}), 200


@load_balancing_bp.route("/settings", methods=["PUT"])
def update_settings():
    """Body: any of {enabled, strategy, auto_assign_on_approval, splintering_enabled, updated_by}."""
    data = request.get_json(silent=True) or {}
    try:
        updated_by = parse_optional_int(data.pop("updated_by", None))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "updated_by must be an integer")
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "No settings supplied")

    try:
        settings = lb.update_settings(data, updated_by=updated_by)
    except ValidationError as e:
        return api_error(E.VALIDATION_RULE, str(e), details=e.details)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**settings.to_dict(), "configured": True}), 200


@load_balancing_bp.route("/settings/reset-counter", methods=["POST"])
def reset_counter():
    data = request.get_json(silent=True) or {}
    try:
        updated_by = parse_optional_int(data.get("updated_by"))
    except ValueError:
        return api_error(E.VALIDATION_INVALID, "updated_by must be an integer")

    try:
        settings = lb.reset_round_robin_counter(updated_by=updated_by)
    except NotFoundError as e:
        return api_error(E.NOT_FOUND, str(e))
    except ValidationError as e:
        return api_error(E.VALIDATION_RULE, str(e), details=e.details)

    err = db_commit_or_error()
    if err:
        return err
    return jsonify({**settings.to_dict(), "configured": True}), 200


@load_balancing_bp.route("/workloads", methods=["GET"])
def workloads():
    return jsonify(lb.get_officer_workloads()), 200


@load_balancing_bp.route("/auto-assign-pending", methods=["POST"])
def auto_assign_pending():
    settings = lb.get_settings()
    if settings is None or not settings.enabled:
        return api_error(E.VALIDATION_RULE, "Auto-assignment is not enabled")

    assigned = lb.auto_assign_pending_requests(settings)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"assigned": assigned}), 200


@load_balancing_bp.route("/repair-statuses", methods=["POST"])
def repair_statuses_endpoint():
    touched = repair_statuses()
    if touched is None:
        return api_error(E.DATABASE, "Status repair failed; see server logs")

    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"repaired": touched}), 200
