"""JSON error bodies for the portal API: {"error", "code", "details"?}."""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. Splintering-policy refusals use the SPLINTERING_ prefix."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    DATA_CORRUPTION = "ERR_DATA_CORRUPTION"
    INTERNAL = "ERR_INTERNAL"

    # Splintering – HTTP 422
    SPLINTERING_BLOCK = "SPLINTERING_BLOCK"
    SPLINTERING_OVERRIDE_REQUIRED = "SPLINTERING_OVERRIDE_REQUIRED"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.DATABASE: 500,
    E.DATA_CORRUPTION: 500,
    E.INTERNAL: 500,
    E.SPLINTERING_BLOCK: 422,
    E.SPLINTERING_OVERRIDE_REQUIRED: 422,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """``(jsonify(body), status)`` for ``code``; ``status`` overrides the default."""
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
