"""JSON error bodies for the closure API.

Every failing endpoint answers ``{"error", "code"[, "details"]}``. Closure
rejections put the preserved dialog state under ``details`` so the client
can keep the user's input:

    api_error(E.VALIDATION_INVALID, str(exc), details={"step": "method_evaluation"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error codes ───────────────────────────────────────────────────────
class E:
    """Error codes carried in the ``code`` field of an error body."""

    # missing / malformed input, including bad final reviews and dates
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # unknown project or expired closure session
    NOT_FOUND = "ERR_NOT_FOUND"

    # another actor's open session, an illegal transition, a blocked purge
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    PRECONDITION_FAILED = "ERR_PRECONDITION_FAILED"

    # no X-User header / no role granting the action
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # persistence failed; the session keeps its state for a retry
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.PRECONDITION_FAILED: 409,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.DATABASE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Build ``(response, status)`` for an error code.

    The status comes from ``_DEFAULT_STATUS`` unless overridden; unknown
    codes answer 400.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details

    return jsonify(body), http_status
