"""
Project Closure Blueprint.

HTTP front of the closure dialog. A client opens a workflow session, drives
it step by step, and finishes with postpone or submit. The session lives
in the app's ClosureSessionRegistry between requests.

Endpoints:
    GET    /api/v1/projects/<pid>/closure                  closure fields + available workflow
    POST   /api/v1/projects/<pid>/closure/sessions         open a workflow (201)
    GET    /api/v1/projects/<pid>/closure/existing-data    leftovers of an earlier closure
    DELETE /api/v1/projects/<pid>/closure/existing-data    purge them
    POST   /api/v1/projects/<pid>/reactivate               completed → in_progress
    GET    /api/v1/projects/<pid>/evaluation               latest evaluation + final review
    GET    /api/v1/evaluations                             ?search=&closed_from=&closed_to=

    GET    /api/v1/closure/sessions/<sid>                  state + progress indicator
    POST   /api/v1/closure/sessions/<sid>/next
    POST   /api/v1/closure/sessions/<sid>/previous
    POST   /api/v1/closure/sessions/<sid>/step             { "step": "..." }
    POST   /api/v1/closure/sessions/<sid>/final-review     { weather, progress, completion, comment?, difficulties? }
    POST   /api/v1/closure/sessions/<sid>/evaluation       { what_worked?, what_was_missing?, improvements?, lessons_learned? }
    POST   /api/v1/closure/sessions/<sid>/reset
    POST   /api/v1/closure/sessions/<sid>/postpone
    POST   /api/v1/closure/sessions/<sid>/submit           optional evaluation body when resuming
    DELETE /api/v1/closure/sessions/<sid>                  close the dialog

The actor is read from the X-User header and passed explicitly to every
mutating operation. Every endpoint requires it: per-project reads need
closure_view on the project, /evaluations needs evaluation_list on any project.

Layer contract:
    - Blueprint: parse input, resolve actor, PermissionGate checks, call
      the state machine / service, map exceptions to JSON errors.
    - NO db.session calls here.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from portfolio.core.exceptions import (
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from portfolio.models.project import Project
from portfolio.services import closure_service
from portfolio.services.closure_store import SqlAlchemyClosureStore
from portfolio.services.permission import (
    ACTION_CLOSE,
    ACTION_COMPLETE_EVALUATION,
    ACTION_LIST_EVALUATIONS,
    ACTION_REACTIVATE,
    ACTION_VIEW,
    PermissionDenied,
    PermissionGate,
)
from portfolio.utils.errors import E, api_error
from portfolio.utils.helpers import current_actor, get_or_404, parse_date

logger = logging.getLogger(__name__)

closure_bp = Blueprint("closure", __name__, url_prefix="/api/v1")

gate = PermissionGate()


# ── Error handlers ────────────────────────────────────────────────────────────


@closure_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@closure_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@closure_bp.errorhandler(IllegalTransitionError)
def _handle_illegal_transition(error: IllegalTransitionError):
    return api_error(E.CONFLICT_STATE, str(error))


@closure_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, "A closure is already open on this project by another user")


@closure_bp.errorhandler(PermissionDenied)
def _handle_permission_denied(error: PermissionDenied):
    return api_error(E.FORBIDDEN, str(error))


@closure_bp.errorhandler(PersistenceError)
def _handle_persistence(error: PersistenceError):
    code = E.PRECONDITION_FAILED if error.is_precondition_failure else E.DATABASE
    return api_error(code, str(error))


@closure_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in closure_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _registry() -> closure_service.ClosureSessionRegistry:
    return current_app.extensions["closure_sessions"]


def _actor_required():
    """Returns (actor, err_response)."""
    actor = current_actor()
    if not actor:
        return None, api_error(E.UNAUTHENTICATED, "X-User header is required")
    return actor, None


def _session_payload(session_id: str, machine) -> dict:
    return {
        "session_id": session_id,
        "state": machine.snapshot(),
        "progress": machine.progress_indicator(),
    }


def _load_session(session_id: str):
    """Resolve (actor, machine, project) for a session owned by the caller."""
    actor, err = _actor_required()
    if err:
        return None, None, None, err
    machine = _registry().get(session_id, actor=actor)
    project, err = get_or_404(Project, machine.project_id)
    if err:
        _registry().discard(session_id)
        return None, None, None, err
    return actor, machine, project, None


def _viewable_project(project_id: int):
    """Resolve (actor, project) for a caller holding closure_view on the project."""
    actor, err = _actor_required()
    if err:
        return None, None, err
    project, err = get_or_404(Project, project_id)
    if err:
        return None, None, err
    gate.check(project, actor, ACTION_VIEW)
    return actor, project, None


def _date_arg(name: str):
    """Returns (date | None, err_response); a present but unparseable value is an error."""
    raw = request.args.get(name)
    if not raw:
        return None, None
    value = parse_date(raw)
    if value is None:
        return None, api_error(
            E.VALIDATION_INVALID, f"Invalid date for '{name}'", details={name: "expected YYYY-MM-DD"},
        )
    return value, None


# ═════════════════════════════════════════════════════════════════════════
# Project-level closure endpoints
# ═════════════════════════════════════════════════════════════════════════


@closure_bp.route("/projects/<int:project_id>/closure", methods=["GET"])
def get_closure(project_id: int):
    """Closure fields of a project and which workflow the UI should offer."""
    actor, project, err = _viewable_project(project_id)
    if err:
        return err
    return jsonify(closure_service.get_project_closure(project_id)), 200


@closure_bp.route("/projects/<int:project_id>/closure/sessions", methods=["POST"])
def open_session(project_id: int):
    """Open the closure dialog.

    A project with a pending evaluation resumes at method_evaluation and
    requires the evaluation_complete permission; otherwise project_close.
    Returns 201 with session id, state and progress.
    """
    actor, err = _actor_required()
    if err:
        return err
    project, err = get_or_404(Project, project_id)
    if err:
        return err

    action = ACTION_COMPLETE_EVALUATION if project.is_pending_evaluation else ACTION_CLOSE
    gate.check(project, actor, action)

    session_id, machine = _registry().open(SqlAlchemyClosureStore(), project_id, actor)
    payload = _session_payload(session_id, machine)
    if not machine.resume_mode:
        payload["existing_data"] = closure_service.check_existing_closure_data(project_id)
    return jsonify(payload), 201


@closure_bp.route("/projects/<int:project_id>/closure/existing-data", methods=["GET"])
def get_existing_data(project_id: int):
    actor, project, err = _viewable_project(project_id)
    if err:
        return err
    return jsonify(closure_service.check_existing_closure_data(project_id)), 200


@closure_bp.route("/projects/<int:project_id>/closure/existing-data", methods=["DELETE"])
def delete_existing_data(project_id: int):
    """Purge retrospectives left by an earlier closure (project_close permission)."""
    actor, err = _actor_required()
    if err:
        return err
    project, err = get_or_404(Project, project_id)
    if err:
        return err
    gate.check(project, actor, ACTION_CLOSE)
    result = closure_service.delete_existing_closure_data(project_id, actor=actor)
    return jsonify(result), 200


@closure_bp.route("/projects/<int:project_id>/reactivate", methods=["POST"])
def reactivate(project_id: int):
    """Return a completed project to in_progress (project_reactivate permission)."""
    actor, err = _actor_required()
    if err:
        return err
    project, err = get_or_404(Project, project_id)
    if err:
        return err
    if not gate.can_reactivate_project(actor, project):
        raise PermissionDenied(actor, ACTION_REACTIVATE, project_id)
    return jsonify(closure_service.reactivate_project(project_id, actor=actor)), 200


@closure_bp.route("/projects/<int:project_id>/evaluation", methods=["GET"])
def get_evaluation(project_id: int):
    actor, project, err = _viewable_project(project_id)
    if err:
        return err
    data = closure_service.get_project_evaluation(project_id)
    if data is None:
        return api_error(E.NOT_FOUND, "No closure evaluation recorded for this project")
    return jsonify(data), 200


@closure_bp.route("/evaluations", methods=["GET"])
def list_evaluations():
    """Cross-project list of method evaluations.

    Query params:
        search       free text on project title / evaluation content
        closed_from  YYYY-MM-DD, inclusive
        closed_to    YYYY-MM-DD, inclusive

    Restricted to actors holding evaluation_list (admin, quality_manager).
    """
    actor, err = _actor_required()
    if err:
        return err
    gate.check_global(actor, ACTION_LIST_EVALUATIONS)
    closed_from, err = _date_arg("closed_from")
    if err:
        return err
    closed_to, err = _date_arg("closed_to")
    if err:
        return err
    items = closure_service.list_evaluations(
        search=request.args.get("search") or None,
        closed_from=closed_from,
        closed_to=closed_to,
    )
    return jsonify({"items": items, "total": len(items)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow session endpoints
# ═════════════════════════════════════════════════════════════════════════


@closure_bp.route("/closure/sessions/<session_id>", methods=["GET"])
def get_session(session_id: str):
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    return jsonify(_session_payload(session_id, machine)), 200


@closure_bp.route("/closure/sessions/<session_id>", methods=["DELETE"])
def close_session(session_id: str):
    """Close the dialog; entered data is discarded."""
    actor, err = _actor_required()
    if err:
        return err
    _registry().get(session_id, actor=actor)
    _registry().discard(session_id)
    return "", 204


@closure_bp.route("/closure/sessions/<session_id>/next", methods=["POST"])
def next_step(session_id: str):
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    machine.go_to_next_step()
    return jsonify(_session_payload(session_id, machine)), 200


@closure_bp.route("/closure/sessions/<session_id>/previous", methods=["POST"])
def previous_step(session_id: str):
    """Step back. When resuming, backing out of method_evaluation closes the dialog."""
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    machine.go_to_previous_step()
    payload = _session_payload(session_id, machine)
    if machine.closed:
        _registry().discard(session_id)
    return jsonify(payload), 200


@closure_bp.route("/closure/sessions/<session_id>/step", methods=["POST"])
def jump_to_step(session_id: str):
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    step = data.get("step")
    if not isinstance(step, str) or not step.strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'step' is required.")
    machine.go_to_step(step.strip())
    return jsonify(_session_payload(session_id, machine)), 200


@closure_bp.route("/closure/sessions/<session_id>/final-review", methods=["POST"])
def save_final_review(session_id: str):
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    data = request.get_json(silent=True)
    if data is None:
        return api_error(E.VALIDATION_REQUIRED, "A JSON body is required.")
    machine.save_final_review_data(data)
    return jsonify(_session_payload(session_id, machine)), 200


@closure_bp.route("/closure/sessions/<session_id>/evaluation", methods=["POST"])
def save_evaluation(session_id: str):
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    machine.save_evaluation_data(request.get_json(silent=True) or {})
    return jsonify(_session_payload(session_id, machine)), 200


@closure_bp.route("/closure/sessions/<session_id>/reset", methods=["POST"])
def reset_session(session_id: str):
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    machine.reset_closure()
    return jsonify(_session_payload(session_id, machine)), 200


def _terminal(session_id: str, machine, run):
    """Run a terminal transition; keep the session when it fails."""
    try:
        result = run()
    except PersistenceError as exc:
        code = E.PRECONDITION_FAILED if exc.is_precondition_failure else E.DATABASE
        return api_error(code, str(exc), details={"state": machine.snapshot()})
    _registry().discard(session_id)
    return jsonify({"result": result, "state": machine.snapshot()}), 200


@closure_bp.route("/closure/sessions/<session_id>/postpone", methods=["POST"])
def postpone(session_id: str):
    """Close the project now, method evaluation to be completed later."""
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    gate.check(project, actor, ACTION_CLOSE)
    return _terminal(session_id, machine, lambda: machine.postpone_evaluation(actor))


@closure_bp.route("/closure/sessions/<session_id>/submit", methods=["POST"])
def submit(session_id: str):
    """Confirm the closure.

    Ordinary mode submits the whole closure; resume mode records the pending
    evaluation (an evaluation body, if sent, replaces the saved one).
    """
    actor, machine, project, err = _load_session(session_id)
    if err:
        return err
    if machine.resume_mode:
        gate.check(project, actor, ACTION_COMPLETE_EVALUATION)
        data = request.get_json(silent=True) or None
    else:
        gate.check(project, actor, ACTION_CLOSE)
        data = None
    return _terminal(session_id, machine, lambda: machine.submit_terminal(actor, data))
