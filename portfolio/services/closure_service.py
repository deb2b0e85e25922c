"""
Project Closure Service.

Everything around the closure state machine that the dialog needs:

    - ClosureSessionRegistry: open workflows, one per project, keyed by session id
    - get_project_closure: current closure fields of a project
    - check_existing_closure_data / delete_existing_closure_data:
      leftover retrospectives from an earlier closure of a reactivated project
    - reactivate_project: the only way back from ``completed``
    - get_project_evaluation / list_evaluations: read side of method evaluations

Layer contract:
    - Services own db.session writes and commits.
    - Permission checks are done by the caller (blueprint) via PermissionGate.

Usage:
    from portfolio.services import closure_service

    session_id, machine = registry.open(store, project_id, actor)
    closure_service.reactivate_project(project_id, actor="u-42")
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timezone

from sqlalchemy import or_

from portfolio.core.exceptions import ConflictError, IllegalTransitionError, NotFoundError
from portfolio.models import db
from portfolio.models.closure import ProjectEvaluation, ProjectReview
from portfolio.models.project import LIFECYCLE_REACTIVATED, Project
from portfolio.services.closure_state_machine import ClosureStateMachine
from portfolio.services.closure_store import ClosureStore
from portfolio.services.permission import PermissionDenied

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 3600


# ── Open workflow sessions ──────────────────────────────────────────────────


@dataclass
class _SessionEntry:
    machine: ClosureStateMachine
    actor: str
    touched_at: float = field(default_factory=time.monotonic)


class ClosureSessionRegistry:
    """In-process registry of open closure dialogs.

    At most one open workflow per project. The same actor reopening the
    dialog replaces its previous session (a fresh reset, as closing and
    reopening the dialog would); another actor is refused. Idle sessions
    expire after ``ttl_seconds``.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS, clock=time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, _SessionEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [sid for sid, e in self._sessions.items() if now - e.touched_at > self._ttl]
        for sid in expired:
            logger.debug("Closure session %s expired", sid)
            del self._sessions[sid]

    def open(self, store: ClosureStore, project_id: int, actor: str) -> tuple[str, ClosureStateMachine]:
        """Open a workflow on a project.

        Raises:
            NotFoundError: unknown project.
            IllegalTransitionError: project already fully closed.
            ConflictError: another actor has a closure open on this project.
        """
        with self._lock:
            self._purge_expired()
            replaced = []
            for sid, entry in self._sessions.items():
                if entry.machine.project_id != project_id:
                    continue
                if entry.actor != actor:
                    raise ConflictError("ClosureSession", "project_id", str(project_id))
                replaced.append(sid)

            # The actor's previous dialog survives if the new one cannot open.
            machine = ClosureStateMachine.open(store, project_id)
            for sid in replaced:
                del self._sessions[sid]
            session_id = uuid.uuid4().hex
            self._sessions[session_id] = _SessionEntry(machine=machine, actor=actor, touched_at=self._clock())

        logger.info(
            "Closure session opened for project %s (resume=%s)", project_id, machine.resume_mode,
            extra={"project_id": project_id, "event_type": "closure.session_open"},
        )
        return session_id, machine

    def get(self, session_id: str, actor: str | None = None) -> ClosureStateMachine:
        """Return the open workflow for a session id.

        When ``actor`` is given it must be the one who opened the session.

        Raises:
            NotFoundError: unknown or expired session.
            PermissionDenied: the session belongs to another actor.
        """
        with self._lock:
            self._purge_expired()
            entry = self._sessions.get(session_id)
            if entry is None:
                raise NotFoundError("ClosureSession", session_id)
            if actor is not None and entry.actor != actor:
                raise PermissionDenied(actor, "closure_session", entry.machine.project_id)
            entry.touched_at = self._clock()
            return entry.machine

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


# ── Project closure state ───────────────────────────────────────────────────


def _get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


def get_project_closure(project_id: int) -> dict:
    """Closure fields of a project plus what the dialog should offer."""
    project = _get_project(project_id)
    data = project.closure_dict()
    if project.is_pending_evaluation:
        data["available_workflow"] = "complete_evaluation"
    elif project.is_closed:
        data["available_workflow"] = "reactivate"
    else:
        data["available_workflow"] = "close"
    return data


def _final_review_query(project_id: int):
    return (
        ProjectReview.query
        .filter_by(project_id=project_id, is_final_review=True)
        .order_by(ProjectReview.created_at.desc(), ProjectReview.id.desc())
    )


def _evaluation_query(project_id: int):
    return (
        ProjectEvaluation.query
        .filter_by(project_id=project_id)
        .order_by(ProjectEvaluation.created_at.desc(), ProjectEvaluation.id.desc())
    )


def check_existing_closure_data(project_id: int) -> dict:
    """Report retrospectives left by an earlier closure of this project.

    Returns:
        {"has_final_review", "has_evaluation", "final_review_id", "evaluation_id"}
    """
    _get_project(project_id)
    final_review = _final_review_query(project_id).first()
    evaluation = _evaluation_query(project_id).first()
    return {
        "has_final_review": final_review is not None,
        "has_evaluation": evaluation is not None,
        "final_review_id": final_review.id if final_review else None,
        "evaluation_id": evaluation.id if evaluation else None,
    }


def delete_existing_closure_data(project_id: int, actor: str | None = None) -> dict:
    """Purge earlier closure retrospectives so the project can be closed afresh.

    Deletes every final review and evaluation of the project and clears
    closure_status / closed_at / closed_by. Refused while the project is
    completed: its retrospectives are the current ones.

    Returns:
        {"deleted_final_reviews": int, "deleted_evaluations": int}
    """
    project = _get_project(project_id)
    if project.is_closed:
        raise IllegalTransitionError(
            "delete_existing_closure_data", None,
            "the project is closed; reactivate it before discarding its closure data",
        )

    deleted_evaluations = ProjectEvaluation.query.filter_by(project_id=project_id).delete()
    deleted_reviews = ProjectReview.query.filter_by(project_id=project_id, is_final_review=True).delete()
    project.closure_status = None
    project.closed_at = None
    project.closed_by = None
    db.session.commit()

    logger.info(
        "Existing closure data deleted for project %s by %s", project_id, actor,
        extra={"project_id": project_id, "event_type": "closure.purge"},
    )
    return {"deleted_final_reviews": deleted_reviews, "deleted_evaluations": deleted_evaluations}


def reactivate_project(project_id: int, actor: str | None = None) -> dict:
    """Return a completed project to active work.

    Resets lifecycle_status to in_progress and clears closure_status,
    closed_at and closed_by. Retrospective records are kept.

    Raises:
        NotFoundError: unknown project.
        IllegalTransitionError: the project is not completed.
    """
    project = _get_project(project_id)
    if not project.is_closed:
        raise IllegalTransitionError(
            "reactivate_project", None,
            f"only completed projects can be reactivated (status={project.lifecycle_status})",
        )
    previous = {"closure_status": project.closure_status, "closed_by": project.closed_by}
    project.lifecycle_status = LIFECYCLE_REACTIVATED
    project.closure_status = None
    project.closed_at = None
    project.closed_by = None
    db.session.commit()

    logger.info(
        "Project %s reactivated by %s (was closure_status=%s)",
        project_id, actor, previous["closure_status"],
        extra={"project_id": project_id, "event_type": "closure.reactivate"},
    )
    return project.closure_dict()


# ── Evaluations (read side) ─────────────────────────────────────────────────


def get_project_evaluation(project_id: int) -> dict | None:
    """Latest method evaluation of a project, with its final review."""
    project = _get_project(project_id)
    evaluation = _evaluation_query(project_id).first()
    final_review = _final_review_query(project_id).first()
    if evaluation is None and final_review is None:
        return None
    return {
        "project_id": project.id,
        "closure_status": project.closure_status,
        "evaluation": evaluation.to_dict() if evaluation else None,
        "final_review": final_review.to_dict() if final_review else None,
    }


def _day_bound(value: date | None, *, end: bool) -> datetime | None:
    if value is None:
        return None
    return datetime.combine(value, dt_time.max if end else dt_time.min, tzinfo=timezone.utc)


def list_evaluations(
    *,
    search: str | None = None,
    closed_from: date | None = None,
    closed_to: date | None = None,
) -> list[dict]:
    """All recorded method evaluations with their project, newest first.

    Args:
        search: case-insensitive match on project title or any evaluation text.
        closed_from / closed_to: inclusive window on the project's closed_at.
    """
    query = (
        db.session.query(ProjectEvaluation, Project)
        .join(Project, Project.id == ProjectEvaluation.project_id)
    )
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Project.title.ilike(pattern),
            ProjectEvaluation.what_worked.ilike(pattern),
            ProjectEvaluation.what_was_missing.ilike(pattern),
            ProjectEvaluation.improvements.ilike(pattern),
            ProjectEvaluation.lessons_learned.ilike(pattern),
        ))
    lower = _day_bound(closed_from, end=False)
    upper = _day_bound(closed_to, end=True)
    if lower is not None:
        query = query.filter(Project.closed_at >= lower)
    if upper is not None:
        query = query.filter(Project.closed_at <= upper)

    rows = query.order_by(ProjectEvaluation.created_at.desc(), ProjectEvaluation.id.desc()).all()
    return [
        {
            **evaluation.to_dict(),
            "project": project.to_dict(),
        }
        for evaluation, project in rows
    ]
