"""
Project Closure Workflow — state machine.

Owns the in-memory state of one open closure dialog and is the only
component that writes closure data through a ClosureStore.

Steps:
    intro → final_review → method_evaluation → confirmation

Terminal transitions:
    postpone_evaluation   final review saved, project completed, evaluation pending
    submit_closure        final review + evaluation saved, project fully closed
    complete_evaluation   resume mode only: evaluation saved, pending marker cleared

Modes:
    ordinary  — opened on an active project, starts at intro
    resume    — opened on a project with closure_status=pending_evaluation,
                seeded at method_evaluation; the final review is already
                persisted and can neither be viewed nor edited

State is an immutable ClosureState replaced on every transition. Terminal
transitions set ``is_submitting`` for the duration of the store calls;
a terminal call made while another one is in flight is refused. On any
failure every entered value stays in place so the caller can retry.

Usage:
    machine = ClosureStateMachine.open(SqlAlchemyClosureStore(), project_id)
    machine.go_to_next_step()
    machine.save_final_review_data({"weather": "sunny", "progress": "better", "completion": 100})
    machine.save_evaluation_data({"what_worked": "Weekly demos"})
    machine.submit_closure(actor="u-42")
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from portfolio.core.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from portfolio.models.project import CLOSURE_STATUS_PENDING_EVALUATION, LIFECYCLE_COMPLETED
from portfolio.services.closure_store import ClosureStore
from portfolio.services.closure_types import (
    CLOSURE_STEPS,
    STEP_LABELS,
    ClosureState,
    ClosureStep,
    EvaluationData,
    ProjectClosureState,
)
from portfolio.services.closure_validators import validate_evaluation, validate_final_review

logger = logging.getLogger(__name__)

_POSTPONE_STEPS = frozenset({ClosureStep.FINAL_REVIEW, ClosureStep.METHOD_EVALUATION})
_RESUME_STEPS = frozenset({ClosureStep.METHOD_EVALUATION, ClosureStep.CONFIRMATION})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClosureStateMachine:
    """One closure workflow invocation for one project."""

    def __init__(
        self,
        store: ClosureStore,
        project_id: int,
        *,
        resume_mode: bool = False,
        clock=_utcnow,
    ):
        self._store = store
        self._clock = clock
        self.project_id = project_id
        self.resume_mode = resume_mode
        self.closed = False
        self.result: dict | None = None
        self._final_review_id: int | None = None
        self._state = ClosureState()
        if resume_mode:
            self._state = replace(self._state, current_step=ClosureStep.METHOD_EVALUATION)

    @classmethod
    def open(cls, store: ClosureStore, project_id: int, *, clock=_utcnow) -> "ClosureStateMachine":
        """Open the workflow for a project, choosing ordinary or resume mode.

        Raises:
            NotFoundError: unknown project.
            IllegalTransitionError: the project is already fully closed;
                only reactivation may bring it back.
        """
        current = store.fetch_project_closure_state(project_id)
        if current.is_pending_evaluation:
            return cls(store, project_id, resume_mode=True, clock=clock)
        if current.is_fully_closed:
            raise IllegalTransitionError(
                "open", None, "project is already closed; reactivate it first",
            )
        return cls(store, project_id, clock=clock)

    # ── Observable state ─────────────────────────────────────────────────

    @property
    def state(self) -> ClosureState:
        return self._state

    @property
    def current_step(self) -> ClosureStep:
        return self._state.current_step

    @property
    def final_review_data(self):
        return self._state.final_review_data

    @property
    def evaluation_data(self):
        return self._state.evaluation_data

    @property
    def is_submitting(self) -> bool:
        return self._state.is_submitting

    def snapshot(self) -> dict:
        """State as exposed to the presentation layer."""
        data = self._state.to_dict()
        data.update({
            "project_id": self.project_id,
            "resume_mode": self.resume_mode,
            "closed": self.closed,
            "steps": [step.value for step in CLOSURE_STEPS],
        })
        return data

    def progress_indicator(self) -> list[dict]:
        """Per-step completed / current / upcoming status for a progress bar."""
        current = self.current_step.index
        items = []
        for step in CLOSURE_STEPS:
            if step.index < current:
                status = "completed"
            elif step.index == current:
                status = "current"
            else:
                status = "upcoming"
            items.append({
                "key": step.value,
                "label": STEP_LABELS[step],
                "index": step.index,
                "status": status,
            })
        return items

    # ── Guards ───────────────────────────────────────────────────────────

    def _has_final_review(self) -> bool:
        # In resume mode the final review is already persisted.
        return self.resume_mode or self._state.final_review_data is not None

    def _ensure_active(self, action: str) -> None:
        if self.closed:
            raise IllegalTransitionError(action, self.current_step.value, "workflow is closed")
        if self._state.is_submitting:
            raise IllegalTransitionError(action, self.current_step.value, "a submission is already in progress")

    def _reject(self, action: str, reason: str):
        raise IllegalTransitionError(action, self.current_step.value, reason)

    # ── Navigation ───────────────────────────────────────────────────────

    def go_to_step(self, target) -> ClosureStep:
        """Jump directly to a step.

        Raises:
            IllegalTransitionError: confirmation without a final review, or
                intro / final_review while resuming a pending evaluation.
        """
        self._ensure_active("go_to_step")
        try:
            step = ClosureStep(target)
        except ValueError:
            raise ValidationError(
                f"Unknown closure step: {target!r}",
                details={"step": f"must be one of: {', '.join(s.value for s in CLOSURE_STEPS)}"},
            ) from None
        if self.resume_mode and step not in _RESUME_STEPS:
            self._reject("go_to_step", "the final review of a pending evaluation cannot be edited")
        if step is ClosureStep.CONFIRMATION and not self._has_final_review():
            self._reject("go_to_step", "the final review must be completed first")
        self._state = replace(self._state, current_step=step)
        return step

    def go_to_next_step(self) -> ClosureStep:
        """Advance one step. No-op at confirmation, and refused into
        confirmation while no final review exists."""
        self._ensure_active("go_to_next_step")
        index = self.current_step.index
        if index >= len(CLOSURE_STEPS) - 1:
            return self.current_step
        target = CLOSURE_STEPS[index + 1]
        if target is ClosureStep.CONFIRMATION and not self._has_final_review():
            return self.current_step
        self._state = replace(self._state, current_step=target)
        return target

    def go_to_previous_step(self) -> ClosureStep:
        """Retreat one step, keeping entered data. No-op at intro.

        In resume mode, going back from method_evaluation closes the
        workflow instead of exposing the final review.
        """
        self._ensure_active("go_to_previous_step")
        if self.resume_mode and self.current_step is ClosureStep.METHOD_EVALUATION:
            self.closed = True
            return self.current_step
        index = self.current_step.index
        if index == 0:
            return self.current_step
        target = CLOSURE_STEPS[index - 1]
        self._state = replace(self._state, current_step=target)
        return target

    # ── Data entry ───────────────────────────────────────────────────────

    def save_final_review_data(self, data) -> ClosureStep:
        """Store a validated final review and move to method_evaluation.

        Raises:
            IllegalTransitionError: not at final_review.
            ValidationError: invalid data; state and step unchanged.
        """
        self._ensure_active("save_final_review_data")
        if self.current_step is not ClosureStep.FINAL_REVIEW:
            self._reject("save_final_review_data", "only allowed at the final_review step")
        review = validate_final_review(data)
        self._state = replace(
            self._state,
            final_review_data=review,
            current_step=ClosureStep.METHOD_EVALUATION,
        )
        return self.current_step

    def save_evaluation_data(self, data) -> ClosureStep:
        """Store the method evaluation and move to confirmation."""
        self._ensure_active("save_evaluation_data")
        if self.current_step is not ClosureStep.METHOD_EVALUATION:
            self._reject("save_evaluation_data", "only allowed at the method_evaluation step")
        if not self._has_final_review():
            self._reject("save_evaluation_data", "the final review must be completed first")
        evaluation = validate_evaluation(data)
        self._state = replace(
            self._state,
            evaluation_data=evaluation,
            current_step=ClosureStep.CONFIRMATION,
        )
        return self.current_step

    def reset_closure(self) -> None:
        """Reinitialise to {intro, None, None, False}.

        A resume-mode workflow is re-seeded at method_evaluation straight away.
        """
        self._state = ClosureState()
        self._final_review_id = None
        self.closed = False
        self.result = None
        if self.resume_mode:
            self._state = replace(self._state, current_step=ClosureStep.METHOD_EVALUATION)

    # ── Terminal transitions ─────────────────────────────────────────────

    def _require_actor(self, actor) -> str:
        actor = str(actor).strip() if actor is not None else ""
        if not actor:
            raise ValidationError("actor is required", details={"actor": "required"})
        return actor

    def _persist(self, action: str, precondition, write) -> dict:
        """Run ``write`` inside one store transaction.

        ``precondition(current)`` is checked against a fresh read of the
        project taken inside the transaction, right before writing.
        """
        self._state = replace(self._state, is_submitting=True)
        previous_review_id = self._final_review_id
        try:
            with self._store.transaction():
                try:
                    current = self._store.fetch_project_closure_state(self.project_id)
                except NotFoundError as exc:
                    raise PersistenceError(str(exc), reason=PersistenceError.PRECONDITION_FAILED) from exc
                precondition(current)
                result = write()
        except PersistenceError:
            self._final_review_id = previous_review_id
            raise
        except Exception as exc:
            self._final_review_id = previous_review_id
            raise PersistenceError(f"'{action}' failed: {exc}") from exc
        finally:
            self._state = replace(self._state, is_submitting=False)

        self.closed = True
        self.result = result
        logger.info(
            "Closure %s done for project %s", action, self.project_id,
            extra={"project_id": self.project_id, "event_type": f"closure.{action}"},
        )
        return result

    def _expect_open_project(self, current: ProjectClosureState) -> None:
        if current.is_completed:
            raise PersistenceError(
                f"Project {self.project_id} was closed by another session",
                reason=PersistenceError.PRECONDITION_FAILED,
            )

    def _expect_pending_evaluation(self, current: ProjectClosureState) -> None:
        if not current.is_pending_evaluation:
            raise PersistenceError(
                f"Project {self.project_id} no longer has a pending evaluation",
                reason=PersistenceError.PRECONDITION_FAILED,
            )

    def _write_final_review_once(self, actor: str) -> int:
        if self._final_review_id is None:
            self._final_review_id = self._store.persist_final_review(
                self.project_id, self._state.final_review_data, actor,
            )
        return self._final_review_id

    def postpone_evaluation(self, actor) -> dict:
        """Close the project now and leave the method evaluation pending.

        Raises:
            IllegalTransitionError: no final review, wrong step, or resume mode.
            PersistenceError: store failure or project changed meanwhile.
        """
        self._ensure_active("postpone_evaluation")
        if self.resume_mode:
            self._reject("postpone_evaluation", "the evaluation is already pending")
        if self._state.final_review_data is None:
            self._reject("postpone_evaluation", "the final review must be completed before postponing")
        if self.current_step not in _POSTPONE_STEPS:
            self._reject("postpone_evaluation", "only allowed at final_review or method_evaluation")
        actor = self._require_actor(actor)

        def write():
            closed_at = self._clock()
            review_id = self._write_final_review_once(actor)
            self._store.update_project_closure(self.project_id, {
                "lifecycle_status": LIFECYCLE_COMPLETED,
                "closure_status": CLOSURE_STATUS_PENDING_EVALUATION,
                "closed_at": closed_at,
                "closed_by": actor,
            })
            return {
                "project_id": self.project_id,
                "action": "postpone_evaluation",
                "final_review_id": review_id,
                "evaluation_id": None,
                "lifecycle_status": LIFECYCLE_COMPLETED,
                "closure_status": CLOSURE_STATUS_PENDING_EVALUATION,
                "closed_at": closed_at.isoformat(),
                "closed_by": actor,
            }

        return self._persist("postpone_evaluation", self._expect_open_project, write)

    def submit_closure(self, actor) -> dict:
        """Close the project with both retrospectives.

        An evaluation is always recorded, empty if none was entered, so a
        fully closed project never lacks one.

        Raises:
            IllegalTransitionError: not at confirmation, no final review, or resume mode.
            PersistenceError: store failure or project changed meanwhile.
        """
        self._ensure_active("submit_closure")
        if self.resume_mode:
            self._reject("submit_closure", "use complete_evaluation for a pending evaluation")
        if self.current_step is not ClosureStep.CONFIRMATION:
            self._reject("submit_closure", "only allowed at the confirmation step")
        if self._state.final_review_data is None:
            self._reject("submit_closure", "the final review must be completed first")
        actor = self._require_actor(actor)
        evaluation = self._state.evaluation_data or EvaluationData()

        def write():
            closed_at = self._clock()
            review_id = self._write_final_review_once(actor)
            evaluation_id = self._store.persist_evaluation(self.project_id, evaluation, actor)
            self._store.update_project_closure(self.project_id, {
                "lifecycle_status": LIFECYCLE_COMPLETED,
                "closure_status": None,
                "closed_at": closed_at,
                "closed_by": actor,
            })
            return {
                "project_id": self.project_id,
                "action": "submit_closure",
                "final_review_id": review_id,
                "evaluation_id": evaluation_id,
                "lifecycle_status": LIFECYCLE_COMPLETED,
                "closure_status": None,
                "closed_at": closed_at.isoformat(),
                "closed_by": actor,
            }

        return self._persist("submit_closure", self._expect_open_project, write)

    def complete_evaluation(self, actor, data=None) -> dict:
        """Record the pending method evaluation of an already closed project.

        ``data`` defaults to the evaluation saved in the workflow. The final
        review and closed_at / closed_by are left untouched.

        Raises:
            IllegalTransitionError: not in resume mode or wrong step.
            ValidationError: malformed evaluation data.
            PersistenceError: store failure or evaluation no longer pending.
        """
        self._ensure_active("complete_evaluation")
        if not self.resume_mode:
            self._reject("complete_evaluation", "the project has no pending evaluation")
        if self.current_step not in _RESUME_STEPS:
            self._reject("complete_evaluation", "only allowed at method_evaluation or confirmation")
        actor = self._require_actor(actor)
        if data is not None:
            self._state = replace(self._state, evaluation_data=validate_evaluation(data))
        evaluation = self._state.evaluation_data or EvaluationData()

        def write():
            evaluation_id = self._store.persist_evaluation(self.project_id, evaluation, actor)
            self._store.update_project_closure(self.project_id, {"closure_status": None})
            return {
                "project_id": self.project_id,
                "action": "complete_evaluation",
                "final_review_id": None,
                "evaluation_id": evaluation_id,
                "lifecycle_status": LIFECYCLE_COMPLETED,
                "closure_status": None,
            }

        return self._persist("complete_evaluation", self._expect_pending_evaluation, write)

    def submit_terminal(self, actor, data=None) -> dict:
        """Confirm action of the dialog: complete_evaluation when resuming,
        submit_closure otherwise."""
        if self.resume_mode:
            return self.complete_evaluation(actor, data)
        return self.submit_closure(actor)
