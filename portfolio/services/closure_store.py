"""
Persistence seam for the closure workflow.

ClosureStore is the interface the state machine writes through; it never
touches ``db.session`` directly. SqlAlchemyClosureStore is the production
implementation backed by Flask-SQLAlchemy.

Transaction contract:
    Every terminal transition runs inside one ``store.transaction()``.
    SqlAlchemyClosureStore flushes each write and commits once when the
    block exits; any failure rolls back the whole closure (final review,
    evaluation and project status together) and surfaces as
    PersistenceError.

Usage:
    store = SqlAlchemyClosureStore()
    with store.transaction():
        current = store.fetch_project_closure_state(project_id)
        review_id = store.persist_final_review(project_id, data, actor)
        store.update_project_closure(project_id, {"lifecycle_status": "completed", ...})
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from portfolio.core.exceptions import NotFoundError, PersistenceError
from portfolio.models import db
from portfolio.models.closure import ProjectEvaluation, ProjectReview
from portfolio.models.project import CLOSURE_FIELDS, Project
from portfolio.services.closure_types import EvaluationData, FinalReviewData, ProjectClosureState

logger = logging.getLogger(__name__)


class ClosureStore(ABC):
    """Reads and writes the closure-related data of a project."""

    @abstractmethod
    def persist_final_review(self, project_id: int, data: FinalReviewData, actor: str) -> int:
        """Write the final review record. Returns its id."""

    @abstractmethod
    def persist_evaluation(self, project_id: int, data: EvaluationData, actor: str) -> int:
        """Write the method evaluation record. Returns its id."""

    @abstractmethod
    def update_project_closure(self, project_id: int, changes: dict) -> None:
        """Write a subset of lifecycle_status / closure_status / closed_at / closed_by."""

    @abstractmethod
    def fetch_project_closure_state(self, project_id: int) -> ProjectClosureState:
        """Read the project's current lifecycle and closure status.

        Raises:
            NotFoundError: if the project does not exist.
        """

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one unit. Default: no grouping."""
        yield


def _check_closure_fields(changes: dict) -> None:
    unknown = set(changes) - CLOSURE_FIELDS
    if unknown:
        raise ValueError(f"Not a closure field: {', '.join(sorted(unknown))}")


class SqlAlchemyClosureStore(ClosureStore):
    """ClosureStore over the application's SQLAlchemy session."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def _get_project(self, project_id: int) -> Project:
        project = self.session.get(Project, project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def fetch_project_closure_state(self, project_id: int) -> ProjectClosureState:
        # Column select bypasses the identity map so a concurrent write by
        # another session is seen; FOR UPDATE is a no-op on SQLite.
        row = self.session.execute(
            select(Project.lifecycle_status, Project.closure_status)
            .where(Project.id == project_id)
            .with_for_update()
        ).one_or_none()
        if row is None:
            raise NotFoundError("Project", project_id)
        return ProjectClosureState(
            project_id=project_id,
            lifecycle_status=row.lifecycle_status,
            closure_status=row.closure_status,
        )

    def persist_final_review(self, project_id: int, data: FinalReviewData, actor: str) -> int:
        project = self._get_project(project_id)
        review = ProjectReview(
            project_id=project_id,
            weather=data.weather,
            progress=data.progress,
            completion=data.completion,
            comment=data.comment,
            difficulties=data.difficulties,
            is_final_review=True,
            created_by=actor,
        )
        self.session.add(review)

        # The project row mirrors its latest review.
        project.weather = data.weather
        project.progress = data.progress
        project.completion = data.completion
        project.last_review_date = datetime.now(timezone.utc)

        self.session.flush()
        logger.debug(
            "Final review %s written for project %s", review.id, project_id,
            extra={"project_id": project_id, "event_type": "closure.final_review"},
        )
        return review.id

    def persist_evaluation(self, project_id: int, data: EvaluationData, actor: str) -> int:
        self._get_project(project_id)
        evaluation = ProjectEvaluation(
            project_id=project_id,
            what_worked=data.what_worked,
            what_was_missing=data.what_was_missing,
            improvements=data.improvements,
            lessons_learned=data.lessons_learned,
            created_by=actor,
        )
        self.session.add(evaluation)
        self.session.flush()
        logger.debug(
            "Evaluation %s written for project %s", evaluation.id, project_id,
            extra={"project_id": project_id, "event_type": "closure.evaluation"},
        )
        return evaluation.id

    def update_project_closure(self, project_id: int, changes: dict) -> None:
        _check_closure_fields(changes)
        project = self._get_project(project_id)
        for field, value in changes.items():
            setattr(project, field, value)
        self.session.flush()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Commit once on success; roll back every write on failure.

        SQLAlchemy errors (flush or commit) are re-raised as PersistenceError.
        """
        try:
            yield
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Closure transaction failed")
            raise PersistenceError("Database error while saving the closure") from exc
        except Exception:
            self.session.rollback()
            raise
