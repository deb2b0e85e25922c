"""
Project Closure Platform
Retrospective records written by the closure workflow.

Models:
    - ProjectReview: a project review; the closure's level-1 retrospective is
      the review row flagged ``is_final_review``
    - ProjectEvaluation: the level-2 method evaluation (process feedback)

Both tables are append-only from the workflow's point of view. The only
delete path is the explicit purge of leftover closure data on a
reactivated project (see closure_service.delete_existing_closure_data).
"""

from datetime import datetime, timezone

from portfolio.models import db


# ── Constants ────────────────────────────────────────────────────────────────

WEATHER_VALUES = ("sunny", "cloudy", "stormy")
PROGRESS_VALUES = ("better", "stable", "worse")

COMPLETION_MIN = 0
COMPLETION_MAX = 100

REVIEW_TEXT_FIELDS = ("comment", "difficulties")
EVALUATION_TEXT_FIELDS = ("what_worked", "what_was_missing", "improvements", "lessons_learned")


class ProjectReview(db.Model):
    """Project review (weather / progress / completion)."""

    __tablename__ = "project_reviews"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    weather = db.Column(db.String(10), nullable=False, comment="sunny | cloudy | stormy")
    progress = db.Column(db.String(10), nullable=False, comment="better | stable | worse")
    completion = db.Column(db.Integer, nullable=False, default=0, comment="0-100")
    comment = db.Column(db.Text, nullable=True)
    difficulties = db.Column(db.Text, nullable=True)
    is_final_review = db.Column(db.Boolean, nullable=False, default=False)
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_project_reviews_project_final", "project_id", "is_final_review"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "weather": self.weather,
            "progress": self.progress,
            "completion": self.completion,
            "comment": self.comment,
            "difficulties": self.difficulties,
            "is_final_review": self.is_final_review,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        kind = "final" if self.is_final_review else "review"
        return f"<ProjectReview #{self.id} project={self.project_id} {kind}>"


class ProjectEvaluation(db.Model):
    """Method evaluation captured when a project is closed.

    Every text field is optional: an evaluation with no content is a valid
    record and still clears the project's pending_evaluation marker.
    """

    __tablename__ = "project_evaluations"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    what_worked = db.Column(db.Text, nullable=True)
    what_was_missing = db.Column(db.Text, nullable=True)
    improvements = db.Column(db.Text, nullable=True)
    lessons_learned = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "what_worked": self.what_worked,
            "what_was_missing": self.what_was_missing,
            "improvements": self.improvements,
            "lessons_learned": self.lessons_learned,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<ProjectEvaluation #{self.id} project={self.project_id}>"
