"""
Project Closure Platform
Project domain models.

Models:
    - Project: portfolio project with lifecycle and closure fields
    - ProjectRole: per-project role assignment used by the permission gate

Closure fields on Project:
    lifecycle_status  study | validated | in_progress | completed | suspended | abandoned
    closure_status    NULL | pending_evaluation
    closed_at / closed_by   stamped when the project is closed
"""

from datetime import datetime, timezone

from portfolio.models import db


# ── Constants ────────────────────────────────────────────────────────────────

LIFECYCLE_STATUSES = frozenset({
    "study",
    "validated",
    "in_progress",
    "completed",
    "suspended",
    "abandoned",
})

LIFECYCLE_COMPLETED = "completed"
LIFECYCLE_REACTIVATED = "in_progress"

CLOSURE_STATUS_PENDING_EVALUATION = "pending_evaluation"
CLOSURE_STATUSES = frozenset({CLOSURE_STATUS_PENDING_EVALUATION})

# Columns the closure workflow is allowed to write through the store.
CLOSURE_FIELDS = frozenset({"lifecycle_status", "closure_status", "closed_at", "closed_by"})

PROJECT_ROLES = frozenset({"admin", "project_manager", "quality_manager", "member", "viewer"})

# Role → closure actions it grants.
PERMISSION_MATRIX = {
    "admin": {"project_close", "evaluation_complete", "project_reactivate", "closure_view", "evaluation_list"},
    "project_manager": {"project_close", "evaluation_complete", "project_reactivate", "closure_view"},
    "quality_manager": {"closure_view", "evaluation_list"},
    "member": {"closure_view"},
    "viewer": {"closure_view"},
}


class Project(db.Model):
    """A portfolio project. Closure state lives directly on the row."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=True, unique=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    project_manager_id = db.Column(
        db.String(100), nullable=True,
        comment="Actor id of the project manager; implicitly holds the project_manager role",
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    lifecycle_status = db.Column(
        db.String(30), nullable=False, default="in_progress",
        comment="study | validated | in_progress | completed | suspended | abandoned",
    )

    # ── Latest review snapshot (refreshed by every review write) ──
    weather = db.Column(db.String(10), nullable=True, comment="sunny | cloudy | stormy")
    progress = db.Column(db.String(10), nullable=True, comment="better | stable | worse")
    completion = db.Column(db.Integer, nullable=False, default=0)
    last_review_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # ── Closure ──
    closure_status = db.Column(
        db.String(30), nullable=True,
        comment="NULL | pending_evaluation",
    )
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.String(100), nullable=True)

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

    roles = db.relationship("ProjectRole", backref="project", lazy="dynamic",
                            cascade="all, delete-orphan")
    reviews = db.relationship("ProjectReview", backref="project", lazy="dynamic",
                              cascade="all, delete-orphan")
    evaluations = db.relationship("ProjectEvaluation", backref="project", lazy="dynamic",
                                  cascade="all, delete-orphan")

    @property
    def is_closed(self) -> bool:
        return self.lifecycle_status == LIFECYCLE_COMPLETED

    @property
    def is_pending_evaluation(self) -> bool:
        return (
            self.lifecycle_status == LIFECYCLE_COMPLETED
            and self.closure_status == CLOSURE_STATUS_PENDING_EVALUATION
        )

    def closure_dict(self) -> dict:
        """Closure-related subset, as exposed to the closure dialog."""
        return {
            "project_id": self.id,
            "lifecycle_status": self.lifecycle_status,
            "closure_status": self.closure_status,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
            "is_closed": self.is_closed,
            "is_pending_evaluation": self.is_pending_evaluation,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "project_manager_id": self.project_manager_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "lifecycle_status": self.lifecycle_status,
            "weather": self.weather,
            "progress": self.progress,
            "completion": self.completion,
            "last_review_date": self.last_review_date.isoformat() if self.last_review_date else None,
            "closure_status": self.closure_status,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Project #{self.id} {self.title!r} {self.lifecycle_status}>"


class ProjectRole(db.Model):
    """Role held by an actor on one project."""

    __tablename__ = "project_roles"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = db.Column(db.String(100), nullable=False, index=True)
    role = db.Column(
        db.String(30), nullable=False,
        comment="admin | project_manager | quality_manager | member | viewer",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "user_id", "role", name="uq_project_role"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "role": self.role,
        }

    def __repr__(self) -> str:
        return f"<ProjectRole {self.user_id}@{self.project_id} {self.role}>"
