"""
Shared pytest fixtures for the Project Closure Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: active project managed by PM_USER
    - pending_project: completed project awaiting its method evaluation
    - closed_project: fully closed project
"""

from datetime import datetime, timezone

import pytest

from portfolio import create_app
from portfolio.models import db as _db
from portfolio.models.closure import ProjectReview
from portfolio.models.project import Project, ProjectRole

PM_USER = "pm-1"
MEMBER_USER = "member-1"
ADMIN_USER = "admin-1"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Open dialogs reference project ids that are reused after recreate.
        app.extensions["closure_sessions"].clear()
        yield
        app.extensions["closure_sessions"].clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """Active project; PM_USER is its manager, MEMBER_USER a plain member."""
    proj = Project(
        code="PRJ-001",
        title="Intranet redesign",
        project_manager_id=PM_USER,
        lifecycle_status="in_progress",
    )
    _db.session.add(proj)
    _db.session.flush()
    _db.session.add(ProjectRole(project_id=proj.id, user_id=MEMBER_USER, role="member"))
    _db.session.add(ProjectRole(project_id=proj.id, user_id=ADMIN_USER, role="admin"))
    _db.session.commit()
    return proj


@pytest.fixture()
def pending_project(project):
    """Project closed with its evaluation postponed, final review on record."""
    _db.session.add(ProjectReview(
        project_id=project.id,
        weather="cloudy",
        progress="stable",
        completion=80,
        is_final_review=True,
        created_by=PM_USER,
    ))
    project.lifecycle_status = "completed"
    project.closure_status = "pending_evaluation"
    project.closed_at = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    project.closed_by = PM_USER
    _db.session.commit()
    return project


@pytest.fixture()
def closed_project(project):
    """Fully closed project (evaluation recorded)."""
    project.lifecycle_status = "completed"
    project.closure_status = None
    project.closed_at = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    project.closed_by = PM_USER
    _db.session.commit()
    return project
