"""project_closure_tables

Create `projects`, `project_roles`, `project_reviews` and
`project_evaluations` for the project closure workflow.

Revision ID: 5e1c0a7b9d21
Revises:
Create Date: 2026-10-19 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1c0a7b9d21"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("code", sa.String(length=50), nullable=True),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("project_manager_id", sa.String(length=100), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("lifecycle_status", sa.String(length=30), nullable=False, server_default="in_progress"),
            sa.Column("weather", sa.String(length=10), nullable=True),
            sa.Column("progress", sa.String(length=10), nullable=True),
            sa.Column("completion", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("last_review_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closure_status", sa.String(length=30), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_by", sa.String(length=100), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("code", name="uq_projects_code"),
        )

    if "project_roles" not in existing_tables:
        op.create_table(
            "project_roles",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.String(length=100), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("project_id", "user_id", "role", name="uq_project_role"),
        )
        op.create_index("ix_project_roles_project_id", "project_roles", ["project_id"])
        op.create_index("ix_project_roles_user_id", "project_roles", ["user_id"])

    if "project_reviews" not in existing_tables:
        op.create_table(
            "project_reviews",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("weather", sa.String(length=10), nullable=False),
            sa.Column("progress", sa.String(length=10), nullable=False),
            sa.Column("completion", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("difficulties", sa.Text(), nullable=True),
            sa.Column("is_final_review", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by", sa.String(length=100), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_reviews_project_id", "project_reviews", ["project_id"])
        op.create_index(
            "ix_project_reviews_project_final", "project_reviews", ["project_id", "is_final_review"],
        )

    if "project_evaluations" not in existing_tables:
        op.create_table(
            "project_evaluations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("what_worked", sa.Text(), nullable=True),
            sa.Column("what_was_missing", sa.Text(), nullable=True),
            sa.Column("improvements", sa.Text(), nullable=True),
            sa.Column("lessons_learned", sa.Text(), nullable=True),
            sa.Column("created_by", sa.String(length=100), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_project_evaluations_project_id", "project_evaluations", ["project_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "project_evaluations" in existing_tables:
        op.drop_index("ix_project_evaluations_project_id", table_name="project_evaluations")
        op.drop_table("project_evaluations")

    if "project_reviews" in existing_tables:
        op.drop_index("ix_project_reviews_project_final", table_name="project_reviews")
        op.drop_index("ix_project_reviews_project_id", table_name="project_reviews")
        op.drop_table("project_reviews")

    if "project_roles" in existing_tables:
        op.drop_index("ix_project_roles_user_id", table_name="project_roles")
        op.drop_index("ix_project_roles_project_id", table_name="project_roles")
        op.drop_table("project_roles")

    if "projects" in existing_tables:
        op.drop_table("projects")
