"""
Closure permission gate — role-based access control.

Uses PERMISSION_MATRIX from the project models. An actor's roles on a
project are its ProjectRole rows; the project's ``project_manager_id``
implicitly holds the project_manager role.

Cross-project actions (listing every recorded evaluation) are granted when
any of the actor's roles, on any project, carries the permission.

The gate is consulted by callers (blueprints) before they expose a
closure operation. The closure state machine never calls it.

Usage:
    from portfolio.services.permission import PermissionGate, PermissionDenied

    gate = PermissionGate()
    if gate.can_close_project("u-42", project):
        ...
    gate.check(project, "u-42", "project_reactivate")   # raises PermissionDenied
    gate.check_global("u-42", "evaluation_list")         # raises PermissionDenied
"""

from portfolio.models.project import PERMISSION_MATRIX, Project, ProjectRole

ACTION_CLOSE = "project_close"
ACTION_COMPLETE_EVALUATION = "evaluation_complete"
ACTION_REACTIVATE = "project_reactivate"
ACTION_VIEW = "closure_view"
ACTION_LIST_EVALUATIONS = "evaluation_list"


class PermissionDenied(Exception):
    """Raised when an actor lacks the permission for a closure action."""

    def __init__(self, user_id: str | None, action: str, project_id: int | None = None):
        scope = f" on project {project_id}" if project_id is not None else ""
        super().__init__(f"User {user_id} does not have permission for '{action}'{scope}")
        self.user_id = user_id
        self.action = action
        self.project_id = project_id


def get_user_roles(project: Project, user_id: str) -> set[str]:
    """All role names an actor holds on a project."""
    roles = {
        r.role
        for r in ProjectRole.query.filter_by(project_id=project.id, user_id=user_id).all()
    }
    if project.project_manager_id and project.project_manager_id == user_id:
        roles.add("project_manager")
    return roles


def get_user_permissions(project: Project, user_id: str) -> set[str]:
    """Union of closure actions granted to an actor on a project."""
    permissions: set[str] = set()
    for role in get_user_roles(project, user_id):
        permissions.update(PERMISSION_MATRIX.get(role, set()))
    return permissions


def has_permission(project: Project, user_id: str | None, action: str) -> bool:
    if not user_id:
        return False
    return action in get_user_permissions(project, user_id)


def has_global_permission(user_id: str | None, action: str) -> bool:
    """True when any explicit role of the actor, on any project, grants ``action``."""
    if not user_id:
        return False
    granting = [role for role, actions in PERMISSION_MATRIX.items() if action in actions]
    if not granting:
        return False
    return (
        ProjectRole.query
        .filter(ProjectRole.user_id == user_id, ProjectRole.role.in_(granting))
        .first()
    ) is not None


class PermissionGate:
    """Answers who may start, postpone, complete, reactivate, or read a closure."""

    def can_close_project(self, actor: str | None, project: Project) -> bool:
        """Start a closure, postpone its evaluation, or submit it."""
        return has_permission(project, actor, ACTION_CLOSE)

    def can_complete_evaluation(self, actor: str | None, project: Project) -> bool:
        return has_permission(project, actor, ACTION_COMPLETE_EVALUATION)

    def can_reactivate_project(self, actor: str | None, project: Project) -> bool:
        return has_permission(project, actor, ACTION_REACTIVATE)

    def can_view_closure(self, actor: str | None, project: Project) -> bool:
        return has_permission(project, actor, ACTION_VIEW)

    def can_list_evaluations(self, actor: str | None) -> bool:
        """Admins and quality managers read evaluations across projects."""
        return has_global_permission(actor, ACTION_LIST_EVALUATIONS)

    def check(self, project: Project, actor: str | None, action: str) -> None:
        """Assert the actor may perform ``action``.

        Raises:
            PermissionDenied: if no role grants it.
        """
        if not has_permission(project, actor, action):
            raise PermissionDenied(actor, action, project.id)

    def check_global(self, actor: str | None, action: str) -> None:
        if not has_global_permission(actor, action):
            raise PermissionDenied(actor, action)
