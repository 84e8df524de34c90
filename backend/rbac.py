"""
backend/rbac.py

Role-Based Access Control for projects and tasks.

Holds the fixed permission matrix (role x action) and the Role Resolver.
The matrix is closed: four roles, six project actions, six task actions.
Anything not listed is denied.

Role resolution order:
1. membership row for (principal, project)  - canonical
2. Project.owner_id == principal            - fallback, logs a consistency warning
3. None (no access)
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional

try:
    from backend import store
    from backend.config import IS_DEV
    from backend.models import Project, ProjectRole
except ModuleNotFoundError:
    import store
    from config import IS_DEV
    from models import Project, ProjectRole


# ============================================================================
# Actions
# ============================================================================

class ProjectAction(str, Enum):
    """Actions on a project itself."""
    VIEW = "view"
    EDIT = "edit"
    ARCHIVE = "archive"
    DELETE = "delete"
    INVITE_USERS = "inviteUsers"
    MANAGE_MEMBERS = "manageMembers"


class TaskAction(str, Enum):
    """Actions on tasks inside a project."""
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    VIEW_ALL = "viewAll"  # bulk-list visibility
    CHANGE_ASSIGNEE = "changeAssignee"


ALL_PROJECT_ACTIONS: FrozenSet[ProjectAction] = frozenset(ProjectAction)
ALL_TASK_ACTIONS: FrozenSet[TaskAction] = frozenset(TaskAction)


# ============================================================================
# Role to Actions Mapping
# ============================================================================

ROLE_PROJECT_ACTIONS: Dict[ProjectRole, FrozenSet[ProjectAction]] = {
    ProjectRole.owner: ALL_PROJECT_ACTIONS,
    ProjectRole.collaborator: frozenset({ProjectAction.VIEW, ProjectAction.EDIT}),
    ProjectRole.member: frozenset({ProjectAction.VIEW}),
    ProjectRole.viewer: frozenset({ProjectAction.VIEW}),
}

# Granted on every task of the project
ROLE_TASK_ACTIONS: Dict[ProjectRole, FrozenSet[TaskAction]] = {
    ProjectRole.owner: ALL_TASK_ACTIONS,
    ProjectRole.collaborator: ALL_TASK_ACTIONS,
    ProjectRole.member: frozenset(),
    ProjectRole.viewer: frozenset({TaskAction.VIEW}),
}

# Granted only on tasks the principal created or is assigned to
ROLE_TASK_ACTIONS_IF_INVOLVED: Dict[ProjectRole, FrozenSet[TaskAction]] = {
    ProjectRole.owner: frozenset(),
    ProjectRole.collaborator: frozenset(),
    ProjectRole.member: frozenset({TaskAction.VIEW, TaskAction.CREATE, TaskAction.EDIT}),
    ProjectRole.viewer: frozenset(),
}


def _check_matrix_complete() -> None:
    for table in (ROLE_PROJECT_ACTIONS, ROLE_TASK_ACTIONS, ROLE_TASK_ACTIONS_IF_INVOLVED):
        missing = set(ProjectRole) - set(table)
        if missing:
            raise RuntimeError(f"Permission matrix missing roles: {sorted(r.value for r in missing)}")


_check_matrix_complete()


def role_allows_project_action(role: Optional[ProjectRole], action: ProjectAction) -> bool:
    if role is None:
        return False
    return action in ROLE_PROJECT_ACTIONS[role]


def role_allows_task_action(role: Optional[ProjectRole], action: TaskAction, involved: bool) -> bool:
    """
    Check a task action for a role.

    Args:
        role: Resolved project role (None = no access)
        action: Task action
        involved: Task was created by or is assigned to the principal

    Returns:
        True if the matrix grants the action.
    """
    if role is None:
        return False
    if action in ROLE_TASK_ACTIONS[role]:
        return True
    return involved and action in ROLE_TASK_ACTIONS_IF_INVOLVED[role]


def parse_role(value: Optional[str]) -> Optional[ProjectRole]:
    """Strict role parsing: unknown strings are never mapped to a default role."""
    if value is None:
        return None
    try:
        return ProjectRole(value)
    except ValueError:
        print(f"[RBAC] ERROR: Unrecognized role value {value!r} - treating as no access")
        return None


# ============================================================================
# Role Resolver
# ============================================================================

def resolve_role(
    conn,
    principal_id: str,
    project_id: str,
    project: Optional[Project] = None,
) -> Optional[ProjectRole]:
    """
    Resolve a principal's role in a project.

    Args:
        conn: Open database connection
        principal_id: Authenticated principal
        project_id: Project to resolve against
        project: Already-loaded project row (avoids a second query)

    Returns:
        The ProjectRole, or None when the principal has no access.
    """
    if not principal_id or not project_id:
        return None

    stored = store.get_membership_role(conn, principal_id, project_id)
    if stored is not None:
        return parse_role(stored)

    if project is None or project.id != project_id:
        project = store.get_project(conn, project_id)
    if project is not None and project.owner_id == principal_id:
        print(f"[RBAC] WARNING: owner membership row missing: project_id={project_id}, "
              f"owner_id={principal_id} - resolving as owner from project record")
        return ProjectRole.owner

    if IS_DEV:
        print(f"[RBAC] No role: principal_id={principal_id}, project_id={project_id}")
    return None
