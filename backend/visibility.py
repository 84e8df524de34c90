"""
backend/visibility.py

Task/Project Visibility Filter (defense in depth).

All bulk reads of tasks and members go through these helpers, inside the
data-access layer, so rows a principal may not see are dropped before any
list leaves the backend.

- viewAll roles (owner, collaborator) and viewer (view on every task):
  every task of the project
- member: only tasks they created or are assigned to
- no role: nothing

assert_tasks_visible() is the last check before a list is returned:
- In DEV: emit warnings for leaked rows
- In STAGING/PROD: fail fast
"""

from __future__ import annotations

from typing import Iterable, List

try:
    from backend import store
    from backend.authz import can
    from backend.config import IS_DEV
    from backend.models import Membership, ProjectRole, Task
    from backend.rbac import TaskAction, resolve_role, role_allows_task_action
except ModuleNotFoundError:
    import store
    from authz import can
    from config import IS_DEV
    from models import Membership, ProjectRole, Task
    from rbac import TaskAction, resolve_role, role_allows_task_action


def _sees_every_task(role) -> bool:
    """viewAll, or view granted on every task (viewer) rather than only involved ones."""
    return (
        role_allows_task_action(role, TaskAction.VIEW_ALL, involved=False)
        or role_allows_task_action(role, TaskAction.VIEW, involved=False)
    )


def filter_visible_tasks(conn, principal_id: str, project_id: str, all_tasks: Iterable[Task]) -> List[Task]:
    """
    Narrow a project's tasks to what the principal may see.

    The role is resolved once for the whole list.

    Args:
        conn: Open database connection
        principal_id: Authenticated principal
        project_id: Project the tasks belong to
        all_tasks: Candidate tasks (tasks from other projects are dropped)

    Returns:
        The visible subset, in input order.
    """
    role = resolve_role(conn, principal_id, project_id)
    tasks = [t for t in all_tasks if t.project_id == project_id]

    if _sees_every_task(role):
        return tasks
    if role == ProjectRole.member:
        return [t for t in tasks if t.involves(principal_id)]
    return []


def list_visible_tasks(conn, principal_id: str, project_id: str) -> List[Task]:
    """
    Query a project's tasks already narrowed for the principal.

    For members the creator/assignee filter is pushed into SQL so other
    members' task rows are never read into the response path at all.
    """
    role = resolve_role(conn, principal_id, project_id)

    if _sees_every_task(role):
        tasks = store.list_project_tasks(conn, project_id)
    elif role == ProjectRole.member:
        tasks = store.list_project_tasks(conn, project_id, involving=principal_id)
    else:
        tasks = []

    assert_tasks_visible(conn, principal_id, tasks, label=f"project {project_id} task list")
    return tasks


def list_visible_members(conn, principal_id: str, project_id: str) -> List[Membership]:
    """
    Members list as the principal may see it.

    A `member` only sees their own row; no role sees nothing.
    """
    role = resolve_role(conn, principal_id, project_id)
    if role is None:
        return []
    if role == ProjectRole.member:
        return store.list_memberships(conn, project_id, user_id=principal_id)
    return store.list_memberships(conn, project_id)


def assert_tasks_visible(conn, principal_id: str, tasks: List[Task], label: str = "") -> None:
    """
    Guardrail: every task about to be returned must pass can(view).

    Raises:
        RuntimeError: If a task is not viewable, outside DEV.
    """
    if not tasks:
        return  # Empty result set is fine

    leaked = [t.id for t in tasks if not can(conn, principal_id, TaskAction.VIEW, t)]
    if not leaked:
        return

    error_msg = f"[VISIBILITY] Task visibility violation{f' in {label}' if label else ''}"
    detail_msg = f"{len(leaked)} task(s) not viewable by principal_id={principal_id}: {leaked[:3]}"

    if IS_DEV:
        print(f"{error_msg}: {detail_msg} (DEV warning)")
    else:
        print(f"{error_msg}: {detail_msg} (PRODUCTION - failing fast)")
        raise RuntimeError(f"{error_msg}. {detail_msg}")
