"""
backend/tasks.py

Task operations for project tasks and personal tasks.

Project tasks are gated by the task half of the permission matrix; personal
tasks (no project) are only ever visible to and editable by their creator.
Assigning a task to someone other than yourself needs changeAssignee, and
the assignee has to be a member of the project.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

try:
    from backend import db, store
    from backend.authz import require_permission
    from backend.errors import Invalid, NotFound
    from backend.models import Project, Task, TaskStatus, to_iso, utcnow
    from backend.rbac import ProjectAction, TaskAction
    from backend.visibility import list_visible_tasks
except ModuleNotFoundError:
    import db
    import store
    from authz import require_permission
    from errors import Invalid, NotFound
    from models import Project, Task, TaskStatus, to_iso, utcnow
    from rbac import ProjectAction, TaskAction
    from visibility import list_visible_tasks


# Distinguishes "leave assignee alone" from "unassign" (None)
UNSET: Any = object()


def _clean_title(title: Optional[str]) -> str:
    title = (title or "").strip()
    if not title:
        raise Invalid("Task title must not be empty")
    if len(title) > 500:
        raise Invalid("Task title must be at most 500 characters")
    return title


def _coerce_status(status: Union[TaskStatus, str]) -> TaskStatus:
    try:
        return TaskStatus(status)
    except ValueError:
        raise Invalid(f"Invalid status '{status}'. Must be one of: {', '.join(s.value for s in TaskStatus)}")


def _load_task(conn, task_id: str) -> Task:
    task = store.get_task(conn, task_id)
    if task is None:
        raise NotFound("Task not found")
    return task


def _load_project(conn, project_id: str) -> Project:
    project = store.get_project(conn, project_id)
    if project is None:
        raise NotFound("Project not found")
    return project


def _check_assignee(conn, task: Task, principal_id: str, assignee_id: Optional[str]) -> None:
    """Validate handing `task` to `assignee_id` (None = unassigned)."""
    if task.is_personal:
        if assignee_id not in (None, principal_id):
            raise Invalid("Personal tasks can only be assigned to their creator")
        return

    if assignee_id not in (None, principal_id):
        require_permission(conn, principal_id, TaskAction.CHANGE_ASSIGNEE, task)
    if assignee_id is not None and store.get_membership_role(conn, assignee_id, task.project_id) is None:
        raise Invalid("Assignee must be a member of this project")


def create_task(
    principal_id: str,
    title: str,
    project_id: Optional[str] = None,
    assignee_id: Optional[str] = None,
    description: Optional[str] = None,
    status: Union[TaskStatus, str] = TaskStatus.todo,
    now: Optional[datetime] = None,
) -> Task:
    now = now or utcnow()
    task = Task(
        id=store.new_id(),
        project_id=project_id,
        creator_id=principal_id,
        assignee_id=assignee_id,
        title=_clean_title(title),
        description=description,
        status=_coerce_status(status),
        created_at=now,
        updated_at=now,
    )

    with db.transaction() as conn:
        if project_id is not None:
            _load_project(conn, project_id)
            require_permission(conn, principal_id, TaskAction.CREATE, task)
        _check_assignee(conn, task, principal_id, assignee_id)
        store.insert_task(conn, task)

    return task


def get_task(task_id: str, principal_id: str) -> Task:
    with db.get_db_connection() as conn:
        task = _load_task(conn, task_id)
        require_permission(conn, principal_id, TaskAction.VIEW, task)
        return task


def update_task(
    task_id: str,
    principal_id: str,
    title: Optional[str] = None,
    description: Optional[str] = None,
    status: Optional[Union[TaskStatus, str]] = None,
    assignee_id: Any = UNSET,
    now: Optional[datetime] = None,
) -> Task:
    now = now or utcnow()
    fields: Dict[str, Any] = {}
    if title is not None:
        fields["title"] = _clean_title(title)
    if description is not None:
        fields["description"] = description
    if status is not None:
        fields["status"] = _coerce_status(status).value

    with db.transaction() as conn:
        task = _load_task(conn, task_id)
        require_permission(conn, principal_id, TaskAction.EDIT, task)

        if assignee_id is not UNSET and assignee_id != task.assignee_id:
            if not task.is_personal:
                require_permission(conn, principal_id, TaskAction.CHANGE_ASSIGNEE, task)
            _check_assignee(conn, task, principal_id, assignee_id)
            fields["assignee_id"] = assignee_id

        if fields:
            fields["updated_at"] = to_iso(now)
            store.update_task(conn, task_id, fields)
        return _load_task(conn, task_id)


def delete_task(task_id: str, principal_id: str) -> None:
    with db.transaction() as conn:
        task = _load_task(conn, task_id)
        require_permission(conn, principal_id, TaskAction.DELETE, task)
        store.delete_task(conn, task_id)


def list_tasks(project_id: str, principal_id: str) -> List[Task]:
    """A project's tasks, narrowed to what the principal may see."""
    with db.get_db_connection() as conn:
        project = _load_project(conn, project_id)
        require_permission(conn, principal_id, ProjectAction.VIEW, project)
        return list_visible_tasks(conn, principal_id, project_id)


def list_personal_tasks(principal_id: str) -> List[Task]:
    with db.get_db_connection() as conn:
        return store.list_personal_tasks(conn, principal_id)
