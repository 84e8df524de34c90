"""
backend/authz.py

Permission Evaluator: single source of truth for "may this principal do this".

Every route handler and service calls can() / require_permission() before it
mutates or returns project or task data. The matrix lives in rbac.py; this
module only resolves the resource and the principal's role and looks the
answer up.

Fails closed: an unknown action, a resource that cannot be loaded, or a
loader that raises all evaluate to deny.

permission_snapshot() is the advisory copy handed to UIs for hiding buttons.
It is generated from the same tables and is never a trust boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Literal, Optional, Union

try:
    from backend import store
    from backend.config import IS_DEV
    from backend.errors import ACCESS_DENIED, Forbidden
    from backend.models import Project, ProjectRole, Task
    from backend.rbac import (
        ProjectAction,
        TaskAction,
        resolve_role,
        role_allows_project_action,
        role_allows_task_action,
    )
except ModuleNotFoundError:
    import store
    from config import IS_DEV
    from errors import ACCESS_DENIED, Forbidden
    from models import Project, ProjectRole, Task
    from rbac import (
        ProjectAction,
        TaskAction,
        resolve_role,
        role_allows_project_action,
        role_allows_task_action,
    )


@dataclass(frozen=True)
class ResourceRef:
    """Reference to a resource that still has to be loaded."""
    kind: Literal["project", "task"]
    id: str


Resource = Union[Project, Task, ResourceRef]
Action = Union[ProjectAction, TaskAction, str]
Loader = Callable[[str], Optional[Union[Project, Task]]]


# ============================================================================
# Action / Resource Normalization
# ============================================================================

def _coerce_action(action: Action, resource: Union[Project, Task]) -> Optional[Union[ProjectAction, TaskAction]]:
    if isinstance(action, (ProjectAction, TaskAction)):
        if isinstance(resource, Task) and isinstance(action, ProjectAction):
            return None  # project actions make no sense on a task
        return action

    # Plain strings: project resources prefer project actions ("view", "edit"...)
    if isinstance(resource, Project):
        for enum_cls in (ProjectAction, TaskAction):
            try:
                return enum_cls(action)
            except ValueError:
                continue
        return None

    try:
        return TaskAction(action)
    except ValueError:
        return None


def _load(conn, resource: Resource, loader: Optional[Loader]) -> Optional[Union[Project, Task]]:
    if isinstance(resource, (Project, Task)):
        return resource

    if loader is None:
        loader = (
            (lambda rid: store.get_project(conn, rid))
            if resource.kind == "project"
            else (lambda rid: store.get_task(conn, rid))
        )

    loaded = loader(resource.id)
    expected = Project if resource.kind == "project" else Task
    if not isinstance(loaded, expected):
        return None
    return loaded


# ============================================================================
# Main Evaluation Function
# ============================================================================

def can(conn, principal_id: str, action: Action, resource: Resource, loader: Optional[Loader] = None) -> bool:
    """
    Decide whether `principal_id` may perform `action` on `resource`.

    Args:
        conn: Open database connection (read-only use)
        principal_id: Authenticated principal
        action: ProjectAction / TaskAction, or its string value
        resource: Project or Task snapshot, or a ResourceRef to load
        loader: Optional callable(id) -> Project | Task used for ResourceRef

    Returns:
        True only when the permission matrix grants the action.
    """
    if not principal_id:
        return False

    try:
        target = _load(conn, resource, loader)
    except Exception as e:
        # Fail closed: a broken loader must never turn into an allow
        print(f"[AUTHZ] Resource load failed ({type(e).__name__}: {e}) - denying: "
              f"principal_id={principal_id}, resource={resource}")
        return False

    if target is None:
        if IS_DEV:
            print(f"[AUTHZ] Resource not found - denying: principal_id={principal_id}, resource={resource}")
        return False

    resolved_action = _coerce_action(action, target)
    if resolved_action is None:
        print(f"[AUTHZ] Unknown action {action!r} for {type(target).__name__} - denying")
        return False

    allowed = _evaluate(conn, principal_id, resolved_action, target)

    if IS_DEV:
        kind = "project" if isinstance(target, Project) else "task"
        print(f"[AUTHZ] {'Access granted' if allowed else 'Access denied'}: principal_id={principal_id}, "
              f"action={resolved_action.value}, {kind}_id={target.id}")
    return allowed


def _evaluate(conn, principal_id: str, action: Union[ProjectAction, TaskAction], target: Union[Project, Task]) -> bool:
    if isinstance(target, Task):
        if target.is_personal:
            # Personal tasks have no project role: only the creator gets in
            return target.creator_id == principal_id
        role = resolve_role(conn, principal_id, target.project_id)
        return role_allows_task_action(role, action, involved=target.involves(principal_id))

    role = resolve_role(conn, principal_id, target.id, project=target)
    if isinstance(action, ProjectAction):
        return role_allows_project_action(role, action)
    # Task action against the project: a task about to be created belongs to its creator
    return role_allows_task_action(role, action, involved=(action == TaskAction.CREATE))


def require_permission(
    conn,
    principal_id: str,
    action: Action,
    resource: Resource,
    loader: Optional[Loader] = None,
) -> None:
    """
    Enforce can(). Raises Forbidden with the same message whether the
    principal has no role or an insufficient one.
    """
    if not can(conn, principal_id, action, resource, loader):
        raise Forbidden(ACCESS_DENIED)


# ============================================================================
# Advisory Snapshot (UI hints only)
# ============================================================================

def permission_snapshot(role: Optional[ProjectRole]) -> Dict[str, Any]:
    """
    Describe what `role` may do, for clients that hide unavailable controls.

    Task entries are "all" (any task), "own" (only tasks the principal created
    or is assigned to) or "none".
    """
    project = {a.value: role_allows_project_action(role, a) for a in ProjectAction}

    task: Dict[str, str] = {}
    for a in TaskAction:
        if role_allows_task_action(role, a, involved=False):
            task[a.value] = "all"
        elif role_allows_task_action(role, a, involved=True):
            task[a.value] = "own"
        else:
            task[a.value] = "none"

    return {
        "role": role.value if role else None,
        "project": project,
        "task": task,
        "advisory": True,
    }
