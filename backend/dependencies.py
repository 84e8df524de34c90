"""
backend/dependencies.py

Reusable FastAPI dependencies for project-scoped authorization.
"""

from __future__ import annotations

from typing import Callable, Union

from fastapi import Depends, HTTPException, Path

# Import auth context from dedicated module (breaks circular import)
try:
    from backend import db, store
    from backend.auth_context import require_auth_context, AuthContext
    from backend.authz import can
    from backend.config import IS_DEV
    from backend.errors import ACCESS_DENIED
    from backend.rbac import ProjectAction, TaskAction
except ModuleNotFoundError:
    import db
    import store
    from auth_context import require_auth_context, AuthContext
    from authz import can
    from config import IS_DEV
    from errors import ACCESS_DENIED
    from rbac import ProjectAction, TaskAction


def require_project_permission(action: Union[ProjectAction, TaskAction]) -> Callable:
    """
    FastAPI dependency factory for project-scoped permission checks.

    Reads `project_id` from the path, loads the project and asks the
    Permission Evaluator. Service functions check again inside their own
    transaction; this dependency rejects early with the right status.

    Usage in routes:
        @router.get("/{project_id}/members",
                    dependencies=[Depends(require_project_permission(ProjectAction.VIEW))])
        def list_members(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
            ...

    Args:
        action: The project or task action the caller must hold

    Returns:
        A dependency function that enforces the permission

    Raises:
        HTTPException(404): If the project does not exist
        HTTPException(403): If the principal lacks the permission (or any role)
    """
    def _check_permission(
        project_id: str = Path(...),
        ctx: AuthContext = Depends(require_auth_context),
    ) -> AuthContext:
        with db.get_db_connection() as conn:
            project = store.get_project(conn, project_id)
            if project is None:
                raise HTTPException(status_code=404, detail="Project not found")
            allowed = can(conn, ctx.principal_id, action, project)

        if not allowed:
            if IS_DEV:
                print(f"[AUTHZ] Route denied: action={action.value}, project_id={project_id}, "
                      f"principal_id={ctx.principal_id}")
            raise HTTPException(status_code=403, detail=ACCESS_DENIED)

        return ctx

    return _check_permission
