"""
backend/projects.py

Project operations, each guarded by the Permission Evaluator.

Required actions:
- view     - get_project (all roles)
- edit     - update_project (owner, collaborator)
- archive  - set_archived (owner)
- delete   - delete_project (owner)

create_project writes the project row and the creator's owner membership in
one transaction. The creator's role is always owner; it is never taken from
request input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

try:
    from backend import db, store
    from backend.authz import require_permission
    from backend.errors import Invalid, NotFound
    from backend.memberships import insert_membership, purge_project_memberships
    from backend.models import Project, ProjectRole, to_iso, utcnow
    from backend.rbac import ProjectAction
except ModuleNotFoundError:
    import db
    import store
    from authz import require_permission
    from errors import Invalid, NotFound
    from memberships import insert_membership, purge_project_memberships
    from models import Project, ProjectRole, to_iso, utcnow
    from rbac import ProjectAction


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise Invalid("Project name must not be empty")
    if len(name) > 200:
        raise Invalid("Project name must be at most 200 characters")
    return name


def _load(conn, project_id: str) -> Project:
    project = store.get_project(conn, project_id)
    if project is None:
        raise NotFound("Project not found")
    return project


def create_project(
    owner_id: str,
    owner_email: str,
    name: str,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Project:
    now = now or utcnow()
    project = Project(
        id=store.new_id(),
        name=_clean_name(name),
        description=description,
        owner_id=owner_id,
        created_at=now,
        updated_at=now,
    )

    with db.transaction() as conn:
        store.upsert_principal(conn, owner_id, owner_email, now)
        store.insert_project(conn, project)
        insert_membership(conn, project.id, owner_id, ProjectRole.owner, now)

    print(f"[PROJECTS] Created project_id={project.id} owner_id={owner_id}")
    return project


def get_project(project_id: str, principal_id: str) -> Project:
    with db.get_db_connection() as conn:
        project = _load(conn, project_id)
        require_permission(conn, principal_id, ProjectAction.VIEW, project)
        return project


def list_projects(principal_id: str, include_archived: bool = True) -> List[Project]:
    """Projects the principal holds a membership in."""
    with db.get_db_connection() as conn:
        return store.list_projects_for_user(conn, principal_id, include_archived=include_archived)


def update_project(
    project_id: str,
    principal_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Project:
    now = now or utcnow()
    fields: Dict[str, Any] = {}
    if name is not None:
        fields["name"] = _clean_name(name)
    if description is not None:
        fields["description"] = description

    with db.transaction() as conn:
        project = _load(conn, project_id)
        require_permission(conn, principal_id, ProjectAction.EDIT, project)
        if fields:
            fields["updated_at"] = to_iso(now)
            store.update_project(conn, project_id, fields)
        return _load(conn, project_id)


def set_archived(project_id: str, principal_id: str, archived: bool, now: Optional[datetime] = None) -> Project:
    """Archive or restore a project (owner only)."""
    now = now or utcnow()
    with db.transaction() as conn:
        project = _load(conn, project_id)
        require_permission(conn, principal_id, ProjectAction.ARCHIVE, project)
        store.update_project(conn, project_id, {"archived": archived, "updated_at": to_iso(now)})
        return _load(conn, project_id)


def delete_project(project_id: str, principal_id: str) -> None:
    """Delete a project with its memberships, tasks and invitations (owner only)."""
    with db.transaction() as conn:
        project = _load(conn, project_id)
        require_permission(conn, principal_id, ProjectAction.DELETE, project)
        purge_project_memberships(conn, project_id)
        store.delete_project(conn, project_id)

    print(f"[PROJECTS] Deleted project_id={project_id} (by {principal_id})")
