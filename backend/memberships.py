"""
backend/memberships.py

Membership Mutator: the only code that writes membership rows.

Invariant: every project keeps at least one owner membership. Removals and
demotions count owners inside the same transaction that performs the change,
after taking the project lock, so two concurrent removals can't both observe
"two owners left" and together leave zero.

Project.owner_id is a denormalized pointer to one of the owners. It is set at
project creation and refreshed here when the owner it points at is removed or
demoted.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

try:
    from backend import db, store
    from backend.authz import require_permission
    from backend.errors import Conflict, Invalid, NotFound
    from backend.models import Membership, Project, ProjectRole, to_iso, utcnow
    from backend.rbac import ProjectAction
    from backend.visibility import list_visible_members
    from backend.config import IS_DEV
except ModuleNotFoundError:
    import db
    import store
    from authz import require_permission
    from errors import Conflict, Invalid, NotFound
    from models import Membership, Project, ProjectRole, to_iso, utcnow
    from rbac import ProjectAction
    from visibility import list_visible_members
    from config import IS_DEV


LAST_OWNER_MESSAGE = "A project must keep at least one owner. Promote another member to owner first."


def _coerce_role(role: Union[ProjectRole, str]) -> ProjectRole:
    if isinstance(role, ProjectRole):
        return role
    try:
        return ProjectRole(role)
    except ValueError:
        raise Invalid(f"Invalid role '{role}'. Must be one of: {', '.join(r.value for r in ProjectRole)}")


def _load_project_for_update(conn, project_id: str) -> Project:
    project = store.get_project(conn, project_id, for_update=True)
    if project is None:
        raise NotFound("Project not found")
    return project


def _refresh_owner_pointer(conn, project: Project, departing_user_id: str, now: datetime) -> None:
    """Repoint Project.owner_id when the owner it names stops being an owner."""
    if project.owner_id != departing_user_id:
        return
    remaining = [uid for uid in store.list_owner_ids(conn, project.id) if uid != departing_user_id]
    if remaining:
        store.update_project(conn, project.id, {"owner_id": remaining[0], "updated_at": to_iso(now)})
        print(f"[MEMBERS] owner_id for project {project.id} moved to {remaining[0]}")


def _ensure_not_last_owner(conn, project_id: str, user_id: str) -> None:
    owners = store.list_owner_ids(conn, project_id)
    if user_id in owners and len(owners) <= 1:
        print(f"[MEMBERS] Rejected: would leave project {project_id} without an owner (user_id={user_id})")
        raise Conflict(LAST_OWNER_MESSAGE)


# ---------------------------------------------------------
# In-transaction primitive
# ---------------------------------------------------------
def insert_membership(
    conn,
    project_id: str,
    user_id: str,
    role: ProjectRole,
    now: Optional[datetime] = None,
) -> Membership:
    """
    Add a membership row inside the caller's transaction.

    Used by project creation, invitation acceptance and add_member. Never
    writes a duplicate: an existing (user, project) row raises Conflict, and
    the composite primary key backs that up at the storage layer.
    """
    now = now or utcnow()
    if store.get_membership_role(conn, user_id, project_id) is not None:
        raise Conflict("User is already a member of this project")

    membership = Membership(user_id=user_id, project_id=project_id, role=role, created_at=now, updated_at=now)
    try:
        store.insert_membership(conn, membership)
    except Exception as e:
        if db.is_integrity_error(e):
            raise Conflict("User is already a member of this project")
        raise

    if IS_DEV:
        print(f"[MEMBERS] Added user_id={user_id} to project_id={project_id} as {role.value}")
    return membership


def purge_project_memberships(conn, project_id: str) -> None:
    """Drop every membership of a project that is being deleted (caller holds the transaction)."""
    removed = store.delete_project_memberships(conn, project_id)
    print(f"[MEMBERS] Purged {removed} membership(s) of deleted project_id={project_id}")


# ---------------------------------------------------------
# Member management
# ---------------------------------------------------------
def add_member(
    project_id: str,
    user_id: str,
    role: Union[ProjectRole, str],
    caller_id: str,
    now: Optional[datetime] = None,
) -> Membership:
    """Directly add a known principal to a project (requires manageMembers)."""
    role = _coerce_role(role)
    with db.transaction() as conn:
        project = _load_project_for_update(conn, project_id)
        require_permission(conn, caller_id, ProjectAction.MANAGE_MEMBERS, project)

        principal = store.get_principal(conn, user_id)
        if principal is None:
            raise NotFound("User not found")

        membership = insert_membership(conn, project_id, user_id, role, now)
        membership.email = principal.email
        return membership


def remove_member(project_id: str, user_id: str, caller_id: str, now: Optional[datetime] = None) -> None:
    """
    Remove a member. Owners may remove anyone; any member may remove
    themselves (leave the project). The last owner can never be removed.
    """
    now = now or utcnow()
    with db.transaction() as conn:
        project = _load_project_for_update(conn, project_id)
        if caller_id != user_id:
            require_permission(conn, caller_id, ProjectAction.MANAGE_MEMBERS, project)

        if store.get_membership_role(conn, user_id, project_id) is None:
            raise NotFound("Member not found")

        _ensure_not_last_owner(conn, project_id, user_id)
        store.delete_membership(conn, user_id, project_id)
        _refresh_owner_pointer(conn, project, user_id, now)

    print(f"[MEMBERS] Removed user_id={user_id} from project_id={project_id} (by {caller_id})")


def change_role(
    project_id: str,
    user_id: str,
    new_role: Union[ProjectRole, str],
    caller_id: str,
    now: Optional[datetime] = None,
) -> Membership:
    """Change a member's role (requires manageMembers). Demoting the last owner is rejected."""
    new_role = _coerce_role(new_role)
    now = now or utcnow()
    with db.transaction() as conn:
        project = _load_project_for_update(conn, project_id)
        require_permission(conn, caller_id, ProjectAction.MANAGE_MEMBERS, project)

        current = store.get_membership(conn, user_id, project_id)
        if current is None:
            raise NotFound("Member not found")
        if current.role == new_role:
            return current

        if current.role == ProjectRole.owner:
            _ensure_not_last_owner(conn, project_id, user_id)

        store.update_membership_role(conn, user_id, project_id, new_role, now)
        if current.role == ProjectRole.owner:
            _refresh_owner_pointer(conn, project, user_id, now)

        current.role = new_role
        current.updated_at = now

    print(f"[MEMBERS] Role change: user_id={user_id}, project_id={project_id}, role={new_role.value} (by {caller_id})")
    return current


def list_members(project_id: str, caller_id: str) -> List[Membership]:
    """Members visible to the caller (members only see themselves)."""
    with db.get_db_connection() as conn:
        if store.get_project(conn, project_id) is None:
            raise NotFound("Project not found")
        return list_visible_members(conn, caller_id, project_id)
