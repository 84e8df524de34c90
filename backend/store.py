"""
backend/store.py

Row-level storage helpers for principals, projects, memberships, tasks and
invitations.

Every function takes an open connection so callers decide the transaction
boundary (see db.transaction()). Nothing here checks permissions; that is the
job of authz.py and the service modules. Membership writes are only called
from memberships.py.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

try:
    from backend import db
    from backend.models import (
        Invitation,
        InvitationStatus,
        Membership,
        Principal,
        Project,
        ProjectRole,
        Task,
        to_iso,
    )
except ModuleNotFoundError:
    import db
    from models import (
        Invitation,
        InvitationStatus,
        Membership,
        Principal,
        Project,
        ProjectRole,
        Task,
        to_iso,
    )


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _set_clause(fields: Dict[str, Any], allowed: Iterable[str]) -> str:
    unknown = set(fields) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown column(s): {sorted(unknown)}")
    return ", ".join(f"{name} = :{name}" for name in fields)


def _in_clause(prefix: str, values: List[str], params: Dict[str, Any]) -> str:
    names = []
    for i, value in enumerate(values):
        key = f"{prefix}{i}"
        params[key] = value
        names.append(f":{key}")
    return ", ".join(names)


# ---------------------------------------------------------
# Principals (local mirror of the identity service)
# ---------------------------------------------------------
def upsert_principal(conn, principal_id: str, email: str, now: datetime) -> Principal:
    email = normalize_email(email)
    db.execute_query(
        conn,
        """
        INSERT INTO principals (id, email, created_at)
        VALUES (:id, :email, :created_at)
        ON CONFLICT (id) DO UPDATE SET email = excluded.email
        """,
        {"id": principal_id, "email": email, "created_at": to_iso(now)},
    )
    return Principal(id=principal_id, email=email)


def get_principal(conn, principal_id: str) -> Optional[Principal]:
    row = db.fetch_one(conn, "SELECT id, email FROM principals WHERE id = :id", {"id": principal_id})
    return Principal(**row) if row else None


# ---------------------------------------------------------
# Projects
# ---------------------------------------------------------
PROJECT_COLUMNS = "id, name, description, owner_id, archived, created_at, updated_at"


def insert_project(conn, project: Project) -> None:
    db.execute_query(
        conn,
        """
        INSERT INTO projects (id, name, description, owner_id, archived, created_at, updated_at)
        VALUES (:id, :name, :description, :owner_id, :archived, :created_at, :updated_at)
        """,
        {
            "id": project.id,
            "name": project.name,
            "description": project.description,
            "owner_id": project.owner_id,
            "archived": 1 if project.archived else 0,
            "created_at": to_iso(project.created_at),
            "updated_at": to_iso(project.updated_at),
        },
    )


def get_project(conn, project_id: str, for_update: bool = False) -> Optional[Project]:
    sql = f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = :id"
    if for_update:
        sql += db.lock_clause()
    row = db.fetch_one(conn, sql, {"id": project_id})
    return Project(**row) if row else None


def update_project(conn, project_id: str, fields: Dict[str, Any]) -> None:
    if "archived" in fields:
        fields = {**fields, "archived": 1 if fields["archived"] else 0}
    set_clause = _set_clause(fields, ("name", "description", "owner_id", "archived", "updated_at"))
    db.execute_query(conn, f"UPDATE projects SET {set_clause} WHERE id = :id", {**fields, "id": project_id})


def delete_project(conn, project_id: str) -> None:
    # Memberships are purged by memberships.purge_project_memberships() first
    for table in ("invitations", "tasks"):
        db.execute_query(conn, f"DELETE FROM {table} WHERE project_id = :id", {"id": project_id})
    db.execute_query(conn, "DELETE FROM projects WHERE id = :id", {"id": project_id})


def list_projects_for_user(conn, user_id: str, include_archived: bool = True) -> List[Project]:
    sql = f"""
        SELECT {', '.join('p.' + c.strip() for c in PROJECT_COLUMNS.split(','))}
        FROM projects p
        JOIN memberships m ON m.project_id = p.id
        WHERE m.user_id = :user_id
    """
    if not include_archived:
        sql += " AND p.archived = 0"
    sql += " ORDER BY p.created_at DESC"
    return [Project(**row) for row in db.fetch_all(conn, sql, {"user_id": user_id})]


# ---------------------------------------------------------
# Memberships (written only by memberships.py)
# ---------------------------------------------------------
def get_membership_role(conn, user_id: str, project_id: str) -> Optional[str]:
    """Raw stored role string, or None when there is no membership row."""
    row = db.fetch_one(
        conn,
        "SELECT role FROM memberships WHERE user_id = :user_id AND project_id = :project_id",
        {"user_id": user_id, "project_id": project_id},
    )
    return row["role"] if row else None


def get_membership(conn, user_id: str, project_id: str) -> Optional[Membership]:
    row = db.fetch_one(
        conn,
        """
        SELECT m.user_id, m.project_id, m.role, p.email, m.created_at, m.updated_at
        FROM memberships m
        LEFT JOIN principals p ON p.id = m.user_id
        WHERE m.user_id = :user_id AND m.project_id = :project_id
        """,
        {"user_id": user_id, "project_id": project_id},
    )
    return Membership(**row) if row else None


def find_membership_by_email(conn, project_id: str, email: str) -> Optional[Membership]:
    row = db.fetch_one(
        conn,
        """
        SELECT m.user_id, m.project_id, m.role, p.email, m.created_at, m.updated_at
        FROM memberships m
        JOIN principals p ON p.id = m.user_id
        WHERE m.project_id = :project_id AND p.email = :email
        """,
        {"project_id": project_id, "email": normalize_email(email)},
    )
    return Membership(**row) if row else None


def insert_membership(conn, membership: Membership) -> None:
    db.execute_query(
        conn,
        """
        INSERT INTO memberships (user_id, project_id, role, created_at, updated_at)
        VALUES (:user_id, :project_id, :role, :created_at, :updated_at)
        """,
        {
            "user_id": membership.user_id,
            "project_id": membership.project_id,
            "role": membership.role.value,
            "created_at": to_iso(membership.created_at),
            "updated_at": to_iso(membership.updated_at),
        },
    )


def update_membership_role(conn, user_id: str, project_id: str, role: ProjectRole, now: datetime) -> None:
    db.execute_query(
        conn,
        """
        UPDATE memberships SET role = :role, updated_at = :updated_at
        WHERE user_id = :user_id AND project_id = :project_id
        """,
        {"role": role.value, "updated_at": to_iso(now), "user_id": user_id, "project_id": project_id},
    )


def delete_membership(conn, user_id: str, project_id: str) -> None:
    db.execute_query(
        conn,
        "DELETE FROM memberships WHERE user_id = :user_id AND project_id = :project_id",
        {"user_id": user_id, "project_id": project_id},
    )


def delete_project_memberships(conn, project_id: str) -> int:
    result = db.execute_query(conn, "DELETE FROM memberships WHERE project_id = :id", {"id": project_id})
    return result.rowcount


def list_owner_ids(conn, project_id: str) -> List[str]:
    rows = db.fetch_all(
        conn,
        "SELECT user_id FROM memberships WHERE project_id = :project_id AND role = 'owner' ORDER BY created_at",
        {"project_id": project_id},
    )
    return [r["user_id"] for r in rows]


def list_memberships(conn, project_id: str, user_id: Optional[str] = None) -> List[Membership]:
    sql = """
        SELECT m.user_id, m.project_id, m.role, p.email, m.created_at, m.updated_at
        FROM memberships m
        LEFT JOIN principals p ON p.id = m.user_id
        WHERE m.project_id = :project_id
    """
    params: Dict[str, Any] = {"project_id": project_id}
    if user_id is not None:
        sql += " AND m.user_id = :user_id"
        params["user_id"] = user_id
    sql += " ORDER BY m.created_at"
    return [Membership(**row) for row in db.fetch_all(conn, sql, params)]


# ---------------------------------------------------------
# Tasks
# ---------------------------------------------------------
TASK_COLUMNS = "id, project_id, creator_id, assignee_id, title, description, status, created_at, updated_at"


def insert_task(conn, task: Task) -> None:
    db.execute_query(
        conn,
        f"""
        INSERT INTO tasks ({TASK_COLUMNS})
        VALUES (:id, :project_id, :creator_id, :assignee_id, :title, :description, :status,
                :created_at, :updated_at)
        """,
        {
            "id": task.id,
            "project_id": task.project_id,
            "creator_id": task.creator_id,
            "assignee_id": task.assignee_id,
            "title": task.title,
            "description": task.description,
            "status": task.status.value,
            "created_at": to_iso(task.created_at),
            "updated_at": to_iso(task.updated_at),
        },
    )


def get_task(conn, task_id: str) -> Optional[Task]:
    row = db.fetch_one(conn, f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = :id", {"id": task_id})
    return Task(**row) if row else None


def update_task(conn, task_id: str, fields: Dict[str, Any]) -> None:
    set_clause = _set_clause(fields, ("title", "description", "status", "assignee_id", "updated_at"))
    db.execute_query(conn, f"UPDATE tasks SET {set_clause} WHERE id = :id", {**fields, "id": task_id})


def delete_task(conn, task_id: str) -> None:
    db.execute_query(conn, "DELETE FROM tasks WHERE id = :id", {"id": task_id})


def list_project_tasks(conn, project_id: str, involving: Optional[str] = None) -> List[Task]:
    """All tasks of a project, or only those created by / assigned to `involving`."""
    sql = f"SELECT {TASK_COLUMNS} FROM tasks WHERE project_id = :project_id"
    params: Dict[str, Any] = {"project_id": project_id}
    if involving is not None:
        sql += " AND (creator_id = :principal_id OR assignee_id = :principal_id)"
        params["principal_id"] = involving
    sql += " ORDER BY created_at"
    return [Task(**row) for row in db.fetch_all(conn, sql, params)]


def list_personal_tasks(conn, creator_id: str) -> List[Task]:
    rows = db.fetch_all(
        conn,
        f"SELECT {TASK_COLUMNS} FROM tasks WHERE project_id IS NULL AND creator_id = :creator_id ORDER BY created_at",
        {"creator_id": creator_id},
    )
    return [Task(**row) for row in rows]


# ---------------------------------------------------------
# Invitations
# ---------------------------------------------------------
INVITATION_COLUMNS = (
    "id, project_id, email, role, token, status, expires_at, invited_by_user_id, "
    "created_at, updated_at, accepted_at, accepted_by_user_id"
)


def insert_invitation(conn, invitation: Invitation) -> None:
    db.execute_query(
        conn,
        f"""
        INSERT INTO invitations ({INVITATION_COLUMNS})
        VALUES (:id, :project_id, :email, :role, :token, :status, :expires_at, :invited_by_user_id,
                :created_at, :updated_at, NULL, NULL)
        """,
        {
            "id": invitation.id,
            "project_id": invitation.project_id,
            "email": invitation.email,
            "role": invitation.role.value,
            "token": invitation.token,
            "status": invitation.status.value,
            "expires_at": to_iso(invitation.expires_at),
            "invited_by_user_id": invitation.invited_by_user_id,
            "created_at": to_iso(invitation.created_at),
            "updated_at": to_iso(invitation.updated_at),
        },
    )


def get_invitation(conn, invitation_id: str) -> Optional[Invitation]:
    row = db.fetch_one(conn, f"SELECT {INVITATION_COLUMNS} FROM invitations WHERE id = :id", {"id": invitation_id})
    return Invitation(**row) if row else None


def get_invitation_by_token(conn, token: str) -> Optional[Invitation]:
    row = db.fetch_one(conn, f"SELECT {INVITATION_COLUMNS} FROM invitations WHERE token = :token", {"token": token})
    return Invitation(**row) if row else None


def find_pending_invitation(conn, project_id: str, email: str) -> Optional[Invitation]:
    row = db.fetch_one(
        conn,
        f"""
        SELECT {INVITATION_COLUMNS} FROM invitations
        WHERE project_id = :project_id AND email = :email AND status = 'pending'
        """,
        {"project_id": project_id, "email": normalize_email(email)},
    )
    return Invitation(**row) if row else None


def list_project_invitations(conn, project_id: str) -> List[Invitation]:
    rows = db.fetch_all(
        conn,
        f"SELECT {INVITATION_COLUMNS} FROM invitations WHERE project_id = :project_id ORDER BY created_at DESC",
        {"project_id": project_id},
    )
    return [Invitation(**row) for row in rows]


def list_pending_invitations_for_email(conn, email: str) -> List[Invitation]:
    rows = db.fetch_all(
        conn,
        f"""
        SELECT {INVITATION_COLUMNS} FROM invitations
        WHERE email = :email AND status = 'pending'
        ORDER BY created_at DESC
        """,
        {"email": normalize_email(email)},
    )
    return [Invitation(**row) for row in rows]


def transition_invitation(
    conn,
    invitation_id: str,
    from_statuses: List[InvitationStatus],
    to_status: InvitationStatus,
    now: datetime,
    extra: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Conditional status update. Returns False when the row was no longer in one
    of `from_statuses`, i.e. another caller changed it first.
    """
    fields: Dict[str, Any] = {"status": to_status.value, "updated_at": to_iso(now)}
    fields.update(extra or {})
    set_clause = _set_clause(
        fields,
        ("status", "updated_at", "token", "expires_at", "accepted_at", "accepted_by_user_id"),
    )
    params: Dict[str, Any] = {**fields, "id": invitation_id}
    in_clause = _in_clause("from_status_", [s.value for s in from_statuses], params)
    result = db.execute_query(
        conn,
        f"UPDATE invitations SET {set_clause} WHERE id = :id AND status IN ({in_clause})",
        params,
    )
    return result.rowcount == 1
