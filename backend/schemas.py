"""
backend/schemas.py

Pydantic request/response schemas for the project, membership, task and
invitation endpoints.

Security notes:
- Principal ids never come from request bodies for the acting user; they
  come from the verified token (AuthContext).
- InvitationPublic is what anyone holding a link may see. It never carries
  the token. Only InvitationCreated (returned to the inviter) does.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

try:
    from backend.models import Invitation, Membership, Project, ProjectRole, Task, TaskStatus, to_iso
except ModuleNotFoundError:
    from models import Invitation, Membership, Project, ProjectRole, Task, TaskStatus, to_iso


def _strip(v):
    if isinstance(v, str):
        return v.strip()
    return v


# ========================================================================
# PROJECT SCHEMAS
# ========================================================================

class ProjectCreateRequest(BaseModel):
    """No role field: the creator always becomes owner."""
    name: str = Field(..., min_length=1, max_length=200, description="Project name (required, 1-200 chars)")
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return _strip(v)


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    owner_id: str
    archived: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            owner_id=project.owner_id,
            archived=project.archived,
            created_at=to_iso(project.created_at),
            updated_at=to_iso(project.updated_at),
        )


class PermissionSnapshotResponse(BaseModel):
    """
    Advisory view of what the caller may do, for UI hints only.
    Every endpoint still checks permissions on its own.
    """
    role: Optional[ProjectRole] = None
    project: Dict[str, bool]
    task: Dict[str, str]
    advisory: bool = True


# ========================================================================
# MEMBERSHIP SCHEMAS
# ========================================================================

class MemberAddRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: ProjectRole


class MemberRoleUpdateRequest(BaseModel):
    role: ProjectRole


class MemberResponse(BaseModel):
    user_id: str
    project_id: str
    role: ProjectRole
    email: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_membership(cls, membership: Membership) -> "MemberResponse":
        return cls(
            user_id=membership.user_id,
            project_id=membership.project_id,
            role=membership.role,
            email=membership.email,
            created_at=to_iso(membership.created_at),
            updated_at=to_iso(membership.updated_at),
        )


# ========================================================================
# TASK SCHEMAS
# ========================================================================

class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=10000)
    status: TaskStatus = TaskStatus.todo
    assignee_id: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return _strip(v)


class TaskUpdateRequest(BaseModel):
    """
    Partial update. Omitting assignee_id leaves it alone; sending null
    unassigns the task (checked with `model_fields_set`).
    """
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, max_length=10000)
    status: Optional[TaskStatus] = None
    assignee_id: Optional[str] = None

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v):
        return _strip(v)


class TaskResponse(BaseModel):
    id: str
    project_id: Optional[str] = None
    creator_id: str
    assignee_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            project_id=task.project_id,
            creator_id=task.creator_id,
            assignee_id=task.assignee_id,
            title=task.title,
            description=task.description,
            status=task.status,
            created_at=to_iso(task.created_at),
            updated_at=to_iso(task.updated_at),
        )


# ========================================================================
# INVITATION SCHEMAS
# ========================================================================

class InvitationCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    role: ProjectRole = ProjectRole.member

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class InvitationPublic(BaseModel):
    """Invitation as shown to anyone who is not its creator. No token."""
    id: str
    project_id: str
    project_name: Optional[str] = None
    email: str
    role: ProjectRole
    status: str
    expires_at: str
    invited_by_user_id: str
    created_at: str
    accepted_at: Optional[str] = None

    @classmethod
    def from_invitation(cls, invitation: Invitation, project_name: Optional[str] = None) -> "InvitationPublic":
        return cls(
            id=invitation.id,
            project_id=invitation.project_id,
            project_name=project_name,
            email=invitation.email,
            role=invitation.role,
            status=invitation.status.value,
            expires_at=to_iso(invitation.expires_at),
            invited_by_user_id=invitation.invited_by_user_id,
            created_at=to_iso(invitation.created_at),
            accepted_at=to_iso(invitation.accepted_at) if invitation.accepted_at else None,
        )


class InvitationCreated(InvitationPublic):
    """Returned to the inviter on create/resend: includes the link to share."""
    token: str
    link: str
    email_sent: bool = False

    @classmethod
    def from_created(
        cls,
        invitation: Invitation,
        link: str,
        email_sent: bool,
        project_name: Optional[str] = None,
    ) -> "InvitationCreated":
        public = InvitationPublic.from_invitation(invitation, project_name)
        return cls(**public.model_dump(), token=invitation.token, link=link, email_sent=email_sent)


class InvitationAcceptResponse(BaseModel):
    project: ProjectResponse
    membership: MemberResponse
    already_member: bool = False


class InvitationListResponse(BaseModel):
    items: List[InvitationPublic] = Field(default_factory=list)
    total: int = 0
