from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Storage format for timestamps: ISO-8601, always UTC."""
    return as_utc(value).isoformat()


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Enums
class ProjectRole(str, Enum):
    owner = "owner"
    collaborator = "collaborator"
    member = "member"
    viewer = "viewer"

# Owner is only ever granted at project creation or by member management
INVITABLE_ROLES = frozenset({ProjectRole.collaborator, ProjectRole.member, ProjectRole.viewer})

class InvitationStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    expired = "expired"
    revoked = "revoked"

class TaskStatus(str, Enum):
    todo = "todo"
    in_progress = "in_progress"
    review = "review"
    done = "done"

# Models
class Principal(BaseModel):
    id: str
    email: str

class Project(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    owner_id: str  # denormalized; the owner membership row is canonical
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class Membership(BaseModel):
    user_id: str
    project_id: str
    role: ProjectRole
    email: Optional[str] = None  # joined from principals when listing
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class Task(BaseModel):
    id: str
    project_id: Optional[str] = None  # None = personal task
    creator_id: str
    assignee_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.todo
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_personal(self) -> bool:
        return self.project_id is None

    def involves(self, principal_id: str) -> bool:
        """Created by or assigned to the principal."""
        return self.creator_id == principal_id or self.assignee_id == principal_id

class Invitation(BaseModel):
    id: str
    project_id: str
    email: str  # always lowercase
    role: ProjectRole
    token: str
    status: InvitationStatus = InvitationStatus.pending
    expires_at: datetime
    invited_by_user_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    accepted_by_user_id: Optional[str] = None

    def is_past_expiry(self, now: datetime) -> bool:
        return as_utc(now) > as_utc(self.expires_at)
