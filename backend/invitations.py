"""
backend/invitations.py

Invitation Manager: time-bounded, single-use tokens that offer a project role
to an email address.

State machine:

    pending --accept--> accepted   (terminal)
    pending --expiry--> expired    (terminal; applied lazily on read)
    pending --revoke--> revoked    (terminal)
    pending --resend--> pending    (new token + expiry, same row)
    expired --resend--> pending

There is no expiry sweeper. Any read that finds a pending row past its
expires_at flips it to expired before returning it.

Every status change is a conditional UPDATE guarded on the expected current
status, so when accept and revoke race on one invitation exactly one of them
wins and the other gets Conflict.

Tokens are 256 bits from `secrets`, hex encoded, and never logged.
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Union

try:
    from backend import db, store
    from backend.authz import require_permission
    from backend.config import APP_URL, INVITATION_TTL_HOURS, IS_DEV
    from backend.errors import AccessError, Conflict, Expired, Forbidden, Invalid, NotFound
    from backend.memberships import insert_membership
    from backend.models import (
        INVITABLE_ROLES,
        Invitation,
        InvitationStatus,
        Membership,
        Project,
        ProjectRole,
        to_iso,
        utcnow,
    )
    from backend.rbac import ProjectAction
except ModuleNotFoundError:
    import db
    import store
    from authz import require_permission
    from config import APP_URL, INVITATION_TTL_HOURS, IS_DEV
    from errors import AccessError, Conflict, Expired, Forbidden, Invalid, NotFound
    from memberships import insert_membership
    from models import (
        INVITABLE_ROLES,
        Invitation,
        InvitationStatus,
        Membership,
        Project,
        ProjectRole,
        to_iso,
        utcnow,
    )
    from rbac import ProjectAction


INVITATION_TTL = timedelta(hours=INVITATION_TTL_HOURS)
TOKEN_BYTES = 32  # 256 bits -> 64 hex chars

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")

# Caller-facing guidance. None of these name other members.
EXPIRED_MESSAGE = "This invitation has expired. Ask the project owner to send a new one."
USED_MESSAGE = "This invitation has already been used."
REVOKED_MESSAGE = "This invitation is no longer valid."
WRONG_ACCOUNT_MESSAGE = "This invitation was sent to a different email address."
RACE_MESSAGE = "This invitation was changed by another request. Reload and try again."
DUPLICATE_MESSAGE = "There is already a pending invitation for this email"
ALREADY_MEMBER_MESSAGE = "User is already a member of this project"


@dataclass
class AcceptResult:
    """Outcome of accept_invitation()."""
    invitation: Invitation
    membership: Membership
    project: Project
    already_member: bool = False


# ============================================================================
# Token / Expiry Helpers
# ============================================================================

def generate_invitation_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def expiration_from(now: datetime) -> datetime:
    return now + INVITATION_TTL


def invitation_link(invitation: Invitation) -> str:
    """Link the invited party opens to accept."""
    return f"{APP_URL}/invite/{invitation.token}"


def _coerce_invite_role(role: Union[ProjectRole, str]) -> ProjectRole:
    try:
        parsed = ProjectRole(role)
    except ValueError:
        raise Invalid("Invalid role. Must be collaborator, member, or viewer")
    if parsed not in INVITABLE_ROLES:
        raise Invalid("Cannot invite users as owner. Use member management to promote existing members.")
    return parsed


def _clean_email(email: Optional[str]) -> str:
    email = store.normalize_email(email or "")
    if not EMAIL_PATTERN.match(email):
        raise Invalid("A valid email address is required")
    return email


def _expire_if_stale(conn, invitation: Invitation, now: datetime) -> Invitation:
    """Lazy expiry: flip a pending row past its expiry to expired."""
    if invitation.status != InvitationStatus.pending or not invitation.is_past_expiry(now):
        return invitation

    if store.transition_invitation(conn, invitation.id, [InvitationStatus.pending], InvitationStatus.expired, now):
        print(f"[INVITES] Expired invitation_id={invitation.id} (expires_at={to_iso(invitation.expires_at)})")
    return store.get_invitation(conn, invitation.id)


def _load_for_manager(conn, invitation_id: str, caller_id: str) -> Invitation:
    invitation = store.get_invitation(conn, invitation_id)
    if invitation is None:
        raise NotFound("Invitation not found")
    project = store.get_project(conn, invitation.project_id, for_update=True)
    if project is None:
        raise NotFound("Invitation not found")
    require_permission(conn, caller_id, ProjectAction.INVITE_USERS, project)
    return invitation


# ============================================================================
# Create
# ============================================================================

def create_invitation(
    project_id: str,
    email: str,
    role: Union[ProjectRole, str],
    inviter_id: str,
    now: Optional[datetime] = None,
) -> Invitation:
    """
    Invite `email` to a project with `role`.

    Raises:
        NotFound: project does not exist
        Forbidden: inviter lacks inviteUsers
        Invalid: role is owner/unknown, or email malformed
        Conflict: email already a member, or a pending invitation exists
    """
    now = now or utcnow()
    role = _coerce_invite_role(role)
    email = _clean_email(email)

    with db.transaction() as conn:
        project = store.get_project(conn, project_id, for_update=True)
        if project is None:
            raise NotFound("Project not found")
        require_permission(conn, inviter_id, ProjectAction.INVITE_USERS, project)

        if store.find_membership_by_email(conn, project_id, email) is not None:
            raise Conflict(ALREADY_MEMBER_MESSAGE)

        existing = store.find_pending_invitation(conn, project_id, email)
        if existing is not None:
            existing = _expire_if_stale(conn, existing, now)
            if existing.status == InvitationStatus.pending:
                raise Conflict(DUPLICATE_MESSAGE)

        invitation = Invitation(
            id=store.new_id(),
            project_id=project_id,
            email=email,
            role=role,
            token=generate_invitation_token(),
            status=InvitationStatus.pending,
            expires_at=expiration_from(now),
            invited_by_user_id=inviter_id,
            created_at=now,
            updated_at=now,
        )
        try:
            store.insert_invitation(conn, invitation)
        except Exception as e:
            if db.is_integrity_error(e):
                raise Conflict(DUPLICATE_MESSAGE)
            raise

    print(f"[INVITES] Created invitation_id={invitation.id} project_id={project_id} "
          f"role={role.value} (by {inviter_id})")
    return invitation


# ============================================================================
# Read
# ============================================================================

def get_invitation_by_token(token: str, now: Optional[datetime] = None) -> Invitation:
    """
    Accept-page lookup. Returns the row with its current (lazily expired)
    status; callers decide what to show for non-pending states.
    """
    now = now or utcnow()
    if not token or not TOKEN_PATTERN.match(token):
        raise NotFound("Invitation not found")

    with db.transaction() as conn:
        invitation = store.get_invitation_by_token(conn, token)
        if invitation is None:
            raise NotFound("Invitation not found")
        return _expire_if_stale(conn, invitation, now)


def get_invitation(invitation_id: str, caller_id: str, now: Optional[datetime] = None) -> Invitation:
    now = now or utcnow()
    with db.transaction() as conn:
        invitation = _load_for_manager(conn, invitation_id, caller_id)
        return _expire_if_stale(conn, invitation, now)


def list_project_invitations(project_id: str, caller_id: str, now: Optional[datetime] = None) -> List[Invitation]:
    """All invitations of a project, newest first (requires inviteUsers)."""
    now = now or utcnow()
    with db.transaction() as conn:
        project = store.get_project(conn, project_id)
        if project is None:
            raise NotFound("Project not found")
        require_permission(conn, caller_id, ProjectAction.INVITE_USERS, project)
        return [_expire_if_stale(conn, inv, now) for inv in store.list_project_invitations(conn, project_id)]


def list_pending_invitations_for_email(email: str, now: Optional[datetime] = None) -> List[Invitation]:
    """Still-pending invitations addressed to `email` ("my invitations")."""
    now = now or utcnow()
    with db.transaction() as conn:
        current = [_expire_if_stale(conn, inv, now) for inv in store.list_pending_invitations_for_email(conn, email)]
        return [inv for inv in current if inv.status == InvitationStatus.pending]


# ============================================================================
# Accept
# ============================================================================

def accept_invitation(
    token: str,
    principal_id: str,
    principal_email: str,
    now: Optional[datetime] = None,
) -> AcceptResult:
    """
    Accept an invitation as the authenticated principal.

    The membership insert and the pending->accepted update commit together.
    Accepting again as the same (now member) principal returns the existing
    membership instead of failing or duplicating it.

    Raises:
        NotFound: unknown token
        Forbidden: principal_email differs from the invited email
        Expired: invitation past its expiry
        Conflict: revoked, used by someone else, or lost a race
    """
    now = now or utcnow()
    if not token or not TOKEN_PATTERN.match(token):
        raise NotFound("Invitation not found")

    refusal: Optional[AccessError] = None
    with db.transaction() as conn:
        invitation = store.get_invitation_by_token(conn, token)
        if invitation is None:
            raise NotFound("Invitation not found")

        invitation = _expire_if_stale(conn, invitation, now)

        # Refusals leave the block normally so a lazy expiry still commits
        if store.normalize_email(principal_email) != invitation.email:
            print(f"[INVITES] Email mismatch on accept: invitation_id={invitation.id}, principal_id={principal_id}")
            refusal = Forbidden(WRONG_ACCOUNT_MESSAGE)
        elif invitation.status == InvitationStatus.expired:
            refusal = Expired(EXPIRED_MESSAGE)
        else:
            return _accept_locked(conn, invitation, principal_id, principal_email, now)

    raise refusal


def _accept_locked(conn, invitation: Invitation, principal_id: str, principal_email: str, now: datetime) -> AcceptResult:
    if invitation.status == InvitationStatus.revoked:
        raise Conflict(REVOKED_MESSAGE)

    existing = store.get_membership(conn, principal_id, invitation.project_id)

    if invitation.status == InvitationStatus.accepted:
        if existing is None:
            raise Conflict(USED_MESSAGE)
        project = store.get_project(conn, invitation.project_id)
        return AcceptResult(invitation=invitation, membership=existing, project=project, already_member=True)

    try:
        store.upsert_principal(conn, principal_id, principal_email, now)
    except Exception as e:
        if db.is_integrity_error(e):
            raise Conflict("This email address is linked to a different account")
        raise

    already_member = existing is not None
    membership = existing or insert_membership(conn, invitation.project_id, principal_id, invitation.role, now)

    accepted = store.transition_invitation(
        conn,
        invitation.id,
        [InvitationStatus.pending],
        InvitationStatus.accepted,
        now,
        {"accepted_at": to_iso(now), "accepted_by_user_id": principal_id},
    )
    if not accepted:
        raise Conflict(RACE_MESSAGE)

    print(f"[INVITES] Accepted invitation_id={invitation.id} principal_id={principal_id} "
          f"project_id={invitation.project_id}{' (already a member)' if already_member else ''}")

    return AcceptResult(
        invitation=store.get_invitation(conn, invitation.id),
        membership=membership,
        project=store.get_project(conn, invitation.project_id),
        already_member=already_member,
    )


# ============================================================================
# Revoke / Resend
# ============================================================================

def revoke_invitation(invitation_id: str, caller_id: str, now: Optional[datetime] = None) -> Invitation:
    """pending -> revoked (requires inviteUsers)."""
    now = now or utcnow()
    with db.transaction() as conn:
        invitation = _load_for_manager(conn, invitation_id, caller_id)
        if invitation.status == InvitationStatus.pending and invitation.is_past_expiry(now):
            raise Conflict("Can only revoke pending invitations; this one has expired")
        if invitation.status != InvitationStatus.pending:
            raise Conflict("Can only revoke pending invitations")

        if not store.transition_invitation(
            conn, invitation.id, [InvitationStatus.pending], InvitationStatus.revoked, now
        ):
            raise Conflict(RACE_MESSAGE)
        revoked = store.get_invitation(conn, invitation.id)

    print(f"[INVITES] Revoked invitation_id={invitation_id} (by {caller_id})")
    return revoked


def resend_invitation(invitation_id: str, caller_id: str, now: Optional[datetime] = None) -> Invitation:
    """
    Issue a fresh token and expiry for a pending or expired invitation.
    The previous token stops working immediately.
    """
    now = now or utcnow()
    with db.transaction() as conn:
        invitation = _load_for_manager(conn, invitation_id, caller_id)
        invitation = _expire_if_stale(conn, invitation, now)

        if invitation.status not in (InvitationStatus.pending, InvitationStatus.expired):
            raise Conflict("Can only resend pending or expired invitations")
        if store.find_membership_by_email(conn, invitation.project_id, invitation.email) is not None:
            raise Conflict(ALREADY_MEMBER_MESSAGE)

        try:
            updated = store.transition_invitation(
                conn,
                invitation.id,
                [InvitationStatus.pending, InvitationStatus.expired],
                InvitationStatus.pending,
                now,
                {"token": generate_invitation_token(), "expires_at": to_iso(expiration_from(now))},
            )
        except Exception as e:
            if db.is_integrity_error(e):
                raise Conflict(DUPLICATE_MESSAGE)
            raise
        if not updated:
            raise Conflict(RACE_MESSAGE)
        resent = store.get_invitation(conn, invitation.id)

    if IS_DEV:
        print(f"[INVITES] Resent invitation_id={invitation_id} new_expires_at={to_iso(resent.expires_at)}")
    return resent
