"""
backend/routes_invitations.py

Invitation endpoints.

Security guarantees:
- Create/list/revoke/resend require inviteUsers on the project (checked in
  backend.invitations inside the same transaction as the write)
- The raw token is returned only to the inviter (create/resend) and is
  never part of a listing
- Accept requires authentication and the token's email binding; the token
  lookup itself is public since holding the link is the credential
- Notifier failures are logged and never fail the request
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from fastapi import APIRouter, Depends, Response

try:
    from backend import db, invitations, store
    from backend.auth_context import AuthContext, require_auth_context
    from backend.errors import Conflict, Expired
    from backend.models import Invitation, InvitationStatus
    from backend.notifier import Notifier, get_notifier, notify_invitation
    from backend.schemas import (
        InvitationAcceptResponse,
        InvitationCreateRequest,
        InvitationCreated,
        InvitationListResponse,
        InvitationPublic,
        MemberResponse,
        ProjectResponse,
    )
except ModuleNotFoundError:
    import db
    import invitations
    import store
    from auth_context import AuthContext, require_auth_context
    from errors import Conflict, Expired
    from models import Invitation, InvitationStatus
    from notifier import Notifier, get_notifier, notify_invitation
    from schemas import (
        InvitationAcceptResponse,
        InvitationCreateRequest,
        InvitationCreated,
        InvitationListResponse,
        InvitationPublic,
        MemberResponse,
        ProjectResponse,
    )


router = APIRouter(tags=["invitations"])


def _project_names(project_ids: Iterable[str]) -> Dict[str, str]:
    names: Dict[str, str] = {}
    with db.get_db_connection() as conn:
        for project_id in set(project_ids):
            project = store.get_project(conn, project_id)
            if project is not None:
                names[project_id] = project.name
    return names


def _inviter_email(invitation: Invitation) -> Optional[str]:
    with db.get_db_connection() as conn:
        inviter = store.get_principal(conn, invitation.invited_by_user_id)
    return inviter.email if inviter else None


def _deliver(notifier: Notifier, invitation: Invitation, project_name: str) -> InvitationCreated:
    link = invitations.invitation_link(invitation)
    sent = notify_invitation(notifier, invitation, link, project_name, _inviter_email(invitation))
    return InvitationCreated.from_created(invitation, link, sent, project_name)


# ---------------------------------------------------------
# Project-scoped
# ---------------------------------------------------------
@router.post("/projects/{project_id}/invitations", response_model=InvitationCreated, status_code=201)
def create_invitation(
    project_id: str,
    request: InvitationCreateRequest,
    ctx: AuthContext = Depends(require_auth_context),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Invite an email address to the project.

    Returns 201 with the share link even when the email could not be
    delivered (`email_sent` is false in that case).
    """
    invitation = invitations.create_invitation(project_id, request.email, request.role, ctx.principal_id)
    project_name = _project_names([project_id]).get(project_id, "")
    return _deliver(notifier, invitation, project_name)


@router.get("/projects/{project_id}/invitations", response_model=InvitationListResponse)
def list_project_invitations(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    items = invitations.list_project_invitations(project_id, ctx.principal_id)
    name = _project_names([project_id]).get(project_id)
    return InvitationListResponse(
        items=[InvitationPublic.from_invitation(inv, name) for inv in items],
        total=len(items),
    )


# ---------------------------------------------------------
# Invited party
# ---------------------------------------------------------
@router.get("/invitations/mine", response_model=InvitationListResponse)
def list_my_invitations(ctx: AuthContext = Depends(require_auth_context)):
    """Pending invitations addressed to the caller's email."""
    items = invitations.list_pending_invitations_for_email(ctx.email)
    names = _project_names(inv.project_id for inv in items)
    return InvitationListResponse(
        items=[InvitationPublic.from_invitation(inv, names.get(inv.project_id)) for inv in items],
        total=len(items),
    )


@router.get("/invitations/token/{token}", response_model=InvitationPublic)
def get_invitation_by_token(token: str):
    """Accept-page lookup: 410 when expired, 409 when already used or revoked."""
    invitation = invitations.get_invitation_by_token(token)
    if invitation.status == InvitationStatus.expired:
        raise Expired(invitations.EXPIRED_MESSAGE)
    if invitation.status == InvitationStatus.accepted:
        raise Conflict(invitations.USED_MESSAGE)
    if invitation.status == InvitationStatus.revoked:
        raise Conflict(invitations.REVOKED_MESSAGE)
    name = _project_names([invitation.project_id]).get(invitation.project_id)
    return InvitationPublic.from_invitation(invitation, name)


@router.post("/invitations/{token}/accept", response_model=InvitationAcceptResponse)
def accept_invitation(token: str, ctx: AuthContext = Depends(require_auth_context)):
    result = invitations.accept_invitation(token, ctx.principal_id, ctx.email)
    membership = result.membership
    if membership.email is None:
        membership = membership.model_copy(update={"email": ctx.email})
    return InvitationAcceptResponse(
        project=ProjectResponse.from_project(result.project),
        membership=MemberResponse.from_membership(membership),
        already_member=result.already_member,
    )


# ---------------------------------------------------------
# Inviter management
# ---------------------------------------------------------
@router.delete("/invitations/{invitation_id}", status_code=204)
def revoke_invitation(invitation_id: str, ctx: AuthContext = Depends(require_auth_context)):
    invitations.revoke_invitation(invitation_id, ctx.principal_id)
    return Response(status_code=204)


@router.post("/invitations/{invitation_id}/resend", response_model=InvitationCreated)
def resend_invitation(
    invitation_id: str,
    ctx: AuthContext = Depends(require_auth_context),
    notifier: Notifier = Depends(get_notifier),
):
    invitation = invitations.resend_invitation(invitation_id, ctx.principal_id)
    project_name = _project_names([invitation.project_id]).get(invitation.project_id, "")
    return _deliver(notifier, invitation, project_name)
