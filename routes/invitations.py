# routes/invitations.py
import logging
from datetime import timedelta
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from core.config import settings
from core.database import get_store
from core.dependencies import ensure_allowed, get_limiter, get_resolver
from core.errors import PERMISSION_DENIED_MESSAGE, AlreadyMember, InvitationExpired, LimitExceeded, NotFound
from core.security import generate_token, get_current_user
from models.models import ProjectInvitation, User, utcnow
from schemas.invitation_schema import InvitationAccept, InvitationCreate, InvitationPreview, InvitationRead
from schemas.project_schema import ProjectMemberRead
from services.authorization import AuthorizationResolver
from services.email_service import email_service
from services.store import SQLStore
from services.subscription_service import SubscriptionLimiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Invitations"])


# -----------------------
# Helper: build invite link
# -----------------------
def _build_invitation_link(token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/accept-invitation?token={token}"


async def _live_invitation_or_error(store: SQLStore, token: str) -> ProjectInvitation:
    invitation = await store.get_invitation_by_token(token)
    if not invitation:
        raise NotFound("Invitation")
    if invitation.is_expired():
        raise InvitationExpired()
    return invitation


# ==================================================================
# Create / Send Invitation
# ==================================================================
@router.post(
    "/projects/{project_id}/invitations",
    response_model=InvitationRead,
    status_code=status.HTTP_201_CREATED,
)
async def invite(
    project_id: str,
    invite: InvitationCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
    limiter: SubscriptionLimiter = Depends(get_limiter),
):
    """
    Invite someone to a project by email. The project creator's plan decides
    whether another team member fits; the email goes out in the background.
    """
    project = await store.get_project(project_id)
    if not project:
        raise NotFound("Project", project_id)
    ensure_allowed(await resolver.can_invite_project_members(project_id, current_user.id))

    email = invite.email.lower()
    existing_user = await store.get_user_by_email(email)
    if existing_user and await resolver.is_project_member(project_id, existing_user.id):
        raise AlreadyMember(email)

    quota = await limiter.can_add_team_member(current_user.id, project_id)
    if not quota.can_add:
        raise LimitExceeded("team members", quota.current_count, quota.limit, quota.plan.value)

    invitation = await store.create_invitation(
        ProjectInvitation(
            project_id=project_id,
            email=email,
            role=invite.role,
            token=generate_token(),
            invited_by_id=current_user.id,
            expires_at=utcnow() + timedelta(hours=settings.INVITATION_EXPIRE_HOURS),
        )
    )

    background_tasks.add_task(
        email_service.send_project_invitation_email,
        to_email=email,
        invitation_link=_build_invitation_link(invitation.token),
        role=invitation.role.value,
        project_name=project.name,
        invited_by=current_user.name or current_user.email,
    )
    logger.info("📨 Invitation %s created for project %s", invitation.id, project_id)
    return invitation


# ==================================================================
# Pending invitations of a project
# ==================================================================
@router.get("/projects/{project_id}/invitations", response_model=List[InvitationRead])
async def list_invitations(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    if not await store.get_project(project_id):
        raise NotFound("Project", project_id)
    ensure_allowed(await resolver.can_manage_project(project_id, current_user.id))
    return await store.list_invitations(project_id)


@router.delete("/projects/{project_id}/invitations/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_invitation(
    project_id: str,
    invitation_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    invitation = await store.get_invitation(invitation_id)
    if not invitation or invitation.project_id != project_id:
        raise NotFound("Invitation", invitation_id)
    ensure_allowed(await resolver.can_manage_project(project_id, current_user.id))
    await store.delete_invitation(invitation_id)


# ==================================================================
# Validate token (public)
# ==================================================================
@router.get("/invitations/{token}", response_model=InvitationPreview)
async def validate_invitation(token: str, store: SQLStore = Depends(get_store)):
    invitation = await _live_invitation_or_error(store, token)
    project = await store.get_project(invitation.project_id)
    if not project:
        raise NotFound("Project", invitation.project_id)

    inviter = await store.get_user(invitation.invited_by_id) if invitation.invited_by_id else None
    return InvitationPreview(
        project_id=project.id,
        project_name=project.name,
        email=invitation.email,
        role=invitation.role,
        invited_by=(inviter.name or inviter.email) if inviter else None,
        expires_at=invitation.expires_at,
    )


# ==================================================================
# Accept invitation
# ==================================================================
@router.post("/invitations/accept", response_model=ProjectMemberRead)
async def accept_invitation(
    data: InvitationAccept,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
):
    invitation = await _live_invitation_or_error(store, data.token)
    if invitation.email.lower() != current_user.email.lower():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=PERMISSION_DENIED_MESSAGE)

    member = await store.accept_invitation(invitation, current_user)
    logger.info("🤝 User %s joined project %s as %s", current_user.id, member.project_id, member.role)
    return ProjectMemberRead(
        user_id=current_user.id,
        name=current_user.name,
        email=current_user.email,
        role=member.role,
        joined_at=member.joined_at,
    )
