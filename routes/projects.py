# routes/projects.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from core.database import get_store
from core.dependencies import ensure_allowed, get_limiter, get_resolver
from core.errors import LimitExceeded, NotFound
from core.security import get_current_user
from models.models import Project, ProjectRole, ProjectStatus, User
from schemas.file_schema import total_size
from schemas.project_schema import (
    MemberRoleUpdate, ProjectCreate, ProjectMemberRead, ProjectRead, ProjectUpdate,
)
from services.authorization import AuthorizationResolver
from services.store import SQLStore
from services.subscription_service import SubscriptionLimiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Projects"])


async def _get_project_or_404(store: SQLStore, project_id: str) -> Project:
    project = await store.get_project(project_id)
    if not project:
        raise NotFound("Project", project_id)
    return project


# ==================================================================
#  ✅ Create New Project (quota checked first)
# ==================================================================
@router.post("/", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreate,
    store: SQLStore = Depends(get_store),
    limiter: SubscriptionLimiter = Depends(get_limiter),
    current_user: User = Depends(get_current_user),
):
    quota = await limiter.can_create_project(current_user.id)
    if not quota.can_create:
        raise LimitExceeded("projects", quota.current_count, quota.limit, quota.plan.value)

    if data.files:
        storage = await limiter.can_upload_file(current_user.id, total_size(data.files))
        if not storage.can_upload:
            raise LimitExceeded("GB of storage", storage.current_usage_gb, storage.limit_gb, storage.plan.value)

    project = Project(
        name=data.name,
        description=data.description,
        status=ProjectStatus.IN_PROGRESS,
        due_date=data.due_date,
        creator_id=current_user.id,
    )
    files = [f.to_model(current_user.id, project.id) for f in data.files]
    project = await store.create_project(project, files)
    logger.info("📁 Project %s created by %s", project.id, current_user.id)
    return project


# ==================================================================
#  ✅ Get My Projects (created or member of)
# ==================================================================
@router.get("/", response_model=List[ProjectRead])
async def get_projects(
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
):
    return await store.list_projects_for_user(current_user.id)


# ==================================================================
#  ✅ Get Single Project
# ==================================================================
@router.get("/{project_id}", response_model=ProjectRead)
async def get_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    project = await _get_project_or_404(store, project_id)
    ensure_allowed(await resolver.is_project_member(project_id, current_user.id))
    return project


# ==================================================================
#  ✅ Update Project
# ==================================================================
@router.put("/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    await _get_project_or_404(store, project_id)
    ensure_allowed(await resolver.can_manage_project(project_id, current_user.id))

    changes = data.model_dump(exclude_unset=True)
    if "name" in changes:
        if changes["name"] is None or not changes["name"].strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project name is required")
        changes["name"] = changes["name"].strip()
    if changes.get("status") is None:
        changes.pop("status", None)
    return await store.update_project(project_id, changes)


# ==================================================================
#  ✅ Delete Project (cascades tasks, files, members, invitations)
# ==================================================================
@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    await _get_project_or_404(store, project_id)
    ensure_allowed(await resolver.can_manage_project(project_id, current_user.id))
    await store.delete_project(project_id)
    logger.info("🗑️ Project %s deleted by %s", project_id, current_user.id)


# ==================================================================
#  👥 Members
# ==================================================================
@router.get("/{project_id}/members", response_model=List[ProjectMemberRead])
async def list_members(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    project = await _get_project_or_404(store, project_id)
    ensure_allowed(await resolver.is_project_member(project_id, current_user.id))

    return [
        ProjectMemberRead(
            user_id=user.id,
            name=user.name,
            email=user.email,
            role=ProjectRole.ADMIN if user.id == project.creator_id else member.role,
            is_creator=user.id == project.creator_id,
            joined_at=member.joined_at,
        )
        for member, user in await store.list_members(project_id)
    ]


@router.put("/{project_id}/members/{user_id}", response_model=ProjectMemberRead)
async def change_member_role(
    project_id: str,
    user_id: str,
    data: MemberRoleUpdate,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    project = await _get_project_or_404(store, project_id)
    ensure_allowed(await resolver.can_manage_project(project_id, current_user.id))
    if user_id == project.creator_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The project creator's role cannot be changed")

    member = await store.update_member_role(project_id, user_id, data.role)
    user = await store.get_user(user_id)
    return ProjectMemberRead(
        user_id=user_id,
        name=user.name,
        email=user.email,
        role=member.role,
        joined_at=member.joined_at,
    )


@router.delete("/{project_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    project_id: str,
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    project = await _get_project_or_404(store, project_id)
    ensure_allowed(await resolver.can_manage_project(project_id, current_user.id))
    if user_id == project.creator_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="The project creator cannot be removed")

    await store.remove_member(project_id, user_id)
    logger.info("👋 User %s removed from project %s", user_id, project_id)
