# routes/files.py
import logging
from typing import List

from fastapi import APIRouter, Depends, status

from core.database import get_store
from core.dependencies import ensure_allowed, get_limiter, get_resolver
from core.errors import LimitExceeded, NotFound
from core.security import get_current_user
from models.models import User
from schemas.file_schema import FileRead, ProjectFileCreate
from services.authorization import AuthorizationResolver
from services.store import SQLStore
from services.subscription_service import SubscriptionLimiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Files"])


# ==================================================================
#  ✅ Register an uploaded project-level file
# ==================================================================
@router.post("/", response_model=FileRead, status_code=status.HTTP_201_CREATED)
async def upload_file(
    data: ProjectFileCreate,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
    limiter: SubscriptionLimiter = Depends(get_limiter),
):
    if not await store.get_project(data.project_id):
        raise NotFound("Project", data.project_id)
    ensure_allowed(await resolver.is_project_member(data.project_id, current_user.id))

    quota = await limiter.can_upload_file(current_user.id, data.size)
    if not quota.can_upload:
        raise LimitExceeded("GB of storage", quota.current_usage_gb, quota.limit_gb, quota.plan.value)

    file = await store.add_file(data.to_model(current_user.id, data.project_id))
    logger.info("📎 File %s (%s bytes) added to project %s", file.id, file.size, file.project_id)
    return file


@router.get("/project/{project_id}", response_model=List[FileRead])
async def list_project_files(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    if not await store.get_project(project_id):
        raise NotFound("Project", project_id)
    ensure_allowed(await resolver.can_view_project_files(project_id, current_user.id))
    return await store.list_project_files(project_id)


@router.get("/task/{task_id}", response_model=List[FileRead])
async def list_task_files(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    if not await store.get_task(task_id):
        raise NotFound("Task", task_id)
    ensure_allowed(await resolver.can_view_task_files(task_id, current_user.id))
    return await store.list_task_files(task_id)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    if not await store.get_file(file_id):
        raise NotFound("File", file_id)
    ensure_allowed(await resolver.can_manage_file(file_id, current_user.id))
    await store.delete_file(file_id)
