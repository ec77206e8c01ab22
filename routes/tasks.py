# routes/tasks.py
import logging
from typing import List, Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException, Query, status

from core.database import get_store
from core.dependencies import ensure_allowed, get_limiter, get_resolver
from core.errors import LimitExceeded, NotFound
from core.security import get_current_user
from models.models import Task, TaskStatus, User
from schemas.file_schema import FileCreate, FileRead, total_size
from schemas.task_schema import TaskComplete, TaskCreate, TaskDetail, TaskRead, TaskUpdate
from services.authorization import AuthorizationResolver
from services.store import SQLStore
from services.subscription_service import SubscriptionLimiter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tasks"])


# ================================================================
#  ✅ Helpers
# ================================================================
async def _get_task_or_404(store: SQLStore, task_id: str) -> Task:
    task = await store.get_task(task_id)
    if not task:
        raise NotFound("Task", task_id)
    return task


async def _ensure_assignable(resolver: AuthorizationResolver, project_id: str, assignee_id: Optional[str]) -> None:
    """An assignee must hold a membership in the task's project at the time of the write."""
    if assignee_id and not await resolver.is_project_member(project_id, assignee_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assignee must be a member of the project",
        )


async def _ensure_storage(limiter: SubscriptionLimiter, user_id: str, files: Sequence[FileCreate]) -> None:
    if not files:
        return
    quota = await limiter.can_upload_file(user_id, total_size(files))
    if not quota.can_upload:
        raise LimitExceeded("GB of storage", quota.current_usage_gb, quota.limit_gb, quota.plan.value)


async def _task_detail(store: SQLStore, task: Task) -> TaskDetail:
    files = await store.list_task_files(task.id)
    return TaskDetail(
        **TaskRead.model_validate(task).model_dump(),
        files=[FileRead.model_validate(f) for f in files],
    )


# ================================================================
#  ✅ Create Task
# ================================================================
@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    data: TaskCreate,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
    limiter: SubscriptionLimiter = Depends(get_limiter),
):
    if not await store.get_project(data.project_id):
        raise NotFound("Project", data.project_id)
    ensure_allowed(await resolver.can_create_tasks(data.project_id, current_user.id))

    # Every check runs before anything is written
    await _ensure_assignable(resolver, data.project_id, data.assignee_id)
    await _ensure_storage(limiter, current_user.id, data.files)

    task = Task(
        project_id=data.project_id,
        creator_id=current_user.id,
        assignee_id=data.assignee_id,
        title=data.title,
        description=data.description,
        status=data.status,
        priority=data.priority,
        due_date=data.due_date,
    )
    files = [f.to_model(current_user.id, data.project_id, task.id) for f in data.files]
    task = await store.create_task(task, files)
    logger.info("📝 Task %s created in project %s", task.id, task.project_id)
    return task


# ================================================================
#  ✅ My Tasks (assigned to or created by me)
# ================================================================
@router.get("/mine", response_model=List[TaskRead])
async def get_my_tasks(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
):
    return await store.list_user_tasks(current_user.id, limit=limit)


# ================================================================
#  ✅ Tasks of a Project
# ================================================================
@router.get("/project/{project_id}", response_model=List[TaskRead])
async def get_project_tasks(
    project_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    if not await store.get_project(project_id):
        raise NotFound("Project", project_id)
    ensure_allowed(await resolver.is_project_member(project_id, current_user.id))
    return await store.list_project_tasks(project_id)


# ================================================================
#  ✅ Single Task (with files)
# ================================================================
@router.get("/{task_id}", response_model=TaskDetail)
async def get_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    task = await _get_task_or_404(store, task_id)
    ensure_allowed(await resolver.can_view_task(task_id, current_user.id))

    return await _task_detail(store, task)


# ================================================================
#  ✅ Update Task
# ================================================================
@router.put("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    task = await _get_task_or_404(store, task_id)

    # Assignees may move their task along but nothing else
    if data.is_status_only():
        ensure_allowed(await resolver.can_update_task_status(task_id, current_user.id))
    else:
        ensure_allowed(await resolver.can_manage_task(task_id, current_user.id))

    changes = data.changes()
    for required in ("title", "status", "priority"):
        if required in changes and changes[required] is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Task {required} cannot be empty")
    if "title" in changes:
        changes["title"] = changes["title"].strip()
        if len(changes["title"]) < 3:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Task title must be at least 3 characters")

    if "assignee_id" in changes:
        await _ensure_assignable(resolver, task.project_id, changes["assignee_id"])

    resulting_status = changes.get("status", task.status)
    if resulting_status != TaskStatus.DONE:
        if changes.get("completion_note"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A completion note can only be set on a task that is DONE",
            )
        if task.completion_note or "completion_note" in changes:
            changes["completion_note"] = None

    return await store.update_task(task_id, changes)


# ================================================================
#  ✅ Complete Task (note + deliverables)
# ================================================================
@router.post("/{task_id}/complete", response_model=TaskDetail)
async def complete_task(
    task_id: str,
    data: TaskComplete,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
    limiter: SubscriptionLimiter = Depends(get_limiter),
):
    task = await _get_task_or_404(store, task_id)
    ensure_allowed(await resolver.can_update_task_status(task_id, current_user.id))
    await _ensure_storage(limiter, current_user.id, data.files)

    files = [f.to_model(current_user.id, task.project_id, task.id) for f in data.files]
    task = await store.update_task(
        task_id,
        {"status": TaskStatus.DONE, "completion_note": data.completion_note},
        files,
    )
    logger.info("✅ Task %s completed by %s", task_id, current_user.id)

    return await _task_detail(store, task)


# ================================================================
#  ✅ Delete Task
# ================================================================
@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    current_user: User = Depends(get_current_user),
    store: SQLStore = Depends(get_store),
    resolver: AuthorizationResolver = Depends(get_resolver),
):
    await _get_task_or_404(store, task_id)
    ensure_allowed(await resolver.can_manage_task(task_id, current_user.id))
    await store.delete_task(task_id)
