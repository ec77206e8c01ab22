# services/authorization.py
"""
Authorization resolver.

Every predicate answers "may user U do action A on entity E" from the
current stored state. Nothing is cached between calls, so a role change or
removal is visible to the very next check.

Predicates fail closed: a missing entity, or any exception raised while
looking it up, resolves to ``False``. Callers never see an exception from
this module.
"""
import functools
import logging
from typing import Awaitable, Callable, Optional

from models.models import ProjectAccess, ProjectRole
from services.store import AccessStore

logger = logging.getLogger(__name__)

Predicate = Callable[..., Awaitable[bool]]


def fail_closed(predicate: Predicate) -> Predicate:
    """Turn any exception raised by a permission check into a denial."""

    @functools.wraps(predicate)
    async def wrapper(self, entity_id: str, user_id: str) -> bool:
        try:
            allowed = bool(await predicate(self, entity_id, user_id))
        except Exception:
            logger.exception(
                "Permission check %s failed for entity=%s user=%s; denying",
                predicate.__name__, entity_id, user_id,
            )
            return False
        if not allowed:
            logger.debug("Denied %s for entity=%s user=%s", predicate.__name__, entity_id, user_id)
        return allowed

    return wrapper


def has_role(access: ProjectAccess, user_id: str, minimum: ProjectRole) -> bool:
    role = access.effective_role(user_id)
    return role is not None and role.at_least(minimum)


class AuthorizationResolver:
    def __init__(self, store: AccessStore):
        self.store = store

    async def _project(self, project_id: str) -> Optional[ProjectAccess]:
        if not project_id or not isinstance(project_id, str):
            return None
        return await self.store.get_project_access(project_id)

    # ================================================================
    # Projects
    # ================================================================
    @fail_closed
    async def is_project_member(self, project_id: str, user_id: str) -> bool:
        """Creator or any explicit membership row."""
        access = await self._project(project_id)
        return access is not None and has_role(access, user_id, ProjectRole.MEMBER)

    @fail_closed
    async def can_manage_project(self, project_id: str, user_id: str) -> bool:
        """Edit the project, invite members, list or cancel invitations."""
        access = await self._project(project_id)
        return access is not None and has_role(access, user_id, ProjectRole.ADMIN)

    async def can_invite_project_members(self, project_id: str, user_id: str) -> bool:
        return await self.can_manage_project(project_id, user_id)

    @fail_closed
    async def can_create_tasks(self, project_id: str, user_id: str) -> bool:
        access = await self._project(project_id)
        return access is not None and has_role(access, user_id, ProjectRole.EDITOR)

    # ================================================================
    # Tasks
    # ================================================================
    @fail_closed
    async def can_manage_task(self, task_id: str, user_id: str) -> bool:
        """
        Full edit / delete. The task's creator, the project's creator and any
        ADMIN or EDITOR of the project qualify. EDITORs get this over every task
        in the project, not only the ones they created.
        """
        task = await self.store.get_task_access(task_id)
        if task is None:
            return False
        return task.creator_id == user_id or has_role(task.project, user_id, ProjectRole.EDITOR)

    @fail_closed
    async def can_update_task_status(self, task_id: str, user_id: str) -> bool:
        """Status-only updates also allow the assignee."""
        task = await self.store.get_task_access(task_id)
        if task is None:
            return False
        if task.assignee_id is not None and task.assignee_id == user_id:
            return True
        return task.creator_id == user_id or has_role(task.project, user_id, ProjectRole.EDITOR)

    @fail_closed
    async def can_view_task(self, task_id: str, user_id: str) -> bool:
        task = await self.store.get_task_access(task_id)
        return task is not None and has_role(task.project, user_id, ProjectRole.MEMBER)

    # ================================================================
    # Files
    # ================================================================
    @fail_closed
    async def can_manage_file(self, file_id: str, user_id: str) -> bool:
        file = await self.store.get_file_access(file_id)
        if file is None:
            return False
        return file.uploader_id == user_id or has_role(file.project, user_id, ProjectRole.EDITOR)

    async def can_view_project_files(self, project_id: str, user_id: str) -> bool:
        return await self.is_project_member(project_id, user_id)

    @fail_closed
    async def can_view_task_files(self, task_id: str, user_id: str) -> bool:
        task = await self.store.get_task_access(task_id)
        return task is not None and has_role(task.project, user_id, ProjectRole.MEMBER)
