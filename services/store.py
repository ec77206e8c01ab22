# services/store.py
"""
Data-store access for Nudge.

``AccessStore`` is the narrow read surface the authorization resolver and
the subscription limiter depend on. ``SQLStore`` is the production
implementation: it is built once at process start from the async session
factory and every method opens (and closes) its own session. Methods that
write several rows run inside a single transaction.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, Type, TypeVar

from sqlalchemy import and_, delete, distinct, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from core.errors import AlreadyInvited, AlreadyMember, EmailAlreadyRegistered, NotFound
from models.models import (
    DeleteAccountToken,
    EmailTokenBase,
    File,
    FileAccess,
    PasswordResetToken,
    Project,
    ProjectAccess,
    ProjectInvitation,
    ProjectMember,
    ProjectRole,
    Subscription,
    Task,
    TaskAccess,
    User,
    WebhookEvent,
    utcnow,
)

logger = logging.getLogger(__name__)

TokenModel = TypeVar("TokenModel", PasswordResetToken, DeleteAccountToken)


# ============================================================
# READ SURFACE (resolver + limiter)
# ============================================================
class AccessStore(Protocol):
    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def get_subscription(self, user_id: str) -> Optional[Subscription]: ...

    async def get_project(self, project_id: str) -> Optional[Project]: ...

    async def get_project_access(self, project_id: str) -> Optional[ProjectAccess]: ...

    async def get_task_access(self, task_id: str) -> Optional[TaskAccess]: ...

    async def get_file_access(self, file_id: str) -> Optional[FileAccess]: ...

    async def count_projects_for_user(self, user_id: str) -> int: ...

    async def count_team_members(self, creator_id: str) -> int: ...

    async def count_uploaded_files(self, user_id: str) -> int: ...

    async def sum_uploaded_bytes(self, user_id: str) -> int: ...


def _project_access(project_id: str, creator_id: str, members: Sequence[Optional[ProjectMember]]) -> ProjectAccess:
    return ProjectAccess(
        project_id=project_id,
        creator_id=creator_id,
        members={m.user_id: ProjectRole(m.role) for m in members if m is not None},
    )


# ============================================================
# SQL IMPLEMENTATION
# ============================================================
class SQLStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ------------------------------------------------------------
    # Users
    # ------------------------------------------------------------
    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._session_factory() as session:
            result = await session.exec(select(User).where(func.lower(User.email) == email.lower()))
            return result.first()

    async def create_user(self, user: User) -> User:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    session.add(user)
            except IntegrityError:
                raise EmailAlreadyRegistered(user.email)
            return user

    async def set_password_hash(self, user_id: str, password_hash: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(User)
                    .where(col(User.id) == user_id)
                    .values(password_hash=password_hash, updated_at=utcnow())
                )
                if result.rowcount == 0:
                    raise NotFound("User", user_id)

    async def delete_user(self, user_id: str) -> None:
        """Delete a user together with every project they own and every edge pointing at them."""
        async with self._session_factory() as session:
            async with session.begin():
                owned = (await session.exec(select(Project.id).where(Project.creator_id == user_id))).all()
                for project_id in owned:
                    await self._delete_project_rows(session, project_id)

                await session.execute(
                    update(Task).where(col(Task.assignee_id) == user_id).values(assignee_id=None)
                )
                # Tasks and files the user created in other people's projects go with them
                their_tasks = (await session.exec(select(Task.id).where(Task.creator_id == user_id))).all()
                if their_tasks:
                    await session.execute(delete(File).where(col(File.task_id).in_(their_tasks)))
                    await session.execute(delete(Task).where(col(Task.id).in_(their_tasks)))
                await session.execute(delete(File).where(col(File.uploader_id) == user_id))
                await session.execute(delete(ProjectMember).where(col(ProjectMember.user_id) == user_id))
                await session.execute(
                    update(ProjectInvitation)
                    .where(col(ProjectInvitation.invited_by_id) == user_id)
                    .values(invited_by_id=None)
                )
                await session.execute(delete(Subscription).where(col(Subscription.user_id) == user_id))
                await session.execute(delete(User).where(col(User.id) == user_id))

    # ------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------
    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        async with self._session_factory() as session:
            result = await session.exec(select(Subscription).where(Subscription.user_id == user_id))
            return result.first()

    async def get_subscription_by_customer(self, customer_id: str) -> Optional[Subscription]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(Subscription).where(Subscription.stripe_customer_id == customer_id)
            )
            return result.first()

    async def save_subscription(self, subscription: Subscription) -> Subscription:
        """Insert or update a subscription row (one per user)."""
        subscription.updated_at = utcnow()
        async with self._session_factory() as session:
            async with session.begin():
                merged = await session.merge(subscription)
            return merged

    async def record_webhook_event(self, event_id: str, event_type: str) -> bool:
        """
        Log a gateway event. Returns False only when the event was already applied;
        a delivery that failed earlier (processed=False) may be retried.
        """
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    session.add(WebhookEvent(gateway_event_id=event_id, event_type=event_type))
                return True
            except IntegrityError:
                pass

        async with self._session_factory() as session:
            existing = (
                await session.exec(select(WebhookEvent).where(WebhookEvent.gateway_event_id == event_id))
            ).first()
            return existing is None or not existing.processed

    async def finish_webhook_event(self, event_id: str, error: Optional[str] = None) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(WebhookEvent)
                    .where(col(WebhookEvent.gateway_event_id) == event_id)
                    .values(processed=error is None, processing_error=error)
                )

    # ------------------------------------------------------------
    # Access snapshots
    # ------------------------------------------------------------
    async def get_project(self, project_id: str) -> Optional[Project]:
        async with self._session_factory() as session:
            return await session.get(Project, project_id)

    async def get_project_access(self, project_id: str) -> Optional[ProjectAccess]:
        async with self._session_factory() as session:
            rows = (
                await session.exec(
                    select(Project.creator_id, ProjectMember)
                    .select_from(Project)
                    .outerjoin(ProjectMember, col(ProjectMember.project_id) == col(Project.id))
                    .where(Project.id == project_id)
                )
            ).all()
        if not rows:
            return None
        return _project_access(project_id, rows[0][0], [member for _, member in rows])

    async def get_task_access(self, task_id: str) -> Optional[TaskAccess]:
        async with self._session_factory() as session:
            rows = (
                await session.exec(
                    select(Task, Project.creator_id, ProjectMember)
                    .select_from(Task)
                    .join(Project, col(Project.id) == col(Task.project_id))
                    .outerjoin(ProjectMember, col(ProjectMember.project_id) == col(Project.id))
                    .where(Task.id == task_id)
                )
            ).all()
        if not rows:
            return None
        task, project_creator_id, _ = rows[0]
        return TaskAccess(
            task_id=task.id,
            creator_id=task.creator_id,
            assignee_id=task.assignee_id,
            project=_project_access(task.project_id, project_creator_id, [m for _, _, m in rows]),
        )

    async def get_file_access(self, file_id: str) -> Optional[FileAccess]:
        async with self._session_factory() as session:
            rows = (
                await session.exec(
                    select(File, Project.creator_id, ProjectMember)
                    .select_from(File)
                    .join(Project, col(Project.id) == col(File.project_id))
                    .outerjoin(ProjectMember, col(ProjectMember.project_id) == col(Project.id))
                    .where(File.id == file_id)
                )
            ).all()
        if not rows:
            return None
        file, project_creator_id, _ = rows[0]
        return FileAccess(
            file_id=file.id,
            uploader_id=file.uploader_id,
            task_id=file.task_id,
            project=_project_access(file.project_id, project_creator_id, [m for _, _, m in rows]),
        )

    # ------------------------------------------------------------
    # Usage counters
    # ------------------------------------------------------------
    async def count_projects_for_user(self, user_id: str) -> int:
        async with self._session_factory() as session:
            stmt = (
                select(func.count(distinct(Project.id)))
                .select_from(Project)
                .outerjoin(
                    ProjectMember,
                    and_(
                        col(ProjectMember.project_id) == col(Project.id),
                        col(ProjectMember.user_id) == user_id,
                    ),
                )
                .where(or_(col(Project.creator_id) == user_id, col(ProjectMember.user_id) == user_id))
            )
            return (await session.exec(stmt)).one()

    async def count_team_members(self, creator_id: str) -> int:
        """Distinct users holding a membership row in any project owned by ``creator_id``."""
        async with self._session_factory() as session:
            stmt = (
                select(func.count(distinct(ProjectMember.user_id)))
                .select_from(ProjectMember)
                .join(Project, col(Project.id) == col(ProjectMember.project_id))
                .where(Project.creator_id == creator_id)
            )
            return (await session.exec(stmt)).one()

    async def count_uploaded_files(self, user_id: str) -> int:
        async with self._session_factory() as session:
            stmt = select(func.count(File.id)).where(File.uploader_id == user_id)
            return (await session.exec(stmt)).one()

    async def sum_uploaded_bytes(self, user_id: str) -> int:
        async with self._session_factory() as session:
            stmt = select(func.coalesce(func.sum(File.size), 0)).where(File.uploader_id == user_id)
            return int((await session.exec(stmt)).one())

    # ------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------
    async def create_project(self, project: Project, files: Sequence[File] = ()) -> Project:
        """Project, the creator's ADMIN membership and initial files commit together."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add(project)
                session.add(ProjectMember(project_id=project.id, user_id=project.creator_id, role=ProjectRole.ADMIN))
                for file in files:
                    file.project_id = project.id
                    file.task_id = None
                    session.add(file)
            return project

    async def list_projects_for_user(self, user_id: str) -> List[Project]:
        async with self._session_factory() as session:
            member_of = select(ProjectMember.project_id).where(ProjectMember.user_id == user_id)
            result = await session.exec(
                select(Project)
                .where(or_(col(Project.creator_id) == user_id, col(Project.id).in_(member_of)))
                .order_by(col(Project.created_at).desc())
            )
            return list(result.all())

    async def update_project(self, project_id: str, changes: Dict[str, Any]) -> Project:
        async with self._session_factory() as session:
            async with session.begin():
                project = await session.get(Project, project_id)
                if not project:
                    raise NotFound("Project", project_id)
                for key, value in changes.items():
                    setattr(project, key, value)
                project.updated_at = utcnow()
                session.add(project)
            return project

    async def delete_project(self, project_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                if not await session.get(Project, project_id):
                    raise NotFound("Project", project_id)
                await self._delete_project_rows(session, project_id)

    @staticmethod
    async def _delete_project_rows(session: AsyncSession, project_id: str) -> None:
        await session.execute(delete(File).where(col(File.project_id) == project_id))
        await session.execute(delete(Task).where(col(Task.project_id) == project_id))
        await session.execute(delete(ProjectInvitation).where(col(ProjectInvitation.project_id) == project_id))
        await session.execute(delete(ProjectMember).where(col(ProjectMember.project_id) == project_id))
        await session.execute(delete(Project).where(col(Project.id) == project_id))

    async def list_members(self, project_id: str) -> List[Tuple[ProjectMember, User]]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(ProjectMember, User)
                .join(User, col(User.id) == col(ProjectMember.user_id))
                .where(ProjectMember.project_id == project_id)
                .order_by(col(ProjectMember.joined_at))
            )
            return [(member, user) for member, user in result.all()]

    async def update_member_role(self, project_id: str, user_id: str, role: ProjectRole) -> ProjectMember:
        async with self._session_factory() as session:
            async with session.begin():
                member = await session.get(ProjectMember, (project_id, user_id))
                if not member:
                    raise NotFound("Project member", user_id)
                member.role = role
                session.add(member)
            return member

    async def remove_member(self, project_id: str, user_id: str) -> None:
        """Drop the membership and unassign the user's tasks in that project."""
        async with self._session_factory() as session:
            async with session.begin():
                member = await session.get(ProjectMember, (project_id, user_id))
                if not member:
                    raise NotFound("Project member", user_id)
                await session.delete(member)
                await session.execute(
                    update(Task)
                    .where(col(Task.project_id) == project_id, col(Task.assignee_id) == user_id)
                    .values(assignee_id=None, updated_at=utcnow())
                )

    # ------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------
    async def create_task(self, task: Task, files: Sequence[File] = ()) -> Task:
        """Task and its context files commit together."""
        async with self._session_factory() as session:
            async with session.begin():
                session.add(task)
                for file in files:
                    file.project_id = task.project_id
                    file.task_id = task.id
                    file.is_task_deliverable = False
                    session.add(file)
            return task

    async def get_task(self, task_id: str) -> Optional[Task]:
        async with self._session_factory() as session:
            return await session.get(Task, task_id)

    async def list_project_tasks(self, project_id: str) -> List[Task]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(Task)
                .where(Task.project_id == project_id)
                .order_by(col(Task.status), col(Task.due_date), col(Task.created_at))
            )
            return list(result.all())

    async def list_user_tasks(self, user_id: str, limit: Optional[int] = None) -> List[Task]:
        async with self._session_factory() as session:
            stmt = (
                select(Task)
                .where(or_(col(Task.assignee_id) == user_id, col(Task.creator_id) == user_id))
                .order_by(col(Task.due_date), col(Task.updated_at).desc())
            )
            if limit:
                stmt = stmt.limit(limit)
            return list((await session.exec(stmt)).all())

    async def update_task(self, task_id: str, changes: Dict[str, Any], files: Sequence[File] = ()) -> Task:
        """Apply field changes and attach deliverable files in one transaction."""
        async with self._session_factory() as session:
            async with session.begin():
                task = await session.get(Task, task_id)
                if not task:
                    raise NotFound("Task", task_id)
                for key, value in changes.items():
                    setattr(task, key, value)
                task.updated_at = utcnow()
                session.add(task)
                for file in files:
                    file.project_id = task.project_id
                    file.task_id = task.id
                    file.is_task_deliverable = True
                    session.add(file)
            return task

    async def delete_task(self, task_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                if not await session.get(Task, task_id):
                    raise NotFound("Task", task_id)
                await session.execute(delete(File).where(col(File.task_id) == task_id))
                await session.execute(delete(Task).where(col(Task.id) == task_id))

    # ------------------------------------------------------------
    # Files
    # ------------------------------------------------------------
    async def add_file(self, file: File) -> File:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(file)
            return file

    async def get_file(self, file_id: str) -> Optional[File]:
        async with self._session_factory() as session:
            return await session.get(File, file_id)

    async def list_project_files(self, project_id: str) -> List[File]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(File).where(File.project_id == project_id).order_by(col(File.created_at).desc())
            )
            return list(result.all())

    async def list_task_files(self, task_id: str) -> List[File]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(File).where(File.task_id == task_id).order_by(col(File.created_at).desc())
            )
            return list(result.all())

    async def delete_file(self, file_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(File).where(col(File.id) == file_id))
                if result.rowcount == 0:
                    raise NotFound("File", file_id)

    # ------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------
    async def create_invitation(self, invitation: ProjectInvitation) -> ProjectInvitation:
        """
        Store a new invitation. A live invitation for the same (project, email)
        raises ``AlreadyInvited``; an expired one is replaced. Concurrent inserts
        lose on the unique constraint and raise ``AlreadyInvited`` as well.
        """
        now = utcnow()
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    existing = (
                        await session.exec(
                            select(ProjectInvitation).where(
                                ProjectInvitation.project_id == invitation.project_id,
                                func.lower(ProjectInvitation.email) == invitation.email.lower(),
                            )
                        )
                    ).first()
                    if existing and not existing.is_expired(now):
                        raise AlreadyInvited(invitation.email)
                    if existing:
                        await session.delete(existing)
                        await session.flush()
                    session.add(invitation)
            except IntegrityError:
                raise AlreadyInvited(invitation.email)
            return invitation

    async def list_invitations(self, project_id: str) -> List[ProjectInvitation]:
        async with self._session_factory() as session:
            result = await session.exec(
                select(ProjectInvitation)
                .where(ProjectInvitation.project_id == project_id, ProjectInvitation.expires_at > utcnow())
                .order_by(col(ProjectInvitation.created_at).desc())
            )
            return list(result.all())

    async def get_invitation(self, invitation_id: str) -> Optional[ProjectInvitation]:
        async with self._session_factory() as session:
            return await session.get(ProjectInvitation, invitation_id)

    async def get_invitation_by_token(self, token: str) -> Optional[ProjectInvitation]:
        async with self._session_factory() as session:
            result = await session.exec(select(ProjectInvitation).where(ProjectInvitation.token == token))
            return result.first()

    async def delete_invitation(self, invitation_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(ProjectInvitation).where(col(ProjectInvitation.id) == invitation_id)
                )
                if result.rowcount == 0:
                    raise NotFound("Invitation", invitation_id)

    async def accept_invitation(self, invitation: ProjectInvitation, user: User) -> ProjectMember:
        """Create the membership and consume the invitation together."""
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    project = await session.get(Project, invitation.project_id)
                    if not project:
                        raise NotFound("Project", invitation.project_id)
                    if project.creator_id == user.id or await session.get(ProjectMember, (project.id, user.id)):
                        raise AlreadyMember(user.email)
                    result = await session.execute(
                        delete(ProjectInvitation).where(col(ProjectInvitation.id) == invitation.id)
                    )
                    if result.rowcount == 0:
                        raise NotFound("Invitation", invitation.id)
                    member = ProjectMember(project_id=project.id, user_id=user.id, role=invitation.role)
                    session.add(member)
            except IntegrityError:
                raise AlreadyMember(user.email)
            return member

    # ------------------------------------------------------------
    # Password reset / account deletion tokens
    # ------------------------------------------------------------
    async def replace_email_token(
        self, model: Type[TokenModel], email: str, token: str, expires_at: datetime
    ) -> TokenModel:
        """Keep at most one live token per email: earlier ones are deleted first."""
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(model).where(func.lower(model.email) == email.lower()))
                row = model(email=email, token=token, expires_at=expires_at)
                session.add(row)
            return row

    async def get_email_token(self, model: Type[TokenModel], token: str) -> Optional[EmailTokenBase]:
        async with self._session_factory() as session:
            return (await session.exec(select(model).where(model.token == token))).first()

    async def consume_email_token(self, model: Type[TokenModel], token: str) -> Optional[EmailTokenBase]:
        """Delete and return the token row (single use)."""
        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.exec(select(model).where(model.token == token))).first()
                if row:
                    await session.delete(row)
            return row
