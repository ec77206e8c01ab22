# models/models.py
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from sqlalchemy import BigInteger, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp; every datetime the store writes carries tzinfo."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Read naive values (client input, SQLite rows) as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================
class ProjectRole(str, Enum):
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    MEMBER = "MEMBER"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: "ProjectRole") -> bool:
        """Single ordering used for every role comparison: ADMIN > EDITOR > MEMBER."""
        return self.rank >= other.rank


_ROLE_RANK = {
    ProjectRole.MEMBER: 1,
    ProjectRole.EDITOR: 2,
    ProjectRole.ADMIN: 3,
}


class ProjectStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    AT_RISK = "AT_RISK"
    COMPLETED = "COMPLETED"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class SubscriptionPlan(str, Enum):
    STARTER = "STARTER"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class SubscriptionStatus(str, Enum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    PAST_DUE = "PAST_DUE"
    UNPAID = "UNPAID"


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True, nullable=False)
    name: Optional[str] = Field(default=None, max_length=100)
    # None means the account only signs in through an OAuth provider
    password_hash: Optional[str] = Field(default=None)
    image: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================
# PROJECT
# ============================================================
class Project(SQLModel, table=True):
    __tablename__ = "project"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: ProjectStatus = Field(default=ProjectStatus.IN_PROGRESS)
    due_date: Optional[datetime] = None
    creator_id: str = Field(foreign_key="user.id", index=True, nullable=False)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProjectMember(SQLModel, table=True):
    __tablename__ = "project_member"

    project_id: str = Field(foreign_key="project.id", primary_key=True)
    user_id: str = Field(foreign_key="user.id", primary_key=True, index=True)
    role: ProjectRole = Field(default=ProjectRole.MEMBER)
    joined_at: datetime = Field(default_factory=utcnow)


# ============================================================
# INVITATION
# ============================================================
class ProjectInvitation(SQLModel, table=True):
    __tablename__ = "project_invitation"
    __table_args__ = (
        UniqueConstraint("project_id", "email", name="uq_project_invitation_email"),
    )

    id: str = Field(default_factory=new_id, primary_key=True)
    project_id: str = Field(foreign_key="project.id", index=True, nullable=False)
    email: str = Field(max_length=255, index=True, nullable=False)
    role: ProjectRole = Field(default=ProjectRole.MEMBER)
    token: str = Field(max_length=255, unique=True, index=True, nullable=False)
    invited_by_id: Optional[str] = Field(default=None, foreign_key="user.id")
    expires_at: datetime = Field(default_factory=lambda: utcnow() + timedelta(hours=24))
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return as_utc(now or utcnow()) >= as_utc(self.expires_at)


# ============================================================
# TASK
# ============================================================
class Task(SQLModel, table=True):
    __tablename__ = "task"

    id: str = Field(default_factory=new_id, primary_key=True)
    project_id: str = Field(foreign_key="project.id", index=True, nullable=False)
    creator_id: str = Field(foreign_key="user.id", index=True, nullable=False)
    assignee_id: Optional[str] = Field(default=None, foreign_key="user.id", index=True)
    title: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: TaskStatus = Field(default=TaskStatus.TODO)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
    due_date: Optional[datetime] = None
    completion_note: Optional[str] = Field(default=None, max_length=2000)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================
# FILE
# ============================================================
class File(SQLModel, table=True):
    __tablename__ = "file"

    id: str = Field(default_factory=new_id, primary_key=True)
    name: str = Field(max_length=255)
    url: str = Field(max_length=1000)
    size: int = Field(default=0, ge=0, sa_type=BigInteger)
    type: Optional[str] = Field(default=None, max_length=100)
    uploader_id: str = Field(foreign_key="user.id", index=True, nullable=False)
    project_id: str = Field(foreign_key="project.id", index=True, nullable=False)
    # None means a project-level file
    task_id: Optional[str] = Field(default=None, foreign_key="task.id", index=True)
    is_task_deliverable: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# SUBSCRIPTION
# ============================================================
class Subscription(SQLModel, table=True):
    __tablename__ = "subscription"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", unique=True, index=True, nullable=False)
    plan: SubscriptionPlan = Field(default=SubscriptionPlan.STARTER)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.TRIAL)

    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, unique=True, index=True)
    stripe_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_price_id: Optional[str] = Field(default=None, max_length=255)

    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================
# SHORT-LIVED EMAIL TOKENS
# ============================================================
class EmailTokenBase(SQLModel):
    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(max_length=255, index=True, nullable=False)
    token: str = Field(max_length=255, unique=True, index=True, nullable=False)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return as_utc(now or utcnow()) >= as_utc(self.expires_at)


class PasswordResetToken(EmailTokenBase, table=True):
    __tablename__ = "password_reset_token"


class DeleteAccountToken(EmailTokenBase, table=True):
    __tablename__ = "delete_account_token"


# ============================================================
# WEBHOOK EVENT LOG
# ============================================================
class WebhookEvent(SQLModel, table=True):
    __tablename__ = "webhook_event"

    id: str = Field(default_factory=new_id, primary_key=True)
    gateway_event_id: str = Field(max_length=255, unique=True, index=True)
    event_type: str = Field(max_length=100, index=True)
    processed: bool = Field(default=False)
    processing_error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# ACCESS SNAPSHOTS (virtual, read side of the permission graph)
# ============================================================
class ProjectAccess(SQLModel):
    """A project's owner plus its explicit membership edges."""

    project_id: str
    creator_id: str
    members: Dict[str, ProjectRole] = {}

    def effective_role(self, user_id: str) -> Optional[ProjectRole]:
        # The creator holds ADMIN authority with or without a membership row
        if user_id == self.creator_id:
            return ProjectRole.ADMIN
        return self.members.get(user_id)


class TaskAccess(SQLModel):
    task_id: str
    creator_id: str
    assignee_id: Optional[str] = None
    project: ProjectAccess


class FileAccess(SQLModel):
    file_id: str
    uploader_id: str
    task_id: Optional[str] = None
    project: ProjectAccess


__all__ = [
    "User",
    "Project",
    "ProjectMember",
    "ProjectInvitation",
    "Task",
    "File",
    "Subscription",
    "PasswordResetToken",
    "DeleteAccountToken",
    "WebhookEvent",
    "ProjectAccess",
    "TaskAccess",
    "FileAccess",
    "ProjectRole",
    "ProjectStatus",
    "TaskStatus",
    "TaskPriority",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "utcnow",
    "as_utc",
    "new_id",
]
