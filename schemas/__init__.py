from .file_schema import FileCreate, FileRead, ProjectFileCreate
from .invitation_schema import InvitationAccept, InvitationCreate, InvitationPreview, InvitationRead
from .project_schema import MemberRoleUpdate, ProjectCreate, ProjectMemberRead, ProjectRead, ProjectUpdate
from .subscription_schema import (
    CheckoutRequest, CheckoutResponse, LimitCheckType,
    PlanLimits, PlanRead, PlansResponse, PortalResponse,
    ProjectQuota, StorageQuota, SubscriptionEventRead,
    SubscriptionStatusRead, TeamMemberQuota, UsageRead,
)
from .task_schema import TaskComplete, TaskCreate, TaskDetail, TaskRead, TaskUpdate
from .user_schema import (
    DeleteAccountConfirm, MessageResponse, PasswordResetConfirm,
    PasswordResetRequest, TokenResponse, UserCreate, UserLogin, UserRead,
)

__all__ = [
    # File
    "FileCreate", "FileRead", "ProjectFileCreate",

    # Invitation
    "InvitationAccept", "InvitationCreate", "InvitationPreview", "InvitationRead",

    # Project
    "MemberRoleUpdate", "ProjectCreate", "ProjectMemberRead", "ProjectRead", "ProjectUpdate",

    # Subscription
    "CheckoutRequest", "CheckoutResponse", "LimitCheckType",
    "PlanLimits", "PlanRead", "PlansResponse", "PortalResponse",
    "ProjectQuota", "StorageQuota", "SubscriptionEventRead",
    "SubscriptionStatusRead", "TeamMemberQuota", "UsageRead",

    # Task
    "TaskComplete", "TaskCreate", "TaskDetail", "TaskRead", "TaskUpdate",

    # User
    "DeleteAccountConfirm", "MessageResponse", "PasswordResetConfirm",
    "PasswordResetRequest", "TokenResponse", "UserCreate", "UserLogin", "UserRead",
]
