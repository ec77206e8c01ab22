# subscription_schema.py
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.models import SubscriptionPlan, SubscriptionStatus


# ============================================================
# ✅ Plan table entry
# ============================================================
class PlanLimits(BaseModel):
    projects: int  # -1 means unlimited
    team_members: int  # -1 means unlimited
    storage_gb: float
    price: int  # monthly price in cents

    model_config = ConfigDict(frozen=True)


class PlanRead(PlanLimits):
    id: SubscriptionPlan
    name: str
    stripe_price_id: Optional[str] = None


class PlansResponse(BaseModel):
    plans: List[PlanRead]


# ============================================================
# ✅ Limiter results
# ============================================================
class ProjectQuota(BaseModel):
    can_create: bool
    current_count: int
    limit: int
    plan: SubscriptionPlan

    @property
    def allowed(self) -> bool:
        return self.can_create


class TeamMemberQuota(BaseModel):
    can_add: bool
    current_count: int
    limit: int
    plan: SubscriptionPlan

    @property
    def allowed(self) -> bool:
        return self.can_add


class StorageQuota(BaseModel):
    can_upload: bool
    current_usage_gb: float
    limit_gb: float
    plan: SubscriptionPlan

    @property
    def allowed(self) -> bool:
        return self.can_upload


# ============================================================
# ✅ Status / reporting aggregate
# ============================================================
class UsageRead(BaseModel):
    projects: int
    team_members: int
    storage_gb: float


class BillingPeriodRead(BaseModel):
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


class SubscriptionStatusRead(BaseModel):
    plan: SubscriptionPlan
    status: SubscriptionStatus
    limits: PlanLimits
    usage: UsageRead
    subscription: Optional[BillingPeriodRead] = None


# ============================================================
# ✅ Checkout / portal
# ============================================================
class CheckoutRequest(BaseModel):
    plan: SubscriptionPlan


class CheckoutResponse(BaseModel):
    checkout_url: Optional[str]
    session_id: str


class PortalResponse(BaseModel):
    portal_url: str


class LimitCheckType(str, Enum):
    PROJECTS = "projects"
    TEAM_MEMBERS = "team-members"
    FILE_UPLOAD = "file-upload"


class SubscriptionEventRead(BaseModel):
    status: str = Field(default="success")
    event: str
