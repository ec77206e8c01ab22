# ================================================================
# services/subscription_service.py: Plan limits + quota enforcement
# ================================================================
import logging
from types import MappingProxyType
from typing import Literal, Mapping, Optional

from core.config import settings
from core.errors import NotFound
from models.models import Subscription, SubscriptionPlan, SubscriptionStatus, User
from schemas.subscription_schema import (
    BillingPeriodRead,
    PlanLimits,
    ProjectQuota,
    StorageQuota,
    SubscriptionStatusRead,
    TeamMemberQuota,
    UsageRead,
)
from services.store import AccessStore

logger = logging.getLogger(__name__)

UNLIMITED = -1
BYTES_PER_GB = 1024 * 1024 * 1024
# Average file size (MB) assumed by the "estimate" storage accounting mode
ESTIMATED_FILE_SIZE_MB = 0.5

# ------------------------------------------------------------
# Plan table: the single source of truth for quotas
# ------------------------------------------------------------
SUBSCRIPTION_LIMITS: Mapping[SubscriptionPlan, PlanLimits] = MappingProxyType({
    SubscriptionPlan.STARTER: PlanLimits(projects=5, team_members=4, storage_gb=0.1, price=0),
    SubscriptionPlan.PRO: PlanLimits(projects=100, team_members=15, storage_gb=10, price=2900),
    SubscriptionPlan.ENTERPRISE: PlanLimits(projects=UNLIMITED, team_members=UNLIMITED, storage_gb=100, price=7900),
})

PLAN_DISPLAY_NAMES = {
    SubscriptionPlan.STARTER: "Starter",
    SubscriptionPlan.PRO: "Pro",
    SubscriptionPlan.ENTERPRISE: "Enterprise",
}


def get_subscription_limits(plan: SubscriptionPlan) -> PlanLimits:
    return SUBSCRIPTION_LIMITS[SubscriptionPlan(plan)]


def stripe_price_id(plan: SubscriptionPlan) -> Optional[str]:
    """Gateway price id for a paid plan (None for STARTER or when unconfigured)."""
    return {
        SubscriptionPlan.PRO: settings.STRIPE_PRO_PRICE_ID,
        SubscriptionPlan.ENTERPRISE: settings.STRIPE_ENTERPRISE_PRICE_ID,
    }.get(SubscriptionPlan(plan))


def plan_for_price_id(price_id: Optional[str]) -> SubscriptionPlan:
    """Reverse lookup used by webhook events; unknown prices map to STARTER."""
    if price_id:
        for plan in (SubscriptionPlan.PRO, SubscriptionPlan.ENTERPRISE):
            if stripe_price_id(plan) == price_id:
                return plan
    return SubscriptionPlan.STARTER


def within_limit(current: float, limit: float) -> bool:
    return limit == UNLIMITED or current < limit


def effective_plan(subscription: Optional[Subscription]) -> SubscriptionPlan:
    return SubscriptionPlan(subscription.plan) if subscription else SubscriptionPlan.STARTER


class SubscriptionLimiter:
    """
    Gates creation of metered resources against the owner's plan.

    Every operation raises ``NotFound`` when the subject user or project does
    not exist; it never turns that into a denial.
    """

    def __init__(
        self,
        store: AccessStore,
        storage_accounting: Literal["actual", "estimate"] = "actual",
    ):
        self.store = store
        self.storage_accounting = storage_accounting

    async def _require_user(self, user_id: str) -> User:
        user = await self.store.get_user(user_id)
        if not user:
            raise NotFound("User", user_id)
        return user

    async def _plan_for(self, user_id: str) -> SubscriptionPlan:
        return effective_plan(await self.store.get_subscription(user_id))

    async def storage_usage_gb(self, user_id: str) -> float:
        if self.storage_accounting == "estimate":
            file_count = await self.store.count_uploaded_files(user_id)
            return (file_count * ESTIMATED_FILE_SIZE_MB) / 1024
        return await self.store.sum_uploaded_bytes(user_id) / BYTES_PER_GB

    # ================================================================
    # Quota checks
    # ================================================================
    async def can_create_project(self, user_id: str) -> ProjectQuota:
        await self._require_user(user_id)
        plan = await self._plan_for(user_id)
        limits = get_subscription_limits(plan)

        project_count = await self.store.count_projects_for_user(user_id)
        return ProjectQuota(
            can_create=within_limit(project_count, limits.projects),
            current_count=project_count,
            limit=limits.projects,
            plan=plan,
        )

    async def can_add_team_member(self, user_id: str, project_id: str) -> TeamMemberQuota:
        """The quota belongs to the project creator's plan, whoever is inviting."""
        await self._require_user(user_id)
        project = await self.store.get_project(project_id)
        if not project:
            raise NotFound("Project", project_id)

        plan = await self._plan_for(project.creator_id)
        limits = get_subscription_limits(plan)

        member_count = await self.store.count_team_members(project.creator_id)
        return TeamMemberQuota(
            can_add=within_limit(member_count, limits.team_members),
            current_count=member_count,
            limit=limits.team_members,
            plan=plan,
        )

    async def can_upload_file(self, user_id: str, file_size_bytes: int) -> StorageQuota:
        await self._require_user(user_id)
        plan = await self._plan_for(user_id)
        limits = get_subscription_limits(plan)

        current_usage_gb = await self.storage_usage_gb(user_id)
        new_total_gb = current_usage_gb + max(file_size_bytes, 0) / BYTES_PER_GB
        return StorageQuota(
            can_upload=limits.storage_gb == UNLIMITED or new_total_gb <= limits.storage_gb,
            current_usage_gb=current_usage_gb,
            limit_gb=limits.storage_gb,
            plan=plan,
        )

    # ================================================================
    # Read-only status aggregate (display, not enforcement)
    # ================================================================
    async def get_subscription_status(self, user_id: str) -> SubscriptionStatusRead:
        await self._require_user(user_id)
        subscription = await self.store.get_subscription(user_id)
        plan = effective_plan(subscription)

        usage = UsageRead(
            projects=await self.store.count_projects_for_user(user_id),
            team_members=await self.store.count_team_members(user_id),
            storage_gb=await self.storage_usage_gb(user_id),
        )
        return SubscriptionStatusRead(
            plan=plan,
            status=subscription.status if subscription else SubscriptionStatus.TRIAL,
            limits=get_subscription_limits(plan),
            usage=usage,
            subscription=BillingPeriodRead(
                current_period_start=subscription.current_period_start,
                current_period_end=subscription.current_period_end,
                cancel_at_period_end=subscription.cancel_at_period_end,
            ) if subscription else None,
        )
