# routes/subscriptions.py
import json
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from core.dependencies import (
    get_billing_service, get_event_handler, get_gateway, get_limiter,
)
from core.security import get_current_user
from models.models import SubscriptionPlan, User
from schemas.subscription_schema import (
    CheckoutRequest, CheckoutResponse, LimitCheckType, PlanRead, PlansResponse,
    PortalResponse, ProjectQuota, StorageQuota, SubscriptionEventRead,
    SubscriptionStatusRead, TeamMemberQuota,
)
from services.billing_service import (
    BillingGateway, BillingService, SubscriptionEventHandler, subscription_event_from_payload,
)
from services.subscription_service import (
    PLAN_DISPLAY_NAMES, SubscriptionLimiter, get_subscription_limits, stripe_price_id,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Subscriptions"])


# ==================================================================
#  📊 Current plan, limits and usage
# ==================================================================
@router.get("/status", response_model=SubscriptionStatusRead)
async def get_status(
    current_user: User = Depends(get_current_user),
    limiter: SubscriptionLimiter = Depends(get_limiter),
):
    return await limiter.get_subscription_status(current_user.id)


@router.get("/plans", response_model=PlansResponse)
async def get_plans():
    """Public catalogue of plans and their quotas."""
    plans = [
        PlanRead(
            id=plan,
            name=PLAN_DISPLAY_NAMES[plan],
            stripe_price_id=stripe_price_id(plan),
            **get_subscription_limits(plan).model_dump(),
        )
        for plan in SubscriptionPlan
    ]
    return PlansResponse(plans=plans)


@router.get("/limits/check", response_model=Union[ProjectQuota, TeamMemberQuota, StorageQuota])
async def check_limits(
    type: LimitCheckType = Query(...),
    project_id: Optional[str] = Query(default=None),
    file_size: Optional[int] = Query(default=None, ge=0),
    current_user: User = Depends(get_current_user),
    limiter: SubscriptionLimiter = Depends(get_limiter),
):
    if type == LimitCheckType.PROJECTS:
        return await limiter.can_create_project(current_user.id)

    if type == LimitCheckType.TEAM_MEMBERS:
        if not project_id:
            raise HTTPException(status_code=400, detail="Project ID is required for team member check")
        return await limiter.can_add_team_member(current_user.id, project_id)

    if file_size is None:
        raise HTTPException(status_code=400, detail="File size is required for upload check")
    return await limiter.can_upload_file(current_user.id, file_size)


# ==================================================================
#  💳 Checkout / billing portal
# ==================================================================
@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    data: CheckoutRequest,
    current_user: User = Depends(get_current_user),
    billing: BillingService = Depends(get_billing_service),
):
    return await billing.start_checkout(current_user, data.plan)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    current_user: User = Depends(get_current_user),
    billing: BillingService = Depends(get_billing_service),
):
    return PortalResponse(portal_url=await billing.open_portal(current_user))


# ==================================================================
#  🔔 Gateway webhook
# ==================================================================
@router.post("/webhook", response_model=SubscriptionEventRead)
async def stripe_webhook(
    request: Request,
    gateway: BillingGateway = Depends(get_gateway),
    handler: SubscriptionEventHandler = Depends(get_event_handler),
):
    """Verify the signature, translate the payload into a command and apply it."""
    payload = await request.body()
    gateway.verify_webhook(payload, request.headers.get("stripe-signature"))

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    logger.info("✅ Webhook received: %s", event.get("type"))
    command = subscription_event_from_payload(event)
    if command is None:
        logger.info("Unhandled event type: %s", event.get("type"))
        return SubscriptionEventRead(event="ignored")

    return SubscriptionEventRead(event=await handler.handle(command))
