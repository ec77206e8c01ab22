# ================================================================
# services/billing_service.py: Stripe gateway + subscription events
# ================================================================
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

import stripe
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from core.config import settings
from core.errors import InvalidRequest, NotFound, PaymentGatewayError
from models.models import Subscription, SubscriptionPlan, SubscriptionStatus, User
from schemas.subscription_schema import CheckoutResponse
from services.store import SQLStore
from services.subscription_service import plan_for_price_id, stripe_price_id

logger = logging.getLogger(__name__)

# Gateway status -> local status. Anything else leaves the row untouched.
GATEWAY_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIAL,
    "canceled": SubscriptionStatus.CANCELED,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete": SubscriptionStatus.UNPAID,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}

HANDLED_EVENT_TYPES = {
    "customer.subscription.created": "created",
    "customer.subscription.updated": "updated",
    "customer.subscription.deleted": "deleted",
}


# ============================================================
# GATEWAY (outbound calls)
# ============================================================
class BillingGateway:
    """
    Thin wrapper over the Stripe SDK; every SDK failure becomes PaymentGatewayError.
    The methods do blocking network I/O, so async callers go through run_in_threadpool.
    """

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        if api_key:
            stripe.api_key = api_key
        else:
            logger.warning("💳 STRIPE_SECRET_KEY not set, billing endpoints will fail until configured.")

    def _require_configured(self) -> None:
        if not self.api_key:
            raise PaymentGatewayError("Payment processing is not configured.")

    def create_customer(self, user: User) -> str:
        self._require_configured()
        try:
            customer = stripe.Customer.create(
                email=user.email,
                name=user.name or None,
                metadata={"userId": user.id},
            )
        except stripe.StripeError as e:
            logger.error("❌ Failed to create Stripe customer for %s: %s", user.id, e)
            raise PaymentGatewayError("Could not create a billing customer.")
        return customer.id

    def customer_user_id(self, customer_id: str) -> Optional[str]:
        """The user id stored in the customer's metadata, if any."""
        self._require_configured()
        try:
            customer = stripe.Customer.retrieve(customer_id)
        except stripe.StripeError as e:
            logger.error("❌ Failed to retrieve Stripe customer %s: %s", customer_id, e)
            return None
        if getattr(customer, "deleted", False):
            return None
        metadata = customer.get("metadata") or {}
        return metadata.get("userId")

    def create_checkout_session(self, customer_id: str, price_id: str, user_id: str) -> CheckoutResponse:
        self._require_configured()
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=settings.STRIPE_SUCCESS_URL,
                cancel_url=settings.STRIPE_CANCEL_URL,
                metadata={"userId": user_id},
            )
        except stripe.StripeError as e:
            logger.error("❌ Failed to create checkout session for %s: %s", user_id, e)
            raise PaymentGatewayError("Could not start checkout.")
        return CheckoutResponse(checkout_url=session.url, session_id=session.id)

    def create_billing_portal_session(self, customer_id: str) -> str:
        self._require_configured()
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=settings.STRIPE_PORTAL_RETURN_URL,
            )
        except stripe.StripeError as e:
            logger.error("❌ Failed to create billing portal session for %s: %s", customer_id, e)
            raise PaymentGatewayError("Could not open the billing portal.")
        return session.url

    def cancel_subscription(self, subscription_id: str) -> None:
        self._require_configured()
        try:
            stripe.Subscription.cancel(subscription_id)
        except stripe.StripeError as e:
            logger.error("❌ Failed to cancel subscription %s: %s", subscription_id, e)
            raise PaymentGatewayError("Could not cancel the existing subscription.")

    def verify_webhook(self, payload: bytes, sig_header: Optional[str]) -> None:
        """Raises InvalidRequest when the payload was not signed by the gateway."""
        if not self.webhook_secret:
            raise PaymentGatewayError("Webhook secret not configured.")
        if not sig_header:
            raise InvalidRequest("Missing stripe-signature header")
        try:
            stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=self.webhook_secret)
        except ValueError:
            raise InvalidRequest("Invalid payload")
        except stripe.SignatureVerificationError:
            raise InvalidRequest("Invalid signature")


# ============================================================
# INBOUND EVENTS (commands)
# ============================================================
class SubscriptionEvent(BaseModel):
    event_id: str
    kind: Literal["created", "updated", "deleted"]
    subscription_id: str
    customer_id: str
    price_id: Optional[str] = None
    status: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def subscription_event_from_payload(event: Dict[str, Any]) -> Optional[SubscriptionEvent]:
    """Translate a decoded gateway webhook body into a command; None for unhandled types."""
    kind = HANDLED_EVENT_TYPES.get(event.get("type", ""))
    if kind is None:
        return None

    obj = event.get("data", {}).get("object", {})
    items = (obj.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}

    return SubscriptionEvent(
        event_id=event["id"],
        kind=kind,
        subscription_id=obj["id"],
        customer_id=obj["customer"],
        price_id=price.get("id"),
        status=obj.get("status"),
        # Newer API versions carry the period on the item rather than the subscription
        current_period_start=_from_timestamp(
            first_item.get("current_period_start") or obj.get("current_period_start")
        ),
        current_period_end=_from_timestamp(
            first_item.get("current_period_end") or obj.get("current_period_end")
        ),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
    )


class SubscriptionEventHandler:
    """
    Applies gateway subscription events to the Subscription row. This is the
    only writer of Subscription.status besides the lazy row creation at checkout.
    """

    def __init__(self, store: SQLStore, gateway: Optional[BillingGateway] = None):
        self.store = store
        self.gateway = gateway

    async def _find_subscription(self, event: SubscriptionEvent) -> Optional[Subscription]:
        subscription = await self.store.get_subscription_by_customer(event.customer_id)
        if subscription or event.kind != "created" or self.gateway is None:
            return subscription

        # Checkout may complete before the customer id was stored locally
        user_id = await run_in_threadpool(self.gateway.customer_user_id, event.customer_id)
        if not user_id:
            return None
        subscription = await self.store.get_subscription(user_id)
        if subscription:
            subscription.stripe_customer_id = event.customer_id
        return subscription

    async def handle(self, event: SubscriptionEvent) -> str:
        if not await self.store.record_webhook_event(event.event_id, f"customer.subscription.{event.kind}"):
            logger.info("ℹ️ Webhook event %s already processed, ignoring", event.event_id)
            return "ignored"

        subscription = await self._find_subscription(event)
        if subscription is None:
            logger.error("❌ No subscription found for customer %s", event.customer_id)
            await self.store.finish_webhook_event(event.event_id, error="No subscription for customer")
            return "unmatched"

        if event.kind == "deleted":
            subscription.status = SubscriptionStatus.CANCELED
            subscription.cancel_at_period_end = True
            subscription.plan = SubscriptionPlan.STARTER
        else:
            subscription.stripe_subscription_id = event.subscription_id
            subscription.stripe_price_id = event.price_id
            subscription.plan = plan_for_price_id(event.price_id)
            subscription.current_period_start = event.current_period_start
            subscription.current_period_end = event.current_period_end
            subscription.cancel_at_period_end = event.cancel_at_period_end
            if event.kind == "created":
                subscription.status = SubscriptionStatus.ACTIVE
            elif event.status in GATEWAY_STATUS_MAP:
                subscription.status = GATEWAY_STATUS_MAP[event.status]
            else:
                logger.warning("⚠️ Unknown gateway status %r for %s, status unchanged", event.status, event.subscription_id)

        await self.store.save_subscription(subscription)
        await self.store.finish_webhook_event(event.event_id)
        logger.info(
            "✅ Subscription for user %s is now %s/%s", subscription.user_id, subscription.plan, subscription.status
        )
        return "processed"


# ============================================================
# CHECKOUT FLOWS
# ============================================================
class BillingService:
    def __init__(self, store: SQLStore, gateway: BillingGateway):
        self.store = store
        self.gateway = gateway

    async def ensure_customer(self, user: User) -> Subscription:
        """Create the gateway customer (and the STARTER/TRIAL row) on first billing interaction."""
        subscription = await self.store.get_subscription(user.id)
        if subscription and subscription.stripe_customer_id:
            return subscription

        customer_id = await run_in_threadpool(self.gateway.create_customer, user)
        if subscription is None:
            subscription = Subscription(
                user_id=user.id,
                plan=SubscriptionPlan.STARTER,
                status=SubscriptionStatus.TRIAL,
            )
        subscription.stripe_customer_id = customer_id
        return await self.store.save_subscription(subscription)

    async def start_checkout(self, user: User, plan: SubscriptionPlan) -> CheckoutResponse:
        if plan not in (SubscriptionPlan.PRO, SubscriptionPlan.ENTERPRISE):
            raise InvalidRequest("Valid plan is required")
        price_id = stripe_price_id(plan)
        if not price_id:
            raise InvalidRequest("Plan not available for purchase")

        subscription = await self.ensure_customer(user)

        # One active paid subscription at a time: cancel the old one before upgrading
        if subscription.stripe_subscription_id and subscription.status == SubscriptionStatus.ACTIVE:
            logger.info("Canceling existing subscription %s before upgrade", subscription.stripe_subscription_id)
            try:
                await run_in_threadpool(self.gateway.cancel_subscription, subscription.stripe_subscription_id)
            except PaymentGatewayError:
                logger.warning("⚠️ Continuing checkout although the old subscription could not be canceled")

        return await run_in_threadpool(
            self.gateway.create_checkout_session, subscription.stripe_customer_id, price_id, user.id
        )

    async def open_portal(self, user: User) -> str:
        subscription = await self.store.get_subscription(user.id)
        if not subscription or not subscription.stripe_customer_id:
            raise NotFound("Subscription")
        return await run_in_threadpool(self.gateway.create_billing_portal_session, subscription.stripe_customer_id)


__all__ = [
    "BillingGateway",
    "BillingService",
    "SubscriptionEvent",
    "SubscriptionEventHandler",
    "subscription_event_from_payload",
    "GATEWAY_STATUS_MAP",
]
