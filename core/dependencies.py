# core/dependencies.py
from fastapi import Depends, HTTPException, Request, status

from core.config import settings
from core.database import get_store
from core.errors import PERMISSION_DENIED_MESSAGE
from services.authorization import AuthorizationResolver
from services.billing_service import BillingGateway, BillingService, SubscriptionEventHandler
from services.store import SQLStore
from services.subscription_service import SubscriptionLimiter


# ========================================
# 🛡️ Authorization / quotas
# ========================================
def get_resolver(store: SQLStore = Depends(get_store)) -> AuthorizationResolver:
    return AuthorizationResolver(store)


def get_limiter(store: SQLStore = Depends(get_store)) -> SubscriptionLimiter:
    return SubscriptionLimiter(store, storage_accounting=settings.STORAGE_ACCOUNTING)


def ensure_allowed(allowed: bool) -> None:
    """Turn a resolver denial into a 403 with the generic message."""
    if not allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=PERMISSION_DENIED_MESSAGE)


# ========================================
# 💳 Billing
# ========================================
def get_gateway(request: Request) -> BillingGateway:
    return request.app.state.gateway


def get_billing_service(
    store: SQLStore = Depends(get_store),
    gateway: BillingGateway = Depends(get_gateway),
) -> BillingService:
    return BillingService(store, gateway)


def get_event_handler(
    store: SQLStore = Depends(get_store),
    gateway: BillingGateway = Depends(get_gateway),
) -> SubscriptionEventHandler:
    return SubscriptionEventHandler(store, gateway)
