# tests/test_subscriptions.py: Subscription router + billing webhook tests
import json
import threading
from unittest.mock import MagicMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from models.models import File, SubscriptionPlan, SubscriptionStatus
from services.store import SQLStore
from tests.conftest import create_project, get_auth_headers, set_plan

MB = 1024 * 1024


# ── Plans / status ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_plans_are_public(client: AsyncClient):
    resp = await client.get("/api/subscriptions/plans")
    assert resp.status_code == 200
    plans = {p["id"]: p for p in resp.json()["plans"]}
    assert set(plans) == {"STARTER", "PRO", "ENTERPRISE"}
    assert plans["STARTER"]["stripe_price_id"] is None
    assert plans["PRO"]["stripe_price_id"] == "price_pro_test"
    assert plans["ENTERPRISE"]["projects"] == -1


@pytest.mark.asyncio
async def test_status_for_new_user(client: AsyncClient, store, owner):
    await create_project(store, owner)
    resp = await client.get("/api/subscriptions/status", headers=get_auth_headers(owner))
    assert resp.status_code == 200
    body = resp.json()
    assert body["plan"] == "STARTER"
    assert body["status"] == "TRIAL"
    assert body["usage"]["projects"] == 1
    assert body["limits"]["projects"] == 5


@pytest.mark.asyncio
async def test_status_requires_auth(client: AsyncClient):
    assert (await client.get("/api/subscriptions/status")).status_code == 401


# ── Limit checks ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_limit_check_projects(client: AsyncClient, store, owner):
    await set_plan(store, owner, SubscriptionPlan.PRO)
    resp = await client.get("/api/subscriptions/limits/check?type=projects", headers=get_auth_headers(owner))
    assert resp.status_code == 200
    assert resp.json() == {"can_create": True, "current_count": 0, "limit": 100, "plan": "PRO"}


@pytest.mark.asyncio
async def test_limit_check_team_members(client: AsyncClient, project, owner):
    headers = get_auth_headers(owner)
    resp = await client.get(
        f"/api/subscriptions/limits/check?type=team-members&project_id={project.id}", headers=headers
    )
    assert resp.status_code == 200
    assert resp.json()["can_add"] is True
    assert resp.json()["current_count"] == 3

    assert (await client.get("/api/subscriptions/limits/check?type=team-members", headers=headers)).status_code == 400
    resp = await client.get("/api/subscriptions/limits/check?type=team-members&project_id=missing", headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_limit_check_storage(client: AsyncClient, store, project, owner):
    await store.add_file(
        File(name="big.bin", url="https://files.example/big.bin", size=50 * MB, uploader_id=owner.id, project_id=project.id)
    )
    headers = get_auth_headers(owner)

    resp = await client.get(f"/api/subscriptions/limits/check?type=file-upload&file_size={10 * MB}", headers=headers)
    assert resp.json()["can_upload"] is True
    resp = await client.get(f"/api/subscriptions/limits/check?type=file-upload&file_size={60 * MB}", headers=headers)
    assert resp.json()["can_upload"] is False

    assert (await client.get("/api/subscriptions/limits/check?type=file-upload", headers=headers)).status_code == 400
    assert (await client.get("/api/subscriptions/limits/check?type=bogus", headers=headers)).status_code == 422


# ── Checkout / portal ────────────────────────────────────────

@pytest.mark.asyncio
async def test_checkout_creates_customer_and_session(client: AsyncClient, store, owner):
    with patch("stripe.Customer.create", return_value=MagicMock(id="cus_123")) as create_customer, \
            patch("stripe.checkout.Session.create",
                  return_value=MagicMock(id="cs_1", url="https://checkout.example/cs_1")) as create_session:
        resp = await client.post(
            "/api/subscriptions/checkout", json={"plan": "PRO"}, headers=get_auth_headers(owner)
        )

    assert resp.status_code == 200
    assert resp.json() == {"checkout_url": "https://checkout.example/cs_1", "session_id": "cs_1"}
    create_customer.assert_called_once()
    assert create_session.call_args.kwargs["line_items"] == [{"price": "price_pro_test", "quantity": 1}]

    subscription = await store.get_subscription(owner.id)
    assert subscription.stripe_customer_id == "cus_123"
    assert (subscription.plan, subscription.status) == (SubscriptionPlan.STARTER, SubscriptionStatus.TRIAL)


@pytest.mark.asyncio
async def test_checkout_rejects_starter(client: AsyncClient, owner):
    resp = await client.post("/api/subscriptions/checkout", json={"plan": "STARTER"}, headers=get_auth_headers(owner))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_portal_without_customer(client: AsyncClient, owner):
    resp = await client.post("/api/subscriptions/portal", headers=get_auth_headers(owner))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_portal_with_customer(client: AsyncClient, store, owner):
    subscription = await set_plan(store, owner, SubscriptionPlan.PRO)
    subscription.stripe_customer_id = "cus_portal"
    await store.save_subscription(subscription)

    with patch("stripe.billing_portal.Session.create", return_value=MagicMock(url="https://portal.example/x")):
        resp = await client.post("/api/subscriptions/portal", headers=get_auth_headers(owner))
    assert resp.status_code == 200
    assert resp.json()["portal_url"] == "https://portal.example/x"


# ── Webhook ──────────────────────────────────────────────────

def _subscription_event(event_id: str, event_type: str, status: str = "active", price: str = "price_pro_test") -> dict:
    return {
        "id": event_id,
        "type": event_type,
        "data": {
            "object": {
                "id": "sub_1",
                "customer": "cus_hook",
                "status": status,
                "cancel_at_period_end": False,
                "items": {
                    "data": [
                        {
                            "price": {"id": price},
                            "current_period_start": 1_700_000_000,
                            "current_period_end": 1_702_592_000,
                        }
                    ]
                },
            }
        },
    }


async def _post_webhook(client: AsyncClient, event: dict, signature: str = "t=1,v1=test"):
    headers = {"stripe-signature": signature} if signature else {}
    with patch("stripe.Webhook.construct_event", return_value=event):
        return await client.post("/api/subscriptions/webhook", content=json.dumps(event), headers=headers)


@pytest_asyncio.fixture
async def billed_owner(store, owner):
    subscription = await set_plan(store, owner, SubscriptionPlan.STARTER)
    subscription.status = SubscriptionStatus.TRIAL
    subscription.stripe_customer_id = "cus_hook"
    await store.save_subscription(subscription)
    return owner


@pytest.mark.asyncio
async def test_webhook_lifecycle(client: AsyncClient, store, billed_owner):
    resp = await _post_webhook(client, _subscription_event("evt_1", "customer.subscription.created"))
    assert resp.json() == {"status": "success", "event": "processed"}
    subscription = await store.get_subscription(billed_owner.id)
    assert (subscription.plan, subscription.status) == (SubscriptionPlan.PRO, SubscriptionStatus.ACTIVE)
    assert subscription.stripe_subscription_id == "sub_1"
    assert subscription.current_period_end is not None

    await _post_webhook(
        client, _subscription_event("evt_2", "customer.subscription.updated", "past_due", "price_enterprise_test")
    )
    subscription = await store.get_subscription(billed_owner.id)
    assert (subscription.plan, subscription.status) == (SubscriptionPlan.ENTERPRISE, SubscriptionStatus.PAST_DUE)

    await _post_webhook(client, _subscription_event("evt_3", "customer.subscription.deleted", "canceled"))
    subscription = await store.get_subscription(billed_owner.id)
    assert (subscription.plan, subscription.status) == (SubscriptionPlan.STARTER, SubscriptionStatus.CANCELED)


@pytest.mark.asyncio
async def test_webhook_replay_is_ignored(client: AsyncClient, store, billed_owner):
    event = _subscription_event("evt_dup", "customer.subscription.updated", "active")
    assert (await _post_webhook(client, event)).json()["event"] == "processed"

    subscription = await store.get_subscription(billed_owner.id)
    subscription.status = SubscriptionStatus.UNPAID
    await store.save_subscription(subscription)

    assert (await _post_webhook(client, event)).json()["event"] == "ignored"
    assert (await store.get_subscription(billed_owner.id)).status == SubscriptionStatus.UNPAID


@pytest.mark.asyncio
async def test_webhook_unknown_status_leaves_status(client: AsyncClient, store, billed_owner):
    await _post_webhook(client, _subscription_event("evt_odd", "customer.subscription.updated", "paused"))
    subscription = await store.get_subscription(billed_owner.id)
    assert subscription.status == SubscriptionStatus.TRIAL
    assert subscription.plan == SubscriptionPlan.PRO


@pytest.mark.asyncio
async def test_webhook_unhandled_type(client: AsyncClient):
    resp = await _post_webhook(client, {"id": "evt_x", "type": "invoice.paid", "data": {"object": {}}})
    assert resp.status_code == 200
    assert resp.json()["event"] == "ignored"


@pytest.mark.asyncio
async def test_webhook_unknown_customer(client: AsyncClient):
    with patch("stripe.Customer.retrieve", return_value={"metadata": {}}):
        resp = await _post_webhook(client, _subscription_event("evt_nobody", "customer.subscription.created"))
    assert resp.json()["event"] == "unmatched"


@pytest.mark.asyncio
async def test_webhook_requires_signature(client: AsyncClient):
    resp = await _post_webhook(client, _subscription_event("evt_nosig", "customer.subscription.created"), signature="")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_retry_after_failed_delivery_is_applied(client: AsyncClient, store, billed_owner):
    real_save = SQLStore.save_subscription
    attempts = {"count": 0}

    async def save_fails_once(self, subscription):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise OperationalError("UPDATE subscription", {}, Exception("database is locked"))
        return await real_save(self, subscription)

    event = _subscription_event("evt_retry", "customer.subscription.created")
    with patch.object(SQLStore, "save_subscription", save_fails_once):
        first = await _post_webhook(client, event)
        assert first.status_code == 500

        retry = await _post_webhook(client, event)
    assert retry.json() == {"status": "success", "event": "processed"}

    subscription = await store.get_subscription(billed_owner.id)
    assert (subscription.plan, subscription.status) == (SubscriptionPlan.PRO, SubscriptionStatus.ACTIVE)

    # Once applied, the same event id is a replay
    assert (await _post_webhook(client, event)).json()["event"] == "ignored"


# ── Gateway calls stay off the event loop ────────────────────

@pytest.mark.asyncio
async def test_checkout_runs_gateway_calls_in_worker_threads(client: AsyncClient, owner):
    loop_thread = threading.get_ident()
    callers = []

    def record_thread(return_value):
        def call(*args, **kwargs):
            callers.append(threading.get_ident())
            return return_value
        return call

    with patch("stripe.Customer.create", side_effect=record_thread(MagicMock(id="cus_thread"))), \
            patch("stripe.checkout.Session.create",
                  side_effect=record_thread(MagicMock(id="cs_t", url="https://checkout.example/cs_t"))):
        resp = await client.post("/api/subscriptions/checkout", json={"plan": "ENTERPRISE"}, headers=get_auth_headers(owner))

    assert resp.status_code == 200
    assert len(callers) == 2
    assert loop_thread not in callers
