"""
Tests for Pro billing: checkout, session verification and Stripe webhooks.

Stripe itself is replaced by FakeGateway, which serves canned objects the
same shape StripeGateway returns.
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timezone, timedelta

import pytest
from fastapi import HTTPException
from httpx import AsyncClient
from sqlalchemy import select

from apoxer.main import app
from apoxer.models.billing import Subscription
from apoxer.models.profile import Profile
from apoxer.services import billing_service
from apoxer.services.billing_service import StripeGateway, get_stripe_gateway, period_bounds
from conftest import make_profile, headers_for

PERIOD_END = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=30)


def subscription(sub_id="sub_1", status="active", user_id=None, customer="cus_1", nested_period=False):
    data = {
        "id": sub_id,
        "status": status,
        "customer": customer,
        "metadata": {"user_id": str(user_id)} if user_id else {},
        "cancel_at_period_end": False,
        "items": {"data": [{"price": {"id": "price_pro"}}]},
    }
    period = {
        "current_period_start": int(time.time()),
        "current_period_end": int(PERIOD_END.timestamp()),
    }
    if nested_period:
        data["items"]["data"][0].update(period)
    else:
        data.update(period)
    return data


class FakeGateway:
    def __init__(self):
        self.sessions = {}
        self.subscriptions = {}
        self.customers = {}
        self.created_customers = []

    async def create_customer(self, email, user_id):
        self.created_customers.append(email)
        return {"id": f"cus_{user_id}"}

    async def retrieve_customer(self, customer_id):
        return self.customers[customer_id]

    async def create_checkout_session(self, customer_id, user_id):
        return {"id": f"cs_{user_id}", "url": f"https://checkout.test/{customer_id}"}

    async def retrieve_session(self, session_id):
        return self.sessions[session_id]

    async def retrieve_subscription(self, subscription_id):
        return self.subscriptions[subscription_id]

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise HTTPException(status_code=400, detail="Invalid signature")
        return json.loads(payload)


@pytest.fixture
def gateway(monkeypatch):
    fake = FakeGateway()
    monkeypatch.setattr(billing_service.settings, "STRIPE_PRO_PRICE_ID", "price_pro")
    app.dependency_overrides[get_stripe_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_stripe_gateway, None)


async def post_event(client: AsyncClient, event_type: str, obj: dict, signature="valid"):
    body = json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}})
    return await client.post(
        "/api/stripe/webhook",
        content=body,
        headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
    )


async def reload(db_session, profile_id: int) -> Profile:
    db_session.expire_all()
    return (await db_session.execute(select(Profile).where(Profile.id == profile_id))).scalar_one()


def test_period_bounds_reads_subscription_items():
    """Newer API versions report the period on the first item."""
    start, end = period_bounds(subscription(nested_period=True))
    assert end == PERIOD_END
    assert start is not None
    assert period_bounds({"id": "sub_x"}) == (None, None)


@pytest.mark.asyncio
async def test_create_checkout_session(client: AsyncClient, db_session, gateway, auth_headers, test_user):
    """First checkout creates the Stripe customer and remembers it."""
    response = await client.post("/api/billing/create-checkout-session", headers=auth_headers)
    assert response.status_code == 200
    assert response.json() == {
        "session_id": f"cs_{test_user.id}",
        "url": f"https://checkout.test/cus_{test_user.id}",
    }

    await client.post("/api/billing/create-checkout-session", headers=auth_headers)
    assert gateway.created_customers == [test_user.email]
    assert (await reload(db_session, test_user.id)).stripe_customer_id == f"cus_{test_user.id}"


@pytest.mark.asyncio
async def test_checkout_without_price(client: AsyncClient, gateway, auth_headers, monkeypatch):
    monkeypatch.setattr(billing_service.settings, "STRIPE_PRO_PRICE_ID", "")
    response = await client.post("/api/billing/create-checkout-session", headers=auth_headers)
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_checkout_unauthenticated(client: AsyncClient, gateway):
    assert (await client.post("/api/billing/create-checkout-session")).status_code == 401


@pytest.mark.asyncio
async def test_verify_paid_session(client: AsyncClient, db_session, gateway, auth_headers, test_user):
    gateway.sessions["cs_1"] = {
        "id": "cs_1",
        "mode": "subscription",
        "payment_status": "paid",
        "subscription": "sub_1",
        "metadata": {"user_id": str(test_user.id)},
    }
    gateway.subscriptions["sub_1"] = subscription(user_id=test_user.id)

    response = await client.get("/api/billing/verify-session", params={"session_id": "cs_1"}, headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["updated"] is True
    assert data["plan_tier"] == "pro"
    assert datetime.fromisoformat(data["plan_expires_at"]) == PERIOD_END

    me = await client.get("/api/auth/me", headers=auth_headers)
    assert me.json()["is_pro"] is True

    record = (await db_session.execute(select(Subscription))).scalar_one()
    assert (record.user_id, record.status, record.stripe_price_id) == (test_user.id, "active", "price_pro")


@pytest.mark.asyncio
async def test_verify_unpaid_session(client: AsyncClient, gateway, auth_headers, test_user):
    gateway.sessions["cs_2"] = {
        "id": "cs_2",
        "mode": "subscription",
        "payment_status": "unpaid",
        "subscription": None,
        "metadata": {"user_id": str(test_user.id)},
    }
    response = await client.get("/api/billing/verify-session", params={"session_id": "cs_2"}, headers=auth_headers)
    assert response.json() == {"plan_tier": "free", "plan_expires_at": None, "updated": False}


@pytest.mark.asyncio
async def test_verify_someone_elses_session(client: AsyncClient, db_session, gateway, auth_headers):
    other = await make_profile(db_session, "other")
    gateway.sessions["cs_3"] = {"id": "cs_3", "metadata": {"user_id": str(other.id)}}
    response = await client.get("/api/billing/verify-session", params={"session_id": "cs_3"}, headers=auth_headers)
    assert response.status_code == 403

    gateway.sessions["cs_4"] = {"id": "cs_4", "metadata": {}}
    response = await client.get("/api/billing/verify-session", params={"session_id": "cs_4"}, headers=auth_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client: AsyncClient, gateway):
    response = await post_event(client, "customer.subscription.updated", subscription(), signature="forged")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_checkout_completed(client: AsyncClient, db_session, gateway, test_user):
    gateway.subscriptions["sub_1"] = subscription()
    session = {
        "id": "cs_1",
        "mode": "subscription",
        "subscription": "sub_1",
        "metadata": {"user_id": str(test_user.id)},
    }
    response = await post_event(client, "checkout.session.completed", session)
    assert response.json() == {"received": True, "type": "checkout.session.completed"}

    profile = await reload(db_session, test_user.id)
    assert profile.plan_tier == "pro"
    assert profile.plan_expires_at == PERIOD_END


@pytest.mark.asyncio
async def test_webhook_subscription_lifecycle(client: AsyncClient, db_session, gateway):
    """Customer lookup finds the profile; deletion drops it back to free."""
    user = await make_profile(db_session, "subscriber", stripe_customer_id="cus_77")
    sub = subscription(sub_id="sub_77", customer="cus_77")

    await post_event(client, "customer.subscription.updated", sub)
    assert (await reload(db_session, user.id)).plan_tier == "pro"

    await post_event(client, "customer.subscription.deleted", sub)
    profile = await reload(db_session, user.id)
    assert profile.plan_tier == "free"
    assert profile.plan_expires_at is None

    records = (await db_session.execute(select(Subscription))).scalars().all()
    assert [(r.stripe_subscription_id, r.status) for r in records] == [("sub_77", "canceled")]


@pytest.mark.asyncio
async def test_webhook_customer_metadata_fallback(client: AsyncClient, db_session, gateway, test_user):
    gateway.customers["cus_new"] = {"id": "cus_new", "metadata": {"user_id": str(test_user.id)}}
    await post_event(client, "customer.subscription.updated", subscription(customer="cus_new", status="trialing"))
    assert (await reload(db_session, test_user.id)).plan_tier == "pro"


@pytest.mark.asyncio
async def test_webhook_never_downgrades_founder(client: AsyncClient, db_session, gateway, founder):
    await post_event(client, "customer.subscription.deleted", subscription(user_id=founder.id))
    profile = await reload(db_session, founder.id)
    assert profile.plan_tier == "founder"


@pytest.mark.asyncio
async def test_webhook_past_due_is_free(client: AsyncClient, db_session, gateway, pro_user):
    await post_event(client, "customer.subscription.updated", subscription(user_id=pro_user.id, status="past_due"))
    assert (await reload(db_session, pro_user.id)).plan_tier == "free"


@pytest.mark.asyncio
async def test_webhook_ignored_and_unmatched_events(client: AsyncClient, db_session, gateway):
    ignored = await post_event(client, "invoice.paid", {"id": "in_1"})
    assert ignored.json()["type"] == "invoice.paid"

    gateway.customers["cus_ghost"] = {"id": "cus_ghost", "metadata": {}}
    unmatched = await post_event(client, "customer.subscription.updated", subscription(customer="cus_ghost"))
    assert unmatched.status_code == 200
    assert (await db_session.execute(select(Subscription))).scalars().all() == []


def test_gateway_verifies_signatures():
    """The real gateway checks Stripe's HMAC signature header."""
    gateway = StripeGateway(api_key="sk_test", webhook_secret="whsec_test")
    payload = json.dumps({"id": "evt_9", "object": "event", "type": "invoice.paid", "data": {"object": {}}})
    timestamp = int(time.time())
    digest = hmac.new(b"whsec_test", f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()

    event = gateway.construct_event(payload.encode(), f"t={timestamp},v1={digest}")
    assert event["type"] == "invoice.paid"

    with pytest.raises(HTTPException) as exc:
        gateway.construct_event(payload.encode(), f"t={timestamp},v1={'0' * 64}")
    assert exc.value.status_code == 400


def test_gateway_without_webhook_secret(monkeypatch):
    monkeypatch.setattr(billing_service.settings, "STRIPE_WEBHOOK_SECRET", "")
    with pytest.raises(HTTPException) as exc:
        StripeGateway(api_key="sk_test", webhook_secret="").construct_event(b"{}", "t=1,v1=abc")
    assert exc.value.status_code == 503
