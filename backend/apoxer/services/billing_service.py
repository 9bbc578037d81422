"""
Pro subscriptions through Stripe Checkout.

Stripe is the source of truth. The subscriptions table mirrors what Stripe
reports, and the profile's plan_tier/plan_expires_at follow it:

  active / trialing  -> pro until current_period_end
  anything else      -> free

Founders are never downgraded by billing events.

The stripe SDK is synchronous; calls go through run_in_threadpool so the
event loop is not blocked. StripeGateway keeps every SDK call in one place
and returns plain dicts, which lets tests swap it out.
"""

from datetime import datetime, timezone
from typing import Optional

import stripe
from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.models.billing import Subscription
from apoxer.models.profile import Profile
from apoxer.services.profile_service import get_profile
from apoxer.core.config import get_settings
from apoxer.core.logging import get_logger
from apoxer.core.metrics import record_external_call

logger = get_logger(__name__)
settings = get_settings()

ACTIVE_STATUSES = ("active", "trialing")


def _ts(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class StripeGateway:
    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def _require_key(self) -> None:
        if not self.api_key:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Billing is not configured",
            )

    async def _call(self, fn, **kwargs) -> dict:
        self._require_key()
        try:
            result = await run_in_threadpool(fn, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            record_external_call("stripe", "error")
            logger.error("stripe_call_failed", call=getattr(fn, "__qualname__", str(fn)), error=str(e))
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Payment provider error",
            )
        record_external_call("stripe", "ok")
        return result.to_dict()

    async def create_customer(self, email: str, user_id: int) -> dict:
        return await self._call(stripe.Customer.create, email=email, metadata={"user_id": str(user_id)})

    async def retrieve_customer(self, customer_id: str) -> dict:
        return await self._call(stripe.Customer.retrieve, id=customer_id)

    async def create_checkout_session(self, customer_id: str, user_id: int) -> dict:
        base = settings.APP_BASE_URL.rstrip("/")
        return await self._call(
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": settings.STRIPE_PRO_PRICE_ID, "quantity": 1}],
            metadata={"user_id": str(user_id)},
            subscription_data={"metadata": {"user_id": str(user_id)}},
            success_url=f"{base}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/billing",
        )

    async def retrieve_session(self, session_id: str) -> dict:
        return await self._call(stripe.checkout.Session.retrieve, id=session_id)

    async def retrieve_subscription(self, subscription_id: str) -> dict:
        return await self._call(stripe.Subscription.retrieve, id=subscription_id)

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if not self.webhook_secret:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Billing is not configured",
            )
        try:
            event = stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("stripe_webhook_rejected", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid signature",
            )
        return event.to_dict()


def get_stripe_gateway() -> StripeGateway:
    return StripeGateway()


def period_bounds(subscription: dict) -> tuple[Optional[datetime], Optional[datetime]]:
    """Newer API versions report the billing period on the subscription item."""
    start = subscription.get("current_period_start")
    end = subscription.get("current_period_end")
    if end is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            start = items[0].get("current_period_start")
            end = items[0].get("current_period_end")
    return _ts(start), _ts(end)


def _price_id(subscription: dict) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


async def apply_subscription(db: AsyncSession, user_id: int, subscription: dict) -> Profile:
    """Mirror a Stripe subscription locally and move the profile's plan with it."""
    period_start, period_end = period_bounds(subscription)

    result = await db.execute(
        select(Subscription).where(Subscription.stripe_subscription_id == subscription["id"])
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = Subscription(user_id=user_id, stripe_subscription_id=subscription["id"])
        db.add(record)
    record.user_id = user_id
    record.stripe_price_id = _price_id(subscription)
    record.status = subscription.get("status", "incomplete")
    record.current_period_start = period_start
    record.current_period_end = period_end
    record.cancel_at_period_end = bool(subscription.get("cancel_at_period_end", False))

    profile = await get_profile(db, user_id)
    if profile.plan_tier != "founder":
        if record.status in ACTIVE_STATUSES:
            profile.plan_tier = "pro"
            profile.plan_expires_at = period_end
        else:
            profile.plan_tier = "free"
            profile.plan_expires_at = None
    await db.flush()

    logger.info(
        "subscription_applied",
        user_id=user_id,
        subscription_id=subscription["id"],
        status=record.status,
        plan_tier=profile.plan_tier,
    )
    return profile


async def create_checkout_session(db: AsyncSession, gateway: StripeGateway, user_id: int) -> dict:
    if not settings.STRIPE_PRO_PRICE_ID:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not configured",
        )
    profile = await get_profile(db, user_id)
    if not profile.stripe_customer_id:
        customer = await gateway.create_customer(profile.email, profile.id)
        profile.stripe_customer_id = customer["id"]
        await db.flush()

    session = await gateway.create_checkout_session(profile.stripe_customer_id, profile.id)
    logger.info("checkout_session_created", user_id=user_id, session_id=session["id"])
    return session


async def verify_session(db: AsyncSession, gateway: StripeGateway, user_id: int, session_id: str) -> tuple[Profile, bool]:
    """Returns (profile, updated)."""
    session = await gateway.retrieve_session(session_id)
    owner = (session.get("metadata") or {}).get("user_id")
    if not owner:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Session missing user_id metadata",
        )
    if owner != str(user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Session does not belong to this user",
        )

    subscription_id = session.get("subscription")
    if session.get("payment_status") != "paid" or session.get("mode") != "subscription" or not subscription_id:
        return await get_profile(db, user_id), False

    subscription = await gateway.retrieve_subscription(subscription_id)
    profile = await apply_subscription(db, user_id, subscription)
    return profile, True


async def _user_for_subscription(db: AsyncSession, gateway: StripeGateway, subscription: dict) -> Optional[int]:
    user_id = (subscription.get("metadata") or {}).get("user_id")
    if user_id:
        return int(user_id)

    customer_id = subscription.get("customer")
    if not customer_id:
        return None
    result = await db.execute(select(Profile.id).where(Profile.stripe_customer_id == customer_id))
    found = result.scalar_one_or_none()
    if found is not None:
        return found
    customer = await gateway.retrieve_customer(customer_id)
    user_id = (customer.get("metadata") or {}).get("user_id")
    return int(user_id) if user_id else None


async def handle_webhook(
    db: AsyncSession, gateway: StripeGateway, payload: bytes, signature: Optional[str]
) -> tuple[str, Optional[int]]:
    """Returns (event type, id of the profile whose plan was touched)."""
    event = gateway.construct_event(payload, signature)
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        if obj.get("mode") != "subscription" or not obj.get("subscription"):
            return event_type, None
        subscription = await gateway.retrieve_subscription(obj["subscription"])
        session_user = (obj.get("metadata") or {}).get("user_id")
        user_id = int(session_user) if session_user else await _user_for_subscription(db, gateway, subscription)
    elif event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
        subscription = obj
        if event_type == "customer.subscription.deleted":
            subscription = {**obj, "status": "canceled"}
        user_id = await _user_for_subscription(db, gateway, subscription)
    else:
        logger.info("stripe_webhook_ignored", event_type=event_type)
        return event_type, None

    if user_id is None:
        logger.error("stripe_webhook_unmatched", event_type=event_type, subscription_id=subscription.get("id"))
        return event_type, None

    await apply_subscription(db, user_id, subscription)
    return event_type, user_id
