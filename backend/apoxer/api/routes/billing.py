"""
Billing endpoints: Stripe Checkout for Pro and the Stripe webhook.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from apoxer.db.session import get_db
from apoxer.schemas.misc import CheckoutSessionResponse, VerifySessionResponse
from apoxer.services import billing_service
from apoxer.services.billing_service import StripeGateway, get_stripe_gateway
from apoxer.services.cache_service import EntityCache, get_profile_cache
from apoxer.core.security import get_current_user_id

router = APIRouter(prefix="/billing", tags=["Billing"])
webhook_router = APIRouter(prefix="/stripe", tags=["Billing"])


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session_endpoint(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    session = await billing_service.create_checkout_session(db, gateway, user_id)
    return CheckoutSessionResponse(session_id=session["id"], url=session.get("url"))


@router.get("/verify-session", response_model=VerifySessionResponse)
async def verify_session_endpoint(
    session_id: str = Query(..., min_length=1),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    cache: EntityCache = Depends(get_profile_cache),
):
    profile, updated = await billing_service.verify_session(db, gateway, user_id, session_id)
    if updated:
        await cache.invalidate(user_id)
    return VerifySessionResponse(
        plan_tier=profile.plan_tier,
        plan_expires_at=profile.plan_expires_at.isoformat() if profile.plan_expires_at else None,
        updated=updated,
    )


@webhook_router.post("/webhook")
async def stripe_webhook_endpoint(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    cache: EntityCache = Depends(get_profile_cache),
):
    payload = await request.body()
    event_type, user_id = await billing_service.handle_webhook(db, gateway, payload, stripe_signature)
    if user_id is not None:
        await cache.invalidate(user_id)
    return {"received": True, "type": event_type}
