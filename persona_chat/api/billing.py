from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import User
from persona_chat.db.session import get_db
from persona_chat.schemas.billing import (
    CancelSubscriptionRequest,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PlanOut,
    PortalSessionResponse,
    SubscriptionOut,
    TokenBalance,
)
from persona_chat.services import billing, stripe_checkout
from persona_chat.utils.deps import get_current_user

router = APIRouter(prefix="/api", tags=["billing"])


@router.get("/plans", response_model=list[PlanOut])
async def list_plans(
    influencer_id: str | None = Query(None, alias="influencerId"),
    db: AsyncSession = Depends(get_db),
):
    return await billing.list_plans(db, influencer_id)


@router.get("/tokens/balance", response_model=TokenBalance)
async def token_balance(
    influencer_id: str = Query(..., alias="influencerId"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing.get_balance(db, user.id, influencer_id)


@router.get("/subscriptions", response_model=list[SubscriptionOut])
async def list_subscriptions(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing.list_subscriptions(db, user.id)


@router.post("/subscriptions/cancel", response_model=list[SubscriptionOut])
async def cancel_subscription(
    data: CancelSubscriptionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    subscription_id = data.subscription_id if data else None
    return await stripe_checkout.cancel_subscriptions(db, user, subscription_id)


@router.post("/stripe/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    data: CheckoutSessionRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await stripe_checkout.create_checkout_session(db, user, data.plan_id, data.influencer_id)


@router.post("/stripe/create-portal-session", response_model=PortalSessionResponse)
async def create_portal_session(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await stripe_checkout.create_portal_session(db, user)
