"""
Outbound Stripe calls: checkout, billing portal and cancellation.

Nothing here grants tokens. Checkout sessions carry the user, plan and
persona ids as subscription metadata; the webhook applies the resulting
subscription state.
"""

import asyncio
import logging
from typing import Any, Callable

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.core.config import settings
from persona_chat.db.models import Plan, Subscription, User
from persona_chat.services.chat_service import get_active_influencer
from persona_chat.utils.errors import InternalError, NotFound, PaymentProviderError, ValidationFailed

log = logging.getLogger(__name__)

CANCELLABLE_STATUSES = ("active", "trialing", "past_due")


def _api_key() -> str:
    if not settings.STRIPE_SECRET_KEY:
        log.error("stripe.missing_secret_key")
        raise InternalError("Payments are not configured")
    return settings.STRIPE_SECRET_KEY


async def _call(fn: Callable[..., Any], *args, **params) -> Any:
    # The stripe client is blocking.
    api_key = _api_key()
    try:
        return await asyncio.to_thread(fn, *args, api_key=api_key, **params)
    except stripe.StripeError as e:
        log.warning("stripe.call.failed fn=%s err=%s", getattr(fn, "__qualname__", fn), e)
        raise PaymentProviderError(getattr(e, "user_message", None) or "Payment provider request failed")


async def ensure_customer(db: AsyncSession, user: User) -> str:
    if user.stripe_customer_id:
        return user.stripe_customer_id
    customer = await _call(
        stripe.Customer.create,
        email=user.email,
        name=user.display_name or user.username or user.email,
        metadata={"userId": user.id},
    )
    user.stripe_customer_id = customer["id"]
    await db.commit()
    log.info("stripe.customer.created user=%s", user.id)
    return user.stripe_customer_id


async def create_checkout_session(db: AsyncSession, user: User, plan_id: str, influencer_id: str) -> dict:
    influencer = await get_active_influencer(db, influencer_id)
    plan = await db.get(Plan, plan_id)
    if plan is None or not plan.is_active or plan.influencer_id != influencer.id:
        raise NotFound("Plan not found")
    if not plan.stripe_price_id:
        raise ValidationFailed("Plan is not available for purchase")

    customer_id = await ensure_customer(db, user)
    metadata = {"userId": user.id, "planId": plan.id, "influencerId": influencer.id}
    session = await _call(
        stripe.checkout.Session.create,
        customer=customer_id,
        mode="subscription",
        line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
        success_url=f"{settings.STRIPE_SUCCESS_URL}?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.STRIPE_CANCEL_URL}?plan_id={plan.id}",
        client_reference_id=user.id,
        metadata=metadata,
        subscription_data={"metadata": metadata},
    )
    log.info("stripe.checkout.created user=%s plan=%s", user.id, plan.id)
    return {"url": session["url"], "sessionId": session["id"]}


async def create_portal_session(db: AsyncSession, user: User) -> dict:
    customer_id = await ensure_customer(db, user)
    session = await _call(
        stripe.billing_portal.Session.create,
        customer=customer_id,
        return_url=settings.STRIPE_PORTAL_RETURN_URL,
    )
    return {"url": session["url"]}


async def cancel_subscriptions(db: AsyncSession, user: User, subscription_id: str | None = None) -> list[Subscription]:
    """
    Cancel at period end: the subscriber keeps access and tokens until the
    period closes, then ``customer.subscription.deleted`` arrives.
    """
    stmt = select(Subscription).where(
        Subscription.user_id == user.id,
        Subscription.status.in_(CANCELLABLE_STATUSES),
    )
    if subscription_id:
        stmt = stmt.where(Subscription.stripe_subscription_id == subscription_id)
    rows = list((await db.execute(stmt)).scalars().all())
    if not rows:
        raise NotFound("No active subscription")

    for row in rows:
        if row.cancel_at_period_end:
            continue
        await _call(stripe.Subscription.modify, row.stripe_subscription_id, cancel_at_period_end=True)
        row.cancel_at_period_end = True
        await db.commit()
        log.info("stripe.subscription.cancel_requested user=%s sub=%s", user.id, row.stripe_subscription_id)
    return rows
