from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import Plan, Subscription
from persona_chat.schemas.billing import PlanOut
from persona_chat.services.chat_service import get_conversation
from persona_chat.services.tokens import tokens_for_plan


async def list_plans(db: AsyncSession, influencer_id: str | None = None) -> list[PlanOut]:
    stmt = select(Plan).where(Plan.is_active.is_(True))
    if influencer_id:
        stmt = stmt.where(Plan.influencer_id == influencer_id)
    plans = (await db.execute(stmt.order_by(Plan.price_cents, Plan.name))).scalars().all()
    return [
        PlanOut.model_validate({
            "id": p.id,
            "influencer_id": p.influencer_id,
            "name": p.name,
            "description": p.description,
            "price_cents": p.price_cents,
            "currency": p.currency,
            "interval": p.interval,
            "features": p.features,
            "access_level": p.access_level,
            "tokens_per_period": tokens_for_plan(p),
            "stripe_price_id": p.stripe_price_id,
        })
        for p in plans
    ]


async def get_balance(db: AsyncSession, user_id: str, influencer_id: str) -> dict:
    conversation = await get_conversation(db, user_id, influencer_id)
    plan_name = None
    if conversation is not None and conversation.plan_id:
        plan = await db.get(Plan, conversation.plan_id)
        plan_name = plan.name if plan else None
    return {
        "influencerId": influencer_id,
        "tokens": conversation.tokens if conversation else 0,
        "planName": plan_name,
        "hasConversation": conversation is not None,
    }


async def list_subscriptions(db: AsyncSession, user_id: str) -> list[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc())
    )
    return list(result.scalars().all())
