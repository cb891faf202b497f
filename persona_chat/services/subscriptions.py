"""
Stripe webhook state machine.

Each handled event type maps to one handler; unknown types are acknowledged
and ignored. Event ids are recorded in ``webhook_events`` so redelivery is a
no-op, and token grants carry a unique ledger reference per billing cycle.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import Conversation, Plan, Subscription, WebhookEvent
from persona_chat.services.tokens import grant_tokens, tokens_for_plan

log = logging.getLogger(__name__)


def _redact(val: Any) -> str:
    """Redact ids in logs; works for int/str/None."""
    if val is None:
        return "-"
    s = str(val)
    if len(s) <= 6:
        return "***"
    return f"{s[:3]}…{s[-2:]}"


def _ts(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period(sub: dict) -> tuple[datetime | None, datetime | None]:
    # Newer API versions moved the period bounds onto the subscription items.
    start, end = sub.get("current_period_start"), sub.get("current_period_end")
    if start is None or end is None:
        items = ((sub.get("items") or {}).get("data")) or []
        if items:
            start = start or items[0].get("current_period_start")
            end = end or items[0].get("current_period_end")
    return _ts(start), _ts(end)


def _meta(obj: dict, camel: str, snake: str) -> str | None:
    meta = obj.get("metadata") or {}
    return meta.get(camel) or meta.get(snake)


def _invoice_subscription_id(invoice: dict) -> str | None:
    sub = invoice.get("subscription")
    if isinstance(sub, dict):
        sub = sub.get("id")
    if sub:
        return sub
    details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
    return details.get("subscription")


async def _get_subscription(db: AsyncSession, stripe_subscription_id: str) -> Subscription | None:
    return await db.scalar(
        select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
    )


async def _conversation_for(db: AsyncSession, user_id: str, influencer_id: str) -> Conversation:
    conversation = await db.scalar(
        select(Conversation).where(
            Conversation.user_id == user_id,
            Conversation.influencer_id == influencer_id,
        )
    )
    if conversation is None:
        # Grants are the only balance source for webhook-created conversations.
        conversation = Conversation(user_id=user_id, influencer_id=influencer_id, tokens=0)
        db.add(conversation)
        await db.flush()
    return conversation


async def _grant_for_plan(
    db: AsyncSession,
    *,
    user_id: str,
    influencer_id: str,
    plan: Plan,
    reference: str,
) -> bool:
    conversation = await _conversation_for(db, user_id, influencer_id)
    conversation.plan_id = plan.id
    return await grant_tokens(
        db,
        conversation=conversation,
        amount=tokens_for_plan(plan),
        reference=reference,
        meta={"plan_id": plan.id, "access_level": plan.access_level},
    )


async def on_checkout_session_completed(db: AsyncSession, session: dict) -> None:
    # The subscription itself arrives as customer.subscription.created.
    log.info("webhook.checkout.completed session=%s", _redact(session.get("id")))


async def on_subscription_created(db: AsyncSession, sub: dict) -> None:
    sub_id = sub.get("id")
    user_id = _meta(sub, "userId", "user_id")
    plan_id = _meta(sub, "planId", "plan_id")
    influencer_id = _meta(sub, "influencerId", "influencer_id")
    if not (sub_id and user_id and plan_id and influencer_id):
        log.warning("webhook.subscription.created.missing_metadata sub=%s", _redact(sub_id))
        return

    plan = await db.get(Plan, plan_id)
    if plan is None:
        log.warning("webhook.subscription.created.unknown_plan sub=%s plan=%s", _redact(sub_id), plan_id)
        return

    start, end = _period(sub)
    row = await _get_subscription(db, sub_id)
    if row is None:
        row = Subscription(
            user_id=user_id,
            influencer_id=influencer_id,
            plan_id=plan.id,
            stripe_subscription_id=sub_id,
        )
        db.add(row)
    customer = sub.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    row.stripe_customer_id = customer or row.stripe_customer_id
    row.status = sub.get("status") or "active"
    row.current_period_start = start
    row.current_period_end = end
    row.cancel_at_period_end = bool(sub.get("cancel_at_period_end"))
    await db.flush()

    granted = await _grant_for_plan(
        db,
        user_id=user_id,
        influencer_id=influencer_id,
        plan=plan,
        reference=f"subscription:{sub_id}",
    )
    log.info(
        "webhook.subscription.created sub=%s user=%s plan=%s granted=%s",
        _redact(sub_id), _redact(user_id), plan.access_level, granted,
    )


async def on_subscription_updated(db: AsyncSession, sub: dict) -> None:
    row = await _get_subscription(db, sub.get("id") or "")
    if row is None:
        log.warning("webhook.subscription.updated.unknown sub=%s", _redact(sub.get("id")))
        return
    start, end = _period(sub)
    if sub.get("status"):
        row.status = sub["status"]
    row.current_period_start = start or row.current_period_start
    row.current_period_end = end or row.current_period_end
    row.cancel_at_period_end = bool(sub.get("cancel_at_period_end"))
    log.info("webhook.subscription.updated sub=%s status=%s", _redact(row.stripe_subscription_id), row.status)


async def on_subscription_deleted(db: AsyncSession, sub: dict) -> None:
    row = await _get_subscription(db, sub.get("id") or "")
    if row is None:
        log.warning("webhook.subscription.deleted.unknown sub=%s", _redact(sub.get("id")))
        return
    row.status = "canceled"
    log.info("webhook.subscription.deleted sub=%s", _redact(row.stripe_subscription_id))


async def on_invoice_payment_succeeded(db: AsyncSession, invoice: dict) -> None:
    invoice_id = invoice.get("id")
    sub_id = _invoice_subscription_id(invoice)

    if not sub_id:
        # One-time purchase carrying its own metadata.
        user_id = _meta(invoice, "userId", "user_id")
        plan_id = _meta(invoice, "planId", "plan_id")
        plan = await db.get(Plan, plan_id) if plan_id else None
        if not (user_id and plan):
            log.info("webhook.invoice.paid.no_target invoice=%s", _redact(invoice_id))
            return
        influencer_id = _meta(invoice, "influencerId", "influencer_id") or plan.influencer_id
        await _grant_for_plan(
            db, user_id=user_id, influencer_id=influencer_id, plan=plan, reference=f"invoice:{invoice_id}",
        )
        return

    row = await _get_subscription(db, sub_id)
    if row is None:
        log.warning("webhook.invoice.paid.unknown_subscription sub=%s", _redact(sub_id))
        return
    row.status = "active"

    if invoice.get("billing_reason") == "subscription_create":
        # First invoice; the grant happened on customer.subscription.created.
        log.info("webhook.invoice.paid.initial sub=%s", _redact(sub_id))
        return

    plan = await db.get(Plan, row.plan_id)
    if plan is None:
        log.warning("webhook.invoice.paid.unknown_plan sub=%s", _redact(sub_id))
        return
    granted = await _grant_for_plan(
        db,
        user_id=row.user_id,
        influencer_id=row.influencer_id,
        plan=plan,
        reference=f"invoice:{invoice_id}",
    )
    log.info("webhook.invoice.paid.renewal sub=%s granted=%s", _redact(sub_id), granted)


async def on_invoice_payment_failed(db: AsyncSession, invoice: dict) -> None:
    sub_id = _invoice_subscription_id(invoice)
    if not sub_id:
        return
    row = await _get_subscription(db, sub_id)
    if row is None:
        log.warning("webhook.invoice.failed.unknown_subscription sub=%s", _redact(sub_id))
        return
    row.status = "past_due"
    log.info("webhook.invoice.failed sub=%s", _redact(sub_id))


HANDLERS: dict[str, Callable[[AsyncSession, dict], Awaitable[None]]] = {
    "checkout.session.completed": on_checkout_session_completed,
    "customer.subscription.created": on_subscription_created,
    "customer.subscription.updated": on_subscription_updated,
    "customer.subscription.deleted": on_subscription_deleted,
    "invoice.payment_succeeded": on_invoice_payment_succeeded,
    "invoice.payment_failed": on_invoice_payment_failed,
}


async def process_event(db: AsyncSession, event: dict) -> dict:
    """
    Apply one verified event. Returns the acknowledgement body.

    Handler errors propagate after rollback so the processor redelivers; the
    event id is recorded in the same transaction as its effects.
    """
    event_id = event.get("id")
    event_type = event.get("type") or ""
    obj = ((event.get("data") or {}).get("object")) or {}

    if event_id and await db.get(WebhookEvent, event_id) is not None:
        log.info("webhook.event.duplicate id=%s type=%s", _redact(event_id), event_type)
        return {"received": True, "duplicate": True}

    handler = HANDLERS.get(event_type)
    try:
        if handler is None:
            log.info("webhook.event.ignored type=%s", event_type)
        else:
            await handler(db, obj)
        if event_id:
            db.add(WebhookEvent(id=event_id, type=event_type))
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent delivery of the same event or grant.
        await db.rollback()
        log.info("webhook.event.concurrent_duplicate id=%s type=%s", _redact(event_id), event_type)
        return {"received": True, "duplicate": True}
    except Exception:
        await db.rollback()
        log.exception("webhook.event.failed id=%s type=%s", _redact(event_id), event_type)
        raise

    return {"received": True}
