"""
Token accounting.

Balances live on ``Conversation.tokens``; every change is mirrored in the
``token_transactions`` ledger. Debits are a single conditional UPDATE so two
concurrent sends can never take the balance below zero.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.core.config import settings
from persona_chat.db.models import Conversation, Plan, TokenTransaction
from persona_chat.utils.errors import PaymentRequired

log = logging.getLogger(__name__)

# Per-period grant by plan access level.
TOKENS_BY_ACCESS_LEVEL = {
    "basic": 150,     # 5 messages/day * 30
    "premium": 900,   # 30 messages/day * 30
    "vip": 3000,      # 100 messages/day * 30
}
DEFAULT_PERIOD_TOKENS = 90


def tokens_for_plan(plan: Plan) -> int:
    if plan.tokens_per_period is not None:
        return plan.tokens_per_period
    return TOKENS_BY_ACCESS_LEVEL.get((plan.access_level or "").lower(), DEFAULT_PERIOD_TOKENS)


def ensure_can_send(conversation: Conversation, cost: int | None = None) -> None:
    cost = settings.TOKENS_PER_MESSAGE if cost is None else cost
    if (conversation.tokens or 0) < cost:
        raise PaymentRequired()


async def debit_tokens(
    db: AsyncSession,
    *,
    conversation_id: str,
    user_id: str,
    cost: int | None = None,
    meta: dict | None = None,
    reference: str | None = None,
) -> bool:
    """
    Best-effort debit after a reply was delivered. Never raises: failures and
    insufficient balance are logged and reported as False.

    With a ``reference`` the debit happens at most once per reference; a
    repeated call is a no-op that returns False.
    """
    cost = settings.TOKENS_PER_MESSAGE if cost is None else cost
    try:
        if reference is not None:
            already = await db.scalar(
                select(TokenTransaction.id).where(TokenTransaction.reference == reference)
            )
            if already is not None:
                log.info("tokens.debit.duplicate conv=%s ref=%s", conversation_id, reference)
                return False

        result = await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id, Conversation.tokens >= cost)
            .values(tokens=Conversation.tokens - cost)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.rollback()
            log.warning("tokens.debit.skipped conv=%s cost=%s reason=insufficient", conversation_id, cost)
            return False

        db.add(TokenTransaction(
            conversation_id=conversation_id,
            user_id=user_id,
            kind="debit",
            amount=-cost,
            reference=reference,
            meta=meta,
        ))
        await db.commit()
        log.info("tokens.debit.ok conv=%s cost=%s", conversation_id, cost)
        return True
    except SQLAlchemyError:
        log.exception("tokens.debit.failed conv=%s cost=%s", conversation_id, cost)
        await db.rollback()
        return False


async def grant_tokens(
    db: AsyncSession,
    *,
    conversation: Conversation,
    amount: int,
    reference: str,
    meta: dict | None = None,
) -> bool:
    """
    Add ``amount`` to the conversation balance once per ``reference``.

    Flushes but does not commit; the caller owns the transaction. Returns
    False when the reference was already granted.
    """
    already = await db.scalar(
        select(TokenTransaction.id).where(TokenTransaction.reference == reference)
    )
    if already is not None:
        log.info("tokens.grant.duplicate conv=%s ref=%s", conversation.id, reference)
        return False

    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation.id)
        .values(tokens=Conversation.tokens + amount)
        .execution_options(synchronize_session=False)
    )
    db.add(TokenTransaction(
        conversation_id=conversation.id,
        user_id=conversation.user_id,
        kind="grant",
        amount=amount,
        reference=reference,
        meta=meta,
    ))
    await db.flush()
    log.info("tokens.grant.ok conv=%s amount=%s ref=%s", conversation.id, amount, reference)
    return True
