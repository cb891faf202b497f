import logging
from datetime import datetime, timezone

from sqlalchemy import select, delete, update, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.core.config import settings
from persona_chat.db.models import ChatMessage, Conversation, Influencer
from persona_chat.schemas.chat import MessageOut
from persona_chat.utils.content import MessageContent
from persona_chat.utils.errors import NotFound

log = logging.getLogger(__name__)


async def get_active_influencer(db: AsyncSession, influencer_id: str) -> Influencer:
    influencer = await db.get(Influencer, influencer_id)
    if influencer is None or not influencer.is_active:
        raise NotFound("Influencer not found")
    return influencer


async def get_current_influencer(db: AsyncSession) -> Influencer:
    """The configured persona, else the first active one."""
    if settings.DEFAULT_INFLUENCER_ID:
        influencer = await db.get(Influencer, settings.DEFAULT_INFLUENCER_ID)
        if influencer is not None and influencer.is_active:
            return influencer
        log.warning("influencer.default.missing id=%s", settings.DEFAULT_INFLUENCER_ID)

    influencer = await db.scalar(
        select(Influencer)
        .where(Influencer.is_active.is_(True))
        .order_by(Influencer.created_at, Influencer.id)
        .limit(1)
    )
    if influencer is None:
        raise NotFound("No active influencer configured")
    return influencer


async def get_conversation(db: AsyncSession, user_id: str, influencer_id: str) -> Conversation | None:
    return await db.scalar(
        select(Conversation).where(
            Conversation.user_id == user_id,
            Conversation.influencer_id == influencer_id,
        )
    )


async def get_or_create_conversation(
    db: AsyncSession,
    user_id: str,
    influencer_id: str,
    initial_tokens: int | None = None,
) -> tuple[Conversation, bool]:
    """Returns (conversation, created). Commits when a row is created."""
    existing = await get_conversation(db, user_id, influencer_id)
    if existing is not None:
        return existing, False

    conversation = Conversation(
        user_id=user_id,
        influencer_id=influencer_id,
        tokens=settings.INITIAL_CONVERSATION_TOKENS if initial_tokens is None else initial_tokens,
    )
    db.add(conversation)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent first message for the same (user, influencer).
        await db.rollback()
        existing = await get_conversation(db, user_id, influencer_id)
        if existing is None:
            raise
        return existing, False

    log.info("conversation.created conv=%s user=%s influencer=%s", conversation.id, user_id, influencer_id)
    return conversation, True


async def add_message(
    db: AsyncSession,
    conversation: Conversation,
    *,
    sender: str,
    content: MessageContent,
    client_ref: str | None = None,
    created_at: datetime | None = None,
) -> ChatMessage:
    message = ChatMessage(
        conversation_id=conversation.id,
        user_id=conversation.user_id,
        influencer_id=conversation.influencer_id,
        sender=sender,
        type=content.type,
        content=content.encode(),
        client_ref=client_ref,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(message)
    await db.commit()
    await db.refresh(message)
    return message


async def get_history_window(db: AsyncSession, conversation_id: str, limit: int | None = None) -> list[ChatMessage]:
    """The newest ``limit`` messages, in ascending (created_at, id) order."""
    limit = limit or settings.HISTORY_WINDOW
    newest = (
        select(ChatMessage.id)
        .where(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
        .subquery()
    )
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.id.in_(select(newest.c.id)))
        .order_by(ChatMessage.created_at, ChatMessage.id)
    )
    return list(result.scalars().all())


async def count_messages(db: AsyncSession, conversation_id: str) -> tuple[int, int]:
    """Returns (messages sent by the user, all messages) for a conversation."""
    row = (await db.execute(
        select(
            func.coalesce(func.sum(case((ChatMessage.sender == "user", 1), else_=0)), 0),
            func.count(ChatMessage.id),
        ).where(ChatMessage.conversation_id == conversation_id)
    )).one()
    return int(row[0]), int(row[1])


async def list_messages_page(
    db: AsyncSession,
    user_id: str,
    influencer_id: str,
    limit: int = 20,
    offset: int = 0,
) -> list[ChatMessage]:
    """One page of a thread, newest first."""
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.user_id == user_id, ChatMessage.influencer_id == influencer_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def find_by_client_refs(db: AsyncSession, conversation_id: str, refs: list[str]) -> dict[str, ChatMessage]:
    result = await db.execute(
        select(ChatMessage).where(
            ChatMessage.conversation_id == conversation_id,
            ChatMessage.client_ref.in_(refs),
        )
    )
    return {m.client_ref: m for m in result.scalars().all()}


async def list_conversations(db: AsyncSession, user_id: str) -> list[dict]:
    result = await db.execute(
        select(Conversation, Influencer)
        .join(Influencer, Influencer.id == Conversation.influencer_id)
        .where(Conversation.user_id == user_id)
        .order_by(Conversation.updated_at.desc())
    )
    out = []
    for conversation, influencer in result.all():
        last = await db.scalar(
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation.id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(1)
        )
        unread = await db.scalar(
            select(func.count(ChatMessage.id)).where(
                ChatMessage.conversation_id == conversation.id,
                ChatMessage.sender != "user",
                ChatMessage.read_at.is_(None),
            )
        )
        out.append({
            "conversationId": conversation.id,
            "influencerId": influencer.id,
            "influencerName": influencer.display_name,
            "avatarUrl": influencer.avatar_url,
            "tokens": conversation.tokens,
            "lastMessage": to_message_out(last) if last else None,
            "unreadCount": unread or 0,
        })
    return out


async def mark_read(db: AsyncSession, user_id: str, influencer_id: str) -> int:
    result = await db.execute(
        update(ChatMessage)
        .where(
            ChatMessage.user_id == user_id,
            ChatMessage.influencer_id == influencer_id,
            ChatMessage.sender != "user",
            ChatMessage.read_at.is_(None),
        )
        .values(read_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount or 0


async def delete_history(db: AsyncSession, user_id: str) -> int:
    """
    Delete the user's messages. Conversations, balances and the token ledger
    stay, so a cleared thread never comes back with a fresh starting grant.
    """
    result = await db.execute(
        delete(ChatMessage)
        .where(ChatMessage.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    deleted = result.rowcount or 0
    await db.commit()
    log.info("chat.history.deleted user=%s messages=%d", user_id, deleted)
    return deleted


def to_message_out(message: ChatMessage) -> MessageOut:
    return MessageOut.model_validate(message)
