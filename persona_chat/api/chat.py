import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.core.config import settings
from persona_chat.db.models import ChatMessage, Influencer, User
from persona_chat.db.session import get_db
from persona_chat.schemas.chat import (
    BackgroundSaveRequest,
    BackgroundSaveResponse,
    ConversationSummary,
    FastSendMessageResponse,
    InitializeConversationRequest,
    InitializeConversationResponse,
    MessageOut,
    MessagePage,
    SendMessageRequest,
    SendMessageResponse,
)
from persona_chat.services import chat_service
from persona_chat.services.inference import InferenceClient, InferenceReply, InferenceRequest, get_inference_client
from persona_chat.services.tokens import debit_tokens, ensure_can_send
from persona_chat.utils.content import AUDIO, MessageContent, TEXT
from persona_chat.utils.deps import get_current_user
from persona_chat.utils.errors import InternalError, UpstreamUnavailable, ValidationFailed
from persona_chat.utils.rate_limiter import rate_limit

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


def _role(sender: str) -> str:
    return "user" if sender == "user" else "assistant"


def _history(messages: list[ChatMessage]) -> list[tuple[str, str]]:
    return [
        (_role(m.sender), MessageContent.decode(m.type, m.content).flatten())
        for m in messages
    ]


def _inference_request(
    user: User,
    influencer: Influencer,
    history: list[tuple[str, str]],
    by_user: int,
    total: int,
    content: MessageContent,
    wants_audio: bool,
) -> InferenceRequest:
    return InferenceRequest(
        user_id=user.id,
        influencer_name=influencer.display_name,
        personality_prompt=influencer.prompt or "",
        chat_history=history,
        msgs_cnt_by_user=by_user,
        msgs_cnt_total=total,
        user_query=content.flatten(),
        input_media_type=content.type,
        should_generate_tts=wants_audio,
    )


def _reply_content(reply: InferenceReply, wants_audio: bool) -> MessageContent:
    if wants_audio and reply.audio:
        return MessageContent(type=AUDIO, text=reply.text, media=reply.audio)
    return MessageContent(type=TEXT, text=reply.text)


async def _generate(client: InferenceClient, request: InferenceRequest, timeout: float) -> InferenceReply:
    try:
        return await client.reply_or_fallback(request, timeout)
    except Exception:
        log.exception("chat.inference.unrecoverable user=%s", request.user_id)
        raise UpstreamUnavailable()


def _content_from(req: SendMessageRequest) -> MessageContent:
    try:
        return MessageContent.build(req.type, req.content, req.media)
    except ValueError as e:
        raise ValidationFailed(str(e))


@router.post("/post-message", response_model=SendMessageResponse)
@rate_limit(
    max_requests=settings.RATE_LIMIT_CHAT_MAX,
    window_seconds=settings.RATE_LIMIT_CHAT_WINDOW,
    key_prefix="ratelimit:chat",
)
async def post_message(
    request: Request,
    req: SendMessageRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    inference: InferenceClient = Depends(get_inference_client),
):
    content = _content_from(req)
    influencer = await chat_service.get_active_influencer(db, req.influencer_id)

    try:
        conversation, created = await chat_service.get_or_create_conversation(db, user.id, influencer.id)
    except SQLAlchemyError:
        log.exception("chat.conversation.failed user=%s", user.id)
        await db.rollback()
        raise InternalError("Failed to load conversation")
    ensure_can_send(conversation)

    # The user's message is durable before any reply is generated.
    try:
        user_message = await chat_service.add_message(db, conversation, sender="user", content=content)
    except SQLAlchemyError:
        log.exception("chat.user_message.failed conv=%s", conversation.id)
        await db.rollback()
        raise InternalError("Failed to save message")

    window = await chat_service.get_history_window(db, conversation.id)
    by_user, total = await chat_service.count_messages(db, conversation.id)
    reply = await _generate(
        inference,
        _inference_request(user, influencer, _history(window), by_user, total, content, req.wants_audio),
        settings.INFERENCE_TIMEOUT_SECONDS,
    )

    try:
        ai_message = await chat_service.add_message(
            db, conversation, sender="influencer", content=_reply_content(reply, req.wants_audio),
        )
    except SQLAlchemyError:
        log.exception("chat.ai_message.failed conv=%s", conversation.id)
        await db.rollback()
        raise InternalError("Failed to save reply")

    await debit_tokens(
        db,
        conversation_id=conversation.id,
        user_id=user.id,
        meta={"message_id": user_message.id, "fallback": reply.is_fallback},
    )

    log.info(
        "chat.sent conv=%s user_msg=%s ai_msg=%s new_conv=%s fallback=%s",
        conversation.id, user_message.id, ai_message.id, created, reply.is_fallback,
    )
    return SendMessageResponse(
        user_message=chat_service.to_message_out(user_message),
        ai_message=chat_service.to_message_out(ai_message),
    )


@router.post("/post-message-fast", response_model=FastSendMessageResponse)
@rate_limit(
    max_requests=settings.RATE_LIMIT_CHAT_MAX,
    window_seconds=settings.RATE_LIMIT_CHAT_WINDOW,
    key_prefix="ratelimit:chat",
)
async def post_message_fast(
    request: Request,
    req: SendMessageRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    inference: InferenceClient = Depends(get_inference_client),
):
    """
    Reply without writing anything. The returned messages are provisional
    (``is_temp``) until the client posts them to ``/save-messages-background``.
    """
    content = _content_from(req)
    influencer = await chat_service.get_active_influencer(db, req.influencer_id)

    conversation = await chat_service.get_conversation(db, user.id, influencer.id)
    history: list[tuple[str, str]] = []
    by_user, total = 0, 0
    if conversation is not None:
        ensure_can_send(conversation)
        history = _history(await chat_service.get_history_window(db, conversation.id))
        by_user, total = await chat_service.count_messages(db, conversation.id)

    # The current message is not persisted yet; account for it here.
    history = (history + [("user", content.flatten())])[-settings.HISTORY_WINDOW:]
    reply = await _generate(
        inference,
        _inference_request(user, influencer, history, by_user + 1, total + 1, content, req.wants_audio),
        settings.INFERENCE_FAST_TIMEOUT_SECONDS,
    )

    now = datetime.now(timezone.utc)
    reply_content = _reply_content(reply, req.wants_audio)
    user_message = MessageOut(
        id=f"temp_user_{uuid.uuid4().hex}",
        conversation_id=conversation.id if conversation else None,
        user_id=user.id,
        influencer_id=influencer.id,
        sender="user",
        type=content.type,
        content=content.encode(),
        created_at=now,
        is_temp=True,
    )
    ai_message = MessageOut(
        id=f"temp_ai_{uuid.uuid4().hex}",
        conversation_id=conversation.id if conversation else None,
        user_id=user.id,
        influencer_id=influencer.id,
        sender="influencer",
        type=reply_content.type,
        content=reply_content.encode(),
        created_at=datetime.now(timezone.utc),
        is_temp=True,
    )
    log.info("chat.fast.sent user=%s influencer=%s fallback=%s", user.id, influencer.id, reply.is_fallback)
    return FastSendMessageResponse(user_message=user_message, ai_message=ai_message)


@router.post("/save-messages-background", response_model=BackgroundSaveResponse, response_model_exclude_none=True)
async def save_messages_background(
    req: BackgroundSaveRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Persist a fast-path turn and debit once. Safe to repeat: messages are
    keyed by their provisional ids, and a repeat returns the stored rows.
    Failures are reported in the body, never as an error status.
    """
    refs = [str(req.user_message.id), str(req.ai_message.id)]
    try:
        influencer = await chat_service.get_active_influencer(db, req.influencer_id)
        conversation, _ = await chat_service.get_or_create_conversation(db, user.id, influencer.id)
        existing = await chat_service.find_by_client_refs(db, conversation.id, refs)

        stored_user = existing.get(refs[0])
        stored_ai = existing.get(refs[1])
        duplicate = stored_user is not None and stored_ai is not None
        if stored_user is None:
            stored_user = await chat_service.add_message(
                db, conversation,
                sender="user",
                content=MessageContent.decode(req.user_message.type, req.user_message.content),
                client_ref=refs[0],
                created_at=req.user_message.created_at,
            )
        if stored_ai is None:
            stored_ai = await chat_service.add_message(
                db, conversation,
                sender="influencer",
                content=MessageContent.decode(req.ai_message.type, req.ai_message.content),
                client_ref=refs[1],
                created_at=max(req.ai_message.created_at, req.user_message.created_at),
            )
    except SQLAlchemyError as e:
        log.exception("chat.background.failed user=%s", user.id)
        await db.rollback()
        return BackgroundSaveResponse(success=False, error=f"Failed to save messages: {type(e).__name__}")
    except HTTPException as e:
        log.warning("chat.background.rejected user=%s status=%s", user.id, e.status_code)
        await db.rollback()
        message = e.detail.get("message") if isinstance(e.detail, dict) else e.detail
        return BackgroundSaveResponse(success=False, error=str(message))

    # One debit per turn across retries.
    await debit_tokens(
        db,
        conversation_id=conversation.id,
        user_id=user.id,
        meta={"message_id": stored_user.id, "fast_path": True},
        reference=f"save:{refs[0]}",
    )
    log.info(
        "chat.background.saved conv=%s user_msg=%s ai_msg=%s duplicate=%s",
        conversation.id, stored_user.id, stored_ai.id, duplicate,
    )
    return BackgroundSaveResponse(
        success=True,
        duplicate=duplicate or None,
        user_message=chat_service.to_message_out(stored_user),
        ai_message=chat_service.to_message_out(stored_ai),
    )


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await chat_service.list_conversations(db, user.id)


@router.get("/conversations/{influencer_id}/messages", response_model=MessagePage)
async def get_messages(
    influencer_id: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """One page of the thread, newest first."""
    rows = await chat_service.list_messages_page(db, user.id, influencer_id, limit=limit + 1, offset=offset)
    return MessagePage(
        messages=[chat_service.to_message_out(m) for m in rows[:limit]],
        limit=limit,
        offset=offset,
        has_more=len(rows) > limit,
    )


@router.post("/conversations/{influencer_id}/mark-read")
async def mark_read(
    influencer_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    marked = await chat_service.mark_read(db, user.id, influencer_id)
    return {"ok": True, "marked": marked}


@router.post("/conversation/initialize", response_model=InitializeConversationResponse)
async def initialize_conversation(
    req: InitializeConversationRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    influencer = await chat_service.get_active_influencer(db, req.influencer_id)
    conversation, created = await chat_service.get_or_create_conversation(db, user.id, influencer.id)
    return InitializeConversationResponse(
        conversation_id=conversation.id,
        tokens=conversation.tokens,
        is_new=created,
    )


@router.delete("/chat/history")
async def delete_history(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    deleted = await chat_service.delete_history(db, user.id)
    return {"ok": True, "deleted": deleted}
