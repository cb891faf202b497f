import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import User
from persona_chat.db.session import get_db
from persona_chat.schemas.auth import Session, SignInRequest, SignUpRequest
from persona_chat.services.auth_provider import AuthProvider, AuthProviderError, get_auth_provider
from persona_chat.utils.deps import get_current_user, oauth2_scheme
from persona_chat.utils.errors import InternalError, Unauthenticated, ValidationFailed

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/signup")
async def signup(
    data: SignUpRequest,
    db: AsyncSession = Depends(get_db),
    provider: AuthProvider = Depends(get_auth_provider),
):
    """Create the provider account, then the profile row. Undo the account if the profile write fails."""
    metadata = {"username": data.username, "display_name": data.display_name}
    try:
        result = await provider.sign_up(data.email, data.password, metadata)
    except AuthProviderError as e:
        raise ValidationFailed(e.message)

    account = result.get("user") or result
    user_id = account.get("id")
    if not user_id:
        log.error("auth.signup.no_user_id email=%s", data.email)
        raise InternalError("Signup did not return a user")

    try:
        user = await db.get(User, user_id)
        if user is None:
            user = User(id=user_id, email=data.email)
            db.add(user)
        user.username = data.username or user.username
        user.display_name = data.display_name or user.display_name
        await db.commit()
    except SQLAlchemyError:
        log.exception("auth.signup.profile_failed user=%s", user_id)
        await db.rollback()
        try:
            await provider.delete_user(user_id)
        except AuthProviderError:
            log.exception("auth.signup.cleanup_failed user=%s", user_id)
        raise InternalError("Failed to create user profile")

    log.info("auth.signup.ok user=%s", user_id)
    return {
        "ok": True,
        "user_id": user_id,
        "email": data.email,
        "access_token": result.get("access_token"),
    }


@router.post("/signin", response_model=Session)
async def signin(data: SignInRequest, provider: AuthProvider = Depends(get_auth_provider)):
    try:
        session = await provider.sign_in_with_password(data.email, data.password)
    except AuthProviderError as e:
        raise ValidationFailed(e.message)
    return Session.model_validate(session)


@router.post("/signout")
async def signout(
    token: str | None = Depends(oauth2_scheme),
    user: User = Depends(get_current_user),
    provider: AuthProvider = Depends(get_auth_provider),
):
    try:
        await provider.sign_out(token)
    except AuthProviderError as e:
        if e.status_code == 401:
            raise Unauthenticated(e.message)
        log.warning("auth.signout.failed user=%s status=%s", user.id, e.status_code)
        raise HTTPException(502, {"error": "AUTH_PROVIDER_ERROR", "message": e.message})
    return {"ok": True}
