import logging

from jose import JWTError, jwt
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.core.config import settings
from persona_chat.db.models import User
from persona_chat.db.session import get_db
from persona_chat.utils.errors import Unauthenticated

log = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/signin", auto_error=False)


def decode_access_token(token: str) -> dict:
    """Verify an access token issued by the auth provider. Raises JWTError."""
    return jwt.decode(
        token,
        settings.SUPABASE_JWT_SECRET,
        algorithms=[settings.ALGORITHM],
        audience=settings.JWT_AUDIENCE,
    )


async def get_current_user(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise Unauthenticated("Authorization header required")

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise Unauthenticated("Invalid authentication")

    user_id: str | None = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid authentication")

    user = await db.get(User, user_id)
    if user is None:
        # Provider account without a profile row yet (e.g. signup profile write lost).
        meta = payload.get("user_metadata") or {}
        user = User(
            id=user_id,
            email=payload.get("email") or "",
            display_name=meta.get("display_name"),
        )
        db.add(user)
        try:
            await db.commit()
            log.info("auth.profile.created user=%s", user_id)
        except IntegrityError:
            await db.rollback()
            user = await db.get(User, user_id)
            if user is None:
                raise Unauthenticated("Invalid authentication")

    request.state.user = user
    return user
