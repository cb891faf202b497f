from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import User
from persona_chat.db.session import get_db
from persona_chat.schemas.user import UserOut, UserUpdate
from persona_chat.utils.deps import get_current_user
from persona_chat.utils.errors import ValidationFailed

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=UserOut)
async def get_me(user: User = Depends(get_current_user)):
    return user


@router.patch("/me", response_model=UserOut)
async def update_me(
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    changes = data.model_dump(exclude_unset=True)
    if "username" in changes and changes["username"] != user.username:
        taken = await db.scalar(select(User.id).where(User.username == changes["username"], User.id != user.id))
        if taken:
            raise ValidationFailed("Username already taken")
    for field, value in changes.items():
        setattr(user, field, value)
    await db.commit()
    await db.refresh(user)
    return user
