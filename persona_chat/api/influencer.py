from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import Influencer
from persona_chat.db.session import get_db
from persona_chat.schemas.influencer import InfluencerOut
from persona_chat.services.chat_service import get_current_influencer

router = APIRouter(prefix="/api", tags=["influencer"])


@router.get("/influencer/current", response_model=InfluencerOut)
async def current_influencer(db: AsyncSession = Depends(get_db)):
    return await get_current_influencer(db)


@router.get("/influencers", response_model=list[InfluencerOut])
async def list_influencers(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Influencer).where(Influencer.is_active.is_(True)).order_by(Influencer.display_name)
    )
    return result.scalars().all()
