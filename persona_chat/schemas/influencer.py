from typing import Optional

from pydantic import BaseModel, ConfigDict


class InfluencerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    handle: str
    display_name: str
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    is_active: bool
