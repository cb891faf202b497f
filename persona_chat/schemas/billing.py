from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    influencer_id: str
    name: str
    description: Optional[str] = None
    price_cents: int
    currency: str
    interval: str
    features: Optional[List[str]] = None
    access_level: str
    tokens_per_period: int
    stripe_price_id: Optional[str] = None


class TokenBalance(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    influencer_id: str = Field(alias="influencerId")
    tokens: int
    plan_name: Optional[str] = Field(default=None, alias="planName")
    has_conversation: bool = Field(alias="hasConversation")


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    influencer_id: str
    plan_id: str
    stripe_subscription_id: str
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool


class CheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(alias="planId", min_length=1)
    influencer_id: str = Field(alias="influencerId", min_length=1)


class CheckoutSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    session_id: str = Field(alias="sessionId")


class PortalSessionResponse(BaseModel):
    url: str


class CancelSubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
