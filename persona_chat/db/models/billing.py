"""Plans, subscriptions and the token ledger."""

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String, Boolean, Text, ForeignKey, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .influencer import Influencer


class Plan(Base):
    """Subscription plan definition. Created by the seed script."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    influencer_id: Mapped[str] = mapped_column(ForeignKey("influencers.id", ondelete="CASCADE"), index=True)

    name: Mapped[str] = mapped_column(String, nullable=False)  # "Basic", "Premium", "VIP"
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String, nullable=False, default="usd")
    interval: Mapped[str] = mapped_column(String, nullable=False, default="month")  # month / year / week / day
    features: Mapped[list | None] = mapped_column(JSON, nullable=True)
    access_level: Mapped[str] = mapped_column(String, nullable=False, default="free")  # free / basic / premium / vip
    # Overrides the access-level default grant when set.
    tokens_per_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    stripe_price_id: Mapped[str | None] = mapped_column(String, nullable=True)
    stripe_product_id: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    influencer: Mapped["Influencer"] = relationship(back_populates="plans")

    __table_args__ = (
        Index("ix_plans_active", "is_active"),
    )


class Subscription(Base):
    """Local mirror of a Stripe subscription. Written by webhooks; cancellation also sets the period-end flag."""

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    influencer_id: Mapped[str] = mapped_column(ForeignKey("influencers.id", ondelete="CASCADE"), index=True)
    plan_id: Mapped[str] = mapped_column(ForeignKey("plans.id", ondelete="CASCADE"), index=True)

    stripe_subscription_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    # status: active / canceled / past_due / unpaid / incomplete / trialing

    current_period_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class TokenTransaction(Base):
    """Ledger of token debits and grants per conversation."""

    __tablename__ = "token_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    kind: Mapped[str] = mapped_column(String, nullable=False)  # debit / grant
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # negative for debits
    # Unique per billing cycle for grants ("subscription:<id>", "invoice:<id>").
    reference: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class WebhookEvent(Base):
    """Processed payment-processor event ids."""

    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # Stripe event id
    type: Mapped[str] = mapped_column(String, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
