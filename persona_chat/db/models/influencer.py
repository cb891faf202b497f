"""Influencer (persona) model."""

import uuid
from datetime import datetime, timezone
from typing import List, TYPE_CHECKING

from sqlalchemy import String, Text, DateTime, JSON, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .billing import Plan


class Influencer(Base):
    """The AI persona a deployment chats as. Read-only at runtime."""

    __tablename__ = "influencers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    handle: Mapped[str] = mapped_column(String, nullable=False)
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)  # system prompt
    avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
    model_preset: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # Example: {"temperature": 0.8, "max_tokens": 300}
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Relationships
    plans: Mapped[List["Plan"]] = relationship(back_populates="influencer")

    __table_args__ = (
        Index("ix_influencers_active", "is_active"),
    )
