from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storyline.db.base import Base


class StorylineModel(Base):
    """One generation attempt; segments live in a single JSON column."""

    __tablename__ = "storylines"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    original_video_url: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default="processing", nullable=False, index=True)  # processing|completed|failed
    generated_image_urls: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    generated_video_urls: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    segments: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    # bumped on every write; updates are conditional on the value read
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
