from datetime import datetime
from typing import Optional
from sqlalchemy import String, DateTime, JSON, Integer, UniqueConstraint, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

class Base(DeclarativeBase):
    pass

class MessageTracker(Base):
    """Tracker state attached to one chat message."""
    __tablename__ = "message_trackers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    chat_id: Mapped[str] = mapped_column(String, index=True)
    message_index: Mapped[int] = mapped_column(Integer)

    # Canonical tracker, including the _extraFields side channel when present
    tracker: Mapped[dict] = mapped_column(JSON, default=dict)
    # Internal-only payload (TimeAnchor, TimeAnalysis, ...); NULL when there is none
    tracker_internal: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("chat_id", "message_index", name="uq_message_tracker_chat_message"),
        Index("ix_message_trackers_chat_message", "chat_id", "message_index"),
    )
