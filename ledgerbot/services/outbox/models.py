"""Outbox persistence: one row per outbound notification, mutated in place."""

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field
from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbot.common.db import Base, JsonDocument
from ledgerbot.common.state_machine import OUTBOX_PENDING


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OutboundMessage(BaseModel):
    """Serialized payload handed to the send primitive."""

    text: str
    parse_mode: str = "HTML"
    disable_web_page_preview: bool = True
    kind: str = "reply"
    trace_id: str = ""
    created_at: str = Field(default_factory=lambda: utcnow().isoformat())


class OutboxItem(Base):
    """Notification waiting for (or done with) delivery to one chat."""

    __tablename__ = "outbox_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    destination: Mapped[str] = mapped_column(String, index=True)
    payload: Mapped[dict] = mapped_column(JsonDocument)
    status: Mapped[str] = mapped_column(String, default=OUTBOX_PENDING, index=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Python-side timestamps keep sub-second ordering on every backend.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
