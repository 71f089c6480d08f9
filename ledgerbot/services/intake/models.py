"""Inbound dedupe rows: one per transport update id."""

from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbot.common.db import Base


class ProcessedUpdate(Base):
    """An update id that has already been taken for processing."""

    __tablename__ = "processed_updates"

    update_id: Mapped[str] = mapped_column(String, primary_key=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
