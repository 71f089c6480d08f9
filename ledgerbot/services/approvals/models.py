"""Approval requests binding an identity to a phone."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbot.common.db import Base
from ledgerbot.common.state_machine import APPROVAL_PENDING


def pending_key(requester_external_id: str, phone: str) -> str:
    return f"{requester_external_id}:{phone}"


class ApprovalRequest(Base):
    """One link attempt; immutable once APPROVED or REJECTED.

    `pending_key` is set only while PENDING and is unique, so the store itself
    refuses a second open request for the same (requester, phone).
    """

    __tablename__ = "approval_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    requester_id: Mapped[str] = mapped_column(String, index=True)
    phone: Mapped[str] = mapped_column(String, index=True)
    display_name: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default=APPROVAL_PENDING, index=True)
    pending_key: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
