"""Identity registry model: one row per external actor, never deleted."""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbot.common.db import Base


ROLE_UNAFFILIATED = "unaffiliated"
ROLE_CUSTOMER = "customer"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"
ROLES = (ROLE_UNAFFILIATED, ROLE_CUSTOMER, ROLE_STAFF, ROLE_ADMIN)

STATUS_ACTIVE = "active"
STATUS_LOCKED = "locked"
STATUSES = (STATUS_ACTIVE, STATUS_LOCKED)


class Identity(Base):
    """Role, lifecycle status and phone binding of one chat user."""

    __tablename__ = "identities"
    __table_args__ = (
        CheckConstraint(f"role IN {ROLES!r}", name="ck_identities_role"),
        CheckConstraint(f"status IN {STATUSES!r}", name="ck_identities_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    role: Mapped[str] = mapped_column(String, default=ROLE_UNAFFILIATED)
    status: Mapped[str] = mapped_column(String, default=STATUS_ACTIVE)
    # At most one identity owns a phone; NULLs do not collide.
    phone: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    username: Mapped[str | None] = mapped_column(String, nullable=True)
    chat_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def is_locked(self) -> bool:
        return self.status == STATUS_LOCKED
