"""Ledger models: customers, append-only entries, advisory balance snapshots."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgerbot.common.db import Base


KIND_DEBT = "debt"
KIND_PAYMENT = "payment"
KINDS = (KIND_DEBT, KIND_PAYMENT)

CURRENCY_IQD = "IQD"
CURRENCY_USD = "USD"
CURRENCIES = (CURRENCY_IQD, CURRENCY_USD)

ORIGIN_LEDGER = "ledger"
ORIGIN_STAFF = "staff"
ORIGIN_APPROVAL = "approval"


class Customer(Base):
    """Durable business record keyed by phone, independent of any identity."""

    __tablename__ = "customers"

    phone: Mapped[str] = mapped_column(String, primary_key=True)
    full_name: Mapped[str | None] = mapped_column(String, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str] = mapped_column(String, default=ORIGIN_LEDGER)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class LedgerEntry(Base):
    """Immutable debt or payment event. Sign comes from `kind`, never from `amount`."""

    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        CheckConstraint(f"kind IN {KINDS!r}", name="ck_ledger_entries_kind"),
        CheckConstraint(f"currency IN {CURRENCIES!r}", name="ck_ledger_entries_currency"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone: Mapped[str] = mapped_column(ForeignKey("customers.phone"), index=True)
    kind: Mapped[str] = mapped_column(String)
    amount: Mapped[int] = mapped_column(BigInteger)
    currency: Mapped[str] = mapped_column(String(3))
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    @property
    def signed_amount(self) -> int:
        return self.amount if self.kind == KIND_DEBT else -self.amount


class BalanceSnapshot(Base):
    """Cached balance per (phone, currency).

    Only ever moved by an atomic increment in the same transaction as the entry
    insert; `last_entry_id` and `entry_count` make staleness detectable
    against the log.
    """

    __tablename__ = "balance_snapshots"

    phone: Mapped[str] = mapped_column(ForeignKey("customers.phone"), primary_key=True)
    currency: Mapped[str] = mapped_column(String(3), primary_key=True)
    balance: Mapped[int] = mapped_column(BigInteger, default=0)
    entry_count: Mapped[int] = mapped_column(Integer, default=0)
    last_entry_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
