"""Ledger read models returned to the dispatcher and scripts."""

from pydantic import BaseModel


class BalanceResult(BaseModel):
    """Balance for one (phone, currency) right after an append."""

    phone: str
    currency: str
    balance: int
    entry_id: int


class CustomerSummary(BaseModel):
    phone: str
    full_name: str | None = None
    balances: dict[str, int]


class SnapshotStatus(BaseModel):
    """Cached snapshot compared with the value derived from the log."""

    phone: str
    currency: str
    snapshot_balance: int | None
    derived_balance: int
    snapshot_entry_count: int | None
    derived_entry_count: int
    snapshot_last_entry_id: int | None
    derived_last_entry_id: int | None

    @property
    def stale(self) -> bool:
        if self.snapshot_entry_count is None and self.derived_entry_count == 0:
            return False
        return (
            self.snapshot_balance != self.derived_balance
            or self.snapshot_entry_count != self.derived_entry_count
            or self.snapshot_last_entry_id != self.derived_last_entry_id
        )
