"""Ledger posting and balance resolution.

Entries are insert-only and balances are always re-summed from the log. The
per-(phone, currency) snapshot is advisory: it only moves by an atomic
increment inside the entry's own transaction and can be rebuilt at any time.
"""

from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from ledgerbot.common import notices
from ledgerbot.common.errors import AuthorizationError, NotFound, ValidationError
from ledgerbot.common.logging import logger
from ledgerbot.common.metrics import ledger_entries_total
from ledgerbot.common.phone import require_phone
from ledgerbot.services.audit.service import AuditAction, AuditService
from ledgerbot.services.identity.capabilities import (
    DELETE_CUSTOMERS,
    READ_ANY,
    READ_OWN,
    WRITE_LEDGER,
    authorize,
    require,
)
from ledgerbot.services.identity.models import ROLE_CUSTOMER, ROLE_UNAFFILIATED, Identity
from ledgerbot.services.identity.service import IdentityService
from ledgerbot.services.ledger.models import (
    CURRENCIES,
    KIND_DEBT,
    KIND_PAYMENT,
    KINDS,
    ORIGIN_LEDGER,
    ORIGIN_STAFF,
    BalanceSnapshot,
    Customer,
    LedgerEntry,
)
from ledgerbot.services.ledger.schemas import BalanceResult, CustomerSummary, SnapshotStatus
from ledgerbot.services.outbox.models import OutboundMessage


def validate_kind(kind: str) -> str:
    kind = str(kind or "").strip().lower()
    if kind not in KINDS:
        raise ValidationError(f"invalid kind: {kind!r}")
    return kind


def validate_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"amount must be a positive integer, got {amount!r}")
    return amount


def validate_currency(currency: str) -> str:
    currency = str(currency or "").strip().upper()
    if currency not in CURRENCIES:
        raise ValidationError(f"currency must be one of {', '.join(CURRENCIES)}, got {currency!r}")
    return currency


def upsert_customer(
    db,
    phone: str,
    full_name: str | None = None,
    note: str | None = None,
    origin: str = ORIGIN_LEDGER,
    created_by: str | None = None,
) -> tuple[Customer, bool]:
    """Insert-if-absent, else update with an explicit merge policy.

    full_name, note: coalesce (a new non-empty value wins).
    origin, created_by: written on insert only.
    """

    full_name = (full_name or "").strip() or None
    note = (note or "").strip() or None
    customer = db.get(Customer, phone)
    if customer is None:
        customer = Customer(phone=phone, full_name=full_name, note=note, origin=origin, created_by=created_by)
        db.add(customer)
        db.flush()
        return customer, True
    if full_name:
        customer.full_name = full_name
    if note:
        customer.note = note
    return customer, False


def derive_balance(db, phone: str, currency: str) -> tuple[int, int, int | None]:
    """(balance, entry_count, last_entry_id) folded from the log."""

    row = db.execute(
        select(
            func.coalesce(func.sum(case((LedgerEntry.kind == KIND_DEBT, LedgerEntry.amount), else_=0)), 0),
            func.coalesce(func.sum(case((LedgerEntry.kind == KIND_PAYMENT, LedgerEntry.amount), else_=0)), 0),
            func.count(LedgerEntry.id),
            func.max(LedgerEntry.id),
        ).where(LedgerEntry.phone == phone, LedgerEntry.currency == currency)
    ).one()
    debt_sum, pay_sum, count, last_id = row
    return int(debt_sum) - int(pay_sum), int(count), last_id


class LedgerService:
    """Event store + balance resolver for customer debt in IQD and USD."""

    def __init__(self, session_factory, outbox=None, audit: AuditService | None = None) -> None:
        self.session_factory = session_factory
        self.outbox = outbox
        self.audit = audit or AuditService(session_factory)

    def _bump_snapshot(self, db, entry: LedgerEntry) -> None:
        result = db.execute(
            update(BalanceSnapshot)
            .where(BalanceSnapshot.phone == entry.phone, BalanceSnapshot.currency == entry.currency)
            .values(
                balance=BalanceSnapshot.balance + entry.signed_amount,
                entry_count=BalanceSnapshot.entry_count + 1,
                last_entry_id=case(
                    (
                        or_(BalanceSnapshot.last_entry_id.is_(None), BalanceSnapshot.last_entry_id < entry.id),
                        entry.id,
                    ),
                    else_=BalanceSnapshot.last_entry_id,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            balance, count, last_id = derive_balance(db, entry.phone, entry.currency)
            db.add(
                BalanceSnapshot(
                    phone=entry.phone,
                    currency=entry.currency,
                    balance=balance,
                    entry_count=count,
                    last_entry_id=last_id,
                )
            )
            db.flush()

    def record(
        self,
        actor: Identity,
        phone: str,
        kind: str,
        amount: int,
        currency: str,
        note: str | None = None,
    ) -> BalanceResult:
        """Append one entry and return the balance re-summed from the log."""

        require(actor, WRITE_LEDGER)
        phone = require_phone(phone)
        kind = validate_kind(kind)
        amount = validate_amount(amount)
        currency = validate_currency(currency)
        note = (note or "").strip() or None

        notify_ids: list[str] = []
        for attempt in range(2):
            try:
                with self.session_factory() as db:
                    upsert_customer(db, phone, origin=ORIGIN_LEDGER, created_by=actor.external_id)
                    entry = LedgerEntry(
                        phone=phone,
                        kind=kind,
                        amount=amount,
                        currency=currency,
                        note=note,
                        created_by=actor.external_id,
                    )
                    db.add(entry)
                    db.flush()
                    self._bump_snapshot(db, entry)
                    balance, _, _ = derive_balance(db, phone, currency)
                    self.audit.log(
                        db,
                        AuditAction.LEDGER_ENTRY,
                        actor=actor.external_id,
                        entity="ledger_entries",
                        entity_id=entry.id,
                        meta={"phone": phone, "kind": kind, "amount": amount, "currency": currency, "note": note},
                    )
                    holder = IdentityService.holder_of(db, phone)
                    if self.outbox is not None and holder is not None and holder.chat_id:
                        notify_ids.append(
                            self.outbox.enqueue(
                                db,
                                holder.chat_id,
                                OutboundMessage(text=notices.entry_notice(kind, amount, currency, note), kind="notice"),
                            )
                        )
                    db.commit()
                    entry_id = entry.id
                break
            except IntegrityError:
                # Lost a first-contact race on the customer or snapshot row.
                notify_ids = []
                if attempt:
                    raise
                logger.info("ledger_record_retry phone=%s currency=%s", phone, currency)

        ledger_entries_total.labels(service="ledger", kind=kind, currency=currency).inc()
        logger.info(
            "ledger_entry_recorded entry_id=%s phone=%s kind=%s amount=%s currency=%s balance=%s",
            entry_id,
            phone,
            kind,
            amount,
            currency,
            balance,
        )
        if self.outbox is not None:
            self.outbox.attempt_many(notify_ids)
        return BalanceResult(phone=phone, currency=currency, balance=balance, entry_id=entry_id)

    def register_customer(
        self, actor: Identity, phone: str, full_name: str | None = None, note: str | None = None
    ) -> tuple[Customer, bool]:
        require(actor, WRITE_LEDGER)
        phone = require_phone(phone)
        for attempt in range(2):
            try:
                with self.session_factory() as db:
                    customer, created = upsert_customer(
                        db, phone, full_name=full_name, note=note, origin=ORIGIN_STAFF, created_by=actor.external_id
                    )
                    self.audit.log(
                        db,
                        AuditAction.CUSTOMER_REGISTERED,
                        actor=actor.external_id,
                        entity="customers",
                        entity_id=phone,
                        meta={"full_name": customer.full_name, "created": created},
                    )
                    db.commit()
                break
            except IntegrityError:
                if attempt:
                    raise
        return customer, created

    def delete_customer(self, actor: Identity, phone: str) -> dict:
        """Admin-only removal of a customer with its entries, snapshots and phone binding."""

        require(actor, DELETE_CUSTOMERS)
        phone = require_phone(phone)
        with self.session_factory() as db:
            customer = db.get(Customer, phone)
            if customer is None:
                raise NotFound(f"customer {phone}")
            balances = {currency: derive_balance(db, phone, currency)[0] for currency in CURRENCIES}
            removed = db.execute(delete(LedgerEntry).where(LedgerEntry.phone == phone)).rowcount
            db.execute(delete(BalanceSnapshot).where(BalanceSnapshot.phone == phone))
            holder = IdentityService.holder_of(db, phone)
            if holder is not None:
                holder.phone = None
                if holder.role == ROLE_CUSTOMER:
                    holder.role = ROLE_UNAFFILIATED
            db.delete(customer)
            self.audit.log(
                db,
                AuditAction.CUSTOMER_DELETED,
                actor=actor.external_id,
                entity="customers",
                entity_id=phone,
                meta={
                    "entries_removed": removed,
                    "balances": balances,
                    "unlinked_identity": holder.external_id if holder is not None else None,
                },
            )
            db.commit()
        logger.warning("customer_deleted phone=%s entries_removed=%s", phone, removed)
        return {"phone": phone, "entries_removed": removed, "balances": balances}

    def get_customer(self, phone: str) -> Customer | None:
        with self.session_factory() as db:
            return db.get(Customer, require_phone(phone))

    def balance(self, phone: str, currency: str) -> int:
        """Pure read: sum of debts minus sum of payments."""

        phone = require_phone(phone)
        currency = validate_currency(currency)
        with self.session_factory() as db:
            return derive_balance(db, phone, currency)[0]

    def balances(self, phone: str) -> dict[str, int]:
        phone = require_phone(phone)
        with self.session_factory() as db:
            return {currency: derive_balance(db, phone, currency)[0] for currency in CURRENCIES}

    def history(self, phone: str, limit: int = 10, newest_first: bool = True) -> list[LedgerEntry]:
        phone = require_phone(phone)
        order = LedgerEntry.id.desc() if newest_first else LedgerEntry.id.asc()
        with self.session_factory() as db:
            return (
                db.execute(select(LedgerEntry).where(LedgerEntry.phone == phone).order_by(order).limit(limit))
                .scalars()
                .all()
            )

    def view_customer(self, actor: Identity, phone: str) -> CustomerSummary:
        """Balances for `phone`; customers may only look at their own linked phone."""

        phone = require_phone(phone)
        own = actor is not None and actor.phone == phone and authorize(actor, READ_OWN)
        if not own and not authorize(actor, READ_ANY):
            raise AuthorizationError(READ_ANY, actor=getattr(actor, "external_id", None))
        customer = self.get_customer(phone)
        if customer is None:
            raise NotFound(f"customer {phone}")
        return CustomerSummary(phone=phone, full_name=customer.full_name, balances=self.balances(phone))

    def snapshot_status(self, phone: str, currency: str) -> SnapshotStatus:
        phone = require_phone(phone)
        currency = validate_currency(currency)
        with self.session_factory() as db:
            snapshot = db.get(BalanceSnapshot, (phone, currency))
            return self._status(db, phone, currency, snapshot)

    @staticmethod
    def _status(db, phone: str, currency: str, snapshot: BalanceSnapshot | None) -> SnapshotStatus:
        balance, count, last_id = derive_balance(db, phone, currency)
        return SnapshotStatus(
            phone=phone,
            currency=currency,
            snapshot_balance=snapshot.balance if snapshot else None,
            derived_balance=balance,
            snapshot_entry_count=snapshot.entry_count if snapshot else None,
            derived_entry_count=count,
            snapshot_last_entry_id=snapshot.last_entry_id if snapshot else None,
            derived_last_entry_id=last_id,
        )

    def rebuild_snapshot(self, phone: str, currency: str) -> SnapshotStatus:
        """Re-derive the cached snapshot from the log."""

        phone = require_phone(phone)
        currency = validate_currency(currency)
        with self.session_factory() as db:
            balance, count, last_id = derive_balance(db, phone, currency)
            snapshot = db.get(BalanceSnapshot, (phone, currency))
            if snapshot is None:
                snapshot = BalanceSnapshot(phone=phone, currency=currency)
                db.add(snapshot)
            snapshot.balance = balance
            snapshot.entry_count = count
            snapshot.last_entry_id = last_id
            db.flush()
            status = self._status(db, phone, currency, snapshot)
            db.commit()
        logger.info("snapshot_rebuilt phone=%s currency=%s balance=%s", phone, currency, balance)
        return status

    def reconcile(self, limit: int = 1000) -> dict:
        """Compare every snapshot (and every logged pair without one) against the log."""

        with self.session_factory() as db:
            pairs = set(db.execute(select(BalanceSnapshot.phone, BalanceSnapshot.currency).limit(limit)).all())
            pairs |= set(
                db.execute(
                    select(LedgerEntry.phone, LedgerEntry.currency)
                    .group_by(LedgerEntry.phone, LedgerEntry.currency)
                    .limit(limit)
                ).all()
            )
            stale = []
            for phone, currency in sorted(pairs):
                status = self._status(db, phone, currency, db.get(BalanceSnapshot, (phone, currency)))
                if status.stale:
                    stale.append(status.model_dump())
        if stale:
            logger.error("ledger_snapshots_stale count=%s", len(stale))
        return {"pairs_checked": len(pairs), "stale_count": len(stale), "stale": stale}
