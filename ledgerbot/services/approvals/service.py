"""Approval workflow: PENDING -> APPROVED | REJECTED, decided once by an admin."""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ledgerbot.common import notices
from ledgerbot.common.errors import AlreadyResolved, NotFound, ValidationError
from ledgerbot.common.logging import logger
from ledgerbot.common.metrics import approval_decisions_total
from ledgerbot.common.phone import require_phone
from ledgerbot.common.state_machine import (
    APPROVAL_APPROVED,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    validate_transition,
)
from ledgerbot.services.approvals.models import ApprovalRequest, pending_key
from ledgerbot.services.audit.service import AuditAction, AuditService
from ledgerbot.services.identity.capabilities import MANAGE_APPROVALS, REQUEST_LINK, require
from ledgerbot.services.identity.models import (
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_UNAFFILIATED,
    STATUS_ACTIVE,
    Identity,
)
from ledgerbot.services.identity.service import IdentityService
from ledgerbot.services.ledger.models import CURRENCIES, ORIGIN_APPROVAL
from ledgerbot.services.ledger.service import derive_balance, upsert_customer
from ledgerbot.services.outbox.models import OutboundMessage


def _request_id(raw) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid request id: {raw!r}") from exc
    if value <= 0:
        raise ValidationError(f"invalid request id: {raw!r}")
    return value


class ApprovalService:
    """Turns a self-service link request into a customer binding via an admin decision."""

    def __init__(self, session_factory, outbox=None, audit: AuditService | None = None) -> None:
        self.session_factory = session_factory
        self.outbox = outbox
        self.audit = audit or AuditService(session_factory)

    def _notify(self, db, chat_id, text: str, ids: list[str]) -> None:
        if self.outbox is not None and chat_id:
            ids.append(self.outbox.enqueue(db, chat_id, OutboundMessage(text=text, kind="notice")))

    def _flush_notifications(self, ids: list[str]) -> None:
        if self.outbox is not None:
            self.outbox.attempt_many(ids)

    def submit(self, requester: Identity, phone: str, display_name: str) -> tuple[ApprovalRequest, bool]:
        """Open a link request and notify every active admin.

        A second submit for the same (requester, phone) while the first is
        still open returns the open request with `created=False`.
        """

        require(requester, REQUEST_LINK)
        phone = require_phone(phone)
        display_name = (display_name or "").strip()
        if not display_name:
            raise ValidationError("display name is required")
        if requester.phone == phone:
            raise ValidationError(f"already linked to {phone}")
        key = pending_key(requester.external_id, phone)

        notify_ids: list[str] = []
        for attempt in range(2):
            try:
                with self.session_factory() as db:
                    existing = db.execute(
                        select(ApprovalRequest).where(ApprovalRequest.pending_key == key)
                    ).scalar_one_or_none()
                    if existing is not None:
                        return existing, False
                    request = ApprovalRequest(
                        requester_id=requester.external_id,
                        phone=phone,
                        display_name=display_name,
                        status=APPROVAL_PENDING,
                        pending_key=key,
                    )
                    db.add(request)
                    db.flush()
                    self.audit.log(
                        db,
                        AuditAction.LINK_REQUESTED,
                        actor=requester.external_id,
                        entity="approval_requests",
                        entity_id=request.id,
                        meta={"phone": phone, "display_name": display_name},
                    )
                    admins = (
                        db.execute(
                            select(Identity).where(
                                Identity.role == ROLE_ADMIN,
                                Identity.status == STATUS_ACTIVE,
                                Identity.chat_id.is_not(None),
                            )
                        )
                        .scalars()
                        .all()
                    )
                    text = notices.link_request_for_admin(request.id, phone, display_name, requester.external_id)
                    for admin in admins:
                        self._notify(db, admin.chat_id, text, notify_ids)
                    db.commit()
                break
            except IntegrityError:
                # A concurrent submit for the same pair won; the retry returns it.
                notify_ids = []
                if attempt:
                    raise

        if not admins:
            logger.warning("link_request_without_admins request_id=%s", request.id)
        logger.info("link_requested request_id=%s requester=%s phone=%s", request.id, requester.external_id, phone)
        self._flush_notifications(notify_ids)
        return request, True

    def _claim(self, db, actor: Identity, request_id: int, new_status: str) -> ApprovalRequest:
        """Guarded PENDING -> new_status transition; raises NotFound / AlreadyResolved."""

        request = db.get(ApprovalRequest, request_id)
        if request is None:
            raise NotFound(f"approval request {request_id}")
        if request.status != APPROVAL_PENDING:
            raise AlreadyResolved(request_id, request.status)
        validate_transition(request.status, new_status)
        now = datetime.now(timezone.utc)
        result = db.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == request_id, ApprovalRequest.status == APPROVAL_PENDING)
            .values(status=new_status, pending_key=None, resolved_by=actor.external_id, resolved_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Another admin decided between our read and write.
            db.rollback()
            current = db.get(ApprovalRequest, request_id)
            raise AlreadyResolved(request_id, current.status if current else "resolved")
        request.status = new_status
        request.pending_key = None
        request.resolved_by = actor.external_id
        request.resolved_at = now
        return request

    def approve(self, actor: Identity, request_id) -> ApprovalRequest:
        """Bind the requester to the phone as an active customer, in one unit of work."""

        require(actor, MANAGE_APPROVALS)
        request_id = _request_id(request_id)
        notify_ids: list[str] = []
        with self.session_factory() as db:
            request = self._claim(db, actor, request_id, APPROVAL_APPROVED)
            phone = request.phone
            upsert_customer(
                db, phone, full_name=request.display_name, origin=ORIGIN_APPROVAL, created_by=actor.external_id
            )

            requester = db.execute(
                select(Identity).where(Identity.external_id == request.requester_id)
            ).scalar_one_or_none()
            if requester is None:
                requester = Identity(external_id=request.requester_id, role=ROLE_UNAFFILIATED, status=STATUS_ACTIVE)
                db.add(requester)
                db.flush()

            previous_phone = requester.phone if requester.phone != phone else None
            previous_balances = {}
            if previous_phone:
                # The old customer record and its history stay as they are, unlinked.
                previous_balances = {
                    currency: balance
                    for currency in CURRENCIES
                    if (balance := derive_balance(db, previous_phone, currency)[0]) != 0
                }

            unlinked = None
            holder = IdentityService.holder_of(db, phone)
            if holder is not None and holder.id != requester.id:
                unlinked = holder.external_id
                holder.phone = None
                if holder.role == ROLE_CUSTOMER:
                    holder.role = ROLE_UNAFFILIATED
                # Release the unique phone before the requester takes it.
                db.flush()

            requester.phone = phone
            previous_role = requester.role
            requester.role = ROLE_CUSTOMER
            requester.status = STATUS_ACTIVE
            if not requester.display_name:
                requester.display_name = request.display_name

            self.audit.log(
                db,
                AuditAction.APPROVAL_DECIDED,
                actor=actor.external_id,
                entity="approval_requests",
                entity_id=request_id,
                meta={
                    "decision": APPROVAL_APPROVED,
                    "requester": request.requester_id,
                    "phone": phone,
                    "previous_role": previous_role,
                    "previous_phone": previous_phone,
                    "previous_phone_balances": previous_balances,
                    "unlinked_identity": unlinked,
                },
            )
            self._notify(db, requester.chat_id, notices.link_approved(phone), notify_ids)
            db.commit()

        approval_decisions_total.labels(service="approvals", decision="approved").inc()
        if previous_balances:
            logger.warning(
                "approval_left_balance_on_previous_phone request_id=%s previous_phone=%s balances=%s",
                request_id,
                previous_phone,
                previous_balances,
            )
        logger.info("approval_decided request_id=%s decision=approved by=%s", request_id, actor.external_id)
        self._flush_notifications(notify_ids)
        return request

    def reject(self, actor: Identity, request_id) -> ApprovalRequest:
        """Close the request without touching customers or identities."""

        require(actor, MANAGE_APPROVALS)
        request_id = _request_id(request_id)
        notify_ids: list[str] = []
        with self.session_factory() as db:
            request = self._claim(db, actor, request_id, APPROVAL_REJECTED)
            self.audit.log(
                db,
                AuditAction.APPROVAL_DECIDED,
                actor=actor.external_id,
                entity="approval_requests",
                entity_id=request_id,
                meta={"decision": APPROVAL_REJECTED, "requester": request.requester_id, "phone": request.phone},
            )
            requester = db.execute(
                select(Identity).where(Identity.external_id == request.requester_id)
            ).scalar_one_or_none()
            if requester is not None:
                self._notify(db, requester.chat_id, notices.link_rejected(request.phone), notify_ids)
            db.commit()

        approval_decisions_total.labels(service="approvals", decision="rejected").inc()
        logger.info("approval_decided request_id=%s decision=rejected by=%s", request_id, actor.external_id)
        self._flush_notifications(notify_ids)
        return request

    def pending(self, actor: Identity, limit: int = 20) -> list[ApprovalRequest]:
        require(actor, MANAGE_APPROVALS)
        with self.session_factory() as db:
            return (
                db.execute(
                    select(ApprovalRequest)
                    .where(ApprovalRequest.status == APPROVAL_PENDING)
                    .order_by(ApprovalRequest.id.asc())
                    .limit(limit)
                )
                .scalars()
                .all()
            )

    def get(self, request_id) -> ApprovalRequest | None:
        with self.session_factory() as db:
            return db.get(ApprovalRequest, _request_id(request_id))
