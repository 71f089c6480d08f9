"""Outbox dispatcher: durable write first, immediate attempt, periodic retry sweep."""

from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy import update

from ledgerbot.common.config import settings
from ledgerbot.common.errors import TransportError
from ledgerbot.common.logging import logger
from ledgerbot.common.metrics import outbox_exhausted_total, outbox_send_failures_total, outbox_sent_total
from ledgerbot.common.outbox import (
    claim_items,
    load_retry_candidates,
    select_retry_batch,
    update_outbox_backlog_metrics,
)
from ledgerbot.common.state_machine import (
    OUTBOX_FAILED,
    OUTBOX_PENDING,
    OUTBOX_SENT,
    OUTBOX_TRANSITIONS,
    validate_transition,
)
from ledgerbot.common.tracing import tracer
from ledgerbot.services.outbox.models import OutboundMessage, OutboxItem


class SweepResult(BaseModel):
    claimed: int = 0
    sent: int = 0
    failed: int = 0
    exhausted: int = 0


class OutboxDispatcher:
    """Owns every outbound notification for the single chat channel."""

    def __init__(
        self,
        session_factory,
        sender,
        max_retries: int | None = None,
        claim_timeout_seconds: float | None = None,
        service_name: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.sender = sender
        self.max_retries = max_retries if max_retries is not None else settings.outbox_max_retries
        self.claim_timeout_seconds = (
            claim_timeout_seconds if claim_timeout_seconds is not None else settings.outbox_claim_timeout_seconds
        )
        self.service_name = service_name or settings.service_name

    def enqueue(self, db, destination, message: OutboundMessage) -> str:
        """Add a PENDING item to the caller's unit of work; it is durable once they commit."""

        item = OutboxItem(
            destination=str(destination),
            payload=message.model_dump(),
            status=OUTBOX_PENDING,
            retry_count=0,
        )
        db.add(item)
        db.flush()
        return item.id

    def enqueue_and_attempt(self, destination, message: OutboundMessage) -> str:
        with self.session_factory() as db:
            item_id = self.enqueue(db, destination, message)
            db.commit()
        self.attempt(item_id)
        return item_id

    def attempt_many(self, item_ids) -> int:
        return sum(1 for item_id in item_ids if self.attempt(item_id))

    def attempt(self, item_id: str) -> bool:
        """Try one delivery now. Returns True when the item ends up SENT; never raises."""

        try:
            now = datetime.now(timezone.utc)
            with self.session_factory() as db:
                item = db.get(OutboxItem, item_id)
                if item is None:
                    logger.warning("outbox_item_missing id=%s", item_id)
                    return False
                if item.status == OUTBOX_SENT:
                    return True
                if item.retry_count >= self.max_retries:
                    return False
                if item.status == OUTBOX_FAILED:
                    validate_transition(item.status, OUTBOX_PENDING, OUTBOX_TRANSITIONS)
                    item.status = OUTBOX_PENDING
                item.last_attempt_at = now
                destination, payload = item.destination, dict(item.payload)
                db.commit()
            return self._deliver(item_id, destination, payload, self.max_retries)
        except Exception as exc:
            logger.exception("outbox_attempt_error id=%s error=%s", item_id, exc)
            return False

    def _deliver(self, item_id: str, destination: str, payload: dict, max_retries: int) -> bool:
        with tracer.start_as_current_span("outbox.send") as span:
            span.set_attribute("outbox.item_id", item_id)
            try:
                self.sender.send(destination, payload)
            except Exception as exc:
                span.record_exception(exc)
                self._mark_failed(item_id, exc, max_retries)
                return False
        self._mark_sent(item_id)
        return True

    def _mark_sent(self, item_id: str) -> None:
        with self.session_factory() as db:
            db.execute(
                update(OutboxItem)
                .where(OutboxItem.id == item_id, OutboxItem.status == OUTBOX_PENDING)
                .values(status=OUTBOX_SENT, sent_at=datetime.now(timezone.utc), last_error=None)
            )
            db.commit()
        outbox_sent_total.labels(service=self.service_name).inc()

    def _mark_failed(self, item_id: str, exc: Exception, max_retries: int) -> None:
        error_type = exc.kind if isinstance(exc, TransportError) else "unexpected"
        error = f"{type(exc).__name__}: {exc}"[:1000]
        with self.session_factory() as db:
            db.execute(
                update(OutboxItem)
                .where(OutboxItem.id == item_id, OutboxItem.status == OUTBOX_PENDING)
                .values(status=OUTBOX_FAILED, retry_count=OutboxItem.retry_count + 1, last_error=error)
            )
            item = db.get(OutboxItem, item_id)
            db.commit()
        outbox_send_failures_total.labels(service=self.service_name, error_type=error_type).inc()
        if item is not None and item.retry_count >= max_retries:
            outbox_exhausted_total.labels(service=self.service_name).inc()
            logger.error(
                "outbox_item_exhausted id=%s destination=%s retries=%s error=%s",
                item_id,
                item.destination,
                item.retry_count,
                error,
            )
        else:
            logger.warning("outbox_send_failed id=%s error_type=%s error=%s", item_id, error_type, error)

    def sweep_retries(self, max_batch: int | None = None, max_retries: int | None = None) -> SweepResult:
        """Re-attempt up to `max_batch` retryable items, oldest first."""

        max_batch = max_batch if max_batch is not None else settings.outbox_sweep_batch
        max_retries = max_retries if max_retries is not None else self.max_retries
        now = datetime.now(timezone.utc)
        with self.session_factory() as db:
            candidates = load_retry_candidates(db, OutboxItem, max_retries)
            batch = select_retry_batch(candidates, max_batch, max_retries, now, self.claim_timeout_seconds)
            claimed = [(item.id, item.destination, dict(item.payload)) for item in batch]
            claim_items(db, OutboxItem, [item_id for item_id, _, _ in claimed], now)
            db.commit()

        result = SweepResult(claimed=len(claimed))
        for item_id, destination, payload in claimed:
            if self._deliver(item_id, destination, payload, max_retries):
                result.sent += 1
            else:
                result.failed += 1

        with self.session_factory() as db:
            backlog = update_outbox_backlog_metrics(db, OutboxItem, self.service_name, max_retries)
        result.exhausted = backlog["exhausted"]
        if claimed:
            logger.info(
                "outbox_sweep claimed=%s sent=%s failed=%s exhausted=%s",
                result.claimed,
                result.sent,
                result.failed,
                result.exhausted,
            )
        return result

    def backlog(self) -> dict:
        with self.session_factory() as db:
            return update_outbox_backlog_metrics(db, OutboxItem, self.service_name, self.max_retries)
