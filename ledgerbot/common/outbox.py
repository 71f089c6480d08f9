"""Reusable helpers for the notification outbox.

The retry selection rule lives in `select_retry_batch`, a pure function over a
snapshot of rows, so the sweep contract (batch size, ceiling, oldest first,
claim lease) is testable without a database. The DB helpers only load the
snapshot and apply the claim.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select, update

from ledgerbot.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total
from ledgerbot.common.state_machine import OUTBOX_FAILED, OUTBOX_PENDING

RETRYABLE_STATUSES = (OUTBOX_PENDING, OUTBOX_FAILED)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def select_retry_batch(
    items,
    max_batch: int,
    max_retries: int,
    now: datetime,
    claim_timeout_seconds: float = 0,
) -> list:
    """Pick the items a sweep should re-attempt, oldest first.

    An item qualifies when it is PENDING or FAILED, its retry count is below
    the ceiling, and nobody touched it within the claim lease (this keeps the
    sweep away from an in-flight immediate attempt).
    """

    if max_batch <= 0:
        return []
    lease_before = now - timedelta(seconds=claim_timeout_seconds)
    eligible = []
    for item in items:
        if item.status not in RETRYABLE_STATUSES or item.retry_count >= max_retries:
            continue
        touched = as_utc(item.last_attempt_at) or as_utc(item.created_at)
        if touched is not None and touched > lease_before:
            continue
        eligible.append(item)
    eligible.sort(key=lambda item: (as_utc(item.created_at), item.id))
    return eligible[:max_batch]


def load_retry_candidates(db, outbox_model, max_retries: int) -> list:
    """Lock and return every row that could be retried (skip rows locked by a peer sweep)."""

    return (
        db.execute(
            select(outbox_model)
            .where(
                outbox_model.status.in_(RETRYABLE_STATUSES),
                outbox_model.retry_count < max_retries,
            )
            .order_by(outbox_model.created_at)
            .with_for_update(skip_locked=True)
        )
        .scalars()
        .all()
    )


def claim_items(db, outbox_model, item_ids: list[str], now: datetime) -> None:
    """Move claimed rows back to PENDING and start their lease."""

    if not item_ids:
        return
    db.execute(
        update(outbox_model)
        .where(outbox_model.id.in_(item_ids))
        .values(status=OUTBOX_PENDING, last_attempt_at=now)
    )


def update_outbox_backlog_metrics(db, outbox_model, service_name: str, max_retries: int) -> dict:
    """Update gauges for retryable backlog depth and oldest age; return counts."""

    now = datetime.now(timezone.utc)
    retryable = (outbox_model.status.in_(RETRYABLE_STATUSES)) & (outbox_model.retry_count < max_retries)
    pending_count = db.execute(select(func.count()).select_from(outbox_model).where(retryable)).scalar_one()
    exhausted_count = db.execute(
        select(func.count())
        .select_from(outbox_model)
        .where(outbox_model.status == OUTBOX_FAILED, outbox_model.retry_count >= max_retries)
    ).scalar_one()
    oldest_pending = as_utc(db.execute(select(func.min(outbox_model.created_at)).where(retryable)).scalar_one())
    age_seconds = 0.0
    if oldest_pending is not None:
        age_seconds = max(0.0, (now - oldest_pending).total_seconds())
    outbox_pending_total.labels(service=service_name).set(float(pending_count))
    outbox_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)
    return {"retryable": int(pending_count), "exhausted": int(exhausted_count), "oldest_age_seconds": age_seconds}
