"""Webhook process: Telegram updates in, outbox sweep on a timer.

Wires the core services onto the shared session factory and exposes the
webhook, health and metrics routes.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Request

from ledgerbot.common.config import settings
from ledgerbot.common.db import SessionLocal
from ledgerbot.common.logging import configure_logging, logger
from ledgerbot.common.metrics import metrics_response
from ledgerbot.common.startup import log_startup_config
from ledgerbot.common.tracing import instrument_app, setup_tracing
from ledgerbot.services.approvals.service import ApprovalService
from ledgerbot.services.audit.service import AuditService
from ledgerbot.services.bot.dispatcher import CommandDispatcher
from ledgerbot.services.bot.telegram import parse_update, split_command
from ledgerbot.services.identity.service import IdentityService
from ledgerbot.services.intake.service import IntakeDeduplicator
from ledgerbot.services.ledger.service import LedgerService
from ledgerbot.services.outbox.sender import TelegramSender
from ledgerbot.services.outbox.service import OutboxDispatcher

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(settings)

sender = TelegramSender(settings.bot_token, settings.telegram_api_base, settings.send_timeout_seconds)
audit = AuditService(SessionLocal)
outbox = OutboxDispatcher(
    SessionLocal,
    sender,
    max_retries=settings.outbox_max_retries,
    claim_timeout_seconds=settings.outbox_claim_timeout_seconds,
    service_name=settings.service_name,
)
identities = IdentityService(SessionLocal, admin_external_id=settings.admin_external_id, audit=audit)
ledger = LedgerService(SessionLocal, outbox=outbox, audit=audit)
approvals = ApprovalService(SessionLocal, outbox=outbox, audit=audit)
intake = IntakeDeduplicator(SessionLocal, service_name=settings.service_name)
dispatcher = CommandDispatcher(
    SessionLocal,
    identities,
    ledger,
    approvals,
    intake,
    outbox,
    audit=audit,
    history_limit=settings.history_limit,
    service_name=settings.service_name,
)


async def sweep_forever(interval_seconds: float) -> None:
    """Periodic retry trigger; each sweep runs in a worker thread."""

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(dispatcher.sweep_retries, settings.outbox_sweep_batch)
        except Exception as exc:
            logger.exception("outbox_sweep_failed error=%s", exc)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Bootstrap the configured admin and start the sweep loop."""

    identities.ensure_admin()
    sweep_task = asyncio.create_task(sweep_forever(settings.outbox_sweep_interval_seconds))
    yield
    sweep_task.cancel()
    sender.close()


app = FastAPI(title="ledgerbot", lifespan=lifespan)
instrument_app(app)


@app.post("/telegram/webhook")
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: str | None = Header(default=None),
):
    """Accept one update. Always acks once authenticated so Telegram does not redeliver."""

    if settings.webhook_secret and x_telegram_bot_api_secret_token != settings.webhook_secret:
        raise HTTPException(status_code=401, detail="bad secret token")
    try:
        update = await request.json()
    except ValueError:
        logger.warning("webhook_invalid_json")
        return {"ok": True}

    event = parse_update(update)
    if event is None:
        return {"ok": True}
    command, args = split_command(event.text)
    await asyncio.to_thread(
        dispatcher.handle_event,
        event.update_id,
        event.actor_external_id,
        event.chat_destination,
        command,
        args,
        event.display_name,
        event.username,
    )
    return {"ok": True}


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
