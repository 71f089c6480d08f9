"""Inbound command dispatch.

`handle_event` is the single entry point for transport updates: dedupe by
update id, resolve the actor, run the command, and queue the reply through the
outbox. Domain errors become replies; anything else is audited and answered
with a generic retry-later text. Nothing escapes.
"""

import time
from uuid import uuid4

from ledgerbot.common.errors import AlreadyResolved, AuthorizationError, NotFound, ValidationError
from ledgerbot.common.logging import actor_id_ctx, logger, trace_id_ctx, update_id_ctx
from ledgerbot.common.metrics import commands_total, dispatch_latency_seconds
from ledgerbot.common.phone import is_valid_phone, normalize_phone
from ledgerbot.common.tracing import tracer
from ledgerbot.services.audit.service import AuditAction, AuditService
from ledgerbot.services.bot import messages
from ledgerbot.services.identity.capabilities import REQUEST_LINK, require
from ledgerbot.services.identity.models import ROLE_STAFF, STATUS_ACTIVE, STATUS_LOCKED
from ledgerbot.services.ledger.models import CURRENCIES, CURRENCY_IQD, KIND_DEBT, KIND_PAYMENT
from ledgerbot.services.outbox.models import OutboundMessage


def parse_amount(raw: str) -> int:
    """Whole positive units; '50,000' and '50_000' are accepted."""

    cleaned = str(raw or "").replace(",", "").replace("_", "")
    if not cleaned.isdecimal():
        raise ValidationError(f"amount must be a positive whole number, got {raw!r}")
    amount = int(cleaned)
    if amount <= 0:
        raise ValidationError(f"amount must be a positive whole number, got {raw!r}")
    return amount


def parse_entry_args(args: list[str]) -> tuple[str, int, str, str | None]:
    """<phone> <amount> [IQD|USD] [note...] -> (phone, amount, currency, note)."""

    phone, amount = args[0], parse_amount(args[1])
    rest = args[2:]
    currency = CURRENCY_IQD
    if rest:
        if rest[0].upper() not in CURRENCIES:
            raise ValidationError(f"currency must be one of {', '.join(CURRENCIES)}, got {rest[0]!r}")
        currency = rest[0].upper()
        rest = rest[1:]
    note = " ".join(rest).strip() or None
    return phone, amount, currency, note


def parse_target_id(raw: str) -> str:
    """Telegram user ids are positive integers."""

    value = str(raw or "").strip()
    if not value.isdecimal() or int(value) <= 0:
        raise ValidationError(f"user id must be a positive number, got {raw!r}")
    return value


class CommandDispatcher:
    """Maps slash commands onto the core services."""

    def __init__(
        self,
        session_factory,
        identities,
        ledger,
        approvals,
        intake,
        outbox,
        audit: AuditService | None = None,
        history_limit: int = 10,
        service_name: str = "ledgerbot",
    ) -> None:
        self.session_factory = session_factory
        self.identities = identities
        self.ledger = ledger
        self.approvals = approvals
        self.intake = intake
        self.outbox = outbox
        self.audit = audit or AuditService(session_factory)
        self.history_limit = history_limit
        self.service_name = service_name
        # command -> (handler, minimum args, usage example)
        self.commands = {
            "/start": (self._start, 0, "/start"),
            "/help": (self._help, 0, "/help"),
            "/link": (self._link, 2, "/link 0750xxxxxxx Your Name"),
            "/me": (self._me, 0, "/me"),
            "/customer": (self._customer, 1, "/customer 0750xxxxxxx"),
            "/report": (self._report, 1, "/report 0750xxxxxxx"),
            "/adddebt": (self._add_debt, 2, "/adddebt 0750xxxxxxx 5000 IQD note"),
            "/pay": (self._pay, 2, "/pay 0750xxxxxxx 5000 IQD note"),
            "/addcustomer": (self._add_customer, 1, "/addcustomer 0750xxxxxxx Name"),
            "/deletecustomer": (self._delete_customer, 1, "/deletecustomer 0750xxxxxxx"),
            "/addstaff": (self._add_staff, 1, "/addstaff 123456789"),
            "/removestaff": (self._remove_staff, 1, "/removestaff 123456789"),
            "/lock": (self._lock, 1, "/lock 123456789"),
            "/unlock": (self._unlock, 1, "/unlock 123456789"),
            "/pending": (self._pending, 0, "/pending"),
            "/approve": (self._approve, 1, "/approve 12"),
            "/reject": (self._reject, 1, "/reject 12"),
        }

    def handle_event(
        self,
        update_id,
        actor_external_id,
        chat_destination,
        command: str,
        args: list[str],
        display_name: str | None = None,
        username: str | None = None,
    ) -> None:
        """Process one inbound update at most once. Never raises."""

        started = time.perf_counter()
        command = (command or "").lower()
        label = command if command in self.commands else "unknown"
        trace_token = trace_id_ctx.set(uuid4().hex)
        update_token = update_id_ctx.set(str(update_id))
        actor_token = actor_id_ctx.set(str(actor_external_id))
        outcome = "ok"
        try:
            with tracer.start_as_current_span("bot.handle_event") as span:
                span.set_attribute("bot.command", label)
                span.set_attribute("bot.update_id", str(update_id))
                if not self.intake.mark_seen(update_id):
                    outcome = "duplicate"
                    return
                outcome, reply = self._run(actor_external_id, chat_destination, command, args, display_name, username)
                span.set_attribute("bot.outcome", outcome)
                if reply:
                    self.outbox.enqueue_and_attempt(
                        chat_destination, OutboundMessage(text=reply, trace_id=trace_id_ctx.get())
                    )
        except Exception as exc:
            # Intake or outbox storage failed; the transport will see a normal ack.
            outcome = "error"
            logger.exception("handle_event_failed command=%s error=%s", label, exc)
        finally:
            commands_total.labels(service=self.service_name, command=label, outcome=outcome).inc()
            dispatch_latency_seconds.labels(service=self.service_name, command=label).observe(
                time.perf_counter() - started
            )
            actor_id_ctx.reset(actor_token)
            update_id_ctx.reset(update_token)
            trace_id_ctx.reset(trace_token)

    def _run(self, actor_external_id, chat_destination, command, args, display_name, username) -> tuple[str, str]:
        """(outcome, reply) for one command; domain errors are turned into replies here."""

        actor = None
        example = None
        try:
            actor = self.identities.resolve(
                actor_external_id, display_name=display_name, username=username, chat_id=chat_destination
            )
            entry = self.commands.get(command)
            if entry is None:
                return "unknown", messages.UNKNOWN_COMMAND
            handler, min_args, example = entry
            if len(args) < min_args:
                return "invalid", messages.usage(example)
            return "ok", handler(actor, list(args))
        except ValidationError as exc:
            return "invalid", messages.invalid(str(exc), example)
        except AuthorizationError as exc:
            self.audit.log_now(
                AuditAction.AUTHORIZATION_DENIED,
                actor=str(actor_external_id),
                entity="command",
                entity_id=command,
                ok=False,
                error=str(exc),
                meta={"capability": exc.capability, "role": getattr(actor, "role", None)},
            )
            if actor is not None and actor.is_locked:
                return "denied", messages.ACCOUNT_LOCKED
            return "denied", messages.NO_PERMISSION
        except AlreadyResolved as exc:
            return "stale", messages.already_resolved(exc.request_id, exc.status)
        except NotFound as exc:
            return "not_found", f"Not found: {messages.code(exc)}"
        except Exception as exc:
            logger.exception("command_failed command=%s error=%s", command, exc)
            self.audit.log_error(str(actor_external_id), command or "unknown", exc, meta={"args": list(args)})
            return "error", messages.TRY_AGAIN

    def _start(self, actor, args):
        self.audit.log_now(AuditAction.START, actor=actor.external_id, entity="identities", entity_id=actor.external_id)
        return messages.start_text(actor.role)

    def _help(self, actor, args):
        return messages.help_text(actor.role)

    def _link(self, actor, args):
        require(actor, REQUEST_LINK)
        if not is_valid_phone(args[0]):
            return messages.INVALID_PHONE
        request, created = self.approvals.submit(actor, args[0], " ".join(args[1:]))
        return messages.link_submitted(request.id, created)

    def _me(self, actor, args):
        if not actor.phone:
            if actor.is_locked:
                return messages.ACCOUNT_LOCKED
            return messages.NOT_LINKED
        try:
            view = self.ledger.view_customer(actor, actor.phone)
        except NotFound:
            return messages.phone_not_found(actor.phone)
        return messages.summary(view.phone, view.balances, view.full_name)

    def _customer(self, actor, args):
        phone = normalize_phone(args[0])
        try:
            view = self.ledger.view_customer(actor, phone)
        except NotFound:
            return messages.phone_not_found(phone)
        return messages.summary(view.phone, view.balances, view.full_name)

    def _report(self, actor, args):
        phone = normalize_phone(args[0])
        view = self.ledger.view_customer(actor, phone)
        return messages.history(view.phone, self.ledger.history(view.phone, limit=self.history_limit))

    def _record(self, actor, args, kind):
        phone, amount, currency, note = parse_entry_args(args)
        result = self.ledger.record(actor, phone, kind, amount, currency, note)
        return messages.entry_recorded(kind, result.currency, result.balance)

    def _add_debt(self, actor, args):
        return self._record(actor, args, KIND_DEBT)

    def _pay(self, actor, args):
        return self._record(actor, args, KIND_PAYMENT)

    def _add_customer(self, actor, args):
        customer, _ = self.ledger.register_customer(actor, args[0], full_name=" ".join(args[1:]))
        return messages.customer_registered(customer.phone, customer.full_name)

    def _delete_customer(self, actor, args):
        phone = normalize_phone(args[0])
        try:
            result = self.ledger.delete_customer(actor, phone)
        except NotFound:
            return messages.phone_not_found(phone)
        return messages.customer_deleted(result["phone"])

    def _add_staff(self, actor, args):
        target = self.identities.set_role(actor, parse_target_id(args[0]), ROLE_STAFF)
        return messages.role_changed(target.external_id, target.role)

    def _remove_staff(self, actor, args):
        try:
            target = self.identities.revoke_staff(actor, parse_target_id(args[0]))
        except NotFound:
            return messages.identity_not_found(args[0])
        return messages.role_changed(target.external_id, target.role)

    def _set_status(self, actor, target_external_id, status):
        try:
            target = self.identities.set_status(actor, target_external_id, status)
        except NotFound:
            return messages.identity_not_found(target_external_id)
        return messages.status_changed(target.external_id, target.status)

    def _lock(self, actor, args):
        return self._set_status(actor, parse_target_id(args[0]), STATUS_LOCKED)

    def _unlock(self, actor, args):
        return self._set_status(actor, parse_target_id(args[0]), STATUS_ACTIVE)

    def _pending(self, actor, args):
        return messages.pending_requests(self.approvals.pending(actor))

    def _approve(self, actor, args):
        try:
            request = self.approvals.approve(actor, args[0])
        except NotFound:
            return messages.request_not_found(args[0])
        return messages.decision_done(request.id, request.status)

    def _reject(self, actor, args):
        try:
            request = self.approvals.reject(actor, args[0])
        except NotFound:
            return messages.request_not_found(args[0])
        return messages.decision_done(request.id, request.status)

    def sweep_retries(self, max_batch: int | None = None, max_retries: int | None = None):
        """Periodic trigger hook; forwards to the outbox."""

        return self.outbox.sweep_retries(max_batch=max_batch, max_retries=max_retries)
