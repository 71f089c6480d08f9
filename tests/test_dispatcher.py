"""End-to-end command handling through CommandDispatcher.handle_event."""

from itertools import count

import pytest
from sqlalchemy import func, select

from ledgerbot.common.errors import ValidationError
from ledgerbot.services.audit.service import AuditAction
from ledgerbot.services.bot import messages
from ledgerbot.services.bot.dispatcher import parse_amount, parse_entry_args, parse_target_id
from ledgerbot.services.bot.telegram import split_command
from ledgerbot.services.ledger.models import LedgerEntry

from conftest import ADMIN_ID, CUSTOMER_ID, STAFF_ID

PHONE = "07501234567"
_update_ids = count(1)


def say(dispatcher, actor_id, text, update_id=None):
    command, args = split_command(text)
    update_id = update_id if update_id is not None else next(_update_ids)
    dispatcher.handle_event(update_id, actor_id, actor_id, command, args, display_name=f"user {actor_id}")
    return update_id


def last_reply(sender, chat_id):
    return sender.texts_to(chat_id)[-1]


def entry_count(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(LedgerEntry)).scalar_one()


def test_redelivered_update_is_applied_once(dispatcher, staff, sender, session_factory):
    """Same update id twice: one entry, one reply, no error."""

    update_id = say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 5000 IQD rice")
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 5000 IQD rice", update_id=update_id)

    assert entry_count(session_factory) == 1
    replies = sender.texts_to(STAFF_ID)
    assert len(replies) == 1
    assert "5000" in replies[0]


def test_debt_and_payment_flow(dispatcher, staff, sender, ledger):
    """Currency defaults to IQD; USD is tracked separately."""

    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 50,000")
    say(dispatcher, STAFF_ID, f"/pay {PHONE} 20000 iqd partial")
    assert "30000" in last_reply(sender, STAFF_ID)
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 12 USD")
    assert ledger.balances(PHONE) == {"IQD": 30000, "USD": 12}

    say(dispatcher, STAFF_ID, f"/report {PHONE}")
    lines = [line for line in last_reply(sender, STAFF_ID).splitlines() if line.startswith("- ")]
    assert len(lines) == 3
    assert "USD" in lines[0] and "50000" in lines[-1]


def test_invalid_amount_is_reported(dispatcher, staff, sender, session_factory):
    """A non-numeric amount is a validation reply and writes nothing."""

    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} abc")
    assert last_reply(sender, STAFF_ID).startswith("Invalid input")
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 5²")
    assert last_reply(sender, STAFF_ID).startswith("Invalid input")
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 10 EUR")
    assert "currency" in last_reply(sender, STAFF_ID)
    say(dispatcher, STAFF_ID, "/adddebt")
    assert last_reply(sender, STAFF_ID) == messages.usage("/adddebt 0750xxxxxxx 5000 IQD note")
    assert entry_count(session_factory) == 0


def test_unaffiliated_cannot_write(dispatcher, newcomer, sender, audit, session_factory):
    """Permission failures are replied to and audited."""

    say(dispatcher, CUSTOMER_ID, f"/adddebt {PHONE} 10")
    assert last_reply(sender, CUSTOMER_ID) == messages.NO_PERMISSION
    denied = audit.recent(action=AuditAction.AUTHORIZATION_DENIED)
    assert denied and denied[0].actor == CUSTOMER_ID
    assert entry_count(session_factory) == 0


def test_locked_staff_is_told_so(dispatcher, admin, staff, sender, session_factory):
    """Admin /lock revokes staff rights until /unlock."""

    say(dispatcher, ADMIN_ID, f"/lock {STAFF_ID}")
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 10")
    assert last_reply(sender, STAFF_ID) == messages.ACCOUNT_LOCKED
    say(dispatcher, ADMIN_ID, f"/unlock {STAFF_ID}")
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 10")
    assert entry_count(session_factory) == 1


def test_link_approve_and_me(dispatcher, admin, staff, sender, approvals):
    """Self-service link, admin approval, then the customer reads their balance."""

    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 7000")
    say(dispatcher, CUSTOMER_ID, "/me")
    assert last_reply(sender, CUSTOMER_ID) == messages.NOT_LINKED

    say(dispatcher, CUSTOMER_ID, f"/link {PHONE} Karwan Ali")
    assert "sent" in last_reply(sender, CUSTOMER_ID)
    (request,) = approvals.pending(admin)
    assert request.display_name == "Karwan Ali"
    assert f"/approve {request.id}" in last_reply(sender, ADMIN_ID)

    say(dispatcher, ADMIN_ID, f"/approve {request.id}")
    assert "approved" in last_reply(sender, ADMIN_ID)
    say(dispatcher, ADMIN_ID, f"/approve {request.id}")
    assert "already approved" in last_reply(sender, ADMIN_ID)

    say(dispatcher, CUSTOMER_ID, "/me")
    assert "7000" in last_reply(sender, CUSTOMER_ID)
    say(dispatcher, CUSTOMER_ID, "/customer 07701112222")
    assert last_reply(sender, CUSTOMER_ID) == messages.NO_PERMISSION


def test_link_with_bad_phone(dispatcher, newcomer, sender):
    """An invalid phone gets the dedicated hint."""

    say(dispatcher, CUSTOMER_ID, "/link 12345 Karwan")
    assert last_reply(sender, CUSTOMER_ID) == messages.INVALID_PHONE


def test_staff_management(dispatcher, admin, identities, sender):
    """Admin promotes and demotes staff by user id."""

    say(dispatcher, ADMIN_ID, "/addstaff 9000")
    assert identities.get("9000").role == "staff"
    say(dispatcher, ADMIN_ID, "/removestaff 9000")
    assert identities.get("9000").role == "unaffiliated"
    say(dispatcher, ADMIN_ID, "/addstaff someone")
    assert last_reply(sender, ADMIN_ID).startswith("Invalid input")


def test_unknown_command_and_help(dispatcher, admin, sender):
    """Unknown commands get a hint; /help is role-specific."""

    say(dispatcher, ADMIN_ID, "/frobnicate")
    assert last_reply(sender, ADMIN_ID) == messages.UNKNOWN_COMMAND
    say(dispatcher, ADMIN_ID, "/help@shop_bot")
    assert last_reply(sender, ADMIN_ID) == messages.ADMIN_HELP
    say(dispatcher, CUSTOMER_ID, "/start")
    assert messages.CUSTOMER_HELP in last_reply(sender, CUSTOMER_ID)


def test_unexpected_failure_is_audited_and_answered(dispatcher, staff, ledger, sender, audit, monkeypatch):
    """A bug inside a command becomes a retry-later reply plus an ERROR audit row."""

    def explode(*args, **kwargs):
        raise RuntimeError("database on fire")

    monkeypatch.setattr(ledger, "record", explode)
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 10")
    assert last_reply(sender, STAFF_ID) == messages.TRY_AGAIN
    (error,) = audit.recent(action=AuditAction.ERROR)
    assert error.actor == STAFF_ID and "database on fire" in error.error
    assert "RuntimeError" in error.meta["traceback"]


def test_storage_failure_never_escapes(dispatcher, intake, monkeypatch):
    """Even the intake guard failing does not raise out of handle_event."""

    def broken(update_id):
        raise RuntimeError("connection refused")

    monkeypatch.setattr(intake, "mark_seen", broken)
    say(dispatcher, STAFF_ID, "/help")


def test_reply_survives_channel_outage(dispatcher, staff, sender, session_factory):
    """The entry commits even when the reply cannot be delivered."""

    sender.failures = 10
    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 10")
    assert entry_count(session_factory) == 1
    assert sender.sent == []


def test_parse_entry_args():
    """Optional currency and free-text note."""

    assert parse_entry_args([PHONE, "10"]) == (PHONE, 10, "IQD", None)
    assert parse_entry_args([PHONE, "10", "usd", "two", "words"]) == (PHONE, 10, "USD", "two words")
    with pytest.raises(ValidationError):
        parse_entry_args([PHONE, "10", "note-without-currency"])


@pytest.mark.parametrize("raw", ["0", "-5", "1.5", "abc", "", "5²", "1,000³"])
def test_parse_amount_rejects(raw):
    """Only positive whole numbers pass."""

    with pytest.raises(ValidationError):
        parse_amount(raw)


@pytest.mark.parametrize("raw", ["0", "-7", "abc", "12³", ""])
def test_parse_target_id_rejects(raw):
    """User ids are plain positive decimal numbers."""

    with pytest.raises(ValidationError):
        parse_target_id(raw)


def test_superscript_digits_are_a_validation_reply(dispatcher, admin, staff, sender, audit):
    """Digit-like characters that are not decimal get the invalid-input reply, not a failure."""

    say(dispatcher, STAFF_ID, f"/adddebt {PHONE} 5²")
    assert last_reply(sender, STAFF_ID).startswith("Invalid input")
    say(dispatcher, ADMIN_ID, "/lock 12³")
    assert last_reply(sender, ADMIN_ID).startswith("Invalid input")
    assert audit.recent(action=AuditAction.ERROR) == []
