"""Shared fixtures: a fresh SQLite database per test and a scriptable sender."""

import os

# Settings are read at import time; never point the suite at a real database.
os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from ledgerbot.common.db import Base, make_engine, make_session_factory
from ledgerbot.common.errors import TransportError
from ledgerbot.services.approvals import models as approval_models  # noqa: F401
from ledgerbot.services.approvals.service import ApprovalService
from ledgerbot.services.audit import models as audit_models  # noqa: F401
from ledgerbot.services.audit.service import AuditService
from ledgerbot.services.bot.dispatcher import CommandDispatcher
from ledgerbot.services.identity import models as identity_models  # noqa: F401
from ledgerbot.services.identity.models import ROLE_STAFF
from ledgerbot.services.identity.service import IdentityService
from ledgerbot.services.intake import models as intake_models  # noqa: F401
from ledgerbot.services.intake.service import IntakeDeduplicator
from ledgerbot.services.ledger import models as ledger_models  # noqa: F401
from ledgerbot.services.ledger.service import LedgerService
from ledgerbot.services.outbox import models as outbox_models  # noqa: F401
from ledgerbot.services.outbox.service import OutboxDispatcher

ADMIN_ID = "1000"
STAFF_ID = "2000"
CUSTOMER_ID = "3000"
LINKED_ID = "5000"
LINKED_PHONE = "07709998888"


class FakeSender:
    """Records deliveries; raises TransportError for the first `failures` calls."""

    def __init__(self, failures: int = 0, kind: str = "timeout") -> None:
        self.failures = failures
        self.kind = kind
        self.calls = 0
        self.sent: list[tuple[str, dict]] = []

    def send(self, destination: str, payload: dict) -> None:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransportError("simulated outage", kind=self.kind)
        self.sent.append((destination, payload))

    def texts_to(self, destination: str) -> list[str]:
        return [payload["text"] for dest, payload in self.sent if dest == destination]


@pytest.fixture()
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'ledgerbot.db'}")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def sender():
    return FakeSender()


@pytest.fixture()
def audit(session_factory):
    return AuditService(session_factory)


@pytest.fixture()
def outbox(session_factory, sender):
    return OutboxDispatcher(session_factory, sender, max_retries=3, claim_timeout_seconds=0, service_name="test")


@pytest.fixture()
def identities(session_factory, audit):
    return IdentityService(session_factory, admin_external_id=ADMIN_ID, audit=audit)


@pytest.fixture()
def ledger(session_factory, outbox, audit):
    return LedgerService(session_factory, outbox=outbox, audit=audit)


@pytest.fixture()
def approvals(session_factory, outbox, audit):
    return ApprovalService(session_factory, outbox=outbox, audit=audit)


@pytest.fixture()
def intake(session_factory):
    return IntakeDeduplicator(session_factory, service_name="test")


@pytest.fixture()
def dispatcher(session_factory, identities, ledger, approvals, intake, outbox, audit):
    return CommandDispatcher(
        session_factory, identities, ledger, approvals, intake, outbox, audit=audit, service_name="test"
    )


@pytest.fixture()
def admin(identities):
    return identities.resolve(ADMIN_ID, display_name="Owner", chat_id=ADMIN_ID)


@pytest.fixture()
def staff(identities, admin):
    identities.set_role(admin, STAFF_ID, ROLE_STAFF)
    return identities.resolve(STAFF_ID, display_name="Clerk", chat_id=STAFF_ID)


@pytest.fixture()
def newcomer(identities):
    return identities.resolve(CUSTOMER_ID, display_name="Karwan", chat_id=CUSTOMER_ID)


@pytest.fixture()
def customer(identities, approvals, admin):
    """A second identity already linked through an approved request."""

    applicant = identities.resolve(LINKED_ID, display_name="Shilan", chat_id=LINKED_ID)
    request, _ = approvals.submit(applicant, LINKED_PHONE, "Shilan")
    approvals.approve(admin, request.id)
    return identities.get(LINKED_ID)
