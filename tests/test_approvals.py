"""Approval workflow: submit, decide once, phone binding and transfer."""

import inspect

import pytest
from sqlalchemy import func, select

from ledgerbot.common import notices
from ledgerbot.common.errors import AlreadyResolved, AuthorizationError, NotFound, ValidationError
from ledgerbot.services.approvals import service as approval_service
from ledgerbot.services.approvals.models import ApprovalRequest
from ledgerbot.services.audit.service import AuditAction
from ledgerbot.services.identity.models import Identity
from ledgerbot.services.ledger import service as ledger_service

from conftest import ADMIN_ID, CUSTOMER_ID

PHONE = "07501234567"


def count_requests(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(ApprovalRequest)).scalar_one()


def test_submit_notifies_admins(approvals, admin, newcomer, sender):
    """A new request is PENDING and every reachable admin gets the approve/reject commands."""

    request, created = approvals.submit(newcomer, "750 123 4567", "Karwan Ali")
    assert created
    assert request.status == "PENDING"
    assert request.phone == PHONE
    texts = sender.texts_to(ADMIN_ID)
    assert len(texts) == 1
    assert f"/approve {request.id}" in texts[0] and f"/reject {request.id}" in texts[0]


def test_duplicate_submit_returns_open_request(approvals, admin, newcomer, session_factory):
    """Re-submitting the same phone while pending does not create a second request."""

    first, _ = approvals.submit(newcomer, PHONE, "Karwan")
    again, created = approvals.submit(newcomer, PHONE, "Karwan")
    assert not created
    assert again.id == first.id
    assert count_requests(session_factory) == 1


def test_submit_validation(approvals, newcomer):
    """Bad phone or empty name is refused."""

    with pytest.raises(ValidationError):
        approvals.submit(newcomer, "123", "Karwan")
    with pytest.raises(ValidationError):
        approvals.submit(newcomer, PHONE, "   ")


def test_approve_binds_requester(approvals, admin, newcomer, identities, ledger, sender):
    """Approval creates the customer and binds the requester as an active customer."""

    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    decided = approvals.approve(admin, request.id)
    assert decided.status == "APPROVED"
    assert decided.resolved_by == ADMIN_ID

    identity = identities.get(CUSTOMER_ID)
    assert (identity.role, identity.status, identity.phone) == ("customer", "active", PHONE)
    customer = ledger.get_customer(PHONE)
    assert customer.origin == "approval" and customer.full_name == "Karwan"
    assert any(PHONE in text for text in sender.texts_to(CUSTOMER_ID))


def test_reject_changes_no_binding(approvals, admin, newcomer, identities, ledger, sender):
    """Rejection only closes the request and tells the requester."""

    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    assert approvals.reject(admin, request.id).status == "REJECTED"
    assert identities.get(CUSTOMER_ID).phone is None
    assert ledger.get_customer(PHONE) is None
    assert any("rejected" in text for text in sender.texts_to(CUSTOMER_ID))


@pytest.mark.parametrize("first, second", [("approve", "approve"), ("approve", "reject"), ("reject", "approve")])
def test_decisions_are_terminal(approvals, admin, newcomer, audit, first, second):
    """A decided request refuses any further decision without writing anything."""

    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    getattr(approvals, first)(admin, request.id)
    decisions_before = len(audit.recent(action=AuditAction.APPROVAL_DECIDED))

    with pytest.raises(AlreadyResolved):
        getattr(approvals, second)(admin, request.id)
    assert len(audit.recent(action=AuditAction.APPROVAL_DECIDED)) == decisions_before
    assert approvals.get(request.id).status == ("APPROVED" if first == "approve" else "REJECTED")


def test_resubmit_after_decision_opens_new_request(approvals, admin, newcomer, session_factory):
    """The one-pending-per-pair rule frees up once the request is decided."""

    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    approvals.reject(admin, request.id)
    again, created = approvals.submit(newcomer, PHONE, "Karwan")
    assert created and again.id != request.id
    assert count_requests(session_factory) == 2


def test_decide_gating(approvals, admin, staff, newcomer, customer):
    """Unaffiliated, customer and staff identities cannot decide."""

    assert customer.role == "customer"
    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    for actor in (newcomer, customer, staff):
        with pytest.raises(AuthorizationError):
            approvals.approve(actor, request.id)
        with pytest.raises(AuthorizationError):
            approvals.reject(actor, request.id)
        with pytest.raises(AuthorizationError):
            approvals.pending(actor)
    assert [r.id for r in approvals.pending(admin)] == [request.id]


def test_locked_admin_cannot_decide(approvals, admin, newcomer):
    """Locked status overrides the admin role."""

    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    locked = Identity(external_id="77", role="admin", status="locked")
    with pytest.raises(AuthorizationError):
        approvals.approve(locked, request.id)


def test_unknown_or_malformed_request(approvals, admin):
    """Missing ids are NotFound; non-numeric ids are ValidationError."""

    with pytest.raises(NotFound):
        approvals.approve(admin, 999)
    with pytest.raises(ValidationError):
        approvals.reject(admin, "abc")


def test_approve_transfers_phone_from_previous_holder(approvals, admin, newcomer, identities):
    """The phone moves to the new requester; the old holder is unlinked."""

    first, _ = approvals.submit(newcomer, PHONE, "Karwan")
    approvals.approve(admin, first.id)

    other = identities.resolve("4000", display_name="Dara", chat_id="4000")
    second, _ = approvals.submit(other, PHONE, "Dara")
    approvals.approve(admin, second.id)

    assert identities.get("4000").phone == PHONE
    previous = identities.get(CUSTOMER_ID)
    assert previous.phone is None
    assert previous.role == "unaffiliated"


def test_relink_audits_previous_balance(approvals, admin, staff, newcomer, identities, ledger, audit):
    """Moving a customer to a new phone records the balance left on the old one."""

    first, _ = approvals.submit(newcomer, PHONE, "Karwan")
    approvals.approve(admin, first.id)
    ledger.record(staff, PHONE, "debt", 9000, "IQD")

    customer = identities.get(CUSTOMER_ID)
    second, _ = approvals.submit(customer, "07701112222", "Karwan")
    approvals.approve(admin, second.id)

    assert identities.get(CUSTOMER_ID).phone == "07701112222"
    latest = audit.recent(action=AuditAction.APPROVAL_DECIDED)[0]
    assert latest.meta["previous_phone"] == PHONE
    assert latest.meta["previous_phone_balances"] == {"IQD": 9000}


def test_submit_for_own_phone_is_refused(approvals, admin, newcomer, identities):
    """Linking the phone already bound is a validation error."""

    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    approvals.approve(admin, request.id)
    with pytest.raises(ValidationError):
        approvals.submit(identities.get(CUSTOMER_ID), PHONE, "Karwan")


def test_approve_sets_customer_role_after_promotion(approvals, admin, newcomer, identities, audit):
    """A requester promoted while the request was open still ends up a customer."""

    request, _ = approvals.submit(newcomer, PHONE, "Karwan")
    identities.set_role(admin, CUSTOMER_ID, "staff")
    approvals.approve(admin, request.id)

    identity = identities.get(CUSTOMER_ID)
    assert (identity.role, identity.status, identity.phone) == ("customer", "active", PHONE)
    latest = audit.recent(action=AuditAction.APPROVAL_DECIDED)[0]
    assert latest.meta["previous_role"] == "staff"


def test_core_services_build_their_own_notices(approvals, admin, newcomer, sender):
    """Ledger and approvals take notification texts from common, not from the bot package."""

    for module in (approval_service, ledger_service):
        assert "ledgerbot.services.bot" not in inspect.getsource(module)
    request, _ = approvals.submit(newcomer, PHONE, "Karwan <b>")
    assert sender.texts_to(ADMIN_ID) == [notices.link_request_for_admin(request.id, PHONE, "Karwan <b>", CUSTOMER_ID)]
