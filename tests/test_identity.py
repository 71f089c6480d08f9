"""Identity resolution, admin bootstrap and capability checks."""

import pytest
from sqlalchemy import select

from ledgerbot.common.errors import AuthorizationError, NotFound, ValidationError
from ledgerbot.services.audit.service import AuditAction
from ledgerbot.services.identity.capabilities import (
    DELETE_CUSTOMERS,
    MANAGE_APPROVALS,
    READ_ANY,
    READ_OWN,
    REQUEST_LINK,
    WRITE_LEDGER,
    authorize,
    capabilities_for,
    require,
)
from ledgerbot.services.identity.models import Identity
from ledgerbot.services.identity.service import bootstrap_role

from conftest import ADMIN_ID, STAFF_ID


def test_bootstrap_role_is_pure():
    """Only the configured id is forced to admin/active."""

    assert bootstrap_role("1", "1", "customer", "locked") == ("admin", "active")
    assert bootstrap_role("2", "1", "customer", "locked") == ("customer", "locked")
    assert bootstrap_role("1", None, "staff", "active") == ("staff", "active")


def test_new_identity_is_unaffiliated(identities):
    """First contact creates an active, unaffiliated identity."""

    identity = identities.resolve("555", display_name="Hawre", chat_id=555)
    assert (identity.role, identity.status, identity.phone) == ("unaffiliated", "active", None)
    assert identity.chat_id == "555"


def test_resolve_merge_policy(identities):
    """Names coalesce, chat id is overwritten, role is left alone."""

    identities.resolve("555", display_name="Hawre", username="hawre", chat_id=1)
    identity = identities.resolve("555", display_name=None, username=None, chat_id=2)
    assert identity.display_name == "Hawre"
    assert identity.username == "hawre"
    assert identity.chat_id == "2"
    assert identity.role == "unaffiliated"


def test_tampered_admin_is_restored(identities, session_factory, audit):
    """Resolving the configured admin always yields admin/active, and the repair is audited."""

    identities.resolve(ADMIN_ID)
    with session_factory() as db:
        row = db.execute(select(Identity).where(Identity.external_id == ADMIN_ID)).scalar_one()
        row.role, row.status = "customer", "locked"
        db.commit()

    identity = identities.resolve(ADMIN_ID)
    assert (identity.role, identity.status) == ("admin", "active")
    assert audit.recent(action=AuditAction.ADMIN_BOOTSTRAP)


def test_ensure_admin_creates_reachable_admin(identities):
    """Startup bootstrap creates the admin with its private chat id."""

    admin = identities.ensure_admin()
    assert admin.role == "admin"
    assert [a.external_id for a in identities.admins()] == [ADMIN_ID]


def test_capability_matrix():
    """Role grants follow the documented table."""

    assert capabilities_for("unaffiliated", "active") == {REQUEST_LINK}
    assert capabilities_for("customer", "active") == {READ_OWN, REQUEST_LINK}
    assert capabilities_for("staff", "active") == {READ_ANY, WRITE_LEDGER}
    assert DELETE_CUSTOMERS in capabilities_for("admin", "active")
    assert REQUEST_LINK not in capabilities_for("admin", "active")


@pytest.mark.parametrize("role", ["unaffiliated", "customer", "staff", "admin"])
def test_locked_revokes_everything(role):
    """A locked identity holds no capability whatever its role."""

    identity = Identity(external_id="9", role=role, status="locked")
    assert capabilities_for(role, "locked") == frozenset()
    assert not authorize(identity, WRITE_LEDGER)
    with pytest.raises(AuthorizationError):
        require(identity, MANAGE_APPROVALS)


def test_set_role_requires_admin(identities, staff, admin):
    """Staff cannot promote; admin can, and the change is audited."""

    with pytest.raises(AuthorizationError):
        identities.set_role(staff, "777", "staff")
    target = identities.set_role(admin, "777", "staff")
    assert target.role == "staff"
    assert identities.get("777").role == "staff"


def test_revoke_staff(identities, admin, staff):
    """Removing staff drops to unaffiliated when no phone is bound."""

    assert identities.revoke_staff(admin, STAFF_ID).role == "unaffiliated"
    with pytest.raises(NotFound):
        identities.revoke_staff(admin, "424242")


def test_lock_and_unlock(identities, admin, staff):
    """Locking strips capabilities until unlocked."""

    identities.set_status(admin, STAFF_ID, "locked")
    assert not authorize(identities.get(STAFF_ID), WRITE_LEDGER)
    identities.set_status(admin, STAFF_ID, "active")
    assert authorize(identities.get(STAFF_ID), WRITE_LEDGER)
    with pytest.raises(NotFound):
        identities.set_status(admin, "424242", "locked")


def test_configured_admin_cannot_be_demoted(identities, admin):
    """The bootstrap admin is protected from demotion and locking."""

    with pytest.raises(ValidationError):
        identities.set_role(admin, ADMIN_ID, "staff")
    with pytest.raises(ValidationError):
        identities.set_status(admin, ADMIN_ID, "locked")
