"""Role to capability mapping. A locked identity holds no capability at all."""

from ledgerbot.common.errors import AuthorizationError
from ledgerbot.services.identity.models import (
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_STAFF,
    ROLE_UNAFFILIATED,
    STATUS_ACTIVE,
)

READ_OWN = "read-own"
READ_ANY = "read-any"
WRITE_LEDGER = "write-ledger"
MANAGE_STAFF = "manage-staff"
MANAGE_APPROVALS = "manage-approvals"
LOCK_USERS = "lock-users"
DELETE_CUSTOMERS = "delete-customers"
REQUEST_LINK = "request-link"

ALL_CAPABILITIES = frozenset(
    {READ_OWN, READ_ANY, WRITE_LEDGER, MANAGE_STAFF, MANAGE_APPROVALS, LOCK_USERS, DELETE_CUSTOMERS}
)

ROLE_CAPABILITIES: dict[str, frozenset[str]] = {
    ROLE_UNAFFILIATED: frozenset({REQUEST_LINK}),
    ROLE_CUSTOMER: frozenset({READ_OWN, REQUEST_LINK}),
    ROLE_STAFF: frozenset({READ_ANY, WRITE_LEDGER}),
    ROLE_ADMIN: ALL_CAPABILITIES,
}


def capabilities_for(role: str, status: str) -> frozenset[str]:
    if status != STATUS_ACTIVE:
        return frozenset()
    return ROLE_CAPABILITIES.get(role, frozenset())


def authorize(identity, capability: str) -> bool:
    """True when the identity's role grants `capability` and it is not locked."""

    if identity is None:
        return False
    return capability in capabilities_for(identity.role, identity.status)


def require(identity, capability: str) -> None:
    if not authorize(identity, capability):
        raise AuthorizationError(capability, actor=getattr(identity, "external_id", None))
