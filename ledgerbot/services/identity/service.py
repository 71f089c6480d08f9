"""Identity & role registry.

Resolution is fetch-or-create with an explicit per-field merge policy, and
re-applies the configured-admin invariant every time so the store can never
end up without an administrator.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ledgerbot.common.errors import NotFound, ValidationError
from ledgerbot.common.logging import logger
from ledgerbot.services.audit.service import AuditAction, AuditService
from ledgerbot.services.identity.capabilities import LOCK_USERS, MANAGE_STAFF, require
from ledgerbot.services.identity.models import (
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_UNAFFILIATED,
    ROLES,
    STATUS_ACTIVE,
    STATUSES,
    Identity,
)


def bootstrap_role(external_id: str, admin_external_id: str | None, role: str, status: str) -> tuple[str, str]:
    """Effective (role, status) for an identity given the configured admin id."""

    if admin_external_id and str(external_id) == str(admin_external_id):
        return ROLE_ADMIN, STATUS_ACTIVE
    return role, status


def _merge_profile(identity: Identity, display_name: str | None, username: str | None, chat_id: str | None) -> None:
    # display_name/username: coalesce. chat_id: overwrite when known.
    # role, status and phone are never touched by resolution.
    if display_name:
        identity.display_name = display_name
    if username:
        identity.username = username
    if chat_id is not None:
        identity.chat_id = str(chat_id)


class IdentityService:
    """Maps external actor ids to roles and lifecycle status."""

    def __init__(self, session_factory, admin_external_id: str | None = None, audit: AuditService | None = None) -> None:
        self.session_factory = session_factory
        self.admin_external_id = str(admin_external_id) if admin_external_id else None
        self.audit = audit or AuditService(session_factory)

    def _get_or_create(self, db, external_id: str) -> tuple[Identity, bool]:
        identity = db.execute(select(Identity).where(Identity.external_id == external_id)).scalar_one_or_none()
        if identity is not None:
            return identity, False
        identity = Identity(external_id=external_id, role=ROLE_UNAFFILIATED, status=STATUS_ACTIVE)
        db.add(identity)
        db.flush()
        return identity, True

    def _enforce_bootstrap(self, db, identity: Identity) -> None:
        role, status = bootstrap_role(identity.external_id, self.admin_external_id, identity.role, identity.status)
        if (role, status) == (identity.role, identity.status):
            return
        self.audit.log(
            db,
            AuditAction.ADMIN_BOOTSTRAP,
            actor="system",
            entity="identities",
            entity_id=identity.external_id,
            meta={"from_role": identity.role, "from_status": identity.status},
        )
        logger.warning(
            "admin_bootstrap_enforced external_id=%s from_role=%s from_status=%s",
            identity.external_id,
            identity.role,
            identity.status,
        )
        identity.role = role
        identity.status = status

    def resolve(
        self,
        external_id,
        display_name: str | None = None,
        username: str | None = None,
        chat_id=None,
    ) -> Identity:
        """Fetch-or-create the identity for `external_id`.

        A concurrent first contact for the same id loses the insert race with
        an IntegrityError; the unit of work is retried once and takes the
        update branch.
        """

        external_id = str(external_id)
        for attempt in range(2):
            try:
                with self.session_factory() as db:
                    identity, created = self._get_or_create(db, external_id)
                    _merge_profile(identity, display_name, username, chat_id)
                    self._enforce_bootstrap(db, identity)
                    db.commit()
                break
            except IntegrityError:
                if attempt:
                    raise
                logger.info("identity_create_race external_id=%s", external_id)

        if created:
            logger.info("identity_created external_id=%s role=%s", external_id, identity.role)
        return identity

    def ensure_admin(self) -> Identity | None:
        """Startup bootstrap of the configured admin (private chat id == user id)."""

        if not self.admin_external_id:
            logger.warning("no admin_external_id configured")
            return None
        return self.resolve(self.admin_external_id, chat_id=self.admin_external_id)

    def get(self, external_id) -> Identity | None:
        with self.session_factory() as db:
            return db.execute(
                select(Identity).where(Identity.external_id == str(external_id))
            ).scalar_one_or_none()

    def admins(self) -> list[Identity]:
        """Active admins that can be reached."""

        with self.session_factory() as db:
            return (
                db.execute(
                    select(Identity)
                    .where(
                        Identity.role == ROLE_ADMIN,
                        Identity.status == STATUS_ACTIVE,
                        Identity.chat_id.is_not(None),
                    )
                    .order_by(Identity.id)
                )
                .scalars()
                .all()
            )

    @staticmethod
    def holder_of(db, phone: str) -> Identity | None:
        return db.execute(select(Identity).where(Identity.phone == phone)).scalar_one_or_none()

    def _guard_configured_admin(self, target_external_id: str, role: str, status: str) -> None:
        if self.admin_external_id and target_external_id == self.admin_external_id:
            if (role, status) != (ROLE_ADMIN, STATUS_ACTIVE):
                raise ValidationError("the configured administrator cannot be demoted or locked")

    def set_role(self, actor: Identity, target_external_id, role: str) -> Identity:
        """Admin action; creates the target if it never contacted the bot."""

        require(actor, MANAGE_STAFF)
        if role not in ROLES:
            raise ValidationError(f"unknown role: {role}")
        target_external_id = str(target_external_id)
        with self.session_factory() as db:
            target, _ = self._get_or_create(db, target_external_id)
            self._guard_configured_admin(target_external_id, role, target.status)
            previous = target.role
            target.role = role
            self.audit.log(
                db,
                AuditAction.ROLE_CHANGED,
                actor=actor.external_id,
                entity="identities",
                entity_id=target_external_id,
                meta={"from": previous, "to": role},
            )
            db.commit()
            logger.info("role_changed target=%s from=%s to=%s", target_external_id, previous, role)
            return target

    def revoke_staff(self, actor: Identity, target_external_id) -> Identity:
        """Drop a staff member back to customer (if phone-bound) or unaffiliated."""

        target = self.get(target_external_id)
        if target is None:
            raise NotFound(f"identity {target_external_id}")
        role = ROLE_CUSTOMER if target.phone else ROLE_UNAFFILIATED
        return self.set_role(actor, target_external_id, role)

    def set_status(self, actor: Identity, target_external_id, status: str) -> Identity:
        require(actor, LOCK_USERS)
        if status not in STATUSES:
            raise ValidationError(f"unknown status: {status}")
        target_external_id = str(target_external_id)
        with self.session_factory() as db:
            target = db.execute(
                select(Identity).where(Identity.external_id == target_external_id)
            ).scalar_one_or_none()
            if target is None:
                raise NotFound(f"identity {target_external_id}")
            self._guard_configured_admin(target_external_id, target.role, status)
            previous = target.status
            target.status = status
            self.audit.log(
                db,
                AuditAction.STATUS_CHANGED,
                actor=actor.external_id,
                entity="identities",
                entity_id=target_external_id,
                meta={"from": previous, "to": status},
            )
            db.commit()
            logger.info("status_changed target=%s from=%s to=%s", target_external_id, previous, status)
            return target
