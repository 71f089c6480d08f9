"""Write-only audit sink for role changes, ledger writes, decisions and errors."""

import traceback

from sqlalchemy import select

from ledgerbot.common.logging import logger
from ledgerbot.services.audit.models import AuditRecord


class AuditAction:
    """Action names stored in `audit_records.action`."""

    START = "START"
    ADMIN_BOOTSTRAP = "ADMIN_BOOTSTRAP"
    ROLE_CHANGED = "ROLE_CHANGED"
    STATUS_CHANGED = "STATUS_CHANGED"
    LEDGER_ENTRY = "LEDGER_ENTRY"
    CUSTOMER_REGISTERED = "CUSTOMER_REGISTERED"
    CUSTOMER_DELETED = "CUSTOMER_DELETED"
    LINK_REQUESTED = "LINK_REQUESTED"
    APPROVAL_DECIDED = "APPROVAL_DECIDED"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    ERROR = "ERROR"


class AuditService:
    """Appends audit rows; never updates or deletes them."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def log(
        self,
        db,
        action: str,
        actor: str | None = None,
        entity: str | None = None,
        entity_id=None,
        ok: bool = True,
        error: str | None = None,
        meta: dict | None = None,
    ) -> None:
        """Add an audit row to the caller's unit of work."""

        db.add(
            AuditRecord(
                actor=actor,
                action=action,
                entity=entity,
                entity_id=str(entity_id) if entity_id is not None else None,
                ok=ok,
                error=error,
                meta=meta,
            )
        )

    def log_now(self, action: str, **fields) -> None:
        """Write one audit row in its own transaction."""

        with self.session_factory() as db:
            self.log(db, action, **fields)
            db.commit()

    def log_error(self, actor: str | None, where: str, exc: BaseException, meta: dict | None = None) -> None:
        """Record an unexpected failure with its traceback."""

        detail = dict(meta or {})
        detail["exception_type"] = type(exc).__name__
        detail["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))[-4000:]
        try:
            self.log_now(
                AuditAction.ERROR,
                actor=actor,
                entity=where,
                ok=False,
                error=str(exc) or type(exc).__name__,
                meta=detail,
            )
        except Exception:
            # Audit storage itself is down; the log line is all that is left.
            logger.exception("audit_write_failed where=%s error=%s", where, exc)

    def recent(self, limit: int = 50, action: str | None = None) -> list[AuditRecord]:
        with self.session_factory() as db:
            query = select(AuditRecord).order_by(AuditRecord.id.desc()).limit(limit)
            if action is not None:
                query = query.where(AuditRecord.action == action)
            return db.execute(query).scalars().all()
