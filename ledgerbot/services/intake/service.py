"""At-most-once intake of transport updates."""

from sqlalchemy.exc import IntegrityError

from ledgerbot.common.config import settings
from ledgerbot.common.logging import logger
from ledgerbot.common.metrics import duplicate_updates_skipped_total
from ledgerbot.services.intake.models import ProcessedUpdate


class IntakeDeduplicator:
    """Insert-or-fail guard keyed by the update id.

    The first caller to commit the row wins; every later delivery of the same
    id (retry, redelivery, concurrent worker) gets False. The row is committed
    before any handler runs, so a crash mid-handler drops that update instead
    of applying it twice.
    """

    def __init__(self, session_factory, service_name: str | None = None) -> None:
        self.session_factory = session_factory
        self.service_name = service_name or settings.service_name

    def mark_seen(self, update_id) -> bool:
        update_id = str(update_id)
        try:
            with self.session_factory() as db:
                db.add(ProcessedUpdate(update_id=update_id))
                db.commit()
        except IntegrityError:
            duplicate_updates_skipped_total.labels(service=self.service_name).inc()
            logger.info("duplicate update skipped update_id=%s", update_id)
            return False
        return True
