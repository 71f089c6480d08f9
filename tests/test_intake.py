"""Intake deduplication by transport update id."""

from sqlalchemy import func, select

from ledgerbot.services.intake.models import ProcessedUpdate
from ledgerbot.services.intake.service import IntakeDeduplicator


def test_first_sighting_wins(intake, session_factory):
    """The first mark_seen returns True, every repeat returns False."""

    assert intake.mark_seen(42)
    assert not intake.mark_seen(42)
    assert not intake.mark_seen("42")
    assert intake.mark_seen(43)
    with session_factory() as db:
        assert db.execute(select(func.count()).select_from(ProcessedUpdate)).scalar_one() == 2


def test_independent_guards_share_the_store(intake, session_factory):
    """A second deduplicator on the same store (another worker) also sees the marker."""

    assert intake.mark_seen("abc")
    assert not IntakeDeduplicator(session_factory).mark_seen("abc")
