"""Alembic environment bound to the application's settings and metadata."""

from logging.config import fileConfig

from alembic import context

from ledgerbot.common.config import settings
from ledgerbot.common.db import Base, make_engine
from ledgerbot.services.approvals import models as approval_models  # noqa: F401
from ledgerbot.services.audit import models as audit_models  # noqa: F401
from ledgerbot.services.identity import models as identity_models  # noqa: F401
from ledgerbot.services.intake import models as intake_models  # noqa: F401
from ledgerbot.services.ledger import models as ledger_models  # noqa: F401
from ledgerbot.services.outbox import models as outbox_models  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(url=settings.database_url, target_metadata=target_metadata, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = make_engine(settings.database_url)
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
