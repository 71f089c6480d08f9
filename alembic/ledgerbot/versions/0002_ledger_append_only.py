"""reject updates to ledger entries

Revision ID: 0002_ledger_append_only
Revises: 0001_ledgerbot
Create Date: 2026-10-18

Entries may still be deleted together with their customer (admin
`/deletecustomer`); they can never be edited in place.
"""

from alembic import op


revision = "0002_ledger_append_only"
down_revision = "0001_ledgerbot"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_ledger_entry_update()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'ledger_entries is append-only; % is not allowed', TG_OP;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_ledger_entries_append_only
        BEFORE UPDATE ON ledger_entries
        FOR EACH ROW
        EXECUTE FUNCTION prevent_ledger_entry_update();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_ledger_entries_append_only ON ledger_entries;")
    op.execute("DROP FUNCTION IF EXISTS prevent_ledger_entry_update();")
