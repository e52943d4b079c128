"""Invoice immutability triggers - database-level guard for issued documents

Revision ID: 20261018_0900_immutability_triggers
Revises: 20261018_0800_initial_schema
Create Date: 2026-10-18 09:00:00.000000

Mirrors the ORM listeners in app.models.immutability so raw SQL cannot
edit issued invoices, their line items or any append-only record.
PostgreSQL only; SQLite deployments rely on the ORM listeners.
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '20261018_0900_immutability_triggers'
down_revision: Union[str, None] = '20261018_0800_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum columns store member names.
DRAFT = 'DRAFT'

FROZEN_INVOICE_COLUMNS = [
    'business_id',
    'client_id',
    'invoice_number',
    'issue_date',
    'due_date',
    'currency',
    'subtotal',
    'tax_amount',
    'discount_amount',
    'total_amount',
    'notes',
    'terms',
    'template_id',
    'payment_method_id',
    'issued_at',
    'issued_by',
    'issuer_snapshot',
    'recipient_snapshot',
    'template_snapshot',
    'tax_schema_snapshot',
    'payment_method_snapshot',
    'invoice_hash',
    'verification_id',
    'retention_locked_until',
    'created_at',
    'created_by_id',
]

APPEND_ONLY_TABLES = ['audit_logs', 'credit_notes', 'payments', 'receipts']


def _frozen_condition() -> str:
    return '\n            OR '.join(
        f'NEW.{column} IS DISTINCT FROM OLD.{column}' for column in FROZEN_INVOICE_COLUMNS
    )


def upgrade() -> None:
    if op.get_bind().dialect.name != 'postgresql':
        return

    # =====================================================
    # INVOICES - frozen once issued, never deleted
    # =====================================================
    op.execute(f"""
        CREATE OR REPLACE FUNCTION invoicemonk_guard_invoice_update() RETURNS trigger AS $$
        BEGIN
            IF OLD.status <> '{DRAFT}' AND NEW.status = '{DRAFT}' THEN
                RAISE EXCEPTION 'invoice % cannot return to draft', OLD.id
                    USING ERRCODE = 'integrity_constraint_violation';
            END IF;
            IF OLD.status <> '{DRAFT}' AND (
            {_frozen_condition()}
            ) THEN
                RAISE EXCEPTION 'issued invoice % is immutable', OLD.id
                    USING ERRCODE = 'integrity_constraint_violation';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_invoices_guard_update
        BEFORE UPDATE ON invoices
        FOR EACH ROW EXECUTE FUNCTION invoicemonk_guard_invoice_update();
    """)

    op.execute(f"""
        CREATE OR REPLACE FUNCTION invoicemonk_guard_invoice_delete() RETURNS trigger AS $$
        BEGIN
            IF OLD.status <> '{DRAFT}' THEN
                RAISE EXCEPTION 'issued invoice % cannot be deleted', OLD.id
                    USING ERRCODE = 'integrity_constraint_violation';
            END IF;
            RETURN OLD;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_invoices_guard_delete
        BEFORE DELETE ON invoices
        FOR EACH ROW EXECUTE FUNCTION invoicemonk_guard_invoice_delete();
    """)

    # =====================================================
    # LINE ITEMS - frozen with their invoice
    # =====================================================
    op.execute(f"""
        CREATE OR REPLACE FUNCTION invoicemonk_guard_line_item() RETURNS trigger AS $$
        DECLARE
            parent_status text;
        BEGIN
            SELECT status INTO parent_status FROM invoices
            WHERE id = COALESCE(NEW.invoice_id, OLD.invoice_id);
            IF parent_status IS NOT NULL AND parent_status <> '{DRAFT}' THEN
                RAISE EXCEPTION 'line items of issued invoice % are immutable',
                    COALESCE(NEW.invoice_id, OLD.invoice_id)
                    USING ERRCODE = 'integrity_constraint_violation';
            END IF;
            IF TG_OP = 'DELETE' THEN
                RETURN OLD;
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trg_invoice_line_items_guard
        BEFORE INSERT OR UPDATE OR DELETE ON invoice_line_items
        FOR EACH ROW EXECUTE FUNCTION invoicemonk_guard_line_item();
    """)

    # =====================================================
    # APPEND-ONLY TABLES
    # =====================================================
    op.execute("""
        CREATE OR REPLACE FUNCTION invoicemonk_reject_modification() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% on % is not allowed: table is append-only', TG_OP, TG_TABLE_NAME
                USING ERRCODE = 'integrity_constraint_violation';
        END;
        $$ LANGUAGE plpgsql;
    """)
    for table in APPEND_ONLY_TABLES:
        op.execute(f"""
            CREATE TRIGGER trg_{table}_append_only
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW EXECUTE FUNCTION invoicemonk_reject_modification();
        """)


def downgrade() -> None:
    if op.get_bind().dialect.name != 'postgresql':
        return

    for table in APPEND_ONLY_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_append_only ON {table};")
    op.execute("DROP TRIGGER IF EXISTS trg_invoice_line_items_guard ON invoice_line_items;")
    op.execute("DROP TRIGGER IF EXISTS trg_invoices_guard_delete ON invoices;")
    op.execute("DROP TRIGGER IF EXISTS trg_invoices_guard_update ON invoices;")

    op.execute("DROP FUNCTION IF EXISTS invoicemonk_reject_modification();")
    op.execute("DROP FUNCTION IF EXISTS invoicemonk_guard_line_item();")
    op.execute("DROP FUNCTION IF EXISTS invoicemonk_guard_invoice_delete();")
    op.execute("DROP FUNCTION IF EXISTS invoicemonk_guard_invoice_update();")
