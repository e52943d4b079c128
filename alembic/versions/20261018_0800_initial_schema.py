"""Initial schema - invoices, snapshots, payments, receipts, credit notes, audit chain

Revision ID: 20261018_0800_initial_schema
Revises:
Create Date: 2026-10-18 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op

from app.database import Base
import app.models  # noqa: F401

# revision identifiers, used by Alembic.
revision: str = '20261018_0800_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Baseline: every table declared on the models at this revision.
    Base.metadata.create_all(bind=op.get_bind())


def downgrade() -> None:
    Base.metadata.drop_all(bind=op.get_bind())
