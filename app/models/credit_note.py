"""
Invoicemonk - Credit Note Model

Compensating document created as a side effect of voiding an issued
invoice. Append-only: rows are never updated or deleted.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AppendOnlyModel

if TYPE_CHECKING:
    from app.models.invoice import Invoice


class CreditNote(AppendOnlyModel):
    """
    Credit note reversing a voided invoice.

    At most one per invoice (unique original_invoice_id). The amount is the
    invoice total at the moment of voiding, not recomputed from line items.
    """

    __tablename__ = "credit_notes"

    original_invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    credit_note_number: Mapped[str] = mapped_column(String(60), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    credit_note_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    verification_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, unique=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    issued_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    original_invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="credit_note")
