"""
Invoicemonk - Payment & Receipt Models

Payments are append-only records of money received against an invoice.
Each payment produces exactly one receipt that snapshots issuer, payer,
invoice and payment details at the moment of payment.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AppendOnlyModel, JSONType

if TYPE_CHECKING:
    from app.models.invoice import Invoice


class Payment(AppendOnlyModel):
    """Money received against an invoice. Never edited or deleted."""

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
    )

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    payment_method: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    recorded_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="payments")
    receipt: Mapped[Optional["Receipt"]] = relationship(
        "Receipt",
        back_populates="payment",
        uselist=False,
    )


class Receipt(AppendOnlyModel):
    """
    Immutable receipt for a payment.

    Same immutability contract as an issued invoice: snapshots, hash and
    verification id are set at creation and never change.
    """

    __tablename__ = "receipts"

    receipt_number: Mapped[str] = mapped_column(String(60), nullable=False, index=True)
    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payments.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    issuer_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)
    payer_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)
    invoice_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)
    payment_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)

    receipt_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    verification_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, unique=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    issued_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    retention_locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="receipts")
    payment: Mapped["Payment"] = relationship("Payment", back_populates="receipt")
