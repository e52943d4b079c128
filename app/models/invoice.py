"""
Invoicemonk - Invoice Model

Invoice and line item models.

Compliance Features:
- Content is editable only while the invoice is a draft
- Issuance freezes issuer, recipient, template, tax schema and payment
  method data into versioned snapshots
- Issued invoices carry a SHA-256 tamper-evidence hash and a public
  verification id
- Voiding never deletes: a credit note compensates the original
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import AuditMixin, BaseModel, JSONType

if TYPE_CHECKING:
    from app.models.business import Business
    from app.models.client import Client
    from app.models.credit_note import CreditNote
    from app.models.payment import Payment, Receipt


class InvoiceStatus(str, Enum):
    """Invoice status workflow."""
    DRAFT = "draft"           # Editable, no legal weight
    ISSUED = "issued"         # Snapshotted, hashed, immutable
    SENT = "sent"             # Delivered to the client
    VIEWED = "viewed"         # Opened by the client
    PAID = "paid"             # Payments cover the total
    VOIDED = "voided"         # Compensated by a credit note
    CREDITED = "credited"     # Fully credited


# Statuses in which payments may be recorded and the invoice may be voided.
OPEN_STATUSES = (InvoiceStatus.ISSUED, InvoiceStatus.SENT, InvoiceStatus.VIEWED)

# Allowed status transitions outside issuance, payment and void.
DELIVERY_TRANSITIONS = {
    InvoiceStatus.SENT: (InvoiceStatus.ISSUED,),
    InvoiceStatus.VIEWED: (InvoiceStatus.ISSUED, InvoiceStatus.SENT),
}

# Columns that may still change once an invoice has left draft.
MUTABLE_AFTER_ISSUE = frozenset({
    "status",
    "amount_paid",
    "voided_at",
    "voided_by",
    "void_reason",
    "updated_at",
    "updated_by_id",
})


class Invoice(BaseModel, AuditMixin):
    """
    Invoice model.

    All content fields become immutable once status leaves DRAFT; only
    status-transition metadata and amount_paid may change afterwards.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("business_id", "invoice_number", name="uq_invoices_business_number"),
        CheckConstraint("subtotal >= 0", name="subtotal_non_negative"),
        CheckConstraint("tax_amount >= 0", name="tax_amount_non_negative"),
        CheckConstraint("total_amount >= 0", name="total_amount_non_negative"),
        CheckConstraint("amount_paid >= 0", name="amount_paid_non_negative"),
    )

    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("clients.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Status
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus),
        default=InvoiceStatus.DRAFT,
        nullable=False,
        index=True,
    )

    # Dates
    issue_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Amounts
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # References resolved into snapshots at issuance
    template_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    payment_method_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment_methods.id", ondelete="SET NULL"),
        nullable=True,
    )

    # ===========================================
    # ISSUANCE (set once, by the issue transition)
    # ===========================================

    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    issued_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    issuer_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    recipient_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    template_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    tax_schema_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    payment_method_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    invoice_hash: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="SHA-256 over invoice number, total and issuance timestamp",
    )
    verification_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        unique=True,
        comment="Public lookup id for the verification portal",
    )
    retention_locked_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ===========================================
    # VOID
    # ===========================================

    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    business: Mapped["Business"] = relationship("Business", back_populates="invoices")
    client: Mapped["Client"] = relationship("Client")
    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.sort_order",
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.created_at",
    )
    receipts: Mapped[List["Receipt"]] = relationship(
        "Receipt",
        back_populates="invoice",
        order_by="Receipt.created_at",
    )
    credit_note: Mapped[Optional["CreditNote"]] = relationship(
        "CreditNote",
        back_populates="original_invoice",
        uselist=False,
    )

    @property
    def balance_due(self) -> Decimal:
        """Outstanding amount; never negative."""
        balance = (self.total_amount or Decimal("0")) - (self.amount_paid or Decimal("0"))
        return max(balance, Decimal("0.00"))

    @property
    def is_editable(self) -> bool:
        return self.status == InvoiceStatus.DRAFT

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number={self.invoice_number}, status={self.status})>"


class InvoiceLineItem(BaseModel):
    """Invoice line item; frozen with its invoice at issuance."""

    __tablename__ = "invoice_line_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="quantity_positive"),
        CheckConstraint("unit_price >= 0", name="unit_price_non_negative"),
    )

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        nullable=False,
        comment="quantity x unit_price, before tax",
    )

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")
