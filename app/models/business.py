"""
Invoicemonk - Business Model

The issuing business and the business-owned reference data (templates,
payment methods) that is frozen onto invoices at issuance.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, JSONType

if TYPE_CHECKING:
    from app.models.client import Client
    from app.models.invoice import Invoice
    from app.models.subscription import Subscription
    from app.models.user import BusinessMember


class Business(BaseModel):
    """
    Business (tenant) that issues invoices.

    Legal identity fields here are mutable; an issued invoice keeps the
    values captured in its issuer snapshot.
    """

    __tablename__ = "businesses"

    # Legal identity
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    legal_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tax_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    cac_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Company registration number",
    )
    vat_registration_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_vat_registered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Contact
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    jurisdiction: Mapped[str] = mapped_column(String(2), default="NG", nullable=False)

    # ===========================================
    # NUMBERING
    # ===========================================
    invoice_prefix: Mapped[str] = mapped_column(String(20), default="INV", nullable=False)
    next_invoice_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    next_receipt_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # ===========================================
    # CURRENCY LOCK
    # ===========================================
    # Locked on first issuance; afterwards every invoice must use it.
    default_currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    currency_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    currency_locked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    members: Mapped[List["BusinessMember"]] = relationship(
        "BusinessMember",
        back_populates="business",
        cascade="all, delete-orphan",
    )
    clients: Mapped[List["Client"]] = relationship(
        "Client",
        back_populates="business",
    )
    invoices: Mapped[List["Invoice"]] = relationship(
        "Invoice",
        back_populates="business",
    )
    subscription: Mapped[Optional["Subscription"]] = relationship(
        "Subscription",
        back_populates="business",
        uselist=False,
    )

    @property
    def display_name(self) -> str:
        return self.legal_name or self.name


class InvoiceTemplate(BaseModel):
    """Invoice layout; business_id is NULL for system templates."""

    __tablename__ = "invoice_templates"

    business_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    layout: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PaymentMethod(BaseModel):
    """How the business wants to be paid (bank transfer details, payment link, ...)."""

    __tablename__ = "payment_methods"

    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_type: Mapped[str] = mapped_column(String(50), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    instructions: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
