"""
Invoicemonk - Invoice Schemas

Pydantic schemas for the invoice lifecycle API: drafts, issuance,
payments, receipts and voids.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.invoice import InvoiceStatus


# ===========================================
# LINE ITEM SCHEMAS
# ===========================================

class InvoiceLineItemCreate(BaseModel):
    """Schema for an invoice line item."""
    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(Decimal("1"), gt=0, decimal_places=4, description="Quantity of items")
    unit_price: Decimal = Field(..., ge=0, decimal_places=2, description="Price per unit")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, decimal_places=2, description="Tax rate percentage")


class InvoiceLineItemResponse(BaseModel):
    """Schema for invoice line item response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    amount: Decimal
    sort_order: int


# ===========================================
# INVOICE REQUEST SCHEMAS
# ===========================================

class InvoiceCreateRequest(BaseModel):
    """Schema for creating a draft invoice."""
    client_id: UUID = Field(..., description="Client to invoice")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="Defaults to the business currency")
    issue_date: Optional[date] = Field(None, description="Defaults to the issuance date")
    due_date: Optional[date] = None
    line_items: List[InvoiceLineItemCreate] = Field(..., min_length=1)
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = Field(None, max_length=1000)
    terms: Optional[str] = Field(None, max_length=1000)
    template_id: Optional[UUID] = None
    payment_method_id: Optional[UUID] = None

    @field_validator("due_date")
    @classmethod
    def due_date_not_before_issue_date(cls, v, info):
        issue_date = info.data.get("issue_date")
        if v and issue_date and v < issue_date:
            raise ValueError("Due date cannot be before the issue date")
        return v


class InvoiceUpdateRequest(BaseModel):
    """Schema for updating a draft invoice. Omitted fields are left unchanged."""
    client_id: Optional[UUID] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    line_items: Optional[List[InvoiceLineItemCreate]] = Field(None, min_length=1)
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=1000)
    terms: Optional[str] = Field(None, max_length=1000)
    template_id: Optional[UUID] = None
    payment_method_id: Optional[UUID] = None


class InvoiceSendRequest(BaseModel):
    recipient_email: Optional[str] = Field(None, max_length=255)


class PaymentCreateRequest(BaseModel):
    """Schema for recording a payment. Amount limits are enforced by the service."""
    amount: Decimal
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_date: Optional[date] = None
    notes: Optional[str] = None


class VoidRequest(BaseModel):
    """Schema for voiding an issued invoice."""
    reason: str = Field(..., description="Why the invoice is voided (at least 10 characters)")


# ===========================================
# RESPONSE SCHEMAS
# ===========================================

class InvoiceResponse(BaseModel):
    """Schema for invoice response."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    business_id: UUID
    client_id: UUID
    invoice_number: str
    status: InvoiceStatus
    currency: str
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    notes: Optional[str] = None
    terms: Optional[str] = None
    template_id: Optional[UUID] = None
    payment_method_id: Optional[UUID] = None

    issued_at: Optional[datetime] = None
    issued_by: Optional[UUID] = None
    invoice_hash: Optional[str] = None
    verification_id: Optional[UUID] = None
    retention_locked_until: Optional[datetime] = None

    issuer_snapshot: Optional[Dict[str, Any]] = None
    recipient_snapshot: Optional[Dict[str, Any]] = None
    template_snapshot: Optional[Dict[str, Any]] = None
    tax_schema_snapshot: Optional[Dict[str, Any]] = None
    payment_method_snapshot: Optional[Dict[str, Any]] = None

    voided_at: Optional[datetime] = None
    voided_by: Optional[UUID] = None
    void_reason: Optional[str] = None

    line_items: List[InvoiceLineItemResponse] = []
    created_at: datetime
    updated_at: datetime


class InvoiceListResponse(BaseModel):
    """Schema for paginated invoice list."""
    items: List[InvoiceResponse]
    total: int
    page: int
    page_size: int


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_id: UUID
    amount: Decimal
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_date: date
    notes: Optional[str] = None
    recorded_by: Optional[UUID] = None
    created_at: datetime


class ReceiptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    receipt_number: str
    invoice_id: UUID
    payment_id: UUID
    amount: Decimal
    currency: str
    receipt_hash: str
    verification_id: UUID
    issued_at: datetime
    issuer_snapshot: Dict[str, Any]
    payer_snapshot: Dict[str, Any]
    invoice_snapshot: Dict[str, Any]
    payment_snapshot: Dict[str, Any]


class PaymentRecordedResponse(BaseModel):
    payment: PaymentResponse
    receipt: ReceiptResponse
    invoice: InvoiceResponse


class CreditNoteResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    original_invoice_id: UUID
    credit_note_number: str
    amount: Decimal
    currency: str
    reason: str
    credit_note_hash: str
    verification_id: UUID
    issued_at: datetime
    issued_by: Optional[UUID] = None


class VoidResponse(BaseModel):
    invoice: InvoiceResponse
    credit_note: CreditNoteResponse


# ===========================================
# PUBLIC VERIFICATION
# ===========================================

class InvoiceVerificationResponse(BaseModel):
    verified: bool
    invoice_number: Optional[str] = None
    issuer_name: Optional[str] = None
    issue_date: Optional[date] = None
    issued_at: Optional[datetime] = None
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    payment_status: Optional[str] = None
    hash_valid: Optional[bool] = None


class ReceiptVerificationResponse(BaseModel):
    verified: bool
    receipt_number: Optional[str] = None
    issuer_name: Optional[str] = None
    invoice_number: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    issued_at: Optional[datetime] = None
    hash_valid: Optional[bool] = None
