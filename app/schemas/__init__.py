"""
Invoicemonk - Schemas Package

Pydantic schemas for request/response validation and versioned snapshots.
"""

from app.schemas.invoice import (
    InvoiceLineItemCreate,
    InvoiceLineItemResponse,
    InvoiceCreateRequest,
    InvoiceUpdateRequest,
    InvoiceSendRequest,
    InvoiceResponse,
    InvoiceListResponse,
    PaymentCreateRequest,
    PaymentResponse,
    ReceiptResponse,
    PaymentRecordedResponse,
    VoidRequest,
    CreditNoteResponse,
    VoidResponse,
    InvoiceVerificationResponse,
    ReceiptVerificationResponse,
)
from app.schemas.audit import (
    AuditLogResponse,
    AuditLogListResponse,
    ChainVerificationResponse,
    ReconciliationResponse,
    SubscriptionWebhookRequest,
    SubscriptionResponse,
)
from app.schemas.snapshots import (
    SnapshotKind,
    Snapshot,
    IssuerSnapshotV1,
    RecipientSnapshotV1,
    TemplateSnapshotV1,
    TaxSchemaSnapshotV1,
    PaymentMethodSnapshotV1,
    PayerSnapshotV1,
    InvoiceReferenceSnapshotV1,
    PaymentSnapshotV1,
    load_snapshot,
)
