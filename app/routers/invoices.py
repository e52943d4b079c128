"""
Invoicemonk - Invoices Router

API endpoints for the invoice lifecycle.

Compliance:
- Drafts are the only editable or deletable invoices
- Issuance requires a verified email and respects the monthly tier quota
- Issued invoices are voided with a credit note, never deleted
- Every state change is recorded in the audit trail
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor, get_business_membership, require_writer
from app.models.invoice import InvoiceStatus
from app.schemas.invoice import (
    CreditNoteResponse,
    InvoiceCreateRequest,
    InvoiceListResponse,
    InvoiceResponse,
    InvoiceSendRequest,
    InvoiceUpdateRequest,
    PaymentCreateRequest,
    PaymentRecordedResponse,
    PaymentResponse,
    ReceiptResponse,
    VoidRequest,
    VoidResponse,
)
from app.services.audit_service import ActorContext
from app.services.credit_note_service import CreditNoteService
from app.services.invoice_service import InvoiceService
from app.services.payment_service import PaymentService


router = APIRouter()


# ===========================================
# DRAFTS
# ===========================================

@router.get(
    "/{business_id}/invoices",
    response_model=InvoiceListResponse,
    summary="List invoices",
    dependencies=[Depends(get_business_membership)],
)
async def list_invoices(
    business_id: UUID,
    status: Optional[InvoiceStatus] = Query(None, description="Filter by status"),
    client_id: Optional[UUID] = Query(None, description="Filter by client"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_async_session),
):
    """List invoices of a business, newest first."""
    invoices, total = await InvoiceService(db).list_invoices(
        business_id,
        status=status,
        client_id=client_id,
        page=page,
        page_size=page_size,
    )
    return InvoiceListResponse(
        items=[InvoiceResponse.model_validate(invoice) for invoice in invoices],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/{business_id}/invoices",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create draft invoice",
    dependencies=[Depends(require_writer())],
)
async def create_invoice(
    business_id: UUID,
    request: InvoiceCreateRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Create a new invoice in DRAFT status.

    Totals are computed server-side from the line items.
    """
    invoice = await InvoiceService(db).create_draft(
        business_id,
        actor,
        client_id=request.client_id,
        line_items_data=[item.model_dump() for item in request.line_items],
        currency=request.currency,
        issue_date=request.issue_date,
        due_date=request.due_date,
        notes=request.notes,
        terms=request.terms,
        template_id=request.template_id,
        payment_method_id=request.payment_method_id,
        discount_amount=request.discount_amount,
    )
    return invoice


@router.get(
    "/{business_id}/invoices/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get invoice",
    dependencies=[Depends(get_business_membership)],
)
async def get_invoice(
    business_id: UUID,
    invoice_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return await InvoiceService(db).get_invoice(business_id, invoice_id)


@router.patch(
    "/{business_id}/invoices/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Update draft invoice",
    dependencies=[Depends(require_writer())],
)
async def update_invoice(
    business_id: UUID,
    invoice_id: UUID,
    request: InvoiceUpdateRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Update an invoice (only DRAFT invoices can be updated).
    """
    update_data = request.model_dump(exclude_unset=True)
    return await InvoiceService(db).update_draft(business_id, invoice_id, actor, **update_data)


@router.delete(
    "/{business_id}/invoices/{invoice_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete draft invoice",
    dependencies=[Depends(require_writer())],
)
async def delete_invoice(
    business_id: UUID,
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Delete a draft invoice. Issued invoices must be voided instead.
    """
    await InvoiceService(db).delete_draft(business_id, invoice_id, actor)


# ===========================================
# LIFECYCLE
# ===========================================

@router.post(
    "/{business_id}/invoices/{invoice_id}/issue",
    response_model=InvoiceResponse,
    summary="Issue invoice",
    dependencies=[Depends(require_writer())],
)
async def issue_invoice(
    business_id: UUID,
    invoice_id: UUID,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Issue a draft invoice.

    Freezes the invoice: captures issuer, recipient, template, tax and
    payment-method snapshots, computes the tamper-evidence hash and
    assigns a public verification id.
    """
    return await InvoiceService(db).issue(business_id, invoice_id, actor)


@router.post(
    "/{business_id}/invoices/{invoice_id}/send",
    response_model=InvoiceResponse,
    summary="Mark invoice as sent",
    dependencies=[Depends(require_writer())],
)
async def send_invoice(
    business_id: UUID,
    invoice_id: UUID,
    request: Optional[InvoiceSendRequest] = None,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    recipient_email = request.recipient_email if request else None
    return await InvoiceService(db).mark_sent(business_id, invoice_id, actor, recipient_email=recipient_email)


@router.post(
    "/{business_id}/invoices/{invoice_id}/void",
    response_model=VoidResponse,
    summary="Void invoice",
    dependencies=[Depends(require_writer())],
)
async def void_invoice(
    business_id: UUID,
    invoice_id: UUID,
    request: VoidRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Void an issued invoice.

    A credit note for the full invoice total is created in the same
    transaction. The original invoice is kept unchanged apart from its
    status and void metadata.
    """
    invoice, credit_note = await CreditNoteService(db).void_invoice(
        business_id, invoice_id, actor, request.reason
    )
    return VoidResponse(
        invoice=InvoiceResponse.model_validate(invoice),
        credit_note=CreditNoteResponse.model_validate(credit_note),
    )


@router.get(
    "/{business_id}/invoices/{invoice_id}/credit-note",
    response_model=CreditNoteResponse,
    summary="Get credit note of a voided invoice",
    dependencies=[Depends(get_business_membership)],
)
async def get_credit_note(
    business_id: UUID,
    invoice_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return await CreditNoteService(db).get_credit_note(business_id, invoice_id)


# ===========================================
# PAYMENTS & RECEIPTS
# ===========================================

@router.post(
    "/{business_id}/invoices/{invoice_id}/payments",
    response_model=PaymentRecordedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record payment",
    dependencies=[Depends(require_writer())],
)
async def record_payment(
    business_id: UUID,
    invoice_id: UUID,
    request: PaymentCreateRequest,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Record a payment against an issued invoice.

    Issues a receipt for the payment. The invoice becomes PAID once
    payments cover the total.
    """
    payment_service = PaymentService(db)
    payment, receipt = await payment_service.record_payment(
        business_id,
        invoice_id,
        actor,
        amount=request.amount,
        payment_method=request.payment_method,
        payment_reference=request.payment_reference,
        payment_date=request.payment_date,
        notes=request.notes,
    )
    invoice = await payment_service.invoices.get_invoice(business_id, invoice_id)
    return PaymentRecordedResponse(
        payment=PaymentResponse.model_validate(payment),
        receipt=ReceiptResponse.model_validate(receipt),
        invoice=InvoiceResponse.model_validate(invoice),
    )


@router.get(
    "/{business_id}/invoices/{invoice_id}/payments",
    response_model=List[PaymentResponse],
    summary="List payments",
    dependencies=[Depends(get_business_membership)],
)
async def list_payments(
    business_id: UUID,
    invoice_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return await PaymentService(db).list_payments(business_id, invoice_id)


@router.get(
    "/{business_id}/invoices/{invoice_id}/receipts",
    response_model=List[ReceiptResponse],
    summary="List receipts",
    dependencies=[Depends(get_business_membership)],
)
async def list_receipts(
    business_id: UUID,
    invoice_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    return await PaymentService(db).list_receipts(business_id, invoice_id)
