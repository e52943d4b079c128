"""
Invoicemonk - Public Verification Service

Backs the unauthenticated verification portal: anyone holding a
verification id can confirm that an invoice or receipt exists, see its
key figures and check that its hash still matches.
"""

import logging
import uuid
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.invoice import DELIVERY_TRANSITIONS, Invoice, InvoiceStatus
from app.models.payment import Receipt
from app.schemas.snapshots import load_snapshot
from app.services.audit_service import ActorContext
from app.services.integrity_service import IntegrityService
from app.services.invoice_service import InvoiceService
from app.utils.error_handling import ConflictingTransitionException

logger = logging.getLogger(__name__)


PAYMENT_STATUS_LABELS = {
    InvoiceStatus.PAID: "Paid",
    InvoiceStatus.VOIDED: "Voided",
    InvoiceStatus.CREDITED: "Credited",
    InvoiceStatus.SENT: "Sent - Awaiting Payment",
    InvoiceStatus.VIEWED: "Viewed - Awaiting Payment",
    InvoiceStatus.ISSUED: "Issued - Awaiting Payment",
}


def _issuer_name(snapshot_data) -> str:
    issuer = load_snapshot(snapshot_data)
    if issuer is None:
        return ""
    return issuer.legal_name or issuer.name


class VerificationService:
    """Public lookups by verification id."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.invoices = InvoiceService(db)

    async def verify_invoice(self, verification_id: uuid.UUID, actor: ActorContext) -> Dict[str, Any]:
        """
        Public view of an issued invoice.

        The first view of an issued or sent invoice moves it to VIEWED.
        Drafts and unknown ids are reported as unverified.
        """
        invoice = await self.db.scalar(
            select(Invoice)
            .where(Invoice.verification_id == verification_id)
            .execution_options(populate_existing=True)
        )
        if invoice is None or invoice.status == InvoiceStatus.DRAFT:
            return {"verified": False}

        if invoice.status in DELIVERY_TRANSITIONS[InvoiceStatus.VIEWED]:
            business_id, invoice_id = invoice.business_id, invoice.id
            try:
                invoice = await self.invoices.mark_viewed(business_id, invoice_id, actor)
            except ConflictingTransitionException:
                # Another request moved the invoice first; show its current state.
                await self.db.rollback()
                logger.info(f"Invoice {invoice_id} changed status during a public view")
                invoice = await self.invoices.get_invoice(business_id, invoice_id)

        hash_valid = IntegrityService.verify_invoice(invoice)
        if not hash_valid:
            logger.critical(f"Hash mismatch on invoice {invoice.invoice_number} ({invoice.id})")

        return {
            "verified": True,
            "invoice_number": invoice.invoice_number,
            "issuer_name": _issuer_name(invoice.issuer_snapshot),
            "issue_date": invoice.issue_date,
            "issued_at": invoice.issued_at,
            "total_amount": invoice.total_amount,
            "currency": invoice.currency,
            "status": invoice.status.value,
            "payment_status": PAYMENT_STATUS_LABELS[invoice.status],
            "hash_valid": hash_valid,
        }

    async def verify_receipt(self, verification_id: uuid.UUID) -> Dict[str, Any]:
        """Public view of a receipt."""
        receipt = await self.db.scalar(select(Receipt).where(Receipt.verification_id == verification_id))
        if receipt is None:
            return {"verified": False}

        hash_valid = IntegrityService.verify_receipt(receipt)
        if not hash_valid:
            logger.critical(f"Hash mismatch on receipt {receipt.receipt_number} ({receipt.id})")

        invoice_reference = load_snapshot(receipt.invoice_snapshot)
        return {
            "verified": True,
            "receipt_number": receipt.receipt_number,
            "issuer_name": _issuer_name(receipt.issuer_snapshot),
            "invoice_number": invoice_reference.invoice_number,
            "amount": receipt.amount,
            "currency": receipt.currency,
            "issued_at": receipt.issued_at,
            "hash_valid": hash_valid,
        }
