"""
Invoicemonk - Payment Service

Records payments against issued invoices and issues one immutable receipt
per payment.

amount_paid is advanced with a conditional UPDATE on (status, amount_paid)
so that two concurrent payments cannot both read the same balance. When
the payments cover the total the invoice moves to PAID.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import AuditEventType
from app.models.base import utcnow
from app.models.business import Business
from app.models.invoice import Invoice, InvoiceStatus, OPEN_STATUSES
from app.models.payment import Payment, Receipt
from app.services.audit_service import ActorContext, AuditService
from app.services.integrity_service import (
    IntegrityService,
    compute_document_hash,
    generate_verification_id,
)
from app.services.invoice_service import InvoiceService
from app.utils.error_handling import (
    BusinessNotFoundException,
    ConflictingTransitionException,
    InvalidAmountException,
    NotPayableException,
    ValidationException,
)

logger = logging.getLogger(__name__)

MAX_METHOD_LENGTH = 100
MAX_REFERENCE_LENGTH = 255
MAX_NOTES_LENGTH = 1000


class PaymentService:
    """Service for payments and receipts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.integrity = IntegrityService(db)
        self.invoices = InvoiceService(db)

    @staticmethod
    def _validate(
        amount: Any,
        payment_method: Optional[str],
        payment_reference: Optional[str],
        notes: Optional[str],
    ) -> Decimal:
        try:
            payment_amount = Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidAmountException(amount)

        if not payment_amount.is_finite() or payment_amount <= 0:
            raise InvalidAmountException(amount)
        if payment_amount > settings.payment_max_amount:
            raise InvalidAmountException(
                amount,
                message=f"Payment amount cannot exceed {settings.payment_max_amount:,.2f}.",
            )
        if payment_amount != payment_amount.quantize(Decimal("0.01")):
            raise InvalidAmountException(amount, message="Payment amount cannot have more than 2 decimal places.")

        if payment_method and len(payment_method) > MAX_METHOD_LENGTH:
            raise ValidationException(
                f"Payment method cannot exceed {MAX_METHOD_LENGTH} characters.", field="payment_method"
            )
        if payment_reference and len(payment_reference) > MAX_REFERENCE_LENGTH:
            raise ValidationException(
                f"Payment reference cannot exceed {MAX_REFERENCE_LENGTH} characters.", field="payment_reference"
            )
        if notes and len(notes) > MAX_NOTES_LENGTH:
            raise ValidationException(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters.", field="notes")

        return payment_amount

    async def record_payment(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        actor: ActorContext,
        amount: Any,
        payment_method: Optional[str] = None,
        payment_reference: Optional[str] = None,
        payment_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Tuple[Payment, Receipt]:
        """
        Record a payment and issue its receipt.

        Overpayment is accepted; the excess is recorded in the audit
        metadata.

        Raises:
            InvalidAmountException: amount not in (0, max]
            ValidationException: field too long
            NotPayableException: invoice is not issued, sent or viewed
            ConflictingTransitionException: invoice changed concurrently
        """
        payment_amount = self._validate(amount, payment_method, payment_reference, notes)

        invoice = await self.invoices.get_invoice(business_id, invoice_id, for_update=True)
        if invoice.status not in OPEN_STATUSES:
            logger.warning(f"Rejected payment on {invoice.status.value} invoice {invoice.invoice_number}")
            raise NotPayableException(invoice.status)

        previous_status = invoice.status
        previous_paid = invoice.amount_paid
        new_paid = previous_paid + payment_amount
        new_status = InvoiceStatus.PAID if new_paid >= invoice.total_amount else previous_status

        result = await self.db.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.status.in_(OPEN_STATUSES),
                Invoice.amount_paid == previous_paid,
            )
            .values(amount_paid=new_paid, status=new_status, updated_by_id=actor.user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Concurrent change on invoice {invoice.invoice_number} while recording payment")
            raise ConflictingTransitionException(invoice.id, "record_payment")

        payment = Payment(
            id=uuid.uuid4(),
            invoice_id=invoice.id,
            amount=payment_amount,
            payment_method=payment_method,
            payment_reference=payment_reference,
            payment_date=payment_date or utcnow().date(),
            notes=notes,
            recorded_by=actor.user_id,
        )
        self.db.add(payment)
        await self.db.flush()

        overpayment = new_paid - invoice.total_amount
        await self.audit.log_event(
            AuditEventType.PAYMENT_RECORDED,
            entity_type="payment",
            entity_id=payment.id,
            business_id=business_id,
            previous_state={"status": previous_status.value, "amount_paid": str(previous_paid)},
            new_state={"status": new_status.value, "amount_paid": str(new_paid)},
            metadata={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "amount": str(payment_amount),
                "payment_method": payment_method,
                "payment_reference": payment_reference,
                "overpayment": str(overpayment) if overpayment > 0 else None,
            },
            **actor.audit_fields(),
        )

        invoice = await self.invoices.get_invoice(business_id, invoice.id)
        receipt = await self.issue_receipt(business_id, invoice, payment, actor)
        await self.db.commit()

        logger.info(
            f"Payment of {payment_amount} recorded on invoice {invoice.invoice_number}; "
            f"status {previous_status.value} -> {new_status.value}"
        )
        return payment, receipt

    async def issue_receipt(
        self,
        business_id: uuid.UUID,
        invoice: Invoice,
        payment: Payment,
        actor: ActorContext,
    ) -> Receipt:
        """
        Create the receipt for a payment. Returns the existing receipt if
        one was already issued for this payment.
        """
        existing = await self.db.scalar(select(Receipt).where(Receipt.payment_id == payment.id))
        if existing is not None:
            return existing

        result = await self.db.execute(
            select(Business).where(Business.id == business_id).with_for_update()
            .execution_options(populate_existing=True)
        )
        business = result.scalar_one_or_none()
        if business is None:
            raise BusinessNotFoundException(business_id)

        receipt_number = f"RCP-{business.invoice_prefix}-{business.next_receipt_number:03d}"
        business.next_receipt_number += 1

        issued_at = utcnow()
        snapshots = await self.integrity.capture_receipt_snapshots(invoice, payment, business, issued_at)
        receipt = Receipt(
            id=uuid.uuid4(),
            receipt_number=receipt_number,
            business_id=business_id,
            invoice_id=invoice.id,
            payment_id=payment.id,
            amount=payment.amount,
            currency=invoice.currency,
            receipt_hash=compute_document_hash(receipt_number, payment.amount, issued_at),
            verification_id=generate_verification_id(),
            issued_at=issued_at,
            issued_by=actor.user_id,
            retention_locked_until=await self.integrity.retention_until(
                "receipt", business.jurisdiction, issued_at
            ),
            **snapshots,
        )
        self.db.add(receipt)
        await self.db.flush()

        await self.audit.log_event(
            AuditEventType.RECEIPT_ISSUED,
            entity_type="receipt",
            entity_id=receipt.id,
            business_id=business_id,
            new_state={
                "receipt_number": receipt_number,
                "amount": str(receipt.amount),
                "currency": receipt.currency,
                "receipt_hash": receipt.receipt_hash,
            },
            metadata={"invoice_id": str(invoice.id), "payment_id": str(payment.id)},
            **actor.audit_fields(),
        )
        logger.info(f"Receipt {receipt_number} issued for payment {payment.id}")
        return receipt

    # ===========================================
    # QUERIES
    # ===========================================

    async def list_payments(self, business_id: uuid.UUID, invoice_id: uuid.UUID) -> List[Payment]:
        await self.invoices.get_invoice(business_id, invoice_id)
        result = await self.db.execute(
            select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.created_at)
        )
        return list(result.scalars().all())

    async def list_receipts(self, business_id: uuid.UUID, invoice_id: uuid.UUID) -> List[Receipt]:
        await self.invoices.get_invoice(business_id, invoice_id)
        result = await self.db.execute(
            select(Receipt)
            .where(Receipt.invoice_id == invoice_id, Receipt.business_id == business_id)
            .order_by(Receipt.issued_at)
        )
        return list(result.scalars().all())
