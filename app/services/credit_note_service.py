"""
Invoicemonk - Credit Note Service

Voiding an issued invoice. An issued invoice is never deleted or edited;
it is compensated by a credit note for its full total and moved to VOIDED.

Credit note, status change and audit entry are written in one
transaction. If that transaction fails after the credit note was flushed,
the caller gets PartialVoidFailureException and must not retry; any
credit note that did reach the database without its status change is
picked up by the reconciliation job.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import AuditEventType
from app.models.base import utcnow
from app.models.credit_note import CreditNote
from app.models.invoice import Invoice, InvoiceStatus, OPEN_STATUSES
from app.services.audit_service import ActorContext, AuditService
from app.services.integrity_service import (
    IntegrityService,
    compute_document_hash,
    generate_verification_id,
)
from app.services.invoice_service import InvoiceService
from app.utils.error_handling import (
    AuditWriteException,
    ConflictingTransitionException,
    NotFoundException,
    NotVoidableException,
    PartialVoidFailureException,
    ReasonTooShortException,
)

logger = logging.getLogger(__name__)


def credit_note_number_for(invoice_number: str) -> str:
    return f"CN-{invoice_number}"


class CreditNoteService:
    """Void / credit-note compensation."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.integrity = IntegrityService(db)
        self.invoices = InvoiceService(db)

    async def get_for_invoice(self, business_id: uuid.UUID, invoice_id: uuid.UUID) -> Optional[CreditNote]:
        result = await self.db.execute(
            select(CreditNote).where(
                CreditNote.original_invoice_id == invoice_id,
                CreditNote.business_id == business_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_credit_note(self, business_id: uuid.UUID, invoice_id: uuid.UUID) -> CreditNote:
        await self.invoices.get_invoice(business_id, invoice_id)
        credit_note = await self.get_for_invoice(business_id, invoice_id)
        if credit_note is None:
            raise NotFoundException("Credit note", message=f"Invoice {invoice_id} has no credit note")
        return credit_note

    async def void_invoice(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        actor: ActorContext,
        reason: str,
    ) -> tuple:
        """
        Void an issued, sent or viewed invoice.

        Returns:
            (voided invoice, credit note)

        Raises:
            ReasonTooShortException: stripped reason below the minimum length
            NotVoidableException: invoice is draft, paid or already voided
            ConflictingTransitionException: invoice changed concurrently
            PartialVoidFailureException: credit note exists without the void
        """
        reason = (reason or "").strip()
        if len(reason) < settings.void_reason_min_length:
            raise ReasonTooShortException(settings.void_reason_min_length, len(reason))

        invoice = await self.invoices.get_invoice(business_id, invoice_id, for_update=True)
        if invoice.status not in OPEN_STATUSES:
            logger.warning(f"Rejected void of {invoice.status.value} invoice {invoice.invoice_number}")
            raise NotVoidableException(invoice.status)

        orphan = await self.get_for_invoice(business_id, invoice.id)
        if orphan is not None:
            # Left behind by an earlier void whose status change never committed.
            logger.critical(
                f"Credit note {orphan.credit_note_number} already exists for open invoice "
                f"{invoice.invoice_number}; refusing to create a duplicate"
            )
            raise PartialVoidFailureException(invoice.id, orphan.id)

        previous_status = invoice.status
        issued_at = utcnow()
        number = credit_note_number_for(invoice.invoice_number)
        credit_note = CreditNote(
            id=uuid.uuid4(),
            original_invoice_id=invoice.id,
            business_id=business_id,
            credit_note_number=number,
            amount=invoice.total_amount,
            currency=invoice.currency,
            reason=reason,
            credit_note_hash=compute_document_hash(number, invoice.total_amount, issued_at),
            verification_id=generate_verification_id(),
            issued_at=issued_at,
            issued_by=actor.user_id,
        )
        self.db.add(credit_note)
        await self.db.flush()
        credit_note_id = credit_note.id

        try:
            result = await self.db.execute(
                update(Invoice)
                .where(Invoice.id == invoice.id, Invoice.status.in_(OPEN_STATUSES))
                .values(
                    status=InvoiceStatus.VOIDED,
                    voided_at=issued_at,
                    voided_by=actor.user_id,
                    void_reason=reason,
                    updated_by_id=actor.user_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                logger.warning(f"Concurrent transition on invoice {invoice_id} during void; rolled back")
                raise ConflictingTransitionException(invoice_id, "void")

            await self.audit.log_event(
                AuditEventType.INVOICE_VOIDED,
                entity_type="invoice",
                entity_id=invoice_id,
                business_id=business_id,
                previous_state={"status": previous_status.value},
                new_state={
                    "status": InvoiceStatus.VOIDED.value,
                    "credit_note_id": str(credit_note_id),
                    "void_reason": reason,
                },
                metadata={
                    "credit_note_number": number,
                    "credit_note_amount": str(credit_note.amount),
                },
                **actor.audit_fields(),
            )
            await self.db.commit()
        except AuditWriteException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.critical(
                f"Void of invoice {invoice_id} failed after credit note {number} was written: {e}",
                extra={"invoice_id": str(invoice_id), "credit_note_id": str(credit_note_id)},
            )
            raise PartialVoidFailureException(invoice_id, credit_note_id, original_error=e) from e

        logger.info(f"Invoice {invoice_id} voided with credit note {number}")
        invoice = await self.invoices.get_invoice(business_id, invoice_id)
        return invoice, credit_note
