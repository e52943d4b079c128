"""
Tests for the public verification portal.
"""

import uuid
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditEventType, AuditLog
from app.models.invoice import Invoice, InvoiceStatus
from app.services.audit_service import ActorContext
from app.services.credit_note_service import CreditNoteService
from app.services.invoice_service import InvoiceService
from app.services.payment_service import PaymentService
from app.services.verification_service import VerificationService
from app.utils.error_handling import ConflictingTransitionException


VISITOR = ActorContext.public(source_ip="203.0.113.9", user_agent="Mozilla/5.0")


async def _viewed_events(db: AsyncSession) -> int:
    return (await db.execute(
        select(func.count(AuditLog.id)).where(AuditLog.event_type == AuditEventType.INVOICE_VIEWED)
    )).scalar()


class TestVerifyInvoice:

    async def test_issued_invoice_verified_and_viewed(self, db_session: AsyncSession, issued_invoice):
        result = await VerificationService(db_session).verify_invoice(issued_invoice.verification_id, VISITOR)

        assert result["verified"] is True
        assert result["invoice_number"] == "INV-0001"
        assert result["issuer_name"] == "Acme Trading Limited"
        assert result["total_amount"] == Decimal("1075.00")
        assert result["currency"] == "NGN"
        assert result["status"] == "viewed"
        assert result["payment_status"] == "Viewed - Awaiting Payment"
        assert result["hash_valid"] is True

        entry = await db_session.scalar(
            select(AuditLog).where(AuditLog.event_type == AuditEventType.INVOICE_VIEWED)
        )
        assert entry.actor_role == "public"
        assert entry.actor_id is None
        assert entry.source_ip == "203.0.113.9"

    async def test_repeat_view_is_not_audited_again(self, db_session: AsyncSession, issued_invoice):
        service = VerificationService(db_session)
        await service.verify_invoice(issued_invoice.verification_id, VISITOR)
        await service.verify_invoice(issued_invoice.verification_id, VISITOR)

        assert await _viewed_events(db_session) == 1

    async def test_unknown_id(self, db_session: AsyncSession):
        assert await VerificationService(db_session).verify_invoice(uuid.uuid4(), VISITOR) == {"verified": False}

    async def test_voided_invoice_is_not_moved_to_viewed(
        self, db_session: AsyncSession, test_business, issued_invoice, actor
    ):
        await CreditNoteService(db_session).void_invoice(
            test_business.id, issued_invoice.id, actor, "Replaced by a corrected invoice"
        )

        result = await VerificationService(db_session).verify_invoice(issued_invoice.verification_id, VISITOR)
        assert result["status"] == "voided"
        assert result["payment_status"] == "Voided"
        assert result["hash_valid"] is True
        assert await _viewed_events(db_session) == 0

    async def test_paid_invoice(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        await PaymentService(db_session).record_payment(
            test_business.id, issued_invoice.id, actor, amount="1075.00"
        )

        result = await VerificationService(db_session).verify_invoice(issued_invoice.verification_id, VISITOR)
        assert result["payment_status"] == "Paid"

    async def test_tampered_invoice_reports_invalid_hash(
        self, db_session: AsyncSession, test_business, issued_invoice
    ):
        conn = await db_session.connection()
        await conn.execute(
            update(Invoice.__table__)
            .where(Invoice.__table__.c.id == issued_invoice.id)
            .values(total_amount=Decimal("10.75"))
        )
        await db_session.commit()

        result = await VerificationService(db_session).verify_invoice(issued_invoice.verification_id, VISITOR)
        assert result["verified"] is True
        assert result["hash_valid"] is False

        invoice = await InvoiceService(db_session).get_invoice(test_business.id, issued_invoice.id)
        assert invoice.status == InvoiceStatus.VIEWED

    async def test_concurrent_view_still_verifies(
        self, db_session: AsyncSession, test_business, issued_invoice, monkeypatch
    ):
        real_mark_viewed = InvoiceService.mark_viewed

        async def lose_the_race(self, business_id, invoice_id, actor):
            # Another visitor's request lands first.
            await real_mark_viewed(self, business_id, invoice_id, actor)
            raise ConflictingTransitionException(invoice_id, "mark_viewed")

        monkeypatch.setattr(InvoiceService, "mark_viewed", lose_the_race)

        result = await VerificationService(db_session).verify_invoice(issued_invoice.verification_id, VISITOR)

        assert result["verified"] is True
        assert result["status"] == "viewed"
        assert result["hash_valid"] is True
        assert await _viewed_events(db_session) == 1


class TestVerifyReceipt:

    async def test_receipt_verified(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        _, receipt = await PaymentService(db_session).record_payment(
            test_business.id, issued_invoice.id, actor, amount="500.00"
        )

        result = await VerificationService(db_session).verify_receipt(receipt.verification_id)
        assert result["verified"] is True
        assert result["receipt_number"] == "RCP-INV-001"
        assert result["invoice_number"] == "INV-0001"
        assert result["issuer_name"] == "Acme Trading Limited"
        assert result["amount"] == Decimal("500.00")
        assert result["hash_valid"] is True

    async def test_unknown_receipt(self, db_session: AsyncSession):
        assert await VerificationService(db_session).verify_receipt(uuid.uuid4()) == {"verified": False}
