"""
Tests for payments and receipts.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditEventType, AuditLog
from app.models.invoice import InvoiceStatus
from app.models.payment import Payment
from app.schemas.snapshots import PayerSnapshotV1, load_snapshot
from app.services.credit_note_service import CreditNoteService
from app.services.integrity_service import IntegrityService
from app.services.payment_service import PaymentService
from app.utils.error_handling import (
    ImmutabilityViolationException,
    InvalidAmountException,
    NotPayableException,
    ValidationException,
)


class TestRecordPayment:
    """Partial, full and over-payment."""

    async def test_partial_payment(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        service = PaymentService(db_session)
        payment, receipt = await service.record_payment(
            test_business.id,
            issued_invoice.id,
            actor,
            amount=Decimal("500.00"),
            payment_method="bank_transfer",
            payment_reference="TRF-001",
            payment_date=date(2026, 2, 1),
        )

        invoice = await service.invoices.get_invoice(test_business.id, issued_invoice.id)
        assert invoice.status == InvoiceStatus.ISSUED
        assert invoice.amount_paid == Decimal("500.00")
        assert invoice.balance_due == Decimal("575.00")

        assert payment.amount == Decimal("500.00")
        assert payment.recorded_by == actor.user_id
        assert receipt.receipt_number == "RCP-INV-001"
        assert receipt.amount == Decimal("500.00")
        assert receipt.payment_id == payment.id

    async def test_full_payment_marks_paid(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        service = PaymentService(db_session)
        await service.record_payment(test_business.id, issued_invoice.id, actor, amount="500.00")
        _, receipt = await service.record_payment(test_business.id, issued_invoice.id, actor, amount="575.00")

        invoice = await service.invoices.get_invoice(test_business.id, issued_invoice.id)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.amount_paid == Decimal("1075.00")
        assert invoice.balance_due == Decimal("0.00")
        assert receipt.receipt_number == "RCP-INV-002"

    async def test_overpayment_is_accepted_and_recorded(
        self, db_session: AsyncSession, test_business, issued_invoice, actor
    ):
        service = PaymentService(db_session)
        payment, _ = await service.record_payment(test_business.id, issued_invoice.id, actor, amount="1100.00")

        invoice = await service.invoices.get_invoice(test_business.id, issued_invoice.id)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.balance_due == Decimal("0.00")

        entry = await db_session.scalar(
            select(AuditLog).where(AuditLog.event_type == AuditEventType.PAYMENT_RECORDED)
        )
        assert entry.entity_id == str(payment.id)
        assert entry.event_metadata["overpayment"] == "25.00"
        assert entry.new_state == {"status": "paid", "amount_paid": "1100.00"}

    async def test_payment_on_viewed_invoice(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        service = PaymentService(db_session)
        await service.invoices.mark_viewed(test_business.id, issued_invoice.id, actor)
        await service.record_payment(test_business.id, issued_invoice.id, actor, amount="1075.00")

        invoice = await service.invoices.get_invoice(test_business.id, issued_invoice.id)
        assert invoice.status == InvoiceStatus.PAID

    async def test_payments_and_receipts_listed(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        service = PaymentService(db_session)
        await service.record_payment(test_business.id, issued_invoice.id, actor, amount="100.00")
        await service.record_payment(test_business.id, issued_invoice.id, actor, amount="200.00")

        payments = await service.list_payments(test_business.id, issued_invoice.id)
        receipts = await service.list_receipts(test_business.id, issued_invoice.id)
        assert sorted(p.amount for p in payments) == [Decimal("100.00"), Decimal("200.00")]
        assert sorted(r.receipt_number for r in receipts) == ["RCP-INV-001", "RCP-INV-002"]


class TestPaymentValidation:
    """Rejected payments leave the invoice untouched."""

    @pytest.mark.parametrize("amount", ["0", "-5.00", "10.001", "NaN", "abc", "1000000000.00"])
    async def test_invalid_amount(self, db_session: AsyncSession, test_business, issued_invoice, actor, amount):
        with pytest.raises(InvalidAmountException):
            await PaymentService(db_session).record_payment(test_business.id, issued_invoice.id, actor, amount=amount)

    async def test_reference_too_long(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        with pytest.raises(ValidationException):
            await PaymentService(db_session).record_payment(
                test_business.id, issued_invoice.id, actor, amount="10.00", payment_reference="x" * 256
            )

    async def test_draft_not_payable(self, db_session: AsyncSession, test_business, draft_invoice, actor):
        with pytest.raises(NotPayableException):
            await PaymentService(db_session).record_payment(test_business.id, draft_invoice.id, actor, amount="10.00")

    async def test_paid_not_payable(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        service = PaymentService(db_session)
        await service.record_payment(test_business.id, issued_invoice.id, actor, amount="1075.00")

        with pytest.raises(NotPayableException):
            await service.record_payment(test_business.id, issued_invoice.id, actor, amount="1.00")

    async def test_voided_not_payable(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        await CreditNoteService(db_session).void_invoice(
            test_business.id, issued_invoice.id, actor, "Issued to the wrong client"
        )

        with pytest.raises(NotPayableException):
            await PaymentService(db_session).record_payment(
                test_business.id, issued_invoice.id, actor, amount="10.00"
            )


class TestReceipts:
    """Receipts are frozen like issued invoices."""

    async def test_receipt_snapshots_and_hash(
        self, db_session: AsyncSession, test_business, test_customer, issued_invoice, actor
    ):
        _, receipt = await PaymentService(db_session).record_payment(
            test_business.id, issued_invoice.id, actor, amount="500.00", payment_method="card"
        )

        payer = load_snapshot(receipt.payer_snapshot)
        assert isinstance(payer, PayerSnapshotV1)
        assert payer.name == test_customer.name
        assert receipt.issuer_snapshot["name"] == test_business.name
        assert receipt.invoice_snapshot["invoice_number"] == "INV-0001"
        assert receipt.payment_snapshot["method"] == "card"
        assert len(receipt.receipt_hash) == 64
        assert IntegrityService.verify_receipt(receipt)
        assert receipt.retention_locked_until is not None

    async def test_issue_receipt_is_idempotent(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        service = PaymentService(db_session)
        payment, receipt = await service.record_payment(test_business.id, issued_invoice.id, actor, amount="10.00")

        invoice = await service.invoices.get_invoice(test_business.id, issued_invoice.id)
        again = await service.issue_receipt(test_business.id, invoice, payment, actor)
        assert again.id == receipt.id

    async def test_payment_cannot_be_edited(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        payment, _ = await PaymentService(db_session).record_payment(
            test_business.id, issued_invoice.id, actor, amount="10.00"
        )
        payment.amount = Decimal("9999.00")

        with pytest.raises(ImmutabilityViolationException):
            await db_session.flush()
        await db_session.rollback()

    async def test_bulk_update_of_payments_blocked(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        await PaymentService(db_session).record_payment(test_business.id, issued_invoice.id, actor, amount="10.00")

        with pytest.raises(ImmutabilityViolationException):
            await db_session.execute(update(Payment).values(notes="edited"))
        await db_session.rollback()
