"""
Tests for completing orphaned voids, inline and from the Celery tasks.
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditEventType, AuditLog
from app.models.base import utcnow
from app.models.credit_note import CreditNote
from app.models.invoice import Invoice, InvoiceStatus
from app.services.audit_service import AuditService
from app.services.credit_note_service import CreditNoteService, credit_note_number_for
from app.services.integrity_service import compute_document_hash
from app.services.invoice_service import InvoiceService
from app.services.payment_service import PaymentService
from app.services.reconciliation_service import ReconciliationService
from app.tasks import celery_tasks


ORPHAN_REASON = "Duplicate invoice sent in error"


@pytest.fixture
def add_orphan_credit_note(db_session: AsyncSession, test_business, actor):
    """Insert a credit note without touching its invoice, as a half-applied void leaves it."""

    async def _add(invoice: Invoice) -> CreditNote:
        issued_at = utcnow()
        number = credit_note_number_for(invoice.invoice_number)
        credit_note = CreditNote(
            id=uuid.uuid4(),
            original_invoice_id=invoice.id,
            business_id=test_business.id,
            credit_note_number=number,
            amount=invoice.total_amount,
            currency=invoice.currency,
            reason=ORPHAN_REASON,
            credit_note_hash=compute_document_hash(number, invoice.total_amount, issued_at),
            verification_id=uuid.uuid4(),
            issued_at=issued_at,
            issued_by=actor.user_id,
        )
        db_session.add(credit_note)
        await db_session.commit()
        return credit_note

    return _add


class TestReconcile:

    async def test_orphan_is_voided(
        self, db_session: AsyncSession, test_business, issued_invoice, actor, add_orphan_credit_note
    ):
        credit_note = await add_orphan_credit_note(issued_invoice)

        summary = await ReconciliationService(db_session).reconcile()
        assert summary == {"found": 1, "reconciled": ["CN-INV-0001"], "skipped": []}

        invoice = await InvoiceService(db_session).get_invoice(test_business.id, issued_invoice.id)
        assert invoice.status == InvoiceStatus.VOIDED
        assert invoice.void_reason == ORPHAN_REASON
        assert invoice.voided_by == actor.user_id
        assert invoice.voided_at is not None

        voided = await db_session.scalar(
            select(AuditLog).where(AuditLog.event_type == AuditEventType.INVOICE_VOIDED)
        )
        assert voided.entity_id == str(issued_invoice.id)
        assert voided.actor_role == "system"
        assert voided.event_metadata["reconciled"] is True
        assert voided.new_state["credit_note_id"] == str(credit_note.id)

        reconciled = await db_session.scalar(
            select(AuditLog).where(AuditLog.event_type == AuditEventType.CREDIT_NOTE_RECONCILED)
        )
        assert reconciled.entity_id == str(credit_note.id)
        assert reconciled.event_metadata["previous_invoice_status"] == "issued"

        assert (await AuditService(db_session).verify_chain(test_business.id))[0]

    async def test_second_run_finds_nothing(
        self, db_session: AsyncSession, issued_invoice, add_orphan_credit_note
    ):
        await add_orphan_credit_note(issued_invoice)
        service = ReconciliationService(db_session)
        await service.reconcile()

        assert await service.reconcile() == {"found": 0, "reconciled": [], "skipped": []}

    async def test_completed_void_is_not_an_orphan(self, db_session: AsyncSession, test_business, issued_invoice, actor):
        await CreditNoteService(db_session).void_invoice(
            test_business.id, issued_invoice.id, actor, ORPHAN_REASON
        )
        assert await ReconciliationService(db_session).find_orphaned_credit_notes() == []

    async def test_paid_invoice_is_skipped(
        self, db_session: AsyncSession, test_business, issued_invoice, actor, add_orphan_credit_note
    ):
        await PaymentService(db_session).record_payment(
            test_business.id, issued_invoice.id, actor, amount=Decimal("1075.00")
        )
        await add_orphan_credit_note(issued_invoice)

        summary = await ReconciliationService(db_session).reconcile()
        assert summary["skipped"] == ["CN-INV-0001"]
        assert summary["reconciled"] == []

        invoice = await InvoiceService(db_session).get_invoice(test_business.id, issued_invoice.id)
        assert invoice.status == InvoiceStatus.PAID

    async def test_scoped_to_business(
        self, db_session: AsyncSession, issued_invoice, add_orphan_credit_note
    ):
        await add_orphan_credit_note(issued_invoice)

        summary = await ReconciliationService(db_session).reconcile(business_id=uuid.uuid4())
        assert summary["found"] == 0


class TestScheduledTasks:
    """Task bodies run against the test database."""

    @pytest.fixture(autouse=True)
    def task_sessions(self, monkeypatch, session_factory):
        monkeypatch.setattr(celery_tasks, "async_session_maker", session_factory)

    async def test_reconcile_task(
        self, db_session: AsyncSession, test_business, issued_invoice, add_orphan_credit_note
    ):
        await add_orphan_credit_note(issued_invoice)

        summary = await celery_tasks._reconcile_orphaned_credit_notes()
        assert summary["reconciled"] == ["CN-INV-0001"]

    async def test_verify_chains_task(self, db_session: AsyncSession, test_business, issued_invoice):
        result = await celery_tasks._verify_audit_chains()
        assert result == {"checked": 2, "broken": []}
