"""
Tests for the append-only, hash-chained audit trail.
"""

import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditEventType, AuditLog
from app.services.audit_service import ActorContext, AuditService, DecimalEncoder, to_json_safe
from app.utils.error_handling import AuditWriteException, ImmutabilityViolationException


async def _entries(db: AsyncSession, business_id) -> list:
    result = await db.execute(
        select(AuditLog).where(AuditLog.business_id == business_id).order_by(AuditLog.sequence_number)
    )
    return list(result.scalars().all())


class TestEncoding:
    """Canonical JSON of audit payloads."""

    def test_decimal_encoder(self):
        payload = {
            "amount": Decimal("1075.00"),
            "at": datetime(2026, 1, 15, 10, 30, tzinfo=timezone.utc),
            "event": AuditEventType.INVOICE_ISSUED,
        }
        encoded = json.loads(json.dumps(payload, cls=DecimalEncoder))
        assert encoded == {
            "amount": "1075.00",
            "at": "2026-01-15T10:30:00.000000Z",
            "event": "INVOICE_ISSUED",
        }

    def test_to_json_safe(self):
        invoice_id = uuid.uuid4()
        assert to_json_safe({"id": invoice_id, "total": Decimal("1.50")}) == {
            "id": str(invoice_id),
            "total": "1.50",
        }
        assert to_json_safe(None) is None


class TestHashChain:
    """Per-business chain linkage."""

    async def test_entries_are_chained(self, db_session: AsyncSession, test_business, issued_invoice):
        entries = await _entries(db_session, test_business.id)

        assert [e.event_type for e in entries] == [AuditEventType.INVOICE_CREATED, AuditEventType.INVOICE_ISSUED]
        assert [e.sequence_number for e in entries] == [1, 2]
        assert entries[0].previous_hash is None
        assert entries[1].previous_hash == entries[0].event_hash
        assert all(len(e.event_hash) == 64 for e in entries)

    async def test_verify_chain_valid(self, db_session: AsyncSession, test_business, issued_invoice):
        is_valid, discrepancies = await AuditService(db_session).verify_chain(test_business.id)
        assert is_valid
        assert discrepancies == []

    async def test_content_tampering_detected(self, db_session: AsyncSession, test_business, issued_invoice):
        conn = await db_session.connection()
        await conn.execute(
            update(AuditLog.__table__)
            .where(AuditLog.__table__.c.business_id == test_business.id)
            .where(AuditLog.__table__.c.sequence_number == 1)
            .values(actor_role="admin")
        )
        await db_session.commit()
        db_session.expire_all()

        is_valid, discrepancies = await AuditService(db_session).verify_chain(test_business.id)
        assert not is_valid
        assert {"sequence_number": 1, "type": "hash_mismatch"}.items() <= discrepancies[0].items()

    async def test_deleted_entry_detected(self, db_session: AsyncSession, test_business, make_issued):
        await make_issued()
        conn = await db_session.connection()
        await conn.execute(
            delete(AuditLog.__table__)
            .where(AuditLog.__table__.c.business_id == test_business.id)
            .where(AuditLog.__table__.c.sequence_number == 1)
        )
        await db_session.commit()
        db_session.expire_all()

        is_valid, discrepancies = await AuditService(db_session).verify_chain(test_business.id)
        assert not is_valid
        types = {d["type"] for d in discrepancies}
        assert "sequence_gap" in types
        assert "broken_chain" in types

    async def test_chains_are_per_business(self, db_session: AsyncSession, test_business, issued_invoice):
        other_business = uuid.uuid4()
        audit = AuditService(db_session)
        entry = await audit.log_event(
            AuditEventType.SETTINGS_UPDATED,
            entity_type="business",
            entity_id=other_business,
            business_id=None,
            **ActorContext.system().audit_fields(),
        )
        await db_session.commit()

        assert entry.sequence_number == 1
        assert entry.previous_hash is None
        assert entry.actor_role == "system"
        assert (await audit.verify_chain(None))[0]


class TestAppendOnly:
    """Audit entries cannot be changed through the ORM."""

    async def test_update_blocked(self, db_session: AsyncSession, test_business, issued_invoice):
        entry = (await _entries(db_session, test_business.id))[0]
        entry.actor_role = "admin"

        with pytest.raises(ImmutabilityViolationException):
            await db_session.flush()
        await db_session.rollback()

    async def test_delete_blocked(self, db_session: AsyncSession, test_business, issued_invoice):
        entry = (await _entries(db_session, test_business.id))[0]
        await db_session.delete(entry)

        with pytest.raises(ImmutabilityViolationException):
            await db_session.flush()
        await db_session.rollback()

    async def test_bulk_delete_blocked(self, db_session: AsyncSession, test_business, issued_invoice):
        with pytest.raises(ImmutabilityViolationException):
            await db_session.execute(delete(AuditLog).where(AuditLog.business_id == test_business.id))
        await db_session.rollback()


class TestDeliveryModes:
    """Strict and best-effort audit writes."""

    @pytest.fixture
    def colliding_sequence(self, monkeypatch):
        # Makes the next entry reuse sequence number 1 of the existing chain.
        async def _last_entry(self, business_id):
            return SimpleNamespace(sequence_number=0, event_hash="0" * 64)

        monkeypatch.setattr(AuditService, "_get_last_entry", _last_entry)

    async def test_strict_mode_raises(
        self, db_session: AsyncSession, test_business, issued_invoice, colliding_sequence
    ):
        with pytest.raises(AuditWriteException):
            await AuditService(db_session, strict=True).log_event(
                AuditEventType.INVOICE_VIEWED,
                entity_type="invoice",
                entity_id=issued_invoice.id,
                business_id=test_business.id,
            )
        await db_session.rollback()

    async def test_best_effort_mode_continues(
        self, db_session: AsyncSession, test_business, issued_invoice, colliding_sequence, caplog
    ):
        result = await AuditService(db_session, strict=False).log_event(
            AuditEventType.INVOICE_VIEWED,
            entity_type="invoice",
            entity_id=issued_invoice.id,
            business_id=test_business.id,
        )
        assert result is None
        assert any(record.levelname == "CRITICAL" for record in caplog.records)

        # The surrounding transaction is still usable.
        await db_session.commit()
        assert len(await _entries(db_session, test_business.id)) == 2


class TestQueries:
    """Filtered audit trail reads."""

    async def test_filter_by_entity(self, db_session: AsyncSession, test_business, make_issued):
        first = await make_issued()
        await make_issued()

        logs = await AuditService(db_session).get_audit_logs(test_business.id, entity_id=str(first.id))
        assert {log.event_type for log in logs} == {AuditEventType.INVOICE_CREATED, AuditEventType.INVOICE_ISSUED}
        assert [log.sequence_number for log in logs] == sorted((log.sequence_number for log in logs), reverse=True)

    async def test_filter_by_event_type(self, db_session: AsyncSession, test_business, make_issued):
        await make_issued()
        await make_issued()

        logs = await AuditService(db_session).get_audit_logs(
            test_business.id, event_type=AuditEventType.INVOICE_ISSUED
        )
        assert len(logs) == 2
