"""
Invoicemonk - Audit Trail Service

Single writer of the append-only audit log.

Every entry is chained to the previous entry of the same business:
``event_hash`` is the SHA-256 of the canonical JSON of the entry, which
includes ``previous_hash``. Editing or removing any row breaks the chain
and is reported by ``verify_chain``.

Delivery modes:
- strict (default): the entry is flushed in the caller's transaction, so
  the state change and its audit entry commit or fail together
- best-effort: the entry is written inside a SAVEPOINT; a failure is
  logged at CRITICAL and the caller's transaction continues
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import AuditEventType, AuditLog
from app.models.base import utcnow
from app.models.business import Business
from app.services.integrity_service import format_utc_timestamp
from app.utils.error_handling import AuditWriteException

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return format_utc_timestamp(obj)
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if hasattr(obj, "value"):
            return obj.value
        return super().default(obj)


def to_json_safe(value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Round-trip through JSON so the stored value equals the hashed one."""
    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DecimalEncoder))


@dataclass
class ActorContext:
    """Who performed an action, and from where."""
    user_id: Optional[uuid.UUID] = None
    role: Optional[str] = None
    email_verified: bool = False
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def system(cls) -> "ActorContext":
        return cls(role="system")

    @classmethod
    def public(cls, source_ip: Optional[str] = None, user_agent: Optional[str] = None) -> "ActorContext":
        return cls(role="public", source_ip=source_ip, user_agent=user_agent)

    def audit_fields(self) -> Dict[str, Any]:
        return {
            "actor_id": self.user_id,
            "actor_role": self.role,
            "source_ip": self.source_ip,
            "user_agent": self.user_agent,
        }


class AuditService:
    """Service for writing and verifying the audit trail."""

    def __init__(self, db: AsyncSession, strict: Optional[bool] = None):
        self.db = db
        self.strict = settings.audit_strict_mode if strict is None else strict

    async def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Any,
        business_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
        actor_role: Optional[str] = None,
        previous_state: Optional[Dict[str, Any]] = None,
        new_state: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        source_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """
        Append an audit entry.

        Args:
            event_type: Closed event type
            entity_type: Type of entity (e.g. 'invoice', 'payment')
            entity_id: ID of the affected entity
            business_id: Tenant the chain belongs to; None for platform events
            actor_id: User who performed the action
            actor_role: Role of the actor within the business
            previous_state: State before the change
            new_state: State after the change
            metadata: Free-form context
            source_ip: Client IP address
            user_agent: Client user agent

        Returns:
            The flushed AuditLog, or None when a best-effort write failed

        Raises:
            AuditWriteException: strict mode and the write failed
        """
        kwargs = dict(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=None if entity_id is None else str(entity_id),
            business_id=business_id,
            actor_id=actor_id,
            actor_role=actor_role,
            previous_state=previous_state,
            new_state=new_state,
            metadata=metadata,
            source_ip=source_ip,
            user_agent=user_agent,
        )

        if self.strict:
            try:
                return await self._append(**kwargs)
            except SQLAlchemyError as e:
                logger.error(f"Audit write failed for {event_type.value} {entity_type}:{entity_id}: {e}")
                raise AuditWriteException(event_type.value, e) from e

        try:
            async with self.db.begin_nested():
                return await self._append(**kwargs)
        except SQLAlchemyError as e:
            logger.critical(
                f"Audit entry dropped for {event_type.value} {entity_type}:{entity_id}: {e}",
                extra={"event_type": event_type.value, "entity_id": str(entity_id)},
            )
            return None

    async def _append(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[str],
        business_id: Optional[uuid.UUID],
        actor_id: Optional[uuid.UUID],
        actor_role: Optional[str],
        previous_state: Optional[Dict[str, Any]],
        new_state: Optional[Dict[str, Any]],
        metadata: Optional[Dict[str, Any]],
        source_ip: Optional[str],
        user_agent: Optional[str],
    ) -> AuditLog:
        if business_id is not None:
            # Serializes appends to one business chain.
            await self.db.execute(
                select(Business.id).where(Business.id == business_id).with_for_update()
            )

        previous_entry = await self._get_last_entry(business_id)
        sequence_number = 1
        previous_hash = None
        if previous_entry:
            sequence_number = previous_entry.sequence_number + 1
            previous_hash = previous_entry.event_hash

        entry = AuditLog(
            id=uuid.uuid4(),
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            business_id=business_id,
            actor_id=actor_id,
            actor_role=actor_role,
            timestamp_utc=utcnow(),
            source_ip=source_ip,
            user_agent=user_agent,
            previous_state=to_json_safe(previous_state),
            new_state=to_json_safe(new_state),
            event_metadata=to_json_safe(metadata),
            sequence_number=sequence_number,
            previous_hash=previous_hash,
        )
        entry.event_hash = self._calculate_hash(self._entry_data(entry))

        self.db.add(entry)
        await self.db.flush()

        logger.debug(f"Audit #{sequence_number} {event_type.value} {entity_type}:{entity_id}")
        return entry

    async def _get_last_entry(self, business_id: Optional[uuid.UUID]) -> Optional[AuditLog]:
        query = select(AuditLog)
        if business_id is None:
            query = query.where(AuditLog.business_id.is_(None))
        else:
            query = query.where(AuditLog.business_id == business_id)
        result = await self.db.execute(
            query.order_by(AuditLog.sequence_number.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _entry_data(entry: AuditLog) -> Dict[str, Any]:
        """Canonical content covered by event_hash."""
        return {
            "id": str(entry.id),
            "sequence_number": entry.sequence_number,
            "business_id": str(entry.business_id) if entry.business_id else None,
            "event_type": entry.event_type.value,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "actor_id": str(entry.actor_id) if entry.actor_id else None,
            "actor_role": entry.actor_role,
            "timestamp_utc": format_utc_timestamp(entry.timestamp_utc),
            "source_ip": entry.source_ip,
            "user_agent": entry.user_agent,
            "previous_state": entry.previous_state,
            "new_state": entry.new_state,
            "metadata": entry.event_metadata,
            "previous_hash": entry.previous_hash,
        }

    def _calculate_hash(self, data: Dict[str, Any]) -> str:
        """Calculate SHA-256 hash of entry data"""
        json_str = json.dumps(data, sort_keys=True, cls=DecimalEncoder)
        return hashlib.sha256(json_str.encode("utf-8")).hexdigest()

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_audit_logs(
        self,
        business_id: uuid.UUID,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        event_type: Optional[AuditEventType] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLog]:
        """
        Get audit logs of a business with optional filtering, newest first.
        """
        query = select(AuditLog).where(AuditLog.business_id == business_id)

        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)

        if entity_id:
            query = query.where(AuditLog.entity_id == str(entity_id))

        if event_type:
            query = query.where(AuditLog.event_type == event_type)

        if start_date:
            query = query.where(AuditLog.timestamp_utc >= start_date)

        if end_date:
            query = query.where(AuditLog.timestamp_utc <= end_date)

        query = query.order_by(AuditLog.sequence_number.desc()).offset(skip).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def verify_chain(self, business_id: Optional[uuid.UUID]) -> Tuple[bool, List[Dict[str, Any]]]:
        """
        Verify the hash chain of a business.

        Returns:
            Tuple of (is_valid, list of discrepancies)
        """
        query = select(AuditLog)
        if business_id is None:
            query = query.where(AuditLog.business_id.is_(None))
        else:
            query = query.where(AuditLog.business_id == business_id)
        result = await self.db.execute(query.order_by(AuditLog.sequence_number))
        entries = result.scalars().all()

        discrepancies: List[Dict[str, Any]] = []
        previous_hash = None
        expected_sequence = 1

        for entry in entries:
            if entry.sequence_number != expected_sequence:
                discrepancies.append({
                    "sequence_number": entry.sequence_number,
                    "type": "sequence_gap",
                    "message": f"Expected entry #{expected_sequence}, found #{entry.sequence_number}",
                })

            if entry.previous_hash != previous_hash:
                discrepancies.append({
                    "sequence_number": entry.sequence_number,
                    "type": "broken_chain",
                    "message": f"Previous hash mismatch at entry #{entry.sequence_number}",
                    "expected_previous_hash": previous_hash,
                    "actual_previous_hash": entry.previous_hash,
                })

            calculated = self._calculate_hash(self._entry_data(entry))
            if calculated != entry.event_hash:
                discrepancies.append({
                    "sequence_number": entry.sequence_number,
                    "type": "hash_mismatch",
                    "message": f"Entry #{entry.sequence_number} content does not match its hash",
                    "expected_hash": calculated,
                    "actual_hash": entry.event_hash,
                })

            previous_hash = entry.event_hash
            expected_sequence = entry.sequence_number + 1

        is_valid = not discrepancies
        if not is_valid:
            logger.error(f"Audit chain verification failed for business {business_id}: {len(discrepancies)} issue(s)")
        return is_valid, discrepancies
