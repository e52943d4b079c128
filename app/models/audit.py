"""
Invoicemonk - Audit Log Model

Append-only audit log for every state-changing action in the system.

Integrity Features:
- Closed event-type enumeration
- Previous/new state snapshots and free-form metadata
- Per-business SHA-256 hash chain (each entry covers the previous hash)
- Insert-only: the ORM guard and the PostgreSQL triggers reject UPDATE
  and DELETE
"""

import uuid
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.base import JSONType


class AuditEventType(str, enum.Enum):
    """Audit event types."""
    # Identity
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    USER_SIGNUP = "USER_SIGNUP"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    PASSWORD_RESET = "PASSWORD_RESET"
    # Invoice lifecycle
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_UPDATED = "INVOICE_UPDATED"
    INVOICE_ISSUED = "INVOICE_ISSUED"
    INVOICE_SENT = "INVOICE_SENT"
    INVOICE_VIEWED = "INVOICE_VIEWED"
    INVOICE_VOIDED = "INVOICE_VOIDED"
    INVOICE_CREDITED = "INVOICE_CREDITED"
    INVOICE_DELETED = "INVOICE_DELETED"
    CREDIT_NOTE_RECONCILED = "CREDIT_NOTE_RECONCILED"
    # Payments
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    RECEIPT_ISSUED = "RECEIPT_ISSUED"
    RECEIPT_VIEWED = "RECEIPT_VIEWED"
    RECEIPT_EXPORTED = "RECEIPT_EXPORTED"
    # Clients / business
    CLIENT_CREATED = "CLIENT_CREATED"
    CLIENT_UPDATED = "CLIENT_UPDATED"
    BUSINESS_CREATED = "BUSINESS_CREATED"
    BUSINESS_UPDATED = "BUSINESS_UPDATED"
    # Team
    TEAM_MEMBER_ADDED = "TEAM_MEMBER_ADDED"
    TEAM_MEMBER_REMOVED = "TEAM_MEMBER_REMOVED"
    ROLE_CHANGED = "ROLE_CHANGED"
    # Platform
    DATA_EXPORTED = "DATA_EXPORTED"
    SUBSCRIPTION_CHANGED = "SUBSCRIPTION_CHANGED"
    SETTINGS_UPDATED = "SETTINGS_UPDATED"


class AuditLog(Base):
    """
    Immutable audit log entry.

    Written only by AuditService.log_event. This table has no UPDATE or
    DELETE path in application code.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        UniqueConstraint("business_id", "sequence_number", name="uq_audit_logs_business_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    event_type: Mapped[AuditEventType] = mapped_column(
        SQLEnum(AuditEventType),
        nullable=False,
        index=True,
    )

    # Target
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Actor
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    actor_role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Tenant; NULL for platform-level events
    business_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )

    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Request context
    source_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # State
    previous_state: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_state: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)

    # Hash chain
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, event={self.event_type}, entity={self.entity_type}:{self.entity_id})>"
