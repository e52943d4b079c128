"""
Invoicemonk - Audit Schemas

Pydantic schemas for audit trail queries, chain verification and the
reconciliation and subscription-webhook endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.models.audit import AuditEventType
from app.models.subscription import SubscriptionStatus, SubscriptionTier


class AuditLogResponse(BaseModel):
    """Schema for a single audit log entry."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: AuditEventType
    entity_type: str
    entity_id: Optional[str] = None
    actor_id: Optional[UUID] = None
    actor_role: Optional[str] = None
    business_id: Optional[UUID] = None
    timestamp_utc: datetime
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    previous_state: Optional[Dict[str, Any]] = None
    new_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias=AliasChoices("event_metadata", "metadata"))
    sequence_number: int
    previous_hash: Optional[str] = None
    event_hash: str


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    skip: int
    limit: int


class ChainVerificationResponse(BaseModel):
    business_id: UUID
    is_valid: bool
    discrepancies: List[Dict[str, Any]]


class ReconciliationResponse(BaseModel):
    found: int
    reconciled: List[str]
    skipped: List[str]


class SubscriptionWebhookRequest(BaseModel):
    """Subscription state pushed by the payment processor."""
    business_id: UUID
    tier: SubscriptionTier
    status: SubscriptionStatus
    provider_reference: Optional[str] = Field(None, max_length=255)
    current_period_end: Optional[datetime] = None


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    business_id: UUID
    tier: SubscriptionTier
    status: SubscriptionStatus
    provider_reference: Optional[str] = None
    current_period_end: Optional[datetime] = None
