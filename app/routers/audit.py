"""
Invoicemonk - Audit Router

Read access to the append-only audit trail, hash-chain verification and
the void reconciliation trigger. There are no write endpoints for audit
entries.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor, get_business_membership, require_business_admin
from app.models.audit import AuditEventType
from app.schemas.audit import (
    AuditLogListResponse,
    AuditLogResponse,
    ChainVerificationResponse,
    ReconciliationResponse,
)
from app.services.audit_service import ActorContext, AuditService
from app.services.reconciliation_service import ReconciliationService


router = APIRouter()


@router.get(
    "/{business_id}/audit-logs",
    response_model=AuditLogListResponse,
    summary="Query audit trail",
    dependencies=[Depends(get_business_membership)],
)
async def get_audit_logs(
    business_id: UUID,
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    entity_id: Optional[str] = Query(None, description="Filter by entity ID"),
    event_type: Optional[AuditEventType] = Query(None, description="Filter by event type"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Get audit logs of a business with optional filtering, newest first.
    """
    logs = await AuditService(db).get_audit_logs(
        business_id,
        entity_type=entity_type,
        entity_id=entity_id,
        event_type=event_type,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{business_id}/audit-logs/verify",
    response_model=ChainVerificationResponse,
    summary="Verify audit hash chain",
    dependencies=[Depends(get_business_membership)],
)
async def verify_audit_chain(
    business_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Recompute every entry hash of the business chain and check linkage.
    """
    is_valid, discrepancies = await AuditService(db).verify_chain(business_id)
    return ChainVerificationResponse(
        business_id=business_id,
        is_valid=is_valid,
        discrepancies=discrepancies,
    )


@router.post(
    "/{business_id}/reconciliation",
    response_model=ReconciliationResponse,
    summary="Complete orphaned voids",
    dependencies=[Depends(require_business_admin())],
)
async def run_reconciliation(
    business_id: UUID,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Complete voids whose credit note exists but whose invoice was never
    moved to VOIDED. Also runs hourly in the background.
    """
    summary = await ReconciliationService(db).reconcile(business_id=business_id, actor=actor)
    return ReconciliationResponse(**summary)
