"""
Invoicemonk - Public Verification Router

Unauthenticated endpoints behind the printed verification links. They
reveal only what is needed to confirm a document is genuine.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_request_context
from app.schemas.invoice import InvoiceVerificationResponse, ReceiptVerificationResponse
from app.services.audit_service import ActorContext
from app.services.verification_service import VerificationService


router = APIRouter()


@router.get(
    "/invoice/{verification_id}",
    response_model=InvoiceVerificationResponse,
    summary="Verify an invoice",
)
async def verify_invoice(
    verification_id: UUID,
    context: ActorContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Confirm an invoice exists and its hash is intact.

    Viewing an issued or sent invoice marks it as viewed.
    """
    result = await VerificationService(db).verify_invoice(verification_id, context)
    return InvoiceVerificationResponse(**result)


@router.get(
    "/receipt/{verification_id}",
    response_model=ReceiptVerificationResponse,
    summary="Verify a receipt",
)
async def verify_receipt(
    verification_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    result = await VerificationService(db).verify_receipt(verification_id)
    return ReceiptVerificationResponse(**result)
