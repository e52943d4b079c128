"""
Invoicemonk - Webhooks Router

Subscription updates from the payment processor. Authenticated with the
shared secret in the X-Webhook-Secret header.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_async_session
from app.schemas.audit import SubscriptionResponse, SubscriptionWebhookRequest
from app.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter()


def verify_webhook_secret(provided: Optional[str], secret: str) -> bool:
    """Constant-time comparison of the shared secret."""
    if not provided or not secret:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))


@router.post(
    "/subscriptions",
    response_model=SubscriptionResponse,
    summary="Subscription webhook",
    include_in_schema=False,
)
async def subscription_webhook(
    payload: SubscriptionWebhookRequest,
    x_webhook_secret: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Upsert the subscription of a business.

    The issuance quota reads the tier written here.
    """
    if not verify_webhook_secret(x_webhook_secret, settings.webhook_secret):
        logger.warning(f"Rejected subscription webhook for business {payload.business_id}: bad secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )

    return await SubscriptionService(db).apply_webhook(
        payload.business_id,
        tier=payload.tier,
        status=payload.status,
        provider_reference=payload.provider_reference,
        current_period_end=payload.current_period_end,
    )
