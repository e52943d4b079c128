"""
Invoicemonk - Subscription Service

Applies subscription updates pushed by the payment processor webhook.
This is the only writer of the subscriptions table.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditEventType
from app.models.business import Business
from app.models.subscription import Subscription, SubscriptionStatus, SubscriptionTier
from app.services.audit_service import ActorContext, AuditService
from app.utils.error_handling import BusinessNotFoundException

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Service for subscription state."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def get_subscription(self, business_id: uuid.UUID) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.business_id == business_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def apply_webhook(
        self,
        business_id: uuid.UUID,
        tier: SubscriptionTier,
        status: SubscriptionStatus,
        provider_reference: Optional[str] = None,
        current_period_end: Optional[datetime] = None,
        actor: Optional[ActorContext] = None,
    ) -> Subscription:
        """Create or update the subscription of a business."""
        actor = actor or ActorContext(role="payment_processor")

        business = await self.db.scalar(
            select(Business).where(Business.id == business_id).with_for_update()
        )
        if business is None:
            raise BusinessNotFoundException(business_id)

        subscription = await self.get_subscription(business_id)
        previous_state = None
        if subscription is None:
            subscription = Subscription(id=uuid.uuid4(), business_id=business_id)
            self.db.add(subscription)
        else:
            previous_state = {"tier": subscription.tier.value, "status": subscription.status.value}

        subscription.tier = tier
        subscription.status = status
        subscription.provider_reference = provider_reference
        subscription.current_period_end = current_period_end
        await self.db.flush()

        await self.audit.log_event(
            AuditEventType.SUBSCRIPTION_CHANGED,
            entity_type="subscription",
            entity_id=subscription.id,
            business_id=business_id,
            previous_state=previous_state,
            new_state={"tier": tier.value, "status": status.value},
            metadata={"provider_reference": provider_reference},
            **actor.audit_fields(),
        )
        await self.db.commit()

        logger.info(f"Subscription of business {business_id} set to {tier.value} ({status.value})")
        return subscription
