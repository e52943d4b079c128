"""
Invoicemonk - Subscription Model

Commercial tier of a business. The row is written only by the payment
processor webhook; the issuance quota check reads it.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, String, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.business import Business


class SubscriptionTier(str, Enum):
    """Commercial tiers."""
    STARTER = "starter"              # Free tier
    STARTER_PAID = "starter_paid"
    PROFESSIONAL = "professional"
    BUSINESS = "business"


class SubscriptionStatus(str, Enum):
    """Subscription state as reported by the payment processor."""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"


class TierFeature(str, Enum):
    """Metered features with per-tier limits."""
    INVOICES_PER_MONTH = "invoices_per_month"


# Per-tier limits; -1 means unlimited.
TIER_LIMITS = {
    SubscriptionTier.STARTER: {
        TierFeature.INVOICES_PER_MONTH: 5,
    },
    SubscriptionTier.STARTER_PAID: {
        TierFeature.INVOICES_PER_MONTH: -1,
    },
    SubscriptionTier.PROFESSIONAL: {
        TierFeature.INVOICES_PER_MONTH: -1,
    },
    SubscriptionTier.BUSINESS: {
        TierFeature.INVOICES_PER_MONTH: -1,
    },
}

# Statuses under which the paid tier applies; anything else falls back to starter.
ENTITLED_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class Subscription(BaseModel):
    """One subscription per business."""

    __tablename__ = "subscriptions"

    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    tier: Mapped[SubscriptionTier] = mapped_column(
        SQLEnum(SubscriptionTier),
        default=SubscriptionTier.STARTER,
        nullable=False,
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
    )
    provider_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    business: Mapped["Business"] = relationship("Business", back_populates="subscription")

    @property
    def effective_tier(self) -> SubscriptionTier:
        if self.status in ENTITLED_STATUSES:
            return self.tier
        return SubscriptionTier.STARTER
