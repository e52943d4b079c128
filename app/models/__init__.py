"""
Invoicemonk - SQLAlchemy Models Package

This package contains all database models for the application.
Importing it also installs the ORM immutability listeners.
"""

from app.models.base import BaseModel, AppendOnlyModel, TimestampMixin, AuditMixin
from app.models.user import User, BusinessMember, BusinessRole
from app.models.business import Business, InvoiceTemplate, PaymentMethod
from app.models.client import Client
from app.models.tax import TaxSchema, RetentionPolicy
from app.models.subscription import (
    Subscription,
    SubscriptionTier,
    SubscriptionStatus,
    TierFeature,
    TIER_LIMITS,
)
from app.models.invoice import Invoice, InvoiceLineItem, InvoiceStatus, OPEN_STATUSES
from app.models.credit_note import CreditNote
from app.models.payment import Payment, Receipt
from app.models.audit import AuditLog, AuditEventType
from app.models.immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    "BaseModel",
    "AppendOnlyModel",
    "TimestampMixin",
    "AuditMixin",
    "User",
    "BusinessMember",
    "BusinessRole",
    "Business",
    "InvoiceTemplate",
    "PaymentMethod",
    "Client",
    "TaxSchema",
    "RetentionPolicy",
    "Subscription",
    "SubscriptionTier",
    "SubscriptionStatus",
    "TierFeature",
    "TIER_LIMITS",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceStatus",
    "OPEN_STATUSES",
    "CreditNote",
    "Payment",
    "Receipt",
    "AuditLog",
    "AuditEventType",
]
