"""
Invoicemonk - Services Package

Business logic services.
"""

from app.services.audit_service import ActorContext, AuditService
from app.services.integrity_service import IntegrityService
from app.services.invoice_service import InvoiceService
from app.services.payment_service import PaymentService
from app.services.credit_note_service import CreditNoteService
from app.services.reconciliation_service import ReconciliationService
from app.services.verification_service import VerificationService
from app.services.subscription_service import SubscriptionService

__all__ = [
    "ActorContext",
    "AuditService",
    "IntegrityService",
    "InvoiceService",
    "PaymentService",
    "CreditNoteService",
    "ReconciliationService",
    "VerificationService",
    "SubscriptionService",
]
