"""
Invoicemonk - Routers Package

FastAPI route handlers.

Routers:
- invoices: Invoice lifecycle, payments, receipts and voids
- audit: Audit trail, chain verification and void reconciliation
- verification: Public invoice/receipt verification
- webhooks: Subscription updates from the payment processor
"""

from app.routers import (
    audit,
    invoices,
    verification,
    webhooks,
)

__all__ = [
    "audit",
    "invoices",
    "verification",
    "webhooks",
]
