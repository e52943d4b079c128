"""
Invoicemonk - Integrity Service

Tamper-evidence primitives shared by invoices, receipts and credit notes:

- SHA-256 document hashes over (number, amount, issuance timestamp)
- Public verification ids
- Versioned snapshot capture of the records an issued document refers to
- Retention-lock calculation per jurisdiction
"""

import hashlib
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.business import Business, InvoiceTemplate, PaymentMethod
from app.models.client import Client
from app.models.credit_note import CreditNote
from app.models.invoice import Invoice
from app.models.payment import Payment, Receipt
from app.models.tax import RetentionPolicy, TaxSchema
from app.schemas.snapshots import (
    InvoiceReferenceSnapshotV1,
    IssuerSnapshotV1,
    PayerSnapshotV1,
    PaymentMethodSnapshotV1,
    PaymentSnapshotV1,
    RecipientSnapshotV1,
    TaxSchemaSnapshotV1,
    TemplateSnapshotV1,
)

logger = logging.getLogger(__name__)


# ===========================================
# HASHING
# ===========================================

def to_utc(value: datetime) -> datetime:
    """Normalize to aware UTC. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with microseconds and a trailing Z."""
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def compute_document_hash(document_number: str, amount: Decimal, issued_at: datetime) -> str:
    """
    Tamper-evidence hash of an issued document.

    The canonical string is ``{number}|{amount:.2f}|{issued_at}`` with the
    timestamp rendered by ``format_utc_timestamp``.
    """
    payload = f"{document_number}|{Decimal(amount):.2f}|{format_utc_timestamp(issued_at)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_document_hash(
    document_number: str,
    amount: Decimal,
    issued_at: Optional[datetime],
    stored_hash: Optional[str],
) -> bool:
    if not stored_hash or issued_at is None:
        return False
    return compute_document_hash(document_number, amount, issued_at) == stored_hash


def generate_verification_id() -> uuid.UUID:
    return uuid.uuid4()


def add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 February in a non-leap target year
        return value.replace(year=value.year + years, day=28)


# ===========================================
# SNAPSHOTS & RETENTION
# ===========================================

class IntegrityService:
    """Snapshot capture, retention and record verification."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def active_tax_schema(self, jurisdiction: str, on_date: date) -> Optional[TaxSchema]:
        """Newest active schema of the jurisdiction in force on ``on_date``."""
        result = await self.db.execute(
            select(TaxSchema)
            .where(
                and_(
                    TaxSchema.jurisdiction == jurisdiction,
                    TaxSchema.is_active == True,  # noqa: E712
                    TaxSchema.effective_from <= on_date,
                    or_(TaxSchema.effective_until.is_(None), TaxSchema.effective_until >= on_date),
                )
            )
            .order_by(TaxSchema.effective_from.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def retention_until(self, entity_type: str, jurisdiction: str, from_time: datetime) -> datetime:
        """Date until which a record must be kept, from the jurisdiction policy."""
        result = await self.db.execute(
            select(RetentionPolicy.retention_years).where(
                RetentionPolicy.entity_type == entity_type,
                RetentionPolicy.jurisdiction == jurisdiction,
            )
        )
        years = result.scalar_one_or_none()
        if years is None:
            years = settings.default_retention_years
        return add_years(to_utc(from_time), years)

    async def capture_invoice_snapshots(
        self,
        invoice: Invoice,
        business: Business,
        captured_at: datetime,
    ) -> Dict[str, Optional[dict]]:
        """
        Freeze the issuer, recipient, template, tax schema and payment method
        as they are right now.

        Returns a mapping of invoice column name to the JSON-safe snapshot.
        Template, tax schema and payment method are None when absent.
        """
        client = await self.db.get(Client, invoice.client_id)

        snapshots: Dict[str, Optional[dict]] = {
            "issuer_snapshot": self._issuer_snapshot(business, captured_at).to_storage(),
            "recipient_snapshot": RecipientSnapshotV1(
                captured_at=captured_at,
                client_id=client.id,
                name=client.name,
                email=client.email,
                phone=client.phone,
                address=client.address,
                contact_person=client.contact_person,
                tax_id=client.tax_id,
                cac_number=client.cac_number,
            ).to_storage(),
            "template_snapshot": None,
            "tax_schema_snapshot": None,
            "payment_method_snapshot": None,
        }

        if invoice.template_id:
            template = await self.db.get(InvoiceTemplate, invoice.template_id)
            if template is not None:
                snapshots["template_snapshot"] = TemplateSnapshotV1(
                    captured_at=captured_at,
                    template_id=template.id,
                    name=template.name,
                    version=template.version,
                    layout=template.layout,
                ).to_storage()

        tax_schema = await self.active_tax_schema(
            business.jurisdiction, invoice.issue_date or captured_at.date()
        )
        if tax_schema is not None:
            snapshots["tax_schema_snapshot"] = TaxSchemaSnapshotV1(
                captured_at=captured_at,
                tax_schema_id=tax_schema.id,
                name=tax_schema.name,
                version=tax_schema.version,
                jurisdiction=tax_schema.jurisdiction,
                rates=tax_schema.rates or {},
                rules=tax_schema.rules,
                effective_from=tax_schema.effective_from,
            ).to_storage()
        else:
            logger.warning(f"No active tax schema for jurisdiction {business.jurisdiction}")

        if invoice.payment_method_id:
            method = await self.db.get(PaymentMethod, invoice.payment_method_id)
            if method is not None:
                snapshots["payment_method_snapshot"] = PaymentMethodSnapshotV1(
                    captured_at=captured_at,
                    payment_method_id=method.id,
                    provider_type=method.provider_type,
                    display_name=method.display_name,
                    instructions=method.instructions,
                ).to_storage()

        return snapshots

    async def capture_receipt_snapshots(
        self,
        invoice: Invoice,
        payment: Payment,
        business: Business,
        captured_at: datetime,
    ) -> Dict[str, dict]:
        """Issuer, payer, invoice and payment snapshots for a receipt."""
        client = await self.db.get(Client, invoice.client_id)

        return {
            "issuer_snapshot": self._issuer_snapshot(business, captured_at).to_storage(),
            "payer_snapshot": PayerSnapshotV1(
                captured_at=captured_at,
                client_id=client.id,
                name=client.name,
                email=client.email,
                phone=client.phone,
                address=client.address,
                contact_person=client.contact_person,
                tax_id=client.tax_id,
                cac_number=client.cac_number,
            ).to_storage(),
            "invoice_snapshot": InvoiceReferenceSnapshotV1(
                captured_at=captured_at,
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                total_amount=invoice.total_amount,
                issue_date=invoice.issue_date,
                due_date=invoice.due_date,
                currency=invoice.currency,
            ).to_storage(),
            "payment_snapshot": PaymentSnapshotV1(
                captured_at=captured_at,
                payment_id=payment.id,
                amount=payment.amount,
                method=payment.payment_method,
                reference=payment.payment_reference,
                payment_date=payment.payment_date,
                notes=payment.notes,
            ).to_storage(),
        }

    @staticmethod
    def _issuer_snapshot(business: Business, captured_at: datetime) -> IssuerSnapshotV1:
        return IssuerSnapshotV1(
            captured_at=captured_at,
            business_id=business.id,
            name=business.name,
            legal_name=business.legal_name,
            tax_id=business.tax_id,
            cac_number=business.cac_number,
            vat_registration_number=business.vat_registration_number,
            is_vat_registered=business.is_vat_registered,
            contact_email=business.contact_email,
            contact_phone=business.contact_phone,
            address=business.address,
            logo_url=business.logo_url,
            jurisdiction=business.jurisdiction,
        )

    # ===========================================
    # VERIFICATION
    # ===========================================

    @staticmethod
    def verify_invoice(invoice: Invoice) -> bool:
        return verify_document_hash(
            invoice.invoice_number, invoice.total_amount, invoice.issued_at, invoice.invoice_hash
        )

    @staticmethod
    def verify_receipt(receipt: Receipt) -> bool:
        return verify_document_hash(
            receipt.receipt_number, receipt.amount, receipt.issued_at, receipt.receipt_hash
        )

    @staticmethod
    def verify_credit_note(credit_note: CreditNote) -> bool:
        return verify_document_hash(
            credit_note.credit_note_number,
            credit_note.amount,
            credit_note.issued_at,
            credit_note.credit_note_hash,
        )
