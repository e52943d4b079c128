"""
Invoicemonk - Invoice Service

Invoice lifecycle: draft editing, issuance, delivery transitions and
draft deletion.

Content can only change while an invoice is a draft. Issuance freezes the
invoice: snapshots, tamper-evidence hash, verification id and retention
lock are written in the same conditional UPDATE that moves the status,
so two concurrent requests can never both issue the same draft.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.audit import AuditEventType
from app.models.base import utcnow
from app.models.business import Business, InvoiceTemplate, PaymentMethod
from app.models.client import Client
from app.models.invoice import DELIVERY_TRANSITIONS, Invoice, InvoiceLineItem, InvoiceStatus
from app.models.subscription import Subscription, SubscriptionTier, TierFeature, TIER_LIMITS
from app.services.audit_service import ActorContext, AuditService
from app.services.integrity_service import (
    IntegrityService,
    compute_document_hash,
    generate_verification_id,
)
from app.utils.error_handling import (
    BusinessNotFoundException,
    ClientNotFoundException,
    ConflictingTransitionException,
    CurrencyLockedException,
    EmailUnverifiedException,
    InvalidTransitionException,
    InvoiceNotFoundException,
    NotDeletableException,
    NotDraftException,
    NotFoundException,
    QuotaExceededException,
    ValidationException,
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
MAX_TAX_RATE = Decimal("100")

# Scale of the line item columns; inputs must fit them exactly.
QUANTITY_PLACES = 4
UNIT_PRICE_PLACES = 2
TAX_RATE_PLACES = 2


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any, field: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationException(f"Invalid number for {field}: {value!r}", field=field)
    if not result.is_finite():
        raise ValidationException(f"Invalid number for {field}: {value!r}", field=field)
    return result


def _check_scale(value: Decimal, places: int, field: str) -> Decimal:
    """Reject values with more decimal places than the column stores."""
    try:
        scaled = value.quantize(Decimal(1).scaleb(-places))
    except InvalidOperation:
        raise ValidationException(f"Invalid number for {field}: {value}", field=field)
    if scaled != value:
        raise ValidationException(f"{field} cannot have more than {places} decimal places.", field=field)
    return scaled


def calculate_totals(
    line_items_data: List[Dict[str, Any]],
    discount_amount: Any = 0,
) -> Tuple[List[Dict[str, Any]], Decimal, Decimal, Decimal]:
    """
    Validate line items and compute invoice totals.

    subtotal = sum(q x p) and tax = sum(q x p x rate / 100), each rounded
    half-up to 2 decimal places once, at the invoice level.

    Returns:
        (normalized line items, subtotal, tax_amount, total_amount)

    Raises:
        ValidationException: empty or invalid line items, negative total
    """
    if not line_items_data:
        raise ValidationException("An invoice needs at least one line item.", field="line_items")

    lines: List[Dict[str, Any]] = []
    raw_subtotal = Decimal("0")
    raw_tax = Decimal("0")
    has_priced_line = False

    for idx, item in enumerate(line_items_data):
        description = (item.get("description") or "").strip()
        if not description:
            raise ValidationException(
                "Line item description is required.", field=f"line_items[{idx}].description"
            )
        quantity = _to_decimal(item.get("quantity", 1), f"line_items[{idx}].quantity")
        unit_price = _to_decimal(item.get("unit_price", 0), f"line_items[{idx}].unit_price")
        tax_rate = _to_decimal(item.get("tax_rate", 0) or 0, f"line_items[{idx}].tax_rate")

        if quantity <= 0:
            raise ValidationException("Quantity must be greater than zero.", field=f"line_items[{idx}].quantity")
        if unit_price < 0:
            raise ValidationException("Unit price cannot be negative.", field=f"line_items[{idx}].unit_price")
        if tax_rate < 0 or tax_rate > MAX_TAX_RATE:
            raise ValidationException("Tax rate must be between 0 and 100.", field=f"line_items[{idx}].tax_rate")
        quantity = _check_scale(quantity, QUANTITY_PLACES, f"line_items[{idx}].quantity")
        unit_price = _check_scale(unit_price, UNIT_PRICE_PLACES, f"line_items[{idx}].unit_price")
        tax_rate = _check_scale(tax_rate, TAX_RATE_PLACES, f"line_items[{idx}].tax_rate")
        if unit_price > 0:
            has_priced_line = True

        amount = quantity * unit_price
        line_tax = amount * tax_rate / Decimal("100")
        raw_subtotal += amount
        raw_tax += line_tax

        lines.append({
            "description": description,
            "quantity": quantity,
            "unit_price": unit_price,
            "tax_rate": tax_rate,
            "tax_amount": quantize_money(line_tax),
            "amount": quantize_money(amount),
            "sort_order": idx,
        })

    if not has_priced_line:
        raise ValidationException(
            "At least one line item must have a price greater than zero.", field="line_items"
        )

    discount = _to_decimal(discount_amount or 0, "discount_amount")
    if discount < 0:
        raise ValidationException("Discount cannot be negative.", field="discount_amount")

    subtotal = quantize_money(raw_subtotal)
    tax_amount = quantize_money(raw_tax)
    total_amount = subtotal + tax_amount - quantize_money(discount)
    if total_amount < 0:
        raise ValidationException("Discount cannot exceed the invoice total.", field="discount_amount")

    return lines, subtotal, tax_amount, total_amount


def invoice_state(invoice: Invoice) -> Dict[str, Any]:
    """Audit view of an invoice."""
    return {
        "status": invoice.status.value,
        "invoice_number": invoice.invoice_number,
        "client_id": str(invoice.client_id),
        "currency": invoice.currency,
        "subtotal": str(invoice.subtotal),
        "tax_amount": str(invoice.tax_amount),
        "discount_amount": str(invoice.discount_amount),
        "total_amount": str(invoice.total_amount),
        "amount_paid": str(invoice.amount_paid),
        "issue_date": invoice.issue_date.isoformat() if invoice.issue_date else None,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
    }


class InvoiceService:
    """Service for invoice lifecycle operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.integrity = IntegrityService(db)

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def get_invoice(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        for_update: bool = False,
    ) -> Invoice:
        """Get an invoice of the business, freshly loaded from the database."""
        query = (
            select(Invoice)
            .options(selectinload(Invoice.line_items))
            .where(Invoice.id == invoice_id)
            .where(Invoice.business_id == business_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()

        result = await self.db.execute(query)
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundException(invoice_id)
        return invoice

    async def list_invoices(
        self,
        business_id: uuid.UUID,
        status: Optional[InvoiceStatus] = None,
        client_id: Optional[uuid.UUID] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[Invoice], int]:
        """Get invoices of a business with filters."""
        query = (
            select(Invoice)
            .options(selectinload(Invoice.line_items))
            .where(Invoice.business_id == business_id)
        )
        count_query = select(func.count(Invoice.id)).where(Invoice.business_id == business_id)

        if status:
            query = query.where(Invoice.status == status)
            count_query = count_query.where(Invoice.status == status)
        if client_id:
            query = query.where(Invoice.client_id == client_id)
            count_query = count_query.where(Invoice.client_id == client_id)

        total = (await self.db.execute(count_query)).scalar() or 0

        offset = (page - 1) * page_size
        query = query.order_by(Invoice.created_at.desc()).limit(page_size).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def _lock_business(self, business_id: uuid.UUID) -> Business:
        result = await self.db.execute(
            select(Business)
            .where(Business.id == business_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        business = result.scalar_one_or_none()
        if business is None:
            raise BusinessNotFoundException(business_id)
        return business

    async def _check_references(
        self,
        business_id: uuid.UUID,
        client_id: uuid.UUID,
        template_id: Optional[uuid.UUID],
        payment_method_id: Optional[uuid.UUID],
    ) -> None:
        client = await self.db.scalar(
            select(Client.id).where(Client.id == client_id, Client.business_id == business_id)
        )
        if client is None:
            raise ClientNotFoundException(client_id)

        if template_id:
            template = await self.db.scalar(
                select(InvoiceTemplate.id).where(
                    InvoiceTemplate.id == template_id,
                    or_(InvoiceTemplate.business_id == business_id, InvoiceTemplate.business_id.is_(None)),
                )
            )
            if template is None:
                raise NotFoundException("Invoice template", template_id)

        if payment_method_id:
            method = await self.db.scalar(
                select(PaymentMethod.id).where(
                    PaymentMethod.id == payment_method_id,
                    PaymentMethod.business_id == business_id,
                )
            )
            if method is None:
                raise NotFoundException("Payment method", payment_method_id)

    @staticmethod
    def _resolve_currency(business: Business, currency: Optional[str]) -> str:
        resolved = (currency or business.default_currency).upper()
        if business.currency_locked and resolved != business.default_currency:
            raise CurrencyLockedException(business.default_currency, resolved)
        return resolved

    # ===========================================
    # DRAFTS
    # ===========================================

    async def create_draft(
        self,
        business_id: uuid.UUID,
        actor: ActorContext,
        client_id: uuid.UUID,
        line_items_data: List[Dict[str, Any]],
        currency: Optional[str] = None,
        issue_date: Optional[date] = None,
        due_date: Optional[date] = None,
        notes: Optional[str] = None,
        terms: Optional[str] = None,
        template_id: Optional[uuid.UUID] = None,
        payment_method_id: Optional[uuid.UUID] = None,
        discount_amount: Any = 0,
    ) -> Invoice:
        """
        Create a draft invoice with line items.

        The invoice number is allocated from the business counter while the
        business row is locked.
        """
        lines, subtotal, tax_amount, total_amount = calculate_totals(line_items_data, discount_amount)

        business = await self._lock_business(business_id)
        resolved_currency = self._resolve_currency(business, currency)
        await self._check_references(business_id, client_id, template_id, payment_method_id)

        invoice_number = f"{business.invoice_prefix}-{business.next_invoice_number:04d}"
        business.next_invoice_number += 1

        invoice = Invoice(
            id=uuid.uuid4(),
            business_id=business_id,
            client_id=client_id,
            invoice_number=invoice_number,
            status=InvoiceStatus.DRAFT,
            issue_date=issue_date,
            due_date=due_date,
            currency=resolved_currency,
            subtotal=subtotal,
            tax_amount=tax_amount,
            discount_amount=quantize_money(_to_decimal(discount_amount or 0, "discount_amount")),
            total_amount=total_amount,
            amount_paid=Decimal("0.00"),
            notes=notes,
            terms=terms,
            template_id=template_id,
            payment_method_id=payment_method_id,
            created_by_id=actor.user_id,
            updated_by_id=actor.user_id,
            line_items=[InvoiceLineItem(**line) for line in lines],
        )
        self.db.add(invoice)
        await self.db.flush()

        await self.audit.log_event(
            AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id=invoice.id,
            business_id=business_id,
            new_state=invoice_state(invoice),
            metadata={"line_item_count": len(lines)},
            **actor.audit_fields(),
        )
        await self.db.commit()

        logger.info(f"Draft invoice {invoice_number} created for business {business_id}")
        return await self.get_invoice(business_id, invoice.id)

    async def update_draft(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        actor: ActorContext,
        **update_data,
    ) -> Invoice:
        """
        Update a draft invoice.

        Accepts client_id, currency, issue_date, due_date, notes, terms,
        template_id, payment_method_id, discount_amount and line_items.
        Passing line_items replaces all existing lines.

        Raises:
            NotDraftException: invoice has been issued
        """
        invoice = await self.get_invoice(business_id, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT:
            logger.warning(f"Rejected edit of {invoice.status.value} invoice {invoice.invoice_number}")
            raise NotDraftException(invoice.status, operation="edit")

        business = await self._lock_business(business_id)
        previous_state = invoice_state(invoice)

        client_id = update_data.get("client_id") or invoice.client_id
        template_id = update_data.get("template_id", invoice.template_id)
        payment_method_id = update_data.get("payment_method_id", invoice.payment_method_id)
        currency = self._resolve_currency(business, update_data.get("currency") or invoice.currency)
        await self._check_references(business_id, client_id, template_id, payment_method_id)

        discount_amount = update_data.get("discount_amount")
        if discount_amount is None:
            discount_amount = invoice.discount_amount

        line_items_data = update_data.get("line_items")
        if line_items_data is None:
            line_items_data = [
                {
                    "description": line.description,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                    "tax_rate": line.tax_rate,
                }
                for line in invoice.line_items
            ]
        lines, subtotal, tax_amount, total_amount = calculate_totals(line_items_data, discount_amount)

        for field in ("issue_date", "due_date", "notes", "terms"):
            if field in update_data:
                setattr(invoice, field, update_data[field])

        invoice.client_id = client_id
        invoice.template_id = template_id
        invoice.payment_method_id = payment_method_id
        invoice.currency = currency
        invoice.subtotal = subtotal
        invoice.tax_amount = tax_amount
        invoice.discount_amount = quantize_money(_to_decimal(discount_amount, "discount_amount"))
        invoice.total_amount = total_amount
        invoice.updated_by_id = actor.user_id
        if "line_items" in update_data and update_data["line_items"] is not None:
            invoice.line_items = [InvoiceLineItem(**line) for line in lines]

        await self.db.flush()

        await self.audit.log_event(
            AuditEventType.INVOICE_UPDATED,
            entity_type="invoice",
            entity_id=invoice.id,
            business_id=business_id,
            previous_state=previous_state,
            new_state=invoice_state(invoice),
            metadata={"fields": sorted(update_data.keys())},
            **actor.audit_fields(),
        )
        await self.db.commit()

        return await self.get_invoice(business_id, invoice.id)

    async def delete_draft(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        actor: ActorContext,
    ) -> None:
        """
        Delete a draft invoice with its line items.

        Raises:
            NotDeletableException: invoice has been issued
        """
        invoice = await self.get_invoice(business_id, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT:
            logger.warning(f"Rejected delete of {invoice.status.value} invoice {invoice.invoice_number}")
            raise NotDeletableException(invoice.status)

        previous_state = invoice_state(invoice)
        await self.db.delete(invoice)
        await self.db.flush()

        await self.audit.log_event(
            AuditEventType.INVOICE_DELETED,
            entity_type="invoice",
            entity_id=invoice_id,
            business_id=business_id,
            previous_state=previous_state,
            **actor.audit_fields(),
        )
        await self.db.commit()
        logger.info(f"Draft invoice {previous_state['invoice_number']} deleted")

    # ===========================================
    # ISSUANCE
    # ===========================================

    async def count_issued_this_month(self, business_id: uuid.UUID, now: Optional[datetime] = None) -> int:
        """Invoices that left draft during the current UTC calendar month."""
        now = now or utcnow()
        month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
        result = await self.db.execute(
            select(func.count(Invoice.id)).where(
                Invoice.business_id == business_id,
                Invoice.status != InvoiceStatus.DRAFT,
                Invoice.issued_at >= month_start,
            )
        )
        return result.scalar() or 0

    async def _check_quota(self, business_id: uuid.UUID) -> None:
        subscription = await self.db.scalar(
            select(Subscription).where(Subscription.business_id == business_id)
        )
        tier = subscription.effective_tier if subscription else SubscriptionTier.STARTER
        limit = TIER_LIMITS[tier][TierFeature.INVOICES_PER_MONTH]
        if limit == -1:
            return

        issued = await self.count_issued_this_month(business_id)
        if issued >= limit:
            logger.warning(f"Issuance quota reached for business {business_id}: {issued}/{limit} ({tier.value})")
            raise QuotaExceededException(tier.value, limit, issued)

    async def issue(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        actor: ActorContext,
    ) -> Invoice:
        """
        Issue a draft invoice.

        Preconditions are checked in this order: verified email, draft
        status, monthly quota, currency lock. The quota count and the
        status change happen while the business row is locked.

        Raises:
            EmailUnverifiedException, NotDraftException, QuotaExceededException,
            CurrencyLockedException, ConflictingTransitionException
        """
        if not actor.email_verified:
            logger.warning(f"Issuance of invoice {invoice_id} refused: email not verified")
            raise EmailUnverifiedException()

        invoice = await self.get_invoice(business_id, invoice_id, for_update=True)
        if invoice.status != InvoiceStatus.DRAFT:
            logger.warning(f"Rejected issue of {invoice.status.value} invoice {invoice.invoice_number}")
            raise NotDraftException(invoice.status, operation="issue")

        business = await self._lock_business(business_id)
        await self._check_quota(business_id)
        self._resolve_currency(business, invoice.currency)

        previous_state = invoice_state(invoice)
        issued_at = utcnow()
        issue_date = invoice.issue_date or issued_at.date()
        snapshots = await self.integrity.capture_invoice_snapshots(invoice, business, issued_at)
        retention_until = await self.integrity.retention_until("invoice", business.jurisdiction, issued_at)

        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == InvoiceStatus.DRAFT)
            .values(
                status=InvoiceStatus.ISSUED,
                issued_at=issued_at,
                issued_by=actor.user_id,
                issue_date=issue_date,
                invoice_hash=compute_document_hash(invoice.invoice_number, invoice.total_amount, issued_at),
                verification_id=generate_verification_id(),
                retention_locked_until=retention_until,
                updated_by_id=actor.user_id,
                **snapshots,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Concurrent transition on invoice {invoice.invoice_number} during issue")
            raise ConflictingTransitionException(invoice.id, "issue")

        if not business.currency_locked:
            business.currency_locked = True
            business.currency_locked_at = issued_at
            business.default_currency = invoice.currency
            logger.info(f"Currency of business {business_id} locked to {invoice.currency}")
        await self.db.flush()

        invoice = await self.get_invoice(business_id, invoice.id)
        await self.audit.log_event(
            AuditEventType.INVOICE_ISSUED,
            entity_type="invoice",
            entity_id=invoice.id,
            business_id=business_id,
            previous_state=previous_state,
            new_state={
                **invoice_state(invoice),
                "invoice_hash": invoice.invoice_hash,
                "verification_id": str(invoice.verification_id),
            },
            **actor.audit_fields(),
        )
        await self.db.commit()

        logger.info(f"Invoice {invoice.invoice_number} issued by {actor.user_id}")
        return invoice

    # ===========================================
    # DELIVERY
    # ===========================================

    async def _transition(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        target: InvoiceStatus,
        event_type: AuditEventType,
        actor: ActorContext,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Invoice:
        invoice = await self.get_invoice(business_id, invoice_id, for_update=True)
        if invoice.status == target and target == InvoiceStatus.VIEWED:
            return invoice

        allowed_from = DELIVERY_TRANSITIONS[target]
        if invoice.status not in allowed_from:
            logger.warning(
                f"Rejected {invoice.status.value} -> {target.value} on invoice {invoice.invoice_number}"
            )
            raise InvalidTransitionException(invoice.status, target)

        previous_status = invoice.status
        result = await self.db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == previous_status)
            .values(status=target, updated_by_id=actor.user_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictingTransitionException(invoice.id, f"mark_{target.value}")

        await self.audit.log_event(
            event_type,
            entity_type="invoice",
            entity_id=invoice.id,
            business_id=business_id,
            previous_state={"status": previous_status.value},
            new_state={"status": target.value},
            metadata=metadata,
            **actor.audit_fields(),
        )
        await self.db.commit()

        logger.info(f"Invoice {invoice.invoice_number} {previous_status.value} -> {target.value}")
        return await self.get_invoice(business_id, invoice.id)

    async def mark_sent(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        actor: ActorContext,
        recipient_email: Optional[str] = None,
    ) -> Invoice:
        """issued -> sent"""
        metadata = {"recipient_email": recipient_email} if recipient_email else None
        return await self._transition(
            business_id, invoice_id, InvoiceStatus.SENT, AuditEventType.INVOICE_SENT, actor, metadata
        )

    async def mark_viewed(
        self,
        business_id: uuid.UUID,
        invoice_id: uuid.UUID,
        actor: ActorContext,
    ) -> Invoice:
        """issued|sent -> viewed. No-op when already viewed."""
        return await self._transition(
            business_id, invoice_id, InvoiceStatus.VIEWED, AuditEventType.INVOICE_VIEWED, actor
        )
