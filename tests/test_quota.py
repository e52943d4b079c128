"""
Tests for the monthly issuance quota of the subscription tier.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import SubscriptionStatus, SubscriptionTier, TIER_LIMITS, TierFeature
from app.services.credit_note_service import CreditNoteService
from app.services.invoice_service import InvoiceService
from app.services.subscription_service import SubscriptionService
from app.utils.error_handling import QuotaExceededException


STARTER_LIMIT = TIER_LIMITS[SubscriptionTier.STARTER][TierFeature.INVOICES_PER_MONTH]


async def _issue_up_to_limit(make_issued) -> list:
    return [await make_issued() for _ in range(STARTER_LIMIT)]


class TestStarterQuota:
    """Starter businesses issue at most five invoices per month."""

    async def test_sixth_issue_rejected(self, db_session: AsyncSession, test_business, make_issued, make_draft, actor):
        await _issue_up_to_limit(make_issued)
        draft = await make_draft()

        with pytest.raises(QuotaExceededException) as exc_info:
            await InvoiceService(db_session).issue(test_business.id, draft.id, actor)
        await db_session.rollback()

        assert exc_info.value.status_code == 402
        assert exc_info.value.details["limit"] == 5
        assert exc_info.value.details["current_count"] == 5
        assert exc_info.value.details["tier"] == "starter"

    async def test_drafts_are_not_limited(self, db_session: AsyncSession, test_business, make_issued, make_draft):
        await _issue_up_to_limit(make_issued)
        draft = await make_draft()
        assert draft.invoice_number == "INV-0006"

    async def test_voided_invoices_still_count(
        self, db_session: AsyncSession, test_business, make_issued, make_draft, actor
    ):
        issued = await _issue_up_to_limit(make_issued)
        await CreditNoteService(db_session).void_invoice(
            test_business.id, issued[0].id, actor, "Issued with the wrong amount"
        )
        draft = await make_draft()

        with pytest.raises(QuotaExceededException):
            await InvoiceService(db_session).issue(test_business.id, draft.id, actor)
        await db_session.rollback()

    async def test_count_is_per_calendar_month(self, db_session: AsyncSession, test_business, make_issued):
        await make_issued()
        service = InvoiceService(db_session)

        assert await service.count_issued_this_month(test_business.id) == 1
        next_year = datetime.now(timezone.utc).year + 1
        assert await service.count_issued_this_month(
            test_business.id, now=datetime(next_year, 1, 15, tzinfo=timezone.utc)
        ) == 0


class TestPaidTiers:
    """Tier comes from the subscription webhook."""

    async def test_professional_is_unlimited(
        self, db_session: AsyncSession, test_business, make_issued
    ):
        await SubscriptionService(db_session).apply_webhook(
            test_business.id, SubscriptionTier.PROFESSIONAL, SubscriptionStatus.ACTIVE
        )

        issued = [await make_issued() for _ in range(STARTER_LIMIT + 1)]
        assert issued[-1].invoice_number == "INV-0006"

    async def test_past_due_falls_back_to_starter(
        self, db_session: AsyncSession, test_business, make_issued, make_draft, actor
    ):
        await SubscriptionService(db_session).apply_webhook(
            test_business.id, SubscriptionTier.PROFESSIONAL, SubscriptionStatus.PAST_DUE
        )
        await _issue_up_to_limit(make_issued)
        draft = await make_draft()

        with pytest.raises(QuotaExceededException):
            await InvoiceService(db_session).issue(test_business.id, draft.id, actor)
        await db_session.rollback()
