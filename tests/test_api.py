"""
API tests for the invoice lifecycle, audit trail, verification and
webhook endpoints.
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User


def _invoices_url(business_id, *parts) -> str:
    return "/".join([f"/api/v1/businesses/{business_id}/invoices", *map(str, parts)])


@pytest.fixture
def invoice_payload(test_customer) -> dict:
    return {
        "client_id": str(test_customer.id),
        "line_items": [
            {
                "description": "Consulting services",
                "quantity": "2",
                "unit_price": "500.00",
                "tax_rate": "7.5",
            },
        ],
        "notes": "Thank you for your business",
    }


@pytest.fixture
def create_invoice(client: AsyncClient, test_business, auth_headers, invoice_payload):
    async def _create(issue: bool = False) -> dict:
        response = await client.post(_invoices_url(test_business.id), json=invoice_payload, headers=auth_headers)
        assert response.status_code == 201, response.text
        invoice = response.json()
        if issue:
            response = await client.post(
                _invoices_url(test_business.id, invoice["id"], "issue"), headers=auth_headers
            )
            assert response.status_code == 200, response.text
            invoice = response.json()
        return invoice

    return _create


# ===========================================
# LIFECYCLE
# ===========================================

class TestInvoiceLifecycleAPI:

    async def test_create_draft(self, create_invoice):
        invoice = await create_invoice()

        assert invoice["status"] == "draft"
        assert invoice["invoice_number"] == "INV-0001"
        assert invoice["subtotal"] == "1000.00"
        assert invoice["tax_amount"] == "75.00"
        assert invoice["total_amount"] == "1075.00"
        assert invoice["invoice_hash"] is None
        assert len(invoice["line_items"]) == 1

    async def test_create_validates_line_items(self, client: AsyncClient, test_business, auth_headers, invoice_payload):
        invoice_payload["line_items"] = []
        response = await client.post(_invoices_url(test_business.id), json=invoice_payload, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_create_rejects_sub_cent_prices(
        self, client: AsyncClient, test_business, auth_headers, invoice_payload
    ):
        invoice_payload["line_items"][0]["unit_price"] = "0.335"
        response = await client.post(_invoices_url(test_business.id), json=invoice_payload, headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    async def test_update_and_delete_draft(self, client: AsyncClient, test_business, auth_headers, create_invoice):
        invoice = await create_invoice()
        url = _invoices_url(test_business.id, invoice["id"])

        response = await client.patch(url, json={"discount_amount": "75.00"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["total_amount"] == "1000.00"

        response = await client.delete(url, headers=auth_headers)
        assert response.status_code == 204

        response = await client.get(url, headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "INVOICE_NOT_FOUND"

    async def test_issue_send_and_pay(self, client: AsyncClient, test_business, auth_headers, create_invoice):
        invoice = await create_invoice(issue=True)
        assert invoice["status"] == "issued"
        assert len(invoice["invoice_hash"]) == 64
        assert invoice["verification_id"] is not None
        assert invoice["issuer_snapshot"]["name"] == "Acme Trading"

        response = await client.post(
            _invoices_url(test_business.id, invoice["id"], "send"),
            json={"recipient_email": "accounts@globex.example.com"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "sent"

        response = await client.post(
            _invoices_url(test_business.id, invoice["id"], "payments"),
            json={"amount": "1075.00", "payment_method": "bank_transfer", "payment_reference": "TRF-88"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["invoice"]["status"] == "paid"
        assert body["invoice"]["balance_due"] == "0.00"
        assert body["receipt"]["receipt_number"] == "RCP-INV-001"
        assert body["payment"]["payment_reference"] == "TRF-88"

        response = await client.get(_invoices_url(test_business.id, invoice["id"], "receipts"), headers=auth_headers)
        assert [r["receipt_number"] for r in response.json()] == ["RCP-INV-001"]

        response = await client.get(_invoices_url(test_business.id, invoice["id"], "payments"), headers=auth_headers)
        assert len(response.json()) == 1

    async def test_issued_invoice_cannot_be_edited(
        self, client: AsyncClient, test_business, auth_headers, create_invoice
    ):
        invoice = await create_invoice(issue=True)
        url = _invoices_url(test_business.id, invoice["id"])

        response = await client.patch(url, json={"notes": "changed"}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NOT_DRAFT"

        response = await client.delete(url, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NOT_DELETABLE"

    async def test_void(self, client: AsyncClient, test_business, auth_headers, create_invoice):
        invoice = await create_invoice(issue=True)
        void_url = _invoices_url(test_business.id, invoice["id"], "void")

        response = await client.post(void_url, json={"reason": "short"}, headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "REASON_TOO_SHORT"

        response = await client.post(void_url, json={"reason": "Client cancelled the order"}, headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["invoice"]["status"] == "voided"
        assert body["credit_note"]["credit_note_number"] == "CN-INV-0001"
        assert body["credit_note"]["amount"] == "1075.00"

        response = await client.get(
            _invoices_url(test_business.id, invoice["id"], "credit-note"), headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["id"] == body["credit_note"]["id"]

        response = await client.post(void_url, json={"reason": "Client cancelled the order"}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NOT_VOIDABLE"

    async def test_invalid_payment_amount(self, client: AsyncClient, test_business, auth_headers, create_invoice):
        invoice = await create_invoice(issue=True)

        response = await client.post(
            _invoices_url(test_business.id, invoice["id"], "payments"),
            json={"amount": "-10.00"},
            headers=auth_headers,
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_AMOUNT"

    async def test_list_filters_by_status(self, client: AsyncClient, test_business, auth_headers, create_invoice):
        await create_invoice()
        await create_invoice(issue=True)

        response = await client.get(_invoices_url(test_business.id), headers=auth_headers)
        assert response.json()["total"] == 2

        response = await client.get(
            _invoices_url(test_business.id), params={"status": "issued"}, headers=auth_headers
        )
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["status"] == "issued"

    async def test_unverified_user_cannot_issue(
        self, client: AsyncClient, test_business, unverified_user, headers_for, invoice_payload
    ):
        headers = headers_for(unverified_user)
        response = await client.post(_invoices_url(test_business.id), json=invoice_payload, headers=headers)
        assert response.status_code == 201

        response = await client.post(
            _invoices_url(test_business.id, response.json()["id"], "issue"), headers=headers
        )
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "EMAIL_UNVERIFIED"


# ===========================================
# ACCESS CONTROL
# ===========================================

class TestAccessControl:

    async def test_requires_authentication(self, client: AsyncClient, test_business):
        response = await client.get(_invoices_url(test_business.id))
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"

    async def test_invalid_token(self, client: AsyncClient, test_business):
        response = await client.get(
            _invoices_url(test_business.id), headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    async def test_non_member_forbidden(self, client: AsyncClient, db_session: AsyncSession, test_business, headers_for):
        stranger = User(id=uuid4(), email="stranger@example.com", full_name="Stranger", is_active=True, is_verified=True)
        db_session.add(stranger)
        await db_session.commit()

        response = await client.get(_invoices_url(test_business.id), headers=headers_for(stranger))
        assert response.status_code == 403

    async def test_unknown_business(self, client: AsyncClient, auth_headers):
        response = await client.get(_invoices_url(uuid4()), headers=auth_headers)
        assert response.status_code == 404

    async def test_auditor_is_read_only(
        self, client: AsyncClient, test_business, auditor_user, headers_for, invoice_payload
    ):
        headers = headers_for(auditor_user)

        response = await client.get(_invoices_url(test_business.id), headers=headers)
        assert response.status_code == 200

        response = await client.post(_invoices_url(test_business.id), json=invoice_payload, headers=headers)
        assert response.status_code == 403

        response = await client.get(f"/api/v1/businesses/{test_business.id}/audit-logs", headers=headers)
        assert response.status_code == 200


# ===========================================
# AUDIT TRAIL
# ===========================================

class TestAuditAPI:

    async def test_audit_logs_and_chain(self, client: AsyncClient, test_business, auth_headers, create_invoice):
        invoice = await create_invoice(issue=True)
        base = f"/api/v1/businesses/{test_business.id}/audit-logs"

        response = await client.get(base, params={"entity_id": invoice["id"]}, headers=auth_headers)
        assert response.status_code == 200
        items = response.json()["items"]
        assert [i["event_type"] for i in items] == ["INVOICE_ISSUED", "INVOICE_CREATED"]
        assert items[0]["previous_hash"] == items[1]["event_hash"]
        assert items[0]["actor_role"] == "owner"

        response = await client.get(f"{base}/verify", headers=auth_headers)
        assert response.json() == {"business_id": str(test_business.id), "is_valid": True, "discrepancies": []}

    async def test_reconciliation_endpoint(self, client: AsyncClient, test_business, auth_headers):
        response = await client.post(f"/api/v1/businesses/{test_business.id}/reconciliation", headers=auth_headers)
        assert response.status_code == 200
        assert response.json() == {"found": 0, "reconciled": [], "skipped": []}

    async def test_reconciliation_requires_admin(self, client: AsyncClient, test_business, auditor_user, headers_for):
        response = await client.post(
            f"/api/v1/businesses/{test_business.id}/reconciliation", headers=headers_for(auditor_user)
        )
        assert response.status_code == 403


# ===========================================
# PUBLIC & WEBHOOKS
# ===========================================

class TestPublicVerificationAPI:

    async def test_verify_invoice(self, client: AsyncClient, create_invoice):
        invoice = await create_invoice(issue=True)

        response = await client.get(f"/api/v1/verify/invoice/{invoice['verification_id']}")
        assert response.status_code == 200
        body = response.json()
        assert body["verified"] is True
        assert body["invoice_number"] == "INV-0001"
        assert body["status"] == "viewed"
        assert body["hash_valid"] is True

    async def test_verify_unknown(self, client: AsyncClient):
        response = await client.get(f"/api/v1/verify/invoice/{uuid4()}")
        assert response.status_code == 200
        assert response.json()["verified"] is False


class TestSubscriptionWebhook:

    async def test_rejects_bad_secret(self, client: AsyncClient, test_business):
        response = await client.post(
            "/api/v1/webhooks/subscriptions",
            json={"business_id": str(test_business.id), "tier": "professional", "status": "active"},
            headers={"X-Webhook-Secret": "wrong"},
        )
        assert response.status_code == 401

    async def test_upserts_subscription(self, client: AsyncClient, test_business, auth_headers):
        response = await client.post(
            "/api/v1/webhooks/subscriptions",
            json={
                "business_id": str(test_business.id),
                "tier": "professional",
                "status": "active",
                "provider_reference": "sub_123",
            },
            headers={"X-Webhook-Secret": "change-me-in-production"},
        )
        assert response.status_code == 200
        assert response.json()["tier"] == "professional"

        response = await client.get(
            f"/api/v1/businesses/{test_business.id}/audit-logs",
            params={"event_type": "SUBSCRIPTION_CHANGED"},
            headers=auth_headers,
        )
        items = response.json()["items"]
        assert len(items) == 1
        assert items[0]["actor_role"] == "payment_processor"
        assert items[0]["new_state"] == {"tier": "professional", "status": "active"}


async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
