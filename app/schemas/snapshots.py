"""
Invoicemonk - Snapshot Schemas

Versioned, tagged snapshot payloads frozen onto invoices and receipts.

Every snapshot carries ``kind`` and ``schema_version``. Stored payloads
are read back through ``load_snapshot``, which refuses kinds or versions
this release does not know instead of assuming they are compatible.
Bump ``schema_version`` and register a new model when a format changes.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple, Type
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.utils.error_handling import SnapshotVersionError


class SnapshotKind(str, Enum):
    """Snapshot variants."""
    ISSUER = "issuer"
    RECIPIENT = "recipient"
    TEMPLATE = "template"
    TAX_SCHEMA = "tax_schema"
    PAYMENT_METHOD = "payment_method"
    PAYER = "payer"
    INVOICE_REFERENCE = "invoice_reference"
    PAYMENT = "payment"


class Snapshot(BaseModel):
    """Common envelope."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: str
    schema_version: int
    captured_at: datetime

    def to_storage(self) -> Dict[str, Any]:
        """JSON-safe dict for the JSON/JSONB column."""
        return self.model_dump(mode="json")


# ===========================================
# INVOICE SNAPSHOTS
# ===========================================

class IssuerSnapshotV1(Snapshot):
    """Legal identity of the issuing business."""
    kind: Literal["issuer"] = SnapshotKind.ISSUER.value
    schema_version: Literal[1] = 1

    business_id: UUID
    name: str
    legal_name: Optional[str] = None
    tax_id: Optional[str] = None
    cac_number: Optional[str] = None
    vat_registration_number: Optional[str] = None
    is_vat_registered: bool = False
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    logo_url: Optional[str] = None
    jurisdiction: str


class _PartyFields(Snapshot):
    client_id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    contact_person: Optional[str] = None
    tax_id: Optional[str] = None
    cac_number: Optional[str] = None


class RecipientSnapshotV1(_PartyFields):
    """Identity of the invoiced client."""
    kind: Literal["recipient"] = SnapshotKind.RECIPIENT.value
    schema_version: Literal[1] = 1


class TemplateSnapshotV1(Snapshot):
    kind: Literal["template"] = SnapshotKind.TEMPLATE.value
    schema_version: Literal[1] = 1

    template_id: UUID
    name: str
    version: int
    layout: Optional[Dict[str, Any]] = None


class TaxSchemaSnapshotV1(Snapshot):
    """Tax rules in force for the business jurisdiction at issuance."""
    kind: Literal["tax_schema"] = SnapshotKind.TAX_SCHEMA.value
    schema_version: Literal[1] = 1

    tax_schema_id: UUID
    name: str
    version: str
    jurisdiction: str
    rates: Dict[str, Any]
    rules: Optional[Dict[str, Any]] = None
    effective_from: date


class PaymentMethodSnapshotV1(Snapshot):
    kind: Literal["payment_method"] = SnapshotKind.PAYMENT_METHOD.value
    schema_version: Literal[1] = 1

    payment_method_id: UUID
    provider_type: str
    display_name: str
    instructions: Optional[Dict[str, Any]] = None


# ===========================================
# RECEIPT SNAPSHOTS
# ===========================================

class PayerSnapshotV1(_PartyFields):
    kind: Literal["payer"] = SnapshotKind.PAYER.value
    schema_version: Literal[1] = 1


class InvoiceReferenceSnapshotV1(Snapshot):
    kind: Literal["invoice_reference"] = SnapshotKind.INVOICE_REFERENCE.value
    schema_version: Literal[1] = 1

    invoice_id: UUID
    invoice_number: str
    total_amount: Decimal
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    currency: str


class PaymentSnapshotV1(Snapshot):
    kind: Literal["payment"] = SnapshotKind.PAYMENT.value
    schema_version: Literal[1] = 1

    payment_id: UUID
    amount: Decimal
    method: Optional[str] = None
    reference: Optional[str] = None
    payment_date: date
    notes: Optional[str] = None


SNAPSHOT_REGISTRY: Dict[Tuple[str, int], Type[Snapshot]] = {
    (model.model_fields["kind"].default, model.model_fields["schema_version"].default): model
    for model in (
        IssuerSnapshotV1,
        RecipientSnapshotV1,
        TemplateSnapshotV1,
        TaxSchemaSnapshotV1,
        PaymentMethodSnapshotV1,
        PayerSnapshotV1,
        InvoiceReferenceSnapshotV1,
        PaymentSnapshotV1,
    )
}


def load_snapshot(data: Optional[Dict[str, Any]]) -> Optional[Snapshot]:
    """
    Parse a stored snapshot into its typed model.

    Raises:
        SnapshotVersionError: unknown kind or schema_version
    """
    if data is None:
        return None
    kind = data.get("kind")
    version = data.get("schema_version")
    model = SNAPSHOT_REGISTRY.get((kind, version))
    if model is None:
        raise SnapshotVersionError(kind, version)
    return model.model_validate(data)
