"""
Invoicemonk - Tax & Retention Models

Jurisdiction-level compliance rules: versioned tax schemas (snapshotted
onto invoices at issuance) and record-retention periods.
"""

from datetime import date
from typing import Optional

from sqlalchemy import Boolean, Date, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, JSONType


class TaxSchema(BaseModel):
    """
    Versioned tax rules for a jurisdiction.

    The active schema for a business is the newest active row for its
    jurisdiction whose effective window contains the issue date.
    """

    __tablename__ = "tax_schemas"
    __table_args__ = (
        UniqueConstraint("jurisdiction", "version", name="uq_tax_schemas_jurisdiction_version"),
    )

    jurisdiction: Mapped[str] = mapped_column(String(2), nullable=False, index=True)
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    rates: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    rules: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class RetentionPolicy(BaseModel):
    """Legal retention period per jurisdiction and record type."""

    __tablename__ = "retention_policies"
    __table_args__ = (
        UniqueConstraint("entity_type", "jurisdiction", name="uq_retention_policies_entity_jurisdiction"),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)  # invoice, receipt, credit_note
    jurisdiction: Mapped[str] = mapped_column(String(2), default="NG", nullable=False)
    retention_years: Mapped[int] = mapped_column(Integer, default=7, nullable=False)
    legal_basis: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
