"""
Invoicemonk - ORM Immutability Guard

SQLAlchemy event listeners that refuse modifications of records that
carry legal weight:

  Record              | Immutable when             | Allowed changes
  --------------------|----------------------------|-------------------------------
  Invoice             | status left DRAFT          | MUTABLE_AFTER_ISSUE columns
  InvoiceLineItem     | parent invoice not DRAFT   | none
  CreditNote          | always                     | none
  Payment             | always                     | none
  Receipt             | always                     | none
  AuditLog            | always                     | none

The listeners fire before SQL reaches the database. The PostgreSQL
migration installs triggers enforcing the same rules for raw SQL.
"""

import logging

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from app.models.audit import AuditLog
from app.models.credit_note import CreditNote
from app.models.invoice import Invoice, InvoiceLineItem, InvoiceStatus, MUTABLE_AFTER_ISSUE
from app.models.payment import Payment, Receipt
from app.utils.error_handling import ImmutabilityViolationException

logger = logging.getLogger(__name__)


APPEND_ONLY_MODELS = (AuditLog, CreditNote, Payment, Receipt)

# Bulk UPDATE/DELETE statements are never allowed against these.
BULK_PROTECTED_MODELS = APPEND_ONLY_MODELS + (InvoiceLineItem,)


def _blocked(record_type: str, record_id, operation: str, reason: str) -> ImmutabilityViolationException:
    logger.error(
        f"Immutability violation blocked: {operation} {record_type} {record_id} ({reason})",
        extra={"record_type": record_type, "record_id": str(record_id), "operation": operation},
    )
    return ImmutabilityViolationException(
        record_type=record_type,
        record_id=record_id,
        operation=operation,
        reason=reason,
    )


def _persisted_status(target: Invoice) -> InvoiceStatus:
    """Status as stored in the database before this flush."""
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return target.status


# ===========================================
# APPEND-ONLY RECORDS
# ===========================================

def _reject_update(mapper, connection, target):
    raise _blocked(type(target).__name__, target.id, "UPDATE", "record is append-only")


def _reject_delete(mapper, connection, target):
    raise _blocked(type(target).__name__, target.id, "DELETE", "record is append-only")


# ===========================================
# INVOICES
# ===========================================

def _check_invoice_update(mapper, connection, target):
    if _persisted_status(target) == InvoiceStatus.DRAFT:
        return

    column_keys = {prop.key for prop in mapper.column_attrs}
    state = inspect(target)
    changed = [
        attr.key
        for attr in state.attrs
        if attr.key in column_keys and attr.history.has_changes()
    ]
    forbidden = sorted(set(changed) - MUTABLE_AFTER_ISSUE)
    if forbidden:
        raise _blocked(
            "Invoice",
            target.id,
            "UPDATE",
            f"issued invoice fields are frozen: {', '.join(forbidden)}",
        )


def _check_invoice_delete(mapper, connection, target):
    if _persisted_status(target) != InvoiceStatus.DRAFT:
        raise _blocked("Invoice", target.id, "DELETE", "only draft invoices can be deleted")


def _parent_status(connection, invoice_id):
    return connection.execute(
        select(Invoice.__table__.c.status).where(Invoice.__table__.c.id == invoice_id)
    ).scalar_one_or_none()


def _check_line_item_change(operation: str):
    def _check(mapper, connection, target):
        status = _parent_status(connection, target.invoice_id)
        # The parent row is gone when a draft is deleted with its lines.
        if status is not None and InvoiceStatus(status) != InvoiceStatus.DRAFT:
            raise _blocked(
                "InvoiceLineItem",
                target.id,
                operation,
                "line items of an issued invoice are frozen",
            )
    return _check


def _check_line_item_insert(mapper, connection, target):
    status = _parent_status(connection, target.invoice_id)
    if status is not None and InvoiceStatus(status) != InvoiceStatus.DRAFT:
        raise _blocked("InvoiceLineItem", target.id, "INSERT", "cannot add lines to an issued invoice")


# ===========================================
# BULK STATEMENTS
# ===========================================

def _check_bulk_statement(orm_execute_state):
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    for mapper in orm_execute_state.all_mappers:
        if issubclass(mapper.class_, BULK_PROTECTED_MODELS):
            operation = "UPDATE" if orm_execute_state.is_update else "DELETE"
            raise _blocked(mapper.class_.__name__, "*", operation, "bulk statement against protected table")


_LISTENERS = [
    (Invoice, "before_update", _check_invoice_update),
    (Invoice, "before_delete", _check_invoice_delete),
    (InvoiceLineItem, "before_insert", _check_line_item_insert),
    (InvoiceLineItem, "before_update", _check_line_item_change("UPDATE")),
    (InvoiceLineItem, "before_delete", _check_line_item_change("DELETE")),
]
for _model in APPEND_ONLY_MODELS:
    _LISTENERS.append((_model, "before_update", _reject_update))
    _LISTENERS.append((_model, "before_delete", _reject_delete))


def register_immutability_listeners() -> None:
    """Install the listeners. Safe to call more than once."""
    for target, identifier, fn in _LISTENERS:
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)
    if not event.contains(Session, "do_orm_execute", _check_bulk_statement):
        event.listen(Session, "do_orm_execute", _check_bulk_statement)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. Only used by tests simulating raw tampering."""
    for target, identifier, fn in _LISTENERS:
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
    if event.contains(Session, "do_orm_execute", _check_bulk_statement):
        event.remove(Session, "do_orm_execute", _check_bulk_statement)
