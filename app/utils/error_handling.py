"""
Error Handling Module for Invoicemonk

This module provides centralized error handling with:
- Custom exception hierarchy for the invoice lifecycle
- Standardized error responses
- Error logging and tracking
- Database error handling

Error classes:
- Validation errors: rejected synchronously, nothing persisted
- State-precondition errors: rejected before any write
- Conflict errors: a concurrent transition won; caller should refetch
- Partial-failure errors: require manual reconciliation, never retried
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

# Configure logging
logger = logging.getLogger("invoicemonk.errors")


# Shown for conflict and partial-failure errors, where the data may need review.
SUPPORT_MESSAGE = (
    "Something went wrong and this record may be in an inconsistent state. "
    "Please contact support."
)


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    REASON_TOO_SHORT = "REASON_TOO_SHORT"

    # Authentication/Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    EMAIL_UNVERIFIED = "EMAIL_UNVERIFIED"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    INVOICE_NOT_FOUND = "INVOICE_NOT_FOUND"
    CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
    BUSINESS_NOT_FOUND = "BUSINESS_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Lifecycle preconditions (409/422)
    NOT_DRAFT = "NOT_DRAFT"
    NOT_VOIDABLE = "NOT_VOIDABLE"
    NOT_DELETABLE = "NOT_DELETABLE"
    NOT_PAYABLE = "NOT_PAYABLE"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CURRENCY_LOCKED = "CURRENCY_LOCKED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    # Concurrency / consistency
    CONFLICTING_TRANSITION = "CONFLICTING_TRANSITION"
    PARTIAL_VOID_FAILURE = "PARTIAL_VOID_FAILURE"

    # Integrity
    IMMUTABLE_RECORD = "IMMUTABLE_RECORD"
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"
    SNAPSHOT_VERSION_UNSUPPORTED = "SNAPSHOT_VERSION_UNSUPPORTED"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Base validation exception"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}. Amount must be a positive number.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class ReasonTooShortException(ValidationException):
    """Void reason below the minimum length"""

    def __init__(self, min_length: int, actual_length: int):
        super().__init__(
            message=f"Void reason must be at least {min_length} characters.",
            field="reason",
            code=ErrorCode.REASON_TOO_SHORT,
            details={"min_length": min_length, "actual_length": actual_length},
        )


# ============================================================================
# Authentication/Authorization Exceptions
# ============================================================================

class AuthorizationException(AppException):
    """Base authorization exception"""

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        code: ErrorCode = ErrorCode.FORBIDDEN,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class EmailUnverifiedException(AuthorizationException):
    """Issuance requires a verified email address"""

    def __init__(self):
        super().__init__(
            message="Please verify your email address before issuing invoices.",
            code=ErrorCode.EMAIL_UNVERIFIED,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class InvoiceNotFoundException(NotFoundException):
    """Invoice not found (or not visible to this business)"""

    def __init__(self, invoice_id: Union[str, UUID]):
        super().__init__(
            resource_type="Invoice",
            resource_id=invoice_id,
            code=ErrorCode.INVOICE_NOT_FOUND,
        )


class ClientNotFoundException(NotFoundException):
    """Client not found in this business"""

    def __init__(self, client_id: Union[str, UUID]):
        super().__init__(
            resource_type="Client",
            resource_id=client_id,
            code=ErrorCode.CLIENT_NOT_FOUND,
        )


class BusinessNotFoundException(NotFoundException):
    """Business not found"""

    def __init__(self, business_id: Union[str, UUID]):
        super().__init__(
            resource_type="Business",
            resource_id=business_id,
            code=ErrorCode.BUSINESS_NOT_FOUND,
        )


class ConflictException(AppException):
    """Resource conflict exception"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_CONFLICT,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if resource_type:
            _details["resource_type"] = resource_type
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=_details,
        )


# ============================================================================
# Lifecycle Precondition Exceptions
# ============================================================================

class InvoiceStateException(ConflictException):
    """Base class for state-precondition failures on an invoice"""

    def __init__(self, message: str, code: ErrorCode, current_status: Any, operation: str):
        super().__init__(
            message=message,
            resource_type="Invoice",
            code=code,
            details={
                "current_status": getattr(current_status, "value", current_status),
                "operation": operation,
            },
        )
        self.current_status = current_status


class NotDraftException(InvoiceStateException):
    """Operation requires a draft invoice"""

    def __init__(self, current_status: Any, operation: str = "edit"):
        super().__init__(
            message=f"Only draft invoices can be changed ({operation}); invoice is {getattr(current_status, 'value', current_status)}.",
            code=ErrorCode.NOT_DRAFT,
            current_status=current_status,
            operation=operation,
        )


class NotVoidableException(InvoiceStateException):
    """Only issued, sent or viewed invoices can be voided"""

    def __init__(self, current_status: Any):
        super().__init__(
            message=f"Invoice cannot be voided in status {getattr(current_status, 'value', current_status)}.",
            code=ErrorCode.NOT_VOIDABLE,
            current_status=current_status,
            operation="void",
        )


class NotDeletableException(InvoiceStateException):
    """Only drafts can be deleted; issued invoices must be voided"""

    def __init__(self, current_status: Any):
        super().__init__(
            message="Only draft invoices can be deleted. Issued invoices must be voided.",
            code=ErrorCode.NOT_DELETABLE,
            current_status=current_status,
            operation="delete",
        )


class NotPayableException(InvoiceStateException):
    """Payments are only accepted on issued, sent or viewed invoices"""

    def __init__(self, current_status: Any):
        super().__init__(
            message=f"Cannot record payment for invoice with status: {getattr(current_status, 'value', current_status)}.",
            code=ErrorCode.NOT_PAYABLE,
            current_status=current_status,
            operation="record_payment",
        )


class InvalidTransitionException(InvoiceStateException):
    """Status transition not allowed from the current state"""

    def __init__(self, current_status: Any, target_status: Any):
        target = getattr(target_status, "value", target_status)
        super().__init__(
            message=f"Invoice cannot move from {getattr(current_status, 'value', current_status)} to {target}.",
            code=ErrorCode.INVALID_TRANSITION,
            current_status=current_status,
            operation=f"mark_{target}",
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class BusinessRuleException(AppException):
    """Business rule violation exception"""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
    ):
        _details = details or {}
        if rule:
            _details["violated_rule"] = rule
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            details=_details,
        )


class CurrencyLockedException(BusinessRuleException):
    """Business currency is locked after the first issued invoice"""

    def __init__(self, locked_currency: str, requested_currency: str):
        super().__init__(
            message=f"Business currency is locked to {locked_currency}; {requested_currency} invoices are not allowed.",
            rule="CURRENCY_LOCKED_AFTER_FIRST_ISSUANCE",
            code=ErrorCode.CURRENCY_LOCKED,
            details={"locked_currency": locked_currency, "requested_currency": requested_currency},
        )


class QuotaExceededException(BusinessRuleException):
    """Monthly issuance limit of the subscription tier reached"""

    def __init__(self, tier: str, limit: int, current_count: int):
        super().__init__(
            message=f"You have reached your monthly limit of {limit} invoices on the {tier} plan. Please upgrade to continue.",
            rule="INVOICES_PER_MONTH",
            code=ErrorCode.QUOTA_EXCEEDED,
            details={"tier": tier, "limit": limit, "current_count": current_count},
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
        )


class SnapshotVersionError(BusinessRuleException):
    """Stored snapshot kind or version is not understood by this release"""

    def __init__(self, kind: Any, version: Any):
        super().__init__(
            message=f"Unsupported snapshot {kind!r} version {version!r}.",
            code=ErrorCode.SNAPSHOT_VERSION_UNSUPPORTED,
            details={"kind": str(kind), "schema_version": str(version)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


# ============================================================================
# Concurrency / Consistency Exceptions
# ============================================================================

class ConflictingTransitionException(ConflictException):
    """A concurrent request changed the invoice first"""

    def __init__(self, invoice_id: Union[str, UUID], operation: str):
        super().__init__(
            message=SUPPORT_MESSAGE,
            resource_type="Invoice",
            code=ErrorCode.CONFLICTING_TRANSITION,
            details={"invoice_id": str(invoice_id), "operation": operation},
        )


class PartialVoidFailureException(AppException):
    """
    Credit note exists but the invoice was not flipped to voided.

    Must not be retried: a retry would create a duplicate credit note.
    The reconciliation job completes the void.
    """

    def __init__(
        self,
        invoice_id: Union[str, UUID],
        credit_note_id: Optional[Union[str, UUID]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(
            code=ErrorCode.PARTIAL_VOID_FAILURE,
            message="Credit note created but failed to update invoice status. Please contact support.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={
                "invoice_id": str(invoice_id),
                "credit_note_id": str(credit_note_id) if credit_note_id else None,
                "requires_reconciliation": True,
            },
            original_error=original_error,
        )


# ============================================================================
# Integrity Exceptions
# ============================================================================

class ImmutabilityViolationException(AppException):
    """Attempt to modify or delete a record that is frozen"""

    def __init__(self, record_type: str, record_id: Any, operation: str, reason: str):
        super().__init__(
            code=ErrorCode.IMMUTABLE_RECORD,
            message=f"{record_type} records cannot be modified: {reason}.",
            status_code=status.HTTP_409_CONFLICT,
            details={"record_type": record_type, "record_id": str(record_id), "operation": operation},
        )


class AuditWriteException(AppException):
    """Audit entry could not be written; the transition is rolled back"""

    def __init__(self, event_type: str, original_error: Optional[Exception] = None):
        super().__init__(
            code=ErrorCode.AUDIT_WRITE_FAILED,
            message=SUPPORT_MESSAGE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"event_type": event_type},
            original_error=original_error,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = details

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    level = logging.CRITICAL if exc.code == ErrorCode.PARTIAL_VOID_FAILURE else (
        logging.ERROR if exc.status_code >= 500 else logging.WARNING
    )
    logger.log(
        level,
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
        exc_info=exc.original_error,
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    # Map status codes to error codes
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    response = create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )
    if getattr(exc, "headers", None):
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        # Check for specific constraints
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
        elif "foreign key" in error_str:
            error_message = "Referenced record does not exist"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    # In production, don't expose internal error details
    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
