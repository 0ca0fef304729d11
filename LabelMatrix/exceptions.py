"""
Consolidated LabelMatrix Exception Hierarchy

All errors raised by the label print pipeline derive from LabelMatrixException
so routers, the job manager and the batch coordinator can handle them the same
way.

Architecture:
- Base exception classes for common error types
- Domain-specific exceptions for the payload codec, printers and print jobs
- Consistent error response structure (to_dict) across all domains
"""

import logging
from typing import Any, Dict, Optional, List

logger = logging.getLogger(__name__)


# =============================================================================
# Base Exception Classes
# =============================================================================


class LabelMatrixException(Exception):
    """Base exception for all LabelMatrix-related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {"error_code": self.error_code, "message": self.message, "details": self.details}


class ValidationError(LabelMatrixException):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, str]] = None,
        missing_fields: Optional[List[str]] = None,
        errors: Optional[List[str]] = None,
        error_code: str = "VALIDATION_ERROR",
    ):
        super().__init__(message, error_code=error_code)
        self.field_errors = field_errors or {}
        self.missing_fields = missing_fields or []
        self.errors = errors or []

        # Add field errors to details
        if field_errors or missing_fields or errors:
            self.details.update(
                {"field_errors": self.field_errors, "missing_fields": self.missing_fields, "errors": self.errors}
            )


class ParseError(LabelMatrixException):
    """Raised when an encoded value cannot be parsed."""

    def __init__(self, message: str, raw_value: Optional[str] = None, error_code: str = "PARSE_ERROR"):
        super().__init__(message, error_code=error_code)
        self.raw_value = raw_value

        if raw_value is not None:
            self.details.update({"raw_value": raw_value})


class ResourceNotFoundError(LabelMatrixException):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str, resource_type: Optional[str] = None, resource_id: Optional[str] = None):
        super().__init__(message, error_code="RESOURCE_NOT_FOUND")
        self.resource_type = resource_type
        self.resource_id = resource_id

        if resource_type or resource_id:
            self.details.update({"resource_type": resource_type, "resource_id": resource_id})


class ConfigurationError(LabelMatrixException):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, config_field: Optional[str] = None, config_value: Optional[str] = None):
        super().__init__(message, error_code="CONFIGURATION_ERROR")
        self.config_field = config_field
        self.config_value = config_value

        if config_field or config_value:
            self.details.update({"config_field": config_field, "config_value": config_value})


# =============================================================================
# Payload Exceptions
# =============================================================================


class MissingFieldError(ValidationError):
    """Raised when one or more mandatory payload fields are absent."""

    def __init__(self, missing_fields: List[str], message: Optional[str] = None):
        super().__init__(
            message or f"Missing required field(s): {', '.join(missing_fields)}",
            missing_fields=missing_fields,
            error_code="MISSING_FIELD",
        )


class InvalidWeightError(ValidationError):
    """Raised when the net weight of a box exceeds its gross weight."""

    def __init__(self, net_weight: float, gross_weight: float, box_number: Optional[int] = None):
        super().__init__(
            f"Net weight {net_weight} exceeds gross weight {gross_weight}",
            field_errors={"net_weight": "must not exceed total_weight"},
            error_code="INVALID_WEIGHT",
        )
        self.net_weight = net_weight
        self.gross_weight = gross_weight
        self.box_number = box_number
        self.details.update({"net_weight": net_weight, "total_weight": gross_weight, "box_number": box_number})


class MalformedPayloadError(ParseError):
    """Raised when a compact QR payload string cannot be decoded."""

    def __init__(self, message: str, raw_value: Optional[str] = None):
        super().__init__(message, raw_value=raw_value, error_code="MALFORMED_PAYLOAD")


class HeterogeneousBatchError(ValidationError):
    """Raised when the labels of one job belong to more than one transaction (or there are none)."""

    def __init__(self, message: str, transaction_numbers: Optional[List[str]] = None):
        super().__init__(message, error_code="HETEROGENEOUS_BATCH")
        self.transaction_numbers = transaction_numbers or []
        self.details.update({"transaction_numbers": self.transaction_numbers})


# =============================================================================
# Printer Exceptions
# =============================================================================


class PrinterError(LabelMatrixException):
    """Base exception for all printer-related errors."""

    def __init__(self, message: str, printer_name: Optional[str] = None, error_code: Optional[str] = None):
        super().__init__(message, error_code=error_code or "PRINTER_ERROR")
        self.printer_name = printer_name

        if printer_name:
            self.details.update({"printer_name": printer_name})


class PrinterNotFoundError(ResourceNotFoundError):
    """Raised when a requested printer is not registered."""

    def __init__(self, message: str, printer_name: Optional[str] = None):
        super().__init__(message, resource_type="printer", resource_id=printer_name)
        self.printer_name = printer_name


class PrinterUnavailableError(PrinterError):
    """Raised when dispatch targets a printer that is offline."""

    def __init__(self, message: str = "Printer is offline", printer_name: Optional[str] = None):
        super().__init__(message, printer_name=printer_name, error_code="PRINTER_UNAVAILABLE")


class PrinterIncompatibleError(PrinterError):
    """Raised when a printer cannot print labels of the requested size."""

    def __init__(self, message: str, printer_name: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(message, printer_name=printer_name, error_code="PRINTER_INCOMPATIBLE")
        self.reason = reason

        if reason:
            self.details.update({"reason": reason})


class PrinterBusyError(PrinterError):
    """Raised when printer is busy with another job."""

    def __init__(self, message: str, printer_name: Optional[str] = None, current_job_id: Optional[str] = None):
        super().__init__(message, printer_name=printer_name, error_code="PRINTER_BUSY")
        self.current_job_id = current_job_id

        if current_job_id:
            self.details.update({"current_job_id": current_job_id})


class PrinterConnectionError(PrinterError):
    """Raised when the transport to a printer fails."""

    def __init__(self, message: str = "Cannot connect to printer", printer_name: Optional[str] = None):
        super().__init__(message, printer_name=printer_name, error_code="PRINTER_CONNECTION_ERROR")


class PrintJobError(PrinterError):
    """Raised when a print job fails on the device."""

    def __init__(self, message: str, printer_name: Optional[str] = None, job_id: Optional[str] = None):
        super().__init__(message, printer_name=printer_name, error_code="PRINT_JOB_ERROR")
        self.job_id = job_id

        if job_id:
            self.details.update({"job_id": job_id})


# =============================================================================
# Job Exceptions
# =============================================================================


class PrintJobNotFoundError(ResourceNotFoundError):
    """Raised when a print job id is unknown (or already purged)."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message, resource_type="print_job", resource_id=job_id)


class BatchNotFoundError(ResourceNotFoundError):
    """Raised when a batch id is unknown."""

    def __init__(self, message: str, batch_id: Optional[str] = None):
        super().__init__(message, resource_type="batch", resource_id=batch_id)


class InvalidJobStateError(LabelMatrixException):
    """Raised when an operation is not permitted in the job's current state."""

    def __init__(self, message: str, job_id: Optional[str] = None, state: Optional[str] = None):
        super().__init__(message, error_code="INVALID_JOB_STATE")
        self.job_id = job_id
        self.state = state
        self.details.update({"job_id": job_id, "state": state})


# =============================================================================
# Exception Logging Helpers
# =============================================================================


def log_exception(exception: Exception, context: str = None, extra_info: Optional[Dict[str, Any]] = None):
    """
    Centralized exception logging with consistent format.

    Args:
        exception: The exception to log
        context: Additional context about where the exception occurred
        extra_info: Additional information to include in the log
    """
    if isinstance(exception, LabelMatrixException):
        log_data = {
            "error_code": exception.error_code,
            "error_message": exception.message,  # LogRecord already owns "message"
            "details": exception.details,
            "context": context,
        }

        if extra_info:
            log_data.update(extra_info)

        logger.error(f"LabelMatrix Error: {exception.message}", extra=log_data)
    else:
        log_data = {
            "exception_type": type(exception).__name__,
            "error_message": str(exception),
            "context": context,
        }

        if extra_info:
            log_data.update(extra_info)

        logger.error(f"Unexpected Error: {str(exception)}", extra=log_data)


def get_http_status_code(exception: Exception) -> int:
    """
    Get appropriate HTTP status code for an exception.

    This function provides a centralized mapping of exceptions to HTTP status codes
    for consistent API responses.
    """
    if isinstance(exception, (ValidationError, ParseError)):
        return 422  # Unprocessable Entity
    elif isinstance(exception, ResourceNotFoundError):
        return 404  # Not Found
    elif isinstance(exception, (PrinterBusyError, InvalidJobStateError)):
        return 409  # Conflict
    elif isinstance(exception, (PrinterUnavailableError, PrinterConnectionError)):
        return 503  # Service Unavailable
    elif isinstance(exception, ConfigurationError):
        return 500  # Internal Server Error
    elif isinstance(exception, LabelMatrixException):
        return 400  # Bad Request (default for application errors)
    else:
        return 500  # Internal Server Error (unexpected errors)
