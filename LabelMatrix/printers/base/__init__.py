"""
Base printer interfaces and classes.
"""
from .printer_interface import (
    PrinterInterface,
    BasePrinter,
    PrinterType,
    PrinterStatus,
    PrinterInfo,
    PrintJobResult,
    TestResult
)
from .exceptions import (
    PrinterError,
    PrinterNotFoundError,
    PrinterUnavailableError,
    PrinterIncompatibleError,
    PrinterConnectionError,
    PrinterBusyError,
    PrintJobError
)

__all__ = [
    "PrinterInterface",
    "BasePrinter",
    "PrinterType",
    "PrinterStatus",
    "PrinterInfo",
    "PrintJobResult",
    "TestResult",
    "PrinterError",
    "PrinterNotFoundError",
    "PrinterUnavailableError",
    "PrinterIncompatibleError",
    "PrinterConnectionError",
    "PrinterBusyError",
    "PrintJobError"
]
