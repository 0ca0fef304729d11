"""
Printer System Exceptions

Re-exported from the consolidated LabelMatrix.exceptions module so drivers
can import everything printer related from LabelMatrix.printers.base.
"""

from LabelMatrix.exceptions import (
    PrinterError,
    PrinterNotFoundError,
    PrinterUnavailableError,
    PrinterIncompatibleError,
    PrinterConnectionError,
    PrinterBusyError,
    PrintJobError,
)

__all__ = [
    "PrinterError",
    "PrinterNotFoundError",
    "PrinterUnavailableError",
    "PrinterIncompatibleError",
    "PrinterConnectionError",
    "PrinterBusyError",
    "PrintJobError",
]
