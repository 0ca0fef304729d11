"""
Printer interface using Python protocols for type safety and modularity.
"""
from abc import ABC, abstractmethod
from typing import Protocol, Optional
from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import uuid

from LabelMatrix.lib.print_settings import PrintJobOptions
from LabelMatrix.models.qr_models import LabelRenderSpec


class PrinterType(str, Enum):
    """How the printer is connected."""
    USB = "USB"
    WIFI = "WiFi"
    BLUETOOTH = "Bluetooth"
    NETWORK = "Network"


class PrinterStatus(str, Enum):
    """Printer status as seen by the registry."""
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"


@dataclass
class PrinterInfo:
    """Information about a printer. The registry hands out copies only."""
    name: str
    type: PrinterType
    status: PrinterStatus = PrinterStatus.ONLINE
    supports_label_printing: bool = True
    max_width_inches: Optional[float] = None
    max_height_inches: Optional[float] = None
    dpi: Optional[int] = None
    identifier: str = ""
    model: str = ""
    discovery_method: Optional[str] = None
    last_seen: Optional[datetime] = None
    error_message: Optional[str] = None

    def accommodates(self, width_inches: float, height_inches: float) -> bool:
        """Check declared physical limits against a label size."""
        if self.max_width_inches is not None and width_inches > self.max_width_inches:
            return False
        if self.max_height_inches is not None and height_inches > self.max_height_inches:
            return False
        return True


@dataclass
class PrintJobResult:
    """Result of sending one label to a device."""
    success: bool
    job_id: str
    message: str = ""
    error: Optional[str] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


@dataclass
class TestResult:
    """Result of printer connectivity test."""
    success: bool
    response_time_ms: Optional[float] = None
    message: str = ""
    error: Optional[str] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


class PrinterInterface(Protocol):
    """
    Printer interface using Python protocols.
    All printer drivers must implement this interface.
    """

    async def print_label(self, spec: LabelRenderSpec, options: Optional[PrintJobOptions] = None) -> PrintJobResult:
        """
        Print one label.

        Args:
            spec: Composed label geometry and content
            options: Device options (darkness, speed, ...)

        Returns:
            PrintJobResult with success status
        """
        ...

    async def get_status(self) -> PrinterStatus:
        """Get current printer status."""
        ...

    async def test_connection(self) -> TestResult:
        """Test printer connectivity and availability."""
        ...

    def get_printer_info(self) -> PrinterInfo:
        """Get printer information."""
        ...


class BasePrinter(ABC):
    """
    Abstract base class for all printer implementations.
    Provides common functionality and enforces the interface.
    """

    def __init__(self, name: str, printer_type: PrinterType, identifier: str, model: str = "",
                 dpi: Optional[int] = None, max_width_inches: Optional[float] = None,
                 max_height_inches: Optional[float] = None, supports_label_printing: bool = True):
        self.name = name
        self.printer_type = printer_type
        self.identifier = identifier
        self.model = model
        self.dpi = dpi
        self.max_width_inches = max_width_inches
        self.max_height_inches = max_height_inches
        self.supports_label_printing = supports_label_printing
        self._status = PrinterStatus.ONLINE
        self._last_error: Optional[str] = None

    @abstractmethod
    async def print_label(self, spec: LabelRenderSpec, options: Optional[PrintJobOptions] = None) -> PrintJobResult:
        """Print one label."""
        pass

    @abstractmethod
    async def get_status(self) -> PrinterStatus:
        """Get printer status."""
        pass

    @abstractmethod
    async def test_connection(self) -> TestResult:
        """Test printer connection."""
        pass

    def get_printer_info(self) -> PrinterInfo:
        """Get printer information."""
        return PrinterInfo(
            name=self.name,
            type=self.printer_type,
            status=self._status,
            supports_label_printing=self.supports_label_printing,
            max_width_inches=self.max_width_inches,
            max_height_inches=self.max_height_inches,
            dpi=self.dpi,
            identifier=self.identifier,
            model=self.model,
            error_message=self._last_error,
        )

    def _generate_job_id(self) -> str:
        """Generate unique device job ID."""
        return f"dev_{uuid.uuid4().hex[:8]}"

    def _set_status(self, status: PrinterStatus, error: Optional[str] = None):
        """Update printer status."""
        self._status = status
        self._last_error = error
