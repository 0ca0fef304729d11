"""
Driver selection for registered and detected printers.
"""
import logging
from typing import Optional

from LabelMatrix.printers.base import PrinterInfo, PrinterInterface
from LabelMatrix.printers.drivers.mock import MockPrinter
from LabelMatrix.printers.drivers.zpl import ZPLPrinter

logger = logging.getLogger(__name__)

SUPPORTED_DRIVERS = {
    "mock": "In-memory printer for tests and demos (mock://...)",
    "zpl": "ZPL II thermal printers over tcp://, /dev/usb/lp* or bt:// (RFCOMM)",
    "brother_ql": "Brother QL-1100/1110NWB on 102x51mm die-cut labels",
}


def create_driver(info: PrinterInfo) -> Optional[PrinterInterface]:
    """Pick a driver from the printer's model and identifier; None if nothing fits."""
    identifier = info.identifier or ""

    if identifier.startswith("mock://"):
        return MockPrinter(
            name=info.name,
            printer_type=info.type,
            identifier=identifier,
            dpi=info.dpi or 203,
            max_width_inches=info.max_width_inches,
            max_height_inches=info.max_height_inches,
            supports_label_printing=info.supports_label_printing,
        )

    if info.model.upper().startswith("QL-"):
        # Imported lazily so brother_ql is only needed when such a printer exists
        from LabelMatrix.printers.drivers.brother_ql import BrotherQLPrinter

        backend = "network" if identifier.startswith("tcp://") else "pyusb" if identifier.startswith("usb://") \
            else "linux_kernel"
        return BrotherQLPrinter(name=info.name, identifier=identifier, model=info.model, backend=backend)

    if identifier.startswith(("tcp://", "/dev/", "bt://")):
        return ZPLPrinter(
            name=info.name,
            identifier=identifier,
            printer_type=info.type,
            model=info.model or "ZPL",
            dpi=info.dpi or 203,
            max_width_inches=info.max_width_inches,
            max_height_inches=info.max_height_inches,
        )

    logger.warning(f"No driver available for printer {info.name} ({identifier!r})")
    return None
