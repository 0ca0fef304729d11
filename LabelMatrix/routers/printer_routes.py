from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from LabelMatrix.dependencies import get_detector, get_registry
from LabelMatrix.exceptions import PrinterError
from LabelMatrix.printers.base import PrinterInfo, PrinterStatus, PrinterType
from LabelMatrix.printers.driver_factory import SUPPORTED_DRIVERS
from LabelMatrix.routers.base import BaseRouter, standard_error_handling
from LabelMatrix.services.printer.printer_detector import PrinterDetector
from LabelMatrix.services.printer.printer_registry import PrinterRegistry

router = APIRouter()


class PrinterRegistration(BaseModel):
    name: str
    type: PrinterType
    identifier: str
    model: str = ""
    dpi: Optional[int] = None
    max_width_inches: Optional[float] = None
    max_height_inches: Optional[float] = None
    supports_label_printing: bool = True


class PrinterStatusUpdate(BaseModel):
    status: PrinterStatus
    error_message: Optional[str] = None


@router.get("/")
@standard_error_handling
async def list_printers(registry: PrinterRegistry = Depends(get_registry)):
    printers = registry.list_printers()
    return BaseRouter.build_success_response(data=printers, message=f"Found {len(printers)} printers")


@router.get("/drivers")
@standard_error_handling
async def list_supported_drivers():
    """Get list of supported printer drivers."""
    drivers = [{"id": driver_id, "description": description} for driver_id, description in SUPPORTED_DRIVERS.items()]
    return BaseRouter.build_success_response(data=drivers, message="Supported drivers retrieved")


@router.post("/detect")
@standard_error_handling
async def detect_printers(detector: PrinterDetector = Depends(get_detector)):
    """Probe USB, network and Bluetooth and merge what is found into the registry."""
    result = await detector.detect()
    return BaseRouter.build_success_response(
        data=result, message=f"Detection {result.detection_status}: {result.total_count} printers"
    )


@router.post("/register")
@standard_error_handling
async def register_printer(registration: PrinterRegistration, registry: PrinterRegistry = Depends(get_registry)):
    info = registry.register(PrinterInfo(
        name=registration.name,
        type=registration.type,
        identifier=registration.identifier,
        model=registration.model,
        dpi=registration.dpi,
        max_width_inches=registration.max_width_inches,
        max_height_inches=registration.max_height_inches,
        supports_label_printing=registration.supports_label_printing,
        discovery_method="manual",
    ))
    return BaseRouter.build_success_response(data=info, message=f"Printer {info.name} registered")


@router.put("/{name}/status")
@standard_error_handling
async def update_printer_status(name: str, update: PrinterStatusUpdate,
                                registry: PrinterRegistry = Depends(get_registry)):
    """Record an online/offline report; busy is derived from job reservations."""
    info = registry.set_status(name, update.status, update.error_message)
    return BaseRouter.build_success_response(data=info, message=f"Printer {name} is {info.status.value}")


@router.post("/{name}/test")
@standard_error_handling
async def test_printer(name: str, registry: PrinterRegistry = Depends(get_registry)):
    driver = registry.get_driver(name)
    if driver is None:
        raise PrinterError(f"Printer {name} has no driver", printer_name=name)
    result = await driver.test_connection()
    registry.set_status(name, PrinterStatus.ONLINE if result.success else PrinterStatus.OFFLINE, result.error)
    return BaseRouter.build_success_response(data=result, message=result.message or result.error or "Tested")


@router.delete("/{name}")
@standard_error_handling
async def unregister_printer(name: str, registry: PrinterRegistry = Depends(get_registry)):
    registry.get(name)
    registry.unregister(name)
    return BaseRouter.build_success_response(message=f"Printer {name} removed")
