"""
FastAPI dependency functions for service injection.

The services are created once by create_app and kept on app.state;
tests can replace them with app.dependency_overrides.
"""

from fastapi import Request

from LabelMatrix.services.printer.batch_coordinator import BatchCoordinator
from LabelMatrix.services.printer.print_job_manager import PrintJobManager
from LabelMatrix.services.printer.printer_detector import PrinterDetector
from LabelMatrix.services.printer.printer_registry import PrinterRegistry
from LabelMatrix.services.printer.qr_label_service import QRLabelService


def get_registry(request: Request) -> PrinterRegistry:
    return request.app.state.printer_registry


def get_detector(request: Request) -> PrinterDetector:
    return request.app.state.printer_detector


def get_label_service(request: Request) -> QRLabelService:
    return request.app.state.label_service


def get_job_manager(request: Request) -> PrintJobManager:
    return request.app.state.job_manager


def get_batch_coordinator(request: Request) -> BatchCoordinator:
    return request.app.state.batch_coordinator
