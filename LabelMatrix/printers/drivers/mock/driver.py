"""
Mock printer driver for testing without actual hardware.
"""
import asyncio
import logging
import time
from typing import List, Optional

from LabelMatrix.lib.print_settings import PrintJobOptions
from LabelMatrix.models.qr_models import LabelRenderSpec
from LabelMatrix.printers.base import (
    BasePrinter,
    PrinterType,
    PrinterStatus,
    PrintJobResult,
    TestResult,
)
from LabelMatrix.services.printer.label_renderer import LabelRenderer

logger = logging.getLogger(__name__)


class MockPrinter(BasePrinter):
    """
    Mock printer implementation for testing.
    Simulates printer operations without requiring actual hardware.
    """

    def __init__(self, name: str = "Mock Printer", printer_type: PrinterType = PrinterType.USB,
                 identifier: str = "mock://localhost", model: str = "MockLabel-4x2", dpi: int = 203,
                 max_width_inches: Optional[float] = 4.0, max_height_inches: Optional[float] = 6.0,
                 supports_label_printing: bool = True, simulate_errors: bool = False,
                 print_delay: float = 0.01, render: bool = True, fail_on_label: Optional[int] = None):
        super().__init__(name, printer_type, identifier, model=model, dpi=dpi,
                         max_width_inches=max_width_inches, max_height_inches=max_height_inches,
                         supports_label_printing=supports_label_printing)
        self.simulate_errors = simulate_errors
        self.print_delay = print_delay
        self.render = render
        self.fail_on_label = fail_on_label
        self._renderer = LabelRenderer()
        self._print_history: List[dict] = []
        self._calls = 0

    async def print_label(self, spec: LabelRenderSpec, options: Optional[PrintJobOptions] = None) -> PrintJobResult:
        """Mock print operation with simulated delay."""
        job_id = self._generate_job_id()
        self._calls += 1

        if self._status == PrinterStatus.OFFLINE:
            return PrintJobResult(success=False, job_id=job_id, error="Printer offline (simulated)")

        # Every 5th label fails when error simulation is on
        if self.simulate_errors and self._calls % 5 == 0:
            return PrintJobResult(success=False, job_id=job_id, error="Simulated printer error - out of labels")
        if self.fail_on_label is not None and self._calls == self.fail_on_label:
            return PrintJobResult(success=False, job_id=job_id, error=f"Simulated failure on label {self._calls}")

        await asyncio.sleep(self.print_delay)

        image_size = None
        if self.render:
            image_size = self._renderer.render_image(spec).size

        self._print_history.append({
            "job_id": job_id,
            "qr_data": spec.qr_data,
            "canvas": (spec.width_px, spec.height_px),
            "image_size": image_size,
            "darkness": options.darkness if options else None,
            "timestamp": time.time(),
        })

        return PrintJobResult(success=True, job_id=job_id, message=f"Printed {spec.width_px}x{spec.height_px} label")

    async def get_status(self) -> PrinterStatus:
        """Return current printer status."""
        return self._status

    async def test_connection(self) -> TestResult:
        """Simulate connection test."""
        start_time = time.time()
        await asyncio.sleep(0)
        response_time = (time.time() - start_time) * 1000

        if self._status == PrinterStatus.OFFLINE:
            return TestResult(success=False, response_time_ms=response_time, error="Printer offline (simulated)")

        return TestResult(
            success=True,
            response_time_ms=response_time,
            message=f"Connected to mock printer at {self.identifier}"
        )

    # Additional mock-specific methods for testing
    def get_print_history(self) -> List[dict]:
        """Get print history for testing."""
        return self._print_history.copy()

    def simulate_offline(self):
        """Simulate offline condition."""
        self._set_status(PrinterStatus.OFFLINE, "Simulated: Printer offline")

    def reset_to_ready(self):
        """Reset printer to ready state."""
        self._set_status(PrinterStatus.ONLINE)
