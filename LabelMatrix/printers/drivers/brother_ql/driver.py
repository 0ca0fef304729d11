"""
Brother QL printer driver for 102x51mm (4x2in) die-cut box labels.
"""

import asyncio
import logging
import socket
import time
from typing import Optional

from PIL import Image
from brother_ql.backends.helpers import send
from brother_ql.conversion import convert
from brother_ql.raster import BrotherQLRaster

from LabelMatrix.lib.print_settings import PrintJobOptions
from LabelMatrix.models.qr_models import LabelRenderSpec
from LabelMatrix.printers.base import (
    BasePrinter,
    PrinterType,
    PrinterStatus,
    PrintJobResult,
    TestResult,
    PrintJobError,
)
from LabelMatrix.services.printer.label_renderer import LabelRenderer

logger = logging.getLogger(__name__)

# brother_ql label name -> printable dots at 300 dpi
BROTHER_QL_LABELS = {
    "102x51": (1164, 526),
}

BACKEND_TYPES = {
    "network": PrinterType.NETWORK,
    "linux_kernel": PrinterType.USB,
    "pyusb": PrinterType.USB,
}


class BrotherQLPrinter(BasePrinter):
    """
    Brother QL wide-format printer (QL-1100/QL-1110NWB family).
    Renders the label image at its canvas size and scales it onto the die-cut label.
    """

    def __init__(self, name: str, identifier: str, model: str = "QL-1100", backend: str = "network",
                 label: str = "102x51", threshold: float = 70.0):
        if label not in BROTHER_QL_LABELS:
            raise ValueError(f"Unsupported Brother QL label {label!r}")
        super().__init__(name, BACKEND_TYPES.get(backend, PrinterType.USB), identifier, model=model, dpi=300,
                         max_width_inches=102 / 25.4, max_height_inches=51 / 25.4)
        self.backend = backend
        self.label = label
        self.threshold = threshold
        self._renderer = LabelRenderer()

    async def print_label(self, spec: LabelRenderSpec, options: Optional[PrintJobOptions] = None) -> PrintJobResult:
        """Print one label using Brother QL hardware."""
        job_id = self._generate_job_id()
        try:
            instructions = self._convert_spec_to_instructions(spec, options)
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self._send, instructions)
        except Exception as e:
            self._set_status(PrinterStatus.OFFLINE, str(e))
            raise PrintJobError(f"Brother QL print error: {str(e)}", self.name, job_id)

        if not result.get("did_print", True) or result.get("outcome") == "error":
            return PrintJobResult(success=False, job_id=job_id, error=f"Printer reported {result.get('outcome')}")
        return PrintJobResult(success=True, job_id=job_id, message=f"Printed on {self.label} Brother QL label")

    def _send(self, instructions: bytes) -> dict:
        return send(
            instructions=instructions,
            printer_identifier=self.identifier,
            backend_identifier=self.backend,
            blocking=True,
        ) or {}

    def _convert_spec_to_instructions(self, spec: LabelRenderSpec, options: Optional[PrintJobOptions]) -> bytes:
        """Render the label and convert it to Brother QL raster instructions."""
        image = self._renderer.render_image(spec)
        image = image.resize(BROTHER_QL_LABELS[self.label], Image.Resampling.NEAREST)

        qlr = BrotherQLRaster(self.model)
        return convert(
            qlr=qlr,
            images=[image],
            label=self.label,
            rotate="0",
            threshold=self.threshold,
            dither=False,
            compress=False,
            red=False,
            dpi_600=False,
            hq=not (options and options.print_quality == "draft"),
            cut=True,
        )

    async def get_status(self) -> PrinterStatus:
        """Get current printer status."""
        if self.backend == "network":
            result = await self.test_connection()
            self._set_status(PrinterStatus.ONLINE if result.success else PrinterStatus.OFFLINE, result.error)
        return self._status

    async def test_connection(self) -> TestResult:
        """Test Brother QL printer connectivity."""
        start_time = time.time()
        if self.backend != "network":
            return TestResult(
                success=True,
                response_time_ms=(time.time() - start_time) * 1000,
                message=f"USB Brother QL connection assumed available",
            )

        host = self.identifier.replace("tcp://", "").split(":")[0]
        port = int(self.identifier.split(":")[-1]) if ":" in self.identifier.split("//")[-1] else 9100
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: socket.create_connection((host, port), timeout=5).close())
        except OSError as e:
            return TestResult(
                success=False, response_time_ms=(time.time() - start_time) * 1000, error=f"Connection failed: {e}"
            )
        return TestResult(
            success=True,
            response_time_ms=(time.time() - start_time) * 1000,
            message=f"Connected to Brother QL at {host}:{port}",
        )
