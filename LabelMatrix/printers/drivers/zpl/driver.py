"""
ZPL thermal printer driver.

Sends one ZPL document per label over whichever transport the identifier
names:

    tcp://192.168.1.50:9100   raw TCP (JetDirect) socket
    /dev/usb/lp0              USB printer class device file
    bt://00:11:22:33:44:55/1  Bluetooth RFCOMM channel (Linux)
"""
import asyncio
import logging
import socket
import time
from typing import Optional, Tuple

from LabelMatrix.lib.print_settings import PrintJobOptions
from LabelMatrix.models.qr_models import LabelRenderSpec
from LabelMatrix.printers.base import (
    BasePrinter,
    PrinterType,
    PrinterStatus,
    PrintJobResult,
    TestResult,
    PrinterConnectionError,
)
from LabelMatrix.services.printer.label_renderer import LabelRenderer

logger = logging.getLogger(__name__)

DEFAULT_RAW_PORT = 9100
DEFAULT_RFCOMM_CHANNEL = 1


def parse_tcp_identifier(identifier: str, default_port: int = DEFAULT_RAW_PORT) -> Tuple[str, int]:
    """'tcp://host:port' or 'host' -> (host, port)."""
    address = identifier.replace("tcp://", "", 1)
    if ":" in address:
        host, port = address.rsplit(":", 1)
        return host, int(port)
    return address, default_port


def parse_bluetooth_identifier(identifier: str) -> Tuple[str, int]:
    """'bt://MAC[/channel]' -> (MAC, channel)."""
    address = identifier.replace("bt://", "", 1)
    if "/" in address:
        mac, channel = address.split("/", 1)
        return mac, int(channel)
    return address, DEFAULT_RFCOMM_CHANNEL


class ZPLPrinter(BasePrinter):
    """Zebra-compatible printer speaking ZPL II."""

    def __init__(self, name: str, identifier: str, printer_type: Optional[PrinterType] = None,
                 model: str = "ZPL", dpi: int = 203, max_width_inches: Optional[float] = 4.09,
                 max_height_inches: Optional[float] = None, timeout: float = 5.0):
        if printer_type is None:
            printer_type = self._infer_type(identifier)
        super().__init__(name, printer_type, identifier, model=model, dpi=dpi,
                         max_width_inches=max_width_inches, max_height_inches=max_height_inches)
        self.timeout = timeout
        self._renderer = LabelRenderer()

    @staticmethod
    def _infer_type(identifier: str) -> PrinterType:
        if identifier.startswith("bt://"):
            return PrinterType.BLUETOOTH
        if identifier.startswith("/dev/"):
            return PrinterType.USB
        return PrinterType.NETWORK

    async def print_label(self, spec: LabelRenderSpec, options: Optional[PrintJobOptions] = None) -> PrintJobResult:
        """Render the label to ZPL and send it to the device."""
        job_id = self._generate_job_id()
        document = self._renderer.render_zpl(spec, options).encode("utf-8")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send, document)
        except (OSError, PrinterConnectionError) as e:
            logger.warning(f"ZPL send to {self.identifier} failed: {e}")
            self._set_status(PrinterStatus.OFFLINE, str(e))
            return PrintJobResult(success=False, job_id=job_id, error=f"Send failed: {e}")

        self._set_status(PrinterStatus.ONLINE)
        return PrintJobResult(success=True, job_id=job_id, message=f"Sent {len(document)} bytes of ZPL")

    def _send(self, document: bytes):
        """Blocking write of one document to the transport."""
        if self.identifier.startswith("/dev/"):
            with open(self.identifier, "wb") as device:
                device.write(document)
            return

        if self.identifier.startswith("bt://"):
            if not hasattr(socket, "AF_BLUETOOTH"):
                raise PrinterConnectionError("Bluetooth sockets are not supported on this platform", self.name)
            mac, channel = parse_bluetooth_identifier(self.identifier)
            with socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM) as sock:
                sock.settimeout(self.timeout)
                sock.connect((mac, channel))
                sock.sendall(document)
            return

        host, port = parse_tcp_identifier(self.identifier)
        with socket.create_connection((host, port), timeout=self.timeout) as sock:
            sock.sendall(document)

    async def get_status(self) -> PrinterStatus:
        """Probe the transport and report online/offline."""
        result = await self.test_connection()
        self._set_status(PrinterStatus.ONLINE if result.success else PrinterStatus.OFFLINE, result.error)
        return self._status

    async def test_connection(self) -> TestResult:
        """Open (and close) the transport without sending data."""
        start_time = time.time()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._probe)
        except (OSError, PrinterConnectionError) as e:
            return TestResult(
                success=False, response_time_ms=(time.time() - start_time) * 1000, error=f"Connection failed: {e}"
            )
        return TestResult(
            success=True,
            response_time_ms=(time.time() - start_time) * 1000,
            message=f"Connected to {self.identifier}",
        )

    def _probe(self):
        if self.identifier.startswith("/dev/"):
            with open(self.identifier, "wb"):
                return
        if self.identifier.startswith("bt://"):
            if not hasattr(socket, "AF_BLUETOOTH"):
                raise PrinterConnectionError("Bluetooth sockets are not supported on this platform", self.name)
            mac, channel = parse_bluetooth_identifier(self.identifier)
            with socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM) as sock:
                sock.settimeout(self.timeout)
                sock.connect((mac, channel))
            return
        host, port = parse_tcp_identifier(self.identifier)
        with socket.create_connection((host, port), timeout=self.timeout):
            return
