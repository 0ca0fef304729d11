"""
Printer detection across USB, network/WiFi and Bluetooth.

Each probe runs concurrently under its own timeout. A slow or failing probe
never blocks the others; its failure is reported in the result's error list.
"""

import asyncio
import glob
import ipaddress
import logging
import re
import shutil
import socket
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from LabelMatrix.config.print_config import PrintConfig
from LabelMatrix.models.print_job_models import PrinterDetectionResult
from LabelMatrix.printers.base import PrinterInfo, PrinterStatus, PrinterType

logger = logging.getLogger(__name__)

# USB vendor id -> (vendor, driver model prefix)
USB_PRINTER_VENDORS = {
    "04f9": ("Brother", "QL-1100"),
    "0a5f": ("Zebra", "ZPL"),
    "1203": ("TSC", "ZPL"),
    "0dd4": ("Custom", "ZPL"),
}

BLUETOOTH_PRINTER_NAMES = re.compile(r"printer|zebra|label|brother|\bql-|\bzq\d|tsc|xprinter|niimbot", re.IGNORECASE)
LSUSB_LINE = re.compile(r"Bus\s+(\d+)\s+Device\s+(\d+):\s+ID\s+([0-9a-fA-F]{4}):([0-9a-fA-F]{4})\s*(.*)")
BLUETOOTHCTL_LINE = re.compile(r"Device\s+([0-9A-Fa-f:]{17})\s+(.+)")

MAX_NETWORK_HOSTS = 1024


class DetectionProbe:
    """One discovery method. Subclasses report what they can see right now."""

    method: str = "probe"

    def available(self) -> bool:
        """False when the environment lacks what this probe needs (tools, devices, config)."""
        return True

    async def discover(self) -> List[PrinterInfo]:
        raise NotImplementedError


class USBProbe(DetectionProbe):
    """lsusb vendor ids plus /dev/usb/lp* printer-class device files."""

    method = "usb"

    def __init__(self, device_glob: str = "/dev/usb/lp*"):
        self.device_glob = device_glob

    def available(self) -> bool:
        return shutil.which("lsusb") is not None or bool(glob.glob(self.device_glob))

    async def discover(self) -> List[PrinterInfo]:
        devices = sorted(glob.glob(self.device_glob))
        vendors = await self._lsusb_vendors() if shutil.which("lsusb") else []

        printers = []
        for index, (vendor_id, vendor, model, _description) in enumerate(vendors):
            identifier = devices[index] if index < len(devices) else f"usb://0x{vendor_id}"
            printers.append(PrinterInfo(
                name=f"{vendor} {model} (USB {index})",
                type=PrinterType.USB,
                status=PrinterStatus.ONLINE,
                identifier=identifier,
                model=model,
                dpi=300 if model.startswith("QL-") else 203,
                max_width_inches=102 / 25.4 if model.startswith("QL-") else 4.09,
                discovery_method=self.method,
                last_seen=datetime.utcnow(),
            ))

        # Device files without a recognised vendor are still printer-class devices
        for device in devices[len(vendors):]:
            printers.append(PrinterInfo(
                name=f"USB printer {device}",
                type=PrinterType.USB,
                status=PrinterStatus.ONLINE,
                identifier=device,
                model="ZPL",
                dpi=203,
                max_width_inches=4.09,
                discovery_method=self.method,
                last_seen=datetime.utcnow(),
            ))
        return printers

    async def _lsusb_vendors(self) -> List[tuple]:
        process = await asyncio.create_subprocess_exec(
            "lsusb",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise RuntimeError(f"lsusb exited with {process.returncode}: {stderr.decode().strip()}")

        found = []
        for line in stdout.decode().splitlines():
            match = LSUSB_LINE.search(line)
            if not match:
                continue
            vendor_id = match.group(3).lower()
            if vendor_id in USB_PRINTER_VENDORS:
                vendor, model = USB_PRINTER_VENDORS[vendor_id]
                found.append((vendor_id, vendor, model, match.group(5).strip()))
        return found


class NetworkProbe(DetectionProbe):
    """Raw-port (JetDirect) connect scan over configured hosts and ranges."""

    method = "network"

    def __init__(self, hosts: Sequence[str] = (), ranges: Sequence[str] = (), port: int = 9100,
                 connect_timeout: float = 0.5, concurrency: int = 64):
        self.hosts = list(hosts)
        self.ranges = list(ranges)
        self.port = port
        self.connect_timeout = connect_timeout
        self.concurrency = concurrency

    def available(self) -> bool:
        return bool(self.hosts or self.ranges)

    def candidate_hosts(self) -> List[str]:
        candidates = list(self.hosts)
        for range_str in self.ranges:
            try:
                network = ipaddress.ip_network(range_str, strict=False)
            except ValueError as e:
                logger.warning(f"Skipping invalid network range {range_str}: {e}")
                continue
            for ip in network.hosts():
                candidates.append(str(ip))
                if len(candidates) >= MAX_NETWORK_HOSTS:
                    logger.warning(f"Network scan capped at {MAX_NETWORK_HOSTS} hosts")
                    return list(dict.fromkeys(candidates))
        return list(dict.fromkeys(candidates))

    async def discover(self) -> List[PrinterInfo]:
        semaphore = asyncio.Semaphore(self.concurrency)
        found: List[PrinterInfo] = []

        async def check(host: str):
            async with semaphore:
                if await self._is_listening(host):
                    found.append(PrinterInfo(
                        name=f"ZPL @ {host}:{self.port}",
                        type=PrinterType.NETWORK,
                        status=PrinterStatus.ONLINE,
                        identifier=f"tcp://{host}:{self.port}",
                        model="ZPL",
                        dpi=203,
                        max_width_inches=4.09,
                        discovery_method=self.method,
                        last_seen=datetime.utcnow(),
                    ))

        await asyncio.gather(*(check(host) for host in self.candidate_hosts()))
        return found

    async def _is_listening(self, host: str) -> bool:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._connect, host)
        except OSError:
            return False
        return True

    def _connect(self, host: str):
        with socket.create_connection((host, self.port), timeout=self.connect_timeout):
            pass


class BluetoothProbe(DetectionProbe):
    """Paired/known devices from bluetoothctl whose names look like printers."""

    method = "bluetooth"

    def available(self) -> bool:
        return shutil.which("bluetoothctl") is not None

    async def discover(self) -> List[PrinterInfo]:
        process = await asyncio.create_subprocess_exec(
            "bluetoothctl", "devices",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise RuntimeError(f"bluetoothctl exited with {process.returncode}: {stderr.decode().strip()}")

        printers = []
        for line in stdout.decode().splitlines():
            match = BLUETOOTHCTL_LINE.search(line)
            if not match or not BLUETOOTH_PRINTER_NAMES.search(match.group(2)):
                continue
            mac, device_name = match.group(1).upper(), match.group(2).strip()
            printers.append(PrinterInfo(
                name=f"{device_name} ({mac})",
                type=PrinterType.BLUETOOTH,
                status=PrinterStatus.ONLINE,
                identifier=f"bt://{mac}/1",
                model="ZPL",
                dpi=203,
                max_width_inches=4.09,
                discovery_method=self.method,
                last_seen=datetime.utcnow(),
            ))
        return printers


def default_probes(config: Optional[PrintConfig] = None) -> List[DetectionProbe]:
    config = config or PrintConfig()
    return [
        USBProbe(),
        NetworkProbe(hosts=config.network_hosts, ranges=config.network_ranges, port=config.network_port),
        BluetoothProbe(),
    ]


class PrinterDetector:
    """Runs every probe concurrently and folds the outcomes into one PrinterDetectionResult."""

    def __init__(self, probes: Optional[List[DetectionProbe]] = None, timeout_seconds: float = 5.0,
                 registry=None):
        self.probes = probes if probes is not None else default_probes()
        self.timeout_seconds = timeout_seconds
        self.registry = registry
        self.logger = logging.getLogger(self.__class__.__name__)

    async def detect(self) -> PrinterDetectionResult:
        attempted = [probe for probe in self.probes if probe.available()]
        skipped = [probe.method for probe in self.probes if probe not in attempted]
        if skipped:
            self.logger.info(f"Detection methods unavailable here: {', '.join(skipped)}")

        outcomes = await asyncio.gather(*(self._run_probe(probe) for probe in attempted))

        by_name: Dict[str, PrinterInfo] = {}
        errors: List[str] = []
        for probe, (printers, error) in zip(attempted, outcomes):
            if error:
                errors.append(f"{probe.method}: {error}")
            for printer in printers:
                by_name[printer.name] = printer

        printers = sorted(by_name.values(), key=lambda p: p.name)
        status = self._aggregate_status(attempted, printers, errors)
        result = PrinterDetectionResult(
            printers=printers,
            total_count=len(printers),
            detection_status=status,
            detection_methods_used=[probe.method for probe in attempted],
            errors=errors or None,
        )
        self.logger.info(f"Printer detection {status}: {len(printers)} printer(s) via "
                         f"{result.detection_methods_used or 'no methods'}")

        if self.registry is not None and printers:
            self.registry.merge_detection(printers)
        return result

    async def _run_probe(self, probe: DetectionProbe):
        try:
            printers = await asyncio.wait_for(probe.discover(), timeout=self.timeout_seconds)
            return printers, None
        except asyncio.TimeoutError:
            self.logger.warning(f"{probe.method} detection timed out after {self.timeout_seconds}s")
            return [], f"timed out after {self.timeout_seconds}s"
        except Exception as e:
            self.logger.warning(f"{probe.method} detection failed: {e}")
            return [], str(e) or e.__class__.__name__

    @staticmethod
    def _aggregate_status(attempted: List[DetectionProbe], printers: List[PrinterInfo], errors: List[str]) -> str:
        if not attempted:
            return "limited"
        if not printers:
            return "failed"
        if errors:
            return "partial"
        return "success"
