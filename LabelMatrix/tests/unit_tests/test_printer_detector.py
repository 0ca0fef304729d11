"""
Unit tests for printer detection. Probes are faked; no hardware or network is touched.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from LabelMatrix.printers.base import PrinterInfo, PrinterStatus, PrinterType
from LabelMatrix.services.printer.printer_detector import (
    BluetoothProbe,
    DetectionProbe,
    NetworkProbe,
    PrinterDetector,
    USBProbe,
)
from LabelMatrix.services.printer.printer_registry import PrinterRegistry

DETECTOR_MODULE = "LabelMatrix.services.printer.printer_detector"


class FakeProbe(DetectionProbe):

    def __init__(self, method, printers=(), error=None, delay=0.0, available=True):
        self.method = method
        self.printers = list(printers)
        self.error = error
        self.delay = delay
        self._available = available

    def available(self):
        return self._available

    async def discover(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.printers


def found(name, printer_type=PrinterType.USB, status=PrinterStatus.ONLINE):
    return PrinterInfo(name=name, type=printer_type, status=status, identifier=f"mock://{name}")


def fake_process(stdout: bytes, returncode: int = 0):
    process = MagicMock()
    process.communicate = AsyncMock(return_value=(stdout, b""))
    process.returncode = returncode
    return process


@pytest.mark.asyncio
class TestDetectionAggregation:

    async def test_all_methods_succeed(self):
        detector = PrinterDetector([
            FakeProbe("usb", [found("USB Zebra")]),
            FakeProbe("network", [found("Net Zebra", PrinterType.NETWORK)]),
            FakeProbe("bluetooth"),
        ])

        result = await detector.detect()

        assert result.detection_status == "success"
        assert result.total_count == 2
        assert result.detection_methods_used == ["usb", "network", "bluetooth"]
        assert result.errors is None

    async def test_one_failing_method_is_partial(self):
        detector = PrinterDetector([
            FakeProbe("usb", [found("USB Zebra")]),
            FakeProbe("network", [found("Net Zebra", PrinterType.NETWORK)]),
            FakeProbe("bluetooth", error=RuntimeError("adapter not powered")),
        ])

        result = await detector.detect()

        assert result.detection_status == "partial"
        assert result.total_count == 2
        assert result.errors == ["bluetooth: adapter not powered"]

    async def test_nothing_found_is_failed(self):
        detector = PrinterDetector([FakeProbe("usb"), FakeProbe("network"), FakeProbe("bluetooth")])

        result = await detector.detect()

        assert result.detection_status == "failed"
        assert result.printers == []

    async def test_no_available_methods_is_limited(self):
        detector = PrinterDetector([FakeProbe("usb", available=False), FakeProbe("bluetooth", available=False)])

        result = await detector.detect()

        assert result.detection_status == "limited"
        assert result.detection_methods_used == []

    async def test_slow_probe_times_out_without_blocking_others(self):
        detector = PrinterDetector([
            FakeProbe("usb", [found("USB Zebra")]),
            FakeProbe("bluetooth", [found("BT Zebra", PrinterType.BLUETOOTH)], delay=5),
        ], timeout_seconds=0.05)

        result = await detector.detect()

        assert result.detection_status == "partial"
        assert [p.name for p in result.printers] == ["USB Zebra"]
        assert result.errors[0].startswith("bluetooth: timed out")

    async def test_duplicates_merge_by_name(self):
        detector = PrinterDetector([
            FakeProbe("usb", [found("Zebra", status=PrinterStatus.OFFLINE)]),
            FakeProbe("network", [found("Zebra", PrinterType.NETWORK), found("Alpha", PrinterType.NETWORK)]),
        ])

        result = await detector.detect()

        assert [p.name for p in result.printers] == ["Alpha", "Zebra"]
        assert result.printers[1].type == PrinterType.NETWORK

    async def test_results_are_merged_into_registry(self):
        registry = PrinterRegistry()
        detector = PrinterDetector([FakeProbe("usb", [found("USB Zebra")])], registry=registry)

        await detector.detect()

        assert registry.get("USB Zebra").status == PrinterStatus.ONLINE


@pytest.mark.asyncio
class TestProbes:

    async def test_usb_probe_recognises_printer_vendors(self):
        lsusb = (b"Bus 001 Device 004: ID 04f9:2042 Brother Industries, Ltd QL-700\n"
                 b"Bus 001 Device 002: ID 046d:c52b Logitech, Inc. Unifying Receiver\n"
                 b"Bus 002 Device 003: ID 0a5f:0164 Zebra ZD410\n")
        with patch(f"{DETECTOR_MODULE}.shutil.which", return_value="/usr/bin/lsusb"), \
                patch(f"{DETECTOR_MODULE}.glob.glob", return_value=["/dev/usb/lp0"]), \
                patch(f"{DETECTOR_MODULE}.asyncio.create_subprocess_exec",
                      AsyncMock(return_value=fake_process(lsusb))):
            printers = await USBProbe().discover()

        assert [p.model for p in printers] == ["QL-1100", "ZPL"]
        assert printers[0].identifier == "/dev/usb/lp0"
        assert printers[1].identifier == "usb://0x0a5f"
        assert all(p.type == PrinterType.USB for p in printers)

    async def test_usb_probe_reports_lsusb_failure(self):
        with patch(f"{DETECTOR_MODULE}.shutil.which", return_value="/usr/bin/lsusb"), \
                patch(f"{DETECTOR_MODULE}.glob.glob", return_value=[]), \
                patch(f"{DETECTOR_MODULE}.asyncio.create_subprocess_exec",
                      AsyncMock(return_value=fake_process(b"", returncode=1))):
            with pytest.raises(RuntimeError):
                await USBProbe().discover()

    async def test_bluetooth_probe_filters_printer_names(self):
        devices = (b"Device AA:BB:CC:DD:EE:FF Zebra ZQ520\n"
                   b"Device 11:22:33:44:55:66 Office Headphones\n"
                   b"Device 22:33:44:55:66:77 Brother QL-820NWB\n")
        with patch(f"{DETECTOR_MODULE}.asyncio.create_subprocess_exec",
                   AsyncMock(return_value=fake_process(devices))):
            printers = await BluetoothProbe().discover()

        assert [p.identifier for p in printers] == ["bt://AA:BB:CC:DD:EE:FF/1", "bt://22:33:44:55:66:77/1"]
        assert all(p.type == PrinterType.BLUETOOTH for p in printers)

    async def test_probe_availability_follows_installed_tools(self):
        with patch(f"{DETECTOR_MODULE}.shutil.which", return_value=None), \
                patch(f"{DETECTOR_MODULE}.glob.glob", return_value=[]):
            assert not USBProbe().available()
            assert not BluetoothProbe().available()
        assert not NetworkProbe().available()
        assert NetworkProbe(hosts=["10.0.0.5"]).available()

    async def test_network_probe_reports_listening_hosts(self):
        probe = NetworkProbe(hosts=["10.0.0.5", "10.0.0.6"], port=9100)

        async def listening(host):
            return host == "10.0.0.5"

        with patch.object(probe, "_is_listening", side_effect=listening):
            printers = await probe.discover()

        assert [p.identifier for p in printers] == ["tcp://10.0.0.5:9100"]
        assert printers[0].type == PrinterType.NETWORK


class TestNetworkCandidates:

    def test_ranges_expand_to_hosts(self):
        probe = NetworkProbe(hosts=["192.168.1.10"], ranges=["192.168.1.8/30"])

        assert probe.candidate_hosts() == ["192.168.1.10", "192.168.1.9"]

    def test_invalid_ranges_are_skipped(self):
        probe = NetworkProbe(ranges=["not-a-network"])

        assert probe.candidate_hosts() == []
