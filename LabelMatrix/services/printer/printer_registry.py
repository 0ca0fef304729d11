"""
Printer registry: the single mutable store of PrinterInfo.

Readers only ever receive copies. Reservation (one active job per printer) is
a check-and-set under one lock, so two concurrent dispatch attempts for the
same printer can never both succeed.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from LabelMatrix.exceptions import PrinterBusyError, PrinterNotFoundError, PrinterUnavailableError
from LabelMatrix.printers.base import PrinterInfo, PrinterInterface, PrinterStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[str, PrinterStatus], None]
DriverFactory = Callable[[PrinterInfo], Optional[PrinterInterface]]


@dataclass
class _RegistryEntry:
    info: PrinterInfo               # status field holds the last reported online/offline state
    driver: Optional[PrinterInterface] = None
    reserved_job_id: Optional[str] = None

    def effective_status(self) -> PrinterStatus:
        if self.info.status == PrinterStatus.OFFLINE:
            return PrinterStatus.OFFLINE
        if self.reserved_job_id is not None:
            return PrinterStatus.BUSY
        return PrinterStatus.ONLINE

    def snapshot(self) -> PrinterInfo:
        return replace(self.info, status=self.effective_status())


class PrinterRegistry:
    """Known printers, their drivers and their reservations."""

    def __init__(self, driver_factory: Optional[DriverFactory] = None):
        self._entries: Dict[str, _RegistryEntry] = {}
        self._lock = threading.Lock()
        self._listeners: List[StatusListener] = []
        self._driver_factory = driver_factory

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, info: PrinterInfo, driver: Optional[PrinterInterface] = None) -> PrinterInfo:
        """Add or replace a printer. A live reservation survives re-registration."""
        if driver is None and self._driver_factory is not None:
            driver = self._driver_factory(info)
        stored = replace(info, status=self._reported(info.status), last_seen=info.last_seen or datetime.utcnow())
        with self._lock:
            existing = self._entries.get(info.name)
            reserved = existing.reserved_job_id if existing else None
            entry = _RegistryEntry(info=stored, driver=driver or (existing.driver if existing else None),
                                   reserved_job_id=reserved)
            self._entries[info.name] = entry
            snapshot = entry.snapshot()
        logger.info(f"Registered printer {info.name} ({info.type.value}, {snapshot.status.value})")
        self._notify(snapshot)
        return snapshot

    def register_driver(self, driver: PrinterInterface) -> PrinterInfo:
        """Register a printer from its driver's own description."""
        return self.register(driver.get_printer_info(), driver)

    def unregister(self, name: str) -> bool:
        """
        Remove a printer. A reserved printer cannot be removed until its job releases it.

        Raises:
            PrinterBusyError: a job holds the printer
        """
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return False
            if entry.reserved_job_id is not None:
                raise PrinterBusyError(
                    f"Printer {name} is busy with job {entry.reserved_job_id} and cannot be removed",
                    printer_name=name,
                    current_job_id=entry.reserved_job_id,
                )
            del self._entries[name]
        logger.info(f"Unregistered printer {name}")
        return True

    def merge_detection(self, printers: List[PrinterInfo]) -> List[PrinterInfo]:
        """
        Merge a detection result by printer name; the most recent report wins.

        Reservations are untouched: a busy printer stays busy until released.
        """
        merged = []
        for info in printers:
            with self._lock:
                existing = self._entries.get(info.name)
            if existing is None:
                merged.append(self.register(info))
                continue
            with self._lock:
                entry = self._entries.get(info.name)
                if entry is None:
                    continue
                was_offline = entry.info.status == PrinterStatus.OFFLINE
                entry.info = replace(info, status=self._reported(info.status), last_seen=datetime.utcnow())
                snapshot = entry.snapshot()
            merged.append(snapshot)
            if was_offline and snapshot.status == PrinterStatus.ONLINE:
                logger.info(f"Printer {info.name} came back online")
                self._notify(snapshot)
        return merged

    def set_status(self, name: str, status: PrinterStatus, error_message: Optional[str] = None) -> PrinterInfo:
        """Record an online/offline report for a printer (busy is derived from reservations)."""
        with self._lock:
            entry = self._require(name)
            entry.info = replace(entry.info, status=self._reported(status), error_message=error_message)
            snapshot = entry.snapshot()
        logger.info(f"Printer {name} status set to {snapshot.status.value}")
        self._notify(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Reads (snapshots only)
    # ------------------------------------------------------------------

    def get(self, name: str) -> PrinterInfo:
        with self._lock:
            return self._require(name).snapshot()

    def list_printers(self) -> List[PrinterInfo]:
        with self._lock:
            return [entry.snapshot() for entry in self._entries.values()]

    def get_driver(self, name: str) -> Optional[PrinterInterface]:
        with self._lock:
            return self._require(name).driver

    def reserved_by(self, name: str) -> Optional[str]:
        with self._lock:
            return self._require(name).reserved_job_id

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    def find_idle_capable(self, width_inches: float, height_inches: float) -> List[str]:
        """Names of online, unreserved, label-capable printers that fit the label, in registration order."""
        with self._lock:
            return [
                name for name, entry in self._entries.items()
                if entry.effective_status() == PrinterStatus.ONLINE
                and entry.info.supports_label_printing
                and entry.info.accommodates(width_inches, height_inches)
            ]

    # ------------------------------------------------------------------
    # Reservation
    # ------------------------------------------------------------------

    def try_reserve(self, name: str, job_id: str) -> PrinterInfo:
        """
        Atomically mark a printer busy for a job.

        Raises:
            PrinterNotFoundError: unknown printer
            PrinterUnavailableError: printer is offline
            PrinterBusyError: another job holds the printer
        """
        with self._lock:
            entry = self._require(name)
            if entry.info.status == PrinterStatus.OFFLINE:
                raise PrinterUnavailableError(f"Printer {name} is offline", printer_name=name)
            if entry.reserved_job_id is not None and entry.reserved_job_id != job_id:
                raise PrinterBusyError(
                    f"Printer {name} is busy with job {entry.reserved_job_id}",
                    printer_name=name,
                    current_job_id=entry.reserved_job_id,
                )
            entry.reserved_job_id = job_id
            return entry.snapshot()

    def release(self, name: str, job_id: str) -> Optional[PrinterInfo]:
        """Drop a job's reservation. Releasing someone else's reservation is a no-op."""
        with self._lock:
            entry = self._entries.get(name)
            if entry is None or entry.reserved_job_id != job_id:
                return None
            entry.reserved_job_id = None
            snapshot = entry.snapshot()
        self._notify(snapshot)
        return snapshot

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: StatusListener):
        """Called with (name, status) whenever a printer becomes available."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, snapshot: PrinterInfo):
        if snapshot.status != PrinterStatus.ONLINE:
            return
        for listener in list(self._listeners):
            try:
                listener(snapshot.name, snapshot.status)
            except Exception as e:
                logger.warning(f"Printer status listener failed: {e}")

    def _require(self, name: str) -> _RegistryEntry:
        entry = self._entries.get(name)
        if entry is None:
            raise PrinterNotFoundError(f"Printer {name} not found", printer_name=name)
        return entry

    @staticmethod
    def _reported(status: PrinterStatus) -> PrinterStatus:
        # BUSY is derived from reservations, never stored
        return PrinterStatus.OFFLINE if status == PrinterStatus.OFFLINE else PrinterStatus.ONLINE
