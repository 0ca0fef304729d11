"""
Print job manager: the job state machine and the per-printer queue.

    queued -> printing -> completed | failed
    queued -> cancelled
    printing -> cancelled   (at the next label boundary)

At most one job prints on a printer at a time; the reservation is taken from
the PrinterRegistry before a job leaves ``queued``. Dispatch failures leave the
job queued with the reason in its status message. Execution failures end the
job as ``failed`` and are never retried implicitly.
"""

import asyncio
import itertools
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Sequence

from LabelMatrix.config.print_config import PrintConfig
from LabelMatrix.exceptions import (
    HeterogeneousBatchError,
    InvalidJobStateError,
    LabelMatrixException,
    PrinterBusyError,
    PrinterIncompatibleError,
    PrinterUnavailableError,
    PrintJobError,
    PrintJobNotFoundError,
    log_exception,
)
from LabelMatrix.lib.print_settings import LabelGenerationOptions, PrintJobOptions, PrintSettings
from LabelMatrix.models.print_job_models import PrintJobResponse, PrintJobState, PrintQueue, PrintStatus
from LabelMatrix.models.qr_models import DEFAULT_LABEL_LAYOUT, LabelDimensions, LabelLayout, LabelRenderSpec, QRLabel
from LabelMatrix.printers.base import PrinterInfo, PrinterStatus
from LabelMatrix.services.printer.label_compositor import LabelCompositor, dimensions_from_settings
from LabelMatrix.services.printer.printer_registry import PrinterRegistry

logger = logging.getLogger(__name__)

DURATION_SAMPLES = 50
HOUSEKEEPING_INTERVAL_SECONDS = 30.0


@dataclass
class PrintJob:
    """One unit of print work: one transaction's labels on one printer."""
    job_id: str
    transaction_no: str
    labels: List[QRLabel]
    specs: List[LabelRenderSpec]
    dimensions: LabelDimensions
    settings: PrintSettings
    options: PrintJobOptions
    sequence: int
    label_options: Optional[LabelGenerationOptions] = None
    printer_name: Optional[str] = None      # requested printer; None defers the choice to dispatch
    batch_id: Optional[str] = None
    retry_of: Optional[str] = None
    state: PrintJobState = PrintJobState.QUEUED
    progress: int = 0
    progress_history: List[int] = field(default_factory=lambda: [0])
    message: Optional[str] = "Queued"
    error_message: Optional[str] = None
    assigned_printer: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    labels_printed: int = 0
    cancel_requested: bool = False
    read: bool = False
    done: Optional[asyncio.Event] = None    # created by the first waiter, inside its loop

    @property
    def labels_count(self) -> int:
        return len(self.labels)

    @property
    def target_printer(self) -> Optional[str]:
        return self.assigned_printer or self.printer_name

    def advance(self, progress: int):
        """Move progress forward; it never goes back."""
        if progress > self.progress:
            self.progress = progress
            self.progress_history.append(progress)

    def finish(self, state: PrintJobState, message: str, error_message: Optional[str] = None):
        if self.state.is_terminal:
            raise InvalidJobStateError(
                f"Job {self.job_id} is already {self.state.value}", job_id=self.job_id, state=self.state.value
            )
        if state == PrintJobState.COMPLETED:
            self.advance(100)
        self.state = state
        self.message = message
        self.error_message = error_message
        self.completed_at = datetime.utcnow()
        if self.done is not None:
            self.done.set()

    def to_status(self) -> PrintStatus:
        return PrintStatus(
            job_id=self.job_id,
            status=self.state,
            progress=self.progress,
            message=self.message,
            created_at=self.created_at,
            completed_at=self.completed_at,
            error_message=self.error_message,
            transaction_no=self.transaction_no,
            printer_name=self.target_printer,
        )

    def to_response(self) -> PrintJobResponse:
        return PrintJobResponse(
            job_id=self.job_id,
            status=self.state,
            labels_count=self.labels_count,
            created_at=self.created_at,
            transaction_no=self.transaction_no,
            printer_name=self.target_printer,
        )


def label_sequence(specs: Sequence[LabelRenderSpec], options: PrintJobOptions, settings: PrintSettings) -> List[LabelRenderSpec]:
    """
    The labels in the order they are sent to the device.

    reverse_print reverses the box order; copies repeat it, either as whole
    sets (collate) or label by label.
    """
    ordered = list(reversed(specs)) if options.reverse_print else list(specs)
    copies = options.copies or settings.copies
    if copies <= 1:
        return ordered
    if options.collate:
        return ordered * copies
    return [spec for spec in ordered for _ in range(copies)]


class PrintJobManager:
    """Owns every PrintJob, the dispatch policy and the background loop."""

    def __init__(self, registry: PrinterRegistry, compositor: Optional[LabelCompositor] = None,
                 config: Optional[PrintConfig] = None, label_layout: LabelLayout = DEFAULT_LABEL_LAYOUT):
        self.registry = registry
        self.compositor = compositor or LabelCompositor()
        self.config = config or PrintConfig()
        self.label_layout = label_layout
        self.logger = logging.getLogger(self.__class__.__name__)

        self._jobs: Dict[str, PrintJob] = {}
        self._sequence = itertools.count()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._durations: Deque[float] = deque(maxlen=DURATION_SAMPLES)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._closing = False
        self.housekeeping_interval = HOUSEKEEPING_INTERVAL_SECONDS

        self.registry.add_listener(self._on_printer_available)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def default_settings(self) -> PrintSettings:
        return PrintSettings(width=self.config.label_width_in, height=self.config.label_height_in,
                             dpi=self.config.label_dpi)

    def submit(
        self,
        labels: Sequence[QRLabel],
        printer_name: Optional[str] = None,
        print_settings: Optional[PrintSettings] = None,
        options: Optional[PrintJobOptions] = None,
        label_options: Optional[LabelGenerationOptions] = None,
        batch_id: Optional[str] = None,
        retry_of: Optional[str] = None,
    ) -> PrintJob:
        """
        Create a queued job for one transaction's labels.

        Raises:
            HeterogeneousBatchError: no labels, or labels from more than one transaction
            PrinterNotFoundError: printer_name is not registered
            PrinterIncompatibleError: the named printer cannot print this label size
        """
        if self._closing:
            raise InvalidJobStateError("Print job manager is shutting down")
        labels = list(labels)
        if not labels:
            raise HeterogeneousBatchError("A print job needs at least one label")
        transaction_numbers = sorted({label.transaction_no for label in labels})
        if len(transaction_numbers) > 1:
            raise HeterogeneousBatchError(
                f"Labels span {len(transaction_numbers)} transactions", transaction_numbers=transaction_numbers
            )

        options = options or PrintJobOptions()
        printer_name = printer_name or options.printer_name
        settings = print_settings or self.default_settings()
        dimensions = dimensions_from_settings(settings)
        specs = [self.compositor.compose_label(label, self.label_layout, dimensions, label_options)
                 for label in labels]

        self.check_printer(printer_name, settings)

        job = PrintJob(
            job_id=f"job_{uuid.uuid4().hex[:12]}",
            transaction_no=transaction_numbers[0],
            labels=labels,
            specs=specs,
            dimensions=dimensions,
            settings=settings,
            options=options,
            sequence=next(self._sequence),
            label_options=label_options,
            printer_name=printer_name,
            batch_id=batch_id,
            retry_of=retry_of,
        )
        self._jobs[job.job_id] = job
        self.logger.info(f"Queued job {job.job_id} for transaction {job.transaction_no} "
                         f"({job.labels_count} labels, printer={printer_name or 'any'})")
        self._kick()
        return job

    def check_printer(self, printer_name: Optional[str], print_settings: Optional[PrintSettings] = None):
        """Reject a named printer that is unknown or cannot take labels of this size."""
        if printer_name is None:
            return
        dimensions = dimensions_from_settings(print_settings or self.default_settings())
        self._check_capable(self.registry.get(printer_name), dimensions)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, job_id: str, printer_name: Optional[str] = None) -> PrintStatus:
        """
        Move a queued job to ``printing`` on its printer.

        The job stays queued when the printer is offline, busy or unsuitable;
        the reason is kept in its status message.
        """
        if self._closing:
            raise InvalidJobStateError("Print job manager is shutting down", job_id=job_id)
        job = self._require(job_id)
        if job.state != PrintJobState.QUEUED:
            raise InvalidJobStateError(
                f"Job {job_id} is {job.state.value}, only queued jobs can be dispatched",
                job_id=job_id, state=job.state.value,
            )

        try:
            target = printer_name or job.printer_name
            if target is None:
                target = self._select_printer(job)
            else:
                self._check_capable(self.registry.get(target), job.dimensions)
            self.registry.try_reserve(target, job.job_id)
        except LabelMatrixException as e:
            job.message = f"Waiting for printer: {e.message}"
            self.logger.info(f"Job {job_id} not dispatched: {e.message}")
            raise

        job.assigned_printer = target
        job.state = PrintJobState.PRINTING
        job.started_at = datetime.utcnow()
        job.message = f"Printing on {target}"
        self.logger.info(f"Job {job_id} printing on {target}")
        self._tasks[job_id] = asyncio.create_task(self._execute(job, target))
        return job.to_status()

    async def dispatch_pending(self) -> List[str]:
        """
        Dispatch queued jobs in submission order.

        A printer whose oldest waiting job cannot start blocks its younger
        jobs; unassigned jobs likewise wait behind the oldest unassigned job.
        """
        dispatched = []
        blocked_printers = set()
        unassigned_blocked = False
        for job in sorted(self._queued_jobs(), key=lambda j: j.sequence):
            if job.printer_name is not None:
                if job.printer_name in blocked_printers:
                    continue
            elif unassigned_blocked:
                continue
            try:
                await self.dispatch(job.job_id)
                dispatched.append(job.job_id)
            except LabelMatrixException:
                if job.printer_name is not None:
                    blocked_printers.add(job.printer_name)
                else:
                    unassigned_blocked = True
        return dispatched

    def _select_printer(self, job: PrintJob) -> str:
        """First idle printer able to take the job's labels, in registration order."""
        dims = job.dimensions
        idle = self.registry.find_idle_capable(dims.width_inches, dims.height_inches)
        if idle:
            return idle[0]

        capable = [p for p in self.registry.list_printers() if self._is_capable(p, dims)]
        if not capable:
            raise PrinterIncompatibleError(
                f"No registered printer can print {dims.width_inches:g}x{dims.height_inches:g}in labels",
                reason="no capable printer",
            )
        if all(p.status == PrinterStatus.OFFLINE for p in capable):
            raise PrinterUnavailableError("All capable printers are offline")
        raise PrinterBusyError("All capable printers are busy")

    @staticmethod
    def _is_capable(printer: PrinterInfo, dimensions: LabelDimensions) -> bool:
        return printer.supports_label_printing and printer.accommodates(
            dimensions.width_inches, dimensions.height_inches
        )

    def _check_capable(self, printer: PrinterInfo, dimensions: LabelDimensions):
        if not printer.supports_label_printing:
            raise PrinterIncompatibleError(
                f"Printer {printer.name} does not support label printing",
                printer_name=printer.name, reason="label printing not supported",
            )
        if not printer.accommodates(dimensions.width_inches, dimensions.height_inches):
            raise PrinterIncompatibleError(
                f"Printer {printer.name} cannot fit {dimensions.width_inches:g}x{dimensions.height_inches:g}in labels",
                printer_name=printer.name, reason="label too large",
            )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, job: PrintJob, printer_name: str):
        sequence = label_sequence(job.specs, job.options, job.settings)
        total = len(sequence)
        try:
            driver = self.registry.get_driver(printer_name)
            if driver is None:
                raise PrintJobError(f"No driver for printer {printer_name}", printer_name, job.job_id)

            for index, spec in enumerate(sequence):
                if job.cancel_requested:
                    break
                result = await driver.print_label(spec, job.options)
                if not result.success:
                    raise PrintJobError(result.error or result.message or "Print failed", printer_name, job.job_id)
                job.labels_printed = index + 1
                job.advance(min(99, job.labels_printed * 100 // total))

            if job.cancel_requested and job.labels_printed < total:
                job.finish(PrintJobState.CANCELLED, f"Cancelled after {job.labels_printed} of {total} labels")
                self.logger.info(f"Job {job.job_id} cancelled after {job.labels_printed}/{total} labels")
            else:
                job.finish(PrintJobState.COMPLETED, f"Printed {total} labels on {printer_name}")
                self._durations.append((job.completed_at - job.started_at).total_seconds())
                self.logger.info(f"Job {job.job_id} completed on {printer_name}")
        except asyncio.CancelledError:
            job.finish(PrintJobState.CANCELLED, "Cancelled at shutdown")
            raise
        except Exception as e:
            log_exception(e, f"Print job {job.job_id} on {printer_name}")
            job.finish(PrintJobState.FAILED, f"Failed after {job.labels_printed} of {total} labels", str(e))
        finally:
            self._tasks.pop(job.job_id, None)
            self.registry.release(printer_name, job.job_id)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def cancel(self, job_id: str) -> PrintStatus:
        """Cancel a queued job now, or a printing job at its next label boundary."""
        job = self._require(job_id)
        if job.state == PrintJobState.QUEUED:
            job.finish(PrintJobState.CANCELLED, "Cancelled before printing")
            self.logger.info(f"Job {job_id} cancelled while queued")
        elif job.state == PrintJobState.PRINTING:
            job.cancel_requested = True
            job.message = "Cancellation requested"
            self.logger.info(f"Cancellation requested for job {job_id}")
        else:
            raise InvalidJobStateError(
                f"Job {job_id} is already {job.state.value}", job_id=job_id, state=job.state.value
            )
        return job.to_status()

    async def retry(self, job_id: str) -> PrintJob:
        """
        Queued jobs get another dispatch attempt; failed or cancelled jobs are
        resubmitted as a new job with the same labels and settings.
        """
        job = self._require(job_id)
        if job.state == PrintJobState.QUEUED:
            await self.dispatch(job_id)
            return job
        if job.state in (PrintJobState.FAILED, PrintJobState.CANCELLED):
            new_job = self.submit(
                job.labels,
                printer_name=job.printer_name,
                print_settings=job.settings,
                options=job.options,
                label_options=job.label_options,
                batch_id=job.batch_id,
                retry_of=job.job_id,
            )
            self.logger.info(f"Job {job_id} resubmitted as {new_job.job_id}")
            return new_job
        raise InvalidJobStateError(
            f"Job {job_id} is {job.state.value} and cannot be retried", job_id=job_id, state=job.state.value
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self, job_id: str, mark_read: bool = True) -> PrintStatus:
        job = self._require(job_id)
        if mark_read and job.state.is_terminal:
            job.read = True
        return job.to_status()

    def list_jobs(self, transaction_no: Optional[str] = None, batch_id: Optional[str] = None) -> List[PrintJob]:
        return [
            job for job in self._jobs.values()
            if (transaction_no is None or job.transaction_no == transaction_no)
            and (batch_id is None or job.batch_id == batch_id)
        ]

    def get_queue(self) -> PrintQueue:
        jobs = sorted(self._jobs.values(), key=lambda j: j.sequence)
        statuses = [job.to_status() for job in jobs]
        active = [status for status in statuses if status.status == PrintJobState.PRINTING]
        return PrintQueue(
            jobs=statuses,
            active_job=active[0] if active else None,
            active_jobs=active,
            total_jobs=len(statuses),
            completed_jobs=sum(1 for s in statuses if s.status == PrintJobState.COMPLETED),
            failed_jobs=sum(1 for s in statuses if s.status == PrintJobState.FAILED),
            queued_jobs=sum(1 for s in statuses if s.status == PrintJobState.QUEUED),
            cancelled_jobs=sum(1 for s in statuses if s.status == PrintJobState.CANCELLED),
        )

    async def wait_for(self, job_id: str, timeout: Optional[float] = None) -> PrintStatus:
        """Wait until a job reaches a terminal state."""
        job = self._require(job_id)
        if not job.state.is_terminal:
            if job.done is None:
                job.done = asyncio.Event()
            await asyncio.wait_for(job.done.wait(), timeout=timeout)
        return job.to_status()

    # ------------------------------------------------------------------
    # Completion estimates
    # ------------------------------------------------------------------

    @property
    def average_job_duration(self) -> Optional[float]:
        if not self._durations:
            return None
        return sum(self._durations) / len(self._durations)

    def estimate_completion(self, job_ids: Sequence[str], now: Optional[datetime] = None) -> Optional[datetime]:
        """
        When the last of the given jobs should finish.

        Each job waits for the queued jobs ahead of it on its printer plus the
        remainder of that printer's active job. None until a job has completed.
        """
        average = self.average_job_duration
        if average is None:
            return None
        now = now or datetime.utcnow()

        units = [self._job_units(self._require(job_id)) for job_id in job_ids]
        units = [u for u in units if u is not None]
        if not units:
            return now
        return now + timedelta(seconds=max(units) * average)

    def _job_units(self, job: PrintJob) -> Optional[float]:
        """Job-durations until this job completes."""
        if job.state.is_terminal:
            return None
        if job.state == PrintJobState.PRINTING:
            return 1 - job.progress / 100

        queued = self._queued_jobs()
        if job.printer_name is not None:
            ahead = sum(1 for j in queued if j.sequence < job.sequence and j.printer_name == job.printer_name)
            return ahead + self._active_remaining(job.printer_name) + 1

        dims = job.dimensions
        capable = [p.name for p in self.registry.list_printers()
                   if self._is_capable(p, dims) and p.status != PrinterStatus.OFFLINE]
        ahead = sum(1 for j in queued if j.sequence < job.sequence)
        remaining = min((self._active_remaining(name) for name in capable), default=0.0)
        return ahead / max(1, len(capable)) + remaining + 1

    def _active_remaining(self, printer_name: str) -> float:
        for job in self._jobs.values():
            if job.state == PrintJobState.PRINTING and job.assigned_printer == printer_name:
                return 1 - job.progress / 100
        return 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Bind to the running loop and start the background loop (purging, plus dispatch if enabled)."""
        self._loop = asyncio.get_running_loop()
        self._wakeup = asyncio.Event()
        self._closing = False
        if self._dispatcher is None:
            self._dispatcher = asyncio.create_task(self._background_loop())
        if self.config.auto_dispatch:
            self._wakeup.set()
        self.logger.info(f"Print job manager started (auto_dispatch={self.config.auto_dispatch})")

    async def shutdown(self, drain_seconds: Optional[float] = None):
        """
        Stop accepting work, let printing jobs finish for up to drain_seconds,
        then cancel everything that is not terminal.
        """
        self._closing = True
        drain = self.config.shutdown_drain_seconds if drain_seconds is None else drain_seconds

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            await asyncio.gather(self._dispatcher, return_exceptions=True)
            self._dispatcher = None

        for job in self._queued_jobs():
            job.finish(PrintJobState.CANCELLED, "Cancelled at shutdown")

        running = list(self._tasks.values())
        if running:
            self.logger.info(f"Draining {len(running)} printing job(s) for up to {drain}s")
            _, pending = await asyncio.wait(running, timeout=drain) if drain > 0 else (set(), set(running))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        # Tasks cancelled before their first step never reach their own cleanup
        for job in self._jobs.values():
            if job.state == PrintJobState.PRINTING:
                job.finish(PrintJobState.CANCELLED, "Cancelled at shutdown")
                self._tasks.pop(job.job_id, None)
                self.registry.release(job.assigned_printer, job.job_id)

        self.registry.remove_listener(self._on_printer_available)
        self.logger.info("Print job manager stopped")

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Forget terminal jobs that were read or have outlived the retention window."""
        now = now or datetime.utcnow()
        retention = timedelta(seconds=self.config.job_retention_seconds)
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.state.is_terminal and (job.read or now - job.completed_at >= retention)
        ]
        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            self.logger.debug(f"Purged {len(expired)} finished job(s)")
        return len(expired)

    async def _background_loop(self):
        last_purge = time.monotonic()
        while not self._closing:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.housekeeping_interval)
            except asyncio.TimeoutError:
                pass
            else:
                self._wakeup.clear()
                if self.config.auto_dispatch:
                    try:
                        await self.dispatch_pending()
                    except Exception as e:
                        log_exception(e, "Auto-dispatch")

            # Runs on every pass, not only on idle timeouts
            if time.monotonic() - last_purge >= self.housekeeping_interval:
                self.purge_expired()
                last_purge = time.monotonic()

    def _kick(self):
        if self._wakeup is not None:
            self._wakeup.set()

    def _on_printer_available(self, name: str, status: PrinterStatus):
        # Registry listeners may run on another thread (detection refreshes)
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._kick)

    def _queued_jobs(self) -> List[PrintJob]:
        return [job for job in self._jobs.values() if job.state == PrintJobState.QUEUED]

    def _require(self, job_id: str) -> PrintJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise PrintJobNotFoundError(f"Print job {job_id} not found", job_id=job_id)
        return job
