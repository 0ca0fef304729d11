"""
Unit tests for the print job state machine.
"""
import asyncio
from datetime import datetime, timedelta

import pytest

from LabelMatrix.exceptions import (
    HeterogeneousBatchError,
    InvalidJobStateError,
    PrinterBusyError,
    PrinterIncompatibleError,
    PrinterNotFoundError,
    PrinterUnavailableError,
    PrintJobNotFoundError,
)
from LabelMatrix.lib.print_settings import PrintJobOptions, PrintSettings
from LabelMatrix.models.print_job_models import PrintJobState
from LabelMatrix.printers.base import PrinterStatus
from LabelMatrix.printers.drivers.mock import MockPrinter
from LabelMatrix.services.printer.print_job_manager import label_sequence


class TestLabelSequence:

    def test_copies_and_collation(self):
        specs = ["a", "b", "c"]

        assert label_sequence(specs, PrintJobOptions(), PrintSettings()) == ["a", "b", "c"]
        assert label_sequence(specs, PrintJobOptions(copies=2), PrintSettings()) == ["a", "b", "c", "a", "b", "c"]
        assert label_sequence(specs, PrintJobOptions(copies=2, collate=False), PrintSettings()) == \
            ["a", "a", "b", "b", "c", "c"]
        assert label_sequence(specs, PrintJobOptions(reverse_print=True), PrintSettings(copies=2)) == \
            ["c", "b", "a", "c", "b", "a"]


@pytest.mark.asyncio
class TestSubmission:

    async def test_submit_creates_queued_job(self, job_manager, labels):
        job = job_manager.submit(labels)

        assert job.state == PrintJobState.QUEUED
        assert job.labels_count == 3
        assert job.progress == 0
        assert job.printer_name is None
        assert [spec.width_px for spec in job.specs] == [812, 812, 812]

    async def test_empty_submission_is_rejected(self, job_manager):
        with pytest.raises(HeterogeneousBatchError):
            job_manager.submit([])
        assert job_manager.get_queue().total_jobs == 0

    async def test_mixed_transactions_are_rejected(self, job_manager, labels, label_service, second_transaction):
        other, _ = label_service.build_labels(second_transaction, [1])

        with pytest.raises(HeterogeneousBatchError) as exc_info:
            job_manager.submit(labels + other)

        assert exc_info.value.details["transaction_numbers"] == ["INW-0001", "INW-0002"]
        assert job_manager.get_queue().total_jobs == 0

    async def test_unknown_printer_is_rejected(self, job_manager, labels):
        with pytest.raises(PrinterNotFoundError):
            job_manager.submit(labels, printer_name="Ghost")

    async def test_incompatible_printer_is_rejected(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Tiny", max_width_inches=2.0, render=False))

        with pytest.raises(PrinterIncompatibleError):
            job_manager.submit(labels, printer_name="Tiny")
        assert job_manager.get_queue().total_jobs == 0


@pytest.mark.asyncio
class TestJobLifecycle:

    async def test_end_to_end_three_boxes(self, label_service, job_manager, registry, mock_printer):
        response = label_service.generate_labels("Acme Foods", "INW-0001", [1, 2, 3])
        assert [label.qr_payload.net_weight for label in response.labels] == [10.0, 12.5, 8.25]
        assert [label.qr_payload.total_weight for label in response.labels] == [10.5, 13.0, 8.75]

        job = job_manager.submit(response.labels)
        assert job_manager.get_status(job.job_id).status == PrintJobState.QUEUED

        status = await job_manager.dispatch(job.job_id, "Mock Printer")
        assert status.status == PrintJobState.PRINTING
        assert registry.get("Mock Printer").status == PrinterStatus.BUSY

        final = await job_manager.wait_for(job.job_id, timeout=5)
        assert final.status == PrintJobState.COMPLETED
        assert final.progress == 100
        assert final.completed_at is not None
        assert registry.get("Mock Printer").status == PrinterStatus.ONLINE
        assert len(mock_printer.get_print_history()) == 3

    async def test_progress_is_monotonic_and_reaches_100_only_on_completion(self, job_manager, labels):
        job = job_manager.submit(labels)
        await job_manager.dispatch(job.job_id)
        await job_manager.wait_for(job.job_id, timeout=5)

        history = job.progress_history
        assert history == sorted(history)
        assert history[-1] == 100
        assert history.count(100) == 1
        assert history[:-1] == [0, 33, 66, 99]

    async def test_device_failure_fails_job_and_releases_printer(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Flaky", print_delay=0, render=False, fail_on_label=2))
        job = job_manager.submit(labels, printer_name="Flaky")

        await job_manager.dispatch(job.job_id)
        status = await job_manager.wait_for(job.job_id, timeout=5)

        assert status.status == PrintJobState.FAILED
        assert status.progress < 100
        assert "Simulated failure on label 2" in status.error_message
        assert registry.get("Flaky").status == PrinterStatus.ONLINE
        # failures are not retried on their own
        await asyncio.sleep(0.05)
        assert job_manager.get_status(job.job_id).status == PrintJobState.FAILED

    async def test_terminal_jobs_never_change_state(self, job_manager, labels):
        job = job_manager.submit(labels)
        await job_manager.dispatch(job.job_id)
        await job_manager.wait_for(job.job_id, timeout=5)

        with pytest.raises(InvalidJobStateError):
            await job_manager.cancel(job.job_id)
        with pytest.raises(InvalidJobStateError):
            await job_manager.dispatch(job.job_id)
        assert job.state == PrintJobState.COMPLETED

    async def test_unknown_job(self, job_manager):
        with pytest.raises(PrintJobNotFoundError):
            job_manager.get_status("job_missing")


@pytest.mark.asyncio
class TestDispatch:

    async def test_offline_printer_leaves_job_queued(self, job_manager, registry, labels):
        registry.set_status("Mock Printer", PrinterStatus.OFFLINE)
        job = job_manager.submit(labels, printer_name="Mock Printer")

        with pytest.raises(PrinterUnavailableError):
            await job_manager.dispatch(job.job_id)

        status = job_manager.get_status(job.job_id)
        assert status.status == PrintJobState.QUEUED
        assert "offline" in status.message

        registry.set_status("Mock Printer", PrinterStatus.ONLINE)
        retried = await job_manager.retry(job.job_id)
        assert retried.job_id == job.job_id
        assert (await job_manager.wait_for(job.job_id, timeout=5)).status == PrintJobState.COMPLETED

    async def test_one_active_job_per_printer(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Slow", print_delay=0.05, render=False))
        first = job_manager.submit(labels, printer_name="Slow")
        second = job_manager.submit(labels, printer_name="Slow")

        await job_manager.dispatch(first.job_id)
        with pytest.raises(PrinterBusyError):
            await job_manager.dispatch(second.job_id)

        assert second.state == PrintJobState.QUEUED
        await job_manager.wait_for(first.job_id, timeout=5)
        await job_manager.dispatch(second.job_id)
        assert (await job_manager.wait_for(second.job_id, timeout=5)).status == PrintJobState.COMPLETED

    async def test_printing_printer_cannot_be_removed_and_readded(self, job_manager, registry, labels):
        slow = MockPrinter(name="Slow", print_delay=0.05, render=False)
        registry.register_driver(slow)
        first = job_manager.submit(labels, printer_name="Slow")
        second = job_manager.submit(labels, printer_name="Slow")
        await job_manager.dispatch(first.job_id)

        with pytest.raises(PrinterBusyError):
            registry.unregister("Slow")
        registry.register_driver(slow)
        with pytest.raises(PrinterBusyError):
            await job_manager.dispatch(second.job_id)

        printing = [job for job in (first, second) if job.state == PrintJobState.PRINTING]
        assert printing == [first]
        await job_manager.wait_for(first.job_id, timeout=5)

    async def test_concurrent_dispatches_admit_one(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Slow", print_delay=0.05, render=False))
        jobs = [job_manager.submit(labels, printer_name="Slow") for _ in range(5)]

        outcomes = await asyncio.gather(*(job_manager.dispatch(job.job_id) for job in jobs), return_exceptions=True)

        assert sum(1 for outcome in outcomes if not isinstance(outcome, Exception)) == 1
        assert all(isinstance(outcome, PrinterBusyError) for outcome in outcomes if isinstance(outcome, Exception))
        assert sum(1 for job in jobs if job.state == PrintJobState.PRINTING) == 1

    async def test_jobs_on_different_printers_run_together(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Second", print_delay=0.05, render=False))
        registry.register_driver(MockPrinter(name="Third", print_delay=0.05, render=False))
        first = job_manager.submit(labels, printer_name="Second")
        second = job_manager.submit(labels, printer_name="Third")

        await job_manager.dispatch(first.job_id)
        await job_manager.dispatch(second.job_id)

        assert first.state == second.state == PrintJobState.PRINTING
        await asyncio.gather(job_manager.wait_for(first.job_id, 5), job_manager.wait_for(second.job_id, 5))

    async def test_unassigned_job_goes_to_first_idle_capable_printer(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Receipt", supports_label_printing=False, render=False))
        registry.try_reserve("Mock Printer", "someone-else")
        registry.register_driver(MockPrinter(name="Backup", print_delay=0, render=False))

        job = job_manager.submit(labels)
        status = await job_manager.dispatch(job.job_id)

        assert status.printer_name == "Backup"

    async def test_no_capable_printer_keeps_job_queued(self, job_manager, registry, labels):
        registry.unregister("Mock Printer")
        registry.register_driver(MockPrinter(name="Tiny", max_width_inches=2.0, render=False))
        job = job_manager.submit(labels)

        with pytest.raises(PrinterIncompatibleError):
            await job_manager.dispatch(job.job_id)
        assert job.state == PrintJobState.QUEUED

    async def test_dispatch_pending_is_fifo(self, job_manager, labels):
        first = job_manager.submit(labels)
        second = job_manager.submit(labels)

        dispatched = await job_manager.dispatch_pending()

        assert dispatched == [first.job_id]
        assert second.state == PrintJobState.QUEUED
        await job_manager.wait_for(first.job_id, timeout=5)
        assert await job_manager.dispatch_pending() == [second.job_id]


@pytest.mark.asyncio
class TestCancellationAndRetry:

    async def test_cancel_queued_job(self, job_manager, labels):
        job = job_manager.submit(labels)

        status = await job_manager.cancel(job.job_id)

        assert status.status == PrintJobState.CANCELLED
        assert status.completed_at is not None
        with pytest.raises(InvalidJobStateError):
            await job_manager.dispatch(job.job_id)

    async def test_cancel_printing_job_stops_at_next_label(self, job_manager, registry, labels):
        slow = MockPrinter(name="Slow", print_delay=0.05, render=False)
        registry.register_driver(slow)
        job = job_manager.submit(labels, printer_name="Slow")

        await job_manager.dispatch(job.job_id)
        await asyncio.sleep(0.01)
        requested = await job_manager.cancel(job.job_id)
        assert requested.status == PrintJobState.PRINTING

        final = await job_manager.wait_for(job.job_id, timeout=5)
        assert final.status == PrintJobState.CANCELLED
        assert final.progress < 100
        assert len(slow.get_print_history()) == 1
        assert registry.get("Slow").status == PrinterStatus.ONLINE

    async def test_retry_failed_job_is_a_new_submission(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Flaky", print_delay=0, render=False, fail_on_label=1))
        job = job_manager.submit(labels, printer_name="Flaky")
        await job_manager.dispatch(job.job_id)
        await job_manager.wait_for(job.job_id, timeout=5)

        retry = await job_manager.retry(job.job_id)

        assert retry.job_id != job.job_id
        assert retry.retry_of == job.job_id
        assert retry.state == PrintJobState.QUEUED
        assert job.state == PrintJobState.FAILED

    async def test_completed_job_cannot_be_retried(self, job_manager, labels):
        job = job_manager.submit(labels)
        await job_manager.dispatch(job.job_id)
        await job_manager.wait_for(job.job_id, timeout=5)

        with pytest.raises(InvalidJobStateError):
            await job_manager.retry(job.job_id)


@pytest.mark.asyncio
class TestQueueAndLifecycle:

    async def test_queue_counts(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Flaky", print_delay=0, render=False, fail_on_label=1))
        done = job_manager.submit(labels, printer_name="Mock Printer")
        failed = job_manager.submit(labels, printer_name="Flaky")
        job_manager.submit(labels, printer_name="Mock Printer")
        await job_manager.dispatch(done.job_id)
        await job_manager.dispatch(failed.job_id)
        await asyncio.gather(job_manager.wait_for(done.job_id, 5), job_manager.wait_for(failed.job_id, 5))

        queue = job_manager.get_queue()

        assert queue.total_jobs == 3
        assert queue.completed_jobs == 1
        assert queue.failed_jobs == 1
        assert queue.queued_jobs == 1
        assert queue.active_job is None

    async def test_auto_dispatch_runs_submitted_jobs(self, registry, compositor, labels):
        from LabelMatrix.config.print_config import PrintConfig
        from LabelMatrix.services.printer.print_job_manager import PrintJobManager

        manager = PrintJobManager(registry, compositor=compositor, config=PrintConfig(auto_dispatch=True))
        await manager.start()
        try:
            first = manager.submit(labels)
            second = manager.submit(labels)

            assert (await manager.wait_for(first.job_id, timeout=5)).status == PrintJobState.COMPLETED
            assert (await manager.wait_for(second.job_id, timeout=5)).status == PrintJobState.COMPLETED
        finally:
            await manager.shutdown()

    async def test_printer_recovery_requeues_waiting_job(self, registry, compositor, labels):
        from LabelMatrix.config.print_config import PrintConfig
        from LabelMatrix.services.printer.print_job_manager import PrintJobManager

        manager = PrintJobManager(registry, compositor=compositor, config=PrintConfig(auto_dispatch=True))
        registry.set_status("Mock Printer", PrinterStatus.OFFLINE)
        await manager.start()
        try:
            job = manager.submit(labels, printer_name="Mock Printer")
            await asyncio.sleep(0.05)
            assert job.state == PrintJobState.QUEUED

            registry.set_status("Mock Printer", PrinterStatus.ONLINE)

            assert (await manager.wait_for(job.job_id, timeout=5)).status == PrintJobState.COMPLETED
        finally:
            await manager.shutdown()

    async def test_shutdown_cancels_waiting_jobs(self, job_manager, registry, labels):
        await job_manager.start()
        registry.set_status("Mock Printer", PrinterStatus.OFFLINE)
        job = job_manager.submit(labels)

        await job_manager.shutdown(drain_seconds=0.1)

        assert job.state == PrintJobState.CANCELLED
        with pytest.raises(InvalidJobStateError):
            job_manager.submit(labels)

    async def test_shutdown_drains_printing_jobs(self, job_manager, registry, labels):
        registry.register_driver(MockPrinter(name="Slow", print_delay=0.02, render=False))
        job = job_manager.submit(labels, printer_name="Slow")
        await job_manager.dispatch(job.job_id)

        await job_manager.shutdown(drain_seconds=2)

        assert job.state == PrintJobState.COMPLETED

    async def test_shutdown_before_job_starts_releases_printer(self, job_manager, registry, labels):
        job = job_manager.submit(labels, printer_name="Mock Printer")
        await job_manager.dispatch(job.job_id)

        await job_manager.shutdown(drain_seconds=0)

        assert job.state == PrintJobState.CANCELLED
        assert job.message == "Cancelled at shutdown"
        assert registry.reserved_by("Mock Printer") is None
        assert registry.get("Mock Printer").status == PrinterStatus.ONLINE
        assert (await job_manager.wait_for(job.job_id, timeout=1)).status == PrintJobState.CANCELLED

    async def test_finished_jobs_are_purged_while_submissions_keep_arriving(self, registry, compositor, labels):
        from LabelMatrix.config.print_config import PrintConfig
        from LabelMatrix.services.printer.print_job_manager import PrintJobManager

        manager = PrintJobManager(registry, compositor=compositor,
                                  config=PrintConfig(auto_dispatch=True, job_retention_seconds=0))
        manager.housekeeping_interval = 0.05
        await manager.start()
        try:
            first = manager.submit(labels)
            await manager.wait_for(first.job_id, timeout=5)
            for _ in range(10):
                manager.submit(labels)
                await asyncio.sleep(0.02)

            assert first.job_id not in {job.job_id for job in manager.list_jobs()}
        finally:
            await manager.shutdown()

    async def test_purging_runs_without_auto_dispatch(self, registry, compositor, labels):
        from LabelMatrix.config.print_config import PrintConfig
        from LabelMatrix.services.printer.print_job_manager import PrintJobManager

        manager = PrintJobManager(registry, compositor=compositor,
                                  config=PrintConfig(auto_dispatch=False, job_retention_seconds=0))
        manager.housekeeping_interval = 0.02
        await manager.start()
        try:
            cancelled = manager.submit(labels)
            waiting = manager.submit(labels)
            await manager.cancel(cancelled.job_id)
            await asyncio.sleep(0.2)

            assert [job.job_id for job in manager.list_jobs()] == [waiting.job_id]
            assert waiting.state == PrintJobState.QUEUED
        finally:
            await manager.shutdown()

    async def test_purge_drops_read_and_expired_jobs(self, job_manager, labels):
        read = job_manager.submit(labels)
        old = job_manager.submit(labels)
        pending = job_manager.submit(labels)
        await job_manager.cancel(read.job_id)
        await job_manager.cancel(old.job_id)
        job_manager.get_status(read.job_id)

        assert job_manager.purge_expired() == 1
        later = datetime.utcnow() + timedelta(seconds=job_manager.config.job_retention_seconds + 1)
        assert job_manager.purge_expired(now=later) == 1
        assert [job.job_id for job in job_manager.list_jobs()] == [pending.job_id]

    async def test_completion_estimate_needs_history(self, job_manager, labels):
        first = job_manager.submit(labels)
        assert job_manager.estimate_completion([first.job_id]) is None

        await job_manager.dispatch(first.job_id)
        await job_manager.wait_for(first.job_id, timeout=5)
        second = job_manager.submit(labels)
        third = job_manager.submit(labels)

        now = datetime.utcnow()
        average = job_manager.average_job_duration
        estimate = job_manager.estimate_completion([second.job_id, third.job_id], now=now)

        assert average is not None
        assert estimate == now + timedelta(seconds=2 * average)


class TestEventLoopBinding:

    def test_job_submitted_outside_a_loop_can_be_awaited(self, job_manager, labels):
        job = job_manager.submit(labels)

        async def print_and_wait():
            await job_manager.dispatch(job.job_id)
            return await job_manager.wait_for(job.job_id, timeout=5)

        assert asyncio.run(print_and_wait()).status == PrintJobState.COMPLETED
        assert asyncio.run(job_manager.wait_for(job.job_id, timeout=1)).status == PrintJobState.COMPLETED
