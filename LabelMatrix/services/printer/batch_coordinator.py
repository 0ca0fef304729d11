"""
Batch coordinator: one print job per transaction of a batch request.

A batch has no state machine of its own. Its status is read from its jobs,
and a caller decides success by inspecting them.
"""
import logging
import uuid
from typing import Dict, List

from LabelMatrix.exceptions import BatchNotFoundError, ValidationError
from LabelMatrix.models.print_job_models import (
    BatchPrintRequest,
    BatchPrintResponse,
    BatchStatus,
    PrintJobState,
)
from LabelMatrix.models.qr_models import QRLabel
from LabelMatrix.services.printer.print_job_manager import PrintJobManager
from LabelMatrix.services.printer.qr_label_service import QRLabelService

logger = logging.getLogger(__name__)


class BatchCoordinator:

    def __init__(self, label_service: QRLabelService, job_manager: PrintJobManager):
        self.label_service = label_service
        self.job_manager = job_manager
        self.logger = logging.getLogger(self.__class__.__name__)
        self._batches: Dict[str, List[str]] = {}
        self._batch_labels: Dict[str, int] = {}

    def submit_batch(self, request: BatchPrintRequest) -> BatchPrintResponse:
        """
        Resolve every transaction, then submit one job per transaction.

        Labels for all transactions are built before the first job is created,
        so an invalid transaction rejects the whole batch and queues nothing.
        """
        keys = [(t.company, t.transaction_no) for t in request.transactions]
        duplicates = sorted({no for company, no in keys if keys.count((company, no)) > 1})
        if duplicates:
            raise ValidationError(
                f"Transactions listed more than once in batch: {duplicates}",
                field_errors={"transactions": f"duplicates {duplicates}"},
            )

        resolved: List[List[QRLabel]] = []
        for item in request.transactions:
            transaction = self.label_service.resolve_transaction(item.company, item.transaction_no)
            labels, warnings = self.label_service.build_labels(transaction, item.box_numbers)
            for warning in warnings:
                self.logger.warning(f"Transaction {item.transaction_no} {warning}")
            resolved.append(labels)

        self.job_manager.check_printer(request.printer_name, request.print_settings)
        self._prune()

        batch_id = f"batch_{uuid.uuid4().hex[:12]}"
        jobs = [
            self.job_manager.submit(
                labels,
                printer_name=request.printer_name,
                print_settings=request.print_settings,
                options=request.options,
                label_options=request.label_options,
                batch_id=batch_id,
            )
            for labels in resolved
        ]
        total_labels = sum(len(item.box_numbers) for item in request.transactions)
        self._batches[batch_id] = [job.job_id for job in jobs]
        self._batch_labels[batch_id] = total_labels

        estimate = self.job_manager.estimate_completion(self._batches[batch_id])
        self.logger.info(f"Batch {batch_id}: {len(jobs)} job(s), {total_labels} label(s)")
        return BatchPrintResponse(
            batch_id=batch_id,
            total_jobs=len(jobs),
            jobs=[job.to_response() for job in jobs],
            estimated_completion_time=estimate,
            total_labels=total_labels,
        )

    def get_batch(self, batch_id: str) -> BatchStatus:
        """
        Current view of a batch's jobs. Jobs already purged from the manager are
        left out; once every job is purged the batch itself is forgotten.
        """
        self._prune()
        if batch_id not in self._batches:
            raise BatchNotFoundError(f"Batch {batch_id} not found", batch_id=batch_id)

        statuses = [job.to_status() for job in self.job_manager.list_jobs(batch_id=batch_id)]

        def count(state: PrintJobState) -> int:
            return sum(1 for status in statuses if status.status == state)

        return BatchStatus(
            batch_id=batch_id,
            total_jobs=len(self._batches[batch_id]),
            total_labels=self._batch_labels[batch_id],
            jobs=statuses,
            completed_jobs=count(PrintJobState.COMPLETED),
            failed_jobs=count(PrintJobState.FAILED),
            cancelled_jobs=count(PrintJobState.CANCELLED),
            pending_jobs=count(PrintJobState.QUEUED) + count(PrintJobState.PRINTING),
        )

    def _prune(self):
        live = {job.batch_id for job in self.job_manager.list_jobs() if job.batch_id is not None}
        gone = [batch_id for batch_id in self._batches if batch_id not in live]
        for batch_id in gone:
            del self._batches[batch_id]
            del self._batch_labels[batch_id]
        if gone:
            self.logger.debug(f"Forgot {len(gone)} batch(es) with no remaining jobs")
