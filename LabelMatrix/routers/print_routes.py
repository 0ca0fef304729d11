from typing import Optional

from fastapi import APIRouter, Depends

from LabelMatrix.dependencies import get_batch_coordinator, get_job_manager, get_label_service
from LabelMatrix.models.print_job_models import (
    BatchPrintRequest,
    PayloadDecodeRequest,
    PrintJobRequest,
    QRLabelRequest,
)
from LabelMatrix.routers.base import BaseRouter, standard_error_handling
from LabelMatrix.services.printer.batch_coordinator import BatchCoordinator
from LabelMatrix.services.printer.print_job_manager import PrintJobManager
from LabelMatrix.services.printer.qr_label_service import QRLabelService

router = APIRouter()


# Labels and payloads
@router.post("/labels")
@standard_error_handling
async def generate_labels(request: QRLabelRequest, label_service: QRLabelService = Depends(get_label_service)):
    """Build the QR labels for a transaction's boxes without printing them."""
    response = label_service.generate_labels(request.company, request.transaction_no, request.box_numbers)
    return BaseRouter.build_success_response(
        data=response, message=f"Generated {len(response.labels)} labels for {request.transaction_no}"
    )


@router.post("/payload/decode")
@standard_error_handling
async def decode_payload(request: PayloadDecodeRequest, label_service: QRLabelService = Depends(get_label_service)):
    """Decode a scanned QR string and report rule violations."""
    fields = label_service.codec.decode(request.qr_data)
    validation = label_service.codec.validate(fields)
    return BaseRouter.build_success_response(
        data={"payload": fields, "validation": validation},
        message="Payload decoded" if validation.is_valid else "Payload decoded with validation errors",
    )


# Jobs
@router.post("/jobs")
@standard_error_handling
async def submit_job(
    request: PrintJobRequest,
    label_service: QRLabelService = Depends(get_label_service),
    job_manager: PrintJobManager = Depends(get_job_manager),
):
    """Queue one print job for a transaction's boxes."""
    labels = label_service.generate_labels(request.company, request.transaction_no, request.box_numbers).labels
    job = job_manager.submit(
        labels,
        printer_name=request.printer_name,
        print_settings=request.print_settings,
        options=request.options,
        label_options=request.label_options,
    )
    return BaseRouter.build_success_response(data=job.to_response(), message=f"Print job {job.job_id} queued")


@router.get("/jobs")
@standard_error_handling
async def list_jobs(transaction_no: Optional[str] = None, job_manager: PrintJobManager = Depends(get_job_manager)):
    jobs = [job.to_status() for job in job_manager.list_jobs(transaction_no=transaction_no)]
    return BaseRouter.build_success_response(data=jobs, message=f"Found {len(jobs)} jobs")


@router.get("/jobs/{job_id}")
@standard_error_handling
async def get_job_status(job_id: str, job_manager: PrintJobManager = Depends(get_job_manager)):
    status = job_manager.get_status(job_id)
    return BaseRouter.build_success_response(data=status, message=f"Job {job_id} is {status.status.value}")


@router.post("/jobs/{job_id}/dispatch")
@standard_error_handling
async def dispatch_job(job_id: str, printer_name: Optional[str] = None,
                       job_manager: PrintJobManager = Depends(get_job_manager)):
    """Start a queued job now, optionally on a specific printer."""
    status = await job_manager.dispatch(job_id, printer_name=printer_name)
    return BaseRouter.build_success_response(data=status, message=f"Job {job_id} dispatched to {status.printer_name}")


@router.post("/jobs/{job_id}/retry")
@standard_error_handling
async def retry_job(job_id: str, job_manager: PrintJobManager = Depends(get_job_manager)):
    """Re-attempt dispatch of a queued job, or resubmit a failed/cancelled one."""
    job = await job_manager.retry(job_id)
    return BaseRouter.build_success_response(data=job.to_status(), message=f"Job {job.job_id} is {job.state.value}")


@router.post("/jobs/{job_id}/cancel")
@standard_error_handling
async def cancel_job(job_id: str, job_manager: PrintJobManager = Depends(get_job_manager)):
    status = await job_manager.cancel(job_id)
    return BaseRouter.build_success_response(data=status, message=status.message)


@router.get("/queue")
@standard_error_handling
async def get_queue(job_manager: PrintJobManager = Depends(get_job_manager)):
    queue = job_manager.get_queue()
    return BaseRouter.build_success_response(data=queue, message=f"{queue.total_jobs} jobs known")


# Batches
@router.post("/batch")
@standard_error_handling
async def submit_batch(request: BatchPrintRequest,
                       batch_coordinator: BatchCoordinator = Depends(get_batch_coordinator)):
    """Queue one job per transaction in the batch."""
    response = batch_coordinator.submit_batch(request)
    return BaseRouter.build_success_response(
        data=response, message=f"Batch {response.batch_id} queued with {response.total_jobs} jobs"
    )


@router.get("/batch/{batch_id}")
@standard_error_handling
async def get_batch(batch_id: str, batch_coordinator: BatchCoordinator = Depends(get_batch_coordinator)):
    batch = batch_coordinator.get_batch(batch_id)
    return BaseRouter.build_success_response(data=batch, message=f"Batch {batch_id}")
