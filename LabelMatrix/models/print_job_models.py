"""
Print job states and the request/response models exchanged with callers.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from LabelMatrix.lib.print_settings import LabelGenerationOptions, PrintJobOptions, PrintSettings
from LabelMatrix.models.qr_models import QRLabel
from LabelMatrix.printers.base import PrinterInfo


class PrintJobState(str, Enum):
    QUEUED = "queued"
    PRINTING = "printing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({PrintJobState.COMPLETED, PrintJobState.FAILED, PrintJobState.CANCELLED})


# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class QRLabelRequest(BaseModel):
    transaction_no: str
    company: str
    box_numbers: List[int] = Field(min_length=1)


class QRLabelResponse(BaseModel):
    transaction_no: str
    company: str
    labels: List[QRLabel]
    warnings: List[str] = Field(default_factory=list)


class PrintJobRequest(BaseModel):
    transaction_no: str
    company: str
    box_numbers: List[int] = Field(min_length=1)
    printer_name: Optional[str] = None
    print_settings: Optional[PrintSettings] = None
    options: Optional[PrintJobOptions] = None
    label_options: Optional[LabelGenerationOptions] = None


class BatchTransaction(BaseModel):
    transaction_no: str
    company: str
    box_numbers: List[int] = Field(min_length=1)


class BatchPrintRequest(BaseModel):
    transactions: List[BatchTransaction] = Field(min_length=1)
    printer_name: Optional[str] = None
    print_settings: Optional[PrintSettings] = None
    options: Optional[PrintJobOptions] = None
    label_options: Optional[LabelGenerationOptions] = None


class PayloadDecodeRequest(BaseModel):
    qr_data: str


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class PrintJobResponse(BaseModel):
    job_id: str
    status: PrintJobState
    labels_count: int
    created_at: datetime
    transaction_no: Optional[str] = None
    printer_name: Optional[str] = None


class PrintStatus(BaseModel):
    job_id: str
    status: PrintJobState
    progress: int = Field(ge=0, le=100)
    message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    transaction_no: Optional[str] = None
    printer_name: Optional[str] = None


class PrintQueue(BaseModel):
    """Read-only aggregate over all known jobs."""
    jobs: List[PrintStatus]
    active_job: Optional[PrintStatus] = None
    active_jobs: List[PrintStatus] = Field(default_factory=list)
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    queued_jobs: int = 0
    cancelled_jobs: int = 0


class BatchPrintResponse(BaseModel):
    batch_id: str
    total_jobs: int
    jobs: List[PrintJobResponse]
    estimated_completion_time: Optional[datetime] = None
    total_labels: int


class BatchStatus(BaseModel):
    """Projection of a batch over its jobs; a batch has no state of its own."""
    batch_id: str
    total_jobs: int
    total_labels: int
    jobs: List[PrintStatus]
    completed_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    pending_jobs: int


class PrinterDetectionResult(BaseModel):
    printers: List[PrinterInfo]
    total_count: int
    detection_status: Literal["success", "partial", "failed", "limited"]
    detection_methods_used: List[str]
    errors: Optional[List[str]] = None
