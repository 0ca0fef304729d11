"""
Transaction -> QR labels.

Resolves a transaction from the collaborator's TransactionSource, reconciles
its box weights against the header totals and builds one validated QRLabel
per requested box.
"""
import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from LabelMatrix.exceptions import ResourceNotFoundError, ValidationError
from LabelMatrix.models.print_job_models import QRLabelResponse
from LabelMatrix.models.qr_models import QRLabel, TransactionRecord
from LabelMatrix.services.printer.label_compositor import LabelCompositor
from LabelMatrix.services.printer.payload_codec import PayloadCodec

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 0.01


class TransactionSource(Protocol):
    """Supplies validated transaction records. Persistence lives with the collaborator."""

    def get_transaction(self, company: str, transaction_no: str) -> Optional[TransactionRecord]:
        ...


class InMemoryTransactionSource:
    """Dictionary-backed TransactionSource."""

    def __init__(self, transactions: Sequence[TransactionRecord] = ()):
        self._transactions: Dict[Tuple[str, str], TransactionRecord] = {}
        for transaction in transactions:
            self.add(transaction)

    def add(self, transaction: TransactionRecord):
        self._transactions[(transaction.company, transaction.transaction_no)] = transaction

    def get_transaction(self, company: str, transaction_no: str) -> Optional[TransactionRecord]:
        return self._transactions.get((company, transaction_no))


def reconcile_weights(transaction: TransactionRecord) -> List[str]:
    """
    Compare box weight sums with the transaction header totals.

    Returns one message per mismatch; header totals that are absent are not checked.
    """
    problems = []
    boxes = transaction.boxes
    checks = (
        ("net_weight", transaction.net_weight, [box.net_weight for box in boxes]),
        ("total_weight", transaction.total_weight, [box.gross_weight for box in boxes]),
    )
    for field, header_total, box_weights in checks:
        if header_total is None or not boxes or any(weight is None for weight in box_weights):
            continue
        box_total = sum(box_weights)
        if abs(box_total - header_total) > WEIGHT_TOLERANCE:
            problems.append(f"{field}: boxes sum to {box_total:.2f} but transaction total is {header_total:.2f}")
    return problems


class QRLabelService:
    """Builds the labels for a transaction's boxes."""

    def __init__(self, source: TransactionSource, codec: Optional[PayloadCodec] = None,
                 compositor: Optional[LabelCompositor] = None):
        self.source = source
        self.codec = codec or PayloadCodec()
        self.compositor = compositor or LabelCompositor(self.codec)
        self.logger = logging.getLogger(self.__class__.__name__)

    def resolve_transaction(self, company: str, transaction_no: str) -> TransactionRecord:
        transaction = self.source.get_transaction(company, transaction_no)
        if transaction is None:
            raise ResourceNotFoundError(
                f"Transaction {transaction_no} not found for company {company}",
                resource_type="transaction",
                resource_id=transaction_no,
            )
        return transaction

    def build_labels(self, transaction: TransactionRecord, box_numbers: Sequence[int]) -> Tuple[List[QRLabel], List[str]]:
        """
        Build labels for the given boxes, in the order requested.

        Raises:
            ValidationError: unknown or duplicate box numbers, weight mismatch, invalid payload
            MissingFieldError / InvalidWeightError: from the payload codec
        """
        duplicates = sorted({number for number in box_numbers if list(box_numbers).count(number) > 1})
        if duplicates:
            raise ValidationError(
                f"Duplicate box numbers in request: {duplicates}",
                field_errors={"box_numbers": f"duplicates {duplicates}"},
            )

        weight_problems = reconcile_weights(transaction)
        if weight_problems:
            raise ValidationError(
                f"Weight reconciliation failed for transaction {transaction.transaction_no}",
                errors=weight_problems,
            )

        labels: List[QRLabel] = []
        warnings: List[str] = []
        unknown = []
        for number in box_numbers:
            box = transaction.find_box(number)
            if box is None:
                unknown.append(number)
                continue
            payload = self.codec.build(transaction, box)
            result = self.codec.validate(payload)
            if not result.is_valid:
                raise ValidationError(f"Box {number} payload is invalid", errors=result.errors)
            warnings.extend(f"box {number}: {warning}" for warning in result.warnings)
            labels.append(self.compositor.create_label(payload))

        if unknown:
            raise ValidationError(
                f"Transaction {transaction.transaction_no} has no boxes {unknown}",
                field_errors={"box_numbers": f"unknown boxes {unknown}"},
            )
        return labels, warnings

    def generate_labels(self, company: str, transaction_no: str, box_numbers: Sequence[int]) -> QRLabelResponse:
        transaction = self.resolve_transaction(company, transaction_no)
        labels, warnings = self.build_labels(transaction, box_numbers)
        self.logger.info(f"Generated {len(labels)} label(s) for transaction {transaction_no}")
        return QRLabelResponse(transaction_no=transaction_no, company=company, labels=labels, warnings=warnings)
