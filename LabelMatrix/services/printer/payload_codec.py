"""
Payload codec for per-box QR data.

Builds QRPayload values from transaction records, validates them and converts
them to and from the compact string stored in the QR symbol.

Wire format (one line, `|` separated, version tag first):

    QR1|company|entry_date|vendor|customer|description|net|gross|batch|mfg|exp|box|txn|sku|approval

String fields are percent-encoded so `|`, `%` and `~` never appear raw. An
absent optional field is written as the single sentinel `~`; an empty string
is an empty field. Floats are written with repr() so they decode bit-for-bit.
"""
import logging
import math
import re
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import quote, unquote

from LabelMatrix import __payload_version__
from LabelMatrix.exceptions import InvalidWeightError, MalformedPayloadError, MissingFieldError, ValidationError
from LabelMatrix.models.qr_models import BoxRecord, QRPayload, TransactionRecord, ValidationResult

logger = logging.getLogger(__name__)

DELIMITER = "|"
ABSENT = "~"

# (field name, kind, optional)
PAYLOAD_FIELDS = (
    ("company", "str", False),
    ("entry_date", "str", False),
    ("vendor_name", "str", False),
    ("customer_name", "str", False),
    ("item_description", "str", False),
    ("net_weight", "float", False),
    ("total_weight", "float", False),
    ("batch_number", "str", False),
    ("manufacturing_date", "str", True),
    ("expiry_date", "str", True),
    ("box_number", "int", False),
    ("transaction_no", "str", False),
    ("sku_id", "int", False),
    ("approval_authority", "str", True),
)

MANDATORY_FIELDS = (
    "company",
    "entry_date",
    "net_weight",
    "total_weight",
    "batch_number",
    "box_number",
    "transaction_no",
    "sku_id",
)

BATCH_LABEL_LIMIT = 20

_BROKEN_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_date(value: str) -> Optional[date]:
    try:
        return datetime.fromisoformat(value).date()
    except (TypeError, ValueError):
        return None


class PayloadCodec:
    """Build, validate, encode and decode QR payloads."""

    def build(self, transaction: TransactionRecord, box: BoxRecord) -> QRPayload:
        """
        Build the payload for one box of a transaction.

        Raises:
            MissingFieldError: a mandatory field is absent
            InvalidWeightError: the box's net weight exceeds its gross weight
        """
        article = transaction.article_for_box(box)
        values = {
            "company": transaction.company,
            "entry_date": transaction.entry_date,
            "vendor_name": transaction.vendor_name or "",
            "customer_name": transaction.customer_name or "",
            "item_description": (article.item_description if article else box.article_description) or "",
            "net_weight": box.net_weight,
            "total_weight": box.gross_weight,
            "batch_number": article.batch_number if article else None,
            "manufacturing_date": article.manufacturing_date if article else None,
            "expiry_date": article.expiry_date if article else None,
            "box_number": box.box_number,
            "transaction_no": transaction.transaction_no,
            "sku_id": article.sku_id if article else None,
            "approval_authority": transaction.approval_authority,
        }

        missing = [name for name in MANDATORY_FIELDS if _is_blank(values[name])]
        if missing:
            raise MissingFieldError(missing)

        if values["net_weight"] > values["total_weight"]:
            raise InvalidWeightError(values["net_weight"], values["total_weight"], box_number=values["box_number"])

        if values["box_number"] < 1:
            raise ValidationError(
                f"box_number must be >= 1, got {values['box_number']}", field_errors={"box_number": "must be >= 1"}
            )

        return QRPayload(**values)

    def encode(self, payload: QRPayload) -> str:
        """Serialize a payload to the compact QR string."""
        parts = [__payload_version__]
        for name, kind, _optional in PAYLOAD_FIELDS:
            value = getattr(payload, name)
            if value is None:
                parts.append(ABSENT)
            elif kind == "float":
                parts.append(repr(float(value)))
            elif kind == "int":
                parts.append(str(int(value)))
            else:
                parts.append(quote(value, safe=" :/,").replace("~", "%7E"))
        return DELIMITER.join(parts)

    def decode(self, data: str) -> Dict[str, Any]:
        """
        Parse a compact QR string.

        Returns the decoded fields; absent optional fields are omitted.

        Raises:
            MalformedPayloadError: wrong tag, wrong field count, bad numbers or escapes
        """
        if not isinstance(data, str):
            raise MalformedPayloadError("QR data must be a string")

        parts = data.split(DELIMITER)
        expected = len(PAYLOAD_FIELDS) + 1
        if len(parts) != expected:
            raise MalformedPayloadError(f"Expected {expected} fields, found {len(parts)}", raw_value=data)
        if parts[0] != __payload_version__:
            raise MalformedPayloadError(f"Unsupported payload version {parts[0]!r}", raw_value=data)

        decoded: Dict[str, Any] = {}
        for (name, kind, optional), raw in zip(PAYLOAD_FIELDS, parts[1:]):
            if raw == ABSENT:
                if not optional:
                    raise MalformedPayloadError(f"Mandatory field {name} is marked absent", raw_value=data)
                continue
            decoded[name] = self._decode_field(name, kind, raw, data)
        return decoded

    def _decode_field(self, name: str, kind: str, raw: str, data: str) -> Any:
        if kind == "float":
            try:
                return float(raw)
            except ValueError:
                raise MalformedPayloadError(f"Field {name} is not a number: {raw!r}", raw_value=data)
        if kind == "int":
            try:
                return int(raw)
            except ValueError:
                raise MalformedPayloadError(f"Field {name} is not an integer: {raw!r}", raw_value=data)
        if ABSENT in raw or _BROKEN_ESCAPE.search(raw):
            raise MalformedPayloadError(f"Field {name} has invalid escaping: {raw!r}", raw_value=data)
        try:
            return unquote(raw, errors="strict")
        except UnicodeDecodeError:
            raise MalformedPayloadError(f"Field {name} is not valid UTF-8", raw_value=data)

    def validate(self, payload: Union[QRPayload, Mapping[str, Any]]) -> ValidationResult:
        """Check every rule and collect all errors and warnings."""
        values = payload.model_dump() if isinstance(payload, QRPayload) else dict(payload)
        errors: List[str] = []
        warnings: List[str] = []

        for name in MANDATORY_FIELDS:
            if _is_blank(values.get(name)):
                errors.append(f"{name} is required")

        box_number = values.get("box_number")
        if isinstance(box_number, int) and box_number < 1:
            errors.append("box_number must be at least 1")

        sku_id = values.get("sku_id")
        if isinstance(sku_id, int) and sku_id < 0:
            errors.append("sku_id must not be negative")

        net_weight = values.get("net_weight")
        total_weight = values.get("total_weight")
        for name, weight in (("net_weight", net_weight), ("total_weight", total_weight)):
            if isinstance(weight, (int, float)) and (weight < 0 or not math.isfinite(weight)):
                errors.append(f"{name} must be a non-negative number")
        if isinstance(net_weight, (int, float)) and isinstance(total_weight, (int, float)):
            if net_weight > total_weight:
                errors.append("net_weight cannot be greater than total_weight")

        parsed_dates = {}
        for name in ("entry_date", "manufacturing_date", "expiry_date"):
            value = values.get(name)
            if _is_blank(value):
                continue
            parsed = _parse_date(value)
            if parsed is None:
                errors.append(f"{name} must be an ISO date (YYYY-MM-DD)")
            else:
                parsed_dates[name] = parsed

        mfg = parsed_dates.get("manufacturing_date")
        exp = parsed_dates.get("expiry_date")
        if mfg and exp and exp < mfg:
            errors.append("expiry_date cannot be before manufacturing_date")

        if not _is_blank(values.get("manufacturing_date")) and _is_blank(values.get("expiry_date")):
            warnings.append("manufacturing_date is set but expiry_date is missing")
        entry = parsed_dates.get("entry_date")
        if entry and exp and exp < entry:
            warnings.append("expiry_date is before entry_date; goods were received expired")
        if _is_blank(values.get("vendor_name")) and _is_blank(values.get("customer_name")):
            warnings.append("neither vendor_name nor customer_name is set")
        batch = values.get("batch_number")
        if isinstance(batch, str) and len(batch) > BATCH_LABEL_LIMIT:
            warnings.append(f"batch_number longer than {BATCH_LABEL_LIMIT} characters will be truncated on the label")

        if errors:
            logger.debug(f"Payload validation failed: {errors}")
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
