import re
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

MM_PER_INCH = 25.4

_LENGTH_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(in|inch|inches|mm|\")?\s*$", re.IGNORECASE)


def parse_length_inches(value: Union[str, float, int]) -> float:
    """
    Convert a label length to inches.

    Accepts bare numbers (inches), "4in", '4"' or "101.6mm".
    """
    if isinstance(value, (int, float)):
        inches = float(value)
    else:
        match = _LENGTH_PATTERN.match(str(value))
        if not match:
            raise ValueError(f"Unrecognised length {value!r}; expected e.g. '4in' or '101.6mm'")
        number, unit = match.groups()
        inches = float(number) / MM_PER_INCH if unit and unit.lower() == "mm" else float(number)
    if inches <= 0:
        raise ValueError(f"Length must be positive, got {value!r}")
    return inches


class PrintSettings(BaseModel):
    """Per-job media settings. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    width: Union[str, float] = "4in"        # label width, e.g. "4in"
    height: Union[str, float] = "2in"       # label height, e.g. "2in"
    dpi: int = Field(default=203, gt=0)     # dots per inch of the print head
    orientation: Optional[Literal["portrait", "landscape"]] = None   # rotates width/height when set
    copies: int = Field(default=1, ge=1, le=100)

    @field_validator("width", "height")
    @classmethod
    def _check_length(cls, value):
        parse_length_inches(value)
        return value

    @property
    def width_inches(self) -> float:
        return parse_length_inches(self.width)

    @property
    def height_inches(self) -> float:
        return parse_length_inches(self.height)


class PrintJobOptions(BaseModel):
    """
    Device options attached to a job at submission time.

    copies and reverse_print change the label sequence sent to the printer;
    collate groups copies per label (False) or per set (True). print_quality,
    paper_type, print_speed and darkness are passed to the driver.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    printer_name: Optional[str] = None
    print_quality: Literal["draft", "normal", "high"] = "normal"
    paper_type: Literal["label", "continuous", "fanfold"] = "label"
    print_speed: Literal["slow", "medium", "fast"] = "medium"
    darkness: Optional[int] = Field(default=None, ge=0, le=15)
    copies: Optional[int] = Field(default=None, ge=1, le=100)
    collate: bool = True
    reverse_print: bool = False


class LabelGenerationOptions(BaseModel):
    """Which payload fields appear in the label's text region."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    include_vendor_name: bool = False
    include_customer_name: bool = False
    include_batch_number: bool = True
    include_manufacturing_date: bool = False
    include_expiry_date: bool = True
    qr_error_correction_level: Literal["L", "M", "Q", "H"] = "M"
    font_size: Literal["small", "medium", "large"] = "medium"
