"""
Value objects for QR payloads, labels and label geometry.
"""
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class QRPayload(BaseModel):
    """Data encoded into a single box's QR code."""

    model_config = ConfigDict(frozen=True)

    company: str
    entry_date: str
    vendor_name: str = ""
    customer_name: str = ""
    item_description: str = ""
    net_weight: float
    total_weight: float  # gross weight of the box
    batch_number: str
    manufacturing_date: Optional[str] = None
    expiry_date: Optional[str] = None
    box_number: int
    transaction_no: str
    sku_id: int
    approval_authority: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self):
        if self.box_number < 1:
            raise ValueError(f"box_number must be >= 1, got {self.box_number}")
        if self.net_weight > self.total_weight:
            raise ValueError(f"net_weight {self.net_weight} exceeds total_weight {self.total_weight}")
        if not self.transaction_no:
            raise ValueError("transaction_no must not be empty")
        return self


class QRLabel(BaseModel):
    """One printable label per box."""

    model_config = ConfigDict(frozen=True)

    box_number: int
    article_description: str
    qr_payload: QRPayload
    qr_data: str

    @property
    def transaction_no(self) -> str:
        return self.qr_payload.transaction_no


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Collaborator records: the validated transaction data handed to the pipeline
# -----------------------------------------------------------------------------


class ArticleRecord(BaseModel):
    item_description: str
    sku_id: Optional[int] = None
    batch_number: Optional[str] = None
    manufacturing_date: Optional[str] = None
    expiry_date: Optional[str] = None


class BoxRecord(BaseModel):
    box_number: Optional[int] = None
    article_description: Optional[str] = None
    net_weight: Optional[float] = None
    gross_weight: Optional[float] = None


class TransactionRecord(BaseModel):
    """An inward/outward movement as supplied by the data-entry side."""

    transaction_no: str
    company: str
    entry_date: Optional[str] = None
    vendor_name: Optional[str] = None
    customer_name: Optional[str] = None
    approval_authority: Optional[str] = None
    net_weight: Optional[float] = None    # header total, reconciled against boxes
    total_weight: Optional[float] = None  # header gross total
    articles: List[ArticleRecord] = Field(default_factory=list)
    boxes: List[BoxRecord] = Field(default_factory=list)

    def find_box(self, box_number: int) -> Optional[BoxRecord]:
        return next((box for box in self.boxes if box.box_number == box_number), None)

    def article_for_box(self, box: BoxRecord) -> Optional[ArticleRecord]:
        """Article whose description matches the box, else the first article."""
        for article in self.articles:
            if article.item_description == box.article_description:
                return article
        return self.articles[0] if self.articles else None


# -----------------------------------------------------------------------------
# Label geometry
# -----------------------------------------------------------------------------


class LabelDimensions(BaseModel):
    """Physical label size. Pixel sizes are derived as round(inches * dpi)."""

    model_config = ConfigDict(frozen=True)

    width_inches: float = Field(default=4.0, gt=0)
    height_inches: float = Field(default=2.0, gt=0)
    dpi: int = Field(default=203, gt=0)

    @property
    def width_px(self) -> int:
        return round(self.width_inches * self.dpi)

    @property
    def height_px(self) -> int:
        return round(self.height_inches * self.dpi)


class QRSectionLayout(BaseModel):
    model_config = ConfigDict(frozen=True)

    width_percent: float = Field(default=50, gt=0, le=100)
    padding_inches: float = Field(default=0.1, ge=0)
    alignment: str = "center"  # left | center | right


class InfoSectionLayout(BaseModel):
    model_config = ConfigDict(frozen=True)

    width_percent: float = Field(default=50, gt=0, le=100)
    padding_inches: float = Field(default=0.1, ge=0)
    title_pt: float = 9
    content_pt: float = 8
    footer_pt: float = 7
    line_height: float = 1.1


class BorderLayout(BaseModel):
    model_config = ConfigDict(frozen=True)

    width_px: int = 1
    color: str = "#000"
    style: str = "solid"  # solid | dashed | dotted


class LabelLayout(BaseModel):
    """
    Label layout configuration.

    qr_fraction is the QR edge length as a fraction of the smaller printable
    pixel dimension; the default reproduces the 170 px QR region on a
    406 px tall label.
    """

    model_config = ConfigDict(frozen=True)

    qr_section: QRSectionLayout = Field(default_factory=QRSectionLayout)
    info_section: InfoSectionLayout = Field(default_factory=InfoSectionLayout)
    border: BorderLayout = Field(default_factory=BorderLayout)
    qr_fraction: float = Field(default=170 / 406, gt=0, le=1)


DEFAULT_LABEL_DIMENSIONS = LabelDimensions()
DEFAULT_LABEL_LAYOUT = LabelLayout()


class Region(BaseModel):
    """Axis aligned rectangle in label pixels."""

    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return self.x, self.y, self.x + self.width, self.y + self.height


class TextLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    role: str = "content"  # title | content | footer
    font_px: int
    x: int = 0
    y: int = 0


class LabelRenderSpec(BaseModel):
    """Everything a renderer needs to draw one label; no rendering happens here."""

    model_config = ConfigDict(frozen=True)

    width_px: int
    height_px: int
    dpi: int
    qr_size_px: int
    qr_region: Region
    text_region: Region
    qr_data: str
    text_lines: Tuple[TextLine, ...]
    border_px: int = 1
    qr_error_correction: str = "M"
