"""
Label compositor: payload + layout + dimensions -> LabelRenderSpec.

Pure functions only. Nothing here draws, logs or touches a device; identical
inputs always produce an identical spec.
"""
from datetime import datetime
from typing import List, Optional

from LabelMatrix.lib.print_settings import LabelGenerationOptions, PrintSettings
from LabelMatrix.models.qr_models import (
    DEFAULT_LABEL_DIMENSIONS,
    DEFAULT_LABEL_LAYOUT,
    LabelDimensions,
    LabelLayout,
    LabelRenderSpec,
    QRLabel,
    QRPayload,
    Region,
    TextLine,
)
from LabelMatrix.services.printer.payload_codec import BATCH_LABEL_LIMIT, PayloadCodec

POINTS_PER_INCH = 72
FONT_SCALE = {"small": 0.85, "medium": 1.0, "large": 1.2}


def format_label_date(value: Optional[str]) -> str:
    """Format an ISO date as dd/mm/yy; unparseable input yields an empty string."""
    if not value:
        return ""
    try:
        return datetime.fromisoformat(value).strftime("%d/%m/%y")
    except ValueError:
        return ""


def format_weight(value: float) -> str:
    """10.0 -> '10', 8.25 -> '8.25'."""
    return ("%f" % value).rstrip("0").rstrip(".")


def dimensions_from_settings(settings: PrintSettings) -> LabelDimensions:
    """
    Label dimensions for a job's PrintSettings.

    Width and height are used as given unless an orientation is set, which
    puts the long side across (landscape) or down (portrait).
    """
    width, height = settings.width_inches, settings.height_inches
    long_side, short_side = max(width, height), min(width, height)
    if settings.orientation == "landscape":
        width, height = long_side, short_side
    elif settings.orientation == "portrait":
        width, height = short_side, long_side
    return LabelDimensions(width_inches=width, height_inches=height, dpi=settings.dpi)


class LabelCompositor:
    """Turns payloads into QRLabels and QRLabels into render specs."""

    def __init__(self, codec: Optional[PayloadCodec] = None):
        self.codec = codec or PayloadCodec()

    def create_label(self, payload: QRPayload) -> QRLabel:
        """Wrap a payload and its compact encoding as an immutable label."""
        return QRLabel(
            box_number=payload.box_number,
            article_description=payload.item_description,
            qr_payload=payload,
            qr_data=self.codec.encode(payload),
        )

    def compose(
        self,
        label_layout: LabelLayout = DEFAULT_LABEL_LAYOUT,
        dimensions: LabelDimensions = DEFAULT_LABEL_DIMENSIONS,
        payload: QRPayload = None,
        options: Optional[LabelGenerationOptions] = None,
        qr_data: Optional[str] = None,
    ) -> LabelRenderSpec:
        """
        Compute the render spec for one label.

        Canvas pixels are round(inches * dpi). The QR edge is
        round(min(canvas) * layout.qr_fraction), shrunk only if it cannot fit
        inside the padded QR section.
        """
        if payload is None:
            raise ValueError("payload is required")
        options = options or LabelGenerationOptions()

        width_px = dimensions.width_px
        height_px = dimensions.height_px
        dpi = dimensions.dpi

        qr_layout = label_layout.qr_section
        info_layout = label_layout.info_section
        qr_padding = round(qr_layout.padding_inches * dpi)
        info_padding = round(info_layout.padding_inches * dpi)

        qr_section_width = round(width_px * qr_layout.width_percent / 100)
        qr_size = round(min(width_px, height_px) * label_layout.qr_fraction)
        qr_size = max(1, min(qr_size, qr_section_width - 2 * qr_padding, height_px - 2 * qr_padding))

        if qr_layout.alignment == "left":
            qr_x = qr_padding
        elif qr_layout.alignment == "right":
            qr_x = qr_section_width - qr_padding - qr_size
        else:
            qr_x = (qr_section_width - qr_size) // 2
        qr_y = (height_px - qr_size) // 2

        info_width = round(width_px * info_layout.width_percent / 100)
        text_region = Region(
            x=qr_section_width + info_padding,
            y=info_padding,
            width=max(0, info_width - 2 * info_padding),
            height=max(0, height_px - 2 * info_padding),
        )

        return LabelRenderSpec(
            width_px=width_px,
            height_px=height_px,
            dpi=dpi,
            qr_size_px=qr_size,
            qr_region=Region(x=qr_x, y=qr_y, width=qr_size, height=qr_size),
            text_region=text_region,
            qr_data=qr_data if qr_data is not None else self.codec.encode(payload),
            text_lines=tuple(self._place_lines(self._text_lines(payload, label_layout, dpi, options), text_region,
                                               info_layout.line_height)),
            border_px=label_layout.border.width_px,
            qr_error_correction=options.qr_error_correction_level,
        )

    def compose_label(
        self,
        label: QRLabel,
        label_layout: LabelLayout = DEFAULT_LABEL_LAYOUT,
        dimensions: LabelDimensions = DEFAULT_LABEL_DIMENSIONS,
        options: Optional[LabelGenerationOptions] = None,
    ) -> LabelRenderSpec:
        """compose() for an existing label, reusing its encoded data."""
        return self.compose(label_layout, dimensions, label.qr_payload, options=options, qr_data=label.qr_data)

    @staticmethod
    def _place_lines(lines: List[TextLine], region: Region, line_height: float) -> List[TextLine]:
        """Stack lines top-down in the text region; lines that would overflow are dropped."""
        placed = []
        y = region.y
        bottom = region.y + region.height
        for line in lines:
            step = round(line.font_px * line_height)
            if y + line.font_px > bottom:
                break
            placed.append(line.model_copy(update={"x": region.x, "y": y}))
            y += step
        return placed

    def _text_lines(
        self, payload: QRPayload, layout: LabelLayout, dpi: int, options: LabelGenerationOptions
    ) -> List[TextLine]:
        info = layout.info_section
        scale = FONT_SCALE[options.font_size]

        def px(points: float) -> int:
            return round(points / POINTS_PER_INCH * dpi * scale)

        title, content, footer = px(info.title_pt), px(info.content_pt), px(info.footer_pt)

        lines = [
            TextLine(text=payload.company, role="title", font_px=title),
            TextLine(text=payload.transaction_no, role="title", font_px=title),
            TextLine(text=payload.item_description, role="content", font_px=content),
            TextLine(text=f"Box #{payload.box_number}", role="content", font_px=content),
            TextLine(text=f"Net Wt: {format_weight(payload.net_weight)}kg", role="content", font_px=content),
            TextLine(text=f"Gross Wt: {format_weight(payload.total_weight)}kg", role="content", font_px=content),
            TextLine(text=f"Entry: {format_label_date(payload.entry_date)}", role="content", font_px=content),
        ]
        if options.include_vendor_name and payload.vendor_name:
            lines.append(TextLine(text=f"Vendor: {payload.vendor_name}", role="content", font_px=content))
        if options.include_customer_name and payload.customer_name:
            lines.append(TextLine(text=f"Customer: {payload.customer_name}", role="content", font_px=content))
        if options.include_manufacturing_date and payload.manufacturing_date:
            lines.append(
                TextLine(text=f"Mfg: {format_label_date(payload.manufacturing_date)}", role="content", font_px=content)
            )
        if options.include_expiry_date and payload.expiry_date:
            lines.append(TextLine(text=f"Exp: {format_label_date(payload.expiry_date)}", role="content", font_px=content))
        if options.include_batch_number and payload.batch_number:
            batch = payload.batch_number
            if len(batch) > BATCH_LABEL_LIMIT:
                batch = batch[:BATCH_LABEL_LIMIT] + "..."
            lines.append(TextLine(text=f"Batch: {batch}", role="footer", font_px=footer))
        return lines
