"""
Label rendering: LabelRenderSpec -> Pillow image or ZPL document.
"""
import io
import logging
from functools import lru_cache
from typing import Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from PIL import Image, ImageDraw, ImageFont

from LabelMatrix.lib.print_settings import PrintJobOptions
from LabelMatrix.models.qr_models import LabelRenderSpec

logger = logging.getLogger(__name__)

ERROR_CORRECTION = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}

FONT_PATHS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",  # macOS
    "C:/Windows/Fonts/arial.ttf",  # Windows
]

ZPL_SPEED = {"slow": 2, "medium": 4, "fast": 6}


@lru_cache(maxsize=32)
def _get_font(size: int) -> ImageFont.ImageFont:
    """TrueType font at the requested pixel size, falling back to Pillow's built-in font."""
    for font_path in FONT_PATHS:
        try:
            return ImageFont.truetype(font_path, size)
        except OSError:
            continue
    logger.debug(f"No TrueType font found, using default font at {size}px")
    return ImageFont.load_default(size=size)


def _zpl_escape(text: str) -> str:
    """Hex-escape characters ZPL treats as control prefixes (used with ^FH_)."""
    return text.replace("_", "_5F").replace("^", "_5E").replace("~", "_7E")


class LabelRenderer:
    """Renders composed label specs for preview or for a device."""

    def qr_matrix(self, spec: LabelRenderSpec) -> qrcode.QRCode:
        qr = qrcode.QRCode(
            version=None,
            error_correction=ERROR_CORRECTION[spec.qr_error_correction],
            box_size=1,
            border=1,
        )
        qr.add_data(spec.qr_data)
        qr.make(fit=True)
        return qr

    def render_qr(self, spec: LabelRenderSpec) -> Image.Image:
        """QR symbol scaled to the render spec's QR region."""
        img = self.qr_matrix(spec).make_image(fill_color="black", back_color="white")
        img = img.get_image() if hasattr(img, "get_image") else img
        if img.mode != "RGB":
            img = img.convert("RGB")
        # Nearest keeps module edges sharp for scanners
        return img.resize((spec.qr_size_px, spec.qr_size_px), Image.Resampling.NEAREST)

    def render_image(self, spec: LabelRenderSpec) -> Image.Image:
        """Draw the whole label as an RGB image of exactly width_px x height_px."""
        canvas = Image.new("RGB", (spec.width_px, spec.height_px), "white")
        draw = ImageDraw.Draw(canvas)

        if spec.border_px > 0:
            draw.rectangle(
                [0, 0, spec.width_px - 1, spec.height_px - 1], outline="black", width=spec.border_px
            )

        canvas.paste(self.render_qr(spec), (spec.qr_region.x, spec.qr_region.y))

        for line in spec.text_lines:
            draw.text((line.x, line.y), line.text, fill="black", font=_get_font(line.font_px))

        return canvas

    def render_png(self, spec: LabelRenderSpec) -> bytes:
        buffer = io.BytesIO()
        self.render_image(spec).save(buffer, format="PNG", dpi=(spec.dpi, spec.dpi))
        return buffer.getvalue()

    def render_zpl(self, spec: LabelRenderSpec, options: Optional[PrintJobOptions] = None) -> str:
        """ZPL II document for one label on a thermal printer."""
        options = options or PrintJobOptions()
        modules = self.qr_matrix(spec).modules_count
        magnification = max(1, min(10, spec.qr_size_px // max(modules, 1)))

        commands = ["^XA", f"^PW{spec.width_px}", f"^LL{spec.height_px}", "^CI28"]
        if options.darkness is not None:
            commands.append(f"~SD{options.darkness * 2:02d}")
        commands.append(f"^PR{ZPL_SPEED[options.print_speed]}")
        if options.paper_type == "continuous":
            commands.append("^MNN")
        else:
            commands.append("^MNY")
        if spec.border_px > 0:
            commands.append(f"^FO0,0^GB{spec.width_px},{spec.height_px},{spec.border_px}^FS")
        commands.append(
            f"^FO{spec.qr_region.x},{spec.qr_region.y}^BQN,2,{magnification}"
            f"^FH_^FD{spec.qr_error_correction}A,{_zpl_escape(spec.qr_data)}^FS"
        )
        for line in spec.text_lines:
            commands.append(
                f"^FO{line.x},{line.y}^A0N,{line.font_px},{line.font_px}"
                f"^FB{spec.text_region.width},1,0,L^FH_^FD{_zpl_escape(line.text)}^FS"
            )
        commands.append("^PQ1")
        commands.append("^XZ")
        return "\n".join(commands)
