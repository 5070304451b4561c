"""
Cover spread generation.

Draws a single-page PDF holding back cover, spine and front cover side by
side, sized from get_cover_spread(). Zone geometry is computed at 300 DPI
with a top-left origin; reportlab draws in points from the bottom-left, so
every zone is converted before drawing.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from reportlab.lib.colors import Color
from reportlab.pdfgen import canvas

from .layout import BASE_DPI, PRINT_DPI, Box, CoverSpread, get_cover_spread
from .utils import utcnow

HEX_COLOR = re.compile(r"^#?([a-fA-F\d]{2})([a-fA-F\d]{2})([a-fA-F\d]{2})$")
FALLBACK_PRIMARY = (0.12, 0.23, 0.37)  # navy
SPINE_SHADE = 0.8
MIN_SPINE_TEXT_PT = 18.0
FOOTER_TEXT = "Made with Scrapbook Press"


@dataclass
class CoverOptions:
    owner_name: str = "Family"
    title: Optional[str] = None
    paper_type: str = "standard"
    binding: str = "soft"
    primary_color: str = "#1e3a5f"
    secondary_color: str = "#ffffff"


@dataclass
class CoverResult:
    pdf_bytes: bytes
    spread: CoverSpread


def hex_to_rgb(value: str, fallback: Tuple[float, float, float] = FALLBACK_PRIMARY) -> Tuple[float, float, float]:
    match = HEX_COLOR.match(value or "")
    if not match:
        return fallback
    return tuple(int(part, 16) / 255 for part in match.groups())  # type: ignore[return-value]


def _px_to_pt(value: float) -> float:
    return value * BASE_DPI / PRINT_DPI


def _zone_rect(zone: Box, page_height_pt: float) -> Tuple[float, float, float, float]:
    """(x, y, width, height) in points with a bottom-left origin."""
    x = _px_to_pt(zone.x)
    width = _px_to_pt(zone.width)
    height = _px_to_pt(zone.height)
    y = page_height_pt - _px_to_pt(zone.y) - height
    return x, y, width, height


def generate_cover(trim_size: str, page_count: int, options: Optional[CoverOptions] = None) -> CoverResult:
    """
    Render a solid-colour cover spread.

    The owner name and title go on the front panel, a footer on the back
    panel, and the title runs up the spine when the spine is wide enough
    to hold text.

    Raises:
        InvalidTrimSize: If trim_size is not in the catalog
        ValueError: For an unknown paper type or binding
    """
    options = options or CoverOptions()
    spread = get_cover_spread(trim_size, page_count, options.paper_type, options.binding)
    width_pt, height_pt = spread.width_pt, spread.height_pt

    background = hex_to_rgb(options.primary_color)
    text_color = Color(*hex_to_rgb(options.secondary_color, fallback=(1.0, 1.0, 1.0)))
    title = options.title or f"{utcnow().year} Yearbook"

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width_pt, height_pt))
    c.setTitle(f"{options.owner_name} Yearbook Cover")
    c.setAuthor(options.owner_name)

    c.setFillColorRGB(*background)
    c.rect(0, 0, width_pt, height_pt, fill=1, stroke=0)

    spine_x, _, spine_w, _ = _zone_rect(spread.zones.spine, height_pt)
    c.setFillColorRGB(*(channel * SPINE_SHADE for channel in background))
    c.rect(spine_x, 0, spine_w, height_pt, fill=1, stroke=0)

    front_x, _, front_w, _ = _zone_rect(spread.zones.front_cover, height_pt)
    title_size = min(72.0, front_w / 10)
    c.setFillColor(text_color)
    c.setFont("Helvetica-Bold", title_size)
    c.drawCentredString(front_x + front_w / 2, height_pt * 0.6, options.owner_name)
    c.setFont("Helvetica", title_size * 0.5)
    c.drawCentredString(front_x + front_w / 2, height_pt * 0.45, title)

    back_x, back_y, back_w, _ = _zone_rect(spread.zones.back_safety, height_pt)
    c.setFont("Helvetica", 12)
    c.drawCentredString(back_x + back_w / 2, back_y, FOOTER_TEXT)

    if spine_w >= MIN_SPINE_TEXT_PT:
        c.saveState()
        c.setFont("Helvetica", min(10.0, spine_w * 0.6))
        c.translate(spine_x + spine_w / 2, height_pt / 2)
        c.rotate(90)
        c.drawCentredString(0, 0, f"{options.owner_name} {title}"[:60])
        c.restoreState()

    c.showPage()
    c.save()
    return CoverResult(pdf_bytes=buffer.getvalue(), spread=spread)
