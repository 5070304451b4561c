"""
Print geometry for the book compiler.

Every stage of the pipeline depends on these numbers: the renderer sizes its
viewport from them, pre-flight validation checks items against the safety box,
and the cover generator lays out the back/spine/front spread. The print
partner's pre-flight rejects files that are off by a single pixel, so all
pixel values are rounded half-up from inch values exactly once.

Conventions:
    - Base resolution is 72 DPI (editor/viewport coordinates)
    - Print resolution is 300 DPI (output coordinates)
    - Page 1 is recto, so the binding edge of the safety box is the left edge
    - Gutter is a single symmetric inside-margin allowance for thick books

This module is pure: no I/O, no state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import InvalidTrimSize

BASE_DPI = 72
PRINT_DPI = 300

# Applied as a surface scale by the rasterizer rather than by inflating the
# viewport, so text and vectors stay crisp at the 300 DPI target.
DEVICE_SCALE_FACTOR = PRINT_DPI / BASE_DPI

BLEED_INCHES = 0.125
SAFETY_MARGIN_INCHES = 0.5
GUTTER_THRESHOLD_PAGES = 60
GUTTER_EXTRA_INCHES = 0.125

# Inches of spine per interior page, by paper grade
SPINE_WIDTH_PER_PAGE: Dict[str, float] = {
    "standard": 0.002252,
    "premium": 0.0025,
}

HARDCOVER_WRAP_INCHES = 0.75

BINDINGS = ("soft", "hard")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def inches_to_px(inches: float, dpi: int = BASE_DPI) -> int:
    """Convert inches to whole pixels at the given resolution."""
    return _round_half_up(inches * dpi)


def scale_to_print(value: float) -> int:
    """Scale an editor coordinate (72 DPI) to print space (300 DPI)."""
    return _round_half_up(value * DEVICE_SCALE_FACTOR)


def scale_to_base(value: float) -> int:
    """Scale a print coordinate (300 DPI) back to editor space (72 DPI)."""
    return _round_half_up(value / DEVICE_SCALE_FACTOR)


BLEED_PX_BASE = inches_to_px(BLEED_INCHES)  # 9
BLEED_PX = inches_to_px(BLEED_INCHES, PRINT_DPI)  # 38
SAFETY_PX_BASE = inches_to_px(SAFETY_MARGIN_INCHES)  # 36
SAFETY_PX = inches_to_px(SAFETY_MARGIN_INCHES, PRINT_DPI)  # 150
GUTTER_PX = inches_to_px(GUTTER_EXTRA_INCHES, PRINT_DPI)  # 38


@dataclass(frozen=True)
class TrimSize:
    key: str
    name: str
    width_in: float
    height_in: float

    @property
    def base_px(self) -> Tuple[int, int]:
        return inches_to_px(self.width_in), inches_to_px(self.height_in)

    @property
    def print_px(self) -> Tuple[int, int]:
        return inches_to_px(self.width_in, PRINT_DPI), inches_to_px(self.height_in, PRINT_DPI)

    @property
    def with_bleed_px(self) -> Tuple[int, int]:
        return (
            inches_to_px(self.width_in + 2 * BLEED_INCHES, PRINT_DPI),
            inches_to_px(self.height_in + 2 * BLEED_INCHES, PRINT_DPI),
        )


TRIM_SIZES: Dict[str, TrimSize] = {
    size.key: size
    for size in (
        TrimSize("8x8", "8×8 Square", 8.0, 8.0),
        TrimSize("10x10", "10×10 Square", 10.0, 10.0),
        TrimSize("8.5x11", "8.5×11 Portrait", 8.5, 11.0),
    )
}


def get_trim_size(key: str) -> TrimSize:
    try:
        return TRIM_SIZES[key]
    except KeyError:
        raise InvalidTrimSize(key, TRIM_SIZES) from None


@dataclass(frozen=True)
class Box:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def contains(self, other: "Box") -> bool:
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )


@dataclass(frozen=True)
class Size:
    width: int
    height: int


@dataclass(frozen=True)
class Viewport:
    width: int
    height: int
    device_scale_factor: float = DEVICE_SCALE_FACTOR


@dataclass(frozen=True)
class GutterInfo:
    needed: bool
    extra_px: int
    inside_margin_px: int
    recommendation: Optional[str] = None


@dataclass(frozen=True)
class LayoutSpec:
    """
    Geometry for one interior page of a book.

    Attributes:
        trim_size: Trim size key
        include_bleed: Whether the output carries bleed on all four sides
        page_count: Interior page count used for the gutter decision
        bleed_px: Bleed width at 300 DPI (0 when bleed is off)
        viewport: Render viewport at 72 DPI plus the surface scale factor
        output: Final raster size at 300 DPI
        trim_box: Where the blade cuts, in output pixels
        safety_box: Where critical content must stay, in output pixels
        gutter: Binding-side allowance for thick books
    """

    trim_size: str
    include_bleed: bool
    page_count: int
    bleed_px: int
    viewport: Viewport
    output: Size
    trim_box: Box
    safety_box: Box
    gutter: GutterInfo


def get_layout_spec(trim_key: str, include_bleed: bool = True, page_count: int = 0) -> LayoutSpec:
    """
    Compute interior page geometry for a trim size.

    Args:
        trim_key: Trim size key ('8x8', '10x10', '8.5x11')
        include_bleed: Add 0.125" bleed on every side
        page_count: Total interior pages; above the threshold the binding
            edge of the safety box moves inward by the gutter allowance

    Returns:
        LayoutSpec for the requested configuration

    Raises:
        InvalidTrimSize: If trim_key is not in the catalog
        ValueError: If page_count is negative
    """
    size = get_trim_size(trim_key)
    if page_count < 0:
        raise ValueError(f"page_count must be >= 0, got {page_count}")

    base_w, base_h = size.base_px
    print_w, print_h = size.print_px
    bleed_px = BLEED_PX if include_bleed else 0
    bleed_base = BLEED_PX_BASE if include_bleed else 0

    output = Size(*size.with_bleed_px) if include_bleed else Size(print_w, print_h)

    needs_gutter = page_count > GUTTER_THRESHOLD_PAGES
    gutter_px = GUTTER_PX if needs_gutter else 0

    inset = bleed_px + SAFETY_PX
    safety_box = Box(
        x=inset + gutter_px,
        y=inset,
        width=print_w - 2 * inset - gutter_px,
        height=print_h - 2 * inset,
    )

    return LayoutSpec(
        trim_size=size.key,
        include_bleed=include_bleed,
        page_count=page_count,
        bleed_px=bleed_px,
        viewport=Viewport(width=base_w + 2 * bleed_base, height=base_h + 2 * bleed_base),
        output=output,
        trim_box=Box(x=bleed_px, y=bleed_px, width=print_w, height=print_h),
        safety_box=safety_box,
        gutter=GutterInfo(
            needed=needs_gutter,
            extra_px=gutter_px,
            inside_margin_px=SAFETY_PX + gutter_px,
            recommendation=(
                f'Add {GUTTER_EXTRA_INCHES}" to inside margin for {page_count}-page book'
                if needs_gutter
                else None
            ),
        ),
    )


@dataclass(frozen=True)
class SafetyCheck:
    safe: bool
    violations: List[str] = field(default_factory=list)
    # edge name -> print pixels the box extends past the safety box
    crossings: Dict[str, int] = field(default_factory=dict)


def check_safety_zone(box: Box, trim_key: str, include_bleed: bool = True, page_count: int = 0) -> SafetyCheck:
    """Report which edges of a print-space box cross the safety box."""
    safe = get_layout_spec(trim_key, include_bleed, page_count).safety_box
    violations = []
    crossings: Dict[str, int] = {}
    if box.x < safe.x:
        violations.append(f"left edge ({box.x}px < {safe.x}px safety margin)")
        crossings["left"] = safe.x - box.x
    if box.y < safe.y:
        violations.append(f"top edge ({box.y}px < {safe.y}px safety margin)")
        crossings["top"] = safe.y - box.y
    if box.right > safe.right:
        violations.append(f"right edge ({box.right}px > {safe.right}px safety margin)")
        crossings["right"] = box.right - safe.right
    if box.bottom > safe.bottom:
        violations.append(f"bottom edge ({box.bottom}px > {safe.bottom}px safety margin)")
        crossings["bottom"] = box.bottom - safe.bottom
    return SafetyCheck(safe=not violations, violations=violations, crossings=crossings)


@dataclass(frozen=True)
class CoverInches:
    total_width: float
    total_height: float
    cover_width: float
    cover_height: float
    spine_width: float
    wrap_width: float


@dataclass(frozen=True)
class CoverZones:
    back_cover: Box
    spine: Box
    front_cover: Box
    back_safety: Box
    spine_safety: Box
    front_safety: Box


@dataclass(frozen=True)
class CoverSpread:
    """Cover PDF geometry: back cover, spine and front cover as one spread."""

    trim_size: str
    page_count: int
    paper_type: str
    binding: str
    pdf_width: int
    pdf_height: int
    bleed_px: int
    wrap_px: int
    spine_width_px: int
    inches: CoverInches
    zones: CoverZones

    @property
    def width_pt(self) -> float:
        return self.inches.total_width * BASE_DPI

    @property
    def height_pt(self) -> float:
        return self.inches.total_height * BASE_DPI


def get_cover_spread(
    trim_key: str,
    page_count: int,
    paper_type: str = "standard",
    binding: str = "soft",
) -> CoverSpread:
    """
    Compute cover spread geometry.

    Spine width grows with page count and paper grade. Hardcovers add a wrap
    allowance on every edge for material folded around the board. Bleed is
    added on the outer edges of the spread.

    Raises:
        InvalidTrimSize: If trim_key is not in the catalog
        ValueError: For an unknown paper type or binding, or negative page_count
    """
    size = get_trim_size(trim_key)
    if paper_type not in SPINE_WIDTH_PER_PAGE:
        raise ValueError(f"Unknown paper type '{paper_type}'. Use one of {list(SPINE_WIDTH_PER_PAGE)}")
    if binding not in BINDINGS:
        raise ValueError(f"Unknown binding '{binding}'. Use one of {list(BINDINGS)}")
    if page_count < 0:
        raise ValueError(f"page_count must be >= 0, got {page_count}")

    spine_in = page_count * SPINE_WIDTH_PER_PAGE[paper_type]
    wrap_in = HARDCOVER_WRAP_INCHES if binding == "hard" else 0.0

    cover_w_in = 2 * size.width_in + spine_in + 2 * wrap_in
    cover_h_in = size.height_in + 2 * wrap_in
    total_w_in = cover_w_in + 2 * BLEED_INCHES
    total_h_in = cover_h_in + 2 * BLEED_INCHES

    print_w, print_h = size.print_px
    spine_px = inches_to_px(spine_in, PRINT_DPI)
    wrap_px = inches_to_px(wrap_in, PRINT_DPI)
    origin = BLEED_PX + wrap_px

    back = Box(origin, origin, print_w, print_h)
    spine = Box(origin + print_w, origin, spine_px, print_h)
    front = Box(origin + print_w + spine_px, origin, print_w, print_h)

    def _inset(panel: Box) -> Box:
        return Box(panel.x + SAFETY_PX, panel.y + SAFETY_PX, panel.width - 2 * SAFETY_PX, panel.height - 2 * SAFETY_PX)

    spine_safety = Box(
        spine.x + _round_half_up(spine_px * 0.1),
        origin + SAFETY_PX,
        _round_half_up(spine_px * 0.8),
        print_h - 2 * SAFETY_PX,
    )

    return CoverSpread(
        trim_size=size.key,
        page_count=page_count,
        paper_type=paper_type,
        binding=binding,
        pdf_width=inches_to_px(total_w_in, PRINT_DPI),
        pdf_height=inches_to_px(total_h_in, PRINT_DPI),
        bleed_px=BLEED_PX,
        wrap_px=wrap_px,
        spine_width_px=spine_px,
        inches=CoverInches(
            total_width=total_w_in,
            total_height=total_h_in,
            cover_width=cover_w_in,
            cover_height=cover_h_in,
            spine_width=spine_in,
            wrap_width=wrap_in,
        ),
        zones=CoverZones(
            back_cover=back,
            spine=spine,
            front_cover=front,
            back_safety=_inset(back),
            spine_safety=spine_safety,
            front_safety=_inset(front),
        ),
    )
