"""
Assembles rendered page fragments into one print-ready book PDF.

Pagination rule: page 1 is a recto (right-hand page). If the merged book has
an odd number of pages, a blank end sheet is appended so the last content
page does not back onto the inside of the back cover. The end sheet is
tinted a faint cream so it reads as intentional rather than a print fault.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from pypdf import PdfReader, PdfWriter
from reportlab.pdfgen import canvas

from .errors import MergeFailed
from .utils import utcnow

logger = logging.getLogger(__name__)

END_SHEET_RGB = (0.98, 0.97, 0.95)
CREATOR = "Scrapbook Press Book Compiler"
PRODUCER = "pypdf + reportlab"


@dataclass
class BookMetadata:
    owner_name: str
    trim_size: str
    job_id: str
    page_ids: List[str] = field(default_factory=list)
    compiled_at: Optional[datetime] = None


@dataclass
class MergeResult:
    pdf_bytes: bytes
    page_count: int
    end_sheet_added: bool


def _pdf_date(value: datetime) -> str:
    return value.strftime("D:%Y%m%d%H%M%S+00'00'")


def blank_end_sheet(width_pt: float, height_pt: float) -> bytes:
    """Single tinted page of the given size."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width_pt, height_pt))
    c.setFillColorRGB(*END_SHEET_RGB)
    c.rect(0, 0, width_pt, height_pt, fill=1, stroke=0)
    c.showPage()
    c.save()
    return buffer.getvalue()


def merge_page_pdfs(fragments: Sequence[bytes], metadata: BookMetadata) -> MergeResult:
    """
    Merge page fragments, in order, into a single document.

    Args:
        fragments: PDF bytes per page, in book order
        metadata: Traceability metadata embedded in the document info

    Returns:
        MergeResult with the merged bytes and the final page count

    Raises:
        MergeFailed: On an empty fragment list or any error while reading,
            copying or writing pages
    """
    if not fragments:
        raise MergeFailed("No page fragments to merge")

    try:
        writer = PdfWriter()
        for fragment in fragments:
            for page in PdfReader(io.BytesIO(fragment)).pages:
                writer.add_page(page)

        content_pages = len(writer.pages)
        end_sheet_added = content_pages % 2 == 1
        if end_sheet_added:
            logger.info(f"Adding blank end sheet (odd page count: {content_pages})")
            last = writer.pages[-1].mediabox
            sheet = PdfReader(io.BytesIO(blank_end_sheet(float(last.width), float(last.height))))
            writer.add_page(sheet.pages[0])
        page_count = len(writer.pages)

        compiled_at = metadata.compiled_at or utcnow()
        owner = metadata.owner_name or "Family"
        writer.add_metadata({
            "/Title": f"{owner} Yearbook",
            "/Author": owner,
            "/Creator": CREATOR,
            "/Producer": PRODUCER,
            "/Keywords": ", ".join([
                f"job:{metadata.job_id}",
                f"size:{metadata.trim_size}",
                f"pages:{content_pages}",
                f"final_pages:{page_count}",
                f"compiled:{compiled_at.isoformat()}",
            ]),
            "/CreationDate": _pdf_date(compiled_at),
            "/ModDate": _pdf_date(compiled_at),
        })

        output = io.BytesIO()
        writer.write(output)
    except Exception as exc:
        raise MergeFailed(f"Merge failed: {exc}") from exc

    return MergeResult(pdf_bytes=output.getvalue(), page_count=page_count, end_sheet_added=end_sheet_added)
