"""
Pre-flight bleed and safety-zone validation.

Layout items are positioned by the page editor at 72 DPI on a canvas that
includes bleed. Each item's bounding box is scaled to print space and its
edges compared against the safety box. An edge that crosses the safety box
by more than half the safety margin is critical (the content is likely to be
trimmed); a smaller crossing is a warning.

The warning record produced here is stored on the compilation job whether
or not the caller proceeds, so that reprint and support questions can be
answered later.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import ValidationBlocked
from .layout import SAFETY_PX, Box, check_safety_zone, scale_to_base, scale_to_print
from .pages import LayoutItem, PageVersion
from .utils import utcnow

CRITICAL = "critical"
WARNING = "warning"

CRITICAL_DISTANCE_PX = SAFETY_PX / 2


@dataclass
class EdgeWarning:
    edge: str
    severity: str
    message: str
    distance_px: int


@dataclass
class ItemResult:
    item_id: str
    item_type: str
    warnings: List[EdgeWarning] = field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def has_critical(self) -> bool:
        return any(w.severity == CRITICAL for w in self.warnings)


@dataclass
class PageResult:
    page_id: str
    page_title: str
    validated_at: str
    item_results: List[ItemResult] = field(default_factory=list)

    @property
    def critical_count(self) -> int:
        return sum(1 for item in self.item_results if item.has_critical)

    @property
    def warning_count(self) -> int:
        return sum(1 for item in self.item_results if not item.has_critical)

    @property
    def valid(self) -> bool:
        return self.critical_count == 0


@dataclass
class BookValidation:
    page_results: List[PageResult]
    total_critical: int
    total_warnings: int
    critical_page_ids: List[str]
    message: str

    @property
    def can_proceed(self) -> bool:
        return self.total_critical == 0

    @property
    def summary(self) -> Dict[str, Any]:
        return {
            "pages_checked": len(self.page_results),
            "pages_with_issues": sum(1 for page in self.page_results if page.item_results),
            "total_critical": self.total_critical,
            "total_warnings": self.total_warnings,
            "critical_page_ids": list(self.critical_page_ids),
        }


def _edge_warning(edge: str, distance: int) -> EdgeWarning:
    return EdgeWarning(
        edge=edge,
        severity=CRITICAL if distance > CRITICAL_DISTANCE_PX else WARNING,
        message=f"{edge.capitalize()} edge is {scale_to_base(distance)}px into the safety margin",
        distance_px=distance,
    )


def validate_item(item: LayoutItem, trim_size: str, page_count: int = 0) -> ItemResult:
    box = Box(
        x=scale_to_print(item.x),
        y=scale_to_print(item.y),
        width=scale_to_print(item.width),
        height=scale_to_print(item.height),
    )
    check = check_safety_zone(box, trim_size, include_bleed=True, page_count=page_count)
    result = ItemResult(item_id=item.id, item_type=item.type)
    for edge, distance in check.crossings.items():
        result.warnings.append(_edge_warning(edge, distance))
    return result


def validate_page(page: PageVersion, trim_size: str, page_count: int = 0) -> PageResult:
    result = PageResult(
        page_id=page.page_id,
        page_title=page.title or f"Page {page.page_id}",
        validated_at=utcnow().isoformat(),
    )
    for item in page.items:
        item_result = validate_item(item, trim_size, page_count)
        if item_result.has_warnings:
            result.item_results.append(item_result)
    return result


def validate_book(pages: Sequence[PageVersion], trim_size: str) -> BookValidation:
    """
    Validate every page of a book.

    Every page gets a result, including pages without findings.
    """
    page_results = [validate_page(page, trim_size, page_count=len(pages)) for page in pages]
    total_critical = sum(page.critical_count for page in page_results)
    total_warnings = sum(page.warning_count for page in page_results)

    if total_critical:
        message = f"{total_critical} critical issue(s) found. Content may be cut off during printing."
    elif total_warnings:
        message = f"{total_warnings} warning(s) found. Content is close to edges but should print OK."
    else:
        message = "All pages passed safety zone validation."

    return BookValidation(
        page_results=page_results,
        total_critical=total_critical,
        total_warnings=total_warnings,
        critical_page_ids=[page.page_id for page in page_results if page.critical_count],
        message=message,
    )


def _page_details(page: PageResult) -> Dict[str, Any]:
    details: Dict[str, Any] = {
        "page_id": page.page_id,
        "page_title": page.page_title,
        "validated_at": page.validated_at,
        "items_with_issues": len(page.item_results),
        "critical_count": page.critical_count,
        "warning_count": page.warning_count,
    }
    if page.item_results:
        details["details"] = [asdict(item) for item in page.item_results]
    return details


def create_warning_record(
    validation: BookValidation,
    acknowledged_by: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the JSON record persisted on the compilation job.

    Args:
        validation: Result of validate_book()
        acknowledged_by: User who chose to proceed despite findings, if any
    """
    record: Dict[str, Any] = {
        "validated_at": utcnow().isoformat(),
        "passed": validation.can_proceed,
        "user_proceeded": acknowledged_by is not None,
        "summary": validation.summary,
        "pages": [_page_details(page) for page in validation.page_results],
        "message": validation.message,
    }
    if acknowledged_by is not None:
        record["user_proceeded_at"] = utcnow().isoformat()
        record["user_proceeded_by"] = acknowledged_by
    return record


def enforce(validation: BookValidation, acknowledge_warnings: bool) -> None:
    """
    Raises:
        ValidationBlocked: If critical findings exist and were not acknowledged
    """
    if validation.can_proceed or acknowledge_warnings:
        return
    raise ValidationBlocked(
        validation.message,
        validation.summary,
        [_page_details(page) for page in validation.page_results if page.item_results],
    )
