from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .fulfillment import SHIPPING_LEVELS, ShippingAddress
from .job_state import JobStatus
from .layout import BINDINGS, SPINE_WIDTH_PER_PAGE
from .pages import LayoutItem


class CamelModel(BaseModel):
    """Request/response bodies exchanged with the web client use camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobEvent(BaseModel):
    timestamp: datetime
    message: str


class PageRef(BaseModel):
    page_id: str
    updated_marker: str


class JobSummary(BaseModel):
    id: str
    collection_id: str
    owner_name: str
    trim_size: str
    status: JobStatus
    pages_total: int
    pages_rendered: int = 0
    current_batch: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    artifact_key: Optional[str] = None


class JobDetail(JobSummary):
    requested_by: Optional[str] = None
    fingerprint: str
    pages: List[PageRef]
    state: Dict[str, Any]
    warning_record: Optional[Dict[str, Any]] = None
    covers: List[Dict[str, Any]] = Field(default_factory=list)
    events: List[JobEvent]
    error: Optional[str] = None
    failed_page_id: Optional[str] = None
    download_url: Optional[str] = None
    download_expires_at: Optional[datetime] = None
    final_page_count: Optional[int] = None
    size_bytes: Optional[int] = None


class CompileRequest(CamelModel):
    collection_id: str
    trim_size: str
    page_ids: Optional[List[str]] = None
    force_recompile: bool = False
    acknowledge_warnings: bool = False
    owner_name: Optional[str] = None
    requested_by: Optional[str] = None


class CompileResponse(CamelModel):
    cached: bool
    job_id: str
    status: JobStatus
    page_count: int
    fingerprint: str
    estimated_minutes: Optional[int] = None
    download_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    artifact_key: Optional[str] = None
    final_page_count: Optional[int] = None
    validation_summary: Optional[Dict[str, Any]] = None


class PageUpsert(CamelModel):
    updated_marker: str
    title: str = ""
    order: int = 0
    locked: bool = False
    items: List[LayoutItem] = Field(default_factory=list)


class DownloadLink(CamelModel):
    url: str
    expires_at: datetime
    expires_in: int
    purpose: str = "download"


class CompiledBook(BaseModel):
    key: str
    size_bytes: int
    last_modified: Optional[datetime] = None
    download_url: str


class CoverRequest(CamelModel):
    paper_type: str = "standard"
    binding: str = "soft"
    title: Optional[str] = None
    primary_color: str = "#1e3a5f"
    secondary_color: str = "#ffffff"


class CoverInfo(CamelModel):
    key: str
    size_bytes: int
    binding: str
    paper_type: str
    spine_width_in: float
    created_at: datetime


class OrderRequest(CamelModel):
    job_id: str
    quantity: int = Field(default=1, ge=1)
    binding: str = "soft"
    paper_type: str = "standard"
    shipping_level: str = "MAIL"
    shipping_address: ShippingAddress
    contact_email: Optional[str] = None
    cover_key: Optional[str] = None

    @field_validator("shipping_level")
    @classmethod
    def _known_shipping_level(cls, value: str) -> str:
        if value not in SHIPPING_LEVELS:
            raise ValueError(f"shipping_level must be one of {list(SHIPPING_LEVELS)}")
        return value

    @field_validator("paper_type")
    @classmethod
    def _known_paper_type(cls, value: str) -> str:
        if value not in SPINE_WIDTH_PER_PAGE:
            raise ValueError(f"paper_type must be one of {list(SPINE_WIDTH_PER_PAGE)}")
        return value

    @field_validator("binding")
    @classmethod
    def _known_binding(cls, value: str) -> str:
        if value not in BINDINGS:
            raise ValueError(f"binding must be one of {list(BINDINGS)}")
        return value


class PrintOrder(CamelModel):
    id: str
    job_id: str
    partner_job_id: Optional[str] = None
    status: str
    quantity: int
    shipping_level: str
    binding: str
    paper_type: str
    package_id: str
    book_key: str
    cover_key: str
    tracking: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    events: List[JobEvent] = Field(default_factory=list)


class FulfillmentWebhook(CamelModel):
    job_id: str
    status: Any
    tracking: Optional[Dict[str, Any]] = None
