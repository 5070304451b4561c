from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from .cover import CoverOptions
from .errors import (
    FulfillmentError,
    ImmutabilityViolation,
    InvalidTrimSize,
    JobNotComplete,
    JobNotFound,
    NoPagesToCompile,
    ValidationBlocked,
)
from .job_manager import JobManager, build_job_manager
from .layout import TRIM_SIZES, get_cover_spread, get_layout_spec
from .models import (
    CompileRequest,
    CompiledBook,
    CompileResponse,
    CoverInfo,
    CoverRequest,
    DownloadLink,
    FulfillmentWebhook,
    JobDetail,
    JobSummary,
    OrderRequest,
    PageUpsert,
    PrintOrder,
)
from .pages import DatabasePageProvider, PageVersion
from .storage import LocalObjectStorage

logger = logging.getLogger(__name__)

job_manager = build_job_manager()


def get_job_manager() -> JobManager:
    return job_manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    resumed = job_manager.resume_incomplete_jobs()
    if resumed:
        logger.info(f"Resumed {resumed} incomplete job(s)")
    yield
    job_manager.shutdown()


app = FastAPI(title="Scrapbook Press API", version="0.1.0", lifespan=lifespan)

allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _link(signed) -> DownloadLink:
    return DownloadLink(url=signed.url, expires_at=signed.expires_at, expires_in=signed.expires_in, purpose=signed.purpose)


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/trim-sizes")
def list_trim_sizes() -> List[Dict[str, Any]]:
    return [
        {"key": size.key, "name": size.name, "width_in": size.width_in, "height_in": size.height_in}
        for size in TRIM_SIZES.values()
    ]


@app.get("/layout/{trim_size}")
def layout_spec(trim_size: str, include_bleed: bool = True, page_count: int = Query(0, ge=0)) -> Dict[str, Any]:
    try:
        spec = get_layout_spec(trim_size, include_bleed=include_bleed, page_count=page_count)
    except InvalidTrimSize as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return asdict(spec)


@app.get("/layout/{trim_size}/cover")
def cover_spread(
    trim_size: str,
    page_count: int = Query(..., ge=0),
    paper_type: str = "standard",
    binding: str = "soft",
) -> Dict[str, Any]:
    try:
        spread = get_cover_spread(trim_size, page_count, paper_type, binding)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return asdict(spread) | {
        "width_pt": spread.width_pt,
        "height_pt": spread.height_pt,
    }


@app.put("/collections/{collection_id}/pages/{page_id}", response_model=PageVersion)
def upsert_page(
    collection_id: str,
    page_id: str,
    payload: PageUpsert,
    manager: JobManager = Depends(get_job_manager),
) -> PageVersion:
    provider = manager.page_provider
    if not isinstance(provider, DatabasePageProvider):
        raise HTTPException(status_code=405, detail="Pages are managed by an external provider")
    page = PageVersion(collection_id=collection_id, page_id=page_id, **payload.model_dump())
    return provider.upsert_page(page)


@app.get("/collections/{collection_id}/jobs", response_model=list[JobSummary])
def list_collection_jobs(collection_id: str, manager: JobManager = Depends(get_job_manager)) -> list[JobSummary]:
    return manager.list_jobs(collection_id)


@app.get("/collections/{collection_id}/books", response_model=list[CompiledBook])
def list_compiled_books(collection_id: str, manager: JobManager = Depends(get_job_manager)) -> list[CompiledBook]:
    books = []
    for obj in manager.store.list_compiled_books(collection_id):
        modified = datetime.fromtimestamp(obj.last_modified, tz=timezone.utc) if obj.last_modified else None
        books.append(CompiledBook(
            key=obj.key,
            size_bytes=obj.size_bytes,
            last_modified=modified,
            download_url=manager.store.download_url(obj.key).url,
        ))
    return books


@app.post("/compilations", response_model=CompileResponse)
def request_compilation(
    payload: CompileRequest,
    manager: JobManager = Depends(get_job_manager),
):
    try:
        outcome = manager.request_compilation(payload)
    except (InvalidTrimSize, NoPagesToCompile) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValidationBlocked as exc:
        return JSONResponse(
            status_code=422,
            content={
                "error": exc.message,
                "requiresAcknowledgment": True,
                "validationFailures": {"summary": exc.summary, "pages": exc.page_results},
            },
        )

    job = outcome.job
    warnings = job.warning_record or {}
    response = CompileResponse(
        cached=outcome.cached,
        job_id=job.id,
        status=job.status,
        page_count=len(job.pages),
        fingerprint=job.fingerprint,
        estimated_minutes=outcome.estimated_minutes,
        download_url=outcome.download.url if outcome.download else None,
        expires_at=outcome.download.expires_at if outcome.download else None,
        artifact_key=getattr(job.state, "artifact_key", None),
        final_page_count=getattr(job.state, "final_page_count", None),
        validation_summary=warnings.get("summary"),
    )
    status_code = 200 if outcome.cached else 202
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json", by_alias=True))


@app.get("/jobs/{job_id}", response_model=JobDetail)
def get_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobDetail:
    job = manager.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.get("/jobs/{job_id}/status")
def job_status(job_id: str, manager: JobManager = Depends(get_job_manager)) -> Dict[str, Any]:
    job = manager.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return {
        "status": job.status,
        "pages_rendered": job.pages_rendered,
        "pages_total": job.pages_total,
        "current_batch": job.current_batch,
        "error": job.error,
        "failed_page_id": job.failed_page_id,
        "download_url": job.download_url,
    }


@app.post("/jobs/{job_id}/trigger", response_model=JobSummary)
def trigger_job(job_id: str, manager: JobManager = Depends(get_job_manager)) -> JobSummary:
    try:
        manager.trigger(job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ImmutabilityViolation as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return manager.get_job(job_id)


@app.post("/jobs/{job_id}/refresh-download", response_model=DownloadLink)
def refresh_download(job_id: str, manager: JobManager = Depends(get_job_manager)) -> DownloadLink:
    try:
        signed = manager.refresh_download_url(job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobNotComplete as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _link(signed)


@app.post("/jobs/{job_id}/cover", response_model=CoverInfo)
def create_cover(
    job_id: str,
    payload: Optional[CoverRequest] = None,
    manager: JobManager = Depends(get_job_manager),
) -> CoverInfo:
    job = manager.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    request = payload or CoverRequest()
    options = CoverOptions(
        owner_name=job.owner_name,
        title=request.title,
        paper_type=request.paper_type,
        binding=request.binding,
        primary_color=request.primary_color,
        secondary_color=request.secondary_color,
    )
    try:
        return manager.generate_cover(job_id, options)
    except JobNotComplete as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/orders", response_model=PrintOrder, status_code=201)
def place_order(payload: OrderRequest, manager: JobManager = Depends(get_job_manager)) -> PrintOrder:
    try:
        return manager.place_order(payload)
    except JobNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except JobNotComplete as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except FulfillmentError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/orders/{order_id}", response_model=PrintOrder)
def get_order(order_id: str, manager: JobManager = Depends(get_job_manager)) -> PrintOrder:
    order = manager.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.post("/webhooks/fulfillment")
def fulfillment_webhook(payload: FulfillmentWebhook, manager: JobManager = Depends(get_job_manager)) -> Dict[str, Any]:
    order = manager.apply_partner_update(payload.job_id, payload.status, payload.tracking)
    return {"received": True, "order_id": order.id if order else None}


@app.get("/artifacts/{key:path}")
def download_artifact(
    key: str,
    expires: int,
    signature: str,
    manager: JobManager = Depends(get_job_manager),
):
    storage = manager.store.storage
    if not isinstance(storage, LocalObjectStorage):
        raise HTTPException(status_code=404, detail="Artifacts are served by object storage")
    if not storage.verify_signature(key, expires, signature):
        raise HTTPException(status_code=403, detail="Invalid or expired signature")
    try:
        path = storage.resolve_path(key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid path request") from exc
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Artifact not found")
    return FileResponse(path, media_type="application/pdf", filename=path.name)
