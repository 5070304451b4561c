"""
Job orchestration and lifecycle management for book compilation.

This module manages the end-to-end lifecycle of compilation jobs:
- Cache lookup by content fingerprint before any work is scheduled
- Pre-flight validation and the persisted warning record
- Batched page rendering, one step per batch
- Merging rendered pages into the immutable compiled book
- Download/fulfillment URL issuance, covers and print orders

Every step is dispatched onto a bounded thread pool and persists its state
transition before scheduling the next step, so a restarted process resumes
from the last completed batch. Steps are keyed by (job_id, batch_index) and
re-read the persisted state first; a trigger that no longer matches that
state is ignored.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from omegaconf import DictConfig

from .artifact_store import ArtifactStore, SignedUrl
from .configuration import make_settings
from .cover import CoverOptions, generate_cover
from .database import JobDatabase
from .errors import (
    FulfillmentError,
    ImmutabilityViolation,
    JobNotComplete,
    JobNotFound,
    MergeFailed,
    NoPagesToCompile,
    RenderFailed,
)
from .fingerprint import compiled_book_key, content_fingerprint, cover_key, new_uniqueness_token, page_artifact_key
from .fulfillment import FulfillmentClient, build_print_job_payload, partner_status_name, pod_package_id
from .job_state import (
    CompleteState,
    FailedState,
    JobState,
    JobStatus,
    MergingState,
    PendingState,
    RenderingState,
    check_transition,
    dump_state,
    pages_rendered,
    parse_state,
)
from .layout import get_layout_spec, get_trim_size
from .merger import BookMetadata, merge_page_pdfs
from .models import (
    CompileRequest,
    CoverInfo,
    JobDetail,
    JobEvent,
    JobSummary,
    OrderRequest,
    PageRef,
    PrintOrder,
)
from .pages import DatabasePageProvider, PageProvider, resolve_pages
from .preflight import create_warning_record, enforce, validate_book
from .renderer import HttpRasterizer, PageRenderer, RetryPolicy
from .storage import LocalObjectStorage, ObjectStorage, S3ObjectStorage
from .utils import utcnow

logger = logging.getLogger(__name__)

Dispatcher = Callable[..., None]


def estimate_minutes(page_count: int, seconds_per_page: int = 5, merge_overhead_seconds: int = 30) -> int:
    return math.ceil((page_count * seconds_per_page + merge_overhead_seconds) / 60)


def _log_step_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Background compilation step failed", exc_info=exc)


@dataclass
class JobRecord:
    """
    Internal representation of a compilation job as last read from the database.

    Attributes:
        id: Unique job identifier (hex UUID)
        collection_id: Collection the pages belong to
        owner_name: Display name printed on the book
        requested_by: User who requested the compile
        trim_size: Trim size key
        fingerprint: Content fingerprint used for cache lookups
        pages: Page ids with the content markers snapshotted at creation
        state: Tagged state value; fields depend on status
        version: Optimistic concurrency version of the row
        warning_record: Pre-flight findings, always persisted
        covers: Cover artifacts generated for this job
        events: Chronological list of job lifecycle events
    """

    id: str
    collection_id: str
    owner_name: str
    requested_by: Optional[str]
    trim_size: str
    fingerprint: str
    pages: List[PageRef]
    state: JobState
    version: int
    created_at: datetime
    updated_at: datetime
    force_recompile: bool = False
    warning_record: Optional[Dict[str, Any]] = None
    covers: List[Dict[str, Any]] = field(default_factory=list)
    events: List[JobEvent] = field(default_factory=list)

    @property
    def status(self) -> JobStatus:
        return self.state.status

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "JobRecord":
        return cls(
            id=row["id"],
            collection_id=row["collection_id"],
            owner_name=row["owner_name"],
            requested_by=row["requested_by"],
            trim_size=row["trim_size"],
            fingerprint=row["fingerprint"],
            pages=[PageRef(**page) for page in row["pages"]],
            state=parse_state(row["state"]),
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            force_recompile=row["force_recompile"],
            warning_record=row["warning_record"],
            covers=row["covers"],
            events=[JobEvent(**event) for event in row["events"]],
        )

    def to_summary(self) -> JobSummary:
        return JobSummary(
            id=self.id,
            collection_id=self.collection_id,
            owner_name=self.owner_name,
            trim_size=self.trim_size,
            status=self.status,
            pages_total=len(self.pages),
            pages_rendered=pages_rendered(self.state),
            current_batch=getattr(self.state, "current_batch", None),
            created_at=self.created_at,
            updated_at=self.updated_at,
            artifact_key=getattr(self.state, "artifact_key", None),
        )

    def to_detail(self) -> JobDetail:
        summary = self.to_summary()
        state = self.state
        return JobDetail(
            **summary.model_dump(),
            requested_by=self.requested_by,
            fingerprint=self.fingerprint,
            pages=self.pages,
            state=state.model_dump(mode="json"),
            warning_record=self.warning_record,
            covers=self.covers,
            events=self.events,
            error=state.message if isinstance(state, FailedState) else None,
            failed_page_id=state.failed_page_id if isinstance(state, FailedState) else None,
            download_url=state.download_url if isinstance(state, CompleteState) else None,
            download_expires_at=state.download_expires_at if isinstance(state, CompleteState) else None,
            final_page_count=state.final_page_count if isinstance(state, CompleteState) else None,
            size_bytes=state.size_bytes if isinstance(state, CompleteState) else None,
        )


@dataclass
class CompilationOutcome:
    """Result of a compile request: either a cache hit or a newly scheduled job."""

    cached: bool
    job: JobRecord
    estimated_minutes: Optional[int] = None
    download: Optional[SignedUrl] = None


class JobManager:
    """
    Central coordinator for compilation jobs.

    The database row is the single source of truth; this class keeps no job
    state in memory. Each transition is a compare-and-swap on the row
    version, so duplicate triggers and concurrent workers cannot apply the
    same step twice.

    Args:
        database: Job, page and order persistence
        store: Artifact store for page fragments, books and covers
        renderer: Page renderer with caching and retries
        page_provider: Source of page versions
        fulfillment: Print partner client (None disables ordering)
        batch_size: Pages rendered per step
        max_workers: Concurrent background steps
        dispatcher: Replaces the thread pool; called as dispatcher(fn, *args).
            Tests pass a synchronous dispatcher.
    """

    def __init__(
        self,
        database: JobDatabase,
        store: ArtifactStore,
        renderer: PageRenderer,
        page_provider: PageProvider,
        fulfillment: Optional[FulfillmentClient] = None,
        batch_size: int = 5,
        max_workers: int = 2,
        seconds_per_page: int = 5,
        merge_overhead_seconds: int = 30,
        contact_email: str = "",
        production_delay_minutes: int = 120,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.database = database
        self.store = store
        self.renderer = renderer
        self.page_provider = page_provider
        self.fulfillment = fulfillment
        self.batch_size = batch_size
        self.seconds_per_page = seconds_per_page
        self.merge_overhead_seconds = merge_overhead_seconds
        self.contact_email = contact_email
        self.production_delay_minutes = production_delay_minutes
        self._dispatcher = dispatcher
        self._executor = ThreadPoolExecutor(max_workers=max_workers) if dispatcher is None else None

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)

    # Queries

    def _load(self, job_id: str) -> JobRecord:
        row = self.database.get_job(job_id)
        if row is None:
            raise JobNotFound(job_id)
        return JobRecord.from_row(row)

    def get_job(self, job_id: str) -> Optional[JobDetail]:
        row = self.database.get_job(job_id)
        return JobRecord.from_row(row).to_detail() if row else None

    def list_jobs(self, collection_id: Optional[str] = None) -> list[JobSummary]:
        return [JobRecord.from_row(row).to_summary() for row in self.database.list_jobs(collection_id)]

    # Dispatch and transitions

    def _dispatch(self, fn: Callable[..., None], *args: Any) -> None:
        if self._dispatcher is not None:
            self._dispatcher(fn, *args)
            return
        future = self._executor.submit(fn, *args)
        future.add_done_callback(_log_step_failure)

    def _transition(self, record: JobRecord, new_state: JobState, event: Optional[str] = None) -> bool:
        """
        Apply a state transition with a compare-and-swap on the row version.

        Returns:
            True if the transition was applied, False if another writer
            advanced the job first (the caller must stop)

        Raises:
            InvalidTransition: If the state machine does not allow the move
        """
        check_transition(record.status, new_state.status)
        applied = self.database.compare_and_swap_state(
            record.id, record.version, new_state.status.value, dump_state(new_state), event
        )
        if not applied:
            logger.warning(
                f"Job {record.id}: lost update race moving {record.status.value} -> {new_state.status.value}"
            )
        return applied

    def _fail(
        self,
        record: JobRecord,
        message: str,
        failed_page_id: Optional[str] = None,
    ) -> bool:
        state = FailedState(
            message=message,
            failed_page_id=failed_page_id,
            failed_during=record.status,
            pages_rendered=pages_rendered(record.state),
        )
        logger.error(f"Job {record.id} failed: {message}")
        return self._transition(record, state, f"Compilation failed: {message}")

    # Compile request

    def request_compilation(self, request: CompileRequest) -> CompilationOutcome:
        """
        Handle a compile request.

        The steps are:
        1. Validate the trim size and resolve the pages to compile
        2. Fingerprint the content and short-circuit on a complete cached job
        3. Run pre-flight validation (blocks on unacknowledged critical findings)
        4. Create the job and start rendering batch 0

        Args:
            request: Compile parameters from the caller

        Returns:
            CompilationOutcome describing a cache hit or the new job

        Raises:
            InvalidTrimSize: If the trim size is not in the catalog
            NoPagesToCompile: If no pages resolve for the collection
            ValidationBlocked: If pre-flight found critical issues and the
                caller did not acknowledge them
        """
        trim = get_trim_size(request.trim_size)
        pages = resolve_pages(self.page_provider, request.collection_id, request.page_ids)
        if not pages:
            raise NoPagesToCompile(f"No pages to compile for collection {request.collection_id}")

        fingerprint = content_fingerprint(request.collection_id, pages, trim.key)

        if not request.force_recompile:
            cached = self.database.find_complete_job(request.collection_id, fingerprint, trim.key)
            if cached is not None:
                logger.info(f"Cache hit for {request.collection_id} ({fingerprint}, {trim.key}): job {cached['id']}")
                download = self.refresh_download_url(cached["id"])
                return CompilationOutcome(cached=True, job=self._load(cached["id"]), download=download)

        validation = validate_book(pages, trim.key)
        enforce(validation, request.acknowledge_warnings)
        proceeded_by = None
        if request.acknowledge_warnings and (validation.total_critical or validation.total_warnings):
            proceeded_by = request.requested_by or "anonymous"
        warning_record = create_warning_record(validation, acknowledged_by=proceeded_by)

        now = utcnow()
        job_id = uuid4().hex
        messages = ["Job registered and awaiting rendering."]
        if validation.total_critical or validation.total_warnings:
            messages.append(f"Pre-flight: {validation.message}")
        self.database.insert_job({
            "id": job_id,
            "collection_id": request.collection_id,
            "owner_name": request.owner_name or "Family",
            "requested_by": request.requested_by,
            "trim_size": trim.key,
            "fingerprint": fingerprint,
            "pages": [{"page_id": page.page_id, "updated_marker": page.updated_marker} for page in pages],
            "status": JobStatus.PENDING.value,
            "state": dump_state(PendingState()),
            "version": 0,
            "force_recompile": request.force_recompile,
            "warning_record": warning_record,
            "created_at": now,
            "updated_at": now,
            "events": [{"timestamp": now, "message": message} for message in messages],
        })
        logger.info(f"Created job {job_id}: {len(pages)} pages, {trim.key}, fingerprint {fingerprint}")

        self._start(self._load(job_id))
        return CompilationOutcome(
            cached=False,
            job=self._load(job_id),
            estimated_minutes=estimate_minutes(len(pages), self.seconds_per_page, self.merge_overhead_seconds),
        )

    def _start(self, record: JobRecord) -> None:
        if self._transition(record, RenderingState(current_batch=0), "Rendering started."):
            self._dispatch(self.process_batch, record.id, 0)

    # Pipeline steps

    def process_batch(self, job_id: str, batch_index: int) -> None:
        """
        Render one batch of pages, then schedule the next batch or the merge.

        Args:
            job_id: The job to advance
            batch_index: Batch this trigger was issued for

        Note:
            A trigger whose batch index or status no longer matches the
            persisted state is a duplicate and does nothing. A page that still
            fails after retries fails the whole job; pages already rendered
            stay cached for the next compile.
        """
        record = self._load(job_id)
        state = record.state
        if not isinstance(state, RenderingState) or state.current_batch != batch_index:
            logger.info(f"Job {job_id}: ignoring stale trigger for batch {batch_index} ({record.status.value})")
            return

        total = len(record.pages)
        start = batch_index * self.batch_size
        batch = record.pages[start:start + self.batch_size]
        batch_count = math.ceil(total / self.batch_size)
        layout = get_layout_spec(record.trim_size, include_bleed=True, page_count=total)
        logger.info(f"Job {job_id}: rendering batch {batch_index + 1}/{batch_count} ({len(batch)} pages)")

        cached = 0
        for page in batch:
            try:
                rendered = self.renderer.ensure_page_artifact(
                    record.collection_id, page.page_id, page.updated_marker, layout
                )
            except RenderFailed as exc:
                self._fail(record, str(exc), failed_page_id=exc.page_id)
                return
            except Exception as exc:
                logger.exception(f"Job {job_id}: storage error on page {page.page_id}")
                self._fail(record, f"Failed to render page {page.page_id}: {exc}", failed_page_id=page.page_id)
                return
            cached += int(rendered.cached)

        done = state.pages_rendered + len(batch)
        summary = f"Batch {batch_index + 1}/{batch_count} rendered ({done}/{total} pages, {cached} from cache)."
        if start + self.batch_size < total:
            next_state = RenderingState(
                current_batch=batch_index + 1,
                pages_rendered=done,
                pages_cached=state.pages_cached + cached,
            )
            if self._transition(record, next_state, summary):
                self._dispatch(self.process_batch, job_id, batch_index + 1)
        else:
            next_state = MergingState(pages_rendered=done, pages_cached=state.pages_cached + cached)
            if self._transition(record, next_state, f"{summary} Merging."):
                self._dispatch(self.run_merge, job_id)

    def run_merge(self, job_id: str) -> None:
        """
        Merge all rendered pages and commit the compiled book.

        Raises:
            ImmutabilityViolation: Recorded on the job, then re-raised
        """
        record = self._load(job_id)
        if not isinstance(record.state, MergingState):
            logger.info(f"Job {job_id}: ignoring merge trigger ({record.status.value})")
            return

        try:
            complete = self._assemble(record)
        except ImmutabilityViolation as exc:
            self._fail(record, str(exc))
            raise
        except Exception as exc:
            message = str(exc) if isinstance(exc, MergeFailed) else f"Merge failed: {exc}"
            logger.exception(f"Job {job_id}: merge failed")
            self._fail(record, message)
            return

        self._transition(
            record,
            complete,
            f"Book compiled: {complete.final_page_count} pages, {complete.size_bytes} bytes at {complete.artifact_key}.",
        )

    def _assemble(self, record: JobRecord) -> CompleteState:
        fragments = [
            self.store.get(page_artifact_key(record.collection_id, record.trim_size, page.page_id, page.updated_marker))
            for page in record.pages
        ]
        result = merge_page_pdfs(
            fragments,
            BookMetadata(
                owner_name=record.owner_name,
                trim_size=record.trim_size,
                job_id=record.id,
                page_ids=[page.page_id for page in record.pages],
            ),
        )
        key = compiled_book_key(record.collection_id, record.fingerprint, record.trim_size, new_uniqueness_token())
        warnings = (record.warning_record or {}).get("summary", {})
        stored = self.store.put_compiled_book(key, result.pdf_bytes, {
            "collection-id": record.collection_id,
            "job-id": record.id,
            "trim-size": record.trim_size,
            "page-count": str(result.page_count),
            "compiled-by": record.requested_by or "",
            "warning-count": str(warnings.get("total_warnings", 0)),
            "critical-count": str(warnings.get("total_critical", 0)),
        })
        download = self.store.download_url(key)
        return CompleteState(
            artifact_key=key,
            size_bytes=stored.size_bytes,
            final_page_count=result.page_count,
            download_url=download.url,
            download_expires_at=download.expires_at,
            pages_rendered=pages_rendered(record.state),
            end_sheet_added=result.end_sheet_added,
        )

    # Recovery

    def trigger(self, job_id: str) -> JobRecord:
        """
        Re-drive the step implied by the persisted state.

        Safe to call any number of times: a step that has already been
        applied is ignored when it runs.

        Raises:
            JobNotFound: If job_id doesn't exist
        """
        record = self._load(job_id)
        state = record.state
        if isinstance(state, PendingState):
            self._start(record)
        elif isinstance(state, RenderingState):
            self._dispatch(self.process_batch, job_id, state.current_batch)
        elif isinstance(state, MergingState):
            self._dispatch(self.run_merge, job_id)
        else:
            logger.info(f"Job {job_id} is {record.status.value}; nothing to trigger")
        return record

    def resume_incomplete_jobs(self) -> int:
        """Re-trigger every non-terminal job, e.g. after a restart."""
        rows = self.database.list_resumable_jobs()
        for row in rows:
            logger.info(f"Resuming job {row['id']} ({row['status']})")
            self.trigger(row["id"])
        return len(rows)

    # Artifacts

    def _complete_record(self, job_id: str) -> JobRecord:
        record = self._load(job_id)
        if not isinstance(record.state, CompleteState):
            raise JobNotComplete(job_id, record.status.value)
        return record

    def refresh_download_url(self, job_id: str) -> SignedUrl:
        """
        Issue a new short-lived download URL and store it on the job.

        Raises:
            JobNotFound: If job_id doesn't exist
            JobNotComplete: If the job has no compiled book
        """
        record = self._complete_record(job_id)
        download = self.store.download_url(record.state.artifact_key)
        refreshed = record.state.model_copy(
            update={"download_url": download.url, "download_expires_at": download.expires_at}
        )
        # Same status, so this is an in-place update rather than a transition
        if not self.database.compare_and_swap_state(
            record.id, record.version, record.status.value, dump_state(refreshed), "Download URL refreshed."
        ):
            logger.warning(f"Job {job_id}: concurrent download URL refresh; returning the URL issued here")
        return download

    def fulfillment_url(self, job_id: str) -> SignedUrl:
        record = self._complete_record(job_id)
        url = self.store.fulfillment_url(record.state.artifact_key)
        self.database.add_job_event(job_id, "Fulfillment URL issued.")
        return url

    def generate_cover(self, job_id: str, options: Optional[CoverOptions] = None) -> CoverInfo:
        """
        Render and store a cover spread sized for a compiled book.

        The spine width follows the book's final page count, end sheet included.

        Raises:
            JobNotFound: If job_id doesn't exist
            JobNotComplete: If the job has no compiled book
            ValueError: For an unknown paper type or binding
        """
        record = self._complete_record(job_id)
        options = options or CoverOptions(owner_name=record.owner_name)
        result = generate_cover(record.trim_size, record.state.final_page_count, options)
        key = cover_key(record.collection_id, record.fingerprint, record.trim_size, new_uniqueness_token())
        stored = self.store.put_cover(key, result.pdf_bytes, {
            "job-id": record.id,
            "binding": options.binding,
            "paper-type": options.paper_type,
        })
        info = CoverInfo(
            key=key,
            size_bytes=stored.size_bytes,
            binding=options.binding,
            paper_type=options.paper_type,
            spine_width_in=round(result.spread.inches.spine_width, 4),
            created_at=stored.uploaded_at,
        )
        self.database.add_job_cover(job_id, info.model_dump(mode="json"))
        self.database.add_job_event(job_id, f"Cover generated at {key}.")
        return info

    # Print orders

    def place_order(self, request: OrderRequest) -> PrintOrder:
        """
        Send a compiled book to the print partner.

        Uses the requested cover if given, otherwise generates one for the
        requested binding. The partner fetches both PDFs via long-lived URLs.

        Raises:
            JobNotFound: If the job doesn't exist
            JobNotComplete: If the job has no compiled book
            FulfillmentError: If ordering is not configured or the partner rejects it
        """
        if self.fulfillment is None:
            raise FulfillmentError("Print fulfillment is not configured")
        record = self._complete_record(request.job_id)
        package_id = pod_package_id(record.trim_size, request.binding)

        if request.cover_key:
            if not self.store.exists(request.cover_key):
                raise FulfillmentError(f"Cover not found: {request.cover_key}")
            cover = request.cover_key
        else:
            cover = self.generate_cover(
                record.id,
                CoverOptions(owner_name=record.owner_name, paper_type=request.paper_type, binding=request.binding),
            ).key

        payload = build_print_job_payload(
            external_id=f"sp-{record.collection_id}-{record.id}",
            trim_size=record.trim_size,
            binding=request.binding,
            page_count=record.state.final_page_count,
            quantity=request.quantity,
            interior_url=self.fulfillment_url(record.id).url,
            cover_url=self.store.fulfillment_url(cover).url,
            shipping_address=request.shipping_address,
            shipping_level=request.shipping_level,
            contact_email=request.contact_email or self.contact_email,
            production_delay_minutes=self.production_delay_minutes,
        )
        response = self.fulfillment.create_print_job(payload)

        now = utcnow()
        status = partner_status_name(response.get("status") or "CREATED")
        order_id = uuid4().hex
        self.database.insert_order({
            "id": order_id,
            "job_id": record.id,
            "partner_job_id": str(response["id"]) if response.get("id") is not None else None,
            "status": status,
            "quantity": request.quantity,
            "shipping_level": request.shipping_level,
            "shipping_address": request.shipping_address.model_dump(),
            "binding": request.binding,
            "paper_type": request.paper_type,
            "package_id": package_id,
            "book_key": record.state.artifact_key,
            "cover_key": cover,
            "created_at": now,
            "updated_at": now,
            "events": [{"timestamp": now, "message": f"Order created ({status})."}],
        })
        self.database.add_job_event(record.id, f"Print order {order_id} placed.")
        return self.get_order(order_id)

    def get_order(self, order_id: str) -> Optional[PrintOrder]:
        row = self.database.get_order(order_id)
        return PrintOrder(**row) if row else None

    def apply_partner_update(
        self,
        partner_job_id: str,
        status: Any,
        tracking: Optional[Dict[str, Any]] = None,
    ) -> Optional[PrintOrder]:
        """
        Map a partner status webhook onto the internal order.

        Returns:
            The updated order, or None if no order references partner_job_id
        """
        row = self.database.get_order_by_partner_id(partner_job_id)
        if row is None:
            logger.warning(f"No order found for partner print job {partner_job_id}")
            return None
        name = partner_status_name(status)
        self.database.update_order_status(row["id"], name, tracking, f"Partner status: {name}.")
        return self.get_order(row["id"])


def build_storage(settings: DictConfig) -> ObjectStorage:
    storage = settings.storage
    if storage.backend == "s3":
        return S3ObjectStorage(
            bucket=storage.bucket,
            endpoint_url=storage.endpoint_url or None,
            region=storage.region or None,
        )
    if storage.backend == "local":
        return LocalObjectStorage(Path(storage.local_root), storage.public_base_url, storage.signing_secret)
    raise ValueError(f"Unknown storage backend '{storage.backend}'. Use 'local' or 's3'")


def build_job_manager(settings: Optional[DictConfig] = None, dispatcher: Optional[Dispatcher] = None) -> JobManager:
    """Wire a JobManager from settings (defaults + environment when None)."""
    settings = settings if settings is not None else make_settings()
    database = JobDatabase(Path(settings.database.path))
    store = ArtifactStore(
        build_storage(settings),
        download_ttl_seconds=settings.urls.download_ttl_seconds,
        fulfillment_ttl_seconds=settings.urls.fulfillment_ttl_seconds,
    )
    rasterizer = HttpRasterizer(
        settings.render.base_url,
        settings.render.token_secret,
        token_ttl_seconds=settings.render.token_ttl_seconds,
        timeout_seconds=settings.render.timeout_seconds,
    )
    renderer = PageRenderer(store, rasterizer, RetryPolicy(tuple(settings.pipeline.retry_delays)))
    fulfillment = None
    if settings.fulfillment.client_id and settings.fulfillment.client_secret:
        fulfillment = FulfillmentClient(
            settings.fulfillment.api_base,
            settings.fulfillment.client_id,
            settings.fulfillment.client_secret,
        )
    return JobManager(
        database=database,
        store=store,
        renderer=renderer,
        page_provider=DatabasePageProvider(database),
        fulfillment=fulfillment,
        batch_size=settings.pipeline.batch_size,
        max_workers=settings.pipeline.max_workers,
        seconds_per_page=settings.pipeline.seconds_per_page,
        merge_overhead_seconds=settings.pipeline.merge_overhead_seconds,
        contact_email=settings.fulfillment.contact_email,
        production_delay_minutes=settings.fulfillment.production_delay_minutes,
        dispatcher=dispatcher,
    )
