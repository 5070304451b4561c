"""
Compilation job state machine.

    pending -> rendering -> merging -> complete
                   |           |
                   +-> failed <+

rendering -> rendering is the batch advance. complete and failed are
terminal. Each state carries only the fields that are meaningful in it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .errors import InvalidTransition


class JobStatus(str, Enum):
    PENDING = "pending"
    RENDERING = "rendering"
    MERGING = "merging"
    COMPLETE = "complete"
    FAILED = "failed"


VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RENDERING},
    JobStatus.RENDERING: {JobStatus.RENDERING, JobStatus.MERGING, JobStatus.FAILED},
    JobStatus.MERGING: {JobStatus.COMPLETE, JobStatus.FAILED},
    JobStatus.COMPLETE: set(),  # terminal
    JobStatus.FAILED: set(),  # terminal
}

TERMINAL_STATUSES = frozenset({JobStatus.COMPLETE, JobStatus.FAILED})


class PendingState(BaseModel):
    status: Literal[JobStatus.PENDING] = JobStatus.PENDING


class RenderingState(BaseModel):
    status: Literal[JobStatus.RENDERING] = JobStatus.RENDERING
    current_batch: int = 0
    pages_rendered: int = 0
    pages_cached: int = 0


class MergingState(BaseModel):
    status: Literal[JobStatus.MERGING] = JobStatus.MERGING
    pages_rendered: int
    pages_cached: int = 0


class CompleteState(BaseModel):
    status: Literal[JobStatus.COMPLETE] = JobStatus.COMPLETE
    artifact_key: str
    size_bytes: int
    final_page_count: int
    download_url: str
    download_expires_at: datetime
    pages_rendered: int
    end_sheet_added: bool = False


class FailedState(BaseModel):
    status: Literal[JobStatus.FAILED] = JobStatus.FAILED
    message: str
    failed_page_id: Optional[str] = None
    failed_during: Optional[JobStatus] = None
    pages_rendered: int = 0


JobState = Annotated[
    Union[PendingState, RenderingState, MergingState, CompleteState, FailedState],
    Field(discriminator="status"),
]

_state_adapter: TypeAdapter[JobState] = TypeAdapter(JobState)


def parse_state(raw: str) -> JobState:
    return _state_adapter.validate_json(raw)


def dump_state(state: JobState) -> str:
    return state.model_dump_json()


def check_transition(current: JobStatus, target: JobStatus) -> None:
    """
    Raises:
        InvalidTransition: If target is not reachable from current in one step
    """
    if target not in VALID_TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)


def pages_rendered(state: JobState) -> int:
    return getattr(state, "pages_rendered", 0)
