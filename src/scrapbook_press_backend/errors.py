"""
Error taxonomy for the book compilation pipeline.

Caller errors (InvalidTrimSize, NoPagesToCompile, ValidationBlocked) are
raised before any job exists. RenderFailed and MergeFailed are fatal to a
single job and are recorded on it. ImmutabilityViolation always indicates a
race or programming error and must never be swallowed.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class CompilerError(Exception):
    """Base class for all compilation pipeline errors."""


class InvalidTrimSize(CompilerError, ValueError):
    def __init__(self, trim_size: str, valid: Iterable[str]) -> None:
        self.trim_size = trim_size
        self.valid = list(valid)
        super().__init__(f"Invalid trim size: {trim_size!r}. Valid: {', '.join(self.valid)}")


class NoPagesToCompile(CompilerError):
    """Raised when a compile request resolves to zero pages."""


class ValidationBlocked(CompilerError):
    """
    Critical safety-zone violations were found and not acknowledged.

    Attributes:
        message: Human-readable summary of the findings
        summary: Aggregate counts and the ids of pages with critical issues
        page_results: Per-page validation details
    """

    def __init__(self, message: str, summary: Dict[str, Any], page_results: list[Dict[str, Any]]) -> None:
        self.message = message
        self.summary = summary
        self.page_results = page_results
        super().__init__(message)


class RenderFailed(CompilerError):
    def __init__(self, page_id: str, cause: BaseException) -> None:
        self.page_id = page_id
        self.cause = cause
        super().__init__(f"Failed to render page {page_id}: {cause}")


class MergeFailed(CompilerError):
    """Any error while assembling the final book; the whole job fails."""


class ImmutabilityViolation(CompilerError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(
            f"Attempted to overwrite existing artifact at {key}. "
            "Compiled books are immutable; generate a new key for recompilation."
        )


class InvalidTransition(CompilerError):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition job from {current} to {target}")


class JobNotFound(CompilerError, KeyError):
    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class JobNotComplete(CompilerError):
    def __init__(self, job_id: str, status: str) -> None:
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} is {status}, not complete")


class FulfillmentError(CompilerError):
    """Raised when the print partner API rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)
