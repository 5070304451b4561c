"""
Tests for job state values and their persistence.
"""

from datetime import datetime, timezone

import pytest

from scrapbook_press_backend.errors import InvalidTransition
from scrapbook_press_backend.job_state import (
    CompleteState,
    FailedState,
    JobStatus,
    PendingState,
    RenderingState,
    check_transition,
    dump_state,
    parse_state,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _insert(database, job_id="job-1", collection_id="fam1", status="pending", state=None):
    database.insert_job({
        "id": job_id,
        "collection_id": collection_id,
        "owner_name": "Smith",
        "trim_size": "8x8",
        "fingerprint": "abc",
        "pages": [{"page_id": "p1", "updated_marker": "v1"}],
        "status": status,
        "state": state or dump_state(PendingState()),
        "created_at": NOW,
        "updated_at": NOW,
        "events": [{"timestamp": NOW, "message": "created"}],
    })


class TestStateMachine:
    """Allowed and rejected transitions."""

    @pytest.mark.parametrize("current,target", [
        (JobStatus.PENDING, JobStatus.RENDERING),
        (JobStatus.RENDERING, JobStatus.RENDERING),
        (JobStatus.RENDERING, JobStatus.MERGING),
        (JobStatus.RENDERING, JobStatus.FAILED),
        (JobStatus.MERGING, JobStatus.COMPLETE),
        (JobStatus.MERGING, JobStatus.FAILED),
    ])
    def test_allowed(self, current, target):
        check_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (JobStatus.PENDING, JobStatus.COMPLETE),
        (JobStatus.PENDING, JobStatus.FAILED),
        (JobStatus.PENDING, JobStatus.MERGING),
        (JobStatus.RENDERING, JobStatus.COMPLETE),
        (JobStatus.COMPLETE, JobStatus.RENDERING),
        (JobStatus.FAILED, JobStatus.PENDING),
        (JobStatus.MERGING, JobStatus.RENDERING),
    ])
    def test_rejected(self, current, target):
        with pytest.raises(InvalidTransition):
            check_transition(current, target)

    def test_tagged_state_round_trip(self):
        state = CompleteState(
            artifact_key="k",
            size_bytes=10,
            final_page_count=4,
            download_url="u",
            download_expires_at=NOW,
            pages_rendered=3,
        )
        parsed = parse_state(dump_state(state))
        assert isinstance(parsed, CompleteState)
        assert parsed.final_page_count == 4

    def test_failed_state_carries_page(self):
        parsed = parse_state(dump_state(FailedState(message="boom", failed_page_id="p9")))
        assert isinstance(parsed, FailedState)
        assert parsed.failed_page_id == "p9"


class TestJobDatabase:
    """Optimistic concurrency and event logging."""

    def test_insert_and_get(self, database):
        _insert(database)
        row = database.get_job("job-1")

        assert row["version"] == 0
        assert row["pages"] == [{"page_id": "p1", "updated_marker": "v1"}]
        assert row["events"][0]["message"] == "created"
        assert row["created_at"] == NOW

    def test_compare_and_swap_applies_once(self, database):
        _insert(database)
        new_state = dump_state(RenderingState(current_batch=0))

        assert database.compare_and_swap_state("job-1", 0, "rendering", new_state, "started") is True
        assert database.compare_and_swap_state("job-1", 0, "rendering", new_state, "again") is False

        row = database.get_job("job-1")
        assert row["version"] == 1
        assert row["status"] == "rendering"
        assert [e["message"] for e in row["events"]] == ["created", "started"]

    def test_resumable_jobs_exclude_terminal(self, database):
        _insert(database, "a", status="pending")
        _insert(database, "b", status="failed", state=dump_state(FailedState(message="x")))
        assert [row["id"] for row in database.list_resumable_jobs()] == ["a"]

    def test_list_jobs_by_collection(self, database):
        _insert(database, "a", collection_id="fam1")
        _insert(database, "b", collection_id="fam2")
        assert [row["id"] for row in database.list_jobs("fam2")] == ["b"]
        assert len(database.list_jobs()) == 2

    def test_missing_job(self, database):
        assert database.get_job("nope") is None
