"""
Tests for the job stores.

InMemoryJobStore is exercised directly; SupabaseJobStore against a mocked
supabase query builder chain.
"""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from pondfinder.jobs.models import JobRecord, JobStatus, JobType
from pondfinder.jobs.store import STARTING_MESSAGE, InMemoryJobStore, SupabaseJobStore


def _row(**overrides):
    job = JobRecord(type=JobType.REGION_SCAN, owner_id="owner-1", **overrides)
    return job.model_dump(mode="json")


def _response(rows):
    return SimpleNamespace(data=rows)


# =============================================================================
# In-memory
# =============================================================================


class TestInMemoryJobStore:
    @pytest.mark.asyncio
    async def test_claim_takes_oldest_pending(self):
        store = InMemoryJobStore()
        first = await store.create(JobRecord(type=JobType.REGION_SCAN, owner_id="o"))
        await store.create(JobRecord(type=JobType.REGION_SCAN, owner_id="o"))

        claimed = await store.claim_next_pending()

        assert claimed.id == first.id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.status_message == STARTING_MESSAGE
        assert claimed.started_at is not None

    @pytest.mark.asyncio
    async def test_new_job_starts_pending_with_queued_message(self):
        job = await InMemoryJobStore().create(JobRecord(type=JobType.REGION_SCAN, owner_id="o"))

        assert job.status == JobStatus.PENDING
        assert job.status_message == "Queued - waiting to start..."
        assert job.progress == 0

    @pytest.mark.asyncio
    async def test_claim_with_nothing_pending(self):
        assert await InMemoryJobStore().claim_next_pending() is None

    @pytest.mark.asyncio
    async def test_transition_is_compare_and_set(self):
        store = InMemoryJobStore()
        job = await store.create(JobRecord(type=JobType.REGION_SCAN, owner_id="o"))

        assert await store.transition(job.id, [JobStatus.RUNNING], status=JobStatus.COMPLETED) is None
        cancelled = await store.transition(job.id, [JobStatus.PENDING], status=JobStatus.CANCELLED)
        assert cancelled.status == JobStatus.CANCELLED
        assert await store.transition(job.id, [JobStatus.PENDING], status=JobStatus.RUNNING) is None

    @pytest.mark.asyncio
    async def test_progress_only_on_running_jobs(self):
        store = InMemoryJobStore()
        job = await store.create(JobRecord(type=JobType.REGION_SCAN, owner_id="o"))
        assert await store.update_progress(job.id, 10, "x") is None

        await store.claim_next_pending()
        assert (await store.update_progress(job.id, 30, "a")).progress == 30
        assert (await store.update_progress(job.id, 20, "b")).progress == 30

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        store = InMemoryJobStore()
        job = await store.create(JobRecord(type=JobType.REGION_SCAN, owner_id="o", params={"a": 1}))

        fetched = await store.get(job.id)
        fetched.params["a"] = 2

        assert (await store.get(job.id)).params == {"a": 1}


# =============================================================================
# Supabase
# =============================================================================


class TestSupabaseJobStore:
    def _store(self):
        client = MagicMock()
        return SupabaseJobStore(client, table="jobs"), client.table.return_value

    @pytest.mark.asyncio
    async def test_create_inserts_json_row(self):
        store, table = self._store()
        job = JobRecord(type=JobType.BATCH_ENRICHMENT, owner_id="owner-1", params={"points": []})
        table.insert.return_value.execute.return_value = _response([job.model_dump(mode="json")])

        created = await store.create(job)

        row = table.insert.call_args.args[0]
        assert row["type"] == "batch-enrichment"
        assert row["status"] == "pending"
        assert isinstance(row["created_at"], str)
        assert created.id == job.id

    @pytest.mark.asyncio
    async def test_transition_filters_on_current_status(self):
        store, table = self._store()
        chain = table.update.return_value.eq.return_value.in_.return_value
        chain.execute.return_value = _response([_row(id="job-1", status="cancelled")])

        record = await store.transition(
            "job-1",
            [JobStatus.PENDING, JobStatus.RUNNING],
            status=JobStatus.CANCELLED,
            completed_at=JobRecord(type=JobType.REGION_SCAN, owner_id="o").created_at,
        )

        values = table.update.call_args.args[0]
        assert values["status"] == "cancelled"
        assert isinstance(values["completed_at"], str)
        table.update.return_value.eq.assert_called_with("id", "job-1")
        table.update.return_value.eq.return_value.in_.assert_called_with(
            "status", ["pending", "running"]
        )
        assert record.status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_transition_miss_returns_none(self):
        store, table = self._store()
        table.update.return_value.eq.return_value.in_.return_value.execute.return_value = _response([])

        assert await store.transition("job-1", [JobStatus.RUNNING], status=JobStatus.FAILED) is None

    @pytest.mark.asyncio
    async def test_claim_next_pending(self):
        store, table = self._store()
        select_chain = table.select.return_value.eq.return_value.order.return_value.limit.return_value
        select_chain.execute.return_value = _response([{"id": "job-1"}])
        update_chain = table.update.return_value.eq.return_value.in_.return_value
        update_chain.execute.return_value = _response([_row(id="job-1", status="running")])

        claimed = await store.claim_next_pending()

        assert claimed.id == "job-1"
        assert claimed.status == JobStatus.RUNNING
        table.select.return_value.eq.return_value.order.assert_called_with("created_at")

    @pytest.mark.asyncio
    async def test_claim_gives_up_after_repeated_lost_races(self):
        store, table = self._store()
        select_chain = table.select.return_value.eq.return_value.order.return_value.limit.return_value
        select_chain.execute.return_value = _response([{"id": "job-1"}])
        table.update.return_value.eq.return_value.in_.return_value.execute.return_value = _response([])

        assert await store.claim_next_pending() is None
        assert table.update.call_count == SupabaseJobStore._CLAIM_ATTEMPTS

    @pytest.mark.asyncio
    async def test_fail_orphaned_running(self):
        store, table = self._store()
        table.update.return_value.eq.return_value.execute.return_value = _response(
            [_row(status="failed"), _row(status="failed")]
        )

        assert await store.fail_orphaned_running("Interrupted by service restart") == 2
        values = table.update.call_args.args[0]
        assert values["status"] == "failed"
        assert values["error"] == "Interrupted by service restart"
        table.update.return_value.eq.assert_called_with("status", "running")

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        store, table = self._store()
        chain = table.delete.return_value.in_.return_value.lt.return_value
        chain.execute.return_value = _response([_row(status="completed")])

        assert await store.purge_expired(timedelta(hours=24)) == 1
        status_filter = table.delete.return_value.in_.call_args.args
        assert status_filter == ("status", ["completed", "failed", "cancelled"])
        assert table.delete.return_value.in_.return_value.lt.call_args.args[0] == "completed_at"

    @pytest.mark.asyncio
    async def test_list_for_owner_newest_first(self):
        store, table = self._store()
        chain = table.select.return_value.eq.return_value.order.return_value.limit.return_value
        chain.execute.return_value = _response([_row(), _row()])

        jobs = await store.list_for_owner("owner-1", 5)

        assert len(jobs) == 2
        table.select.return_value.eq.return_value.order.assert_called_with("created_at", desc=True)
        table.select.return_value.eq.return_value.order.return_value.limit.assert_called_with(5)
