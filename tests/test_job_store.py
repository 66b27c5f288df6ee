from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update, func

from boxoffice.commands.claim_job import claim_next_job
from boxoffice.commands.complete_job import complete_job
from boxoffice.commands.enqueue_job import enqueue_job
from boxoffice.commands.fail_job import fail_job, dead_letter_job
from boxoffice.commands.purge_jobs import purge_old_jobs
from boxoffice.commands.requeue_stuck import requeue_stuck_jobs
from boxoffice.commands.retry_job import retry_dead_job
from boxoffice.db.models import Job, JobEventLog, OutboxEvent
from boxoffice.domain.errors import InvalidJobStateError, JobNotFoundError
from boxoffice.domain.models import CleanupOldJobsPayload
from boxoffice.domain.states import JobStatus, JobType, JobEvent


async def _enqueue(session_factory, job_type=JobType.CLEANUP_OLD_JOBS, payload=None, **kwargs):
    async with session_factory() as session:
        job_id = await enqueue_job(session, job_type, payload or {"older_than_days": 14}, **kwargs)
        await session.commit()
        return job_id


async def _get(session_factory, job_id):
    async with session_factory() as session:
        return await session.get(Job, job_id)


async def _claim(session_factory, worker_id="w1"):
    async with session_factory() as session:
        job = await claim_next_job(session, worker_id)
        await session.commit()
        return job


async def test_enqueue_claim_complete_round_trip(session_factory):
    job_id = await _enqueue(session_factory)

    job = await _get(session_factory, job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 0
    assert job.max_attempts == 5

    claimed = await _claim(session_factory, "worker-a")
    assert claimed.id == job_id
    assert claimed.status == JobStatus.PROCESSING
    assert claimed.locked_by == "worker-a"
    assert claimed.started_at is not None
    attempts_at_claim = claimed.attempts

    async with session_factory() as session:
        done = await complete_job(session, job_id, {"deleted": 0})
        await session.commit()
    assert done is not None

    job = await _get(session_factory, job_id)
    assert job.status == JobStatus.SUCCEEDED
    assert job.result == {"deleted": 0}
    assert job.attempts == attempts_at_claim

    async with session_factory() as session:
        events = (await session.execute(
            select(JobEventLog.event_type).where(JobEventLog.job_id == job_id).order_by(JobEventLog.id)
        )).scalars().all()
    assert events == [JobEvent.CREATED, JobEvent.CLAIMED, JobEvent.SUCCEEDED]


async def test_enqueue_accepts_payload_model(session_factory):
    job_id = await _enqueue(session_factory, payload=CleanupOldJobsPayload(older_than_days=3))
    job = await _get(session_factory, job_id)
    assert job.payload == {"older_than_days": 3}


async def test_claim_returns_none_on_empty_queue(session_factory):
    assert await _claim(session_factory) is None


async def test_delayed_job_is_not_claimable_yet(session_factory):
    await _enqueue(session_factory, delay_seconds=3600)
    assert await _claim(session_factory) is None


async def test_claim_orders_by_priority_then_age(session_factory):
    first = await _enqueue(session_factory)
    second = await _enqueue(session_factory)
    urgent = await _enqueue(session_factory, priority=10)

    claimed = [(await _claim(session_factory)).id for _ in range(3)]
    assert claimed == [urgent, first, second]


async def test_no_job_is_claimed_twice(session_factory):
    job_ids = {await _enqueue(session_factory) for _ in range(5)}

    seen = []
    for i in range(10):
        job = await _claim(session_factory, f"worker-{i % 3}")
        if job is not None:
            seen.append(job.id)

    assert sorted(seen) == sorted(job_ids)
    assert len(seen) == len(set(seen))


async def test_claim_guard_rejects_row_that_left_pending(session_factory):
    """The UPDATE ... WHERE status='pending' is the last line of defence."""
    job_id = await _enqueue(session_factory)

    async with session_factory() as session:
        await session.execute(update(Job).where(Job.id == job_id).values(status=JobStatus.PROCESSING))
        await session.commit()

    assert await _claim(session_factory) is None


async def test_fail_job_requeues_and_counts_attempt(session_factory):
    job_id = await _enqueue(session_factory)
    await _claim(session_factory)

    next_run = datetime.now(timezone.utc) + timedelta(minutes=5)
    async with session_factory() as session:
        job = await fail_job(session, job_id, "boom", next_run)
        await session.commit()

    assert job.status == JobStatus.PENDING
    assert job.attempts == 1
    assert job.last_error == "boom"
    assert job.locked_by is None
    # Not claimable before next_run_at
    assert await _claim(session_factory) is None


async def test_dead_letter_writes_outbox_event(session_factory):
    job_id = await _enqueue(session_factory)
    await _claim(session_factory)

    async with session_factory() as session:
        job = await dead_letter_job(session, job_id, "fatal")
        await session.commit()
    assert job.status == JobStatus.DEAD

    async with session_factory() as session:
        event = (await session.execute(select(OutboxEvent))).scalar_one()
    assert event.event_type == "job.dead"
    assert event.payload["job_id"] == str(job_id)


async def test_transitions_ignore_jobs_no_longer_processing(session_factory):
    job_id = await _enqueue(session_factory)

    async with session_factory() as session:
        assert await complete_job(session, job_id, {}) is None
        assert await fail_job(session, job_id, "x", datetime.now(timezone.utc)) is None
        assert await dead_letter_job(session, job_id, "x") is None
        await session.commit()

    job = await _get(session_factory, job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 0


async def test_requeue_stuck_jobs_reclaims_and_counts_attempt(session_factory):
    job_id = await _enqueue(session_factory)
    await _claim(session_factory, "crashed-worker")

    async with session_factory() as session:
        await session.execute(
            update(Job).where(Job.id == job_id)
            .values(started_at=datetime.now(timezone.utc) - timedelta(hours=1))
        )
        await session.commit()

    async with session_factory() as session:
        assert await requeue_stuck_jobs(session, timeout_seconds=900) == 1
        await session.commit()

    job = await _get(session_factory, job_id)
    assert job.status == JobStatus.PENDING
    assert job.attempts == 1
    assert job.locked_by is None
    assert "Visibility timeout" in job.last_error

    # Claimable again right away
    assert (await _claim(session_factory)).id == job_id


async def test_requeue_stuck_jobs_leaves_fresh_claims_alone(session_factory):
    await _enqueue(session_factory)
    await _claim(session_factory)

    async with session_factory() as session:
        assert await requeue_stuck_jobs(session, timeout_seconds=900) == 0


async def test_requeue_stuck_jobs_dead_letters_exhausted_job(session_factory):
    job_id = await _enqueue(session_factory, max_attempts=1)
    await _claim(session_factory)

    async with session_factory() as session:
        await session.execute(
            update(Job).where(Job.id == job_id)
            .values(started_at=datetime.now(timezone.utc) - timedelta(hours=1))
        )
        await session.commit()

    async with session_factory() as session:
        await requeue_stuck_jobs(session, timeout_seconds=60)
        await session.commit()

    job = await _get(session_factory, job_id)
    assert job.status == JobStatus.DEAD
    assert job.attempts == 1


async def test_purge_old_jobs_only_removes_old_finished_jobs(session_factory):
    old_done = await _enqueue(session_factory)
    old_dead = await _enqueue(session_factory)
    fresh_done = await _enqueue(session_factory)
    old_pending = await _enqueue(session_factory)

    long_ago = datetime.now(timezone.utc) - timedelta(days=30)
    async with session_factory() as session:
        await session.execute(update(Job).where(Job.id == old_done).values(status=JobStatus.SUCCEEDED, updated_at=long_ago))
        await session.execute(update(Job).where(Job.id == old_dead).values(status=JobStatus.DEAD, updated_at=long_ago))
        await session.execute(update(Job).where(Job.id == fresh_done).values(status=JobStatus.SUCCEEDED))
        await session.execute(update(Job).where(Job.id == old_pending).values(updated_at=long_ago))
        await session.commit()

    async with session_factory() as session:
        assert await purge_old_jobs(session, days=14) == 2
        await session.commit()

    async with session_factory() as session:
        remaining = set((await session.execute(select(Job.id))).scalars().all())
        orphan_events = await session.scalar(
            select(func.count()).select_from(JobEventLog).where(JobEventLog.job_id.in_([old_done, old_dead]))
        )
    assert remaining == {fresh_done, old_pending}
    assert orphan_events == 0


async def test_retry_dead_job_resets_budget(session_factory):
    job_id = await _enqueue(session_factory)
    await _claim(session_factory)
    async with session_factory() as session:
        await dead_letter_job(session, job_id, "fatal")
        await session.commit()

    async with session_factory() as session:
        job = await retry_dead_job(session, job_id)
        await session.commit()

    assert job.status == JobStatus.PENDING
    assert job.attempts == 0
    assert (await _claim(session_factory)).id == job_id


async def test_retry_dead_job_rejects_other_states(session_factory):
    job_id = await _enqueue(session_factory)

    async with session_factory() as session:
        with pytest.raises(InvalidJobStateError):
            await retry_dead_job(session, job_id)


async def test_retry_dead_job_unknown_id(session_factory):
    import uuid

    async with session_factory() as session:
        with pytest.raises(JobNotFoundError):
            await retry_dead_job(session, uuid.uuid4())
