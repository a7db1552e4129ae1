import asyncio
from unittest.mock import AsyncMock

import pytest

from feed_dispatch.core.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    TerminationSignalError,
)
from feed_dispatch.core.events.job_events import JobStateChangedEvent
from feed_dispatch.models import ArrivalEvent, JobState, JobStatusReport


def _arrivals(count: int):
    return [
        ArrivalEvent(source_location="feeds-bucket", object_key=f"vendorA/{i:02d}.csv")
        for i in range(count)
    ]


async def _schedule(context) -> int:
    """Two passes with provisioning in between, as the background loop would do."""
    started = await context.scheduler.run_once()
    await context.resource_pool.wait_for_provisioning()
    return started + await context.scheduler.run_once()


@pytest.mark.asyncio
async def test_ten_jobs_on_eight_units(context):
    """10 arrivals, 8 single-vCPU units: 8 run, 2 wait, none lost."""
    await context.resource_pool.start()
    await context.resource_pool.wait_for_provisioning()
    job_ids = [await context.dispatcher.dispatch(e) for e in _arrivals(10)]

    started = await _schedule(context)

    assert started == 8
    running = await context.job_queue.list_jobs(JobState.RUNNING)
    queued = await context.job_queue.list_jobs(JobState.QUEUED)
    assert len(running) == 8
    assert len(queued) == 2
    assert context.resource_pool.snapshot().assigned_vcpus == 8

    # FIFO: the first eight arrivals run, the last two wait
    assert {j.job_id for j in running} == set(job_ids[:8])
    assert [j.job_id for j in queued] == job_ids[8:]


@pytest.mark.asyncio
async def test_terminal_report_frees_unit_for_next_job(context):
    await context.resource_pool.start()
    job_ids = [await context.dispatcher.dispatch(e) for e in _arrivals(10)]
    await _schedule(context)

    await context.executor.complete(job_ids[0], succeeded=True, output_location="s3://out/00")

    finished = await context.job_queue.get(job_ids[0])
    assert finished.state == JobState.SUCCEEDED
    assert finished.assigned_unit_id is None
    assert finished.output_location == "s3://out/00"
    assert context.resource_pool.snapshot().assigned_vcpus == 7

    assert await context.scheduler.run_once() == 1
    assert (await context.job_queue.get(job_ids[8])).state == JobState.RUNNING


@pytest.mark.asyncio
async def test_failed_job_is_not_retried(context):
    await context.resource_pool.start()
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])
    await _schedule(context)

    await context.executor.complete(job_id, succeeded=False, reason="Essential container exited")
    await context.scheduler.run_once()

    job = await context.job_queue.get(job_id)
    assert job.state == JobState.FAILED
    assert job.status_reason == "Essential container exited"
    assert context.executor.started_jobs.count(job_id) == 1


@pytest.mark.asyncio
async def test_cancel_queued_job_is_immediate(context):
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])

    job = await context.scheduler.cancel(job_id)

    assert job.state == JobState.CANCELLED
    assert await context.job_queue.next_ready() is None


@pytest.mark.asyncio
async def test_cancel_running_job_waits_for_executor(context):
    """RUNNING -> CANCELLED happens only when the executor confirms termination."""
    await context.resource_pool.start()
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])
    await _schedule(context)

    # Keep the executor from confirming so the intermediate state is visible
    context.executor.terminate = AsyncMock()
    job = await context.scheduler.cancel(job_id)

    assert job.state == JobState.RUNNING
    assert context.scheduler.is_cancel_requested(job_id)
    context.executor.terminate.assert_awaited_once_with(job_id)

    await context.scheduler.handle_status_report(
        JobStatusReport(job_id=job_id, state=JobState.CANCELLED, reason="Terminated")
    )

    cancelled = await context.job_queue.get(job_id)
    assert cancelled.state == JobState.CANCELLED
    assert not context.scheduler.is_cancel_requested(job_id)
    assert context.resource_pool.snapshot().assigned_vcpus == 0


@pytest.mark.asyncio
async def test_cancel_running_job_with_simulated_executor(context):
    await context.resource_pool.start()
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])
    await _schedule(context)

    job = await context.scheduler.cancel(job_id)

    # The simulated executor confirms straight away
    assert job.state == JobState.CANCELLED
    assert job.status_reason == "Terminated on request"


@pytest.mark.asyncio
async def test_failed_termination_signal_can_be_retried(context):
    await context.resource_pool.start()
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])
    await _schedule(context)

    context.executor.terminate = AsyncMock(side_effect=RuntimeError("Rate exceeded"))
    with pytest.raises(TerminationSignalError):
        await context.scheduler.cancel(job_id)

    assert not context.scheduler.is_cancel_requested(job_id)
    assert (await context.job_queue.get(job_id)).state == JobState.RUNNING

    # Second attempt goes through to the executor again
    context.executor.terminate = AsyncMock()
    job = await context.scheduler.cancel(job_id)

    context.executor.terminate.assert_awaited_once_with(job_id)
    assert job.state == JobState.RUNNING
    assert context.scheduler.is_cancel_requested(job_id)


@pytest.mark.asyncio
async def test_cancel_terminal_job_is_rejected(context):
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])
    await context.scheduler.cancel(job_id)

    with pytest.raises(InvalidTransitionError):
        await context.scheduler.cancel(job_id)


@pytest.mark.asyncio
async def test_cancel_unknown_job(context):
    with pytest.raises(JobNotFoundError):
        await context.scheduler.cancel("missing")


@pytest.mark.asyncio
async def test_report_for_queued_job_is_rejected(context):
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])

    with pytest.raises(InvalidTransitionError):
        await context.scheduler.handle_status_report(
            JobStatusReport(job_id=job_id, state=JobState.SUCCEEDED)
        )


@pytest.mark.asyncio
async def test_executor_start_failure_marks_job_failed(context):
    await context.resource_pool.start()
    await context.resource_pool.wait_for_provisioning()
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])
    context.executor.start = AsyncMock(side_effect=RuntimeError("ClientException"))

    assert await context.scheduler.run_once() == 0

    job = await context.job_queue.get(job_id)
    assert job.state == JobState.FAILED
    assert "ClientException" in job.status_reason
    assert context.resource_pool.snapshot().assigned_vcpus == 0


@pytest.mark.asyncio
async def test_job_states_only_move_forward(context):
    order = [JobState.SUBMITTED, JobState.QUEUED, JobState.RUNNING, JobState.SUCCEEDED]
    seen = []

    async def record(event: JobStateChangedEvent):
        seen.append((event.old_state, event.new_state))

    await context.event_bus.subscribe(JobStateChangedEvent, record)
    await context.resource_pool.start()
    job_id = await context.dispatcher.dispatch(_arrivals(1)[0])
    await _schedule(context)
    await context.executor.complete(job_id)

    # Let the state machine's publish tasks run
    for _ in range(5):
        await asyncio.sleep(0)

    assert seen == list(zip(order, order[1:]))


@pytest.mark.asyncio
async def test_scheduling_loop_runs_in_background(make_settings):
    from feed_dispatch.context import build_context

    ctx = await build_context(make_settings(scheduler_interval_seconds=0.01))
    await ctx.resource_pool.start()
    job_id = await ctx.dispatcher.dispatch(_arrivals(1)[0])

    task = asyncio.create_task(ctx.scheduler.start_scheduling())
    for _ in range(100):
        if (await ctx.job_queue.get(job_id)).state == JobState.RUNNING:
            break
        await asyncio.sleep(0.01)

    ctx.scheduler.stop_scheduling()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert (await ctx.job_queue.get(job_id)).state == JobState.RUNNING
    assert not ctx.scheduler.is_running


@pytest.mark.asyncio
async def test_concurrent_passes_start_each_job_once(context):
    await context.resource_pool.start()
    await context.resource_pool.wait_for_provisioning()
    for event in _arrivals(10):
        await context.dispatcher.dispatch(event)

    first = await context.scheduler.run_once()
    await context.resource_pool.wait_for_provisioning()
    results = await asyncio.gather(*(context.scheduler.run_once() for _ in range(4)))

    assert first + sum(results) == 8
    assert context.scheduler.total_jobs_started == 8
    assert len(await context.job_queue.list_jobs(JobState.RUNNING)) == 8


@pytest.mark.asyncio
async def test_concurrent_dispatch_and_scheduling_pair_jobs_and_units_one_to_one(context):
    await context.resource_pool.start()
    await context.resource_pool.wait_for_provisioning()

    async def schedule_repeatedly():
        for _ in range(5):
            await context.scheduler.run_once()
            await context.resource_pool.wait_for_provisioning()

    await asyncio.gather(
        *(context.dispatcher.dispatch(event) for event in _arrivals(20)),
        schedule_repeatedly(),
        schedule_repeatedly(),
    )
    await _schedule(context)

    running = await context.job_queue.list_jobs(JobState.RUNNING)
    snapshot = context.resource_pool.snapshot()
    holders = {u.unit_id: u.assigned_job_id for u in snapshot.units if not u.is_idle}

    assert len(running) == 8
    assert len(await context.job_queue.list_jobs(JobState.QUEUED)) == 12
    # One job per unit and one unit per job
    assert len(set(holders.values())) == len(holders) == 8
    assert {job.assigned_unit_id for job in running} == set(holders)
    for job in running:
        assert holders[job.assigned_unit_id] == job.job_id
    assert snapshot.assigned_vcpus <= context.settings.max_vcpus
