import asyncio

import pytest

from feed_dispatch.context import build_context
from feed_dispatch.models import ArrivalEvent, JobState


@pytest.mark.asyncio
async def test_timed_jobs_succeed_on_their_own(make_settings):
    ctx = await build_context(make_settings(simulated_job_seconds=0.01))
    await ctx.resource_pool.start()
    await ctx.resource_pool.wait_for_provisioning()
    job_id = await ctx.dispatcher.dispatch(
        ArrivalEvent(source_location="feeds-bucket", object_key="vendorA/file.csv")
    )

    await ctx.scheduler.run_once()
    for _ in range(100):
        if (await ctx.job_queue.get(job_id)).state.is_terminal:
            break
        await asyncio.sleep(0.01)

    assert (await ctx.job_queue.get(job_id)).state == JobState.SUCCEEDED
    assert ctx.executor.running_job_ids == []
    await ctx.executor.shutdown()


@pytest.mark.asyncio
async def test_complete_unknown_job_raises(context):
    with pytest.raises(KeyError):
        await context.executor.complete("not-running")


@pytest.mark.asyncio
async def test_terminate_unknown_job_is_ignored(context):
    await context.executor.terminate("not-running")

    assert context.executor.running_job_ids == []
