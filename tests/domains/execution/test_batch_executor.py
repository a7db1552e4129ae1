"""
Tests for BatchJobExecutor against a mocked boto3 Batch client.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.domains.execution.batch_executor import TERMINATE_REASON, BatchJobExecutor
from feed_dispatch.domains.execution.commands import ReportJobStatusCommand
from feed_dispatch.models import JobState, WorkerCapacityUnit


@pytest.fixture
def batch_client() -> Mock:
    client = Mock()
    client.submit_job.return_value = {"jobId": "batch-123", "jobName": "vfp-vendorA-file-csv"}
    client.describe_jobs.return_value = {"jobs": []}
    return client


@pytest.fixture
def report_handler() -> AsyncMock:
    handler = AsyncMock()
    return handler


@pytest.fixture
def executor(batch_client, report_handler) -> BatchJobExecutor:
    command_bus = CommandBus()
    command_bus.register(ReportJobStatusCommand, report_handler)
    return BatchJobExecutor(
        command_bus=command_bus,
        job_queue_name="VendorFeedProcessorJobQueue",
        job_definition="VendorFeedProcessorJobDefinition:1",
        client=batch_client,
    )


@pytest.fixture
def unit() -> WorkerCapacityUnit:
    return WorkerCapacityUnit(cpu_capacity=1, memory_capacity_mib=2048)


@pytest.mark.asyncio
async def test_start_submits_rendered_job(executor, batch_client, job_factory, unit):
    job = job_factory(
        state=JobState.RUNNING,
        rendered_environment={"AWSRegion": "us-east-1", "DOMAIN": "test", "REALM": "USAmazon"},
    )

    await executor.start(job, unit)

    kwargs = batch_client.submit_job.call_args.kwargs
    assert kwargs["jobName"] == job.job_name
    assert kwargs["jobQueue"] == "VendorFeedProcessorJobQueue"
    assert kwargs["jobDefinition"] == "VendorFeedProcessorJobDefinition:1"
    assert kwargs["parameters"] == {"inputBucket": "feeds-bucket", "objectKey": "vendorA/file.csv"}

    overrides = kwargs["containerOverrides"]
    assert overrides["command"] == job.rendered_arguments
    assert {"name": "REALM", "value": "USAmazon"} in overrides["environment"]
    assert {"type": "VCPU", "value": "1"} in overrides["resourceRequirements"]
    assert {"type": "MEMORY", "value": "512"} in overrides["resourceRequirements"]

    assert executor.tracked_job_ids == [job.job_id]


@pytest.mark.asyncio
async def test_poll_reports_succeeded_job(executor, batch_client, report_handler, job_factory, unit):
    job = job_factory(state=JobState.RUNNING)
    await executor.start(job, unit)
    batch_client.describe_jobs.return_value = {
        "jobs": [
            {
                "jobId": "batch-123",
                "status": "SUCCEEDED",
                "statusReason": "Essential container in task exited",
                "container": {"logStreamName": "VendorFeedProcessor/default/abc"},
            }
        ]
    }

    assert await executor.poll_once() == 1

    batch_client.describe_jobs.assert_called_once_with(jobs=["batch-123"])
    command = report_handler.call_args[0][0]
    assert command.report.job_id == job.job_id
    assert command.report.state == JobState.SUCCEEDED
    assert command.report.output_location == "VendorFeedProcessor/default/abc"
    assert executor.tracked_job_ids == []


@pytest.mark.asyncio
async def test_poll_ignores_jobs_still_running(executor, batch_client, report_handler, job_factory, unit):
    await executor.start(job_factory(state=JobState.RUNNING), unit)
    batch_client.describe_jobs.return_value = {"jobs": [{"jobId": "batch-123", "status": "RUNNING"}]}

    assert await executor.poll_once() == 0
    report_handler.assert_not_called()


@pytest.mark.asyncio
async def test_failed_job_is_reported_failed(executor, batch_client, report_handler, job_factory, unit):
    await executor.start(job_factory(state=JobState.RUNNING), unit)
    batch_client.describe_jobs.return_value = {
        "jobs": [{"jobId": "batch-123", "status": "FAILED", "statusReason": "OutOfMemoryError"}]
    }

    await executor.poll_once()

    report = report_handler.call_args[0][0].report
    assert report.state == JobState.FAILED
    assert report.reason == "OutOfMemoryError"


@pytest.mark.asyncio
async def test_terminated_job_is_reported_cancelled(executor, batch_client, report_handler, job_factory, unit):
    job = job_factory(state=JobState.RUNNING)
    await executor.start(job, unit)

    await executor.terminate(job.job_id)

    batch_client.terminate_job.assert_called_once_with(jobId="batch-123", reason=TERMINATE_REASON)
    report_handler.assert_not_called()

    batch_client.describe_jobs.return_value = {
        "jobs": [{"jobId": "batch-123", "status": "FAILED", "statusReason": TERMINATE_REASON}]
    }
    await executor.poll_once()

    assert report_handler.call_args[0][0].report.state == JobState.CANCELLED


@pytest.mark.asyncio
async def test_terminate_unknown_job_does_not_call_batch(executor, batch_client):
    await executor.terminate("never-submitted")

    batch_client.terminate_job.assert_not_called()


@pytest.mark.asyncio
async def test_describe_errors_are_retried_next_poll(executor, batch_client, report_handler, job_factory, unit):
    await executor.start(job_factory(state=JobState.RUNNING), unit)
    batch_client.describe_jobs.side_effect = RuntimeError("Throttling")

    assert await executor.poll_once() == 0
    assert len(executor.tracked_job_ids) == 1


@pytest.mark.asyncio
async def test_describe_is_chunked(executor, batch_client, job_factory, unit):
    for i in range(150):
        batch_client.submit_job.return_value = {"jobId": f"batch-{i}"}
        await executor.start(job_factory(state=JobState.RUNNING), unit)

    await executor.poll_once()

    chunks = [call.kwargs["jobs"] for call in batch_client.describe_jobs.call_args_list]
    assert [len(chunk) for chunk in chunks] == [100, 50]


@pytest.mark.asyncio
async def test_batch_backend_end_to_end(make_settings, batch_client):
    """Dispatch -> Batch submit -> poll -> SUCCEEDED with the unit released."""
    from feed_dispatch.context import build_context
    from feed_dispatch.models import ArrivalEvent

    ctx = await build_context(
        make_settings(executor_backend="batch", batch_job_definition="VendorFeedProcessorJobDefinition:1"),
        batch_client=batch_client,
    )
    await ctx.resource_pool.start()
    await ctx.resource_pool.wait_for_provisioning()

    job_id = await ctx.dispatcher.dispatch(
        ArrivalEvent(source_location="feeds-bucket", object_key="vendor123/2024-01-01.csv")
    )
    await ctx.scheduler.run_once()
    assert (await ctx.job_queue.get(job_id)).state == JobState.RUNNING

    batch_client.describe_jobs.return_value = {"jobs": [{"jobId": "batch-123", "status": "SUCCEEDED"}]}
    await ctx.executor.poll_once()

    assert (await ctx.job_queue.get(job_id)).state == JobState.SUCCEEDED
    assert ctx.resource_pool.snapshot().assigned_vcpus == 0
