"""
Pytest configuration og shared fixtures.
"""

import pytest
import pytest_asyncio

from feed_dispatch.config import Settings
from feed_dispatch.context import build_context
from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.core.events.event_bus import DomainEventBus
from feed_dispatch.core.job_repository import JobRepository
from feed_dispatch.core.job_state_machine import JobStateMachine
from feed_dispatch.models import ArrivalEvent, JobInstance, JobTemplate


@pytest.fixture
def make_settings(tmp_path):
    """Settings factory with logs under tmp_path and jobs that wait for manual completion."""

    def _make(**overrides) -> Settings:
        values = {
            "log_file_path": str(tmp_path / "logs" / "feed_dispatch.log"),
            "simulated_job_seconds": None,
            "scale_down_grace_seconds": 300,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def context(settings):
    """Fully wired dispatch core: 1-8 vCPU pool, simulated executor, manual completion."""
    ctx = await build_context(settings)
    yield ctx
    await ctx.executor.shutdown()
    await ctx.resource_pool.stop()


@pytest.fixture
def event_bus() -> DomainEventBus:
    return DomainEventBus()


@pytest.fixture
def command_bus() -> CommandBus:
    return CommandBus()


@pytest.fixture
def job_repository() -> JobRepository:
    return JobRepository()


@pytest.fixture
def state_machine(job_repository, event_bus) -> JobStateMachine:
    return JobStateMachine(job_repository=job_repository, event_bus=event_bus)


@pytest.fixture
def template() -> JobTemplate:
    return JobTemplate(
        template_id="VendorFeedProcessorJobDefinition:1",
        container_image="vendor-feed-processor-batch-job:latest",
        cpu_request=1,
        memory_request_mib=512,
        argument_schema=("--inputBucket", "Ref::inputBucket", "--objectKey", "Ref::objectKey"),
    )


@pytest.fixture
def arrival() -> ArrivalEvent:
    return ArrivalEvent(source_location="feeds-bucket", object_key="vendor123/2024-01-01.csv")


def make_job(**overrides) -> JobInstance:
    values = {
        "template_id": "VendorFeedProcessorJobDefinition:1",
        "job_name": "vfp-test",
        "queue_name": "VendorFeedProcessorJobQueue",
        "source_location": "feeds-bucket",
        "object_key": "vendorA/file.csv",
        "rendered_arguments": ["--inputBucket", "feeds-bucket", "--objectKey", "vendorA/file.csv"],
        "rendered_environment": {"AWSRegion": "us-east-1"},
        "cpu_request": 1,
        "memory_request_mib": 512,
    }
    values.update(overrides)
    return JobInstance(**values)


@pytest.fixture
def job_factory():
    return make_job
