"""
Application context - every component of the dispatch core, wired explicitly.

There are no module-level singletons: ``build_context`` constructs each
component with its collaborators as constructor arguments. The FastAPI app
keeps the result on ``app.state.context``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from feed_dispatch.config import Settings
from feed_dispatch.core.cqrs.command_bus import CommandBus
from feed_dispatch.core.events.event_bus import DomainEventBus
from feed_dispatch.core.job_repository import JobRepository
from feed_dispatch.core.job_state_machine import JobStateMachine
from feed_dispatch.domains.dispatch.dispatcher import JobDispatcher
from feed_dispatch.domains.dispatch.registration import register_dispatch_domain
from feed_dispatch.domains.execution.batch_executor import BatchJobExecutor
from feed_dispatch.domains.execution.executor import JobExecutor, SimulatedJobExecutor
from feed_dispatch.domains.execution.registration import register_execution_domain
from feed_dispatch.domains.execution.scheduler import JobScheduler
from feed_dispatch.domains.job_queue.job_queue import JobQueue
from feed_dispatch.domains.resource_pool.capacity_provider import (
    CapacityProvider,
    SimulatedCapacityProvider,
)
from feed_dispatch.domains.resource_pool.pool_manager import ResourcePoolManager
from feed_dispatch.domains.templates.registry import JobTemplateRegistry
from feed_dispatch.models import JobTemplate


@dataclass
class DispatchContext:
    settings: Settings
    event_bus: DomainEventBus
    command_bus: CommandBus
    job_repository: JobRepository
    state_machine: JobStateMachine
    template_registry: JobTemplateRegistry
    capacity_provider: CapacityProvider
    executor: JobExecutor
    resource_pool: ResourcePoolManager
    job_queue: JobQueue
    dispatcher: JobDispatcher
    scheduler: JobScheduler


def template_from_settings(settings: Settings) -> JobTemplate:
    return JobTemplate(
        template_id=settings.template_id,
        container_image=settings.container_image,
        cpu_request=settings.job_vcpus,
        memory_request_mib=settings.job_memory_mib,
        argument_schema=tuple(settings.job_command),
        environment_defaults=settings.job_environment,
    )


def build_executor(
    settings: Settings, command_bus: CommandBus, batch_client: Optional[Any] = None
) -> JobExecutor:
    if settings.executor_backend == "batch":
        return BatchJobExecutor(
            command_bus=command_bus,
            job_queue_name=settings.job_queue_name,
            job_definition=settings.batch_job_definition,
            region_name=settings.region,
            poll_interval_seconds=settings.batch_poll_interval_seconds,
            client=batch_client,
        )
    return SimulatedJobExecutor(command_bus=command_bus, run_seconds=settings.simulated_job_seconds)


async def build_context(
    settings: Settings,
    *,
    capacity_provider: Optional[CapacityProvider] = None,
    executor: Optional[JobExecutor] = None,
    batch_client: Optional[Any] = None,
) -> DispatchContext:
    """
    Construct and wire all components for one process.

    ``capacity_provider``, ``executor`` and ``batch_client`` replace the
    settings-selected implementations, mainly for tests.
    """
    event_bus = DomainEventBus()
    command_bus = CommandBus()
    job_repository = JobRepository()
    state_machine = JobStateMachine(job_repository=job_repository, event_bus=event_bus)

    template_registry = JobTemplateRegistry()
    await template_registry.register(template_from_settings(settings))

    if capacity_provider is None:
        capacity_provider = SimulatedCapacityProvider(
            provisioning_delay_seconds=settings.provisioning_delay_seconds
        )
    if executor is None:
        executor = build_executor(settings, command_bus, batch_client=batch_client)

    resource_pool = ResourcePoolManager(
        capacity_provider,
        event_bus,
        min_vcpus=settings.min_vcpus,
        max_vcpus=settings.max_vcpus,
        unit_vcpus=settings.unit_vcpus,
        unit_memory_mib=settings.unit_memory_mib,
        desired_vcpus=settings.desired_vcpus,
        scale_down_grace_seconds=settings.scale_down_grace_seconds,
        executor=executor,
    )

    job_queue = JobQueue(
        job_repository=job_repository,
        state_machine=state_machine,
        resource_pool=resource_pool,
    )

    dispatcher = JobDispatcher(
        template_registry=template_registry,
        template_id=settings.template_id,
        job_queue=job_queue,
        event_bus=event_bus,
        environment_context=settings.environment_context,
        queue_name=settings.job_queue_name,
        priority=settings.job_priority,
    )

    scheduler = JobScheduler(
        job_queue=job_queue,
        resource_pool=resource_pool,
        executor=executor,
        interval_seconds=settings.scheduler_interval_seconds,
        job_history_hours=settings.job_history_hours,
    )

    register_dispatch_domain(command_bus, dispatcher)
    register_execution_domain(command_bus, scheduler)

    logging.info(
        f"Dispatch context bygget (stage={settings.stage}, executor={settings.executor_backend})"
    )

    return DispatchContext(
        settings=settings,
        event_bus=event_bus,
        command_bus=command_bus,
        job_repository=job_repository,
        state_machine=state_machine,
        template_registry=template_registry,
        capacity_provider=capacity_provider,
        executor=executor,
        resource_pool=resource_pool,
        job_queue=job_queue,
        dispatcher=dispatcher,
        scheduler=scheduler,
    )
