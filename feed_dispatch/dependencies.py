from fastapi import Request

from .config import Settings
from .context import DispatchContext
from .core.cqrs.command_bus import CommandBus
from .domains.dispatch.dispatcher import JobDispatcher
from .domains.execution.scheduler import JobScheduler
from .domains.job_queue.job_queue import JobQueue
from .domains.resource_pool.pool_manager import ResourcePoolManager
from .domains.templates.registry import JobTemplateRegistry


def get_context(request: Request) -> DispatchContext:
    """Hent DispatchContext bygget i app lifespan."""
    return request.app.state.context


def get_settings(request: Request) -> Settings:
    return get_context(request).settings


def get_command_bus(request: Request) -> CommandBus:
    return get_context(request).command_bus


def get_dispatcher(request: Request) -> JobDispatcher:
    return get_context(request).dispatcher


def get_job_queue(request: Request) -> JobQueue:
    return get_context(request).job_queue


def get_scheduler(request: Request) -> JobScheduler:
    return get_context(request).scheduler


def get_resource_pool(request: Request) -> ResourcePoolManager:
    return get_context(request).resource_pool


def get_template_registry(request: Request) -> JobTemplateRegistry:
    return get_context(request).template_registry
