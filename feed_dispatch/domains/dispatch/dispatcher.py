"""
Job Dispatcher - turns arrival events into queued job instances.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from feed_dispatch.core.events.event_bus import DomainEventBus
from feed_dispatch.core.events.job_events import JobSubmittedEvent
from feed_dispatch.core.exceptions import DispatchError, InvalidEventError, TemplateRenderError
from feed_dispatch.domains.job_queue.job_queue import JobQueue
from feed_dispatch.domains.templates.registry import JobTemplateRegistry
from feed_dispatch.models import PLACEHOLDER_PREFIX, ArrivalEvent, JobInstance, JobTemplate

INPUT_BUCKET_PLACEHOLDER = "inputBucket"
OBJECT_KEY_PLACEHOLDER = "objectKey"

JOB_NAME_PREFIX = "vfp-"
JOB_NAME_MAX_LENGTH = 128
_JOB_NAME_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def build_job_name(object_key: str) -> str:
    """Batch-style job name: letters, digits, hyphens and underscores, max 128 chars."""
    slug = _JOB_NAME_INVALID_CHARS.sub("-", object_key).strip("-") or "object"
    return (JOB_NAME_PREFIX + slug)[:JOB_NAME_MAX_LENGTH]


def render_arguments(template: JobTemplate, parameters: Mapping[str, str]) -> List[str]:
    """
    Resolve every ``Ref::<name>`` token of the template's argument schema.

    Raises:
        TemplateRenderError: If any placeholder has no value.
    """
    rendered: List[str] = []
    unresolved: List[str] = []

    for token in template.argument_schema:
        if not token.startswith(PLACEHOLDER_PREFIX):
            rendered.append(token)
            continue
        name = token[len(PLACEHOLDER_PREFIX):]
        value = parameters.get(name)
        if value is None:
            unresolved.append(name)
        else:
            rendered.append(value)

    if unresolved:
        raise TemplateRenderError(template.template_id, unresolved)
    return rendered


def render_environment(template: JobTemplate, context: Mapping[str, str]) -> Dict[str, str]:
    """Template defaults overlaid by the fixed process context (context wins)."""
    return {**template.environment_defaults, **context}


@dataclass
class DispatchOutcome:
    """Result of dispatching one event from a multi-record notification."""

    event: ArrivalEvent
    job_id: Optional[str] = None
    error: Optional[DispatchError] = None

    @property
    def succeeded(self) -> bool:
        return self.job_id is not None


class JobDispatcher:
    """
    Entry point for arrival events.

    Each successful ``dispatch`` creates exactly one job instance. Events are
    not de-duplicated: a redelivered notification produces a second job.
    """

    def __init__(
        self,
        template_registry: JobTemplateRegistry,
        template_id: str,
        job_queue: JobQueue,
        event_bus: DomainEventBus,
        environment_context: Mapping[str, str],
        queue_name: str,
        priority: int = 1,
    ):
        self._template_registry = template_registry
        self._template_id = template_id
        self._job_queue = job_queue
        self._event_bus = event_bus
        self._environment_context = dict(environment_context)
        self._queue_name = queue_name
        self._priority = priority

        logging.info(
            f"JobDispatcher initialiseret (template={template_id}, queue={queue_name})"
        )

    @property
    def template_id(self) -> str:
        return self._template_id

    async def dispatch(self, event: ArrivalEvent) -> str:
        """
        Validate, render and enqueue one job for ``event``.

        Returns:
            The job id of the new job instance.

        Raises:
            InvalidEventError: Empty source location or object key. Nothing is created.
            TemplateRenderError: The template has placeholders this event cannot fill.
        """
        try:
            self._validate(event)
        except InvalidEventError as e:
            logging.warning(f"Dropping arrival event: {e}")
            raise

        template = await self._template_registry.get(self._template_id)

        try:
            job = self._render(template, event)
        except TemplateRenderError as e:
            logging.error(f"Cannot render job for {event.source_location}/{event.object_key}: {e}")
            raise

        position = await self._job_queue.enqueue(job)

        await self._event_bus.publish(
            JobSubmittedEvent(
                job_id=job.job_id,
                template_id=job.template_id,
                source_location=job.source_location,
                object_key=job.object_key,
            )
        )

        logging.info(
            f"Dispatched job {job.job_id} for {event.source_location}/{event.object_key} "
            f"(queue position {position})"
        )
        return job.job_id

    async def dispatch_many(self, events: Iterable[ArrivalEvent]) -> List[DispatchOutcome]:
        """
        Dispatch each event independently. A bad record is reported in its
        outcome and does not stop the others.
        """
        outcomes: List[DispatchOutcome] = []
        for event in events:
            try:
                job_id = await self.dispatch(event)
                outcomes.append(DispatchOutcome(event=event, job_id=job_id))
            except DispatchError as e:
                outcomes.append(DispatchOutcome(event=event, error=e))
        return outcomes

    def _validate(self, event: ArrivalEvent) -> None:
        if not event.source_location or not event.source_location.strip():
            raise InvalidEventError("sourceLocation is empty")
        if not event.object_key or not event.object_key.strip():
            raise InvalidEventError("objectKey is empty")

    def _render(self, template: JobTemplate, event: ArrivalEvent) -> JobInstance:
        parameters = {
            **template.parameter_defaults,
            INPUT_BUCKET_PLACEHOLDER: event.source_location,
            OBJECT_KEY_PLACEHOLDER: event.object_key,
        }
        return JobInstance(
            template_id=template.template_id,
            job_name=build_job_name(event.object_key),
            queue_name=self._queue_name,
            priority=self._priority,
            source_location=event.source_location,
            object_key=event.object_key,
            rendered_arguments=render_arguments(template, parameters),
            rendered_environment=render_environment(template, self._environment_context),
            cpu_request=template.cpu_request,
            memory_request_mib=template.memory_request_mib,
        )
