"""
Job Template Registry - write-once store of job templates.
"""

import asyncio
import logging
from typing import Dict, List

from feed_dispatch.core.exceptions import TemplateAlreadyRegisteredError, TemplateNotFoundError
from feed_dispatch.models import JobTemplate


class JobTemplateRegistry:
    """
    Holds the immutable job templates shared by all submitted jobs.

    Changing job behaviour means registering a new template id and pointing the
    dispatcher at it; an existing entry is never replaced.
    """

    def __init__(self):
        self._templates: Dict[str, JobTemplate] = {}
        self._lock = asyncio.Lock()

    async def register(self, template: JobTemplate) -> str:
        async with self._lock:
            if template.template_id in self._templates:
                raise TemplateAlreadyRegisteredError(template.template_id)
            self._templates[template.template_id] = template

        logging.info(
            f"Job template registered: {template.template_id} "
            f"(image={template.container_image}, cpu={template.cpu_request}, "
            f"memory={template.memory_request_mib}MiB)"
        )
        return template.template_id

    async def get(self, template_id: str) -> JobTemplate:
        async with self._lock:
            template = self._templates.get(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)
        return template

    async def list_templates(self) -> List[JobTemplate]:
        async with self._lock:
            return list(self._templates.values())
