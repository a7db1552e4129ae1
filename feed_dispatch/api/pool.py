from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from feed_dispatch.dependencies import get_resource_pool, get_template_registry
from feed_dispatch.domains.resource_pool.pool_manager import ResourcePoolManager
from feed_dispatch.domains.templates.registry import JobTemplateRegistry
from feed_dispatch.models import PoolSnapshot

router = APIRouter(prefix="/api", tags=["pool"])


@router.get("/pool", response_model=PoolSnapshot)
async def get_pool(resource_pool: ResourcePoolManager = Depends(get_resource_pool)) -> PoolSnapshot:
    """Current worker capacity units and vCPU accounting."""
    return resource_pool.snapshot()


@router.get("/templates")
async def list_templates(
    registry: JobTemplateRegistry = Depends(get_template_registry),
) -> List[Dict[str, Any]]:
    return [template.describe() for template in await registry.list_templates()]
