"""
Capacity providers - the seam between the pool manager and the compute substrate.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from feed_dispatch.models import WorkerCapacityUnit


class CapacityProvider(ABC):
    """
    Provisions and releases worker capacity on the underlying substrate.

    Both calls may take non-trivial wall-clock time; the pool manager runs
    them as background tasks and never awaits them while holding its lock.
    """

    @abstractmethod
    async def launch_unit(self, cpu: int, memory_mib: int) -> WorkerCapacityUnit:
        """Provision one unit and return it once it can accept work."""
        raise NotImplementedError

    @abstractmethod
    async def terminate_unit(self, unit: WorkerCapacityUnit) -> None:
        raise NotImplementedError


class SimulatedCapacityProvider(CapacityProvider):
    """In-process provider. Units become ready after a fixed delay."""

    def __init__(self, provisioning_delay_seconds: float = 0.0):
        self._provisioning_delay_seconds = provisioning_delay_seconds
        self.launched = 0
        self.terminated = 0

    async def launch_unit(self, cpu: int, memory_mib: int) -> WorkerCapacityUnit:
        if self._provisioning_delay_seconds > 0:
            await asyncio.sleep(self._provisioning_delay_seconds)
        else:
            await asyncio.sleep(0)

        unit = WorkerCapacityUnit(cpu_capacity=cpu, memory_capacity_mib=memory_mib)
        self.launched += 1
        logging.debug(f"Simulated unit launched: {unit.unit_id} ({cpu} vCPU / {memory_mib} MiB)")
        return unit

    async def terminate_unit(self, unit: WorkerCapacityUnit) -> None:
        self.terminated += 1
        logging.debug(f"Simulated unit terminated: {unit.unit_id}")
