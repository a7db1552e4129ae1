import asyncio
import logging
import math
from datetime import timedelta
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set, Tuple

from feed_dispatch.core.events.event_bus import DomainEventBus
from feed_dispatch.core.events.job_events import (
    CapacityUnitDeprovisionedEvent,
    CapacityUnitProvisionedEvent,
)
from feed_dispatch.core.exceptions import CapacityUnavailableError, UnitNotFoundError
from feed_dispatch.domains.resource_pool.capacity_provider import CapacityProvider
from feed_dispatch.models import PoolSnapshot, WorkerCapacityUnit, utcnow

if TYPE_CHECKING:
    from feed_dispatch.domains.execution.executor import JobExecutor


class ResourcePoolManager:
    """
    Keeps a pool of uniform worker capacity units between a minimum and a
    maximum vCPU budget.

    Units are launched when queued demand exceeds idle plus pending units and
    terminated after sitting idle above the minimum for the grace period.
    Provisioned plus pending vCPUs never exceed ``max_vcpus``, so assigned
    capacity cannot either.
    """

    def __init__(
        self,
        capacity_provider: CapacityProvider,
        event_bus: DomainEventBus,
        *,
        min_vcpus: int,
        max_vcpus: int,
        unit_vcpus: int,
        unit_memory_mib: int,
        desired_vcpus: int = 0,
        scale_down_grace_seconds: float = 300.0,
        executor: Optional["JobExecutor"] = None,
    ):
        if min_vcpus > max_vcpus:
            raise ValueError(f"min_vcpus ({min_vcpus}) exceeds max_vcpus ({max_vcpus})")

        self._provider = capacity_provider
        self._event_bus = event_bus
        self._executor = executor

        self.min_vcpus = min_vcpus
        self.max_vcpus = max_vcpus
        self.unit_vcpus = unit_vcpus
        self.unit_memory_mib = unit_memory_mib
        self._scale_down_grace = timedelta(seconds=scale_down_grace_seconds)

        self._max_units = max_vcpus // unit_vcpus
        self._min_units = min(math.ceil(min_vcpus / unit_vcpus), self._max_units)
        self._initial_units = min(
            max(self._min_units, math.ceil(desired_vcpus / unit_vcpus)), self._max_units
        )

        self._units: Dict[str, WorkerCapacityUnit] = {}
        # Units being deprovisioned stay in _units (and count toward the maximum)
        # until the substrate confirms termination
        self._terminating: Set[str] = set()
        self._pending: Set[asyncio.Task] = set()
        self._lock = asyncio.Lock()

        logging.info(
            f"ResourcePoolManager initialiseret: {self._min_units}-{self._max_units} units "
            f"of {unit_vcpus} vCPU / {unit_memory_mib} MiB"
        )

    @property
    def max_units(self) -> int:
        return self._max_units

    @property
    def min_units(self) -> int:
        return self._min_units

    async def start(self) -> None:
        """Provision the initial pool (minimum or desired size, whichever is larger)."""
        async with self._lock:
            missing = self._initial_units - len(self._units) - len(self._pending)
            for _ in range(max(missing, 0)):
                self._launch_locked()
        if missing > 0:
            logging.info(f"Provisioning initial pool of {self._initial_units} unit(s)")

    async def stop(self) -> None:
        """Cancel in-flight provisioning. Running units are left to the substrate."""
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logging.info("ResourcePoolManager stopped")

    async def wait_for_provisioning(self) -> None:
        """Wait until every in-flight launch has finished (or failed)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def fits_unit_shape(self, cpu: int, memory_mib: int) -> bool:
        return cpu <= self.unit_vcpus and memory_mib <= self.unit_memory_mib

    async def has_capacity_for(self, cpu: int, memory_mib: int) -> bool:
        """True if an idle unit could take a request of this size right now."""
        async with self._lock:
            return self._find_idle_unit(cpu, memory_mib) is not None

    async def request_capacity(
        self, cpu: int, memory_mib: int, *, job_id: str
    ) -> WorkerCapacityUnit:
        """
        Assign an idle unit to ``job_id`` without waiting for provisioning.

        Raises:
            CapacityUnavailableError: No idle unit fits right now. Transient;
                the caller keeps the job queued and asks again later.
            ValueError: The job already occupies a unit.
        """
        async with self._lock:
            for unit in self._units.values():
                if unit.assigned_job_id == job_id:
                    raise ValueError(f"Job {job_id} already occupies unit {unit.unit_id}")

            unit = self._find_idle_unit(cpu, memory_mib)
            if unit is None:
                raise CapacityUnavailableError(cpu, memory_mib)

            if self._assigned_vcpus() + unit.cpu_capacity > self.max_vcpus:
                raise CapacityUnavailableError(cpu, memory_mib)

            unit.assigned_job_id = job_id
            unit.idle_since = None
            logging.debug(f"Unit {unit.unit_id} assigned to job {job_id}")
            return unit.model_copy()

    async def release(self, unit_id: str) -> None:
        async with self._lock:
            unit = self._units.get(unit_id)
            if unit is None:
                raise UnitNotFoundError(unit_id)
            if unit.assigned_job_id is None:
                logging.warning(f"Unit {unit_id} released while already idle")
                return
            logging.debug(f"Unit {unit_id} released by job {unit.assigned_job_id}")
            unit.assigned_job_id = None
            unit.idle_since = utcnow()

    async def signal_termination(self, job_id: str) -> bool:
        """
        Ask the executor to stop ``job_id``. Best-effort: the job only becomes
        CANCELLED when the executor confirms.

        Returns:
            True if the job currently occupies a unit and the signal was sent.
        """
        async with self._lock:
            holder = next(
                (u for u in self._units.values() if u.assigned_job_id == job_id), None
            )

        if holder is None:
            logging.warning(f"Termination requested for job {job_id}, but it holds no unit")
            return False
        if self._executor is None:
            logging.error(f"No executor attached; cannot terminate job {job_id}")
            return False

        logging.info(f"Signalling termination of job {job_id} on unit {holder.unit_id}")
        await self._executor.terminate(job_id)
        return True

    async def reconcile(self, queued_requests: Sequence[Tuple[int, int]]) -> int:
        """
        Scale the pool toward the queued demand.

        Args:
            queued_requests: (cpu, memory_mib) of every QUEUED job.

        Returns:
            Number of units whose launch was started.
        """
        launched = 0
        to_terminate: List[WorkerCapacityUnit] = []

        async with self._lock:
            demand = 0
            for cpu, memory_mib in queued_requests:
                if self.fits_unit_shape(cpu, memory_mib):
                    demand += 1
                else:
                    logging.error(
                        f"Queued request of {cpu} vCPU / {memory_mib} MiB can never fit "
                        f"a {self.unit_vcpus} vCPU / {self.unit_memory_mib} MiB unit"
                    )

            idle = sum(
                1
                for u in self._units.values()
                if u.is_idle and u.unit_id not in self._terminating
            )
            shortfall = demand - idle - len(self._pending)
            headroom = self._max_units - len(self._units) - len(self._pending)

            for _ in range(max(min(shortfall, headroom), 0)):
                self._launch_locked()
                launched += 1

            if demand == 0:
                to_terminate = self._collect_expired_idle_locked()

        for unit in to_terminate:
            await self._terminate(unit, reason="idle beyond grace period")

        if launched:
            logging.info(f"Scaling up: launching {launched} unit(s) for {demand} queued job(s)")
        return launched

    def snapshot(self) -> PoolSnapshot:
        units = [u.model_copy() for u in self._units.values()]
        return PoolSnapshot(
            min_vcpus=self.min_vcpus,
            max_vcpus=self.max_vcpus,
            provisioned_vcpus=sum(u.cpu_capacity for u in units),
            pending_vcpus=len(self._pending) * self.unit_vcpus,
            assigned_vcpus=sum(u.cpu_capacity for u in units if not u.is_idle),
            units=units,
        )

    # --- internals (caller holds self._lock where noted) ---

    def _find_idle_unit(self, cpu: int, memory_mib: int) -> Optional[WorkerCapacityUnit]:
        idle = [
            u
            for u in self._units.values()
            if u.is_idle and u.unit_id not in self._terminating and u.fits(cpu, memory_mib)
        ]
        return idle[0] if idle else None

    def _assigned_vcpus(self) -> int:
        return sum(u.cpu_capacity for u in self._units.values() if not u.is_idle)

    def _launch_locked(self) -> None:
        task = asyncio.create_task(self._launch(), name="capacity-unit-launch")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _launch(self) -> None:
        try:
            unit = await self._provider.launch_unit(self.unit_vcpus, self.unit_memory_mib)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Shortfall is recomputed on the next reconcile, so the launch is retried there
            logging.error(f"Failed to provision worker capacity unit: {e}", exc_info=True)
            return

        async with self._lock:
            unit.assigned_job_id = None
            unit.idle_since = utcnow()
            self._units[unit.unit_id] = unit

        logging.info(f"Worker capacity unit ready: {unit.unit_id}")
        await self._event_bus.publish(
            CapacityUnitProvisionedEvent(
                unit_id=unit.unit_id,
                cpu_capacity=unit.cpu_capacity,
                memory_capacity_mib=unit.memory_capacity_mib,
            )
        )

    def _collect_expired_idle_locked(self) -> List[WorkerCapacityUnit]:
        surplus = len(self._units) - len(self._terminating) - self._min_units
        if surplus <= 0:
            return []

        now = utcnow()
        expired = sorted(
            (
                u
                for u in self._units.values()
                if u.is_idle
                and u.unit_id not in self._terminating
                and u.idle_since
                and now - u.idle_since >= self._scale_down_grace
            ),
            key=lambda u: u.idle_since,
        )[:surplus]

        for unit in expired:
            self._terminating.add(unit.unit_id)
        return expired

    async def _terminate(self, unit: WorkerCapacityUnit, reason: str) -> None:
        try:
            await self._provider.terminate_unit(unit)
        except Exception as e:
            # Still alive in the substrate: keep tracking it so the next reconcile retries
            logging.error(f"Failed to terminate unit {unit.unit_id}: {e}", exc_info=True)
            async with self._lock:
                self._terminating.discard(unit.unit_id)
            return

        async with self._lock:
            self._terminating.discard(unit.unit_id)
            self._units.pop(unit.unit_id, None)

        logging.info(f"Worker capacity unit deprovisioned: {unit.unit_id} ({reason})")
        await self._event_bus.publish(
            CapacityUnitDeprovisionedEvent(unit_id=unit.unit_id, reason=reason)
        )
