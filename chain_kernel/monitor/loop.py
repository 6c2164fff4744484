"""
Chain Monitor: the periodic pass over stored chains.

Each cycle, for every non-terminal chain:
  1. Degrade it if its completion deadline has passed
  2. Recompute its status from scratch
  3. Write the new snapshot back, based on the version that was read

The monitor never generates or regenerates a chain. A snapshot that changed
underneath it (stale version) is left for the next cycle.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from croniter import croniter

from chain_kernel.degradation.service import DegradationService
from chain_kernel.models.chain import ChainStatus
from chain_kernel.models.policy import MonitorConfig
from chain_kernel.status.service import ChainStatusService
from chain_kernel.store.chains import ChainStore, StaleChainError

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (ChainStatus.COMPLETED, ChainStatus.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChainMonitor:
    """Applies degradation and status recomputation to stored chains."""

    def __init__(
        self,
        store: ChainStore,
        config: Optional[MonitorConfig] = None,
        degradation: Optional[DegradationService] = None,
        status: Optional[ChainStatusService] = None,
    ):
        self.store = store
        self.config = config or MonitorConfig()
        self.degradation = degradation or DegradationService()
        self.status_service = status or ChainStatusService()
        self._running = False
        self.cycles = 0

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    def next_run_after(self, moment: datetime) -> datetime:
        """Next evaluation tick strictly after moment."""
        return croniter(self.config.schedule, moment).get_next(datetime)

    def reconcile_once(self, now: datetime) -> List[dict]:
        """
        Run a single evaluation cycle at the given time.
        Returns one result per chain whose snapshot changed.
        """
        results = []
        for chain, version in self.store.list_all():
            if self.config.skip_terminal and chain.status in TERMINAL_STATUSES:
                continue

            degraded = self.degradation.degrade_if_late(chain, now)
            updated = self.status_service.update_chain_status(degraded, now)
            if updated == chain:
                continue

            try:
                new_version = self.store.replace(updated, version)
            except StaleChainError as e:
                logger.warning("Skipping chain %s this cycle: %s", chain.chain_id, e)
                continue

            results.append({
                "chain_id": chain.chain_id,
                "anchor_id": chain.anchor_id,
                "previous_status": chain.status.value,
                "status": updated.status.value,
                "dropped_steps": self.degradation.get_dropped_steps(chain, updated),
                "version": new_version,
            })

        self.cycles += 1
        logger.info(
            "Monitor cycle %d at %s: %d chain(s) updated",
            self.cycles, now.isoformat(), len(results),
        )
        return results

    async def run_async(
        self,
        stop_event: Optional[asyncio.Event] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Run the monitor until stop_event is set (or max_cycles is reached),
        sleeping until the next cron tick between cycles.
        """
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()
        clock = clock or _utcnow
        completed = 0

        try:
            while not stop_event.is_set():
                now = clock()
                self.reconcile_once(now)
                completed += 1
                if self.config.max_cycles and completed >= self.config.max_cycles:
                    break

                delay = (self.next_run_after(now) - now).total_seconds()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=max(delay, 0))
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
