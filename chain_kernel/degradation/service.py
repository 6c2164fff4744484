"""
Degradation Service: drops optional steps once a chain is running late.

Behavioral Contract:
- Triggered purely by time: now > chain_completion_deadline
- Only steps that are skippable AND not required are skipped
- Required steps are never modified, whatever their flags or status
- Pure and idempotent: degrading a degraded chain changes nothing
"""

import logging
from datetime import datetime
from typing import List, Optional

from chain_kernel.models.chain import ChainStep, ExecutionChain, StepStatus
from chain_kernel.models.policy import ChainPolicy

logger = logging.getLogger(__name__)


class DegradationService:
    """Stateless. Operates on chain snapshots and returns new ones."""

    def __init__(self, policy: Optional[ChainPolicy] = None):
        self.policy = policy or ChainPolicy()

    @property
    def skip_reason(self) -> str:
        return self.policy.late_skip_reason

    def should_trigger_degradation(self, chain: ExecutionChain, now: datetime) -> bool:
        return now > chain.chain_completion_deadline

    def degrade_chain(self, chain: ExecutionChain) -> ExecutionChain:
        """
        Return a copy of the chain with every droppable step skipped.

        Envelope slots get the same treatment so that a step surfaced in both
        places never disagrees with itself.
        """
        degraded = chain.model_copy(deep=True)
        degraded.steps = [self._degrade_step(s) for s in degraded.steps]

        envelope = degraded.commitment_envelope
        envelope.prep = self._degrade_step(envelope.prep)
        envelope.travel_there = self._degrade_step(envelope.travel_there)
        envelope.anchor = self._degrade_step(envelope.anchor)
        envelope.travel_back = self._degrade_step(envelope.travel_back)
        envelope.recovery = self._degrade_step(envelope.recovery)

        dropped = self.get_dropped_steps(chain, degraded)
        if dropped:
            logger.info(
                "Chain %s degraded, dropped: %s", chain.chain_id, ", ".join(dropped)
            )
        return degraded

    def degrade_if_late(self, chain: ExecutionChain, now: datetime) -> ExecutionChain:
        if self.should_trigger_degradation(chain, now):
            return self.degrade_chain(chain)
        return chain

    def get_dropped_steps(
        self, original: ExecutionChain, degraded: ExecutionChain
    ) -> List[str]:
        """Names of steps newly skipped for lateness."""
        previously_skipped = {
            s.step_id for s in original.steps if s.status == StepStatus.SKIPPED
        }
        return [
            s.name
            for s in degraded.steps
            if s.status == StepStatus.SKIPPED
            and s.skip_reason == self.skip_reason
            and s.step_id not in previously_skipped
        ]

    def get_preserved_steps(self, chain: ExecutionChain) -> List[str]:
        return [s.name for s in chain.steps if s.status != StepStatus.SKIPPED]

    def are_required_steps_preserved(self, chain: ExecutionChain) -> bool:
        return not any(
            s.is_required and s.status == StepStatus.SKIPPED for s in chain.steps
        )

    def _degrade_step(self, step: ChainStep) -> ChainStep:
        if step.can_skip_when_late and not step.is_required:
            return step.model_copy(
                update={"status": StepStatus.SKIPPED, "skip_reason": self.skip_reason}
            )
        return step
