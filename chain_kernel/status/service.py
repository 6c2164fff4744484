"""
Chain Status Service: decides success or failure of a chain.

Status is recomputed from scratch on every call from (steps, deadline, now).
There is no stored automaton and no incremental shortcut.

Momentum preservation:
  - late but complete   → COMPLETED (integrity intact)
  - on time but missing → FAILED    (integrity broken)
  - in-flight chains are never replanned
"""

from datetime import datetime
from typing import Any, Dict, List

from chain_kernel.models.chain import (
    ChainIntegrity,
    ChainStatus,
    ChainStatusResult,
    ChainStep,
    ExecutionChain,
    StepStatus,
)


class UnknownStepError(KeyError):
    """Raised when a step id is not part of the chain."""

    def __init__(self, chain_id: str, step_id: str):
        self.chain_id = chain_id
        self.step_id = step_id
        super().__init__(f"Unknown step {step_id} in chain {chain_id}")


def _completed_steps(chain: ExecutionChain) -> List[ChainStep]:
    return [s for s in chain.steps if s.status == StepStatus.COMPLETED]


def _missing_required_steps(chain: ExecutionChain) -> List[ChainStep]:
    return [
        s for s in chain.steps
        if s.is_required and s.status != StepStatus.COMPLETED
    ]


def _has_started(chain: ExecutionChain) -> bool:
    return any(
        s.status in (StepStatus.IN_PROGRESS, StepStatus.COMPLETED)
        for s in chain.steps
    )


def _is_complete(chain: ExecutionChain) -> bool:
    """The chain is complete once the anchor itself has been reached."""
    return chain.commitment_envelope.anchor.status == StepStatus.COMPLETED


def _late_by_step_timing(chain: ExecutionChain) -> bool:
    if not chain.steps:
        return False
    return chain.steps[0].start_time > chain.chain_completion_deadline


class ChainStatusService:
    """Stateless. Every method is a pure function of its arguments."""

    def evaluate_chain_status(
        self, chain: ExecutionChain, now: datetime
    ) -> ChainStatusResult:
        """Evaluate status, integrity and lateness for a chain snapshot."""
        completed = _completed_steps(chain)
        missing = _missing_required_steps(chain)

        if not _has_started(chain):
            status = ChainStatus.PENDING
            integrity = ChainIntegrity.INTACT
            was_late = False
            message = "Chain not started"
        elif _is_complete(chain) and not missing:
            status = ChainStatus.COMPLETED
            integrity = ChainIntegrity.INTACT
            was_late = _late_by_step_timing(chain)
            if was_late:
                message = "You made it! Chain completed late but intact."
            else:
                message = "You made it! Chain completed on time."
        elif _is_complete(chain):
            status = ChainStatus.FAILED
            integrity = ChainIntegrity.BROKEN
            was_late = _late_by_step_timing(chain)
            message = f"Chain broke at {missing[0].name}. Let's try again tomorrow."
        else:
            status = ChainStatus.IN_PROGRESS
            integrity = ChainIntegrity.INTACT    # Provisional until the anchor is reached
            was_late = now > chain.chain_completion_deadline
            message = "Chain in progress"

        return ChainStatusResult(
            status=status,
            chain_integrity=integrity,
            message=message,
            completed_steps=[s.name for s in completed],
            missing_steps=[s.name for s in missing],
            was_late=was_late,
        )

    def update_chain_status(self, chain: ExecutionChain, now: datetime) -> ExecutionChain:
        """Return a copy of the chain carrying its recomputed status."""
        result = self.evaluate_chain_status(chain, now)
        return chain.model_copy(update={"status": result.status})

    def should_trigger_replanning(self, chain: ExecutionChain) -> bool:
        # Momentum preservation: a generated chain is only ever degraded,
        # never discarded or regenerated mid-flow.
        return False

    def get_chain_integrity(self, chain: ExecutionChain) -> ChainIntegrity:
        if _missing_required_steps(chain):
            return ChainIntegrity.BROKEN
        return ChainIntegrity.INTACT

    def get_chain_status_message(self, chain: ExecutionChain, now: datetime) -> str:
        return self.evaluate_chain_status(chain, now).message

    def mark_step_completed(
        self, chain: ExecutionChain, step_id: str, now: datetime
    ) -> ExecutionChain:
        """Complete one step, then recompute the chain from scratch."""
        updated = self._update_step(chain, step_id, {
            "status": StepStatus.COMPLETED,
            "skip_reason": None,
            "completed_at": now,
        })
        return self.update_chain_status(updated, now)

    def mark_step_in_progress(
        self, chain: ExecutionChain, step_id: str, now: datetime
    ) -> ExecutionChain:
        """Start one step, then recompute the chain from scratch."""
        updated = self._update_step(chain, step_id, {
            "status": StepStatus.IN_PROGRESS,
            "started_at": now,
        })
        return self.update_chain_status(updated, now)

    def _update_step(
        self, chain: ExecutionChain, step_id: str, changes: Dict[str, Any]
    ) -> ExecutionChain:
        """Apply changes to every occurrence of a step (flat list and envelope)."""
        updated = chain.model_copy(deep=True)
        found = False

        steps = []
        for step in updated.steps:
            if step.step_id == step_id:
                step = step.model_copy(update=changes)
                found = True
            steps.append(step)
        updated.steps = steps

        envelope = updated.commitment_envelope
        for slot in ("prep", "travel_there", "anchor", "travel_back", "recovery"):
            step = getattr(envelope, slot)
            if step.step_id == step_id:
                setattr(envelope, slot, step.model_copy(update=changes))
                found = True

        if not found:
            raise UnknownStepError(chain.chain_id, step_id)
        return updated
