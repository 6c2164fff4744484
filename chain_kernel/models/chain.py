"""Execution Chain: the generated, trackable sequence around one anchor."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from chain_kernel.models.anchor import Anchor


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded to the nearest minute."""
    return int(round((end - start).total_seconds() / 60.0))


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class StepRole(str, Enum):
    CHAIN_STEP = "chain-step"
    ANCHOR = "anchor"
    RECOVERY = "recovery"
    EXIT_GATE = "exit-gate"


class ChainStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ChainIntegrity(str, Enum):
    INTACT = "intact"
    BROKEN = "broken"


class StepTemplate(BaseModel):
    """A step before it is placed on the timeline."""

    key: str                                # e.g., "bathroom", "take-meds"
    name: str
    duration_minutes: float = Field(ge=0)   # May be fractional after risk inflation
    is_required: bool = True
    can_skip_when_late: bool = False
    role: StepRole = StepRole.CHAIN_STEP


class ChainStep(BaseModel):
    """A unit of preparation, travel or recovery work."""

    step_id: str
    chain_id: str
    name: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int = Field(ge=0)
    is_required: bool = True
    can_skip_when_late: bool = False
    status: StepStatus = StepStatus.PENDING
    skip_reason: Optional[str] = None
    role: StepRole = StepRole.CHAIN_STEP
    started_at: Optional[datetime] = None   # Stamped by mark_step_in_progress
    completed_at: Optional[datetime] = None # Stamped by mark_step_completed

    @model_validator(mode="after")
    def _check_timing(self) -> "ChainStep":
        if self.end_time < self.start_time:
            raise ValueError(f"step '{self.name}' ends before it starts")
        expected = minutes_between(self.start_time, self.end_time)
        if self.duration_minutes != expected:
            raise ValueError(
                f"step '{self.name}' duration {self.duration_minutes} "
                f"does not match its window ({expected} minutes)"
            )
        return self


class CommitmentEnvelope(BaseModel):
    """
    The five contiguous slots bracketing an anchor:
    prep → travel_there → anchor → travel_back → recovery.
    """

    envelope_id: str
    prep: ChainStep
    travel_there: ChainStep
    anchor: ChainStep
    travel_back: ChainStep
    recovery: ChainStep

    @model_validator(mode="after")
    def _check_contiguous(self) -> "CommitmentEnvelope":
        pairs = [
            (self.prep, self.travel_there),
            (self.travel_there, self.anchor),
            (self.anchor, self.travel_back),
            (self.travel_back, self.recovery),
        ]
        for earlier, later in pairs:
            if earlier.end_time != later.start_time:
                raise ValueError(
                    f"envelope gap between '{earlier.name}' and '{later.name}'"
                )
        return self

    def slots(self) -> List[ChainStep]:
        return [
            self.prep,
            self.travel_there,
            self.anchor,
            self.travel_back,
            self.recovery,
        ]


class ExecutionChain(BaseModel):
    """
    One chain per anchor per day. Treated as a value: every evaluation
    returns a new chain rather than patching this one.
    """

    chain_id: str
    anchor_id: str
    anchor: Anchor                          # Snapshot at generation time
    chain_completion_deadline: datetime
    steps: List[ChainStep]                  # Chronological
    commitment_envelope: CommitmentEnvelope
    status: ChainStatus = ChainStatus.PENDING
    metadata: dict = {}

    @model_validator(mode="after")
    def _check_anchor_slot(self) -> "ExecutionChain":
        slot = self.commitment_envelope.anchor
        if slot.start_time != self.anchor.start or slot.end_time != self.anchor.end:
            raise ValueError("envelope anchor slot must mirror the anchor window")
        return self


class ChainStatusResult(BaseModel):
    """Outcome of one status recomputation."""

    status: ChainStatus
    chain_integrity: ChainIntegrity
    message: str
    completed_steps: List[str] = []
    missing_steps: List[str] = []
    was_late: bool = False
