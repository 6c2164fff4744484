"""Chain Kernel data models."""

from chain_kernel.models.anchor import Anchor, AnchorType
from chain_kernel.models.chain import (
    ChainIntegrity,
    ChainStatus,
    ChainStatusResult,
    ChainStep,
    CommitmentEnvelope,
    ExecutionChain,
    StepRole,
    StepStatus,
    StepTemplate,
    minutes_between,
)
from chain_kernel.models.context import (
    DailyContext,
    DayFlags,
    DurationPriors,
    GenerationContext,
    MedsContext,
    TravelEstimate,
)
from chain_kernel.models.exit_gate import (
    ExitGate,
    GateCondition,
    GateEvaluation,
    GateStatus,
)
from chain_kernel.models.policy import ChainPolicy, MonitorConfig

__all__ = [
    "Anchor",
    "AnchorType",
    "ChainIntegrity",
    "ChainPolicy",
    "ChainStatus",
    "ChainStatusResult",
    "ChainStep",
    "CommitmentEnvelope",
    "DailyContext",
    "DayFlags",
    "DurationPriors",
    "ExecutionChain",
    "ExitGate",
    "GateCondition",
    "GateEvaluation",
    "GateStatus",
    "GenerationContext",
    "MedsContext",
    "MonitorConfig",
    "StepRole",
    "StepStatus",
    "StepTemplate",
    "TravelEstimate",
    "minutes_between",
]
