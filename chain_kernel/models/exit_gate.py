"""Exit Gate: the final-departure checklist."""

from enum import Enum
from typing import List

from pydantic import BaseModel


class GateStatus(str, Enum):
    READY = "ready"
    BLOCKED = "blocked"


class GateCondition(BaseModel):
    id: str                                 # e.g., "keys", "cat-fed"
    name: str                               # Display name, used in blocked_reasons
    satisfied: bool = False


class ExitGate(BaseModel):
    """An ordered set of conditions. Independent of any chain's step list."""

    name: str = "Exit readiness"
    conditions: List[GateCondition] = []


class GateEvaluation(BaseModel):
    status: GateStatus
    blocked_reasons: List[str] = []         # Condition names, in definition order
