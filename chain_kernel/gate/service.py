"""
Exit Gate Service: owns one exit gate and answers "can I leave yet?".

The gate is independent of any chain. Conditions keep their definition order,
which is also the order of blocked_reasons.
"""

from typing import Iterable, Optional

from chain_kernel.models.exit_gate import (
    ExitGate,
    GateCondition,
    GateEvaluation,
    GateStatus,
)

CONDITION_NAMES = {
    "keys": "Keys present",
    "phone": "Phone",
    "water": "Water bottle filled",
    "meds": "Meds taken",
    "cat-fed": "Cat fed",
    "bag-packed": "Bag packed",
    "phone-charger": "Phone charger packed",
}

DEFAULT_CONDITION_IDS = ["keys", "phone", "water", "meds", "cat-fed", "bag-packed"]


class UnknownConditionError(KeyError):
    """Raised when toggling a condition id the gate does not define."""

    def __init__(self, condition_id: str):
        self.condition_id = condition_id
        super().__init__(f"Unknown gate condition: {condition_id}")


def _condition_name(condition_id: str) -> str:
    if condition_id in CONDITION_NAMES:
        return CONDITION_NAMES[condition_id]
    return condition_id.replace("-", " ").replace("_", " ").strip().title()


class ExitGateService:
    """Holds a private copy of the gate; callers only ever see snapshots."""

    def __init__(self, gate: Optional[ExitGate] = None):
        self._gate = gate.model_copy(deep=True) if gate else ExitGate()

    @classmethod
    def create_default(cls) -> "ExitGateService":
        return cls.from_gate_tags(DEFAULT_CONDITION_IDS)

    @classmethod
    def from_gate_tags(cls, tags: Iterable[str]) -> "ExitGateService":
        """Build a gate with one unsatisfied condition per tag, in order."""
        conditions = [
            GateCondition(id=tag, name=_condition_name(tag)) for tag in tags
        ]
        return cls(ExitGate(conditions=conditions))

    @property
    def gate(self) -> ExitGate:
        return self._gate.model_copy(deep=True)

    def evaluate_gate(self) -> GateEvaluation:
        blocked = [c.name for c in self._gate.conditions if not c.satisfied]
        if blocked:
            return GateEvaluation(status=GateStatus.BLOCKED, blocked_reasons=blocked)
        return GateEvaluation(status=GateStatus.READY)

    def toggle_condition(self, condition_id: str, satisfied: bool) -> ExitGate:
        """
        Set the first condition with this id. Duplicate ids are allowed;
        only the first match is touched.
        """
        for condition in self._gate.conditions:
            if condition.id == condition_id:
                condition.satisfied = satisfied
                return self.gate
        raise UnknownConditionError(condition_id)

    def satisfy_all_conditions(self) -> ExitGate:
        for condition in self._gate.conditions:
            condition.satisfied = True
        return self.gate

    def reset_all_conditions(self) -> ExitGate:
        for condition in self._gate.conditions:
            condition.satisfied = False
        return self.gate
