"""Tests for the Exit Gate Service."""

import pytest

from chain_kernel.gate.service import ExitGateService, UnknownConditionError
from chain_kernel.models import ExitGate, GateCondition, GateStatus


class TestCreation:
    def test_default_gate(self):
        gate = ExitGateService.create_default().gate
        assert [c.id for c in gate.conditions] == [
            "keys", "phone", "water", "meds", "cat-fed", "bag-packed",
        ]
        assert not any(c.satisfied for c in gate.conditions)

    def test_from_tags_keeps_order_and_names(self):
        gate = ExitGateService.from_gate_tags(["water", "keys", "phone-charger"]).gate
        assert [c.id for c in gate.conditions] == ["water", "keys", "phone-charger"]
        assert [c.name for c in gate.conditions] == [
            "Water bottle filled", "Keys present", "Phone charger packed",
        ]

    def test_unknown_tag_gets_title_case_name(self):
        gate = ExitGateService.from_gate_tags(["lunch-box"]).gate
        assert gate.conditions[0].name == "Lunch Box"

    def test_empty_gate_is_ready(self):
        evaluation = ExitGateService.from_gate_tags([]).evaluate_gate()
        assert evaluation.status == GateStatus.READY
        assert evaluation.blocked_reasons == []

    def test_gate_snapshot_is_a_copy(self):
        service = ExitGateService.create_default()
        snapshot = service.gate
        snapshot.conditions[0].satisfied = True
        assert service.gate.conditions[0].satisfied is False

    def test_constructor_copies_input(self):
        gate = ExitGate(conditions=[GateCondition(id="keys", name="Keys present")])
        service = ExitGateService(gate)
        gate.conditions[0].satisfied = True
        assert service.evaluate_gate().status == GateStatus.BLOCKED


class TestEvaluation:
    def test_blocked_reasons_in_definition_order(self):
        service = ExitGateService.create_default()
        service.toggle_condition("phone", True)
        evaluation = service.evaluate_gate()
        assert evaluation.status == GateStatus.BLOCKED
        assert evaluation.blocked_reasons == [
            "Keys present", "Water bottle filled", "Meds taken", "Cat fed", "Bag packed",
        ]

    def test_ready_when_all_satisfied(self):
        service = ExitGateService.create_default()
        service.satisfy_all_conditions()
        evaluation = service.evaluate_gate()
        assert evaluation.status == GateStatus.READY
        assert evaluation.blocked_reasons == []

    def test_reset_blocks_again(self):
        service = ExitGateService.create_default()
        service.satisfy_all_conditions()
        gate = service.reset_all_conditions()
        assert not any(c.satisfied for c in gate.conditions)
        assert len(service.evaluate_gate().blocked_reasons) == 6


class TestToggle:
    def test_toggle_on_and_off(self):
        service = ExitGateService.from_gate_tags(["keys"])
        service.toggle_condition("keys", True)
        assert service.evaluate_gate().status == GateStatus.READY
        service.toggle_condition("keys", False)
        assert service.evaluate_gate().status == GateStatus.BLOCKED

    def test_unknown_condition_raises_and_leaves_state(self):
        service = ExitGateService.create_default()
        before = service.gate
        with pytest.raises(UnknownConditionError):
            service.toggle_condition("umbrella", True)
        assert service.gate == before

    def test_duplicate_ids_toggle_first_match(self):
        service = ExitGateService.from_gate_tags(["keys", "keys"])
        gate = service.toggle_condition("keys", True)
        assert [c.satisfied for c in gate.conditions] == [True, False]
        assert service.evaluate_gate().blocked_reasons == ["Keys present"]
