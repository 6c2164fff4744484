"""Tests for the Chain Generator."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from chain_kernel.generator.chain_generator import (
    AnchorValidationError,
    ChainGenerator,
    TableTravelEstimator,
)
from chain_kernel.generator.templates import prep_templates
from chain_kernel.models import (
    Anchor,
    AnchorType,
    ChainPolicy,
    DurationPriors,
    GenerationContext,
    StepRole,
    StepTemplate,
    TravelEstimate,
)

T0 = datetime(2025, 2, 1, 10, 0, tzinfo=timezone.utc)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 2, 1, hour, minute, tzinfo=timezone.utc)


def _make_anchor(
    anchor_id: str = "anchor_1",
    start: datetime = T0,
    minutes: int = 60,
    anchor_type: AnchorType = AnchorType.OTHER,
    location: str = None,
) -> Anchor:
    return Anchor(
        id=anchor_id,
        start=start,
        end=start + timedelta(minutes=minutes),
        title="Lecture",
        location=location,
        type=anchor_type,
    )


class _FailingEstimator:
    def estimate(self, origin, destination):
        raise ConnectionError("maps backend unavailable")


class _FixedEstimator:
    def __init__(self, there, back):
        self.there = there
        self.back = back
        self.calls = []

    def estimate(self, origin, destination):
        self.calls.append((origin, destination))
        return TravelEstimate(there_minutes=self.there, back_minutes=self.back)


class TestTimeline:
    def test_default_chain_layout(self):
        chain = ChainGenerator().generate_chain(_make_anchor())

        names = [s.name for s in chain.steps]
        assert names == [
            "Bathroom",
            "Shower",
            "Get dressed",
            "Pack bag",
            "Travel to Lecture",
            "Travel from Lecture",
        ]
        assert chain.steps[0].start_time == _at(9, 7)
        assert chain.steps[3].end_time == _at(9, 30)
        assert chain.steps[4].start_time == _at(9, 30)
        assert chain.steps[4].end_time == T0
        assert chain.steps[5].start_time == _at(11, 0)
        assert chain.steps[5].end_time == _at(11, 30)

    def test_completion_deadline(self):
        chain = ChainGenerator().generate_chain(_make_anchor())
        assert chain.chain_completion_deadline == _at(8, 45)

    def test_envelope_contiguous_and_mirrors_anchor(self):
        chain = ChainGenerator().generate_chain(_make_anchor())
        envelope = chain.commitment_envelope

        assert envelope.prep.start_time == _at(9, 7)
        assert envelope.prep.end_time == envelope.travel_there.start_time
        assert envelope.anchor.start_time == chain.anchor.start
        assert envelope.anchor.end_time == chain.anchor.end
        assert envelope.anchor.role == StepRole.ANCHOR
        assert envelope.recovery.role == StepRole.RECOVERY
        assert envelope.recovery.start_time == _at(11, 30)
        assert envelope.recovery.duration_minutes == 10

    def test_steps_sorted_and_owned_by_chain(self):
        chain = ChainGenerator().generate_chain(_make_anchor())
        starts = [s.start_time for s in chain.steps]
        assert starts == sorted(starts)
        assert all(s.chain_id == chain.chain_id for s in chain.steps)
        assert len({s.step_id for s in chain.steps}) == len(chain.steps)

    def test_long_anchor_gets_long_recovery(self):
        chain = ChainGenerator().generate_chain(_make_anchor(minutes=120))
        assert chain.commitment_envelope.recovery.duration_minutes == 20

    def test_just_under_threshold_gets_short_recovery(self):
        chain = ChainGenerator().generate_chain(_make_anchor(minutes=119))
        assert chain.commitment_envelope.recovery.duration_minutes == 10

    def test_only_shower_is_skippable_by_default(self):
        chain = ChainGenerator().generate_chain(_make_anchor())
        skippable = [s.name for s in chain.steps if s.can_skip_when_late]
        assert skippable == ["Shower"]
        assert all(s.is_required for s in chain.steps)

    def test_metadata(self):
        chain = ChainGenerator().generate_chain(_make_anchor())
        assert chain.metadata["travel_there_minutes"] == 30
        assert chain.metadata["prep_minutes"] == 23
        assert chain.metadata["minimum_prep_minutes"] == 23
        assert chain.metadata["anchor_type"] == "other"

    def test_policy_override(self):
        policy = ChainPolicy(chain_completion_buffer_minutes=60, shower_minutes=20)
        chain = ChainGenerator(policy=policy).generate_chain(_make_anchor())
        assert chain.chain_completion_deadline == _at(8, 30)
        shower = next(s for s in chain.steps if s.name == "Shower")
        assert shower.duration_minutes == 20


class TestAnchorTypes:
    def test_appointment_uses_hygiene(self):
        chain = ChainGenerator().generate_chain(
            _make_anchor(anchor_type=AnchorType.APPOINTMENT)
        )
        names = [s.name for s in chain.steps]
        assert "Hygiene" in names
        assert "Shower" not in names
        hygiene = next(s for s in chain.steps if s.name == "Hygiene")
        assert hygiene.duration_minutes == 8
        assert hygiene.can_skip_when_late is False

    def test_seminar_adds_optional_review(self):
        chain = ChainGenerator().generate_chain(
            _make_anchor(anchor_type=AnchorType.SEMINAR)
        )
        review = next(s for s in chain.steps if s.name == "Review seminar materials")
        assert review.is_required is False
        assert review.can_skip_when_late is True
        assert chain.metadata["prep_minutes"] == 38
        assert chain.metadata["minimum_prep_minutes"] == 23

    def test_pack_bag_always_last_prep_step(self):
        for anchor_type in AnchorType:
            templates = prep_templates(anchor_type, None, ChainPolicy())
            assert templates[-1].name == "Pack bag"


class TestTravel:
    def test_no_location_uses_default(self):
        estimator = _FixedEstimator(5, 5)
        chain = ChainGenerator(travel_estimator=estimator).generate_chain(_make_anchor())
        assert estimator.calls == []
        assert chain.metadata["travel_there_minutes"] == 30

    def test_estimator_durations_used(self):
        estimator = _FixedEstimator(12, 18)
        context = GenerationContext(current_location="Home")
        chain = ChainGenerator(travel_estimator=estimator).generate_chain(
            _make_anchor(location="Campus"), context
        )
        assert estimator.calls == [("Home", "Campus")]
        assert chain.commitment_envelope.travel_there.duration_minutes == 12
        assert chain.commitment_envelope.travel_back.duration_minutes == 18
        assert chain.chain_completion_deadline == T0 - timedelta(minutes=57)

    def test_estimator_failure_falls_back(self, caplog):
        generator = ChainGenerator(travel_estimator=_FailingEstimator())
        with caplog.at_level(logging.WARNING):
            chain = generator.generate_chain(_make_anchor(location="Campus"))
        assert chain.metadata["travel_there_minutes"] == 30
        assert "Travel estimate failed" in caplog.text

    def test_non_positive_estimate_falls_back(self):
        generator = ChainGenerator(travel_estimator=_FixedEstimator(0, -3))
        there, back = generator.travel_durations(_make_anchor(location="Campus"))
        assert (there, back) == (30, 30)

    def test_table_estimator_routes(self):
        table = TableTravelEstimator(default_minutes=25)
        table.add_route("Home", "Campus", 15)
        assert table.estimate("  home ", "CAMPUS") == TravelEstimate(
            there_minutes=15, back_minutes=15
        )
        table.add_route("Home", "Campus", 15, back_minutes=22)
        assert table.estimate("Home", "Campus").back_minutes == 22
        assert table.estimate("Home", "Gym").there_minutes == 25

    def test_fractional_travel_rounds_up(self):
        generator = ChainGenerator(travel_estimator=_FixedEstimator(12.2, 12.2))
        there, back = generator.travel_durations(
            _make_anchor(location="Campus"), GenerationContext(current_location="Home")
        )
        assert (there, back) == (13, 13)


class TestGenerationContext:
    def test_duration_priors_override_defaults(self):
        context = GenerationContext(duration_priors=DurationPriors(shower_min=15, dress_min=7))
        chain = ChainGenerator().generate_chain(_make_anchor(), context)
        by_name = {s.name: s for s in chain.steps}
        assert by_name["Shower"].duration_minutes == 15
        assert by_name["Get dressed"].duration_minutes == 7
        assert by_name["Bathroom"].duration_minutes == 5

    def test_fractional_priors_round_up(self):
        context = GenerationContext(duration_priors=DurationPriors(bathroom_min=5.5))
        chain = ChainGenerator().generate_chain(_make_anchor(), context)
        assert chain.steps[0].duration_minutes == 6

    def test_injected_steps_come_first(self):
        context = GenerationContext(injected_steps=[
            StepTemplate(key="take-meds", name="Take meds", duration_minutes=2),
        ])
        chain = ChainGenerator().generate_chain(_make_anchor(), context)
        assert chain.steps[0].name == "Take meds"
        assert chain.steps[0].start_time == _at(9, 5)
        assert chain.steps[1].name == "Bathroom"

    def test_exit_gate_marker_last_before_travel(self):
        context = GenerationContext(include_exit_gate_marker=True)
        chain = ChainGenerator().generate_chain(_make_anchor(), context)
        marker = chain.steps[4]
        assert marker.role == StepRole.EXIT_GATE
        assert marker.end_time == _at(9, 30)
        assert chain.steps[5].name == "Travel to Lecture"

    def test_surfaced_slots_share_step_ids(self):
        context = GenerationContext(surface_anchor=True, surface_recovery=True)
        chain = ChainGenerator().generate_chain(_make_anchor(), context)
        ids = {s.step_id for s in chain.steps}
        assert chain.commitment_envelope.anchor.step_id in ids
        assert chain.commitment_envelope.recovery.step_id in ids
        assert chain.steps[-1].role == StepRole.RECOVERY


class TestValidation:
    def test_inverted_mapping_rejected(self):
        with pytest.raises(AnchorValidationError) as exc_info:
            ChainGenerator().generate_chain({
                "id": "bad",
                "title": "Broken",
                "start": "2025-02-01T10:00:00Z",
                "end": "2025-02-01T09:00:00Z",
            })
        assert exc_info.value.anchor_id == "bad"

    def test_missing_start_rejected(self):
        with pytest.raises(AnchorValidationError):
            ChainGenerator().generate_chain({
                "id": "bad",
                "title": "Broken",
                "end": "2025-02-01T09:00:00Z",
            })

    def test_anchor_validation_error_is_value_error(self):
        assert issubclass(AnchorValidationError, ValueError)

    def test_one_invalid_anchor_rejects_batch(self):
        good = _make_anchor().model_dump()
        bad = {"id": "bad", "title": "x", "start": "garbage", "end": "garbage"}
        with pytest.raises(AnchorValidationError):
            ChainGenerator().generate_chains_for_date([good, bad])

    def test_empty_anchor_list(self):
        assert ChainGenerator().generate_chains_for_date([]) == []


class TestMultipleAnchors:
    def test_one_chain_per_anchor(self):
        anchors = [
            _make_anchor("morning", start=_at(9)),
            _make_anchor("afternoon", start=_at(15)),
        ]
        chains = ChainGenerator().generate_chains_for_date(anchors)
        assert [c.anchor_id for c in chains] == ["morning", "afternoon"]
        assert "overlapping_chain_ids" not in chains[0].metadata

    def test_overlaps_surfaced_not_merged(self, caplog):
        anchors = [
            _make_anchor("first", start=_at(10)),
            _make_anchor("second", start=_at(11, 30)),
        ]
        with caplog.at_level(logging.WARNING):
            chains = ChainGenerator().generate_chains_for_date(anchors)

        assert len(chains) == 2
        first, second = chains
        assert first.metadata["overlapping_chain_ids"] == [second.chain_id]
        assert second.metadata["overlapping_chain_ids"] == [first.chain_id]
        assert "overlap" in caplog.text

    def test_detect_envelope_overlaps_touching_is_not_overlap(self):
        generator = ChainGenerator()
        first = generator.generate_chain(_make_anchor("first", start=_at(8)))
        # first recovery ends 09:40; second prep starts 09:40 for a 10:33 anchor
        second = generator.generate_chain(_make_anchor("second", start=_at(10, 33)))
        assert generator.detect_envelope_overlaps([first, second]) == []
