"""
Chain Generator: builds Execution Chains backward from anchor start.

Behavioral Contract:
- One chain per anchor, generated independently of every other anchor
- Anchors are validated before anything is built; no partial chains
- Travel comes from a pluggable estimator; failures fall back to the default
- Never reads the wall clock
- Overlapping envelopes are surfaced in metadata, never merged or dropped
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union
from uuid import uuid4

from pydantic import ValidationError

from chain_kernel.generator.templates import exit_gate_marker, prep_templates
from chain_kernel.models.anchor import Anchor
from chain_kernel.models.chain import (
    ChainStatus,
    ChainStep,
    CommitmentEnvelope,
    ExecutionChain,
    StepRole,
    minutes_between,
)
from chain_kernel.models.context import GenerationContext, TravelEstimate
from chain_kernel.models.policy import ChainPolicy

logger = logging.getLogger(__name__)

AnchorInput = Union[Anchor, Dict[str, Any]]


class AnchorValidationError(ValueError):
    """Raised when an anchor has a missing, invalid or inverted time window."""

    def __init__(self, anchor_id: Optional[str], detail: str):
        self.anchor_id = anchor_id
        self.detail = detail
        super().__init__(f"Invalid anchor {anchor_id or '<unknown>'}: {detail}")


class TravelEstimator(Protocol):
    """Pluggable travel estimation backend."""

    def estimate(self, origin: Optional[str], destination: str) -> TravelEstimate: ...


class TableTravelEstimator:
    """
    Lookup-table travel estimator. Routes are keyed by (origin, destination)
    with case and surrounding whitespace ignored. Unknown routes use the
    default duration; the return leg mirrors the outbound leg unless a
    reverse route is registered.
    """

    def __init__(
        self,
        routes: Optional[Dict[Tuple[str, str], float]] = None,
        default_minutes: float = 30,
    ):
        self.default_minutes = default_minutes
        self._routes: Dict[Tuple[str, str], float] = {}
        for (origin, destination), minutes in (routes or {}).items():
            self.add_route(origin, destination, minutes)

    @staticmethod
    def _key(origin: str, destination: str) -> Tuple[str, str]:
        return origin.strip().lower(), destination.strip().lower()

    def add_route(
        self,
        origin: str,
        destination: str,
        minutes: float,
        back_minutes: Optional[float] = None,
    ) -> None:
        self._routes[self._key(origin, destination)] = minutes
        if back_minutes is not None:
            self._routes[self._key(destination, origin)] = back_minutes

    def estimate(self, origin: Optional[str], destination: str) -> TravelEstimate:
        if origin is None:
            there = self.default_minutes
            back = self.default_minutes
        else:
            there = self._routes.get(self._key(origin, destination), self.default_minutes)
            back = self._routes.get(self._key(destination, origin), there)
        return TravelEstimate(there_minutes=there, back_minutes=back)


def _whole_minutes(minutes: float) -> int:
    """Round a (possibly inflated) duration up to whole minutes."""
    return int(math.ceil(minutes))


class ChainGenerator:
    """
    Generates execution chains from anchors.

    Stateless apart from its collaborators: the same anchor, context and
    policy always produce the same timeline (ids aside).
    """

    def __init__(
        self,
        travel_estimator: Optional[TravelEstimator] = None,
        policy: Optional[ChainPolicy] = None,
    ):
        self.policy = policy or ChainPolicy()
        self.travel_estimator = travel_estimator or TableTravelEstimator(
            default_minutes=self.policy.default_travel_minutes
        )

    def generate_chains_for_date(
        self,
        anchors: Iterable[AnchorInput],
        context: Optional[GenerationContext] = None,
    ) -> List[ExecutionChain]:
        """
        Generate one chain per anchor.

        Every anchor is validated first; a single invalid anchor rejects the
        whole call. An empty anchor list yields an empty chain list.
        """
        validated = [self._validate_anchor(a) for a in anchors]
        chains = [self._build_chain(anchor, context) for anchor in validated]
        self._surface_overlaps(chains)
        return chains

    def generate_chain(
        self,
        anchor: AnchorInput,
        context: Optional[GenerationContext] = None,
    ) -> ExecutionChain:
        """Generate the chain for a single anchor."""
        return self._build_chain(self._validate_anchor(anchor), context)

    def calculate_chain_completion_deadline(
        self, anchor: Anchor, travel_there_minutes: int
    ) -> datetime:
        """anchor.start - (travel_there + buffer)."""
        total = travel_there_minutes + self.policy.chain_completion_buffer_minutes
        return anchor.start - timedelta(minutes=total)

    def recovery_minutes(self, anchor: Anchor) -> int:
        anchor_minutes = minutes_between(anchor.start, anchor.end)
        if anchor_minutes >= self.policy.long_anchor_threshold_minutes:
            return self.policy.recovery_long_minutes
        return self.policy.recovery_short_minutes

    def travel_durations(
        self, anchor: Anchor, context: Optional[GenerationContext] = None
    ) -> Tuple[int, int]:
        """Return (travel_there, travel_back) in whole minutes."""
        default = self.policy.default_travel_minutes
        if not anchor.location:
            return default, default

        origin = context.current_location if context else None
        try:
            estimate = self.travel_estimator.estimate(origin, anchor.location)
        except Exception as e:
            logger.warning(
                "Travel estimate failed for anchor %s (%s -> %s), using %d min: %s",
                anchor.id, origin, anchor.location, default, e,
            )
            return default, default

        there = estimate.there_minutes
        back = estimate.back_minutes
        if there <= 0:
            logger.warning(
                "Invalid travel duration %s for anchor %s, using %d min",
                there, anchor.id, default,
            )
            there = default
        if back <= 0:
            back = there
        return _whole_minutes(there), _whole_minutes(back)

    @staticmethod
    def detect_envelope_overlaps(
        chains: List[ExecutionChain],
    ) -> List[Tuple[str, str]]:
        """
        Pairs of chain ids whose envelopes (prep start to recovery end)
        intersect. Touching envelopes do not count as overlapping.
        """
        spans = sorted(
            (
                (
                    c.commitment_envelope.prep.start_time,
                    c.commitment_envelope.recovery.end_time,
                    c.chain_id,
                )
                for c in chains
            ),
            key=lambda span: span[0],
        )
        pairs = []
        for i, (_, end, chain_id) in enumerate(spans):
            for other_start, _, other_id in spans[i + 1:]:
                if other_start >= end:
                    break
                pairs.append((chain_id, other_id))
        return pairs

    # --- Internals ---

    def _validate_anchor(self, anchor: AnchorInput) -> Anchor:
        if isinstance(anchor, Anchor):
            anchor_id = anchor.id
            raw = anchor.model_dump()
        elif isinstance(anchor, dict):
            anchor_id = anchor.get("id")
            raw = anchor
        else:
            raise AnchorValidationError(None, f"unsupported anchor type {type(anchor).__name__}")

        try:
            return Anchor.model_validate(raw)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'anchor'}: {err['msg']}"
                for err in e.errors()
            )
            raise AnchorValidationError(anchor_id, details) from e

    def _build_chain(
        self, anchor: Anchor, context: Optional[GenerationContext]
    ) -> ExecutionChain:
        context = context or GenerationContext()
        chain_id = f"chain_{uuid4().hex[:12]}"

        there, back = self.travel_durations(anchor, context)
        deadline = self.calculate_chain_completion_deadline(anchor, there)

        templates = list(context.injected_steps)
        templates.extend(prep_templates(anchor.type, context.duration_priors, self.policy))
        if context.include_exit_gate_marker:
            templates.append(exit_gate_marker(self.policy))
        durations = [_whole_minutes(t.duration_minutes) for t in templates]

        travel_there_start = anchor.start - timedelta(minutes=there)
        prep_start = travel_there_start - timedelta(minutes=sum(durations))

        prep_steps = []
        cursor = prep_start
        for template, minutes in zip(templates, durations):
            end = cursor + timedelta(minutes=minutes)
            prep_steps.append(self._make_step(
                chain_id,
                template.name,
                cursor,
                end,
                is_required=template.is_required,
                can_skip_when_late=template.can_skip_when_late,
                role=template.role,
            ))
            cursor = end

        travel_back_end = anchor.end + timedelta(minutes=back)
        recovery_end = travel_back_end + timedelta(minutes=self.recovery_minutes(anchor))

        envelope = CommitmentEnvelope(
            envelope_id=f"env_{uuid4().hex[:12]}",
            prep=self._make_step(chain_id, "Preparation", prep_start, travel_there_start),
            travel_there=self._make_step(
                chain_id, f"Travel to {anchor.title}", travel_there_start, anchor.start
            ),
            anchor=self._make_step(
                chain_id, anchor.title, anchor.start, anchor.end, role=StepRole.ANCHOR
            ),
            travel_back=self._make_step(
                chain_id, f"Travel from {anchor.title}", anchor.end, travel_back_end
            ),
            recovery=self._make_step(
                chain_id, "Recovery", travel_back_end, recovery_end, role=StepRole.RECOVERY
            ),
        )

        steps = prep_steps + [envelope.travel_there, envelope.travel_back]
        if context.surface_anchor:
            steps.append(envelope.anchor)
        if context.surface_recovery:
            steps.append(envelope.recovery)
        steps.sort(key=lambda s: s.start_time)

        droppable = sum(
            minutes
            for template, minutes in zip(templates, durations)
            if template.can_skip_when_late and not template.is_required
        )

        chain = ExecutionChain(
            chain_id=chain_id,
            anchor_id=anchor.id,
            anchor=anchor,
            chain_completion_deadline=deadline,
            steps=steps,
            commitment_envelope=envelope,
            status=ChainStatus.PENDING,
            metadata={
                "anchor_type": anchor.type.value,
                "travel_there_minutes": there,
                "travel_back_minutes": back,
                "prep_minutes": sum(durations),
                "minimum_prep_minutes": sum(durations) - droppable,
                "energy_level": context.energy_level,
            },
        )
        logger.debug(
            "Generated chain %s for anchor %s: %d steps, deadline %s",
            chain_id, anchor.id, len(steps), deadline.isoformat(),
        )
        return chain

    @staticmethod
    def _make_step(
        chain_id: str,
        name: str,
        start: datetime,
        end: datetime,
        is_required: bool = True,
        can_skip_when_late: bool = False,
        role: StepRole = StepRole.CHAIN_STEP,
    ) -> ChainStep:
        return ChainStep(
            step_id=f"step_{uuid4().hex[:12]}",
            chain_id=chain_id,
            name=name,
            start_time=start,
            end_time=end,
            duration_minutes=minutes_between(start, end),
            is_required=is_required,
            can_skip_when_late=can_skip_when_late,
            role=role,
        )

    def _surface_overlaps(self, chains: List[ExecutionChain]) -> None:
        overlaps = self.detect_envelope_overlaps(chains)
        if not overlaps:
            return
        by_id = {c.chain_id: c for c in chains}
        for first, second in overlaps:
            logger.warning(
                "Commitment envelopes overlap: chain %s (anchor %s) and chain %s (anchor %s)",
                first, by_id[first].anchor_id, second, by_id[second].anchor_id,
            )
            for this, other in ((first, second), (second, first)):
                ids = by_id[this].metadata.setdefault("overlapping_chain_ids", [])
                if other not in ids:
                    ids.append(other)
