"""
Prep step templates per anchor type.

Every anchor gets the same four-slot core: Bathroom, Shower, Get dressed,
Pack bag. Appointments swap the shower for a quick hygiene step; seminars and
workshops add an optional materials review that is dropped when running late.
"""

from typing import List, Optional

from chain_kernel.models.anchor import AnchorType
from chain_kernel.models.chain import StepRole, StepTemplate
from chain_kernel.models.context import DurationPriors
from chain_kernel.models.policy import ChainPolicy


def _prior(value: Optional[float], default: float) -> float:
    return value if value is not None else default


def prep_templates(
    anchor_type: AnchorType,
    priors: Optional[DurationPriors],
    policy: ChainPolicy,
) -> List[StepTemplate]:
    """Build the ordered prep steps for an anchor type."""
    priors = priors or DurationPriors()

    bathroom = StepTemplate(
        key="bathroom",
        name="Bathroom",
        duration_minutes=_prior(priors.bathroom_min, policy.bathroom_minutes),
    )
    if anchor_type == AnchorType.APPOINTMENT:
        wash = StepTemplate(
            key="hygiene",
            name="Hygiene",
            duration_minutes=_prior(priors.hygiene_min, policy.hygiene_minutes),
        )
    else:
        wash = StepTemplate(
            key="shower",
            name="Shower",
            duration_minutes=_prior(priors.shower_min, policy.shower_minutes),
            can_skip_when_late=True,
        )
    dress = StepTemplate(
        key="dress",
        name="Get dressed",
        duration_minutes=_prior(priors.dress_min, policy.dress_minutes),
    )
    pack = StepTemplate(
        key="pack-bag",
        name="Pack bag",
        duration_minutes=_prior(priors.pack_min, policy.pack_minutes),
    )

    steps = [bathroom, wash, dress]
    if anchor_type in (AnchorType.SEMINAR, AnchorType.WORKSHOP):
        steps.append(StepTemplate(
            key="review-materials",
            name=f"Review {anchor_type.value} materials",
            duration_minutes=policy.review_materials_minutes,
            is_required=False,
            can_skip_when_late=True,
        ))
    steps.append(pack)
    return steps


def exit_gate_marker(policy: ChainPolicy) -> StepTemplate:
    """Display-only step marking where the exit gate is checked."""
    return StepTemplate(
        key="exit-gate",
        name="Exit readiness check",
        duration_minutes=policy.exit_gate_check_minutes,
        role=StepRole.EXIT_GATE,
    )
