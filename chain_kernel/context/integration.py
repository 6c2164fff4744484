"""
Context integration: turns a DailyContext into generator inputs.

Sits outside the core. The generator never sees a DailyContext directly: it
receives risk-adjusted duration priors, injected steps and flags through a
GenerationContext built here.
"""

from typing import List, Optional

from pydantic import BaseModel

from chain_kernel.models.chain import StepTemplate
from chain_kernel.models.context import DailyContext, DurationPriors, GenerationContext
from chain_kernel.models.policy import ChainPolicy

LOW_ENERGY_INFLATOR = 1.1
SLEEP_DEBT_INFLATOR = 1.15

BASE_GATE_TAGS = ["keys", "phone", "water"]

# Prior field -> policy default used when the prior is missing
_PRIOR_DEFAULTS = {
    "bathroom_min": "bathroom_minutes",
    "hygiene_min": "hygiene_minutes",
    "shower_min": "shower_minutes",
    "dress_min": "dress_minutes",
    "pack_min": "pack_minutes",
    "cook_simple_meal_min": "cook_simple_meal_minutes",
}


class RiskInflators(BaseModel):
    low_energy: float = 1.0
    sleep_debt: float = 1.0
    total: float = 1.0


def calculate_risk_inflators(ctx: Optional[DailyContext]) -> RiskInflators:
    """Multiplicative duration inflation from the day's risk flags."""
    if ctx is None:
        return RiskInflators()
    low_energy = LOW_ENERGY_INFLATOR if ctx.day_flags.low_energy_risk else 1.0
    sleep_debt = SLEEP_DEBT_INFLATOR if ctx.day_flags.sleep_debt_risk else 1.0
    return RiskInflators(
        low_energy=low_energy,
        sleep_debt=sleep_debt,
        total=low_energy * sleep_debt,
    )


def adjusted_duration_priors(
    ctx: Optional[DailyContext], policy: Optional[ChainPolicy] = None
) -> DurationPriors:
    """Every prior (or its policy default) scaled by the total inflator."""
    policy = policy or ChainPolicy()
    priors = ctx.duration_priors if ctx else DurationPriors()
    total = calculate_risk_inflators(ctx).total

    adjusted = {}
    for field, default_attr in _PRIOR_DEFAULTS.items():
        value = getattr(priors, field)
        if value is None:
            value = getattr(policy, default_attr)
        adjusted[field] = value * total
    return DurationPriors(**adjusted)


def injected_steps(
    ctx: Optional[DailyContext], policy: Optional[ChainPolicy] = None
) -> List[StepTemplate]:
    policy = policy or ChainPolicy()
    if ctx is None or ctx.meds.taken:
        return []
    return [StepTemplate(
        key="take-meds",
        name="Take meds",
        duration_minutes=policy.take_meds_minutes,
    )]


def exit_gate_tags(ctx: Optional[DailyContext]) -> List[str]:
    tags = list(BASE_GATE_TAGS)
    if ctx is None:
        return tags
    if not ctx.meds.taken:
        tags.append("meds")
    if ctx.day_flags.low_energy_risk:
        tags.append("phone-charger")
    return tags


def build_generation_context(
    ctx: Optional[DailyContext],
    current_location: Optional[str] = None,
    energy_level: Optional[int] = None,
    policy: Optional[ChainPolicy] = None,
    include_exit_gate_marker: bool = False,
) -> GenerationContext:
    """Assemble everything the generator needs from one DailyContext."""
    return GenerationContext(
        current_location=current_location,
        energy_level=energy_level,
        duration_priors=adjusted_duration_priors(ctx, policy),
        injected_steps=injected_steps(ctx, policy),
        include_exit_gate_marker=include_exit_gate_marker,
    )
