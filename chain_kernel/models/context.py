"""Daily Context and generation inputs consumed by the Chain Generator."""

from datetime import date as date_type
from typing import List, Optional

from pydantic import BaseModel, Field

from chain_kernel.models.chain import StepTemplate


class DurationPriors(BaseModel):
    """Median step durations from recent habit history. None = use default."""

    bathroom_min: Optional[float] = Field(default=None, gt=0)
    hygiene_min: Optional[float] = Field(default=None, gt=0)
    shower_min: Optional[float] = Field(default=None, gt=0)
    dress_min: Optional[float] = Field(default=None, gt=0)
    pack_min: Optional[float] = Field(default=None, gt=0)
    cook_simple_meal_min: Optional[float] = Field(default=None, gt=0)


class DayFlags(BaseModel):
    low_energy_risk: bool = False
    sleep_debt_risk: bool = False


class MedsContext(BaseModel):
    taken: bool = True
    reliability: float = Field(ge=0.0, le=1.0, default=0.0)


class DailyContext(BaseModel):
    """
    Aggregated yesterday-plus-trailing-window signals, produced by the
    habit-note aggregation collaborator. Every field is optional.
    """

    date: Optional[date_type] = None
    duration_priors: DurationPriors = DurationPriors()
    day_flags: DayFlags = DayFlags()
    meds: MedsContext = MedsContext()


class GenerationContext(BaseModel):
    """Per-call options for the Chain Generator."""

    current_location: Optional[str] = None
    energy_level: Optional[int] = Field(default=None, ge=1, le=5)
    duration_priors: Optional[DurationPriors] = None    # Already risk-adjusted
    injected_steps: List[StepTemplate] = []             # Placed ahead of the prep steps
    surface_anchor: bool = False
    surface_recovery: bool = False
    include_exit_gate_marker: bool = False


class TravelEstimate(BaseModel):
    there_minutes: float
    back_minutes: float
