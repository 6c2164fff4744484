"""Policy constants for chain generation and the monitor loop."""

from croniter import croniter
from pydantic import BaseModel, Field, field_validator


class ChainPolicy(BaseModel):
    """
    Named policy values used by the generator and degradation service.

    Defaults reproduce the observed behaviour exactly. Whether any of these
    should become per-user settings is still open; override per generator
    instance in the meantime.
    """

    chain_completion_buffer_minutes: int = 45   # Minimum acceptable prep time before travel
    default_travel_minutes: int = 30

    bathroom_minutes: float = 5
    hygiene_minutes: float = 8
    shower_minutes: float = 10
    dress_minutes: float = 5
    pack_minutes: float = 3
    cook_simple_meal_minutes: float = 20
    review_materials_minutes: float = 15
    exit_gate_check_minutes: float = 2
    take_meds_minutes: float = 2

    recovery_short_minutes: int = 10
    recovery_long_minutes: int = 20
    long_anchor_threshold_minutes: int = 120    # Anchors this long or longer get long recovery

    late_skip_reason: str = "Running late"


class MonitorConfig(BaseModel):
    """Configuration for the Chain Monitor polling loop."""

    schedule: str = "*/5 * * * *"           # Cron expression for evaluation ticks
    skip_terminal: bool = True              # Leave completed/failed chains alone
    max_cycles: int = Field(default=0, ge=0)  # 0 = run until stopped

    @field_validator("schedule")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        if not croniter.is_valid(value):
            raise ValueError(f"Invalid cron schedule: {value!r}")
        return value
