"""
Scheduler configuration with pydantic-settings.

- Loads from environment (prefix COVERAGE_) and a root .env
- Scoring weights and the escalation ladder are explicit, named structures
- Cached singleton via get_settings()
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


class ScoringWeights(BaseModel):
    """Relative weight of each ranking signal. Weights are fixed policy, not learned."""
    proximity_weight: float = Field(default=0.5, ge=0)
    maintenance_weight: float = Field(default=0.2, ge=0)
    load_weight: float = Field(default=0.3, ge=0)
    expertise_weight: float = Field(default=0.2, ge=0, description="Bonus for personnel whose expertise covers the event category")

    @model_validator(mode='after')
    def validate_not_all_zero(self):
        if self.proximity_weight + self.maintenance_weight + self.load_weight + self.expertise_weight <= 0:
            raise ValueError("At least one scoring weight must be positive")
        return self


class EscalationTierConfig(BaseModel):
    """One rung of the escalation ladder."""
    tier: int = Field(ge=1)
    threshold_hours: float = Field(gt=0, description="Overdue time at which this tier starts")
    role: str = Field(description="Directory role notified at this tier")
    department_scoped: bool = Field(default=True, description="Limit recipients to the item's department")


def _default_ladder() -> List[EscalationTierConfig]:
    return [
        EscalationTierConfig(tier=1, threshold_hours=2, role="editor"),
        EscalationTierConfig(tier=2, threshold_hours=4, role="senior_editor"),
        EscalationTierConfig(tier=3, threshold_hours=8, role="department_head"),
        EscalationTierConfig(tier=4, threshold_hours=24, role="admin", department_scoped=False),
    ]


class SchedulerSettings(BaseSettings):
    """
    Settings for the scheduling core.

    Environment variables take precedence over .env file values,
    e.g. COVERAGE_CONFLICT_RADIUS_KM=3.
    """

    model_config = SettingsConfigDict(
        env_prefix="COVERAGE_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # ===================
    # Conflict Detection
    # ===================
    conflict_radius_km: float = Field(default=5.0, gt=0, description="Spatial conflict radius (closed)")
    conflict_result_cap: int = Field(default=20, ge=1, description="Max events reported per conflict class")

    # ===================
    # Allocation
    # ===================
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    proximity_horizon_km: float = Field(default=50.0, gt=0, description="Distance at which proximity scores 0")
    maintenance_horizon_days: float = Field(default=180.0, gt=0, description="Age at which maintenance scores 0")
    load_horizon: int = Field(default=10, ge=1, description="Future bookings at which load scores 0")
    allocation_retry_attempts: int = Field(default=3, ge=1)

    # ===================
    # Escalation & Reminders
    # ===================
    escalation_ladder: List[EscalationTierConfig] = Field(default_factory=_default_ladder)
    critical_tier: int = Field(default=3, ge=1, description="Tiers at or above this notify as 'critical'")
    stale_draft_hours: float = Field(default=24, gt=0)
    pending_assignment_reminder_hours: float = Field(default=1, gt=0)
    default_approval_hours: float = Field(default=24, gt=0)
    sla_alert_window_hours: float = Field(default=2, gt=0)
    event_reminder_hours: List[int] = Field(default_factory=lambda: [24, 1])
    default_department: str = Field(default="News")

    # ===================
    # Periodic Jobs (seconds)
    # ===================
    escalation_interval: float = Field(default=1800, gt=0)
    sla_interval: float = Field(default=1800, gt=0)
    reminder_interval: float = Field(default=3600, gt=0)

    # ===================
    # Crew Advisor
    # ===================
    google_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("COVERAGE_GOOGLE_API_KEY", "GOOGLE_API_KEY"),
    )
    advisor_model: str = Field(default="gemini-1.5-flash")

    @model_validator(mode='after')
    def validate_ladder(self):
        tiers = [t.tier for t in self.escalation_ladder]
        if len(set(tiers)) != len(tiers):
            raise ValueError("Escalation tiers must be unique")
        ordered = sorted(self.escalation_ladder, key=lambda t: t.tier)
        thresholds = [t.threshold_hours for t in ordered]
        if thresholds != sorted(thresholds):
            raise ValueError("Higher escalation tiers must have higher thresholds")
        self.escalation_ladder = ordered
        return self


@lru_cache()
def get_settings() -> SchedulerSettings:
    return SchedulerSettings()
