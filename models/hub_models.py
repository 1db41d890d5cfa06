"""
Revenue Signal Hub: Pydantic Models
======================================

Admin configuration (field mappings, forecast method, quota source,
account tier overrides) and request payloads for the hub API.
Every field has a default so a missing or partial admin_settings row
still yields a usable configuration.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


QuotaSourceType = Literal["native-field", "external-object", "manual", "none"]
ForecastMethod = Literal["forecast-category", "probability"]
TierName = Literal["hot", "warm", "cool", "cold"]

# Values written by older admin screens
_QUOTA_SOURCE_ALIASES = {
    "salesforce": "native-field",
    "native": "native-field",
    "forecastingquota": "external-object",
    "external": "external-object",
}
_FORECAST_METHOD_ALIASES = {
    "forecastcategory": "forecast-category",
    "category": "forecast-category",
}


# ─── Field Mappings ─────────────────────────────────────────

class FieldMappings(BaseModel):
    """CRM field names that vary per org."""
    amount_field: str = "Amount"
    forecast_category_field: str = "ForecastCategory"


# ─── Quota ──────────────────────────────────────────────────

class QuotaConfig(BaseModel):
    """
    Where quota comes from. `manual_amounts` entries that are positive
    override the primary source for that subject.
    """
    source: QuotaSourceType = "none"
    native_field_name: str = "Quarterly_Quota__c"
    manual_amounts: Dict[str, float] = Field(default_factory=dict)
    default_amount: float = 0.0

    @field_validator("source", mode="before")
    @classmethod
    def _normalise_source(cls, value):
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "-")
            return _QUOTA_SOURCE_ALIASES.get(key.replace("-", ""), key)
        return value


# ─── Forecast ───────────────────────────────────────────────

class ForecastConfig(BaseModel):
    """How open pipeline is bucketed into commit / best case / pipeline."""
    method: ForecastMethod = "forecast-category"
    commit_threshold: float = 70.0
    best_case_threshold: float = 50.0
    commit_categories: List[str] = Field(default_factory=lambda: ["Commit", "Closed"])
    best_case_categories: List[str] = Field(default_factory=lambda: ["Best Case"])
    stage_order: List[str] = Field(default_factory=list)
    fallback_enabled: bool = True

    @field_validator("method", mode="before")
    @classmethod
    def _normalise_method(cls, value):
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "-")
            return _FORECAST_METHOD_ALIASES.get(key.replace("-", ""), key)
        return value


# ─── Tier Overrides ─────────────────────────────────────────

class TierOverride(BaseModel):
    """Admin-set priority tier for one account."""
    account_id: str
    tier: TierName
    reason: Optional[str] = None
    overridden_by: Optional[str] = None
    overridden_at: Optional[datetime] = None

    @field_validator("tier", mode="before")
    @classmethod
    def _lower_tier(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


# ─── Signal Fusion ──────────────────────────────────────────

class FusionSettings(BaseModel):
    corroboration_bonus: int = 3
    corroboration_cap: int = 9


# ─── Aggregate ──────────────────────────────────────────────

class HubSettings(BaseModel):
    """Everything the hub views read from admin configuration."""
    fields: FieldMappings = Field(default_factory=FieldMappings)
    forecast: ForecastConfig = Field(default_factory=ForecastConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    fusion: FusionSettings = Field(default_factory=FusionSettings)
    tier_overrides: Dict[str, TierOverride] = Field(default_factory=dict)


# ─── Request Models ─────────────────────────────────────────

class DashboardFilters(BaseModel):
    """Sales leader dashboard filters."""
    date_range: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    team_filter: str = "myTeam"
    reps: List[str] = Field(default_factory=list)
    min_deal_size: Optional[float] = None
    include_all: bool = False


class WatchlistRequest(BaseModel):
    deal_id: str
