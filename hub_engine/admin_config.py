"""
Admin Configuration Store
==========================

Reads tenant configuration from the Supabase admin_settings table
(setting_key -> JSON setting_value) into a HubSettings model.

  salesforce_fields       -> FieldMappings
  forecast_config         -> ForecastConfig + QuotaConfig
  fusion_config           -> FusionSettings
  account_tier_overrides  -> {account_id: TierOverride}

Values saved by older admin screens use camelCase keys (forecastMethod,
manualQuotas, ...); both spellings are accepted. A missing row, a malformed
value or an unreachable store resolves to the defaults and is logged.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from hub_engine.lib.errors import ConfigError
from hub_engine.lib.logger import setup_logger
from hub_engine.lib.supabase_client import get_client
from models.hub_models import (
    FieldMappings,
    ForecastConfig,
    FusionSettings,
    HubSettings,
    QuotaConfig,
    TierOverride,
)

logger = setup_logger(__name__)

SETTINGS_TABLE = "admin_settings"

FIELDS_KEY = "salesforce_fields"
FORECAST_KEY = "forecast_config"
FUSION_KEY = "fusion_config"
TIER_OVERRIDES_KEY = "account_tier_overrides"

SETTING_KEYS = (FIELDS_KEY, FORECAST_KEY, FUSION_KEY, TIER_OVERRIDES_KEY)

# legacy camelCase -> model field
_FIELD_ALIASES = {
    "opportunityAmountField": "amount_field",
    "forecastCategoryField": "forecast_category_field",
}
_FORECAST_ALIASES = {
    "forecastMethod": "method",
    "commitProbabilityThreshold": "commit_threshold",
    "bestCaseProbabilityThreshold": "best_case_threshold",
    "stageOrder": "stage_order",
}
_QUOTA_ALIASES = {
    "quotaSource": "source",
    "salesforceQuotaField": "native_field_name",
    "manualQuotas": "manual_amounts",
    "defaultQuota": "default_amount",
}
_QUOTA_KEYS = set(_QUOTA_ALIASES.values())
_OVERRIDE_ALIASES = {
    "accountId": "account_id",
    "overriddenBy": "overridden_by",
    "overriddenAt": "overridden_at",
}


def _rename(value: Dict[str, Any], aliases: Dict[str, str]) -> Dict[str, Any]:
    return {aliases.get(k, k): v for k, v in value.items() if v is not None}


def parse_field_mappings(value: Any) -> FieldMappings:
    return FieldMappings(**_rename(value or {}, _FIELD_ALIASES))


def parse_forecast_config(value: Any) -> ForecastConfig:
    data = _rename(value or {}, {**_FORECAST_ALIASES, **_QUOTA_ALIASES})
    return ForecastConfig(**{k: v for k, v in data.items() if k not in _QUOTA_KEYS})


def parse_quota_config(value: Any) -> QuotaConfig:
    data = _rename(value or {}, _QUOTA_ALIASES)
    return QuotaConfig(**{k: v for k, v in data.items() if k in _QUOTA_KEYS})


def parse_tier_overrides(value: Any) -> Dict[str, TierOverride]:
    overrides = {}
    for account_id, raw in (value or {}).items():
        try:
            data = _rename(raw, _OVERRIDE_ALIASES)
            data.setdefault("account_id", account_id)
            overrides[account_id] = TierOverride(**data)
        except (ValidationError, TypeError, AttributeError) as e:
            logger.warning("Ignoring tier override for %s: %s", account_id, e)
    return overrides


class AdminConfigStore:
    """Admin settings backed by Supabase."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def _fetch(self) -> Dict[str, Any]:
        result = (
            self.client.table(SETTINGS_TABLE)
            .select("setting_key, setting_value")
            .in_("setting_key", list(SETTING_KEYS))
            .execute()
        )
        return {row["setting_key"]: row.get("setting_value") for row in (result.data or [])}

    def load(self) -> HubSettings:
        """Current settings; each section falls back to defaults independently."""
        try:
            raw = self._fetch()
        except Exception as e:
            logger.warning("Admin settings unavailable, using defaults: %s", e)
            return HubSettings()

        settings = HubSettings()
        sections = (
            ("fields", FIELDS_KEY, parse_field_mappings),
            ("forecast", FORECAST_KEY, parse_forecast_config),
            ("quota", FORECAST_KEY, parse_quota_config),
            ("fusion", FUSION_KEY, lambda v: FusionSettings(**(v or {}))),
            ("tier_overrides", TIER_OVERRIDES_KEY, parse_tier_overrides),
        )
        for attr, key, parser in sections:
            if key not in raw:
                continue
            try:
                setattr(settings, attr, parser(raw[key]))
            except (ValidationError, TypeError, AttributeError) as e:
                logger.warning("Invalid %s setting, using defaults: %s", key, e)
        return settings

    def set_tier_override(
        self,
        account_id: str,
        tier: Optional[str],
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Dict[str, TierOverride]:
        """Set (or with tier=None clear) an account's tier override."""
        try:
            raw = self._fetch().get(TIER_OVERRIDES_KEY) or {}
        except Exception as e:
            raise ConfigError(f"Could not read tier overrides: {e}", setting_key=TIER_OVERRIDES_KEY) from e

        overrides = parse_tier_overrides(raw)
        if tier is None:
            overrides.pop(account_id, None)
        else:
            overrides[account_id] = TierOverride(
                account_id=account_id,
                tier=tier,
                reason=reason,
                overridden_by=actor,
                overridden_at=datetime.now(timezone.utc),
            )

        value = {k: v.model_dump(mode="json") for k, v in overrides.items()}
        try:
            self.client.table(SETTINGS_TABLE).upsert(
                {
                    "setting_key": TIER_OVERRIDES_KEY,
                    "setting_value": value,
                    "updated_by": actor,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="setting_key",
            ).execute()
        except Exception as e:
            raise ConfigError(f"Could not save tier override: {e}", setting_key=TIER_OVERRIDES_KEY) from e

        logger.info("Tier override for %s set to %s by %s", account_id, tier, actor)
        return overrides
