"""
Process configuration for Revenue Signal Hub.
Loads .env from the project root and exposes typed settings.

Usage:
    from hub_engine.lib.config import FISCAL_YEAR_START_MONTH, recommendations_enabled
"""
import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


# Month index 0-11; 1 = February
FISCAL_YEAR_START_MONTH = min(max(_env_int("FISCAL_YEAR_START_MONTH", 1), 0), 11)

SALESFORCE_API_VERSION = os.getenv("SALESFORCE_API_VERSION", "60.0")

# Fan-out limit for per-subject quota lookups and per-entity recommendations
MAX_CONCURRENT_LOOKUPS = _env_int("MAX_CONCURRENT_LOOKUPS", 10)


def recommendations_enabled() -> bool:
    """AI recommendations are opt-out; rule-based text is used when disabled."""
    return os.getenv("RECOMMENDATIONS_ENABLED", "true").lower() == "true"
