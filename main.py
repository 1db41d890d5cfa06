"""
Revenue Signal Hub: Entry Point
=================================

Run: python main.py
"""

import os

from dotenv import load_dotenv

load_dotenv()

from hub_engine.lib.config import FISCAL_YEAR_START_MONTH
from hub_engine.lib.logger import setup_logger

logger = setup_logger("revenue-signal-hub")

PORT = int(os.getenv("DASHBOARD_PORT", "8001"))
RELOAD = os.getenv("DEBUG", "false").lower() == "true"

if __name__ == "__main__":
    import uvicorn

    logger.info("Revenue Signal Hub on http://0.0.0.0:%d (docs at /docs)", PORT)
    logger.info(
        "Salesforce: %s | AI provider: %s | fiscal start month: %d",
        os.getenv("SALESFORCE_INSTANCE_URL") or "not configured",
        os.getenv("AI_PROVIDER", "groq"),
        FISCAL_YEAR_START_MONTH,
    )

    uvicorn.run("dashboard.api.main:app", host="0.0.0.0", port=PORT, reload=RELOAD)
