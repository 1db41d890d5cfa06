"""
Salesforce Integration
=======================

Record fetch and quota lookups against the Salesforce REST API.

- query(descriptor)        - SOQL query rendered from a QueryDescriptor,
                             following nextRecordsUrl until done
- get_native_quota()       - numeric quota field on the User record
- get_external_quota()     - ForecastingQuota amounts starting in a period

An INVALID_FIELD / "No such column" response raises UnknownFieldError so the
caller can retry with a reduced field set; any other failure raises
DataFetchError. Connection errors are retried with backoff.

Setup:
1. Create a connected app and obtain an access token for the org
2. Set SALESFORCE_INSTANCE_URL and SALESFORCE_ACCESS_TOKEN in .env
"""
from __future__ import annotations

import os
import re
from datetime import date
from typing import Any, Dict, List, Optional

import aiohttp
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hub_engine.lib.config import SALESFORCE_API_VERSION
from hub_engine.lib.errors import DataFetchError, UnknownFieldError
from hub_engine.lib.logger import setup_logger
from hub_engine.lib.utils import safe_float
from hub_engine.periods import Period
from hub_engine.query_builder import Filter, QueryBuilder, QueryDescriptor

logger = setup_logger(__name__)

UNKNOWN_COLUMN = re.compile(r"No such column '([^']+)'")
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)


def _parse_error(status: int, body: Any, object_type: str) -> Exception:
    errors = body if isinstance(body, list) else [body] if isinstance(body, dict) else []
    for err in errors:
        if not isinstance(err, dict):
            continue
        message = str(err.get("message") or "")
        match = UNKNOWN_COLUMN.search(message)
        if err.get("errorCode") == "INVALID_FIELD" or match:
            return UnknownFieldError(
                field=match.group(1) if match else None,
                object_type=object_type,
                message=message or None,
            )
    return DataFetchError(
        f"Salesforce query on {object_type} returned {status}: {str(body)[:300]}",
        source="salesforce",
        status_code=status,
    )


class SalesforceConnection:
    """Salesforce REST connector (record fetch + quota source)."""

    def __init__(self, instance_url: str = None, access_token: str = None,
                 api_version: str = None):
        self.instance_url = (instance_url or os.getenv("SALESFORCE_INSTANCE_URL") or "").rstrip("/")
        self.access_token = access_token or os.getenv("SALESFORCE_ACCESS_TOKEN")
        self.api_version = api_version or SALESFORCE_API_VERSION

    @property
    def is_configured(self) -> bool:
        return bool(self.instance_url and self.access_token)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(aiohttp.ClientConnectionError),
        reraise=True,
    )
    async def _get(self, session: aiohttp.ClientSession, path: str,
                   params: Optional[Dict[str, str]], object_type: str) -> Dict:
        url = f"{self.instance_url}{path}"
        async with session.get(url, headers=self._headers(), params=params) as resp:
            try:
                body = await resp.json(content_type=None)
            except ValueError:
                body = await resp.text()
            if resp.status == 200:
                return body
            raise _parse_error(resp.status, body, object_type)

    async def query(self, descriptor: QueryDescriptor) -> Dict[str, Any]:
        """Run a query and return {"records": [...], "totalSize": n}."""
        if not self.is_configured:
            raise DataFetchError(
                "Salesforce is not configured; set SALESFORCE_INSTANCE_URL and "
                "SALESFORCE_ACCESS_TOKEN in .env",
                source="salesforce",
            )

        soql = descriptor.to_soql()
        logger.debug("SOQL: %s", soql)
        records: List[Dict] = []
        async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
            data = await self._get(
                session, f"/services/data/v{self.api_version}/query",
                {"q": soql}, descriptor.object_type,
            )
            records.extend(data.get("records") or [])
            while not data.get("done", True) and data.get("nextRecordsUrl"):
                if descriptor.limit is not None and len(records) >= descriptor.limit:
                    break
                data = await self._get(session, data["nextRecordsUrl"], None, descriptor.object_type)
                records.extend(data.get("records") or [])

        if descriptor.limit is not None:
            records = records[: descriptor.limit]
        logger.info("%s query returned %d records", descriptor.object_type, len(records))
        return {"records": records, "totalSize": len(records)}

    async def get_native_quota(self, subject_id: str, field_name: str) -> float:
        """Quota field on the User record; 0 when unset or the field is missing."""
        descriptor = (
            QueryBuilder("User")
            .select("Id", field_name)
            .where(Filter("Id", "eq", subject_id))
            .limit(1)
            .build()
        )
        try:
            result = await self.query(descriptor)
        except UnknownFieldError:
            logger.warning("Quota field %s does not exist on User", field_name)
            return 0.0
        records = result.get("records") or []
        return safe_float(records[0].get(field_name)) if records else 0.0

    async def get_external_quota(self, subject_id: str, period: Period) -> float:
        """Sum of ForecastingQuota amounts whose start date falls in the period."""
        builder = (
            QueryBuilder("ForecastingQuota")
            .select("Id", "QuotaAmount", "StartDate")
            .where(Filter("QuotaOwnerId", "eq", subject_id))
            .limit(200)
        )
        if not period.is_unbounded:
            builder.where(
                Filter("StartDate", "gte", period.start) if period.start != date.min else None,
                Filter("StartDate", "lte", period.end) if period.end != date.max else None,
            )
        result = await self.query(builder.build())
        return sum(safe_float(r.get("QuotaAmount")) for r in result.get("records") or [])

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": "Salesforce",
            "configured": self.is_configured,
            "api_version": self.api_version,
            "features": ["query", "native_quota", "forecasting_quota"],
        }
