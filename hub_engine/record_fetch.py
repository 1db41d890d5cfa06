"""
Record fetch strategies.

`EnrichedThenBasic` is the two-step schema-drift protocol: try the query with
the enriched (custom) field set, and on UnknownFieldError retry the same query
with the basic (standard) field set. The result is tagged with the field set
that succeeded so scoring branches on `kind` instead of probing keys.

`guarded()` isolates one external call: on failure it logs and returns the
call site's default, so sibling fetches in an asyncio.gather are unaffected.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, List, Literal, Protocol, Sequence, TypeVar

from hub_engine.lib.errors import UnknownFieldError
from hub_engine.lib.logger import setup_logger
from hub_engine.query_builder import QueryDescriptor

logger = setup_logger(__name__)

T = TypeVar("T")

ENRICHED = "enriched"
BASIC = "basic"


class RecordFetcher(Protocol):
    async def query(self, descriptor: QueryDescriptor) -> Dict[str, Any]:
        """Return {"records": [...]}; raise UnknownFieldError for a missing field."""
        ...


@dataclass(frozen=True)
class FetchResult:
    kind: Literal["enriched", "basic"]
    records: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def enriched(self) -> bool:
        return self.kind == ENRICHED


async def fetch_records(fetcher: RecordFetcher, descriptor: QueryDescriptor) -> List[Dict[str, Any]]:
    """Single query, records only."""
    result = await fetcher.query(descriptor)
    return list((result or {}).get("records") or [])


class EnrichedThenBasic:
    """Enriched fetch with a reduced-field retry on schema drift."""

    def __init__(self, fetcher: RecordFetcher):
        self.fetcher = fetcher

    async def fetch(
        self,
        descriptor: QueryDescriptor,
        enriched_fields: Sequence[str],
        basic_fields: Sequence[str],
    ) -> FetchResult:
        try:
            records = await fetch_records(self.fetcher, descriptor.with_fields(enriched_fields))
            return FetchResult(kind=ENRICHED, records=records)
        except UnknownFieldError as e:
            logger.warning(
                "%s: enriched fields unavailable (%s), retrying with basic fields",
                descriptor.object_type, e.field or e,
            )
        records = await fetch_records(self.fetcher, descriptor.with_fields(basic_fields))
        return FetchResult(kind=BASIC, records=records)


async def guarded(awaitable: Awaitable[T], default: T, label: str) -> T:
    """Await one external call; log and return `default` on any failure."""
    try:
        return await awaitable
    except Exception as e:
        logger.error("%s failed: %s", label, e)
        return default
