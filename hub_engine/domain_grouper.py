"""
Domain Grouper
===============

Collapses near-duplicate accounts (brands of one parent, "Acme Inc" vs
"Acme Corp") into one group keyed on a name-derived domain key.

  extract_domain_key("Acme Inc")          -> "acme"
  extract_domain_key("Park Hyatt")        -> "hyatt"
  extract_domain_key("Open AI")           -> "openai"
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Sequence, Tuple

from hub_engine.entities import ScoredEntity
from hub_engine.lib.utils import safe_float

COMPANY_SUFFIX = re.compile(
    r"\s+(inc|llc|ltd|corporation|corp|company|co|group|international|intl)\.?$"
)

SUMMED_ATTRIBUTES = ("employee_count",)


@dataclass(frozen=True)
class Group:
    key: str
    representative: ScoredEntity
    members: Tuple[ScoredEntity, ...]

    @property
    def is_group(self) -> bool:
        return len(self.members) > 1

    @property
    def group_count(self) -> int:
        return len(self.members)


def extract_domain_key(name: str) -> str:
    """Normalise a display name to its grouping key."""
    cleaned = COMPANY_SUFFIX.sub("", (name or "").lower().strip()).strip()
    words = cleaned.split()
    if len(words) >= 2 and len(words[-1]) > 3:
        return words[-1]
    return "".join(words)


def _aggregate(members: Sequence[ScoredEntity], key: str) -> ScoredEntity:
    # Highest score wins; max() keeps the first of equal scores
    representative = max(members, key=lambda e: e.score)
    attributes = dict(representative.base_attributes)
    if len(members) > 1:
        for name in SUMMED_ATTRIBUTES:
            if any(name in m.base_attributes for m in members):
                total = sum(safe_float(m.attr(name)) for m in members)
                attributes[name] = int(total) if total.is_integer() else total
        attributes["group_member_ids"] = [m.id for m in members]
        attributes["group_member_names"] = [m.display_name for m in members]
    return replace(representative, base_attributes=attributes, domain_key=key)


def group_by_domain(entities: Sequence[ScoredEntity]) -> List[Group]:
    """
    Group entities by domain key, in order of each key's first appearance.

    Grouping the representatives of a previous pass yields the same groups.
    """
    buckets: Dict[str, List[ScoredEntity]] = {}
    for entity in entities:
        key = entity.domain_key or extract_domain_key(entity.display_name)
        buckets.setdefault(key, []).append(replace(entity, domain_key=key))

    return [
        Group(key=key, representative=_aggregate(members, key), members=tuple(members))
        for key, members in buckets.items()
    ]
