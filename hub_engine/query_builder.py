"""
Parameterized Query Builder
============================

Builds structured query descriptors from field lists and filter objects.
Callers never interpolate values into query text; the record-fetch adapter
renders a descriptor with `to_soql()`, which validates every identifier and
escapes every value.

Usage:
    from hub_engine.query_builder import QueryBuilder, Filter, AnyOf

    descriptor = (
        QueryBuilder("Opportunity")
        .select("Id", "Name", "Amount", "StageName")
        .where(Filter("OwnerId", "eq", user_id), Filter("IsClosed", "eq", False))
        .order_by("LastModifiedDate")
        .limit(20)
        .build()
    )
"""
from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple, Union

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)*$")
OBJECT_NAME_PATTERN = re.compile(r"^[A-Za-z_]\w*$")

MAX_LIMIT = 2000

OPERATORS = {
    "eq": "=",
    "neq": "!=",
    "lt": "<",
    "gt": ">",
    "lte": "<=",
    "gte": ">=",
    "in": "IN",
    "not_in": "NOT IN",
    "contains": "LIKE",
    "is_null": "=",
    "not_null": "!=",
}


def validate_field_name(name: str) -> bool:
    """Standard, custom (__c/__r) and dotted relationship field names."""
    return isinstance(name, str) and bool(FIELD_NAME_PATTERN.match(name))


def escape_soql_value(value: str) -> str:
    """Escape a string for use inside a quoted SOQL literal."""
    return (
        value.replace("\x00", "")
        .replace("\\", "\\\\")
        .replace("'", "\\'")
    )


def escape_soql_like(value: str) -> str:
    """Escape a string for a LIKE pattern, including the % and _ wildcards."""
    return escape_soql_value(value).replace("%", "\\%").replace("_", "\\_")


def _require_field(name: str) -> str:
    if not validate_field_name(name):
        raise ValueError(f"Invalid field name: {name!r}")
    return name


# ─── Conditions ─────────────────────────────────────────────

@dataclass(frozen=True)
class Filter:
    """A single field comparison."""
    field: str
    op: str
    value: Any = None

    def __post_init__(self):
        _require_field(self.field)
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.op!r}")
        if self.op in ("in", "not_in"):
            values = tuple(self.value or ())
            if not values:
                raise ValueError(f"'{self.op}' on {self.field} needs at least one value")
            object.__setattr__(self, "value", values)


@dataclass(frozen=True, init=False)
class AllOf:
    """Conjunction of conditions."""
    conditions: Tuple["Condition", ...]

    def __init__(self, *conditions: "Condition"):
        object.__setattr__(self, "conditions", tuple(c for c in conditions if c is not None))


@dataclass(frozen=True, init=False)
class AnyOf:
    """Disjunction of conditions."""
    conditions: Tuple["Condition", ...]

    def __init__(self, *conditions: "Condition"):
        object.__setattr__(self, "conditions", tuple(c for c in conditions if c is not None))


Condition = Union[Filter, AllOf, AnyOf]


def render_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    if isinstance(value, date):
        return value.isoformat()
    return f"'{escape_soql_value(str(value))}'"


def render_condition(condition: Condition) -> str:
    """Render a condition tree to SOQL text."""
    if isinstance(condition, Filter):
        op = OPERATORS[condition.op]
        if condition.op in ("is_null", "not_null"):
            return f"{condition.field} {op} null"
        if condition.op == "contains":
            return f"{condition.field} LIKE '%{escape_soql_like(str(condition.value))}%'"
        if condition.op in ("in", "not_in"):
            values = ", ".join(render_literal(v) for v in condition.value)
            return f"{condition.field} {op} ({values})"
        return f"{condition.field} {op} {render_literal(condition.value)}"

    joiner = " AND " if isinstance(condition, AllOf) else " OR "
    parts = [render_condition(c) for c in condition.conditions]
    if not parts:
        # Empty conjunction is always true, empty disjunction never is
        return "Id != null" if isinstance(condition, AllOf) else "Id = null"
    if len(parts) == 1:
        return parts[0]
    return "(" + joiner.join(parts) + ")"


# ─── Descriptor ─────────────────────────────────────────────

@dataclass(frozen=True)
class QueryDescriptor:
    """A fully structured read against one CRM object."""
    object_type: str
    fields: Tuple[str, ...]
    condition: Optional[Condition] = None
    order: Tuple[Tuple[str, bool], ...] = ()
    limit: Optional[int] = None
    offset: Optional[int] = None

    def with_fields(self, fields: Iterable[str]) -> "QueryDescriptor":
        """Same query, different field set (used for reduced-field retries)."""
        return replace(self, fields=tuple(_require_field(f) for f in fields))

    def to_soql(self) -> str:
        sql = f"SELECT {', '.join(self.fields)} FROM {self.object_type}"
        if self.condition is not None:
            where = render_condition(self.condition)
            if where.startswith("(") and where.endswith(")") and isinstance(self.condition, AllOf):
                where = where[1:-1]
            sql += f" WHERE {where}"
        if self.order:
            clauses = [
                f"{name} {'DESC' if desc else 'ASC'}{' NULLS LAST' if desc else ''}"
                for name, desc in self.order
            ]
            sql += " ORDER BY " + ", ".join(clauses)
        if self.limit is not None:
            sql += f" LIMIT {self.limit}"
        if self.offset:
            sql += f" OFFSET {self.offset}"
        return sql


class QueryBuilder:
    """Fluent builder for QueryDescriptor."""

    def __init__(self, object_type: str):
        if not OBJECT_NAME_PATTERN.match(object_type or ""):
            raise ValueError(f"Invalid object type: {object_type!r}")
        self._object_type = object_type
        self._fields: List[str] = []
        self._conditions: List[Condition] = []
        self._order: List[Tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._offset: Optional[int] = None

    def select(self, *fields: str) -> "QueryBuilder":
        for name in fields:
            if _require_field(name) not in self._fields:
                self._fields.append(name)
        return self

    def where(self, *conditions: Optional[Condition]) -> "QueryBuilder":
        """Add conditions; all added conditions are AND-ed. None is ignored."""
        self._conditions.extend(c for c in conditions if c is not None)
        return self

    def order_by(self, name: str, desc: bool = False) -> "QueryBuilder":
        self._order.append((_require_field(name), desc))
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self._limit = max(1, min(int(count), MAX_LIMIT))
        return self

    def offset(self, count: int) -> "QueryBuilder":
        self._offset = max(0, int(count))
        return self

    def build(self) -> QueryDescriptor:
        if not self._fields:
            self._fields.append("Id")
        if not self._conditions:
            condition = None
        elif len(self._conditions) == 1:
            condition = self._conditions[0]
        else:
            condition = AllOf(*self._conditions)
        return QueryDescriptor(
            object_type=self._object_type,
            fields=tuple(self._fields),
            condition=condition,
            order=tuple(self._order),
            limit=self._limit,
            offset=self._offset,
        )
