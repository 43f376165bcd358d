"""
Supamock - Query specification.

Decomposes a request's query string into a QuerySpec: what to filter, how to
order, which window to return, and which columns to keep. Parsing happens
once per request; the pipeline only reads the result.

    select=id,title,authors(name),comments(*)
    &views=gte.100&comments.content=like.*great*
    &order=id.desc&comments.order=id&limit=10&comments.limit=2
"""

import re
from dataclasses import dataclass, field
from typing import Literal

from supamock.errors import MalformedRequest
from supamock.query.filters import (
    FilterExpression,
    compile_filter,
    compile_logic,
    is_logic_key,
    split_top_level,
)

Shape = Literal["list", "single", "maybeSingle"]

# Keys that never compile to filters
RESERVED_KEYS = frozenset({"select", "order", "limit", "offset", "range", "on_conflict", "columns"})
_MODIFIERS = frozenset({"order", "limit", "offset", "range"})


# =============================================================================
# Spec models
# =============================================================================


@dataclass(frozen=True)
class OrderTerm:
    """One `column[.asc|.desc][.nullsfirst|.nullslast]` term."""

    column: str
    ascending: bool = True
    nulls_first: bool | None = None  # None = Postgres default (last for asc, first for desc)


@dataclass
class ColumnRef:
    name: str
    alias: str | None = None

    @property
    def output_key(self) -> str:
        if self.alias:
            return self.alias
        if "->" in self.name:
            return re.split(r"->>|->", self.name)[-1]
        return self.name


@dataclass
class EmbedRef:
    """`alias:relation!hint(columns)` inside a select list."""

    relation: str
    projection: "Projection"
    alias: str | None = None
    inner: bool = False

    @property
    def output_key(self) -> str:
        return self.alias or self.relation


@dataclass
class Projection:
    wildcard: bool = True
    columns: list[ColumnRef] = field(default_factory=list)
    embeds: list[EmbedRef] = field(default_factory=list)

    def embed_for(self, name: str) -> EmbedRef | None:
        """Find an embed by relation name or alias."""
        for embed in self.embeds:
            if name in (embed.relation, embed.alias):
                return embed
        return None


@dataclass
class EmbeddedSpec:
    """Filters and modifiers scoped to one referenced table."""

    filters: list[FilterExpression] = field(default_factory=list)
    order: list[OrderTerm] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None


@dataclass
class QuerySpec:
    filters: list[FilterExpression] = field(default_factory=list)
    embedded: dict[str, EmbeddedSpec] = field(default_factory=dict)
    order: list[OrderTerm] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    projection: Projection = field(default_factory=Projection)

    @property
    def inner_relations(self) -> list[str]:
        return [embed.relation for embed in self.projection.embeds if embed.inner]


# =============================================================================
# Parsers
# =============================================================================


def parse_order(value: str) -> list[OrderTerm]:
    """Parse `order=a.desc,b.nullsfirst` into OrderTerms."""
    terms: list[OrderTerm] = []
    for raw in split_top_level(value):
        column, *modifiers = raw.strip().split(".")
        if not column:
            raise MalformedRequest(f'Invalid order term "{raw}"')
        ascending = True
        nulls_first = None
        for modifier in modifiers:
            match modifier:
                case "asc":
                    ascending = True
                case "desc":
                    ascending = False
                case "nullsfirst":
                    nulls_first = True
                case "nullslast":
                    nulls_first = False
                case _:
                    raise MalformedRequest(f'Invalid order modifier "{modifier}" in "{raw}"')
        terms.append(OrderTerm(column, ascending, nulls_first))
    return terms


def parse_count(key: str, value: str) -> int:
    """Parse a non-negative integer modifier."""
    try:
        number = int(value)
    except ValueError:
        raise MalformedRequest(f'"{key}" must be an integer, got "{value}"')
    if number < 0:
        raise MalformedRequest(f'"{key}" must not be negative')
    return number


def parse_projection(value: str) -> Projection:
    """
    Parse a select list, recursing into embedded relations.

    Supports `alias:column`, `column::cast` (cast ignored), `*`,
    `relation(...)`, `alias:relation(...)` and `relation!hint(...)`;
    the `!inner` hint marks an inner join.
    """
    projection = Projection(wildcard=False)
    for raw in split_top_level(value):
        item = raw.strip()
        if not item:
            continue
        if item == "*":
            projection.wildcard = True
        elif item.endswith(")") and "(" in item:
            projection.embeds.append(_parse_embed(item))
        else:
            name, alias = _split_alias(item)
            projection.columns.append(ColumnRef(name.split("::")[0].strip(), alias))
    return projection


def _split_alias(item: str) -> tuple[str, str | None]:
    # alias:column, but not column::cast
    match = re.match(r"^([^:]+):(?!:)(.+)$", item)
    if match:
        return match.group(2).strip(), match.group(1).strip()
    return item, None


def _parse_embed(item: str) -> EmbedRef:
    opening = item.index("(")
    head, body = item[:opening].strip(), item[opening + 1 : -1]
    target, alias = _split_alias(head)
    relation, *hints = target.split("!")
    if not relation:
        raise MalformedRequest(f'Invalid embedded resource "{item}"')
    return EmbedRef(
        relation=relation.strip(),
        projection=parse_projection(body),
        alias=alias,
        inner="inner" in hints,
    )


def parse_range_header(value: str | None) -> tuple[int | None, int | None]:
    """Parse `Range: 0-9` (optionally `items=0-9`) into (offset, limit)."""
    if not value:
        return None, None
    match = re.match(r"^(?:items=)?\s*(\d+)-(\d*)\s*$", value)
    if not match:
        raise MalformedRequest(f'Invalid Range header "{value}"')
    start = int(match.group(1))
    if not match.group(2):
        return start, None
    end = int(match.group(2))
    if end < start:
        raise MalformedRequest(f'Invalid Range header "{value}"')
    return start, end - start + 1


def parse_range(key: str, value: str) -> tuple[int, int]:
    """Parse the inclusive `range=0-9` query modifier into (offset, limit)."""
    if not re.match(r"^\s*\d+-\d+\s*$", value):
        raise MalformedRequest(f'"{key}" must look like "<from>-<to>", got "{value}"')
    return parse_range_header(value)


def parse_query(params: list[tuple[str, str]], range_header: str | None = None) -> QuerySpec:
    """
    Build a QuerySpec from query pairs. Repeated keys are all kept, so
    `id=gt.1&id=lt.5` ANDs both conditions.
    """
    spec = QuerySpec()

    for key, value in params:
        if key == "select":
            spec.projection = parse_projection(value)

    for key, value in params:
        if key in RESERVED_KEYS:
            _apply_modifier(spec, key, value)
        elif is_logic_key(key):
            spec.filters.append(compile_logic(key, value))
        elif "." in key:
            name, rest = key.split(".", 1)
            embedded = spec.embedded.setdefault(_relation_name(spec, name), EmbeddedSpec())
            if rest in _MODIFIERS:
                _apply_embedded_modifier(embedded, key, rest, value)
            elif is_logic_key(rest):
                embedded.filters.append(compile_logic(rest, value))
            else:
                embedded.filters.append(compile_filter(rest, value))
        else:
            spec.filters.append(compile_filter(key, value))

    if spec.limit is None and spec.offset is None:
        spec.offset, spec.limit = parse_range_header(range_header)
    return spec


def _relation_name(spec: QuerySpec, name: str) -> str:
    embed = spec.projection.embed_for(name)
    return embed.relation if embed else name


def _apply_modifier(spec: QuerySpec, key: str, value: str) -> None:
    match key:
        case "order":
            spec.order.extend(parse_order(value))
        case "limit":
            spec.limit = parse_count(key, value)
        case "offset":
            spec.offset = parse_count(key, value)
        case "range":
            spec.offset, spec.limit = parse_range(key, value)


def _apply_embedded_modifier(embedded: EmbeddedSpec, key: str, modifier: str, value: str) -> None:
    match modifier:
        case "order":
            embedded.order.extend(parse_order(value))
        case "limit":
            embedded.limit = parse_count(key, value)
        case "offset":
            embedded.offset = parse_count(key, value)
        case "range":
            embedded.offset, embedded.limit = parse_range(key, value)
