"""
Supamock - Query Pipeline.

Runs a QuerySpec against a table snapshot in a fixed order; later stages
rely on what earlier ones did:

1. Top-level filters, then referenced-table filters (and !inner pruning)
2. Capture the match count
3. Top-level ordering
4. Referenced-table ordering
5. Top-level pagination
6. Referenced-table pagination
7. Projection
8. Shape resolution (resolve_shape)
9. Count metadata (from QueryResult.total / offset)

The input rows must be a snapshot: referenced-table stages rewrite the
embedded values of the rows they are given.
"""

import logging
from dataclasses import dataclass
from typing import Any

from supamock.errors import MalformedRequest, ShapeError
from supamock.query.filters import FilterExpression, conjoin, resolve_column
from supamock.query.spec import OrderTerm, Projection, QuerySpec, Shape
from supamock.values import ValueKind, kind_of, sort_key

logger = logging.getLogger(__name__)

Row = dict[str, Any]


@dataclass
class QueryResult:
    """Rows after stages 1-7, plus the pre-pagination count."""

    rows: list[Row]
    total: int
    offset: int = 0


def run_query(rows: list[Row], spec: QuerySpec) -> QueryResult:
    """Apply stages 1-7 of the pipeline to a snapshot of rows."""
    # 1. Filters
    predicate = conjoin(spec.filters)
    if predicate is not None:
        rows = [row for row in rows if predicate(row)]
    for relation, embedded in spec.embedded.items():
        embedded_predicate = conjoin(embedded.filters)
        if embedded_predicate is not None:
            rows = [filter_embedded(row, relation, embedded_predicate) for row in rows]
    for relation in spec.inner_relations:
        rows = [row for row in rows if _has_related(row, relation)]

    # 2. Count before any pagination
    total = len(rows)

    # 3-4. Ordering
    rows = order_rows(rows, spec.order)
    for relation, embedded in spec.embedded.items():
        if embedded.order:
            _rewrite_sequences(rows, relation, lambda items, e=embedded: order_rows(items, e.order))

    # 5-6. Pagination
    offset = spec.offset or 0
    rows = paginate(rows, spec.offset, spec.limit)
    for relation, embedded in spec.embedded.items():
        if embedded.offset is not None or embedded.limit is not None:
            _rewrite_sequences(rows, relation, lambda items, e=embedded: paginate(items, e.offset, e.limit))

    # 7. Projection
    rows = project(rows, spec.projection)

    logger.debug(f"query matched {total} row(s), returning {len(rows)}")
    return QueryResult(rows=rows, total=total, offset=offset)


# =============================================================================
# Stage helpers
# =============================================================================


def filter_embedded(row: Row, relation: str, predicate: FilterExpression) -> Row:
    """
    Apply a referenced-table filter to one parent row.

    A to-one relation (object) is nulled out when it fails; a to-many
    relation (list) is narrowed to the matching elements. The parent row
    is kept either way.
    """
    if relation not in row:
        raise MalformedRequest(
            f'Referenced table "{relation}" not found in row',
            hint=f"embed {relation} in the select list or check the relation name",
        )
    related = row[relation]
    match kind_of(related):
        case ValueKind.NULL:
            pass
        case ValueKind.MAPPING:
            row[relation] = related if predicate(related) else None
        case ValueKind.SEQUENCE:
            row[relation] = [item for item in related if predicate(item)]
        case kind:
            raise MalformedRequest(f'Referenced table "{relation}" holds a {kind.value}, not an object or list')
    return row


def _has_related(row: Row, relation: str) -> bool:
    related = row.get(relation)
    match kind_of(related):
        case ValueKind.NULL:
            return False
        case ValueKind.SEQUENCE:
            return bool(related)
        case _:
            return True


def _rewrite_sequences(rows: list[Row], relation: str, rewrite) -> None:
    """Replace each row's to-many relation with `rewrite(items)`."""
    for row in rows:
        related = row.get(relation)
        if kind_of(related) is ValueKind.SEQUENCE:
            row[relation] = rewrite(related)


def order_rows(rows: list[Row], terms: list[OrderTerm]) -> list[Row]:
    """
    Stable multi-key sort. Terms are applied from lowest to highest
    priority so the first term wins. Nulls sort last ascending and first
    descending unless the term says otherwise.
    """
    ordered = list(rows)
    for term in reversed(terms):
        reverse = not term.ascending
        nulls_first = term.nulls_first if term.nulls_first is not None else not term.ascending
        null_rank = 0 if nulls_first != reverse else 1
        value_rank = 1 - null_rank

        def key(row: Row, column: str = term.column, null_rank: int = null_rank, value_rank: int = value_rank):
            value = resolve_column(row, column) if isinstance(row, dict) else None
            if value is None:
                return (null_rank, ())
            return (value_rank, sort_key(value))

        ordered.sort(key=key, reverse=reverse)
    return ordered


def paginate(rows: list[Row], offset: int | None, limit: int | None) -> list[Row]:
    """Skip `offset` rows, then keep at most `limit`."""
    start = offset or 0
    end = None if limit is None else start + limit
    return rows[start:end]


def project(rows: list[Row], projection: Projection) -> list[Row]:
    """Restrict rows to the selected columns, recursing into embeds."""
    return [project_row(row, projection) for row in rows]


def project_row(row: Row, projection: Projection) -> Row:
    projected: Row = dict(row) if projection.wildcard else {}

    for column in projection.columns:
        if "->" in column.name or column.name in row:
            projected[column.output_key] = resolve_column(row, column.name)

    for embed in projection.embeds:
        if embed.relation not in row:
            continue
        if embed.alias:
            projected.pop(embed.relation, None)
        projected[embed.output_key] = _project_related(row[embed.relation], embed.projection)

    return projected


def _project_related(related: Any, projection: Projection) -> Any:
    match kind_of(related):
        case ValueKind.MAPPING:
            return project_row(related, projection)
        case ValueKind.SEQUENCE:
            return [_project_related(item, projection) for item in related]
        case _:
            return related


def resolve_shape(rows: list[Row], shape: Shape) -> Any:
    """
    Turn the final row list into the response body.

    - single: exactly one row, else ShapeError
    - maybeSingle: None for zero rows, the row for one, ShapeError for more
    - list: the rows unchanged
    """
    match shape:
        case "single":
            if len(rows) != 1:
                raise ShapeError(
                    f"{len(rows)} rows were found for single query",
                    shape="single",
                    rows=len(rows),
                    details="The result contains 0 rows" if not rows else f"The result contains {len(rows)} rows",
                )
            return rows[0]
        case "maybeSingle":
            if len(rows) > 1:
                raise ShapeError(
                    f"{len(rows)} rows were found for maybeSingle query",
                    shape="maybeSingle",
                    rows=len(rows),
                    details=f"The result contains {len(rows)} rows",
                )
            return rows[0] if rows else None
        case _:
            return rows


def content_range(result: QueryResult) -> str:
    """`<offset>-<offset+n>/<total>` for count responses."""
    return f"{result.offset}-{result.offset + len(result.rows)}/{result.total}"
