"""
Supamock - Query layer.

Filter compilation, query-string decomposition, and the read pipeline.
"""

from supamock.query.filters import (
    Condition,
    Conjunction,
    Disjunction,
    FilterExpression,
    Negation,
    compile_filter,
    compile_logic,
    conjoin,
)
from supamock.query.pipeline import QueryResult, content_range, project, resolve_shape, run_query
from supamock.query.spec import OrderTerm, Projection, QuerySpec, parse_query

__all__ = [
    # Filters
    "Condition",
    "Conjunction",
    "Disjunction",
    "FilterExpression",
    "Negation",
    "compile_filter",
    "compile_logic",
    "conjoin",
    # Spec
    "OrderTerm",
    "Projection",
    "QuerySpec",
    "parse_query",
    # Pipeline
    "QueryResult",
    "content_range",
    "project",
    "resolve_shape",
    "run_query",
]
