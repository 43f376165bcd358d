"""
Supamock - Filter Expression Compiler.

Compiles PostgREST's `column=operator.value` grammar into an expression
tree that is built once per request and evaluated per row:

    posts?views=gte.100&tags=cs.{news}&or=(id.eq.1,title.like.*draft*)

- Condition: one operator applied to one column
- Negation: `not.<operator>.<value>` and `not.or(...)`
- Conjunction / Disjunction: `and(...)`, `or(...)`, nested freely

Operands are parsed at compile time, so a bad literal or an unknown
operator fails the request up front instead of silently matching.
"""

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from supamock.errors import MalformedRequest
from supamock.values import ValueKind, kind_of, parse_instant, parse_number, to_text

Row = dict[str, Any]


# =============================================================================
# Expression tree
# =============================================================================


@dataclass(frozen=True)
class Condition:
    """A single operator applied to a column (or JSON path into a column)."""

    column: str
    operator: str
    literal: str
    operand: Any = field(default=None, compare=False, repr=False)

    def __call__(self, row: Row) -> bool:
        if not isinstance(row, dict):
            return False
        value = resolve_column(row, self.column)
        return _EVALUATORS[self.operator](value, self.operand)


@dataclass(frozen=True)
class Negation:
    inner: "FilterExpression"

    def __call__(self, row: Row) -> bool:
        return not self.inner(row)


@dataclass(frozen=True)
class Conjunction:
    parts: tuple["FilterExpression", ...]

    def __call__(self, row: Row) -> bool:
        return all(part(row) for part in self.parts)


@dataclass(frozen=True)
class Disjunction:
    parts: tuple["FilterExpression", ...]

    def __call__(self, row: Row) -> bool:
        return any(part(row) for part in self.parts)


FilterExpression = Condition | Negation | Conjunction | Disjunction


def conjoin(expressions: list[FilterExpression]) -> FilterExpression | None:
    """AND a list of expressions together; None when the list is empty."""
    if not expressions:
        return None
    if len(expressions) == 1:
        return expressions[0]
    return Conjunction(tuple(expressions))


# =============================================================================
# Column resolution
# =============================================================================

_JSON_ARROW = re.compile(r"(->>|->)")


def resolve_column(row: Row, column: str) -> Any:
    """
    Read a column, following `->` / `->>` JSON paths.

    `payload->>kind` returns the text form of payload["kind"].
    """
    if "->" not in column:
        return row.get(column)

    base, *steps = _JSON_ARROW.split(column)
    value: Any = row.get(base)
    arrow = "->"
    for arrow, key in zip(steps[::2], steps[1::2]):
        match kind_of(value):
            case ValueKind.MAPPING:
                value = value.get(key)
            case ValueKind.SEQUENCE if key.lstrip("-").isdigit():
                index = int(key)
                value = value[index] if -len(value) <= index < len(value) else None
            case _:
                return None
    if arrow == "->>" and value is not None and not isinstance(value, str):
        return to_text(value)
    return value


# =============================================================================
# Literal helpers
# =============================================================================

_OPENERS = {"(": ")", "{": "}", "[": "]"}


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """
    Split on `separator` outside of brackets and double quotes.

    `a.eq.1,b.in.(1,2),c.cs.{"x,y"}` -> ["a.eq.1", "b.in.(1,2)", 'c.cs.{"x,y"}']
    """
    parts: list[str] = []
    depth: list[str] = []
    current: list[str] = []
    in_quotes = False
    escaped = False

    for char in text:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "\\" and in_quotes:
            current.append(char)
            escaped = True
            continue
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if char in _OPENERS:
                depth.append(_OPENERS[char])
            elif depth and char == depth[-1]:
                depth.pop()
            elif char == separator and not depth:
                parts.append("".join(current))
                current = []
                continue
        current.append(char)

    if in_quotes or depth:
        raise MalformedRequest(f'Unbalanced quotes or brackets in "{text}"')
    parts.append("".join(current))
    return parts


def unquote(item: str) -> str:
    """Strip PostgREST double quotes from a list item."""
    item = item.strip()
    if len(item) >= 2 and item[0] == item[-1] == '"':
        try:
            return json.loads(item)
        except json.JSONDecodeError:
            return item[1:-1]
    return item


def _unwrap(literal: str, opener: str, closer: str, what: str) -> str:
    if not (literal.startswith(opener) and literal.endswith(closer)):
        raise MalformedRequest(f'{what} expects a value wrapped in "{opener}{closer}", got "{literal}"')
    return literal[1:-1]


def _list_items(body: str) -> list[str]:
    if not body.strip():
        return []
    return [unquote(item) for item in split_top_level(body)]


# =============================================================================
# Operand compilers (literal -> operand) and evaluators (value, operand -> bool)
# =============================================================================


def _compile_text(literal: str) -> str:
    return literal


def _compile_ordering(literal: str) -> tuple[str, Any]:
    instant = parse_instant(literal)
    if instant is not None:
        return ("instant", instant)
    number = parse_number(literal)
    if number is not None:
        return ("number", number)
    raise MalformedRequest(
        f'Unsupported value "{literal}" for an ordering comparison',
        hint="gt/gte/lt/lte compare dates or numbers only",
    )


def _compile_pattern(literal: str, ignore_case: bool) -> re.Pattern:
    pieces = []
    for char in literal:
        if char in "%*":
            pieces.append(".*")
        elif char == "_":
            pieces.append(".")
        else:
            pieces.append(re.escape(char))
    flags = re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.compile("".join(pieces), flags)


def _compile_is(literal: str) -> None:
    if literal.lower() != "null":
        raise MalformedRequest(f'Unsupported "is" value "{literal}"', hint="only is.null is supported")
    return None


def _compile_in(literal: str) -> frozenset[str]:
    return frozenset(_list_items(_unwrap(literal, "(", ")", "in")))


@dataclass(frozen=True)
class _Collection:
    """Operand of cs/cd/ov: element texts for arrays, a dict for JSON objects."""

    elements: frozenset[str] | None
    mapping: dict | None


def _compile_collection(literal: str) -> _Collection:
    literal = literal.strip()
    if literal == "{}":
        return _Collection(frozenset(), {})
    try:
        decoded = json.loads(literal)
    except json.JSONDecodeError:
        decoded = None
    match kind_of(decoded):
        case ValueKind.SEQUENCE:
            return _Collection(frozenset(to_text(item) for item in decoded), None)
        case ValueKind.MAPPING:
            return _Collection(None, decoded)
    body = _unwrap(literal, "{", "}", "array operators")
    return _Collection(frozenset(_list_items(body)), None)


def _compile_fts(literal: str) -> tuple[tuple[str, bool], ...]:
    terms = re.findall(r"(\w+)(:\*)?", literal.lower())
    if not terms:
        raise MalformedRequest(f'Empty text search query "{literal}"')
    return tuple((word, bool(prefix)) for word, prefix in terms)


def _compile_match(literal: str) -> dict:
    try:
        decoded = json.loads(literal)
    except json.JSONDecodeError:
        decoded = None
    if not isinstance(decoded, dict):
        raise MalformedRequest(f'match expects a JSON object, got "{literal}"')
    return decoded


def _eval_eq(value: Any, operand: str) -> bool:
    return to_text(value) == operand


def _eval_neq(value: Any, operand: str) -> bool:
    return to_text(value) != operand


def _ordering(compare: Callable[[Any, Any], bool]) -> Callable[[Any, tuple[str, Any]], bool]:
    def evaluate(value: Any, operand: tuple[str, Any]) -> bool:
        mode, target = operand
        if mode == "instant":
            current: datetime | int | float | None = parse_instant(value)
        else:
            current = parse_number(value)
        if current is None:
            return False
        return compare(current, target)

    return evaluate


def _eval_pattern(value: Any, operand: re.Pattern) -> bool:
    if value is None:
        return False
    return operand.fullmatch(to_text(value)) is not None


def _eval_is(value: Any, operand: None) -> bool:
    return value is None


def _eval_in(value: Any, operand: frozenset[str]) -> bool:
    return to_text(value) in operand


def _eval_contains(value: Any, operand: _Collection) -> bool:
    match kind_of(value):
        case ValueKind.SEQUENCE if operand.elements is not None:
            return operand.elements <= {to_text(item) for item in value}
        case ValueKind.MAPPING if operand.mapping is not None:
            return all(key in value and value[key] == expected for key, expected in operand.mapping.items())
    return False


def _eval_contained_by(value: Any, operand: _Collection) -> bool:
    match kind_of(value):
        case ValueKind.SEQUENCE if operand.elements is not None:
            return {to_text(item) for item in value} <= operand.elements
        case ValueKind.MAPPING if operand.mapping is not None:
            return all(key in operand.mapping and operand.mapping[key] == current for key, current in value.items())
    return False


def _eval_overlaps(value: Any, operand: _Collection) -> bool:
    if kind_of(value) is not ValueKind.SEQUENCE or operand.elements is None:
        return False
    return any(to_text(item) in operand.elements for item in value)


def _eval_fts(value: Any, operand: tuple[tuple[str, bool], ...]) -> bool:
    if not isinstance(value, str):
        return False
    words = set(re.findall(r"\w+", value.lower()))
    for term, prefix in operand:
        if prefix:
            if not any(word.startswith(term) for word in words):
                return False
        elif term not in words:
            return False
    return True


def _eval_match(value: Any, operand: dict) -> bool:
    if kind_of(value) is not ValueKind.MAPPING:
        return False
    return all(key in value and value[key] == expected for key, expected in operand.items())


_COMPILERS: dict[str, Callable[[str], Any]] = {
    "eq": _compile_text,
    "neq": _compile_text,
    "gt": _compile_ordering,
    "gte": _compile_ordering,
    "lt": _compile_ordering,
    "lte": _compile_ordering,
    "like": lambda literal: _compile_pattern(literal, ignore_case=False),
    "ilike": lambda literal: _compile_pattern(literal, ignore_case=True),
    "is": _compile_is,
    "in": _compile_in,
    "cs": _compile_collection,
    "cd": _compile_collection,
    "ov": _compile_collection,
    "fts": _compile_fts,
    "match": _compile_match,
}

_EVALUATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": _eval_eq,
    "neq": _eval_neq,
    "gt": _ordering(lambda current, target: current > target),
    "gte": _ordering(lambda current, target: current >= target),
    "lt": _ordering(lambda current, target: current < target),
    "lte": _ordering(lambda current, target: current <= target),
    "like": _eval_pattern,
    "ilike": _eval_pattern,
    "is": _eval_is,
    "in": _eval_in,
    "cs": _eval_contains,
    "cd": _eval_contained_by,
    "ov": _eval_overlaps,
    "fts": _eval_fts,
    "match": _eval_match,
}

# Long names some clients send, and the full-text variants
_ALIASES = {
    "containedBy": "cd",
    "overlaps": "ov",
    "plfts": "fts",
    "phfts": "fts",
    "wfts": "fts",
}

# fts(english) -> fts; the text search config is accepted and ignored
_CONFIGURED_OPERATOR = re.compile(r"^(\w+)\(\w+\)$")

SUPPORTED_OPERATORS = frozenset(_COMPILERS) | frozenset(_ALIASES)


def _canonical_operator(token: str) -> str:
    configured = _CONFIGURED_OPERATOR.match(token)
    if configured:
        token = configured.group(1)
    operator = _ALIASES.get(token, token)
    if operator not in _COMPILERS:
        raise MalformedRequest(
            f'Unsupported filter operator "{token}"',
            hint=f"supported operators: {', '.join(sorted(SUPPORTED_OPERATORS))}",
        )
    return operator


# =============================================================================
# Entry points
# =============================================================================


def compile_filter(column: str, expression: str) -> FilterExpression:
    """
    Compile `<operator>.<value>` or `not.<operator>.<value>` for a column.

    Example:
        compile_filter("views", "not.gt.200")
        -> Negation(Condition(column="views", operator="gt", literal="200"))
    """
    negate = expression.startswith("not.")
    if negate:
        expression = expression[len("not.") :]

    token, separator, literal = expression.partition(".")
    if not separator:
        raise MalformedRequest(f'Filter "{column}={expression}" is missing an operator or value')

    operator = _canonical_operator(token)
    condition = Condition(column, operator, literal, _COMPILERS[operator](literal))
    return Negation(condition) if negate else condition


_LOGIC_KEY = re.compile(r"^(not\.)?(or|and)$")
_NESTED_GROUP = re.compile(r"^(not\.)?(or|and)\(", re.DOTALL)


def is_logic_key(key: str) -> bool:
    """True for `or`, `and`, `not.or` and `not.and`."""
    return _LOGIC_KEY.match(key) is not None


def compile_logic(key: str, expression: str) -> FilterExpression:
    """
    Compile a logic-tree parameter such as `or=(a.eq.1,b.not.gt.2)`.

    Members reuse the filter grammar as `column.operator.value` and may nest
    `and(...)`, `or(...)`, `not.and(...)` or `not.or(...)` groups.
    """
    matched = _LOGIC_KEY.match(key)
    if not matched:
        raise MalformedRequest(f'"{key}" is not a logic operator')
    body = _unwrap(expression.strip(), "(", ")", key)
    return _group(matched.group(2), body, negate=bool(matched.group(1)))


def _group(combinator: str, body: str, negate: bool) -> FilterExpression:
    members = [member.strip() for member in split_top_level(body)]
    if not any(members):
        raise MalformedRequest(f"Empty {combinator}() group")
    parts = tuple(_compile_member(member) for member in members)
    expression = Disjunction(parts) if combinator == "or" else Conjunction(parts)
    return Negation(expression) if negate else expression


def _compile_member(member: str) -> FilterExpression:
    nested = _NESTED_GROUP.match(member)
    if nested:
        body = _unwrap(member[nested.end() - 1 :], "(", ")", nested.group(2))
        return _group(nested.group(2), body, negate=bool(nested.group(1)))

    column, separator, expression = member.partition(".")
    if not separator or not column:
        raise MalformedRequest(f'Logic member "{member}" must look like column.operator.value')
    return compile_filter(column, expression)
