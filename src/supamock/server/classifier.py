"""
Supamock - Request Classifier.

Maps (method, path, headers) to the operation the engine should run:

    GET    /rest/v1/posts            -> select  public.posts
    POST   /rest/v1/posts            -> insert  (upsert with resolution=...)
    PATCH  /rest/v1/posts?id=eq.1    -> update
    DELETE /rest/v1/posts?id=eq.1    -> delete
    HEAD   /rest/v1/posts            -> head
    *      /rest/v1/rpc/get_stats    -> rpc     get_stats

Edge functions live in a separate path space (/functions/v1/<name>) and are
recognized by function_name() before classification.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from supamock.config import MockSettings
from supamock.db.store import qualify
from supamock.errors import MalformedRequest
from supamock.query.spec import Shape


class RequestKind(Enum):
    SELECT = "select"
    INSERT = "insert"
    UPSERT = "upsert"
    UPDATE = "update"
    DELETE = "delete"
    HEAD = "head"
    RPC = "rpc"


@dataclass(frozen=True)
class Route:
    """Classified request: operation, schema, and table or function name."""

    kind: RequestKind
    schema: str
    name: str
    rpc: bool = False

    @property
    def qualified(self) -> str:
        return qualify(self.schema, self.name)


@dataclass(frozen=True)
class Preferences:
    """Parsed `Prefer` header."""

    resolution: str | None = None
    count: str | None = None
    returning: str | None = None

    @property
    def merge(self) -> bool:
        return self.resolution in ("merge-duplicates", "ignore-duplicates")

    @property
    def ignore_duplicates(self) -> bool:
        return self.resolution == "ignore-duplicates"

    @property
    def minimal(self) -> bool:
        return self.returning == "minimal"


_RESOLUTIONS = ("merge-duplicates", "ignore-duplicates")
_COUNT_MODES = ("exact", "planned", "estimated")


def parse_prefer(header: str | None) -> Preferences:
    """Parse `Prefer: return=representation,count=exact,...`."""
    if not header:
        return Preferences()

    values: dict[str, str] = {}
    for token in header.split(","):
        key, _, value = token.strip().partition("=")
        if key and value:
            values[key.strip()] = value.strip()

    resolution = values.get("resolution")
    count = values.get("count")
    return Preferences(
        resolution=resolution if resolution in _RESOLUTIONS else None,
        count=count if count in _COUNT_MODES else None,
        returning=values.get("return"),
    )


def resolve_shape_kind(accept: str | None, settings: MockSettings) -> Shape:
    """
    Pick the response shape from the Accept header (exact match).

    `maybeSingle` is only selected when `maybe_single_accept` is configured;
    `application/json`, `*/*` and a missing header otherwise mean a list.
    """
    accept = (accept or "").strip()
    if accept == settings.single_accept:
        return "single"
    if settings.maybe_single_accept and accept == settings.maybe_single_accept:
        return "maybeSingle"
    return "list"


def _segments(path: str) -> list[str]:
    return [segment for segment in path.split("/") if segment]


def function_name(path: str, settings: MockSettings) -> str | None:
    """Name of the edge function addressed by `path`, or None for REST paths."""
    segments = _segments(path)
    if len(segments) < 2 or segments[0] != settings.functions_segment:
        return None
    if segments[1] != settings.rest_version or len(segments) < 3:
        raise MalformedRequest(f"Invalid edge function path: {path}")
    return "/".join(segments[2:])


def classify(method: str, path: str, headers: Mapping[str, str], settings: MockSettings) -> Route:
    """
    Classify a REST or RPC request.

    Raises:
        MalformedRequest: no version marker, no table/function name, or an
            unsupported method (405)
    """
    method = method.upper()
    segments = _segments(path)
    if settings.rest_version not in segments:
        raise MalformedRequest(f"Invalid path: {path}", details=f"missing /{settings.rest_version}/ segment")

    rest = segments[segments.index(settings.rest_version) + 1 :]
    if not rest:
        raise MalformedRequest(f"Invalid path: {path}", details="missing table name")

    profile_header = settings.read_profile_header if method in ("GET", "HEAD") else settings.write_profile_header
    schema = _header(headers, profile_header) or settings.default_schema

    if rest[0] == settings.rpc_segment:
        if len(rest) < 2:
            raise MalformedRequest(f"Invalid path: {path}", details="missing function name")
        kind = RequestKind.HEAD if method == "HEAD" else RequestKind.RPC
        return Route(kind=kind, schema=schema, name=rest[1], rpc=True)

    match method:
        case "GET":
            kind = RequestKind.SELECT
        case "HEAD":
            kind = RequestKind.HEAD
        case "POST":
            prefer = parse_prefer(_header(headers, "Prefer"))
            kind = RequestKind.UPSERT if prefer.merge else RequestKind.INSERT
        case "PATCH":
            kind = RequestKind.UPDATE
        case "DELETE":
            kind = RequestKind.DELETE
        case _:
            raise MalformedRequest(f"Method {method} not allowed", status=405)

    return Route(kind=kind, schema=schema, name=rest[0])


def _header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup for plain dicts."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None
