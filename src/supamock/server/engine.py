"""
Supamock - Mock PostgREST engine.

MockPostgrest turns one HTTP-shaped request into one HTTP-shaped response:

1. Edge-function paths go straight to the EdgeFunctionDispatcher
2. Everything else is classified (select/insert/upsert/update/delete/head/rpc)
3. The error trigger runs before any store access
4. The operation runs against the RelationalStore; reads go through the
   query pipeline, mutation results through projection and shape resolution
5. PostgrestErrors become error responses with the PostgREST payload

The engine knows nothing about httpx; see transport.py for that seam.
"""

import copy
import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, field_validator

from supamock.config import MockSettings, get_settings
from supamock.db.store import RelationalStore
from supamock.errors import MalformedRequest, PostgrestError
from supamock.handlers.functions import EdgeFunctionDispatcher, EdgeHandler
from supamock.handlers.rpc import RpcDispatcher, RpcHandler
from supamock.query.filters import conjoin
from supamock.query.pipeline import QueryResult, content_range, project, resolve_shape, run_query
from supamock.query.spec import QuerySpec, parse_query
from supamock.server.classifier import (
    Preferences,
    RequestKind,
    Route,
    classify,
    function_name,
    parse_prefer,
    resolve_shape_kind,
)

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

ErrorTrigger = Callable[[str, str | None, Any, RequestKind], None]


# =============================================================================
# Wire models
# =============================================================================


class WireRequest(BaseModel):
    """HTTP-shaped request. Header names are stored lowercased."""

    method: str
    path: str
    query: list[tuple[str, str]] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def _lower_headers(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key).lower(): val for key, val in value.items()}
        return value

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def json_body(self) -> Any:
        """Decode the body as JSON; an empty body is None."""
        if not self.body or not self.body.strip():
            return None
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedRequest("Invalid JSON body", details=str(e)) from e

    def decoded_body(self) -> Any:
        """Decode by content type: JSON, UTF-8 text, or raw bytes."""
        if not self.body:
            return None
        content_type = (self.header("content-type") or "").lower()
        if "json" in content_type:
            return self.json_body()
        if content_type.startswith("text/"):
            return self.body.decode("utf-8", errors="replace")
        return self.body


class WireResponse(BaseModel):
    status: int = 200
    headers: dict[str, str] = Field(default_factory=dict)
    content: bytes = b""

    def payload(self) -> Any:
        return json.loads(self.content) if self.content else None


def _encode_json(data: Any) -> bytes:
    return json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")


def error_response(error: PostgrestError) -> WireResponse:
    return WireResponse(
        status=error.status,
        headers={"content-type": JSON_CONTENT_TYPE},
        content=_encode_json(error.to_payload()),
    )


# =============================================================================
# Engine
# =============================================================================


class MockPostgrest:
    """
    In-memory PostgREST backend.

    Owns one RelationalStore plus the RPC and edge-function registries
    bound to it. Tests seed data through `store` or through the wire.
    """

    def __init__(
        self,
        settings: MockSettings | None = None,
        error_trigger: ErrorTrigger | None = None,
        tables: dict[str, list[dict[str, Any]]] | None = None,
    ):
        self.settings = settings or get_settings()
        self.error_trigger = error_trigger
        self.store = RelationalStore(tables)
        self.rpc = RpcDispatcher(self.store)
        self.functions = EdgeFunctionDispatcher(self.store)

    def register_rpc_function(self, name: str, handler: RpcHandler) -> None:
        self.rpc.register(name, handler)

    def register_edge_function(self, name: str, handler: EdgeHandler) -> None:
        self.functions.register(name, handler)

    def reset(self) -> None:
        """Clear every table and both handler registries."""
        self.store.reset()
        self.rpc.reset()
        self.functions.reset()

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def handle(self, request: WireRequest) -> WireResponse:
        try:
            name = function_name(request.path, self.settings)
            if name is not None:
                return self._handle_function(name, request)

            route = classify(request.method, request.path, request.headers, self.settings)
            body = self._request_body(route, request)
            self._trigger(route, body)
            logger.debug(f"{route.kind.value} {route.qualified}")
            return self._dispatch(route, request, body)
        except PostgrestError as e:
            logger.info(f"{request.method} {request.path} -> {e.status} {e.message}")
            return error_response(e)

    def _request_body(self, route: Route, request: WireRequest) -> Any:
        if route.kind in (RequestKind.SELECT, RequestKind.HEAD, RequestKind.DELETE):
            return None
        if route.kind is RequestKind.RPC and request.method == "GET":
            return None
        return request.json_body()

    def _trigger(self, route: Route, body: Any) -> None:
        if self.error_trigger is None:
            return
        try:
            self.error_trigger(route.schema, route.name, body, route.kind)
        except PostgrestError as e:
            logger.info(f"Injected failure on {route.qualified}: {e.message}")
            raise
        except Exception as e:
            logger.warning(f"Error trigger raised on {route.qualified}: {e}")
            raise PostgrestError(str(e), status=500) from e

    def _dispatch(self, route: Route, request: WireRequest, body: Any) -> WireResponse:
        prefs = parse_prefer(request.header("prefer"))

        match route.kind:
            case RequestKind.RPC:
                return self._rpc(route, request, prefs, body)
            case RequestKind.HEAD if route.rpc:
                self.rpc.invoke(route.name, dict(request.query))
                return WireResponse(status=200, headers=self._profile(route))

        spec = parse_query(request.query, request.header("range"))

        match route.kind:
            case RequestKind.SELECT:
                return self._select(route, request, spec, prefs)
            case RequestKind.HEAD:
                return self._select(route, request, spec, prefs, head=True)
            case RequestKind.INSERT:
                rows = self.store.insert(route.qualified, body)
                return self._mutation(route, request, spec, prefs, rows, status=201)
            case RequestKind.UPSERT:
                rows = self.store.upsert(route.qualified, body, ignore_duplicates=prefs.ignore_duplicates)
                return self._mutation(route, request, spec, prefs, rows, status=201)
            case RequestKind.UPDATE:
                rows = self.store.update(route.qualified, conjoin(spec.filters), body)
                return self._mutation(route, request, spec, prefs, rows, status=200)
            case RequestKind.DELETE:
                rows = self.store.delete(route.qualified, conjoin(spec.filters))
                return self._mutation(route, request, spec, prefs, rows, status=200)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def _select(
        self,
        route: Route,
        request: WireRequest,
        spec: QuerySpec,
        prefs: Preferences,
        head: bool = False,
    ) -> WireResponse:
        result = run_query(self.store.snapshot(route.qualified), spec)
        return self._rows_response(route, request, result, prefs, head=head)

    def _mutation(
        self,
        route: Route,
        request: WireRequest,
        spec: QuerySpec,
        prefs: Preferences,
        rows: list[dict[str, Any]],
        status: int,
    ) -> WireResponse:
        if prefs.minimal:
            headers = self._profile(route)
            if prefs.count:
                headers.update(self._count_headers(QueryResult(rows=rows, total=len(rows)), prefs))
            return WireResponse(status=201 if status == 201 else 204, headers=headers)

        result = QueryResult(rows=project(copy.deepcopy(rows), spec.projection), total=len(rows))
        return self._rows_response(route, request, result, prefs, status=status)

    def _rpc(self, route: Route, request: WireRequest, prefs: Preferences, body: Any) -> WireResponse:
        if request.method == "GET":
            params = dict(request.query)
        elif body is None or isinstance(body, dict):
            params = body
        else:
            raise MalformedRequest("RPC parameters must be a JSON object")

        result = self.rpc.invoke(route.name, params)

        if request.method == "POST" and _is_row_list(result):
            spec = parse_query(request.query, request.header("range"))
            return self._rows_response(route, request, run_query(copy.deepcopy(result), spec), prefs)

        return WireResponse(
            status=200,
            headers={"content-type": JSON_CONTENT_TYPE, **self._profile(route)},
            content=_encode_json(result),
        )

    def _handle_function(self, name: str, request: WireRequest) -> WireResponse:
        response = self.functions.invoke(name, request.decoded_body(), dict(request.query), request.method)
        content, content_type = response.encode()
        headers = {"content-type": content_type} if content_type else {}
        headers.update({key.lower(): value for key, value in response.headers.items()})
        logger.debug(f"edge {name} -> {response.status}")
        return WireResponse(status=response.status, headers=headers, content=content)

    # -------------------------------------------------------------------------
    # Response assembly
    # -------------------------------------------------------------------------

    def _rows_response(
        self,
        route: Route,
        request: WireRequest,
        result: QueryResult,
        prefs: Preferences,
        status: int = 200,
        head: bool = False,
    ) -> WireResponse:
        headers = {"content-type": JSON_CONTENT_TYPE, **self._profile(route)}
        if prefs.count:
            headers.update(self._count_headers(result, prefs))
        if head:
            return WireResponse(status=status, headers=headers)

        shape = resolve_shape_kind(request.header("accept"), self.settings)
        data = resolve_shape(result.rows, shape)
        return WireResponse(status=status, headers=headers, content=_encode_json(data))

    @staticmethod
    def _profile(route: Route) -> dict[str, str]:
        return {"content-profile": route.qualified}

    @staticmethod
    def _count_headers(result: QueryResult, prefs: Preferences) -> dict[str, str]:
        return {
            "content-range": content_range(result),
            "preference-applied": f"count={prefs.count}",
        }


def _is_row_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, dict) for item in value)
