"""
Supamock - httpx transport.

Plugs MockPostgrest into any httpx client, sync or async:

    transport = MockTransport()
    client = httpx.Client(transport=transport, base_url="http://mock")
    client.post("/rest/v1/posts", json={"id": 1, "title": "A"})

Supabase/PostgREST client libraries that accept a custom httpx client work
against the mock unchanged.
"""

import httpx

from supamock.db.store import RelationalStore
from supamock.handlers.functions import EdgeHandler
from supamock.handlers.rpc import RpcHandler
from supamock.server.engine import MockPostgrest, WireRequest, WireResponse


class MockTransport(httpx.BaseTransport, httpx.AsyncBaseTransport):
    """httpx transport answering every request from an in-memory engine."""

    def __init__(self, engine: MockPostgrest | None = None, **engine_kwargs):
        self.engine = engine or MockPostgrest(**engine_kwargs)

    @property
    def store(self) -> RelationalStore:
        return self.engine.store

    def reset(self) -> None:
        self.engine.reset()

    def register_rpc_function(self, name: str, handler: RpcHandler) -> None:
        self.engine.register_rpc_function(name, handler)

    def register_edge_function(self, name: str, handler: EdgeHandler) -> None:
        self.engine.register_edge_function(name, handler)

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        request.read()
        return self._to_httpx(request, self.engine.handle(self._to_wire(request)))

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        return self._to_httpx(request, self.engine.handle(self._to_wire(request)))

    @staticmethod
    def _to_wire(request: httpx.Request) -> WireRequest:
        return WireRequest(
            method=request.method,
            path=request.url.path,
            query=list(request.url.params.multi_items()),
            headers=dict(request.headers.items()),
            body=request.content,
        )

    @staticmethod
    def _to_httpx(request: httpx.Request, response: WireResponse) -> httpx.Response:
        return httpx.Response(
            status_code=response.status,
            headers=response.headers,
            content=response.content,
            request=request,
        )
