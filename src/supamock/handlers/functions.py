"""
Supamock - Edge-Function Dispatcher.

Name -> handler registry for edge functions (`/functions/v1/<name>`).
Handlers get the decoded body, the query parameters, the HTTP method and the
live store, and answer with a FunctionResponse whose data may be JSON-shaped,
text, or raw bytes.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from supamock.db.store import RelationalStore
from supamock.errors import HandlerFailure, NotFound, PostgrestError

logger = logging.getLogger(__name__)


@dataclass
class FunctionResponse:
    """What an edge function returns: payload, status, and extra headers."""

    data: Any = None
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)

    def encode(self) -> tuple[bytes, str | None]:
        """Serialize `data`; returns (content, content type)."""
        match self.data:
            case None:
                return b"", None
            case bytes() | bytearray():
                return bytes(self.data), "application/octet-stream"
            case str():
                return self.data.encode("utf-8"), "text/plain; charset=utf-8"
            case _:
                return json.dumps(self.data, ensure_ascii=False).encode("utf-8"), "application/json; charset=utf-8"


EdgeHandler = Callable[[Any, dict[str, str], str, RelationalStore], FunctionResponse | Any]


class EdgeFunctionDispatcher:
    """Registry of edge-function handlers bound to one store."""

    def __init__(self, store: RelationalStore):
        self._store = store
        self._handlers: dict[str, EdgeHandler] = {}

    def register(self, name: str, handler: EdgeHandler) -> None:
        self._handlers[name] = handler

    def unregister(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def invoke(
        self,
        name: str,
        body: Any = None,
        query_params: dict[str, str] | None = None,
        method: str = "POST",
    ) -> FunctionResponse:
        """
        Run a handler under the store lock.

        Bare return values are wrapped in a 200 FunctionResponse.

        Raises:
            NotFound: no handler registered under `name` (404)
            HandlerFailure: the handler raised a non-PostgREST exception
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise NotFound(
                f"Function {name} not found",
                code="PGRST202",
                status=404,
            )

        try:
            with self._store.lock:
                result = handler(body, dict(query_params or {}), method.upper(), self._store)
        except PostgrestError:
            raise
        except Exception as e:
            logger.warning(f"Edge function {name} raised: {e}")
            raise HandlerFailure(f"Edge function execution failed: {e}") from e

        if isinstance(result, FunctionResponse):
            return result
        return FunctionResponse(data=result)

    def reset(self) -> None:
        self._handlers.clear()
