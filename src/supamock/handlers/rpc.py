"""
Supamock - RPC Dispatcher.

Name -> handler registry for remote procedures. A handler receives the call
parameters and the live RelationalStore, so it can read and write any schema:

    def transfer_points(params, store):
        sender = next(u for u in store["public.users"] if u["id"] == params["from"])
        ...
        return {"success": True}

    dispatcher.register("transfer_points", transfer_points)
"""

import logging
from collections.abc import Callable
from typing import Any

from supamock.db.store import RelationalStore
from supamock.errors import HandlerFailure, NotFound, PostgrestError

logger = logging.getLogger(__name__)

RpcHandler = Callable[[dict[str, Any] | None, RelationalStore], Any]


class RpcDispatcher:
    """Registry of RPC handlers bound to one store."""

    def __init__(self, store: RelationalStore):
        self._store = store
        self._handlers: dict[str, RpcHandler] = {}

    def register(self, name: str, handler: RpcHandler) -> None:
        """Register (or replace) the handler for `name`."""
        self._handlers[name] = handler

    def unregister(self, name: str) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        return self._handlers.pop(name, None) is not None

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def invoke(self, name: str, params: dict[str, Any] | None = None) -> Any:
        """
        Call a registered handler under the store lock.

        Raises:
            NotFound: no handler registered under `name`
            HandlerFailure: the handler raised a non-PostgREST exception
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise NotFound(
                "RPC function not found",
                code="PGRST202",
                details=f"Could not find the function {name} in the mock registry",
            )

        try:
            with self._store.lock:
                return handler(params, self._store)
        except PostgrestError:
            raise
        except Exception as e:
            logger.warning(f"RPC {name} raised: {e}")
            raise HandlerFailure(f"RPC function execution failed: {e}") from e

    def reset(self) -> None:
        """Forget every registered handler."""
        self._handlers.clear()
