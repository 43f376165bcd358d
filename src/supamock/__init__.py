"""
Supamock - In-memory PostgREST/Supabase backend for tests.

Layers:
- db: RelationalStore, the schema-qualified in-memory tables
- query: filter compiler, query-string parsing, and the read pipeline
- handlers: RPC and edge-function registries
- server: request classifier, MockPostgrest engine, httpx MockTransport
"""

__version__ = "0.1.0"

from supamock.config import MockSettings, get_settings
from supamock.db import RelationalStore
from supamock.errors import (
    HandlerFailure,
    InjectedFailure,
    MalformedRequest,
    NotFound,
    PostgrestError,
    ShapeError,
    ValidationError,
)
from supamock.handlers import FunctionResponse
from supamock.server import MockPostgrest, MockTransport, RequestKind

__all__ = [
    "FunctionResponse",
    "HandlerFailure",
    "InjectedFailure",
    "MalformedRequest",
    "MockPostgrest",
    "MockSettings",
    "MockTransport",
    "NotFound",
    "PostgrestError",
    "RelationalStore",
    "RequestKind",
    "ShapeError",
    "ValidationError",
    "get_settings",
]
