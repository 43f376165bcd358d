"""
Supamock - Server layer.

Request classification, the mock engine, and the httpx transport.
"""

from supamock.server.classifier import (
    Preferences,
    RequestKind,
    Route,
    classify,
    function_name,
    parse_prefer,
    resolve_shape_kind,
)
from supamock.server.engine import ErrorTrigger, MockPostgrest, WireRequest, WireResponse
from supamock.server.transport import MockTransport

__all__ = [
    # Classifier
    "Preferences",
    "RequestKind",
    "Route",
    "classify",
    "function_name",
    "parse_prefer",
    "resolve_shape_kind",
    # Engine
    "ErrorTrigger",
    "MockPostgrest",
    "WireRequest",
    "WireResponse",
    # Transport
    "MockTransport",
]
