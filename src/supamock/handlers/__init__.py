"""
Supamock - Extension handlers (RPC functions and edge functions).
"""

from supamock.handlers.functions import EdgeFunctionDispatcher, EdgeHandler, FunctionResponse
from supamock.handlers.rpc import RpcDispatcher, RpcHandler

__all__ = [
    "EdgeFunctionDispatcher",
    "EdgeHandler",
    "FunctionResponse",
    "RpcDispatcher",
    "RpcHandler",
]
