"""Routing — path templates, declarations, and the route table.

Declarations are compiled once into ``CompiledRoute`` values and stored
in a ``RouteTable`` that is read-only while requests are served.
"""

from switchyard.routing.declaration import (
    METHODS,
    CachePolicy,
    RateLimit,
    RouteDeclaration,
    RouteGroup,
)
from switchyard.routing.pattern import CompiledRoute, RouteMatch, compile_route, normalize_path
from switchyard.routing.table import RouteTable

__all__ = [
    "METHODS",
    "CachePolicy",
    "CompiledRoute",
    "RateLimit",
    "RouteDeclaration",
    "RouteGroup",
    "RouteMatch",
    "RouteTable",
    "compile_route",
    "normalize_path",
]
