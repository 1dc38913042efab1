"""Shared type aliases used across switchyard modules."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Route handler: a callable with a variable signature, or a "module:attr" string
Handler: TypeAlias = Callable[..., Any]
HandlerRef: TypeAlias = Callable[..., Any] | str

# Dependency provider: a zero-argument factory or a ready-made instance
Provider: TypeAlias = Callable[[], Any] | object
