"""Shared type aliases used across perch modules."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Route handler: user-defined function with variable signature
Handler: TypeAlias = Callable[..., Any]

# Error handler: receives (request, error?) and returns a result value
ErrorHandler: TypeAlias = Callable[..., Any]

# Provider factory registered through App.provide()
Provider: TypeAlias = Callable[[], Any]
