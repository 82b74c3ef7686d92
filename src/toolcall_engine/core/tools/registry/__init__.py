"""Tool registry abstraction."""

from .base import SimpleToolRegistry, ToolRegistry

__all__ = ["ToolRegistry", "SimpleToolRegistry"]
