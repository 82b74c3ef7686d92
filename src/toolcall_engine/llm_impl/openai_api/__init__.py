"""Expose the OpenAI streaming transport and tool registry."""

from .registry import OpenAIToolRegistry
from .stream_client import FINISH_REASON_MAP, OpenAIStreamClient

__all__ = ["OpenAIStreamClient", "OpenAIToolRegistry", "FINISH_REASON_MAP"]
