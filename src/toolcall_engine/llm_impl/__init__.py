"""Provider transports for the turn controller."""

from .openai_api import OpenAIStreamClient, OpenAIToolRegistry

__all__ = ["OpenAIStreamClient", "OpenAIToolRegistry"]
