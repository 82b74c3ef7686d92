"""Conversation turn loop: stream, settle tool calls, continue."""

from .controller import ConversationTurnController, TurnState, tool_result_content

__all__ = ["ConversationTurnController", "TurnState", "tool_result_content"]
