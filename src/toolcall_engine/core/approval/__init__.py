"""Approval policy: tool-name normalization, mutation classification and auto-approve decisions."""

from .policy import (
    ApprovalDecision,
    ApprovalReason,
    MutationRule,
    MUTATION_RULES,
    ToolNameParts,
    canonical_tool_key,
    decide,
    is_mutating_tool,
    is_tool_allowlisted,
    is_trusted_for_session,
    requires_user_approval,
    split_tool_name,
)

__all__ = [
    "ApprovalDecision",
    "ApprovalReason",
    "MutationRule",
    "MUTATION_RULES",
    "ToolNameParts",
    "canonical_tool_key",
    "decide",
    "is_mutating_tool",
    "is_tool_allowlisted",
    "is_trusted_for_session",
    "requires_user_approval",
    "split_tool_name",
]
