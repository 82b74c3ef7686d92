"""Configuration models injected into the approval policy and the tool call manager."""

import os
from typing import List, Optional, Set, Tuple

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .logger import get_logger

logger = get_logger(__name__)

_ENV_PREFIX = "TOOLCALL_"


class ApprovalContext(BaseModel):
    """Approval inputs supplied by the hosting chat session for each decision.

    Attributes:
        trusted_tool_names: Canonical keys the user trusted for the current session.
        auto_approve_allowlist: Canonical ``server:tool`` keys that never need approval.
        require_destructive_approval: Global toggle; ``False`` auto-approves mutating tools.
    """

    model_config = ConfigDict(frozen=True)

    trusted_tool_names: Set[str] = Field(default_factory=set)
    auto_approve_allowlist: List[str] = Field(default_factory=list)
    require_destructive_approval: bool = True


class ToolCallManagerSettings(BaseModel):
    """Deployment bounds for the tool call manager.

    Attributes:
        concurrency_limit: Maximum number of executors running at once. ``None`` means
            every approved call is dispatched immediately.
        tool_timeout: Per-call timeout in seconds. ``None`` disables it.
        max_tool_result_chars: Upper bound on the serialized size of a success payload.
            ``None`` disables truncation.
        max_failed_repeats: Identical failed calls tolerated per assistant message before
            further repeats are blocked.
        max_denied_repeats: Identical denied calls tolerated per assistant message before
            further repeats are blocked.
        namespace_prefixes: Prefixes that mark a tool name as ``<server>_<tool>``.
    """

    concurrency_limit: Optional[int] = Field(default=None, ge=1)
    tool_timeout: Optional[float] = Field(default=None, gt=0)
    max_tool_result_chars: Optional[int] = Field(default=10_000, ge=200)
    max_failed_repeats: int = Field(default=2, ge=1)
    max_denied_repeats: int = Field(default=1, ge=1)
    namespace_prefixes: Tuple[str, ...] = ("mcp-",)

    @field_validator("namespace_prefixes")
    @classmethod
    def _lowercase_prefixes(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(p.strip().lower() for p in value if p and p.strip())

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "ToolCallManagerSettings":
        """Build settings from ``TOOLCALL_*`` environment variables.

        A ``.env`` file is loaded first when one can be found. Unset variables keep the
        model defaults; the literal ``none`` disables an optional bound.

        Args:
            dotenv_path: Explicit ``.env`` path. Defaults to ``find_dotenv()``.

        Returns:
            The validated settings.
        """
        env_file = dotenv_path or find_dotenv(usecwd=True)
        if env_file:
            logger.debug("Loading engine settings from '%s'.", env_file)
            load_dotenv(env_file, override=False)

        values: dict = {}
        for field_name in ("concurrency_limit", "tool_timeout", "max_tool_result_chars"):
            raw = os.getenv(f"{_ENV_PREFIX}{field_name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            values[field_name] = None if raw.strip().lower() == "none" else raw.strip()

        for field_name in ("max_failed_repeats", "max_denied_repeats"):
            raw = os.getenv(f"{_ENV_PREFIX}{field_name.upper()}")
            if raw:
                values[field_name] = raw.strip()

        prefixes = os.getenv(f"{_ENV_PREFIX}NAMESPACE_PREFIXES")
        if prefixes:
            values["namespace_prefixes"] = tuple(prefixes.split(","))

        return cls.model_validate(values)
