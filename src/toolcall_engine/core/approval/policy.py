"""Stateless approval policy for tool calls.

Decides whether a tool call may run without an explicit human confirmation. The
mutating/read-only classification is a small rule table so it can be audited and
unit-tested on its own; everything the decision depends on (trusted names,
allowlist, global toggle) is passed in by the caller.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, Set, Tuple

from ..config import ApprovalContext
from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_NAMESPACE_PREFIXES: Tuple[str, ...] = ("mcp-",)
NAMESPACE_SEPARATOR = "_"


class ApprovalReason(str, Enum):
    """Why a decision came out the way it did."""

    INVALID = "invalid"
    NON_MUTATING = "non-mutating"
    ALLOWLISTED = "allowlisted"
    TRUSTED_SESSION = "trusted-session"
    POLICY_DISABLED = "policy-disabled"
    MUTATING_DEFAULT = "mutating-default"


@dataclass(frozen=True)
class ApprovalDecision:
    """Outcome of :func:`decide`."""

    auto_approve: bool
    reason: ApprovalReason


@dataclass(frozen=True)
class ToolNameParts:
    """A tool name split into its namespace and actual name.

    Attributes:
        server_id: Namespace (e.g. ``mcp-filesystem``) or None for plain tools.
        actual_name: Tool name as emitted, without the namespace.
        canonical_name: Lowercase ``actual_name``.
        canonical_key: ``server:tool`` in lowercase, or ``canonical_name`` when unnamespaced.
    """

    server_id: Optional[str]
    actual_name: str
    canonical_name: str
    canonical_key: str


def split_tool_name(full_name: Optional[str], prefixes: Sequence[str] = DEFAULT_NAMESPACE_PREFIXES) -> ToolNameParts:
    """Split ``<server-prefix>_<actual-name>`` into its parts.

    Only names starting with one of ``prefixes`` are treated as namespaced, so plain
    snake_case tools like ``read_file`` keep their full name.

    Args:
        full_name: The tool name exactly as emitted by the model.
        prefixes: Server prefixes that mark a namespaced name.

    Returns:
        The split name parts.
    """
    name = str(full_name or "").strip()
    lowered = name.lower()
    sep_index = name.find(NAMESPACE_SEPARATOR)

    if sep_index > 0 and any(lowered.startswith(p) for p in prefixes):
        server_id = name[:sep_index]
        actual_name = name[sep_index + 1 :]
        if actual_name:
            canonical_name = actual_name.lower()
            return ToolNameParts(
                server_id=server_id,
                actual_name=actual_name,
                canonical_name=canonical_name,
                canonical_key=f"{server_id.lower()}:{canonical_name}",
            )

    return ToolNameParts(server_id=None, actual_name=name, canonical_name=lowered, canonical_key=lowered)


def canonical_tool_key(full_name: Optional[str], prefixes: Sequence[str] = DEFAULT_NAMESPACE_PREFIXES) -> str:
    """Return the canonical key used for allowlist and trust comparisons."""
    return split_tool_name(full_name, prefixes).canonical_key


@dataclass(frozen=True)
class MutationRule:
    """One row of the mutation rule table."""

    name: str
    words: frozenset
    matches: Callable[[str, str], bool]

    def check(self, canonical_name: str) -> Optional[str]:
        """Return the matching word, or None."""
        for word in sorted(self.words):
            if self.matches(canonical_name, word):
                return word
        return None


_EXACT_MUTATING = frozenset(
    {
        # destructive vault/file verbs
        "write",
        "edit",
        "delete",
        "rename",
        "move",
        "trash",
        # process / command execution
        "run_command",
        "execute",
        "exec",
        "shell",
        "spawn",
        "bash",
        "powershell",
        "python",
        "node",
        "eval",
        # outbound network
        "http_request",
        "request",
        "fetch",
        "curl",
    }
)

_MUTATING_PREFIXES = _EXACT_MUTATING | frozenset({"remove", "create", "update", "set", "append", "copy"})

_EXECUTION_SUFFIXES = _EXACT_MUTATING | frozenset({"command", "process", "system"})

_COMMAND_MARKERS = frozenset({"command", "execute", "exec", "shell", "spawn", "bash", "powershell"})

MUTATION_RULES: Tuple[MutationRule, ...] = (
    MutationRule("exact", _EXACT_MUTATING, lambda name, word: name == word),
    MutationRule("prefix", _MUTATING_PREFIXES, lambda name, word: name.startswith(f"{word}_")),
    MutationRule("suffix", _EXECUTION_SUFFIXES, lambda name, word: name.endswith(f"_{word}")),
    MutationRule("infix", _COMMAND_MARKERS, lambda name, word: f"_{word}_" in name),
)


def is_mutating_tool(full_name: Optional[str], prefixes: Sequence[str] = DEFAULT_NAMESPACE_PREFIXES) -> bool:
    """Return True when the tool can change state or reach outside the host.

    The namespace is stripped first, then the rule table is evaluated in order:
    exact names, ``verb_*`` prefixes, ``*_word`` / ``*_word_*`` command-execution markers.

    Args:
        full_name: The tool name, namespaced or not.
        prefixes: Server prefixes that mark a namespaced name.

    Returns:
        True if any rule matches.
    """
    canonical_name = split_tool_name(full_name, prefixes).canonical_name
    if not canonical_name:
        return False

    for rule in MUTATION_RULES:
        word = rule.check(canonical_name)
        if word is not None:
            logger.debug("Tool '%s' classified as mutating (%s rule: '%s').", canonical_name, rule.name, word)
            return True
    return False


def _normalize_entries(entries: Optional[Iterable[str]]) -> Set[str]:
    return {str(entry).strip().lower() for entry in entries or () if str(entry or "").strip()}


def is_tool_allowlisted(
    full_name: Optional[str],
    allowlist: Optional[Iterable[str]] = None,
    prefixes: Sequence[str] = DEFAULT_NAMESPACE_PREFIXES,
) -> bool:
    """Check a tool against an allowlist of canonical keys.

    The full lowercase name, the canonical key and the bare canonical name are all
    accepted as matches.
    """
    normalized = _normalize_entries(allowlist)
    name = str(full_name or "").strip().lower()
    if not name or not normalized:
        return False

    parts = split_tool_name(name, prefixes)
    return bool({name, parts.canonical_key, parts.canonical_name} & normalized)


def is_trusted_for_session(
    full_name: Optional[str],
    trusted_tool_names: Optional[Iterable[str]] = None,
    prefixes: Sequence[str] = DEFAULT_NAMESPACE_PREFIXES,
) -> bool:
    """Check a tool against the per-session trust set (canonical keys)."""
    trusted = _normalize_entries(trusted_tool_names)
    if not trusted:
        return False
    parts = split_tool_name(full_name, prefixes)
    return parts.canonical_key in trusted or str(full_name or "").strip().lower() in trusted


def decide(
    full_name: Optional[str],
    context: Optional[ApprovalContext] = None,
    prefixes: Sequence[str] = DEFAULT_NAMESPACE_PREFIXES,
) -> ApprovalDecision:
    """Decide whether a tool call may run without user confirmation.

    Args:
        full_name: The tool name as emitted by the model.
        context: Trusted names, allowlist and the destructive-approval toggle.
        prefixes: Server prefixes that mark a namespaced name.

    Returns:
        The decision and its reason.
    """
    context = context or ApprovalContext()
    parts = split_tool_name(full_name, prefixes)
    if not parts.canonical_name:
        return ApprovalDecision(auto_approve=False, reason=ApprovalReason.INVALID)

    if not is_mutating_tool(full_name, prefixes):
        return ApprovalDecision(auto_approve=True, reason=ApprovalReason.NON_MUTATING)

    if is_tool_allowlisted(full_name, context.auto_approve_allowlist, prefixes):
        return ApprovalDecision(auto_approve=True, reason=ApprovalReason.ALLOWLISTED)

    if is_trusted_for_session(full_name, context.trusted_tool_names, prefixes):
        return ApprovalDecision(auto_approve=True, reason=ApprovalReason.TRUSTED_SESSION)

    if context.require_destructive_approval is False:
        return ApprovalDecision(auto_approve=True, reason=ApprovalReason.POLICY_DISABLED)

    return ApprovalDecision(auto_approve=False, reason=ApprovalReason.MUTATING_DEFAULT)


def requires_user_approval(
    full_name: Optional[str],
    context: Optional[ApprovalContext] = None,
    prefixes: Sequence[str] = DEFAULT_NAMESPACE_PREFIXES,
) -> bool:
    """Inverse of :func:`decide`'s ``auto_approve`` flag."""
    return not decide(full_name, context, prefixes).auto_approve
