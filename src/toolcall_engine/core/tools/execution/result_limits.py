"""Size bound for tool payloads fed back to the model."""

import json
from typing import Any, Callable, Optional

from ...logger import get_logger

logger = get_logger(__name__)

TRUNCATION_INDICATOR = "\n\n[... truncated for brevity ...]"
_TEXT_FIELDS = ("content", "text")


def serialized_length(data: Any) -> int:
    return len(json.dumps(data, default=str))


def _shrink_to_fit(text: str, max_chars: int, build: Callable[[str], Any]) -> Optional[Any]:
    """Cut ``text`` until ``build(cut)`` serializes within ``max_chars``."""
    cut = len(text)
    while cut > 0:
        candidate = build(text[:cut])
        overshoot = serialized_length(candidate) - max_chars
        if overshoot <= 0:
            return candidate
        cut -= max(overshoot, 1)
    candidate = build("")
    return candidate if serialized_length(candidate) <= max_chars else None


def limit_tool_result(data: Any, max_chars: Optional[int], tool_name: str = "") -> Any:
    """Bound the serialized size of a success payload.

    Payloads within ``max_chars`` pass through untouched. For dicts carrying a large
    ``content`` or ``text`` string, only that field is shortened and the remaining
    keys are kept along with ``truncated`` and ``original_length`` markers. Anything
    else is replaced by a ``truncated_content`` preview of its JSON text.

    Args:
        data: Whatever the executor returned.
        max_chars: Upper bound for ``json.dumps(result)``. ``None`` disables the bound.
        tool_name: Only used for logging.

    Returns:
        ``data`` itself, or a truncated replacement whose serialization fits the bound.
    """
    if max_chars is None or data is None:
        return data

    serialized = json.dumps(data, default=str)
    if len(serialized) <= max_chars:
        return data

    logger.info(
        "Truncating result of tool '%s' from %d to at most %d characters.", tool_name, len(serialized), max_chars
    )

    if isinstance(data, dict):
        for field_name in _TEXT_FIELDS:
            value = data.get(field_name)
            if not isinstance(value, str):
                continue

            def build(cut: str, _field: str = field_name, _value: str = value) -> Any:
                return {
                    **data,
                    _field: cut + TRUNCATION_INDICATOR,
                    "truncated": True,
                    "original_length": len(_value),
                }

            fitted = _shrink_to_fit(value, max_chars, build)
            if fitted is not None:
                return fitted

    def build_generic(cut: str) -> Any:
        return {
            "truncated_content": cut,
            "truncation_info": "Result truncated due to size limit. Original format could not be preserved.",
            "original_length": len(serialized),
        }

    fitted = _shrink_to_fit(serialized, max_chars, build_generic)
    if fitted is not None:
        return fitted
    return {"truncated_content": "", "original_length": len(serialized)}
