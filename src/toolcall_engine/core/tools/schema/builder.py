"""Build and clean JSON schemas for tool parameters.

Function-based tools get their schema from a dynamic Pydantic model created from
the signature. ``$ref`` pointers are resolved inline with ``jsonref`` because the
schema travels to providers that reject references.
"""

import inspect
from typing import Annotated, Any, Callable, Dict, Iterator, Optional, Set, Tuple, Type, cast, get_args, get_origin

import jsonref  # type: ignore
from pydantic import BaseModel, Field, create_model
from pydantic.fields import FieldInfo

from ...exceptions import ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)

_METADATA_KEYS = ("$defs", "definitions", "$schema", "$id", "title")


def _local_refs(node: Any) -> Iterator[str]:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/"):
            yield ref.rsplit("/", 1)[-1]
            return
        for value in node.values():
            yield from _local_refs(value)
    elif isinstance(node, list):
        for item in node:
            yield from _local_refs(item)


def assert_acyclic(schema: Dict[str, Any]) -> None:
    """Reject schemas whose local ``$ref`` graph contains a cycle.

    Raises:
        ToolValidationError: If a definition refers back to itself, directly or not.
    """
    defs: Dict[str, Any] = schema.get("$defs") or schema.get("definitions") or {}
    visiting: Set[str] = set()
    done: Set[str] = set()

    def visit(name: str) -> None:
        if name in done or name not in defs:
            return
        if name in visiting:
            msg = (
                f"Recursive structure detected: '{name}'. Tool arguments must be finite trees; "
                "pass ids or lists instead of self-referencing models."
            )
            logger.error(msg)
            raise ToolValidationError(msg)
        visiting.add(name)
        for child in _local_refs(defs[name]):
            visit(child)
        visiting.discard(name)
        done.add(name)

    for top in _local_refs({k: v for k, v in schema.items() if k not in ("$defs", "definitions")}):
        visit(top)


def sanitize_schema(schema: Any) -> Any:
    """Strip metadata, collapse ``Optional`` unions and close object schemas.

    - ``$defs``/``title``/``$schema``-style keys are removed.
    - ``anyOf: [X, {"type": "null"}]`` becomes ``X`` (keeping the outer description).
    - Objects without ``additionalProperties`` get ``additionalProperties: false``.
    - ``required`` entries with no matching property are dropped.
    """
    if isinstance(schema, list):
        return [sanitize_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    cleaned = {key: value for key, value in schema.items() if key not in _METADATA_KEYS}

    variants = cleaned.get("anyOf")
    if isinstance(variants, list):
        non_null = [v for v in variants if not (isinstance(v, dict) and v.get("type") == "null")]
        if len(non_null) == 1 and isinstance(non_null[0], dict):
            collapsed = dict(non_null[0])
            for key in ("description", "default"):
                if key in cleaned:
                    collapsed[key] = cleaned[key]
            return sanitize_schema(collapsed)

    if cleaned.get("type") == "object":
        cleaned.setdefault("additionalProperties", False)

    required = cleaned.get("required")
    properties = cleaned.get("properties")
    if isinstance(required, list) and isinstance(properties, dict):
        kept = [name for name in required if name in properties]
        if kept:
            cleaned["required"] = kept
        else:
            del cleaned["required"]

    return {key: sanitize_schema(value) for key, value in cleaned.items()}


def _parameter_field(param: inspect.Parameter) -> Tuple[Any, FieldInfo]:
    annotation = Any if param.annotation is inspect.Parameter.empty else param.annotation
    description: Optional[str] = None
    if get_origin(annotation) is Annotated:
        for meta in get_args(annotation)[1:]:
            if isinstance(meta, FieldInfo) and meta.description:
                description = meta.description
                break
    default = ... if param.default is inspect.Parameter.empty else param.default
    return annotation, Field(default=default, description=description)


def build_parameters(func: Callable, tool_name: str) -> Tuple[Dict[str, Any], Type[BaseModel]]:
    """Derive the parameters schema and validation model from a function signature.

    ``self``, ``*args`` and ``**kwargs`` are ignored. Descriptions come from
    ``Annotated[T, Field(description=...)]`` annotations when present.

    Args:
        func: The executor to inspect.
        tool_name: Name used for the generated model and error messages.

    Returns:
        The sanitized JSON schema and the dynamic Pydantic model.
    """
    fields: Dict[str, Any] = {}
    for name, param in inspect.signature(func).parameters.items():
        if name == "self" or param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        fields[name] = _parameter_field(param)

    args_model = create_model(f"{tool_name}Params", **cast(Dict[str, Any], fields))
    raw_schema = args_model.model_json_schema()
    assert_acyclic(raw_schema)
    resolved = jsonref.replace_refs(raw_schema, proxies=False)
    return sanitize_schema(resolved), args_model
