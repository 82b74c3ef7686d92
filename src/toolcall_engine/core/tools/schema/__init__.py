"""Tool schema generation and validation."""

from .builder import assert_acyclic, build_parameters, sanitize_schema

__all__ = ["assert_acyclic", "build_parameters", "sanitize_schema"]
