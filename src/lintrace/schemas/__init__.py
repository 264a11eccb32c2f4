"""Pydantic configuration schemas for lintrace.

This module provides strictly typed configuration models for the
clustering and lineage pipeline. All configuration validation, coercion,
and normalization happens at schema validation time via Pydantic.

Exports
-------
resolve_config : function
    Single entrypoint for configuration resolution
InternalConfig : class
    Fully validated, authoritative runtime configuration
ParamConfig : class
    Expert defaults (complete)
UserConfig : class
    User-facing configuration (forgiving, minimal)
"""

from lintrace.schemas.resolve import resolve_config, deep_merge
from lintrace.schemas.internal import InternalConfig
from lintrace.schemas.param import ParamConfig
from lintrace.schemas.user import UserConfig

__all__ = [
    'resolve_config',
    'deep_merge',
    'InternalConfig',
    'ParamConfig',
    'UserConfig',
]
