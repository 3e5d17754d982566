"""
LCP Runtime - metadata-to-runtime model compiler

Compiles declarative model descriptions into live persistence classes.

This package provides:
- Specs: Immutable model metadata (fields, associations, scopes, events)
- Converters: Transform string-keyed descriptions into ModelSpec
- Runtime: Schema synchronizer, model builder and model registry
"""

__version__ = "0.1.0"

from lcp_runtime.config import RuntimeConfig
from lcp_runtime.runtime.builder import BuildState, ModelBuilder
from lcp_runtime.runtime.registry import ModelRegistry
from lcp_runtime.specs.model import ModelSpec

__all__ = ["BuildState", "ModelBuilder", "ModelRegistry", "ModelSpec", "RuntimeConfig"]
