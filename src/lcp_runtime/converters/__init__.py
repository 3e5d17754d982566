"""
Model description converters.

Converts string-keyed model descriptions produced by external front-ends to
ModelSpec.
"""

from lcp_runtime.converters.model_converter import load_model_spec, load_model_specs

__all__ = [
    "load_model_spec",
    "load_model_specs",
]
