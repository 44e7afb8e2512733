"""
Framework glue for GraphWise.

This module provides the description, adapter and factory layer that
connects resolved models to serialization and to PyTorch execution
without the graph core owning either.
"""

from .specs import (
    InputSpec, LayerSpec, NodeSpec, ModelSpec, validate_spec_shapes
)
from .adapters import ModelAdapter, build_layer_module
from .factories import (
    build_model, build_executable, build_optimizer, build_loss
)

__all__ = [
    # Specs
    "InputSpec",
    "LayerSpec",
    "NodeSpec",
    "ModelSpec",
    "validate_spec_shapes",

    # Adapters
    "ModelAdapter",
    "build_layer_module",

    # Factories
    "build_model",
    "build_executable",
    "build_optimizer",
    "build_loss",
]
