"""
GraphWise Model Package

This package contains the layer-graph core: symbolic tensor handles,
layer kinds, graph builders, the model resolver and the resolved Model.
"""

# Errors
from .errors import (
    GraphError,
    ShapeError,
    ArityError,
    CyclicGraphError,
    DanglingInputError,
    UnusedInputError,
    DuplicateNameError,
    AmbiguousPopError,
    EmptyModelError,
    ConfigurationError,
    SessionError
)

# Symbolic tensors
from .tensor import TensorHandle, Node, normalize_shape, format_shape

# Layer kinds
from .layers import (
    Layer,
    Dense,
    Activation,
    Dropout,
    Flatten,
    Reshape,
    Embedding,
    Conv2D,
    MaxPooling2D,
    LSTM,
    GRU,
    Concatenate,
    Add,
    Multiply,
    LAYER_REGISTRY,
    register_layer,
    deserialize_layer,
    reset_name_counters
)

# Builders and resolution
from .builder import GraphBuilder, Sequential
from .resolver import ModelResolver, resolve_sequential, resolve_functional, topological_sort
from .architecture import Model, CompiledState

__all__ = [
    # Errors
    "GraphError",
    "ShapeError",
    "ArityError",
    "CyclicGraphError",
    "DanglingInputError",
    "UnusedInputError",
    "DuplicateNameError",
    "AmbiguousPopError",
    "EmptyModelError",
    "ConfigurationError",
    "SessionError",

    # Symbolic tensors
    "TensorHandle",
    "Node",
    "normalize_shape",
    "format_shape",

    # Layer kinds
    "Layer",
    "Dense",
    "Activation",
    "Dropout",
    "Flatten",
    "Reshape",
    "Embedding",
    "Conv2D",
    "MaxPooling2D",
    "LSTM",
    "GRU",
    "Concatenate",
    "Add",
    "Multiply",
    "LAYER_REGISTRY",
    "register_layer",
    "deserialize_layer",
    "reset_name_counters",

    # Builders and resolution
    "GraphBuilder",
    "Sequential",
    "ModelResolver",
    "resolve_sequential",
    "resolve_functional",
    "topological_sort",
    "Model",
    "CompiledState"
]
