"""
GraphWise: a Keras-style layer graph with shape inference.

Models are composed either as sequential stacks or as functional graphs
over symbolic tensor handles, resolved into a topologically ordered
Model, and executed through a PyTorch adapter.
"""

from .config import GraphWiseConfig, OptimizerConfig, ResolverConfig, TorchConfig
from .model import (
    GraphBuilder,
    Sequential,
    ModelResolver,
    Model,
    TensorHandle,
    GraphError
)

__version__ = "0.1.0"

__all__ = [
    "GraphWiseConfig",
    "OptimizerConfig",
    "ResolverConfig",
    "TorchConfig",
    "GraphBuilder",
    "Sequential",
    "ModelResolver",
    "Model",
    "TensorHandle",
    "GraphError",
    "__version__"
]
