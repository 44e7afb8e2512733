"""
Configuration module for GraphWise.
Provides hierarchical configuration with validation and defaults.
"""

from .base import (
    BaseConfig,
    ResolverConfig,
    TorchConfig,
    OptimizerConfig,
    GraphWiseConfig,
    InputShapePolicy,
    UnusedInputPolicy,
    OptimizerType
)

__all__ = [
    "BaseConfig",
    "ResolverConfig",
    "TorchConfig",
    "OptimizerConfig",
    "GraphWiseConfig",
    "InputShapePolicy",
    "UnusedInputPolicy",
    "OptimizerType"
]
