"""
Factories for building models, executable graphs, optimizers and losses.

These factories accept either config dictionaries, YAML files or
pre-built objects and delegate to the graph core and to PyTorch.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

import torch
import torch.nn as nn
import yaml

from ..config.base import GraphWiseConfig, OptimizerConfig, ResolverConfig, TorchConfig
from ..model.architecture import Model
from ..model.layers import deserialize_layer
from ..model.resolver import ModelResolver
from .adapters import ModelAdapter
from .specs import ModelSpec

logger = logging.getLogger(__name__)


OPTIMIZERS = {
    "sgd": torch.optim.SGD,
    "adam": torch.optim.Adam,
    "adamw": torch.optim.AdamW,
    "rmsprop": torch.optim.RMSprop,
    "adagrad": torch.optim.Adagrad,
}


class CategoricalCrossentropy(nn.Module):
    """Cross-entropy between predicted probabilities and one-hot targets."""

    def __init__(self, eps: float = 1e-7):
        super().__init__()
        self.eps = eps

    def forward(self, probs: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
        probs = probs.clamp(self.eps, 1.0 - self.eps)
        return -(target * probs.log()).sum(dim=-1).mean()


class SparseCategoricalCrossentropy(nn.Module):
    """Cross-entropy between predicted probabilities and integer class targets."""

    def __init__(self, eps: float = 1e-7):
        super().__init__()
        self.eps = eps

    def forward(self, probs: torch.Tensor, target: torch.Tensor) -> torch.Tensor:
        log_probs = probs.clamp(self.eps, 1.0 - self.eps).log()
        return nn.functional.nll_loss(log_probs, target.long())


LOSSES = {
    "mse": nn.MSELoss,
    "mean_squared_error": nn.MSELoss,
    "mae": nn.L1Loss,
    "mean_absolute_error": nn.L1Loss,
    "huber": nn.HuberLoss,
    "binary_crossentropy": nn.BCELoss,
    "categorical_crossentropy": CategoricalCrossentropy,
    "sparse_categorical_crossentropy": SparseCategoricalCrossentropy,
}


def _build_sequential(config: Dict, resolver_config) -> Model:
    layers = [deserialize_layer(entry['kind'], entry.get('config', {}))
              for entry in config['sequential']]
    return ModelResolver(resolver_config).sequential(layers, name=config.get('name'))


def build_model(config_or_model: Union[Dict, str, Path, ModelSpec, Model],
                resolver_config: Optional[Union[ResolverConfig, GraphWiseConfig]] = None) -> Model:
    """
    Build model from config or use existing model.

    Two config forms are accepted:
    - a model description (``Model.get_config()`` output): keys
      ``name``, ``inputs``, ``layers``, ``nodes``, ``outputs``
    - a sequential stack: keys ``name`` and ``sequential``, a list of
      ``{kind, config}`` entries, the first declaring ``input_shape``

    Args:
        config_or_model: Config dict, path to a YAML file, ModelSpec or Model
        resolver_config: Optional resolution policies (or a GraphWiseConfig)

    Returns:
        Resolved Model
    """
    if isinstance(config_or_model, Model):
        # Use existing model
        return config_or_model

    if isinstance(config_or_model, ModelSpec):
        return Model.from_config(config_or_model, resolver_config=resolver_config)

    if isinstance(config_or_model, (str, Path)):
        with open(config_or_model, 'r') as f:
            config = yaml.safe_load(f)
        logger.info(f"Loaded model config from {config_or_model}")
    else:
        config = dict(config_or_model or {})

    if 'sequential' in config:
        return _build_sequential(config, resolver_config)
    if 'nodes' in config:
        return Model.from_config(config, resolver_config=resolver_config)
    raise ValueError("Model config must contain either 'sequential' or 'nodes'")


def build_executable(model: Union[Model, Dict, str, Path],
                     config: Optional[Union[TorchConfig, GraphWiseConfig]] = None) -> ModelAdapter:
    """
    Instantiate an executable torch graph.

    Args:
        model: Model, or anything build_model() accepts
        config: Device and dtype settings, or a GraphWiseConfig whose
            resolver section is used for building and torch section for execution

    Returns:
        Model adapter wrapping the torch modules
    """
    resolver_config = config if isinstance(config, GraphWiseConfig) else None
    return ModelAdapter(build_model(model, resolver_config), config)


def build_optimizer(model_adapter: ModelAdapter,
                    optimizer: Optional[str] = None,
                    config: Optional[Union[OptimizerConfig, GraphWiseConfig]] = None) -> torch.optim.Optimizer:
    """
    Build a torch optimizer for an executable graph.

    Args:
        model_adapter: Adapter whose parameters are optimized
        optimizer: Optimizer identifier; defaults to the model's compiled optimizer
        config: Optimizer hyperparameters, or a GraphWiseConfig whose optimizer
            section is used

    Returns:
        Configured optimizer
    """
    if optimizer is None:
        state = model_adapter.model.compiled_state
        if state is None:
            raise ValueError("No optimizer given and the model is not compiled")
        optimizer = state.optimizer

    if isinstance(config, GraphWiseConfig):
        config = config.optimizer
    config = config or OptimizerConfig()
    config.validate()

    optimizer_class = OPTIMIZERS.get(optimizer.lower())
    if optimizer_class is None:
        # Fall back to any optimizer class exposed by torch.optim
        optimizer_class = getattr(torch.optim, optimizer, None)
        if not isinstance(optimizer_class, type) or not issubclass(optimizer_class, torch.optim.Optimizer):
            raise ValueError(f"Unknown optimizer: {optimizer}")

    kwargs = config.get_optimizer_kwargs(optimizer)
    return optimizer_class(model_adapter.get_trainable_parameters(), **kwargs)


def _make_loss(identifier: str) -> nn.Module:
    if identifier not in LOSSES:
        raise ValueError(f"Unknown loss: {identifier}. Must be one of {sorted(LOSSES)}")
    return LOSSES[identifier]()


def build_loss(model_or_loss: Union[Model, str, List[str], Dict[str, str]]):
    """
    Build torch loss modules from a compiled model or loss identifier(s).

    Returns:
        A loss module, or a list/dict of modules mirroring the identifiers
    """
    loss = model_or_loss
    if isinstance(model_or_loss, Model):
        if model_or_loss.compiled_state is None:
            raise ValueError(f"Model '{model_or_loss.name}' is not compiled")
        loss = model_or_loss.compiled_state.loss

    if isinstance(loss, str):
        return _make_loss(loss)
    if isinstance(loss, dict):
        return {name: _make_loss(identifier) for name, identifier in loss.items()}
    return [_make_loss(identifier) for identifier in loss]
