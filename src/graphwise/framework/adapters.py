"""
Adapters for bridging resolved models to PyTorch.

ModelAdapter instantiates an executable torch graph from a Model's
(layers, inputs, outputs). Each distinct Layer becomes one torch module,
so a layer applied several times shares its weights across applications.

Layouts follow the graph core: the batch dimension comes first, images
are channels-last (batch, height, width, channels) and sequences are
batch-first (batch, timesteps, features).
"""

from typing import Dict, List, Optional, Sequence, Union
import logging

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from ..config.base import GraphWiseConfig, TorchConfig
from ..model.architecture import Model
from ..model.layers import (
    Activation, Add, Concatenate, Conv2D, Dense, Dropout, Embedding,
    Flatten, GRU, Layer, LSTM, MaxPooling2D, Multiply, Reshape,
)

logger = logging.getLogger(__name__)


class _Exponential(nn.Module):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.exp(x)


ACTIVATION_MODULES = {
    "linear": nn.Identity,
    "relu": nn.ReLU,
    "sigmoid": nn.Sigmoid,
    "softmax": lambda: nn.Softmax(dim=-1),
    "tanh": nn.Tanh,
    "elu": nn.ELU,
    "selu": nn.SELU,
    "softplus": nn.Softplus,
    "softsign": nn.Softsign,
    "hard_sigmoid": nn.Hardsigmoid,
    "exponential": _Exponential,
    "gelu": nn.GELU,
    "swish": nn.SiLU,
}


def make_activation(name: Optional[str]) -> nn.Module:
    """Torch module for an activation name (identity for None)."""
    if name is None:
        return nn.Identity()
    return ACTIVATION_MODULES[name]()


def same_padding(x: torch.Tensor, kernel_size: Sequence[int], stride: Sequence[int],
                 value: float = 0.0) -> torch.Tensor:
    """
    Pad a (batch, channels, height, width) tensor so a window with the
    given kernel and stride yields ceil(size / stride) outputs per axis.
    """
    pads = []
    for size, k, s in zip(x.shape[-2:], kernel_size, stride):
        out = -(-size // s)
        total = max((out - 1) * s + k - size, 0)
        pads.append((total // 2, total - total // 2))
    (top, bottom), (left, right) = pads
    return F.pad(x, (left, right, top, bottom), value=value)


class DenseModule(nn.Module):
    def __init__(self, in_features: int, layer: Dense):
        super().__init__()
        self.linear = nn.Linear(in_features, layer.config.units, bias=layer.config.use_bias)
        self.activation = make_activation(layer.config.activation)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.activation(self.linear(x))


class ReshapeModule(nn.Module):
    def __init__(self, target_shape: Sequence[int]):
        super().__init__()
        self.target_shape = tuple(target_shape)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return x.reshape(x.shape[0], *self.target_shape)


class EmbeddingModule(nn.Module):
    def __init__(self, layer: Embedding):
        super().__init__()
        self.embedding = nn.Embedding(layer.config.input_dim, layer.config.output_dim)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.embedding(x.long())


class Conv2DModule(nn.Module):
    """Channels-last 2D convolution."""

    def __init__(self, in_channels: int, layer: Conv2D):
        super().__init__()
        c = layer.config
        self.conv = nn.Conv2d(in_channels, c.filters, c.kernel_size, stride=c.strides, bias=c.use_bias)
        self.padding = c.padding
        self.activation = make_activation(c.activation)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = x.permute(0, 3, 1, 2)
        if self.padding == "same":
            x = same_padding(x, self.conv.kernel_size, self.conv.stride)
        x = self.activation(self.conv(x))
        return x.permute(0, 2, 3, 1)


class MaxPooling2DModule(nn.Module):
    """Channels-last 2D max pooling."""

    def __init__(self, layer: MaxPooling2D):
        super().__init__()
        c = layer.config
        self.pool = nn.MaxPool2d(c.pool_size, stride=c.strides)
        self.pool_size = c.pool_size
        self.strides = c.strides
        self.padding = c.padding

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = x.permute(0, 3, 1, 2)
        if self.padding == "same":
            x = same_padding(x, self.pool_size, self.strides, value=float("-inf"))
        return self.pool(x).permute(0, 2, 3, 1)


class RecurrentModule(nn.Module):
    """Batch-first LSTM/GRU returning the last step or the full sequence."""

    def __init__(self, rnn_class, in_features: int, layer: Layer):
        super().__init__()
        c = layer.config
        self.dropout = nn.Dropout(c.dropout)
        self.rnn = rnn_class(in_features, c.units, batch_first=True)
        self.return_sequences = c.return_sequences

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        out, _ = self.rnn(self.dropout(x))
        return out if self.return_sequences else out[:, -1, :]


class ConcatenateModule(nn.Module):
    def __init__(self, axis: int):
        super().__init__()
        # Axis already counts the batch dimension as 0
        self.axis = axis

    def forward(self, *xs: torch.Tensor) -> torch.Tensor:
        return torch.cat(xs, dim=self.axis)


class AddModule(nn.Module):
    def forward(self, *xs: torch.Tensor) -> torch.Tensor:
        out = xs[0]
        for x in xs[1:]:
            out = out + x
        return out


class MultiplyModule(nn.Module):
    def forward(self, *xs: torch.Tensor) -> torch.Tensor:
        out = xs[0]
        for x in xs[1:]:
            out = out * x
        return out


def build_layer_module(layer: Layer, input_shapes: List[tuple]) -> nn.Module:
    """
    Create the torch module for a layer from its first application's input shapes.

    Args:
        layer: Graph layer
        input_shapes: Per-sample input shapes of the first application

    Returns:
        Torch module computing the layer
    """
    shape = input_shapes[0]
    if isinstance(layer, Dense):
        return DenseModule(shape[-1], layer)
    elif isinstance(layer, Activation):
        return make_activation(layer.config.activation)
    elif isinstance(layer, Dropout):
        return nn.Dropout(layer.config.rate)
    elif isinstance(layer, Flatten):
        return nn.Flatten()
    elif isinstance(layer, Reshape):
        return ReshapeModule(layer.config.target_shape)
    elif isinstance(layer, Embedding):
        return EmbeddingModule(layer)
    elif isinstance(layer, Conv2D):
        return Conv2DModule(shape[-1], layer)
    elif isinstance(layer, MaxPooling2D):
        return MaxPooling2DModule(layer)
    elif isinstance(layer, LSTM):
        return RecurrentModule(nn.LSTM, shape[-1], layer)
    elif isinstance(layer, GRU):
        return RecurrentModule(nn.GRU, shape[-1], layer)
    elif isinstance(layer, Concatenate):
        return ConcatenateModule(layer.config.axis)
    elif isinstance(layer, Add):
        return AddModule()
    elif isinstance(layer, Multiply):
        return MultiplyModule()
    raise TypeError(f"No torch mapping for layer kind '{layer.kind}'")


class ModelAdapter(nn.Module):
    """Executable torch graph for a resolved Model."""

    def __init__(self, model: Model, config: Optional[Union[TorchConfig, GraphWiseConfig]] = None):
        """
        Initialize model adapter.

        Args:
            model: Resolved model; its current topology is captured
            config: Device and dtype settings; a GraphWiseConfig contributes
                its torch section
        """
        super().__init__()
        if isinstance(config, GraphWiseConfig):
            config = config.torch
        self.config = config or TorchConfig()
        self.config.validate()

        self.model = model
        self.graph_inputs = tuple(model.inputs)
        self.graph_outputs = tuple(model.outputs)
        self.nodes = tuple(model.layers)

        self.layer_modules = nn.ModuleDict()
        for node in self.nodes:
            name = node.layer.name
            if name in self.layer_modules:
                continue
            if "." in name:
                raise ValueError(f"Layer name '{name}' cannot be used as a torch module name")
            self.layer_modules[name] = build_layer_module(node.layer, node.input_shapes)

        self.to(device=torch.device(self.config.device), dtype=getattr(torch, self.config.dtype))
        logger.info(
            f"Instantiated torch graph for model '{model.name}': "
            f"{len(self.layer_modules)} module(s), {self.count_params()} parameter(s)"
        )

    def forward(self, *inputs: torch.Tensor):
        """
        Run the layer applications in topological order.

        Args:
            *inputs: One tensor per model input, batch dimension first

        Returns:
            Output tensor, or a list of tensors for multi-output models
        """
        if len(inputs) != len(self.graph_inputs):
            raise ValueError(f"Expected {len(self.graph_inputs)} input tensor(s), got {len(inputs)}")

        values: Dict[int, torch.Tensor] = {h.id: x for h, x in zip(self.graph_inputs, inputs)}
        for node in self.nodes:
            module = self.layer_modules[node.layer.name]
            result = module(*[values[h.id] for h in node.inputs])
            values[node.outputs[0].id] = result

        outputs = [values[h.id] for h in self.graph_outputs]
        return outputs[0] if len(outputs) == 1 else outputs

    def get_layer_module(self, layer_name: str) -> nn.Module:
        """Get the torch module backing a layer."""
        if layer_name not in self.layer_modules:
            raise ValueError(f"No such layer: {layer_name}")
        return self.layer_modules[layer_name]

    def get_weights(self, layer_name: str) -> List[np.ndarray]:
        """Read a layer's weight tensors as numpy arrays."""
        module = self.get_layer_module(layer_name)
        return [p.detach().cpu().numpy().copy() for p in module.parameters()]

    def set_weights(self, layer_name: str, weights: Sequence[np.ndarray]) -> None:
        """
        Write a layer's weight tensors.

        Args:
            layer_name: Layer whose weights to set
            weights: Arrays in the order returned by get_weights()
        """
        params = list(self.get_layer_module(layer_name).parameters())
        if len(weights) != len(params):
            raise ValueError(
                f"Layer '{layer_name}' expects {len(params)} weight array(s), got {len(weights)}"
            )
        for param, value in zip(params, weights):
            if tuple(np.shape(value)) != tuple(param.shape):
                raise ValueError(
                    f"Weight shape mismatch for layer '{layer_name}': "
                    f"expected {tuple(param.shape)}, got {tuple(np.shape(value))}"
                )
        with torch.no_grad():
            for param, value in zip(params, weights):
                param.copy_(torch.as_tensor(np.asarray(value), dtype=param.dtype, device=param.device))

    def count_params(self) -> int:
        """Get total parameter count"""
        return sum(p.numel() for p in self.parameters())

    def get_trainable_parameters(self) -> List[torch.nn.Parameter]:
        """Get list of trainable parameters."""
        return [p for p in self.parameters() if p.requires_grad]
