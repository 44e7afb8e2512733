"""
Layer kinds for GraphWise.

Every kind is a Layer subclass with:
- a frozen config dataclass validated on construction
- a shape rule (compute_output_shape) over per-sample shapes
- an accepted input arity

Supported kinds:
- Dense, Activation, Dropout, Flatten, Reshape, Embedding
- Conv2D, MaxPooling2D (channels-last images)
- LSTM, GRU (batch-first sequences of shape (timesteps, features))
- Concatenate, Add, Multiply (merge layers)
"""

import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, Union

from .errors import ArityError, SessionError, ShapeError
from .tensor import Node, Shape, TensorHandle, normalize_shape

logger = logging.getLogger(__name__)


ACTIVATIONS = frozenset({
    "linear", "relu", "sigmoid", "softmax", "tanh", "elu", "selu",
    "softplus", "softsign", "hard_sigmoid", "exponential", "gelu", "swish",
})
PADDINGS = ("valid", "same")

# Registry of layer kinds, filled by @register_layer
LAYER_REGISTRY: Dict[str, Type["Layer"]] = {}

_name_counters = defaultdict(lambda: itertools.count(1))


def unique_name(kind: str) -> str:
    """Generate the next default name for a layer kind (dense_1, dense_2, ...)."""
    return f"{kind}_{next(_name_counters[kind])}"


def reset_name_counters() -> None:
    """Restart default layer naming from 1 for every kind."""
    _name_counters.clear()


def register_layer(cls: Type["Layer"]) -> Type["Layer"]:
    """Class decorator adding a layer kind to LAYER_REGISTRY."""
    if cls.kind in LAYER_REGISTRY:
        raise ValueError(f"Layer kind '{cls.kind}' is already registered")
    LAYER_REGISTRY[cls.kind] = cls
    return cls


def deserialize_layer(kind: str, config: Dict[str, Any]) -> "Layer":
    """
    Rebuild a layer from its kind and get_config() output.

    Args:
        kind: Registered layer kind
        config: Layer configuration dictionary

    Returns:
        New Layer instance
    """
    if kind not in LAYER_REGISTRY:
        raise ValueError(
            f"Unknown layer kind: {kind}. Must be one of {sorted(LAYER_REGISTRY)}"
        )
    return LAYER_REGISTRY[kind].from_config(config)


def _to_serializable(value):
    if isinstance(value, (tuple, list)):
        return [_to_serializable(v) for v in value]
    return value


def _pair(value, what: str) -> Tuple[int, int]:
    if isinstance(value, int) and not isinstance(value, bool):
        value = (value, value)
    value = tuple(value)
    if len(value) != 2 or not all(isinstance(v, int) and v > 0 for v in value):
        raise ValueError(f"{what} must be a positive int or a pair of positive ints")
    return value


def _check_activation(activation: Optional[str]) -> None:
    if activation is not None and activation not in ACTIVATIONS:
        raise ValueError(
            f"Unsupported activation: {activation}. Must be one of {sorted(ACTIVATIONS)}"
        )


def merge_dim(a: Optional[int], b: Optional[int]) -> Optional[int]:
    """Merge two dimensions; unknown is compatible with anything."""
    if a is None:
        return b
    if b is None or a == b:
        return a
    raise ShapeError(f"incompatible dimensions {a} and {b}")


def conv_output_length(length: Optional[int], window: int, stride: int,
                       padding: str) -> Optional[int]:
    """Output length of a convolution or pooling window along one axis."""
    if length is None:
        return None
    if padding == "same":
        return (length + stride - 1) // stride
    out = (length - window) // stride + 1
    if out <= 0:
        raise ShapeError(
            f"window {window} with stride {stride} does not fit input length {length}"
        )
    return out


class Layer:
    """
    A named, configured transformation with shape inference.

    Subclasses set ``kind``, ``config_class`` and the accepted arity
    (``min_inputs``/``max_inputs``, None meaning unbounded) and implement
    ``compute_output_shape``.
    """

    kind: str = "layer"
    config_class: type = None
    min_inputs: int = 1
    max_inputs: Optional[int] = 1

    def __init__(self, *args,
                 name: Optional[str] = None,
                 input_shape: Optional[Sequence[Optional[int]]] = None,
                 batch_input_shape: Optional[Sequence[Optional[int]]] = None,
                 batch_size: Optional[int] = None,
                 **kwargs):
        """
        Initialize a layer.

        Args:
            *args: Positional config values for ``config_class``
            name: Layer name, unique within a model (auto-generated if omitted)
            input_shape: Declared per-sample input shape
            batch_input_shape: Declared input shape with a fixed batch dimension first
            batch_size: Fixed batch size (used with ``input_shape``)
            **kwargs: Keyword config values for ``config_class``
        """
        self.config = self.config_class(*args, **kwargs)

        if input_shape is not None and batch_input_shape is not None:
            raise ValueError("Pass either input_shape or batch_input_shape, not both")
        if batch_input_shape is not None:
            batch_input_shape = tuple(batch_input_shape)
            if not batch_input_shape:
                raise ValueError("batch_input_shape must include the batch dimension")
            batch_size = batch_input_shape[0]
            input_shape = batch_input_shape[1:]
        if batch_size is not None and (not isinstance(batch_size, int) or batch_size <= 0):
            raise ValueError("batch_size must be a positive integer")

        self.name = name or unique_name(self.kind)
        self.input_shape: Optional[Shape] = (
            normalize_shape(input_shape, f"input_shape of layer '{self.name}'")
            if input_shape is not None else None
        )
        self.batch_size = batch_size
        self.call_count = 0
        self.inbound_nodes: List[Node] = []
        # Input dims fixed by the first application (weights are shared by later ones)
        self.built_input_dims: Optional[Tuple[int, ...]] = None

    @property
    def has_declared_shape(self) -> bool:
        return self.input_shape is not None

    def compute_output_shape(self, input_shapes: List[Shape]) -> Shape:
        raise NotImplementedError

    def weight_input_dims(self, input_shapes: List[Shape]) -> Optional[Tuple[int, ...]]:
        """Input dimensions that determine the layer's weight shapes (None if weightless)."""
        return None

    def check_weight_dims(self, input_shapes: List[Shape],
                          built_dims: Optional[Tuple[int, ...]] = None) -> Optional[Tuple[int, ...]]:
        """
        Check that an application agrees with the dims the weights were built for.

        Args:
            input_shapes: Per-sample input shapes of the application
            built_dims: Dims to compare against (defaults to built_input_dims)

        Returns:
            The weight-determining dims of input_shapes

        Raises:
            ShapeError: If the dims differ from the built ones
        """
        dims = self.weight_input_dims(input_shapes)
        if built_dims is None:
            built_dims = self.built_input_dims
        if dims is not None and built_dims is not None and dims != built_dims:
            raise ShapeError(
                f"Layer '{self.name}' ({self.kind}) shares weights built for input dims "
                f"{built_dims} and cannot be applied to input shape(s) {list(input_shapes)}"
            )
        return dims

    def _check_arity(self, count: int) -> None:
        if count < self.min_inputs or (self.max_inputs is not None and count > self.max_inputs):
            if self.max_inputs == self.min_inputs:
                expected = f"exactly {self.min_inputs}"
            elif self.max_inputs is None:
                expected = f"at least {self.min_inputs}"
            else:
                expected = f"between {self.min_inputs} and {self.max_inputs}"
            raise ArityError(
                f"Layer '{self.name}' ({self.kind}) expects {expected} input(s), got {count}"
            )

    def infer_output_shape(self, input_shapes: Sequence[Sequence[Optional[int]]]) -> List[Shape]:
        """
        Infer output shapes for the given input shapes without side effects.

        Args:
            input_shapes: One per-sample shape per input

        Returns:
            List of output shapes

        Raises:
            ArityError: If the number of inputs is not accepted by this kind
            ShapeError: If the shapes are incompatible with the layer
        """
        shapes = [normalize_shape(s, "input shape") for s in input_shapes]
        self._check_arity(len(shapes))
        try:
            output_shapes = [self.compute_output_shape(shapes)]
        except ShapeError as e:
            raise ShapeError(
                f"Layer '{self.name}' ({self.kind}) cannot accept input shape(s) "
                f"{shapes}: {e}"
            ) from None
        self.check_weight_dims(shapes)
        return output_shapes

    def apply(self, inputs: Sequence[TensorHandle]) -> List[TensorHandle]:
        """
        Apply the layer to input handles, producing new output handles.

        Nothing is created and call_count is unchanged if any check fails.

        Args:
            inputs: Input tensor handles

        Returns:
            Output tensor handles whose producer is the new application
        """
        if isinstance(inputs, TensorHandle):
            inputs = (inputs,)
        inputs = tuple(inputs)
        for handle in inputs:
            if not isinstance(handle, TensorHandle):
                raise TypeError(f"Layer inputs must be TensorHandle, got {type(handle).__name__}")

        shapes_in = [h.shape for h in inputs]
        output_shapes = self.infer_output_shape(shapes_in)

        sessions = {h.session for h in inputs}
        if len(sessions) > 1:
            raise SessionError(
                f"Layer '{self.name}' was applied to handles from different sessions"
            )
        batch_size = None
        for handle in inputs:
            try:
                batch_size = merge_dim(batch_size, handle.batch_size)
            except ShapeError:
                raise ShapeError(
                    f"Layer '{self.name}' inputs have conflicting batch sizes"
                ) from None

        session = sessions.pop() if sessions else None
        node = Node(layer=self, ordinal=self.call_count, inputs=inputs)
        node.outputs = tuple(
            TensorHandle(
                shape=shape,
                batch_size=batch_size,
                producer=node,
                tensor_index=i,
                name=f"{self.name}/{node.ordinal}:{i}",
                session=session,
            )
            for i, shape in enumerate(output_shapes)
        )
        if self.built_input_dims is None:
            self.built_input_dims = self.weight_input_dims(list(shapes_in))
        self.call_count += 1
        self.inbound_nodes.append(node)
        logger.debug(f"Applied {self.name} (call {node.ordinal}): {output_shapes}")
        return list(node.outputs)

    def get_config(self) -> Dict[str, Any]:
        """Serializable configuration: name, config values and declared input shape."""
        config = {"name": self.name}
        config.update(_to_serializable(asdict(self.config)))
        if self.input_shape is not None:
            config["input_shape"] = _to_serializable(self.input_shape)
        if self.batch_size is not None:
            config["batch_size"] = self.batch_size
        return config

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Layer":
        """Create a layer from get_config() output."""
        config = dict(config)
        return cls(**config)

    def __repr__(self):
        return f"{type(self).__name__}(name='{self.name}')"


# === Core layers ===

@dataclass(frozen=True)
class DenseConfig:
    units: int
    activation: Optional[str] = None
    use_bias: bool = True

    def __post_init__(self):
        if not isinstance(self.units, int) or self.units <= 0:
            raise ValueError("units must be a positive integer")
        _check_activation(self.activation)


@register_layer
class Dense(Layer):
    """Densely connected layer applied along the last axis."""

    kind = "dense"
    config_class = DenseConfig

    def compute_output_shape(self, input_shapes):
        shape = input_shapes[0]
        if not shape:
            raise ShapeError("dense layers need inputs of rank >= 1")
        if shape[-1] is None:
            raise ShapeError("the last dimension of the input must be known")
        return shape[:-1] + (self.config.units,)

    def weight_input_dims(self, input_shapes):
        return (input_shapes[0][-1],)


@dataclass(frozen=True)
class ActivationConfig:
    activation: str

    def __post_init__(self):
        if self.activation is None:
            raise ValueError("activation is required")
        _check_activation(self.activation)


@register_layer
class Activation(Layer):
    kind = "activation"
    config_class = ActivationConfig

    def compute_output_shape(self, input_shapes):
        return input_shapes[0]


@dataclass(frozen=True)
class DropoutConfig:
    rate: float

    def __post_init__(self):
        if not 0.0 <= self.rate < 1.0:
            raise ValueError("rate must be in [0, 1)")


@register_layer
class Dropout(Layer):
    kind = "dropout"
    config_class = DropoutConfig

    def compute_output_shape(self, input_shapes):
        return input_shapes[0]


@dataclass(frozen=True)
class FlattenConfig:
    pass


@register_layer
class Flatten(Layer):
    """Flattens the per-sample dimensions into one."""

    kind = "flatten"
    config_class = FlattenConfig

    def compute_output_shape(self, input_shapes):
        if not input_shapes[0]:
            raise ShapeError("flatten needs inputs of rank >= 1")
        total = 1
        for dim in input_shapes[0]:
            if dim is None:
                return (None,)
            total *= dim
        return (total,)


@dataclass(frozen=True)
class ReshapeConfig:
    target_shape: Tuple[int, ...]

    def __post_init__(self):
        target = tuple(self.target_shape)
        if not target:
            raise ValueError("target_shape must not be empty")
        if not all(isinstance(d, int) and (d > 0 or d == -1) for d in target):
            raise ValueError("target_shape entries must be positive integers or -1")
        if target.count(-1) > 1:
            raise ValueError("target_shape can contain at most one -1")
        object.__setattr__(self, "target_shape", target)


@register_layer
class Reshape(Layer):
    """Reshapes the per-sample dimensions; one entry may be -1 (inferred)."""

    kind = "reshape"
    config_class = ReshapeConfig

    def compute_output_shape(self, input_shapes):
        shape = input_shapes[0]
        target = self.config.target_shape
        known = 1
        for dim in target:
            if dim != -1:
                known *= dim

        total = None
        if all(dim is not None for dim in shape):
            total = 1
            for dim in shape:
                total *= dim

        if -1 in target:
            if total is None:
                return tuple(None if d == -1 else d for d in target)
            if total % known != 0:
                raise ShapeError(f"cannot reshape {total} elements into {target}")
            return tuple(total // known if d == -1 else d for d in target)

        if total is not None and total != known:
            raise ShapeError(f"cannot reshape {total} elements into {target}")
        return target


@dataclass(frozen=True)
class EmbeddingConfig:
    input_dim: int
    output_dim: int
    input_length: Optional[int] = None

    def __post_init__(self):
        if self.input_dim <= 0:
            raise ValueError("input_dim must be positive")
        if self.output_dim <= 0:
            raise ValueError("output_dim must be positive")
        if self.input_length is not None and self.input_length <= 0:
            raise ValueError("input_length must be positive")


@register_layer
class Embedding(Layer):
    """Maps integer indices to dense vectors of size output_dim."""

    kind = "embedding"
    config_class = EmbeddingConfig

    def compute_output_shape(self, input_shapes):
        shape = input_shapes[0]
        length = self.config.input_length
        if length is not None:
            if len(shape) != 1:
                raise ShapeError("input_length requires inputs of rank 1")
            shape = (merge_dim(shape[0], length),)
        return shape + (self.config.output_dim,)


# === Convolution and pooling (channels last) ===

@dataclass(frozen=True)
class Conv2DConfig:
    filters: int
    kernel_size: Union[int, Tuple[int, int]]
    strides: Union[int, Tuple[int, int]] = 1
    padding: str = "valid"
    activation: Optional[str] = None
    use_bias: bool = True

    def __post_init__(self):
        if not isinstance(self.filters, int) or self.filters <= 0:
            raise ValueError("filters must be a positive integer")
        object.__setattr__(self, "kernel_size", _pair(self.kernel_size, "kernel_size"))
        object.__setattr__(self, "strides", _pair(self.strides, "strides"))
        if self.padding not in PADDINGS:
            raise ValueError(f"padding must be one of {PADDINGS}")
        _check_activation(self.activation)


def _check_image(shape: Shape) -> None:
    if len(shape) != 3:
        raise ShapeError(f"expected inputs of rank 3 (height, width, channels), got rank {len(shape)}")


@register_layer
class Conv2D(Layer):
    """2D convolution over (height, width, channels) inputs."""

    kind = "conv2d"
    config_class = Conv2DConfig

    def compute_output_shape(self, input_shapes):
        shape = input_shapes[0]
        _check_image(shape)
        if shape[2] is None:
            raise ShapeError("the channel dimension of the input must be known")
        c = self.config
        rows = conv_output_length(shape[0], c.kernel_size[0], c.strides[0], c.padding)
        cols = conv_output_length(shape[1], c.kernel_size[1], c.strides[1], c.padding)
        return (rows, cols, c.filters)

    def weight_input_dims(self, input_shapes):
        # Kernel depth
        return (input_shapes[0][2],)


@dataclass(frozen=True)
class Pooling2DConfig:
    pool_size: Union[int, Tuple[int, int]] = 2
    strides: Optional[Union[int, Tuple[int, int]]] = None
    padding: str = "valid"

    def __post_init__(self):
        object.__setattr__(self, "pool_size", _pair(self.pool_size, "pool_size"))
        # Strides default to the pool size
        strides = self.pool_size if self.strides is None else self.strides
        object.__setattr__(self, "strides", _pair(strides, "strides"))
        if self.padding not in PADDINGS:
            raise ValueError(f"padding must be one of {PADDINGS}")


@register_layer
class MaxPooling2D(Layer):
    kind = "max_pooling2d"
    config_class = Pooling2DConfig

    def compute_output_shape(self, input_shapes):
        shape = input_shapes[0]
        _check_image(shape)
        c = self.config
        rows = conv_output_length(shape[0], c.pool_size[0], c.strides[0], c.padding)
        cols = conv_output_length(shape[1], c.pool_size[1], c.strides[1], c.padding)
        return (rows, cols, shape[2])


# === Recurrent layers ===

@dataclass(frozen=True)
class RecurrentConfig:
    units: int
    return_sequences: bool = False
    dropout: float = 0.0

    def __post_init__(self):
        if not isinstance(self.units, int) or self.units <= 0:
            raise ValueError("units must be a positive integer")
        if not 0.0 <= self.dropout < 1.0:
            raise ValueError("dropout must be in [0, 1)")


class Recurrent(Layer):
    """Base for recurrent layers over (timesteps, features) inputs."""

    config_class = RecurrentConfig

    def compute_output_shape(self, input_shapes):
        shape = input_shapes[0]
        if len(shape) != 2:
            raise ShapeError(
                f"expected inputs of rank 2 (timesteps, features), got rank {len(shape)}"
            )
        if shape[1] is None:
            raise ShapeError("the feature dimension of the input must be known")
        if self.config.return_sequences:
            return (shape[0], self.config.units)
        return (self.config.units,)

    def weight_input_dims(self, input_shapes):
        return (input_shapes[0][1],)


@register_layer
class LSTM(Recurrent):
    kind = "lstm"


@register_layer
class GRU(Recurrent):
    kind = "gru"


# === Merge layers ===

@dataclass(frozen=True)
class ConcatenateConfig:
    axis: int = -1

    def __post_init__(self):
        if self.axis == 0:
            raise ValueError("cannot concatenate along the batch axis (axis=0)")


@register_layer
class Concatenate(Layer):
    """
    Concatenates inputs along ``axis``.

    The axis counts the batch dimension as axis 0, so -1 is the last
    per-sample axis and 1 the first.
    """

    kind = "concatenate"
    config_class = ConcatenateConfig
    min_inputs = 2
    max_inputs = None

    def sample_axis(self, rank: int) -> int:
        """Index of the concatenation axis within a per-sample shape of ``rank``."""
        axis = self.config.axis
        full_axis = axis + rank + 1 if axis < 0 else axis
        if not 1 <= full_axis <= rank:
            raise ShapeError(f"axis {axis} is out of range for inputs of rank {rank}")
        return full_axis - 1

    def compute_output_shape(self, input_shapes):
        ranks = {len(s) for s in input_shapes}
        if len(ranks) != 1:
            raise ShapeError(f"all inputs must have the same rank, got ranks {sorted(ranks)}")
        rank = ranks.pop()
        axis = self.sample_axis(rank)

        output = list(input_shapes[0])
        for shape in input_shapes[1:]:
            for i, dim in enumerate(shape):
                if i == axis:
                    output[i] = None if output[i] is None or dim is None else output[i] + dim
                else:
                    output[i] = merge_dim(output[i], dim)
        return tuple(output)


@dataclass(frozen=True)
class MergeConfig:
    pass


class ElementwiseMerge(Layer):
    """Elementwise merge of inputs with identical shapes."""

    config_class = MergeConfig
    min_inputs = 1
    max_inputs = None

    def compute_output_shape(self, input_shapes):
        output = input_shapes[0]
        for shape in input_shapes[1:]:
            if len(shape) != len(output):
                raise ShapeError(f"inputs must have identical shapes, got {output} and {shape}")
            output = tuple(merge_dim(a, b) for a, b in zip(output, shape))
        return output


@register_layer
class Add(ElementwiseMerge):
    kind = "add"


@register_layer
class Multiply(ElementwiseMerge):
    kind = "multiply"
