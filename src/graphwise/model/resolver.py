"""
Model resolution: turns either authoring style into one canonical Model.

- Sequential path: an ordered list of layers, chained from the first
  layer's declared input shape.
- Functional path: explicit input and output handles; the graph between
  them is found by walking producers backwards from the outputs.

Both paths produce a Model whose layer applications are topologically
sorted, ties broken by creation order.
"""

import heapq
import logging
import warnings
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Union

from ..config.base import GraphWiseConfig, ResolverConfig
from .architecture import Model
from .builder import GraphBuilder, HandleOrHandles, as_handle_list
from .errors import (
    ConfigurationError,
    CyclicGraphError,
    DanglingInputError,
    DuplicateNameError,
    SessionError,
    ShapeError,
    UnusedInputError,
)
from .layers import Layer, merge_dim, unique_name
from .tensor import Node, TensorHandle

logger = logging.getLogger(__name__)


def topological_sort(nodes: Sequence[Node]) -> List[Node]:
    """
    Sort layer applications so every producer precedes its consumers.

    Ready applications are taken in creation order (Node.uid), which
    makes the result independent of the order ``nodes`` is given in.

    Raises:
        CyclicGraphError: If the applications cannot be ordered
    """
    by_uid: Dict[int, Node] = {node.uid: node for node in nodes}
    indegree: Dict[int, int] = {}
    consumers = defaultdict(list)
    for node in by_uid.values():
        deps = {
            h.producer.uid for h in node.inputs
            if h.producer is not None and h.producer.uid in by_uid
        }
        indegree[node.uid] = len(deps)
        for dep in deps:
            consumers[dep].append(node.uid)

    ready = [uid for uid, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    order = []
    while ready:
        uid = heapq.heappop(ready)
        order.append(by_uid[uid])
        for consumer in consumers[uid]:
            indegree[consumer] -= 1
            if indegree[consumer] == 0:
                heapq.heappush(ready, consumer)

    if len(order) != len(by_uid):
        stuck = sorted(by_uid[uid].layer.name for uid, d in indegree.items() if d > 0)
        raise CyclicGraphError(f"Layer graph contains a cycle through: {stuck}")
    return order


def check_unique_names(layers: Sequence[Layer], input_names: Sequence[str] = ()) -> None:
    """Distinct layers must have distinct names, which must not clash with input names."""
    seen: Dict[str, Layer] = {}
    for layer in layers:
        existing = seen.get(layer.name)
        if existing is not None and existing is not layer:
            raise DuplicateNameError(f"Two different layers are named '{layer.name}'")
        seen[layer.name] = layer
    for name in input_names:
        if name in seen:
            raise DuplicateNameError(f"Input name '{name}' is also used by a layer")


class ModelResolver:
    """Resolves sequential and functional definitions into Models."""

    def __init__(self, config: Optional[Union[ResolverConfig, GraphWiseConfig]] = None):
        """
        Initialize the resolver.

        Args:
            config: Resolution policies (defaults to ResolverConfig()); a
                GraphWiseConfig contributes its resolver section
        """
        if isinstance(config, GraphWiseConfig):
            config = config.resolver
        self.config = config or ResolverConfig()
        self.config.validate()

    def sequential(self, layers: Sequence[Layer], name: Optional[str] = None) -> Model:
        """
        Resolve an ordered stack of layers.

        Shape inference for the whole chain runs before anything is
        recorded, so a failure leaves every layer untouched.

        Args:
            layers: Layers in order; the first must declare its input shape
            name: Model name

        Returns:
            Model with one input and the last layer's output(s)
        """
        layers = list(layers)
        if not layers:
            raise ConfigurationError("A sequential model needs at least one layer")

        first = layers[0]
        if not first.has_declared_shape:
            raise ConfigurationError(
                f"The first layer '{first.name}' of a sequential model must declare "
                f"input_shape or batch_input_shape"
            )
        for layer in layers[1:]:
            if not layer.has_declared_shape:
                continue
            if self.config.input_shape_policy == "error":
                raise ConfigurationError(
                    f"Layer '{layer.name}' declares an input shape but is not the first "
                    f"layer of the sequential model"
                )
            logger.warning(
                f"Ignoring input_shape {layer.input_shape} declared on non-first layer "
                f"'{layer.name}'; its input shape is inferred"
            )

        input_name = f"{first.name}_input"
        check_unique_names(layers, [input_name])

        # A layer repeated in the stack must see the same weight dims each time
        built: Dict[int, tuple] = {}
        shape = first.input_shape
        for layer in layers:
            output_shape = layer.infer_output_shape([shape])[0]
            dims = layer.check_weight_dims([shape], built.get(id(layer)))
            built.setdefault(id(layer), dims)
            shape = output_shape

        builder = GraphBuilder(name)
        x = builder.declare_input(first.input_shape, batch_size=first.batch_size, name=input_name)
        inputs = [x]
        outputs = inputs
        for layer in layers:
            outputs = builder.record_application(layer, outputs)

        return self._resolve(inputs, outputs, name or unique_name("sequential"),
                             unused_input_policy="error")

    def functional(self, inputs: HandleOrHandles, outputs: HandleOrHandles,
                   name: Optional[str] = None) -> Model:
        """
        Resolve the graph between explicit inputs and outputs.

        Args:
            inputs: Declared input handle(s); order is preserved
            outputs: Output handle(s); order is preserved
            name: Model name

        Returns:
            Model over every application reachable from the outputs
        """
        return self._resolve(as_handle_list(inputs), as_handle_list(outputs),
                             name or unique_name("model"),
                             unused_input_policy=self.config.unused_input_policy,
                             check_declared_shapes=True)

    def _resolve(self, inputs: List[TensorHandle], outputs: List[TensorHandle],
                 name: str, unused_input_policy: str,
                 check_declared_shapes: bool = False) -> Model:
        if not inputs:
            raise ConfigurationError("A model needs at least one input")
        if not outputs:
            raise ConfigurationError("A model needs at least one output")
        for handle in inputs + outputs:
            if not isinstance(handle, TensorHandle):
                raise TypeError(f"Model inputs and outputs must be TensorHandle, got {type(handle).__name__}")
        if len({h.session for h in inputs + outputs}) > 1:
            raise SessionError("Model inputs and outputs come from different builder sessions")

        input_ids = set()
        for handle in inputs:
            if handle.producer is not None:
                raise ConfigurationError(
                    f"Model input {handle.name} is produced by layer "
                    f"'{handle.producer.layer.name}'; inputs must be declared inputs"
                )
            if handle.id in input_ids:
                raise ConfigurationError(f"Input {handle.name} is listed more than once")
            input_ids.add(handle.id)

        # Walk producers backwards from the outputs
        visited: Dict[int, Node] = {}
        reached = set()
        seen = set()
        stack = list(reversed(outputs))
        while stack:
            handle = stack.pop()
            if handle.id in seen:
                continue
            seen.add(handle.id)
            if handle.id in input_ids:
                reached.add(handle.id)
                continue
            if handle.producer is None:
                raise DanglingInputError(
                    f"Outputs depend on {handle.name}, which is not one of the model inputs",
                    handle=handle,
                )
            node = handle.producer
            if node.uid not in visited:
                visited[node.uid] = node
                stack.extend(reversed(node.inputs))

        order = topological_sort(list(visited.values()))
        check_unique_names([node.layer for node in order], [h.name for h in inputs])
        if check_declared_shapes:
            self._check_declared_shapes(order)

        for handle in inputs:
            if handle.id in reached:
                continue
            message = f"Input {handle.name} is not connected to any output of model '{name}'"
            if unused_input_policy == "error":
                raise UnusedInputError(message, handle=handle)
            if unused_input_policy == "warn":
                warnings.warn(UnusedInputError(message, handle=handle), stacklevel=3)

        model = Model(order, inputs, outputs, name=name)
        logger.info(
            f"Resolved model '{name}': {len(order)} layer application(s), "
            f"{len(inputs)} input(s), {len(outputs)} output(s)"
        )
        return model

    def _check_declared_shapes(self, order: Sequence[Node]) -> None:
        """Declared input shapes must agree with the handles a layer is applied to."""
        for node in order:
            layer = node.layer
            if not layer.has_declared_shape or len(node.inputs) != 1:
                continue
            actual = node.inputs[0].shape
            declared = layer.input_shape
            try:
                if len(actual) != len(declared):
                    raise ShapeError(f"rank {len(actual)} != {len(declared)}")
                for a, d in zip(actual, declared):
                    merge_dim(a, d)
            except ShapeError:
                message = (
                    f"Layer '{layer.name}' declares input_shape {declared} but is applied "
                    f"to {node.inputs[0].name} with shape {actual}"
                )
                if self.config.input_shape_policy == "error":
                    raise ShapeError(message) from None
                logger.warning(f"{message}; using the applied shape")


def resolve_sequential(layers: Sequence[Layer], name: Optional[str] = None,
                       config: Optional[ResolverConfig] = None) -> Model:
    """Convenience wrapper for ModelResolver(config).sequential()."""
    return ModelResolver(config).sequential(layers, name=name)


def resolve_functional(inputs: HandleOrHandles, outputs: HandleOrHandles,
                       name: Optional[str] = None,
                       config: Optional[ResolverConfig] = None) -> Model:
    """Convenience wrapper for ModelResolver(config).functional()."""
    return ModelResolver(config).functional(inputs, outputs, name=name)
