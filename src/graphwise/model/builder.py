"""
Graph builders for composing layers.

GraphBuilder is the functional-style session: it declares inputs and
records layer applications into an append-only graph. Sequential is the
fluent builder for linear stacks. Both hand their result to the
ModelResolver.
"""

import itertools
import logging
from typing import Dict, List, Optional, Sequence, Union, TYPE_CHECKING

from .errors import CyclicGraphError, DuplicateNameError, SessionError
from .layers import Layer
from .tensor import Node, TensorHandle, normalize_shape

if TYPE_CHECKING:
    from ..config.base import ResolverConfig
    from .architecture import Model

logger = logging.getLogger(__name__)

_session_ids = itertools.count(1)

HandleOrHandles = Union[TensorHandle, Sequence[TensorHandle]]


def as_handle_list(handles: HandleOrHandles) -> List[TensorHandle]:
    """Accept a single handle or a sequence of handles."""
    if isinstance(handles, TensorHandle):
        return [handles]
    return list(handles)


class GraphBuilder:
    """
    One graph-construction session.

    The builder owns an arena of handles (keyed by id) and the ordered
    list of layer applications. It never removes or rewires nodes.
    """

    def __init__(self, name: Optional[str] = None):
        """
        Initialize a graph-construction session.

        Args:
            name: Optional session name, used as the default model name
        """
        self.session_id = next(_session_ids)
        self.name = name
        self._handles: Dict[int, TensorHandle] = {}
        self._nodes: List[Node] = []
        self._inputs: List[TensorHandle] = []

    @property
    def nodes(self) -> List[Node]:
        """Layer applications in the order they were recorded."""
        return list(self._nodes)

    @property
    def declared_inputs(self) -> List[TensorHandle]:
        return list(self._inputs)

    def __contains__(self, handle: TensorHandle) -> bool:
        return self._handles.get(handle.id) is handle

    def __len__(self) -> int:
        return len(self._nodes)

    def declare_input(self, shape: Sequence[Optional[int]],
                      batch_size: Optional[int] = None,
                      name: Optional[str] = None) -> TensorHandle:
        """
        Declare a model input.

        Args:
            shape: Per-sample shape (no batch dimension); None marks unknown dims
            batch_size: Optional fixed batch size
            name: Input name (auto-generated if omitted)

        Returns:
            New handle with no producer
        """
        shape = normalize_shape(shape, "input shape")
        if batch_size is not None and (not isinstance(batch_size, int) or batch_size <= 0):
            raise ValueError("batch_size must be a positive integer")
        taken = {h.name for h in self._inputs}
        if name is None:
            index = len(self._inputs) + 1
            while f"input_{index}" in taken:
                index += 1
            name = f"input_{index}"
        if name in taken:
            raise DuplicateNameError(f"Input name '{name}' is already declared in this session")

        handle = TensorHandle(
            shape=shape,
            batch_size=batch_size,
            name=name,
            session=self.session_id,
        )
        self._handles[handle.id] = handle
        self._inputs.append(handle)
        logger.debug(f"Declared input {name} with shape {shape}")
        return handle

    def _check_membership(self, layer: Layer, inputs: Sequence[TensorHandle]) -> None:
        for handle in inputs:
            if not isinstance(handle, TensorHandle):
                raise TypeError(f"Layer inputs must be TensorHandle, got {type(handle).__name__}")
            if handle not in self:
                raise SessionError(
                    f"Handle {handle.name} passed to layer '{layer.name}' "
                    f"does not belong to this builder session"
                )

    def _check_acyclic(self, layer: Layer, inputs: Sequence[TensorHandle]) -> None:
        """
        Walk the producer chains of ``inputs``.

        The application about to be recorded gets ordinal ``layer.call_count``;
        finding an existing application of ``layer`` with that ordinal or a
        later one means an input depends on the application being built.
        """
        seen = set()
        stack = [h.producer for h in inputs if h.producer is not None]
        while stack:
            node = stack.pop()
            if node.uid in seen:
                continue
            seen.add(node.uid)
            if node.layer is layer and node.ordinal >= layer.call_count:
                raise CyclicGraphError(
                    f"Applying layer '{layer.name}' would make it depend on its own output"
                )
            stack.extend(h.producer for h in node.inputs if h.producer is not None)

    def record_application(self, layer: Layer, inputs: HandleOrHandles) -> List[TensorHandle]:
        """
        Apply ``layer`` to ``inputs`` and register the application.

        Args:
            layer: Layer to apply (may already have been applied elsewhere)
            inputs: Input handle(s) from this session

        Returns:
            Output handles of the new application
        """
        inputs = as_handle_list(inputs)
        self._check_membership(layer, inputs)
        self._check_acyclic(layer, inputs)

        outputs = layer.apply(inputs)
        self._nodes.append(outputs[0].producer)
        for handle in outputs:
            self._handles[handle.id] = handle
        return outputs

    def apply(self, layer: Layer, inputs: HandleOrHandles) -> HandleOrHandles:
        """Like record_application, but returns the handle itself for single-output layers."""
        outputs = self.record_application(layer, inputs)
        return outputs[0] if len(outputs) == 1 else outputs

    def build(self, inputs: HandleOrHandles, outputs: HandleOrHandles,
              name: Optional[str] = None,
              config: Optional["ResolverConfig"] = None) -> "Model":
        """
        Resolve a model from this session's graph (functional path).

        Args:
            inputs: Model input handle(s), declared in this session
            outputs: Model output handle(s)
            name: Model name (defaults to the session name)
            config: Resolver policies

        Returns:
            Resolved Model
        """
        from .resolver import ModelResolver

        inputs = as_handle_list(inputs)
        outputs = as_handle_list(outputs)
        for handle in inputs + outputs:
            if handle not in self:
                raise SessionError(f"Handle {handle.name} does not belong to this builder session")
        return ModelResolver(config).functional(inputs, outputs, name=name or self.name)


class Sequential:
    """
    Fluent builder for linear stacks of layers.

    Example:
        model = (Sequential("mlp")
                 .add(Dense(32, input_shape=(784,)))
                 .add(Activation("relu"))
                 .build())
    """

    def __init__(self, name: Optional[str] = None, layers: Optional[Sequence[Layer]] = None):
        self.name = name
        self.layers: List[Layer] = []
        for layer in layers or []:
            self.add(layer)

    def add(self, layer: Layer) -> "Sequential":
        """
        Append a layer to the stack.

        Returns:
            Self for method chaining
        """
        if not isinstance(layer, Layer):
            raise TypeError(f"Sequential.add expects a Layer, got {type(layer).__name__}")
        self.layers.append(layer)
        return self

    def __len__(self) -> int:
        return len(self.layers)

    def build(self, config: Optional["ResolverConfig"] = None) -> "Model":
        """Resolve the stack into a Model (sequential path)."""
        from .resolver import ModelResolver

        return ModelResolver(config).sequential(self.layers, name=self.name)
