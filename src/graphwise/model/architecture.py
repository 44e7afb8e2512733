"""
GraphWise Model: the resolved, topology-frozen network.

A Model holds:
- the topologically ordered layer applications (a shared layer appears
  once per application)
- the ordered input and output handles
- an optional compiled state (optimizer, loss and metric identifiers)
  consumed by the training collaborator
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .errors import AmbiguousPopError, ConfigurationError, EmptyModelError
from .layers import Layer
from .tensor import Node, TensorHandle, format_shape

logger = logging.getLogger(__name__)

LossSpec = Union[str, List[str], Dict[str, str]]


@dataclass
class CompiledState:
    """Optimizer, loss and metric bindings. Opaque to the graph core."""

    optimizer: str
    loss: LossSpec
    metrics: List[str] = field(default_factory=list)
    loss_weights: Optional[Union[List[float], Dict[str, float]]] = None

    def __post_init__(self):
        """Validate compiled state."""
        if not isinstance(self.optimizer, str) or not self.optimizer:
            raise ValueError("optimizer must be a non-empty identifier")
        if not self.loss:
            raise ValueError("loss must be provided")
        self.metrics = list(self.metrics or [])

    def to_dict(self) -> Dict[str, Any]:
        """Convert compiled state to dictionary."""
        return {
            'optimizer': self.optimizer,
            'loss': self.loss,
            'metrics': self.metrics,
            'loss_weights': self.loss_weights
        }


class Model:
    """
    Resolved layer graph.

    Built by the ModelResolver; call get_config() for the stable
    description consumed by serialization and execution collaborators.
    """

    def __init__(self,
                 nodes: Sequence[Node],
                 inputs: Sequence[TensorHandle],
                 outputs: Sequence[TensorHandle],
                 name: Optional[str] = None):
        """
        Initialize a Model.

        Args:
            nodes: Layer applications in topological order
            inputs: Input handles (no producer)
            outputs: Output handles
            name: Model name
        """
        self.name = name or "model"
        self._nodes: List[Node] = list(nodes)
        self._inputs = tuple(inputs)
        self._outputs = tuple(outputs)
        self.compiled_state: Optional[CompiledState] = None

    @property
    def layers(self) -> tuple:
        """Layer applications in topological order."""
        return tuple(self._nodes)

    @property
    def unique_layers(self) -> List[Layer]:
        """Distinct layers, in order of first application."""
        layers = []
        seen = set()
        for node in self._nodes:
            if id(node.layer) not in seen:
                seen.add(id(node.layer))
                layers.append(node.layer)
        return layers

    @property
    def inputs(self) -> tuple:
        return self._inputs

    @property
    def outputs(self) -> tuple:
        return self._outputs

    @property
    def input_shape(self):
        """Input shape, or a list of shapes for multi-input models."""
        shapes = [h.shape for h in self._inputs]
        return shapes[0] if len(shapes) == 1 else shapes

    @property
    def output_shape(self):
        """Output shape, or a list of shapes for multi-output models."""
        shapes = [h.shape for h in self._outputs]
        return shapes[0] if len(shapes) == 1 else shapes

    @property
    def output_names(self) -> List[str]:
        """Name of the layer (or input) producing each output."""
        return [h.name if h.producer is None else h.producer.layer.name for h in self._outputs]

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self):
        return f"Model(name='{self.name}', layers={len(self._nodes)})"

    def get_layer(self, name: Optional[str] = None, index: Optional[int] = None) -> Layer:
        """
        Look up a layer by exact name or by 0-based index into ``layers``.

        Args:
            name: Layer name
            index: Index into the topologically ordered applications

        Returns:
            The Layer
        """
        if (name is None) == (index is None):
            raise ValueError("Provide exactly one of name or index")
        if index is not None:
            if not -len(self._nodes) <= index < len(self._nodes):
                raise ValueError(
                    f"Layer index {index} is out of range for a model with {len(self._nodes)} layers"
                )
            return self._nodes[index].layer
        for node in self._nodes:
            if node.layer.name == name:
                return node.layer
        raise ValueError(f"No such layer: {name}")

    def pop_layer(self) -> Layer:
        """
        Remove the last layer application.

        Outputs produced by the removed application are replaced by its
        inputs. The model is left unchanged if the pop is rejected.

        Returns:
            The layer of the removed application

        Raises:
            EmptyModelError: If the model has no layers
            AmbiguousPopError: If an input of the removed application is
                also consumed by a surviving application
        """
        if not self._nodes:
            raise EmptyModelError(f"Model '{self.name}' has no layers to pop")

        last = self._nodes[-1]
        surviving = self._nodes[:-1]
        consumed = {h.id for node in surviving for h in node.inputs}
        shared = [h.name for h in last.inputs if h.id in consumed]
        if shared:
            raise AmbiguousPopError(
                f"Cannot pop layer '{last.layer.name}': its input(s) {shared} are also "
                f"consumed by other layers, so the new output is ambiguous"
            )

        outputs: List[TensorHandle] = []
        for handle in self._outputs:
            replacement = last.inputs if handle.producer is last else (handle,)
            for h in replacement:
                if all(h is not existing for existing in outputs):
                    outputs.append(h)

        self._nodes = surviving
        self._outputs = tuple(outputs)
        logger.info(f"Popped layer '{last.layer.name}' from model '{self.name}'")
        return last.layer

    # === Compiled state ===

    @property
    def compiled(self) -> bool:
        return self.compiled_state is not None

    def compile(self, optimizer: str, loss: LossSpec,
                metrics: Optional[List[str]] = None,
                loss_weights: Optional[Union[List[float], Dict[str, float]]] = None) -> CompiledState:
        """
        Bind optimizer, loss and metric identifiers to the model.

        A list of losses (or loss weights) must have one entry per output;
        a mapping must be keyed by output names. Topology is not touched.

        Returns:
            The new compiled state
        """
        state = CompiledState(optimizer=optimizer, loss=loss, metrics=metrics or [],
                              loss_weights=loss_weights)
        self._check_per_output(state.loss, "loss")
        if state.loss_weights is not None:
            self._check_per_output(state.loss_weights, "loss_weights")
        self.compiled_state = state
        return state

    def clear_compiled(self) -> None:
        """Drop the compiled state."""
        self.compiled_state = None

    def _check_per_output(self, value, what: str) -> None:
        if isinstance(value, dict):
            unknown = sorted(set(value) - set(self.output_names))
            if unknown:
                raise ConfigurationError(
                    f"{what} keys {unknown} do not match output names {self.output_names}"
                )
        elif isinstance(value, (list, tuple)):
            if len(value) != len(self._outputs):
                raise ConfigurationError(
                    f"{what} has {len(value)} entries but the model has {len(self._outputs)} outputs"
                )
        elif what == "loss_weights":
            raise ConfigurationError("loss_weights must be a list or a mapping")

    # === Description ===

    def to_spec(self):
        """Build the stable description of this model."""
        # Import here to avoid circular imports
        from ..framework.specs import InputSpec, LayerSpec, ModelSpec, NodeSpec

        app_index = {}
        counts = defaultdict(int)
        for node in self._nodes:
            app_index[node.uid] = counts[node.layer.name]
            counts[node.layer.name] += 1

        def ref(handle: TensorHandle) -> list:
            if handle.producer is None:
                return [handle.name, 0, 0]
            node = handle.producer
            return [node.layer.name, app_index[node.uid], handle.tensor_index]

        return ModelSpec(
            name=self.name,
            inputs=[
                InputSpec(name=h.name, shape=list(h.shape), batch_size=h.batch_size)
                for h in self._inputs
            ],
            layers=[
                LayerSpec(name=layer.name, kind=layer.kind, config=layer.get_config())
                for layer in self.unique_layers
            ],
            nodes=[
                NodeSpec(
                    layer=node.layer.name,
                    inputs=[ref(h) for h in node.inputs],
                    input_shapes=[list(s) for s in node.input_shapes],
                    output_shapes=[list(s) for s in node.output_shapes],
                )
                for node in self._nodes
            ],
            outputs=[ref(h) for h in self._outputs],
        )

    def get_config(self) -> Dict[str, Any]:
        """Stable, serializable description of the topology and layer configs."""
        return self.to_spec().to_dict()

    @classmethod
    def from_config(cls, config, resolver_config=None) -> "Model":
        """
        Rebuild a model from get_config() output (or a ModelSpec).

        Layers are recreated from their configs; weights are not part of
        the description.
        """
        # Import here to avoid circular imports
        from ..framework.specs import ModelSpec
        from .builder import GraphBuilder
        from .layers import deserialize_layer

        spec = config if isinstance(config, ModelSpec) else ModelSpec.from_dict(config)

        builder = GraphBuilder(spec.name)
        handles = {}
        inputs = []
        for input_spec in spec.inputs:
            handle = builder.declare_input(input_spec.shape, batch_size=input_spec.batch_size,
                                           name=input_spec.name)
            handles[(input_spec.name, 0, 0)] = handle
            inputs.append(handle)

        layers = {ls.name: deserialize_layer(ls.kind, ls.config) for ls in spec.layers}
        counts = defaultdict(int)
        for node_spec in spec.nodes:
            layer = layers[node_spec.layer]
            node_inputs = [handles[tuple(r)] for r in node_spec.inputs]
            node_outputs = builder.record_application(layer, node_inputs)
            index = counts[node_spec.layer]
            counts[node_spec.layer] += 1
            for i, handle in enumerate(node_outputs):
                handles[(node_spec.layer, index, i)] = handle

        outputs = [handles[tuple(r)] for r in spec.outputs]
        return builder.build(inputs, outputs, name=spec.name, config=resolver_config)

    def summary(self, print_fn: Optional[Callable[[str], Any]] = None) -> str:
        """
        Text summary of the layer applications.

        Args:
            print_fn: Optional callable receiving each line

        Returns:
            The summary as a single string
        """
        rows = [("Layer (kind)", "Output Shape", "Connected to")]
        for handle in self._inputs:
            rows.append((f"{handle.name} (input)", format_shape(handle.shape, handle.batch_size), ""))
        for node in self._nodes:
            shapes = ", ".join(format_shape(h.shape, h.batch_size) for h in node.outputs)
            sources = ", ".join(h.name for h in node.inputs)
            rows.append((f"{node.layer.name} ({node.layer.kind})", shapes, sources))

        widths = [max(len(row[i]) for row in rows) + 2 for i in range(3)]
        rule = "-" * sum(widths)
        lines = [f'Model: "{self.name}"', rule]
        for i, row in enumerate(rows):
            lines.append("".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip())
            if i == 0:
                lines.append("=" * sum(widths))
        lines.append(rule)
        lines.append(f"Layer applications: {len(self._nodes)}")
        lines.append(f"Distinct layers: {len(self.unique_layers)}")

        if print_fn is not None:
            for line in lines:
                print_fn(line)
        text = "\n".join(lines)
        logger.info(f"Summary of model '{self.name}':\n{text}")
        return text
