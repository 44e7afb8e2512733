"""
Spec dataclasses describing a resolved model.

These specs are the contract between the graph core and its
collaborators (serialization, execution). They carry topology and layer
configuration, never weights.

Tensor references are ``[source, index, tensor_index]`` lists: an input
is ``[input_name, 0, 0]``; the i-th output of the k-th application of a
layer within the model is ``[layer_name, k, i]``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


TensorRef = List[Any]


def _check_ref(ref, what: str) -> tuple:
    if not isinstance(ref, (list, tuple)) or len(ref) != 3:
        raise ValueError(f"{what} must be a [source, index, tensor_index] reference, got {ref!r}")
    return tuple(ref)


@dataclass
class InputSpec:
    """Description of a declared model input."""

    name: str
    shape: List[Optional[int]]
    batch_size: Optional[int] = None

    def __post_init__(self):
        """Validate input spec."""
        if not self.name:
            raise ValueError("input name must be set")
        self.shape = list(self.shape)

    def to_dict(self) -> Dict[str, Any]:
        """Convert spec to dictionary."""
        return {
            'name': self.name,
            'shape': list(self.shape),
            'batch_size': self.batch_size
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'InputSpec':
        """Create spec from dictionary."""
        return cls(**d)


@dataclass
class LayerSpec:
    """Description of one distinct layer."""

    name: str
    kind: str
    config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Validate layer spec."""
        if not self.name:
            raise ValueError("layer name must be set")
        if not self.kind:
            raise ValueError("layer kind must be set")
        if self.config.get('name', self.name) != self.name:
            raise ValueError(f"layer config name does not match layer name '{self.name}'")

    def to_dict(self) -> Dict[str, Any]:
        """Convert spec to dictionary."""
        return {
            'name': self.name,
            'kind': self.kind,
            'config': dict(self.config)
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'LayerSpec':
        """Create spec from dictionary."""
        return cls(**d)


@dataclass
class NodeSpec:
    """Description of one layer application."""

    layer: str
    inputs: List[TensorRef]
    input_shapes: List[List[Optional[int]]] = field(default_factory=list)
    output_shapes: List[List[Optional[int]]] = field(default_factory=list)

    def __post_init__(self):
        """Validate node spec."""
        if not self.inputs:
            raise ValueError(f"application of layer '{self.layer}' has no inputs")
        self.inputs = [list(_check_ref(r, "node input")) for r in self.inputs]

    def to_dict(self) -> Dict[str, Any]:
        """Convert spec to dictionary."""
        return {
            'layer': self.layer,
            'inputs': [list(r) for r in self.inputs],
            'input_shapes': [list(s) for s in self.input_shapes],
            'output_shapes': [list(s) for s in self.output_shapes]
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'NodeSpec':
        """Create spec from dictionary."""
        return cls(**d)


@dataclass
class ModelSpec:
    """Description of a complete model: inputs, layers, applications, outputs."""

    name: str
    inputs: List[InputSpec]
    layers: List[LayerSpec]
    nodes: List[NodeSpec]
    outputs: List[TensorRef]

    def __post_init__(self):
        """Validate that every reference points at something defined earlier."""
        if not self.inputs:
            raise ValueError("model spec needs at least one input")
        if not self.outputs:
            raise ValueError("model spec needs at least one output")

        names = [i.name for i in self.inputs] + [l.name for l in self.layers]
        if len(names) != len(set(names)):
            raise ValueError("input and layer names must be unique within a model spec")
        layer_names = {l.name for l in self.layers}

        defined = {(i.name, 0, 0) for i in self.inputs}
        counts: Dict[str, int] = {}
        for node in self.nodes:
            if node.layer not in layer_names:
                raise ValueError(f"application refers to unknown layer '{node.layer}'")
            for r in node.inputs:
                if tuple(r) not in defined:
                    raise ValueError(f"application of '{node.layer}' refers to undefined tensor {r}")
            index = counts.get(node.layer, 0)
            counts[node.layer] = index + 1
            n_outputs = max(1, len(node.output_shapes))
            defined.update((node.layer, index, i) for i in range(n_outputs))

        self.outputs = [list(_check_ref(r, "model output")) for r in self.outputs]
        for r in self.outputs:
            if tuple(r) not in defined:
                raise ValueError(f"model output refers to undefined tensor {r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert spec to dictionary."""
        return {
            'name': self.name,
            'inputs': [i.to_dict() for i in self.inputs],
            'layers': [l.to_dict() for l in self.layers],
            'nodes': [n.to_dict() for n in self.nodes],
            'outputs': [list(r) for r in self.outputs]
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'ModelSpec':
        """Create spec from dictionary."""
        return cls(
            name=d['name'],
            inputs=[InputSpec.from_dict(i) for i in d['inputs']],
            layers=[LayerSpec.from_dict(l) for l in d.get('layers', [])],
            nodes=[NodeSpec.from_dict(n) for n in d.get('nodes', [])],
            outputs=d['outputs']
        )


def validate_spec_shapes(spec: ModelSpec) -> bool:
    """
    Check that recorded shapes are consistent along every edge.

    Args:
        spec: Model description

    Returns:
        True if each application's recorded input shapes equal the
        recorded shapes of the tensors it consumes
    """
    shapes = {(i.name, 0, 0): list(i.shape) for i in spec.inputs}
    counts: Dict[str, int] = {}
    for node in spec.nodes:
        recorded = [shapes.get(tuple(r)) for r in node.inputs]
        if node.input_shapes and recorded != [list(s) for s in node.input_shapes]:
            return False
        index = counts.get(node.layer, 0)
        counts[node.layer] = index + 1
        for i, shape in enumerate(node.output_shapes):
            shapes[(node.layer, index, i)] = list(shape)
    return True
