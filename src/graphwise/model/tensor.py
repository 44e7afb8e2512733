"""
Symbolic tensor handles and layer applications.

A TensorHandle carries a per-sample shape (the batch dimension is kept
apart in ``batch_size``) and a back-reference to the Node that produced
it. Nodes record one application of a Layer to specific input handles.
"""

import itertools
from dataclasses import dataclass, field
from typing import Iterable, Optional, Tuple, TYPE_CHECKING

from .errors import ShapeError

if TYPE_CHECKING:
    from .layers import Layer

Shape = Tuple[Optional[int], ...]

_handle_ids = itertools.count()
_node_ids = itertools.count()


def normalize_shape(shape: Iterable[Optional[int]], what: str = "shape") -> Shape:
    """
    Validate a symbolic shape and return it as a tuple.

    Args:
        shape: Sequence of dimensions, each a positive int or None (unknown)
        what: Label used in error messages

    Returns:
        Shape as a tuple

    Raises:
        ShapeError: If the shape is not a sequence or an entry is invalid
    """
    if isinstance(shape, int) and not isinstance(shape, bool):
        shape = (shape,)
    try:
        dims = tuple(shape)
    except TypeError:
        raise ShapeError(f"{what} must be a sequence of dimensions, got {shape!r}")
    for dim in dims:
        if dim is None:
            continue
        if isinstance(dim, bool) or not isinstance(dim, int) or dim <= 0:
            raise ShapeError(
                f"{what} entries must be positive integers or None, got {dims}"
            )
    return dims


def format_shape(shape: Shape, batch_size: Optional[int] = None) -> str:
    """Render a shape with the batch dimension first, Keras style."""
    dims = ("None" if d is None else str(d) for d in (batch_size,) + tuple(shape))
    return "(" + ", ".join(dims) + ")"


@dataclass(eq=False)
class Node:
    """
    One application of a Layer to a tuple of input handles.

    ``ordinal`` counts how many times the layer had been applied before
    this application; ``uid`` is a process-wide creation counter used to
    order applications deterministically.
    """

    layer: "Layer"
    ordinal: int
    inputs: Tuple["TensorHandle", ...]
    outputs: Tuple["TensorHandle", ...] = ()
    uid: int = field(default_factory=lambda: next(_node_ids))

    @property
    def name(self) -> str:
        return self.layer.name

    @property
    def input_shapes(self):
        return [h.shape for h in self.inputs]

    @property
    def output_shapes(self):
        return [h.shape for h in self.outputs]

    def __repr__(self):
        return f"Node(layer='{self.layer.name}', ordinal={self.ordinal})"


@dataclass(frozen=True, eq=False)
class TensorHandle:
    """Immutable symbolic reference to an n-dimensional array."""

    shape: Shape
    batch_size: Optional[int] = None
    producer: Optional[Node] = None
    tensor_index: int = 0
    name: Optional[str] = None
    session: Optional[int] = None
    id: int = field(default_factory=lambda: next(_handle_ids))

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def is_input(self) -> bool:
        return self.producer is None

    @property
    def full_shape(self) -> Shape:
        """Shape including the (possibly unknown) batch dimension."""
        return (self.batch_size,) + tuple(self.shape)

    def __repr__(self):
        return (
            f"TensorHandle(name='{self.name}', "
            f"shape={format_shape(self.shape, self.batch_size)})"
        )
