"""
Error taxonomy for graph construction and model resolution.

Every error raised while composing layers or resolving a model derives
from GraphError, which is itself a ValueError so callers that already
catch configuration errors keep working.
"""


class GraphError(ValueError):
    """Base class for graph construction and resolution errors."""


class ShapeError(GraphError):
    """Incompatible or underspecified tensor shape at a layer application."""


class ArityError(GraphError):
    """Wrong number of input handles for a layer kind."""


class CyclicGraphError(GraphError):
    """The layer graph contains a cycle."""


class DanglingInputError(GraphError):
    """An output depends on a handle that is not one of the declared inputs."""

    def __init__(self, message: str, handle=None):
        super().__init__(message)
        self.handle = handle


class UnusedInputError(GraphError, UserWarning):
    """
    A declared input is not reachable from any output.

    Emitted as a warning on the functional path and raised on the
    sequential path.
    """

    def __init__(self, message: str, handle=None):
        super().__init__(message)
        self.handle = handle


class DuplicateNameError(GraphError):
    """Two distinct layers (or inputs) share a name within one model."""


class AmbiguousPopError(GraphError):
    """pop_layer() cannot choose a new output for a multi-consumer tail."""


class EmptyModelError(GraphError):
    """The model has no layers to operate on."""


class ConfigurationError(GraphError):
    """The model definition is inconsistent (missing input shape, bad inputs)."""


class SessionError(GraphError):
    """Handles from different builder sessions were mixed in one graph."""
