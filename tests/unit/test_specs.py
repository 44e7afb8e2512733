"""Unit tests for the ModelSpec dataclasses describing a resolved model."""

from __future__ import annotations

import pytest

from graphwise.framework.specs import (
    InputSpec, LayerSpec, ModelSpec, NodeSpec, validate_spec_shapes
)


def _spec_dict() -> dict:
    return {
        "name": "tiny",
        "inputs": [{"name": "x", "shape": [3], "batch_size": None}],
        "layers": [
            {"name": "hidden", "kind": "dense", "config": {"name": "hidden", "units": 4}},
            {"name": "out", "kind": "dense", "config": {"name": "out", "units": 1}},
        ],
        "nodes": [
            {"layer": "hidden", "inputs": [["x", 0, 0]], "input_shapes": [[3]], "output_shapes": [[4]]},
            {"layer": "out", "inputs": [["hidden", 0, 0]], "input_shapes": [[4]], "output_shapes": [[1]]},
        ],
        "outputs": [["out", 0, 0]],
    }


class TestModelSpec:
    """Validation and serialization of ModelSpec."""

    def test_from_dict_to_dict(self) -> None:
        """from_dict and to_dict are inverses."""
        spec = ModelSpec.from_dict(_spec_dict())

        assert isinstance(spec.inputs[0], InputSpec)
        assert isinstance(spec.layers[0], LayerSpec)
        assert isinstance(spec.nodes[0], NodeSpec)
        assert spec.to_dict() == _spec_dict()

    def test_undefined_reference(self) -> None:
        """References to missing applications are rejected."""
        d = _spec_dict()
        d["nodes"][1]["inputs"] = [["hidden", 1, 0]]
        with pytest.raises(ValueError, match="undefined tensor"):
            ModelSpec.from_dict(d)

    def test_reference_before_definition(self) -> None:
        """Nodes may only use tensors defined earlier."""
        d = _spec_dict()
        d["nodes"].reverse()
        with pytest.raises(ValueError, match="undefined tensor"):
            ModelSpec.from_dict(d)

    def test_unknown_layer(self) -> None:
        """Nodes must name a declared layer."""
        d = _spec_dict()
        d["nodes"][0]["layer"] = "missing"
        with pytest.raises(ValueError, match="unknown layer 'missing'"):
            ModelSpec.from_dict(d)

    def test_duplicate_names(self) -> None:
        """Input and layer names must be unique."""
        d = _spec_dict()
        d["inputs"][0]["name"] = "hidden"
        d["nodes"][0]["inputs"] = [["hidden", 0, 0]]
        with pytest.raises(ValueError, match="must be unique"):
            ModelSpec.from_dict(d)

    def test_bad_output_reference(self) -> None:
        """Output references need three entries."""
        d = _spec_dict()
        d["outputs"] = [["out", 0]]
        with pytest.raises(ValueError, match="reference"):
            ModelSpec.from_dict(d)

    def test_layer_config_name_must_match(self) -> None:
        """The layer config name must match the spec name."""
        with pytest.raises(ValueError, match="does not match"):
            LayerSpec(name="a", kind="dense", config={"name": "b", "units": 1})


class TestSpecShapes:
    """Recorded shapes along edges."""

    def test_consistent_shapes(self) -> None:
        """Recorded shapes agree along every edge."""
        assert validate_spec_shapes(ModelSpec.from_dict(_spec_dict()))

    def test_inconsistent_shapes(self) -> None:
        """A mismatched recorded shape is detected."""
        d = _spec_dict()
        d["nodes"][1]["input_shapes"] = [[5]]
        assert not validate_spec_shapes(ModelSpec.from_dict(d))

    def test_resolved_models_have_consistent_shapes(self, shared_lstm_model) -> None:
        """Specs of resolved models have consistent shapes."""
        assert validate_spec_shapes(shared_lstm_model.to_spec())
