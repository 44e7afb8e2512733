"""Unit tests for layer kinds: config validation, shape rules and arity."""

from __future__ import annotations

import pytest

from graphwise.model import (
    Activation, Add, ArityError, Concatenate, Conv2D, Dense, Dropout, Embedding,
    Flatten, GraphBuilder, GRU, LSTM, MaxPooling2D, Multiply, Reshape, ShapeError,
    LAYER_REGISTRY, deserialize_layer
)


class TestLayerConfig:
    """Invalid configurations are rejected when the layer is created."""

    def test_dense_units_must_be_positive(self) -> None:
        """Dense needs at least one unit."""
        with pytest.raises(ValueError, match="units must be a positive integer"):
            Dense(0)

    def test_unknown_activation_is_rejected(self) -> None:
        """Activation names are checked on creation."""
        with pytest.raises(ValueError, match="Unsupported activation"):
            Dense(4, activation="bogus")

    def test_dropout_rate_range(self) -> None:
        """Dropout rates must lie in [0, 1)."""
        with pytest.raises(ValueError, match="rate must be in"):
            Dropout(1.0)

    def test_conv_padding_must_be_known(self) -> None:
        """Only valid and same padding are supported."""
        with pytest.raises(ValueError, match="padding must be one of"):
            Conv2D(8, 3, padding="full")

    def test_concatenate_rejects_batch_axis(self) -> None:
        """Concatenation never runs along the batch axis."""
        with pytest.raises(ValueError, match="batch axis"):
            Concatenate(axis=0)

    def test_reshape_allows_single_unknown(self) -> None:
        """A target shape may contain one -1 at most."""
        with pytest.raises(ValueError, match="at most one -1"):
            Reshape((-1, -1))

    def test_config_is_frozen(self) -> None:
        """Layer configs cannot be changed after creation."""
        layer = Dense(4)
        with pytest.raises(AttributeError):
            layer.config.units = 8

    def test_input_shape_and_batch_input_shape_are_exclusive(self) -> None:
        """Only one of the two shape arguments may be given."""
        with pytest.raises(ValueError, match="either input_shape or batch_input_shape"):
            Dense(4, input_shape=(3,), batch_input_shape=(2, 3))

    def test_batch_input_shape_splits_batch_dimension(self) -> None:
        """batch_input_shape sets both the batch size and the input shape."""
        layer = Dense(4, batch_input_shape=(16, 784))
        assert layer.batch_size == 16
        assert layer.input_shape == (784,)
        assert layer.has_declared_shape

    def test_default_names_count_per_kind(self) -> None:
        """Default names are numbered separately for each kind."""
        assert [Dense(1).name, Dense(1).name, LSTM(2).name] == ["dense_1", "dense_2", "lstm_1"]


class TestShapeRules:
    """Output shapes inferred by each layer kind."""

    def test_dense_replaces_last_dimension(self) -> None:
        """Dense maps the last dimension to its units."""
        assert Dense(10).infer_output_shape([(5, 784)]) == [(5, 10)]

    def test_dense_needs_known_last_dimension(self) -> None:
        """Dense cannot build weights for an unknown feature size."""
        with pytest.raises(ShapeError, match="last dimension"):
            Dense(10).infer_output_shape([(None,)])

    def test_identity_layers(self) -> None:
        """Activation and Dropout keep their input shape."""
        assert Activation("relu").infer_output_shape([(3, None)]) == [(3, None)]
        assert Dropout(0.5).infer_output_shape([(7,)]) == [(7,)]

    def test_flatten(self) -> None:
        """Flatten multiplies dims and keeps unknowns unknown."""
        assert Flatten().infer_output_shape([(4, 4, 3)]) == [(48,)]
        assert Flatten().infer_output_shape([(None, 4)]) == [(None,)]

    def test_reshape_infers_unknown_entry(self) -> None:
        """The -1 entry is inferred from the element count."""
        assert Reshape((4, -1)).infer_output_shape([(12,)]) == [(4, 3)]

    def test_reshape_element_count_must_match(self) -> None:
        """Reshape keeps the number of elements."""
        with pytest.raises(ShapeError, match="cannot reshape 12 elements"):
            Reshape((5,)).infer_output_shape([(12,)])

    def test_embedding(self) -> None:
        """Embedding appends the output dimension."""
        assert Embedding(1000, 64).infer_output_shape([(None,)]) == [(None, 64)]
        assert Embedding(1000, 64, input_length=10).infer_output_shape([(None,)]) == [(10, 64)]

    def test_embedding_input_length_conflict(self) -> None:
        """A fixed input_length must agree with the input."""
        with pytest.raises(ShapeError):
            Embedding(1000, 64, input_length=10).infer_output_shape([(12,)])

    def test_conv2d_valid_and_same(self) -> None:
        """Conv2D output size for both padding modes."""
        assert Conv2D(8, 3).infer_output_shape([(28, 28, 1)]) == [(26, 26, 8)]
        assert Conv2D(8, 3, strides=2, padding="same").infer_output_shape([(28, 28, 1)]) == [(14, 14, 8)]

    def test_conv2d_requires_rank_three(self) -> None:
        """Conv2D expects rows, columns and channels."""
        with pytest.raises(ShapeError, match="rank 3"):
            Conv2D(8, 3).infer_output_shape([(28, 28)])

    def test_conv2d_kernel_larger_than_input(self) -> None:
        """A kernel larger than a valid-padded input is rejected."""
        with pytest.raises(ShapeError, match="does not fit"):
            Conv2D(8, 5).infer_output_shape([(3, 3, 1)])

    def test_max_pooling_defaults_strides_to_pool_size(self) -> None:
        """Pooling strides default to the pool size."""
        layer = MaxPooling2D()
        assert layer.config.strides == (2, 2)
        assert layer.infer_output_shape([(26, 26, 8)]) == [(13, 13, 8)]

    def test_recurrent_layers(self) -> None:
        """Recurrent layers return the last state or the full sequence."""
        assert LSTM(64).infer_output_shape([(140, 256)]) == [(64,)]
        assert GRU(32, return_sequences=True).infer_output_shape([(None, 16)]) == [(None, 32)]

    def test_recurrent_requires_rank_two(self) -> None:
        """Recurrent layers expect timesteps and features."""
        with pytest.raises(ShapeError, match="timesteps, features"):
            LSTM(64).infer_output_shape([(256,)])

    def test_concatenate_sums_axis(self) -> None:
        """Concatenate adds sizes along its axis."""
        assert Concatenate().infer_output_shape([(3, 4), (3, 5)]) == [(3, 9)]
        assert Concatenate(axis=1).infer_output_shape([(3, 4), (2, 4)]) == [(5, 4)]
        assert Concatenate().infer_output_shape([(None, 4), (3, None)]) == [(3, None)]

    def test_concatenate_rejects_mismatched_dimensions(self) -> None:
        """Off-axis dimensions must agree."""
        with pytest.raises(ShapeError, match="incompatible dimensions"):
            Concatenate().infer_output_shape([(3, 4), (2, 5)])

    def test_concatenate_rejects_mixed_ranks(self) -> None:
        """All concatenated inputs need the same rank."""
        with pytest.raises(ShapeError, match="same rank"):
            Concatenate().infer_output_shape([(3, 4), (4,)])

    def test_elementwise_merge_keeps_known_dimensions(self) -> None:
        """Add and Multiply merge unknown dims with known ones."""
        assert Add().infer_output_shape([(4,), (None,)]) == [(4,)]
        assert Multiply().infer_output_shape([(2, 3)]) == [(2, 3)]

    def test_elementwise_merge_rejects_mismatch(self) -> None:
        """Elementwise merges need equal shapes."""
        with pytest.raises(ShapeError):
            Add().infer_output_shape([(4,), (5,)])

    def test_shape_errors_name_the_layer(self) -> None:
        """Shape errors carry the layer name and kind."""
        with pytest.raises(ShapeError, match="Layer 'head' \\(dense\\)"):
            Dense(2, name="head").infer_output_shape([(None,)])


class TestArity:
    """Accepted number of inputs per kind."""

    def test_single_input_kinds_reject_two(self) -> None:
        """Single-input layers reject extra inputs."""
        with pytest.raises(ArityError, match="exactly 1"):
            Dense(4).infer_output_shape([(3,), (3,)])

    def test_concatenate_needs_two(self) -> None:
        """Concatenate needs two or more inputs."""
        with pytest.raises(ArityError, match="at least 2"):
            Concatenate().infer_output_shape([(3,)])

    def test_add_accepts_one(self) -> None:
        """Add accepts a single input."""
        assert Add().infer_output_shape([(3,)]) == [(3,)]


class TestApply:
    """Layer.apply creates applications and output handles."""

    def test_apply_names_outputs_by_application(self) -> None:
        """Output names carry the layer name and application ordinal."""
        builder = GraphBuilder()
        x = builder.declare_input((3,))
        dense = Dense(4)

        first = builder.apply(dense, x)
        second = builder.apply(dense, x)

        assert first.name == "dense_1/0:0"
        assert second.name == "dense_1/1:0"
        assert dense.call_count == 2
        assert [node.ordinal for node in dense.inbound_nodes] == [0, 1]
        assert first.producer.layer is dense

    def test_failed_apply_leaves_layer_untouched(self) -> None:
        """A rejected application does not change the layer."""
        builder = GraphBuilder()
        x = builder.declare_input((3, 4))
        layer = Conv2D(8, 3)

        with pytest.raises(ShapeError):
            builder.apply(layer, x)

        assert layer.call_count == 0
        assert layer.inbound_nodes == []

    def test_batch_size_is_propagated(self) -> None:
        """A fixed batch size flows to the outputs."""
        builder = GraphBuilder()
        x = builder.declare_input((3,), batch_size=8)
        y = builder.apply(Dense(4), x)
        assert y.batch_size == 8
        assert y.full_shape == (8, 4)

    def test_conflicting_batch_sizes(self) -> None:
        """Inputs with different fixed batch sizes cannot be merged."""
        builder = GraphBuilder()
        a = builder.declare_input((3,), batch_size=8)
        b = builder.declare_input((3,), batch_size=4)
        with pytest.raises(ShapeError, match="conflicting batch sizes"):
            builder.apply(Add(), [a, b])

    def test_shared_layer_rejects_different_feature_size(self) -> None:
        """A shared Dense built for 8 features cannot be reapplied to 5 features."""
        builder = GraphBuilder()
        wide = builder.declare_input((8,))
        narrow = builder.declare_input((5,))
        shared = Dense(4, name="shared")
        builder.apply(shared, wide)

        with pytest.raises(ShapeError, match="shares weights built for input dims \\(8,\\)"):
            builder.apply(shared, narrow)

        assert shared.call_count == 1
        assert shared.built_input_dims == (8,)
        assert len(builder) == 1

    def test_shared_layer_accepts_matching_feature_size(self) -> None:
        """Reapplying with the same weight dims is allowed even if other dims differ."""
        builder = GraphBuilder()
        shared = Dense(4)
        builder.apply(shared, builder.declare_input((3, 8)))
        out = builder.apply(shared, builder.declare_input((7, 8)))

        assert out.shape == (7, 4)

    def test_shared_conv_rejects_different_channels(self) -> None:
        """A shared Conv2D keeps the channel count of its first application."""
        builder = GraphBuilder()
        conv = Conv2D(4, 3)
        builder.apply(conv, builder.declare_input((28, 28, 3)))
        builder.apply(conv, builder.declare_input((14, 14, 3)))

        with pytest.raises(ShapeError, match="shares weights"):
            builder.apply(conv, builder.declare_input((28, 28, 1)))
        assert conv.call_count == 2

    def test_shared_recurrent_rejects_different_features(self) -> None:
        """A shared LSTM keeps the feature size of its first application."""
        builder = GraphBuilder()
        lstm = LSTM(16)
        builder.apply(lstm, builder.declare_input((140, 256)))
        builder.apply(lstm, builder.declare_input((20, 256)))

        with pytest.raises(ShapeError, match="shares weights"):
            builder.apply(lstm, builder.declare_input((140, 128)))

    def test_infer_output_shape_checks_built_dims(self) -> None:
        """Shape inference alone reports a mismatch with the built weight dims."""
        builder = GraphBuilder()
        shared = Dense(4)
        builder.apply(shared, builder.declare_input((8,)))

        with pytest.raises(ShapeError):
            shared.infer_output_shape([(5,)])
        assert shared.call_count == 1

    def test_weightless_layers_can_be_reapplied_to_any_shape(self) -> None:
        """Layers without weights do not fix their input dims."""
        builder = GraphBuilder()
        relu = Activation("relu")
        builder.apply(relu, builder.declare_input((8,)))
        out = builder.apply(relu, builder.declare_input((5, 2)))

        assert relu.built_input_dims is None
        assert out.shape == (5, 2)


class TestLayerSerialization:
    """get_config / from_config through the kind registry."""

    def test_every_kind_is_registered(self) -> None:
        """Every layer kind can be found by name."""
        assert set(LAYER_REGISTRY) == {
            "dense", "activation", "dropout", "flatten", "reshape", "embedding",
            "conv2d", "max_pooling2d", "lstm", "gru", "concatenate", "add", "multiply",
        }

    def test_config_contains_name_values_and_declared_shape(self) -> None:
        """get_config holds the name, config values and declared shape."""
        config = Dense(32, activation="relu", input_shape=(784,)).get_config()
        assert config == {
            "name": "dense_1",
            "units": 32,
            "activation": "relu",
            "use_bias": True,
            "input_shape": [784],
        }

    def test_conv2d_round_trip(self) -> None:
        """Conv2D is rebuilt from its config."""
        layer = Conv2D(8, (3, 5), strides=2, padding="same", name="conv")
        rebuilt = deserialize_layer("conv2d", layer.get_config())

        assert isinstance(rebuilt, Conv2D)
        assert rebuilt.name == "conv"
        assert rebuilt.config == layer.config

    def test_unknown_kind(self) -> None:
        """Unknown kinds cannot be deserialized."""
        with pytest.raises(ValueError, match="Unknown layer kind"):
            deserialize_layer("attention", {})
