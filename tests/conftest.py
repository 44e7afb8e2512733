"""Shared pytest fixtures for the GraphWise test suite."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from graphwise.model import (
    Activation, Concatenate, Dense, GraphBuilder, LSTM, Sequential, reset_name_counters
)


@pytest.fixture(autouse=True)
def fresh_layer_names():
    """Restart default layer names (dense_1, ...) for every test."""
    reset_name_counters()
    yield
    reset_name_counters()


@pytest.fixture
def mnist_mlp():
    """Dense(32) -> relu -> Dense(10) -> softmax over 784 features."""
    return (Sequential("mnist_mlp")
            .add(Dense(32, input_shape=(784,)))
            .add(Activation("relu"))
            .add(Dense(10))
            .add(Activation("softmax"))
            .build())


@pytest.fixture
def shared_lstm_model():
    """Two (140, 256) sequences through one shared LSTM(64), concatenated, Dense(1, sigmoid)."""
    builder = GraphBuilder("tweet_similarity")
    tweet_a = builder.declare_input((140, 256), name="tweet_a")
    tweet_b = builder.declare_input((140, 256), name="tweet_b")

    shared_lstm = LSTM(64, name="shared_lstm")
    encoded_a = builder.apply(shared_lstm, tweet_a)
    encoded_b = builder.apply(shared_lstm, tweet_b)

    merged = builder.apply(Concatenate(axis=-1, name="merge"), [encoded_a, encoded_b])
    prediction = builder.apply(Dense(1, activation="sigmoid", name="prediction"), merged)
    return builder.build([tweet_a, tweet_b], prediction)
