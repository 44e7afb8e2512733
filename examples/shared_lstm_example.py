#!/usr/bin/env python3
"""
Shared LSTM Example

This example demonstrates the functional authoring style:
- Declare two inputs in one GraphBuilder session
- Apply one LSTM instance to both (shared weights)
- Merge the encodings and save the model description as YAML

Usage:
    python examples/shared_lstm_example.py
"""

import sys
import logging
from pathlib import Path

import torch
import yaml

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from graphwise.framework import ModelAdapter, build_model
from graphwise.model import Concatenate, Dense, GraphBuilder, LSTM

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_tweet_model():
    """Score whether two tweets (140 steps of 256-dim characters) share an author."""
    builder = GraphBuilder("tweet_similarity")
    tweet_a = builder.declare_input((140, 256), name="tweet_a")
    tweet_b = builder.declare_input((140, 256), name="tweet_b")

    shared_lstm = LSTM(64, name="shared_lstm")
    encoded_a = builder.apply(shared_lstm, tweet_a)
    encoded_b = builder.apply(shared_lstm, tweet_b)

    merged = builder.apply(Concatenate(name="merge"), [encoded_a, encoded_b])
    prediction = builder.apply(Dense(1, activation="sigmoid", name="prediction"), merged)
    return builder.build([tweet_a, tweet_b], prediction)


def main():
    model = build_tweet_model()
    model.summary()

    adapter = ModelAdapter(model).eval()
    with torch.no_grad():
        scores = adapter(torch.randn(4, 140, 256), torch.randn(4, 140, 256))
    logger.info(f"Scores: {scores.squeeze(-1).tolist()}")

    path = Path("tweet_similarity.yaml")
    with open(path, 'w') as f:
        yaml.safe_dump(model.get_config(), f, sort_keys=False)
    logger.info(f"Saved model description to {path}")

    rebuilt = build_model(path)
    logger.info(f"Rebuilt '{rebuilt.name}' with {len(rebuilt.layers)} layer applications")


if __name__ == "__main__":
    main()
