#!/usr/bin/env python3
"""
Sequential MLP Example

This example demonstrates the sequential authoring style:
- Stack layers with the fluent Sequential builder
- Inspect, pop and compile the resolved model
- Run a training step through the PyTorch adapter

Usage:
    python examples/sequential_mlp_example.py
"""

import sys
import logging
from pathlib import Path

import torch

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from graphwise.config import OptimizerConfig
from graphwise.framework import build_executable, build_loss, build_optimizer
from graphwise.model import Activation, Dense, Sequential

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_mnist_mlp():
    """Dense(32) -> relu -> Dense(10) -> softmax over flattened 28x28 digits."""
    return (Sequential("mnist_mlp")
            .add(Dense(32, input_shape=(784,)))
            .add(Activation("relu"))
            .add(Dense(10))
            .add(Activation("softmax"))
            .build())


def main():
    model = build_mnist_mlp()
    model.summary()
    logger.info(f"Input shape: {model.input_shape}, output shape: {model.output_shape}")

    model.compile("sgd", "categorical_crossentropy", metrics=["accuracy"])
    adapter = build_executable(model)
    optimizer = build_optimizer(adapter, config=OptimizerConfig(lr=0.1))
    loss_fn = build_loss(model)

    inputs = torch.randn(64, 784)
    targets = torch.nn.functional.one_hot(torch.randint(0, 10, (64,)), 10).float()
    for step in range(5):
        optimizer.zero_grad()
        loss = loss_fn(adapter(inputs), targets)
        loss.backward()
        optimizer.step()
        logger.info(f"Step {step}: loss={loss.item():.4f}")

    # Drop the softmax to expose logits
    popped = model.pop_layer()
    logger.info(f"Popped '{popped.name}'; model now ends at {model.output_names}")


if __name__ == "__main__":
    main()
