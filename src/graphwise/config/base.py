"""
Base configuration classes for GraphWise.
Provides hierarchical configuration with validation and defaults.
"""

from dataclasses import dataclass, field
from typing import Literal, List, Union
import yaml
from pathlib import Path


# Type definitions for better type checking
InputShapePolicy = Literal["error", "ignore"]
UnusedInputPolicy = Literal["warn", "error", "ignore"]
OptimizerType = Literal["sgd", "adam", "adamw", "rmsprop", "adagrad"]


@dataclass
class BaseConfig:
    """Base configuration class with common functionality."""

    def validate(self) -> None:
        """Validate configuration parameters."""
        pass

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {k: v for k, v in self.__dict__.items() if not k.startswith('_')}

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'BaseConfig':
        """Create configuration from dictionary."""
        return cls(**(config_dict or {}))

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> 'BaseConfig':
        """Load configuration from YAML file."""
        with open(yaml_path, 'r') as f:
            config_dict = yaml.safe_load(f)
        return cls.from_dict(config_dict)

    def to_yaml(self, yaml_path: Union[str, Path]) -> None:
        """Save configuration to YAML file."""
        with open(yaml_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2)


@dataclass
class ResolverConfig(BaseConfig):
    """
    Policies applied while resolving a model.

    Attributes:
        input_shape_policy: What to do when a sequential layer other than the
            first declares an input shape:
            - 'error': raise ConfigurationError
            - 'ignore': log a warning and keep the inferred shape
        unused_input_policy: What to do when a functional model declares an
            input that no output depends on:
            - 'warn': emit an UnusedInputError warning
            - 'error': raise UnusedInputError
            - 'ignore': accept silently
            Sequential models never have unused inputs; there it is always an error.
    """

    input_shape_policy: InputShapePolicy = "error"
    unused_input_policy: UnusedInputPolicy = "warn"

    def validate(self) -> None:
        """Validate resolver policies."""
        super().validate()

        if self.input_shape_policy not in ["error", "ignore"]:
            raise ValueError("resolver.input_shape_policy must be one of: error, ignore")
        if self.unused_input_policy not in ["warn", "error", "ignore"]:
            raise ValueError("resolver.unused_input_policy must be one of: warn, error, ignore")


@dataclass
class TorchConfig(BaseConfig):
    """Settings for instantiating executable PyTorch graphs."""

    device: str = "cpu"
    dtype: str = "float32"

    def validate(self) -> None:
        """Validate torch settings."""
        super().validate()

        if self.dtype not in ["float16", "bfloat16", "float32", "float64"]:
            raise ValueError("torch.dtype must be one of: float16, bfloat16, float32, float64")
        if not self.device:
            raise ValueError("torch.device must be set")


@dataclass
class OptimizerConfig(BaseConfig):
    """Hyperparameters used when a compiled optimizer identifier is turned into a torch optimizer."""

    lr: float = 1e-3
    weight_decay: float = 0.0

    # Adam/AdamW specific parameters
    betas: List[float] = field(default_factory=lambda: [0.9, 0.999])
    eps: float = 1e-8

    # SGD/RMSprop specific parameters
    momentum: float = 0.0

    def validate(self) -> None:
        """Validate optimizer configuration."""
        super().validate()

        if self.lr <= 0:
            raise ValueError("lr must be positive")
        if self.weight_decay < 0:
            raise ValueError("weight_decay must be non-negative")
        if len(self.betas) != 2:
            raise ValueError("betas must have exactly 2 elements")
        if not all(0 <= b < 1 for b in self.betas):
            raise ValueError("betas must be in [0, 1)")
        if self.eps <= 0:
            raise ValueError("eps must be positive")
        if not 0 <= self.momentum <= 1:
            raise ValueError("momentum must be between 0 and 1")

    def get_optimizer_kwargs(self, optimizer_type: str) -> dict:
        """Get keyword arguments accepted by the given optimizer type."""
        optimizer_type = optimizer_type.lower()
        if optimizer_type in ["adam", "adamw"]:
            return {
                "lr": self.lr,
                "weight_decay": self.weight_decay,
                "betas": tuple(self.betas),
                "eps": self.eps
            }
        elif optimizer_type in ["sgd", "rmsprop"]:
            return {
                "lr": self.lr,
                "weight_decay": self.weight_decay,
                "momentum": self.momentum
            }
        else:
            return {
                "lr": self.lr,
                "weight_decay": self.weight_decay
            }


@dataclass
class GraphWiseConfig(BaseConfig):
    """Main configuration class combining all sub-configurations."""

    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    torch: TorchConfig = field(default_factory=TorchConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    def validate(self) -> None:
        """Validate entire configuration."""
        super().validate()
        self.resolver.validate()
        self.torch.validate()
        self.optimizer.validate()

    @classmethod
    def from_dict(cls, config_dict: dict) -> 'GraphWiseConfig':
        """Create configuration from dictionary, handling nested sections."""
        cfg = dict(config_dict or {})
        return cls(
            resolver=ResolverConfig.from_dict(cfg.get('resolver', {})),
            torch=TorchConfig.from_dict(cfg.get('torch', {})),
            optimizer=OptimizerConfig.from_dict(cfg.get('optimizer', {}))
        )

    def to_dict(self) -> dict:
        """Convert configuration to a nested dictionary."""
        return {
            'resolver': self.resolver.to_dict(),
            'torch': self.torch.to_dict(),
            'optimizer': self.optimizer.to_dict()
        }
