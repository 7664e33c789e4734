"""
Model and training configuration.

Both configs are frozen dataclasses validated on construction. They can be
read from a YAML file with ``model:`` and ``training:`` sections:

    model:
      input_dim: 5
      output_dim: 5
      h_cycles: 2
    training:
      learning_rate: 0.01
      epochs: 1000
"""
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional, Tuple

import yaml

from .errors import ConfigError

ACTIVATIONS = ("identity", "relu", "tanh")
LOSSES = ("mse", "mae")


def _check_known_keys(cls, data: dict) -> None:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")


@dataclass(frozen=True)
class TRMConfig:
    """Shape of the recursive model. Immutable once built."""

    input_dim: int = 10
    output_dim: int = 10
    hidden_dim: int = 64
    latent_dim: int = 64
    layer_count: int = 2
    h_cycles: int = 3  # outer cycles (H)
    l_cycles: int = 4  # think steps per outer cycle (L)
    hidden_activation: str = "relu"
    output_activation: str = "tanh"

    def __post_init__(self):
        for name in ("input_dim", "output_dim", "hidden_dim", "latent_dim", "layer_count"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        for name in ("h_cycles", "l_cycles"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigError(f"{name} must be an integer >= 1, got {value!r}")
        for name in ("hidden_activation", "output_activation"):
            if getattr(self, name) not in ACTIVATIONS:
                raise ConfigError(
                    f"{name} must be one of {ACTIVATIONS}, got {getattr(self, name)!r}"
                )

    @property
    def think_input_dim(self) -> int:
        return self.input_dim + self.output_dim + self.latent_dim

    @property
    def act_input_dim(self) -> int:
        return self.output_dim + self.latent_dim

    @property
    def network_input_dim(self) -> int:
        """Width of the shared network input; the shorter act input is zero padded."""
        return max(self.think_input_dim, self.act_input_dim)

    @property
    def network_output_dim(self) -> int:
        return max(self.latent_dim, self.output_dim)

    @property
    def invocations_per_forward(self) -> int:
        return self.h_cycles * (self.l_cycles + 1)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TRMConfig":
        _check_known_keys(cls, data)
        return cls(**data)


@dataclass(frozen=True)
class TrainingConfig:
    learning_rate: float = 0.001
    epochs: int = 100
    loss: str = "mse"
    eval_interval: int = 1
    log_interval: int = 10
    accuracy_tolerance: float = 0.1
    shuffle: bool = False
    seed: Optional[int] = None

    def __post_init__(self):
        if not self.learning_rate > 0:
            raise ConfigError(f"learning_rate must be > 0, got {self.learning_rate!r}")
        if not isinstance(self.epochs, int) or self.epochs < 0:
            raise ConfigError(f"epochs must be a non-negative integer, got {self.epochs!r}")
        if self.loss not in LOSSES:
            raise ConfigError(f"loss must be one of {LOSSES}, got {self.loss!r}")
        if self.eval_interval < 1 or self.log_interval < 1:
            raise ConfigError("eval_interval and log_interval must be >= 1")
        if self.accuracy_tolerance < 0:
            raise ConfigError("accuracy_tolerance must be >= 0")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "TrainingConfig":
        _check_known_keys(cls, data)
        return cls(**data)


def load_config(path) -> Tuple[TRMConfig, TrainingConfig]:
    """Read model and training configs from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing config file: {path}")
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    _check_sections(data, path)
    model = data.get("model") or {}
    training = data.get("training") or {}
    try:
        return TRMConfig.from_dict(model), TrainingConfig.from_dict(training)
    except TypeError as e:
        raise ConfigError(f"Bad config in {path}: {e}") from e


def _check_sections(data: dict, path: Path) -> None:
    unknown = sorted(set(data) - {"model", "training"})
    if unknown:
        raise ConfigError(f"Unknown sections in {path}: {', '.join(unknown)}")
    for section in ("model", "training"):
        if data.get(section) is not None and not isinstance(data[section], dict):
            raise ConfigError(f"Section '{section}' in {path} must be a mapping")
