"""
Example sources for training and evaluation: a copy task (target = input)
and an arithmetic next-term task.
"""
from abc import ABC, abstractmethod
from typing import List, NamedTuple, Tuple

import numpy as np
from sklearn.model_selection import train_test_split

from .errors import ConfigError


class Example(NamedTuple):
    input: np.ndarray
    target: np.ndarray


class Task(ABC):
    """Fixed list of generated examples."""

    def __init__(self, examples: List[Example], input_dim: int, output_dim: int):
        self._examples = examples
        self.input_dim = input_dim
        self.output_dim = output_dim

    def __len__(self) -> int:
        return len(self._examples)

    def __iter__(self):
        return iter(self._examples)

    def examples(self) -> List[Example]:
        return list(self._examples)

    def split(self, train_ratio: float) -> Tuple[List[Example], List[Example]]:
        """Ordered split: the first floor(n * train_ratio) examples train, the rest validate."""
        if not 0.0 < train_ratio < 1.0:
            raise ConfigError(f"train_ratio must be in (0, 1), got {train_ratio}")
        train_size = int(len(self._examples) * train_ratio)
        if train_size == 0 or train_size == len(self._examples):
            raise ConfigError(
                f"Split of {len(self._examples)} examples at {train_ratio} leaves an empty side"
            )
        train, val = train_test_split(self._examples, train_size=train_size, shuffle=False)
        return list(train), list(val)

    @abstractmethod
    def validate_solution(self, output: np.ndarray, target: np.ndarray) -> bool:
        """True when output solves the example with this target."""
        pass


class CopyTask(Task):
    """Copy the input vector to the output."""

    def __init__(self, num_examples: int, dim: int, low: float = 0.0, high: float = 1.0, seed=None):
        rng = np.random.default_rng(seed)
        examples = []
        for _ in range(num_examples):
            values = rng.uniform(low, high, size=dim)
            examples.append(Example(values, values.copy()))
        super().__init__(examples, dim, dim)

    def validate_solution(self, output, target) -> bool:
        output = np.asarray(output, dtype=float)
        return float(np.mean((output - target) ** 2)) < 0.01


class SequenceTask(Task):
    """Predict the next term of an arithmetic sequence a, a+d, ..., a+(n-1)d."""

    def __init__(self, num_examples: int, sequence_length: int, seed=None):
        rng = np.random.default_rng(seed)
        examples = []
        for _ in range(num_examples):
            start = rng.uniform(-10.0, 10.0)
            step = rng.uniform(-2.0, 2.0)
            sequence = start + step * np.arange(sequence_length + 1)
            examples.append(Example(sequence[:sequence_length], sequence[sequence_length:]))
        super().__init__(examples, sequence_length, 1)

    def validate_solution(self, output, target) -> bool:
        # within 10% relative error
        error = abs(float(np.ravel(output)[0]) - float(target[0]))
        return error / max(abs(float(target[0])), 1.0) < 0.1


def make_task(name: str, num_examples: int, dim: int, seed=None) -> Task:
    if name == "copy":
        return CopyTask(num_examples, dim, seed=seed)
    if name == "sequence":
        return SequenceTask(num_examples, dim, seed=seed)
    raise ConfigError(f"Unknown task {name!r}, expected 'copy' or 'sequence'")
