"""Function-style entry points for callers that do not want the classes."""
from typing import Iterable, Optional

import numpy as np

from .config import TRMConfig
from .loss import LossKind
from .model import TRMModel
from . import trainer


def new(config: TRMConfig, seed: Optional[int] = None) -> TRMModel:
    return TRMModel(config, seed=seed)


def forward(model: TRMModel, x) -> np.ndarray:
    return model.forward(x, record=False)


def train_one_example(model: TRMModel, x, target, learning_rate: float, loss=LossKind.MSE) -> float:
    return trainer.train_one_example(model, x, target, learning_rate, loss)


def evaluate(model: TRMModel, examples: Iterable, loss=LossKind.MSE) -> float:
    return trainer.evaluate(model, examples, loss)
