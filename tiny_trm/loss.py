"""
Loss nodes: take (prediction, target), return a scalar; gradient gives dL/d(pred).
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import numpy as np

from .errors import DimensionMismatchError, NotReadyError


class LossKind(str, Enum):
    MSE = "mse"
    MAE = "mae"


class LossNode(ABC):
    """Abstract loss. forward returns the scalar loss; gradient returns dL/d(prediction)."""

    def __init__(self):
        self._last_pred: Optional[np.ndarray] = None
        self._last_target: Optional[np.ndarray] = None

    @property
    @abstractmethod
    def equation(self) -> str:
        pass

    @staticmethod
    def _check(prediction, target):
        prediction = np.asarray(prediction, dtype=float).ravel()
        target = np.asarray(target, dtype=float).ravel()
        if prediction.shape != target.shape:
            raise DimensionMismatchError(prediction.size, target.size, "target")
        if prediction.size == 0:
            raise ValueError("Loss of an empty vector is undefined")
        return prediction, target

    def forward(self, prediction: np.ndarray, target: np.ndarray) -> float:
        prediction, target = self._check(prediction, target)
        self._last_pred = prediction
        self._last_target = target
        return self._loss_value(prediction, target)

    def gradient(self, prediction: np.ndarray, target: np.ndarray) -> np.ndarray:
        prediction, target = self._check(prediction, target)
        return self._loss_gradient(prediction, target)

    def backward(self, upstream: float = 1.0) -> np.ndarray:
        """Upstream is dL/d(loss) = 1 when loss is the final scalar. Returns dL/d(prediction)."""
        if self._last_pred is None:
            raise NotReadyError("Loss backward called before forward")
        return self._loss_gradient(self._last_pred, self._last_target) * upstream

    @abstractmethod
    def _loss_value(self, pred: np.ndarray, target: np.ndarray) -> float:
        pass

    @abstractmethod
    def _loss_gradient(self, pred: np.ndarray, target: np.ndarray) -> np.ndarray:
        pass


class MeanSquaredLoss(LossNode):
    """L = mean((pred - target)^2). dL/d(pred) = 2 * (pred - target) / n."""

    @property
    def equation(self) -> str:
        return "L = mean((y - target)^2)"

    def _loss_value(self, pred: np.ndarray, target: np.ndarray) -> float:
        return float(np.mean((pred - target) ** 2))

    def _loss_gradient(self, pred: np.ndarray, target: np.ndarray) -> np.ndarray:
        return 2.0 * (pred - target) / pred.size


class MeanAbsoluteLoss(LossNode):
    """L = mean(|pred - target|). dL/d(pred) = sign(pred - target) / n, 0 where equal."""

    @property
    def equation(self) -> str:
        return "L = mean(|y - target|)"

    def _loss_value(self, pred: np.ndarray, target: np.ndarray) -> float:
        return float(np.mean(np.abs(pred - target)))

    def _loss_gradient(self, pred: np.ndarray, target: np.ndarray) -> np.ndarray:
        return np.sign(pred - target) / pred.size


_LOSSES = {
    LossKind.MSE: MeanSquaredLoss,
    LossKind.MAE: MeanAbsoluteLoss,
}


def make_loss(kind=LossKind.MSE) -> LossNode:
    if isinstance(kind, LossNode):
        return kind
    return _LOSSES[LossKind(kind)]()
