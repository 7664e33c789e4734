"""
Single-example SGD for the recursive model.

Per example: zero grads -> forward -> loss + dL/dy -> backward through every
think/act call -> one gradient descent step. Gradients are never averaged
across examples.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import TrainingConfig
from .errors import DimensionMismatchError
from .loss import LossNode, make_loss
from .model import TRMModel

logger = logging.getLogger(__name__)


def train_one_example(
    model: TRMModel, x, target, learning_rate: float, loss: Optional[LossNode] = None
) -> float:
    """One SGD step on (x, target). Returns the loss before the update."""
    loss = make_loss() if loss is None else make_loss(loss)
    target = np.asarray(target, dtype=float).ravel()
    if target.size != model.config.output_dim:
        raise DimensionMismatchError(model.config.output_dim, target.size, "target")

    model.zero_grad()
    pred = model.forward(x)
    value = loss.forward(pred, target)
    model.backward(loss.backward(1.0))
    model.update_weights(learning_rate)
    return value


def evaluate(model: TRMModel, examples: Iterable, loss: Optional[LossNode] = None) -> float:
    """Mean loss over examples. Forward only; parameters are untouched."""
    loss = make_loss() if loss is None else make_loss(loss)
    total, count = 0.0, 0
    for x, target in examples:
        total += loss.forward(model.forward(x, record=False), target)
        count += 1
    if count == 0:
        raise ValueError("evaluate needs at least one example")
    return total / count


def accuracy(model: TRMModel, examples: Iterable, tolerance: float = 0.1) -> float:
    """Fraction of output elements within tolerance of the target."""
    hits, count = 0, 0
    for x, target in examples:
        pred = model.forward(x, record=False)
        target = np.asarray(target, dtype=float).ravel()
        if pred.shape != target.shape:
            raise DimensionMismatchError(pred.size, target.size, "target")
        hits += int(np.sum(np.abs(pred - target) <= tolerance))
        count += pred.size
    if count == 0:
        raise ValueError("accuracy needs at least one example")
    return hits / count


@dataclass
class TrainingMetrics:
    losses: List[float] = field(default_factory=list)  # index 0 is the initial loss
    val_losses: List[Tuple[int, float]] = field(default_factory=list)
    val_accuracies: List[Tuple[int, float]] = field(default_factory=list)
    initial_loss: float = math.nan
    final_loss: float = math.nan
    run_name: Optional[str] = None


class Trainer:
    def __init__(self, model: TRMModel, config: Optional[TrainingConfig] = None, run_name=None):
        self.model = model
        self.config = config or TrainingConfig()
        self.loss = make_loss(self.config.loss)
        self.run_name = run_name
        self._rng = np.random.default_rng(self.config.seed)

    def train_step(self, x, target) -> float:
        return train_one_example(self.model, x, target, self.config.learning_rate, self.loss)

    def train_epoch(self, examples: Sequence) -> float:
        order = np.arange(len(examples))
        if self.config.shuffle:
            self._rng.shuffle(order)
        total = 0.0
        for i in order:
            x, target = examples[i]
            total += self.train_step(x, target)
        return total / len(examples)

    def evaluate(self, examples: Iterable) -> float:
        return evaluate(self.model, examples, self.loss)

    def accuracy(self, examples: Iterable, tolerance: Optional[float] = None) -> float:
        if tolerance is None:
            tolerance = self.config.accuracy_tolerance
        return accuracy(self.model, examples, tolerance)

    def train(self, train_examples: Sequence, val_examples: Sequence = ()) -> TrainingMetrics:
        train_examples = list(train_examples)
        val_examples = list(val_examples)
        if not train_examples:
            raise ValueError("train needs at least one training example")

        cfg = self.config
        metrics = TrainingMetrics(run_name=self.run_name)
        metrics.initial_loss = self.evaluate(train_examples)
        metrics.losses.append(metrics.initial_loss)
        logger.info(
            f"Training {self.model.num_parameters} parameters on {len(train_examples)} examples "
            f"for {cfg.epochs} epochs (lr={cfg.learning_rate}, loss={cfg.loss}); "
            f"initial loss = {metrics.initial_loss:.6f}"
        )

        for epoch in range(cfg.epochs):
            epoch_loss = self.train_epoch(train_examples)
            metrics.losses.append(epoch_loss)

            if not math.isfinite(epoch_loss):
                logger.warning(f"Epoch {epoch}: loss is {epoch_loss}, training has diverged")

            if val_examples and (epoch % cfg.eval_interval == 0 or epoch == cfg.epochs - 1):
                metrics.val_losses.append((epoch, self.evaluate(val_examples)))
                metrics.val_accuracies.append((epoch, self.accuracy(val_examples)))

            if epoch % cfg.log_interval == 0:
                msg = f"Epoch {epoch}: loss = {epoch_loss:.6f}"
                if metrics.val_losses and metrics.val_losses[-1][0] == epoch:
                    msg += f", val loss = {metrics.val_losses[-1][1]:.6f}"
                logger.info(msg)

        metrics.final_loss = metrics.losses[-1]
        logger.info(f"Finished: initial loss {metrics.initial_loss:.6f} -> final loss {metrics.final_loss:.6f}")
        return metrics
