"""
Shared fixtures and finite-difference helpers for the tiny_trm test suite.
"""
import os

os.environ.setdefault("MPLBACKEND", "Agg")

import numpy as np
import pytest

from tiny_trm.config import TRMConfig
from tiny_trm.loss import MeanSquaredLoss
from tiny_trm.model import TRMModel


# ============================================================================
# Finite differences
# ============================================================================

def model_loss(model, x, target, loss=None):
    loss = loss or MeanSquaredLoss()
    return loss.forward(model.forward(x, record=False), target)


def numerical_param_grads(model, x, target, eps=1e-5, loss=None):
    """Centered finite-difference dL/dW, dL/db for every layer of the shared network."""
    grads = []
    for W, b in model.network.parameters():
        layer_grads = []
        for param in (W, b):
            g = np.zeros_like(param)
            it = np.nditer(param, flags=["multi_index"])
            for _ in it:
                idx = it.multi_index
                orig = param[idx]
                param[idx] = orig + eps
                plus = model_loss(model, x, target, loss)
                param[idx] = orig - eps
                minus = model_loss(model, x, target, loss)
                param[idx] = orig
                g[idx] = (plus - minus) / (2 * eps)
            layer_grads.append(g)
        grads.append(tuple(layer_grads))
    return grads


def analytic_param_grads(model, x, target, loss=None):
    loss = loss or MeanSquaredLoss()
    model.zero_grad()
    pred = model.forward(x)
    loss.forward(pred, target)
    model.backward(loss.backward(1.0))
    return [(dW.copy(), db.copy()) for dW, db in model.network.gradients()]


# ============================================================================
# Configs and models
# ============================================================================

@pytest.fixture
def small_config():
    """The small configuration used for gradient checks."""
    return TRMConfig(
        input_dim=2, output_dim=2, hidden_dim=3, latent_dim=2, layer_count=2, h_cycles=1, l_cycles=1
    )


@pytest.fixture
def recursive_config():
    """H=2, L=2: six shared-network calls per example."""
    return TRMConfig(
        input_dim=3, output_dim=2, hidden_dim=5, latent_dim=4, layer_count=2, h_cycles=2, l_cycles=2
    )


@pytest.fixture
def small_model(small_config):
    return TRMModel(small_config, seed=0)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
