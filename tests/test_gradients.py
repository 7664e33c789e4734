"""
Backward through the unrolled think/act schedule vs. centered finite differences.

The shared network is called H * (L + 1) times per forward pass; its gradient
is only correct if every call's local contribution is summed.
"""
import numpy as np
import pytest

from conftest import analytic_param_grads, model_loss, numerical_param_grads
from tiny_trm.config import TRMConfig
from tiny_trm.loss import MeanAbsoluteLoss, MeanSquaredLoss
from tiny_trm.model import Step, TRMModel

TOL = 1e-3


def _assert_grads_close(analytic, numeric, atol=TOL):
    for (dW, db), (nW, nb) in zip(analytic, numeric):
        np.testing.assert_allclose(dW, nW, atol=atol, rtol=0)
        np.testing.assert_allclose(db, nb, atol=atol, rtol=0)


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_small_config_matches_finite_difference(small_config, seed):
    rng = np.random.default_rng(seed)
    model = TRMModel(small_config, rng=rng)
    x = rng.uniform(0, 1, 2)
    target = rng.uniform(0, 1, 2)

    analytic = analytic_param_grads(model, x, target)
    numeric = numerical_param_grads(model, x, target)
    _assert_grads_close(analytic, numeric)


@pytest.mark.parametrize("seed", [10, 11, 12])
def test_recursive_config_matches_finite_difference(recursive_config, seed):
    rng = np.random.default_rng(seed)
    model = TRMModel(recursive_config, rng=rng)
    x = rng.uniform(0, 1, 3)
    target = rng.uniform(-0.5, 0.5, 2)

    analytic = analytic_param_grads(model, x, target)
    numeric = numerical_param_grads(model, x, target)
    _assert_grads_close(analytic, numeric)


@pytest.mark.parametrize(
    "overrides",
    [
        dict(layer_count=3),
        dict(layer_count=1),
        dict(hidden_activation="tanh", output_activation="identity"),
        dict(output_dim=4, latent_dim=2),
        dict(h_cycles=3, l_cycles=1),
    ],
)
def test_variants_match_finite_difference(overrides):
    base = dict(input_dim=2, output_dim=2, hidden_dim=4, latent_dim=3, h_cycles=2, l_cycles=2)
    base.update(overrides)
    config = TRMConfig(**base)
    rng = np.random.default_rng(99)
    model = TRMModel(config, rng=rng)
    x = rng.uniform(0, 1, config.input_dim)
    target = rng.uniform(-0.5, 0.5, config.output_dim)

    _assert_grads_close(
        analytic_param_grads(model, x, target), numerical_param_grads(model, x, target)
    )


def test_mae_gradient_matches_finite_difference(small_config):
    rng = np.random.default_rng(21)
    model = TRMModel(small_config, rng=rng)
    x = rng.uniform(0, 1, 2)
    target = np.array([0.9, -0.9])  # far from any reachable output, so |p - t| stays smooth
    loss = MeanAbsoluteLoss()
    _assert_grads_close(
        analytic_param_grads(model, x, target, loss),
        numerical_param_grads(model, x, target, loss=loss),
    )


def test_input_gradient_matches_finite_difference(recursive_config):
    rng = np.random.default_rng(5)
    model = TRMModel(recursive_config, rng=rng)
    x = rng.uniform(0, 1, 3)
    target = rng.uniform(-0.5, 0.5, 2)
    loss = MeanSquaredLoss()

    pred = model.forward(x)
    grads = model.backward(loss.gradient(pred, target))

    eps = 1e-5
    numeric = np.array(
        [
            (model_loss(model, x + eps * e, target) - model_loss(model, x - eps * e, target)) / (2 * eps)
            for e in np.eye(3)
        ]
    )
    np.testing.assert_allclose(grads.x, numeric, atol=TOL, rtol=0)


class TestAccumulation:
    """H=2, L=2: the gradient is the sum over all six network calls."""

    def test_trace_has_every_call(self, recursive_config):
        model = TRMModel(recursive_config, seed=0)
        model.forward(np.full(3, 0.5))
        steps = [inv.step for inv in model.trace]
        assert steps.count(Step.THINK) == 4
        assert steps.count(Step.ACT) == 2

    def test_sum_of_calls_matches_unrolled_finite_difference(self, recursive_config):
        rng = np.random.default_rng(42)
        model = TRMModel(recursive_config, rng=rng)
        x = rng.uniform(0, 1, 3)
        target = rng.uniform(-0.5, 0.5, 2)

        analytic = analytic_param_grads(model, x, target)
        numeric = numerical_param_grads(model, x, target)
        _assert_grads_close(analytic, numeric)

    def test_last_call_alone_is_not_the_gradient(self, recursive_config):
        rng = np.random.default_rng(42)
        model = TRMModel(recursive_config, rng=rng)
        x = rng.uniform(0, 1, 3)
        target = rng.uniform(-0.5, 0.5, 2)
        numeric = numerical_param_grads(model, x, target)

        # Only the final act call's local gradient, i.e. the "keep last" bug.
        loss = MeanSquaredLoss()
        pred = model.forward(x)
        upstream = np.zeros(model.network.out_features)
        upstream[:2] = loss.gradient(pred, target)
        model.zero_grad()
        model.network.backward(upstream, model.trace[-1].caches)
        last_only = model.network.gradients()[0][0]

        assert not np.allclose(last_only, numeric[0][0], atol=TOL)

    def test_accumulators_are_reset_between_examples(self, recursive_config):
        model = TRMModel(recursive_config, seed=7)
        x = np.array([0.2, 0.4, 0.6])
        target = np.array([0.1, -0.1])
        first = analytic_param_grads(model, x, target)
        second = analytic_param_grads(model, x, target)
        _assert_grads_close(first, second, atol=1e-12)

    def test_two_backwards_without_reset_add_up(self, recursive_config):
        model = TRMModel(recursive_config, seed=7)
        x = np.array([0.2, 0.4, 0.6])
        loss = MeanSquaredLoss()
        target = np.array([0.1, -0.1])
        single = analytic_param_grads(model, x, target)

        model.zero_grad()
        for _ in range(2):
            model.backward(loss.gradient(model.forward(x), target))
        for (dW, db), (sW, sb) in zip(model.network.gradients(), single):
            np.testing.assert_allclose(dW, 2 * sW)
            np.testing.assert_allclose(db, 2 * sb)
