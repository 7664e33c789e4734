"""
Shared feed-forward network built from layer nodes. Each node has a forward
equation and a layer-specific backprop. Parameter gradients are summed into
accumulators so one set of weights can be called many times per example and
updated once.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .errors import DimensionMismatchError, NotReadyError

# -----------------------------------------------------------------------------
# Activations: closed set of variants, dispatched through a lookup table
# -----------------------------------------------------------------------------


class Activation(str, Enum):
    IDENTITY = "identity"
    RELU = "relu"
    TANH = "tanh"


def _identity(x: np.ndarray) -> np.ndarray:
    return x.copy()


def _identity_prime(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    return np.ones_like(x)


def _relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(0.0, x)


def _relu_prime(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    # sub-derivative at 0 is 0
    return (x > 0).astype(float)


def _tanh(x: np.ndarray) -> np.ndarray:
    return np.tanh(x)


def _tanh_prime(x: np.ndarray, y: np.ndarray) -> np.ndarray:
    return 1.0 - y * y


ActivationFn = Callable[[np.ndarray], np.ndarray]
DerivativeFn = Callable[[np.ndarray, np.ndarray], np.ndarray]

_ACTIVATIONS = {
    Activation.IDENTITY: (_identity, _identity_prime, "{}"),
    Activation.RELU: (_relu, _relu_prime, "max(0, {})"),
    Activation.TANH: (_tanh, _tanh_prime, "tanh({})"),
}


def activation_fns(kind) -> Tuple[ActivationFn, DerivativeFn]:
    """Return (f, f_prime) for an activation. f_prime takes (pre, post)."""
    f, f_prime, _ = _ACTIVATIONS[Activation(kind)]
    return f, f_prime


# -----------------------------------------------------------------------------
# Abstract base: all nodes define forward + backward
# -----------------------------------------------------------------------------


class Node(ABC):
    """Abstract base for network nodes."""

    @property
    @abstractmethod
    def equation(self) -> str:
        """Human-readable equation for this node, e.g. 'y = W @ x + b'."""
        pass

    @abstractmethod
    def forward(self, x: np.ndarray) -> np.ndarray:
        """Compute output; must cache what backward needs."""
        pass

    @abstractmethod
    def backward(self, upstream: np.ndarray) -> np.ndarray:
        """Given dL/d(output), return dL/d(input). Accumulates parameter gradients."""
        pass

    def zero_grad(self) -> None:
        """Reset gradient accumulators. No-op for nodes without parameters."""
        pass

    def update_weights(self, lr: float) -> None:
        """Gradient descent step. No-op for nodes without parameters."""
        pass


# -----------------------------------------------------------------------------
# Layer: y = f(W @ x + b)
# -----------------------------------------------------------------------------


class LayerCache(NamedTuple):
    """Everything one layer call needs for its backward pass."""

    input: np.ndarray
    pre: np.ndarray
    post: np.ndarray


class Layer(Node):
    """Affine transform followed by an element-wise activation.

    Gradients from backward() are *added* to dLdW / dLdb so repeated calls
    within one example sum into a single buffer. zero_grad() clears them.
    """

    def __init__(
        self,
        in_features: int,
        out_features: int,
        activation=Activation.IDENTITY,
        rng: Optional[np.random.Generator] = None,
    ):
        rng = rng or np.random.default_rng()
        self.activation = Activation(activation)
        self._f, self._f_prime = activation_fns(self.activation)
        # Xavier (Glorot) initialization: scale by sqrt(2 / (fan_in + fan_out))
        scale = np.sqrt(2.0 / (in_features + out_features))
        self.W = rng.standard_normal((out_features, in_features)) * scale
        self.b = np.zeros(out_features)
        self.dLdW = np.zeros_like(self.W)
        self.dLdb = np.zeros_like(self.b)
        self._cache: Optional[LayerCache] = None

    @property
    def in_features(self) -> int:
        return self.W.shape[1]

    @property
    def out_features(self) -> int:
        return self.W.shape[0]

    @property
    def num_parameters(self) -> int:
        return self.W.size + self.b.size

    @property
    def last_cache(self) -> Optional[LayerCache]:
        return self._cache

    @property
    def equation(self) -> str:
        _, _, template = _ACTIVATIONS[self.activation]
        return "y = " + template.format("W @ x + b")

    def forward(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.shape != (self.in_features,):
            raise DimensionMismatchError(self.in_features, x.size, "layer input")
        pre = self.W @ x + self.b
        post = self._f(pre)
        self._cache = LayerCache(x.copy(), pre, post)
        return post

    def backward(self, upstream: np.ndarray, cache: Optional[LayerCache] = None) -> np.ndarray:
        if cache is None:
            cache, self._cache = self._cache, None
        if cache is None:
            raise NotReadyError("Layer.backward called before forward")
        # upstream = dL/d(post)  shape (out_features,)
        upstream = np.asarray(upstream, dtype=float)
        if upstream.shape != (self.out_features,):
            raise DimensionMismatchError(self.out_features, upstream.size, "layer gradient")

        # dL/d(pre) = dL/d(post) * f'(pre)
        grad_pre = upstream * self._f_prime(cache.pre, cache.post)

        # dL/dW_ij = dL/d(pre)_i * x_j, summed over every call since zero_grad
        self.dLdW += np.outer(grad_pre, cache.input)
        self.dLdb += grad_pre

        # dL/dx = W.T @ dL/d(pre)
        return self.W.T @ grad_pre

    def zero_grad(self) -> None:
        self.dLdW.fill(0.0)
        self.dLdb.fill(0.0)

    def update_weights(self, lr: float) -> None:
        """Gradient descent step: W -= lr * dLdW, b -= lr * dLdb. Call after backward."""
        self.W -= lr * self.dLdW
        self.b -= lr * self.dLdb


# -----------------------------------------------------------------------------
# Network: ordered composition of layers
# -----------------------------------------------------------------------------


class Network(Node):
    """Layers applied in order. One instance is shared by every call site."""

    def __init__(self, layers: Sequence[Layer]):
        if not layers:
            raise ValueError("Network needs at least one layer")
        for prev, layer in zip(layers, layers[1:]):
            if layer.in_features != prev.out_features:
                raise DimensionMismatchError(prev.out_features, layer.in_features, "layer chain")
        self.layers: List[Layer] = list(layers)
        self._caches: Optional[Tuple[LayerCache, ...]] = None

    @classmethod
    def build(
        cls,
        in_features: int,
        hidden_features: int,
        out_features: int,
        layer_count: int = 2,
        hidden_activation=Activation.RELU,
        output_activation=Activation.TANH,
        rng: Optional[np.random.Generator] = None,
    ) -> "Network":
        rng = rng or np.random.default_rng()
        if layer_count == 1:
            return cls([Layer(in_features, out_features, output_activation, rng)])
        layers = [Layer(in_features, hidden_features, hidden_activation, rng)]
        for _ in range(layer_count - 2):
            layers.append(Layer(hidden_features, hidden_features, hidden_activation, rng))
        layers.append(Layer(hidden_features, out_features, output_activation, rng))
        return cls(layers)

    @property
    def in_features(self) -> int:
        return self.layers[0].in_features

    @property
    def out_features(self) -> int:
        return self.layers[-1].out_features

    @property
    def num_parameters(self) -> int:
        return sum(layer.num_parameters for layer in self.layers)

    @property
    def last_caches(self) -> Optional[Tuple[LayerCache, ...]]:
        return self._caches

    @property
    def equation(self) -> str:
        return " -> ".join(layer.equation for layer in self.layers)

    def parameters(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        return [(layer.W, layer.b) for layer in self.layers]

    def gradients(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        return [(layer.dLdW, layer.dLdb) for layer in self.layers]

    def forward(self, x: np.ndarray) -> np.ndarray:
        h = x
        for layer in self.layers:
            h = layer.forward(h)
        self._caches = tuple(layer.last_cache for layer in self.layers)
        return h

    def backward(
        self, upstream: np.ndarray, caches: Optional[Sequence[LayerCache]] = None
    ) -> np.ndarray:
        if caches is None:
            caches, self._caches = self._caches, None
        if caches is None:
            raise NotReadyError("Network.backward called before forward")
        if len(caches) != len(self.layers):
            raise NotReadyError(
                f"Expected {len(self.layers)} layer caches, got {len(caches)}"
            )
        for layer, cache in zip(reversed(self.layers), reversed(caches)):
            upstream = layer.backward(upstream, cache)
        return upstream

    def zero_grad(self) -> None:
        for layer in self.layers:
            layer.zero_grad()

    def update_weights(self, lr: float) -> None:
        for layer in self.layers:
            layer.update_weights(lr)
