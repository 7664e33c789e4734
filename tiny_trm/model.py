"""
Tiny recursive model: one shared network run through H outer cycles of
L "think" steps plus one "act" step.

    y, z = 0, 0
    for h in range(H):
        for l in range(L):
            z = net([x | y | z])     # think
        y = net([y | z])             # act
    return y

The same Network (same weights) is called H * (L + 1) times per example.
forward() logs every call to an invocation trace; backward() replays the
trace in reverse, threading grad_y / grad_z back through the schedule while
each call adds its local weight gradient into the network's accumulators
(backprop through time over shared weights).
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from .config import TRMConfig
from .errors import DimensionMismatchError, NotReadyError
from .network import LayerCache, Network


class Step(str, Enum):
    THINK = "think"
    ACT = "act"


@dataclass(frozen=True)
class Segment:
    """Slice [start, stop) of the network input holding one state variable."""

    name: str
    start: int
    stop: int

    @property
    def size(self) -> int:
        return self.stop - self.start


Layout = Tuple[Segment, ...]


def make_layout(**sizes: int) -> Layout:
    """Lay out named segments back to back, in keyword order."""
    segments = []
    offset = 0
    for name, size in sizes.items():
        segments.append(Segment(name, offset, offset + size))
        offset += size
    return tuple(segments)


@dataclass
class StateGradient:
    """Gradient w.r.t. each named input of a network call.

    Fields are None when the call did not read that quantity (act never
    reads x).
    """

    x: Optional[np.ndarray] = None
    y: Optional[np.ndarray] = None
    z: Optional[np.ndarray] = None


def split_gradient(grad: np.ndarray, layout: Layout) -> StateGradient:
    """Split a network input gradient into its named parts. Padding is dropped."""
    parts: Dict[str, np.ndarray] = {seg.name: grad[seg.start:seg.stop].copy() for seg in layout}
    return StateGradient(**parts)


@dataclass(frozen=True)
class Invocation:
    """One network call in a forward pass."""

    step: Step
    cycle: int
    inner: Optional[int]  # think index within the cycle; None for act
    layout: Layout
    produces: str  # "z" for think, "y" for act
    width: int  # how many leading network outputs become the new state
    caches: Tuple[LayerCache, ...]

    @property
    def input(self) -> np.ndarray:
        return self.caches[0].input


class TRMModel:
    """Recursive think/act model over a single shared network."""

    def __init__(
        self,
        config: TRMConfig,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
        network: Optional[Network] = None,
    ):
        self.config = config
        if network is None:
            rng = rng if rng is not None else np.random.default_rng(seed)
            network = Network.build(
                config.network_input_dim,
                config.hidden_dim,
                config.network_output_dim,
                layer_count=config.layer_count,
                hidden_activation=config.hidden_activation,
                output_activation=config.output_activation,
                rng=rng,
            )
        if network.in_features != config.network_input_dim:
            raise DimensionMismatchError(
                config.network_input_dim, network.in_features, "network input"
            )
        if network.out_features != config.network_output_dim:
            raise DimensionMismatchError(
                config.network_output_dim, network.out_features, "network output"
            )
        self.network = network
        self.think_layout = make_layout(
            x=config.input_dim, y=config.output_dim, z=config.latent_dim
        )
        self.act_layout = make_layout(y=config.output_dim, z=config.latent_dim)
        self._trace: List[Invocation] = []

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def num_parameters(self) -> int:
        return self.network.num_parameters

    @property
    def trace(self) -> Tuple[Invocation, ...]:
        return tuple(self._trace)

    # -------------------------------------------------------------------------
    # Forward
    # -------------------------------------------------------------------------

    def _assemble(self, layout: Layout, **values: np.ndarray) -> np.ndarray:
        buf = np.zeros(self.network.in_features)
        for seg in layout:
            buf[seg.start:seg.stop] = values[seg.name]
        return buf

    def _invoke(self, step: Step, cycle: int, inner: Optional[int], record: bool, **values):
        if step is Step.THINK:
            layout, produces, width = self.think_layout, "z", self.config.latent_dim
        else:
            layout, produces, width = self.act_layout, "y", self.config.output_dim
        out = self.network.forward(self._assemble(layout, **values))
        if record:
            self._trace.append(
                Invocation(step, cycle, inner, layout, produces, width, self.network.last_caches)
            )
        return out[:width].copy()

    def think(self, x, y, z, cycle: int = 0, inner: int = 0, record: bool = False) -> np.ndarray:
        """Update the latent state z from (x, y, z)."""
        return self._invoke(Step.THINK, cycle, inner, record, x=x, y=y, z=z)

    def act(self, y, z, cycle: int = 0, record: bool = False) -> np.ndarray:
        """Update the answer y from (y, z)."""
        return self._invoke(Step.ACT, cycle, None, record, y=y, z=z)

    def forward(self, x: np.ndarray, record: bool = True) -> np.ndarray:
        x = np.asarray(x, dtype=float).ravel()
        if x.size != self.config.input_dim:
            raise DimensionMismatchError(self.config.input_dim, x.size, "input")

        # A recorded forward starts a fresh trace. record=False leaves any
        # pending trace in place for its backward.
        if record:
            self._trace = []
        y = np.zeros(self.config.output_dim)
        z = np.zeros(self.config.latent_dim)

        for h in range(self.config.h_cycles):
            for l in range(self.config.l_cycles):
                z = self.think(x, y, z, cycle=h, inner=l, record=record)
            y = self.act(y, z, cycle=h, record=record)

        return y

    __call__ = forward

    # -------------------------------------------------------------------------
    # Backward
    # -------------------------------------------------------------------------

    def backward(self, grad_output: np.ndarray) -> StateGradient:
        """Backprop dL/dy through the recorded trace.

        Adds every call's local weight/bias gradient into the network
        accumulators and consumes the trace. Returns the gradient w.r.t. the
        external input x and the initial y / z.
        """
        if not self._trace:
            raise NotReadyError("backward called without a recorded forward pass")
        grad_y = np.asarray(grad_output, dtype=float).ravel()
        if grad_y.size != self.config.output_dim:
            raise DimensionMismatchError(self.config.output_dim, grad_y.size, "output gradient")

        trace, self._trace = self._trace, []
        grad_y = grad_y.copy()
        grad_z = np.zeros(self.config.latent_dim)
        grad_x = np.zeros(self.config.input_dim)

        for inv in reversed(trace):
            # The call's output beyond `width` was discarded, so it carries no gradient.
            upstream = np.zeros(self.network.out_features)
            upstream[:inv.width] = grad_y if inv.step is Step.ACT else grad_z
            parts = split_gradient(self.network.backward(upstream, inv.caches), inv.layout)

            if inv.step is Step.ACT:
                # y was overwritten by this call: its previous value only
                # reaches the loss through this call's input.
                grad_y = parts.y
                grad_z = grad_z + parts.z
            else:
                grad_x += parts.x
                grad_y = grad_y + parts.y
                grad_z = parts.z

        return StateGradient(x=grad_x, y=grad_y, z=grad_z)

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    def zero_grad(self) -> None:
        self.network.zero_grad()

    def update_weights(self, lr: float) -> None:
        self.network.update_weights(lr)

    def clear_trace(self) -> None:
        self._trace = []
