"""
layer.py
~~~~~~~~

A single fully-connected layer: its neuron state and the weight matrix
connecting it to the next layer.
"""

from typing import Any, Callable, Dict, Optional, Sequence, Union

import numpy as np

from neuronet.errors import PersistenceError

SeedLike = Union[None, int, np.random.Generator]


class Layer:
    """
    One stage of neurons.

    Attributes:
        neurons: Raw (pre-activation) values, one per neuron
        activated_neurons: Post-activation values. With ``bias`` enabled an
            extra trailing unit holds the constant 1.0
        weights: Matrix of shape (len(activated_neurons), next layer size);
            row i, column j connects activated unit i to next neuron j
        bias: Whether the trailing bias unit is present
    """

    def __init__(
        self,
        size: int,
        next_size: int,
        bias: bool = False,
        seed: SeedLike = None
    ):
        """
        Allocate the layer and draw its weights uniformly from [-1, 1).

        Args:
            size: Number of neurons in this layer
            next_size: Number of neurons in the next layer (0 for the last)
            bias: Append a constant 1.0 unit to the activated values
            seed: Seed or numpy Generator used to draw the weights
        """
        rng = np.random.default_rng(seed)
        self.bias = bool(bias)
        self.neurons = np.zeros(size, dtype=float)
        self.activated_neurons = np.zeros(size + (1 if self.bias else 0), dtype=float)
        if self.bias:
            self.activated_neurons[-1] = 1.0
        self.weights = rng.uniform(
            -1.0, 1.0, size=(len(self.activated_neurons), next_size)
        )

    @property
    def num_input_neurons(self) -> int:
        """Number of real (non-bias) units in this layer."""
        return len(self.neurons)

    @property
    def next_size(self) -> int:
        return self.weights.shape[1]

    def activate(self, activation_fn: Callable[[float], float]) -> None:
        """
        Apply the activation function to every neuron.

        Only the first ``len(neurons)`` activated slots are written, the bias
        unit keeps its constant value.
        """
        activated = self.activated_neurons
        for i, value in enumerate(self.neurons):
            activated[i] = activation_fn(value)

    def to_document(self) -> Dict[str, Any]:
        return {
            'neurons': self.neurons.tolist(),
            'activated_neurons': self.activated_neurons.tolist(),
            'bias': self.bias,
            'weights': self.weights.tolist(),
        }

    @classmethod
    def restore(
        cls,
        neurons: Sequence[float],
        activated_neurons: Sequence[float],
        weights: Sequence[Sequence[float]],
        bias: bool,
        next_size: Optional[int] = None
    ) -> 'Layer':
        """
        Rebuild a layer from persisted arrays without drawing new weights.

        Args:
            neurons: Raw neuron values
            activated_neurons: Activated values, bias unit included
            weights: One row per activated unit
            bias: Bias flag
            next_size: Expected column count, checked when given

        Returns:
            Layer: The restored layer

        Raises:
            PersistenceError: If the arrays violate the layer's shape invariants
        """
        if not isinstance(bias, bool):
            raise PersistenceError(f"Layer bias flag must be a boolean, got {bias!r}")

        try:
            neurons_arr = np.array(neurons, dtype=float)
            activated_arr = np.array(activated_neurons, dtype=float)
            weights_arr = np.array(weights, dtype=float)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Layer arrays are not numeric: {e}") from e

        # null decodes to NaN under dtype=float
        if not all(np.all(np.isfinite(arr)) for arr in (neurons_arr, activated_arr, weights_arr)):
            raise PersistenceError("Layer arrays must hold finite numbers")

        if neurons_arr.ndim != 1 or activated_arr.ndim != 1:
            raise PersistenceError("Layer neuron arrays must be flat lists")

        expected = len(neurons_arr) + (1 if bias else 0)
        if len(activated_arr) != expected:
            raise PersistenceError(
                f"Layer has {len(activated_arr)} activated neurons, "
                f"expected {expected}"
            )

        # An empty layer has no rows to infer a width from
        if weights_arr.ndim == 1 and weights_arr.size == 0:
            weights_arr = weights_arr.reshape(0, next_size or 0)
        if weights_arr.ndim != 2 or weights_arr.shape[0] != expected:
            raise PersistenceError(
                f"Layer weight matrix has shape {weights_arr.shape}, "
                f"expected {expected} rows"
            )
        if next_size is not None and weights_arr.shape[1] != next_size:
            raise PersistenceError(
                f"Layer weight matrix has {weights_arr.shape[1]} columns, "
                f"next layer has {next_size} neurons"
            )

        layer = cls.__new__(cls)
        layer.bias = bias
        layer.neurons = neurons_arr
        layer.activated_neurons = activated_arr
        if bias:
            layer.activated_neurons[-1] = 1.0
        layer.weights = weights_arr
        return layer

    def __repr__(self) -> str:
        return (
            f"Layer(size={self.num_input_neurons}, "
            f"next_size={self.next_size}, bias={self.bias})"
        )
