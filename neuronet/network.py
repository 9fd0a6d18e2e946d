"""
network.py
~~~~~~~~~~

Fully-connected feedforward network trained one sample at a time with
backpropagation.

Typical use::

    net = Network([NeuronLayer(2), NeuronLayer(3, bias=True), NeuronLayer(2)],
                  math.tanh, tanh_derivative, seed=7)
    net.learning_ratio = 0.3
    net.init_learn()
    loss = net.adjust_weights([0.2, 0.8], [0.6, 0.4])

A network is not thread safe: the layer arrays and the delta buffers are
scratch space mutated in place by every pass.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Union

import numpy as np

from neuronet.errors import (
    PersistenceError,
    ShapeMismatchError,
    UninitializedFunctionsError,
    UninitializedTrainingStateError,
)
from neuronet.layer import Layer, SeedLike

logger = logging.getLogger(__name__)

ScalarFunc = Callable[[float], float]


class NeuronLayer(NamedTuple):
    """Topology descriptor of one layer: its neuron count and bias flag."""
    num_of_neurons: int
    bias: bool = False


TopologyItem = Union[NeuronLayer, int, Sequence[Any], Dict[str, Any]]


def normalize_topology(topology: Iterable[TopologyItem]) -> List[NeuronLayer]:
    """
    Convert a topology description into a list of NeuronLayer.

    Each item may be a NeuronLayer, a bare neuron count, a
    ``(neurons, bias)`` pair or a ``{'neurons': n, 'bias': b}`` mapping.

    Raises:
        ValueError: If the topology is empty or an item is malformed
    """
    layers = []
    for item in topology:
        if isinstance(item, NeuronLayer):
            descriptor = item
        elif isinstance(item, bool):
            raise ValueError(f"Invalid layer description: {item!r}")
        elif isinstance(item, (int, np.integer)):
            descriptor = NeuronLayer(item)
        elif isinstance(item, dict):
            descriptor = NeuronLayer(item.get('neurons'), item.get('bias', False))
        else:
            try:
                descriptor = NeuronLayer(*item)
            except TypeError:
                raise ValueError(f"Invalid layer description: {item!r}") from None

        size, bias = descriptor
        if isinstance(size, bool) or not isinstance(size, (int, np.integer)) or size < 0:
            raise ValueError(
                f"Layer size must be a non-negative integer, got {size!r}"
            )
        if not isinstance(bias, (bool, np.bool_)):
            raise ValueError(f"Layer bias must be a boolean, got {bias!r}")
        layers.append(NeuronLayer(int(size), bool(bias)))

    if not layers:
        raise ValueError("Topology must describe at least one layer")
    return layers


class Network:
    """
    Ordered stack of layers plus the training state.

    Attributes:
        name: Free-form network name, persisted
        layers: Layers from input (index 0) to output (last)
        learning_ratio: Step size of weight updates; None until assigned
        activation_function: Scalar activation used by the forward pass
        derivative_function: Its derivative, used by the backward pass
    """

    def __init__(
        self,
        topology: Iterable[TopologyItem],
        activation_function: Optional[ScalarFunc] = None,
        derivative_function: Optional[ScalarFunc] = None,
        name: str = '',
        seed: SeedLike = None
    ):
        """
        Build the layers described by ``topology``.

        Args:
            topology: One descriptor per layer, input first
            activation_function: Scalar activation, may be set later
            derivative_function: Scalar derivative, may be set later
            name: Network name
            seed: Seed or numpy Generator shared by every layer's weights

        Raises:
            ValueError: If the topology is empty or malformed
        """
        descriptors = normalize_topology(topology)
        rng = np.random.default_rng(seed)

        layers = []
        for index, (size, bias) in enumerate(descriptors):
            if index + 1 < len(descriptors):
                next_size = descriptors[index + 1].num_of_neurons
            else:
                next_size = 0
            layers.append(Layer(size, next_size, bias, seed=rng))

        self._init_state(name, layers)
        self.set_funcs(activation_function, derivative_function)
        logger.debug(f"Created network {self}")

    def _init_state(self, name: str, layers: List[Layer]) -> None:
        self.name = name
        self.layers = layers
        self.learning_ratio: Optional[float] = None
        self.activation_function: Optional[ScalarFunc] = None
        self.derivative_function: Optional[ScalarFunc] = None
        self._cur_deltas: Optional[np.ndarray] = None
        self._last_deltas: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def set_funcs(
        self,
        activation_function: Optional[ScalarFunc],
        derivative_function: Optional[ScalarFunc]
    ) -> None:
        """Attach the activation/derivative pair. Required after a restore."""
        self.activation_function = activation_function
        self.derivative_function = derivative_function

    def init_learn(self) -> None:
        """
        Allocate the two delta buffers used by ``adjust_weights``.

        Both are sized to the widest layer. Call again whenever the layers
        are replaced.
        """
        max_neurons = max(len(layer.neurons) for layer in self.layers)
        self._cur_deltas = np.zeros(max_neurons, dtype=float)
        self._last_deltas = np.zeros(max_neurons, dtype=float)
        logger.debug(f"Allocated delta buffers of size {max_neurons} for {self}")

    @property
    def input_size(self) -> int:
        return self.layers[0].num_input_neurons

    @property
    def output_size(self) -> int:
        return self.layers[-1].num_input_neurons

    @property
    def topology(self) -> List[NeuronLayer]:
        return [NeuronLayer(layer.num_input_neurons, layer.bias) for layer in self.layers]

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def forward_pass(self, inputs: Sequence[float], output=None):
        """
        Propagate ``inputs`` through the network.

        Args:
            inputs: One value per input neuron
            output: Optional caller buffer, filled in place

        Returns:
            The output buffer, or a new numpy array when none was given

        Raises:
            UninitializedFunctionsError: If no activation function is set
            ShapeMismatchError: If ``inputs`` or ``output`` has the wrong length
        """
        if self.activation_function is None:
            raise UninitializedFunctionsError(
                "Activation function is not set; call set_funcs() first"
            )

        inputs = np.asarray(inputs, dtype=float)
        first = self.layers[0]
        _check_length('input', inputs, first.num_input_neurons)
        last = self.layers[-1]
        if output is not None:
            _check_length('output', output, last.num_input_neurons)

        first.activated_neurons[:first.num_input_neurons] = inputs
        for cur, nxt in zip(self.layers, self.layers[1:]):
            # every activated unit of cur feeds nxt, bias unit included
            nxt.neurons[:] = cur.activated_neurons @ cur.weights
            nxt.activate(self.activation_function)

        result = last.activated_neurons[:last.num_input_neurons]
        if output is None:
            return result.copy()
        output[:] = result
        return output

    def adjust_weights(self, inputs: Sequence[float], targets: Sequence[float], output=None) -> float:
        """
        Run one online backpropagation step on a single sample.

        Args:
            inputs: One value per input neuron
            targets: Expected output, one value per output neuron
            output: Optional caller buffer receiving the forward-pass output

        Returns:
            float: Mean squared error of the output before the update

        Raises:
            UninitializedFunctionsError: If either function is missing
            UninitializedTrainingStateError: If init_learn() was not called
                or no learning ratio is set
            ShapeMismatchError: If a buffer has the wrong length
        """
        if self.activation_function is None or self.derivative_function is None:
            raise UninitializedFunctionsError(
                "Activation and derivative functions must be set; call set_funcs() first"
            )
        if self._cur_deltas is None or self._last_deltas is None:
            raise UninitializedTrainingStateError(
                "Delta buffers are not allocated; call init_learn() first"
            )
        if self.learning_ratio is None:
            raise UninitializedTrainingStateError("learning_ratio is not set")

        out_layer = self.layers[-1]
        width = out_layer.num_input_neurons
        targets = np.asarray(targets, dtype=float)
        _check_length('target', targets, width)

        self.forward_pass(inputs, output)

        derivative = self.derivative_function
        last = self._last_deltas
        cur = self._cur_deltas

        errors = targets - out_layer.activated_neurons[:width]
        for i in range(width):
            last[i] = errors[i] * derivative(out_layer.neurons[i])

        for layer in reversed(self.layers[:-1]):
            size = layer.num_input_neurons
            next_deltas = last[:layer.next_size]
            deltas = cur[:size]

            # stale values from a previous, wider layer must not leak in
            deltas.fill(0.0)
            deltas += layer.weights[:size] @ next_deltas
            layer.weights += self.learning_ratio * np.outer(layer.activated_neurons, next_deltas)

            for n in range(size):
                deltas[n] *= derivative(layer.neurons[n])

            last, cur = cur, last

        self._last_deltas, self._cur_deltas = last, cur

        if width == 0:
            return 0.0
        return float(np.sum(errors * errors) / width)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_document(self) -> Dict[str, Any]:
        """
        Return the persisted form of the network.

        The learning ratio, the delta buffers and the function pair are
        runtime state and are left out.
        """
        return {
            'name': self.name,
            'layers': [layer.to_document() for layer in self.layers],
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Network':
        """
        Rebuild a network from ``to_document()`` output.

        The result has no functions, delta buffers or learning ratio: call
        ``set_funcs()``, ``init_learn()`` and assign ``learning_ratio`` before
        training it.

        Raises:
            PersistenceError: If the document is malformed
        """
        if not isinstance(document, dict):
            raise PersistenceError("Network document must be a mapping")

        name = document.get('name') or ''
        if not isinstance(name, str):
            raise PersistenceError(f"Network name must be a string, got {name!r}")

        layer_docs = document.get('layers')
        if not isinstance(layer_docs, list) or not layer_docs:
            raise PersistenceError("Network document must contain at least one layer")

        layers = []
        try:
            for index, layer_doc in enumerate(layer_docs):
                if index + 1 < len(layer_docs):
                    next_size = len(layer_docs[index + 1]['neurons'])
                else:
                    next_size = 0
                layers.append(Layer.restore(
                    layer_doc['neurons'],
                    layer_doc['activated_neurons'],
                    layer_doc['weights'],
                    layer_doc['bias'],
                    next_size=next_size
                ))
        except (KeyError, TypeError) as e:
            raise PersistenceError(f"Malformed layer in network document: {e!r}") from e

        network = cls.__new__(cls)
        network._init_state(name, layers)
        logger.debug(f"Restored network {network}")
        return network

    def __str__(self) -> str:
        sizes = ' '.join(str(layer.num_input_neurons) for layer in self.layers)
        return f"{self.name} [{sizes}]"

    def __repr__(self) -> str:
        return f"<Network {self}>"


def _check_length(label: str, values, expected: int) -> None:
    if len(values) != expected:
        raise ShapeMismatchError(
            f"{label} has {len(values)} values, expected {expected}"
        )
