"""
activations.py
~~~~~~~~~~~~~~

Named scalar activation functions and their derivatives.

The engine itself accepts any pair of scalar callables. Function references
are never persisted, so the HTTP service and the store refer to a pair by
its registry name and re-attach it after a network is loaded.
"""

import math
from typing import Callable, Dict, List, Tuple

ScalarFunc = Callable[[float], float]


def tanh3(x: float) -> float:
    """(e^6x - 1) / (e^6x + 1), i.e. tanh(3x)."""
    return math.tanh(3.0 * x)


def tanh3_derivative(x: float) -> float:
    """1 / cosh^2(3x), the derivative of tanh(3x) without its factor of 3."""
    c = math.cosh(3.0 * x) if abs(x) < 200.0 else math.inf
    return 1.0 / (c * c)


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def sigmoid_derivative(x: float) -> float:
    s = sigmoid(x)
    return s * (1.0 - s)


def tanh_derivative(x: float) -> float:
    t = math.tanh(x)
    return 1.0 - t * t


def relu(x: float) -> float:
    return x if x > 0.0 else 0.0


def relu_derivative(x: float) -> float:
    return 1.0 if x > 0.0 else 0.0


def identity(x: float) -> float:
    return x


def identity_derivative(x: float) -> float:
    return 1.0


ACTIVATIONS: Dict[str, Tuple[ScalarFunc, ScalarFunc]] = {
    'tanh3': (tanh3, tanh3_derivative),
    'sigmoid': (sigmoid, sigmoid_derivative),
    'tanh': (math.tanh, tanh_derivative),
    'relu': (relu, relu_derivative),
    'identity': (identity, identity_derivative),
}

DEFAULT_ACTIVATION = 'tanh3'


def get_activation(name: str) -> Tuple[ScalarFunc, ScalarFunc]:
    """
    Look up an activation/derivative pair by name.

    Args:
        name: Registry key, e.g. 'sigmoid'

    Returns:
        tuple: (activation, derivative)

    Raises:
        ValueError: If the name is not registered
    """
    try:
        return ACTIVATIONS[name]
    except (KeyError, TypeError):
        raise ValueError(
            f"Unknown activation '{name}'. "
            f"Available: {', '.join(available_activations())}"
        ) from None


def available_activations() -> List[str]:
    return sorted(ACTIVATIONS)
