"""
neuronet package
~~~~~~~~~~~~~~~~

Minimal fully-connected feedforward neural network engine with online
backpropagation training, JSON/SQLite persistence and an HTTP service.
"""

from neuronet.errors import (
    NetworkError,
    PersistenceError,
    ShapeMismatchError,
    UninitializedFunctionsError,
    UninitializedTrainingStateError,
)
from neuronet.layer import Layer
from neuronet.network import Network, NeuronLayer

__version__ = "1.0.0"

__all__ = [
    'Layer',
    'Network',
    'NeuronLayer',
    'NetworkError',
    'PersistenceError',
    'ShapeMismatchError',
    'UninitializedFunctionsError',
    'UninitializedTrainingStateError',
]
