"""
conftest.py
~~~~~~~~~~~

Shared fixtures. The environment is prepared before any test module
imports the API server, so importing it never touches ./models.
"""

import math
import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

os.environ['MODEL_DIR'] = tempfile.mkdtemp(prefix='neuronet-models-')
os.environ['NETWORK_CLEANUP'] = '0'

from neuronet.activations import sigmoid, sigmoid_derivative, tanh_derivative
from neuronet.network import Network, NeuronLayer


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a simple 3-layer network for testing."""
    return Network([3, 4, 2], seed=0)


@pytest.fixture
def biased_network():
    """A 2-3-2 network with bias units on the input and hidden layers."""
    net = Network(
        [NeuronLayer(2, True), NeuronLayer(3, True), NeuronLayer(2)],
        sigmoid,
        sigmoid_derivative,
        name='demo',
        seed=42
    )
    net.learning_ratio = 0.3
    net.init_learn()
    return net


@pytest.fixture
def tanh_network():
    """A deeper network whose widest layer sits in the middle."""
    net = Network(
        [NeuronLayer(3, True), NeuronLayer(6, True), NeuronLayer(2), NeuronLayer(4)],
        math.tanh,
        tanh_derivative,
        seed=7
    )
    net.learning_ratio = 0.1
    net.init_learn()
    return net
