"""
errors.py
~~~~~~~~~

Exceptions raised by the network engine and its persistence layer.

All of them are contract violations surfaced straight to the caller;
nothing here is meant to be retried.
"""


class NetworkError(Exception):
    """Base class for every error raised by neuronet."""


class UninitializedFunctionsError(NetworkError):
    """A pass was attempted before the activation/derivative pair was set."""


class UninitializedTrainingStateError(NetworkError):
    """A training step was attempted before ``init_learn()`` or without a learning ratio."""


class ShapeMismatchError(NetworkError, ValueError):
    """An input, target or output buffer does not match the layer width."""


class PersistenceError(NetworkError):
    """A network document is malformed and cannot be restored."""
