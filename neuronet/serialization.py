"""
serialization.py
~~~~~~~~~~~~~~~~

JSON file persistence for networks.

The file holds the document produced by ``Network.to_document()``. Floats
are written with Python's shortest round-trip repr, so weights survive a
save/load cycle bit for bit.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

import numpy as np

from neuronet.errors import PersistenceError
from neuronet.network import Network

logger = logging.getLogger(__name__)


class NetworkEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        """
        Convert numpy values to plain Python for JSON serialization.

        Args:
            obj: Object to serialize

        Returns:
            JSON-serializable representation
        """
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


def dumps(network: Network) -> str:
    """Serialize a network document to a JSON string."""
    return json.dumps(network.to_document(), cls=NetworkEncoder)


def loads(data: str) -> Network:
    """
    Restore a network from a JSON string.

    Raises:
        PersistenceError: If the string is not valid JSON or not a network document
    """
    try:
        document = json.loads(data)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Network document is not valid JSON: {e}") from e
    return Network.from_document(document)


def save_to_file(network: Network, path: str) -> None:
    """
    Write a network to ``path`` as JSON.

    The parent directory is created if needed. I/O errors propagate.
    """
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

    with open(path, 'w', encoding='utf-8') as f:
        json.dump(network.to_document(), f, cls=NetworkEncoder)

    logger.info(f"Saved network {network} to {path}")


def load_from_file(path: str) -> Optional[Network]:
    """
    Load a network saved with ``save_to_file``.

    Args:
        path: File to read

    Returns:
        The restored network, or None if the file cannot be opened

    Raises:
        PersistenceError: If the file is opened but its content is malformed
    """
    try:
        f = open(path, 'r', encoding='utf-8')
    except OSError as e:
        logger.warning(f"Could not open network file {path}: {e}")
        return None

    with f:
        try:
            document: Dict[str, Any] = json.load(f)
        except ValueError as e:
            raise PersistenceError(f"{path} is not valid JSON: {e}") from e

    network = Network.from_document(document)
    logger.info(f"Loaded network {network} from {path}")
    return network
