"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-based persistence for neural network models.
Provides reliable, performant storage with ACID transaction guarantees.

Networks are stored as their JSON document, never pickled, so a row can
only ever be restored into a plain Network.
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager

from neuronet.errors import NetworkError
from neuronet.network import Network
from neuronet.serialization import NetworkEncoder, dumps, loads

# Configure module logger
logger = logging.getLogger(__name__)

_METADATA_COLUMNS = '''
    network_id,
    name,
    topology,
    activation,
    trained,
    loss,
    created_at,
    updated_at
'''


class ModelDatabase:
    """
    Manages SQLite database for neural network model persistence.

    The database stores:
    - Network metadata (name, topology, activation, training status, loss)
    - The network document (layers and weights) as JSON text
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    topology TEXT NOT NULL,
                    activation TEXT,
                    network_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    loss REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_trained
                ON networks(trained)
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        topology = json.loads(row['topology'])
        return {
            'network_id': row['network_id'],
            'name': row['name'],
            'topology': topology,
            'architecture': [size for size, _ in topology],
            'activation': row['activation'],
            'trained': bool(row['trained']),
            'loss': row['loss'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        activation: Optional[str] = None,
        trained: bool = True,
        loss: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database.

        Args:
            network: Network object to save
            network_id: Unique identifier for the network
            activation: Registry name of the network's activation pair
            trained: Whether the network has been trained
            loss: Last training loss (mean squared error, >= 0)

        Returns:
            bool: True if successful

        Raises:
            ValueError: If loss is negative
        """
        if loss is not None and not loss >= 0.0:
            raise ValueError(f"Loss must be non-negative, got {loss}")

        network_data = dumps(network)

        # Topology as JSON for queryability
        topology_json = json.dumps(
            [[size, bias] for size, bias in network.topology],
            cls=NetworkEncoder
        )

        with self._get_connection() as conn:
            cursor = conn.cursor()
            # Keep created_at of an existing row so cleanup ages by creation
            cursor.execute('''
                INSERT INTO networks
                (network_id, name, topology, activation, network_data,
                 trained, loss, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(network_id) DO UPDATE SET
                    name = excluded.name,
                    topology = excluded.topology,
                    activation = excluded.activation,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    loss = excluded.loss,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                network.name,
                topology_json,
                activation,
                network_data,
                1 if trained else 0,
                loss
            ))

        logger.info(
            f"Saved network '{network_id}' {network}, "
            f"activation={activation}, trained={trained}, loss={loss}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Load a network from the database.

        The returned network has no functions, delta buffers or learning
        ratio attached.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Network object or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT network_data FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Network '{network_id}' not found")
                return None

            network = loads(row['network_data'])
            logger.info(f"Loaded network '{network_id}'")
            return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata.

        Returns:
            List of network metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f'''
                SELECT {_METADATA_COLUMNS}
                FROM networks
                ORDER BY created_at DESC
            ''')

            networks = []
            for row in cursor.fetchall():
                metadata = self._row_to_metadata(row)
                topology = metadata['topology']

                # One weight row per activated unit, one column per next neuron
                metadata['weights_shape'] = [
                    [size + (1 if bias else 0),
                     topology[i + 1][0] if i + 1 < len(topology) else 0]
                    for i, (size, bias) in enumerate(topology)
                ]
                networks.append(metadata)

            logger.debug(f"Listed {len(networks)} networks")
            return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted network '{network_id}'")
            else:
                logger.warning(
                    f"Could not delete network '{network_id}': not found"
                )
            return deleted

    def delete_old_networks_from_db(self, days: float) -> int:
        """
        Delete networks created more than ``days`` days ago.

        Args:
            days: Age threshold in days

        Returns:
            int: Number of deleted networks

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM networks
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))

            deleted = cursor.rowcount
            logger.info(
                f"Deleted {deleted} network(s) older than {days} day(s)"
            )
            return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without loading the full object.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f'''
                SELECT {_METADATA_COLUMNS}
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Metadata for network '{network_id}' not found"
                )
                return None

            return self._row_to_metadata(row)


# Global database instance
_db = None

DEFAULT_MODEL_DIR = 'models'


def _get_db(model_dir: str = DEFAULT_MODEL_DIR) -> ModelDatabase:
    """
    Get the database for ``model_dir``.

    The default directory shares one global instance; any other directory
    gets a fresh ModelDatabase.

    Returns:
        ModelDatabase: The database instance
    """
    global _db
    if model_dir != DEFAULT_MODEL_DIR:
        return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))
    if _db is None:
        _db = ModelDatabase()
    return _db


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR,
    activation: Optional[str] = None,
    trained: bool = True,
    loss: Optional[float] = None
) -> bool:
    """
    Save a neural network to the SQLite database.

    Args:
        network: The neural network object to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        activation: Registry name of the activation pair to re-attach on load
        trained: Boolean indicating if the network has been trained
        loss: The last training loss of the network

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network([2, 3, 2], name="demo")
        >>> save_network(net, "my_network", trained=False)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        db = _get_db(model_dir)
        return db.save_network_to_db(network, network_id, activation, trained, loss)

    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except (AttributeError, TypeError) as e:
        logger.error(
            f"Serialization error saving network '{network_id}': {e}"
        )
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error saving network '{network_id}': {e}"
        )
        return False


def load_network(network_id: str, model_dir: str = DEFAULT_MODEL_DIR) -> Optional[Network]:
    """
    Load a neural network from the SQLite database.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored

    Returns:
        The loaded neural network object or None if not found

    Example:
        >>> net = load_network("my_network")
        >>> if net:
        ...     print(f"Loaded network {net}")
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        db = _get_db(model_dir)
        return db.load_network_from_db(network_id)

    except NetworkError as e:
        logger.error(
            f"Deserialization error loading network '{network_id}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading network '{network_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error loading network '{network_id}': {e}"
        )
        return None


def list_saved_networks(
    model_dir: str = DEFAULT_MODEL_DIR
) -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: A list of metadata dictionaries for each saved network

    Example:
        >>> networks = list_saved_networks()
        >>> for net in networks:
        ...     print(f"{net['network_id']}: {net['architecture']}")
    """
    try:
        db = _get_db(model_dir)
        return db.list_networks_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []
    except Exception as e:
        logger.exception(f"Unexpected error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = DEFAULT_MODEL_DIR) -> bool:
    """
    Delete a saved network from the database.

    Args:
        network_id: The unique identifier of the network to delete
        model_dir: Directory where the database is stored

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        db = _get_db(model_dir)
        return db.delete_network_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error deleting network '{network_id}': {e}"
        )
        return False


def delete_old_networks(days: float = 2, model_dir: str = DEFAULT_MODEL_DIR) -> int:
    """
    Delete saved networks created more than ``days`` days ago.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number of deleted networks, or -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        db = _get_db(model_dir)
        return db.delete_old_networks_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1


def get_network_metadata(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without loading full network object.

    Args:
        network_id: The unique identifier of the network
        model_dir: Directory where the database is stored

    Returns:
        dict: Network metadata or None if not found

    Example:
        >>> metadata = get_network_metadata("my_network")
        >>> if metadata:
        ...     print(f"Loss: {metadata['loss']}")
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        db = _get_db(model_dir)
        return db.get_network_metadata_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error getting metadata for '{network_id}': {e}"
        )
        return None
