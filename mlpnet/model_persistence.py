"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Saving and loading perceptrons.

Two storage back ends are provided:

- ``save`` / ``load``: a single network as a JSON document on disk
- ``ModelDatabase`` and its module-level wrappers: many networks, keyed by
  id, in a SQLite database with queryable metadata

Networks are stored through ``MultiLayerPerceptron.to_dict``; the transfer
function is stored by its registry name and bound again on load. Python's
float repr round-trips exactly, so a loaded network produces bit-for-bit
the same outputs as the one that was saved.
"""

import sqlite3
import json
import os
import tempfile
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager
import numpy as np

from .config import DEFAULT_MODEL_DIR, DB_FILENAME
from .exceptions import PersistenceError
from .network import MultiLayerPerceptron

# Configure module logger
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


def dumps_network(network: MultiLayerPerceptron) -> str:
    """
    Serialize a network to a JSON string.

    Raises:
        PersistenceError: If the network's transfer function is not registered
    """
    return json.dumps(network.to_dict(), cls=NetworkEncoder)


def loads_network(text) -> MultiLayerPerceptron:
    """
    Rebuild a network from a string produced by ``dumps_network``.

    Raises:
        PersistenceError: If the text is not valid network data
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Invalid network JSON: {e}") from e
    if not isinstance(data, dict):
        raise PersistenceError("Network JSON must be an object")
    return MultiLayerPerceptron.from_dict(data)


# ============================================================================
# FILE STORAGE
# ============================================================================

def save(network: MultiLayerPerceptron, path: str) -> bool:
    """
    Save a network to a JSON file.

    The document is written to a temporary file next to ``path`` and then
    moved over it, so an interrupted save never truncates an earlier one.

    Args:
        network: Network to save
        path: Destination file; missing parent directories are created

    Returns:
        bool: True if saved correctly, False otherwise. The network is
        never modified.
    """
    tmp_path = None
    try:
        text = dumps_network(network)

        directory = os.path.dirname(path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)

        fd, tmp_path = tempfile.mkstemp(
            dir=directory or '.', prefix='.mlpnet-', suffix='.tmp'
        )
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
        os.replace(tmp_path, path)
        tmp_path = None

    except PersistenceError as e:
        logger.error(f"Serialization error saving network to '{path}': {e}")
        return False
    except OSError as e:
        logger.error(f"I/O error saving network to '{path}': {e}")
        return False
    except Exception as e:
        logger.exception(f"Unexpected error saving network to '{path}': {e}")
        return False
    finally:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.remove(tmp_path)

    logger.info(f"Saved network {network.sizes} to '{path}'")
    return True


def load(path: str) -> Optional[MultiLayerPerceptron]:
    """
    Load a network from a JSON file written by ``save``.

    Args:
        path: Source file

    Returns:
        The loaded network, or None if it could not be read
    """
    try:
        with open(path, 'rb') as f:
            network = loads_network(f.read())

    except FileNotFoundError:
        logger.warning(f"Network file '{path}' not found")
        return None
    except OSError as e:
        logger.error(f"I/O error loading network from '{path}': {e}")
        return None
    except PersistenceError as e:
        logger.error(f"Deserialization error loading '{path}': {e}")
        return None
    except Exception as e:
        logger.exception(f"Unexpected error loading network from '{path}': {e}")
        return None

    logger.info(f"Loaded network {network.sizes} from '{path}'")
    return network


# ============================================================================
# SQLITE STORAGE
# ============================================================================

class ModelDatabase:
    """
    Manages a SQLite database of saved networks.

    The database stores:
    - Network metadata (architecture, training status, accuracy)
    - The serialized network as JSON
    """

    def __init__(self, db_path: str = f'{DEFAULT_MODEL_DIR}/{DB_FILENAME}'):
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
                    architecture TEXT NOT NULL,
                    transfer_function TEXT NOT NULL,
                    network_data TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    accuracy REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        architecture = json.loads(row['architecture'])
        return {
            'network_id': row['network_id'],
            'architecture': architecture,
            'weights_shape': [
                [architecture[i + 1], architecture[i]]
                for i in range(len(architecture) - 1)
            ],
            'transfer_function': row['transfer_function'],
            'trained': bool(row['trained']),
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        network: MultiLayerPerceptron,
        network_id: str,
        trained: bool = True,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database, replacing any network with the same id.

        The original creation time is kept when a network is replaced.

        Args:
            network: Network to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            accuracy: Classification accuracy (0.0 to 1.0)

        Returns:
            bool: True if successful

        Raises:
            ValueError: If accuracy is out of valid range
            PersistenceError: If the network cannot be serialized
        """
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        network_data = dumps_network(network)
        architecture_json = json.dumps(network.sizes)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO networks
                (network_id, architecture, transfer_function, network_data,
                 trained, accuracy)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    transfer_function = excluded.transfer_function,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                architecture_json,
                network.transfer_function.name,
                network_data,
                1 if trained else 0,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.sizes}, trained={trained}, accuracy={accuracy}"
        )
        return True

    def load_network_from_db(
        self,
        network_id: str
    ) -> Optional[MultiLayerPerceptron]:
        """
        Load a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Network or None if not found

        Raises:
            PersistenceError: If the stored data is corrupt
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

        network = loads_network(row['network_data'])
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata, newest first.

        Returns:
            List of network metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    transfer_function,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')
            networks = [self._row_to_metadata(row) for row in cursor.fetchall()]

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

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without loading the full network.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    transfer_function,
                    trained,
                    accuracy,
                    created_at,
                    updated_at
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

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted


# Global database instance
_db = None


def _get_db(model_dir: str = DEFAULT_MODEL_DIR) -> ModelDatabase:
    """
    Get the database for ``model_dir``.

    The default directory shares one global instance; any other directory
    gets a fresh one.
    """
    global _db
    if model_dir != DEFAULT_MODEL_DIR:
        return ModelDatabase(db_path=os.path.join(model_dir, DB_FILENAME))
    if _db is None:
        _db = ModelDatabase()
    return _db


def _valid_id(network_id: Any) -> bool:
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False
    return True


def save_network(
    network: MultiLayerPerceptron,
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR,
    trained: bool = True,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a network to the SQLite database.

    Args:
        network: The network to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        trained: Whether the network has been trained
        accuracy: Classification accuracy of the network (0.0 to 1.0)

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = MultiLayerPerceptron([4, 3, 2], 0.6, 'sigmoid')
        >>> save_network(net, "my_network", trained=False)
        True
    """
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).save_network_to_db(
            network, network_id, trained, accuracy
        )

    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except PersistenceError as e:
        logger.error(
            f"Serialization error saving network '{network_id}': {e}"
        )
        return False
    except (sqlite3.Error, OSError) as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error saving network '{network_id}': {e}"
        )
        return False


def load_network(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[MultiLayerPerceptron]:
    """
    Load a network from the SQLite database.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored

    Returns:
        The loaded network or None if not found or unreadable

    Example:
        >>> net = load_network("my_network")
        >>> if net:
        ...     print(f"Loaded network with {len(net.sizes)} layers")
    """
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).load_network_from_db(network_id)

    except PersistenceError as e:
        logger.error(
            f"Deserialization error loading network '{network_id}': {e}"
        )
        return None
    except (sqlite3.Error, OSError) as e:
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
    """
    try:
        return _get_db(model_dir).list_networks_from_db()

    except (sqlite3.Error, OSError) as e:
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
    if not _valid_id(network_id):
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)

    except (sqlite3.Error, OSError) as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error deleting network '{network_id}': {e}"
        )
        return False


def get_network_metadata(
    network_id: str,
    model_dir: str = DEFAULT_MODEL_DIR
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without loading it.

    Args:
        network_id: The unique identifier of the network
        model_dir: Directory where the database is stored

    Returns:
        dict: Network metadata or None if not found
    """
    if not _valid_id(network_id):
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)

    except (sqlite3.Error, OSError) as e:
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


def delete_old_networks(
    days: float = 2,
    model_dir: str = DEFAULT_MODEL_DIR
) -> int:
    """
    Delete saved networks older than ``days`` days.

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
        return _get_db(model_dir).delete_old_networks_from_db(days)

    except (sqlite3.Error, OSError) as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
    except Exception as e:
        logger.exception(f"Unexpected error deleting old networks: {e}")
        return -1
