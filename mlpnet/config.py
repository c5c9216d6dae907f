"""
config.py
~~~~~~~~~

Default settings and logging setup.

The library itself never configures logging; scripts and applications
embedding the network call :func:`configure_logging` once at startup.
"""

import os
import logging
from typing import Optional

# Learning constant used when none is given
DEFAULT_LEARNING_RATE = 0.6

# Initial weights and biases are drawn uniformly from [-range, range]
WEIGHT_INIT_RANGE = 0.5

# SQLite model store location
DEFAULT_MODEL_DIR = 'models'
DB_FILENAME = 'networks.db'

# Version tag written into every serialized network
FORMAT_VERSION = 1

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """
    Set up logging for scripts using the library.

    Args:
        level: Log level name. Falls back to the LOG_LEVEL environment
            variable, then to INFO.
    """
    log_level_str = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    logging.getLogger('mlpnet').setLevel(log_level)
