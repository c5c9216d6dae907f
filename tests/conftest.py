"""
conftest.py
~~~~~~~~~~~

Shared fixtures for the mlpnet test suite.
"""

import pytest

from mlpnet.network import MultiLayerPerceptron
from mlpnet.transfer import Sigmoid


@pytest.fixture
def temp_db_dir(tmp_path):
    """Create a temporary directory for database storage."""
    db_dir = tmp_path / "test_models"
    db_dir.mkdir()
    return str(db_dir)


@pytest.fixture
def simple_network():
    """Create a simple 3-layer network for testing."""
    return MultiLayerPerceptron([3, 4, 2], 0.5, Sigmoid(), seed=42)


@pytest.fixture
def trained_network(simple_network):
    """Create a simple network with some training applied."""
    import numpy as np

    rng = np.random.default_rng(0)
    for i in range(10):
        x = rng.random(3)
        y = np.zeros(2)
        y[i % 2] = 1.0
        simple_network.back_propagate(x, y)
    return simple_network
