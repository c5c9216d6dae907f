"""
mlpnet package
~~~~~~~~~~~~~~

Multi-layer perceptron trained by error backpropagation.
Contains the network engine, transfer functions, data-parallel training,
model persistence and a pattern recognition helper.
"""

from .exceptions import (
    MLPError,
    ConstructionError,
    DimensionMismatchError,
    PersistenceError,
    TrainingTimeoutError
)
from .transfer import (
    TransferFunction,
    Sigmoid,
    HyperbolicTangent,
    Linear,
    get_transfer_function,
    register_transfer_function
)
from .network import Neuron, Layer, MultiLayerPerceptron, Network
from .pattern_recognition import PatternRecognizer

__version__ = "1.0.0"

__all__ = [
    'MLPError',
    'ConstructionError',
    'DimensionMismatchError',
    'PersistenceError',
    'TrainingTimeoutError',
    'TransferFunction',
    'Sigmoid',
    'HyperbolicTangent',
    'Linear',
    'get_transfer_function',
    'register_transfer_function',
    'Neuron',
    'Layer',
    'MultiLayerPerceptron',
    'Network',
    'PatternRecognizer',
]
