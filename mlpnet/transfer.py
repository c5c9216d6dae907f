"""
transfer.py
~~~~~~~~~~~

Transfer (activation) functions for the perceptron.

Every transfer function exposes two operations:

- ``evaluate(x)``: the activation of a neuron whose weighted input sum is ``x``
- ``evaluate_derivative(y)``: the derivative of the function, expressed in
  terms of the *output* ``y = evaluate(x)`` rather than the raw input

Backpropagation only ever has the neuron outputs at hand, so the derivative
takes the output value.
"""

import math
from abc import ABC, abstractmethod
from typing import Dict, Type, Union


class TransferFunction(ABC):
    """Stateless activation strategy shared by every neuron of a network."""

    #: Registry name used to rebind the function when a network is loaded
    name: str = ''

    @abstractmethod
    def evaluate(self, x: float) -> float:
        """Map a weighted input sum to an activation."""

    @abstractmethod
    def evaluate_derivative(self, y: float) -> float:
        """Derivative of the function at the input that produced output ``y``."""

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Sigmoid(TransferFunction):
    """Logistic sigmoid, range (0, 1)."""

    name = 'sigmoid'

    def evaluate(self, x: float) -> float:
        # Split on the sign so exp() never overflows
        if x >= 0:
            return 1.0 / (1.0 + math.exp(-x))
        z = math.exp(x)
        return z / (1.0 + z)

    def evaluate_derivative(self, y: float) -> float:
        return y * (1.0 - y)


class HyperbolicTangent(TransferFunction):
    """Hyperbolic tangent, range (-1, 1)."""

    name = 'tanh'

    def evaluate(self, x: float) -> float:
        return math.tanh(x)

    def evaluate_derivative(self, y: float) -> float:
        return 1.0 - y * y


class Linear(TransferFunction):
    """Identity transfer. Mostly useful for regression outputs and tests."""

    name = 'linear'

    def evaluate(self, x: float) -> float:
        return x

    def evaluate_derivative(self, y: float) -> float:
        return 1.0


_REGISTRY: Dict[str, Type[TransferFunction]] = {}

_ALIASES = {
    'sig': 'sigmoid',
    'logistic': 'sigmoid',
    'identity': 'linear',
}


def register_transfer_function(cls: Type[TransferFunction]) -> Type[TransferFunction]:
    """
    Make a transfer function class resolvable by name.

    Usable as a class decorator. Registered functions can be persisted and
    loaded back.

    Raises:
        ValueError: If the class has no name or the name is taken by
            another class
    """
    if not cls.name:
        raise ValueError(f"{cls.__name__} must define a non-empty 'name'")
    existing = _REGISTRY.get(cls.name)
    if existing is not None and existing is not cls:
        raise ValueError(
            f"Transfer function name '{cls.name}' is already registered "
            f"to {existing.__name__}"
        )
    _REGISTRY[cls.name] = cls
    return cls


def standardize_transfer_name(name: str) -> str:
    """Resolve aliases to the canonical registry name."""
    name = name.lower()
    return _ALIASES.get(name, name)


def get_transfer_function(
    transfer: Union[str, TransferFunction]
) -> TransferFunction:
    """
    Turn a transfer function name into an instance.

    Instances are returned unchanged.

    Raises:
        ValueError: If the name is not registered
        TypeError: If ``transfer`` is neither a string nor a TransferFunction
    """
    if isinstance(transfer, TransferFunction):
        return transfer
    if not isinstance(transfer, str):
        raise TypeError(
            f"Expected a transfer function or its name, got {type(transfer).__name__}"
        )

    cls = _REGISTRY.get(standardize_transfer_name(transfer))
    if cls is None:
        raise ValueError(f"Unrecognized transfer function: {transfer}")
    return cls()


for _cls in (Sigmoid, HyperbolicTangent, Linear):
    register_transfer_function(_cls)


def transfer_function_name(transfer: TransferFunction) -> str:
    """
    Registry name under which ``transfer`` can be looked up again.

    Raises:
        ValueError: If the function's class is not registered
    """
    cls = _REGISTRY.get(transfer.name)
    if cls is not type(transfer):
        raise ValueError(
            f"{type(transfer).__name__} is not a registered transfer function"
        )
    return transfer.name
