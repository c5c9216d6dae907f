"""
network.py
~~~~~~~~~~

A fully-connected feedforward neural network (multi-layer perceptron)
trained by error backpropagation.

The network is made of layers of neurons. Every neuron of layer ``k``
holds one incoming weight per neuron of layer ``k - 1``; the first layer
has no weights and only buffers the input values.

Example:
    >>> net = MultiLayerPerceptron([2, 2, 1], 0.5, Sigmoid(), seed=7)
    >>> error = net.back_propagate([0.0, 1.0], [1.0])
    >>> output = net.execute([0.0, 1.0])
"""

import copy
import math
import time
import logging
import threading
from dataclasses import dataclass, field
from typing import (
    Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union
)

import numpy as np

from .config import DEFAULT_LEARNING_RATE, FORMAT_VERSION, WEIGHT_INIT_RANGE
from .exceptions import (
    ConstructionError,
    DimensionMismatchError,
    PersistenceError
)
from .transfer import (
    TransferFunction,
    get_transfer_function,
    transfer_function_name
)

logger = logging.getLogger(__name__)

Vector = Union[Sequence[float], np.ndarray]
Sample = Tuple[Vector, Vector]


def as_vector(values: Vector, expected: int, what: str) -> np.ndarray:
    """
    Convert ``values`` to a flat float64 array of exactly ``expected`` items.

    Column vectors of shape (n, 1) are accepted and flattened.

    Raises:
        DimensionMismatchError: If the length differs from ``expected``
    """
    vector = np.asarray(values, dtype=np.float64)
    if vector.ndim > 1:
        if vector.ndim != 2 or vector.shape[1] != 1:
            raise DimensionMismatchError(what, expected, vector.size)
    vector = vector.reshape(-1)
    if vector.size != expected:
        raise DimensionMismatchError(what, expected, vector.size)
    return vector


@dataclass(eq=False)
class Neuron:
    """A single unit: incoming weights, a bias and per-call scratch values."""

    weights: np.ndarray
    bias: float = 0.0
    value: float = 0.0
    delta: float = 0.0


@dataclass(eq=False)
class Layer:
    """An ordered, fixed-size group of neurons at the same depth."""

    neurons: List[Neuron] = field(default_factory=list)

    @classmethod
    def random(
        cls,
        size: int,
        n_inputs: int,
        rng: np.random.Generator,
        init_range: float = WEIGHT_INIT_RANGE
    ) -> 'Layer':
        """
        Build a layer of ``size`` neurons, each wired to ``n_inputs`` inputs.

        Weights and biases are drawn uniformly from
        ``[-init_range, init_range]``. Neurons without inputs (the input
        layer) get an empty weight vector and a zero bias.
        """
        neurons = []
        for _ in range(size):
            if n_inputs:
                weights = rng.uniform(-init_range, init_range, n_inputs)
                bias = float(rng.uniform(-init_range, init_range))
            else:
                weights = np.zeros(0)
                bias = 0.0
            neurons.append(Neuron(weights=weights, bias=bias))
        return cls(neurons)

    @property
    def size(self) -> int:
        return len(self.neurons)

    @property
    def n_inputs(self) -> int:
        return len(self.neurons[0].weights) if self.neurons else 0

    def __len__(self) -> int:
        return len(self.neurons)

    def __iter__(self):
        return iter(self.neurons)

    def values(self) -> np.ndarray:
        """Current activations of the layer's neurons."""
        return np.array([neuron.value for neuron in self.neurons])

    def weight_matrix(self) -> np.ndarray:
        """Copy of the incoming weights, shape (size, n_inputs)."""
        return np.array(
            [neuron.weights for neuron in self.neurons], dtype=np.float64
        ).reshape(self.size, self.n_inputs)

    def bias_vector(self) -> np.ndarray:
        """Copy of the biases, shape (size,)."""
        return np.array([neuron.bias for neuron in self.neurons])


def _validate_layer_sizes(layer_sizes: Sequence[int]) -> List[int]:
    if isinstance(layer_sizes, (str, bytes)):
        raise ConstructionError(
            f"Layer sizes must be a sequence of integers, got {layer_sizes!r}"
        )
    try:
        sizes = list(layer_sizes)
    except TypeError:
        raise ConstructionError(
            f"Layer sizes must be a sequence of integers, got {layer_sizes!r}"
        ) from None

    if len(sizes) < 2:
        raise ConstructionError(
            f"A network needs at least an input and an output layer, "
            f"got {len(sizes)} layer(s)"
        )
    for index, size in enumerate(sizes):
        if isinstance(size, bool) or not isinstance(size, (int, np.integer)):
            raise ConstructionError(
                f"Layer {index} size must be an integer, got {size!r}"
            )
        if size <= 0:
            raise ConstructionError(
                f"Layer {index} size must be positive, got {size}"
            )
    return [int(size) for size in sizes]


def _validate_learning_rate(rate: float) -> float:
    try:
        rate = float(rate)
    except (TypeError, ValueError):
        raise ConstructionError(
            f"Learning rate must be a number, got {rate!r}"
        ) from None
    if not math.isfinite(rate) or rate <= 0.0:
        raise ConstructionError(
            f"Learning rate must be a positive finite number, got {rate}"
        )
    return rate


def _resolve_transfer(
    transfer: Union[str, TransferFunction]
) -> TransferFunction:
    try:
        return get_transfer_function(transfer)
    except (TypeError, ValueError) as e:
        raise ConstructionError(str(e)) from e


class MultiLayerPerceptron:
    """
    Multi-layer perceptron with online backpropagation.

    Args:
        layer_sizes: Number of neurons per layer, input layer first
        learning_rate: Learning constant applied to every weight update
        transfer_function: Transfer function instance or registry name
        seed: Seed for the weight initialisation
        init_range: Initial weights and biases are drawn from
            ``[-init_range, init_range]``

    Raises:
        ConstructionError: If any argument is malformed. Nothing is
            allocated in that case.

    A network is not meant to be shared between threads without care;
    every public operation holds the network's re-entrant lock for its
    whole duration so concurrent callers are serialised.
    """

    def __init__(
        self,
        layer_sizes: Sequence[int],
        learning_rate: float = DEFAULT_LEARNING_RATE,
        transfer_function: Union[str, TransferFunction] = 'sigmoid',
        seed: Optional[int] = None,
        init_range: float = WEIGHT_INIT_RANGE
    ):
        sizes = _validate_layer_sizes(layer_sizes)
        self._learning_rate = _validate_learning_rate(learning_rate)
        self._transfer = _resolve_transfer(transfer_function)
        if not math.isfinite(init_range) or init_range < 0:
            raise ConstructionError(
                f"init_range must be a non-negative number, got {init_range}"
            )

        rng = np.random.default_rng(seed)
        self.layers: List[Layer] = []
        for i, size in enumerate(sizes):
            n_inputs = sizes[i - 1] if i > 0 else 0
            self.layers.append(Layer.random(size, n_inputs, rng, init_range))

        self._lock = threading.RLock()
        logger.debug(
            f"Built network {sizes} with {self._transfer!r}, "
            f"learning rate {self._learning_rate}"
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def lock(self) -> threading.RLock:
        """Re-entrant lock held by every operation on this network."""
        return self._lock

    @property
    def learning_rate(self) -> float:
        return self._learning_rate

    @learning_rate.setter
    def learning_rate(self, rate: float) -> None:
        rate = _validate_learning_rate(rate)
        with self._lock:
            self._learning_rate = rate

    @property
    def transfer_function(self) -> TransferFunction:
        return self._transfer

    @transfer_function.setter
    def transfer_function(
        self,
        transfer: Union[str, TransferFunction]
    ) -> None:
        transfer = _resolve_transfer(transfer)
        with self._lock:
            self._transfer = transfer

    @property
    def sizes(self) -> List[int]:
        """Number of neurons in each layer."""
        return [layer.size for layer in self.layers]

    @property
    def input_size(self) -> int:
        return self.layers[0].size

    @property
    def output_size(self) -> int:
        return self.layers[-1].size

    @property
    def weights(self) -> List[np.ndarray]:
        """Copies of the weight matrices of layers 1..n."""
        with self._lock:
            return [layer.weight_matrix() for layer in self.layers[1:]]

    @property
    def biases(self) -> List[np.ndarray]:
        """Copies of the bias vectors of layers 1..n."""
        with self._lock:
            return [layer.bias_vector() for layer in self.layers[1:]]

    # ------------------------------------------------------------------
    # Forward pass and training
    # ------------------------------------------------------------------

    def execute(self, inputs: Vector) -> np.ndarray:
        """
        Run the network on one input vector.

        Args:
            inputs: Input values, one per input neuron

        Returns:
            np.ndarray: Activations of the output layer

        Raises:
            DimensionMismatchError: If ``inputs`` has the wrong length
        """
        inputs = as_vector(inputs, self.input_size, 'input')
        with self._lock:
            return self._forward(inputs)

    def _forward(self, inputs: np.ndarray) -> np.ndarray:
        for neuron, x in zip(self.layers[0].neurons, inputs):
            neuron.value = float(x)

        transfer = self._transfer
        previous = inputs
        for layer in self.layers[1:]:
            for neuron in layer.neurons:
                total = float(np.dot(neuron.weights, previous)) + neuron.bias
                neuron.value = transfer.evaluate(total)
            previous = layer.values()

        return previous

    def back_propagate(self, inputs: Vector, targets: Vector) -> float:
        """
        Single-sample backpropagation step.

        Runs the network on ``inputs``, then walks the layers from the
        output back to the input. For each layer the deltas are computed
        from the layer ahead, and only then the layer ahead has its weights
        and biases updated, so deltas always see the weights that produced
        the output.

        Inputs and targets are expected to be scaled to the range of the
        transfer function.

        Args:
            inputs: Input values
            targets: Expected output values

        Returns:
            float: Mean absolute error between the output produced before
            the update and ``targets``

        Raises:
            DimensionMismatchError: If either vector has the wrong length
        """
        inputs = as_vector(inputs, self.input_size, 'input')
        targets = as_vector(targets, self.output_size, 'target')

        with self._lock:
            predicted = self._forward(inputs)
            transfer = self._transfer
            rate = self._learning_rate

            for neuron, target, output in zip(
                self.layers[-1].neurons, targets, predicted
            ):
                neuron.delta = (
                    (target - output) * transfer.evaluate_derivative(output)
                )

            for k in range(len(self.layers) - 2, -1, -1):
                layer = self.layers[k]
                ahead = self.layers[k + 1]

                for i, neuron in enumerate(layer.neurons):
                    error = 0.0
                    for upper in ahead.neurons:
                        error += upper.delta * upper.weights[i]
                    neuron.delta = (
                        error * transfer.evaluate_derivative(neuron.value)
                    )

                values = layer.values()
                for upper in ahead.neurons:
                    upper.weights += rate * upper.delta * values
                    upper.bias += rate * upper.delta

            return float(np.sum(np.abs(predicted - targets)) / len(targets))

    def back_propagate_parallel(
        self,
        samples: Iterable[Sample],
        n_workers: int,
        executor=None,
        timeout: Optional[float] = None
    ) -> float:
        """
        Data-parallel mini-batch step. See :func:`mlpnet.parallel.back_propagate_parallel`.
        """
        from .parallel import back_propagate_parallel

        return back_propagate_parallel(
            self, samples, n_workers, executor=executor, timeout=timeout
        )

    def train(
        self,
        samples: Iterable[Sample],
        max_epochs: int,
        tolerance: Optional[float] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None
    ) -> List[float]:
        """
        Repeatedly backpropagate a training set.

        Backpropagation converges slowly and without guarantees, so training
        stops after ``max_epochs`` or, when ``tolerance`` is given, as soon
        as the mean error changes by less than ``tolerance`` between two
        consecutive epochs.

        Args:
            samples: (inputs, targets) pairs, visited in order every epoch
            max_epochs: Maximum number of passes over ``samples``
            tolerance: Stop when the epoch error changes by less than this
            callback: Called after each epoch with a progress dict

        Returns:
            list: Mean error of each completed epoch

        Raises:
            ValueError: If ``samples`` is empty or ``max_epochs`` < 1
        """
        samples = [
            (as_vector(x, self.input_size, 'input'),
             as_vector(y, self.output_size, 'target'))
            for x, y in samples
        ]
        if not samples:
            raise ValueError("Training requires at least one sample")
        if max_epochs < 1:
            raise ValueError(f"max_epochs must be at least 1, got {max_epochs}")

        history: List[float] = []
        start_time = time.time()

        with self._lock:
            for epoch in range(1, max_epochs + 1):
                error = sum(
                    self.back_propagate(x, y) for x, y in samples
                ) / len(samples)
                history.append(error)

                logger.debug(f"Epoch {epoch}/{max_epochs}: error {error:.6f}")
                if callback is not None:
                    callback({
                        'epoch': epoch,
                        'total_epochs': max_epochs,
                        'error': error,
                        'elapsed_time': time.time() - start_time
                    })

                if (tolerance is not None and len(history) > 1
                        and abs(history[-2] - error) < tolerance):
                    logger.info(
                        f"Training converged after {epoch} epoch(s): "
                        f"error {error:.6f}"
                    )
                    break
            else:
                logger.info(
                    f"Training finished {max_epochs} epoch(s): "
                    f"error {history[-1]:.6f}"
                )

        return history

    # ------------------------------------------------------------------
    # Copying and serialization
    # ------------------------------------------------------------------

    def copy(self) -> 'MultiLayerPerceptron':
        """Independent deep copy of the network."""
        with self._lock:
            return copy.deepcopy(self)

    def __getstate__(self) -> Dict[str, Any]:
        state = self.__dict__.copy()
        del state['_lock']
        return state

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)
        self._lock = threading.RLock()

    def to_dict(self) -> Dict[str, Any]:
        """
        Plain representation of the full network.

        Weight and bias arrays are left as numpy arrays; use
        ``model_persistence.NetworkEncoder`` to write them as JSON.

        Raises:
            PersistenceError: If the transfer function is not registered
        """
        try:
            transfer_name = transfer_function_name(self._transfer)
        except ValueError as e:
            raise PersistenceError(str(e)) from e

        with self._lock:
            return {
                'format_version': FORMAT_VERSION,
                'sizes': self.sizes,
                'learning_rate': self._learning_rate,
                'transfer_function': transfer_name,
                'layers': [
                    {
                        'weights': layer.weight_matrix(),
                        'biases': layer.bias_vector()
                    }
                    for layer in self.layers[1:]
                ]
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MultiLayerPerceptron':
        """
        Rebuild a network written by :meth:`to_dict`.

        Raises:
            PersistenceError: If the data is incomplete or inconsistent
        """
        try:
            version = data['format_version']
            if version != FORMAT_VERSION:
                raise PersistenceError(
                    f"Unsupported network format version {version}"
                )

            network = cls(
                data['sizes'],
                data['learning_rate'],
                data['transfer_function'],
                init_range=0.0
            )
            layers = data['layers']
            if len(layers) != len(network.layers) - 1:
                raise PersistenceError(
                    f"Expected weights for {len(network.layers) - 1} "
                    f"layer(s), found {len(layers)}"
                )

            for k, (layer, stored) in enumerate(
                zip(network.layers[1:], layers), start=1
            ):
                weights = np.asarray(stored['weights'], dtype=np.float64)
                biases = np.asarray(stored['biases'], dtype=np.float64)
                if weights.shape != (layer.size, layer.n_inputs):
                    raise PersistenceError(
                        f"Layer {k} weights have shape {weights.shape}, "
                        f"expected {(layer.size, layer.n_inputs)}"
                    )
                if biases.shape != (layer.size,):
                    raise PersistenceError(
                        f"Layer {k} biases have shape {biases.shape}, "
                        f"expected {(layer.size,)}"
                    )
                for neuron, row, bias in zip(layer.neurons, weights, biases):
                    neuron.weights = row.copy()
                    neuron.bias = float(bias)

        except PersistenceError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed network data: {e}") from e

        return network

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(sizes={self.sizes}, "
            f"learning_rate={self._learning_rate}, "
            f"transfer_function={self._transfer!r})"
        )


Network = MultiLayerPerceptron
