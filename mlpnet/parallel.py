"""
parallel.py
~~~~~~~~~~~

Data-parallel mini-batch backpropagation.

The training batch is broken up into equally large shards, one per worker.
Every worker runs the forward and backward passes of its shard against the
same frozen snapshot of the weights and sends back the summed weight and
bias deltas. Once all workers are done (the only synchronization point of
an iteration) the deltas are summed and applied to the network in one go.

Workers never touch the network itself, so any executor works: threads by
default, or a caller-supplied ``ProcessPoolExecutor``.
"""

import logging
import concurrent.futures
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from functools import reduce
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .exceptions import TrainingTimeoutError
from .network import MultiLayerPerceptron, Sample, as_vector
from .transfer import TransferFunction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeightSnapshot:
    """Read-only copy of the weights every worker trains against."""

    weights: Tuple[np.ndarray, ...]
    biases: Tuple[np.ndarray, ...]
    transfer: TransferFunction

    @classmethod
    def of(cls, network: MultiLayerPerceptron) -> 'WeightSnapshot':
        weights = tuple(network.weights)
        biases = tuple(network.biases)
        for array in weights + biases:
            array.setflags(write=False)
        return cls(weights, biases, network.transfer_function)


@dataclass
class GradientAccumulator:
    """Summed deltas of a group of samples."""

    weight_deltas: List[np.ndarray]
    bias_deltas: List[np.ndarray]
    error_sum: float = 0.0
    n_samples: int = 0

    @classmethod
    def zeros_like(cls, snapshot: WeightSnapshot) -> 'GradientAccumulator':
        return cls(
            [np.zeros_like(w) for w in snapshot.weights],
            [np.zeros_like(b) for b in snapshot.biases]
        )

    def __add__(self, other: 'GradientAccumulator') -> 'GradientAccumulator':
        return GradientAccumulator(
            [a + b for a, b in zip(self.weight_deltas, other.weight_deltas)],
            [a + b for a, b in zip(self.bias_deltas, other.bias_deltas)],
            self.error_sum + other.error_sum,
            self.n_samples + other.n_samples
        )

    @property
    def mean_error(self) -> float:
        if self.n_samples == 0:
            return 0.0
        return self.error_sum / self.n_samples


def accumulate_shard(
    snapshot: WeightSnapshot,
    shard: Sequence[Tuple[np.ndarray, np.ndarray]]
) -> GradientAccumulator:
    """
    Forward and backward passes over one shard.

    Runs in a worker, so it only reads ``snapshot`` and returns its
    result instead of writing anywhere.
    """
    transfer = snapshot.transfer
    acc = GradientAccumulator.zeros_like(snapshot)

    for inputs, targets in shard:
        values = [inputs]
        for w, b in zip(snapshot.weights, snapshot.biases):
            previous = values[-1]
            values.append(np.array([
                transfer.evaluate(float(np.dot(w[i], previous)) + float(b[i]))
                for i in range(len(b))
            ]))

        predicted = values[-1]
        delta = np.array([
            (t - y) * transfer.evaluate_derivative(y)
            for t, y in zip(targets, predicted)
        ])

        # values[k] feeds snapshot.weights[k]
        for k in range(len(snapshot.weights) - 1, -1, -1):
            acc.weight_deltas[k] += np.outer(delta, values[k])
            acc.bias_deltas[k] += delta
            if k > 0:
                errors = snapshot.weights[k].T @ delta
                delta = np.array([
                    e * transfer.evaluate_derivative(v)
                    for e, v in zip(errors, values[k])
                ])

        acc.error_sum += float(
            np.sum(np.abs(predicted - targets)) / len(targets)
        )
        acc.n_samples += 1

    return acc


def partition(samples: Sequence, n_shards: int) -> List[Sequence]:
    """Split ``samples`` into at most ``n_shards`` contiguous, non-empty shards."""
    size, extra = divmod(len(samples), n_shards)
    shards = []
    start = 0
    for i in range(n_shards):
        stop = start + size + (1 if i < extra else 0)
        if stop > start:
            shards.append(samples[start:stop])
        start = stop
    return shards


def back_propagate_parallel(
    network: MultiLayerPerceptron,
    samples: Iterable[Sample],
    n_workers: int,
    executor: Optional[Executor] = None,
    timeout: Optional[float] = None
) -> float:
    """
    One iteration of data-parallel mini-batch backpropagation.

    Args:
        network: Network to train; it stays locked for the whole iteration
        samples: (inputs, targets) pairs making up the batch
        n_workers: Number of shards the batch is split into
        executor: Executor to run the shards on. A thread pool sized to
            the number of shards is created (and shut down) when omitted.
        timeout: Maximum number of seconds to wait at the barrier

    Returns:
        float: Mean over the batch of each sample's mean absolute error,
        measured before the update

    Raises:
        ValueError: If ``n_workers`` < 1 or the batch is empty
        DimensionMismatchError: If any sample has the wrong dimensions
        TrainingTimeoutError: If the workers miss the deadline; the
            network is left untouched
    """
    if n_workers < 1:
        raise ValueError(f"n_workers must be at least 1, got {n_workers}")

    batch = [
        (as_vector(x, network.input_size, 'input'),
         as_vector(y, network.output_size, 'target'))
        for x, y in samples
    ]
    if not batch:
        raise ValueError("Parallel training requires at least one sample")

    with network.lock:
        snapshot = WeightSnapshot.of(network)
        rate = network.learning_rate
        shards = partition(batch, n_workers)

        own_executor = executor is None
        if own_executor:
            executor = ThreadPoolExecutor(max_workers=len(shards))

        timed_out = False
        try:
            futures = [
                executor.submit(accumulate_shard, snapshot, shard)
                for shard in shards
            ]
            done, not_done = concurrent.futures.wait(futures, timeout=timeout)
            if not_done:
                timed_out = True
                for future in not_done:
                    future.cancel()
                logger.error(
                    f"{len(not_done)} of {len(futures)} worker(s) missed "
                    f"the {timeout}s deadline"
                )
                raise TrainingTimeoutError(timeout, len(not_done))

            total = reduce(
                lambda a, b: a + b,
                (future.result() for future in futures)
            )
        finally:
            if own_executor:
                executor.shutdown(wait=not timed_out, cancel_futures=True)

        for layer, dw, db in zip(
            network.layers[1:], total.weight_deltas, total.bias_deltas
        ):
            for neuron, row, bias_delta in zip(layer.neurons, dw, db):
                neuron.weights += rate * row
                neuron.bias += rate * float(bias_delta)

    logger.debug(
        f"Parallel step over {total.n_samples} sample(s) in "
        f"{len(shards)} shard(s): error {total.mean_error:.6f}"
    )
    return total.mean_error
