"""
test_parallel.py
~~~~~~~~~~~~~~~~

Tests for data-parallel mini-batch backpropagation.
"""

from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor

import numpy as np
import pytest

from mlpnet.exceptions import DimensionMismatchError, TrainingTimeoutError
from mlpnet.network import MultiLayerPerceptron
from mlpnet.parallel import (
    GradientAccumulator,
    WeightSnapshot,
    accumulate_shard,
    back_propagate_parallel,
    partition
)
from mlpnet.transfer import Sigmoid


def make_batch(n, n_inputs=3, n_outputs=2, seed=0):
    rng = np.random.default_rng(seed)
    batch = []
    for i in range(n):
        y = np.zeros(n_outputs)
        y[i % n_outputs] = 1.0
        batch.append((rng.random(n_inputs), y))
    return batch


class StallingExecutor(Executor):
    """Executor whose tasks never finish."""

    def __init__(self):
        self.futures = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.futures.append(future)
        return future


class RaisingSigmoid(Sigmoid):
    """Sigmoid that fails inside the worker."""

    def evaluate(self, x):
        raise RuntimeError("worker failure")


@pytest.fixture
def network():
    return MultiLayerPerceptron([3, 4, 2], 0.3, Sigmoid(), seed=21)


@pytest.mark.unit
class TestPartition:

    def test_even_split(self):
        assert partition(list(range(6)), 3) == [[0, 1], [2, 3], [4, 5]]

    def test_uneven_split(self):
        shards = partition(list(range(7)), 3)
        assert [len(s) for s in shards] == [3, 2, 2]
        assert sum(shards, []) == list(range(7))

    def test_more_workers_than_samples(self):
        shards = partition([1, 2], 5)
        assert shards == [[1], [2]]


@pytest.mark.unit
class TestGradientAccumulator:

    def test_addition_is_order_independent(self, network):
        snapshot = WeightSnapshot.of(network)
        batch = make_batch(4)
        a = accumulate_shard(snapshot, batch[:2])
        b = accumulate_shard(snapshot, batch[2:])

        ab = a + b
        ba = b + a

        assert ab.n_samples == ba.n_samples == 4
        assert ab.error_sum == pytest.approx(ba.error_sum)
        for x, y in zip(ab.weight_deltas, ba.weight_deltas):
            assert np.allclose(x, y)

    def test_shard_sum_equals_whole(self, network):
        snapshot = WeightSnapshot.of(network)
        batch = make_batch(6)
        whole = accumulate_shard(snapshot, batch)
        parts = accumulate_shard(snapshot, batch[:1]) + accumulate_shard(snapshot, batch[1:])

        for x, y in zip(whole.weight_deltas, parts.weight_deltas):
            assert np.allclose(x, y)
        for x, y in zip(whole.bias_deltas, parts.bias_deltas):
            assert np.allclose(x, y)

    def test_mean_error_of_empty_accumulator(self, network):
        assert GradientAccumulator.zeros_like(WeightSnapshot.of(network)).mean_error == 0.0

    def test_snapshot_is_read_only(self, network):
        snapshot = WeightSnapshot.of(network)
        with pytest.raises(ValueError):
            snapshot.weights[0][0, 0] = 1.0


@pytest.mark.unit
class TestBackPropagateParallel:

    def test_single_sample_matches_back_propagate(self, network):
        """Test that a batch of one gives the online update."""
        online = network.copy()
        x, y = make_batch(1)[0]

        expected_error = online.back_propagate(x, y)
        error = back_propagate_parallel(network, [(x, y)], n_workers=1)

        assert error == pytest.approx(expected_error)
        for a, b in zip(network.weights, online.weights):
            assert np.allclose(a, b)
        for a, b in zip(network.biases, online.biases):
            assert np.allclose(a, b)

    def test_worker_count_does_not_change_result(self, network):
        batch = make_batch(9)
        other = network.copy()

        error_one = back_propagate_parallel(network, batch, n_workers=1)
        error_many = back_propagate_parallel(other, batch, n_workers=4)

        assert error_one == pytest.approx(error_many)
        for a, b in zip(network.weights, other.weights):
            assert np.allclose(a, b)

    def test_updates_sum_of_sample_gradients(self, network):
        """Test that every sample is measured against the same weights."""
        batch = make_batch(3)
        expected = [w.copy() for w in network.weights]
        for x, y in batch:
            probe = network.copy()
            before = probe.weights
            probe.back_propagate(x, y)
            for k, (b, a) in enumerate(zip(before, probe.weights)):
                expected[k] += a - b

        back_propagate_parallel(network, batch, n_workers=3)

        for a, b in zip(network.weights, expected):
            assert np.allclose(a, b)

    def test_error_is_measured_before_update(self, network):
        batch = make_batch(4)
        expected = np.mean([
            np.mean(np.abs(network.execute(x) - y)) for x, y in batch
        ])
        assert network.back_propagate_parallel(batch, 2) == pytest.approx(expected)

    def test_caller_supplied_thread_pool(self, network):
        batch = make_batch(8)
        reference = network.copy()
        back_propagate_parallel(reference, batch, n_workers=2)

        with ThreadPoolExecutor(max_workers=2) as executor:
            back_propagate_parallel(network, batch, n_workers=2, executor=executor)

        for a, b in zip(network.weights, reference.weights):
            assert np.allclose(a, b)

    @pytest.mark.integration
    def test_process_pool(self, network):
        batch = make_batch(6)
        reference = network.copy()
        back_propagate_parallel(reference, batch, n_workers=2)

        with ProcessPoolExecutor(max_workers=2) as executor:
            back_propagate_parallel(network, batch, n_workers=2, executor=executor)

        for a, b in zip(network.weights, reference.weights):
            assert np.allclose(a, b)

    def test_repeated_steps_reduce_error(self, network):
        batch = make_batch(8)
        network.learning_rate = 0.05
        errors = [network.back_propagate_parallel(batch, 4) for _ in range(100)]
        assert errors[-1] < errors[0]

    def test_timeout_leaves_network_untouched(self, network):
        before = network.weights
        executor = StallingExecutor()

        with pytest.raises(TrainingTimeoutError) as exc_info:
            back_propagate_parallel(
                network, make_batch(4), n_workers=2,
                executor=executor, timeout=0.05
            )

        assert exc_info.value.pending == 2
        assert all(f.cancelled() for f in executor.futures)
        for a, b in zip(before, network.weights):
            assert np.array_equal(a, b)

    def test_worker_error_propagates(self, network):
        before = network.weights
        network.transfer_function = RaisingSigmoid()

        with pytest.raises(RuntimeError):
            back_propagate_parallel(network, make_batch(4), n_workers=2)

        for a, b in zip(before, network.weights):
            assert np.array_equal(a, b)

    def test_invalid_worker_count(self, network):
        with pytest.raises(ValueError):
            back_propagate_parallel(network, make_batch(2), n_workers=0)

    def test_empty_batch(self, network):
        with pytest.raises(ValueError):
            back_propagate_parallel(network, [], n_workers=2)

    def test_dimension_mismatch(self, network):
        batch = make_batch(2) + [(np.ones(2), np.ones(2))]
        with pytest.raises(DimensionMismatchError):
            back_propagate_parallel(network, batch, n_workers=2)
