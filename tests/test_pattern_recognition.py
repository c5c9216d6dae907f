"""
test_pattern_recognition.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~

Tests for the bitmap pattern recognizer.
"""

import numpy as np
import pytest

from mlpnet.model_persistence import load, save
from mlpnet.network import MultiLayerPerceptron
from mlpnet.pattern_recognition import PatternRecognizer, bitmap_to_vector

HORIZONTAL = [
    [0, 0, 0],
    [1, 1, 1],
    [0, 0, 0],
]
VERTICAL = [
    [0, 1, 0],
    [0, 1, 0],
    [0, 1, 0],
]
DIAGONAL = [
    [1, 0, 0],
    [0, 1, 0],
    [0, 0, 1],
]
PATTERNS = [HORIZONTAL, VERTICAL, DIAGONAL]


@pytest.fixture
def recognizer():
    return PatternRecognizer(3, 3, learning_rate=0.6, seed=5)


@pytest.mark.unit
class TestPatternRecognizer:

    def test_network_shape(self, recognizer):
        assert recognizer.network.sizes == [9, 3, 3]

    def test_bitmap_to_vector_is_row_major(self):
        bitmap = [[True, False], [False, False], [False, True]]
        assert list(bitmap_to_vector(bitmap)) == [1.0, 0.0, 0.0, 0.0, 0.0, 1.0]

    def test_ties_pick_first_pattern(self, recognizer):
        for neuron in recognizer.network.layers[-1].neurons:
            neuron.weights = np.zeros_like(neuron.weights)
            neuron.bias = 0.0
        assert recognizer.recognize(np.zeros(9)) == 0

    def test_learning_step_uses_one_hot_target(self, recognizer):
        x = bitmap_to_vector(VERTICAL)
        output = recognizer.network.execute(x)
        expected = np.mean(np.abs(output - [0.0, 1.0, 0.0]))
        assert recognizer.learning_step(x, 1) == pytest.approx(expected)

    @pytest.mark.parametrize('pattern', [-1, 3, 1.5, True, '1'])
    def test_learning_step_rejects_unknown_pattern(self, recognizer, pattern):
        with pytest.raises(ValueError):
            recognizer.learning_step(np.zeros(9), pattern)

    def test_learning_step_accepts_numpy_integer(self, recognizer):
        """Test that a numpy integer label trains like a plain int."""
        assert recognizer.learning_step(np.zeros(9), np.int64(2)) >= 0.0

    def test_learning_epoch_without_samples(self, recognizer):
        assert recognizer.learning_epoch([]) == 0.0

    def test_bitmap_of_wrong_size(self, recognizer):
        with pytest.raises(ValueError):
            recognizer.recognize_bitmap([[1, 0], [0, 1]])

    def test_from_network(self):
        net = MultiLayerPerceptron([16, 4, 2], 0.5, 'sigmoid')
        recognizer = PatternRecognizer.from_network(net)
        assert recognizer.image_size == 4
        assert recognizer.n_patterns == 2
        assert recognizer.network is net

    @pytest.mark.parametrize('sizes', [[9, 3], [10, 3, 2], [9, 3, 3, 2], [4, 7, 3]])
    def test_from_network_rejects_other_shapes(self, sizes):
        with pytest.raises(ValueError):
            PatternRecognizer.from_network(MultiLayerPerceptron(sizes, 0.5, 'sigmoid'))


@pytest.mark.integration
class TestLearning:

    def test_learns_to_separate_patterns(self, recognizer):
        samples = [(bitmap_to_vector(p), i) for i, p in enumerate(PATTERNS)]

        errors = [recognizer.learning_epoch(samples) for _ in range(2000)]

        assert errors[-1] < errors[0]
        for i, bitmap in enumerate(PATTERNS):
            assert recognizer.recognize_bitmap(bitmap) == i

    def test_survives_persistence(self, recognizer, tmp_path):
        samples = [(bitmap_to_vector(p), i) for i, p in enumerate(PATTERNS)]
        for _ in range(50):
            recognizer.learning_epoch(samples)

        path = str(tmp_path / "patterns.json")
        assert save(recognizer.network, path)
        restored = PatternRecognizer.from_network(load(path))

        for bitmap in PATTERNS:
            assert restored.recognize_bitmap(bitmap) == recognizer.recognize_bitmap(bitmap)
