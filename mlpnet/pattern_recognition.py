"""
pattern_recognition.py
~~~~~~~~~~~~~~~~~~~~~~

Pattern classification on top of a perceptron.

A ``PatternRecognizer`` classifies square images of ``image_size`` x
``image_size`` pixels into one of ``n_patterns`` classes. The network has
one input per pixel, a hidden layer of ``image_size`` neurons and one
output per pattern; the recognized pattern is the output with the highest
activation.

Turning image files into pixel vectors is left to the caller.
"""

import logging
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from .config import DEFAULT_LEARNING_RATE
from .network import MultiLayerPerceptron, Vector
from .transfer import TransferFunction

logger = logging.getLogger(__name__)


class PatternRecognizer:
    """
    Square-image classifier.

    Args:
        image_size: Width (and height) of the images in pixels
        n_patterns: Number of classes
        learning_rate: Learning constant of the underlying network
        transfer_function: Transfer function instance or registry name
        seed: Seed for the network's weight initialisation
    """

    def __init__(
        self,
        image_size: int,
        n_patterns: int,
        learning_rate: float = DEFAULT_LEARNING_RATE,
        transfer_function: Union[str, TransferFunction] = 'sigmoid',
        seed: Optional[int] = None
    ):
        self.image_size = image_size
        self.n_patterns = n_patterns
        self._network = MultiLayerPerceptron(
            [image_size * image_size, image_size, n_patterns],
            learning_rate,
            transfer_function,
            seed=seed
        )

    @classmethod
    def from_network(cls, network: MultiLayerPerceptron) -> 'PatternRecognizer':
        """Wrap an existing (e.g. freshly loaded) network."""
        if len(network.sizes) != 3:
            raise ValueError(
                f"Expected a [pixels, hidden, patterns] network, got {network.sizes}"
            )
        image_size = int(round(network.input_size ** 0.5))
        if image_size * image_size != network.input_size:
            raise ValueError(
                f"Input size {network.input_size} is not a square image"
            )
        if network.sizes[1] != image_size:
            raise ValueError(
                f"Hidden layer of a {image_size}x{image_size} recognizer must "
                f"have {image_size} neurons, got {network.sizes[1]}"
            )
        recognizer = cls.__new__(cls)
        recognizer.image_size = image_size
        recognizer.n_patterns = network.output_size
        recognizer._network = network
        return recognizer

    @property
    def network(self) -> MultiLayerPerceptron:
        return self._network

    def recognize(self, inputs: Vector) -> int:
        """Index of the pattern whose output is strongest (first one on ties)."""
        output = self._network.execute(inputs)
        return int(np.argmax(output))

    def recognize_bitmap(self, bitmap: Sequence[Sequence[bool]]) -> int:
        """
        Recognize a pattern in a black and white bitmap.

        ``bitmap[y][x]`` is truthy for set pixels. Rows are concatenated
        top to bottom, set pixels become 1.0 and the others 0.0.
        """
        return self.recognize(bitmap_to_vector(bitmap))

    def learning_step(self, inputs: Vector, pattern: int) -> float:
        """
        Backpropagate one sample.

        Args:
            inputs: Normalized pixel values
            pattern: Pattern index the sample belongs to

        Returns:
            float: Error of the step
        """
        if (isinstance(pattern, bool)
                or not isinstance(pattern, (int, np.integer))
                or not 0 <= pattern < self.n_patterns):
            raise ValueError(
                f"Pattern must be in [0, {self.n_patterns}), got {pattern}"
            )
        targets = np.zeros(self.n_patterns)
        targets[pattern] = 1.0
        return self._network.back_propagate(inputs, targets)

    def learning_epoch(self, samples: Iterable[Tuple[Vector, int]]) -> float:
        """
        Backpropagate every (inputs, pattern) sample once.

        Returns:
            float: Mean error over the samples, 0.0 when there are none
        """
        error = 0.0
        count = 0
        for inputs, pattern in samples:
            error += self.learning_step(inputs, pattern)
            count += 1

        if count == 0:
            return 0.0
        logger.debug(f"Learning epoch over {count} sample(s): error {error / count:.6f}")
        return error / count


def bitmap_to_vector(bitmap: Sequence[Sequence[bool]]) -> np.ndarray:
    """Flatten a row-major boolean grid into a vector of 0.0 and 1.0."""
    return np.array(
        [1.0 if cell else 0.0 for row in bitmap for cell in row]
    )
