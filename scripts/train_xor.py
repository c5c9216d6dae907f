#!/usr/bin/env python3
"""
Train a small perceptron on XOR and save it.

Usage:
    python scripts/train_xor.py [output_path]

The script will:
1. Build a [2, 2, 1] sigmoid network
2. Train it on the four XOR pairs until the error stops moving
3. Check that every pair is classified correctly
4. Save the network as JSON (default: models/xor.json)

A 2-2-1 network occasionally stalls on a plateau for an unlucky weight
initialisation; the script then starts over with the next seed.
"""

import os
import sys
import logging
from typing import List, Optional, Tuple

from mlpnet.config import configure_logging
from mlpnet.model_persistence import save, load
from mlpnet.network import MultiLayerPerceptron

logger = logging.getLogger(__name__)

XOR_SAMPLES: List[Tuple[List[float], List[float]]] = [
    ([0.0, 0.0], [0.0]),
    ([0.0, 1.0], [1.0]),
    ([1.0, 0.0], [1.0]),
    ([1.0, 1.0], [0.0]),
]


def classifies_xor(net: MultiLayerPerceptron) -> bool:
    """True if every XOR pair lands on the right side of 0.5."""
    for inputs, (target,) in XOR_SAMPLES:
        output = net.execute(inputs)[0]
        if (output > 0.5) != (target > 0.5):
            return False
    return True


def train_xor(
    epochs: int = 6000,
    learning_rate: float = 0.5,
    seed: int = 0,
    restarts: int = 5
) -> Optional[MultiLayerPerceptron]:
    """
    Train XOR networks until one classifies every pair.

    Returns:
        The first network that learned XOR, or None
    """
    for attempt in range(restarts):
        net = MultiLayerPerceptron(
            [2, 2, 1], learning_rate, 'sigmoid', seed=seed + attempt
        )
        history = net.train(XOR_SAMPLES, epochs, tolerance=1e-9)
        if classifies_xor(net):
            logger.info(
                f"Learned XOR with seed {seed + attempt} after "
                f"{len(history)} epoch(s), error {history[-1]:.4f}"
            )
            return net
        logger.warning(
            f"Seed {seed + attempt} stalled at error {history[-1]:.4f}, retrying"
        )
    return None


def main(output_path: str = os.path.join('models', 'xor.json')) -> int:
    """Main training function."""
    configure_logging()

    net = train_xor()
    if net is None:
        print("❌ Error: no initialisation learned XOR")
        return 1

    for inputs, target in XOR_SAMPLES:
        print(f"   {inputs} -> {net.execute(inputs)[0]:.4f} (expected {target[0]})")

    if not save(net, output_path):
        print(f"❌ Error: could not save network to {output_path}")
        return 1

    # Verify the saved copy behaves the same
    restored = load(output_path)
    if restored is None or not classifies_xor(restored):
        print(f"❌ Error: saved network at {output_path} does not reload")
        return 1

    print(f"✅ Saved XOR network to {output_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main(*sys.argv[1:2]))
