"""
Random sources for prompt delays and jitter.
"""

from typing import Optional

import numpy as np


class RandomSource:
    """Random source interface."""

    def uniform(self, low: float, high: float) -> float:
        """Draw uniformly from [low, high]."""
        raise NotImplementedError


class NumpyRandomSource(RandomSource):
    """
    RandomSource backed by numpy's Generator.

    Pass a seed for reproducible schedules (simulation, replay).
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(self, low: float, high: float) -> float:
        if high <= low:
            return float(low)
        return float(self._rng.uniform(low, high))
