"""
sampler.py - Top-K temperature sampling over last-position logits.

The random source is any zero-argument callable returning a float in [0, 1),
so tests can pin the draw.
"""

import numpy as np

from .config import DEFAULT_TEMPERATURE, TOP_K


class TopKSampler:
    def __init__(self, top_k=TOP_K, random_source=None, seed=None):
        self.top_k = top_k
        if random_source is None:
            random_source = np.random.default_rng(seed).random
        self.random_source = random_source

    def distribution(self, logits, temperature=DEFAULT_TEMPERATURE):
        """Return (ids, probs) for the top-K logits, highest first; probs sum to 1."""
        logits = np.asarray(logits, dtype=np.float64).reshape(-1)
        if logits.size == 0:
            raise ValueError("Cannot sample from empty logits")
        k = min(self.top_k, logits.shape[0])
        # Stable sort keeps the lower id first on ties
        ids = np.argsort(-logits, kind="stable")[:k]
        top = logits[ids]

        if temperature <= 0:
            probs = np.zeros(k, dtype=np.float64)
            probs[0] = 1.0
            return ids, probs

        scaled = np.exp((top - top[0]) / temperature)
        probs = scaled / scaled.sum()
        return ids, probs

    def sample(self, logits, temperature=DEFAULT_TEMPERATURE):
        ids, probs = self.distribution(logits, temperature)
        draw = float(self.random_source())

        cumulative = 0.0
        for idx, prob in zip(ids, probs):
            cumulative += prob
            if draw <= cumulative:
                return int(idx)

        # Rounding left the total just under the draw
        return int(ids[0])
