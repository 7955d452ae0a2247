"""Deterministic random number generation for graph-driven generation.

Every node executor receives its own :class:`GameRNG` stream.  Streams are
never advanced globally: :func:`derive_stream` keys a fresh numpy generator on
``(root_seed, node_id)`` through keyed BLAKE2b, so the values a node samples do
not depend on how many draws any other node made, on traversal order, or on
unrelated nodes being added to the graph.

The generator wraps :class:`numpy.random.Generator` (PCG64), whose output for
a given seed is stable across platforms.
"""

from __future__ import annotations

import hashlib
import math
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np


MASK64 = 0xFFFFFFFFFFFFFFFF


# ---------------------------------------------------------------------------
# Stream derivation
# ---------------------------------------------------------------------------


def derive_seed(seed: int, node_id: str) -> int:
    """Return the 64-bit stream seed for ``node_id`` under root ``seed``."""
    key = (int(seed) & MASK64).to_bytes(8, "little")
    digest = hashlib.blake2b(
        node_id.encode("utf-8"), digest_size=8, key=key, person=b"dforge-node"
    ).digest()
    return int.from_bytes(digest, "little")


def derive_stream(seed: int, node_id: str) -> "GameRNG":
    """Pure: the same ``(seed, node_id)`` always yields identical RNG state."""
    return GameRNG(seed=derive_seed(seed, node_id))


# ---------------------------------------------------------------------------
# RNG implementation
# ---------------------------------------------------------------------------


class GameRNG:
    def __init__(self, seed: int) -> None:
        self.initial_seed = int(seed) & MASK64
        self.rng = np.random.default_rng(self.initial_seed)

        self.distributions: Dict[str, Callable[..., float]] = {
            "uniform": self._uniform_dist,
            "bell": self._bell_dist,
            "triangle": self._triangle_dist,
            "power": self._power_dist,
            "exponential": self._exp_dist,
        }

    # ------------------------------------------------------------------
    # basic random helpers
    # ------------------------------------------------------------------
    def get_int(self, a: int, b: int) -> int:
        """Uniform integer in the closed range ``[a, b]``."""
        if a > b:
            raise ValueError("a <= b")
        return int(self.rng.integers(a, b + 1))

    def get_float(self, a: float = 0.0, b: float = 1.0) -> float:
        """Uniform float in ``[a, b)``; returns ``a`` when ``a == b``."""
        if a > b:
            raise ValueError("a <= b")
        val = float(self.rng.random())
        return a + (b - a) * val

    def chance(self, probability: float) -> bool:
        """Bernoulli trial succeeding with ``probability``."""
        if not 0.0 <= probability <= 1.0:
            raise ValueError("probability out of range")
        return self.get_float() < probability

    def choice(self, seq: Sequence[Any]) -> Any:
        """Return a random element from *seq*."""
        if not seq:
            raise ValueError("cannot choose from an empty sequence")
        return seq[self.get_int(0, len(seq) - 1)]

    # ------------------------------------------------------------------
    # distributions
    # ------------------------------------------------------------------
    def _uniform_dist(self) -> float:
        return self.get_float()

    def _bell_dist(self) -> float:
        # Irwin-Hall(4) rescaled into [0, 1]
        return sum(self.get_float() for _ in range(4)) / 4.0

    def _triangle_dist(self) -> float:
        return (self.get_float() + self.get_float()) * 0.5

    def _power_dist(self, power: float = 2.0) -> float:
        if power <= 0:
            raise ValueError("power must be positive")
        return self.get_float() ** power

    def _exp_dist(self, lambd: float = 1.0) -> float:
        if lambd <= 0:
            raise ValueError("lambda must be positive")
        u = self.get_float()
        # Inverse CDF of Exp(lambd) truncated to [0, 1)
        return -math.log(1.0 - u * (1.0 - math.exp(-lambd))) / lambd

    def get_distribution(self, dist_type: str, **kwargs: Any) -> float:
        """Sample a unit-interval value from a named distribution."""
        if dist_type not in self.distributions:
            raise ValueError(f"Unknown dist: {dist_type}")
        dist_func = self.distributions[dist_type]
        if dist_type == "power":
            result = dist_func(power=float(kwargs.get("power", 2.0)))
        elif dist_type == "exponential":
            result = dist_func(lambd=float(kwargs.get("lambd", 1.0)))
        else:
            result = dist_func()
        return float(result)

    # ------------------------------------------------------------------
    # weighted helpers
    # ------------------------------------------------------------------
    def weighted_index(self, weights: Sequence[float]) -> int:
        """Index drawn with probability proportional to ``weights``."""
        if not weights:
            raise ValueError("weights empty")
        if any(w < 0 for w in weights):
            raise ValueError("weights must be non-negative")
        total = math.fsum(weights)
        if total <= 0:
            raise ValueError("weight sum must be positive")
        cdf = np.cumsum(np.asarray(weights, dtype=float))
        cdf[-1] = total
        r = self.get_float(0.0, total)
        idx = int(np.searchsorted(cdf, r, side="right"))
        return min(idx, len(weights) - 1)

    # ------------------------------------------------------------------
    # state management
    # ------------------------------------------------------------------
    def get_state(self) -> Dict[str, Any]:
        return {
            "random_state": self.rng.bit_generator.state,
            "initial_seed": self.initial_seed,
        }

    def set_state(self, state: Dict[str, Any]) -> None:
        if "random_state" in state:
            self.rng.bit_generator.state = state["random_state"]
        if "initial_seed" in state:
            self.initial_seed = state["initial_seed"]

    def reset(self, seed: Optional[int] = None) -> None:
        self.initial_seed = (self.initial_seed if seed is None else int(seed)) & MASK64
        self.rng = np.random.default_rng(self.initial_seed)


__all__ = ["GameRNG", "derive_seed", "derive_stream"]
