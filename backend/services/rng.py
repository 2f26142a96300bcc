"""
Deterministic pseudo-random stream for the market simulation.

A 32-bit linear congruential generator: same seed, same sequence, on every
platform and every run. Subsystems that need independent reproducibility each
get their own instance derived from a root seed (see ``derive_seed``).
"""
from __future__ import annotations
import math

LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2 ** 32

GAUSSIAN_EPS = 1e-12

# ── Acklam inverse normal CDF coefficients ─────────────────────────────

_A = (
    -3.969683028665376e+01, 2.209460984245205e+02, -2.759285104469687e+02,
    1.383577518672690e+02, -3.066479806614716e+01, 2.506628277459239e+00,
)
_B = (
    -5.447609879822406e+01, 1.615858368580409e+02, -1.556989798598866e+02,
    6.680131188771972e+01, -1.328068155288572e+01,
)
_C = (
    -7.784894002430293e-03, -3.223964580411365e-01, -2.400758277161838e+00,
    -2.549732539343734e+00, 4.374664141464968e+00, 2.938163982698783e+00,
)
_D = (
    7.784695709041462e-03, 3.224671290700398e-01, 2.445134137142996e+00,
    3.754408661907416e+00,
)
_P_LOW = 0.02425
_P_HIGH = 1 - _P_LOW


def norm_s_inv(p: float) -> float:
    """Standard normal quantile for p in (0, 1) (Acklam's rational approximation)."""
    if p <= 0.0 or p >= 1.0:
        raise ValueError(f"p must be in (0, 1), got {p}")

    if p < _P_LOW:
        q = math.sqrt(-2 * math.log(p))
        return (((((_C[0] * q + _C[1]) * q + _C[2]) * q + _C[3]) * q + _C[4]) * q + _C[5]) / \
            ((((_D[0] * q + _D[1]) * q + _D[2]) * q + _D[3]) * q + 1)

    if p > _P_HIGH:
        q = math.sqrt(-2 * math.log(1 - p))
        return -(((((_C[0] * q + _C[1]) * q + _C[2]) * q + _C[3]) * q + _C[4]) * q + _C[5]) / \
            ((((_D[0] * q + _D[1]) * q + _D[2]) * q + _D[3]) * q + 1)

    q = p - 0.5
    r = q * q
    return (((((_A[0] * r + _A[1]) * r + _A[2]) * r + _A[3]) * r + _A[4]) * r + _A[5]) * q / \
        (((((_B[0] * r + _B[1]) * r + _B[2]) * r + _B[3]) * r + _B[4]) * r + 1)


def derive_seed(root_seed: int, offset: int) -> int:
    """Seed for a sub-stream, wrapped to 32 bits."""
    return (int(root_seed) + offset) % LCG_MODULUS


class Rng:
    """Seeded LCG with the derived draws the engine needs."""

    def __init__(self, seed: int):
        self._state = int(seed) % LCG_MODULUS

    @property
    def state(self) -> int:
        return self._state

    @classmethod
    def from_state(cls, state: int) -> "Rng":
        return cls(state)

    def clone(self) -> "Rng":
        """Independent copy positioned at the same point in the stream."""
        return Rng(self._state)

    def next(self) -> float:
        """Uniform in [0, 1)."""
        self._state = (self._state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return self._state / LCG_MODULUS

    def gaussian(self) -> float:
        u = min(1 - GAUSSIAN_EPS, max(GAUSSIAN_EPS, self.next()))
        return norm_s_inv(u)

    def range(self, lo: float, hi: float) -> float:
        """Uniform in [lo, hi)."""
        return lo + self.next() * (hi - lo)

    def int_inclusive(self, lo: int, hi: int) -> int:
        """Uniform integer in [lo, hi]."""
        return lo + math.floor(self.next() * (hi - lo + 1))

    def jitter(self, center: float, spread: float) -> float:
        """Uniform in [center - spread/2, center + spread/2)."""
        return center - spread / 2 + self.next() * spread

    def chance(self, prob: float) -> bool:
        return self.next() < prob
