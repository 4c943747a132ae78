"""Probability helpers shared by the model, calibrator and fair engine.

All probability-shaped outputs pass through :func:`checked_probability`
so the clamp and NaN policy lives in one place.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

PROB_FLOOR = 0.001
PROB_CEILING = 0.999

# Chebyshev-fitted coefficients for erfc(z) ~ t * exp(-z^2 + P(t)),
# t = 1 / (1 + z/2).  Fractional error below 1.2e-7 everywhere.
_ERFC_COEFFS = (
    -1.26551223,
    1.00002368,
    0.37409196,
    0.09678418,
    -0.18628806,
    0.27886807,
    -1.13520398,
    1.48851587,
    -0.82215223,
    0.17087277,
)


@dataclass(frozen=True)
class ProbabilityResult:
    value: float
    fallback_used: bool = False

    @property
    def ok(self) -> bool:
        return not self.fallback_used


def clamp_probability(value: float) -> float:
    return max(PROB_FLOOR, min(PROB_CEILING, value))


def erf(x: float) -> float:
    """Closed-form rational approximation of the error function."""
    if x == 0.0:
        return 0.0
    z = abs(x)
    t = 1.0 / (1.0 + 0.5 * z)
    poly = 0.0
    for coeff in reversed(_ERFC_COEFFS[1:]):
        poly = coeff + t * poly
    poly = _ERFC_COEFFS[0] + t * poly
    erfc = t * math.exp(-z * z + poly)
    return 1.0 - erfc if x >= 0 else erfc - 1.0


def norm_cdf(x: float) -> float:
    """Standard normal CDF, deterministic and dependency free."""
    if math.isnan(x):
        return math.nan
    y = x * math.sqrt(0.5)
    if y <= -8.0:
        return 0.0
    if y >= 8.0:
        return 1.0
    return 0.5 * (1.0 + erf(y))


def checked_probability(raw: float, fallback: float = 0.5) -> ProbabilityResult:
    """Clamp *raw* into [0.001, 0.999]; substitute *fallback* if not finite.

    A non-finite or non-positive fallback degrades to 0.5.
    """
    if raw is not None and math.isfinite(raw):
        return ProbabilityResult(clamp_probability(raw))
    if fallback is None or not math.isfinite(fallback) or fallback <= 0:
        fallback = 0.5
    return ProbabilityResult(clamp_probability(fallback), fallback_used=True)
