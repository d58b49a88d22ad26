"""
Numeric Primitives
==================

Distribution functions, descriptive moments and seeded resampling shared by
every analysis component.

The CDFs delegate to ``scipy.stats``; moments follow the sample (ddof=1)
convention and return 0 rather than NaN when fewer than two observations are
available, so degenerate live-traffic inputs fall back cleanly.

Example Usage:
--------------
>>> from experiment_stats.core import distributions
>>>
>>> distributions.normal_cdf(1.96)
0.9750021048517795
>>> distributions.chi_squared_sf(1.6, df=1)
0.2059032107320683
"""

from typing import Optional, Sequence, Union

import numpy as np
from scipy import stats

from experiment_stats.errors import EmptyInputError, InvalidInputError, LengthMismatchError

RandomState = Union[None, int, np.random.SeedSequence, np.random.Generator]


def normal_cdf(x: float) -> float:
    """Standard normal CDF, P(Z <= x)."""
    return float(stats.norm.cdf(x))


def normal_sf(x: float) -> float:
    """Standard normal survival function, 1 - P(Z <= x)."""
    return float(stats.norm.sf(x))


def normal_quantile(p: float) -> float:
    return float(stats.norm.ppf(p))


def student_t_cdf(t: float, df: float) -> float:
    """Student's t CDF with (possibly fractional) degrees of freedom."""
    return float(stats.t.cdf(t, df))


def student_t_sf(t: float, df: float) -> float:
    return float(stats.t.sf(t, df))


def student_t_quantile(p: float, df: float) -> float:
    return float(stats.t.ppf(p, df))


def chi_squared_cdf(x: float, df: int) -> float:
    """Chi-squared CDF; 0 for non-positive x."""
    if x <= 0:
        return 0.0
    return float(stats.chi2.cdf(x, df))


def chi_squared_sf(x: float, df: int) -> float:
    """Chi-squared upper tail, 1 - CDF, computed without cancellation."""
    if x <= 0:
        return 1.0
    return float(stats.chi2.sf(x, df))


def as_array(values: Sequence[float], name: str = 'values') -> np.ndarray:
    """Convert to a 1-D float array, rejecting empty input."""
    arr = np.asarray(values, dtype=float).ravel()
    if arr.size == 0:
        raise EmptyInputError(f"{name} cannot be empty")
    return arr


def mean(values: Sequence[float]) -> float:
    return float(np.mean(as_array(values)))


def variance(values: Sequence[float], ddof: int = 1) -> float:
    """Variance, 0 when there are not enough observations for the ddof."""
    arr = as_array(values)
    if arr.size <= ddof:
        return 0.0
    return float(arr.var(ddof=ddof))


def standard_deviation(values: Sequence[float], ddof: int = 1) -> float:
    return float(np.sqrt(variance(values, ddof=ddof)))


def covariance(x: Sequence[float], y: Sequence[float]) -> float:
    """Sample covariance of two equal-length arrays."""
    x_arr = as_array(x, 'x')
    y_arr = as_array(y, 'y')
    if x_arr.size != y_arr.size:
        raise LengthMismatchError(
            f"x and y must have same length, got {x_arr.size} and {y_arr.size}"
        )
    if x_arr.size < 2:
        return 0.0
    return float(np.cov(x_arr, y_arr, ddof=1)[0, 1])


def correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation, 0 when either side has zero variance."""
    cov = covariance(x, y)
    std_x = standard_deviation(x)
    std_y = standard_deviation(y)
    if std_x == 0 or std_y == 0:
        return 0.0
    # Clip to [-1, 1] against floating-point overshoot
    return float(np.clip(cov / (std_x * std_y), -1.0, 1.0))


def seed_sequence(random_state: RandomState = None) -> np.random.SeedSequence:
    """
    Normalise a seed argument to a ``SeedSequence``.

    None draws fresh OS entropy, so each production call is independent;
    an int gives reproducible streams.
    """
    if isinstance(random_state, np.random.SeedSequence):
        return random_state
    if isinstance(random_state, np.random.Generator):
        return np.random.SeedSequence(int(random_state.integers(0, 2**63 - 1)))
    return np.random.SeedSequence(random_state)


def resample_indices(
    n: int,
    size: int,
    rng: np.random.Generator,
    n_draws: Optional[int] = None,
) -> np.ndarray:
    """
    Draw uniform indices with replacement.

    Returns shape ``(n_draws, size)`` when ``n_draws`` is given, else ``(size,)``.
    """
    if n <= 0:
        raise EmptyInputError("Cannot resample from an empty array")
    shape = (n_draws, size) if n_draws is not None else (size,)
    return rng.integers(0, n, size=shape)


def weighted_resample(
    values: Sequence[float],
    weights: Sequence[float],
    size: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Resample with replacement, each value drawn with probability ∝ weight."""
    arr = as_array(values)
    w = np.asarray(weights, dtype=float).ravel()
    if w.size != arr.size:
        raise LengthMismatchError("values and weights must have same length")
    total = w.sum()
    if total <= 0 or np.any(w < 0):
        raise InvalidInputError("weights must be non-negative with a positive sum")
    return rng.choice(arr, size=size, replace=True, p=w / total)
