"""
Bootstrap Confidence Intervals
==============================

Non-parametric confidence intervals by resampling with replacement. Works for
any metric without distributional assumptions, which makes it the fallback for
skewed revenue and order-value data.

Resampling is vectorised in chunks. Each chunk draws from its own child
``SeedSequence`` spawned from the call's root seed, so a seeded call returns
the same interval whether the chunks run serially or on a thread pool
(``n_jobs > 1``).

Example Usage:
--------------
>>> from experiment_stats.core import bootstrap
>>> import numpy as np
>>>
>>> revenue = np.random.default_rng(0).lognormal(4, 1, 500)
>>> result = bootstrap.bootstrap_confidence_interval(revenue, random_state=42)
>>> print(f"95% CI: ({result.lower_bound:.2f}, {result.upper_bound:.2f})")
>>>
>>> # Difference of means, variant - control
>>> control = np.random.default_rng(1).lognormal(4, 1, 500)
>>> result = bootstrap.bootstrap_difference(control, revenue, random_state=42, n_jobs=4)
>>> print(f"Excludes zero: {result.excludes_zero}")
"""

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Sequence, Union

import numpy as np

from experiment_stats.config import (
    DEFAULT_RESAMPLES,
    MIN_PRODUCTION_RESAMPLES,
    ConfidenceLevel,
)
from experiment_stats.core import distributions
from experiment_stats.errors import (
    InsufficientDataError,
    InvalidConfigurationError,
    InvalidInputError,
)

logger = logging.getLogger(__name__)

# Upper bound on floats materialised per chunk (chunk rows x sample size)
_MAX_CHUNK_CELLS = 2_000_000
_MAX_CHUNK_ROWS = 1_000

INTERVAL_METHODS = ('percentile', 'basic', 'bca')


class LowResampleCountWarning(UserWarning):
    """Bootstrap estimate computed with fewer resamples than recommended."""


@dataclass(frozen=True)
class BootstrapResult:
    """
    Bootstrap interval estimate.

    ``low_resample_count`` is True when fewer than the recommended 10,000
    resamples were used; such intervals are fine for tests, not for decisions.
    """

    point_estimate: float
    lower_bound: float
    upper_bound: float
    confidence_level: float
    standard_error: float
    resample_count: int
    method: str = 'percentile'
    low_resample_count: bool = False

    @property
    def excludes_zero(self) -> bool:
        return not (self.lower_bound <= 0 <= self.upper_bound)


def _coerce_confidence(confidence_level: Union[ConfidenceLevel, float]) -> float:
    if isinstance(confidence_level, ConfidenceLevel):
        return confidence_level.value
    level = float(confidence_level)
    if not (0 < level < 1):
        raise InvalidConfigurationError(
            f"confidence_level must be between 0 and 1, got {confidence_level}"
        )
    return level


def _flag_low_resample_count(n_resamples: int) -> bool:
    if n_resamples < 1:
        raise InvalidConfigurationError("n_resamples must be positive")
    if n_resamples >= MIN_PRODUCTION_RESAMPLES:
        return False
    message = (
        f"Bootstrap run with {n_resamples} resamples; at least "
        f"{MIN_PRODUCTION_RESAMPLES} are recommended for production estimates"
    )
    warnings.warn(message, LowResampleCountWarning, stacklevel=3)
    logger.warning(message)
    return True


def _chunk_sizes(n_resamples: int, sample_size: int) -> List[int]:
    rows = max(1, min(_MAX_CHUNK_ROWS, _MAX_CHUNK_CELLS // max(1, sample_size)))
    full, rest = divmod(n_resamples, rows)
    return [rows] * full + ([rest] if rest else [])


def _run_resamples(
    draw: Callable[[np.random.Generator, int], np.ndarray],
    n_resamples: int,
    sample_size: int,
    random_state: distributions.RandomState,
    n_jobs: int,
) -> np.ndarray:
    """Map ``draw(rng, rows)`` over chunks and concatenate the statistics."""
    sizes = _chunk_sizes(n_resamples, sample_size)
    children = distributions.seed_sequence(random_state).spawn(len(sizes))
    tasks = [(np.random.default_rng(child), size) for child, size in zip(children, sizes)]

    if n_jobs > 1 and len(tasks) > 1:
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            parts = list(pool.map(lambda task: draw(*task), tasks))
    else:
        parts = [draw(rng, size) for rng, size in tasks]

    return np.concatenate(parts)


def _mean_sampler(data: np.ndarray) -> Callable[[np.random.Generator, int], np.ndarray]:
    def draw(rng: np.random.Generator, rows: int) -> np.ndarray:
        idx = distributions.resample_indices(data.size, data.size, rng, n_draws=rows)
        return data[idx].mean(axis=1)
    return draw


def _percentile_indices(count: int, alpha: float):
    lower_idx = int(np.floor(count * (alpha / 2)))
    upper_idx = int(np.floor(count * (1 - alpha / 2)))
    return min(lower_idx, count - 1), min(upper_idx, count - 1)


def _percentile_interval(sorted_stats: np.ndarray, alpha: float):
    lower_idx, upper_idx = _percentile_indices(sorted_stats.size, alpha)
    return float(sorted_stats[lower_idx]), float(sorted_stats[upper_idx])


def _basic_interval(sorted_stats: np.ndarray, estimate: float, alpha: float):
    # Pivot: reflect the percentile bounds around the point estimate
    lower_idx, upper_idx = _percentile_indices(sorted_stats.size, alpha)
    return (
        float(2 * estimate - sorted_stats[upper_idx]),
        float(2 * estimate - sorted_stats[lower_idx]),
    )


def _bca_interval(data: np.ndarray, sorted_stats: np.ndarray, estimate: float, alpha: float):
    """Bias-corrected and accelerated interval with jackknife acceleration."""
    count = sorted_stats.size

    # Bias correction; keep the proportion off 0 and 1 so z0 stays finite
    below = np.count_nonzero(sorted_stats < estimate) / count
    below = float(np.clip(below, 0.5 / count, 1 - 0.5 / count))
    z0 = distributions.normal_quantile(below)

    # Acceleration from leave-one-out means
    if data.size > 1:
        jackknife = (data.sum() - data) / (data.size - 1)
        diff = jackknife.mean() - jackknife
        den = float(np.sum(diff ** 2))
        accel = float(np.sum(diff ** 3)) / (6 * den ** 1.5) if den > 0 else 0.0
    else:
        accel = 0.0

    bounds = []
    for z_alpha in (distributions.normal_quantile(alpha / 2),
                    distributions.normal_quantile(1 - alpha / 2)):
        adjusted = distributions.normal_cdf(z0 + (z0 + z_alpha) / (1 - accel * (z0 + z_alpha)))
        idx = int(np.clip(np.floor(count * adjusted), 0, count - 1))
        bounds.append(float(sorted_stats[idx]))
    return bounds[0], bounds[1]


def bootstrap_confidence_interval(
    data: Sequence[float],
    confidence_level: Union[ConfidenceLevel, float] = 0.95,
    n_resamples: int = DEFAULT_RESAMPLES,
    method: str = 'percentile',
    random_state: distributions.RandomState = None,
    n_jobs: int = 1,
) -> BootstrapResult:
    """
    Bootstrap confidence interval for the mean of ``data``.

    Parameters
    ----------
    data : array-like
        Observations (e.g. revenue per visitor)
    confidence_level : float, default=0.95
        Interval coverage, strictly between 0 and 1
    n_resamples : int, default=10000
        Number of bootstrap resamples. Fewer than 10,000 emits
        ``LowResampleCountWarning`` and flags the result.
    method : str, default='percentile'
        'percentile', 'basic' (pivot) or 'bca' (bias-corrected and accelerated)
    random_state : int or SeedSequence, optional
        Seed for reproducibility. None draws fresh entropy per call.
    n_jobs : int, default=1
        Worker threads for the resampling loop

    Returns
    -------
    BootstrapResult

    Notes
    -----
    Percentile bounds are the order statistics at floor(B·α/2) and
    floor(B·(1-α/2)) of the sorted resampled means. The standard error is
    the population standard deviation of the resampled means.
    """
    arr = distributions.as_array(data, 'data')
    level = _coerce_confidence(confidence_level)
    if method not in INTERVAL_METHODS:
        raise InvalidConfigurationError(
            f"method must be one of {INTERVAL_METHODS}, got {method!r}"
        )
    low = _flag_low_resample_count(n_resamples)

    estimate = float(arr.mean())
    means = np.sort(_run_resamples(_mean_sampler(arr), n_resamples, arr.size, random_state, n_jobs))
    alpha = 1 - level

    if method == 'bca':
        lower, upper = _bca_interval(arr, means, estimate, alpha)
    elif method == 'basic':
        lower, upper = _basic_interval(means, estimate, alpha)
    else:
        lower, upper = _percentile_interval(means, alpha)

    logger.debug(
        "Bootstrap %s CI: estimate=%.4f [%.4f, %.4f] B=%d", method, estimate, lower, upper, n_resamples
    )

    return BootstrapResult(
        point_estimate=estimate,
        lower_bound=lower,
        upper_bound=upper,
        confidence_level=level,
        standard_error=float(means.std()),
        resample_count=n_resamples,
        method=method,
        low_resample_count=low,
    )


def bootstrap_difference(
    control: Sequence[float],
    variant: Sequence[float],
    confidence_level: Union[ConfidenceLevel, float] = 0.95,
    n_resamples: int = DEFAULT_RESAMPLES,
    random_state: distributions.RandomState = None,
    n_jobs: int = 1,
) -> BootstrapResult:
    """
    Percentile interval for mean(variant) - mean(control).

    Each resample redraws both groups independently.
    """
    control_arr = distributions.as_array(control, 'control')
    variant_arr = distributions.as_array(variant, 'variant')
    level = _coerce_confidence(confidence_level)
    low = _flag_low_resample_count(n_resamples)

    control_draw = _mean_sampler(control_arr)
    variant_draw = _mean_sampler(variant_arr)

    def draw(rng, rows):
        return variant_draw(rng, rows) - control_draw(rng, rows)

    diffs = np.sort(_run_resamples(
        draw, n_resamples, max(control_arr.size, variant_arr.size), random_state, n_jobs
    ))
    lower, upper = _percentile_interval(diffs, 1 - level)

    return BootstrapResult(
        point_estimate=float(variant_arr.mean() - control_arr.mean()),
        lower_bound=lower,
        upper_bound=upper,
        confidence_level=level,
        standard_error=float(diffs.std()),
        resample_count=n_resamples,
        low_resample_count=low,
    )


def bootstrap_ratio(
    control: Sequence[float],
    variant: Sequence[float],
    confidence_level: Union[ConfidenceLevel, float] = 0.95,
    n_resamples: int = DEFAULT_RESAMPLES,
    random_state: distributions.RandomState = None,
    n_jobs: int = 1,
) -> BootstrapResult:
    """
    Percentile interval for relative lift, (mean_v / mean_c - 1) · 100.

    Resamples whose control mean is not positive are dropped, so
    ``resample_count`` reports the number of usable resamples.
    """
    control_arr = distributions.as_array(control, 'control')
    variant_arr = distributions.as_array(variant, 'variant')
    level = _coerce_confidence(confidence_level)
    low = _flag_low_resample_count(n_resamples)

    control_draw = _mean_sampler(control_arr)
    variant_draw = _mean_sampler(variant_arr)

    def draw(rng, rows):
        c_means = control_draw(rng, rows)
        v_means = variant_draw(rng, rows)
        keep = c_means > 0
        return (v_means[keep] / c_means[keep] - 1) * 100

    ratios = np.sort(_run_resamples(
        draw, n_resamples, max(control_arr.size, variant_arr.size), random_state, n_jobs
    ))
    if ratios.size == 0:
        raise InsufficientDataError("Control mean was non-positive in every resample")

    control_mean = float(control_arr.mean())
    estimate = (float(variant_arr.mean()) / control_mean - 1) * 100 if control_mean > 0 else 0.0
    lower, upper = _percentile_interval(ratios, 1 - level)

    return BootstrapResult(
        point_estimate=estimate,
        lower_bound=lower,
        upper_bound=upper,
        confidence_level=level,
        standard_error=float(ratios.std()),
        resample_count=int(ratios.size),
        low_resample_count=low,
    )


def bootstrap_conversion_rate(
    control_conversions: int,
    control_visitors: int,
    variant_conversions: int,
    variant_visitors: int,
    confidence_level: Union[ConfidenceLevel, float] = 0.95,
    n_resamples: int = DEFAULT_RESAMPLES,
    random_state: distributions.RandomState = None,
    n_jobs: int = 1,
) -> BootstrapResult:
    """
    Parametric bootstrap for a conversion-rate difference, in percentage points.

    Each resample redraws each group's conversions from a binomial at the
    observed rate.
    """
    if control_visitors <= 0 or variant_visitors <= 0:
        raise InsufficientDataError("Both groups need at least one visitor")
    if not (0 <= control_conversions <= control_visitors
            and 0 <= variant_conversions <= variant_visitors):
        raise InvalidInputError("conversions must be between 0 and visitors")
    level = _coerce_confidence(confidence_level)
    low = _flag_low_resample_count(n_resamples)

    control_rate = control_conversions / control_visitors
    variant_rate = variant_conversions / variant_visitors

    def draw(rng, rows):
        c_rates = rng.binomial(control_visitors, control_rate, size=rows) / control_visitors
        v_rates = rng.binomial(variant_visitors, variant_rate, size=rows) / variant_visitors
        return (v_rates - c_rates) * 100

    diffs = np.sort(_run_resamples(draw, n_resamples, 1, random_state, n_jobs))
    lower, upper = _percentile_interval(diffs, 1 - level)

    return BootstrapResult(
        point_estimate=(variant_rate - control_rate) * 100,
        lower_bound=lower,
        upper_bound=upper,
        confidence_level=level,
        standard_error=float(diffs.std()),
        resample_count=n_resamples,
        low_resample_count=low,
    )


if __name__ == "__main__":
    print("=" * 80)
    print("Bootstrap Demo")
    print("=" * 80)

    rng = np.random.default_rng(42)
    control = rng.lognormal(4, 1, 1000)
    variant = rng.lognormal(4.1, 1, 1000)

    for method in INTERVAL_METHODS:
        result = bootstrap_confidence_interval(variant, method=method, random_state=42)
        print(f"{method:>10}: {result.point_estimate:.2f} "
              f"[{result.lower_bound:.2f}, {result.upper_bound:.2f}] SE={result.standard_error:.2f}")

    result = bootstrap_difference(control, variant, random_state=42, n_jobs=4)
    print(f"\nDifference: {result.point_estimate:.2f} "
          f"[{result.lower_bound:.2f}, {result.upper_bound:.2f}] "
          f"{'✅' if result.excludes_zero else '❌'}")

    result = bootstrap_conversion_rate(100, 1000, 130, 1000, random_state=42)
    print(f"Conversion diff: {result.point_estimate:.2f}pp "
          f"[{result.lower_bound:.2f}pp, {result.upper_bound:.2f}pp]")
