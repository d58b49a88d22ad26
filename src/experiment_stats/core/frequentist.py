"""
Frequentist Significance Tests for A/B Testing
==============================================

Pairwise control-vs-variant significance: a pooled two-proportion z-test for
conversion rates and Welch's t-test for revenue per visitor.

Both tests take pre-aggregated observations (visitor counts plus conversion
counts or revenue totals), not raw event rows, and return an immutable
``SignificanceResult``.

Example Usage:
--------------
>>> from experiment_stats.core import frequentist
>>>
>>> # Z-test for conversion rates
>>> result = frequentist.z_test_proportions(
...     frequentist.ConversionObservation(visitors=1000, conversions=100),
...     frequentist.ConversionObservation(visitors=1000, conversions=130),
... )
>>> print(f"z={result.z_score:.2f}, p={result.p_value:.4f}")
>>>
>>> # Welch's t-test for revenue
>>> control = frequentist.RevenueObservation(visitors=500, revenue=50_000, revenue_variance=400)
>>> variant = frequentist.RevenueObservation(visitors=500, revenue=53_000, revenue_variance=484)
>>> result = frequentist.welch_ttest(control, variant)
>>> print(f"Improvement: {result.improvement_percent:.1f}%")
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from experiment_stats.config import ConfidenceLevel
from experiment_stats.core import distributions
from experiment_stats.errors import InsufficientDataError, InvalidInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionObservation:
    """Visitors and conversions for one variant."""

    visitors: int
    conversions: int

    def __post_init__(self):
        if self.visitors < 0 or self.conversions < 0:
            raise InvalidInputError("visitors and conversions must be non-negative")
        if self.conversions > self.visitors:
            raise InvalidInputError(
                f"conversions ({self.conversions}) cannot exceed visitors ({self.visitors})"
            )

    @property
    def rate(self) -> float:
        return self.conversions / self.visitors if self.visitors > 0 else 0.0


@dataclass(frozen=True)
class RevenueObservation:
    """
    Revenue aggregate for one variant.

    ``revenue`` is the total over all visitors; ``revenue_variance`` is the
    sample variance of revenue per visitor.
    """

    visitors: int
    revenue: float
    revenue_variance: float

    def __post_init__(self):
        if self.visitors < 0:
            raise InvalidInputError("visitors must be non-negative")
        for name in ('revenue', 'revenue_variance'):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise InvalidInputError(f"{name} must be finite and non-negative, got {value}")

    @property
    def revenue_per_visitor(self) -> float:
        return self.revenue / self.visitors if self.visitors > 0 else 0.0

    @classmethod
    def from_samples(cls, values: Sequence[float]) -> "RevenueObservation":
        """Aggregate raw per-visitor revenue values (one entry per visitor)."""
        arr = distributions.as_array(values, 'values')
        return cls(
            visitors=int(arr.size),
            revenue=float(arr.sum()),
            revenue_variance=distributions.variance(arr, ddof=1),
        )


@dataclass(frozen=True)
class SignificanceResult:
    """
    Outcome of one pairwise comparison.

    ``z_score`` holds the z statistic for proportions and the t statistic for
    revenue. ``confidence_interval`` is in percentage points for proportions and
    in percent of control revenue per visitor for revenue.
    """

    z_score: float
    p_value: float
    is_significant: bool
    improvement_percent: float
    confidence_level: ConfidenceLevel
    control_value: float
    variant_value: float
    confidence_interval: Tuple[float, float]
    degrees_of_freedom: Optional[float] = None


def z_test_proportions(
    control: ConversionObservation,
    variant: ConversionObservation,
    confidence_level: Union[ConfidenceLevel, float] = ConfidenceLevel.P95,
) -> SignificanceResult:
    """
    Two-proportion z-test using the pooled standard error.

    Parameters
    ----------
    control : ConversionObservation
        Control group visitors and conversions
    variant : ConversionObservation
        Treatment group visitors and conversions
    confidence_level : ConfidenceLevel or float, default=0.95
        One of 0.90, 0.95, 0.99

    Returns
    -------
    SignificanceResult

    Notes
    -----
    - Test statistic uses pooled SE: SE = √[p̄(1-p̄)(1/n₁ + 1/n₂)]
    - CI uses non-pooled SE: SE = √[p₁(1-p₁)/n₁ + p₂(1-p₂)/n₂]
    - Zero pooled SE (e.g. no conversions anywhere) gives z = 0, never an error
    - A control rate of zero gives improvement 0%
    """
    level = ConfidenceLevel.coerce(confidence_level)
    if control.visitors == 0 or variant.visitors == 0:
        raise InsufficientDataError("Both groups need at least one visitor")

    n1, n2 = control.visitors, variant.visitors
    p1, p2 = control.rate, variant.rate

    # Pooled proportion under the null
    pooled = (control.conversions + variant.conversions) / (n1 + n2)
    se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))

    z_score = (p2 - p1) / se if se > 0 else 0.0
    p_value = 2 * distributions.normal_sf(abs(z_score))

    critical_z = level.critical_z
    improvement = (p2 - p1) / p1 * 100 if p1 > 0 else 0.0

    se_diff = math.sqrt(p1 * (1 - p1) / n1 + p2 * (1 - p2) / n2)
    margin = critical_z * se_diff

    logger.debug(
        "z-test: p1=%.5f p2=%.5f se=%.6f z=%.4f p=%.5f", p1, p2, se, z_score, p_value
    )

    return SignificanceResult(
        z_score=z_score,
        p_value=min(1.0, p_value),
        is_significant=abs(z_score) >= critical_z,
        improvement_percent=improvement,
        confidence_level=level,
        control_value=p1,
        variant_value=p2,
        confidence_interval=((p2 - p1 - margin) * 100, (p2 - p1 + margin) * 100),
    )


def welch_from_moments(
    control_mean: float,
    control_variance: float,
    control_n: int,
    variant_mean: float,
    variant_variance: float,
    variant_n: int,
    confidence_level: Union[ConfidenceLevel, float] = ConfidenceLevel.P95,
) -> SignificanceResult:
    """
    Welch's t-test from per-group mean, sample variance and count.

    Does NOT assume equal variances. Degrees of freedom follow the
    Welch-Satterthwaite approximation, clamped to at least 1. Means may be
    negative (e.g. covariate-adjusted values); improvement and the relative
    interval are reported as 0 when the control mean is not positive.

    Raises
    ------
    InsufficientDataError
        If either group has one observation or fewer
    """
    level = ConfidenceLevel.coerce(confidence_level)
    n1, n2 = control_n, variant_n
    if n1 <= 1 or n2 <= 1:
        raise InsufficientDataError(
            f"Welch's t-test needs more than one visitor per group, got {n1} and {n2}"
        )

    m1, m2 = control_mean, variant_mean
    se1_sq = control_variance / n1
    se2_sq = variant_variance / n2
    se = math.sqrt(se1_sq + se2_sq)

    if se == 0:
        logger.debug("Welch's t-test: zero standard error, returning null result")
        return SignificanceResult(
            z_score=0.0,
            p_value=1.0,
            is_significant=False,
            improvement_percent=0.0,
            confidence_level=level,
            control_value=m1,
            variant_value=m2,
            confidence_interval=(0.0, 0.0),
            degrees_of_freedom=float(n1 + n2 - 2),
        )

    t_score = (m2 - m1) / se

    # Welch-Satterthwaite degrees of freedom
    df = (se1_sq + se2_sq) ** 2 / (se1_sq ** 2 / (n1 - 1) + se2_sq ** 2 / (n2 - 1))
    df = max(1.0, df)

    p_value = 2 * distributions.student_t_sf(abs(t_score), df)
    critical_t = distributions.student_t_quantile(1 - level.alpha / 2, df)
    improvement = (m2 - m1) / m1 * 100 if m1 > 0 else 0.0

    margin = critical_t * se
    if m1 > 0:
        interval = ((m2 - m1 - margin) / m1 * 100, (m2 - m1 + margin) / m1 * 100)
    else:
        interval = (0.0, 0.0)

    logger.debug(
        "Welch's t-test: mean1=%.4f mean2=%.4f t=%.4f df=%.1f p=%.5f",
        m1, m2, t_score, df, p_value,
    )

    return SignificanceResult(
        z_score=t_score,
        p_value=min(1.0, p_value),
        is_significant=abs(t_score) >= critical_t,
        improvement_percent=improvement,
        confidence_level=level,
        control_value=m1,
        variant_value=m2,
        confidence_interval=interval,
        degrees_of_freedom=df,
    )


def welch_ttest(
    control: RevenueObservation,
    variant: RevenueObservation,
    confidence_level: Union[ConfidenceLevel, float] = ConfidenceLevel.P95,
) -> SignificanceResult:
    """
    Welch's t-test on revenue per visitor.

    Parameters
    ----------
    control : RevenueObservation
        Control group revenue aggregate
    variant : RevenueObservation
        Treatment group revenue aggregate
    confidence_level : ConfidenceLevel or float, default=0.95
        One of 0.90, 0.95, 0.99

    Returns
    -------
    SignificanceResult
        ``z_score`` holds the t statistic, ``degrees_of_freedom`` the Welch df

    Raises
    ------
    InsufficientDataError
        If either group has one visitor or fewer
    """
    return welch_from_moments(
        control.revenue_per_visitor, control.revenue_variance, control.visitors,
        variant.revenue_per_visitor, variant.revenue_variance, variant.visitors,
        confidence_level,
    )


def welch_ttest_samples(
    control: Sequence[float],
    variant: Sequence[float],
    confidence_level: Union[ConfidenceLevel, float] = ConfidenceLevel.P95,
) -> SignificanceResult:
    """Welch's t-test on raw per-visitor values (any sign)."""
    control_arr = distributions.as_array(control, 'control')
    variant_arr = distributions.as_array(variant, 'variant')
    return welch_from_moments(
        float(control_arr.mean()), distributions.variance(control_arr), int(control_arr.size),
        float(variant_arr.mean()), distributions.variance(variant_arr), int(variant_arr.size),
        confidence_level,
    )


if __name__ == "__main__":
    # Demo
    print("=" * 80)
    print("Significance Tests Demo")
    print("=" * 80)

    print("\n📊 Z-TEST (Conversion Rate)")
    print("-" * 80)
    result = z_test_proportions(
        ConversionObservation(visitors=1000, conversions=100),
        ConversionObservation(visitors=1000, conversions=130),
    )
    print(f"Control: {result.control_value:.2%}")
    print(f"Variant: {result.variant_value:.2%}")
    print(f"Improvement: {result.improvement_percent:.1f}%")
    print(f"Z-score: {result.z_score:.4f}")
    print(f"P-value: {result.p_value:.4f}")
    print(f"95% CI: ({result.confidence_interval[0]:.2f}pp, {result.confidence_interval[1]:.2f}pp)")
    print(f"Significant: {'✅' if result.is_significant else '❌'}")

    print("\n📊 WELCH'S T-TEST (Revenue per Visitor)")
    print("-" * 80)
    rng = np.random.default_rng(42)
    result = welch_ttest_samples(rng.normal(100, 20, 500), rng.normal(105, 22, 500))
    print(f"Control RPV: ${result.control_value:.2f}")
    print(f"Variant RPV: ${result.variant_value:.2f}")
    print(f"T-score: {result.z_score:.4f} (df={result.degrees_of_freedom:.1f})")
    print(f"P-value: {result.p_value:.4f}")
    print(f"Significant: {'✅' if result.is_significant else '❌'}")
