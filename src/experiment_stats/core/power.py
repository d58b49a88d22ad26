"""
Sample Size and Power Planning
==============================

Required sample sizes and achieved power for conversion-rate and
revenue-per-visitor experiments, using Cohen's h / Cohen's d effect sizes and
the statsmodels power solvers.

Example Usage:
--------------
>>> from experiment_stats.core import power
>>>
>>> # Visitors per variant to detect a 10% relative lift on a 5% baseline
>>> n = power.required_samples_binary(p_baseline=0.05, mde=0.10)
>>> print(f"Need {n:,} visitors per variant")
>>>
>>> # Power already reached with 10K visitors per variant
>>> print(f"{power.power_binary(0.05, 0.055, n=10_000):.1%}")
"""

import logging
from dataclasses import dataclass

import numpy as np
from statsmodels.stats.power import tt_ind_solve_power, zt_ind_solve_power

from experiment_stats.errors import InvalidConfigurationError, InvalidInputError

logger = logging.getLogger(__name__)


def _check_alpha_power(alpha: float, power: float = 0.5) -> None:
    if not (0 < alpha < 1):
        raise InvalidConfigurationError(f"alpha must be between 0 and 1, got {alpha}")
    if not (0 < power < 1):
        raise InvalidConfigurationError(f"power must be between 0 and 1, got {power}")


def cohens_h(p1: float, p2: float) -> float:
    """
    Cohen's h for two proportions: h = 2·(arcsin√p2 - arcsin√p1).

    Rule of thumb: 0.2 small, 0.5 medium, 0.8 large.
    """
    if not (0 <= p1 <= 1 and 0 <= p2 <= 1):
        raise InvalidInputError("Proportions must be between 0 and 1")
    return float(2 * (np.arcsin(np.sqrt(p2)) - np.arcsin(np.sqrt(p1))))


def power_binary(p1: float, p2: float, n: int, alpha: float = 0.05) -> float:
    """
    Two-sided power to detect ``p1`` vs ``p2`` with ``n`` visitors per variant.

    Example
    -------
    >>> pwr = power_binary(p1=0.05, p2=0.055, n=10000)
    >>> print(f"Power: {pwr:.1%}")
    """
    if n <= 0:
        raise InvalidInputError("Sample size must be positive")
    _check_alpha_power(alpha)

    return float(zt_ind_solve_power(
        effect_size=cohens_h(p1, p2),
        nobs1=n,
        alpha=alpha,
        alternative='two-sided',
        ratio=1.0,
    ))


def required_samples_binary(
    p_baseline: float,
    mde: float,
    alpha: float = 0.05,
    power: float = 0.80,
) -> int:
    """
    Visitors needed PER VARIANT to detect a relative lift on a conversion rate.

    Parameters
    ----------
    p_baseline : float
        Control conversion rate, strictly between 0 and 1
    mde : float
        Minimum detectable effect as RELATIVE lift (0.10 = +10%)
    alpha : float, default=0.05
        Two-sided significance level
    power : float, default=0.80
        1 - Type II error rate

    Returns
    -------
    int
        Required sample size per variant, rounded up
    """
    if not (0 < p_baseline < 1):
        raise InvalidInputError("p_baseline must be between 0 and 1")
    if mde <= 0:
        raise InvalidInputError("MDE must be positive")
    _check_alpha_power(alpha, power)

    p_treatment = p_baseline * (1 + mde)
    if p_treatment >= 1:
        raise InvalidInputError(
            f"Treatment proportion {p_treatment:.3f} >= 1. Reduce MDE or baseline."
        )

    n_per_group = zt_ind_solve_power(
        effect_size=cohens_h(p_baseline, p_treatment),
        alpha=alpha,
        power=power,
        alternative='two-sided',
    )
    n = int(np.ceil(n_per_group))
    logger.debug("required_samples_binary: p=%.4f mde=%.3f -> n=%d", p_baseline, mde, n)
    return n


def required_samples_continuous(
    baseline_std: float,
    mde: float,
    alpha: float = 0.05,
    power: float = 0.80,
) -> int:
    """
    Visitors needed PER VARIANT to detect an ABSOLUTE shift in a mean.

    Uses Cohen's d = mde / baseline_std with the two-sample t-test solver.
    """
    if baseline_std <= 0:
        raise InvalidInputError("baseline_std must be positive")
    if mde <= 0:
        raise InvalidInputError("MDE must be positive")
    _check_alpha_power(alpha, power)

    n_per_group = tt_ind_solve_power(
        effect_size=mde / baseline_std,
        alpha=alpha,
        power=power,
        alternative='two-sided',
    )
    return int(np.ceil(n_per_group))


def interpret_effect_size(effect_size: float) -> str:
    abs_effect = abs(effect_size)
    if abs_effect > 0.8:
        return "Large"
    elif abs_effect > 0.5:
        return "Medium"
    elif abs_effect > 0.2:
        return "Small"
    else:
        return "Negligible"


@dataclass(frozen=True)
class PowerPlan:
    p_baseline: float
    p_treatment: float
    mde_relative: float
    cohens_h: float
    interpretation: str
    sample_per_variant: int
    sample_total: int
    alpha: float
    power: float


def power_analysis_summary(
    p_baseline: float,
    mde: float,
    n_variants: int = 2,
    alpha: float = 0.05,
    power: float = 0.80,
) -> PowerPlan:
    """Sample-size plan for a conversion experiment with ``n_variants`` arms."""
    if n_variants < 2:
        raise InvalidConfigurationError("An experiment needs at least two variants")
    n = required_samples_binary(p_baseline, mde, alpha, power)
    p_treatment = p_baseline * (1 + mde)
    h = cohens_h(p_baseline, p_treatment)
    return PowerPlan(
        p_baseline=p_baseline,
        p_treatment=p_treatment,
        mde_relative=mde,
        cohens_h=h,
        interpretation=interpret_effect_size(h),
        sample_per_variant=n,
        sample_total=n * n_variants,
        alpha=alpha,
        power=power,
    )


if __name__ == "__main__":
    print("=" * 80)
    print("Power Analysis Demo")
    print("=" * 80)

    plan = power_analysis_summary(p_baseline=0.05, mde=0.10)
    print(f"Baseline: {plan.p_baseline:.1%}")
    print(f"Treatment: {plan.p_treatment:.2%}")
    print(f"Cohen's h: {plan.cohens_h:.4f} ({plan.interpretation})")
    print(f"Sample needed: {plan.sample_per_variant:,} per variant ({plan.sample_total:,} total)")

    n_cont = required_samples_continuous(baseline_std=80, mde=15)
    print(f"\nRevenue (std=$80, MDE=$15): {n_cont:,} per variant")
