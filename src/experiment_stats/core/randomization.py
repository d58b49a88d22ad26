"""
Randomization Quality Checks for A/B Testing
============================================

Sample Ratio Mismatch (SRM) detection: a chi-squared goodness-of-fit test of
observed visitor counts against the configured traffic allocation.

Example Usage:
--------------
>>> from experiment_stats.core import randomization
>>>
>>> result = randomization.srm_check([
...     randomization.VariantAllocation('control', 50, 520),
...     randomization.VariantAllocation('variant', 50, 480),
... ])
>>> print(f"chi2={result.chi_squared:.2f}, severity={result.severity.value}")
chi2=1.60, severity=none
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from experiment_stats.config import SRM_CRITICAL_P, SRM_WARNING_P
from experiment_stats.core import distributions
from experiment_stats.errors import (
    InsufficientDataError,
    InvalidConfigurationError,
    InvalidInputError,
    ZeroExpectedError,
)

logger = logging.getLogger(__name__)


class SRMSeverity(str, Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class VariantAllocation:
    """Configured traffic share (percent) and observed visitors for one variant."""

    variant_id: str
    expected_share_percent: float
    observed_visitors: int

    def __post_init__(self):
        if self.expected_share_percent < 0:
            raise InvalidConfigurationError(
                f"expected_share_percent for {self.variant_id!r} must be non-negative"
            )
        if self.observed_visitors < 0:
            raise InvalidInputError(
                f"observed_visitors for {self.variant_id!r} must be non-negative"
            )


@dataclass(frozen=True)
class SRMResult:
    chi_squared: float
    p_value: float
    degrees_of_freedom: int
    severity: SRMSeverity
    detected: bool
    expected_ratio: Dict[str, float]
    observed_ratio: Dict[str, float]
    expected_counts: Dict[str, float]
    observed_counts: Dict[str, int]
    recommendation: Optional[str] = None


def classify_severity(p_value: float) -> SRMSeverity:
    if p_value < SRM_CRITICAL_P:
        return SRMSeverity.CRITICAL
    if p_value < SRM_WARNING_P:
        return SRMSeverity.WARNING
    return SRMSeverity.NONE


def srm_check(allocations: Sequence[VariantAllocation]) -> SRMResult:
    """
    Chi-squared test of observed traffic against the configured split.

    Parameters
    ----------
    allocations : sequence of VariantAllocation
        At least two variants. Shares are normalised by their total, so they
        need not sum to 100.

    Returns
    -------
    SRMResult

    Raises
    ------
    InsufficientDataError
        Fewer than two variants, or no visitors at all
    ZeroExpectedError
        A variant's expected count is zero (zero configured share)

    Notes
    -----
    - Severity: critical if p < 0.001, warning if p < 0.05, else none
    - Run this BEFORE looking at outcome metrics; an SRM invalidates them
    - Common causes: bot filtering that hits one arm, redirect failures,
      logging loss in one variant, bucketing bugs
    """
    if len(allocations) < 2:
        raise InsufficientDataError("SRM check needs at least two variants")
    ids = [a.variant_id for a in allocations]
    if len(set(ids)) != len(ids):
        raise InvalidConfigurationError(f"Duplicate variant ids: {ids}")

    total_visitors = sum(a.observed_visitors for a in allocations)
    total_share = sum(a.expected_share_percent for a in allocations)
    if total_visitors == 0:
        raise InsufficientDataError("SRM check needs observed visitors")

    expected_counts: Dict[str, float] = {}
    chi_squared = 0.0
    for allocation in allocations:
        expected = (
            allocation.expected_share_percent * total_visitors / total_share
            if total_share > 0 else 0.0
        )
        if expected == 0:
            raise ZeroExpectedError(
                f"Variant {allocation.variant_id!r} has zero expected traffic "
                f"(share {allocation.expected_share_percent}%)"
            )
        expected_counts[allocation.variant_id] = expected
        chi_squared += (allocation.observed_visitors - expected) ** 2 / expected

    df = len(allocations) - 1
    p_value = distributions.chi_squared_sf(chi_squared, df)
    severity = classify_severity(p_value)
    detected = p_value < SRM_WARNING_P

    recommendation = None
    if detected:
        recommendation = (
            "Traffic split deviates from the configured allocation. Pause analysis "
            "and check bucketing, redirects, bot filtering and event logging per "
            "variant before trusting outcome metrics."
        )
        logger.info(
            "SRM detected: chi2=%.3f df=%d p=%.6f severity=%s",
            chi_squared, df, p_value, severity.value,
        )
    else:
        logger.debug("SRM check passed: chi2=%.3f df=%d p=%.4f", chi_squared, df, p_value)

    return SRMResult(
        chi_squared=chi_squared,
        p_value=p_value,
        degrees_of_freedom=df,
        severity=severity,
        detected=detected,
        expected_ratio={a.variant_id: a.expected_share_percent / total_share for a in allocations},
        observed_ratio={a.variant_id: a.observed_visitors / total_visitors for a in allocations},
        expected_counts=expected_counts,
        observed_counts={a.variant_id: a.observed_visitors for a in allocations},
        recommendation=recommendation,
    )


def srm_check_two_groups(
    n_control: int,
    n_treatment: int,
    expected_ratio: Tuple[float, float] = (50.0, 50.0),
) -> SRMResult:
    """Convenience wrapper for a plain control/treatment split."""
    return srm_check([
        VariantAllocation('control', expected_ratio[0], n_control),
        VariantAllocation('treatment', expected_ratio[1], n_treatment),
    ])


if __name__ == "__main__":
    print("=" * 80)
    print("SRM Check Demo")
    print("=" * 80)

    for label, counts in [("Balanced 50/50", (5100, 4900)), ("Broken 53/47", (53000, 47000))]:
        result = srm_check_two_groups(*counts)
        print(f"\n{label}")
        print(f"  Chi2: {result.chi_squared:.3f}, p={result.p_value:.6f}")
        print(f"  Severity: {result.severity.value}")
        print(f"  SRM detected: {'⚠️' if result.detected else '✅ no'}")
