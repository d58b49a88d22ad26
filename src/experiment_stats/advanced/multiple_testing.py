"""
Multiple Testing Correction
============================

Controls the family-wise error rate (FWER) or false discovery rate (FDR) when
an experiment with three or more variants produces several pairwise
comparisons at once.

Key Concepts:
- **FWER**: Probability of making ≥1 false positive
- **FDR**: Expected proportion of false positives among rejections

Methods:
- **Holm-Bonferroni**: Step-down FWER control, uniformly more powerful than
  Bonferroni (default)
- **Bonferroni**: FWER control at alpha / m for every comparison
- **Benjamini-Hochberg**: FDR control for exploratory analysis

Example Usage:
--------------
>>> from experiment_stats.advanced import multiple_testing as mt
>>>
>>> comparisons = [
...     mt.PairwiseComparison('control', 'variant_a', 0.001),
...     mt.PairwiseComparison('control', 'variant_b', 0.01),
...     mt.PairwiseComparison('control', 'variant_c', 0.04),
...     mt.PairwiseComparison('control', 'variant_d', 0.06),
... ]
>>> result = mt.holm_bonferroni(comparisons, alpha=0.05)
>>> print([c.is_significant for c in result.comparisons])
[True, True, False, False]
"""

import logging
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, List, Mapping, Sequence, Tuple, Union

import numpy as np
from statsmodels.stats.multitest import multipletests

from experiment_stats.config import DEFAULT_ALPHA, ConfidenceLevel
from experiment_stats.core import frequentist
from experiment_stats.errors import (
    EmptyInputError,
    InvalidConfigurationError,
    InvalidInputError,
)

logger = logging.getLogger(__name__)

COMPARISON_SEPARATOR = '_vs_'


@dataclass(frozen=True)
class PairwiseComparison:
    """Raw p-value from one comparison between two variants."""

    label_a: str
    label_b: str
    raw_p_value: float

    def __post_init__(self):
        if not (0 <= self.raw_p_value <= 1):
            raise InvalidInputError(
                f"p-value for {self.label} must be between 0 and 1, got {self.raw_p_value}"
            )

    @property
    def label(self) -> str:
        return f"{self.label_a}{COMPARISON_SEPARATOR}{self.label_b}"

    @classmethod
    def from_label(cls, label: str, raw_p_value: float) -> "PairwiseComparison":
        """Build from a ``"a_vs_b"`` identifier; labels without a separator pair with 'unknown'."""
        parts = label.split(COMPARISON_SEPARATOR)
        if len(parts) == 2:
            return cls(parts[0], parts[1], raw_p_value)
        return cls(label, 'unknown', raw_p_value)


@dataclass(frozen=True)
class HolmComparison:
    comparison: PairwiseComparison
    rank: int
    adjusted_alpha: float
    adjusted_p_value: float
    is_significant: bool


@dataclass(frozen=True)
class HolmResult:
    """Holm-Bonferroni outcome; ``comparisons`` keeps the input order."""

    comparisons: Tuple[HolmComparison, ...]
    family_wise_error_rate: float
    significant_count: int
    message: str

    @property
    def has_significant_result(self) -> bool:
        return self.significant_count > 0


@dataclass(frozen=True)
class CorrectionResult:
    """Bonferroni or Benjamini-Hochberg outcome, in input order."""

    method: str
    comparisons: Tuple[PairwiseComparison, ...]
    thresholds: Tuple[float, ...]
    adjusted_p_values: Tuple[float, ...]
    significant: Tuple[bool, ...]
    alpha: float

    @property
    def significant_count(self) -> int:
        return sum(self.significant)

    @property
    def significant_comparisons(self) -> List[str]:
        return [c.label for c, sig in zip(self.comparisons, self.significant) if sig]


@dataclass(frozen=True)
class CorrectionRecommendation:
    method: str
    reason: str


def _validate(comparisons: Sequence[PairwiseComparison], alpha: float) -> np.ndarray:
    if len(comparisons) == 0:
        raise EmptyInputError("No comparisons provided")
    if not (0 < alpha < 1):
        raise InvalidConfigurationError(f"alpha must be between 0 and 1, got {alpha}")
    return np.array([c.raw_p_value for c in comparisons], dtype=float)


def _holm_message(results: Sequence[HolmComparison], alpha: float) -> str:
    m = len(results)
    significant = [r for r in results if r.is_significant]
    if not significant:
        return (
            f"No significant differences found after Holm-Bonferroni correction "
            f"({m} comparisons, alpha={alpha})."
        )
    if len(significant) == m:
        return f"All {m} comparisons are significant after Holm-Bonferroni correction (alpha={alpha})."
    names = ', '.join(
        f"{r.comparison.label_a} vs {r.comparison.label_b}" for r in significant
    )
    return (
        f"{len(significant)} of {m} comparisons significant after "
        f"Holm-Bonferroni correction: {names}."
    )


def holm_bonferroni(
    comparisons: Sequence[PairwiseComparison],
    alpha: float = DEFAULT_ALPHA,
) -> HolmResult:
    """
    Holm-Bonferroni step-down correction.

    Parameters
    ----------
    comparisons : sequence of PairwiseComparison
        Raw p-values, one per comparison
    alpha : float, default=0.05
        Family-wise error rate

    Returns
    -------
    HolmResult
        Per-comparison rank (1 = smallest p), threshold alpha / (m - i),
        significance and statsmodels Holm-adjusted p-value, in input order

    Raises
    ------
    EmptyInputError
        No comparisons
    InvalidConfigurationError
        alpha outside (0, 1)

    Notes
    -----
    - Comparisons are tested from smallest p-value upward. A comparison is
      significant only if p < alpha / (m - i) AND every comparison ranked
      before it was significant; the first failure makes all later ones
      non-significant regardless of their own thresholds
    - Ties keep their input order (stable sort)

    Example
    -------
    >>> result = holm_bonferroni([
    ...     PairwiseComparison('control', 'a', 0.03),
    ...     PairwiseComparison('control', 'b', 0.04),
    ... ])
    >>> print(result.significant_count)
    0
    """
    p_values = _validate(comparisons, alpha)
    m = len(comparisons)

    order = sorted(range(m), key=lambda i: p_values[i])
    _, p_adjusted, _, _ = multipletests(p_values, alpha=alpha, method='holm')

    by_index: Dict[int, HolmComparison] = {}
    stopped = False
    for i, idx in enumerate(order):
        threshold = alpha / (m - i)
        significant = False
        if not stopped:
            if p_values[idx] < threshold:
                significant = True
            else:
                stopped = True
        by_index[idx] = HolmComparison(
            comparison=comparisons[idx],
            rank=i + 1,
            adjusted_alpha=threshold,
            adjusted_p_value=float(p_adjusted[idx]),
            is_significant=significant,
        )

    results = tuple(by_index[i] for i in range(m))
    significant_count = sum(r.is_significant for r in results)
    logger.debug("Holm-Bonferroni: %d of %d significant at alpha=%s", significant_count, m, alpha)

    return HolmResult(
        comparisons=results,
        family_wise_error_rate=alpha,
        significant_count=significant_count,
        message=_holm_message(results, alpha),
    )


def bonferroni_correction(
    comparisons: Sequence[PairwiseComparison],
    alpha: float = DEFAULT_ALPHA,
) -> CorrectionResult:
    """
    Bonferroni correction: every comparison is tested at alpha / m.

    Very conservative; prefer ``holm_bonferroni`` for confirmatory analysis.
    """
    p_values = _validate(comparisons, alpha)
    m = len(comparisons)
    threshold = alpha / m
    _, p_adjusted, _, _ = multipletests(p_values, alpha=alpha, method='bonferroni')

    return CorrectionResult(
        method='bonferroni',
        comparisons=tuple(comparisons),
        thresholds=(threshold,) * m,
        adjusted_p_values=tuple(float(p) for p in p_adjusted),
        significant=tuple(bool(p < threshold) for p in p_values),
        alpha=alpha,
    )


def benjamini_hochberg(
    comparisons: Sequence[PairwiseComparison],
    fdr: float = DEFAULT_ALPHA,
) -> CorrectionResult:
    """
    Benjamini-Hochberg step-up procedure (controls FDR instead of FWER).

    Finds the largest rank k with p(k) ≤ (k / m) · fdr; every comparison
    ranked at or below k is significant.

    Parameters
    ----------
    comparisons : sequence of PairwiseComparison
        Raw p-values
    fdr : float, default=0.05
        Target false discovery rate

    Returns
    -------
    CorrectionResult
        ``thresholds`` holds (rank / m) · fdr for each comparison
    """
    p_values = _validate(comparisons, fdr)
    m = len(comparisons)

    order = sorted(range(m), key=lambda i: p_values[i])
    ranks = np.empty(m, dtype=int)
    for position, idx in enumerate(order):
        ranks[idx] = position + 1

    k = 0
    for position, idx in enumerate(order):
        if p_values[idx] <= (position + 1) / m * fdr:
            k = position + 1

    _, p_adjusted, _, _ = multipletests(p_values, alpha=fdr, method='fdr_bh')

    return CorrectionResult(
        method='benjamini_hochberg',
        comparisons=tuple(comparisons),
        thresholds=tuple(float(r / m * fdr) for r in ranks),
        adjusted_p_values=tuple(float(p) for p in p_adjusted),
        significant=tuple(bool(r <= k) for r in ranks),
        alpha=fdr,
    )


def pairwise_comparison_count(n_variants: int) -> int:
    """C(n, 2) comparisons for all pairs of ``n_variants`` (control included)."""
    return n_variants * (n_variants - 1) // 2


def control_comparison_count(n_variants: int) -> int:
    return max(n_variants - 1, 0)


def generate_pairwise_comparisons(variant_ids: Sequence[str]) -> List[Tuple[str, str]]:
    """Every unordered pair of variant ids, in input order."""
    return list(combinations(variant_ids, 2))


def generate_control_comparisons(control_id: str, variant_ids: Sequence[str]) -> List[Tuple[str, str]]:
    return [(control_id, variant_id) for variant_id in variant_ids]


def requires_multiple_testing_correction(n_variants: int) -> bool:
    """Correction is needed once there are two or more treatment variants."""
    return n_variants >= 3


def recommend_correction_method(
    analysis_type: str = 'confirmatory',
    n_comparisons: int = 2,
) -> CorrectionRecommendation:
    """
    Pick a correction for the analysis.

    Parameters
    ----------
    analysis_type : {'confirmatory', 'exploratory'}
        Confirmatory analyses always get FWER control
    n_comparisons : int
        Number of simultaneous comparisons

    Returns
    -------
    CorrectionRecommendation
        ``method`` is one of 'none', 'holm', 'bh'
    """
    if analysis_type not in ('confirmatory', 'exploratory'):
        raise InvalidConfigurationError(
            f"analysis_type must be 'confirmatory' or 'exploratory', got {analysis_type!r}"
        )
    if n_comparisons <= 1:
        return CorrectionRecommendation('none', "Single comparison does not require correction.")
    if analysis_type == 'confirmatory':
        return CorrectionRecommendation(
            'holm',
            "Holm-Bonferroni provides strong FWER control with better power than Bonferroni.",
        )
    if n_comparisons > 10:
        return CorrectionRecommendation(
            'bh',
            "Benjamini-Hochberg controls FDR and keeps power with many exploratory comparisons.",
        )
    return CorrectionRecommendation(
        'holm', "Holm-Bonferroni provides good balance of power and error control."
    )


def apply_recommended_correction(
    comparisons: Sequence[PairwiseComparison],
    analysis_type: str = 'confirmatory',
    alpha: float = DEFAULT_ALPHA,
) -> Union[HolmResult, CorrectionResult]:
    """Run whichever correction ``recommend_correction_method`` picks."""
    recommendation = recommend_correction_method(analysis_type, len(comparisons))
    if recommendation.method == 'bh':
        return benjamini_hochberg(comparisons, fdr=alpha)
    # A single comparison under Holm is tested at alpha itself
    return holm_bonferroni(comparisons, alpha=alpha)


@dataclass(frozen=True)
class MultiVariantResult:
    pairwise: Dict[str, frequentist.SignificanceResult]
    correction: HolmResult

    def is_significant(self, variant_id: str) -> bool:
        for holm in self.correction.comparisons:
            if holm.comparison.label_b == variant_id:
                return holm.is_significant
        raise KeyError(variant_id)


def compare_variants_to_control(
    control: frequentist.ConversionObservation,
    variants: Mapping[str, frequentist.ConversionObservation],
    control_id: str = 'control',
    alpha: float = DEFAULT_ALPHA,
    confidence_level: Union[ConfidenceLevel, float] = ConfidenceLevel.P95,
) -> MultiVariantResult:
    """
    Z-test every variant against control, then apply Holm-Bonferroni.

    Parameters
    ----------
    control : ConversionObservation
        Control group counts
    variants : mapping of str to ConversionObservation
        Treatment variants by id; mapping order is the comparison order

    Returns
    -------
    MultiVariantResult
        Raw per-variant z-test results and the corrected significance
    """
    if not variants:
        raise EmptyInputError("No variants to compare against control")

    pairwise = {
        variant_id: frequentist.z_test_proportions(control, observation, confidence_level)
        for variant_id, observation in variants.items()
    }
    correction = holm_bonferroni(
        [PairwiseComparison(control_id, variant_id, result.p_value)
         for variant_id, result in pairwise.items()],
        alpha=alpha,
    )
    return MultiVariantResult(pairwise=pairwise, correction=correction)


if __name__ == "__main__":
    print("=" * 80)
    print("Multiple Testing Correction Demo")
    print("=" * 80)

    p_values = {'variant_a': 0.001, 'variant_b': 0.01, 'variant_c': 0.04, 'variant_d': 0.06}
    comparisons = [PairwiseComparison('control', k, p) for k, p in p_values.items()]

    holm = holm_bonferroni(comparisons)
    print(f"\n{'Comparison':28} {'p':>8} {'threshold':>10} {'Holm':>6}")
    for c in holm.comparisons:
        print(f"{c.comparison.label:28} {c.comparison.raw_p_value:>8.4f} "
              f"{c.adjusted_alpha:>10.5f} {'✅' if c.is_significant else '❌':>6}")
    print(f"\n{holm.message}")

    bh = benjamini_hochberg(comparisons)
    print(f"\nBenjamini-Hochberg significant: {bh.significant_comparisons}")
    print(f"Recommendation: {recommend_correction_method('confirmatory', 4).reason}")
