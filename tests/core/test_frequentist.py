"""Unit tests for frequentist tests module."""

import pytest
import numpy as np
from experiment_stats.config import ConfidenceLevel
from experiment_stats.core import frequentist
from experiment_stats.core.frequentist import ConversionObservation, RevenueObservation
from experiment_stats.errors import (
    InsufficientDataError,
    InvalidConfigurationError,
    InvalidInputError,
)


class TestZTestProportions:
    """Tests for the pooled two-proportion z-test."""

    def test_reference_scenario(self):
        """1000/100 vs 1000/130 at 95% gives z ≈ 2.10 and 30% improvement."""
        result = frequentist.z_test_proportions(
            ConversionObservation(visitors=1000, conversions=100),
            ConversionObservation(visitors=1000, conversions=130),
            confidence_level=0.95,
        )

        assert result.z_score == pytest.approx(2.1027, abs=1e-3)
        assert result.is_significant
        assert result.improvement_percent == pytest.approx(30.0)
        assert result.p_value == pytest.approx(0.0355, abs=1e-3)
        assert result.confidence_level is ConfidenceLevel.P95
        assert result.control_value == pytest.approx(0.10)
        assert result.variant_value == pytest.approx(0.13)

    def test_confidence_interval_in_percentage_points(self):
        """CI brackets the observed 3pp difference."""
        result = frequentist.z_test_proportions(
            ConversionObservation(1000, 100), ConversionObservation(1000, 130)
        )
        lower, upper = result.confidence_interval
        assert lower < 3.0 < upper
        assert lower == pytest.approx(0.207, abs=0.01)
        assert upper == pytest.approx(5.793, abs=0.01)

    def test_symmetry(self):
        """Swapping groups negates z and keeps p-value and significance."""
        a = ConversionObservation(1200, 150)
        b = ConversionObservation(1100, 170)
        forward = frequentist.z_test_proportions(a, b)
        backward = frequentist.z_test_proportions(b, a)

        assert forward.z_score == -backward.z_score
        assert forward.p_value == backward.p_value
        assert forward.is_significant == backward.is_significant

    def test_monotonicity(self):
        """Raising the variant rate strictly increases |z| and lowers p."""
        control = ConversionObservation(1000, 100)
        results = [
            frequentist.z_test_proportions(control, ConversionObservation(1000, c))
            for c in range(105, 200, 10)
        ]
        z_scores = [abs(r.z_score) for r in results]
        p_values = [r.p_value for r in results]
        assert all(b > a for a, b in zip(z_scores, z_scores[1:]))
        assert all(b <= a for a, b in zip(p_values, p_values[1:]))

    def test_zero_pooled_variance_is_not_significant(self):
        """No conversions anywhere gives z = 0, never a division error."""
        result = frequentist.z_test_proportions(
            ConversionObservation(500, 0), ConversionObservation(500, 0)
        )
        assert result.z_score == 0.0
        assert result.p_value == 1.0
        assert not result.is_significant

    def test_zero_control_rate_gives_zero_improvement(self):
        result = frequentist.z_test_proportions(
            ConversionObservation(500, 0), ConversionObservation(500, 10)
        )
        assert result.improvement_percent == 0.0
        assert result.z_score > 0

    def test_confidence_levels_use_critical_table(self):
        """z ≈ 1.80 is significant at 90% but not at 95% or 99%."""
        control = ConversionObservation(2000, 200)
        variant = ConversionObservation(2000, 237)
        z = frequentist.z_test_proportions(control, variant).z_score
        assert 1.645 < z < 1.96

        assert frequentist.z_test_proportions(control, variant, 0.90).is_significant
        assert not frequentist.z_test_proportions(control, variant, 0.95).is_significant
        assert not frequentist.z_test_proportions(control, variant, ConfidenceLevel.P99).is_significant

    def test_unsupported_confidence_level(self):
        with pytest.raises(InvalidConfigurationError):
            frequentist.z_test_proportions(
                ConversionObservation(100, 10), ConversionObservation(100, 12), 0.8
            )

    def test_zero_visitors_raises(self):
        with pytest.raises(InsufficientDataError):
            frequentist.z_test_proportions(
                ConversionObservation(0, 0), ConversionObservation(100, 10)
            )

    def test_invalid_observations(self):
        """Conversions above visitors or negative counts are rejected."""
        with pytest.raises(InvalidInputError, match="cannot exceed"):
            ConversionObservation(visitors=100, conversions=101)
        with pytest.raises(InvalidInputError, match="non-negative"):
            ConversionObservation(visitors=-1, conversions=0)

    def test_idempotent(self):
        control, variant = ConversionObservation(900, 81), ConversionObservation(950, 99)
        assert frequentist.z_test_proportions(control, variant) == \
            frequentist.z_test_proportions(control, variant)


class TestWelchTTest:
    """Tests for Welch's t-test on revenue per visitor."""

    def test_equal_variances_degrees_of_freedom(self):
        """Equal variances and sizes give df = 2(n - 1)."""
        control = RevenueObservation(visitors=500, revenue=50_000, revenue_variance=400)
        variant = RevenueObservation(visitors=500, revenue=53_000, revenue_variance=400)
        result = frequentist.welch_ttest(control, variant)

        assert result.degrees_of_freedom == pytest.approx(998.0)
        assert result.z_score == pytest.approx(6 / np.sqrt(1.6))
        assert result.improvement_percent == pytest.approx(6.0)
        assert result.is_significant
        assert result.p_value < 1e-4

    def test_unequal_variances_reduce_degrees_of_freedom(self):
        """Welch-Satterthwaite df sits below the pooled n1 + n2 - 2."""
        control = RevenueObservation(visitors=50, revenue=5_000, revenue_variance=100)
        variant = RevenueObservation(visitors=400, revenue=42_000, revenue_variance=2_500)
        result = frequentist.welch_ttest(control, variant)

        se1, se2 = 100 / 50, 2_500 / 400
        expected_df = (se1 + se2) ** 2 / (se1 ** 2 / 49 + se2 ** 2 / 399)
        assert result.degrees_of_freedom == pytest.approx(expected_df)
        assert result.degrees_of_freedom < 448

    def test_matches_scipy(self):
        """Raw-sample version agrees with scipy's Welch test."""
        from scipy import stats

        rng = np.random.default_rng(1)
        control = rng.normal(100, 20, 200)
        variant = rng.normal(104, 30, 300)
        result = frequentist.welch_ttest_samples(control, variant)
        reference = stats.ttest_ind(variant, control, equal_var=False)

        assert result.z_score == pytest.approx(reference.statistic)
        assert result.p_value == pytest.approx(reference.pvalue)

    def test_negative_values_allowed_for_samples(self):
        result = frequentist.welch_ttest_samples([-1.0, -2.0, -3.0], [1.0, 2.0, 3.0])
        assert result.z_score > 0
        assert result.improvement_percent == 0.0
        assert result.confidence_interval == (0.0, 0.0)

    def test_zero_standard_error(self):
        """Constant revenue in both groups is a null result, not an error."""
        result = frequentist.welch_ttest_samples([5.0] * 10, [5.0] * 10)
        assert result.z_score == 0.0
        assert result.p_value == 1.0
        assert not result.is_significant

    def test_single_visitor_raises(self):
        with pytest.raises(InsufficientDataError):
            frequentist.welch_ttest(
                RevenueObservation(1, 10.0, 0.0), RevenueObservation(100, 1_000.0, 4.0)
            )

    def test_symmetry(self):
        rng = np.random.default_rng(3)
        a, b = rng.exponential(20, 150), rng.exponential(24, 170)
        forward = frequentist.welch_ttest_samples(a, b)
        backward = frequentist.welch_ttest_samples(b, a)
        assert forward.z_score == pytest.approx(-backward.z_score)
        assert forward.p_value == pytest.approx(backward.p_value)


class TestRevenueObservation:
    """Tests for revenue aggregates."""

    def test_from_samples(self):
        obs = RevenueObservation.from_samples([10.0, 20.0, 30.0])
        assert obs.visitors == 3
        assert obs.revenue == pytest.approx(60.0)
        assert obs.revenue_per_visitor == pytest.approx(20.0)
        assert obs.revenue_variance == pytest.approx(100.0)

    def test_rejects_negative_revenue(self):
        with pytest.raises(InvalidInputError):
            RevenueObservation(visitors=10, revenue=-5.0, revenue_variance=1.0)
