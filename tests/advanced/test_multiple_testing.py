"""
Tests for multiple testing correction module.
"""

import pytest
from experiment_stats.advanced import multiple_testing as mt
from experiment_stats.advanced.multiple_testing import PairwiseComparison
from experiment_stats.core.frequentist import ConversionObservation
from experiment_stats.errors import (
    EmptyInputError,
    InvalidConfigurationError,
    InvalidInputError,
)


def comparisons_from(p_values, control='control'):
    return [PairwiseComparison(control, f'variant_{i}', p) for i, p in enumerate(p_values)]


class TestHolmBonferroni:
    """Tests for Holm-Bonferroni step-down correction."""

    def test_reference_scenario(self):
        """[0.001, 0.01, 0.04, 0.06] at alpha=0.05 keeps the first two."""
        result = mt.holm_bonferroni(comparisons_from([0.001, 0.01, 0.04, 0.06]), alpha=0.05)

        assert [c.is_significant for c in result.comparisons] == [True, True, False, False]
        assert [c.adjusted_alpha for c in result.comparisons] == pytest.approx(
            [0.0125, 0.05 / 3, 0.025, 0.05]
        )
        assert [c.rank for c in result.comparisons] == [1, 2, 3, 4]
        assert result.significant_count == 2
        assert result.family_wise_error_rate == 0.05
        assert result.message.startswith("2 of 4 comparisons significant")

    def test_no_significant_pair(self):
        result = mt.holm_bonferroni(comparisons_from([0.03, 0.04]))
        assert [c.is_significant for c in result.comparisons] == [False, False]
        assert not result.has_significant_result
        assert result.message.startswith("No significant differences found")

    def test_failure_stops_cascade(self):
        """0.049 is below its own threshold but follows a failed comparison."""
        result = mt.holm_bonferroni(comparisons_from([0.001, 0.03, 0.049]))
        assert [c.is_significant for c in result.comparisons] == [True, False, False]
        assert result.comparisons[2].comparison.raw_p_value < result.comparisons[2].adjusted_alpha

    def test_input_order_preserved(self):
        result = mt.holm_bonferroni(comparisons_from([0.06, 0.001, 0.04, 0.01]))
        assert [c.comparison.label_b for c in result.comparisons] == [
            'variant_0', 'variant_1', 'variant_2', 'variant_3',
        ]
        assert [c.rank for c in result.comparisons] == [4, 1, 3, 2]
        assert [c.is_significant for c in result.comparisons] == [False, True, False, True]

    def test_ties_keep_input_order(self):
        result = mt.holm_bonferroni(comparisons_from([0.02, 0.02]))
        assert [c.rank for c in result.comparisons] == [1, 2]
        assert [c.adjusted_alpha for c in result.comparisons] == pytest.approx([0.025, 0.05])
        assert result.message.startswith("All 2 comparisons are significant")

    def test_threshold_is_strict(self):
        result = mt.holm_bonferroni(comparisons_from([0.025, 0.5]))
        assert not result.comparisons[0].is_significant

    def test_adjusted_p_values(self):
        result = mt.holm_bonferroni(comparisons_from([0.001, 0.01, 0.04, 0.06]))
        assert [c.adjusted_p_value for c in result.comparisons] == pytest.approx(
            [0.004, 0.03, 0.08, 0.08]
        )

    def test_single_comparison_uses_alpha(self):
        result = mt.holm_bonferroni(comparisons_from([0.04]))
        assert result.comparisons[0].adjusted_alpha == 0.05
        assert result.comparisons[0].is_significant

    def test_empty_raises(self):
        with pytest.raises(EmptyInputError):
            mt.holm_bonferroni([])

    def test_invalid_alpha(self):
        with pytest.raises(InvalidConfigurationError):
            mt.holm_bonferroni(comparisons_from([0.01]), alpha=1.5)

    def test_idempotent(self):
        comparisons = comparisons_from([0.001, 0.01, 0.04])
        assert mt.holm_bonferroni(comparisons) == mt.holm_bonferroni(comparisons)


class TestPairwiseComparison:
    """Tests for comparison records."""

    def test_label_round_trip(self):
        comparison = PairwiseComparison.from_label('control_vs_variant_a', 0.02)
        assert comparison.label_a == 'control'
        assert comparison.label_b == 'variant_a'
        assert comparison.label == 'control_vs_variant_a'

    def test_label_without_separator(self):
        comparison = PairwiseComparison.from_label('variant_a', 0.02)
        assert comparison.label_b == 'unknown'

    def test_p_value_range(self):
        with pytest.raises(InvalidInputError):
            PairwiseComparison('control', 'a', 1.2)
        with pytest.raises(InvalidInputError):
            PairwiseComparison('control', 'a', -0.1)


class TestBonferroni:
    """Tests for plain Bonferroni."""

    def test_fixed_threshold(self):
        result = mt.bonferroni_correction(comparisons_from([0.01, 0.0125, 0.02, 0.3]))
        assert result.thresholds == pytest.approx((0.0125,) * 4)
        assert result.significant == (True, False, False, False)
        assert result.significant_comparisons == ['control_vs_variant_0']
        assert result.adjusted_p_values == pytest.approx((0.04, 0.05, 0.08, 1.0))


class TestBenjaminiHochberg:
    """Tests for Benjamini-Hochberg FDR control."""

    def test_reference_scenario(self):
        result = mt.benjamini_hochberg(comparisons_from([0.001, 0.01, 0.04, 0.06]), fdr=0.05)
        assert result.significant == (True, True, False, False)
        assert result.thresholds == pytest.approx((0.0125, 0.025, 0.0375, 0.05))

    def test_more_powerful_than_holm(self):
        comparisons = comparisons_from([0.01, 0.02, 0.03, 0.04])
        assert mt.benjamini_hochberg(comparisons).significant_count == 4
        assert mt.holm_bonferroni(comparisons).significant_count == 1

    def test_step_up(self):
        """A later rank passing rescues earlier ranks above their own threshold."""
        result = mt.benjamini_hochberg(comparisons_from([0.02, 0.021, 0.05]))
        assert result.significant == (True, True, True)

    def test_nothing_significant(self):
        result = mt.benjamini_hochberg(comparisons_from([0.2, 0.5, 0.9]))
        assert result.significant_count == 0
        assert result.method == 'benjamini_hochberg'


class TestComparisonHelpers:
    """Tests for comparison counting and generation."""

    def test_counts(self):
        assert mt.pairwise_comparison_count(4) == 6
        assert mt.control_comparison_count(4) == 3
        assert mt.control_comparison_count(0) == 0

    def test_generate(self):
        assert mt.generate_pairwise_comparisons(['a', 'b', 'c']) == [('a', 'b'), ('a', 'c'), ('b', 'c')]
        assert mt.generate_control_comparisons('control', ['a', 'b']) == [
            ('control', 'a'), ('control', 'b'),
        ]

    def test_requires_correction(self):
        assert not mt.requires_multiple_testing_correction(2)
        assert mt.requires_multiple_testing_correction(3)


class TestRecommendation:
    """Tests for correction method recommendation."""

    @pytest.mark.parametrize("analysis_type,n,expected", [
        ('confirmatory', 1, 'none'),
        ('confirmatory', 3, 'holm'),
        ('confirmatory', 20, 'holm'),
        ('exploratory', 5, 'holm'),
        ('exploratory', 11, 'bh'),
    ])
    def test_method(self, analysis_type, n, expected):
        assert mt.recommend_correction_method(analysis_type, n).method == expected

    def test_unknown_analysis_type(self):
        with pytest.raises(InvalidConfigurationError):
            mt.recommend_correction_method('post_hoc', 3)

    def test_apply_recommended(self):
        many = comparisons_from([0.001 * (i + 1) for i in range(12)])
        assert isinstance(mt.apply_recommended_correction(many, 'exploratory'), mt.CorrectionResult)
        assert isinstance(mt.apply_recommended_correction(many[:3]), mt.HolmResult)


class TestCompareVariantsToControl:
    """Tests for z-testing every variant against control."""

    def test_corrected_significance(self):
        control = ConversionObservation(1000, 100)
        result = mt.compare_variants_to_control(control, {
            'variant_a': ConversionObservation(1000, 160),
            'variant_b': ConversionObservation(1000, 105),
        })

        assert set(result.pairwise) == {'variant_a', 'variant_b'}
        assert result.is_significant('variant_a')
        assert not result.is_significant('variant_b')
        assert result.correction.comparisons[0].comparison.raw_p_value == result.pairwise['variant_a'].p_value

    def test_raw_significance_can_be_lost(self):
        """0.0355 passes alone at 0.05 but not against Holm's 0.025."""
        control = ConversionObservation(1000, 100)
        result = mt.compare_variants_to_control(control, {
            'variant_a': ConversionObservation(1000, 130),
            'variant_b': ConversionObservation(1000, 100),
        })
        assert result.pairwise['variant_a'].is_significant
        assert not result.is_significant('variant_a')

    def test_unknown_variant(self):
        result = mt.compare_variants_to_control(
            ConversionObservation(100, 10), {'a': ConversionObservation(100, 12)}
        )
        with pytest.raises(KeyError):
            result.is_significant('zzz')

    def test_no_variants(self):
        with pytest.raises(EmptyInputError):
            mt.compare_variants_to_control(ConversionObservation(100, 10), {})
