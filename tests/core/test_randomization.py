"""Unit tests for randomization quality checks."""

import logging

import pytest
from experiment_stats.core import randomization
from experiment_stats.core.randomization import SRMSeverity, VariantAllocation
from experiment_stats.errors import (
    InsufficientDataError,
    InvalidConfigurationError,
    InvalidInputError,
    ZeroExpectedError,
)


class TestSRMCheck:
    """Tests for Sample Ratio Mismatch check."""

    def test_reference_scenario(self):
        """520/480 against 50/50 gives chi2 = 1.6, df = 1, p ≈ 0.206."""
        result = randomization.srm_check([
            VariantAllocation('control', 50, 520),
            VariantAllocation('variant', 50, 480),
        ])

        assert result.chi_squared == pytest.approx(1.6)
        assert result.degrees_of_freedom == 1
        assert result.p_value == pytest.approx(0.2059, abs=1e-3)
        assert result.severity is SRMSeverity.NONE
        assert not result.detected
        assert result.recommendation is None

    def test_exact_match_is_null(self):
        """Observed counts exactly matching the allocation give chi2 = 0."""
        result = randomization.srm_check([
            VariantAllocation('control', 50, 3000),
            VariantAllocation('a', 25, 1500),
            VariantAllocation('b', 25, 1500),
        ])
        assert result.chi_squared == 0.0
        assert result.p_value == pytest.approx(1.0)
        assert result.severity is SRMSeverity.NONE
        assert result.degrees_of_freedom == 2

    def test_large_imbalance_is_critical(self, caplog):
        with caplog.at_level(logging.INFO, logger='experiment_stats.core.randomization'):
            result = randomization.srm_check_two_groups(53_000, 47_000)

        assert result.severity is SRMSeverity.CRITICAL
        assert result.detected
        assert result.recommendation
        assert "SRM detected" in caplog.text

    def test_warning_band(self):
        """p between 0.001 and 0.05 is a warning."""
        result = randomization.srm_check_two_groups(5_150, 4_850)
        assert 0.001 <= result.p_value < 0.05
        assert result.severity is SRMSeverity.WARNING
        assert result.detected

    def test_shares_are_normalised(self):
        """Shares need not sum to 100."""
        a = randomization.srm_check([VariantAllocation('c', 1, 700), VariantAllocation('v', 1, 300)])
        b = randomization.srm_check([VariantAllocation('c', 50, 700), VariantAllocation('v', 50, 300)])
        assert a.chi_squared == pytest.approx(b.chi_squared)
        assert a.expected_ratio == {'c': 0.5, 'v': 0.5}
        assert a.observed_ratio == {'c': 0.7, 'v': 0.3}

    def test_custom_ratio(self):
        result = randomization.srm_check_two_groups(7_000, 3_000, expected_ratio=(70, 30))
        assert result.chi_squared == pytest.approx(0.0)
        assert result.expected_counts == {'control': pytest.approx(7_000), 'treatment': pytest.approx(3_000)}

    def test_zero_share_raises(self):
        with pytest.raises(ZeroExpectedError):
            randomization.srm_check([
                VariantAllocation('control', 100, 900),
                VariantAllocation('variant', 0, 100),
            ])

    def test_requires_two_variants(self):
        with pytest.raises(InsufficientDataError):
            randomization.srm_check([VariantAllocation('control', 100, 900)])

    def test_no_visitors_raises(self):
        with pytest.raises(InsufficientDataError):
            randomization.srm_check_two_groups(0, 0)

    def test_duplicate_ids(self):
        with pytest.raises(InvalidConfigurationError):
            randomization.srm_check([
                VariantAllocation('control', 50, 500),
                VariantAllocation('control', 50, 500),
            ])

    def test_negative_values(self):
        with pytest.raises(InvalidConfigurationError):
            VariantAllocation('control', -1, 10)
        with pytest.raises(InvalidInputError):
            VariantAllocation('control', 50, -10)
