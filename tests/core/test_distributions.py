"""Unit tests for numeric primitives."""

import pytest
import numpy as np
from experiment_stats.core import distributions
from experiment_stats.errors import EmptyInputError, InvalidInputError, LengthMismatchError


class TestDistributionFunctions:
    """Tests for CDF / quantile wrappers."""

    def test_normal(self):
        assert distributions.normal_cdf(0.0) == pytest.approx(0.5)
        assert distributions.normal_cdf(1.96) == pytest.approx(0.975, abs=1e-4)
        assert distributions.normal_sf(1.96) == pytest.approx(0.025, abs=1e-4)
        assert distributions.normal_quantile(0.975) == pytest.approx(1.96, abs=1e-3)

    def test_student_t_approaches_normal(self):
        assert distributions.student_t_cdf(1.96, 1e6) == pytest.approx(0.975, abs=1e-4)
        assert distributions.student_t_quantile(0.975, 10) == pytest.approx(2.228, abs=1e-3)

    def test_chi_squared(self):
        assert distributions.chi_squared_sf(1.6, 1) == pytest.approx(0.2059, abs=1e-4)
        assert distributions.chi_squared_sf(3.841, 1) == pytest.approx(0.05, abs=1e-3)
        assert distributions.chi_squared_sf(0.0, 3) == 1.0
        assert distributions.chi_squared_cdf(0.0, 3) == 0.0


class TestMoments:
    """Tests for descriptive moments."""

    def test_variance_sample_convention(self):
        assert distributions.variance([1.0, 2.0, 3.0, 4.0]) == pytest.approx(5 / 3)

    def test_variance_single_value_is_zero(self):
        assert distributions.variance([42.0]) == 0.0

    def test_empty_input(self):
        with pytest.raises(EmptyInputError):
            distributions.mean([])

    def test_correlation(self):
        x = np.arange(10, dtype=float)
        assert distributions.correlation(x, 2 * x + 1) == pytest.approx(1.0)
        assert distributions.correlation(x, -x) == pytest.approx(-1.0)
        assert distributions.correlation(x, np.ones(10)) == 0.0

    def test_covariance_length_mismatch(self):
        with pytest.raises(LengthMismatchError):
            distributions.covariance([1.0, 2.0], [1.0, 2.0, 3.0])


class TestResampling:
    """Tests for seeded resampling helpers."""

    def test_seed_sequence_reproducible(self):
        a = np.random.default_rng(distributions.seed_sequence(5)).integers(0, 100, 10)
        b = np.random.default_rng(distributions.seed_sequence(5)).integers(0, 100, 10)
        np.testing.assert_array_equal(a, b)

    def test_resample_indices_shape(self):
        rng = np.random.default_rng(0)
        idx = distributions.resample_indices(20, 20, rng, n_draws=5)
        assert idx.shape == (5, 20)
        assert idx.min() >= 0 and idx.max() < 20

    def test_resample_from_empty(self):
        with pytest.raises(EmptyInputError):
            distributions.resample_indices(0, 5, np.random.default_rng(0))

    def test_weighted_resample(self):
        rng = np.random.default_rng(0)
        draws = distributions.weighted_resample([1.0, 2.0], [0.0, 1.0], 50, rng)
        assert np.all(draws == 2.0)
        with pytest.raises(InvalidInputError):
            distributions.weighted_resample([1.0, 2.0], [0.0, 0.0], 5, rng)
