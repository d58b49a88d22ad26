"""Variance reduction with pre-experiment covariates (CUPED)."""

from experiment_stats.variance_reduction import cuped

__all__ = ["cuped"]
