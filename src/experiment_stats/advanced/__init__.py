"""Multi-variant analysis."""

from experiment_stats.advanced import multiple_testing

__all__ = ["multiple_testing"]
