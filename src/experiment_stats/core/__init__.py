"""Core statistical methods for A/B testing."""

from experiment_stats.core import distributions, frequentist, bootstrap, randomization, power

__all__ = ["distributions", "frequentist", "bootstrap", "randomization", "power"]
