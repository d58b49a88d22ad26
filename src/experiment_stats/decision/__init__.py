"""Long-term value analysis."""

from experiment_stats.decision import ltv

__all__ = ["ltv"]
