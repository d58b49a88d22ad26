"""Diagnostic tools for experiment validity: novelty, drift, guardrails."""

from experiment_stats.diagnostics import drift, guardrails, novelty

__all__ = ["drift", "guardrails", "novelty"]
