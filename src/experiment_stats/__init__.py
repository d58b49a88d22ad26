"""
experiment_stats - Statistical Analysis for A/B/n Experiments
=============================================================

Pure, stateless statistics for deciding whether an experiment variant beats
control, and whether the experiment itself can be trusted.

Modules:
--------
- core: Significance tests, bootstrap intervals, SRM checks, power planning
- variance_reduction: CUPED covariate adjustment
- diagnostics: Novelty effects, population drift, guardrails
- advanced: Multiple-testing correction for A/B/n experiments
- decision: Long-term value (LTV) by variant

Example Usage:
--------------
>>> from experiment_stats.core import frequentist, randomization
>>>
>>> result = frequentist.z_test_proportions(
...     frequentist.ConversionObservation(1000, 100),
...     frequentist.ConversionObservation(1000, 130),
... )
>>> print(result.is_significant)
True
>>> srm = randomization.srm_check_two_groups(520, 480)
>>> print(srm.severity.value)
none
"""

__version__ = "0.1.0"

from experiment_stats import config, errors
from experiment_stats.core import bootstrap, frequentist, power, randomization

__all__ = [
    "config",
    "errors",
    "bootstrap",
    "frequentist",
    "power",
    "randomization",
]
