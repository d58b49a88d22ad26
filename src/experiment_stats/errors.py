"""
Error Taxonomy
==============

Every failure raised by this package derives from ``ExperimentStatsError``,
which is itself a ``ValueError`` so callers that already guard analysis code
with ``except ValueError`` keep working.

The kinds are deliberately distinct: a caller deciding whether to wait for
more data, show a partial result, or page an operator should be able to
branch on the exception type alone.

Example Usage:
--------------
>>> from experiment_stats import errors
>>> from experiment_stats.core import frequentist
>>>
>>> try:
...     frequentist.welch_ttest(control, variant)
... except errors.InsufficientDataError:
...     show_waiting_for_data_banner()
"""


class ExperimentStatsError(ValueError):
    """Base class for all errors raised by experiment_stats."""


class InsufficientDataError(ExperimentStatsError):
    """Fewer observations than the statistical method requires."""


class EmptyInputError(ExperimentStatsError):
    """A zero-length array or collection was passed where data is required."""


class ZeroExpectedError(ExperimentStatsError):
    """SRM check found a variant whose expected traffic is zero.

    This signals an upstream configuration bug (a variant with zero traffic
    share), not a normal "no mismatch" outcome.
    """


class LengthMismatchError(ExperimentStatsError):
    """Paired arrays (e.g. CUPED metric and covariate) differ in length."""


class InsufficientCohortAgeError(ExperimentStatsError):
    """An LTV horizon was requested before it could have elapsed."""


class InvalidConfigurationError(ExperimentStatsError):
    """A configuration value is outside its enumerated or valid range."""


class InvalidInputError(ExperimentStatsError):
    """Input data violates a basic invariant (negative counts, p > 1, ...)."""
