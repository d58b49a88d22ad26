"""
Configuration: Enumerated Options and Defaults
==============================================

Module-level constants hold the engine defaults; ``AnalysisSettings`` bundles
them for callers (and the CLI) that read settings from a mapping.

Example Usage:
--------------
>>> from experiment_stats.config import ConfidenceLevel, AnalysisSettings
>>>
>>> level = ConfidenceLevel.coerce(0.95)
>>> print(level.critical_z)
1.96
>>>
>>> settings = AnalysisSettings.from_mapping({'confidence_level': 0.99})
>>> print(settings.confidence_level.alpha)
0.01
"""

import logging
from dataclasses import dataclass, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Union

from experiment_stats.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)


# Critical z values for two-tailed tests at the supported confidence levels
CRITICAL_Z: Mapping[float, float] = MappingProxyType({
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
})

DEFAULT_ALPHA = 0.05
DEFAULT_RESAMPLES = 10_000
MIN_PRODUCTION_RESAMPLES = 10_000
NOVELTY_MINIMUM_DAYS = 7
DRIFT_SIGNIFICANCE_LEVEL = 0.05
DRIFT_EARLY_FRACTION = 0.25
DRIFT_LATE_FRACTION = 0.25
# Visitors needed across the compared early and late periods
DRIFT_MINIMUM_SAMPLES = 100
SRM_WARNING_P = 0.05
SRM_CRITICAL_P = 0.001
LTV_HORIZONS = (30, 60, 90)


class ConfidenceLevel(Enum):
    """Supported confidence levels. Any other value is a configuration error."""

    P90 = 0.90
    P95 = 0.95
    P99 = 0.99

    @classmethod
    def coerce(cls, value: Union["ConfidenceLevel", float]) -> "ConfidenceLevel":
        """Accept an enum member or a float such as 0.95."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidConfigurationError(
                f"confidence level must be one of 0.90, 0.95, 0.99, got {value!r}"
            )
        for member in cls:
            if abs(member.value - float(value)) < 1e-9:
                return member
        raise InvalidConfigurationError(
            f"confidence level must be one of 0.90, 0.95, 0.99, got {value!r}"
        )

    @property
    def alpha(self) -> float:
        return round(1 - self.value, 10)

    @property
    def critical_z(self) -> float:
        return CRITICAL_Z[self.value]


class GuardrailOperator(str, Enum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    WITHIN_PERCENT = "within_percent"


class GuardrailAction(str, Enum):
    WARN = "warn"
    PAUSE = "pause"
    STOP = "stop"


def _coerce_number(settings, name, cast):
    value = getattr(settings, name)
    if isinstance(value, bool):
        raise InvalidConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        object.__setattr__(settings, name, cast(value))
    except (TypeError, ValueError) as e:
        raise InvalidConfigurationError(f"{name} must be a number, got {value!r}") from e


@dataclass(frozen=True)
class AnalysisSettings:
    """
    Engine defaults bundled for callers that configure from a mapping.

    Parameters
    ----------
    confidence_level : ConfidenceLevel
        Confidence level for significance tests
    alpha : float
        Family-wise error rate for multiple-testing correction
    n_resamples : int
        Bootstrap resample count (CLI ``bootstrap`` command)
    novelty_minimum_days : int
        Days of data required before novelty detection runs
    drift_significance_level : float
        Per-dimension significance level for drift (CLI ``drift`` command)
    random_state : int, optional
        Seed for bootstrap resampling; None draws a fresh seed per call
    """

    confidence_level: ConfidenceLevel = ConfidenceLevel.P95
    alpha: float = DEFAULT_ALPHA
    n_resamples: int = DEFAULT_RESAMPLES
    novelty_minimum_days: int = NOVELTY_MINIMUM_DAYS
    drift_significance_level: float = DRIFT_SIGNIFICANCE_LEVEL
    random_state: Any = None

    def __post_init__(self):
        object.__setattr__(self, 'confidence_level', ConfidenceLevel.coerce(self.confidence_level))
        for name, cast in (('alpha', float), ('drift_significance_level', float),
                           ('n_resamples', int), ('novelty_minimum_days', int)):
            _coerce_number(self, name, cast)
        if not (0 < self.alpha < 1):
            raise InvalidConfigurationError(f"alpha must be between 0 and 1, got {self.alpha}")
        if not (0 < self.drift_significance_level < 1):
            raise InvalidConfigurationError(
                f"drift_significance_level must be between 0 and 1, got {self.drift_significance_level}"
            )
        if self.n_resamples < 1:
            raise InvalidConfigurationError("n_resamples must be positive")
        if self.novelty_minimum_days < 3:
            raise InvalidConfigurationError("novelty_minimum_days must be at least 3")
        if isinstance(self.random_state, (bool, float, str)):
            raise InvalidConfigurationError(f"random_state must be an integer seed, got {self.random_state!r}")
        if self.n_resamples < MIN_PRODUCTION_RESAMPLES:
            logger.warning(
                "n_resamples=%d is below the recommended minimum of %d",
                self.n_resamples, MIN_PRODUCTION_RESAMPLES,
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "AnalysisSettings":
        """Build settings from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown settings: {sorted(unknown)}. Available: {sorted(known)}"
            )
        return cls(**dict(mapping))
