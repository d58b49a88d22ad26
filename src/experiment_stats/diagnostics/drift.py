"""
Population Drift Detection
==========================

Monitor visitor composition during a test. If the population in the late part
of the test differs from the early population (a campaign starts, a new
country ramps up, mobile share jumps), results may not generalize.

For each categorical dimension (device type, country, traffic source...) the
early and late frequency distributions are compared with a chi-squared test
of homogeneity on the 2 x k contingency table.

Example Usage:
--------------
>>> from experiment_stats.diagnostics import drift
>>> import pandas as pd
>>>
>>> visitors = pd.read_parquet('assignments.parquet')  # assigned_at, device_type, country
>>> early, late = drift.split_periods(visitors, time_key='assigned_at')
>>> result = drift.detect_drift(early, late, dimensions=['device_type', 'country'])
>>> print(f"Severity: {result.severity.value}, score={result.overall_score:.2f}")
"""

import logging
import numbers
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

from experiment_stats.config import (
    DRIFT_EARLY_FRACTION,
    DRIFT_LATE_FRACTION,
    DRIFT_MINIMUM_SAMPLES,
    DRIFT_SIGNIFICANCE_LEVEL,
)
from experiment_stats.errors import (
    EmptyInputError,
    InsufficientDataError,
    InvalidConfigurationError,
    InvalidInputError,
)

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY = "(unknown)"
MAJOR_SHIFT_PP = 1.0
MAX_MAJOR_SHIFTS = 5
LOW_DRIFT_SCORE = 0.3

WEEKDAYS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')
HOUR_BUCKETS = ('00-04', '04-08', '08-12', '12-16', '16-20', '20-24')

Records = Union[pd.DataFrame, Sequence[Mapping[str, Any]]]


class DriftSeverity(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class CategoryShift:
    category: str
    before_percent: float
    after_percent: float
    shift: float


@dataclass(frozen=True)
class DimensionDrift:
    dimension: str
    chi_squared: float
    p_value: float
    significant: bool
    drift_score: float
    before: Mapping[str, float]
    after: Mapping[str, float]
    major_shifts: Tuple[CategoryShift, ...]


@dataclass(frozen=True)
class DriftResult:
    per_dimension: Tuple[DimensionDrift, ...]
    overall_score: float
    severity: DriftSeverity
    detected: bool
    message: str
    recommendations: Tuple[str, ...]


@dataclass(frozen=True)
class TimeDriftResult:
    detected: bool
    weekday_changed: bool
    hour_changed: bool
    weekday: DimensionDrift
    hour: DimensionDrift
    message: str


def _as_frame(records: Records, name: str) -> pd.DataFrame:
    df = records if isinstance(records, pd.DataFrame) else pd.DataFrame(list(records))
    if len(df) == 0:
        raise EmptyInputError(f"{name} period has no visitor records")
    return df


def _require_samples(total: int, minimum: int, what: str):
    if total < minimum:
        raise InsufficientDataError(
            f"Insufficient data for drift analysis ({total}/{minimum} {what})"
        )


def category_label(value: Any) -> str:
    """
    Category name for a raw field value.

    Whole-number floats are labelled like ints, so a column that pandas
    promoted to float (1 -> 1.0) still matches its integer spelling.
    """
    if value is None or value == "":
        return UNKNOWN_CATEGORY
    if isinstance(value, (bool, np.bool_)):
        return str(bool(value))
    if isinstance(value, numbers.Integral):
        return str(int(value))
    if isinstance(value, numbers.Real):
        number = float(value)
        if np.isnan(number):
            return UNKNOWN_CATEGORY
        if number.is_integer():
            return str(int(number))
    return str(value)


def category_counts(records: Records, dimension: str) -> pd.Series:
    """
    Frequency of each category of ``dimension``.

    Missing or empty values are counted as ``"(unknown)"``; a dimension absent
    from the records entirely maps every visitor to ``"(unknown)"``. Labels
    come from ``category_label``.
    """
    df = _as_frame(records, 'input')
    if dimension in df.columns:
        values = df[dimension].astype(object).where(df[dimension].notna(), UNKNOWN_CATEGORY)
        values = values.map(category_label)
    else:
        values = pd.Series([UNKNOWN_CATEGORY] * len(df))
    return values.value_counts(sort=False)


def homogeneity_test(early_counts: pd.Series, late_counts: pd.Series) -> Tuple[float, float]:
    """
    Chi-squared homogeneity test of two category frequency tables.

    Categories seen in only one period enter with a zero count in the other.
    Fewer than two categories overall gives (0, 1).
    """
    table = pd.concat([early_counts, late_counts], axis=1).fillna(0)
    table = table.loc[table.sum(axis=1) > 0]
    if len(table) < 2 or (table.sum(axis=0) == 0).any():
        return 0.0, 1.0
    chi2, p_value, _, _ = stats.chi2_contingency(table.to_numpy().T, correction=False)
    return float(chi2), float(p_value)


def _proportions(counts: pd.Series) -> dict:
    total = counts.sum()
    return {str(k): float(v / total) for k, v in counts.items()} if total > 0 else {}


def find_major_shifts(before: Mapping[str, float], after: Mapping[str, float]) -> Tuple[CategoryShift, ...]:
    """Top five categories whose share moved more than one percentage point."""
    shifts = []
    for category in list(before) + [c for c in after if c not in before]:
        before_pct = before.get(category, 0.0) * 100
        after_pct = after.get(category, 0.0) * 100
        shift = after_pct - before_pct
        if abs(shift) > MAJOR_SHIFT_PP:
            shifts.append(CategoryShift(category, before_pct, after_pct, shift))
    shifts.sort(key=lambda s: abs(s.shift), reverse=True)
    return tuple(shifts[:MAX_MAJOR_SHIFTS])


def _dimension_drift(
    dimension: str,
    early_counts: pd.Series,
    late_counts: pd.Series,
    significance_level: float,
) -> DimensionDrift:
    chi2, p_value = homogeneity_test(early_counts, late_counts)
    before = _proportions(early_counts)
    after = _proportions(late_counts)
    return DimensionDrift(
        dimension=dimension,
        chi_squared=chi2,
        p_value=p_value,
        significant=p_value < significance_level,
        drift_score=min(1.0, max(0.0, 1 - p_value)),
        before=before,
        after=after,
        major_shifts=find_major_shifts(before, after),
    )


def classify_severity(significant_count: int, overall_score: float) -> DriftSeverity:
    if significant_count >= 2:
        return DriftSeverity.HIGH
    if significant_count == 1:
        return DriftSeverity.MEDIUM
    if overall_score > LOW_DRIFT_SCORE:
        return DriftSeverity.LOW
    return DriftSeverity.NONE


def _drift_message(severity: DriftSeverity, significant: Sequence[DimensionDrift]):
    if severity == DriftSeverity.HIGH:
        names = ", ".join(d.dimension for d in significant)
        recommendations = [
            "HIGH SEVERITY: Significant population drift detected.",
            "Results may not generalize to the overall population.",
            "Consider segmenting analysis by the drifting dimensions.",
            "Consider extending the test to collect more stable data.",
            "Investigate external factors such as campaigns or seasonality.",
        ]
        for drift in significant:
            if drift.major_shifts:
                top = drift.major_shifts[0]
                recommendations.append(
                    f"{drift.dimension}: \"{top.category}\" shifted from "
                    f"{top.before_percent:.1f}% to {top.after_percent:.1f}%"
                )
        return f"Significant drift detected in {names}. Results may not generalize.", recommendations

    if severity == DriftSeverity.MEDIUM:
        return (
            f"Moderate drift in {significant[0].dimension}. Consider segmented analysis.",
            [
                "MODERATE: Some population drift detected.",
                "Consider segmented analysis to verify results hold.",
                "Monitor for continued drift.",
            ],
        )

    if severity == DriftSeverity.LOW:
        return (
            "Minor population drift detected. Results are likely still valid.",
            ["Minor drift detected but within acceptable range.", "Continue monitoring."],
        )

    return "Population composition is stable. No significant drift detected.", []


def detect_drift(
    early_period: Records,
    late_period: Records,
    dimensions: Sequence[str],
    significance_level: float = DRIFT_SIGNIFICANCE_LEVEL,
    minimum_samples: int = DRIFT_MINIMUM_SAMPLES,
) -> DriftResult:
    """
    Compare visitor composition between the early and late periods.

    Parameters
    ----------
    early_period, late_period : DataFrame or sequence of mappings
        Raw per-visitor records, one row per visitor
    dimensions : sequence of str
        Categorical fields to compare (e.g. 'device_type', 'country')
    significance_level : float, default=0.05
        Per-dimension threshold for ``significant``
    minimum_samples : int, default=100
        Fewer visitors across both periods raises ``InsufficientDataError``

    Returns
    -------
    DriftResult

    Notes
    -----
    - overall_score = mean(1 - p) across dimensions
    - Severity: high if >= 2 dimensions significant, medium if exactly 1,
      low if none but overall_score > 0.3, else none
    """
    if not dimensions:
        raise InvalidConfigurationError("At least one dimension is required")
    if not (0 < significance_level < 1):
        raise InvalidConfigurationError("significance_level must be between 0 and 1")
    if minimum_samples < 0:
        raise InvalidConfigurationError("minimum_samples cannot be negative")
    early = _as_frame(early_period, 'early')
    late = _as_frame(late_period, 'late')
    _require_samples(len(early) + len(late), minimum_samples, "visitors in the compared periods")

    per_dimension = tuple(
        _dimension_drift(dim, category_counts(early, dim), category_counts(late, dim), significance_level)
        for dim in dimensions
    )

    significant = [d for d in per_dimension if d.significant]
    overall = float(np.mean([1 - d.p_value for d in per_dimension]))
    severity = classify_severity(len(significant), overall)
    message, recommendations = _drift_message(severity, significant)

    if significant:
        logger.info(
            "Population drift in %s (severity=%s, score=%.3f)",
            [d.dimension for d in significant], severity.value, overall,
        )
    else:
        logger.debug("Drift check: severity=%s score=%.3f", severity.value, overall)

    return DriftResult(
        per_dimension=per_dimension,
        overall_score=overall,
        severity=severity,
        detected=bool(significant),
        message=message,
        recommendations=tuple(recommendations),
    )


def split_periods(
    records: Records,
    time_key: str = 'assigned_at',
    early_fraction: float = DRIFT_EARLY_FRACTION,
    late_fraction: float = DRIFT_LATE_FRACTION,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Sort records by ``time_key`` and slice off the early and late portions.

    Ties keep their input order.
    """
    if not (0 < early_fraction < 1 and 0 < late_fraction < 1):
        raise InvalidConfigurationError("Period fractions must be between 0 and 1")
    if early_fraction + late_fraction > 1:
        raise InvalidConfigurationError("Early and late periods cannot overlap")
    df = _as_frame(records, 'input')
    if time_key not in df.columns:
        raise InvalidInputError(f"Records have no {time_key!r} field")

    ordered = df.assign(_ts=pd.to_datetime(df[time_key])).sort_values('_ts', kind='mergesort')
    ordered = ordered.drop(columns='_ts').reset_index(drop=True)
    n = len(ordered)
    early_count = int(np.floor(n * early_fraction))
    late_count = int(np.floor(n * late_fraction))
    return ordered.iloc[:early_count], ordered.iloc[n - late_count:]


def detect_drift_over_test(
    records: Records,
    dimensions: Sequence[str],
    time_key: str = 'assigned_at',
    significance_level: float = DRIFT_SIGNIFICANCE_LEVEL,
    minimum_samples: int = DRIFT_MINIMUM_SAMPLES,
) -> DriftResult:
    """
    Split a full test's records into early/late quarters and compare them.

    The whole test needs twice ``minimum_samples`` visitors.
    """
    df = _as_frame(records, 'input')
    _require_samples(len(df), 2 * minimum_samples, "visitors")
    early, late = split_periods(df, time_key=time_key)
    return detect_drift(early, late, dimensions, significance_level, minimum_samples)


def _time_buckets(df: pd.DataFrame, time_key: str) -> pd.DataFrame:
    ts = pd.to_datetime(df[time_key])
    return pd.DataFrame({
        'weekday': ts.dt.dayofweek.map(lambda i: WEEKDAYS[i]),
        'hour': (ts.dt.hour // 4).map(lambda i: HOUR_BUCKETS[i]),
    })


def detect_time_drift(
    records: Records,
    time_key: str = 'assigned_at',
    significance_level: float = DRIFT_SIGNIFICANCE_LEVEL,
    minimum_samples: int = DRIFT_MINIMUM_SAMPLES,
) -> TimeDriftResult:
    """
    Check whether visitors arrive on different weekdays or at different hours
    (4-hour buckets) late in the test than early on.

    Like ``detect_drift_over_test``, the test needs twice ``minimum_samples``
    visitors.
    """
    df = _as_frame(records, 'input')
    _require_samples(len(df), 2 * minimum_samples, "visitors")
    early, late = split_periods(df, time_key=time_key)
    early_buckets = _time_buckets(_as_frame(early, 'early'), time_key)
    late_buckets = _time_buckets(_as_frame(late, 'late'), time_key)

    weekday = _dimension_drift(
        'weekday',
        category_counts(early_buckets, 'weekday'),
        category_counts(late_buckets, 'weekday'),
        significance_level,
    )
    hour = _dimension_drift(
        'hour',
        category_counts(early_buckets, 'hour'),
        category_counts(late_buckets, 'hour'),
        significance_level,
    )

    if weekday.significant and hour.significant:
        message = "Both day-of-week and hour-of-day distributions have changed significantly."
    elif weekday.significant:
        message = "Day-of-week distribution has changed significantly."
    elif hour.significant:
        message = "Hour-of-day distribution has changed significantly."
    else:
        message = "No significant time-based drift detected."

    return TimeDriftResult(
        detected=weekday.significant or hour.significant,
        weekday_changed=weekday.significant,
        hour_changed=hour.significant,
        weekday=weekday,
        hour=hour,
        message=message,
    )


if __name__ == "__main__":
    print("=" * 80)
    print("Population Drift Demo")
    print("=" * 80)

    rng = np.random.default_rng(42)
    n = 4000
    assigned = pd.date_range('2024-03-01', periods=n, freq='15min')
    mobile_share = np.linspace(0.4, 0.7, n)
    visitors = pd.DataFrame({
        'assigned_at': assigned,
        'device_type': np.where(rng.random(n) < mobile_share, 'mobile', 'desktop'),
        'country': rng.choice(['US', 'GB', 'DE'], size=n, p=[0.6, 0.25, 0.15]),
    })

    result = detect_drift_over_test(visitors, ['device_type', 'country'])
    for dim in result.per_dimension:
        flag = '⚠️' if dim.significant else '✅'
        print(f"{flag} {dim.dimension:12} chi2={dim.chi_squared:8.2f} p={dim.p_value:.4f}")
        for shift in dim.major_shifts:
            print(f"    {shift.category}: {shift.before_percent:.1f}% → {shift.after_percent:.1f}%")
    print(f"\nSeverity: {result.severity.value} (score={result.overall_score:.2f})")
    print(result.message)
