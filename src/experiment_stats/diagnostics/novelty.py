"""
Novelty Effect Detection
========================

Detect when a variant's lift is a transient reaction to newness rather than
lasting value, by fitting an exponential decay to the daily lift series.

Model: lift(t) = a·exp(-b·t) + c
- c: stabilized (asymptotic) lift
- b: decay rate per day
- a: initial excess over the plateau

Novelty is declared when ALL of:
1. the observed first-day lift exceeds the fitted plateau by 30% (> 1.3·c)
2. the decay explains the data (r² > 0.6)
3. the latest observed lift is closer to the plateau than to the initial lift

Reference:
----------
- Kohavi et al. (2020): "Trustworthy Online Controlled Experiments" Chapter 23
- Hohnhold et al. (2015): "Focusing on the Long-term: It's Good for Users and Business"

Example Usage:
--------------
>>> from experiment_stats.diagnostics import novelty
>>> import numpy as np
>>>
>>> lifts = 20 * np.exp(-0.3 * np.arange(14)) + 5
>>> result = novelty.analyze_lift_series(lifts)
>>> print(f"Novelty detected: {result.detected}")
>>> print(f"Stabilized lift: {result.stabilized_lift:.1f}%")
"""

import datetime
import logging
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.optimize import OptimizeWarning, curve_fit, lsq_linear

from experiment_stats.config import NOVELTY_MINIMUM_DAYS
from experiment_stats.core import distributions
from experiment_stats.errors import InvalidConfigurationError, InvalidInputError

logger = logging.getLogger(__name__)

INITIAL_TO_PLATEAU_RATIO = 1.3
MIN_FIT_R2 = 0.6
STABILITY_FRACTION = 0.05
LEARNING_GROWTH_THRESHOLD = 0.2

OUTLIER_STD_LIMIT = 3.0

# Box for the decay fit, relative to the observed series
AMPLITUDE_SPAN_LIMIT = 2.0
SLOWEST_HALF_LIFE_WINDOWS = 2.0
FASTEST_DECAY_RATE = 5.0
DECAY_GRID_SIZE = 240
MIN_HALF_LIVES_OBSERVED = 2


class NoveltyStatus(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    NOVELTY = "novelty"
    STABLE = "stable"
    NO_DECAY_PATTERN = "no_decay_pattern"


@dataclass(frozen=True)
class DailyLiftPoint:
    """One day of control and variant traffic."""

    date: Union[datetime.date, str]
    control_visitors: int
    control_conversions: int
    variant_visitors: int
    variant_conversions: int

    def __post_init__(self):
        for visitors, conversions in ((self.control_visitors, self.control_conversions),
                                      (self.variant_visitors, self.variant_conversions)):
            if visitors < 0 or conversions < 0 or conversions > visitors:
                raise InvalidInputError(
                    f"Invalid counts on {self.date}: {conversions} conversions "
                    f"from {visitors} visitors"
                )

    @property
    def lift(self) -> float:
        """Relative lift in percent; 0 when the control rate is zero."""
        control_rate = (
            self.control_conversions / self.control_visitors if self.control_visitors > 0 else 0.0
        )
        variant_rate = (
            self.variant_conversions / self.variant_visitors if self.variant_visitors > 0 else 0.0
        )
        if control_rate == 0:
            return 0.0
        return (variant_rate - control_rate) / control_rate * 100


@dataclass(frozen=True)
class DecayFit:
    amplitude: float
    decay_rate: float
    asymptote: float
    r_squared: float
    predictions: np.ndarray = field(repr=False, compare=False)

    @property
    def initial_lift(self) -> float:
        return self.amplitude + self.asymptote


@dataclass(frozen=True)
class FitStatistics:
    r2: float
    rmse: float
    mape: float


@dataclass(frozen=True)
class NoveltyResult:
    """
    ``detected`` is False both for insufficient data and for a genuine
    absence of decay; ``status`` tells the two apart.
    """

    detected: bool
    status: NoveltyStatus
    decay_rate: float
    stabilized_lift: float
    current_lift: float
    initial_lift: float
    amplitude: float
    fit_quality: float
    days_to_stabilize: Optional[int]
    days_observed: int
    message: str
    recommendation: str
    fit_statistics: FitStatistics


@dataclass(frozen=True)
class LearningEffectResult:
    detected: bool
    growth_rate: float
    current_lift: float
    projected_lift: float
    message: str


def _decay(t, a, b, c):
    return a * np.exp(-b * t) + c


def _r_squared(y: np.ndarray, predictions: np.ndarray) -> float:
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot == 0:
        return 0.0
    ss_res = float(np.sum((y - predictions) ** 2))
    return max(0.0, 1 - ss_res / ss_tot)


def _parameter_bounds(y: np.ndarray):
    """
    Box for (a, b, c) scaled to the observed series.

    The slowest decay has a half-life of twice the window, so a nearly
    straight series cannot be explained by a huge amplitude cancelling a
    far-away plateau.
    """
    low, high = float(y.min()), float(y.max())
    span = high - low
    slowest = np.log(2) / (SLOWEST_HALF_LIFE_WINDOWS * y.size)
    lower = np.array([-AMPLITUDE_SPAN_LIMIT * span, slowest, low - span])
    upper = np.array([AMPLITUDE_SPAN_LIMIT * span, FASTEST_DECAY_RATE, high + span])
    return lower, upper


def _linear_fit_for_rate(t: np.ndarray, y: np.ndarray, b: float, lower, upper):
    """Best bounded (a, c) for a fixed decay rate b."""
    design = np.column_stack([np.exp(-b * t), np.ones_like(t)])
    (a, c), *_ = np.linalg.lstsq(design, y, rcond=None)
    if lower[0] <= a <= upper[0] and lower[2] <= c <= upper[2]:
        return float(a), float(c)
    a, c = lsq_linear(design, y, bounds=([lower[0], lower[2]], [upper[0], upper[2]])).x
    return float(a), float(c)


def _flat_fit(y: np.ndarray) -> DecayFit:
    """No-decay model: the plateau is the mean of the last quarter."""
    tail = y[-int(np.ceil(y.size / 4)):]
    plateau = float(tail.mean())
    predictions = np.full_like(y, plateau)
    return DecayFit(0.0, 0.0, plateau, _r_squared(y, predictions), predictions)


def _decays_within_window(decay_rate: float, days: int) -> bool:
    """True when the fitted curve completes two half-lives inside the window."""
    return decay_rate * (days - 1) >= MIN_HALF_LIVES_OBSERVED * np.log(2)


def fit_exponential_decay(lifts: Sequence[float]) -> DecayFit:
    """
    Bounded least-squares fit of lift(t) = a·exp(-b·t) + c, t = day index.

    The model is non-convex in b, so a geometric grid over b (solving a and
    c exactly for each) locates the basin, then a bounded ``curve_fit``
    refines it. The refinement is kept only if it lowers the residual sum
    of squares.

    Parameters are boxed in by the data: |a| <= 2·span, c within one span
    of the observed range and ln 2 / (2·n) <= b <= 5. A fit that does not
    complete two half-lives inside the window is extrapolating its plateau,
    so the flat model is returned instead: a = b = 0 and c = mean of the
    last quarter of the series.
    """
    y = distributions.as_array(lifts, 'lifts')
    t = np.arange(y.size, dtype=float)

    if y.size < 3 or np.ptp(y) == 0:
        return DecayFit(0.0, 0.0, float(y.mean()), 0.0, np.full_like(y, y.mean()))

    lower, upper = _parameter_bounds(y)
    best = None
    best_sse = np.inf
    for b in np.geomspace(lower[1], upper[1], DECAY_GRID_SIZE):
        a, c = _linear_fit_for_rate(t, y, b, lower, upper)
        sse = float(np.sum((y - _decay(t, a, b, c)) ** 2))
        if sse < best_sse:
            best_sse = sse
            best = (a, float(b), c)

    try:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', OptimizeWarning)
            params, _ = curve_fit(
                _decay, t, y, p0=np.clip(best, lower, upper),
                bounds=(lower, upper), maxfev=10000,
            )
        refined_sse = float(np.sum((y - _decay(t, *params)) ** 2))
        if np.all(np.isfinite(params)) and refined_sse < best_sse:
            best = tuple(float(p) for p in params)
            best_sse = refined_sse
    except RuntimeError as exc:
        logger.debug("curve_fit refinement did not converge, keeping grid fit: %s", exc)

    if not _decays_within_window(best[1], y.size):
        logger.debug("Decay rate %.4g too slow for %d days, using flat model", best[1], y.size)
        return _flat_fit(y)

    a, b, c = best
    predictions = _decay(t, a, b, c)
    return DecayFit(
        amplitude=a,
        decay_rate=b,
        asymptote=c,
        r_squared=_r_squared(y, predictions),
        predictions=predictions,
    )


def fit_statistics(actual: Sequence[float], predicted: Sequence[float]) -> FitStatistics:
    """r², RMSE and MAPE (over points with |actual| > 0.001)."""
    y = distributions.as_array(actual, 'actual')
    p = np.asarray(predicted, dtype=float)
    residuals = y - p
    mask = np.abs(y) > 0.001
    mape = float(np.mean(np.abs(residuals[mask] / y[mask])) * 100) if mask.any() else 0.0
    return FitStatistics(
        r2=_r_squared(y, p),
        rmse=float(np.sqrt(np.mean(residuals ** 2))),
        mape=mape,
    )


def days_to_stabilize(fit: DecayFit, days_observed: int) -> Optional[int]:
    """
    Further days until the decaying term is within 5% of its starting size.

    None when there is no decay (b = 0).
    """
    if fit.decay_rate <= 0:
        return None
    if fit.amplitude == 0:
        return 0
    t_stable = np.log(1 / STABILITY_FRACTION) / fit.decay_rate
    return max(0, int(np.ceil(t_stable)) - days_observed)


def _insufficient_data_result(days: int, minimum_days: int) -> NoveltyResult:
    return NoveltyResult(
        detected=False,
        status=NoveltyStatus.INSUFFICIENT_DATA,
        decay_rate=0.0,
        stabilized_lift=0.0,
        current_lift=0.0,
        initial_lift=0.0,
        amplitude=0.0,
        fit_quality=0.0,
        days_to_stabilize=None,
        days_observed=days,
        message=f"Insufficient data ({days}/{minimum_days} days)",
        recommendation="Wait for more data before analyzing novelty effect.",
        fit_statistics=FitStatistics(0.0, 0.0, 0.0),
    )


def clamp_outliers(lifts: Sequence[float]) -> np.ndarray:
    """Replace points more than 3 sample standard deviations from the mean with the mean."""
    y = distributions.as_array(lifts, 'lifts')
    if y.size < 2:
        return y.copy()
    center = float(y.mean())
    spread = distributions.standard_deviation(y)
    if spread == 0:
        return y.copy()
    return np.where(np.abs(y - center) > OUTLIER_STD_LIMIT * spread, center, y)


def analyze_lift_series(
    lifts: Sequence[float],
    minimum_days: int = NOVELTY_MINIMUM_DAYS,
) -> NoveltyResult:
    """
    Novelty verdict for a chronological series of daily lifts (percent).

    Days more than 3 standard deviations from the mean are replaced by the
    mean before fitting. The initial and current lifts are the first and
    last days of that cleaned series.

    Parameters
    ----------
    lifts : array-like
        Daily relative lift in percent, oldest first
    minimum_days : int, default=7
        Below this many days the result has status ``insufficient_data``

    Returns
    -------
    NoveltyResult
    """
    if minimum_days < 3:
        raise InvalidConfigurationError("minimum_days must be at least 3")
    y = np.asarray(lifts, dtype=float).ravel()
    if y.size < minimum_days:
        logger.debug("Novelty check skipped: %d/%d days", y.size, minimum_days)
        return _insufficient_data_result(int(y.size), minimum_days)

    y = clamp_outliers(y)
    fit = fit_exponential_decay(y)
    initial = float(y[0])
    plateau = fit.asymptote
    current = float(y[-1])

    decayed_enough = initial > plateau * INITIAL_TO_PLATEAU_RATIO
    good_fit = fit.r_squared > MIN_FIT_R2
    near_plateau = abs(current - plateau) < abs(current - initial)
    detected = decayed_enough and good_fit and near_plateau

    remaining = days_to_stabilize(fit, int(y.size))

    if detected:
        status = NoveltyStatus.NOVELTY
        decay_pct = (initial - plateau) / initial * 100 if initial != 0 else 0.0
        wait = f" Estimated {remaining} more days until stabilization." if remaining else ""
        message = (
            f"Novelty effect detected. Initial lift of {initial:.1f}% is decaying toward "
            f"{plateau:.1f}% ({decay_pct:.0f}% decay).{wait}"
        )
        recommendation = (
            f"Wait for lift to stabilize (projected: {plateau:.1f}%) before making "
            f"decisions. Do not ship based on initial high lift."
        )
        logger.info(
            "Novelty effect: initial=%.2f%% plateau=%.2f%% b=%.3f r2=%.3f",
            initial, plateau, fit.decay_rate, fit.r_squared,
        )
    elif not decayed_enough:
        status = NoveltyStatus.STABLE
        message = f"Lift appears stable at {current:.1f}%. No significant novelty effect detected."
        recommendation = (
            "Results can be trusted. Consider concluding the test if statistical "
            "significance is reached."
        )
    else:
        status = NoveltyStatus.NO_DECAY_PATTERN
        message = f"Lift pattern does not match novelty decay. Current lift: {current:.1f}%."
        recommendation = "Continue monitoring. Lift may stabilize or follow a non-standard pattern."

    return NoveltyResult(
        detected=detected,
        status=status,
        decay_rate=fit.decay_rate,
        stabilized_lift=plateau,
        current_lift=current,
        initial_lift=initial,
        amplitude=fit.amplitude,
        fit_quality=fit.r_squared,
        days_to_stabilize=remaining,
        days_observed=int(y.size),
        message=message,
        recommendation=recommendation,
        fit_statistics=fit_statistics(y, fit.predictions),
    )


def daily_lifts(daily: Sequence[DailyLiftPoint]) -> np.ndarray:
    return np.array([point.lift for point in daily], dtype=float)


def detect_novelty_effect(
    daily: Sequence[DailyLiftPoint],
    minimum_days: int = NOVELTY_MINIMUM_DAYS,
) -> NoveltyResult:
    """
    Novelty verdict from daily control/variant counts.

    Per-day lift is (variant_rate - control_rate) / control_rate · 100, and
    0 on days where the control rate is zero.

    Example
    -------
    >>> result = detect_novelty_effect(points)
    >>> if result.detected:
    ...     print("⚠️ Novelty effect detected - wait before shipping")
    """
    return analyze_lift_series(daily_lifts(daily), minimum_days=minimum_days)


def detect_learning_effect(
    daily: Sequence[DailyLiftPoint],
    minimum_days: int = NOVELTY_MINIMUM_DAYS,
) -> LearningEffectResult:
    """
    Reverse pattern: lift that grows as users learn the new experience.

    Detected when the second-half mean lift exceeds the first-half mean by
    more than 20% of the first-half magnitude.
    """
    lifts = daily_lifts(daily)
    if lifts.size < minimum_days:
        return LearningEffectResult(
            detected=False,
            growth_rate=0.0,
            current_lift=0.0,
            projected_lift=0.0,
            message=f"Insufficient data ({lifts.size}/{minimum_days} days)",
        )

    half = lifts.size // 2
    first_mean = float(lifts[:half].mean())
    second_mean = float(lifts[half:].mean())
    current = float(lifts[-1])

    growth = (second_mean - first_mean) / abs(first_mean) if first_mean != 0 else 0.0
    detected = growth > LEARNING_GROWTH_THRESHOLD and second_mean > first_mean

    if detected:
        message = (
            f"Learning effect detected. Lift improving from {first_mean:.1f}% to "
            f"{second_mean:.1f}%. May continue to grow."
        )
        logger.info("Learning effect: %.2f%% -> %.2f%%", first_mean, second_mean)
    else:
        message = "No significant learning effect detected."

    return LearningEffectResult(
        detected=detected,
        growth_rate=growth,
        current_lift=current,
        projected_lift=current + (second_mean - first_mean),
        message=message,
    )


def points_from_frame(df: pd.DataFrame, date_col: str = 'date') -> List[DailyLiftPoint]:
    """
    Build chronologically sorted ``DailyLiftPoint`` records from a DataFrame
    with columns date, control_visitors, control_conversions,
    variant_visitors, variant_conversions.
    """
    required = [date_col, 'control_visitors', 'control_conversions',
                'variant_visitors', 'variant_conversions']
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise InvalidInputError(f"DataFrame missing columns: {missing}")

    ordered = df.sort_values(date_col, kind='mergesort')
    return [
        DailyLiftPoint(
            date=row[date_col],
            control_visitors=int(row['control_visitors']),
            control_conversions=int(row['control_conversions']),
            variant_visitors=int(row['variant_visitors']),
            variant_conversions=int(row['variant_conversions']),
        )
        for _, row in ordered.iterrows()
    ]


if __name__ == "__main__":
    print("=" * 80)
    print("Novelty Effect Detection Demo")
    print("=" * 80)

    rng = np.random.default_rng(42)
    days = np.arange(21)
    lifts = 20 * np.exp(-0.2 * days) + 5 + rng.normal(0, 0.8, days.size)

    result = analyze_lift_series(lifts)
    print(f"\nStatus: {result.status.value}")
    print(f"Initial lift: {result.initial_lift:.1f}%")
    print(f"Stabilized lift: {result.stabilized_lift:.1f}%")
    print(f"Current lift: {result.current_lift:.1f}%")
    print(f"Decay rate: {result.decay_rate:.3f}/day, r²={result.fit_quality:.3f}")
    print(f"\n{result.message}")
    print(f"💡 {result.recommendation}")
